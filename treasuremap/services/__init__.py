from treasuremap.services.intersection_resolver import IntersectionResolver
from treasuremap.services.map_workspace import MapWorkspace
from treasuremap.services.persistence_codec import PersistenceError
from treasuremap.services.region_algebra import GeometryResult, RegionAlgebra

__all__ = [
    "GeometryResult",
    "IntersectionResolver",
    "MapWorkspace",
    "PersistenceError",
    "RegionAlgebra",
]
