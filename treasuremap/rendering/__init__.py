from treasuremap.rendering.layer import RenderLayer
from treasuremap.rendering.protocols import MapRenderer

__all__ = ["MapRenderer", "RenderLayer"]
