from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError

from treasuremap.domain.models import AcceptedShare, CircleShare, SharedCircle, utcnow
from treasuremap.domain.sharing import (
    AcceptedShareView,
    CircleSnapshot,
    ShareCreated,
    SharedCircleView,
)
from treasuremap.extensions import db


class ShareError(Exception):
    """Base exception raised for circle sharing issues."""


class ShareNotFoundError(ShareError):
    """Raised when a share or an accepted share does not exist."""


class ShareExpiredError(ShareError):
    """Raised when a share is older than the configured lifetime."""


class ShareConflictError(ShareError):
    """Raised when an accept request conflicts with the share, e.g. accepting your own."""


class ShareValidationError(ShareError):
    """Raised when a share request carries no or invalid circles."""


class SharingService:
    """
    Publish read-only circle snapshots and track which users accepted them.

    Accepted shares live in their own table and are never merged into the
    viewer's own shapes.
    """

    def __init__(
        self,
        base_url: str,
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._ttl = ttl
        self._clock = clock

    @classmethod
    def from_app_config(cls) -> "SharingService":
        ttl_days = current_app.config.get("SHARE_TTL_DAYS")
        return cls(
            base_url=current_app.config["SHARE_BASE_URL"],
            ttl=timedelta(days=ttl_days) if ttl_days else None,
        )

    def share_url(self, share_id: str) -> str:
        return f"{self._base_url}/{share_id}"

    def create_share(self, owner_username: str, circles: Sequence[CircleSnapshot]) -> ShareCreated:
        """Snapshot ``circles`` under a new server-issued share id."""
        if not circles:
            raise ShareValidationError("At least one circle is required to share.")

        share = CircleShare(
            share_id=uuid.uuid4().hex,
            owner_username=owner_username,
            created_at=self._clock(),
        )
        share.circles = [
            SharedCircle(
                position=position,
                latitude=snapshot.latitude,
                longitude=snapshot.longitude,
                radius=snapshot.radius,
                is_inside=snapshot.is_inside,
            )
            for position, snapshot in enumerate(circles)
        ]
        db.session.add(share)
        db.session.commit()

        current_app.logger.info(
            f"User {owner_username} shared {len(circles)} circles as {share.share_id}"
        )
        return ShareCreated(share_id=share.share_id, share_url=self.share_url(share.share_id))

    def fetch_share(self, share_id: str) -> List[SharedCircleView]:
        """Return the circles of a live share."""
        share = self._get_live_share(share_id)
        return self._circle_views(share)

    def preview(self, share_id: str) -> AcceptedShareView:
        """Describe a share for the accept/decline dialog, without accepting it."""
        share = self._get_live_share(share_id)
        return AcceptedShareView(
            share_id=share.share_id,
            owner_username=share.owner_username,
            circles=tuple(self._circle_views(share)),
        )

    def my_shares(self, owner_username: str) -> List[SharedCircleView]:
        shares = (
            CircleShare.query.filter_by(owner_username=owner_username)
            .order_by(CircleShare.created_at)
            .all()
        )
        views: List[SharedCircleView] = []
        for share in shares:
            views.extend(self._circle_views(share))
        return views

    def accept(self, share_id: str, username: str) -> AcceptedShareView:
        """
        Accept a share onto ``username``'s map.

        Accepting a share twice returns the existing acceptance unchanged.
        """
        share = self._get_live_share(share_id)
        if share.owner_username == username:
            raise ShareConflictError("You cannot accept circles you shared yourself.")

        existing = self._find_acceptance(share_id, username)
        if existing is not None:
            current_app.logger.debug(f"User {username} already accepted share {share_id}")
            return self._accepted_view(existing)

        accepted = AcceptedShare(
            share_id=share_id,
            username=username,
            visible=True,
            accepted_at=self._clock(),
        )
        db.session.add(accepted)
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent request accepted the same share first
            db.session.rollback()
            existing = self._find_acceptance(share_id, username)
            if existing is None:
                raise
            return self._accepted_view(existing)

        current_app.logger.info(f"User {username} accepted share {share_id}")
        return self._accepted_view(accepted)

    def check_accepted(self, share_id: str, username: str) -> bool:
        return self._find_acceptance(share_id, username) is not None

    def list_accepted(self, username: str) -> List[AcceptedShareView]:
        accepted = (
            AcceptedShare.query.filter_by(username=username)
            .order_by(AcceptedShare.accepted_at, AcceptedShare.id)
            .all()
        )
        return [self._accepted_view(a) for a in accepted]

    def set_visibility(self, share_id: str, username: str, visible: Optional[bool] = None) -> AcceptedShareView:
        """Show or hide an accepted share; ``visible=None`` flips the current value."""
        accepted = self._require_acceptance(share_id, username)
        accepted.visible = (not accepted.visible) if visible is None else bool(visible)
        db.session.commit()
        return self._accepted_view(accepted)

    def remove(self, share_id: str, username: str) -> None:
        accepted = self._require_acceptance(share_id, username)
        db.session.delete(accepted)
        db.session.commit()
        current_app.logger.info(f"User {username} removed accepted share {share_id}")

    def _get_live_share(self, share_id: str) -> CircleShare:
        share = db.session.get(CircleShare, share_id)
        if share is None:
            raise ShareNotFoundError(f"Shared circles {share_id} not found.")
        if self._is_expired(share):
            raise ShareExpiredError(f"Shared circles {share_id} have expired.")
        return share

    def _is_expired(self, share: CircleShare) -> bool:
        if self._ttl is None:
            return False
        created_at = share.created_at
        # SQLite hands datetimes back without tzinfo
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return self._clock() - created_at > self._ttl

    def _find_acceptance(self, share_id: str, username: str) -> Optional[AcceptedShare]:
        return AcceptedShare.query.filter_by(share_id=share_id, username=username).first()

    def _require_acceptance(self, share_id: str, username: str) -> AcceptedShare:
        accepted = self._find_acceptance(share_id, username)
        if accepted is None:
            raise ShareNotFoundError(f"Share {share_id} has not been accepted.")
        return accepted

    @staticmethod
    def _circle_views(share: CircleShare) -> List[SharedCircleView]:
        return [
            SharedCircleView(
                id=circle.id,
                latitude=circle.latitude,
                longitude=circle.longitude,
                radius=circle.radius,
                is_inside=circle.is_inside,
                owner_username=share.owner_username,
                created_at=share.created_at,
            )
            for circle in share.circles
        ]

    def _accepted_view(self, accepted: AcceptedShare) -> AcceptedShareView:
        share = accepted.share
        return AcceptedShareView(
            id=accepted.id,
            share_id=accepted.share_id,
            owner_username=share.owner_username,
            circles=tuple(self._circle_views(share)),
            visible=accepted.visible,
            accepted_at=accepted.accepted_at,
        )
