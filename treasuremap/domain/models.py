from __future__ import annotations

from datetime import datetime, timezone

from treasuremap.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CircleShare(db.Model):
    """An immutable snapshot of circles published by one user."""

    __tablename__ = "circle_shares"

    share_id = db.Column(db.String(32), primary_key=True)
    owner_username = db.Column(db.String(120), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    circles = db.relationship(
        "SharedCircle",
        back_populates="share",
        order_by="SharedCircle.position",
        cascade="all, delete-orphan",
    )
    acceptances = db.relationship(
        "AcceptedShare",
        back_populates="share",
        cascade="all, delete-orphan",
    )


class SharedCircle(db.Model):
    __tablename__ = "shared_circles"

    id = db.Column(db.Integer, primary_key=True)
    share_id = db.Column(db.String(32), db.ForeignKey("circle_shares.share_id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    radius = db.Column(db.Float, nullable=False)
    is_inside = db.Column(db.Boolean, nullable=False, default=True)

    share = db.relationship("CircleShare", back_populates="circles")


class AcceptedShare(db.Model):
    """A share another user accepted onto their own map. One row per (share, user)."""

    __tablename__ = "accepted_shares"
    __table_args__ = (
        db.UniqueConstraint("share_id", "username", name="uq_accepted_share_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    share_id = db.Column(db.String(32), db.ForeignKey("circle_shares.share_id"), nullable=False, index=True)
    username = db.Column(db.String(120), nullable=False, index=True)
    visible = db.Column(db.Boolean, nullable=False, default=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    share = db.relationship("CircleShare", back_populates="acceptances")
