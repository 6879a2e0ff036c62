from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from thumbreel.models.base import Base, TimestampMixin, UUIDMixin, utcnow


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base, TimestampMixin):
    __tablename__ = "users"

    # Identity comes from the auth layer, so ids are opaque strings
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Role: user, admin (admin bypasses quota)
    role: Mapped[str] = mapped_column(String(20), default="user", nullable=False)

    # Subscription: plan is None when the account has no subscription
    plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quota_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quota_limit: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    media: Mapped[list["UserMedia"]] = relationship(
        "UserMedia", back_populates="user", cascade="all, delete-orphan",
        order_by="UserMedia.created_at",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<User {self.id} ({self.quota_used}/{self.quota_limit})>"


class UserMedia(Base, UUIDMixin):
    __tablename__ = "user_media"

    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)

    # Kind: video, ai-video
    kind: Mapped[str] = mapped_column(String(20), default="video", nullable=False)
    template_name: Mapped[str] = mapped_column(String(255), default="Custom Video", nullable=False)
    downloaded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # "metadata" is reserved on declarative classes
    media_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="media")

    def __repr__(self) -> str:
        return f"<UserMedia {self.id} ({self.kind})>"
