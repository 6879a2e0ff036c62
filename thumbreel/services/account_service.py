"""Account, quota and rendered-media store.

Sync SQLAlchemy sessions; async callers wrap these methods in
``asyncio.to_thread``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from thumbreel.exceptions import AccountNotFoundError, QuotaExceededError
from thumbreel.models.database import get_sync_db
from thumbreel.models.user import User, UserMedia, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Account:
    """Detached snapshot of a user's subscription state."""

    id: str
    email: str | None
    role: str
    plan: str | None
    quota_used: int
    quota_limit: int
    expires_at: datetime | None = None
    reset_at: datetime | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_model(cls, user: User) -> "Account":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            plan=user.plan,
            quota_used=user.quota_used,
            quota_limit=user.quota_limit,
            expires_at=as_utc(user.expires_at),
            reset_at=as_utc(user.reset_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "plan": self.plan,
            "quota_used": self.quota_used,
            "quota_limit": self.quota_limit,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


@dataclass(frozen=True)
class MediaRecord:
    """A rendered output appended to a user's media list."""

    id: str
    user_id: str
    url: str
    kind: str
    template_name: str
    downloaded: bool
    created_at: datetime
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, media: UserMedia) -> "MediaRecord":
        return cls(
            id=media.id,
            user_id=media.user_id,
            url=media.url,
            kind=media.kind,
            template_name=media.template_name,
            downloaded=media.downloaded,
            created_at=as_utc(media.created_at),
            metadata=media.media_metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "url": self.url,
            "processed": True,
            "type": self.kind,
            "template": self.template_name,
            "downloaded": self.downloaded,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata or {},
        }


class AccountService:
    """Reads and updates user quota and media records."""

    def __init__(
        self,
        session_maker: sessionmaker[Session],
        default_quota: int = 10,
        quota_reset_days: int = 30,
    ):
        self.session_maker = session_maker
        self.default_quota = default_quota
        self.quota_reset_days = quota_reset_days

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _get_user(self, db: Session, user_id: str) -> User:
        user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
        if user is None:
            raise AccountNotFoundError(user_id)
        return user

    def get_account(self, user_id: str) -> Account:
        with get_sync_db(self.session_maker) as db:
            return Account.from_model(self._get_user(db, user_id))

    def ensure_account(
        self,
        user_id: str,
        email: str | None = None,
        role: str = "user",
        plan: str | None = "free",
    ) -> Account:
        """Return the account, creating it on the free plan if missing."""
        with get_sync_db(self.session_maker) as db:
            user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
            if user is None:
                user = User(
                    id=user_id,
                    email=email,
                    role=role,
                    plan=plan,
                    quota_used=0,
                    quota_limit=self.default_quota,
                    reset_at=self._now() + timedelta(days=self.quota_reset_days),
                )
                db.add(user)
                db.flush()
                logger.info(f"[QUOTA] Created account {user_id} (plan={plan}, quota={self.default_quota})")
            return Account.from_model(user)

    def _check_subscription(self, db: Session, user: User) -> None:
        """Refuse accounts without a live plan; roll the monthly window over."""
        if user.plan is None:
            raise QuotaExceededError("No subscription found")

        now = self._now()
        expires_at = as_utc(user.expires_at)
        if expires_at is not None and expires_at <= now:
            raise QuotaExceededError("Subscription expired. Please renew your plan.")

        reset_at = as_utc(user.reset_at)
        if reset_at is not None and reset_at <= now:
            logger.info(f"[QUOTA] Resetting monthly quota for {user.id} (was {user.quota_used})")
            user.quota_used = 0
            user.reset_at = now + timedelta(days=self.quota_reset_days)
            db.flush()

    def _consume_one(self, db: Session, user: User) -> None:
        """Take one render from the allowance with a conditional ``UPDATE``.

        Raises:
            QuotaExceededError: If the allowance is already used up.
        """
        result = db.execute(
            update(User)
            .where(User.id == user.id, User.quota_used < User.quota_limit)
            .values(quota_used=User.quota_used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.refresh(user)
            logger.info(f"[QUOTA] Quota exceeded for {user.id}: {user.quota_used}/{user.quota_limit}")
            raise QuotaExceededError(quota_used=user.quota_used, quota_limit=user.quota_limit)

    def check_quota(self, user_id: str) -> Account:
        """Verify the account may start another render.

        Resets the monthly counter when its reset date has passed.
        Privileged accounts always pass.

        Raises:
            AccountNotFoundError: If the user does not exist.
            QuotaExceededError: If there is no subscription, it has expired,
                or the allowance is used up.
        """
        with get_sync_db(self.session_maker) as db:
            user = self._get_user(db, user_id)
            if user.is_admin:
                return Account.from_model(user)

            self._check_subscription(db, user)
            if user.quota_used >= user.quota_limit:
                logger.info(f"[QUOTA] Quota exceeded for {user_id}: {user.quota_used}/{user.quota_limit}")
                raise QuotaExceededError(quota_used=user.quota_used, quota_limit=user.quota_limit)

            return Account.from_model(user)

    def reserve_render(self, user_id: str) -> Account:
        """Check quota and hold one render of the allowance for a new job.

        The hold is taken with a conditional increment, so concurrent
        submissions can never push usage past the limit. A job that does not
        complete gives the hold back with :meth:`release_render`.
        Privileged accounts pass without a hold.

        Raises:
            AccountNotFoundError: If the user does not exist.
            QuotaExceededError: If there is no subscription, it has expired,
                or the allowance is used up.
        """
        with get_sync_db(self.session_maker) as db:
            user = self._get_user(db, user_id)
            if user.is_admin:
                return Account.from_model(user)

            self._check_subscription(db, user)
            self._consume_one(db, user)
            db.refresh(user)
            logger.info(f"[QUOTA] Reserved render for {user_id}: {user.quota_used}/{user.quota_limit}")
            return Account.from_model(user)

    def release_render(self, user_id: str) -> None:
        """Return a render held by :meth:`reserve_render`."""
        with get_sync_db(self.session_maker) as db:
            db.execute(
                update(User)
                .where(User.id == user_id, User.role != "admin", User.quota_used > 0)
                .values(quota_used=User.quota_used - 1)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"[QUOTA] Released reserved render for {user_id}")

    def record_output(
        self,
        user_id: str,
        url: str,
        kind: str = "video",
        template_name: str = "Custom Video",
        metadata: dict[str, Any] | None = None,
        consume: bool = True,
    ) -> MediaRecord:
        """Append an output to the user's media.

        With ``consume`` the same transaction takes one render from the
        allowance through a conditional ``UPDATE``; pass ``consume=False``
        when the render was already held by :meth:`reserve_render`.
        Privileged accounts are not charged.

        Raises:
            AccountNotFoundError: If the user does not exist.
            QuotaExceededError: If ``consume`` is set and the allowance is
                used up. Nothing is recorded.
        """
        with get_sync_db(self.session_maker) as db:
            user = self._get_user(db, user_id)
            if consume and not user.is_admin:
                self._consume_one(db, user)
            media = UserMedia(
                user_id=user_id,
                url=url,
                kind=kind,
                template_name=template_name or "Custom Video",
                downloaded=False,
                media_metadata=metadata,
            )
            db.add(media)
            db.flush()
            record = MediaRecord.from_model(media)
        logger.info(f"[QUOTA] Recorded {kind} output for {user_id}: {url}")
        return record

    def list_media(self, user_id: str) -> list[MediaRecord]:
        with get_sync_db(self.session_maker) as db:
            self._get_user(db, user_id)
            rows = db.execute(
                select(UserMedia)
                .where(UserMedia.user_id == user_id)
                .order_by(UserMedia.created_at)
            ).scalars().all()
            return [MediaRecord.from_model(m) for m in rows]

    def find_media(self, user_id: str, video_id: str) -> MediaRecord | None:
        """Find a media record whose URL contains ``video_id``."""
        for record in self.list_media(user_id):
            if video_id in record.url:
                return record
        return None
