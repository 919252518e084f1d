# services/dessert/credit_service.py
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from shared.database import Database
from shared.uuid_utils import generate_id

from services.dessert.config import (
    CREDIT_RENEWAL_DAYS,
    FREE_CREDITS,
    LOW_CREDITS_THRESHOLD_FREE,
    LOW_CREDITS_THRESHOLD_PREMIUM,
    PREMIUM_CREDITS,
)
from services.dessert.errors import UserNotFoundError
from services.dessert.models import (
    CreditsAddedDetails,
    CreditsRenewedDetails,
    CreditSummary,
    CreditsUpdatedDetails,
    LowCreditsStatus,
    Plan,
    ProfileUpdatedDetails,
    UpgradePremiumDetails,
    User,
)
from services.dessert.usage_log import UsageLogStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditLedger:
    """
    Per-user credit balances.

    The balance only moves through the guarded decrement, the premium renewal
    reset, the premium upgrade and the admin grant and override paths. Every path
    is a single UPDATE so concurrent requests never observe a torn balance,
    and the decrement's ``credits > 0`` guard keeps the balance non-negative.
    """

    def __init__(
        self,
        db: Database,
        usage_log: Optional[UsageLogStore] = None,
        free_credits: int = FREE_CREDITS,
        premium_credits: int = PREMIUM_CREDITS,
        renewal_days: int = CREDIT_RENEWAL_DAYS,
    ):
        self.db = db
        self.usage_log = usage_log
        self.free_credits = free_credits
        self.premium_credits = premium_credits
        self.renewal_days = renewal_days

    async def get_user(self, user_id: UUID) -> User:
        row = await self.db.fetch_one("SELECT * FROM users WHERE id = $1", user_id)
        if not row:
            raise UserNotFoundError(user_id)
        return User(**row)

    async def get_or_create_user(self, email: str, name: Optional[str] = None) -> User:
        """Resolve the local user for an authenticated email, creating it on first sight"""
        email = email.lower()
        row = await self.db.fetch_one(
            """
            INSERT INTO users (id, email, name, plan, credits, credits_renewed_at)
            VALUES ($1, $2, $3, 'free', $4, CURRENT_TIMESTAMP)
            ON CONFLICT (email) DO NOTHING
            RETURNING *
            """,
            generate_id(),
            email,
            name,
            self.free_credits,
        )
        if row:
            logger.info(f"👤 CREDITS: Created user {row['id']} with {self.free_credits} credits")
            return User(**row)

        row = await self.db.fetch_one("SELECT * FROM users WHERE email = $1", email)
        if not row:
            raise UserNotFoundError(email)
        return User(**row)

    async def has_credits(self, user_id: UUID) -> bool:
        credits = await self.db.fetch_val("SELECT credits FROM users WHERE id = $1", user_id)
        if credits is None:
            raise UserNotFoundError(user_id)
        return credits > 0

    async def decrement_credit(self, user_id: UUID) -> Optional[User]:
        """
        Take one credit. Returns the charged user, or None when the balance
        was already zero and nothing changed.
        """
        row = await self.db.fetch_one(
            """
            UPDATE users
            SET credits = credits - 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1 AND credits > 0
            RETURNING *
            """,
            user_id,
        )
        if row:
            return User(**row)

        # Distinguish an empty balance from a missing user
        await self.get_user(user_id)
        logger.info(f"🪙 CREDITS: Guard miss for user {user_id}, balance already zero")
        return None

    def _renewal_due(self, user: User, now: datetime) -> bool:
        if not user.is_premium:
            return False
        if user.credits_renewed_at is None:
            return True
        return now - user.credits_renewed_at >= timedelta(days=self.renewal_days)

    async def check_and_renew_credits(self, user_id: UUID, now: Optional[datetime] = None) -> User:
        """
        Reset a premium user's balance once the renewal period has elapsed.

        The reset is conditional on the renewal timestamp we observed, so two
        requests racing through here reset the balance once.
        """
        now = now or _utcnow()
        user = await self.get_user(user_id)
        if not self._renewal_due(user, now):
            return user

        renewed = await self._renew_if_due(user, now)
        if renewed is None:
            # Lost the race, another request already renewed
            return await self.get_user(user_id)
        return renewed

    async def _renew_if_due(self, user: User, now: datetime) -> Optional[User]:
        """Returns the renewed user, or None when nothing was reset"""
        if not self._renewal_due(user, now):
            return None

        row = await self.db.fetch_one(
            """
            UPDATE users
            SET credits = $2, credits_renewed_at = $3, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1 AND plan = 'premium'
              AND credits_renewed_at IS NOT DISTINCT FROM $4
            RETURNING *
            """,
            user.id,
            self.premium_credits,
            now,
            user.credits_renewed_at,
        )
        if not row:
            return None

        renewed = User(**row)
        logger.info(
            f"🔄 CREDITS: Renewed user {user.id}: {user.credits} -> {renewed.credits} credits"
        )
        if self.usage_log:
            await self.usage_log.create(
                user.id,
                CreditsRenewedDetails(previous_credits=user.credits, new_credits=renewed.credits),
                credits_used=0,
            )
        return renewed

    async def renew_all_eligible(self, now: Optional[datetime] = None) -> int:
        """Renew every premium user whose period has elapsed. Returns how many were reset."""
        now = now or _utcnow()
        cutoff = now - timedelta(days=self.renewal_days)
        rows = await self.db.fetch_all(
            """
            SELECT * FROM users
            WHERE plan = 'premium'
              AND (credits_renewed_at IS NULL OR credits_renewed_at <= $1)
            """,
            cutoff,
        )

        renewed = 0
        for row in rows:
            if await self._renew_if_due(User(**row), now) is not None:
                renewed += 1

        logger.info(f"🔄 CREDITS: Renewed credits for {renewed} premium users")
        return renewed

    async def upgrade_to_premium(
        self,
        user_id: UUID,
        method: str = "direct",
        payment_token: Optional[str] = None,
        revenuecat_user_id: Optional[str] = None,
    ) -> User:
        row = await self.db.fetch_one(
            """
            UPDATE users
            SET plan = 'premium', credits = $2,
                credits_renewed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            RETURNING *
            """,
            user_id,
            self.premium_credits,
        )
        if not row:
            raise UserNotFoundError(user_id)

        logger.info(f"⭐ CREDITS: User {user_id} upgraded to premium via {method}")
        if self.usage_log:
            await self.usage_log.create(
                user_id,
                UpgradePremiumDetails(
                    method=method,
                    payment_token=payment_token,
                    revenuecat_user_id=revenuecat_user_id,
                ),
                credits_used=0,
            )
        return User(**row)

    async def add_credits(self, user_id: UUID, amount: int, reason: str = "manual") -> User:
        """Grant credits atomically"""
        if amount <= 0:
            raise ValueError("amount must be positive")

        row = await self.db.fetch_one(
            """
            UPDATE users
            SET credits = credits + $2, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            RETURNING *
            """,
            user_id,
            amount,
        )
        if not row:
            raise UserNotFoundError(user_id)

        user = User(**row)
        logger.info(f"🎁 CREDITS: Granted {amount} credits to {user_id} ({reason})")
        if self.usage_log:
            await self.usage_log.create(
                user_id,
                CreditsAddedDetails(amount=amount, reason=reason, new_total=user.credits),
                credits_used=0,
            )
        return user

    async def set_credits(
        self, user_id: UUID, credits: int, admin_email: Optional[str] = None
    ) -> User:
        """Admin override: set the balance to an absolute value"""
        if credits < 0:
            raise ValueError("credits must not be negative")

        row = await self.db.fetch_one(
            """
            UPDATE users
            SET credits = $2, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            RETURNING *
            """,
            user_id,
            credits,
        )
        if not row:
            raise UserNotFoundError(user_id)

        logger.info(f"🛠️ CREDITS: Admin {admin_email} set credits of {user_id} to {credits}")
        if self.usage_log:
            await self.usage_log.create(
                user_id,
                CreditsUpdatedDetails(new_credits=credits, admin_email=admin_email),
                credits_used=0,
            )
        return User(**row)

    async def update_profile(self, user_id: UUID, name: Optional[str] = None) -> User:
        """Update the display name. A missing name leaves the profile unchanged."""
        if name is None:
            return await self.get_user(user_id)

        row = await self.db.fetch_one(
            """
            UPDATE users
            SET name = $2, updated_at = CURRENT_TIMESTAMP
            WHERE id = $1
            RETURNING *
            """,
            user_id,
            name,
        )
        if not row:
            raise UserNotFoundError(user_id)

        if self.usage_log:
            await self.usage_log.create(user_id, ProfileUpdatedDetails(name=name), credits_used=0)
        return User(**row)

    async def list_users(self, limit: int = 50, offset: int = 0) -> list[User]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM users
            ORDER BY created_at DESC
            LIMIT $1 OFFSET $2
            """,
            limit,
            offset,
        )
        return [User(**row) for row in rows]

    async def count_users(self) -> int:
        count = await self.db.fetch_val("SELECT COUNT(*) FROM users")
        return count or 0

    def max_credits_for(self, plan: Plan) -> int:
        return self.premium_credits if plan == Plan.PREMIUM else self.free_credits

    async def get_summary(self, user_id: UUID, now: Optional[datetime] = None) -> CreditSummary:
        now = now or _utcnow()
        user = await self.get_user(user_id)
        total_used = await self.usage_log.get_total_credits_used(user_id) if self.usage_log else 0

        days_until_renewal = None
        if user.is_premium and user.credits_renewed_at:
            next_renewal = user.credits_renewed_at + timedelta(days=self.renewal_days)
            remaining = (next_renewal - now).total_seconds() / 86400
            days_until_renewal = max(0, math.ceil(remaining))

        return CreditSummary(
            credits=user.credits,
            plan=user.plan,
            total_used=total_used,
            max_credits=self.max_credits_for(user.plan),
            days_until_renewal=days_until_renewal,
            credits_renewed_at=user.credits_renewed_at,
        )

    async def check_low_credits(self, user_id: UUID) -> LowCreditsStatus:
        user = await self.get_user(user_id)
        threshold = LOW_CREDITS_THRESHOLD_PREMIUM if user.is_premium else LOW_CREDITS_THRESHOLD_FREE
        return LowCreditsStatus(
            is_low=user.credits <= threshold, credits=user.credits, threshold=threshold
        )

    async def get_stats(self) -> dict:
        row = await self.db.fetch_one(
            """
            SELECT
                COUNT(*) as total_users,
                COUNT(*) FILTER (WHERE plan = 'premium') as premium_users,
                COALESCE(SUM(credits), 0) as outstanding_credits
            FROM users
            """
        )
        return row or {"total_users": 0, "premium_users": 0, "outstanding_credits": 0}
