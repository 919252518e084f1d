# services/dessert/usage_log.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from shared.database import Database, affected_rows
from shared.json_utils import parse_jsonb_field, safe_json_dumps
from shared.uuid_utils import generate_id

from services.dessert.config import USAGE_LOG_RETENTION_DAYS
from services.dessert.models import UsageLog, UsageStats

logger = logging.getLogger(__name__)


def _credits_used_for(details: BaseModel) -> int:
    return 1 if details.action == "generate_dessert" else 0


class UsageLogStore:
    """Append-only audit trail of user actions"""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: UUID,
        details: BaseModel,
        credits_used: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[UsageLog]:
        """
        Record an action. Logging is best effort: a failed insert is logged
        and None is returned so the caller's request still succeeds.
        """
        if credits_used is None:
            credits_used = _credits_used_for(details)

        payload = details.model_dump(mode="json", exclude={"action"})

        try:
            row = await self.db.fetch_one(
                """
                INSERT INTO usage_logs (id, user_id, action, credits_used, details, ip_address)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6)
                RETURNING *
                """,
                generate_id(),
                user_id,
                details.action,
                credits_used,
                safe_json_dumps(payload),
                ip_address,
            )
        except Exception as e:
            logger.warning(f"⚠️ USAGE_LOG: Failed to record {details.action} for user {user_id}: {e}")
            return None

        return self._to_model(row) if row else None

    async def find_by_user(self, user_id: UUID, limit: int = 50, offset: int = 0) -> list[UsageLog]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM usage_logs
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [self._to_model(row) for row in rows]

    async def get_total_credits_used(self, user_id: UUID) -> int:
        total = await self.db.fetch_val(
            "SELECT COALESCE(SUM(credits_used), 0) FROM usage_logs WHERE user_id = $1",
            user_id,
        )
        return total or 0

    async def clean_old_logs(self, days_to_keep: int = USAGE_LOG_RETENTION_DAYS) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        result = await self.db.execute("DELETE FROM usage_logs WHERE created_at < $1", cutoff)
        removed = affected_rows(result)
        logger.info(f"🧹 USAGE_LOG: Removed {removed} logs older than {days_to_keep} days")
        return removed

    async def get_stats(self) -> UsageStats:
        row = await self.db.fetch_one(
            """
            SELECT
                COUNT(*) as total_logs,
                COUNT(*) FILTER (WHERE action = 'generate_dessert') as generations,
                COUNT(*) FILTER (
                    WHERE action = 'generate_dessert' AND details->>'from_cache' = 'true'
                ) as cache_hits,
                COALESCE(SUM(credits_used), 0) as credits_used,
                COUNT(DISTINCT user_id) as unique_users
            FROM usage_logs
            """
        )
        return UsageStats(**row)

    def _to_model(self, row: dict) -> UsageLog:
        data = dict(row)
        data["details"] = parse_jsonb_field(row.get("details"), field_name="details")
        return UsageLog(**data)
