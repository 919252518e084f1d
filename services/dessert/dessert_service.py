# services/dessert/dessert_service.py
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import asyncpg

from shared.database import Database, affected_rows
from shared.json_utils import parse_jsonb_field, safe_json_dumps
from shared.uuid_utils import generate_id

from services.dessert.errors import PersistenceError
from services.dessert.models import Dessert, DessertStats, Language, PopularDessert, Recipe, Theme

logger = logging.getLogger(__name__)

POPULAR_SAMPLE_SIZE = 100


class DessertStore:
    """Generated desserts and per-user history"""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        user_id: UUID,
        ingredients: str,
        recipe: Recipe,
        image_url: Optional[str],
        theme: Theme,
        language: Language,
        cache_key: Optional[str],
    ) -> Optional[Dessert]:
        """
        Insert a generated dessert. Returns None when another request already
        stored a dessert under the same cache key. Other insert failures raise
        PersistenceError.
        """
        try:
            row = await self.db.fetch_one(
                """
                INSERT INTO desserts (id, user_id, ingredients, name, recipe, image_url,
                                      theme, language, cache_key)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
                ON CONFLICT (cache_key) DO NOTHING
                RETURNING *
                """,
                generate_id(),
                user_id,
                ingredients,
                recipe.name,
                safe_json_dumps(recipe.model_dump()),
                image_url,
                getattr(theme, "value", theme),
                getattr(language, "value", language),
                cache_key,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise PersistenceError(f"Failed to insert dessert for user {user_id}: {e}") from e

        if not row:
            logger.info(f"🍰 DESSERTS: Cache key {str(cache_key)[:8]}... already stored, skipping")
            return None
        return self._to_model(row)

    async def find_by_id(self, dessert_id: UUID) -> Optional[Dessert]:
        row = await self.db.fetch_one("SELECT * FROM desserts WHERE id = $1", dessert_id)
        return self._to_model(row) if row else None

    async def find_by_user(self, user_id: UUID, limit: int = 20, offset: int = 0) -> list[Dessert]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM desserts
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            user_id,
            limit,
            offset,
        )
        return [self._to_model(row) for row in rows]

    async def count_by_user(self, user_id: UUID) -> int:
        count = await self.db.fetch_val("SELECT COUNT(*) FROM desserts WHERE user_id = $1", user_id)
        return count or 0

    async def delete(self, dessert_id: UUID, user_id: UUID) -> bool:
        """Delete a dessert owned by user_id. False when nothing matched."""
        result = await self.db.execute(
            "DELETE FROM desserts WHERE id = $1 AND user_id = $2", dessert_id, user_id
        )
        return affected_rows(result) > 0

    async def get_popular(self, limit: int = 10) -> list[PopularDessert]:
        """Most frequent names among the latest generations"""
        rows = await self.db.fetch_all(
            "SELECT name FROM desserts ORDER BY created_at DESC LIMIT $1", POPULAR_SAMPLE_SIZE
        )
        counts = Counter(row["name"] for row in rows)
        return [PopularDessert(name=name, count=count) for name, count in counts.most_common(limit)]

    async def get_stats(self) -> DessertStats:
        now = datetime.now(timezone.utc)
        row = await self.db.fetch_one(
            """
            SELECT
                COUNT(*) as total,
                COUNT(*) FILTER (WHERE created_at >= $1) as today,
                COUNT(*) FILTER (WHERE created_at >= $2) as week,
                COUNT(*) FILTER (WHERE created_at >= $3) as month
            FROM desserts
            """,
            now - timedelta(days=1),
            now - timedelta(days=7),
            now - timedelta(days=30),
        )
        return DessertStats(**row)

    def _to_model(self, row: dict) -> Dessert:
        data = dict(row)
        recipe = parse_jsonb_field(row.get("recipe"), field_name="recipe")
        data["recipe"] = Recipe(
            name=recipe.get("name", row["name"]),
            ingredients=recipe.get("ingredients", []),
            steps=recipe.get("steps", []),
        )
        return Dessert(**data)
