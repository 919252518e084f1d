# services/dessert/generation_service.py
"""
The credits-gated generation pipeline.

    validate -> check credit -> cache lookup -> (hit | generate) -> charge -> persist -> log

Nothing is charged or written for requests rejected during validation or the
credit check, or when generation fails. A credit is taken exactly once per
successful request, including cache hits, and always before the result is
handed over or stored. A request that loses the race for the last credit is
answered like any other request without credits.
"""

import logging
from typing import Optional
from uuid import UUID

from services.dessert.cache_key import generate_cache_key
from services.dessert.cache_service import CacheService
from services.dessert.credit_service import CreditLedger
from services.dessert.dessert_service import DessertStore
from services.dessert.errors import (
    DessertServiceError,
    IngredientValidationError,
    InsufficientCreditsError,
    PersistenceError,
    UpstreamGenerationError,
    UpstreamRateLimitError,
)
from services.dessert.generator import DessertGenerator
from services.dessert.ingredient_validator import validate_ingredients
from services.dessert.models import (
    GenerateDessertDetails,
    GeneratedDessert,
    GenerateResponse,
    Language,
    Theme,
    User,
)
from services.dessert.usage_log import UsageLogStore

logger = logging.getLogger(__name__)

MSG_NO_CREDITS = "Insufficient credits"
MSG_RATE_LIMITED = "Too many requests. Please wait a moment."
MSG_GENERATION_FAILED = "Error generating dessert"


class GenerationOrchestrator:
    def __init__(
        self,
        ledger: CreditLedger,
        cache: CacheService,
        desserts: DessertStore,
        usage_log: UsageLogStore,
        generator: DessertGenerator,
    ):
        self.ledger = ledger
        self.cache = cache
        self.desserts = desserts
        self.usage_log = usage_log
        self.generator = generator

    async def generate(
        self,
        user_id: UUID,
        ingredients: str,
        theme: Theme = Theme.FEMININE,
        language: Language = Language.PT,
        ip_address: Optional[str] = None,
    ) -> GenerateResponse:
        theme = Theme(theme)
        language = Language(language)

        try:
            self._validate(ingredients)
            await self._require_credit(user_id)

            cache_key = generate_cache_key(ingredients, theme.value, language.value)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return await self._serve_cached(
                    user_id, ingredients, theme, language, cached, ip_address
                )

            dessert = await self.generator.generate_dessert(ingredients, theme, language)
            return await self._persist(
                user_id, ingredients, theme, language, cache_key, dessert, ip_address
            )

        except IngredientValidationError as e:
            logger.info(f"🚫 GENERATE: Rejected ingredients for user {user_id}: {e.message}")
            return GenerateResponse(
                success=False,
                blocked=e.blocked or None,
                message=e.message,
                errorType=e.error_type,
            )
        except InsufficientCreditsError:
            logger.info(f"🪙 GENERATE: User {user_id} has no credits")
            return GenerateResponse(success=False, message=MSG_NO_CREDITS, errorType="credits")
        except UpstreamRateLimitError as e:
            logger.warning(f"⏳ GENERATE: Upstream rate limit for user {user_id}: {e}")
            return GenerateResponse(success=False, message=MSG_RATE_LIMITED, errorType="rate-limit")
        except UpstreamGenerationError as e:
            logger.error(f"❌ GENERATE: Generation failed for user {user_id}: {e}")
            return GenerateResponse(success=False, message=MSG_GENERATION_FAILED, errorType="generation")
        except DessertServiceError as e:
            logger.error(f"❌ GENERATE: {type(e).__name__} for user {user_id}: {e}")
            return GenerateResponse(success=False, message=MSG_GENERATION_FAILED, errorType=e.error_type)
        except Exception as e:
            logger.error(f"❌ GENERATE: Unexpected error for user {user_id}: {e}", exc_info=True)
            return GenerateResponse(success=False, message=MSG_GENERATION_FAILED, errorType="error")

    def _validate(self, ingredients: str) -> None:
        validation = validate_ingredients(ingredients)
        if not validation.valid:
            raise IngredientValidationError(validation.message, blocked=validation.blocked)

    async def _require_credit(self, user_id: UUID) -> None:
        # Premium balances reset here when their period has elapsed
        user = await self.ledger.check_and_renew_credits(user_id)
        if user.credits <= 0:
            raise InsufficientCreditsError(MSG_NO_CREDITS)

    async def _charge(self, user_id: UUID) -> User:
        user = await self.ledger.decrement_credit(user_id)
        if user is None:
            # Another request took the last credit after our presence check
            raise InsufficientCreditsError(MSG_NO_CREDITS)
        return user

    async def _serve_cached(
        self,
        user_id: UUID,
        ingredients: str,
        theme: Theme,
        language: Language,
        cached: dict,
        ip_address: Optional[str],
    ) -> GenerateResponse:
        dessert = GeneratedDessert(**cached)

        # Cache hits are still charged
        user = await self._charge(user_id)
        await self.usage_log.create(
            user_id,
            GenerateDessertDetails(
                ingredients=ingredients,
                theme=theme,
                language=language,
                from_cache=True,
                name=dessert.name,
            ),
            credits_used=1,
            ip_address=ip_address,
        )

        logger.info(f"📦 GENERATE: Served '{dessert.name}' from cache to user {user_id}")
        return GenerateResponse(
            success=True,
            recipe=dessert.recipe,
            image=dessert.image,
            fromCache=True,
            credits=user.credits,
        )

    async def _persist(
        self,
        user_id: UUID,
        ingredients: str,
        theme: Theme,
        language: Language,
        cache_key: str,
        dessert: GeneratedDessert,
        ip_address: Optional[str],
    ) -> GenerateResponse:
        user = await self._charge(user_id)

        try:
            await self.desserts.create(
                user_id=user_id,
                ingredients=ingredients,
                recipe=dessert.recipe,
                image_url=dessert.image,
                theme=theme,
                language=language,
                cache_key=cache_key,
            )
        except PersistenceError as e:
            # The credit is spent and the recipe exists, still hand it over
            logger.error(f"❌ GENERATE: Failed to store dessert for user {user_id}: {e}")

        await self.cache.set(cache_key, dessert.model_dump())
        await self.usage_log.create(
            user_id,
            GenerateDessertDetails(
                ingredients=ingredients,
                theme=theme,
                language=language,
                from_cache=False,
                name=dessert.name,
            ),
            credits_used=1,
            ip_address=ip_address,
        )

        logger.info(f"✅ GENERATE: Generated '{dessert.name}' for user {user_id}")
        return GenerateResponse(
            success=True,
            recipe=dessert.recipe,
            image=dessert.image,
            fromCache=False,
            credits=user.credits,
        )
