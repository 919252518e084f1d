# services/dessert/config.py
import logging
import os

logger = logging.getLogger(__name__)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Credits
FREE_CREDITS = int(os.getenv("FREE_CREDITS", "3"))
PREMIUM_CREDITS = int(os.getenv("PREMIUM_CREDITS", "100"))
CREDIT_RENEWAL_DAYS = int(os.getenv("CREDIT_RENEWAL_DAYS", "30"))
LOW_CREDITS_THRESHOLD_FREE = 1
LOW_CREDITS_THRESHOLD_PREMIUM = 10

# Generation cache
CACHE_MAX_SIZE = int(os.getenv("CACHE_MAX_SIZE", "500"))
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "86400"))
CACHE_CLEANUP_INTERVAL_SECONDS = int(os.getenv("CACHE_CLEANUP_INTERVAL_SECONDS", "3600"))

# Generation
MAX_INGREDIENTS_LENGTH = int(os.getenv("MAX_INGREDIENTS_LENGTH", "500"))
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Rate limiting on POST /desserts/generate
GENERATE_RATE_LIMIT = int(os.getenv("GENERATE_RATE_LIMIT", "5"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# Maintenance
USAGE_LOG_RETENTION_DAYS = int(os.getenv("USAGE_LOG_RETENTION_DAYS", "90"))
RENEWAL_INTERVAL_SECONDS = 24 * 60 * 60

ENABLE_DIRECT_UPGRADE = os.getenv("ENABLE_DIRECT_UPGRADE", "false").lower() == "true"
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

MIN_JWT_SECRET_LENGTH = 32


def is_production() -> bool:
    return ENVIRONMENT == "production"


def validate_env() -> list[str]:
    """
    Check required configuration at startup.

    Returns the list of warnings. Raises RuntimeError with every problem
    found when running in production; other environments only log.
    """
    errors = []
    warnings = []

    jwt_secret = os.getenv("SUPABASE_JWT_SECRET", "")
    if not jwt_secret:
        errors.append("SUPABASE_JWT_SECRET is required")
    elif len(jwt_secret) < MIN_JWT_SECRET_LENGTH:
        errors.append(f"SUPABASE_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")
    elif len(set(jwt_secret)) == 1:
        errors.append("SUPABASE_JWT_SECRET must not be a single repeated character")

    if not (GEMINI_API_KEY or OPENAI_API_KEY):
        if is_production():
            errors.append("GEMINI_API_KEY or OPENAI_API_KEY is required in production")
        else:
            warnings.append("No generator key configured, desserts will be mocked")

    if is_production() and "*" in ALLOWED_ORIGINS:
        errors.append("ALLOWED_ORIGINS must not be '*' in production")

    if ENABLE_DIRECT_UPGRADE and is_production():
        warnings.append("ENABLE_DIRECT_UPGRADE is on in production")

    for warning in warnings:
        logger.warning(f"⚠️ CONFIG: {warning}")

    if errors:
        if is_production():
            raise RuntimeError("Invalid configuration: " + "; ".join(errors))
        for error in errors:
            logger.warning(f"⚠️ CONFIG: {error}")

    return warnings
