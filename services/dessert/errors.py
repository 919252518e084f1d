# services/dessert/errors.py
from typing import Optional


class DessertServiceError(Exception):
    """Base class for dessert service failures"""

    error_type = "error"


class IngredientValidationError(DessertServiceError):
    error_type = "validation"

    def __init__(self, message: str, blocked: bool = False):
        super().__init__(message)
        self.message = message
        self.blocked = blocked


class InsufficientCreditsError(DessertServiceError):
    error_type = "credits"


class UpstreamRateLimitError(DessertServiceError):
    """The AI provider throttled the request"""

    error_type = "rate-limit"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamGenerationError(DessertServiceError):
    """Text or image generation failed, timed out or returned garbage"""

    error_type = "generation"


class PersistenceError(DessertServiceError):
    error_type = "persistence"


class UserNotFoundError(DessertServiceError):
    error_type = "not-found"

    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id
