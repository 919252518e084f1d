# services/dessert/models.py
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator


# Enums
class Plan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class Theme(str, Enum):
    FEMININE = "feminine"
    MASCULINE = "masculine"


class Language(str, Enum):
    PT = "pt"
    EN = "en"
    ES = "es"
    FR = "fr"
    DE = "de"
    JA = "ja"


class UsageAction(str, Enum):
    GENERATE_DESSERT = "generate_dessert"
    CREDITS_ADDED = "credits_added"
    CREDITS_RENEWED = "credits_renewed"
    UPGRADE_PREMIUM = "upgrade_premium"
    CREDITS_UPDATED = "admin_update_credits"
    PROFILE_UPDATED = "update_profile"


# Core records
class User(BaseModel):
    id: UUID
    email: str
    name: Optional[str] = None
    plan: Plan = Plan.FREE
    credits: int = Field(..., ge=0)
    credits_renewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_premium(self) -> bool:
        return self.plan == Plan.PREMIUM


class Recipe(BaseModel):
    name: str
    ingredients: list[str]
    steps: list[str]


class GeneratedDessert(BaseModel):
    """Output of the external generator, before anything is persisted"""

    name: str
    ingredients: list[str]
    steps: list[str]
    image: Optional[str] = None

    @property
    def recipe(self) -> Recipe:
        return Recipe(name=self.name, ingredients=self.ingredients, steps=self.steps)


class Dessert(BaseModel):
    id: UUID
    user_id: UUID
    ingredients: str
    name: str
    recipe: Recipe
    image_url: Optional[str] = None
    theme: Theme = Theme.FEMININE
    language: Language = Language.PT
    cache_key: Optional[str] = None
    created_at: Optional[datetime] = None


class IngredientValidation(BaseModel):
    valid: bool
    message: Optional[str] = None
    blocked: bool = False
    ingredients: list[str] = Field(default_factory=list)
    has_known_ingredient: bool = False


# Usage log details, tagged by action
class GenerateDessertDetails(BaseModel):
    action: Literal["generate_dessert"] = "generate_dessert"
    ingredients: str
    theme: Theme
    language: Language
    from_cache: bool
    name: Optional[str] = None


class CreditsAddedDetails(BaseModel):
    action: Literal["credits_added"] = "credits_added"
    amount: int
    reason: str
    new_total: int


class CreditsRenewedDetails(BaseModel):
    action: Literal["credits_renewed"] = "credits_renewed"
    previous_credits: int
    new_credits: int


class UpgradePremiumDetails(BaseModel):
    action: Literal["upgrade_premium"] = "upgrade_premium"
    method: str
    revenuecat_user_id: Optional[str] = None
    payment_token: Optional[str] = None

    @field_validator("payment_token")
    @classmethod
    def redact_payment_token(cls, v):
        if not v or v.endswith("***"):
            return v
        return f"{v[:4]}***"


class CreditsUpdatedDetails(BaseModel):
    action: Literal["admin_update_credits"] = "admin_update_credits"
    new_credits: int
    admin_email: Optional[str] = None


class ProfileUpdatedDetails(BaseModel):
    action: Literal["update_profile"] = "update_profile"
    name: Optional[str] = None


UsageDetails = Annotated[
    Union[
        GenerateDessertDetails,
        CreditsAddedDetails,
        CreditsRenewedDetails,
        UpgradePremiumDetails,
        CreditsUpdatedDetails,
        ProfileUpdatedDetails,
    ],
    Field(discriminator="action"),
]

usage_details_adapter = TypeAdapter(UsageDetails)


class UsageLog(BaseModel):
    id: UUID
    user_id: UUID
    action: UsageAction
    credits_used: int = 0
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    def typed_details(self):
        """Details parsed into the model matching this log's action"""
        return usage_details_adapter.validate_python({**self.details, "action": self.action.value})


# Request models
class GenerateRequest(BaseModel):
    ingredients: str = Field(..., max_length=5000)
    theme: Theme = Theme.FEMININE
    language: Language = Language.PT


class UpgradeRequest(BaseModel):
    paymentToken: Optional[str] = None
    revenuecatUserId: Optional[str] = None


class AddCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0, le=10000, description="Credits to grant")
    reason: str = Field("admin_grant", min_length=1, max_length=255)


class SetCreditsRequest(BaseModel):
    credits: int = Field(..., ge=0, le=100000)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


# Response models
class GenerateResponse(BaseModel):
    success: bool
    recipe: Optional[Recipe] = None
    image: Optional[str] = None
    fromCache: Optional[bool] = None
    blocked: Optional[bool] = None
    message: Optional[str] = None
    errorType: Optional[str] = None
    credits: Optional[int] = None


class HistoryResponse(BaseModel):
    desserts: list[Dessert]
    total: int
    limit: int
    offset: int


class PopularDessert(BaseModel):
    name: str
    count: int


class DessertStats(BaseModel):
    total: int
    today: int
    week: int
    month: int


class CreditSummary(BaseModel):
    credits: int
    plan: Plan
    total_used: int
    max_credits: int
    days_until_renewal: Optional[int] = None
    credits_renewed_at: Optional[datetime] = None


class LowCreditsStatus(BaseModel):
    is_low: bool
    credits: int
    threshold: int


class CacheStats(BaseModel):
    memory_size: int
    memory_max_size: int
    db_total: int = 0
    db_active: int = 0
    total_hits: int = 0


class UsageStats(BaseModel):
    total_logs: int
    generations: int
    cache_hits: int
    credits_used: int
    unique_users: int
