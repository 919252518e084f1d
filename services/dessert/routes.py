# services/dessert/routes.py
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from shared.auth_middleware import TokenData, get_current_user, require_admin
from shared.database import Database, get_db

from services.dessert import config
from services.dessert.cache_service import CacheService, CacheStore
from services.dessert.credit_service import CreditLedger
from services.dessert.dessert_service import DessertStore
from services.dessert.errors import UserNotFoundError
from services.dessert.generation_service import GenerationOrchestrator
from services.dessert.ingredient_validator import get_suggestions
from services.dessert.models import (
    AddCreditsRequest,
    GenerateRequest,
    HistoryResponse,
    SetCreditsRequest,
    UpdateProfileRequest,
    UpgradeRequest,
    User,
)
from services.dessert.rate_limiting import check_generation_rate_limit
from services.dessert.usage_log import UsageLogStore

# Create routers
dessert_router = APIRouter()
user_router = APIRouter()
admin_router = APIRouter()

ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "credits": status.HTTP_402_PAYMENT_REQUIRED,
    "rate-limit": status.HTTP_429_TOO_MANY_REQUESTS,
}


# Dependencies
async def get_usage_log(db: Database = Depends(get_db)) -> UsageLogStore:
    return UsageLogStore(db)


async def get_ledger(
    db: Database = Depends(get_db), usage_log: UsageLogStore = Depends(get_usage_log)
) -> CreditLedger:
    return CreditLedger(db, usage_log)


async def get_dessert_store(db: Database = Depends(get_db)) -> DessertStore:
    return DessertStore(db)


async def get_cache_service(request: Request, db: Database = Depends(get_db)) -> CacheService:
    # The memory tier lives for the whole process, the store wraps this request's db handle
    return CacheService(request.app.state.memory_cache, CacheStore(db))


async def get_orchestrator(
    request: Request,
    ledger: CreditLedger = Depends(get_ledger),
    cache: CacheService = Depends(get_cache_service),
    desserts: DessertStore = Depends(get_dessert_store),
    usage_log: UsageLogStore = Depends(get_usage_log),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(ledger, cache, desserts, usage_log, request.app.state.generator)


async def get_local_user(
    current_user: TokenData = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> User:
    """Resolve (or create on first request) the local user behind the token"""
    return await ledger.get_or_create_user(current_user.email, current_user.name)


# Dessert routes
@dessert_router.post("/generate")
async def generate_dessert(
    request: GenerateRequest,
    http_request: Request,
    user: User = Depends(get_local_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Generate a dessert from ingredients, charging one credit"""
    await check_generation_rate_limit(user.id)

    client_ip = http_request.client.host if http_request.client else None
    result = await orchestrator.generate(
        user.id, request.ingredients, request.theme, request.language, ip_address=client_ip
    )

    status_code = status.HTTP_200_OK
    if not result.success:
        status_code = ERROR_STATUS.get(result.errorType, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))


@dessert_router.get("/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_local_user),
    desserts: DessertStore = Depends(get_dessert_store),
):
    items = await desserts.find_by_user(user.id, limit, offset)
    total = await desserts.count_by_user(user.id)
    return HistoryResponse(desserts=items, total=total, limit=limit, offset=offset)


@dessert_router.get("/popular")
async def get_popular(
    limit: int = Query(10, ge=1, le=50),
    desserts: DessertStore = Depends(get_dessert_store),
):
    return {"desserts": await desserts.get_popular(limit)}


@dessert_router.get("/suggestions")
async def suggestions(category: str = Query("all")):
    return {"category": category, "suggestions": get_suggestions(category)}


@dessert_router.get("/{dessert_id}")
async def get_dessert(
    dessert_id: UUID,
    user: User = Depends(get_local_user),
    desserts: DessertStore = Depends(get_dessert_store),
):
    dessert = await desserts.find_by_id(dessert_id)
    if not dessert:
        raise HTTPException(status_code=404, detail="Dessert not found")

    if dessert.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")

    return {"dessert": dessert}


@dessert_router.delete("/{dessert_id}")
async def delete_dessert(
    dessert_id: UUID,
    user: User = Depends(get_local_user),
    desserts: DessertStore = Depends(get_dessert_store),
):
    if not await desserts.delete(dessert_id, user.id):
        raise HTTPException(status_code=404, detail="Dessert not found")
    return {"success": True}


# User routes
@user_router.get("/profile")
async def get_profile(
    user: User = Depends(get_local_user),
    ledger: CreditLedger = Depends(get_ledger),
    desserts: DessertStore = Depends(get_dessert_store),
):
    user = await ledger.check_and_renew_credits(user.id)
    return {
        "user": user,
        "dessert_count": await desserts.count_by_user(user.id),
        "low_credits": await ledger.check_low_credits(user.id),
    }


@user_router.put("/profile")
async def update_profile(
    request: UpdateProfileRequest,
    user: User = Depends(get_local_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    updated = await ledger.update_profile(user.id, request.name)
    return {"success": True, "user": updated}


@user_router.get("/credits")
async def get_credits(
    user: User = Depends(get_local_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    await ledger.check_and_renew_credits(user.id)
    return await ledger.get_summary(user.id)


@user_router.get("/usage")
async def get_usage(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_local_user),
    usage_log: UsageLogStore = Depends(get_usage_log),
):
    logs = await usage_log.find_by_user(user.id, limit, offset)
    return {"logs": logs, "limit": limit, "offset": offset}


@user_router.post("/upgrade")
async def upgrade(
    request: UpgradeRequest,
    user: User = Depends(get_local_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Direct premium upgrade, for development and verified payment flows"""
    if config.is_production() and not config.ENABLE_DIRECT_UPGRADE:
        raise HTTPException(status_code=403, detail="Direct upgrade is disabled")

    if not request.paymentToken and not request.revenuecatUserId:
        raise HTTPException(
            status_code=400, detail="paymentToken or revenuecatUserId is required"
        )

    method = "revenuecat" if request.revenuecatUserId else "payment_token"
    upgraded = await ledger.upgrade_to_premium(
        user.id,
        method=method,
        payment_token=request.paymentToken,
        revenuecat_user_id=request.revenuecatUserId,
    )
    return {"success": True, "user": upgraded}


# Admin routes
@admin_router.get("/stats")
async def admin_stats(
    _: TokenData = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
    desserts: DessertStore = Depends(get_dessert_store),
    usage_log: UsageLogStore = Depends(get_usage_log),
    cache: CacheService = Depends(get_cache_service),
):
    return {
        "users": await ledger.get_stats(),
        "desserts": await desserts.get_stats(),
        "usage": await usage_log.get_stats(),
        "cache": await cache.get_stats(),
    }


@admin_router.get("/users")
async def admin_list_users(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _: TokenData = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    users = await ledger.list_users(limit, offset)
    return {"users": users, "total": await ledger.count_users(), "limit": limit, "offset": offset}


@admin_router.get("/users/{user_id}")
async def admin_get_user(
    user_id: UUID,
    _: TokenData = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
    desserts: DessertStore = Depends(get_dessert_store),
    usage_log: UsageLogStore = Depends(get_usage_log),
):
    """User details with recent desserts and activity"""
    user = await ledger.get_user(user_id)
    return {
        "user": user,
        "recent_desserts": await desserts.find_by_user(user_id, 10, 0),
        "recent_activity": await usage_log.find_by_user(user_id, 20, 0),
        "stats": {
            "total_desserts": await desserts.count_by_user(user_id),
            "total_credits_used": await usage_log.get_total_credits_used(user_id),
        },
    }


@admin_router.put("/users/{user_id}/credits")
async def admin_set_credits(
    user_id: UUID,
    request: SetCreditsRequest,
    admin: TokenData = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    user = await ledger.set_credits(user_id, request.credits, admin_email=admin.email)
    return {"success": True, "user": user}


@admin_router.post("/users/{user_id}/credits")
async def admin_add_credits(
    user_id: UUID,
    request: AddCreditsRequest,
    _: TokenData = Depends(require_admin),
    ledger: CreditLedger = Depends(get_ledger),
):
    try:
        user = await ledger.add_credits(user_id, request.amount, request.reason)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "credits": user.credits}


@admin_router.get("/cache/stats")
async def admin_cache_stats(
    _: TokenData = Depends(require_admin),
    cache: CacheService = Depends(get_cache_service),
):
    return await cache.get_stats()


@admin_router.post("/cache/cleanup")
async def admin_cache_cleanup(
    _: TokenData = Depends(require_admin),
    cache: CacheService = Depends(get_cache_service),
):
    return {"removed": await cache.cleanup()}


@admin_router.delete("/cache")
async def admin_cache_clear(
    _: TokenData = Depends(require_admin),
    cache: CacheService = Depends(get_cache_service),
):
    return {"success": await cache.clear()}


@admin_router.post("/logs/cleanup")
async def admin_logs_cleanup(
    days: int = Query(config.USAGE_LOG_RETENTION_DAYS, ge=1, le=3650),
    _: TokenData = Depends(require_admin),
    usage_log: UsageLogStore = Depends(get_usage_log),
):
    return {"removed": await usage_log.clean_old_logs(days)}
