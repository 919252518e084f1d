# services/dessert/main.py
import logging
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables before config is read
load_dotenv()

from shared.database import close_db, get_db, init_db
from shared.llm_client import LLMClient
from shared.middleware import add_middleware_to_app
from shared.redis_client import close_redis, init_redis

from services.dessert import config
from services.dessert.background import start_background_tasks, stop_background_tasks
from services.dessert.cache_service import CacheService, CacheStore, MemoryCache
from services.dessert.credit_service import CreditLedger
from services.dessert.errors import UserNotFoundError
from services.dessert.generator import DessertGenerator
from services.dessert.routes import admin_router, dessert_router, user_router
from services.dessert.usage_log import UsageLogStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    config.validate_env()
    await init_db()

    try:
        await init_redis()
    except Exception as e:
        # Only the rate limiter uses Redis and it fails open
        logger.warning(f"⚠️ STARTUP: Redis unavailable, rate limiting disabled: {e}")

    app.state.memory_cache = MemoryCache(config.CACHE_MAX_SIZE, config.CACHE_TTL_SECONDS)
    app.state.generator = DessertGenerator(
        LLMClient(config.GEMINI_API_KEY, config.OPENAI_API_KEY),
        timeout_seconds=config.GENERATION_TIMEOUT_SECONDS,
    )
    if app.state.generator.mock_mode:
        logger.warning("🎭 STARTUP: No LLM key configured, serving mock desserts")

    db = await get_db()
    usage_log = UsageLogStore(db)
    await start_background_tasks(
        CacheService(app.state.memory_cache, CacheStore(db)),
        CreditLedger(db, usage_log),
        usage_log,
    )
    logger.info("🍰 STARTUP: Dessert service ready")
    yield
    # Shutdown
    await stop_background_tasks()
    await close_db()
    await close_redis()


# Create FastAPI app
app = FastAPI(
    title="sweetmagic Dessert Service",
    version="1.0.0",
    description="Credits-gated AI dessert recipe generation",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app, service_name="dessert", max_request_size=64 * 1024)


@app.exception_handler(UserNotFoundError)
async def user_not_found_handler(request: Request, exc: UserNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"error": True, "message": "User not found", "status_code": 404},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "dessert", "version": "1.0.0"}


# Include routers
app.include_router(dessert_router, prefix="/desserts", tags=["desserts"])
app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "services.dessert.main:app",
        host="0.0.0.0",
        port=port,
        reload=config.ENVIRONMENT == "development",
    )
