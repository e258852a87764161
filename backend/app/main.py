from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy import text

VERSION = "1.0.0"

from app.config import get_settings
from app.logging_config import setup_logging, get_logger
from app.models.database import Base, engine, AsyncSessionLocal
from app.models import entities  # noqa: F401  registers all models
from app.utils.redis_client import get_redis, close_redis
from app.utils.telemetry import setup_telemetry, shutdown_telemetry
from app.middleware.pure_asgi import RequestContextMiddleware
from app.schemas.schemas import HealthOut
from app.api import views

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = get_logger("main")


def _uses_redis() -> bool:
    return settings.COUNTER_STORE_BACKEND == "redis" or settings.VIEW_KEY_LOCK_ENABLED


async def _check_database() -> str:
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        return f"err:{type(e).__name__}"


async def _check_redis() -> str:
    try:
        redis = await get_redis()
        await redis.ping()
        return "ok"
    except Exception as e:
        return f"err:{type(e).__name__}"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "viewcounter_starting",
        version=VERSION,
        env=settings.ENVIRONMENT,
        store=settings.COUNTER_STORE_BACKEND,
    )

    # Store failures at startup are logged; requests will answer 500 until it recovers
    if settings.ENVIRONMENT == "development" and settings.COUNTER_STORE_BACKEND == "sql":
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.error("store_connect_error", store="sql", error=str(e))

    checks = {"database": await _check_database()} if settings.COUNTER_STORE_BACKEND == "sql" else {}
    if _uses_redis():
        checks["redis"] = await _check_redis()
    for name, status in checks.items():
        if status == "ok":
            logger.info("store_connected", store=name)
        else:
            logger.error("store_connect_error", store=name, error=status)

    setup_telemetry(app, engine)
    yield

    logger.info("shutdown_begin")
    shutdown_telemetry()
    await close_redis()
    await engine.dispose()
    logger.info("shutdown_complete")


api = FastAPI(
    title=settings.APP_NAME,
    description="Per-repository view counter serving shields.io badge payloads",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
api.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

metrics_app = make_asgi_app()
api.mount("/metrics", metrics_app)

api.include_router(views.router)


@api.get("/health", response_model=HealthOut)
async def health():
    checks = {"api": "ok"}
    if settings.COUNTER_STORE_BACKEND == "sql":
        checks["database"] = await _check_database()
    if _uses_redis():
        checks["redis"] = await _check_redis()

    ok = all(v == "ok" for v in checks.values())
    return {"status": "healthy" if ok else "degraded", "version": VERSION, "checks": checks}


# Pure ASGI middleware wraps the FastAPI app AFTER routes are registered
app = RequestContextMiddleware(api)


def run():
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT)
