import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tabulator import __version__
from tabulator.config.feature_flags import feature_flags
from tabulator.config.settings import settings
from tabulator.database import AsyncSessionLocal, close_db, init_db
from tabulator.errors import register_exception_handlers
from tabulator.middleware.rate_limit import limiter
from tabulator.realtime import ws_server
from tabulator.realtime.connection_manager import ConnectionManager, set_connection_manager
from tabulator.realtime.draft_debouncer import DraftDebouncer, set_draft_debouncer
from tabulator.realtime.redis_adapter import create_broadcast_adapter
from tabulator.routes import router
from tabulator.services.live_event_service import set_broadcast_adapter

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting tabulation engine...")
    try:
        await init_db()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    adapter = await create_broadcast_adapter(
        use_redis=settings.BROADCAST_BACKEND == "redis",
        redis_url=settings.REDIS_URL
    )
    set_broadcast_adapter(adapter)
    logger.info(f"✓ Broadcast backend: {type(adapter).__name__}")

    manager = ConnectionManager(adapter)
    set_connection_manager(manager)

    debouncer = DraftDebouncer(AsyncSessionLocal)
    set_draft_debouncer(debouncer)
    logger.info(f"✓ Draft debounce: {settings.DRAFT_DEBOUNCE_MS}ms")
    logger.info(f"Feature flags: {feature_flags.get_all_flags()}")

    yield

    logger.info("Shutting down tabulation engine...")
    try:
        await debouncer.close()
        set_draft_debouncer(None)
        await manager.close()
        set_connection_manager(None)
        await adapter.close()
        set_broadcast_adapter(None)
        await close_db()
        logger.info("Database connection closed")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


app = FastAPI(
    title="Pageant Tabulation API",
    description="Live tabulation and session synchronization for judged competitions",
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)

app.state.limiter = limiter
logger.info("✓ Rate limiter configured")

origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]
origins.extend(settings.ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "broadcast_backend": settings.BROADCAST_BACKEND,
        "version": __version__
    }


app.include_router(router)
app.include_router(ws_server.router)
