import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from offer_portal.access.service import AccessLinkManager
from offer_portal.access.store import MemoryAccessTokenStore, SqlAccessTokenStore
from offer_portal.auth.service import publish_auth_health
from offer_portal.config import Settings
from offer_portal.core.clock import Clock, utc_now
from offer_portal.core.exceptions import register_exception_handlers
from offer_portal.core.ratelimit import DECISION_BUCKET, READ_BUCKET, RateLimit, RateLimiter
from offer_portal.database import Base, build_engine, build_session_factory
from offer_portal.decisions.service import DecisionWorkflow
from offer_portal.documents.pages import render_template
from offer_portal.documents.storage import LocalBlobStore, MemoryBlobStore
from offer_portal.documents.store import MemoryDocumentStore, SqlDocumentStore

# Import all models so Base.metadata knows about them
import offer_portal.access.models  # noqa: F401
import offer_portal.documents.models  # noqa: F401

logger = logging.getLogger(__name__)

# Customer-facing paths whose responses must never be cached or sniffed.
SENSITIVE_PREFIXES = ("/d/", "/customers/", "/offers/", "/invoices/")


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = application.state.settings
    clock = application.state.clock
    engine = None

    if settings.uses_sql:
        Path(settings.storage_path).mkdir(parents=True, exist_ok=True)
        if settings.is_sqlite:
            db_path = settings.database_url.split("///")[-1]
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = build_engine(settings.database_url)

        # Auto-create tables for SQLite; other databases go through alembic
        if settings.is_sqlite:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        session_factory = build_session_factory(engine)
        application.state.engine = engine
        application.state.session_factory = session_factory
        document_store = SqlDocumentStore(session_factory)
        access_store = SqlAccessTokenStore(session_factory)
        application.state.blob_store = LocalBlobStore(settings.storage_path)
    else:
        document_store = MemoryDocumentStore()
        access_store = MemoryAccessTokenStore()
        application.state.blob_store = MemoryBlobStore()

    application.state.document_store = document_store
    application.state.access_links = AccessLinkManager(
        access_store,
        default_ttl_days=settings.access_link_default_ttl_days,
        clock=clock,
    )
    application.state.decision_workflow = DecisionWorkflow(document_store, clock=clock)

    if publish_auth_health(settings) == "misconfigured":
        logger.warning(
            "REQUIRE_PUBLISH_API_KEY is set but PUBLISH_API_KEY is empty; "
            "publishing is disabled"
        )
    logger.info("Offer portal started with %s storage", settings.storage_mode)

    yield

    if engine is not None:
        await engine.dispose()


def create_app(settings: Settings | None = None, clock: Clock = utc_now) -> FastAPI:
    settings = settings or Settings()

    fastapi_app = FastAPI(
        title="Offer Portal",
        description="Customer portal for published offers and invoices",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings
    fastapi_app.state.clock = clock
    fastapi_app.state.rate_limiter = RateLimiter(
        {
            READ_BUCKET: RateLimit(settings.read_rate_limit, settings.read_rate_window_seconds),
            DECISION_BUCKET: RateLimit(
                settings.decision_rate_limit, settings.decision_rate_window_seconds
            ),
        },
        max_buckets=settings.rate_limit_max_buckets,
    )

    # CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @fastapi_app.middleware("http")
    async def sensitive_headers(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(SENSITIVE_PREFIXES):
            response.headers["Cache-Control"] = "no-store, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    # Register routers
    from offer_portal.access.router import router as access_router
    from offer_portal.decisions.router import router as decisions_router
    from offer_portal.documents.router import router as documents_router

    fastapi_app.include_router(documents_router, tags=["documents"])
    fastapi_app.include_router(decisions_router, tags=["decisions"])
    fastapi_app.include_router(access_router, prefix="/customers", tags=["customers"])

    # System endpoints
    @fastapi_app.get("/health")
    async def health():
        return {"data": {"status": "healthy", "ts": clock().isoformat()}}

    @fastapi_app.get("/admin/setup", response_class=HTMLResponse)
    async def setup_page():
        return HTMLResponse(
            render_template(
                "setup.html",
                public_base_url=settings.normalized_base_url,
                storage_mode=settings.storage_mode,
                publish_key_configured=bool(settings.normalized_publish_key),
                strict_mode=settings.require_publish_api_key,
                publish_auth=publish_auth_health(settings),
            )
        )

    # Register exception handlers
    register_exception_handlers(fastapi_app)

    return fastapi_app


app = create_app()


def run() -> None:
    import uvicorn

    settings = app.state.settings
    uvicorn.run("offer_portal.main:app", host=settings.host, port=settings.port)
