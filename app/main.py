import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config
from app.auth import router as auth_router
from app.bootstrap import bootstrap_catalog
from app.cache import CacheStore
from app.dashboard import Dashboard
from app.db_core import dispose_core_engine
from app.db_router import BranchRouter, EngineRegistry
from app.routers.reports import router as reports_router

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Branch Reports API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-lifetime objects shared by every tenant
app.state.engine_registry = EngineRegistry()
app.state.cache = CacheStore()
app.state.branch_router = BranchRouter(app.state.engine_registry)
app.state.dashboard = Dashboard(app.state.branch_router, app.state.cache)


@app.get("/")
def root():
    return {"message": "Branch Reports API is running"}


app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(reports_router, prefix="/api", tags=["reports"])


@app.on_event("startup")
def _bootstrap_catalog() -> None:
    """Bring the catalog schema up to date and promote configured admins."""

    bootstrap_catalog()


@app.on_event("shutdown")
def _dispose_engines() -> None:
    app.state.dashboard.close()
    app.state.engine_registry.dispose()
    dispose_core_engine()
    logger.info("Disposed database engines")
