# api/server.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from loguru import logger
from prometheus_client import make_asgi_app
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.deps import get_services
from api.errors import install_error_handlers
from api.routes.deployments import router as deployments_router
from api.routes.webhook import limiter
from api.routes.webhook import router as webhook_router
from core.errors import OrchestratorError
from core.security import check_secrets_on_startup

# --- Lifespan Manager (Startup/Shutdown) ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = get_services()
    secrets = services.secrets
    check_secrets_on_startup(
        secrets.get_secret("API_KEY"),
        secrets.get_secret("GITHUB_WEBHOOK_SECRET"),
        strict=services.settings.strict_secrets,
    )
    try:
        workloads = await services.orchestrator.list_workloads()
        logger.info(f"Container engine reachable. Known workloads: {len(workloads)}")
    except OrchestratorError as e:
        logger.warning(f"Could not reach container engine: {e}")

    yield

    logger.info(
        f"Shutting down; {len(services.registry)} deployment record(s) are not persisted"
    )


# --- App Definition ---
app = FastAPI(title="PyPaaS API", lifespan=lifespan)

# --- Rate Limiting (SlowAPI) ---
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request, exc):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded"},
    )


app.add_middleware(SlowAPIMiddleware)
install_error_handlers(app)

# Mount Prometheus Metrics Endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/")
def root():
    return {"message": "PyPaaS deployment orchestrator is running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(webhook_router)
app.include_router(deployments_router)
