import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.api import api_router
from app.core.abuse_gate import AbuseGate, GatePolicy
from app.core.config import get_settings
from app.core.errors import register_exception_handlers
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.core.security_headers import SecurityHeadersMiddleware
from app.services.window_sweeper import WindowSweeper

settings = get_settings()

# Module loggers (abuse gate, captcha, sweeper) emit INFO diagnostics
logging.getLogger("app").setLevel(logging.INFO)

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["GET", "POST", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    sweeper = WindowSweeper(app.state.abuse_gate, settings.abuse_sweep_interval_seconds)
    await sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(
    title="EngineO Auth Abuse Gate",
    description="Login risk gating and CAPTCHA challenges for EngineO",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

# One gate per process, injected into handlers via app.api.deps.get_abuse_gate
app.state.abuse_gate = AbuseGate(GatePolicy.from_settings(settings))

# Rate limiting
app.state.limiter = limiter
register_exception_handlers(app)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Security headers (added first, runs last in middleware chain)
app.add_middleware(SecurityHeadersMiddleware)

# CORS
if settings.cors_origins.strip() == "*":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    origins = [origin.strip() for origin in settings.cors_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=["Content-Type", "X-Internal-Api-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.get("/health")
def health_check():
    return {"status": "ok"}
