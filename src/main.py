# src/main.py
"""
FastAPI application exposing the admission control core.

The transport (webhook or polling bot) posts normalized events to
/api/events with the shared secret in X-Transport-Token and relays
the returned reply. Admin routes are gated by the super admin identity
sent in the X-Admin-Token header. Every route passes the global
per-ip limiter.
"""

import asyncio
import math
import secrets
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional
import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from src.core.config import Settings, load_settings, validate_required_settings
from src.core.exceptions import RateLimitExceeded, Unauthorized
from src.core.logging_config import setup_logging
from src.core.orchestrator import Orchestrator, init_orchestrator
from src.core.pipeline import PipelineOutcome
from src.core.rate_limit_config import get_real_ip, get_rate_limit_message
from src.models.event_models import InboundEvent

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"
admin_token_header = APIKeyHeader(name=ADMIN_TOKEN_HEADER, auto_error=False)
TRANSPORT_TOKEN_HEADER = "X-Transport-Token"
transport_token_header = APIKeyHeader(name=TRANSPORT_TOKEN_HEADER, auto_error=False)
MAINTENANCE_INTERVAL_SECONDS = 60.0


class EventResponse(BaseModel):
    outcome: PipelineOutcome
    reply: Optional[str] = None


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


async def enforce_global_rate_limit(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    """Per-ip limit over every route, public ones included"""
    client_ip = get_real_ip(request, orchestrator.settings.trusted_proxies)
    if not orchestrator.global_limiter.check(client_ip):
        raise RateLimitExceeded(
            get_rate_limit_message("global"),
            key=client_ip,
            retry_after=orchestrator.global_limiter.retry_after(client_ip),
        )


async def enforce_api_rate_limit(
    request: Request,
    admin_token: Optional[str] = Depends(admin_token_header),
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    """Per-ip API limit; the super admin is exempt when the bypass flag is on"""
    if (
        orchestrator.settings.API_RATE_LIMIT_ADMIN_BYPASS
        and admin_token
        and orchestrator.gate.is_authorized(admin_token, action="api_rate_limit_bypass")
    ):
        return

    client_ip = get_real_ip(request, orchestrator.settings.trusted_proxies)
    if not orchestrator.api_limiter.check(client_ip):
        raise RateLimitExceeded(
            get_rate_limit_message("api"),
            key=client_ip,
            retry_after=orchestrator.api_limiter.retry_after(client_ip),
        )


async def require_admin(
    request: Request,
    admin_token: Optional[str] = Depends(admin_token_header),
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    orchestrator.gate.require(admin_token or "", action=f"{request.method} {request.url.path}")


async def verify_transport_token(
    token: Optional[str] = Depends(transport_token_header),
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> None:
    """Only the bot transport may assert a user identity"""
    if token is None:
        logger.warning("Event without transport token")
        raise HTTPException(
            status_code=401,
            detail=f"Missing transport token. Include '{TRANSPORT_TOKEN_HEADER}' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not secrets.compare_digest(token.encode(), orchestrator.settings.TRANSPORT_SECRET.encode()):
        logger.warning("Invalid transport token attempt detected")
        raise HTTPException(
            status_code=401,
            detail="Invalid transport token",
            headers={"WWW-Authenticate": "ApiKey"},
        )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.info(f"Rate limited {request.method} {request.url.path}: {exc}")
    retry_after = max(1, math.ceil(exc.retry_after or 0))
    return JSONResponse(
        status_code=429,
        content={"error": exc.message, "retryAfter": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    # The audit log has the details, the caller gets none of them
    return JSONResponse(status_code=403, content={"error": "Access denied"})


public_router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(enforce_api_rate_limit), Depends(require_admin)])
api_router = APIRouter(prefix="/api", dependencies=[Depends(enforce_api_rate_limit)])


@public_router.get("/", status_code=200)
def read_root():
    return {"status": "ok", "service": "admission-gate"}


@public_router.get("/health", status_code=200)
async def health(orchestrator: Orchestrator = Depends(get_orchestrator)):
    status = await orchestrator.health_check()
    status["timestamp"] = datetime.now(timezone.utc).isoformat()
    return status


@admin_router.get("/admin/status")
async def admin_status(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return {
        "message": "Super admin authenticated",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": orchestrator.get_metrics(),
    }


@api_router.post("/events", response_model=EventResponse, dependencies=[Depends(verify_transport_token)])
async def process_event(event: InboundEvent, orchestrator: Orchestrator = Depends(get_orchestrator)):
    result = await orchestrator.pipeline.process(event)

    if result.outcome == PipelineOutcome.REJECTED:
        retry_after = max(1, math.ceil(orchestrator.bot_limiter.retry_after(event.user_id)))
        return JSONResponse(
            status_code=429,
            content=EventResponse(outcome=result.outcome, reply=result.reply).model_dump(mode="json"),
            headers={"Retry-After": str(retry_after)},
        )

    return EventResponse(outcome=result.outcome, reply=result.reply)


@api_router.get("/sessions/{user_id}", dependencies=[Depends(require_admin)])
async def get_session(user_id: int, orchestrator: Orchestrator = Depends(get_orchestrator)):
    session = await orchestrator.session_store.load(user_id)
    return session.model_dump(mode="json")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Settings are validated in the lifespan, so a missing SUPER_ADMIN_ID
    aborts startup instead of serving requests degraded.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = validate_required_settings(settings) if settings is not None else load_settings()
        setup_logging(config.LOG_LEVEL, config.LOG_DIR)

        logger.info("Admission gate starting...")
        orchestrator = await init_orchestrator(config)
        app.state.orchestrator = orchestrator
        maintenance = asyncio.create_task(orchestrator.maintenance_loop(MAINTENANCE_INTERVAL_SECONDS))
        logger.info("Server is ready to accept connections")

        yield

        logger.info("Admission gate shutting down...")
        maintenance.cancel()
        with suppress(asyncio.CancelledError):
            await maintenance
        await orchestrator.shutdown()

    app = FastAPI(
        title="Admission Gate API",
        version="1.0.0",
        lifespan=lifespan,
        dependencies=[Depends(enforce_global_rate_limit)],
        docs_url=None,
        redoc_url=None,
    )

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Unauthorized, unauthorized_handler)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    app.include_router(public_router)
    app.include_router(admin_router)
    app.include_router(api_router)
    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")
