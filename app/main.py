"""
============================================================================
Evaluation Desk v1.0.0
FastAPI Application Entry Point - Evaluation Back-office Ingress
============================================================================

Reliability Level: L6 Critical
Input Constraints: Hubla webhooks, portal and operator calls via HTTPS
Side Effects: Database writes, Nelogica API calls, registration e-mails

MANDATE:
- Webhooks authenticated by shared token, portal/operator calls by API key
- Remote broker call first, store write second
- No silent failures: every error answers with an error_code

STARTUP:
    1. Logging
    2. Configuration (fail closed on missing broker credentials)
    3. Database connectivity + schema
    4. Broker client, broker service, registration mailer
    5. Realtime session (optional, non-blocking)

============================================================================
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from websockets.exceptions import WebSocketException

from app.api.evaluations import router as evaluations_router
from app.api.registration import router as registration_router
from app.api.webhook import router as webhook_router
from app.broker.nelogica_client import NelogicaApiClient
from app.broker.realtime_client import NelogicaRealtimeClient, RealtimeSessionError
from app.database.session import check_database_connection, get_engine, init_schema
from services.broker_service import BrokerService
from services.desk_config import DeskConfig, get_desk_config
from services.notification_service import RegistrationMailer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once (LOG_LEVEL, default INFO)."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


# ============================================================================
# GLOBAL INSTANCES
# ============================================================================

_broker_client: Optional[NelogicaApiClient] = None
_broker_service: Optional[BrokerService] = None
_registration_mailer: Optional[RegistrationMailer] = None
_realtime_client: Optional[NelogicaRealtimeClient] = None


def get_broker_service() -> Optional[BrokerService]:
    """
    Get the global Broker Service instance.

    Returns:
        BrokerService instance or None if not initialized
    """
    return _broker_service


def get_registration_mailer() -> Optional[RegistrationMailer]:
    return _registration_mailer


def get_realtime_client() -> Optional[NelogicaRealtimeClient]:
    return _realtime_client


def build_broker_service(config: DeskConfig) -> BrokerService:
    client = NelogicaApiClient(
        base_url=config.broker.api_url,
        username=config.broker.username,
        password=config.broker.password,
        timeout=config.broker.request_timeout_seconds,
        safety_margin_seconds=config.broker.token_safety_margin_seconds,
    )
    return BrokerService(
        client,
        environment_id=config.broker.environment_id,
        evaluation_window_days=config.evaluation_window_days,
    )


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup/shutdown of the desk.

    Startup:
        - Verify configuration and database connectivity
        - Create missing tables
        - Build broker service and mailer singletons
        - Connect the realtime session when configured (failure is logged)

    Shutdown:
        - Close realtime session and broker HTTP client
        - Dispose database connections
    """
    global _broker_client, _broker_service, _registration_mailer, _realtime_client

    configure_logging()
    logger.info("=" * 60)
    logger.info("EVALUATION DESK v1.0.0 - STARTUP")
    logger.info(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")

    config = get_desk_config()

    try:
        check_database_connection()
        init_schema()
        logger.info("[OK] Database connection verified")
    except ConnectionError as e:
        logger.critical(f"[DB-000] Database connection failed: {e}")
        raise

    _broker_service = build_broker_service(config)
    _broker_client = _broker_service.api
    _registration_mailer = RegistrationMailer(config.mail)
    logger.info(
        f"[OK] Broker service ready | url={config.broker.api_url} | "
        f"mail_enabled={config.mail.enabled}"
    )

    if config.realtime.enabled:
        _realtime_client = NelogicaRealtimeClient(
            config.realtime.url,
            config.realtime.token,
            keepalive_seconds=config.realtime.keepalive_seconds,
            reconnect_delay_seconds=config.realtime.reconnect_seconds,
        )
        try:
            await _realtime_client.connect()
            logger.info("[OK] Realtime session connected")
        except (OSError, WebSocketException, RealtimeSessionError) as e:
            logger.warning(f"[WS-CLI] Realtime session unavailable at startup: {e}")
            await _realtime_client.close()
            _realtime_client = None

    logger.info("=" * 60)

    yield

    logger.info("EVALUATION DESK - SHUTDOWN INITIATED")
    if _realtime_client is not None:
        await _realtime_client.close()
        _realtime_client = None
    if _broker_client is not None:
        await _broker_client.aclose()
    _broker_client = None
    _broker_service = None
    _registration_mailer = None
    get_engine().dispose()
    logger.info("[OK] Database connections closed")


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

app = FastAPI(
    title="Evaluation Desk",
    description=(
        "Back-office of the trader evaluation program.\n\n"
        "Receives Hubla payment webhooks, serves the registration portal and "
        "drives Nelogica account provisioning through the evaluation lifecycle."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler: log and answer with SYS-500."""
    error_code = "SYS-500"
    logger.exception(f"[{error_code}] Unhandled exception | path={request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error_code": error_code,
            "message": "Internal server error. This incident has been logged.",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


# ============================================================================
# ROUTERS
# ============================================================================

app.include_router(webhook_router, prefix="/api/webhook", tags=["Webhooks"])
app.include_router(registration_router, prefix="/api", tags=["Registration"])
app.include_router(evaluations_router, prefix="/api", tags=["Evaluations"])


# ============================================================================
# SYSTEM ENDPOINTS
# ============================================================================

@app.get("/health", tags=["System"])
async def health_check():
    """Lightweight health check for load balancers and monitoring."""
    try:
        check_database_connection()
        return {"status": "healthy", "database": "connected"}
    except ConnectionError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
        )


@app.get("/metrics", tags=["System"])
async def metrics():
    """Prometheus metrics in text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
