import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import settings
from app.errors import StoreUnavailable
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_data
from app.metrics import get_metrics, get_metrics_content_type, record_send_outcome
from app.pipelines import IngestionPipeline, SendPipeline
from app.platform_client import PlatformClient
from app.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    MessagesListResponse,
    MessageType,
    SendRequest,
    SendResponse,
    WebhookResponse,
)
from app.storage import MessageStore


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: open the connection pool and create tables. A database that
    cannot be reached here aborts startup.
    Shutdown: close the Graph API client and the pool.
    """
    store = MessageStore.from_settings(settings)
    store.init_db()
    app.state.store = store
    app.state.platform_client = PlatformClient.from_settings(settings)
    logger.info("Webhook bridge started", extra={"phone_number_id": settings.PHONE_NUMBER_ID})
    yield
    app.state.platform_client.close()
    store.dispose()


app = FastAPI(
    title="WhatsApp Webhook Bridge",
    description="Stores WhatsApp Business webhook messages and sends text messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_platform_client(request: Request) -> PlatformClient:
    return request.app.state.platform_client


def get_ingestion_pipeline(store: MessageStore = Depends(get_store)) -> IngestionPipeline:
    return IngestionPipeline(store, settings.VERIFY_TOKEN)


def get_send_pipeline(
    store: MessageStore = Depends(get_store),
    client: PlatformClient = Depends(get_platform_client),
) -> SendPipeline:
    return SendPipeline(store, client)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # /send always answers with {success, error}
    if request.url.path == "/send":
        record_send_outcome("bad_request")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=SendResponse(success=False, error="invalid request body").to_body(),
        )
    return await request_validation_exception_handler(request, exc)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response, store: MessageStore = Depends(get_store)) -> HealthResponse:
    """Readiness probe - 200 only if the database answers, else 503."""
    if not store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Webhook Routes
# =============================================================================

@app.get(
    "/webhook",
    response_class=PlainTextResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing hub.mode or hub.verify_token"},
        403: {"model": ErrorResponse, "description": "Verify token mismatch"},
    }
)
def webhook_verify(
    mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> PlainTextResponse:
    """
    Subscription handshake: echo hub.challenge when hub.mode is "subscribe"
    and hub.verify_token matches VERIFY_TOKEN.
    """
    status_code, body = pipeline.verify_challenge(mode, token, challenge)
    if status_code != status.HTTP_200_OK:
        raise HTTPException(status_code=status_code, detail=body)
    return PlainTextResponse(content=body)


@app.post("/webhook", response_model=WebhookResponse)
async def webhook_receive(
    request: Request,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
) -> WebhookResponse:
    """
    Ingest a WhatsApp Business notification.

    Always answers 200 once the body has been read: the platform redelivers
    anything else, including batches that were already partly stored.
    """
    raw_body = await request.body()
    logger.debug(f"Webhook body size: {len(raw_body)} bytes")

    # Runs to completion in a worker thread even if the client goes away
    summary = await run_in_threadpool(pipeline.ingest, raw_body)
    log_request_data(request, **summary.model_dump())

    return WebhookResponse(status="ok")


# =============================================================================
# Send Route
# =============================================================================

@app.post(
    "/send",
    response_model=SendResponse,
    responses={
        400: {"model": SendResponse, "description": "Missing 'to' or 'message'"},
        502: {"model": SendResponse, "description": "Graph API call failed"},
    }
)
def send_message(
    payload: SendRequest,
    request: Request,
    pipeline: SendPipeline = Depends(get_send_pipeline),
) -> JSONResponse:
    """Send a text message through the Graph API and record it as sent."""
    status_code, result = pipeline.handle_send(payload)
    log_request_data(request, message_id=result.message_id, result="sent" if result.success else "failed")
    return JSONResponse(status_code=status_code, content=result.to_body())


# =============================================================================
# Messages Route
# =============================================================================

@app.get("/messages", response_model=MessagesListResponse)
def list_messages(
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of messages to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of messages to skip")] = 0,
    type: Annotated[MessageType | None, Query(description="sent or received")] = None,
    from_param: Annotated[str | None, Query(alias="from", description="Filter by sender (exact match)")] = None,
    store: MessageStore = Depends(get_store),
) -> MessagesListResponse:
    """
    List the message log ordered by timestamp ASC, message_id ASC.

    Response:
        - data: messages in this page
        - total: count matching filters (ignoring limit/offset)
    """
    messages, total = store.list_messages(
        limit=limit,
        offset=offset,
        type=type,
        from_phone=from_param,
    )
    logger.info(f"GET /messages: returned {len(messages)} of {total} messages")

    return MessagesListResponse(
        data=[MessageResponse.model_validate(m, from_attributes=True) for m in messages],
        total=total,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


def run() -> None:
    """Console entry point: serve on PORT."""
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT, log_config=None)
