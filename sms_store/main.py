"""sms-store FastAPI application.

Responsibilities:
- Serve the read endpoint: `GET /v0/user/{user_id}/messages`
- Start a background Kafka consumer that writes SMS records into MongoDB

Why run the consumer inside this process?
- The service both consumes and serves HTTP from a single deployment.
- The consumer loop blocks, so it runs in a background thread.

Nothing is module-global besides `app`: the repository, the read service and
the consumer are built on startup and kept on `app.state`.
"""

from __future__ import annotations

import re
from http import HTTPStatus

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .errors import InvalidIdentifier, StorageError, StorageUnavailable
from .kafka_consumer import SmsConsumer
from .logger import setup_logging
from .models import SmsRecord
from .mongo import SmsRepository, connect, ensure_indexes, get_collection
from .service import SmsService

logger = structlog.get_logger(__name__)

# Optional "+", a non-zero digit, then 9 to 14 more digits.
PHONE_NUMBER_RE = re.compile(r"^\+?[1-9]\d{9,14}$")

MAX_LIMIT = 1000

app = FastAPI(title="SMS Store")


@app.on_event("startup")
def on_startup() -> None:
    """Startup hook.

    - Validate configuration.
    - Connect to MongoDB and make sure the indexes exist.
    - Start the Kafka consumer thread.

    Any failure here aborts startup.
    """
    setup_logging(config.LOG_LEVEL)
    config.validate()

    db = connect(config.MONGO_URI, config.MONGO_DATABASE)
    collection = get_collection(db)
    ensure_indexes(collection)

    repository = SmsRepository(collection)
    consumer = SmsConsumer(repository)
    consumer.start()

    app.state.db = db
    app.state.repository = repository
    app.state.service = SmsService(repository)
    app.state.consumer = consumer
    logger.info("SMS Store started", port=config.SERVER_PORT, topic=config.KAFKA_TOPIC)


@app.on_event("shutdown")
def on_shutdown() -> None:
    """Shutdown hook: stop the consumer first, then close the Mongo client."""
    consumer = getattr(app.state, "consumer", None)
    if consumer is not None:
        consumer.stop()

    db = getattr(app.state, "db", None)
    if db is not None:
        db.client.close()
        logger.info("MongoDB connection closed")


def error_response(status: HTTPStatus, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.value,
        content={"error": status.phrase, "message": message},
    )


@app.exception_handler(InvalidIdentifier)
def handle_invalid_identifier(request: Request, exc: InvalidIdentifier) -> JSONResponse:
    return error_response(HTTPStatus.BAD_REQUEST, str(exc))


@app.exception_handler(RequestValidationError)
def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return error_response(HTTPStatus.BAD_REQUEST, errors)


@app.exception_handler(StorageError)
def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure", path=request.url.path, error=str(exc))
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "Failed to retrieve messages")


def get_service(request: Request) -> SmsService:
    return request.app.state.service


def validate_user_id(user_id: str) -> str:
    if not PHONE_NUMBER_RE.match(user_id):
        logger.warning("Invalid user_id format", user_id=user_id)
        raise InvalidIdentifier("Invalid user_id format. Expected phone number.")
    return user_id


@app.get("/health")
def health() -> dict[str, str]:
    """Basic liveness endpoint."""
    return {"status": "UP", "service": "sms-store"}


@app.get("/health/ready")
def ready(request: Request) -> JSONResponse:
    """Readiness: MongoDB answers a ping and the consumer loop is running."""
    body = {"status": "UP", "mongo": "UP", "kafka": "UP"}

    try:
        request.app.state.repository.health_check()
    except StorageUnavailable as e:
        logger.warning("MongoDB not ready", error=str(e))
        body["mongo"] = "DOWN"

    try:
        request.app.state.consumer.health_check()
    except RuntimeError as e:
        logger.warning("Kafka consumer not ready", error=str(e))
        body["kafka"] = "DOWN"

    if "DOWN" in (body["mongo"], body["kafka"]):
        body["status"] = "DOWN"
        return JSONResponse(status_code=HTTPStatus.SERVICE_UNAVAILABLE.value, content=body)
    return JSONResponse(status_code=HTTPStatus.OK.value, content=body)


@app.get("/v0/user/{user_id}/messages", response_model=list[SmsRecord])
def get_user_messages(
    user_id: str,
    limit: int | None = Query(default=None, ge=1, le=MAX_LIMIT),
    service: SmsService = Depends(get_service),
):
    """Return the user's messages, newest first.

    Path params:
        user_id: phone number, e.g. +15551234567

    Query params:
        limit: optional, return only the N most recent messages

    Returns:
        A JSON array of records. Empty array when the user has none.
    """
    validate_user_id(user_id)

    if limit is None:
        return service.get_messages_for_user(user_id)
    return service.get_recent_messages(user_id, limit)


@app.get("/v0/user/{user_id}/messages/count")
def get_user_message_count(user_id: str, service: SmsService = Depends(get_service)):
    validate_user_id(user_id)
    return {"user_id": user_id, "count": service.get_message_count(user_id)}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run("sms_store.main:app", host="0.0.0.0", port=config.SERVER_PORT)
