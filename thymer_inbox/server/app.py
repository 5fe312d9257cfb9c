"""FastAPI application exposing the delivery queue and sync triggers."""

import hmac
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from thymer_inbox import __version__
from thymer_inbox.delivery.queue import DeliveryQueue
from thymer_inbox.delivery.streaming import drain_stream
from thymer_inbox.exceptions import UnknownSourceError
from thymer_inbox.models.queue import SubmittedItem
from thymer_inbox.models.record import SourceKind
from thymer_inbox.sync.scheduler import Scheduler

log = structlog.stdlib.get_logger()

KNOWN_SOURCES = {kind.value for kind in SourceKind}


class ApiError(Exception):
    """Error answered as ``{"error": message}`` with the given status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class PrivateNetworkAccessMiddleware:
    """Adds ``Access-Control-Allow-Private-Network: true`` to every HTTP response.

    Browsers send a private network preflight before a public origin may call
    a server on localhost; the header has to be on the preflight answer too,
    so this wraps the CORS middleware rather than sitting behind it.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_header(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["Access-Control-Allow-Private-Network"] = "true"
            await send(message)

        await self.app(scope, receive, send_with_header)


def require_token(request: Request) -> None:
    """Accept ``Authorization: Bearer <token>`` or ``?token=<token>``."""
    expected: str = request.app.state.token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        supplied = header[len("Bearer ") :].strip()
    else:
        supplied = request.query_params.get("token", "")

    if not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
        log.warning("request_unauthorized", path=request.url.path)
        raise ApiError(401, "Unauthorized")


def get_queue(request: Request) -> DeliveryQueue:
    return request.app.state.queue


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/queue", dependencies=[Depends(require_token)])
async def submit_item(request: Request, queue: DeliveryQueue = Depends(get_queue)) -> dict:
    """Put a ready-made item straight into the queue, bypassing the sync engine."""
    try:
        payload = json.loads(await request.body())
    except ValueError:
        raise ApiError(400, "Invalid JSON") from None

    if not isinstance(payload, dict):
        raise ApiError(400, "Invalid JSON")
    if not payload.get("content"):
        raise ApiError(400, "content required")

    try:
        submitted = SubmittedItem.model_validate(payload)
    except ValidationError as e:
        raise ApiError(400, _first_error(e)) from None

    item = queue.submit(
        submitted.content,
        action=submitted.action,
        collection=submitted.collection,
        title=submitted.title,
        created_at=submitted.created_at,
    )
    return {"success": True, "id": item.id}


@router.get("/stream", dependencies=[Depends(require_token)])
async def stream(request: Request, queue: DeliveryQueue = Depends(get_queue)) -> StreamingResponse:
    settings = request.app.state
    return StreamingResponse(
        drain_stream(
            queue,
            request.is_disconnected,
            poll_interval=settings.stream_poll_interval,
            window=settings.stream_window,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/pending", dependencies=[Depends(require_token)])
def pending(queue: DeliveryQueue = Depends(get_queue)) -> Response:
    item = queue.pop_oldest()
    if item is None:
        return Response(status_code=204)
    return JSONResponse(item.to_wire())


@router.get("/peek", dependencies=[Depends(require_token)])
def peek(queue: DeliveryQueue = Depends(get_queue)) -> dict:
    items = queue.peek_all()
    return {"count": len(items), "items": [item.to_wire() for item in items]}


@router.post("/sync/{source}", dependencies=[Depends(require_token)])
def trigger_sync(
    source: str,
    resync: bool = False,
    scheduler: Scheduler = Depends(get_scheduler),
) -> dict:
    """Start a sync (or a wipe-and-resync) in the background and return at once."""
    if source not in KNOWN_SOURCES:
        raise ApiError(404, f"Unknown source: {source}")

    try:
        scheduler.trigger(source, resync=resync)
    except UnknownSourceError:
        raise ApiError(400, f"{source} sync not configured") from None

    return {"status": "resync started" if resync else "sync started"}


@router.post("/readwise-sync", dependencies=[Depends(require_token)])
def trigger_readwise_sync(
    resync: bool = False, scheduler: Scheduler = Depends(get_scheduler)
) -> dict:
    return trigger_sync(SourceKind.READWISE.value, resync=resync, scheduler=scheduler)


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return "Invalid request"
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first['msg']}" if location else first["msg"]


def create_app(
    queue: DeliveryQueue,
    scheduler: Scheduler,
    token: str,
    stream_poll_interval: float = 2.0,
    stream_window: float = 25.0,
    allowed_origins: list[str] | None = None,
    manage_scheduler: bool = True,
) -> FastAPI:
    """
    Build the HTTP application around an existing queue and scheduler.

    Args:
        queue: Queue shared with the scheduler's batch callback
        scheduler: Scheduler whose sources can be triggered over HTTP
        token: Shared secret required on every route except ``/health``
        stream_poll_interval: Seconds between queue drains on ``/stream``
        stream_window: Seconds before ``/stream`` ends and the client reconnects
        allowed_origins: CORS origins, any origin when None
        manage_scheduler: Start and stop the scheduler with the application

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_scheduler:
            scheduler.start()
        log.info("server_started", sources=scheduler.sources)
        try:
            yield
        finally:
            if manage_scheduler:
                scheduler.stop()
            log.info("server_stopped")

    app = FastAPI(title="Thymer inbox", version=__version__, lifespan=lifespan)
    app.state.queue = queue
    app.state.scheduler = scheduler
    app.state.token = token
    app.state.stream_poll_interval = stream_poll_interval
    app.state.stream_window = stream_window

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = exc.errors()
        message = details[0]["msg"] if details else "Invalid request"
        return JSONResponse({"error": message}, status_code=400)

    app.include_router(router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    # Added last so it wraps CORS and also marks preflight answers
    app.add_middleware(PrivateNetworkAccessMiddleware)

    return app
