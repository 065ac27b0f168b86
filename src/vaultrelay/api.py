"""FastAPI application for the vault relay.

Every /api route maps onto exactly one VaultStore call and answers with a
success/error envelope: ``{"success": true, ...}`` or
``{"success": false, "error": "..."}``.
"""

import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import fields
from typing import Annotated, Any, Callable

from fastapi import Body, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import jobs
from .metrics import metrics
from .options import RelayOptions
from .ratelimit import (
    create_limit,
    global_limit,
    limiter,
    nuke_limit,
    read_limit,
    retry_after,
    write_limit,
)
from .store import MAX_ACK_BATCH, MAX_BLOB_LENGTH, VaultFull, VaultStore

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 2 * 1024 * 1024

_PRINTABLE_ASCII = re.compile(r"[\x20-\x7E]+")
_USER_ID_CHARS = re.compile(r"[A-Za-z0-9+/=_-]+")


def is_valid_id(value: Any) -> bool:
    """Vault and message ids: 8-512 printable ASCII characters."""
    return (
        isinstance(value, str)
        and 8 <= len(value) <= 512
        and _PRINTABLE_ASCII.fullmatch(value) is not None
    )


def is_valid_user_id(value: Any) -> bool:
    """User ids: 16-128 characters of base64/base64url alphabet."""
    return (
        isinstance(value, str)
        and 16 <= len(value) <= 128
        and _USER_ID_CHARS.fullmatch(value) is not None
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the store and run the sweep job for the app's lifetime."""
    options = RelayOptions()
    app.state.options = options
    app.state.store = VaultStore(
        max_messages=options.max_messages_per_vault,
        message_ttl_ms=options.message_ttl_ms,
    )
    limiter.enabled = bool(options.rate_limits_enabled)
    assert options.slow_operation_ms is not None
    metrics.slow_operation_ms = options.slow_operation_ms

    logger.info(f"Relay starting with options {options.to_dict()}")
    from_env = [f.name for f in fields(options) if options.from_env(f.name)]
    if from_env:
        logger.info(f"Options set from environment: {', '.join(from_env)}")

    sweep_task = None
    if options.sweep_enabled:
        assert options.sweep_interval_seconds is not None
        sweep_task = jobs.schedule_sweep(app.state.store, options.sweep_interval_seconds)

    yield

    jobs.stop_sweep()
    if sweep_task is not None:
        # Let an in-flight pass finish
        await sweep_task
    app.state.store.clear()


app = FastAPI(
    title="vaultrelay",
    description="Ephemeral, content-blind relay for encrypted blobs",
    version="0.1.0",
    lifespan=lifespan,
)

# Add rate limiter to app
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


# --- Middleware ---


def _endpoint_name(path: str) -> str:
    """Collapse a request path into a metrics bucket."""
    if path.startswith("/api/"):
        return path[len("/api/") :] or "api"
    if path == "/api":
        return "api"
    if path.startswith("/admin"):
        return "admin"
    if path in ("/health", "/metrics"):
        return path[1:]
    return "other"


@app.middleware("http")
async def add_timing_middleware(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    metrics.record_request(_endpoint_name(request.url.path), duration_ms)
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.1f}"

    return response


@app.middleware("http")
async def guard_middleware(request: Request, call_next):
    """Reject oversized bodies and add security headers."""
    try:
        length = int(request.headers.get("content-length") or 0)
    except ValueError:
        length = 0
    if length > MAX_BODY_BYTES:
        return JSONResponse({"success": False, "error": "Request body too large"}, status_code=413)

    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


# --- Error envelopes ---


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error = "not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
    return JSONResponse(
        {"success": False, "error": error},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    scope = exc.limit.scope
    logger.warning(f"Rate limit '{scope}' exceeded for {get_remote_address(request)}")
    metrics.record_rate_limited(scope)
    return JSONResponse(
        {"success": False, "error": exc.detail},
        status_code=429,
        headers={"Retry-After": str(retry_after(request, exc.limit))},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"success": False, "error": "invalid request body"}, status_code=400)


# --- Request Models ---


class RelayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VaultCreateRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")
    vault_type: Any = Field(default=None, alias="vaultType")


class VaultJoinRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")
    user_id: Any = Field(default=None, alias="userId")
    vault_type: Any = Field(default=None, alias="vaultType")


class VaultLeaveRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")
    user_id: Any = Field(default=None, alias="userId")


class PostMessageRequest(RelayRequest):
    id: Any = None
    vault_id: Any = Field(default=None, alias="vaultId")
    blob: Any = None


class GetMessagesRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")
    since: Any = None


class AckMessagesRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")
    message_ids: Any = Field(default=None, alias="messageIds")
    user_id: Any = Field(default=None, alias="userId")


class ParticipantCountRequest(RelayRequest):
    vault_id: Any = Field(default=None, alias="vaultId")


class NukeUserRequest(RelayRequest):
    vault_ids: Any = Field(default=None, alias="vaultIds")
    user_id: Any = Field(default=None, alias="userId")


# --- Helpers ---


def get_store(request: Request) -> VaultStore:
    return request.app.state.store


def require_admin(request: Request, x_admin_token: str | None) -> None:
    """Check X-Admin-Token when the relay is configured with one."""
    options: RelayOptions = request.app.state.options
    if not options.admin_token:
        return
    if not x_admin_token:
        raise HTTPException(401, "X-Admin-Token header required")
    if x_admin_token != options.admin_token:
        raise HTTPException(403, "Invalid admin token")


# --- Relay Endpoints ---


@app.post("/api/vault_create")
@create_limit
@write_limit
@global_limit
def vault_create(body: VaultCreateRequest, request: Request):
    """Create a vault if it does not exist yet. The first caller picks the type."""
    if not is_valid_id(body.vault_id):
        raise HTTPException(400, "invalid vaultId")

    result = get_store(request).create_or_join(body.vault_id, body.vault_type)
    return {
        "success": True,
        "vaultType": result.vault_type,
        "participantCount": result.participant_count,
    }


@app.post("/api/vault_join")
@global_limit
def vault_join(body: VaultJoinRequest, request: Request):
    """Join a vault, creating it if needed. Private vaults hold two users."""
    if not is_valid_id(body.vault_id) or not is_valid_user_id(body.user_id):
        raise HTTPException(400, "invalid vaultId or userId")

    try:
        result = get_store(request).create_or_join(body.vault_id, body.vault_type, body.user_id)
    except VaultFull as e:
        raise HTTPException(403, str(e))

    return {
        "success": True,
        "participantCount": result.participant_count,
        "vaultType": result.vault_type,
    }


@app.post("/api/vault_leave")
@global_limit
def vault_leave(body: VaultLeaveRequest, request: Request):
    """Accepted and ignored; participants leave by no longer acknowledging."""
    if is_valid_id(body.vault_id) and is_valid_user_id(body.user_id):
        get_store(request).leave(body.vault_id, body.user_id)
    return {"success": True}


@app.post("/api/message")
@write_limit
@global_limit
def post_message(body: PostMessageRequest, request: Request):
    """Post an opaque blob to a vault."""
    if not is_valid_id(body.id) or not is_valid_id(body.vault_id):
        raise HTTPException(400, "invalid id or vaultId")
    if not isinstance(body.blob, str) or len(body.blob) == 0:
        raise HTTPException(400, "blob must be a non-empty string")
    if len(body.blob) > MAX_BLOB_LENGTH:
        raise HTTPException(413, "blob exceeds 1 MB limit")

    timestamp = get_store(request).post_message(body.id, body.vault_id, body.blob)
    return {"success": True, "timestamp": timestamp}


@app.post("/api/get_messages")
@read_limit
@global_limit
def get_messages(body: GetMessagesRequest, request: Request):
    """Fetch messages newer than the ``since`` cursor."""
    if not is_valid_id(body.vault_id):
        raise HTTPException(400, "invalid vaultId")

    since = body.since
    if isinstance(since, bool) or not isinstance(since, (int, float)):
        since = 0

    messages, participant_count = get_store(request).get_messages(body.vault_id, since)
    data = [
        {
            "id": m["id"],
            "vaultId": m["vault_id"],
            "blob": m["blob"],
            "timestamp": m["timestamp"],
        }
        for m in messages
    ]
    return {"success": True, "data": data, "participantCount": participant_count}


@app.post("/api/ack_messages")
@global_limit
def ack_messages(body: AckMessagesRequest, request: Request):
    """Acknowledge messages; fully acknowledged ones are deleted."""
    if (
        not is_valid_id(body.vault_id)
        or not isinstance(body.message_ids, list)
        or not is_valid_user_id(body.user_id)
    ):
        raise HTTPException(400, "invalid parameters")
    if len(body.message_ids) > MAX_ACK_BATCH:
        raise HTTPException(400, f"too many messageIds (max {MAX_ACK_BATCH})")

    get_store(request).ack_messages(body.vault_id, body.message_ids, body.user_id)
    return {"success": True}


@app.post("/api/get_participant_count")
@read_limit
@global_limit
def get_participant_count(body: ParticipantCountRequest, request: Request):
    if not is_valid_id(body.vault_id):
        raise HTTPException(400, "invalid vaultId")

    return {
        "success": True,
        "participantCount": get_store(request).get_participant_count(body.vault_id),
    }


@app.post("/api/nuke_user")
@nuke_limit
@global_limit
def nuke_user(request: Request, body: Annotated[Any, Body()] = None):
    """Wipe a user's footprint from the listed vaults. Always succeeds.

    Any body is accepted, including none at all; only a list of vault ids
    plus a string user id has an effect.
    """
    if not isinstance(body, NukeUserRequest):
        body = NukeUserRequest.model_validate(body if isinstance(body, dict) else {})
    if isinstance(body.vault_ids, list) and isinstance(body.user_id, str):
        get_store(request).nuke_user(body.vault_ids, body.user_id)
    return {"success": True}


# Single-endpoint form: POST /api {"type": "<operation>", ...}
OPERATIONS: dict[str, tuple[type[RelayRequest], Callable[..., dict]]] = {
    "vault_create": (VaultCreateRequest, vault_create),
    "vault_join": (VaultJoinRequest, vault_join),
    "vault_leave": (VaultLeaveRequest, vault_leave),
    "message": (PostMessageRequest, post_message),
    "get_messages": (GetMessagesRequest, get_messages),
    "ack_messages": (AckMessagesRequest, ack_messages),
    "get_participant_count": (ParticipantCountRequest, get_participant_count),
    "nuke_user": (NukeUserRequest, nuke_user),
}


@app.post("/api")
async def dispatch(request: Request):
    """Route a typed request body to the matching relay endpoint."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(400, "invalid request body")

    op_type = payload.get("type") if isinstance(payload, dict) else None
    if not op_type or not isinstance(op_type, str):
        raise HTTPException(400, "missing type")
    if op_type not in OPERATIONS:
        raise HTTPException(400, f"unknown type: {op_type}")

    model, handler = OPERATIONS[op_type]
    try:
        body = model.model_validate(payload)
    except ValidationError:
        raise HTTPException(400, "invalid parameters")

    return await run_in_threadpool(handler, body=body, request=request)


# --- Health / Admin ---


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "ts": int(time.time() * 1000)}


@app.get("/admin/stats")
def admin_stats(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
):
    """Aggregate counts over the live store."""
    require_admin(request, x_admin_token)
    last_sweep = jobs.last_sweep.to_dict() if jobs.last_sweep is not None else None
    return {
        **get_store(request).stats().to_dict(),
        "uptime": int(metrics.uptime_seconds),
        "lastSweep": last_sweep,
    }


@app.get("/metrics")
def get_metrics(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
):
    """Get application metrics."""
    require_admin(request, x_admin_token)
    return {
        **metrics.to_dict(),
        "options": request.app.state.options.to_dict(),
    }
