import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from designgen.errors import ClientError, GenerationCancelled, GenerationFailure, TransientError, user_message
from designgen.generation import generate
from designgen.llm_client import OpenRouterClient
from designgen.types import Prompt

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

try:
    DISCONNECT_POLL_SECS = float(os.getenv("DISCONNECT_POLL_SECS", "0.5"))
except Exception:
    DISCONNECT_POLL_SECS = 0.5

app = FastAPI(title="Product Design Generator")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class GenerateRequest(BaseModel):
    system_text: str = Field(..., description="System prompt built by the browser form")
    user_text: str = Field(..., description="User prompt built by the browser form")
    model: str = Field(..., min_length=1, description="OpenRouter model id, e.g. anthropic/claude-3-haiku")
    api_key: Optional[str] = Field(default=None, description="OpenRouter key; may instead be sent as a header")


class VerifyKeyRequest(BaseModel):
    api_key: Optional[str] = Field(default=None, description="OpenRouter key to verify")


def _get_client() -> OpenRouterClient:
    return OpenRouterClient()


def _resolve_credential(body_key: Optional[str], x_api_key: Optional[str], authorization: Optional[str]) -> str:
    for candidate in (body_key, x_api_key):
        if candidate and candidate.strip():
            return candidate.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return ""


def _status_for(failure: GenerationFailure) -> int:
    if isinstance(failure, ClientError):
        return failure.http_status or 400
    if isinstance(failure, TransientError):
        return 502
    if isinstance(failure, GenerationCancelled):
        return 499
    return 422


def _failure_response(failure: GenerationFailure) -> JSONResponse:
    return JSONResponse(
        status_code=_status_for(failure),
        content={"error": user_message(failure), "kind": failure.kind},
    )


def _missing_key_response() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Please enter and verify your API key.", "kind": "client_error"},
    )


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            log.info("generate: client disconnected; cancelling rid=%s", getattr(request.state, "request_id", "?"))
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECS)


@app.get("/", response_class=HTMLResponse)
def root() -> str:
    """Serve templates/index.html when present, else a placeholder page."""
    tpl_index = Path("templates/index.html")
    if tpl_index.exists():
        return tpl_index.read_text(encoding="utf-8")
    return "<!doctype html><html><body><h1>Product Design Generator</h1><p>Add templates/index.html for the UI.</p></body></html>"


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/generate")
async def generate_endpoint(
    req: GenerateRequest,
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
):
    credential = _resolve_credential(req.api_key, x_api_key, authorization)
    if not credential:
        return _missing_key_response()

    cancel = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        doc: Any = await generate(
            Prompt(system_text=req.system_text, user_text=req.user_text),
            credential,
            req.model,
            client=_get_client(),
            cancel=cancel,
        )
    except GenerationFailure as failure:
        log.warning("generate: failed kind=%s status=%s model=%s", failure.kind, failure.http_status, req.model)
        return _failure_response(failure)
    finally:
        cancel.set()
        watcher.cancel()
    return JSONResponse(doc)


@app.post("/models/verify")
async def verify_key(
    req: VerifyKeyRequest,
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
):
    credential = _resolve_credential(req.api_key, x_api_key, authorization)
    if not credential:
        return _missing_key_response()
    try:
        models = await _get_client().list_models(credential)
    except GenerationFailure as failure:
        log.warning("models.verify: failed kind=%s status=%s", failure.kind, failure.http_status)
        return _failure_response(failure)
    return {"models": models}
