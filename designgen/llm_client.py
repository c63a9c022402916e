from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from designgen.errors import GenerationCancelled, GenerationFailure, TransientError, classify_status
from designgen.types import AttemptBudget, GenerationRequest

log = logging.getLogger(__name__)

T = TypeVar("T")

OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1").strip().rstrip("/")
OPENROUTER_ENDPOINT = f"{OPENROUTER_BASE_URL}/chat/completions"
OPENROUTER_APP_TITLE = os.getenv("OPENROUTER_APP_TITLE", "product-design-generator").strip()

try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "120"))
except Exception:
    LLM_TIMEOUT_SECS = 120.0
try:
    LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))
except Exception:
    LLM_MAX_ATTEMPTS = 3
try:
    LLM_BACKOFF_BASE_MS = int(os.getenv("LLM_BACKOFF_BASE_MS", "1000"))
except Exception:
    LLM_BACKOFF_BASE_MS = 1000

_ZERO_PRICING = {"prompt": "0", "completion": "0"}


def extract_message_content(payload: Any) -> Optional[str]:
    """Return the first choice's message content, or None if there is no usable text."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str) and content.strip():
        return content
    return None


class OpenRouterClient:
    """Chat-completions caller with bounded exponential-backoff retries.

    Holds configuration only; every ``invoke`` owns its own AttemptBudget and
    HTTP connection pool, so concurrent calls share no mutable state.
    """

    def __init__(
        self,
        *,
        endpoint: str = OPENROUTER_ENDPOINT,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = LLM_TIMEOUT_SECS,
        max_attempts: int = LLM_MAX_ATTEMPTS,
        backoff_base_ms: int = LLM_BACKOFF_BASE_MS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.base_url = base_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self._transport = transport
        self._sleep = sleep

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def _headers(self, credential: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
            "X-Title": OPENROUTER_APP_TITLE,
        }

    async def invoke(self, request: GenerationRequest, cancel: Optional[asyncio.Event] = None) -> str:
        """Return the model's raw text, retrying transient failures.

        ClientError propagates on the first occurrence. After the last attempt
        the most recent TransientError is raised.
        """
        budget = AttemptBudget(max_attempts=self.max_attempts, backoff_base_ms=self.backoff_base_ms)
        last_error: Optional[GenerationFailure] = None
        async with self._http() as http:
            while not budget.exhausted:
                attempt = budget.attempts_made
                budget.attempts_made += 1
                try:
                    text = await self._attempt(http, request, cancel)
                    if text:
                        if attempt:
                            log.info("llm.invoke: succeeded on attempt %d model=%s", attempt + 1, request.model)
                        return text
                    last_error = TransientError("Model returned no text content.")
                except TransientError as exc:
                    last_error = exc
                log.warning(
                    "llm.invoke: attempt %d/%d failed model=%s err=%s",
                    budget.attempts_made,
                    budget.max_attempts,
                    request.model,
                    last_error.message,
                )
                if not budget.exhausted:
                    delay = budget.delay_for(attempt)
                    log.info("llm.invoke: backing off %.2fs before retry", delay)
                    await self._until_cancelled(self._sleep(delay), cancel)
        raise last_error or TransientError("API call failed after multiple retries.")

    async def _attempt(
        self, http: httpx.AsyncClient, request: GenerationRequest, cancel: Optional[asyncio.Event]
    ) -> Optional[str]:
        try:
            response = await self._until_cancelled(
                http.post(self.endpoint, headers=self._headers(request.credential), json=request.payload()),
                cancel,
            )
        except httpx.HTTPError as exc:
            raise TransientError(f"Network error: {exc!r}") from exc
        failure = classify_status(response.status_code)
        if failure is not None:
            log.debug("llm.invoke: HTTP %s body=%s", response.status_code, response.text[:400])
            raise failure
        try:
            payload = response.json()
        except ValueError:
            log.warning("llm.invoke: non-JSON success body (len=%d)", len(response.content))
            return None
        return extract_message_content(payload)

    async def _until_cancelled(self, aw: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
        """Await ``aw`` unless ``cancel`` fires first, in which case abandon it."""
        if cancel is None:
            return await aw
        if cancel.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise GenerationCancelled("Generation was cancelled.")
        work = asyncio.ensure_future(aw)
        stop = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Runs on the cancel event and on cancellation of the caller alike.
            stop.cancel()
            if not work.done():
                work.cancel()
            await asyncio.gather(work, stop, return_exceptions=True)
        if work.cancelled():
            raise GenerationCancelled("Generation was cancelled.")
        return work.result()

    async def list_models(self, credential: str) -> List[Dict[str, Any]]:
        """Verify ``credential`` and return the models it can use, with pricing merged in."""
        async with self._http() as http:
            try:
                user_resp = await http.get(f"{self.base_url}/models/user", headers=self._headers(credential))
            except httpx.HTTPError as exc:
                raise TransientError(f"Network error: {exc!r}") from exc
            failure = classify_status(user_resp.status_code)
            if failure is not None:
                raise failure
            try:
                user_models = user_resp.json().get("data") or []
            except (ValueError, AttributeError) as exc:
                raise TransientError("Model list response was not valid JSON.") from exc

            pricing: Dict[str, Any] = {}
            try:
                all_resp = await http.get(f"{self.base_url}/models")
                if all_resp.status_code == 200:
                    for model in all_resp.json().get("data") or []:
                        if isinstance(model, dict) and model.get("id"):
                            pricing[model["id"]] = model.get("pricing")
                else:
                    log.warning("llm.list_models: pricing fetch HTTP %s; using zero pricing", all_resp.status_code)
            except (httpx.HTTPError, ValueError, AttributeError) as exc:
                log.warning("llm.list_models: pricing fetch failed: %r", exc)

        return [
            {**m, "pricing": pricing.get(m.get("id")) or dict(_ZERO_PRICING)}
            for m in user_models
            if isinstance(m, dict)
        ]
