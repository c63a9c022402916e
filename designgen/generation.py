from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from designgen.errors import UNPARSABLE_USER_MESSAGE, UnparsableResponse
from designgen.llm_client import OpenRouterClient
from designgen.llm_parsing import parse_model_json
from designgen.types import GenerationRequest, Prompt

log = logging.getLogger(__name__)


async def generate(
    prompt: Prompt,
    credential: str,
    model: str,
    *,
    client: Optional[OpenRouterClient] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Any:
    """Run one generation: call the model, then recover a document from its text.

    Retries live entirely in the client. Failures propagate as raised, except
    that an unparsable response is re-raised with guidance for the user.
    """
    client = client or OpenRouterClient()
    request = GenerationRequest(prompt=prompt, credential=credential, model=model)
    start = time.perf_counter()
    raw_text = await client.invoke(request, cancel=cancel)
    log.info(
        "generate: model=%s chars=%d elapsed_ms=%d",
        model,
        len(raw_text),
        int((time.perf_counter() - start) * 1000),
    )
    try:
        return parse_model_json(raw_text)
    except UnparsableResponse as exc:
        log.error("generate: unparsable response model=%s detail=%s", model, exc.message)
        raise UnparsableResponse(UNPARSABLE_USER_MESSAGE) from exc
