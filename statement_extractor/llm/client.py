"""
Async client for the document-understanding service (Anthropic Messages API).

Every call goes through the shared cache, rate limiter and cost tracker:

    fingerprint → cache hit?  → return (zero cost)
                → check cost ceilings
                → throttle
                → POST /v1/messages (bounded timeout)
                → price token usage
                → cache result
    failures retry with exponential backoff, except auth errors and cost limits.
"""

import asyncio
import base64
import logging
import time
from datetime import datetime, timezone

import httpx

from statement_extractor import config
from statement_extractor.errors import CostLimitExceeded, ExternalServiceError
from statement_extractor.llm.cache import ResponseCache, fingerprint, response_cache
from statement_extractor.llm.cost_tracker import CostTracker, cost_tracker, model_alias
from statement_extractor.llm.rate_limiter import RateLimiter, rate_limiter
from statement_extractor.models import CostInfo, ModelResponse, TokenUsage

logger = logging.getLogger(__name__)


def resolve_model(model: str | None) -> tuple[str, str]:
    """Return ``(alias, provider_model_id)`` for a model alias or raw id."""
    alias = model_alias(model or config.DEFAULT_MODEL)
    return alias, config.MODEL_IDS.get(alias, alias)


def backoff_delay(attempt: int, base: float | None = None, cap: float | None = None) -> float:
    base = config.RETRY_DELAY if base is None else base
    cap = config.RETRY_MAX_DELAY if cap is None else cap
    return min(base * (2 ** attempt), cap)


async def _backoff(delay: float) -> None:
    await asyncio.sleep(delay)


def _build_request(prompt: str, payload: bytes, media_type: str, model_id: str) -> dict:
    block_type = "document" if media_type == "application/pdf" else "image"
    return {
        "model": model_id,
        "max_tokens": config.MAX_OUTPUT_TOKENS,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": block_type,
                        "source": {
                            "type": "base64",
                            "media_type": media_type,
                            "data": base64.b64encode(payload).decode("ascii"),
                        },
                    },
                ],
            }
        ],
    }


async def _post_message(request_body: dict, timeout: float) -> dict:
    headers = {
        "content-type": "application/json",
        "x-api-key": config.ANTHROPIC_API_KEY,
        "anthropic-version": config.ANTHROPIC_VERSION,
    }
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(config.MESSAGES_URL, headers=headers, json=request_body)
    except httpx.HTTPError as e:
        raise ExternalServiceError(f"Model service request failed: {e!r}", body=str(e)) from e

    if not resp.is_success:
        raise ExternalServiceError(
            f"Model service returned {resp.status_code}: {resp.text}",
            status_code=resp.status_code,
            body=resp.text,
        )
    try:
        return resp.json()
    except ValueError as e:
        raise ExternalServiceError(
            "Model service returned a non-JSON body",
            status_code=resp.status_code,
            body=resp.text,
        ) from e


def _read_message(data: dict) -> tuple[str, TokenUsage]:
    blocks = data.get("content") or []
    texts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
    if not texts:
        raise ExternalServiceError("Model service response has no text content", body=str(data)[:500])
    usage = data.get("usage") or {}
    return "".join(texts), TokenUsage(
        input_tokens=usage.get("input_tokens", 0) or 0,
        output_tokens=usage.get("output_tokens", 0) or 0,
    )


async def call_document_model(
    prompt: str,
    payload: bytes,
    media_type: str = "application/pdf",
    model: str | None = None,
    *,
    limiter: RateLimiter | None = None,
    tracker: CostTracker | None = None,
    cache: ResponseCache | None = None,
    use_cache: bool | None = None,
    max_retries: int | None = None,
    timeout: float | None = None,
) -> ModelResponse:
    """
    Send *prompt* plus one base64 document/image *payload* and return the reply.

    Raises ``ExternalServiceError`` once retries are exhausted (or at once for
    401/403), and ``CostLimitExceeded`` without retrying.
    """
    limiter = rate_limiter if limiter is None else limiter
    tracker = cost_tracker if tracker is None else tracker
    cache = response_cache if cache is None else cache
    use_cache = config.ENABLE_CACHE if use_cache is None else use_cache
    max_retries = max(1, max_retries if max_retries is not None else config.RETRY_ATTEMPTS)
    timeout = timeout or config.API_TIMEOUT

    started = time.monotonic()
    alias, model_id = resolve_model(model)
    key = fingerprint(payload, prompt, model_id)

    if use_cache:
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key[:12])
            return cached.model_copy(update={
                "cached": True,
                "cost": CostInfo(),
                "processing_time": time.monotonic() - started,
            })

    request_body = _build_request(prompt, payload, media_type, model_id)

    for attempt in range(max_retries):
        try:
            tracker.check_limits()
            await limiter.throttle()
            data = await _post_message(request_body, timeout)
            content, usage = _read_message(data)
            cost = tracker.track_usage(usage.input_tokens, usage.output_tokens, alias)
            break
        except CostLimitExceeded:
            raise
        except ExternalServiceError as e:
            if e.is_auth_error or attempt == max_retries - 1:
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "Model call attempt %d/%d failed (%s). Retrying in %.1fs",
                attempt + 1, max_retries, e, delay,
            )
            await _backoff(delay)

    result = ModelResponse(
        content=content,
        model=model_id,
        usage=usage,
        cost=cost,
        cached=False,
        processing_time=time.monotonic() - started,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    if use_cache:
        cache.set(key, result)
        logger.debug("Cached response %s", key[:12])

    logger.info(
        "Model call complete: %.2fs, %d in / %d out tokens, $%.6f",
        result.processing_time, usage.input_tokens, usage.output_tokens, cost.cost,
    )
    return result
