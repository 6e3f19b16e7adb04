"""
HTTP client for the external text-generation service.

The service accepts a chat-style payload and answers with
``{"response": "<generated text>"}``.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from backend.services.errors import UpstreamUnavailable
from backend.services.runtime import log_event
from backend.services.settings import Settings

logger = logging.getLogger("completion_client")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class InvalidCompletionResponse(Exception):
    """Raised for a response missing the ``response`` text field."""


class CompletionClient:
    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._url = f"{settings.completion_base_url}{settings.completion_chat_path}"
        self._max_attempts = settings.completion_max_attempts
        self._backoff_base_s = settings.completion_backoff_base_s
        self._timeout_s = settings.completion_timeout_s
        self._sleep = sleep
        headers = {"Content-Type": "application/json"}
        if settings.completion_api_key:
            headers["Authorization"] = f"Bearer {settings.completion_api_key}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.completion_timeout_s),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _post_once(self, payload: Dict[str, Any]) -> str:
        # httpx timeouts are per phase; the attempt as a whole also gets one deadline
        deadline = time.perf_counter() + self._timeout_s
        with self._client.stream("POST", self._url, json=payload) as resp:
            resp.raise_for_status()
            chunks = []
            for chunk in resp.iter_bytes():
                chunks.append(chunk)
                if time.perf_counter() > deadline:
                    raise httpx.ReadTimeout(
                        f"Completion response took longer than {self._timeout_s:g}s",
                        request=resp.request,
                    )
        try:
            body = json.loads(b"".join(chunks))
        except ValueError as exc:
            raise InvalidCompletionResponse("Invalid response format from completion service") from exc
        text = body.get("response") if isinstance(body, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise InvalidCompletionResponse("Invalid response format from completion service")
        return text

    def complete(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        payload = {
            "messages": [{"role": "user", "content": prompt}],
            "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "stream": False,
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            started = time.perf_counter()
            try:
                text = self._post_once(payload)
                log_event(
                    logger,
                    logging.INFO,
                    "completion_ok",
                    attempt=attempt,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                    prompt_chars=len(prompt),
                    response_chars=len(text),
                )
                return text
            except (httpx.HTTPError, InvalidCompletionResponse) as exc:
                last_error = exc
                log_event(
                    logger,
                    logging.WARNING,
                    "completion_attempt_failed",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=str(exc)[:180],
                )
            if attempt == self._max_attempts:
                break
            # 1s, 2s, 4s ...
            self._sleep(self._backoff_base_s * (2 ** (attempt - 1)))

        raise UpstreamUnavailable(
            f"Completion service failed after {self._max_attempts} attempts: {last_error}"
        )
