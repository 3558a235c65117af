"""
Generative AI proxy (Gemini generateContent).

One request per call, no retries. Provider failures are normalized into
three errors so the distinction survives in logs and metrics even though
the HTTP boundary collapses them into one generic failure:
- ContentBlockedError: provider refused and reported a block reason
- EmptyResponseError: provider answered without usable text
- UpstreamUnavailableError: transport, auth, quota or malformed response
"""

import logging
from typing import Any, Dict, Optional

import httpx

from studyhub.core.config import require
from studyhub.core.errors import ContentBlockedError, EmptyResponseError, UpstreamUnavailableError
from studyhub.core.logging import log_event
from studyhub.core.metrics import inference_failures_total

logger = logging.getLogger(__name__)


def build_payload(prompt: str, system_instruction: Optional[str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    return payload


def extract_text(data: Dict[str, Any]) -> str:
    """
    Pull the first candidate's text out of a generateContent response.

    Raises:
        ContentBlockedError: no text and promptFeedback.blockReason is set
        EmptyResponseError: no text and no block reason
    """
    candidates = data.get("candidates") or []
    if candidates:
        parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
        if parts and parts[0].get("text"):
            return parts[0]["text"]

    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise ContentBlockedError(block_reason)
    raise EmptyResponseError("Received an invalid or empty response from the AI.")


class GeminiClient:
    """Async client for the Gemini REST API. Owns its httpx client unless one is injected."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        *,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, cfg, http_client: Optional[httpx.AsyncClient] = None) -> "GeminiClient":
        return cls(
            cfg.GEMINI_API_KEY,
            cfg.GEMINI_MODEL,
            api_base=cfg.GEMINI_API_BASE,
            timeout=cfg.GEMINI_TIMEOUT_SECONDS,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        api_key = require(self.api_key, "GEMINI_API_KEY")
        try:
            response = await self._client.post(
                self.endpoint,
                json=build_payload(prompt, system_instruction),
                headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._record_failure("upstream_unavailable", f"status={e.response.status_code} body={e.response.text}")
            raise UpstreamUnavailableError(f"AI provider returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            self._record_failure("upstream_unavailable", repr(e))
            raise UpstreamUnavailableError(f"AI provider call failed: {e}") from e
        except ValueError as e:
            self._record_failure("upstream_unavailable", f"invalid json: {e}")
            raise UpstreamUnavailableError("AI provider returned invalid JSON") from e

        try:
            return extract_text(data)
        except (ContentBlockedError, EmptyResponseError) as e:
            self._record_failure(e.code, e.message)
            raise

    def _record_failure(self, kind: str, detail: str) -> None:
        inference_failures_total.inc(labels={"kind": kind})
        log_event(
            "error",
            "ai.generate_failed",
            event_type="ai.generate_failed",
            error_code=kind,
            extra={"model": self.model, "detail": detail},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
