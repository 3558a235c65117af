"""
HTTP client for the StudyHub backend.

Attaches the signed-in user's identity token to every call and maps error
responses back to exceptions: 402 -> PaymentRequiredError, everything else
-> ClientError carrying the server's message.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from studyhub.features.ai.prompts import STUDY_HELPER_PROMPT, SUMMARIZER_PROMPT, summarize_query
from studyhub.features.entitlements.gate import count_words
from studyhub.models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

TokenGetter = Callable[[], Awaitable[Optional[str]]]


class ClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotSignedInError(ClientError):
    def __init__(self, message: str = "You must be logged in to do that."):
        super().__init__(message)


class PaymentRequiredError(ClientError):
    """The backend refused a metered call until the user upgrades."""


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP error! status: {response.status_code}"
    if isinstance(body, dict):
        if body.get("detail"):
            return str(body["detail"])
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"HTTP error! status: {response.status_code}"


class StudyHubClient:
    def __init__(
        self,
        base_url: str,
        token_getter: TokenGetter,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        free_word_limit: int = 500,
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._get_token = token_getter
        self.free_word_limit = free_word_limit
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self._get_token()
        if not token:
            raise NotSignedInError()

        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise ClientError(f"Could not reach the server: {e}") from e

        if response.status_code == 402:
            raise PaymentRequiredError(_error_message(response), status_code=402)
        if response.status_code >= 400:
            message = _error_message(response)
            logger.info(f"[CLIENT] {method} {path} failed: {response.status_code} {message}")
            raise ClientError(f"{response.status_code}: {message}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ClientError("Received an invalid response from the server.") from e

    async def generate(self, user_query: str, system_instruction: str, *, is_over_limit: bool = False) -> str:
        payload = {
            "userQuery": user_query,
            "systemInstruction": system_instruction,
            "isOverLimit": is_over_limit,
        }
        data = await self._request("POST", "/api/generate", json=payload)
        text = data.get("text")
        if not text:
            raise ClientError("Received an empty response from the server.")
        return text

    async def summarize(self, notes: str) -> str:
        user_query = summarize_query(notes)
        over_limit = count_words(notes) > self.free_word_limit
        return await self.generate(user_query, SUMMARIZER_PROMPT, is_over_limit=over_limit)

    async def ask(self, question: str) -> str:
        return await self.generate(question, STUDY_HELPER_PROMPT)

    async def create_checkout_session(self) -> str:
        data = await self._request("POST", "/api/create-checkout-session")
        url = data.get("url")
        if not url:
            raise ClientError("Failed to create checkout session.")
        return url

    async def ensure_account(self) -> EntitlementRecord:
        data = await self._request("POST", "/api/account")
        return EntitlementRecord.model_validate(data["record"])

    async def get_entitlement(self) -> Optional[EntitlementRecord]:
        try:
            data = await self._request("GET", "/api/entitlement")
        except ClientError as e:
            if e.status_code == 404:
                return None
            raise
        return EntitlementRecord.model_validate(data["record"])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
