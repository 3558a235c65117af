"""
Client session view.

Holds what a signed-in user sees: who they are, whether they are premium,
and the state of each study feature. Premium status comes only from the
live entitlement record subscription; the ?payment= redirect marker is a
notice, never an authority.

Exactly one subscription task exists per signed-in identity. Changing or
clearing the identity cancels it before a new one starts.
"""

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol
from urllib.parse import parse_qs

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from studyhub.client.api_client import ClientError, PaymentRequiredError, StudyHubClient, TokenGetter
from studyhub.core.errors import AppError
from studyhub.features.entitlements.gate import count_words
from studyhub.features.entitlements.store import EntitlementStore
from studyhub.models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

FEATURES = ("summarize", "ask", "upgrade")


@dataclass(frozen=True)
class ClientIdentity:
    subject_id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class ViewState:
    subject_id: Optional[str] = None
    email: Optional[str] = None
    is_premium: bool = False
    loading: bool = False
    error: Optional[str] = None

    @property
    def signed_in(self) -> bool:
        return self.subject_id is not None


@dataclass(frozen=True)
class PaymentNotice:
    kind: str  # "success" | "warning"
    title: str
    body: str


PAYMENT_NOTICES = {
    "success": PaymentNotice("success", "Payment Successful!", "Welcome to Premium! Your features are now unlocked."),
    "cancel": PaymentNotice("warning", "Payment Canceled", "Your payment process was canceled. You are still on the free plan."),
}


@dataclass
class FeatureState:
    output: Optional[str] = None
    error: Optional[str] = None
    loading: bool = False
    needs_upgrade: bool = False


class RecordSource(Protocol):
    def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        """Current record (None if absent), then one snapshot per change."""
        ...

    async def ensure_record(self, identity: ClientIdentity) -> None:
        """Create the record as a free account if it does not exist yet."""
        ...


class StoreRecordSource:
    """In-process source reading an EntitlementStore directly."""

    def __init__(self, store: EntitlementStore):
        self.store = store

    def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        return self.store.subscribe(subject_id)

    async def ensure_record(self, identity: ClientIdentity) -> None:
        self.store.create_if_absent(identity.subject_id, identity.email)


class WebSocketRecordSource:
    """Remote source reading the backend's /api/ws/entitlement stream."""

    def __init__(self, ws_url: str, token_getter: TokenGetter, api: StudyHubClient):
        self.ws_url = ws_url
        self._get_token = token_getter
        self.api = api

    async def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        token = await self._get_token()
        if not token:
            raise ClientError("You must be logged in to do that.")

        async with connect(self.ws_url, additional_headers={"Authorization": f"Bearer {token}"}) as websocket:
            try:
                async for raw in websocket:
                    message = json.loads(raw)
                    kind = message.get("type")
                    if kind == "error":
                        raise ClientError(message.get("message") or "Subscription rejected")
                    if kind != "entitlement":
                        continue
                    record = message.get("record")
                    yield EntitlementRecord.model_validate(record) if record is not None else None
            except ConnectionClosed as e:
                raise ClientError(f"Entitlement stream closed: {e}") from e

    async def ensure_record(self, identity: ClientIdentity) -> None:
        await self.api.ensure_account()


class SessionView:
    def __init__(self, source: RecordSource, api: Optional[StudyHubClient] = None):
        self.source = source
        self.api = api
        self.state = ViewState()
        self.notice: Optional[PaymentNotice] = None
        self.features: Dict[str, FeatureState] = {name: FeatureState() for name in FEATURES}
        self.checkout_url: Optional[str] = None
        self._listeners: List[Callable[[ViewState], None]] = []
        self._identity: Optional[ClientIdentity] = None
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, listener: Callable[[ViewState], None]) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ViewState) -> None:
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    @property
    def has_subscription(self) -> bool:
        return self._task is not None and not self._task.done()

    async def set_identity(self, identity: Optional[ClientIdentity]) -> None:
        """Switch the signed-in identity; tears down the previous subscription first."""
        await self._cancel_subscription()
        self._identity = identity
        self.features = {name: FeatureState() for name in FEATURES}

        if identity is None:
            self._set_state(ViewState())
            return

        self._set_state(ViewState(subject_id=identity.subject_id, email=identity.email, loading=True))
        self._task = asyncio.create_task(self._consume(identity))

    async def _cancel_subscription(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"[VIEW] Previous subscription ended with an error: {e}")

    async def _consume(self, identity: ClientIdentity) -> None:
        try:
            async with aclosing(self.source.subscribe(identity.subject_id)) as snapshots:
                async for record in snapshots:
                    if record is None:
                        await self.source.ensure_record(identity)
                    self._set_state(
                        ViewState(
                            subject_id=identity.subject_id,
                            email=identity.email,
                            is_premium=bool(record and record.is_premium),
                        )
                    )
        except (ClientError, AppError, OSError) as e:
            logger.error(f"[VIEW] Error listening to entitlement record: {e}")
            self._set_state(replace(self.state, loading=False, error=str(e)))
        except Exception as e:
            logger.error(f"[VIEW] Unexpected error in entitlement subscription: {e}", exc_info=True)
            self._set_state(replace(self.state, loading=False, error="Could not load your account status."))

    def apply_payment_marker(self, query_string: str) -> Optional[PaymentNotice]:
        """Show the post-checkout notice for ?payment=success|cancel. Does not touch is_premium."""
        values = parse_qs(query_string.lstrip("?")).get("payment") or []
        notice = PAYMENT_NOTICES.get(values[0]) if values else None
        if notice is not None:
            self.notice = notice
        return notice

    def dismiss_notice(self) -> None:
        self.notice = None

    def _begin(self, name: str) -> Optional[FeatureState]:
        if self._identity is None or self.api is None:
            self.features[name] = FeatureState(error="You must be logged in to do that.")
            return None
        feature = FeatureState(loading=True)
        self.features[name] = feature
        return feature

    async def summarize(self, notes: str) -> FeatureState:
        if not notes or not notes.strip():
            self.features["summarize"] = FeatureState(error="Please paste some text to summarize.")
            return self.features["summarize"]
        feature = self._begin("summarize")
        if feature is None:
            return self.features["summarize"]
        if count_words(notes) > self.api.free_word_limit and not self.state.is_premium:
            feature.loading = False
            feature.needs_upgrade = True
            return feature
        try:
            feature.output = await self.api.summarize(notes)
        except PaymentRequiredError as e:
            feature.needs_upgrade = True
            feature.error = e.message
        except ClientError as e:
            feature.error = f"Error: {e.message}"
        finally:
            feature.loading = False
        return feature

    async def ask(self, question: str) -> FeatureState:
        if not question or not question.strip():
            self.features["ask"] = FeatureState(error="Please ask a question.")
            return self.features["ask"]
        feature = self._begin("ask")
        if feature is None:
            return self.features["ask"]
        try:
            feature.output = await self.api.ask(question)
        except PaymentRequiredError as e:
            feature.needs_upgrade = True
            feature.error = e.message
        except ClientError as e:
            feature.error = f"Error: {e.message}"
        finally:
            feature.loading = False
        return feature

    async def upgrade(self) -> FeatureState:
        """Start checkout; the caller redirects the browser to checkout_url."""
        feature = self._begin("upgrade")
        if feature is None:
            return self.features["upgrade"]
        try:
            self.checkout_url = await self.api.create_checkout_session()
            feature.output = self.checkout_url
        except ClientError as e:
            feature.error = e.message
        finally:
            feature.loading = False
        return feature

    async def close(self) -> None:
        await self._cancel_subscription()
