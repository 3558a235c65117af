"""
studyhub/features/entitlements/gate.py

Authorization + entitlement gate in front of billable and premium operations.

Handles:
- Bearer credential extraction and delegated verification
- Free-tier usage limit enforcement (one store read, no writes)

The usage limit honors the client-declared isOverLimit flag and, unless
disabled, also recomputes the word count of the actual payload server-side,
so a client cannot talk its way under the limit by omitting the flag.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from studyhub.core.errors import PaymentRequiredError, StoreUnavailableError, UnauthenticatedError
from studyhub.core.logging import log_event
from studyhub.core.metrics import gate_decisions_total
from studyhub.features.entitlements.store import EntitlementStore
from studyhub.features.identity.verifier import IdentityVerificationError, IdentityVerifier
from studyhub.models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
PAYMENT_REQUIRED_MESSAGE = "Payment Required: Word limit exceeded. Please upgrade."


@dataclass(frozen=True)
class AuthorizedIdentity:
    subject_id: str
    email: Optional[str] = None


def count_words(text: Optional[str]) -> int:
    """Whitespace-delimited word count; blank text counts as zero."""
    if not text:
        return 0
    return len(text.split())


class EntitlementGate:
    def __init__(
        self,
        verifier: IdentityVerifier,
        store: EntitlementStore,
        *,
        free_word_limit: int = 500,
        server_side_limit: bool = True,
    ):
        self.verifier = verifier
        self.store = store
        self.free_word_limit = free_word_limit
        self.server_side_limit = server_side_limit

    def authenticate(self, authorization: Optional[str]) -> AuthorizedIdentity:
        """
        Verify the Authorization header and return the caller's identity.

        Raises:
            UnauthenticatedError: header missing, wrong scheme, empty or invalid token
        """
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            gate_decisions_total.inc(labels={"outcome": "unauthenticated"})
            raise UnauthenticatedError("Unauthorized: No token provided")

        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            gate_decisions_total.inc(labels={"outcome": "unauthenticated"})
            raise UnauthenticatedError("Unauthorized: No token provided")

        try:
            verified = self.verifier.verify(token)
        except IdentityVerificationError as e:
            gate_decisions_total.inc(labels={"outcome": "unauthenticated"})
            logger.info("auth.token_rejected", extra={"reason": str(e)})
            raise UnauthenticatedError("Unauthorized: Invalid token") from e

        return AuthorizedIdentity(subject_id=verified.subject_id, email=verified.email)

    def is_over_limit(self, over_limit_flag: bool, payload_text: Optional[str]) -> bool:
        if over_limit_flag:
            return True
        if self.server_side_limit:
            return count_words(payload_text) > self.free_word_limit
        return False

    def enforce_usage_limit(
        self,
        identity: AuthorizedIdentity,
        *,
        over_limit_flag: bool = False,
        payload_text: Optional[str] = None,
    ) -> Optional[EntitlementRecord]:
        """
        Fail with PaymentRequiredError when the request is over the free tier
        and the subject is not premium. Must run before any billable call.

        Returns the record that was read (None if the subject has none yet).
        """
        try:
            record = self.store.get(identity.subject_id)
        except StoreUnavailableError:
            gate_decisions_total.inc(labels={"outcome": "store_unavailable"})
            raise
        except Exception as e:
            gate_decisions_total.inc(labels={"outcome": "store_unavailable"})
            raise StoreUnavailableError(f"Entitlement read failed for {identity.subject_id}: {e}") from e

        is_premium = bool(record and record.is_premium)
        over_limit = self.is_over_limit(over_limit_flag, payload_text)

        if over_limit and not is_premium:
            gate_decisions_total.inc(labels={"outcome": "payment_required"})
            log_event(
                "info",
                "gate.payment_required",
                subject_id=identity.subject_id,
                event_type="gate.payment_required",
                extra={"client_flag": over_limit_flag, "word_count": count_words(payload_text)},
            )
            raise PaymentRequiredError(PAYMENT_REQUIRED_MESSAGE)

        gate_decisions_total.inc(labels={"outcome": "allowed"})
        return record
