"""
studyhub/features/entitlements/store.py

Entitlement record store.

Handles:
- point reads of a subject's record (gate)
- create-if-absent at sign-up (always free)
- the premium transition written by the webhook reconciler
- live subscriptions: subscribe(subject_id) yields the current snapshot and
  then one snapshot per change, without polling

Two implementations share the RecordHub fan-out: an in-memory store for
development and tests, and a SQLAlchemy store for deployments.
"""

import logging
from typing import AsyncIterator, Dict, Optional, Protocol

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from studyhub.core.database import check_connection, entitlements
from studyhub.core.errors import StoreUnavailableError
from studyhub.models.entitlement import EntitlementRecord, utcnow
from studyhub.realtime.hub import RecordHub

logger = logging.getLogger(__name__)


class RecordNotFoundError(StoreUnavailableError):
    """The subject has no record yet (sign-up write not landed). Retryable."""
    code = "record_not_found"


class EntitlementStore(Protocol):
    """Key-value record per subject holding premium status and payment linkage."""

    def get(self, subject_id: str) -> Optional[EntitlementRecord]:
        ...

    def create_if_absent(self, subject_id: str, email: Optional[str] = None) -> EntitlementRecord:
        ...

    def mark_premium(self, subject_id: str, payment_account_id: Optional[str]) -> EntitlementRecord:
        ...

    def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        ...

    def ping(self) -> bool:
        ...


class InMemoryEntitlementStore:
    """Dict-backed store. Writes are plain assignments, atomic on one event loop."""

    def __init__(self, hub: Optional[RecordHub] = None):
        self._records: Dict[str, EntitlementRecord] = {}
        self._hub: RecordHub = hub or RecordHub()

    def get(self, subject_id: str) -> Optional[EntitlementRecord]:
        return self._records.get(subject_id)

    def create_if_absent(self, subject_id: str, email: Optional[str] = None) -> EntitlementRecord:
        existing = self._records.get(subject_id)
        if existing is not None:
            return existing
        record = EntitlementRecord(subject_id=subject_id, email=email)
        self._records[subject_id] = record
        self._hub.publish(subject_id, record)
        return record

    def mark_premium(self, subject_id: str, payment_account_id: Optional[str]) -> EntitlementRecord:
        existing = self._records.get(subject_id)
        if existing is None:
            raise RecordNotFoundError(f"No entitlement record for subject {subject_id}")
        record = existing.model_copy(
            update={"is_premium": True, "payment_account_id": payment_account_id, "updated_at": utcnow()}
        )
        self._records[subject_id] = record
        self._hub.publish(subject_id, record)
        return record

    def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        return self._hub.subscribe(subject_id, lambda: self.get(subject_id))

    def ping(self) -> bool:
        return True


def _row_to_record(row) -> EntitlementRecord:
    return EntitlementRecord(
        subject_id=row.subject_id,
        email=row.email,
        is_premium=bool(row.is_premium),
        payment_account_id=row.payment_account_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlEntitlementStore:
    """
    SQLAlchemy-backed store.

    The premium transition is a single UPDATE ... WHERE subject_id = ?,
    relying on per-row atomicity instead of any in-process lock.
    Change notifications only reach subscribers in this process.
    """

    def __init__(self, engine: Engine, hub: Optional[RecordHub] = None):
        self.engine = engine
        self._hub: RecordHub = hub or RecordHub()

    def get(self, subject_id: str) -> Optional[EntitlementRecord]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(entitlements).where(entitlements.c.subject_id == subject_id)
                ).fetchone()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Entitlement read failed for {subject_id}: {e}") from e
        return _row_to_record(row) if row else None

    def create_if_absent(self, subject_id: str, email: Optional[str] = None) -> EntitlementRecord:
        record = EntitlementRecord(subject_id=subject_id, email=email)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(entitlements).values(
                        subject_id=record.subject_id,
                        email=record.email,
                        is_premium=False,
                        payment_account_id=None,
                        created_at=record.created_at,
                    )
                )
        except IntegrityError:
            # Already created (possibly by a concurrent sign-up); never overwrite
            existing = self.get(subject_id)
            if existing is None:
                raise StoreUnavailableError(f"Entitlement create raced and vanished for {subject_id}")
            return existing
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Entitlement create failed for {subject_id}: {e}") from e

        self._hub.publish(subject_id, record)
        return record

    def mark_premium(self, subject_id: str, payment_account_id: Optional[str]) -> EntitlementRecord:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(entitlements)
                    .where(entitlements.c.subject_id == subject_id)
                    .values(is_premium=True, payment_account_id=payment_account_id, updated_at=utcnow())
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Entitlement update failed for {subject_id}: {e}") from e

        if result.rowcount == 0:
            raise RecordNotFoundError(f"No entitlement record for subject {subject_id}")

        record = self.get(subject_id)
        if record is not None:
            self._hub.publish(subject_id, record)
            return record
        raise RecordNotFoundError(f"Entitlement record for {subject_id} disappeared after update")

    def subscribe(self, subject_id: str) -> AsyncIterator[Optional[EntitlementRecord]]:
        return self._hub.subscribe(subject_id, lambda: self.get(subject_id))

    def ping(self) -> bool:
        return check_connection(self.engine)
