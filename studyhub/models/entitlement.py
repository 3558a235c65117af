"""
studyhub/models/entitlement.py

Entitlement record: the persisted truth of whether a subject has paid access.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementRecord(BaseModel):
    """
    One record per subject, keyed by subject_id.

    Created once at sign-up with is_premium=False. Only the payment webhook
    reconciler flips is_premium to True and sets payment_account_id.
    Serialized with camelCase keys (isPremium, paymentAccountId, createdAt).
    """
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    subject_id: str
    email: Optional[str] = None
    is_premium: bool = False
    payment_account_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
