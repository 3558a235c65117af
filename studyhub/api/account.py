"""Account API: sign-up record creation and entitlement reads."""

from fastapi import APIRouter, Depends, Request

from studyhub.core.auth import get_authorized_identity, get_services
from studyhub.core.errors import NotFoundError
from studyhub.features.entitlements.gate import AuthorizedIdentity

router = APIRouter(prefix="/api", tags=["account"])


@router.post("/account")
async def ensure_account(
    request: Request,
    identity: AuthorizedIdentity = Depends(get_authorized_identity),
):
    """Create the caller's entitlement record as a free account if it does not exist."""
    record = get_services(request).store.create_if_absent(identity.subject_id, identity.email)
    return {"record": record.to_wire()}


@router.get("/entitlement")
async def get_entitlement(
    request: Request,
    identity: AuthorizedIdentity = Depends(get_authorized_identity),
):
    record = get_services(request).store.get(identity.subject_id)
    if record is None:
        raise NotFoundError("No entitlement record. Create the account first.")
    return {"record": record.to_wire()}
