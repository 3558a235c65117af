"""
Auth dependencies for the StudyHub API.

Validates the bearer credential through the entitlement gate and exposes
the caller's identity to route handlers.
"""
from fastapi import Header, Request
from typing import Optional

from studyhub.core.services import Services
from studyhub.features.entitlements.gate import AuthorizedIdentity


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_authorized_identity(
    request: Request,
    authorization: Optional[str] = Header(None, description="Bearer <identity token>"),
) -> AuthorizedIdentity:
    """
    Authenticate the caller.

    Stores subject_id on request.state for downstream handlers and logs.

    Raises:
        UnauthenticatedError (401): missing, malformed or invalid credential
    """
    identity = get_services(request).gate.authenticate(authorization)
    request.state.subject_id = identity.subject_id
    return identity
