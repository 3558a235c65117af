"""AI generation API.

The only route that reaches the metered AI provider. Order matters: the
caller is authenticated, then the usage limit is enforced against the
entitlement record, and only then is the provider called.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from studyhub.core.auth import get_authorized_identity, get_services
from studyhub.features.ai.prompts import user_content
from studyhub.features.entitlements.gate import AuthorizedIdentity

router = APIRouter(prefix="/api", tags=["ai"])


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_query: str = Field(alias="userQuery")
    system_instruction: str = Field("", alias="systemInstruction")
    is_over_limit: Optional[bool] = Field(False, alias="isOverLimit")

    @field_validator("user_query")
    @classmethod
    def user_query_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("userQuery is required")
        return value


class GenerateResponse(BaseModel):
    text: str


@router.post("/generate", response_model=GenerateResponse)
async def generate_endpoint(
    body: GenerateRequest,
    request: Request,
    identity: AuthorizedIdentity = Depends(get_authorized_identity),
):
    """
    Generate text for the caller.

    Errors:
        401: missing/invalid credential
        402: over the free word limit without premium
        500: AI provider failure or entitlement store failure
    """
    services = get_services(request)
    services.gate.enforce_usage_limit(
        identity,
        over_limit_flag=bool(body.is_over_limit),
        payload_text=user_content(body.user_query),
    )
    text = await services.inference.generate(body.user_query, body.system_instruction)
    return {"text": text}
