"""API key to bearer token exchange."""

from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from core.container import container
from core.logging import get_logger
from services.tokens import TokenService

logger = get_logger(__name__)
router = APIRouter(tags=["token"])


class ApiKeyRequest(BaseModel):
    model_config = {"populate_by_name": True}

    api_key: Optional[str] = Field(default=None, alias="apiKey")


class TokenResponse(BaseModel):
    token: str


def get_token_service() -> TokenService:
    return container.token_service()


@router.post(
    "/token",
    response_model=TokenResponse,
    name="GetToken",
    responses={401: {"description": "Invalid API key"}},
)
async def get_token(
    request: ApiKeyRequest,
    tokens: TokenService = Depends(get_token_service)
):
    """Exchange an allow-listed API key for a bearer token."""
    if not tokens.is_valid_api_key(request.api_key):
        logger.info("Token request rejected")
        return Response(status_code=401)

    return TokenResponse(token=tokens.issue_token(request.api_key))
