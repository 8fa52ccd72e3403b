"""Read-only marketing form routes."""

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPBearer

from core.container import container
from core.logging import get_logger
from models.marketing_forms import MarketingFormResponse
from services.marketing_forms import FormLookup, MarketingFormService

logger = get_logger(__name__)

# Enforcement happens in AuthMiddleware; this only documents the scheme in OpenAPI.
bearer_scheme = HTTPBearer(auto_error=False)

router = APIRouter(
    prefix="/marketingforms",
    tags=["marketingforms"],
    dependencies=[Depends(bearer_scheme)],
)


def get_marketing_form_service() -> MarketingFormService:
    return container.marketing_form_service()


@router.get(
    "",
    response_model=List[MarketingFormResponse],
    response_model_by_alias=True,
    name="GetMarketingForms",
)
async def get_marketing_forms(
    forms: MarketingFormService = Depends(get_marketing_form_service)
):
    """List all live marketing forms."""
    return await forms.list_forms()


@router.get(
    "/{id_or_slug}",
    response_model=MarketingFormResponse,
    response_model_by_alias=True,
    name="GetMarketingFormByIdOrSlug",
    responses={404: {"content": {"text/plain": {}}, "description": "Form not found"}},
)
async def get_marketing_form(
    id_or_slug: str,
    forms: MarketingFormService = Depends(get_marketing_form_service)
):
    """
    Get one live form by GUID or by slug.
    Segments that do not parse as a GUID are de-slugged to a form name.
    """
    lookup = FormLookup.parse(id_or_slug)
    form = await forms.find_form(lookup)
    if form is None:
        logger.info("Marketing form not found", value=id_or_slug, by_id=lookup.by_id)
        return PlainTextResponse(lookup.not_found_message, status_code=404)
    return form
