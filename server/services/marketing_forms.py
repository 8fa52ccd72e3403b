"""Cache-aside lookups of marketing forms."""

import re
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from constants import MARKETING_FORMS_CACHE_KEY, form_id_cache_key, form_slug_cache_key
from core.cache import CacheService
from core.config import Settings
from core.logging import connector_call, get_logger
from models.marketing_forms import FormRecord, MarketingFormResponse
from services.connectors import FormConnector
from services.slugs import SlugCodec, normalize_slug

logger = get_logger(__name__)


_HYPHENATED_GUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"

# 32 bare hex digits, or 8-4-4-4-12 optionally wrapped in braces or parentheses
GUID_PATTERN = re.compile(
    rf"[0-9a-f]{{32}}|{_HYPHENATED_GUID}|\{{{_HYPHENATED_GUID}\}}|\({_HYPHENATED_GUID}\)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class FormLookup:
    """How a path segment is resolved: by GUID or by slug."""
    value: str
    form_id: Optional[UUID]

    @property
    def by_id(self) -> bool:
        return self.form_id is not None

    @property
    def slug(self) -> str:
        """Case and separator variants of one slug share this form."""
        return normalize_slug(self.value)

    @property
    def cache_key(self) -> str:
        return form_id_cache_key(self.form_id) if self.by_id else form_slug_cache_key(self.slug)

    @property
    def not_found_message(self) -> str:
        kind = "ID" if self.by_id else "slug"
        return f"Marketing form with {kind} '{self.value}' not found"

    @classmethod
    def parse(cls, id_or_slug: str) -> "FormLookup":
        """Anything that is not a GUID is treated as a slug."""
        form_id = None
        if GUID_PATTERN.fullmatch(id_or_slug):
            form_id = UUID(id_or_slug.strip("{}()"))
        return cls(value=id_or_slug, form_id=form_id)


class MarketingFormService:
    """Reads live forms from the connector through the cache."""

    def __init__(self, connector: FormConnector, cache: CacheService,
                 slugs: SlugCodec, settings: Settings):
        self.connector = connector
        self.cache = cache
        self.slugs = slugs
        self.settings = settings

    def to_response(self, record: FormRecord) -> MarketingFormResponse:
        return MarketingFormResponse(
            name=record.name,
            slug=self.slugs.generate_slug(record.name),
            html_content=record.html_content,
        )

    async def list_forms(self) -> List[MarketingFormResponse]:
        async def fetch_live_forms():
            with connector_call(logger, "list_live_forms") as call:
                records = await self.connector.list_live_forms()
                call["count"] = len(records)
            return [record.model_dump(by_alias=True) for record in records]

        items = await self.cache.get_or_create(
            MARKETING_FORMS_CACHE_KEY, fetch_live_forms, self.settings.forms_cache_ttl
        )
        return [self.to_response(FormRecord.model_validate(item)) for item in items]

    async def find_form(self, lookup: FormLookup) -> Optional[MarketingFormResponse]:
        """Return the form for ``lookup`` or None. Misses are not cached."""
        cached = await self.cache.get(lookup.cache_key)
        if cached is not None:
            return self.to_response(FormRecord.model_validate(cached))

        with connector_call(logger, "find_live_form", by_id=lookup.by_id) as call:
            if lookup.by_id:
                record = await self.connector.find_live_form_by_id(lookup.form_id)
            else:
                name = self.slugs.de_slug(lookup.slug)
                record = await self.connector.find_live_form_by_name(name)
            call["found"] = record is not None

        if record is None:
            return None

        await self.cache.set(lookup.cache_key, record.model_dump(by_alias=True),
                             self.settings.forms_cache_ttl)
        return self.to_response(record)
