"""Marketing form models shared by connectors, the form service and the API."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FormRecord(BaseModel):
    """A live marketing form as delivered by the upstream CRM."""

    model_config = {"populate_by_name": True, "frozen": True}

    name: str = ""
    html_content: str = Field(default="", alias="htmlContent")


class StoredForm(FormRecord):
    """Connector-side record: the form plus the fields used to filter it."""

    id: UUID
    status: str = "live"
    form_type: Optional[str] = Field(default="marketingform", alias="formType")

    @property
    def is_live(self) -> bool:
        return self.status.lower() == "live"

    def to_record(self) -> FormRecord:
        return FormRecord(name=self.name, html_content=self.html_content)


class MarketingFormResponse(BaseModel):
    """Wire shape: ``{name, slug, htmlContent}``."""

    model_config = {"populate_by_name": True}

    name: str
    slug: str
    html_content: str = Field(alias="htmlContent")
