"""Upstream form connectors.

The CRM itself is reached by an external collaborator. This module defines the
interface the rest of the service depends on, plus two implementations: a JSON
file export of the CRM's form table and an in-memory list for tests and demos.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional
from uuid import UUID

from pydantic import ValidationError

from core.logging import get_logger
from models.marketing_forms import FormRecord, StoredForm

logger = get_logger(__name__)

MARKETING_FORM_TYPE = "marketingform"


class FormConnectorError(Exception):
    """The upstream form source is unavailable or returned unusable data."""


class FormConnector(ABC):
    """Read-only access to live marketing forms."""

    @abstractmethod
    async def list_live_forms(self) -> List[FormRecord]:
        ...

    @abstractmethod
    async def find_live_form_by_id(self, form_id: UUID) -> Optional[FormRecord]:
        ...

    @abstractmethod
    async def find_live_form_by_name(self, name: str) -> Optional[FormRecord]:
        ...


class _StoredFormConnector(FormConnector):
    """Shared filtering over a sequence of StoredForm rows."""

    def _rows(self) -> List[StoredForm]:
        raise NotImplementedError

    async def list_live_forms(self) -> List[FormRecord]:
        # Only standalone marketing forms that actually have HTML are listed
        return [
            row.to_record() for row in self._rows()
            if row.is_live and row.html_content and row.form_type == MARKETING_FORM_TYPE
        ]

    async def find_live_form_by_id(self, form_id: UUID) -> Optional[FormRecord]:
        for row in self._rows():
            if row.id == form_id and row.is_live:
                return row.to_record()
        return None

    async def find_live_form_by_name(self, name: str) -> Optional[FormRecord]:
        for row in self._rows():
            if row.name == name and row.is_live:
                return row.to_record()
        return None


class InMemoryFormConnector(_StoredFormConnector):
    """Connector over a fixed list of forms."""

    def __init__(self, forms: Iterable[StoredForm] = ()):
        self._forms = tuple(forms)

    def _rows(self) -> List[StoredForm]:
        return list(self._forms)


class JsonFileFormConnector(_StoredFormConnector):
    """Connector reading a JSON array of forms exported from the CRM.

    Each item looks like ``{"id", "name", "htmlContent", "status", "formType"}``.
    The file is re-read on every call; callers cache results.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _rows(self) -> List[StoredForm]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise FormConnectorError(f"Form source not found: {self.path}") from e
        except (OSError, ValueError) as e:
            raise FormConnectorError(f"Cannot read form source {self.path}: {e}") from e

        if not isinstance(raw, list):
            raise FormConnectorError(f"Form source {self.path} must contain a JSON array")

        try:
            return [StoredForm.model_validate(item) for item in raw]
        except ValidationError as e:
            raise FormConnectorError(f"Malformed form record in {self.path}: {e}") from e
