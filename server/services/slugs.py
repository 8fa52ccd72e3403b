"""Slug generation and best-effort reversal for marketing form names."""

import re
import threading
import unicodedata
from typing import Dict, Iterable, Optional

from core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_LENGTH = 100

# Language-specific letters with a conventional ASCII spelling
SPECIAL_CHAR_MAP: Dict[str, str] = {
    "ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss",
    "æ": "ae", "ø": "oe", "å": "aa", "ñ": "n",
}

_SPECIAL_CHAR_PATTERN = re.compile(
    "|".join(re.escape(ch) for ch in SPECIAL_CHAR_MAP), re.IGNORECASE
)
_INVALID_CHARS = re.compile(r"[^a-z0-9\s-]")
_SEPARATORS = re.compile(r"[\s-]+")


class SlugMappingStore:
    """Thread-safe, append-only slug -> original text map.

    Lives as long as the process (or the container that owns it). The first
    text registered for a slug wins.
    """

    def __init__(self):
        self._mapping: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, slug: str, original: str) -> bool:
        """Record ``original`` for ``slug`` unless the slug is already known."""
        with self._lock:
            if slug in self._mapping:
                return False
            self._mapping[slug] = original
            return True

    def get(self, slug: str) -> Optional[str]:
        with self._lock:
            return self._mapping.get(slug)

    def clear(self) -> None:
        with self._lock:
            self._mapping.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._mapping)


def normalize_slug(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Pure slug normalisation with no side effects."""
    if not text or not text.strip():
        return ""

    text = _SPECIAL_CHAR_PATTERN.sub(lambda m: SPECIAL_CHAR_MAP[m.group(0).lower()], text)
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")

    slug = _INVALID_CHARS.sub("", stripped)
    slug = _SEPARATORS.sub("-", slug).strip("-")

    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    return slug


def ensure_unique_slug(base_slug: str, existing_slugs: Iterable[str],
                       max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Append -1, -2, ... to ``base_slug`` until it is absent from ``existing_slugs``.

    The base is shortened when needed so the result never exceeds
    ``max_length``. ``existing_slugs`` is copied, never mutated.
    """
    taken = set(existing_slugs)
    if base_slug not in taken:
        return base_slug

    counter = 1
    candidate = base_slug
    while candidate in taken:
        suffix = f"-{counter}"
        if len(base_slug) + len(suffix) > max_length:
            candidate = f"{base_slug[:max(0, max_length - len(suffix))]}{suffix}"
        else:
            candidate = f"{base_slug}{suffix}"
        counter += 1
    return candidate


class SlugCodec:
    """Turns display names into URL-safe slugs and back.

    Reversal is exact only for names this codec has already slugged while
    ``store`` was alive. Anything else gets a title-cased guess.
    """

    def __init__(self, store: SlugMappingStore):
        self.store = store

    def generate_slug(self, text: Optional[str], max_length: int = DEFAULT_MAX_LENGTH) -> str:
        slug = normalize_slug(text or "", max_length)
        if slug and self.store.add(slug, text):
            logger.debug("Slug mapping stored", slug=slug)
        return slug

    def de_slug(self, slug: Optional[str]) -> str:
        if not slug or not slug.strip():
            return ""

        original = self.store.get(slug)
        if original is not None:
            return original

        return " ".join(word.capitalize() for word in slug.replace("-", " ").split())

    def ensure_unique_slug(self, base_slug: str, existing_slugs: Iterable[str],
                           max_length: int = DEFAULT_MAX_LENGTH) -> str:
        return ensure_unique_slug(base_slug, existing_slugs, max_length)

    def clear_mapping(self) -> None:
        self.store.clear()
