"""Cache key names shared by the form service and its tests."""

MARKETING_FORMS_CACHE_KEY = "marketing_forms"


def form_id_cache_key(form_id) -> str:
    return f"marketing_form_id_{form_id}"


def form_slug_cache_key(slug: str) -> str:
    return f"marketing_form_slug_{slug}"
