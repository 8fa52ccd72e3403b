"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.cache import CacheService, build_cache_backend
from services.connectors import JsonFileFormConnector
from services.marketing_forms import MarketingFormService
from services.slugs import SlugCodec, SlugMappingStore
from services.tokens import TokenService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Cache service (memory by default, Redis when CACHE_BACKEND=redis)
    cache_backend = providers.Singleton(
        build_cache_backend,
        settings=settings
    )

    cache = providers.Singleton(
        CacheService,
        backend=cache_backend,
        settings=settings
    )

    # Slug mapping lives as long as the container
    slug_store = providers.Singleton(
        SlugMappingStore
    )

    slug_codec = providers.Singleton(
        SlugCodec,
        store=slug_store
    )

    # Upstream CRM export
    form_connector = providers.Singleton(
        JsonFileFormConnector,
        path=settings.provided.forms_source_file
    )

    # Services
    token_service = providers.Factory(
        TokenService,
        settings=settings
    )

    marketing_form_service = providers.Factory(
        MarketingFormService,
        connector=form_connector,
        cache=cache,
        slugs=slug_codec,
        settings=settings
    )


# Global container instance
container = Container()
