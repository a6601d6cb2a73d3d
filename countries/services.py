"""
Process-wide construction of the refresh pipeline.

The adapter, store and publisher are built once from settings and handed to
the synchronizer; views and management commands ask for them here. The
cached instances are dropped whenever a relevant setting changes.
"""
from functools import lru_cache

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver

from .sources import ExternalSources
from .store import CountryStore
from .summary import SummaryPublisher, render_summary_image
from .sync import Synchronizer

PIPELINE_SETTINGS = {
    'COUNTRIES_API_URL',
    'EXCHANGE_API_URL',
    'EXTERNAL_FETCH_TIMEOUT',
    'SUMMARY_CACHE_DIR',
}


@lru_cache(maxsize=None)
def get_store():
    return CountryStore()


@lru_cache(maxsize=None)
def get_publisher():
    return SummaryPublisher(settings.SUMMARY_CACHE_DIR, renderer=render_summary_image)


@lru_cache(maxsize=None)
def get_synchronizer():
    """Raises ``ConfigurationError`` when a source URL is missing or malformed."""
    source = ExternalSources(
        countries_url=settings.COUNTRIES_API_URL,
        rates_url=settings.EXCHANGE_API_URL,
        timeout=settings.EXTERNAL_FETCH_TIMEOUT,
    )
    return Synchronizer(source=source, store=get_store(), publisher=get_publisher())


@receiver(setting_changed)
def reset_pipeline(*, setting, **kwargs):
    if setting in PIPELINE_SETTINGS:
        get_publisher.cache_clear()
        get_synchronizer.cache_clear()
