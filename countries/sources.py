"""
Fetch the two external datasets the refresh pipeline depends on.

Both requests run concurrently and both are always awaited. The fetch only
succeeds when each endpoint answered in time with a structurally valid
payload; otherwise ``ExternalFetchFailed`` names the first offending endpoint.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass

import requests
from django.core.exceptions import ValidationError
from django.core.validators import URLValidator

from .exceptions import ConfigurationError, ExternalFetchFailed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

_validate_url = URLValidator(schemes=['http', 'https'])


@dataclass(frozen=True)
class SourcePayload:
    countries: list
    rates: dict


def validate_source_url(setting_name, url):
    """Raise ``ConfigurationError`` unless ``url`` is an absolute http(s) URL."""
    if not url:
        raise ConfigurationError(f"{setting_name} is not configured")
    try:
        _validate_url(url)
    except ValidationError:
        raise ConfigurationError(f"Invalid {setting_name} configuration: {url!r}") from None
    return url


def _get_json(url, timeout):
    response = requests.get(url, timeout=timeout, headers={'Accept': 'application/json'})
    response.raise_for_status()
    return response.json()


def parse_countries(payload):
    if not isinstance(payload, list):
        raise ValueError(f"expected a list of countries, got {type(payload).__name__}")
    return payload


def parse_rates(payload):
    rates = payload.get('rates') if isinstance(payload, dict) else None
    if not isinstance(rates, dict):
        raise ValueError("response has no 'rates' mapping")

    parsed = {}
    for code, rate in rates.items():
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            logger.warning("Ignoring non-numeric rate for %s: %r", code, rate)
            continue
        parsed[code] = rate
    return parsed


class ExternalSources:
    """Country facts and exchange rates, fetched side by side."""

    def __init__(self, countries_url, rates_url, timeout=DEFAULT_TIMEOUT):
        self.countries_url = validate_source_url('COUNTRIES_API_URL', countries_url)
        self.rates_url = validate_source_url('EXCHANGE_API_URL', rates_url)
        self.timeout = float(timeout)

    def fetch(self):
        targets = [
            (self.countries_url, parse_countries),
            (self.rates_url, parse_rates),
        ]
        pool = ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix='refresh-fetch')
        try:
            futures = [pool.submit(_get_json, url, self.timeout) for url, _ in targets]
            wait(futures, timeout=self.timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        results = []
        failures = {}
        for (url, parse), future in zip(targets, futures):
            if not future.done():
                failures[url] = f"no response within {self.timeout:g}s"
                continue
            try:
                results.append(parse(future.result()))
            except (requests.RequestException, ValueError) as exc:
                failures[url] = str(exc) or exc.__class__.__name__

        if failures:
            for url, reason in failures.items():
                logger.error("External fetch failed for %s: %s", url, reason)
            endpoint = next(iter(failures))
            raise ExternalFetchFailed(endpoint, failures[endpoint], failures)

        countries, rates = results
        logger.info("Fetched %d countries and %d exchange rates", len(countries), len(rates))
        return SourcePayload(countries=countries, rates=rates)
