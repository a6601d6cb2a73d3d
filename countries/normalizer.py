"""
Turn raw country records into store-ready rows.

Raw records arrive in more than one shape (restcountries v2 and v3 differ on
``name``, ``capital``, ``currencies`` and the flag fields). ``decode_country``
classifies each field once and produces a ``DecodedCountry``; everything after
that works on the decoded form only. Nothing in this module does I/O.
"""
import logging
import math
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)

GDP_MULTIPLIER_RANGE = (1000, 2000)

# Column limits of the ``countries`` table.
MAX_POPULATION = 2**63 - 1
MAX_LENGTHS = {
    'name': 255,
    'capital': 255,
    'region': 255,
    'currency_code': 10,
    'flag_url': 500,
}


@dataclass(frozen=True)
class DecodedCountry:
    name: object
    population: object
    capital: object = None
    region: object = None
    currency_code: object = None
    flag_url: object = None


@dataclass(frozen=True)
class NormalizedRow:
    name: str
    name_key: str
    capital: object
    region: object
    population: int
    currency_code: object
    exchange_rate: object
    estimated_gdp: float
    flag_url: object
    last_refreshed_at: object


@dataclass(frozen=True)
class Rejected:
    name: object
    reason: str


@dataclass(frozen=True)
class NormalizedBatch:
    rows: list
    rejected: int


def _decode_name(raw):
    value = raw.get('name')
    if isinstance(value, dict):
        value = value.get('common')
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _decode_capital(raw):
    value = raw.get('capital')
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value or None


def _decode_currency_code(raw):
    value = raw.get('currencies')
    code = None
    if isinstance(value, (list, tuple)):
        first = value[0] if value else None
        if isinstance(first, dict):
            code = first.get('code')
    elif isinstance(value, dict):
        code = next(iter(value), None)
    if isinstance(code, str) and code.strip():
        return code.strip().upper()
    return None


def _decode_flag_url(raw):
    flags = raw.get('flags')
    if isinstance(flags, dict):
        url = flags.get('png') or flags.get('svg')
        if url:
            return url
    return raw.get('flag') or None


def decode_country(raw):
    """Classify the shape of one raw record into a ``DecodedCountry``."""
    return DecodedCountry(
        name=_decode_name(raw),
        population=raw.get('population'),
        capital=_decode_capital(raw),
        region=raw.get('region') or None,
        currency_code=_decode_currency_code(raw),
        flag_url=_decode_flag_url(raw),
    )


def coerce_population(value):
    """Return ``value`` as a positive int, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        try:
            value = int(value)
        except ValueError:
            try:
                value = float(value)
            except ValueError:
                return None
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int) or not 0 < value <= MAX_POPULATION:
        return None
    return value


def _fit(field, value):
    """Drop optional text that does not fit its column."""
    if value is None:
        return None
    value = str(value)
    if len(value) > MAX_LENGTHS[field]:
        logger.info('Dropping %s longer than %d characters', field, MAX_LENGTHS[field])
        return None
    return value


def usable_rate(rates, currency_code):
    if not currency_code:
        return None
    rate = rates.get(currency_code)
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        return None
    if not math.isfinite(rate) or rate <= 0:
        return None
    return float(rate)


def normalize_country(decoded, rates, run_at, rng=random):
    """Map a decoded record to a ``NormalizedRow`` or a ``Rejected``.

    ``estimated_gdp`` is ``population * m / rate`` where ``m`` is drawn
    uniformly from ``GDP_MULTIPLIER_RANGE`` for every row. It is a synthetic
    figure, not an economic computation. Without a usable rate it is 0.
    """
    if decoded.name is None:
        return Rejected(name=None, reason='missing name')
    if len(decoded.name) > MAX_LENGTHS['name']:
        return Rejected(name=decoded.name[:40], reason=f"name longer than {MAX_LENGTHS['name']} characters")

    population = coerce_population(decoded.population)
    if population is None:
        return Rejected(name=decoded.name, reason=f'invalid population {decoded.population!r}')

    currency_code = _fit('currency_code', decoded.currency_code)
    exchange_rate = usable_rate(rates, currency_code)
    estimated_gdp = 0.0
    if exchange_rate is not None:
        estimated_gdp = population * rng.randint(*GDP_MULTIPLIER_RANGE) / exchange_rate
        if not math.isfinite(estimated_gdp):
            logger.warning('Ignoring rate %r for %s: estimate overflows', exchange_rate, decoded.name)
            exchange_rate = None
            estimated_gdp = 0.0

    return NormalizedRow(
        name=decoded.name,
        name_key=decoded.name.lower(),
        capital=_fit('capital', decoded.capital),
        region=_fit('region', decoded.region),
        population=population,
        currency_code=currency_code,
        exchange_rate=exchange_rate,
        estimated_gdp=estimated_gdp,
        flag_url=_fit('flag_url', decoded.flag_url),
        last_refreshed_at=run_at,
    )


def normalize_batch(raw_records, rates, run_at, rng=random):
    """Normalize every record, dropping and counting the rejected ones.

    Later records win over earlier ones that share a ``name_key``.
    """
    rows = {}
    rejected = 0
    for raw in raw_records:
        if not isinstance(raw, dict):
            result = Rejected(name=None, reason=f'unexpected record type {type(raw).__name__}')
        else:
            result = normalize_country(decode_country(raw), rates, run_at, rng=rng)

        if isinstance(result, Rejected):
            rejected += 1
            logger.warning('Skipping malformed country %r: %s', result.name, result.reason)
            continue

        if result.name_key in rows:
            logger.info('Duplicate country %r in source payload, keeping the last one', result.name)
            del rows[result.name_key]
        rows[result.name_key] = result

    return NormalizedBatch(rows=list(rows.values()), rejected=rejected)
