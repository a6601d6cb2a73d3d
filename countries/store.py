"""
Persistence for country rows.

``CountryStore`` is the only code that talks to the ``Country`` table.
Identity is always the lower-cased ``name_key``, so lookups, deletes and the
upsert conflict target agree on what "the same country" means.
"""
import enum
import logging
from dataclasses import dataclass

from django.db import DEFAULT_DB_ALIAS, connections, transaction
from django.db.models import Count, Max

from .models import Country

logger = logging.getLogger(__name__)

UPSERT_FIELDS = [
    'name',
    'capital',
    'region',
    'population',
    'currency_code',
    'exchange_rate',
    'estimated_gdp',
    'flag_url',
    'last_refreshed_at',
]

SORT_ORDERS = {
    'gdp_desc': ('-estimated_gdp', 'pk'),
    'gdp_asc': ('estimated_gdp', 'pk'),
    'population_desc': ('-population', 'pk'),
    'population_asc': ('population', 'pk'),
}


class TransactionState(enum.Enum):
    PENDING = 'pending'
    OPEN = 'open'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'


class TransactionStateError(RuntimeError):
    pass


class StoreTransaction:
    """
    An explicitly driven ``transaction.atomic`` block.

    ``state`` is the only record of where the transaction is; callers ask it
    (or ``finished``) before deciding whether a rollback is still needed.
    Nested inside another atomic block, it behaves as a savepoint.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using
        self.state = TransactionState.PENDING
        self._atomic = None

    @property
    def finished(self):
        return self.state in (TransactionState.COMMITTED, TransactionState.ROLLED_BACK)

    def _require(self, state):
        if self.state is not state:
            raise TransactionStateError(
                f"transaction is {self.state.value}, expected {state.value}"
            )

    def begin(self):
        self._require(TransactionState.PENDING)
        self._atomic = transaction.atomic(using=self.using)
        self._atomic.__enter__()
        self.state = TransactionState.OPEN
        return self

    def commit(self):
        self._require(TransactionState.OPEN)
        try:
            self._atomic.__exit__(None, None, None)
        except Exception:
            # atomic rolls back on a failed commit before re-raising.
            self.state = TransactionState.ROLLED_BACK
            raise
        self.state = TransactionState.COMMITTED

    def rollback(self):
        self._require(TransactionState.OPEN)
        transaction.set_rollback(True, using=self.using)
        self.state = TransactionState.ROLLED_BACK
        self._atomic.__exit__(None, None, None)

    def __enter__(self):
        return self.begin()

    def __exit__(self, exc_type, exc_value, traceback):
        if self.state is TransactionState.OPEN:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        return False


@dataclass(frozen=True)
class StoreStatus:
    total_count: int
    last_refreshed_at: object


class CountryStore:

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using

    def queryset(self):
        return Country.objects.using(self.using)

    def transaction(self):
        return StoreTransaction(using=self.using)

    def upsert_batch(self, rows):
        """Insert or update ``rows`` keyed by ``name_key``; returns the row count.

        Must run inside a transaction for the batch to be all-or-nothing.
        """
        objs = [
            Country(
                name=row.name,
                name_key=row.name_key,
                capital=row.capital,
                region=row.region,
                population=row.population,
                currency_code=row.currency_code,
                exchange_rate=row.exchange_rate,
                estimated_gdp=row.estimated_gdp,
                flag_url=row.flag_url,
                last_refreshed_at=row.last_refreshed_at,
            )
            for row in rows
        ]
        conflict = {'update_conflicts': True, 'update_fields': UPSERT_FIELDS}
        # MySQL's ON DUPLICATE KEY UPDATE takes no target; name_key is the
        # only unique column besides the primary key.
        if connections[self.using].features.supports_update_conflicts_with_target:
            conflict['unique_fields'] = ['name_key']
        self.queryset().bulk_create(objs, **conflict)
        return len(objs)

    def find_by_name(self, name):
        return self.queryset().filter(name_key=name.lower()).first()

    def list_all(self, region=None, currency=None, order=None, offset=0, limit=None):
        if order is not None and order not in SORT_ORDERS:
            raise ValueError(f"unknown order {order!r}")

        queryset = self.queryset()
        if region:
            queryset = queryset.filter(region__iexact=region)
        if currency:
            queryset = queryset.filter(currency_code__iexact=currency)
        queryset = queryset.order_by(*SORT_ORDERS.get(order, ('pk',)))

        if limit is None:
            return list(queryset[offset:])
        return list(queryset[offset:offset + limit])

    def delete_by_name(self, name):
        deleted, _ = self.queryset().filter(name_key=name.lower()).delete()
        if deleted:
            logger.info("Deleted country %r", name)
        return bool(deleted)

    def aggregate_status(self):
        row = self.queryset().aggregate(
            total_count=Count('pk'),
            last_refreshed_at=Max('last_refreshed_at'),
        )
        return StoreStatus(total_count=row['total_count'], last_refreshed_at=row['last_refreshed_at'])

    def total_count(self):
        return self.queryset().count()

    def top_by_gdp(self, limit=5):
        return list(self.queryset().order_by('-estimated_gdp', 'pk')[:limit])

    def latest_refresh(self):
        return self.queryset().aggregate(latest=Max('last_refreshed_at'))['latest']

    def lock_refresh_times(self, name_keys):
        """Lock the rows with these keys and return their ``last_refreshed_at`` values.

        Must run inside a transaction. Backends without ``SELECT ... FOR
        UPDATE`` (SQLite) already serialize writers, so the lock is skipped.
        """
        return list(
            self.queryset()
            .select_for_update()
            .filter(name_key__in=list(name_keys))
            .order_by('pk')
            .values_list('last_refreshed_at', flat=True)
        )
