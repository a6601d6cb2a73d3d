import datetime
import itertools
import random

from django.db import DatabaseError, IntegrityError
from django.test import SimpleTestCase, TestCase

from countries.exceptions import ArtifactPublishFailure, ExternalFetchFailed, NoValidData, PersistenceFailure
from countries.models import Country
from countries.store import CountryStore, TransactionState
from countries.sync import RefreshRun, RefreshState, Synchronizer

from .fakes import RATES_URL, RecordingPublisher, StubSource, country, unavailable

T1 = datetime.datetime(2025, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)
T2 = datetime.datetime(2025, 3, 2, 9, 0, tzinfo=datetime.timezone.utc)

RATES = {"USD": 1.0, "EUR": 0.5}


def snapshot():
    return list(Country.objects.order_by("pk").values())


class PartialFailingStore(CountryStore):
    """Writes part of the batch, then fails."""

    def upsert_batch(self, rows):
        super().upsert_batch(rows[:2])
        raise DatabaseError("connection lost mid-batch")


class DuplicateKeyStore(CountryStore):
    """Writes the batch, then collides with one of its own keys."""

    def transaction(self):
        self.txn = super().transaction()
        return self.txn

    def upsert_batch(self, rows):
        super().upsert_batch(rows)
        Country.objects.using(self.using).create(name=rows[0].name.upper(), population=1)


class SynchronizerTests(TestCase):

    def setUp(self):
        Country.objects.create(name="Existing", population=5, estimated_gdp=1.0, last_refreshed_at=T1)
        self.publisher = RecordingPublisher()

    def make(self, source, store=None, clock_times=(T2,)):
        clock = itertools.chain(clock_times, itertools.repeat(clock_times[-1])).__next__
        return Synchronizer(
            source=source,
            store=store or CountryStore(),
            publisher=self.publisher,
            rng=random.Random(42),
            clock=clock,
        )

    def test_successful_refresh_commits_and_publishes(self):
        source = StubSource([country("Mockland", population=5000), country("Eurozone", currency="EUR")], RATES)

        result = self.make(source).refresh()

        self.assertEqual(result.accepted, 2)
        self.assertEqual(result.rejected, 0)
        self.assertEqual(result.run_at, T2)
        self.assertEqual(Country.objects.count(), 3)
        mockland = Country.objects.get(name_key="mockland")
        self.assertEqual(mockland.last_refreshed_at, T2)
        self.assertGreaterEqual(mockland.estimated_gdp, 5000 * 1000 / 1.0)
        self.assertLessEqual(mockland.estimated_gdp, 5000 * 2000 / 1.0)

        self.assertEqual(len(self.publisher.calls), 1)
        call = self.publisher.calls[0]
        self.assertEqual(call["total"], 3)
        self.assertEqual(call["timestamp"], T2)
        self.assertEqual(call["top"][0].name, "Mockland")
        self.assertLessEqual(len(call["top"]), 5)

    def test_persistence_error_mid_batch_leaves_no_changes(self):
        before = snapshot()
        source = StubSource([country(f"Country {i}") for i in range(5)], RATES)

        with self.assertLogs("countries.sync", level="ERROR"):
            with self.assertRaises(PersistenceFailure) as ctx:
                self.make(source, store=PartialFailingStore()).refresh()

        self.assertIsInstance(ctx.exception.__cause__, DatabaseError)
        self.assertEqual(snapshot(), before)
        self.assertEqual(self.publisher.calls, [])

    def test_integrity_error_rolls_back_the_whole_batch(self):
        before = snapshot()
        store = DuplicateKeyStore()
        source = StubSource([country(f"Country {i}") for i in range(5)], RATES)

        with self.assertLogs("countries.sync", level="ERROR"):
            with self.assertRaises(PersistenceFailure) as ctx:
                self.make(source, store=store).refresh()

        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)
        self.assertIs(store.txn.state, TransactionState.ROLLED_BACK)
        self.assertEqual(snapshot(), before)
        self.assertEqual(self.publisher.calls, [])

    def test_oversized_record_is_rejected_not_fatal(self):
        records = [country(f"Good {i}") for i in range(5)]
        records += [country("Huge", population="1e30"), country("X" * 300)]

        result = self.make(StubSource(records, RATES)).refresh()

        self.assertEqual(result.accepted, 5)
        self.assertEqual(result.rejected, 2)
        self.assertEqual(Country.objects.filter(name__startswith="Good").count(), 5)

    def test_overflowing_estimate_is_stored_as_zero(self):
        self.make(StubSource([country("Tinyland", currency="TNY")], {"TNY": 1e-320})).refresh()

        tiny = Country.objects.get(name_key="tinyland")
        self.assertIsNone(tiny.exchange_rate)
        self.assertEqual(tiny.estimated_gdp, 0)

    def test_refreshing_twice_keeps_one_row_per_name(self):
        source = StubSource([country("Japan"), country("Kenya")], RATES)
        sync = self.make(source, clock_times=(T1, T2))

        sync.refresh()
        source.countries = [country("JAPAN"), country("kenya")]
        sync.refresh()

        self.assertEqual(Country.objects.filter(name_key="japan").count(), 1)
        self.assertEqual(Country.objects.filter(name_key="kenya").count(), 1)
        self.assertEqual(Country.objects.count(), 3)
        self.assertEqual(Country.objects.get(name_key="japan").last_refreshed_at, T2)
        self.assertEqual(Country.objects.get(name_key="japan").name, "JAPAN")

    def test_last_refreshed_at_never_moves_backwards(self):
        later = T2 + datetime.timedelta(hours=1)
        sync = self.make(StubSource([country("Japan")], RATES), clock_times=(later, T2))

        sync.refresh()
        result = sync.refresh()

        self.assertEqual(result.run_at, later)
        self.assertEqual(Country.objects.get(name_key="japan").last_refreshed_at, later)

    def test_external_failure_touches_nothing(self):
        before = snapshot()

        with self.assertRaises(ExternalFetchFailed) as ctx:
            self.make(unavailable(RATES_URL)).refresh()

        self.assertEqual(ctx.exception.endpoint, RATES_URL)
        self.assertEqual(snapshot(), before)
        self.assertEqual(self.publisher.calls, [])

    def test_rejected_rows_do_not_abort_the_run(self):
        records = [country(f"Good {i}") for i in range(7)]
        records += [country("Zero", population=0), country("Gone", population=None), {"population": 5}]

        result = self.make(StubSource(records, RATES)).refresh()

        self.assertEqual(result.accepted, 7)
        self.assertEqual(result.rejected, 3)
        self.assertEqual(Country.objects.filter(name__startswith="Good").count(), 7)
        self.assertFalse(Country.objects.filter(name_key__in=["zero", "gone"]).exists())

    def test_all_rows_rejected_raises_no_valid_data(self):
        before = snapshot()
        source = StubSource([country("Zero", population=0), {"name": "Nothing"}], RATES)

        with self.assertRaises(NoValidData) as ctx:
            self.make(source).refresh()

        self.assertEqual(ctx.exception.rejected, 2)
        self.assertEqual(snapshot(), before)

    def test_missing_rate_persists_zero_gdp(self):
        self.make(StubSource([country("Nowhere", currency="XYZ")], RATES)).refresh()

        nowhere = Country.objects.get(name_key="nowhere")
        self.assertIsNone(nowhere.exchange_rate)
        self.assertEqual(nowhere.estimated_gdp, 0)

    def test_publish_failure_does_not_change_outcome(self):
        self.publisher = RecordingPublisher(error=ArtifactPublishFailure("renderer down"))

        with self.assertLogs("countries.sync", level="ERROR") as logs:
            result = self.make(StubSource([country("Mockland")], RATES)).refresh()

        self.assertEqual(result.accepted, 1)
        self.assertTrue(Country.objects.filter(name_key="mockland").exists())
        self.assertIn("Summary image was not published", logs.output[0])

    def test_missing_publisher_is_skipped(self):
        sync = Synchronizer(source=StubSource([country("Mockland")], RATES), store=CountryStore())

        with self.assertLogs("countries.sync", level="WARNING"):
            result = sync.refresh()

        self.assertEqual(result.accepted, 1)


class RefreshRunTests(SimpleTestCase):

    def test_legal_path(self):
        run = RefreshRun(started_at=T1)
        for state in (RefreshState.FETCHING_EXTERNAL, RefreshState.NORMALIZING,
                      RefreshState.PERSISTING, RefreshState.COMMITTED):
            run.advance(state)
        self.assertEqual(run.history[0], RefreshState.IDLE)
        self.assertEqual(run.state, RefreshState.COMMITTED)

    def test_illegal_transition(self):
        run = RefreshRun(started_at=T1)
        with self.assertRaises(RuntimeError):
            run.advance(RefreshState.PERSISTING)
