"""
Tests for per-shift tonnage aggregation, the shift tonnage cache and shift
statistics.

Run: python -m pytest test_shift_aggregator.py -v
"""

import threading
from datetime import date, datetime, timedelta

import pytest
import pytz

from conftest import make_record
from prodtrack.analysis.shift_aggregator import ShiftAggregator, resolve_shift
from prodtrack.config import Config
from prodtrack.core.cache import TONNAGE_CACHE_TTL, TonnageCache
from prodtrack.core.calculations.tonnage import calculate_tonnage
from prodtrack.core.models import ProductionOrder, Shift
from prodtrack.core.time_windows.shifts import NOMINAL_SHIFT_HOURS
from prodtrack.utils.diagnostics import INVALID_TIME_RANGE, ORDER_NOT_FOUND


def at(text):
    return datetime.fromisoformat(text)


@pytest.fixture
def aggregator(catalog, diagnostics):
    return ShiftAggregator(catalog, cache=TonnageCache(), diagnostics=diagnostics)


# =====================================================================
# TonnageCache
# =====================================================================

class TestTonnageCache:

    def test_put_then_get(self):
        cache = TonnageCache()
        now = at("2024-03-10T07:00")
        entry = cache.put(date(2024, 3, 10), Shift.MORNING, 1.5, now)
        assert entry.expires_at == now + timedelta(hours=16)
        assert cache.get(date(2024, 3, 10), Shift.MORNING, now) == 1.5
        assert cache.stats["hits"] == 1

    def test_miss(self):
        cache = TonnageCache()
        assert cache.get(date(2024, 3, 10), Shift.NIGHT, at("2024-03-10T07:00")) is None
        assert cache.stats["misses"] == 1

    def test_expired_entry_is_deleted(self):
        cache = TonnageCache(ttl=timedelta(hours=16))
        written = at("2024-03-10T07:00")
        cache.put(date(2024, 3, 10), Shift.MORNING, 1.0, written)

        assert cache.get(date(2024, 3, 10), Shift.MORNING, written + timedelta(hours=16)) is None
        assert cache.peek(date(2024, 3, 10), Shift.MORNING) is None
        assert cache.stats["expired"] == 1

    def test_entry_valid_just_before_expiry(self):
        cache = TonnageCache()
        written = at("2024-03-10T07:00")
        cache.put(date(2024, 3, 10), Shift.MORNING, 1.0, written)
        just_before = written + timedelta(hours=16) - timedelta(microseconds=1)
        assert cache.get(date(2024, 3, 10), Shift.MORNING, just_before) == 1.0

    def test_clear_and_clear_day(self):
        cache = TonnageCache()
        now = at("2024-03-10T07:00")
        for shift in Shift:
            cache.put(date(2024, 3, 10), shift, 1.0, now)
        cache.put(date(2024, 3, 9), Shift.NIGHT, 2.0, now)

        assert cache.clear(date(2024, 3, 10), Shift.MORNING) is True
        assert cache.clear(date(2024, 3, 10), Shift.MORNING) is False
        assert cache.clear_day(date(2024, 3, 10)) == 2
        assert len(cache) == 1

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            TonnageCache(ttl=timedelta(0))

    def test_concurrent_writers_last_write_wins(self):
        cache = TonnageCache()
        now = at("2024-03-10T07:00")

        def writer(value):
            for _ in range(200):
                cache.put(date(2024, 3, 10), Shift.MORNING, value, now)

        threads = [threading.Thread(target=writer, args=(v,)) for v in (1.0, 2.0, 3.0)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.get(date(2024, 3, 10), Shift.MORNING, now) in (1.0, 2.0, 3.0)
        assert cache.stats["writes"] == 600
        assert len(cache) == 1


# =====================================================================
# resolve_shift
# =====================================================================

class TestResolveShift:

    def test_stored_shift_wins(self):
        record = make_record("2024-03-10T06:00", shift=Shift.AFTERNOON)
        assert resolve_shift(record) == Shift.AFTERNOON

    def test_legacy_label_is_parsed(self):
        record = make_record("2024-03-10T06:00", shift="Noite")
        assert resolve_shift(record) == Shift.NIGHT

    def test_falls_back_to_timestamp(self):
        record = make_record("2024-03-10T06:00")
        assert resolve_shift(record) == Shift.MORNING


# =====================================================================
# aggregate_tonnage_by_shift
# =====================================================================

class TestAggregateTonnageByShift:

    def test_end_to_end_scenario(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        assert totals[Shift.MORNING] == pytest.approx(0.005)
        assert totals[Shift.AFTERNOON] == 0
        assert totals[Shift.NIGHT] == 0

    def test_partition_sums_to_total(self, aggregator, orders, catalog):
        records = [
            make_record("2024-03-10T06:00", order_id="A", produced=10),
            make_record("2024-03-10T14:00", order_id="B", produced=100),
            make_record("2024-03-10T23:00", order_id="A", produced=30),
            make_record("2024-03-11T03:00", order_id="B", produced=7),
        ]
        order_by_id = {o.id: o for o in orders}

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-11T04:00"))

        expected = sum(
            calculate_tonnage(order_by_id[r.order_id].product_name, r.produced_quantity, catalog)
            for r in records
        )
        assert sum(totals.values()) == pytest.approx(expected)
        assert totals[Shift.NIGHT] == pytest.approx(0.015 + 7 * 20 * 0.035 / 1000)

    def test_other_production_days_are_ignored(self, aggregator, orders):
        records = [
            make_record("2024-03-10T05:00", order_id="A", produced=10),  # previous day's night
            make_record("2024-03-11T06:00", order_id="A", produced=10),  # next day
            make_record("2024-03-10T08:00", order_id="A", produced=20),
        ]

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T09:00"))

        assert totals[Shift.MORNING] == pytest.approx(0.01)
        assert totals[Shift.NIGHT] == 0

    def test_stored_shift_overrides_clock(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10, shift="Tarde")]

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        assert totals[Shift.MORNING] == 0
        assert totals[Shift.AFTERNOON] == pytest.approx(0.005)

    def test_missing_order_and_material_are_skipped(self, aggregator, orders, diagnostics):
        records = [
            make_record("2024-03-10T06:00", order_id="A", produced=10),
            make_record("2024-03-10T06:10", order_id="ghost", produced=99),
            make_record("2024-03-10T06:20", order_id="C", produced=99),  # unknown material
        ]

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        assert totals[Shift.MORNING] == pytest.approx(0.005)
        assert diagnostics.summary() == {"order_not_found": 1, "material_not_found": 1}

    def test_warm_cache_wins_over_new_records(self, aggregator, orders):
        """Pins the cache trade-off: new records are not reflected until expiry."""
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]
        first = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        records.append(make_record("2024-03-10T07:30", order_id="A", produced=50))
        second = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T08:00"))

        assert second == first
        assert second[Shift.MORNING] == pytest.approx(0.005)

    def test_all_shifts_cached_skips_record_scan(self, aggregator, orders, diagnostics):
        aggregator.aggregate_tonnage_by_shift([], orders, at("2024-03-10T07:00"))

        # An unknown order would emit a diagnostic if records were scanned
        records = [make_record("2024-03-10T07:10", order_id="ghost")]
        aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:30"))

        assert diagnostics.count(ORDER_NOT_FOUND) == 0

    def test_expiry_triggers_recomputation(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]
        aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        records.append(make_record("2024-03-10T07:30", order_id="A", produced=50))

        before_expiry = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T22:59"))
        assert before_expiry[Shift.MORNING] == pytest.approx(0.005)

        # Written at 07:00, expires at 23:00 (same production day)
        after_expiry = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T23:00"))
        assert after_expiry[Shift.MORNING] == pytest.approx(0.03)

    def test_partially_cached_shifts(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]
        now = at("2024-03-10T07:00")
        aggregator.aggregate_tonnage_by_shift(records, orders, now)

        records.append(make_record("2024-03-10T07:30", order_id="A", produced=50))
        records.append(make_record("2024-03-10T07:40", order_id="A", produced=20, shift=Shift.AFTERNOON))
        aggregator.invalidate(now, Shift.AFTERNOON)

        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T08:00"))

        # Morning still served from cache, Afternoon recomputed
        assert totals[Shift.MORNING] == pytest.approx(0.005)
        assert totals[Shift.AFTERNOON] == pytest.approx(0.01)

    def test_invalidate_whole_day(self, aggregator, orders):
        now = at("2024-03-10T07:00")
        aggregator.aggregate_tonnage_by_shift([], orders, now)
        assert aggregator.invalidate(now) == 3
        assert len(aggregator.cache) == 0

    def test_new_production_day_uses_new_cache_keys(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]
        aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T07:00"))

        records.append(make_record("2024-03-11T06:00", order_id="A", produced=40))
        totals = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-11T06:30"))

        assert totals[Shift.MORNING] == pytest.approx(0.02)

    def test_cached_values_are_written_with_ttl(self, aggregator, orders):
        now = at("2024-03-10T07:00")
        aggregator.aggregate_tonnage_by_shift([], orders, now)
        entry = aggregator.cache.peek(date(2024, 3, 10), Shift.NIGHT)
        assert entry.value == 0.0
        assert entry.expires_at == now + timedelta(hours=16)


# =====================================================================
# Statistics
# =====================================================================

class TestShiftStatistics:

    def test_average_per_hour(self, aggregator, orders):
        records = [
            make_record("2024-03-10T06:00", order_id="A", produced=80),
            make_record("2024-03-10T07:00", order_id="B", produced=100),
        ]
        result = aggregator.calculate_average_production_per_hour(records, orders)
        assert result == pytest.approx((0.04 + 0.07) / 8)

    def test_average_with_custom_hours(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=80)]
        assert aggregator.calculate_average_production_per_hour(records, orders, 4) == pytest.approx(0.01)

    def test_average_degenerate_inputs(self, aggregator, orders, diagnostics):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=80)]
        assert aggregator.calculate_average_production_per_hour([], orders) == 0
        assert aggregator.calculate_average_production_per_hour(records, orders, 0) == 0
        assert aggregator.calculate_average_production_per_hour(records, orders, -2) == 0
        assert diagnostics.count(INVALID_TIME_RANGE) == 2

    def test_statistics_per_shift(self, aggregator, orders):
        records = [
            make_record("2024-03-10T06:00", order_id="A", produced=80),
            make_record("2024-03-10T07:00", order_id="A", produced=80),
            make_record("2024-03-10T15:00", order_id="B", produced=100),
            make_record("2024-03-10T16:00", order_id="ghost", produced=100),
            make_record("2024-03-09T15:00", order_id="B", produced=100),  # other day
        ]

        stats = aggregator.calculate_shift_statistics(records, orders, at("2024-03-10T17:00"))

        assert stats[Shift.MORNING]["total"] == pytest.approx(0.08)
        assert stats[Shift.MORNING]["average"] == pytest.approx(0.01)
        assert stats[Shift.MORNING]["record_count"] == 2
        assert stats[Shift.AFTERNOON]["total"] == pytest.approx(0.07)
        assert stats[Shift.AFTERNOON]["record_count"] == 2
        assert stats[Shift.NIGHT] == {"total": 0.0, "average": 0.0, "record_count": 0}

    def test_statistics_do_not_touch_cache(self, aggregator, orders):
        aggregator.calculate_shift_statistics([], orders, at("2024-03-10T17:00"))
        assert len(aggregator.cache) == 0

    def test_statistics_frame(self, aggregator, orders):
        records = [make_record("2024-03-10T06:00", order_id="A", produced=80)]
        df = aggregator.shift_statistics_frame(records, orders, at("2024-03-10T07:00"))

        assert list(df.columns) == ["shift", "total_tonnes", "average_tonnes_per_hour", "record_count"]
        assert list(df["shift"]) == ["Morning", "Afternoon", "Night"]
        assert df.loc[0, "total_tonnes"] == pytest.approx(0.04)


# =====================================================================
# calculate_current_shift_total_tonnage
# =====================================================================

class TestCurrentShiftTotalTonnage:

    def test_breakdown_by_material(self, aggregator, orders):
        records = [
            make_record("2024-03-10T06:00", order_id="B", produced=100),
            make_record("2024-03-10T06:30", order_id="A", produced=10),
            make_record("2024-03-10T07:00", order_id="B", produced=50),
            make_record("2024-03-10T15:00", order_id="A", produced=999),  # afternoon
        ]

        result = aggregator.calculate_current_shift_total_tonnage(records, orders, at("2024-03-10T08:00"))

        assert result["total_tonnage"] == pytest.approx(0.07 + 0.005 + 0.035)
        assert [item["name"] for item in result["material_breakdown"]] == ["Box-20", "Foil-X"]
        box = result["material_breakdown"][0]
        assert box["tonnage"] == pytest.approx(0.105)
        assert box["quantity"] == 150

    def test_unresolvable_records_left_out(self, catalog, diagnostics):
        orders = [
            ProductionOrder(id="W", product_name="Bad-Weight", planned_quantity=5),
            ProductionOrder(id="U", product_name="Unknown", planned_quantity=5),
        ]
        aggregator = ShiftAggregator(catalog, diagnostics=diagnostics)
        records = [
            make_record("2024-03-10T06:00", order_id="W"),
            make_record("2024-03-10T06:00", order_id="U"),
            make_record("2024-03-10T06:00", order_id="ghost"),
        ]

        result = aggregator.calculate_current_shift_total_tonnage(records, orders, at("2024-03-10T07:00"))

        assert result == {"total_tonnage": 0.0, "material_breakdown": []}
        assert diagnostics.summary() == {
            "malformed_weight": 1, "material_not_found": 1, "order_not_found": 1,
        }

    def test_night_shift_across_midnight(self, aggregator, orders):
        records = [
            make_record("2024-03-10T23:00", order_id="A", produced=10),
            make_record("2024-03-11T02:00", order_id="A", produced=10),
        ]
        result = aggregator.calculate_current_shift_total_tonnage(records, orders, at("2024-03-11T03:00"))
        assert result["total_tonnage"] == pytest.approx(0.01)
        assert result["material_breakdown"][0]["quantity"] == 20


# =====================================================================
# Timezone handling and fixed constants
# =====================================================================

class TestMixedTimezoneCallers:

    @pytest.fixture(autouse=True)
    def sao_paulo(self, monkeypatch):
        monkeypatch.setattr(Config, "TIMEZONE", "America/Sao_Paulo")

    def test_aware_then_naive_now_share_cache(self, aggregator, orders):
        tz = pytz.timezone("America/Sao_Paulo")
        records = [make_record("2024-03-10T06:00", order_id="A", produced=10)]

        first = aggregator.aggregate_tonnage_by_shift(records, orders, tz.localize(at("2024-03-10T07:00")))
        records.append(make_record("2024-03-10T07:30", order_id="A", produced=50))
        second = aggregator.aggregate_tonnage_by_shift(records, orders, at("2024-03-10T08:00"))

        assert second == first
        assert aggregator.cache.stats["hits"] == 3

    def test_cache_entries_stamped_in_local_wall_clock(self, aggregator, orders):
        # 10:00 UTC is 07:00 in Sao Paulo
        aggregator.aggregate_tonnage_by_shift([], orders, pytz.UTC.localize(at("2024-03-10T10:00")))

        entry = aggregator.cache.peek(date(2024, 3, 10), Shift.MORNING)
        assert entry.expires_at == at("2024-03-10T23:00")

        assert aggregator.aggregate_tonnage_by_shift([], orders, at("2024-03-10T23:00")) == {
            Shift.MORNING: 0.0, Shift.AFTERNOON: 0.0, Shift.NIGHT: 0.0,
        }
        assert aggregator.cache.stats["expired"] == 3

    def test_invalidate_with_aware_now(self, aggregator, orders):
        aggregator.aggregate_tonnage_by_shift([], orders, at("2024-03-10T07:00"))
        tz = pytz.timezone("America/Sao_Paulo")
        assert aggregator.invalidate(tz.localize(at("2024-03-10T09:00")), Shift.MORNING) == 1


class TestFixedConstants:

    def test_statistics_use_eight_hour_shift(self, catalog):
        assert NOMINAL_SHIFT_HOURS == 8
        assert ShiftAggregator(catalog).statistics_shift_hours == 8

    def test_cache_ttl_is_sixteen_hours(self):
        assert TONNAGE_CACHE_TTL == timedelta(hours=16)
        assert TonnageCache().ttl == timedelta(hours=16)
