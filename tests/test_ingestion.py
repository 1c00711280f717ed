"""Tests for the metric ingestion runner."""
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from models.entities import Asset, Metric
from monitor.ingestion import MetricIngestionRunner
from monitor.sources import FetchedValue, FetchResult, SourceRegistry
from utils.cancellation import CancellationToken, CycleCancelled
from conftest import T0


def _source(values_by_identifier):
    source = MagicMock()

    def fetch_batch(identifiers):
        results = {}
        for identifier in identifiers:
            values = values_by_identifier.get(identifier)
            if values is None:
                results[identifier] = FetchResult.failure(identifier, "not found")
            else:
                results[identifier] = FetchResult.ok(
                    identifier, [FetchedValue(name, Decimal(str(v)), T0) for name, v in values.items()]
                )
        return results

    source.fetch_batch.side_effect = fetch_batch
    return source


@pytest.fixture
def second_asset(temp_db, tenant):
    a = Asset(tenant_id=tenant.id, name="Ether", identifier="ETHUSDT", data_source="BINANCE",
              ingestion_interval_seconds=300)
    temp_db.create_asset(a)
    temp_db.create_metric(Metric(tenant_id=tenant.id, asset_id=a.id, name="price"))
    temp_db.commit()
    return a


class TestIngestion:
    def test_stores_points_and_advances_cursor(self, temp_db, asset):
        source = _source({"BTCUSDT": {"price": 101.5, "volume_24h": 7}})
        runner = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0)

        result = runner.run()

        assert result.assets_processed == 1
        assert result.data_points_created == 1  # only `price` is a configured metric
        assert result.errors == 0
        latest = temp_db.get_latest_metric_value(asset.id, "price")
        assert latest.value == Decimal("101.5")

        stored = temp_db.get_asset(asset.id)
        assert stored.last_ingested_at == T0
        assert stored.next_ingestion_at == T0 + timedelta(seconds=60)

    def test_one_call_per_data_source_group(self, temp_db, asset, second_asset):
        source = _source({"BTCUSDT": {"price": 1}, "ETHUSDT": {"price": 2}})
        runner = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0)

        result = runner.run()

        assert result.assets_processed == 2
        source.fetch_batch.assert_called_once_with(["BTCUSDT", "ETHUSDT"])

    def test_not_due_assets_are_left_alone(self, temp_db, asset):
        temp_db.update_ingestion_cursor(asset.id, T0, T0 + timedelta(minutes=5))
        temp_db.commit()
        source = _source({"BTCUSDT": {"price": 1}})

        result = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0).run()

        assert result.assets_processed == 0
        source.fetch_batch.assert_not_called()

    def test_max_assets_takes_oldest_due_first(self, temp_db, asset, second_asset):
        temp_db.update_ingestion_cursor(asset.id, None, T0 - timedelta(minutes=1))
        temp_db.update_ingestion_cursor(second_asset.id, None, T0 - timedelta(minutes=10))
        temp_db.commit()
        source = _source({"BTCUSDT": {"price": 1}, "ETHUSDT": {"price": 2}})

        MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0).run(max_assets=1)

        source.fetch_batch.assert_called_once_with(["ETHUSDT"])

    def test_per_asset_failure_isolated(self, temp_db, asset, second_asset):
        source = _source({"ETHUSDT": {"price": 2}})
        runner = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0)

        result = runner.run()

        assert result.assets_processed == 1
        assert result.errors == 1
        # Failed asset keeps its cursor so it is retried next tick
        assert temp_db.get_asset(asset.id).next_ingestion_at is None
        assert temp_db.get_asset(second_asset.id).next_ingestion_at == T0 + timedelta(seconds=300)

    def test_fetch_exception_counts_whole_group(self, temp_db, asset, second_asset):
        source = MagicMock()
        source.fetch_batch.side_effect = RuntimeError("exchange down")

        result = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0).run()

        assert result.errors == 2
        assert result.assets_processed == 0
        assert temp_db.count_metric_data() == 0

    def test_unknown_source_counts_errors(self, temp_db, asset):
        result = MetricIngestionRunner(temp_db, SourceRegistry(), clock=lambda: T0).run()
        assert result.errors == 1

    def test_metric_names_matched_case_insensitively(self, temp_db, asset):
        source = _source({"BTCUSDT": {"PRICE": 5}})
        result = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0).run()
        assert result.data_points_created == 1

    def test_cancellation_between_assets(self, temp_db, asset, second_asset):
        token = CancellationToken()
        source = MagicMock()

        def fetch_batch(identifiers):
            token.cancel()
            return {i: FetchResult.ok(i, [FetchedValue("price", Decimal("1"), T0)]) for i in identifiers}

        source.fetch_batch.side_effect = fetch_batch
        runner = MetricIngestionRunner(temp_db, SourceRegistry({"BINANCE": source}), clock=lambda: T0)

        with pytest.raises(CycleCancelled):
            runner.run(cancel=token)

        assert temp_db.count_metric_data() == 0
