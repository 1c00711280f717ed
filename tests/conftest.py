"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.database import Database
from models.entities import Asset, Metric, MetricDataPoint, Rule, Tenant
from datetime import datetime, timezone

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def tenant(temp_db):
    t = Tenant(name="Acme", notification_channel="WEBHOOK",
               notification_recipient="https://hooks.example.com/acme")
    temp_db.create_tenant(t)
    temp_db.commit()
    return t


@pytest.fixture
def asset(temp_db, tenant):
    """BTCUSDT on Binance with a `price` metric."""
    a = Asset(tenant_id=tenant.id, name="Bitcoin", identifier="BTCUSDT", data_source="BINANCE",
              ingestion_interval_seconds=60)
    temp_db.create_asset(a)
    metric = Metric(tenant_id=tenant.id, asset_id=a.id, name="price")
    temp_db.create_metric(metric)
    a.metrics = [metric]
    temp_db.commit()
    return a


@pytest.fixture
def make_rule(temp_db, asset):
    def _make(name="BTC above 100", operator="GT", threshold=100, required=1, severity="WARNING",
              metric_name="price", is_active=True):
        rule = Rule(
            tenant_id=asset.tenant_id, asset_id=asset.id, name=name, metric_name=metric_name,
            operator=operator, threshold=threshold, severity=severity,
            consecutive_breaches_required=required, is_active=is_active,
        )
        temp_db.create_rule(rule)
        temp_db.commit()
        return rule
    return _make


@pytest.fixture
def record_value(temp_db, asset):
    """Append a data point for the asset's `price` metric."""
    counter = {"n": 0}

    def _record(value, timestamp=None):
        counter["n"] += 1
        point = MetricDataPoint(
            tenant_id=asset.tenant_id, metric_id=asset.metrics[0].id, value=value,
            timestamp=timestamp or T0.replace(second=counter["n"] % 60, minute=counter["n"] // 60),
        )
        temp_db.add_metric_data([point])
        temp_db.commit()
        return point
    return _record
