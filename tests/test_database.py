"""Tests for the database module."""
import pytest
from datetime import timedelta
from decimal import Decimal

from models.database import Database
from models.entities import Asset, Metric, MetricDataPoint, Notification, Rule, Signal, Tenant
from models.errors import EntityNotFoundError, LookupNotFoundError
from models.tenancy import TenantScope
from conftest import T0


def test_table_creation(temp_db):
    """Verify all tables exist after init."""
    tables = temp_db.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table'"
    ).fetchall()
    names = {t["name"] for t in tables}
    for expected in ("tenants", "assets", "metrics", "metric_data", "rules", "breach_states",
                     "signals", "signal_resolutions", "notifications", "lookup_types", "lookup_values"):
        assert expected in names


def test_lookups_seeded_and_resolvable(temp_db):
    op_id = temp_db.resolve_lookup_id("RULE_OPERATOR", "gte")
    assert temp_db.resolve_lookup_code(op_id) == "GTE"
    with pytest.raises(LookupNotFoundError):
        temp_db.resolve_lookup_id("RULE_OPERATOR", "BETWEEN")


def test_reconnect_does_not_duplicate_lookups(temp_db):
    before = temp_db.conn.execute("SELECT COUNT(*) AS cnt FROM lookup_values").fetchone()["cnt"]
    temp_db._seed_lookups()
    after = temp_db.conn.execute("SELECT COUNT(*) AS cnt FROM lookup_values").fetchone()["cnt"]
    assert before == after


def test_close_discards_uncommitted_work(tmp_path):
    path = str(tmp_path / "uow.db")
    with Database(path) as db:
        db.create_tenant(Tenant(name="Ghost"))
    with Database(path) as db:
        assert db.get_tenant_by_name("Ghost") is None


def test_commit_persists_across_connections(tmp_path):
    path = str(tmp_path / "uow.db")
    with Database(path) as db:
        db.create_tenant(Tenant(name="Kept"))
        db.commit()
    with Database(path) as db:
        assert db.get_tenant_by_name("Kept") is not None


def test_savepoint_rolls_back_only_its_block(tmp_path):
    path = str(tmp_path / "uow.db")
    with Database(path) as db:
        db.create_tenant(Tenant(name="Before"))
        with pytest.raises(RuntimeError):
            with db.savepoint():
                db.create_tenant(Tenant(name="Inside"))
                raise RuntimeError("boom")
        assert db.get_tenant_by_name("Inside") is None
        db.commit()
    with Database(path) as db:
        assert db.get_tenant_by_name("Before") is not None
        assert db.get_tenant_by_name("Inside") is None


def test_savepoint_does_not_commit_on_success(tmp_path):
    path = str(tmp_path / "uow.db")
    with Database(path) as db:
        with db.savepoint():
            db.create_tenant(Tenant(name="Staged"))
        assert db.conn.in_transaction
    with Database(path) as db:
        assert db.get_tenant_by_name("Staged") is None


def test_pending_notifications_put_retryable_first(temp_db, asset, make_rule):
    rule = make_rule()
    signal = Signal(tenant_id=asset.tenant_id, rule_id=rule.id, asset_id=asset.id,
                    title="[WARNING] x: Threshold breached", trigger_value=150, threshold_value=100)
    temp_db.add_signal(signal)
    channel_id = temp_db.resolve_lookup_id("NOTIFICATION_CHANNEL_TYPE", "EMAIL")
    ids = []
    for retries in (3, 0, 5, 1):
        n = Notification(tenant_id=asset.tenant_id, signal_id=signal.id, channel_type_id=channel_id,
                         recipient="ops@example.com", subject="s", body="b", retry_count=retries)
        temp_db.add_notification(n)
        ids.append(n.id)

    assert [n.id for n in temp_db.get_pending_notifications()] == ids
    ordered = temp_db.get_pending_notifications(max_retry_count=3)
    assert [n.retry_count for n in ordered] == [0, 1, 3, 5]


def test_asset_round_trip_with_metrics(temp_db, asset):
    loaded = temp_db.get_asset(asset.id)
    assert loaded.identifier == "BTCUSDT"
    assert loaded.data_source == "BINANCE"
    assert [m.name for m in loaded.metrics] == ["price"]
    assert loaded.next_ingestion_at is None


def test_assets_due_never_ingested_first(temp_db, tenant, asset):
    later = Asset(tenant_id=tenant.id, name="Ether", identifier="ETHUSDT")
    temp_db.create_asset(later)
    temp_db.update_ingestion_cursor(asset.id, T0, T0 - timedelta(seconds=1))
    temp_db.commit()

    due = temp_db.get_assets_due(T0)
    assert [a.name for a in due] == ["Ether", "Bitcoin"]


def test_inactive_assets_not_due(temp_db, tenant):
    a = Asset(tenant_id=tenant.id, name="Old", identifier="OLD", is_active=False)
    temp_db.create_asset(a)
    temp_db.commit()
    assert temp_db.get_assets_due(T0) == []


def test_latest_metric_value_picks_newest(temp_db, asset, record_value):
    record_value(1, T0)
    record_value(3, T0 + timedelta(minutes=2))
    record_value(2, T0 + timedelta(minutes=1))
    latest = temp_db.get_latest_metric_value(asset.id, "PRICE")
    assert latest.value == Decimal("3")
    assert temp_db.count_metric_data(asset.id) == 3


def test_latest_metric_value_ignores_inactive_metric(temp_db, asset, record_value):
    record_value(5)
    temp_db.conn.execute("UPDATE metrics SET is_active = 0 WHERE id = ?", (asset.metrics[0].id,))
    assert temp_db.get_latest_metric_value(asset.id, "price") is None


def test_decimal_values_stored_exactly(temp_db, asset):
    temp_db.add_metric_data([MetricDataPoint(tenant_id=asset.tenant_id, metric_id=asset.metrics[0].id,
                                             value="0.123456789012345678", timestamp=T0)])
    assert temp_db.get_latest_metric_value(asset.id, "price").value == Decimal("0.123456789012345678")


def test_rules_round_trip_and_toggle(temp_db, make_rule):
    rule = make_rule(operator="LTE", threshold="-10.5", severity="CRITICAL", required=2)
    loaded = temp_db.get_rule(rule.id)
    assert loaded.operator == "LTE"
    assert loaded.threshold == Decimal("-10.5")
    assert loaded.severity == "CRITICAL"
    assert loaded.consecutive_breaches_required == 2

    temp_db.set_rule_active(rule.id, False)
    assert temp_db.get_active_rules() == []
    assert len(temp_db.list_rules()) == 1

    with pytest.raises(EntityNotFoundError):
        temp_db.set_rule_active(999, True)


def test_breach_state_created_once(temp_db, make_rule):
    rule = make_rule()
    first = temp_db.get_or_create_breach_state(rule.tenant_id, rule.id)
    first.record_breach(Decimal("150"), T0)
    temp_db.save_breach_state(first)

    again = temp_db.get_or_create_breach_state(rule.tenant_id, rule.id)
    assert again.id == first.id
    assert again.consecutive_breaches == 1
    assert again.last_metric_value == Decimal("150")


def test_resolve_signal(temp_db, asset, make_rule):
    rule = make_rule()
    signal = Signal(tenant_id=asset.tenant_id, rule_id=rule.id, asset_id=asset.id,
                    title="[WARNING] x: Threshold breached", trigger_value=150, threshold_value=100)
    temp_db.add_signal(signal)

    resolved = temp_db.resolve_signal(signal.id, "oncall", notes="false alarm", at=T0)
    assert resolved.status == "RESOLVED"
    assert resolved.resolution.resolved_by == "oncall"
    assert resolved.resolution.notes == "false alarm"

    # Resolving twice is a no-op
    assert temp_db.resolve_signal(signal.id, "someone-else").resolution.resolved_by == "oncall"
    assert temp_db.list_signals(status="OPEN") == []
    assert len(temp_db.list_signals(status="resolved")) == 1

    with pytest.raises(EntityNotFoundError):
        temp_db.resolve_signal(999, "oncall")


class TestTenantScope:
    def test_scope_filters_rules(self, temp_db, tenant, make_rule):
        make_rule()
        other = Tenant(name="Other")
        temp_db.create_tenant(other)
        other_asset = Asset(tenant_id=other.id, name="Other asset", identifier="XRPUSDT")
        temp_db.create_asset(other_asset)
        temp_db.create_rule(Rule(tenant_id=other.id, asset_id=other_asset.id, name="other rule",
                                 metric_name="price", operator="GT", threshold=1))
        temp_db.commit()

        scoped = Database(temp_db.db_path, TenantScope.for_tenant(tenant.id))
        scoped.connect()
        try:
            assert [r.name for r in scoped.list_rules()] == ["BTC above 100"]
            assert [a.name for a in scoped.get_assets_due(T0)] == ["Bitcoin"]
        finally:
            scoped.close()

        assert len(temp_db.list_rules()) == 2

    def test_for_tenant_rejects_invalid_id(self):
        with pytest.raises(ValueError):
            TenantScope.for_tenant(0)

    def test_all_tenants_has_no_clause(self):
        assert TenantScope.all_tenants().clause() == ("", [])
        assert TenantScope.for_tenant(3).clause("r.tenant_id") == (" AND r.tenant_id = ?", [3])
