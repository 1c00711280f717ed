"""SQLite persistence for assets, metric data, rules, breach states, signals and notifications.

One `Database` instance is one unit of work: write methods only stage changes
and the caller decides when to `commit()`. Closing without a commit discards
whatever was staged.
"""
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from models.entities import (
    Asset, BreachState, Metric, MetricDataPoint, Notification, Rule, Signal, SignalResolution, Tenant, utcnow,
)
from models.enums import LOOKUP_SEED, LookupType, SignalStatus
from models.errors import EntityNotFoundError, LookupNotFoundError
from models.tenancy import TenantScope

logger = logging.getLogger("signalengine.db")


def _ts(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(text):
    if text is None:
        return None
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _dec(text):
    return None if text is None else Decimal(text)


class Database:
    def __init__(self, db_path="data/signalengine.db", scope=None):
        self.db_path = db_path
        self.scope = scope or TenantScope.all_tenants()
        self.conn = None
        self._lookup_ids = {}
        self._lookup_codes = {}

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        self._seed_lookups()
        return self

    def close(self):
        if self.conn:
            if self.conn.in_transaction:
                logger.debug("Discarding uncommitted changes on close")
                self.conn.rollback()
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def commit(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    @contextmanager
    def savepoint(self, name="unit"):
        """Undo everything written inside the block if it raises.

        Nests inside the open transaction, so a clean exit keeps the writes
        pending until the next commit.
        """
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self.conn.execute(f"RELEASE SAVEPOINT {name}")

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS lookup_types (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS lookup_values (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                lookup_type_id INTEGER NOT NULL,
                code TEXT NOT NULL,
                UNIQUE (lookup_type_id, code),
                FOREIGN KEY (lookup_type_id) REFERENCES lookup_types(id)
            );

            CREATE TABLE IF NOT EXISTS tenants (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                notification_channel TEXT,
                notification_recipient TEXT,
                is_active INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS assets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                identifier TEXT NOT NULL,
                data_source_id INTEGER NOT NULL,
                ingestion_interval_seconds INTEGER NOT NULL DEFAULT 60,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                last_ingested_at TEXT,
                next_ingestion_at TEXT,
                UNIQUE (tenant_id, name),
                FOREIGN KEY (tenant_id) REFERENCES tenants(id),
                FOREIGN KEY (data_source_id) REFERENCES lookup_values(id)
            );

            CREATE INDEX IF NOT EXISTS idx_assets_next_ingestion
                ON assets(next_ingestion_at);

            CREATE TABLE IF NOT EXISTS metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                asset_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                metric_type_id INTEGER NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                UNIQUE (asset_id, name),
                FOREIGN KEY (tenant_id) REFERENCES tenants(id),
                FOREIGN KEY (asset_id) REFERENCES assets(id),
                FOREIGN KEY (metric_type_id) REFERENCES lookup_values(id)
            );

            CREATE TABLE IF NOT EXISTS metric_data (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                metric_id INTEGER NOT NULL,
                value TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (tenant_id) REFERENCES tenants(id),
                FOREIGN KEY (metric_id) REFERENCES metrics(id)
            );

            CREATE INDEX IF NOT EXISTS idx_metric_data_latest
                ON metric_data(metric_id, timestamp);

            CREATE TABLE IF NOT EXISTS rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                asset_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                metric_name TEXT NOT NULL,
                operator_id INTEGER NOT NULL,
                threshold TEXT NOT NULL,
                severity_id INTEGER NOT NULL,
                evaluation_frequency_id INTEGER NOT NULL,
                consecutive_breaches_required INTEGER NOT NULL DEFAULT 1
                    CHECK (consecutive_breaches_required >= 1),
                is_active INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (tenant_id) REFERENCES tenants(id),
                FOREIGN KEY (asset_id) REFERENCES assets(id),
                FOREIGN KEY (operator_id) REFERENCES lookup_values(id),
                FOREIGN KEY (severity_id) REFERENCES lookup_values(id),
                FOREIGN KEY (evaluation_frequency_id) REFERENCES lookup_values(id)
            );

            CREATE TABLE IF NOT EXISTS breach_states (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                rule_id INTEGER NOT NULL,
                consecutive_breaches INTEGER NOT NULL DEFAULT 0,
                last_metric_value TEXT,
                is_breached INTEGER NOT NULL DEFAULT 0,
                last_evaluated_at TEXT,
                UNIQUE (tenant_id, rule_id),
                FOREIGN KEY (rule_id) REFERENCES rules(id)
            );

            CREATE TABLE IF NOT EXISTS signals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                rule_id INTEGER NOT NULL,
                asset_id INTEGER NOT NULL,
                signal_status_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                trigger_value TEXT NOT NULL,
                threshold_value TEXT NOT NULL,
                triggered_at TEXT NOT NULL,
                FOREIGN KEY (rule_id) REFERENCES rules(id),
                FOREIGN KEY (asset_id) REFERENCES assets(id),
                FOREIGN KEY (signal_status_id) REFERENCES lookup_values(id)
            );

            CREATE INDEX IF NOT EXISTS idx_signals_triggered
                ON signals(triggered_at);

            CREATE TABLE IF NOT EXISTS signal_resolutions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                signal_id INTEGER NOT NULL UNIQUE,
                resolved_by TEXT NOT NULL,
                resolved_at TEXT NOT NULL,
                notes TEXT,
                FOREIGN KEY (signal_id) REFERENCES signals(id)
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id INTEGER NOT NULL,
                signal_id INTEGER NOT NULL,
                channel_type_id INTEGER NOT NULL,
                recipient TEXT NOT NULL,
                subject TEXT NOT NULL,
                body TEXT NOT NULL,
                is_sent INTEGER NOT NULL DEFAULT 0,
                retry_count INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                sent_at TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (signal_id) REFERENCES signals(id),
                FOREIGN KEY (channel_type_id) REFERENCES lookup_values(id)
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_pending
                ON notifications(is_sent);
        """)
        self.conn.commit()

    def _seed_lookups(self):
        for lookup_type, codes in LOOKUP_SEED.items():
            self.conn.execute("INSERT OR IGNORE INTO lookup_types (code) VALUES (?)", (lookup_type.value,))
            type_id = self.conn.execute(
                "SELECT id FROM lookup_types WHERE code = ?", (lookup_type.value,)
            ).fetchone()["id"]
            self.conn.executemany(
                "INSERT OR IGNORE INTO lookup_values (lookup_type_id, code) VALUES (?, ?)",
                [(type_id, code.value) for code in codes],
            )
        self.conn.commit()

    # --- Lookups ---

    def resolve_lookup_id(self, type_code, code):
        """Map a human code such as ("SIGNAL_STATUS", "OPEN") to its lookup id."""
        type_code = type_code.value if hasattr(type_code, "value") else type_code
        code = code.value if hasattr(code, "value") else str(code).upper()
        key = (type_code, code)
        if key not in self._lookup_ids:
            row = self.conn.execute("""
                SELECT lv.id FROM lookup_values lv
                JOIN lookup_types lt ON lt.id = lv.lookup_type_id
                WHERE lt.code = ? AND lv.code = ?
            """, key).fetchone()
            if row is None:
                raise LookupNotFoundError(type_code, code)
            self._lookup_ids[key] = row["id"]
            self._lookup_codes[row["id"]] = code
        return self._lookup_ids[key]

    def resolve_lookup_code(self, lookup_id):
        if lookup_id not in self._lookup_codes:
            row = self.conn.execute("SELECT code FROM lookup_values WHERE id = ?", (lookup_id,)).fetchone()
            if row is None:
                raise EntityNotFoundError("LookupValue", lookup_id)
            self._lookup_codes[lookup_id] = row["code"]
        return self._lookup_codes[lookup_id]

    # --- Tenants ---

    def create_tenant(self, tenant: Tenant):
        cur = self.conn.execute("""
            INSERT INTO tenants (name, notification_channel, notification_recipient, is_active)
            VALUES (?, ?, ?, ?)
        """, (tenant.name, tenant.notification_channel, tenant.notification_recipient, int(tenant.is_active)))
        tenant.id = cur.lastrowid
        return tenant.id

    def get_tenant(self, tenant_id):
        row = self.conn.execute("SELECT * FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        return self._tenant_from_row(row) if row else None

    def get_tenant_by_name(self, name):
        row = self.conn.execute("SELECT * FROM tenants WHERE name = ?", (name,)).fetchone()
        return self._tenant_from_row(row) if row else None

    def _tenant_from_row(self, row):
        return Tenant(
            id=row["id"], name=row["name"],
            notification_channel=row["notification_channel"],
            notification_recipient=row["notification_recipient"],
            is_active=bool(row["is_active"]),
        )

    # --- Assets & Metrics ---

    def create_asset(self, asset: Asset):
        data_source_id = self.resolve_lookup_id(LookupType.DATA_SOURCE, asset.data_source)
        cur = self.conn.execute("""
            INSERT INTO assets
            (tenant_id, name, identifier, data_source_id, ingestion_interval_seconds,
             description, is_active, last_ingested_at, next_ingestion_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            asset.tenant_id, asset.name, asset.identifier, data_source_id,
            asset.ingestion_interval_seconds, asset.description, int(asset.is_active),
            _ts(asset.last_ingested_at), _ts(asset.next_ingestion_at),
        ))
        asset.id = cur.lastrowid
        return asset.id

    def create_metric(self, metric: Metric):
        metric_type_id = self.resolve_lookup_id(LookupType.METRIC_TYPE, metric.metric_type)
        cur = self.conn.execute("""
            INSERT INTO metrics (tenant_id, asset_id, name, metric_type_id, is_active)
            VALUES (?, ?, ?, ?, ?)
        """, (metric.tenant_id, metric.asset_id, metric.name, metric_type_id, int(metric.is_active)))
        metric.id = cur.lastrowid
        return metric.id

    def get_asset(self, asset_id):
        scope_sql, scope_params = self.scope.clause("a.tenant_id")
        row = self.conn.execute(f"""
            SELECT a.*, ds.code AS data_source_code FROM assets a
            JOIN lookup_values ds ON ds.id = a.data_source_id
            WHERE a.id = ?{scope_sql}
        """, [asset_id] + scope_params).fetchone()
        if row is None:
            return None
        asset = self._asset_from_row(row)
        asset.metrics = self._active_metrics(asset.id)
        return asset

    def get_asset_by_name(self, tenant_id, name):
        row = self.conn.execute(
            "SELECT id FROM assets WHERE tenant_id = ? AND name = ?", (tenant_id, name)
        ).fetchone()
        return self.get_asset(row["id"]) if row else None

    def get_assets_due(self, now, limit=1000):
        """Active assets whose cursor is unset or has passed, oldest-due first."""
        scope_sql, scope_params = self.scope.clause("a.tenant_id")
        rows = self.conn.execute(f"""
            SELECT a.*, ds.code AS data_source_code FROM assets a
            JOIN lookup_values ds ON ds.id = a.data_source_id
            WHERE a.is_active = 1
              AND (a.next_ingestion_at IS NULL OR a.next_ingestion_at <= ?){scope_sql}
            ORDER BY a.next_ingestion_at IS NOT NULL, a.next_ingestion_at, a.id
            LIMIT ?
        """, [_ts(now)] + scope_params + [limit]).fetchall()
        assets = [self._asset_from_row(r) for r in rows]
        for asset in assets:
            asset.metrics = self._active_metrics(asset.id)
        return assets

    def _active_metrics(self, asset_id):
        rows = self.conn.execute("""
            SELECT m.*, mt.code AS metric_type_code FROM metrics m
            JOIN lookup_values mt ON mt.id = m.metric_type_id
            WHERE m.asset_id = ? AND m.is_active = 1
            ORDER BY m.id
        """, (asset_id,)).fetchall()
        return [
            Metric(id=r["id"], tenant_id=r["tenant_id"], asset_id=r["asset_id"], name=r["name"],
                   metric_type=r["metric_type_code"], is_active=bool(r["is_active"]))
            for r in rows
        ]

    def _asset_from_row(self, row):
        return Asset(
            id=row["id"], tenant_id=row["tenant_id"], name=row["name"], identifier=row["identifier"],
            data_source=row["data_source_code"],
            ingestion_interval_seconds=row["ingestion_interval_seconds"],
            description=row["description"], is_active=bool(row["is_active"]),
            last_ingested_at=_dt(row["last_ingested_at"]),
            next_ingestion_at=_dt(row["next_ingestion_at"]),
        )

    def add_metric_data(self, points):
        self.conn.executemany("""
            INSERT INTO metric_data (tenant_id, metric_id, value, timestamp)
            VALUES (?, ?, ?, ?)
        """, [(p.tenant_id, p.metric_id, str(p.value), _ts(p.timestamp)) for p in points])
        return len(points)

    def update_ingestion_cursor(self, asset_id, last_ingested_at, next_ingestion_at):
        self.conn.execute("""
            UPDATE assets SET last_ingested_at = ?, next_ingestion_at = ? WHERE id = ?
        """, (_ts(last_ingested_at), _ts(next_ingestion_at), asset_id))

    def get_latest_metric_value(self, asset_id, metric_name):
        """Most recent data point for the named active metric of an asset, or None."""
        row = self.conn.execute("""
            SELECT md.* FROM metric_data md
            JOIN metrics m ON m.id = md.metric_id
            WHERE m.asset_id = ? AND lower(m.name) = lower(?) AND m.is_active = 1
            ORDER BY md.timestamp DESC, md.id DESC
            LIMIT 1
        """, (asset_id, metric_name)).fetchone()
        if row is None:
            return None
        return MetricDataPoint(
            id=row["id"], tenant_id=row["tenant_id"], metric_id=row["metric_id"],
            value=Decimal(row["value"]), timestamp=_dt(row["timestamp"]),
        )

    def count_metric_data(self, asset_id=None):
        if asset_id is None:
            row = self.conn.execute("SELECT COUNT(*) AS cnt FROM metric_data").fetchone()
        else:
            row = self.conn.execute("""
                SELECT COUNT(*) AS cnt FROM metric_data md
                JOIN metrics m ON m.id = md.metric_id WHERE m.asset_id = ?
            """, (asset_id,)).fetchone()
        return row["cnt"]

    # --- Rules ---

    _RULE_SELECT = """
        SELECT r.*, op.code AS operator_code, sev.code AS severity_code,
               freq.code AS frequency_code
        FROM rules r
        JOIN lookup_values op ON op.id = r.operator_id
        JOIN lookup_values sev ON sev.id = r.severity_id
        JOIN lookup_values freq ON freq.id = r.evaluation_frequency_id
    """

    def create_rule(self, rule: Rule):
        cur = self.conn.execute("""
            INSERT INTO rules
            (tenant_id, asset_id, name, description, metric_name, operator_id, threshold,
             severity_id, evaluation_frequency_id, consecutive_breaches_required, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rule.tenant_id, rule.asset_id, rule.name, rule.description, rule.metric_name,
            self.resolve_lookup_id(LookupType.RULE_OPERATOR, rule.operator),
            str(rule.threshold),
            self.resolve_lookup_id(LookupType.SEVERITY, rule.severity),
            self.resolve_lookup_id(LookupType.RULE_EVALUATION_FREQUENCY, rule.evaluation_frequency),
            rule.consecutive_breaches_required, int(rule.is_active),
        ))
        rule.id = cur.lastrowid
        return rule.id

    def get_rule(self, rule_id):
        scope_sql, scope_params = self.scope.clause("r.tenant_id")
        row = self.conn.execute(
            f"{self._RULE_SELECT} WHERE r.id = ?{scope_sql}", [rule_id] + scope_params
        ).fetchone()
        return self._rule_from_row(row) if row else None

    def get_active_rules(self):
        """Active rules with their operator, severity and frequency codes resolved."""
        scope_sql, scope_params = self.scope.clause("r.tenant_id")
        rows = self.conn.execute(
            f"{self._RULE_SELECT} WHERE r.is_active = 1{scope_sql} ORDER BY r.id", scope_params
        ).fetchall()
        return [self._rule_from_row(r) for r in rows]

    def list_rules(self):
        scope_sql, scope_params = self.scope.clause("r.tenant_id")
        rows = self.conn.execute(
            f"{self._RULE_SELECT} WHERE 1=1{scope_sql} ORDER BY r.id", scope_params
        ).fetchall()
        return [self._rule_from_row(r) for r in rows]

    def set_rule_active(self, rule_id, active):
        scope_sql, scope_params = self.scope.clause()
        cur = self.conn.execute(
            f"UPDATE rules SET is_active = ? WHERE id = ?{scope_sql}",
            [int(active), rule_id] + scope_params,
        )
        if cur.rowcount == 0:
            raise EntityNotFoundError("Rule", rule_id)

    def _rule_from_row(self, row):
        return Rule(
            id=row["id"], tenant_id=row["tenant_id"], asset_id=row["asset_id"],
            name=row["name"], description=row["description"], metric_name=row["metric_name"],
            operator=row["operator_code"], threshold=Decimal(row["threshold"]),
            severity=row["severity_code"], evaluation_frequency=row["frequency_code"],
            consecutive_breaches_required=row["consecutive_breaches_required"],
            is_active=bool(row["is_active"]),
        )

    # --- Breach States ---

    def get_or_create_breach_state(self, tenant_id, rule_id):
        row = self._breach_state_row(tenant_id, rule_id)
        if row is None:
            self.conn.execute("""
                INSERT OR IGNORE INTO breach_states (tenant_id, rule_id, consecutive_breaches, last_evaluated_at)
                VALUES (?, ?, 0, ?)
            """, (tenant_id, rule_id, _ts(utcnow())))
            row = self._breach_state_row(tenant_id, rule_id)
        return BreachState(
            id=row["id"], tenant_id=row["tenant_id"], rule_id=row["rule_id"],
            consecutive_breaches=row["consecutive_breaches"],
            last_metric_value=_dec(row["last_metric_value"]),
            is_breached=bool(row["is_breached"]),
            last_evaluated_at=_dt(row["last_evaluated_at"]),
        )

    def _breach_state_row(self, tenant_id, rule_id):
        return self.conn.execute(
            "SELECT * FROM breach_states WHERE tenant_id = ? AND rule_id = ?", (tenant_id, rule_id)
        ).fetchone()

    def save_breach_state(self, state: BreachState):
        self.conn.execute("""
            UPDATE breach_states
            SET consecutive_breaches = ?, last_metric_value = ?, is_breached = ?, last_evaluated_at = ?
            WHERE tenant_id = ? AND rule_id = ?
        """, (
            state.consecutive_breaches,
            None if state.last_metric_value is None else str(state.last_metric_value),
            int(state.is_breached), _ts(state.last_evaluated_at),
            state.tenant_id, state.rule_id,
        ))

    # --- Signals ---

    def add_signal(self, signal: Signal):
        status_id = self.resolve_lookup_id(LookupType.SIGNAL_STATUS, signal.status)
        cur = self.conn.execute("""
            INSERT INTO signals
            (tenant_id, rule_id, asset_id, signal_status_id, title, description,
             trigger_value, threshold_value, triggered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            signal.tenant_id, signal.rule_id, signal.asset_id, status_id, signal.title,
            signal.description, str(signal.trigger_value), str(signal.threshold_value),
            _ts(signal.triggered_at),
        ))
        signal.id = cur.lastrowid
        return signal.id

    _SIGNAL_SELECT = """
        SELECT s.*, st.code AS status_code,
               res.id AS resolution_id, res.resolved_by, res.resolved_at, res.notes
        FROM signals s
        JOIN lookup_values st ON st.id = s.signal_status_id
        LEFT JOIN signal_resolutions res ON res.signal_id = s.id
    """

    def get_signal(self, signal_id):
        scope_sql, scope_params = self.scope.clause("s.tenant_id")
        row = self.conn.execute(
            f"{self._SIGNAL_SELECT} WHERE s.id = ?{scope_sql}", [signal_id] + scope_params
        ).fetchone()
        return self._signal_from_row(row) if row else None

    def list_signals(self, status=None, limit=50):
        scope_sql, scope_params = self.scope.clause("s.tenant_id")
        query = f"{self._SIGNAL_SELECT} WHERE 1=1{scope_sql}"
        params = list(scope_params)
        if status:
            query += " AND st.code = ?"
            params.append(status.value if hasattr(status, "value") else str(status).upper())
        query += " ORDER BY s.triggered_at DESC, s.id DESC LIMIT ?"
        params.append(limit)
        return [self._signal_from_row(r) for r in self.conn.execute(query, params).fetchall()]

    def resolve_signal(self, signal_id, resolved_by, notes=None, at=None):
        signal = self.get_signal(signal_id)
        if signal is None:
            raise EntityNotFoundError("Signal", signal_id)
        if signal.status == SignalStatus.RESOLVED.value:
            return signal
        resolution = SignalResolution(signal_id=signal_id, resolved_by=resolved_by,
                                      resolved_at=at or utcnow(), notes=notes)
        self.conn.execute("""
            INSERT INTO signal_resolutions (signal_id, resolved_by, resolved_at, notes)
            VALUES (?, ?, ?, ?)
        """, (signal_id, resolution.resolved_by, _ts(resolution.resolved_at), resolution.notes))
        self.conn.execute(
            "UPDATE signals SET signal_status_id = ? WHERE id = ?",
            (self.resolve_lookup_id(LookupType.SIGNAL_STATUS, SignalStatus.RESOLVED), signal_id),
        )
        return self.get_signal(signal_id)

    def _signal_from_row(self, row):
        resolution = None
        if row["resolution_id"] is not None:
            resolution = SignalResolution(
                id=row["resolution_id"], signal_id=row["id"], resolved_by=row["resolved_by"],
                resolved_at=_dt(row["resolved_at"]), notes=row["notes"],
            )
        return Signal(
            id=row["id"], tenant_id=row["tenant_id"], rule_id=row["rule_id"], asset_id=row["asset_id"],
            status=row["status_code"], title=row["title"], description=row["description"],
            trigger_value=Decimal(row["trigger_value"]), threshold_value=Decimal(row["threshold_value"]),
            triggered_at=_dt(row["triggered_at"]), resolution=resolution,
        )

    # --- Notifications ---

    def add_notification(self, notification: Notification):
        cur = self.conn.execute("""
            INSERT INTO notifications
            (tenant_id, signal_id, channel_type_id, recipient, subject, body,
             is_sent, retry_count, error_message, sent_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            notification.tenant_id, notification.signal_id, notification.channel_type_id,
            notification.recipient, notification.subject, notification.body,
            int(notification.is_sent), notification.retry_count, notification.error_message,
            _ts(notification.sent_at), _ts(notification.created_at),
        ))
        notification.id = cur.lastrowid
        return notification.id

    def get_pending_notifications(self, max_retry_count=None):
        """Every unsent notification, oldest first.

        With max_retry_count, notifications that still have retries left come
        before exhausted ones, so a backlog of exhausted rows cannot crowd a
        batch.
        """
        scope_sql, scope_params = self.scope.clause()
        order_sql, order_params = "id", []
        if max_retry_count is not None:
            order_sql, order_params = "retry_count >= ?, id", [max_retry_count]
        rows = self.conn.execute(
            f"SELECT * FROM notifications WHERE is_sent = 0{scope_sql} ORDER BY {order_sql}",
            scope_params + order_params,
        ).fetchall()
        return [self._notification_from_row(r) for r in rows]

    def get_notification(self, notification_id):
        row = self.conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
        return self._notification_from_row(row) if row else None

    def list_notifications(self, limit=50):
        scope_sql, scope_params = self.scope.clause()
        rows = self.conn.execute(
            f"SELECT * FROM notifications WHERE 1=1{scope_sql} ORDER BY id DESC LIMIT ?",
            scope_params + [limit],
        ).fetchall()
        return [self._notification_from_row(r) for r in rows]

    def update_notification(self, notification: Notification):
        self.conn.execute("""
            UPDATE notifications
            SET is_sent = ?, retry_count = ?, error_message = ?, sent_at = ?
            WHERE id = ?
        """, (
            int(notification.is_sent), notification.retry_count, notification.error_message,
            _ts(notification.sent_at), notification.id,
        ))

    def _notification_from_row(self, row):
        return Notification(
            id=row["id"], tenant_id=row["tenant_id"], signal_id=row["signal_id"],
            channel_type_id=row["channel_type_id"], recipient=row["recipient"],
            subject=row["subject"], body=row["body"], is_sent=bool(row["is_sent"]),
            retry_count=row["retry_count"], error_message=row["error_message"],
            sent_at=_dt(row["sent_at"]), created_at=_dt(row["created_at"]),
        )
