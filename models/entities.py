"""Dataclasses for the monitored domain.

Constructors validate their invariants, so an entity that exists is a valid
one whether it was built by the catalog importer, a test or a database row.
State changes go through the small methods below rather than field writes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from models.enums import (
    BreachPhase, ChannelType, DataSourceCode, EvaluationFrequency, MetricType, OperatorCode, Severity, SignalStatus,
)
from models.errors import InvalidEntityError


def utcnow():
    return datetime.now(timezone.utc)


def to_decimal(value, name="value") -> Decimal:
    """Coerce ints, floats and numeric strings to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidEntityError(f"{name} must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidEntityError(f"{name} must be numeric, got {value!r}") from None


def _require(condition, message):
    if not condition:
        raise InvalidEntityError(message)


def _positive_id(value, name):
    _require(isinstance(value, int) and value > 0, f"{name} must be positive.")


def _not_blank(value, name):
    _require(isinstance(value, str) and value.strip() != "", f"{name} is required.")


def _code(value, enum_cls, name):
    code = value.value if hasattr(value, "value") else str(value).upper()
    valid = {e.value for e in enum_cls}
    _require(code in valid, f"{name} must be one of {sorted(valid)}, got {value!r}")
    return code


@dataclass
class Tenant:
    name: str
    notification_channel: Optional[str] = None
    notification_recipient: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None

    def __post_init__(self):
        _not_blank(self.name, "Tenant name")
        if self.notification_channel is not None:
            self.notification_channel = _code(self.notification_channel, ChannelType, "Notification channel")


@dataclass
class Metric:
    tenant_id: int
    asset_id: int
    name: str
    metric_type: str = "NUMERIC"
    is_active: bool = True
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.asset_id, "Asset ID")
        _not_blank(self.name, "Metric name")
        self.metric_type = _code(self.metric_type, MetricType, "Metric type")


@dataclass
class Asset:
    tenant_id: int
    name: str
    identifier: str
    data_source: str = DataSourceCode.BINANCE.value
    ingestion_interval_seconds: int = 60
    is_active: bool = True
    description: Optional[str] = None
    last_ingested_at: Optional[datetime] = None
    next_ingestion_at: Optional[datetime] = None
    metrics: List[Metric] = field(default_factory=list)
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _not_blank(self.name, "Asset name")
        _not_blank(self.identifier, "Asset identifier")
        self.data_source = _code(self.data_source, DataSourceCode, "Data source")
        _require(isinstance(self.ingestion_interval_seconds, int) and self.ingestion_interval_seconds >= 1,
                 "Ingestion interval must be at least 1 second.")

    def find_metric(self, metric_name) -> Optional[Metric]:
        """Match a fetched metric name to one of this asset's metrics, ignoring case."""
        wanted = metric_name.lower()
        for metric in self.metrics:
            if metric.name.lower() == wanted:
                return metric
        return None


@dataclass
class MetricDataPoint:
    tenant_id: int
    metric_id: int
    value: Decimal
    timestamp: datetime
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.metric_id, "Metric ID")
        self.value = to_decimal(self.value)
        _require(isinstance(self.timestamp, datetime), "Timestamp is required.")


@dataclass
class Rule:
    tenant_id: int
    asset_id: int
    name: str
    metric_name: str
    operator: str
    threshold: Decimal
    severity: str = Severity.INFO.value
    evaluation_frequency: str = "5_MIN"
    consecutive_breaches_required: int = 1
    is_active: bool = True
    description: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.asset_id, "Asset ID")
        _not_blank(self.name, "Rule name")
        _not_blank(self.metric_name, "Metric name")
        self.operator = _code(self.operator, OperatorCode, "Operator")
        self.severity = _code(self.severity, Severity, "Severity")
        self.evaluation_frequency = _code(self.evaluation_frequency, EvaluationFrequency, "Evaluation frequency")
        self.threshold = to_decimal(self.threshold, "Threshold")
        _require(isinstance(self.consecutive_breaches_required, int)
                 and self.consecutive_breaches_required >= 1,
                 "Consecutive breaches required must be at least 1.")


@dataclass
class BreachState:
    """Hysteresis memory for one rule: consecutive condition-true evaluations."""
    tenant_id: int
    rule_id: int
    consecutive_breaches: int = 0
    last_metric_value: Optional[Decimal] = None
    is_breached: bool = False
    last_evaluated_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.rule_id, "Rule ID")
        _require(self.consecutive_breaches >= 0, "Consecutive breaches cannot be negative.")

    @property
    def phase(self) -> BreachPhase:
        return BreachPhase.BREACHING if self.consecutive_breaches > 0 else BreachPhase.NO_BREACH

    def record_breach(self, value, at=None):
        self.consecutive_breaches += 1
        self.last_metric_value = to_decimal(value)
        self.is_breached = True
        self.last_evaluated_at = at or utcnow()

    def record_clear(self, value, at=None):
        self.consecutive_breaches = 0
        self.last_metric_value = to_decimal(value)
        self.is_breached = False
        self.last_evaluated_at = at or utcnow()

    def reset(self, at=None):
        """Start a fresh breach run after a signal fired."""
        self.consecutive_breaches = 0
        self.is_breached = False
        self.last_evaluated_at = at or utcnow()


@dataclass
class SignalResolution:
    signal_id: int
    resolved_by: str
    resolved_at: datetime = field(default_factory=utcnow)
    notes: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.signal_id, "Signal ID")
        _not_blank(self.resolved_by, "Resolved by")


@dataclass
class Signal:
    tenant_id: int
    rule_id: int
    asset_id: int
    title: str
    trigger_value: Decimal
    threshold_value: Decimal
    triggered_at: datetime = field(default_factory=utcnow)
    status: str = SignalStatus.OPEN.value
    description: Optional[str] = None
    resolution: Optional[SignalResolution] = None
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.rule_id, "Rule ID")
        _positive_id(self.asset_id, "Asset ID")
        _not_blank(self.title, "Signal title")
        self.status = _code(self.status, SignalStatus, "Signal status")
        self.trigger_value = to_decimal(self.trigger_value, "Trigger value")
        self.threshold_value = to_decimal(self.threshold_value, "Threshold value")


@dataclass
class Notification:
    tenant_id: int
    signal_id: int
    channel_type_id: int
    recipient: str
    subject: str
    body: str
    is_sent: bool = False
    retry_count: int = 0
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def __post_init__(self):
        _positive_id(self.tenant_id, "Tenant ID")
        _positive_id(self.signal_id, "Signal ID")
        _positive_id(self.channel_type_id, "Channel type ID")
        _not_blank(self.recipient, "Recipient")
        _not_blank(self.subject, "Subject")
        _not_blank(self.body, "Body")
        _require(self.retry_count >= 0, "Retry count cannot be negative.")

    def mark_sent(self, at=None):
        self.is_sent = True
        self.sent_at = at or utcnow()
        self.error_message = None

    def mark_failed(self, reason):
        self.is_sent = False
        self.error_message = reason
        self.retry_count += 1
