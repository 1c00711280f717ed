"""Data models."""
from models.enums import (
    BreachPhase, ChannelType, DataSourceCode, EvaluationFrequency, LookupType, MetricType, OperatorCode,
    Severity, SignalStatus,
)
from models.entities import (
    Asset, BreachState, Metric, MetricDataPoint, Notification, Rule, Signal, SignalResolution, Tenant,
)
from models.errors import EntityNotFoundError, InvalidEntityError, LookupNotFoundError, SignalEngineError
from models.tenancy import TenantScope
