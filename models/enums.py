"""Enums for lookup codes and breach phases."""
from enum import Enum


class LookupType(str, Enum):
    RULE_OPERATOR = "RULE_OPERATOR"
    SEVERITY = "SEVERITY"
    RULE_EVALUATION_FREQUENCY = "RULE_EVALUATION_FREQUENCY"
    SIGNAL_STATUS = "SIGNAL_STATUS"
    NOTIFICATION_CHANNEL_TYPE = "NOTIFICATION_CHANNEL_TYPE"
    DATA_SOURCE = "DATA_SOURCE"
    METRIC_TYPE = "METRIC_TYPE"


class OperatorCode(str, Enum):
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    EQ = "EQ"
    NEQ = "NEQ"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class EvaluationFrequency(str, Enum):
    ONE_MINUTE = "1_MIN"
    FIVE_MINUTES = "5_MIN"
    FIFTEEN_MINUTES = "15_MIN"


class SignalStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class ChannelType(str, Enum):
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"
    SLACK = "SLACK"


class DataSourceCode(str, Enum):
    BINANCE = "BINANCE"
    CUSTOM_API = "CUSTOM_API"


class MetricType(str, Enum):
    NUMERIC = "NUMERIC"
    PERCENTAGE = "PERCENTAGE"
    RATE = "RATE"


class BreachPhase(str, Enum):
    NO_BREACH = "NO_BREACH"
    BREACHING = "BREACHING"
    TRIGGERED = "TRIGGERED"


# Every code the lookup tables are seeded with, keyed by lookup type.
LOOKUP_SEED = {
    LookupType.RULE_OPERATOR: OperatorCode,
    LookupType.SEVERITY: Severity,
    LookupType.RULE_EVALUATION_FREQUENCY: EvaluationFrequency,
    LookupType.SIGNAL_STATUS: SignalStatus,
    LookupType.NOTIFICATION_CHANNEL_TYPE: ChannelType,
    LookupType.DATA_SOURCE: DataSourceCode,
    LookupType.METRIC_TYPE: MetricType,
}
