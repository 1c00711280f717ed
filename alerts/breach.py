"""Operator evaluation and the consecutive-breach state machine."""
import logging
from decimal import Decimal

from models.entities import BreachState, to_decimal
from models.enums import BreachPhase

logger = logging.getLogger("signalengine.alerts.breach")

# Exact Decimal comparisons; EQ/NEQ carry no tolerance.
OPERATOR_MAP = {
    "GT": lambda v, t: v > t,
    "GTE": lambda v, t: v >= t,
    "LT": lambda v, t: v < t,
    "LTE": lambda v, t: v <= t,
    "EQ": lambda v, t: v == t,
    "NEQ": lambda v, t: v != t,
}

OPERATOR_VERBS = {
    "GT": "exceeded",
    "GTE": "met or exceeded",
    "LT": "fell below",
    "LTE": "met or fell below",
    "EQ": "equaled",
    "NEQ": "differed from",
}


def evaluate_condition(value, operator, threshold) -> bool:
    """Return True when `value OP threshold` holds.

    Raises ValueError for an unknown operator so the caller counts it as a
    failed rule instead of silently treating it as "not breached".
    """
    func = OPERATOR_MAP.get(str(operator).upper())
    if func is None:
        raise ValueError(f"Unknown operator: {operator!r}")
    return func(to_decimal(value), to_decimal(threshold, "threshold"))


def advance(state: BreachState, breached: bool, value: Decimal, required: int, at=None) -> BreachPhase:
    """Feed one evaluation into the rule's breach state.

    NO_BREACH  -- condition false, counter back to 0
    BREACHING  -- condition true, counter below `required`
    TRIGGERED  -- counter reached `required`; the counter is reset so the
                  next signal needs another full run of breaches
    """
    if required < 1:
        raise ValueError("required must be at least 1")

    if not breached:
        state.record_clear(value, at)
        return BreachPhase.NO_BREACH

    state.record_breach(value, at)
    if state.consecutive_breaches >= required:
        logger.debug(f"Rule {state.rule_id} reached {state.consecutive_breaches}/{required} consecutive breaches")
        state.reset(at)
        return BreachPhase.TRIGGERED
    return BreachPhase.BREACHING
