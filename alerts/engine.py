"""Rule evaluation runner.

For every active rule: read the latest metric value, evaluate the operator,
advance the rule's breach state and, when the breach run is long enough,
materialize a Signal and queue a Notification for the dispatch stage.

The runner never sends anything itself. Notifications are only persisted;
delivery belongs to notifications.dispatcher.
"""
import logging
import time
from dataclasses import dataclass

from alerts.breach import OPERATOR_VERBS, advance, evaluate_condition
from models.entities import Notification, Signal, utcnow
from models.enums import BreachPhase, ChannelType, LookupType, SignalStatus
from models.errors import InvalidEntityError
from utils.cancellation import CycleCancelled, check

logger = logging.getLogger("signalengine.alerts.engine")


@dataclass
class EvaluationResult:
    rules_evaluated: int = 0
    rules_skipped: int = 0
    signals_created: int = 0
    errors: int = 0
    duration: float = 0.0


class RuleEvaluationRunner:
    EVALUATED = "evaluated"
    SIGNAL_CREATED = "signal_created"
    SKIPPED_NO_DATA = "skipped_no_data"

    def __init__(self, db, default_channel=ChannelType.EMAIL.value,
                 default_recipient="admin@signalengine.local", clock=utcnow):
        self.db = db
        self.default_channel = default_channel
        self.default_recipient = default_recipient
        self.clock = clock
        self._targets = {}

    @classmethod
    def from_config(cls, db, config, **kwargs):
        notif_cfg = config.get("notifications", {})
        return cls(
            db,
            default_channel=notif_cfg.get("default_channel", ChannelType.EMAIL.value),
            default_recipient=notif_cfg.get("default_recipient", "admin@signalengine.local"),
            **kwargs,
        )

    def run(self, cancel=None) -> EvaluationResult:
        """Evaluate every active rule once. Per-rule failures are counted, not raised."""
        started = time.monotonic()
        result = EvaluationResult()

        rules = self.db.get_active_rules()
        if not rules:
            logger.debug("No active rules found for evaluation")
            result.duration = time.monotonic() - started
            return result

        logger.debug(f"Starting rule evaluation for {len(rules)} active rules")

        try:
            for rule in rules:
                check(cancel)
                try:
                    # A failed rule rolls back its breach state and signal together.
                    with self.db.savepoint("rule"):
                        outcome = self._evaluate_rule(rule)
                except CycleCancelled:
                    raise
                except Exception as e:
                    result.errors += 1
                    logger.error(
                        f"Error evaluating rule {rule.id} ({rule.name}) for tenant {rule.tenant_id}: {e}",
                        exc_info=True,
                    )
                    continue

                if outcome == self.SKIPPED_NO_DATA:
                    result.rules_skipped += 1
                else:
                    result.rules_evaluated += 1
                    if outcome == self.SIGNAL_CREATED:
                        result.signals_created += 1
                        self.db.commit()
        except CycleCancelled:
            # Keep what the finished rules already did; the rest waits for the next tick.
            self.db.commit()
            raise

        self.db.commit()
        result.duration = time.monotonic() - started

        if result.rules_evaluated or result.signals_created or result.errors:
            logger.info(
                f"Rule evaluation completed. Evaluated: {result.rules_evaluated}, "
                f"Signals: {result.signals_created}, Skipped: {result.rules_skipped}, "
                f"Errors: {result.errors}, Duration: {result.duration * 1000:.0f}ms"
            )
        else:
            logger.debug("Rule evaluation completed - no active rules with data")
        return result

    def _evaluate_rule(self, rule):
        latest = self.db.get_latest_metric_value(rule.asset_id, rule.metric_name)
        if latest is None:
            logger.debug(
                f"Rule {rule.id} skipped: no metric data for asset {rule.asset_id}, metric '{rule.metric_name}'"
            )
            return self.SKIPPED_NO_DATA

        breached = evaluate_condition(latest.value, rule.operator, rule.threshold)
        logger.debug(
            f"Rule {rule.id} evaluated: value={latest.value} {rule.operator} {rule.threshold} -> {breached}"
        )

        now = self.clock()
        state = self.db.get_or_create_breach_state(rule.tenant_id, rule.id)
        phase = advance(state, breached, latest.value, rule.consecutive_breaches_required, now)
        target = None
        if phase == BreachPhase.TRIGGERED:
            # Resolve where the notification goes before the counter reset is staged.
            target = self._notification_target(rule.tenant_id)
        self.db.save_breach_state(state)

        if phase == BreachPhase.BREACHING:
            logger.debug(
                f"Rule {rule.id} breach recorded: {state.consecutive_breaches}/{rule.consecutive_breaches_required}"
            )
        if phase != BreachPhase.TRIGGERED:
            return self.EVALUATED

        self._create_signal(rule, latest.value, now, target)
        return self.SIGNAL_CREATED

    def _create_signal(self, rule, value, now, target):
        channel, channel_type_id, recipient = target
        signal = Signal(
            tenant_id=rule.tenant_id,
            rule_id=rule.id,
            asset_id=rule.asset_id,
            status=SignalStatus.OPEN.value,
            title=f"[{rule.severity}] {rule.name}: Threshold breached",
            description=self.describe(rule, value),
            trigger_value=value,
            threshold_value=rule.threshold,
            triggered_at=now,
        )
        # The notification row references the signal id, so the signal goes in first.
        self.db.add_signal(signal)
        notification = Notification(
            tenant_id=rule.tenant_id,
            signal_id=signal.id,
            channel_type_id=channel_type_id,
            recipient=recipient,
            subject=signal.title,
            body=self._notification_body(rule, signal),
            created_at=now,
        )
        self.db.add_notification(notification)

        logger.info(
            f"Signal {signal.id} created for rule {rule.id} ({rule.name}): value={value}, "
            f"threshold={rule.threshold}, severity={rule.severity}. Notification queued via {channel}."
        )
        return signal

    def _notification_target(self, tenant_id):
        """(channel code, channel lookup id, recipient) for a tenant's notifications."""
        if tenant_id not in self._targets:
            tenant = self.db.get_tenant(tenant_id)
            channel = (tenant.notification_channel if tenant else None) or self.default_channel
            recipient = (tenant.notification_recipient if tenant else None) or self.default_recipient
            if not recipient or not str(recipient).strip():
                raise InvalidEntityError(f"No notification recipient for tenant {tenant_id}.")
            channel_type_id = self.db.resolve_lookup_id(LookupType.NOTIFICATION_CHANNEL_TYPE, channel)
            self._targets[tenant_id] = (channel, channel_type_id, recipient)
        return self._targets[tenant_id]

    @staticmethod
    def describe(rule, value):
        verb = OPERATOR_VERBS.get(rule.operator, "breached")
        return (
            f"Rule '{rule.name}' triggered: metric '{rule.metric_name}' value ({value}) "
            f"{verb} threshold ({rule.threshold})."
        )

    @staticmethod
    def _notification_body(rule, signal):
        lines = [
            signal.description,
            "",
            f"Severity: {rule.severity}",
            f"Trigger value: {signal.trigger_value}",
            f"Threshold: {signal.threshold_value}",
            f"Consecutive breaches required: {rule.consecutive_breaches_required}",
            f"Triggered at: {signal.triggered_at.isoformat()}",
        ]
        return "\n".join(lines)
