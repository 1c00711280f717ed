"""Rule evaluation and notification channels."""
from alerts.engine import RuleEvaluationRunner, EvaluationResult
from alerts.breach import evaluate_condition, advance
from alerts.channels import ChannelDispatcher, EmailChannel, WebhookChannel, SlackChannel
