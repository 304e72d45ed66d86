"""Alerting layer - recipient resolution, rendering and delivery."""

from validator_rug_tracker.alerter.dispatcher import AlertDispatcher
from validator_rug_tracker.alerter.formatter import AlertFormatter
from validator_rug_tracker.alerter.models import DispatchResult, FormattedAlert, GlobalPreference
from validator_rug_tracker.alerter.recipients import RecipientResolver, resolve_recipients

__all__ = [
    "AlertDispatcher",
    "AlertFormatter",
    "DispatchResult",
    "FormattedAlert",
    "GlobalPreference",
    "RecipientResolver",
    "resolve_recipients",
]
