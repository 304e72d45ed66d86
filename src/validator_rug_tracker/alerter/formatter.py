"""Alert message formatter for email and Discord delivery.

This module turns commission events and delinquency alerts into subject
lines, plain-text and HTML bodies. The variant is chosen from the event kind,
metric type and classification, with separate copy for MEV being enabled or
disabled and for commission decreases.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from decimal import Decimal
from urllib.parse import quote

from validator_rug_tracker.alerter.models import FormattedAlert
from validator_rug_tracker.detector.models import Classification, DelinquencyAlert, EventKind, MetricType
from validator_rug_tracker.storage.repos import EventDTO

DEFAULT_BASE_URL = "https://rugalert.pumpkinspool.com"
VALIDATOR_PATH = "/validator/{vote_pubkey}"
UNSUBSCRIBE_PATH = "/unsubscribe?email={email}"

MEV_DISABLED_LABEL = "MEV Disabled"

COLOR_RUG = "#dc2626"
COLOR_WARNING = "#f59e0b"
COLOR_INFO = "#3b82f6"
COLOR_DECREASE = "#10b981"

IMPACT_MEV_DISABLED = (
    "This validator is no longer producing MEV rewards. Stakers will no longer receive "
    "MEV rewards from this validator, which reduces overall staking returns. The validator "
    "is not taking more commission, but you are losing access to MEV rewards."
)
IMPACT_MEV_ENABLED = (
    "This validator has enabled MEV rewards. Stakers may now receive additional MEV rewards "
    "from priority fees and bundles, depending on the validator's MEV commission rate."
)
IMPACT_RUG = (
    "A large commission increase like this significantly impacts your staking rewards. "
    "You may want to consider unstaking or monitoring the situation closely."
)
IMPACT_CAUTION = (
    "This commission increase will affect your staking rewards. Monitor the validator's "
    "performance and consider your options."
)
IMPACT_DECREASE = (
    "This commission decrease will improve your staking rewards. You're now earning a higher "
    "percentage of rewards from this validator."
)
IMPACT_INFO = (
    "This commission change will affect your staking rewards. You may want to monitor the "
    "validator's performance."
)
DELINQUENCY_EXPLANATION = (
    "A validator is considered delinquent when it falls more than 128 slots behind the tip of "
    "the chain. This typically means the validator is not voting or producing blocks."
)
DELINQUENCY_SUPPRESSION_NOTE = (
    "We will not send further alerts about this delinquency unless the validator recovers "
    "and becomes delinquent again."
)


@dataclass(frozen=True)
class TemplateVariant:
    badge: str
    emoji: str
    color: str
    impact: str


MEV_DISABLED = TemplateVariant("MEV DISABLED", "⚠️", COLOR_WARNING, IMPACT_MEV_DISABLED)
MEV_ENABLED = TemplateVariant("MEV ENABLED", "ℹ️", COLOR_INFO, IMPACT_MEV_ENABLED)
DECREASE = TemplateVariant("COMMISSION DECREASE", "✅", COLOR_DECREASE, IMPACT_DECREASE)
DELINQUENT = TemplateVariant("DELINQUENT", "🚨", COLOR_RUG, DELINQUENCY_EXPLANATION)

COMMISSION_VARIANTS: dict[Classification, TemplateVariant] = {
    Classification.RUG: TemplateVariant("RUG DETECTED", "🚨", COLOR_RUG, IMPACT_RUG),
    Classification.CAUTION: TemplateVariant("COMMISSION INCREASE", "⚠️", COLOR_WARNING, IMPACT_CAUTION),
    Classification.INFO: TemplateVariant("COMMISSION CHANGE", "ℹ️", COLOR_INFO, IMPACT_INFO),
}


def format_percent(value: Decimal | None) -> str:
    """Format a commission value; None is a disabled MEV commission."""
    if value is None:
        return MEV_DISABLED_LABEL
    return f"{value.normalize():f}%"


def format_delta(delta: Decimal) -> str:
    """Format a change in percentage points, e.g. +95pp / -3pp."""
    sign = "+" if delta >= 0 else ""
    return f"{sign}{delta.normalize():f}pp"


def commission_label(metric_type: MetricType) -> str:
    return "MEV Commission" if metric_type == MetricType.MEV else "Inflation Commission"


def select_variant(event: EventDTO) -> TemplateVariant:
    """Pick the template for a commission event.

    Variants key on direction and classification only. The metric type
    reaches the rendered alert through ``commission_label``, so a numeric
    MEV rug and an inflation rug share a template but not a label.
    """
    if event.metric_type == MetricType.MEV and event.to_value is None:
        return MEV_DISABLED
    if event.metric_type == MetricType.MEV and event.from_value is None:
        return MEV_ENABLED
    if event.classification == Classification.INFO and event.delta is not None and event.delta < 0:
        return DECREASE
    return COMMISSION_VARIANTS[event.classification]


def truncate_pubkey(pubkey: str, chars: int = 4) -> str:
    """Shorten a base58 key to ABCD...WXYZ."""
    if len(pubkey) <= chars * 2 + 3:
        return pubkey
    return f"{pubkey[:chars]}...{pubkey[-chars:]}"


class AlertFormatter:
    """Renders alerts for email and Discord."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")

    def validator_url(self, vote_pubkey: str) -> str:
        return self.base_url + VALIDATOR_PATH.format(vote_pubkey=vote_pubkey)

    def unsubscribe_url(self, email: str) -> str:
        return self.base_url + UNSUBSCRIBE_PATH.format(email=quote(email, safe=""))

    def format_commission_change(self, event: EventDTO, name: str | None = None) -> FormattedAlert:
        """Render a commission or MEV change event."""
        validator_name = name or event.vote_pubkey
        variant = select_variant(event)
        label = commission_label(event.metric_type)
        from_display = format_percent(event.from_value)
        to_display = format_percent(event.to_value)

        if variant is MEV_DISABLED:
            subject = f"{variant.emoji} {validator_name} Disabled MEV Rewards"
            title = "MEV Rewards Disabled"
            summary = f"Validator {validator_name} ({event.vote_pubkey}) is no longer producing MEV rewards."
        elif variant is MEV_ENABLED:
            subject = f"{variant.emoji} {validator_name} Enabled MEV Rewards"
            title = "MEV Rewards Enabled"
            summary = f"Validator {validator_name} ({event.vote_pubkey}) has enabled MEV rewards."
        else:
            verb = "Lowered" if variant is DECREASE else "Raised"
            subject = f"{variant.emoji} {validator_name} {verb} {label}"
            title = f"{label} Change Detected"
            change = {
                Classification.RUG: "significantly increased",
                Classification.CAUTION: "increased",
            }.get(event.classification, "decreased" if variant is DECREASE else "changed")
            summary = f"Validator {validator_name} ({event.vote_pubkey}) has {change} their {label.lower()}."

        change_line = f"{label}: {from_display} → {to_display}"
        if event.delta is not None:
            change_line += f" ({format_delta(event.delta)})"

        validator_url = self.validator_url(event.vote_pubkey)
        lines = [
            f"{variant.badge}",
            "",
            summary,
            "",
            f"Validator: {validator_name}",
            f"Vote Pubkey: {event.vote_pubkey}",
            change_line,
            f"Epoch: {event.epoch}",
            "",
            variant.impact,
            "",
            f"View full details: {validator_url}",
            f"Cancel commission alerts for this validator: {validator_url}#unsubscribe",
        ]
        info_rows = [
            ("Validator", validator_name),
            ("Vote Pubkey", event.vote_pubkey),
            (label, change_line.split(": ", 1)[1]),
            ("Epoch", str(event.epoch)),
        ]
        body_html = self._build_html(
            variant=variant,
            title=title,
            summary=summary,
            info_rows=info_rows,
            validator_url=validator_url,
            cancel_text="Cancel commission alerts for this validator",
        )

        discord_content = None
        if event.classification == Classification.RUG:
            discord_content = (
                f"🚨 RUG DETECTED!\n\n"
                f"Validator: {validator_name}\n"
                f"Vote Pubkey: {event.vote_pubkey}\n"
                f"{change_line}\n"
                f"Epoch: {event.epoch}\n\n"
                f"View full details: {validator_url}"
            )

        return FormattedAlert(
            kind=EventKind.COMMISSION_CHANGE,
            vote_pubkey=event.vote_pubkey,
            classification=event.classification,
            subject=subject,
            badge=variant.badge,
            text="\n".join(lines),
            html=body_html,
            discord_content=discord_content,
        )

    def format_delinquency(self, alert: DelinquencyAlert) -> FormattedAlert:
        """Render a delinquency alert."""
        validator_name = alert.name or alert.vote_pubkey
        validator_url = self.validator_url(alert.vote_pubkey)
        summary = f"Validator {validator_name} ({alert.vote_pubkey}) is delinquent since epoch {alert.epoch}."
        lines = [
            DELINQUENT.badge,
            "",
            summary,
            "",
            f"Validator: {validator_name}",
            f"Vote Pubkey: {alert.vote_pubkey}",
            "Status: DELINQUENT (>128 slots behind)",
            f"Epoch: {alert.epoch}",
            "",
            DELINQUENCY_EXPLANATION,
            DELINQUENCY_SUPPRESSION_NOTE,
            "",
            f"View full details: {validator_url}",
            f"Cancel delinquency alerts for this validator: {validator_url}#unsubscribe",
        ]
        body_html = self._build_html(
            variant=DELINQUENT,
            title="Validator Delinquency Alert",
            summary=f"{summary} {DELINQUENCY_SUPPRESSION_NOTE}",
            info_rows=[
                ("Validator", validator_name),
                ("Vote Pubkey", alert.vote_pubkey),
                ("Status", "DELINQUENT (>128 slots behind)"),
                ("Epoch", str(alert.epoch)),
            ],
            validator_url=validator_url,
            cancel_text="Cancel delinquency alerts for this validator",
        )
        return FormattedAlert(
            kind=EventKind.DELINQUENCY,
            vote_pubkey=alert.vote_pubkey,
            subject=f"🚨 [DELINQUENT] {validator_name}",
            badge=DELINQUENT.badge,
            text="\n".join(lines),
            html=body_html,
        )

    def personalize(self, alert: FormattedAlert, email: str) -> tuple[str, str]:
        """Append the recipient's unsubscribe footer to the text and HTML bodies."""
        url = self.unsubscribe_url(email)
        text = f"{alert.text}\n\n---\nTo unsubscribe from these alerts, visit:\n{url}"
        footer = f'<p style="font-size:12px;color:#6b7280;"><a href="{html.escape(url)}">Unsubscribe from all alerts</a></p>'
        return text, alert.html.replace("</body>", f"{footer}</body>", 1)

    def _build_html(
        self,
        *,
        variant: TemplateVariant,
        title: str,
        summary: str,
        info_rows: list[tuple[str, str]],
        validator_url: str,
        cancel_text: str,
    ) -> str:
        rows = "".join(
            f"<tr><td style=\"color:#6b7280;padding:4px 12px 4px 0;\">{html.escape(k)}:</td>"
            f"<td style=\"font-weight:600;\">{html.escape(v)}</td></tr>"
            for k, v in info_rows
        )
        url = html.escape(validator_url)
        return (
            "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head><body>"
            f"<div style=\"display:inline-block;background:{variant.color};color:#fff;"
            f"padding:4px 10px;border-radius:4px;font-weight:700;\">{html.escape(variant.badge)}</div>"
            f"<h1>{html.escape(title)}</h1>"
            f"<p>{html.escape(summary)}</p>"
            f"<table>{rows}</table>"
            f"<p>{html.escape(variant.impact)}</p>"
            f"<p><a href=\"{url}\">View Validator Details →</a></p>"
            f"<p style=\"font-size:12px;\"><a href=\"{url}#unsubscribe\">{html.escape(cancel_text)}</a></p>"
            f"<p style=\"font-size:12px;\"><a href=\"{url}\">Cancel all alerts for this validator</a></p>"
            "</body></html>"
        )
