"""Recipient resolution from global and per-validator subscriptions."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from validator_rug_tracker.alerter.models import GlobalPreference
from validator_rug_tracker.detector.models import Classification, EventKind
from validator_rug_tracker.storage.repos import (
    EntitySubscriptionDTO,
    EntitySubscriptionRepository,
    SubscriberDTO,
    SubscriberRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def resolve_recipients(
    *,
    kind: EventKind,
    classification: Classification | None,
    subscribers: Iterable[SubscriberDTO],
    subscriptions: Iterable[EntitySubscriptionDTO],
) -> list[str]:
    """Merge eligible global and per-validator subscribers, deduplicated by email.

    Global subscribers receive commission events whose severity their
    preference accepts. A per-validator subscription receives every commission
    event (any severity) when ``commission_alerts`` is set, and delinquency
    alerts when ``delinquency_alerts`` is set. Delinquency alerts have no
    global audience.
    """
    candidates: list[str] = []
    if kind == EventKind.COMMISSION_CHANGE:
        if classification is None:
            raise ValueError("commission alerts need a classification")
        candidates.extend(
            s.email for s in subscribers if GlobalPreference.parse(s.preference).accepts(classification)
        )
        candidates.extend(s.email for s in subscriptions if s.commission_alerts)
    elif kind == EventKind.DELINQUENCY:
        candidates.extend(s.email for s in subscriptions if s.delinquency_alerts)
    else:
        raise ValueError(f"Unhandled event kind: {kind}")

    seen: set[str] = set()
    recipients: list[str] = []
    for email in candidates:
        key = email.strip().lower()
        if key and key not in seen:
            seen.add(key)
            recipients.append(key)
    return recipients


class RecipientResolver:
    """Loads subscriptions and resolves recipients for one alert."""

    async def resolve(
        self,
        session: AsyncSession,
        *,
        kind: EventKind,
        vote_pubkey: str,
        classification: Classification | None = None,
    ) -> list[str]:
        subscribers: list[SubscriberDTO] = []
        if kind == EventKind.COMMISSION_CHANGE:
            subscribers = await SubscriberRepository(session).list_all()
        subscriptions = await EntitySubscriptionRepository(session).list_for_validator(vote_pubkey)
        return resolve_recipients(
            kind=kind,
            classification=classification,
            subscribers=subscribers,
            subscriptions=subscriptions,
        )
