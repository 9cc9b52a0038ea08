"""Audience evaluation - decides whether a recipient is eligible for a campaign."""

from __future__ import annotations

from typing import TYPE_CHECKING

from clinic_campaigns.schemas.campaign import (
    AudienceCriteria,
    HasChannelPredicate,
    OptInPredicate,
    StatusInPredicate,
)

if TYPE_CHECKING:
    from clinic_campaigns.services.recipient_directory import RecipientProfile


def predicate_matches(predicate, recipient: RecipientProfile) -> bool:
    """Evaluate one typed audience predicate against recipient attributes."""
    match predicate:
        case StatusInPredicate(statuses=statuses):
            return (recipient.status or "").strip().lower() in statuses
        case HasChannelPredicate(channel=channel):
            return recipient.has_channel(channel)
        case OptInPredicate(opted_in=opted_in):
            return recipient.opted_in is opted_in
    raise TypeError(f"Unsupported audience predicate: {type(predicate).__name__}")


def matches(
    recipient: RecipientProfile,
    include: AudienceCriteria | None,
    exclude: AudienceCriteria | None,
) -> bool:
    """
    Check a recipient against include/exclude criteria.

    Exclude is evaluated first and wins: any matching exclude predicate
    rejects the recipient. Include predicates are ANDed; a status set matches
    when the recipient status is any of its members. Empty include admits
    everyone. Fields are evaluated independently of each other.
    """
    if exclude is not None:
        for predicate in exclude.predicates:
            if predicate_matches(predicate, recipient):
                return False

    if include is None or include.is_empty:
        return True

    return all(predicate_matches(predicate, recipient) for predicate in include.predicates)


class AudienceEvaluator:
    """Injectable wrapper around :func:`matches`."""

    def matches(
        self,
        recipient: RecipientProfile,
        include: AudienceCriteria | None,
        exclude: AudienceCriteria | None,
    ) -> bool:
        return matches(recipient, include, exclude)

    def criteria_for(self, campaign) -> tuple[AudienceCriteria, AudienceCriteria]:
        """Parse a campaign's stored include/exclude JSON."""
        return (
            AudienceCriteria.from_json(campaign.audience),
            AudienceCriteria.from_json(campaign.exclude_criteria),
        )
