"""
Aggregate committee decision.

Once enough reviewers have decided (every assigned reviewer, or the
configured quorum), a single rejection rejects the application, an open
request for more information keeps it open, and otherwise it is approved
at the most conservative amount and tenor any approving reviewer named.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from app.modules.applications.models import CommitteeDecision
from app.modules.committee.models import ReviewDecision

APPROVING = (ReviewDecision.APPROVED, ReviewDecision.APPROVED_WITH_CONDITIONS)


@dataclass(frozen=True)
class ReviewVote:
    decision: ReviewDecision
    recommended_amount: Optional[Decimal] = None
    recommended_tenor_months: Optional[int] = None


@dataclass(frozen=True)
class AggregateOutcome:
    decision: CommitteeDecision
    approved_amount: Optional[Decimal] = None
    approved_tenor_months: Optional[int] = None
    decided: int = 0
    required: int = 0


def aggregate_reviews(
    votes: Sequence[ReviewVote],
    requested_amount: Decimal,
    requested_tenor_months: int,
    quorum: int = 0,
) -> AggregateOutcome:
    decided = [v for v in votes if v.decision != ReviewDecision.PENDING]
    required = min(quorum, len(votes)) if quorum > 0 else len(votes)

    if not votes or len(decided) < required:
        return AggregateOutcome(CommitteeDecision.PENDING, decided=len(decided), required=required)

    if any(v.decision == ReviewDecision.REJECTED for v in decided):
        return AggregateOutcome(CommitteeDecision.REJECTED, decided=len(decided), required=required)

    if any(v.decision == ReviewDecision.REQUIRES_MORE_INFORMATION for v in decided):
        return AggregateOutcome(CommitteeDecision.MORE_INFORMATION, decided=len(decided), required=required)

    approving = [v for v in decided if v.decision in APPROVING]
    amounts = [Decimal(v.recommended_amount) for v in approving if v.recommended_amount is not None]
    tenors = [v.recommended_tenor_months for v in approving if v.recommended_tenor_months]

    return AggregateOutcome(
        CommitteeDecision.APPROVED,
        approved_amount=min([Decimal(requested_amount)] + amounts),
        approved_tenor_months=min([requested_tenor_months] + tenors),
        decided=len(decided),
        required=required,
    )
