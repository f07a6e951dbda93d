# Committee module
from app.modules.committee.models import CommitteeReview, ReviewDecision
from app.modules.committee.aggregation import aggregate_reviews
from app.modules.committee.services import CommitteeService

__all__ = ["CommitteeReview", "ReviewDecision", "aggregate_reviews", "CommitteeService"]
