# Eligibility module
from app.modules.eligibility.evaluator import MemberSnapshot, evaluate_eligibility
from app.modules.eligibility.services import EligibilityService

__all__ = ["MemberSnapshot", "evaluate_eligibility", "EligibilityService"]
