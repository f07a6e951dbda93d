# Applications module
from app.modules.applications.models import LoanApplication, ApplicationStatus, CommitteeDecision
from app.modules.applications.services import ApplicationService

__all__ = ["LoanApplication", "ApplicationStatus", "CommitteeDecision", "ApplicationService"]
