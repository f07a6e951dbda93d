# Members module (read-only credit profile replica)
from app.modules.members.models import MemberCreditProfile
from app.modules.members.services import MemberProfileService

__all__ = ["MemberCreditProfile", "MemberProfileService"]
