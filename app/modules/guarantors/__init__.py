# Guarantors module
from app.modules.guarantors.models import GuarantorConsent, ConsentStatus
from app.modules.guarantors.services import GuarantorService

__all__ = ["GuarantorConsent", "ConsentStatus", "GuarantorService"]
