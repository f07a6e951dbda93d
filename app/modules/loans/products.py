from dataclasses import dataclass
from decimal import Decimal

from app.core.config import settings
from app.modules.loans.models import LoanType


@dataclass(frozen=True)
class ProductRules:
    """Underwriting parameters for one loan product"""
    loan_type: LoanType
    savings_multiplier: Decimal
    min_membership_months: int
    max_deduction_rate: Decimal
    interest_rate: Decimal  # annual, percent
    max_tenor_months: int
    required_guarantors: int


def get_product_rules(loan_type: LoanType) -> ProductRules:
    """Build the rules for a product from the current settings"""
    per_type = {
        LoanType.NORMAL: (
            settings.NORMAL_SAVINGS_MULTIPLIER, settings.NORMAL_INTEREST_RATE,
            settings.NORMAL_MAX_TENOR_MONTHS, settings.NORMAL_REQUIRED_GUARANTORS,
        ),
        LoanType.COMMODITY: (
            settings.COMMODITY_SAVINGS_MULTIPLIER, settings.COMMODITY_INTEREST_RATE,
            settings.COMMODITY_MAX_TENOR_MONTHS, settings.COMMODITY_REQUIRED_GUARANTORS,
        ),
        LoanType.CAR: (
            settings.CAR_SAVINGS_MULTIPLIER, settings.CAR_INTEREST_RATE,
            settings.CAR_MAX_TENOR_MONTHS, settings.CAR_REQUIRED_GUARANTORS,
        ),
    }
    multiplier, rate, max_tenor, guarantors = per_type[LoanType(loan_type)]
    return ProductRules(
        loan_type=LoanType(loan_type),
        savings_multiplier=Decimal(multiplier),
        min_membership_months=settings.MIN_MEMBERSHIP_MONTHS,
        max_deduction_rate=Decimal(settings.MAX_DEDUCTION_RATE),
        interest_rate=Decimal(rate),
        max_tenor_months=max_tenor,
        required_guarantors=guarantors,
    )
