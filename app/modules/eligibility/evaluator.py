"""
Eligibility rules for a member's loan request.

`evaluate_eligibility` is a pure function of its inputs: it never touches
the database or the clock, so the same snapshot, request and date always
produce the same verdict.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from app.core.exceptions import ValidationError
from app.modules.eligibility.schemas import EligibilityBasis, EligibilityResult
from app.modules.loans.calculations import (
    calculate_emi, principal_for_installment, to_money, whole_months_between
)
from app.modules.loans.products import ProductRules

RATE_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class MemberSnapshot:
    member_id: str
    total_savings: Decimal
    monthly_contribution: Decimal
    membership_date: date
    active_loan_exposure: Decimal = Decimal("0")
    has_active_delinquency: bool = False
    is_active: bool = True


def _validate(requested_amount: Decimal, tenor_months: int, rules: ProductRules) -> None:
    if requested_amount is None or Decimal(requested_amount) <= 0:
        raise ValidationError("Requested amount must be greater than zero")
    if tenor_months is None or int(tenor_months) <= 0:
        raise ValidationError("Tenor must be at least one month")
    if tenor_months > rules.max_tenor_months:
        raise ValidationError(
            f"Tenor of {tenor_months} months exceeds the {rules.max_tenor_months} month maximum "
            f"for {rules.loan_type.value} loans"
        )
    if rules.savings_multiplier <= 0:
        raise ValidationError("Savings multiplier must be positive")
    if rules.max_deduction_rate <= 0:
        raise ValidationError("Maximum deduction rate must be positive")


def evaluate_eligibility(
    snapshot: MemberSnapshot,
    requested_amount: Decimal,
    tenor_months: int,
    rules: ProductRules,
    evaluation_date: date,
) -> EligibilityResult:
    """Run every check and collect a reason for each one that fails"""
    _validate(requested_amount, tenor_months, rules)

    amount = to_money(requested_amount)
    savings = to_money(snapshot.total_savings)
    contribution = to_money(snapshot.monthly_contribution)
    reasons = []

    required_savings = to_money(amount / rules.savings_multiplier)
    meets_savings = savings >= required_savings
    if not meets_savings:
        reasons.append(
            f"Savings of {savings} are below the required {required_savings} "
            f"({rules.savings_multiplier}x multiplier)"
        )

    membership_months = whole_months_between(snapshot.membership_date, evaluation_date)
    meets_membership = membership_months >= rules.min_membership_months
    if not meets_membership:
        reasons.append(
            f"Membership of {membership_months} months is below the required "
            f"{rules.min_membership_months} months"
        )

    emi = calculate_emi(amount, rules.interest_rate, tenor_months)
    if contribution > 0:
        exact_rate = emi / contribution
        meets_deduction = exact_rate <= rules.max_deduction_rate
        deduction_rate = exact_rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
        if not meets_deduction:
            reasons.append(
                f"Monthly installment of {emi} is {deduction_rate:.2%} of contribution, "
                f"above the {rules.max_deduction_rate:.0%} limit"
            )
    else:
        deduction_rate = None
        meets_deduction = False
        reasons.append("No monthly contribution on record to support repayments")

    if snapshot.has_active_delinquency:
        reasons.append("Member has an active delinquent loan")
    if not snapshot.is_active:
        reasons.append("Membership is not active")

    # Informational ceiling: what the member could borrow on this product
    savings_limit = to_money(savings * rules.savings_multiplier)
    income_limit = principal_for_installment(
        contribution * rules.max_deduction_rate, rules.interest_rate, tenor_months
    )
    if savings_limit <= income_limit:
        maximum, limiting_factor = savings_limit, "savings"
    else:
        maximum, limiting_factor = income_limit, "deduction_rate"

    is_eligible = (
        meets_savings
        and meets_membership
        and meets_deduction
        and not snapshot.has_active_delinquency
        and snapshot.is_active
    )

    return EligibilityResult(
        member_id=snapshot.member_id,
        loan_type=rules.loan_type,
        evaluation_date=evaluation_date,
        is_eligible=is_eligible,
        meets_savings_requirement=meets_savings,
        meets_membership_duration=meets_membership,
        meets_deduction_rate_requirement=meets_deduction,
        reasons=reasons,
        basis=EligibilityBasis(
            requested_amount=amount,
            tenor_months=tenor_months,
            interest_rate=rules.interest_rate,
            required_savings=required_savings,
            actual_savings=savings,
            savings_multiplier=rules.savings_multiplier,
            membership_duration_months=membership_months,
            required_membership_months=rules.min_membership_months,
            monthly_emi=emi,
            monthly_contribution=contribution,
            deduction_rate=deduction_rate,
            max_deduction_rate=rules.max_deduction_rate,
            active_loan_exposure=to_money(snapshot.active_loan_exposure),
            has_active_delinquency=snapshot.has_active_delinquency,
            maximum_eligible_amount=maximum,
            limiting_factor=limiting_factor,
        ),
    )
