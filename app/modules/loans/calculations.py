"""
Loan arithmetic shared by eligibility, registration and the deduction
schedule. All results are Decimal rounded half-up to cents.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import List

from dateutil.relativedelta import relativedelta

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize any numeric value to cents"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Annual percentage rate to periodic monthly rate"""
    return Decimal(annual_rate) / Decimal(12) / Decimal(100)


def calculate_emi(principal: Decimal, annual_rate: Decimal, tenor_months: int) -> Decimal:
    """
    Equal monthly installment by the standard amortization formula.

    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1), or P / n for a zero rate.
    """
    P = Decimal(principal)
    r = monthly_rate(annual_rate)
    n = int(tenor_months)

    if r == 0:
        return to_money(P / n)

    one_plus_r_n = (Decimal(1) + r) ** n
    emi = (P * r * one_plus_r_n) / (one_plus_r_n - Decimal(1))
    return to_money(emi)


def principal_for_installment(installment: Decimal, annual_rate: Decimal, tenor_months: int) -> Decimal:
    """Largest principal whose EMI does not exceed `installment`"""
    A = Decimal(installment)
    r = monthly_rate(annual_rate)
    n = int(tenor_months)

    if A <= 0:
        return Decimal("0.00")
    if r == 0:
        principal = A * n
    else:
        principal = A * (Decimal(1) - (Decimal(1) + r) ** -n) / r
    return principal.quantize(CENT, rounding=ROUND_DOWN)


def add_months(start: date, months: int) -> date:
    return start + relativedelta(months=months)


def whole_months_between(start: date, end: date) -> int:
    """Completed calendar months from start to end (0 if end precedes start)"""
    if end < start:
        return 0
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months


@dataclass(frozen=True)
class Installment:
    number: int
    due_date: date
    amount: Decimal
    principal_component: Decimal
    interest_component: Decimal
    opening_balance: Decimal
    closing_balance: Decimal


def build_amortization(
    principal: Decimal,
    annual_rate: Decimal,
    tenor_months: int,
    first_due_date: date,
) -> List[Installment]:
    """
    Monthly amortization table.

    Interest accrues on the opening balance each month. The final
    installment takes whatever principal is left, so the principal
    components always add up to the original principal.
    """
    balance = to_money(principal)
    r = monthly_rate(annual_rate)
    emi = calculate_emi(balance, annual_rate, tenor_months)
    schedule = []

    for number in range(1, tenor_months + 1):
        interest = to_money(balance * r)
        if number == tenor_months:
            principal_part = balance
        else:
            principal_part = min(emi - interest, balance)
        closing = balance - principal_part
        schedule.append(Installment(
            number=number,
            due_date=add_months(first_due_date, number - 1),
            amount=principal_part + interest,
            principal_component=principal_part,
            interest_component=interest,
            opening_balance=balance,
            closing_balance=closing,
        ))
        balance = closing

    return schedule
