# Loans module: shared loan arithmetic, products and periods.
# The aggregated /loans router lives in app.modules.loans.router and is
# imported by main.py only.
from app.modules.loans.models import LoanType
from app.modules.loans.products import ProductRules, get_product_rules

__all__ = ["LoanType", "ProductRules", "get_product_rules"]
