"""
Calculators Package

Provides all calculation components for lead financials and commissions.
"""

from .change_order import ChangeOrderStateMachine
from .invoice import InvoiceComposer
from .ledger import CommissionLedger
from .plan import CommissionPlanEvaluator
from .revenue import RevenueAggregator

__all__ = [
    "CommissionPlanEvaluator",
    "RevenueAggregator",
    "ChangeOrderStateMachine",
    "CommissionLedger",
    "InvoiceComposer",
]
