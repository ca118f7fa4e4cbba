"""
COMMISSION & FINANCIAL ROLLUP ENGINE
Version 1.0
"""

from .errors import (
    ConsistencyError,
    IneligibleSourceError,
    InvalidPlanConfiguration,
    InvalidTransitionError,
    MissingInputError,
    MissingSignatureError,
    NotFoundError,
    OverpaymentError,
    RollupError,
)
from .models import CommissionPlan, FinancialSummary, LeadCommission, LeadSnapshot
from .processor import FinancialEngine
from .stores import FinancialStore, InMemoryStore

__all__ = [
    'FinancialEngine',
    'FinancialStore',
    'InMemoryStore',
    'CommissionPlan',
    'FinancialSummary',
    'LeadCommission',
    'LeadSnapshot',
    'RollupError',
    'InvalidPlanConfiguration',
    'MissingInputError',
    'IneligibleSourceError',
    'OverpaymentError',
    'ConsistencyError',
    'InvalidTransitionError',
    'MissingSignatureError',
    'NotFoundError',
]
