"""
Commission Plan Evaluator

Turns a commission plan and a base amount into a commission amount.
Pure: no state, no I/O. Arithmetic runs in integer cents and the result is
rounded half-up to 2 places.
"""

from decimal import Decimal

from ..errors import InvalidPlanConfiguration, MissingInputError
from ..models import (
    CommissionPlan,
    CommissionTier,
    FlatPerJobPlan,
    HourlyPlusPlan,
    PercentagePlan,
    SalaryPlusPlan,
    TieredPlan,
)
from ..money import apply_percent_cents, apply_rate_cents, from_cents, to_cents, to_decimal
from ..validators import InputValidator


class CommissionPlanEvaluator:
    """Evaluates the five commission plan formulas."""

    def __init__(self):
        self.validator = InputValidator()

    def evaluate(self, plan: CommissionPlan, base_amount, hours_worked=None) -> Decimal:
        """
        Calculate the commission for a base amount.

        - percentage:   base × rate%
        - flat_per_job: flat_amount, whatever the base
        - tiered:       each band's slice of the base × that band's rate, summed
        - hourly_plus:  hourly_rate × hours + base × rate%
        - salary_plus:  salary_amount + base × rate% (period salary, not prorated)
        """
        self.validator.validate_plan(plan)

        base = to_decimal(base_amount)
        if base < 0:
            raise ValueError(f"base_amount cannot be negative, got: {base}")
        base_cents = to_cents(base)

        if isinstance(plan, PercentagePlan):
            cents = apply_percent_cents(base_cents, plan.rate)
        elif isinstance(plan, FlatPerJobPlan):
            cents = to_cents(plan.flat_amount)
        elif isinstance(plan, TieredPlan):
            cents = self._calculate_tiered(base_cents, plan.tiers)
        elif isinstance(plan, HourlyPlusPlan):
            cents = self._calculate_hourly_plus(base_cents, plan, hours_worked)
        elif isinstance(plan, SalaryPlusPlan):
            cents = to_cents(plan.salary_amount) + apply_percent_cents(base_cents, plan.rate)
        else:
            raise InvalidPlanConfiguration(f"Unsupported commission_type: {plan.commission_type}")

        return from_cents(cents)

    def _calculate_hourly_plus(self, base_cents: int, plan: HourlyPlusPlan, hours_worked) -> int:
        if hours_worked is None:
            raise MissingInputError(
                f"hours_worked is required to evaluate hourly_plus plan '{plan.id}'"
            )
        hours = to_decimal(hours_worked)
        if hours < 0:
            raise ValueError(f"hours_worked cannot be negative, got: {hours}")
        hourly_cents = apply_rate_cents(to_cents(plan.hourly_rate), hours)
        return hourly_cents + apply_percent_cents(base_cents, plan.rate)

    def _calculate_tiered(self, base_cents: int, tiers: tuple[CommissionTier, ...]) -> int:
        """
        Marginal bracket accumulation.

        Only the slice of the base that falls inside [min, max) earns that
        tier's rate, so raising the base can never lower the commission.
        """
        total = 0
        for tier in tiers:
            lower = to_cents(tier.min)
            if base_cents <= lower:
                break

            upper = base_cents if tier.max is None else min(base_cents, to_cents(tier.max))
            total += apply_percent_cents(upper - lower, tier.rate)

        return total
