"""
Input Validation for the Rollup Engine

Validates plans and lead data before any calculation runs.
Raises the engine's ValueError subclasses with clear messages for any
constraint violation; nothing is silently defaulted.
"""

from decimal import Decimal

from .errors import InvalidPlanConfiguration, OverpaymentError
from .models import (
    CALCULATE_ON,
    CHANGE_ORDER_STATUSES,
    INVOICE_STATUSES,
    PAID_WHEN,
    SOURCE_TYPES,
    ChangeOrder,
    CommissionPlan,
    CommissionTier,
    Invoice,
    LeadSnapshot,
    Payment,
    TieredPlan,
)
from .money import sum_money


class InputValidator:
    """Validates plan and lead input according to business rules."""

    def validate_plan(self, plan: CommissionPlan) -> None:
        """Raise InvalidPlanConfiguration if the plan cannot be evaluated."""
        if plan.calculate_on not in CALCULATE_ON:
            raise InvalidPlanConfiguration(
                f"Invalid calculate_on: {plan.calculate_on}. Must be one of {list(CALCULATE_ON)}"
            )
        if plan.paid_when not in PAID_WHEN:
            raise InvalidPlanConfiguration(
                f"Invalid paid_when: {plan.paid_when}. Must be one of {list(PAID_WHEN)}"
            )

        rate = getattr(plan, "rate", None)
        if rate is not None:
            self._validate_percent("rate", rate)

        for name in ("flat_amount", "hourly_rate", "salary_amount"):
            value = getattr(plan, name, None)
            if value is not None and value < 0:
                raise InvalidPlanConfiguration(f"{name} cannot be negative, got: {value}")

        if isinstance(plan, TieredPlan):
            self._validate_tiers(plan.tiers)

    def validate_lead(self, snapshot: LeadSnapshot) -> None:
        """Validate a lead's revenue and cost records."""
        if snapshot.contract is not None:
            self._validate_tax_rate("contract tax_rate", snapshot.contract.tax_rate)
            if snapshot.contract.original_total < 0:
                raise ValueError(
                    f"original_total cannot be negative, got: {snapshot.contract.original_total}"
                )

        for co in snapshot.change_orders:
            self.validate_change_order(co)

        for invoice in snapshot.invoices:
            self.validate_invoice(invoice)

        for order in snapshot.material_orders:
            if order.total_estimated < 0 or (order.total_actual is not None and order.total_actual < 0):
                raise ValueError(f"Material order costs cannot be negative: {order}")

        for order in snapshot.work_orders:
            if order.total < 0:
                raise ValueError(f"Work order total cannot be negative: {order}")

        invoices = {inv.id: inv for inv in snapshot.invoices}
        for payment in snapshot.payments:
            if payment.invoice_id not in invoices:
                raise ValueError(f"Payment {payment.id} references unknown invoice {payment.invoice_id}")
        for invoice in snapshot.invoices:
            paid = [p for p in snapshot.payments if p.invoice_id == invoice.id]
            self.validate_payments(invoice, paid)

    def validate_change_order(self, co: ChangeOrder) -> None:
        if co.status not in CHANGE_ORDER_STATUSES:
            raise ValueError(
                f"Invalid change order status: {co.status}. Must be one of {list(CHANGE_ORDER_STATUSES)}"
            )
        self._validate_tax_rate(f"change order {co.id} tax_rate", co.tax_rate)

    def validate_invoice(self, invoice: Invoice) -> None:
        if invoice.status not in INVOICE_STATUSES:
            raise ValueError(
                f"Invalid invoice status: {invoice.status}. Must be one of {list(INVOICE_STATUSES)}"
            )
        self._validate_tax_rate(f"invoice {invoice.id} tax_rate", invoice.tax_rate)
        self.validate_line_items(invoice.line_items)

    def validate_line_items(self, items) -> None:
        """
        Quantities must be positive. unit_price may be negative: that is how
        discount lines are represented.
        """
        for item in items:
            if item.quantity <= 0:
                raise ValueError(f"quantity must be positive, got: {item.quantity} ({item.description})")
            source_type = getattr(item, "source_type", None)
            if source_type is not None and source_type not in SOURCE_TYPES:
                raise ValueError(f"Invalid source_type: {source_type}. Must be one of {list(SOURCE_TYPES)}")

    def validate_payments(self, invoice: Invoice, payments: list[Payment]) -> None:
        """Payments against an invoice may never add up to more than its total."""
        for payment in payments:
            if payment.amount <= 0:
                raise ValueError(f"Payment amount must be positive, got: {payment.amount}")
        paid = sum_money(p.amount for p in payments)
        if paid > invoice.total:
            raise OverpaymentError(
                f"Payments on invoice {invoice.id} total {paid}, exceeding invoice total {invoice.total}"
            )

    def _validate_percent(self, name: str, value: Decimal) -> None:
        if not (0 <= value <= 100):
            raise InvalidPlanConfiguration(f"{name} must be between 0 and 100, got: {value}")

    def _validate_tax_rate(self, name: str, value: Decimal) -> None:
        if not (0 <= value <= 1):
            raise ValueError(f"{name} must be between 0 and 1, got: {value}")

    def _validate_tiers(self, tiers: tuple[CommissionTier, ...]) -> None:
        """Tiers must start at 0, ascend without gaps and only the last may be open-ended."""
        if not tiers:
            raise InvalidPlanConfiguration("tiers is required when commission_type='tiered'")

        if tiers[0].min != 0:
            raise InvalidPlanConfiguration(f"First tier must start at 0, got: {tiers[0].min}")

        for i, tier in enumerate(tiers):
            self._validate_percent(f"Tier {i} rate", tier.rate)
            is_last = i == len(tiers) - 1

            if tier.max is None:
                if not is_last:
                    raise InvalidPlanConfiguration(f"Only the last tier may omit max (tier {i})")
                continue

            if tier.max <= tier.min:
                raise InvalidPlanConfiguration(
                    f"Tier {i} max must be greater than min, got: [{tier.min}, {tier.max})"
                )
            if not is_last and tiers[i + 1].min != tier.max:
                raise InvalidPlanConfiguration(
                    f"Tier {i + 1} must start where tier {i} ends ({tier.max}), got: {tiers[i + 1].min}"
                )
