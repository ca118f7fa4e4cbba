"""
Commission Ledger

Creates and recomputes LeadCommission records and tracks what has been paid
against them. Every write re-derives balance_owed from calculated_amount and
paid_amount; nothing else ever sets it.
"""

import uuid
from datetime import date
from decimal import Decimal

from ..errors import ConsistencyError, InvalidPlanConfiguration, InvalidTransitionError, OverpaymentError
from ..models import (
    COMMISSION_STATUSES,
    CommissionPlan,
    CommissionSummary,
    FinancialSummary,
    LeadCommission,
    LeadMilestones,
)
from ..money import ZERO, quantize_money, sum_money
from .plan import CommissionPlanEvaluator


class CommissionLedger:
    """Maintains one commission record per (lead, user, plan)."""

    def __init__(self, evaluator: CommissionPlanEvaluator | None = None):
        self.evaluator = evaluator or CommissionPlanEvaluator()

    def base_amount(self, plan: CommissionPlan, summary: FinancialSummary) -> Decimal:
        """
        Pick the figure the plan's rate applies to.

        A loss-making job has a negative profit; commission is computed on 0
        rather than producing a negative commission.
        """
        if plan.calculate_on == "revenue":
            return summary.revenue
        if plan.calculate_on == "profit":
            return max(ZERO, summary.profit)
        if plan.calculate_on == "collected":
            return summary.breakdown.collected
        raise InvalidPlanConfiguration(f"Invalid calculate_on: {plan.calculate_on}")

    def evaluate(
        self,
        existing: LeadCommission | None,
        lead_id: str,
        user_id: str,
        plan: CommissionPlan,
        summary: FinancialSummary,
        milestones: LeadMilestones,
        hours_worked=None,
    ) -> LeadCommission:
        """
        Create or recompute the commission for one user on one lead.

        An existing record is updated in place and keeps its paid_amount.
        It is evaluated against its own plan snapshot, so plan revisions made
        after the record was created do not rewrite it. A downward revision
        can leave balance_owed negative; that is a clawback and is kept as-is.
        """
        if existing is not None:
            self.verify(existing)
            if existing.status == "cancelled":
                return existing
            plan = existing.plan_snapshot
        elif not plan.is_active:
            raise InvalidPlanConfiguration(f"Commission plan '{plan.id}' is inactive")

        base = self.base_amount(plan, summary)
        calculated = self.evaluator.evaluate(plan, base, hours_worked)

        if existing is None:
            record = LeadCommission(
                id=str(uuid.uuid4()),
                lead_id=lead_id,
                user_id=user_id,
                plan_snapshot=plan,
                base_amount=quantize_money(base),
                calculated_amount=calculated,
                paid_amount=ZERO,
                balance_owed=calculated,
                status="pending",
            )
        else:
            record = existing
            record.base_amount = quantize_money(base)
            record.calculated_amount = calculated
            self._reconcile(record)
            if record.status == "paid" and record.balance_owed != 0:
                # A settled commission moved: reopen it for the next manual payout
                record.status = "approved"
                record.paid_at = None

        self._apply_gate(record, plan, milestones)
        return record

    def approve(self, record: LeadCommission) -> LeadCommission:
        self.verify(record)
        if record.status != "eligible":
            raise InvalidTransitionError(
                f"Commission {record.id} is '{record.status}'; only eligible commissions can be approved"
            )
        record.status = "approved"
        return record

    def pay(
        self,
        record: LeadCommission,
        amount=None,
        paid_on: str | None = None,
        notes: str | None = None,
    ) -> LeadCommission:
        """
        Record a manual payout. Without an amount, the remaining balance is paid.
        A partial payout leaves the record approved.
        """
        self.verify(record)
        if record.status != "approved":
            raise InvalidTransitionError(
                f"Commission {record.id} is '{record.status}'; only approved commissions can be paid"
            )

        payment = record.balance_owed if amount is None else quantize_money(amount)
        if payment <= 0:
            raise ValueError(f"Commission payment must be positive, got: {payment}")
        if payment > record.balance_owed:
            raise OverpaymentError(
                f"Commission payment {payment} exceeds balance owed {record.balance_owed} on {record.id}"
            )

        record.paid_amount += payment
        self._reconcile(record)
        record.payment_notes = notes
        if record.balance_owed == 0:
            record.status = "paid"
            record.paid_at = paid_on or date.today().isoformat()
        return record

    def cancel(self, record: LeadCommission, reason: str | None = None) -> LeadCommission:
        if record.status == "paid":
            raise InvalidTransitionError(f"Commission {record.id} is already paid and cannot be cancelled")
        record.status = "cancelled"
        record.notes = reason
        return record

    def verify(self, record: LeadCommission) -> None:
        """Fail loudly if balance_owed was written without going through the ledger."""
        if record.status not in COMMISSION_STATUSES:
            raise ConsistencyError(f"Commission {record.id} has unknown status '{record.status}'")
        expected = record.calculated_amount - record.paid_amount
        if record.balance_owed != expected:
            raise ConsistencyError(
                f"Commission {record.id}: balance_owed {record.balance_owed} != "
                f"calculated {record.calculated_amount} - paid {record.paid_amount}"
            )

    def summarize(self, records: list[LeadCommission]) -> CommissionSummary:
        live = [r for r in records if r.status != "cancelled"]

        def total_for(status):
            return sum_money(r.calculated_amount for r in records if r.status == status)

        return CommissionSummary(
            total_owed=sum_money(r.calculated_amount for r in live),
            total_paid=sum_money(r.paid_amount for r in records),
            total_balance=sum_money(r.balance_owed for r in live),
            total_pending=total_for("pending"),
            total_eligible=total_for("eligible"),
            total_approved=total_for("approved"),
            total_cancelled=total_for("cancelled"),
            total_clawback=sum_money(-r.balance_owed for r in live if r.has_clawback),
            counts={status: sum(1 for r in records if r.status == status) for status in COMMISSION_STATUSES},
        )

    def _reconcile(self, record: LeadCommission) -> None:
        record.balance_owed = record.calculated_amount - record.paid_amount

    def _apply_gate(self, record: LeadCommission, plan: CommissionPlan, milestones: LeadMilestones) -> None:
        if record.status == "pending" and milestones.is_met(plan.paid_when):
            record.status = "eligible"
            record.triggered_by_payment_id = milestones.triggering_payment_id(plan.paid_when)
