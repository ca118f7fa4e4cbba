"""
Financial Engine - Main Orchestrator

Wires the calculators to a FinancialStore and owns the event cascade:

    change order approved / invoice issued / payment recorded / job completed
        → RevenueAggregator (fresh summary for the lead)
        → CommissionLedger (every assigned user's record re-evaluated)
        → one save_commissions() call

Every mutating operation runs under the lead's lock and computes all of its
changes before writing any of them.
"""

import logging
import os
import uuid
from datetime import date
from typing import Any, Dict

from .calculators import (
    ChangeOrderStateMachine,
    CommissionLedger,
    CommissionPlanEvaluator,
    InvoiceComposer,
    RevenueAggregator,
)
from .errors import IneligibleSourceError, InvalidTransitionError
from .locks import LeadLockRegistry
from .models import (
    ChangeOrder,
    CommissionPlan,
    FinancialSummary,
    Invoice,
    InvoiceDraft,
    LeadCommission,
    LeadSnapshot,
    LineItem,
    Payment,
    SignatureRecord,
)
from .money import quantize_money, sum_money, to_decimal
from .output import OutputBuilder
from .stores import FinancialStore, InMemoryStore
from .validators import InputValidator

logger = logging.getLogger(__name__)


def required_signers_from_env() -> tuple[str, ...]:
    raw = os.environ.get("ROLLUP_REQUIRED_SIGNERS", "customer,company")
    return tuple(role.strip() for role in raw.split(",") if role.strip())


class FinancialEngine:
    """
    Main entry point for lead financials and commissions.

    Exposed operations:
    - compute_financial_summary (read-only, no lock)
    - on_change_order_approved / approve_change_order
    - record_payment
    - compose_invoice / issue_invoice
    - recalculate_commissions / mark_job_completed
    - approve_commission / pay_commission / cancel_user_commissions
    """

    def __init__(self, store: FinancialStore, required_signers=None):
        self.store = store
        self.validator = InputValidator()
        self.aggregator = RevenueAggregator()
        self.state_machine = ChangeOrderStateMachine(required_signers or required_signers_from_env())
        self.ledger = CommissionLedger()
        self.composer = InvoiceComposer()
        self.locks = LeadLockRegistry()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def load_snapshot(self, lead_id: str) -> LeadSnapshot:
        """Read everything the aggregator needs for a lead from the store."""
        contract = self.store.get_contract(lead_id)
        snapshot = LeadSnapshot(
            lead_id=lead_id,
            contract=contract,
            material_orders=self.store.list_material_orders(lead_id),
            work_orders=self.store.list_work_orders(lead_id),
            job_completed=self.store.is_job_completed(lead_id),
        )
        if contract is not None:
            snapshot.change_orders = self.store.list_change_orders(contract.quote_id or contract.id)
            snapshot.invoices = self.store.list_invoices(contract.id)
            snapshot.payments = [p for inv in snapshot.invoices for p in self.store.list_payments(inv.id)]

        self.validator.validate_lead(snapshot)
        return snapshot

    def compute_financial_summary(self, lead_id: str) -> FinancialSummary:
        return self.aggregator.aggregate(self.load_snapshot(lead_id))

    def list_commissions(self, lead_id: str) -> list[LeadCommission]:
        records = self.store.list_commissions(lead_id)
        for record in records:
            self.ledger.verify(record)
        return records

    # ------------------------------------------------------------------
    # Change orders
    # ------------------------------------------------------------------

    def create_change_order(
        self,
        lead_id: str,
        title: str,
        line_items: list[LineItem],
        tax_rate=None,
        on: str | None = None,
    ) -> ChangeOrder:
        """Open a numbered draft change order against the lead's contract."""
        with self.locks.hold(lead_id):
            contract = self.store.get_contract(lead_id)
            if contract is None:
                raise IneligibleSourceError(f"Lead {lead_id} has no signed contract to amend")
            year = int(on[:4]) if on else date.today().year
            co = ChangeOrder(
                id=str(uuid.uuid4()),
                lead_id=lead_id,
                amount=sum_money(item.line_total for item in line_items),
                tax_rate=to_decimal(tax_rate) if tax_rate is not None else contract.tax_rate,
                quote_id=contract.quote_id or contract.id,
                change_order_number=self.store.next_change_order_number(year),
                title=title,
                line_items=list(line_items),
            )
            self.validator.validate_change_order(co)
            self.store.save_change_order(co)
            logger.info(f"Created change order {co.change_order_number} for lead {lead_id}")
            return co

    def send_change_order(self, change_order_id: str, on: str | None = None) -> ChangeOrder:
        return self._apply_change_order_action(change_order_id, lambda co: self.state_machine.send(co, on))

    def revert_change_order(self, change_order_id: str) -> ChangeOrder:
        return self._apply_change_order_action(change_order_id, self.state_machine.revert_to_draft)

    def revise_change_order(self, change_order_id: str, line_items: list[LineItem], title: str | None = None) -> ChangeOrder:
        return self._apply_change_order_action(
            change_order_id, lambda co: self.state_machine.revise(co, line_items, title)
        )

    def decline_change_order(self, change_order_id: str, reason: str | None = None) -> ChangeOrder:
        return self._apply_change_order_action(
            change_order_id, lambda co: self.state_machine.decline(co, reason)
        )

    def approve_change_order(
        self, change_order_id: str, signature: SignatureRecord | None = None
    ) -> tuple[ChangeOrder, list[LeadCommission]]:
        """
        Capture a signature (or approve outright when all signers are on
        file) and, once approved, run the commission cascade.
        """
        lead_id = self.store.get_change_order(change_order_id).lead_id
        with self.locks.hold(lead_id):
            co = self.store.get_change_order(change_order_id)
            if signature is not None:
                event = self.state_machine.sign(co, signature)
            else:
                event = self.state_machine.approve(co)

            if event is None:
                self.store.save_change_order(co)
                logger.info(f"Signature captured on {co.change_order_number}; awaiting remaining signers")
                return co, []

            snapshot = self.load_snapshot(lead_id)
            snapshot.change_orders = [co if c.id == co.id else c for c in snapshot.change_orders]
            records = self._recalculate(snapshot)

            self.store.save_change_order(co)
            self.store.save_commissions(records)
            logger.info(
                f"Change order {co.change_order_number} approved (+{event.total}); "
                f"{len(records)} commission(s) recalculated for lead {lead_id}"
            )
            return co, records

    def on_change_order_approved(self, change_order_id: str) -> list[LeadCommission]:
        """Event entry point: an already-approved change order landed in the store."""
        co = self.store.get_change_order(change_order_id)
        if not co.is_approved:
            raise IneligibleSourceError(
                f"Change order {change_order_id} is '{co.status}'; only approved change orders affect revenue"
            )
        logger.info(f"Change order {change_order_id} approved; recalculating lead {co.lead_id}")
        return self.recalculate_commissions(co.lead_id)

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def compose_invoice(
        self, contract_id: str, selected_change_order_ids=None, additional_items=()
    ) -> InvoiceDraft:
        """Build a draft invoice. Nothing is written."""
        contract = self.store.get_contract_by_id(contract_id)
        change_orders = self.store.list_change_orders(contract.quote_id or contract.id)
        already_invoiced = set()
        for invoice in self.store.list_invoices(contract_id):
            if invoice.counts_toward_revenue:
                already_invoiced |= invoice.change_order_ids

        return self.composer.compose(
            contract,
            change_orders,
            selected_ids=selected_change_order_ids,
            additional_items=additional_items,
            already_invoiced_ids=already_invoiced,
        )

    def issue_invoice(self, draft: InvoiceDraft, invoice_date: str | None = None) -> tuple[Invoice, list[LeadCommission]]:
        """Persist a composed invoice and move commissions onto invoiced revenue."""
        with self.locks.hold(draft.lead_id):
            provisional = Invoice(
                id="(pending)",
                contract_id=draft.contract_id,
                lead_id=draft.lead_id,
                tax_rate=draft.tax_rate,
                status="sent",
                invoice_date=invoice_date,
                line_items=draft.line_items,
            )
            self.validator.validate_invoice(provisional)
            snapshot = self.load_snapshot(draft.lead_id)
            snapshot.invoices.append(provisional)
            records = self._recalculate(snapshot)

            invoice = self.store.create_invoice(draft, invoice_date)
            self.store.save_commissions(records)
            logger.info(f"Issued invoice {invoice.invoice_number} for {invoice.total} on lead {draft.lead_id}")
            return invoice, records

    def record_payment(self, invoice_id: str, amount, payment_date: str, method: str = "other") -> Payment:
        """
        Append a payment, update the invoice's status and recompute every
        commission on the lead (collected-based plans and payment gates).
        """
        lead_id = self.store.get_invoice(invoice_id).lead_id
        with self.locks.hold(lead_id):
            invoice = self.store.get_invoice(invoice_id)
            if not invoice.counts_toward_revenue:
                raise InvalidTransitionError(f"Invoice {invoice_id} is '{invoice.status}' and cannot take payments")

            payment = Payment(
                id=str(uuid.uuid4()),
                invoice_id=invoice_id,
                amount=quantize_money(amount),
                payment_date=payment_date,
                method=method,
            )
            payments = self.store.list_payments(invoice_id) + [payment]
            self.validator.validate_payments(invoice, payments)

            paid = sum_money(p.amount for p in payments)
            invoice.status = "paid" if paid == invoice.total else "partial"

            snapshot = self.load_snapshot(lead_id)
            snapshot.invoices = [invoice if inv.id == invoice.id else inv for inv in snapshot.invoices]
            snapshot.payments.append(payment)
            records = self._recalculate(snapshot)

            self.store.add_payment(payment)
            self.store.save_invoice(invoice)
            self.store.save_commissions(records)
            logger.info(f"Recorded payment of {payment.amount} on invoice {invoice_id} ({invoice.status})")
            return payment

    # ------------------------------------------------------------------
    # Commissions
    # ------------------------------------------------------------------

    def recalculate_commissions(self, lead_id: str) -> list[LeadCommission]:
        with self.locks.hold(lead_id):
            records = self._recalculate(self.load_snapshot(lead_id))
            self.store.save_commissions(records)
            return records

    def mark_job_completed(self, lead_id: str) -> list[LeadCommission]:
        with self.locks.hold(lead_id):
            snapshot = self.load_snapshot(lead_id)
            snapshot.job_completed = True
            records = self._recalculate(snapshot)
            self.store.set_job_completed(lead_id)
            self.store.save_commissions(records)
            return records

    def approve_commission(self, commission_id: str) -> LeadCommission:
        return self._apply_commission_action(commission_id, self.ledger.approve)

    def pay_commission(
        self, commission_id: str, amount=None, paid_on: str | None = None, notes: str | None = None
    ) -> LeadCommission:
        return self._apply_commission_action(
            commission_id, lambda record: self.ledger.pay(record, amount, paid_on, notes)
        )

    def cancel_user_commissions(self, lead_id: str, user_id: str, reason: str | None = None) -> list[LeadCommission]:
        """Lead unassigned from a user: cancel whatever has not been paid out."""
        with self.locks.hold(lead_id):
            records = [
                self.ledger.cancel(r, reason or "Lead unassigned - commission cancelled")
                for r in self.list_commissions(lead_id)
                if r.user_id == user_id and r.status not in ("paid", "cancelled")
            ]
            self.store.save_commissions(records)
            return records

    def _recalculate(self, snapshot: LeadSnapshot) -> list[LeadCommission]:
        """
        Re-evaluate every existing record on the lead and create records for
        assigned users that have none yet under their current plan.
        Records whose plan is no longer the user's assignment are cancelled
        unless already paid. Returns the records to save; writes nothing.
        """
        lead_id = snapshot.lead_id
        summary = self.aggregator.aggregate(snapshot)
        milestones = snapshot.milestones()
        existing = {r.key: r for r in self.store.list_commissions(lead_id)}

        records = []
        for record in existing.values():
            current = self.store.get_user_plan_assignment(lead_id, record.user_id)
            if current is None or current.id != record.commission_plan_id:
                if record.status in ("pending", "eligible", "approved"):
                    self.ledger.verify(record)
                    reason = "Lead unassigned" if current is None else f"Reassigned to plan {current.id}"
                    records.append(self.ledger.cancel(record, f"{reason} - commission cancelled"))
                    logger.info(f"Cancelled commission {record.id} for {record.user_id} on lead {lead_id}: {reason}")
                continue
            hours = self.store.get_hours_worked(lead_id, record.user_id)
            records.append(
                self.ledger.evaluate(record, lead_id, record.user_id, record.plan_snapshot, summary, milestones, hours)
            )

        for user_id in self.store.list_assigned_users(lead_id):
            plan = self.store.get_user_plan_assignment(lead_id, user_id)
            if plan is None or (lead_id, user_id, plan.id) in existing:
                continue
            hours = self.store.get_hours_worked(lead_id, user_id)
            records.append(self.ledger.evaluate(None, lead_id, user_id, plan, summary, milestones, hours))

        return records

    def _apply_change_order_action(self, change_order_id: str, action) -> ChangeOrder:
        lead_id = self.store.get_change_order(change_order_id).lead_id
        with self.locks.hold(lead_id):
            co = self.store.get_change_order(change_order_id)
            action(co)
            self.store.save_change_order(co)
            return co

    def _apply_commission_action(self, commission_id: str, action) -> LeadCommission:
        lead_id = self.store.get_commission(commission_id).lead_id
        with self.locks.hold(lead_id):
            record = self.store.get_commission(commission_id)
            action(record)
            self.store.save_commissions([record])
            return record


# =============================================================================
# DICT API (stateless requests: the payload carries the whole lead)
# =============================================================================

def _engine_for(data: Dict[str, Any]) -> FinancialEngine:
    return FinancialEngine(InMemoryStore.from_dict(data))


def process_summary_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Financial summary for the lead described by the payload."""
    engine = _engine_for(data)
    summary = engine.compute_financial_summary(str(data["lead_id"]))
    return OutputBuilder().build_summary(summary)


def process_invoice_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Compose an invoice draft from the payload's contract and change orders."""
    engine = _engine_for(data)
    contract = engine.store.get_contract(str(data["lead_id"]))
    if contract is None:
        raise ValueError("contract is required to compose an invoice")
    draft = engine.compose_invoice(
        contract.id,
        data.get("selected_change_order_ids"),
        data.get("additional_items", []),
    )
    return OutputBuilder().build_invoice(draft)


def process_commissions_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recalculate every commission on the payload's lead."""
    engine = _engine_for(data)
    lead_id = str(data["lead_id"])
    records = engine.recalculate_commissions(lead_id)
    builder = OutputBuilder()
    return {
        "lead_id": lead_id,
        "financials": builder.build_summary(engine.compute_financial_summary(lead_id)),
        "commissions": [builder.build_commission(r) for r in records],
        "summary": builder.build_commission_summary(engine.ledger.summarize(records)),
    }


def evaluate_plan_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Evaluate one plan against one base amount."""
    plan = CommissionPlan.from_dict(data["plan"])
    amount = CommissionPlanEvaluator().evaluate(plan, data["base_amount"], data.get("hours_worked"))
    return {
        "plan_id": plan.id,
        "commission_type": plan.commission_type,
        "base_amount": float(quantize_money(data["base_amount"])),
        "commission_amount": float(amount),
    }
