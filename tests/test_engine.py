"""
Tests for FinancialEngine

Exercises the event cascade against an InMemoryStore: change-order approval,
invoice issue, payments, job completion and commission payouts, plus the
per-lead lock and the all-or-nothing save.
"""

import threading

import pytest
from decimal import Decimal
from rollup import FinancialEngine, InMemoryStore
from rollup.errors import (
    ConsistencyError, IneligibleSourceError, InvalidTransitionError,
    MissingInputError, MissingSignatureError, OverpaymentError
)
from rollup.output import OutputBuilder
from rollup.models import (
    ChangeOrder, Contract, HourlyPlusPlan, LeadSnapshot, LineItem,
    PercentagePlan, SignatureRecord
)


@pytest.fixture
def store():
    store = InMemoryStore()
    store.add_lead(LeadSnapshot(
        "L1",
        contract=Contract(
            id="c1", lead_id="L1", original_total=Decimal("10000"), quote_id="q1",
            line_items=[LineItem("Kitchen remodel", Decimal("1"), Decimal("10000"))],
        ),
        change_orders=[ChangeOrder(
            id="co1", lead_id="L1", amount=Decimal("1000"), quote_id="q1",
            change_order_number="CO-2026-001",
            line_items=[LineItem("Island upgrade", Decimal("1"), Decimal("1000"))],
        )],
    ))
    store.add_plan(PercentagePlan(id="rev-10", rate=Decimal("10")))
    store.add_plan(PercentagePlan(id="col-10", rate=Decimal("10"), calculate_on="collected"))
    store.assign("L1", "u1", "rev-10")
    store.assign("L1", "u2", "col-10")
    return store


@pytest.fixture
def engine(store):
    return FinancialEngine(store, required_signers=("customer", "company"))


def _by_user(store, lead_id="L1"):
    return {r.user_id: r for r in store.list_commissions(lead_id)}


def _sign(role, on="2026-03-02"):
    return SignatureRecord(signer_role=role, signer_name=f"{role} signer", signed_at=on)


def _issue(engine):
    invoice, _ = engine.issue_invoice(engine.compose_invoice("c1"), invoice_date="2026-03-10")
    return invoice


class TestSummaryAndRecalculation:

    def test_summary_uses_contract_before_invoicing(self, engine):
        summary = engine.compute_financial_summary("L1")

        assert summary.revenue == Decimal("10000.00")
        assert summary.breakdown.revenue_source == "contract"

    def test_recalculate_creates_one_record_per_assignment(self, engine, store):
        engine.recalculate_commissions("L1")
        records = _by_user(store)

        assert records["u1"].calculated_amount == Decimal("1000.00")
        assert records["u2"].calculated_amount == Decimal("0.00")
        assert {r.status for r in records.values()} == {"pending"}

    def test_recalculate_is_idempotent(self, engine, store):
        first = engine.recalculate_commissions("L1")
        second = engine.recalculate_commissions("L1")

        assert len(store.commissions) == 2
        assert sorted((r.id, r.calculated_amount, r.balance_owed) for r in first) == \
            sorted((r.id, r.calculated_amount, r.balance_owed) for r in second)

    def test_plan_revision_does_not_rewrite_existing_records(self, engine, store):
        engine.recalculate_commissions("L1")
        store.add_plan(store.get_plan("rev-10").revise(rate=Decimal("20")))

        engine.recalculate_commissions("L1")

        assert _by_user(store)["u1"].calculated_amount == Decimal("1000.00")

    def test_tampered_record_detected(self, engine, store):
        engine.recalculate_commissions("L1")
        record_id = _by_user(store)["u1"].id
        store.commissions[record_id].balance_owed = Decimal("1")

        with pytest.raises(ConsistencyError):
            engine.recalculate_commissions("L1")


class TestChangeOrderCascade:

    def test_create_change_order_numbers_sequentially(self, engine):
        co = engine.create_change_order(
            "L1", "Extra lighting", [LineItem("Pendant", Decimal("4"), Decimal("125"))], on="2026-03-01"
        )

        assert co.change_order_number == "CO-2026-002"
        assert co.status == "draft"
        assert co.amount == Decimal("500.00")

    def test_revise_then_resend(self, engine, store):
        engine.send_change_order("co1")
        engine.revert_change_order("co1")

        co = engine.revise_change_order("co1", [LineItem("Island upgrade", Decimal("1"), Decimal("1250"))])

        assert co.amount == Decimal("1250.00")
        assert store.get_change_order("co1").amount == Decimal("1250.00")
        assert engine.send_change_order("co1").status == "pending_company_signature"

    def test_store_status_update(self, store):
        store.update_status("co1", "declined")
        assert store.get_change_order("co1").status == "declined"

    def test_approval_waits_for_both_signatures(self, engine, store):
        engine.send_change_order("co1")

        co, records = engine.approve_change_order("co1", _sign("customer"))

        assert co.status == "pending_company_signature"
        assert records == []
        assert store.commissions == {}

    def test_approval_cascades_into_commissions(self, engine, store):
        engine.recalculate_commissions("L1")
        engine.send_change_order("co1")
        engine.approve_change_order("co1", _sign("customer"))

        co, records = engine.approve_change_order("co1", _sign("company"))

        assert co.status == "approved"
        assert store.get_change_order("co1").status == "approved"
        assert engine.compute_financial_summary("L1").revenue == Decimal("11000.00")
        assert _by_user(store)["u1"].calculated_amount == Decimal("1100.00")

    def test_approve_without_signatures_rejected(self, engine, store):
        engine.send_change_order("co1")

        with pytest.raises(MissingSignatureError):
            engine.approve_change_order("co1")
        assert store.get_change_order("co1").status == "pending_company_signature"

    def test_on_change_order_approved_requires_approval(self, engine):
        with pytest.raises(IneligibleSourceError):
            engine.on_change_order_approved("co1")

    def test_on_change_order_approved_recalculates(self, engine, store):
        """Approval recorded elsewhere (e.g. a signing page) then announced to the engine."""
        store.update_status("co1", "approved")

        records = engine.on_change_order_approved("co1")

        assert {r.user_id: r.calculated_amount for r in records}["u1"] == Decimal("1100.00")

    def test_declined_change_order_never_counts(self, engine):
        engine.send_change_order("co1")
        engine.decline_change_order("co1", reason="Customer changed mind")

        assert engine.compute_financial_summary("L1").revenue == Decimal("10000.00")


class TestInvoicesAndPayments:

    def test_issue_invoice_switches_revenue_source(self, engine, store):
        invoice = _issue(engine)

        assert invoice.invoice_number == "INV-2026-001"
        assert invoice.status == "sent"
        summary = engine.compute_financial_summary("L1")
        assert summary.breakdown.revenue_source == "invoices"
        assert summary.revenue == Decimal("10000.00")

        output = OutputBuilder().build_invoice(invoice)
        assert output["invoice_number"] == "INV-2026-001"
        assert output["total"] == 10000.0

    def test_partial_then_final_payment(self, engine, store):
        invoice = _issue(engine)

        engine.record_payment(invoice.id, Decimal("4000"), "2026-03-15", method="check")
        assert store.get_invoice(invoice.id).status == "partial"
        records = _by_user(store)
        assert records["u2"].calculated_amount == Decimal("400.00")
        assert records["u1"].status == "pending"

        final = engine.record_payment(invoice.id, Decimal("6000"), "2026-04-15")
        assert store.get_invoice(invoice.id).status == "paid"
        records = _by_user(store)
        assert records["u1"].status == "eligible"
        assert records["u1"].triggered_by_payment_id == final.id
        assert records["u2"].calculated_amount == Decimal("1000.00")

    def test_overpayment_rejected_and_nothing_saved(self, engine, store):
        invoice = _issue(engine)
        before = _by_user(store)

        with pytest.raises(OverpaymentError):
            engine.record_payment(invoice.id, Decimal("10000.01"), "2026-03-15")

        assert store.list_payments(invoice.id) == []
        assert store.get_invoice(invoice.id).status == "sent"
        assert _by_user(store) == before

    def test_failed_recalculation_commits_nothing(self, engine, store):
        invoice = _issue(engine)
        store.add_plan(HourlyPlusPlan(id="hourly", hourly_rate=Decimal("30"), rate=Decimal("2")))
        store.assign("L1", "u3", "hourly")

        with pytest.raises(MissingInputError):
            engine.record_payment(invoice.id, Decimal("500"), "2026-03-15")

        assert store.list_payments(invoice.id) == []
        assert store.get_invoice(invoice.id).status == "sent"
        assert "u3" not in _by_user(store)

    def test_void_invoice_rejects_payments(self, engine, store):
        invoice = _issue(engine)
        voided = store.get_invoice(invoice.id)
        voided.status = "void"
        store.save_invoice(voided)

        with pytest.raises(InvalidTransitionError):
            engine.record_payment(invoice.id, Decimal("100"), "2026-03-15")

    def test_second_invoice_skips_invoiced_change_orders(self, engine):
        engine.send_change_order("co1")
        engine.approve_change_order("co1", _sign("customer"))
        engine.approve_change_order("co1", _sign("company"))
        _issue(engine)

        draft = engine.compose_invoice("c1")

        assert draft.change_order_ids == set()


class TestCommissionPayouts:

    def test_job_completion_opens_completed_gate(self, engine, store):
        store.add_plan(PercentagePlan(id="done-5", rate=Decimal("5"), paid_when="completed"))
        store.assign("L1", "u3", "done-5")

        engine.mark_job_completed("L1")

        assert store.is_job_completed("L1")
        assert _by_user(store)["u3"].status == "eligible"

    def test_approve_and_pay(self, engine, store):
        store.add_plan(PercentagePlan(id="signed-5", rate=Decimal("5"), paid_when="signed"))
        store.assign("L1", "u3", "signed-5")
        engine.recalculate_commissions("L1")
        record_id = _by_user(store)["u3"].id

        engine.approve_commission(record_id)
        engine.pay_commission(record_id, Decimal("200"), paid_on="2026-05-01")
        paid = engine.pay_commission(record_id, paid_on="2026-05-02")

        assert paid.status == "paid"
        assert paid.paid_amount == Decimal("500.00")
        assert store.get_commission(record_id).balance_owed == Decimal("0.00")

    def test_cancel_user_commissions(self, engine, store):
        engine.recalculate_commissions("L1")

        cancelled = engine.cancel_user_commissions("L1", "u2")

        assert [r.user_id for r in cancelled] == ["u2"]
        assert _by_user(store)["u2"].status == "cancelled"
        assert _by_user(store)["u1"].status == "pending"


class TestAssignmentChanges:
    """A record only accrues while its plan is the user's current assignment."""

    def _live(self, store):
        return [r for r in store.list_commissions("L1") if r.status != "cancelled"]

    def test_reassignment_cancels_old_plan_record(self, engine, store):
        engine.recalculate_commissions("L1")
        old_id = _by_user(store)["u1"].id
        store.add_plan(PercentagePlan(id="rev-5", rate=Decimal("5")))
        store.assign("L1", "u1", "rev-5")

        engine.recalculate_commissions("L1")

        old = store.get_commission(old_id)
        assert old.status == "cancelled"
        assert "rev-5" in old.notes
        live = [r for r in self._live(store) if r.user_id == "u1"]
        assert [(r.commission_plan_id, r.calculated_amount) for r in live] == [("rev-5", Decimal("500.00"))]

    def test_unassigned_user_stops_accruing(self, engine, store):
        engine.recalculate_commissions("L1")
        store.unassign("L1", "u1")

        records = engine.recalculate_commissions("L1")

        assert _by_user(store)["u1"].status == "cancelled"
        assert [r.user_id for r in self._live(store)] == ["u2"]
        assert "u1" in [r.user_id for r in records]

    def test_paid_record_survives_reassignment(self, engine, store):
        store.add_plan(PercentagePlan(id="signed-5", rate=Decimal("5"), paid_when="signed"))
        store.assign("L1", "u3", "signed-5")
        engine.recalculate_commissions("L1")
        paid_id = _by_user(store)["u3"].id
        engine.approve_commission(paid_id)
        engine.pay_commission(paid_id, paid_on="2026-05-01")
        store.assign("L1", "u3", "rev-10")

        engine.recalculate_commissions("L1")

        paid = store.get_commission(paid_id)
        assert paid.status == "paid"
        assert paid.paid_amount == Decimal("500.00")
        assert paid.balance_owed == Decimal("0.00")


class TestConcurrency:

    def test_concurrent_payments_serialize_per_lead(self, engine, store):
        """12 threads each pay 1000 on a 10000 invoice: exactly 10 land."""
        invoice = _issue(engine)
        errors = []

        def pay():
            try:
                engine.record_payment(invoice.id, Decimal("1000"), "2026-03-15")
            except OverpaymentError as e:
                errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.list_payments(invoice.id)) == 10
        assert len(errors) == 2
        assert store.get_invoice(invoice.id).status == "paid"

        records = _by_user(store)
        assert records["u2"].calculated_amount == Decimal("1000.00")
        for record in records.values():
            assert record.balance_owed == record.calculated_amount - record.paid_amount
