"""
Unit Tests for Input Validation and Document Numbering
"""

import pytest
from decimal import Decimal
from rollup.errors import OverpaymentError
from rollup.models import ChangeOrder, Contract, Invoice, InvoiceLineItem, LeadSnapshot, Payment, WorkOrder
from rollup.numbering import latest_document_number, next_document_number
from rollup.stores import InMemoryStore
from rollup.validators import InputValidator


def _invoice(total="1000"):
    return Invoice(
        id="i1", contract_id="c1", lead_id="L1", status="sent",
        line_items=[InvoiceLineItem("Job", Decimal("1"), Decimal(total), "contract", "c1")],
    )


class TestLeadValidation:

    @pytest.fixture
    def validator(self):
        return InputValidator()

    def test_valid_lead_passes(self, validator):
        snapshot = LeadSnapshot(
            "L1",
            contract=Contract(id="c1", lead_id="L1", original_total=Decimal("1000"), tax_rate=Decimal("0.08")),
            invoices=[_invoice()],
            payments=[Payment("p1", "i1", Decimal("400"), "2026-01-05")],
        )
        validator.validate_lead(snapshot)

    def test_tax_rate_above_one_rejected(self, validator):
        snapshot = LeadSnapshot(
            "L1", contract=Contract(id="c1", lead_id="L1", original_total=Decimal("1000"), tax_rate=Decimal("8"))
        )
        with pytest.raises(ValueError, match="tax_rate"):
            validator.validate_lead(snapshot)

    def test_negative_work_order_rejected(self, validator):
        snapshot = LeadSnapshot("L1", work_orders=[WorkOrder("w1", total=Decimal("-1"))])
        with pytest.raises(ValueError, match="cannot be negative"):
            validator.validate_lead(snapshot)

    def test_payment_on_unknown_invoice_rejected(self, validator):
        snapshot = LeadSnapshot("L1", payments=[Payment("p1", "missing", Decimal("10"), "2026-01-05")])
        with pytest.raises(ValueError, match="unknown invoice"):
            validator.validate_lead(snapshot)

    def test_overpayment_rejected(self, validator):
        payments = [
            Payment("p1", "i1", Decimal("600"), "2026-01-05"),
            Payment("p2", "i1", Decimal("400.01"), "2026-01-06"),
        ]
        with pytest.raises(OverpaymentError):
            validator.validate_payments(_invoice(), payments)

    def test_exact_payment_allowed(self, validator):
        validator.validate_payments(_invoice(), [Payment("p1", "i1", Decimal("1000"), "2026-01-05")])

    def test_unknown_invoice_status_rejected(self, validator):
        invoice = _invoice()
        invoice.status = "lost"
        with pytest.raises(ValueError, match="Invalid invoice status"):
            validator.validate_invoice(invoice)


class TestDocumentNumbering:

    def test_first_number_of_year(self):
        assert next_document_number("CO", None, 2026) == "CO-2026-001"

    def test_increments_within_year(self):
        assert next_document_number("INV", "INV-2026-009", 2026) == "INV-2026-010"

    def test_resets_on_new_year(self):
        assert next_document_number("CO", "CO-2025-042", 2026) == "CO-2026-001"

    def test_unparseable_last_number_restarts(self):
        assert next_document_number("CO", "legacy-17", 2026) == "CO-2026-001"

    def test_sequence_runs_past_999(self):
        assert next_document_number("CO", "CO-2026-999", 2026) == "CO-2026-1000"

    def test_latest_compares_sequence_numerically(self):
        assert latest_document_number("CO", "CO-2026-999", "CO-2026-1000") == "CO-2026-1000"
        assert latest_document_number("CO", "CO-2026-1000", "CO-2026-999") == "CO-2026-1000"
        assert latest_document_number("CO", "CO-2026-010", "CO-2025-500") == "CO-2026-010"
        assert latest_document_number("CO", "CO-2026-010", "legacy-17") == "CO-2026-010"

    def test_store_keeps_counting_after_four_digit_numbers(self):
        store = InMemoryStore()
        store.save_change_order(ChangeOrder("co999", "L1", Decimal("100"), change_order_number="CO-2026-999"))
        next_number = store.next_change_order_number(2026)
        store.save_change_order(ChangeOrder("co1000", "L1", Decimal("100"), change_order_number=next_number))

        assert next_number == "CO-2026-1000"
        assert store.next_change_order_number(2026) == "CO-2026-1001"

    def test_store_invoice_counter_ignores_older_saves(self):
        store = InMemoryStore()
        store.save_invoice(Invoice(id="a", contract_id="c1", lead_id="L1", invoice_number="INV-2026-1000"))
        store.save_invoice(Invoice(id="b", contract_id="c1", lead_id="L1", invoice_number="INV-2026-998"))

        assert store.last_invoice_number == "INV-2026-1000"
