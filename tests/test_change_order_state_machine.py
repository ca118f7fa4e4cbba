"""
Unit Tests for Change Order State Machine

Tests verify the draft → pending → approved/declined lifecycle and the
signature requirements on approval.
"""

import pytest
from decimal import Decimal
from rollup.calculators.change_order import ChangeOrderStateMachine
from rollup.errors import InvalidTransitionError, MissingSignatureError
from rollup.models import ChangeOrder, LineItem, SignatureRecord


def _draft():
    return ChangeOrder(id="co1", lead_id="L1", amount=Decimal("1000"), tax_rate=Decimal("0.08"), quote_id="q1")


def _signature(role, on="2026-04-02"):
    return SignatureRecord(signer_role=role, signer_name=f"{role} signer", signed_at=on)


class TestLifecycle:
    """Legal and illegal transitions."""

    @pytest.fixture
    def machine(self):
        return ChangeOrderStateMachine()

    def test_send_moves_draft_to_pending(self, machine):
        co = machine.send(_draft(), on="2026-04-01")

        assert co.status == "pending_company_signature"
        assert co.sent_at == "2026-04-01"

    def test_revert_to_draft_before_signing(self, machine):
        co = machine.send(_draft())
        machine.revert_to_draft(co)

        assert co.status == "draft"
        assert co.sent_at is None

    def test_revert_blocked_once_signed(self, machine):
        co = machine.send(_draft())
        machine.sign(co, _signature("customer"))

        with pytest.raises(InvalidTransitionError):
            machine.revert_to_draft(co)

    def test_revise_recomputes_amount(self, machine):
        co = machine.revise(_draft(), [LineItem("Extra outlet", Decimal("3"), Decimal("150"))], title="Electrical")

        assert co.amount == Decimal("450.00")
        assert co.title == "Electrical"

    def test_revise_only_allowed_on_drafts(self, machine):
        co = machine.send(_draft())
        with pytest.raises(InvalidTransitionError, match="only drafts"):
            machine.revise(co, [])

    def test_decline_from_pending(self, machine):
        co = machine.send(_draft())
        machine.decline(co, reason="Too expensive", on="2026-04-03")

        assert co.status == "declined"
        assert co.declined_reason == "Too expensive"

    @pytest.mark.parametrize("terminal", ["approved", "declined"])
    def test_terminal_states_cannot_move(self, machine, terminal):
        co = _draft()
        co.status = terminal

        for action in (machine.send, machine.revert_to_draft, machine.decline):
            with pytest.raises(InvalidTransitionError):
                action(co)

    def test_draft_cannot_be_approved_directly(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.approve(_draft())


class TestSignatures:
    """Approval requires every configured signer."""

    def test_both_signatures_approve(self):
        machine = ChangeOrderStateMachine()
        co = machine.send(_draft())

        assert machine.sign(co, _signature("customer")) is None
        event = machine.sign(co, _signature("company", on="2026-04-05"))

        assert co.status == "approved"
        assert co.approved_at == "2026-04-05"
        assert event.change_order_id == "co1"
        assert event.total == Decimal("1080.00")

    def test_approve_without_signature_fails(self):
        machine = ChangeOrderStateMachine()
        co = machine.send(_draft())
        machine.sign(co, _signature("customer"))

        with pytest.raises(MissingSignatureError, match="signature missing"):
            machine.approve(co)
        assert co.status == "pending_company_signature"

    def test_customer_only_configuration(self):
        machine = ChangeOrderStateMachine(required_signers=("customer",))
        co = machine.send(_draft())

        event = machine.sign(co, _signature("customer"))

        assert event is not None
        assert co.is_approved

    def test_signing_a_draft_rejected(self):
        with pytest.raises(InvalidTransitionError):
            ChangeOrderStateMachine().sign(_draft(), _signature("customer"))

    def test_unknown_required_signer_rejected(self):
        with pytest.raises(ValueError):
            ChangeOrderStateMachine(required_signers=("notary",))
