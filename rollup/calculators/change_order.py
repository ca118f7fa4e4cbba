"""
Change Order State Machine

Governs draft → pending_company_signature → approved, and the declined exit.
Approval is the only way a change order's amount becomes eligible for
revenue, commission and invoicing.
"""

from datetime import date

from ..errors import InvalidTransitionError, MissingSignatureError
from ..models import SIGNER_ROLES, ChangeOrder, ChangeOrderApproved, LineItem
from ..money import sum_money

DEFAULT_REQUIRED_SIGNERS = ("customer", "company")

# status -> statuses it may move to
TRANSITIONS = {
    "draft": ("pending_company_signature", "declined"),
    "pending_company_signature": ("draft", "approved", "declined"),
    "approved": (),
    "declined": (),
}


def _today() -> str:
    return date.today().isoformat()


class ChangeOrderStateMachine:
    """Applies lifecycle actions to a ChangeOrder in place."""

    def __init__(self, required_signers=DEFAULT_REQUIRED_SIGNERS):
        unknown = set(required_signers) - set(SIGNER_ROLES)
        if unknown or not required_signers:
            raise ValueError(f"required_signers must be a non-empty subset of {list(SIGNER_ROLES)}")
        self.required_signers = tuple(required_signers)

    def send(self, co: ChangeOrder, on: str | None = None) -> ChangeOrder:
        """Send to the customer; the amount is frozen from here on."""
        self._transition(co, "pending_company_signature")
        co.sent_at = on or _today()
        return co

    def revert_to_draft(self, co: ChangeOrder) -> ChangeOrder:
        """Pull a sent change order back for editing. Only while nobody has signed."""
        if co.status == "pending_company_signature" and co.has_signature:
            raise InvalidTransitionError(
                f"Change order {co.id} has a captured signature and can no longer be reverted to draft"
            )
        self._transition(co, "draft")
        co.sent_at = None
        return co

    def revise(self, co: ChangeOrder, line_items: list[LineItem], title: str | None = None) -> ChangeOrder:
        """Replace the line items of a draft and recompute its amount."""
        if co.status != "draft":
            raise InvalidTransitionError(
                f"Change order {co.id} is '{co.status}'; only drafts can be edited"
            )
        co.line_items = list(line_items)
        co.amount = sum_money(item.line_total for item in co.line_items)
        if title is not None:
            co.title = title
        return co

    def sign(self, co: ChangeOrder, signature) -> ChangeOrderApproved | None:
        """
        Capture a customer or company signature.

        Returns the approval event when this signature completes the set of
        required signers, otherwise None.
        """
        if co.status != "pending_company_signature":
            raise InvalidTransitionError(
                f"Change order {co.id} is '{co.status}'; signatures are only accepted while pending"
            )
        if signature.signer_role not in SIGNER_ROLES:
            raise ValueError(f"Invalid signer_role: {signature.signer_role}")

        if signature.signer_role == "customer":
            co.customer_signature = signature
        else:
            co.company_signature = signature

        if self.missing_signers(co):
            return None
        return self.approve(co, on=signature.signed_at)

    def approve(self, co: ChangeOrder, on: str | None = None) -> ChangeOrderApproved:
        missing = self.missing_signers(co)
        if co.status == "pending_company_signature" and missing:
            raise MissingSignatureError(
                f"cannot approve change order {co.id}: signature missing ({', '.join(missing)})"
            )
        self._transition(co, "approved")
        co.approved_at = on or _today()
        return ChangeOrderApproved(
            lead_id=co.lead_id,
            change_order_id=co.id,
            amount=co.amount,
            total=co.total,
        )

    def decline(self, co: ChangeOrder, reason: str | None = None, on: str | None = None) -> ChangeOrder:
        """Terminal: a declined change order never contributes to revenue."""
        self._transition(co, "declined")
        co.declined_at = on or _today()
        co.declined_reason = reason
        return co

    def missing_signers(self, co: ChangeOrder) -> list[str]:
        return [role for role in self.required_signers if co.signature_for(role) is None]

    def _transition(self, co: ChangeOrder, target: str) -> None:
        allowed = TRANSITIONS.get(co.status, ())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Change order {co.id} cannot move from '{co.status}' to '{target}'"
            )
        co.status = target
