"""
Invoice Composer

Builds a draft invoice from contract lines, approved change-order lines and
ad-hoc additional items, keeping each line's source for traceability.
"""

from ..errors import IneligibleSourceError, NotFoundError
from ..models import ChangeOrder, Contract, InvoiceDraft, InvoiceLineItem, LineItem
from ..validators import InputValidator


class InvoiceComposer:
    """Merges the three line-item provenances into one InvoiceDraft."""

    def __init__(self):
        self.validator = InputValidator()

    def compose(
        self,
        contract: Contract,
        change_orders: list[ChangeOrder],
        selected_ids=None,
        additional_items=(),
        already_invoiced_ids=(),
    ) -> InvoiceDraft:
        """
        Compose a draft invoice.

        selected_ids=None means every approved change order that is not in
        already_invoiced_ids. An explicit selection is taken as-is, including
        re-selecting an already invoiced change order; keeping track of that
        is the caller's responsibility.
        """
        selected = self.select_change_orders(change_orders, selected_ids, already_invoiced_ids)

        lines = [
            self._from_line(item, "contract", contract.id)
            for item in contract.line_items
        ]
        for co in selected:
            prefix = f"{co.change_order_number}: " if co.change_order_number else ""
            lines.extend(
                self._from_line(item, "change_order", co.id, prefix) for item in co.line_items
            )
        for item in additional_items:
            if isinstance(item, dict):
                item = LineItem.from_dict(item)
            lines.append(self._from_line(item, "additional", None))

        self.validator.validate_line_items(lines)

        return InvoiceDraft(
            contract_id=contract.id,
            lead_id=contract.lead_id,
            tax_rate=contract.tax_rate,
            line_items=lines,
        )

    def select_change_orders(self, change_orders, selected_ids=None, already_invoiced_ids=()) -> list[ChangeOrder]:
        if selected_ids is None:
            invoiced = set(already_invoiced_ids)
            return [co for co in change_orders if co.is_approved and co.id not in invoiced]

        by_id = {co.id: co for co in change_orders}
        selected = []
        for co_id in selected_ids:
            co = by_id.get(co_id)
            if co is None:
                raise NotFoundError(f"Change order {co_id} does not belong to this contract")
            if not co.is_approved:
                raise IneligibleSourceError(
                    f"Change order {co.change_order_number or co.id} is '{co.status}'; "
                    f"only approved change orders can be invoiced"
                )
            selected.append(co)
        return selected

    def _from_line(self, item: LineItem, source_type: str, source_id: str | None, prefix: str = "") -> InvoiceLineItem:
        return InvoiceLineItem(
            description=f"{prefix}{item.description}",
            quantity=item.quantity,
            unit_price=item.unit_price,
            source_type=source_type,
            source_id=source_id,
            category=item.category,
        )
