"""
Output Builder

Turns engine results into JSON-ready dictionaries for the API layers.
"""

from decimal import Decimal

from .models import (
    CommissionSummary,
    FinancialSummary,
    Invoice,
    InvoiceDraft,
    InvoiceLineItem,
    LeadCommission,
)


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"${value:,.2f}"


class OutputBuilder:
    """Builds API responses from engine results."""

    def build_summary(self, summary: FinancialSummary) -> dict:
        """Financial summary with value and description for each figure."""
        b = summary.breakdown
        revenue = to_money(summary.revenue)
        cost = to_money(summary.cost)

        if b.revenue_source == "invoices":
            revenue_desc = f"Sum of issued invoices ({_fmt(to_money(b.invoiced_total))}); invoices supersede the contract once billing starts"
        else:
            revenue_desc = (
                f"contract ({_fmt(to_money(b.contract_total))}) + approved change orders "
                f"({_fmt(to_money(b.change_orders_total))}) = {_fmt(revenue)}"
            )

        return {
            "lead_id": summary.lead_id,
            "revenue": {"value": revenue, "description": revenue_desc},
            "cost": {
                "value": cost,
                "description": (
                    f"materials ({_fmt(to_money(b.material_costs))}) + labor "
                    f"({_fmt(to_money(b.labor_costs))}) = {_fmt(cost)}"
                ),
            },
            "profit": {
                "value": to_money(summary.profit),
                "description": f"revenue ({_fmt(revenue)}) - cost ({_fmt(cost)}) = {_fmt(to_money(summary.profit))}",
            },
            "margin": {
                "value": float(summary.margin),
                "description": "profit / revenue × 100" if summary.revenue else "No revenue yet - margin is 0",
            },
            "breakdown": {
                "revenue_source": b.revenue_source,
                "contract_total": to_money(b.contract_total),
                "change_orders_total": to_money(b.change_orders_total),
                "approved_change_order_ids": list(b.approved_change_order_ids),
                "invoiced_total": to_money(b.invoiced_total),
                "collected": to_money(b.collected),
                "outstanding_balance": to_money(b.outstanding_balance),
                "material_costs": to_money(b.material_costs),
                "labor_costs": to_money(b.labor_costs),
                "costs_paid": to_money(b.costs_paid),
                "actual_profit": to_money(b.actual_profit),
                "actual_margin": float(b.actual_margin),
            },
        }

    def build_commission(self, record: LeadCommission) -> dict:
        return {
            "id": record.id,
            "lead_id": record.lead_id,
            "user_id": record.user_id,
            "commission_plan_id": record.commission_plan_id,
            "plan_version": record.plan_snapshot.version,
            "commission_type": record.commission_type,
            "commission_rate": float(record.commission_rate) if record.commission_rate is not None else None,
            "flat_amount": to_money(record.flat_amount) if record.flat_amount is not None else None,
            "calculate_on": record.plan_snapshot.calculate_on,
            "paid_when": record.plan_snapshot.paid_when,
            "base_amount": to_money(record.base_amount),
            "calculated_amount": to_money(record.calculated_amount),
            "paid_amount": to_money(record.paid_amount),
            "balance_owed": to_money(record.balance_owed),
            "has_clawback": record.has_clawback,
            "status": record.status,
            "triggered_by_payment_id": record.triggered_by_payment_id,
            "paid_at": record.paid_at,
            "notes": record.notes,
        }

    def build_commission_summary(self, summary: CommissionSummary) -> dict:
        return {
            "total_owed": to_money(summary.total_owed),
            "total_paid": to_money(summary.total_paid),
            "total_balance": to_money(summary.total_balance),
            "total_pending": to_money(summary.total_pending),
            "total_eligible": to_money(summary.total_eligible),
            "total_approved": to_money(summary.total_approved),
            "total_cancelled": to_money(summary.total_cancelled),
            "total_clawback": to_money(summary.total_clawback),
            "counts": dict(summary.counts),
        }

    def build_invoice(self, invoice: InvoiceDraft | Invoice) -> dict:
        output = {
            "contract_id": invoice.contract_id,
            "lead_id": invoice.lead_id,
            "line_items": [self._build_line(item) for item in invoice.line_items],
            "tax_rate": float(invoice.tax_rate),
            "subtotal": to_money(invoice.subtotal),
            "tax_amount": to_money(invoice.tax_amount),
            "total": to_money(invoice.total),
        }
        if isinstance(invoice, Invoice):
            output.update(
                id=invoice.id,
                invoice_number=invoice.invoice_number,
                status=invoice.status,
                invoice_date=invoice.invoice_date,
            )
        else:
            output["status"] = "draft"
        return output

    def _build_line(self, item: InvoiceLineItem) -> dict:
        return {
            "description": item.description,
            "quantity": float(item.quantity),
            "unit_price": to_money(item.unit_price),
            "line_total": to_money(item.line_total),
            "source_type": item.source_type,
            "source_id": item.source_id,
        }
