"""
Revenue Aggregator

Combines a lead's contract, approved change orders, invoices, payments and
cost orders into one financial summary. Pure: the same snapshot always yields
the same summary, and nothing is persisted here.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..models import FinancialSummary, LeadSnapshot, RevenueBreakdown
from ..money import ZERO, sum_money


def margin_percent(profit: Decimal, revenue: Decimal) -> Decimal:
    """profit / revenue × 100 to 2 places; 0 when there is no revenue."""
    if revenue == 0:
        return Decimal("0.00")
    return (profit / revenue * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class RevenueAggregator:
    """Produces revenue, cost, profit and margin for a lead."""

    def aggregate(self, snapshot: LeadSnapshot) -> FinancialSummary:
        """
        Revenue source priority:
        1. Invoices, once any active invoice exists (they may carry discounts
           and additional items the contract never had)
        2. Contract original total + approved change orders
        """
        contract_total = snapshot.contract.original_total if snapshot.contract else ZERO
        approved = snapshot.approved_change_orders
        change_orders_total = sum_money(co.total for co in approved)

        invoices = snapshot.active_invoices
        invoiced_total = sum_money(inv.total for inv in invoices)

        if invoices:
            revenue = invoiced_total
            revenue_source = "invoices"
        else:
            revenue = sum_money([contract_total, change_orders_total])
            revenue_source = "contract"

        material_costs = sum_money(mo.cost for mo in snapshot.material_orders)
        labor_costs = sum_money(wo.total for wo in snapshot.work_orders)
        cost = sum_money([material_costs, labor_costs])
        profit = revenue - cost

        # Actual figures: cash in hand against orders actually paid
        collected = snapshot.collected
        costs_paid = sum_money(
            [mo.cost for mo in snapshot.material_orders if mo.is_paid]
            + [wo.total for wo in snapshot.work_orders if wo.is_paid]
        )
        actual_profit = collected - costs_paid

        breakdown = RevenueBreakdown(
            revenue_source=revenue_source,
            contract_total=contract_total,
            change_orders_total=change_orders_total,
            approved_change_order_ids=tuple(co.id for co in approved),
            invoiced_total=invoiced_total,
            collected=collected,
            outstanding_balance=max(ZERO, invoiced_total - collected),
            material_costs=material_costs,
            labor_costs=labor_costs,
            costs_paid=costs_paid,
            actual_profit=actual_profit,
            actual_margin=margin_percent(actual_profit, collected),
        )

        return FinancialSummary(
            lead_id=snapshot.lead_id,
            revenue=revenue,
            cost=cost,
            profit=profit,
            margin=margin_percent(profit, revenue),
            breakdown=breakdown,
        )
