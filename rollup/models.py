"""
Domain Models for the Rollup Engine

These dataclasses provide type-safe representations of all business entities.
All monetary values use Decimal for precision. Commission plan rates are
percentages (10 = 10%); tax rates are fractions (0.08 = 8%).
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import ClassVar

from .errors import InvalidPlanConfiguration
from .money import ZERO, apply_rate_cents, from_cents, quantize_money, sum_money, to_cents, to_decimal

CALCULATE_ON = ("revenue", "profit", "collected")
PAID_WHEN = ("signed", "deposit", "completed", "collected")

CHANGE_ORDER_STATUSES = ("draft", "pending_company_signature", "approved", "declined")
INVOICE_STATUSES = ("draft", "sent", "partial", "paid", "overdue", "cancelled", "void")
COMMISSION_STATUSES = ("pending", "eligible", "approved", "paid", "cancelled")
SOURCE_TYPES = ("contract", "change_order", "additional")
SIGNER_ROLES = ("customer", "company")

# Invoices in these states are not part of billed revenue
INACTIVE_INVOICE_STATUSES = ("cancelled", "void")
SIGNED_CONTRACT_STATUSES = ("accepted", "signed")


def _line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return from_cents(apply_rate_cents(to_cents(unit_price), quantity))


def _optional_decimal(value) -> Decimal | None:
    return to_decimal(value) if value is not None else None


# =============================================================================
# COMMISSION PLANS
# =============================================================================


@dataclass(frozen=True)
class CommissionTier:
    """A [min, max) band of a tiered plan. max=None means open-ended."""

    min: Decimal
    max: Decimal | None
    rate: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> "CommissionTier":
        return cls(
            min=to_decimal(data.get("min", 0)),
            max=_optional_decimal(data.get("max")),
            rate=to_decimal(data["rate"]),
        )


@dataclass(frozen=True, kw_only=True)
class CommissionPlan:
    """
    Base of the commission plan union. Each variant carries only the fields
    its formula needs; commission_type is the tag.

    Plans are frozen: deactivate() and revise() return new objects, so a plan
    snapshotted into a LeadCommission can never change underneath it.
    """

    commission_type: ClassVar[str] = ""

    id: str
    name: str = ""
    calculate_on: str = "revenue"
    paid_when: str = "collected"
    is_active: bool = True
    version: int = 1

    def deactivate(self) -> "CommissionPlan":
        return replace(self, is_active=False)

    def revise(self, **changes) -> "CommissionPlan":
        """Create the next version of this plan with the given field changes."""
        return replace(self, version=self.version + 1, **changes)

    @classmethod
    def from_dict(cls, data: dict) -> "CommissionPlan":
        commission_type = data.get("commission_type")
        plan_cls = PLAN_TYPES.get(commission_type)
        if plan_cls is None:
            raise InvalidPlanConfiguration(
                f"Invalid commission_type: {commission_type}. Must be one of {sorted(PLAN_TYPES)}"
            )
        if "id" not in data:
            raise InvalidPlanConfiguration("Commission plan id is required")
        common = {
            "id": str(data["id"]),
            "name": data.get("name", ""),
            "calculate_on": data.get("calculate_on", "revenue"),
            "paid_when": data.get("paid_when", "collected"),
            "is_active": data.get("is_active", True),
            "version": int(data.get("version", 1)),
        }
        return plan_cls.from_fields(common, data)

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "CommissionPlan":
        """
        Build the plan from the fields every type shares plus its own.
        Each plan type overrides this; from_dict dispatches on commission_type.
        """
        raise NotImplementedError(f"{cls.__name__} does not define from_fields")


def _require(data: dict, *keys: str, plan_type: str):
    """Return the first present key's value or fail for this plan type."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    raise InvalidPlanConfiguration(f"{keys[0]} is required when commission_type='{plan_type}'")


@dataclass(frozen=True, kw_only=True)
class PercentagePlan(CommissionPlan):
    commission_type: ClassVar[str] = "percentage"

    rate: Decimal

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "PercentagePlan":
        # 'commission_rate' is the column name older plan rows use
        rate = _require(data, "rate", "commission_rate", plan_type=cls.commission_type)
        return cls(rate=to_decimal(rate), **common)


@dataclass(frozen=True, kw_only=True)
class FlatPerJobPlan(CommissionPlan):
    commission_type: ClassVar[str] = "flat_per_job"

    flat_amount: Decimal

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "FlatPerJobPlan":
        amount = _require(data, "flat_amount", plan_type=cls.commission_type)
        return cls(flat_amount=quantize_money(amount), **common)


@dataclass(frozen=True, kw_only=True)
class TieredPlan(CommissionPlan):
    commission_type: ClassVar[str] = "tiered"

    tiers: tuple[CommissionTier, ...] = ()

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "TieredPlan":
        raw = _require(data, "tiers", "tier_structure", plan_type=cls.commission_type)
        return cls(tiers=tuple(CommissionTier.from_dict(t) for t in raw), **common)


@dataclass(frozen=True, kw_only=True)
class HourlyPlusPlan(CommissionPlan):
    commission_type: ClassVar[str] = "hourly_plus"

    hourly_rate: Decimal
    rate: Decimal

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "HourlyPlusPlan":
        hourly = _require(data, "hourly_rate", plan_type=cls.commission_type)
        rate = _require(data, "rate", "commission_rate", plan_type=cls.commission_type)
        return cls(hourly_rate=to_decimal(hourly), rate=to_decimal(rate), **common)


@dataclass(frozen=True, kw_only=True)
class SalaryPlusPlan(CommissionPlan):
    commission_type: ClassVar[str] = "salary_plus"

    salary_amount: Decimal
    rate: Decimal

    @classmethod
    def from_fields(cls, common: dict, data: dict) -> "SalaryPlusPlan":
        salary = _require(data, "salary_amount", plan_type=cls.commission_type)
        rate = _require(data, "rate", "commission_rate", plan_type=cls.commission_type)
        return cls(salary_amount=quantize_money(salary), rate=to_decimal(rate), **common)


PLAN_TYPES: dict[str, type[CommissionPlan]] = {
    plan_cls.commission_type: plan_cls
    for plan_cls in (PercentagePlan, FlatPerJobPlan, TieredPlan, HourlyPlusPlan, SalaryPlusPlan)
}


# =============================================================================
# REVENUE SOURCES
# =============================================================================


@dataclass
class LineItem:
    """A billable line on a contract, change order or ad-hoc invoice addition."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    category: str | None = None

    @property
    def line_total(self) -> Decimal:
        return _line_total(self.quantity, self.unit_price)

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            description=data.get("description", ""),
            quantity=to_decimal(data.get("quantity", 1)),
            unit_price=to_decimal(data["unit_price"]),
            category=data.get("category"),
        )


@dataclass
class Contract:
    """The accepted quote for a lead. Its total never changes once signed."""

    id: str
    lead_id: str
    original_total: Decimal
    tax_rate: Decimal = ZERO
    quote_id: str | None = None
    status: str = "accepted"
    signed_at: str | None = None
    line_items: list[LineItem] = field(default_factory=list)

    @property
    def is_signed(self) -> bool:
        return self.status in SIGNED_CONTRACT_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "Contract":
        items = [LineItem.from_dict(i) for i in data.get("line_items", [])]
        tax_rate = to_decimal(data.get("tax_rate", 0))
        total = data.get("original_total")
        if total is None:
            subtotal = sum_money(i.line_total for i in items)
            total = subtotal + from_cents(apply_rate_cents(to_cents(subtotal), tax_rate))
        return cls(
            id=str(data["id"]),
            lead_id=str(data["lead_id"]),
            original_total=quantize_money(total),
            tax_rate=tax_rate,
            # The contract is the accepted quote; without a separate quote id it keys its own change orders
            quote_id=str(data.get("quote_id") or data["id"]),
            status=data.get("status", "accepted"),
            signed_at=data.get("signed_at"),
            line_items=items,
        )


@dataclass(frozen=True)
class SignatureRecord:
    """A captured customer or company signature on a change order."""

    signer_role: str
    signer_name: str
    signed_at: str
    signer_title: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SignatureRecord":
        return cls(
            signer_role=data["signer_role"],
            signer_name=data["signer_name"],
            signed_at=data["signed_at"],
            signer_title=data.get("signer_title"),
        )


@dataclass
class ChangeOrder:
    """An amendment to a contract. Only counts once approved."""

    id: str
    lead_id: str
    amount: Decimal
    tax_rate: Decimal = ZERO
    quote_id: str | None = None
    change_order_number: str = ""
    title: str = ""
    status: str = "draft"
    line_items: list[LineItem] = field(default_factory=list)
    customer_signature: SignatureRecord | None = None
    company_signature: SignatureRecord | None = None
    sent_at: str | None = None
    approved_at: str | None = None
    declined_at: str | None = None
    declined_reason: str | None = None

    @property
    def tax_amount(self) -> Decimal:
        return from_cents(apply_rate_cents(to_cents(self.amount), self.tax_rate))

    @property
    def total(self) -> Decimal:
        return self.amount + self.tax_amount

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"

    @property
    def has_signature(self) -> bool:
        return self.customer_signature is not None or self.company_signature is not None

    def signature_for(self, role: str) -> SignatureRecord | None:
        return self.customer_signature if role == "customer" else self.company_signature

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeOrder":
        items = [LineItem.from_dict(i) for i in data.get("line_items", [])]
        amount = data.get("amount")
        if amount is None:
            amount = sum_money(i.line_total for i in items)
        customer = data.get("customer_signature")
        company = data.get("company_signature")
        return cls(
            id=str(data["id"]),
            lead_id=str(data["lead_id"]),
            amount=quantize_money(amount),
            tax_rate=to_decimal(data.get("tax_rate", 0)),
            quote_id=data.get("quote_id"),
            change_order_number=data.get("change_order_number", ""),
            title=data.get("title", ""),
            status=data.get("status", "draft"),
            line_items=items,
            customer_signature=SignatureRecord.from_dict(customer) if customer else None,
            company_signature=SignatureRecord.from_dict(company) if company else None,
            sent_at=data.get("sent_at"),
            approved_at=data.get("approved_at"),
            declined_at=data.get("declined_at"),
            declined_reason=data.get("declined_reason"),
        )


@dataclass(frozen=True)
class ChangeOrderApproved:
    """Event emitted when a change order becomes approved."""

    lead_id: str
    change_order_id: str
    amount: Decimal
    total: Decimal


@dataclass
class InvoiceLineItem:
    """An invoice line that remembers which document it was billed from."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    source_type: str
    source_id: str | None = None
    category: str | None = None

    @property
    def line_total(self) -> Decimal:
        return _line_total(self.quantity, self.unit_price)

    @classmethod
    def from_dict(cls, data: dict) -> "InvoiceLineItem":
        return cls(
            description=data.get("description", ""),
            quantity=to_decimal(data.get("quantity", 1)),
            unit_price=to_decimal(data["unit_price"]),
            source_type=data.get("source_type", "additional"),
            source_id=data.get("source_id"),
            category=data.get("category"),
        )


class InvoiceTotalsMixin:
    """subtotal/tax/total derived from line_items and tax_rate."""

    line_items: list[InvoiceLineItem]
    tax_rate: Decimal

    @property
    def subtotal(self) -> Decimal:
        return from_cents(sum(to_cents(i.line_total) for i in self.line_items))

    @property
    def tax_amount(self) -> Decimal:
        return from_cents(apply_rate_cents(to_cents(self.subtotal), self.tax_rate))

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_amount

    @property
    def change_order_ids(self) -> set[str]:
        return {i.source_id for i in self.line_items if i.source_type == "change_order"}


@dataclass
class InvoiceDraft(InvoiceTotalsMixin):
    """Composed but not yet issued invoice."""

    contract_id: str
    lead_id: str
    tax_rate: Decimal
    line_items: list[InvoiceLineItem] = field(default_factory=list)


@dataclass
class Invoice(InvoiceTotalsMixin):
    """An issued customer invoice."""

    id: str
    contract_id: str
    lead_id: str
    tax_rate: Decimal = ZERO
    invoice_number: str = ""
    status: str = "draft"
    invoice_date: str | None = None
    line_items: list[InvoiceLineItem] = field(default_factory=list)

    @property
    def counts_toward_revenue(self) -> bool:
        return self.status not in INACTIVE_INVOICE_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        return cls(
            id=str(data["id"]),
            contract_id=str(data["contract_id"]),
            lead_id=str(data["lead_id"]),
            tax_rate=to_decimal(data.get("tax_rate", 0)),
            invoice_number=data.get("invoice_number", ""),
            status=data.get("status", "draft"),
            invoice_date=data.get("invoice_date"),
            line_items=[InvoiceLineItem.from_dict(i) for i in data.get("line_items", [])],
        )


@dataclass(frozen=True)
class Payment:
    """A payment received against an invoice. Payments are never edited."""

    id: str
    invoice_id: str
    amount: Decimal
    payment_date: str
    method: str = "other"

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        return cls(
            id=str(data["id"]),
            invoice_id=str(data["invoice_id"]),
            amount=quantize_money(data["amount"]),
            payment_date=data["payment_date"],
            method=data.get("method", "other"),
        )


# =============================================================================
# COST SOURCES
# =============================================================================


@dataclass
class MaterialOrder:
    id: str
    total_estimated: Decimal
    total_actual: Decimal | None = None
    is_paid: bool = False

    @property
    def cost(self) -> Decimal:
        # Supplier invoice not in yet: keep the estimate rather than counting 0
        return self.total_actual if self.total_actual is not None else self.total_estimated

    @classmethod
    def from_dict(cls, data: dict) -> "MaterialOrder":
        actual = data.get("total_actual")
        return cls(
            id=str(data["id"]),
            total_estimated=quantize_money(data.get("total_estimated", 0)),
            total_actual=quantize_money(actual) if actual is not None else None,
            is_paid=data.get("is_paid", False),
        )


@dataclass
class WorkOrder:
    id: str
    total: Decimal
    is_paid: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "WorkOrder":
        return cls(
            id=str(data["id"]),
            total=quantize_money(data.get("total", 0)),
            is_paid=data.get("is_paid", False),
        )


# =============================================================================
# COMMISSIONS
# =============================================================================


@dataclass
class LeadCommission:
    """
    Commission owed to one user on one lead under one plan.

    plan_snapshot is the plan as it was when the record was created; later
    plan edits produce new plan versions and never reach this record.
    balance_owed is stored so that a write path that skipped the ledger can
    be detected on read.
    """

    id: str
    lead_id: str
    user_id: str
    plan_snapshot: CommissionPlan
    base_amount: Decimal = ZERO
    calculated_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    balance_owed: Decimal = ZERO
    status: str = "pending"
    triggered_by_payment_id: str | None = None
    paid_at: str | None = None
    payment_notes: str | None = None
    notes: str | None = None

    @property
    def commission_plan_id(self) -> str:
        return self.plan_snapshot.id

    @property
    def commission_type(self) -> str:
        return self.plan_snapshot.commission_type

    @property
    def commission_rate(self) -> Decimal | None:
        return getattr(self.plan_snapshot, "rate", None)

    @property
    def flat_amount(self) -> Decimal | None:
        return getattr(self.plan_snapshot, "flat_amount", None)

    @property
    def has_clawback(self) -> bool:
        return self.balance_owed < 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.lead_id, self.user_id, self.commission_plan_id)

    @classmethod
    def from_dict(cls, data: dict) -> "LeadCommission":
        calculated = quantize_money(data.get("calculated_amount", 0))
        paid = quantize_money(data.get("paid_amount", 0))
        balance = data.get("balance_owed")
        return cls(
            id=str(data["id"]),
            lead_id=str(data["lead_id"]),
            user_id=str(data["user_id"]),
            plan_snapshot=CommissionPlan.from_dict(data["plan"]),
            base_amount=quantize_money(data.get("base_amount", 0)),
            calculated_amount=calculated,
            paid_amount=paid,
            balance_owed=quantize_money(balance) if balance is not None else calculated - paid,
            status=data.get("status", "pending"),
            triggered_by_payment_id=data.get("triggered_by_payment_id"),
            paid_at=data.get("paid_at"),
            payment_notes=data.get("payment_notes"),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class LeadMilestones:
    """Observed lead events that open a plan's paid_when gate."""

    contract_signed: bool = False
    job_completed: bool = False
    deposit_payment_id: str | None = None
    final_payment_id: str | None = None

    def is_met(self, paid_when: str) -> bool:
        if paid_when == "signed":
            return self.contract_signed
        if paid_when == "deposit":
            return self.deposit_payment_id is not None
        if paid_when == "completed":
            return self.job_completed
        if paid_when == "collected":
            return self.final_payment_id is not None
        return False

    def triggering_payment_id(self, paid_when: str) -> str | None:
        if paid_when == "deposit":
            return self.deposit_payment_id
        if paid_when == "collected":
            return self.final_payment_id
        return None


# =============================================================================
# LEAD SNAPSHOT / RESULTS
# =============================================================================


@dataclass
class LeadSnapshot:
    """Everything the aggregator needs to know about one lead, loaded by the caller."""

    lead_id: str
    contract: Contract | None = None
    change_orders: list[ChangeOrder] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    material_orders: list[MaterialOrder] = field(default_factory=list)
    work_orders: list[WorkOrder] = field(default_factory=list)
    job_completed: bool = False

    @property
    def approved_change_orders(self) -> list[ChangeOrder]:
        return [co for co in self.change_orders if co.is_approved]

    @property
    def active_invoices(self) -> list[Invoice]:
        return [inv for inv in self.invoices if inv.counts_toward_revenue]

    @property
    def live_payments(self) -> list[Payment]:
        """Payments on invoices that still count toward revenue."""
        live_ids = {inv.id for inv in self.active_invoices}
        return [p for p in self.payments if p.invoice_id in live_ids]

    @property
    def collected(self) -> Decimal:
        return sum_money(p.amount for p in self.live_payments)

    def milestones(self) -> LeadMilestones:
        ordered = sorted(self.live_payments, key=lambda p: (p.payment_date, p.id))
        invoiced = sum_money(inv.total for inv in self.active_invoices)
        fully_collected = bool(ordered) and invoiced > 0 and self.collected >= invoiced
        return LeadMilestones(
            contract_signed=self.contract is not None and self.contract.is_signed,
            job_completed=self.job_completed,
            deposit_payment_id=ordered[0].id if ordered else None,
            final_payment_id=ordered[-1].id if fully_collected else None,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "LeadSnapshot":
        contract = data.get("contract")
        return cls(
            lead_id=str(data["lead_id"]),
            contract=Contract.from_dict(contract) if contract else None,
            change_orders=[ChangeOrder.from_dict(c) for c in data.get("change_orders", [])],
            invoices=[Invoice.from_dict(i) for i in data.get("invoices", [])],
            payments=[Payment.from_dict(p) for p in data.get("payments", [])],
            material_orders=[MaterialOrder.from_dict(m) for m in data.get("material_orders", [])],
            work_orders=[WorkOrder.from_dict(w) for w in data.get("work_orders", [])],
            job_completed=data.get("job_completed", False),
        )


@dataclass(frozen=True)
class RevenueBreakdown:
    revenue_source: str
    contract_total: Decimal
    change_orders_total: Decimal
    approved_change_order_ids: tuple[str, ...]
    invoiced_total: Decimal
    collected: Decimal
    outstanding_balance: Decimal
    material_costs: Decimal
    labor_costs: Decimal
    costs_paid: Decimal
    actual_profit: Decimal
    actual_margin: Decimal


@dataclass(frozen=True)
class FinancialSummary:
    """Revenue, cost, profit and margin for one lead at one point in time."""

    lead_id: str
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    margin: Decimal
    breakdown: RevenueBreakdown


@dataclass(frozen=True)
class CommissionSummary:
    """Commission totals for a set of ledger records. Cancelled rows only count in total_cancelled."""

    total_owed: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_balance: Decimal = ZERO
    total_pending: Decimal = ZERO
    total_eligible: Decimal = ZERO
    total_approved: Decimal = ZERO
    total_cancelled: Decimal = ZERO
    total_clawback: Decimal = ZERO
    counts: dict = field(default_factory=dict)
