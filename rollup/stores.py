"""
Data Store Interfaces

The engine reads and writes through FinancialStore and never touches a
database itself. InMemoryStore backs the HTTP API and the tests; it hands out
copies on read and keeps copies on write, so nothing changes until a save.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from .errors import NotFoundError
from .models import (
    ChangeOrder,
    CommissionPlan,
    Contract,
    Invoice,
    InvoiceDraft,
    LeadCommission,
    LeadSnapshot,
    MaterialOrder,
    Payment,
    WorkOrder,
)
from .money import to_decimal
from .numbering import CHANGE_ORDER_PREFIX, INVOICE_PREFIX, latest_document_number, next_document_number


class FinancialStore(ABC):
    """Everything the engine needs from persistence."""

    # Contracts / change orders
    @abstractmethod
    def get_contract(self, lead_id: str) -> Contract | None: ...

    @abstractmethod
    def get_contract_by_id(self, contract_id: str) -> Contract: ...

    @abstractmethod
    def list_change_orders(self, quote_id: str) -> list[ChangeOrder]: ...

    @abstractmethod
    def get_change_order(self, change_order_id: str) -> ChangeOrder: ...

    @abstractmethod
    def save_change_order(self, change_order: ChangeOrder) -> None: ...

    @abstractmethod
    def update_status(self, change_order_id: str, status: str) -> None: ...

    @abstractmethod
    def next_change_order_number(self, year: int) -> str: ...

    # Invoices / payments
    @abstractmethod
    def list_invoices(self, contract_id: str) -> list[Invoice]: ...

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice: ...

    @abstractmethod
    def create_invoice(self, draft: InvoiceDraft, invoice_date: str | None = None) -> Invoice: ...

    @abstractmethod
    def save_invoice(self, invoice: Invoice) -> None: ...

    @abstractmethod
    def list_payments(self, invoice_id: str) -> list[Payment]: ...

    @abstractmethod
    def add_payment(self, payment: Payment) -> None: ...

    # Costs / lead state
    @abstractmethod
    def list_material_orders(self, lead_id: str) -> list[MaterialOrder]: ...

    @abstractmethod
    def list_work_orders(self, lead_id: str) -> list[WorkOrder]: ...

    @abstractmethod
    def is_job_completed(self, lead_id: str) -> bool: ...

    @abstractmethod
    def set_job_completed(self, lead_id: str) -> None: ...

    # Commission plans / ledger
    @abstractmethod
    def get_plan(self, plan_id: str) -> CommissionPlan: ...

    @abstractmethod
    def get_user_plan_assignment(self, lead_id: str, user_id: str) -> CommissionPlan | None: ...

    @abstractmethod
    def list_assigned_users(self, lead_id: str) -> list[str]: ...

    @abstractmethod
    def get_hours_worked(self, lead_id: str, user_id: str) -> Decimal | None: ...

    @abstractmethod
    def list_commissions(self, lead_id: str) -> list[LeadCommission]: ...

    @abstractmethod
    def get_commission(self, commission_id: str) -> LeadCommission: ...

    @abstractmethod
    def save_commissions(self, records: list[LeadCommission]) -> None:
        """Persist all records together or none of them."""


class InMemoryStore(FinancialStore):
    """Dict-backed store, one process, no durability."""

    def __init__(self):
        self.contracts: dict[str, Contract] = {}
        self.change_orders: dict[str, ChangeOrder] = {}
        self.invoices: dict[str, Invoice] = {}
        self.payments: list[Payment] = []
        self.material_orders: dict[str, list[MaterialOrder]] = {}
        self.work_orders: dict[str, list[WorkOrder]] = {}
        self.completed_leads: set[str] = set()
        self.plans: dict[str, CommissionPlan] = {}
        self.assignments: dict[str, dict[str, str]] = {}
        self.hours_worked: dict[tuple[str, str], Decimal] = {}
        self.commissions: dict[str, LeadCommission] = {}
        self.last_change_order_number: str | None = None
        self.last_invoice_number: str | None = None

    # --- loading -------------------------------------------------------------

    def add_lead(self, snapshot: LeadSnapshot) -> None:
        contract = snapshot.contract
        if contract is not None:
            self.contracts[contract.id] = copy.deepcopy(contract)
        for co in snapshot.change_orders:
            if co.quote_id is None and contract is not None:
                co.quote_id = contract.quote_id or contract.id
            self.save_change_order(co)
        for invoice in snapshot.invoices:
            self.save_invoice(invoice)
        self.payments.extend(snapshot.payments)
        self.material_orders[snapshot.lead_id] = copy.deepcopy(snapshot.material_orders)
        self.work_orders[snapshot.lead_id] = copy.deepcopy(snapshot.work_orders)
        if snapshot.job_completed:
            self.completed_leads.add(snapshot.lead_id)

    def add_plan(self, plan: CommissionPlan) -> None:
        self.plans[plan.id] = plan

    def assign(self, lead_id: str, user_id: str, plan_id: str, hours_worked=None) -> None:
        self.assignments.setdefault(lead_id, {})[user_id] = plan_id
        if hours_worked is not None:
            self.hours_worked[(lead_id, user_id)] = to_decimal(hours_worked)

    def unassign(self, lead_id: str, user_id: str) -> None:
        self.assignments.get(lead_id, {}).pop(user_id, None)

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryStore":
        """
        Build a store for one lead from an API payload: the lead snapshot
        fields plus 'plans', 'assignments' and existing 'commissions'.
        """
        store = cls()
        snapshot = LeadSnapshot.from_dict(data)
        store.add_lead(snapshot)
        for plan in data.get("plans", []):
            store.add_plan(CommissionPlan.from_dict(plan))
        for assignment in data.get("assignments", []):
            store.assign(
                snapshot.lead_id,
                str(assignment["user_id"]),
                str(assignment["plan_id"]),
                assignment.get("hours_worked"),
            )
        for record in data.get("commissions", []):
            commission = LeadCommission.from_dict(record)
            store.commissions[commission.id] = commission
        return store

    # --- contracts / change orders -------------------------------------------

    def get_contract(self, lead_id: str) -> Contract | None:
        for contract in self.contracts.values():
            if contract.lead_id == lead_id:
                return copy.deepcopy(contract)
        return None

    def get_contract_by_id(self, contract_id: str) -> Contract:
        if contract_id not in self.contracts:
            raise NotFoundError(f"Contract {contract_id} not found")
        return copy.deepcopy(self.contracts[contract_id])

    def list_change_orders(self, quote_id: str) -> list[ChangeOrder]:
        return [copy.deepcopy(co) for co in self.change_orders.values() if co.quote_id == quote_id]

    def get_change_order(self, change_order_id: str) -> ChangeOrder:
        if change_order_id not in self.change_orders:
            raise NotFoundError(f"Change order {change_order_id} not found")
        return copy.deepcopy(self.change_orders[change_order_id])

    def save_change_order(self, change_order: ChangeOrder) -> None:
        self.change_orders[change_order.id] = copy.deepcopy(change_order)
        if change_order.change_order_number:
            self.last_change_order_number = latest_document_number(
                CHANGE_ORDER_PREFIX, self.last_change_order_number, change_order.change_order_number
            )

    def update_status(self, change_order_id: str, status: str) -> None:
        self.get_change_order(change_order_id)
        self.change_orders[change_order_id].status = status

    def next_change_order_number(self, year: int) -> str:
        return next_document_number(CHANGE_ORDER_PREFIX, self.last_change_order_number, year)

    # --- invoices / payments -------------------------------------------------

    def list_invoices(self, contract_id: str) -> list[Invoice]:
        return [copy.deepcopy(inv) for inv in self.invoices.values() if inv.contract_id == contract_id]

    def get_invoice(self, invoice_id: str) -> Invoice:
        if invoice_id not in self.invoices:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return copy.deepcopy(self.invoices[invoice_id])

    def create_invoice(self, draft: InvoiceDraft, invoice_date: str | None = None) -> Invoice:
        year = int(invoice_date[:4]) if invoice_date else date.today().year
        number = next_document_number(INVOICE_PREFIX, self.last_invoice_number, year)
        invoice = Invoice(
            id=str(uuid.uuid4()),
            contract_id=draft.contract_id,
            lead_id=draft.lead_id,
            tax_rate=draft.tax_rate,
            invoice_number=number,
            status="sent",
            invoice_date=invoice_date,
            line_items=copy.deepcopy(draft.line_items),
        )
        self.invoices[invoice.id] = invoice
        self.last_invoice_number = number
        return copy.deepcopy(invoice)

    def save_invoice(self, invoice: Invoice) -> None:
        self.invoices[invoice.id] = copy.deepcopy(invoice)
        if invoice.invoice_number:
            self.last_invoice_number = latest_document_number(
                INVOICE_PREFIX, self.last_invoice_number, invoice.invoice_number
            )

    def list_payments(self, invoice_id: str) -> list[Payment]:
        return [p for p in self.payments if p.invoice_id == invoice_id]

    def add_payment(self, payment: Payment) -> None:
        self.payments.append(payment)

    # --- costs / lead state --------------------------------------------------

    def list_material_orders(self, lead_id: str) -> list[MaterialOrder]:
        return copy.deepcopy(self.material_orders.get(lead_id, []))

    def list_work_orders(self, lead_id: str) -> list[WorkOrder]:
        return copy.deepcopy(self.work_orders.get(lead_id, []))

    def is_job_completed(self, lead_id: str) -> bool:
        return lead_id in self.completed_leads

    def set_job_completed(self, lead_id: str) -> None:
        self.completed_leads.add(lead_id)

    # --- commission plans / ledger -------------------------------------------

    def get_plan(self, plan_id: str) -> CommissionPlan:
        if plan_id not in self.plans:
            raise NotFoundError(f"Commission plan {plan_id} not found")
        return self.plans[plan_id]

    def get_user_plan_assignment(self, lead_id: str, user_id: str) -> CommissionPlan | None:
        plan_id = self.assignments.get(lead_id, {}).get(user_id)
        return self.get_plan(plan_id) if plan_id is not None else None

    def list_assigned_users(self, lead_id: str) -> list[str]:
        return list(self.assignments.get(lead_id, {}))

    def get_hours_worked(self, lead_id: str, user_id: str) -> Decimal | None:
        return self.hours_worked.get((lead_id, user_id))

    def list_commissions(self, lead_id: str) -> list[LeadCommission]:
        return [copy.deepcopy(r) for r in self.commissions.values() if r.lead_id == lead_id]

    def get_commission(self, commission_id: str) -> LeadCommission:
        if commission_id not in self.commissions:
            raise NotFoundError(f"Commission {commission_id} not found")
        return copy.deepcopy(self.commissions[commission_id])

    def save_commissions(self, records: list[LeadCommission]) -> None:
        staged = {r.id: copy.deepcopy(r) for r in records}
        self.commissions.update(staged)