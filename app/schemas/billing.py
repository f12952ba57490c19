from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator

from app.models.billing import (
    InvoiceStatus,
    PaymentStatus,
    PaymentType,
    RefundStatus,
    RefundType,
)
from app.models.service_provider import ServiceProviderStatus


def _money_field(**kwargs):
    return Field(max_digits=12, decimal_places=2, **kwargs)


# Money is rendered as a two-decimal string on the wire.
Money = Annotated[
    Decimal, PlainSerializer(lambda value: f"{value:.2f}", return_type=str, when_used="json")
]


# --- Customers ---


class CustomerBase(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    email: str = Field(min_length=3, max_length=255)
    phone: str | None = Field(default=None, max_length=40)
    is_active: bool = True


class CustomerCreate(CustomerBase):
    pass


class CustomerRead(CustomerBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    updated_at: datetime


# --- Service providers ---


class ServiceProviderBase(BaseModel):
    company_name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=255)
    website: str | None = Field(default=None, max_length=255)
    description: str | None = None
    status: ServiceProviderStatus = ServiceProviderStatus.active


class ServiceProviderCreate(ServiceProviderBase):
    pass


class ServiceProviderRead(ServiceProviderBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime


# --- Invoices ---


class InvoiceCreate(BaseModel):
    customer_id: UUID
    service_provider_id: UUID
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    amount: Decimal = _money_field(ge=0)
    tax_amount: Decimal = _money_field(default=Decimal("0.00"), ge=0)
    issue_date: date | None = None
    due_date: date

    @model_validator(mode="after")
    def _validate_dates(self) -> "InvoiceCreate":
        if self.issue_date and self.due_date < self.issue_date:
            raise ValueError("due_date cannot be before issue_date")
        return self


class InvoiceUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    amount: Decimal | None = _money_field(default=None, ge=0)
    tax_amount: Decimal | None = _money_field(default=None, ge=0)
    issue_date: date | None = None
    due_date: date | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    customer_id: UUID
    service_provider_id: UUID
    title: str
    description: str | None = None
    amount: Money
    tax_amount: Money
    total_amount: Money
    status: InvoiceStatus
    issue_date: date
    due_date: date
    paid_date: datetime | None = None
    metadata: dict | None = Field(default=None, validation_alias="metadata_")
    is_active: bool
    created_at: datetime
    updated_at: datetime


class InvoiceCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class InvoiceLedgerRead(BaseModel):
    invoice_id: UUID
    total_amount: Money
    total_paid: Money
    total_refunded: Money
    net_paid: Money
    remaining: Money
    is_settled: bool


# --- Payments ---


class PaymentCreate(BaseModel):
    invoice_id: UUID
    payment_type: PaymentType = PaymentType.full
    amount: Decimal | None = _money_field(default=None, gt=0)
    payment_method_reference: str | None = Field(default=None, max_length=120)
    gateway: str = Field(default="manual", max_length=60)
    notes: str | None = None

    @model_validator(mode="after")
    def _validate_amount(self) -> "PaymentCreate":
        if self.payment_type == PaymentType.partial and self.amount is None:
            raise ValueError("amount is required for partial payments")
        return self


class PaymentFailRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_reference: str
    invoice_id: UUID
    customer_id: UUID
    payment_method_reference: str | None = None
    amount: Money
    status: PaymentStatus
    payment_type: PaymentType
    gateway: str
    gateway_transaction_id: str | None = None
    processed_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


# --- Refunds ---


class RefundCreate(BaseModel):
    payment_id: UUID
    refund_type: RefundType = RefundType.full
    amount: Decimal | None = _money_field(default=None, gt=0)
    reason: str = Field(min_length=1, max_length=255)
    notes: str | None = None

    @model_validator(mode="after")
    def _validate_amount(self) -> "RefundCreate":
        if self.refund_type == RefundType.partial and self.amount is None:
            raise ValueError("amount is required for partial refunds")
        return self


class RefundFailRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    refund_reference: str
    payment_id: UUID
    invoice_id: UUID
    customer_id: UUID
    processed_by: str | None = None
    amount: Money
    status: RefundStatus
    refund_type: RefundType
    reason: str | None = None
    notes: str | None = None
    gateway: str | None = None
    gateway_refund_id: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
