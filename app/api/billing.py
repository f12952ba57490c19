from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_actor, get_db
from app.schemas.billing import (
    CustomerCreate,
    CustomerRead,
    InvoiceCancelRequest,
    InvoiceCreate,
    InvoiceLedgerRead,
    InvoiceRead,
    InvoiceUpdate,
    PaymentCreate,
    PaymentFailRequest,
    PaymentRead,
    RefundCreate,
    RefundFailRequest,
    RefundRead,
    ServiceProviderCreate,
    ServiceProviderRead,
)
from app.schemas.common import ListResponse
from app.services import billing as billing_service

router = APIRouter()


# --- Customers ---


@router.post(
    "/customers",
    response_model=CustomerRead,
    status_code=status.HTTP_201_CREATED,
    tags=["customers"],
)
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db)):
    return billing_service.customers.create(db, payload)


@router.get("/customers/{customer_id}", response_model=CustomerRead, tags=["customers"])
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    return billing_service.customers.get(db, customer_id)


@router.get("/customers", response_model=ListResponse[CustomerRead], tags=["customers"])
def list_customers(
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.customers.list_response(
        db, is_active, order_by, order_dir, limit, offset
    )


# --- Service providers ---


@router.post(
    "/service-providers",
    response_model=ServiceProviderRead,
    status_code=status.HTTP_201_CREATED,
    tags=["service-providers"],
)
def create_service_provider(payload: ServiceProviderCreate, db: Session = Depends(get_db)):
    return billing_service.service_providers.create(db, payload)


@router.get(
    "/service-providers/{provider_id}",
    response_model=ServiceProviderRead,
    tags=["service-providers"],
)
def get_service_provider(provider_id: str, db: Session = Depends(get_db)):
    return billing_service.service_providers.get(db, provider_id)


@router.get(
    "/service-providers",
    response_model=ListResponse[ServiceProviderRead],
    tags=["service-providers"],
)
def list_service_providers(
    status: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.service_providers.list_response(
        db, status, is_active, order_by, order_dir, limit, offset
    )


# --- Invoices ---


@router.post(
    "/invoices",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
    tags=["invoices"],
)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.invoices.create(db, payload, actor=actor)


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead, tags=["invoices"])
def get_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return billing_service.invoices.get(db, invoice_id)


@router.get("/invoices", response_model=ListResponse[InvoiceRead], tags=["invoices"])
def list_invoices(
    customer_id: str | None = None,
    service_provider_id: str | None = None,
    status: str | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.invoices.list_response(
        db,
        customer_id,
        service_provider_id,
        status,
        is_active,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.patch("/invoices/{invoice_id}", response_model=InvoiceRead, tags=["invoices"])
def update_invoice(
    invoice_id: str,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.invoices.update(db, invoice_id, payload, actor=actor)


@router.delete(
    "/invoices/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["invoices"],
)
def delete_invoice(invoice_id: str, db: Session = Depends(get_db)):
    billing_service.invoices.delete(db, invoice_id)


@router.get(
    "/invoices/{invoice_id}/ledger",
    response_model=InvoiceLedgerRead,
    tags=["invoices"],
)
def get_invoice_ledger(invoice_id: str, db: Session = Depends(get_db)):
    return billing_service.invoices.ledger(db, invoice_id)


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=InvoiceRead,
    tags=["invoices"],
)
def cancel_invoice(
    invoice_id: str,
    payload: InvoiceCancelRequest | None = None,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    reason = payload.reason if payload else None
    return billing_service.invoices.cancel(db, invoice_id, reason, actor=actor)


# --- Payments ---


@router.post(
    "/payments",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
    tags=["payments"],
)
def create_payment(
    payload: PaymentCreate,
    process: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.payments.create(db, payload, actor=actor, process=process)


@router.get("/payments/{payment_id}", response_model=PaymentRead, tags=["payments"])
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    return billing_service.payments.get(db, payment_id)


@router.get("/payments", response_model=ListResponse[PaymentRead], tags=["payments"])
def list_payments(
    invoice_id: str | None = None,
    customer_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.payments.list_response(
        db, invoice_id, customer_id, status, order_by, order_dir, limit, offset
    )


@router.post(
    "/payments/{payment_id}/complete",
    response_model=PaymentRead,
    tags=["payments"],
)
def complete_payment(
    payment_id: str,
    gateway_transaction_id: str | None = Query(default=None, max_length=120),
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.payments.complete(
        db, payment_id, gateway_transaction_id, actor=actor
    )


@router.post("/payments/{payment_id}/fail", response_model=PaymentRead, tags=["payments"])
def fail_payment(
    payment_id: str,
    payload: PaymentFailRequest | None = None,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    reason = payload.reason if payload else None
    return billing_service.payments.fail(db, payment_id, reason, actor=actor)


@router.delete(
    "/payments/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["payments"],
)
def delete_payment(payment_id: str, db: Session = Depends(get_db)):
    billing_service.payments.delete(db, payment_id)


# --- Refunds ---


@router.post(
    "/refunds",
    response_model=RefundRead,
    status_code=status.HTTP_201_CREATED,
    tags=["refunds"],
)
def create_refund(
    payload: RefundCreate,
    process: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.refunds.create(db, payload, actor=actor, process=process)


@router.get("/refunds/{refund_id}", response_model=RefundRead, tags=["refunds"])
def get_refund(refund_id: str, db: Session = Depends(get_db)):
    return billing_service.refunds.get(db, refund_id)


@router.get("/refunds", response_model=ListResponse[RefundRead], tags=["refunds"])
def list_refunds(
    payment_id: str | None = None,
    invoice_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.refunds.list_response(
        db, payment_id, invoice_id, status, order_by, order_dir, limit, offset
    )


@router.post(
    "/refunds/{refund_id}/complete",
    response_model=RefundRead,
    tags=["refunds"],
)
def complete_refund(
    refund_id: str,
    gateway_refund_id: str | None = Query(default=None, max_length=120),
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return billing_service.refunds.complete(db, refund_id, gateway_refund_id, actor=actor)


@router.post("/refunds/{refund_id}/fail", response_model=RefundRead, tags=["refunds"])
def fail_refund(
    refund_id: str,
    payload: RefundFailRequest | None = None,
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    return billing_service.refunds.fail(db, refund_id, reason)


@router.post("/refunds/{refund_id}/cancel", response_model=RefundRead, tags=["refunds"])
def cancel_refund(refund_id: str, db: Session = Depends(get_db)):
    return billing_service.refunds.cancel(db, refund_id)
