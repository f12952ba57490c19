"""Customer and service provider management services."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.service_provider import ServiceProvider, ServiceProviderStatus
from app.schemas.billing import CustomerCreate, ServiceProviderCreate
from app.services.common import (
    apply_is_active_filter,
    apply_ordering,
    apply_pagination,
    get_or_404,
    validate_enum,
)
from app.services.exceptions import ValidationError
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def _normalize_email(value: str | None) -> str | None:
    if not value:
        return None
    return value.strip().lower()


class Customers(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: CustomerCreate):
        data = payload.model_dump()
        data["email"] = _normalize_email(data["email"])
        existing = db.query(Customer).filter(Customer.email == data["email"]).first()
        if existing:
            raise ValidationError("A customer with this email already exists")
        customer = Customer(**data)
        db.add(customer)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ValidationError("A customer with this email already exists") from exc
        db.refresh(customer)
        logger.info("Customer %s created", customer.id)
        return customer

    @staticmethod
    def get(db: Session, customer_id: str):
        return get_or_404(db, Customer, customer_id, "Customer not found")

    @staticmethod
    def list(
        db: Session,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = apply_is_active_filter(db.query(Customer), Customer, is_active)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Customer.created_at, "name": Customer.name},
        )
        return apply_pagination(query, limit, offset).all()


class ServiceProviders(ListResponseMixin):
    @staticmethod
    def create(db: Session, payload: ServiceProviderCreate):
        data = payload.model_dump()
        data["email"] = _normalize_email(data.get("email"))
        provider = ServiceProvider(**data)
        db.add(provider)
        db.commit()
        db.refresh(provider)
        logger.info("Service provider %s created", provider.id)
        return provider

    @staticmethod
    def get(db: Session, provider_id: str):
        return get_or_404(db, ServiceProvider, provider_id, "Service provider not found")

    @staticmethod
    def list(
        db: Session,
        status: str | None,
        is_active: bool | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = apply_is_active_filter(db.query(ServiceProvider), ServiceProvider, is_active)
        if status:
            query = query.filter(
                ServiceProvider.status
                == validate_enum(status, ServiceProviderStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": ServiceProvider.created_at,
                "company_name": ServiceProvider.company_name,
            },
        )
        return apply_pagination(query, limit, offset).all()
