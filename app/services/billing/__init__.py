"""Billing services package.

This package provides customers, service providers, invoices, payments and
refunds, plus the reconciliation engine that keeps invoice status in step
with completed payments and refunds.

Usage:
    from app.services import billing as billing_service
    billing_service.invoices.create(db, payload)
"""

from app.services.billing.accounts import Customers, ServiceProviders
from app.services.billing.invoices import Invoices
from app.services.billing.payments import Payments
from app.services.billing.refunds import Refunds

# Singleton instances for service access
customers = Customers()
service_providers = ServiceProviders()
invoices = Invoices()
payments = Payments()
refunds = Refunds()

__all__ = [
    "Customers",
    "ServiceProviders",
    "Invoices",
    "Payments",
    "Refunds",
    "customers",
    "service_providers",
    "invoices",
    "payments",
    "refunds",
]
