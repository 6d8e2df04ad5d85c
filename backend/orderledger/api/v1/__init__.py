# API v1 Package
from orderledger.api.v1 import auth, clients, orders, invoices, payments, banking, fiscal_year, audit

__all__ = [
    'auth',
    'clients',
    'orders',
    'invoices',
    'payments',
    'banking',
    'fiscal_year',
    'audit',
]
