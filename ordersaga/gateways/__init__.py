"""
External collaborator contracts and in-memory implementations.
"""

from ordersaga.gateways.base import InventoryGateway, PaymentGateway, ProductCatalog, UserDirectory
from ordersaga.gateways.memory import (
    InMemoryInventoryGateway,
    InMemoryPaymentGateway,
    InMemoryProductCatalog,
    InMemoryUserDirectory,
)

__all__ = [
    "InventoryGateway",
    "PaymentGateway",
    "ProductCatalog",
    "UserDirectory",
    "InMemoryInventoryGateway",
    "InMemoryPaymentGateway",
    "InMemoryProductCatalog",
    "InMemoryUserDirectory",
]
