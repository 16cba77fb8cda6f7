"""
Order persistence: the repository contract and an in-memory backend.
"""

from ordersaga.storage.base import OrderRepository
from ordersaga.storage.memory import InMemoryOrderRepository

__all__ = ["OrderRepository", "InMemoryOrderRepository"]
