"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .customer import CustomerFactory, HighValueCustomerFactory, InactiveCustomerFactory
from .order import OrderFactory, OrderItemFactory
from .segment import SegmentFactory

__all__ = [
    "CustomerFactory",
    "HighValueCustomerFactory",
    "InactiveCustomerFactory",
    "OrderFactory",
    "OrderItemFactory",
    "SegmentFactory",
]
