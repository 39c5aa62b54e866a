"""Segment test factory."""

import factory
from faker import Faker

fake = Faker()


class SegmentFactory(factory.Factory):
    class Meta:
        model = dict

    name = factory.LazyFunction(lambda: f"{fake.word().title()} Customers")
    rules = factory.LazyFunction(
        lambda: {"and": [{"field": "spend", "op": ">", "value": 1000}]}
    )
