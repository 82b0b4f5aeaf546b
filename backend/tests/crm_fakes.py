"""In-memory stand-ins for the storage ports plus small seeding helpers."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Iterable

from crm_backend.models.crm_customer import CrmCustomer
from crm_backend.models.crm_user import CrmUser


def make_customer(customer_id: int, **fields: Any) -> SimpleNamespace:
    data = {
        "id": customer_id,
        "name": f"Customer {customer_id}",
        "email": f"c{customer_id}@example.com",
        "city": "Pune",
        "total_spent": 0.0,
        "order_count": 0,
    }
    data.update(fields)
    return SimpleNamespace(**data)


def make_campaign(campaign_id: int = 1, **fields: Any) -> SimpleNamespace:
    data = {
        "id": campaign_id,
        "name": "Spring sale",
        "segment_id": 10,
        "template": {"subject": "Hi {name}", "body": "Hello {name} from {city}"},
        "status": "draft",
        "stats": {"total_recipients": 0},
        "created_by": 1,
        "started_at": None,
        "completed_at": None,
    }
    data.update(fields)
    return SimpleNamespace(**data)


def make_segment(segment_id: int = 10, rules: dict | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        id=segment_id,
        rules=rules
        or {"combinator": "AND", "rules": [{"field": "total_spent", "operator": ">", "value": 100}]},
    )


class FakeCustomerStore:
    def __init__(self, customers: Iterable[Any] = ()):
        self.customers = list(customers)
        self.queries: list[Any] = []

    async def find(self, query):
        self.queries.append(query)
        return list(self.customers)

    async def count(self, query):
        self.queries.append(query)
        return len(self.customers)


class FakeSegmentStore:
    def __init__(self, *segments: Any):
        self.rows = {s.id: s for s in segments}

    async def get(self, segment_id):
        return self.rows.get(segment_id)


class FakeCampaignStore:
    def __init__(self, *campaigns: Any, fail_on: set[str] | None = None):
        self.rows = {c.id: c for c in campaigns}
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self.fail_on = fail_on or set()

    async def get(self, campaign_id):
        return self.rows.get(campaign_id)

    async def update(self, campaign_id, **values):
        status = values.get("status")
        if status in self.fail_on:
            raise RuntimeError(f"cannot write status {status}")
        self.updates.append((campaign_id, values))
        row = self.rows[campaign_id]
        for key, value in values.items():
            setattr(row, key, value)

    async def list_by_status(self, status):
        return [c for c in self.rows.values() if c.status == status]

    def statuses(self) -> list[str]:
        return [values["status"] for _, values in self.updates if "status" in values]


class FakeLogStore:
    """Records log rows and how many writes were outstanding at once."""

    def __init__(self, fail_for: Iterable[int] = ()):
        self.rows: list[SimpleNamespace] = []
        self.fail_for = set(fail_for)
        self.in_flight = 0
        self.max_in_flight = 0
        self.events: list[tuple[str, int]] = []

    async def create(self, **values):
        self.events.append(("start", values["customer_id"]))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if values["customer_id"] in self.fail_for:
                raise RuntimeError("log store unavailable")
            row = SimpleNamespace(id=len(self.rows) + 1, **values)
            self.rows.append(row)
            return row
        finally:
            self.in_flight -= 1
            self.events.append(("end", values["customer_id"]))


class CyclingRandom:
    """Deterministic ``random.Random`` replacement."""

    def __init__(self, values: Iterable[float]):
        self._values = itertools.cycle(list(values))

    def random(self) -> float:
        return next(self._values)


async def seed_user(session_factory, email: str = "owner@example.com") -> CrmUser:
    async with session_factory() as session:
        user = CrmUser(google_id=f"g-{email}", email=email, name=email.split("@")[0])
        session.add(user)
        await session.commit()
        return user


async def seed_customers(session_factory, rows: Iterable[dict[str, Any]]) -> list[CrmCustomer]:
    async with session_factory() as session:
        customers = []
        for index, row in enumerate(rows, start=1):
            data = {"name": f"Customer {index}", "email": f"seed{index}@example.com"}
            data.update(row)
            customers.append(CrmCustomer(**data))
        session.add_all(customers)
        await session.commit()
        return customers


def days_ago(days: int) -> datetime:
    return datetime.utcnow() - timedelta(days=days)
