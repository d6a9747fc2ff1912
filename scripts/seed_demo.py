from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from fieldops.domain.models import (
    Contract,
    Customer,
    InventoryItem,
    Invoice,
    Role,
    Technician,
    User,
    WorkOrder,
)
from fieldops.persistence.db import SessionLocal, create_schema
from fieldops.services.rls.roles import ROLE_ORDER


@dataclass(frozen=True)
class DemoCustomer:
    # Each demo customer gets a login, a work order, an invoice and a contract.
    email: str
    company_name: str
    contract_value: Decimal
    invoice_amount: Decimal


DEMO_CUSTOMERS: tuple[DemoCustomer, ...] = (
    DemoCustomer("ops@acme.example", "Acme Plumbing", Decimal("12000.00"), Decimal("480.00")),
    DemoCustomer("facilities@globex.example", "Globex Facilities", Decimal("54000.00"), Decimal("1325.50")),
)

DEMO_STAFF: tuple[tuple[str, str], ...] = (
    ("admin@fieldops.example", "admin"),
    ("manager@fieldops.example", "manager"),
    ("dispatch@fieldops.example", "dispatcher"),
)

DEMO_INVENTORY: tuple[tuple[str, str, int], ...] = (
    ("Pressure relief valve", "PRV-075", 24),
    ("Programmable thermostat", "THERM-200", 8),
    ("Copper fitting 1/2in", "CU-050", 310),
)


def _tax(amount: Decimal) -> Decimal:
    return (amount * Decimal("0.08")).quantize(Decimal("0.01"))


async def seed_demo() -> int:
    # Use the shared async session factory so env config matches the API process.
    await create_schema()
    async with SessionLocal() as session:
        existing = await session.execute(select(Customer.id).limit(1))
        if existing.scalar_one_or_none() is not None:
            print("Demo data already seeded; skipping.")
            return 0

        session.add_all(
            Role(name=name, priority=rank, description=f"{name.capitalize()} role")
            for name, rank in ROLE_ORDER.items()
        )
        for email, role in DEMO_STAFF:
            session.add(User(email=email, role=role))

        technician = Technician(license_number="TX-PL-4471", hourly_rate=Decimal("92.50"), certifications="HVAC")
        session.add(technician)
        await session.flush()
        session.add(User(email="tech@fieldops.example", role="technician", technician_profile_id=technician.id))

        start = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0) + timedelta(days=1)
        for index, demo in enumerate(DEMO_CUSTOMERS):
            customer = Customer(email=demo.email, company_name=demo.company_name)
            session.add(customer)
            await session.flush()
            session.add(User(email=demo.email, role="customer", customer_profile_id=customer.id))
            work_order = WorkOrder(
                title=f"Annual inspection for {demo.company_name}",
                customer_id=customer.id,
                # Only the first customer's job is dispatched so RLS differences are visible.
                assigned_technician_id=technician.id if index == 0 else None,
                scheduled_start=start + timedelta(days=index),
            )
            session.add(work_order)
            await session.flush()
            tax = _tax(demo.invoice_amount)
            session.add(
                Invoice(
                    invoice_number=f"INV-{1000 + customer.id}",
                    customer_id=customer.id,
                    work_order_id=work_order.id,
                    amount=demo.invoice_amount,
                    tax=tax,
                    total=demo.invoice_amount + tax,
                    status="sent",
                    due_date=date.today() + timedelta(days=30),
                )
            )
            session.add(
                Contract(
                    contract_number=f"CT-{2000 + customer.id}",
                    customer_id=customer.id,
                    start_date=date.today(),
                    end_date=date.today() + timedelta(days=365),
                    value=demo.contract_value,
                    billing_cycle="monthly",
                    status="active",
                )
            )

        session.add_all(
            InventoryItem(name=name, sku=sku, quantity=quantity, reorder_level=5)
            for name, sku, quantity in DEMO_INVENTORY
        )
        await session.commit()
        print(f"Seeded {len(DEMO_CUSTOMERS)} customers, 1 technician and {len(DEMO_INVENTORY)} inventory items.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
