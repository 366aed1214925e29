"""
Seed script: clientes y ventas de demostración para probar la emisión.

What it creates:
- Customers: personas con DNI y empresas con RUC.
- Sales: con total aleatorio; las ventas a empresas piden FACTURA y el resto BOLETA.
- Opcionalmente emite los comprobantes contra el gateway configurado
  (SUNAT_GATEWAY=fake por defecto).

Run inside the API container to use 'postgres' host and project PYTHONPATH:
    docker compose exec api python scripts/seed_demo_sales.py --customers 40 --sales 200 --emit

Note: This is intended for development environments only.
"""

# Add project root (/code) to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from decimal import Decimal

from app.common.exceptions import BillingError
from app.database.database import Base, SessionLocal, engine
from app.modules.comprobantes.emission import EmissionService
from app.modules.comprobantes.models import DocumentType
from app.modules.comprobantes.sequence import SequenceAllocator
from app.modules.sales.models import Customer, Sale


def pick(seq):
    return random.choice(seq)


def create_customers(db, count: int):
    first_names = ["Juan", "María", "Carlos", "Ana", "Luis", "Rosa", "Jorge", "Carmen", "Miguel", "Lucía"]
    last_names = ["Quispe", "Flores", "Huamán", "Mamani", "Rojas", "Torres", "Vargas", "Chávez", "Castillo", "Ramos"]
    companies = ["Inversiones", "Comercial", "Distribuidora", "Servicios", "Corporación"]

    customers = []
    for i in range(count):
        if i % 4 == 0:
            customer = Customer(
                name=f"{pick(companies)} {pick(last_names)} S.A.C.",
                document_type="RUC",
                document_number=str(20100000000 + i),
            )
        else:
            customer = Customer(
                name=f"{pick(first_names)} {pick(last_names)}",
                document_type="DNI",
                document_number=str(40000000 + i),
            )
        db.add(customer)
        customers.append(customer)
    db.commit()
    return customers


def create_sales(db, customers, count: int):
    sales = []
    for i in range(count):
        # Algunas boletas sin cliente identificado
        customer = pick(customers) if customers and random.random() > 0.2 else None
        document_type = (
            DocumentType.INVOICE if customer is not None and customer.document_type == "RUC"
            else DocumentType.RECEIPT
        )
        sale = Sale(
            customer_id=customer.id if customer else None,
            total=Decimal(random.randint(500, 250000)) / 100,
            document_type=document_type,
        )
        db.add(sale)
        sales.append(sale)
        if (i + 1) % 100 == 0:
            db.commit()
    db.commit()
    return sales


def emit_all(db, sales):
    service = EmissionService(db)
    summary = {}
    for i, sale in enumerate(sales, start=1):
        try:
            comprobante = service.emit(sale.id)
            key = comprobante.status.value
        except BillingError as e:
            key = e.kind
        summary[key] = summary.get(key, 0) + 1
        if i % 50 == 0:
            print(f"  Comprobantes procesados: {i}")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Seed demo customers and sales")
    parser.add_argument("--customers", type=int, default=40)
    parser.add_argument("--sales", type=int, default=200)
    parser.add_argument("--emit", action="store_true", help="Emitir los comprobantes de las ventas creadas")
    parser.add_argument("--seed", type=int, default=None, help="Semilla para datos reproducibles")
    args = parser.parse_args()

    if args.seed is not None:
        random.seed(args.seed)

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        SequenceAllocator(db).ensure_series()

        print("Creating customers...")
        customers = create_customers(db, args.customers)
        print(f"Customers created: {len(customers)}")

        print("Creating sales...")
        sales = create_sales(db, customers, args.sales)
        print(f"Sales created: {len(sales)}")

        if args.emit:
            print("Emitting comprobantes...")
            summary = emit_all(db, sales)
            print(f"Result: {summary}")

        print("\nSeed completed.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
