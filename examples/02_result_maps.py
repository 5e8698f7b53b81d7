"""
Example 02: Result Maps

This example demonstrates mapping joined rows into object graphs: identity
columns collapse repeated parent rows, nested maps build collections, and a
discriminator picks a subclass per row.
"""

from row_mapper import (
    Configuration,
    ConnectionConfig,
    SessionFactory,
    SQLRegistry,
    result_map,
)
from dataclasses import dataclass, field
from typing import Optional
import tempfile
import sqlite3
from pathlib import Path


@dataclass
class Item:
    id: int = 0
    sku: str = ""
    quantity: int = 0


@dataclass
class Order:
    id: int = 0
    status: str = ""
    items: list[Item] = field(default_factory=list)


@dataclass
class Customer:
    id: int = 0
    name: str = ""
    tier: str = ""
    orders: list[Order] = field(default_factory=list)


@dataclass
class VipCustomer(Customer):
    discount: Optional[float] = None


def main():
    # Set up database
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT, tier TEXT, discount REAL);
        CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, status TEXT);
        CREATE TABLE items (id INTEGER PRIMARY KEY, order_id INTEGER, sku TEXT, quantity INTEGER);

        INSERT INTO customers VALUES (1, 'Alice', 'vip', 0.15), (2, 'Bob', 'regular', NULL);
        INSERT INTO orders VALUES (10, 1, 'shipped'), (11, 1, 'pending'), (20, 2, 'shipped');
        INSERT INTO items VALUES
            (100, 10, 'BOOK-1', 2), (101, 10, 'PEN-9', 10),
            (110, 11, 'LAMP-3', 1),
            (200, 20, 'BOOK-1', 1);
    """)
    conn.commit()
    conn.close()

    # Set up SQL registry
    sql_dir = Path(tempfile.mkdtemp())
    customer_dir = sql_dir / "customer"
    customer_dir.mkdir()

    (customer_dir / "with_orders.sql").write_text("""-- @result_map: customer.graph
        SELECT c.id AS c_id, c.name AS c_name, c.tier AS c_tier, c.discount AS c_discount,
               o.id AS o_id, o.status AS o_status,
               i.id AS i_id, i.sku AS i_sku, i.quantity AS i_quantity
        FROM customers c
        LEFT JOIN orders o ON o.customer_id = c.id
        LEFT JOIN items i ON i.order_id = o.id
        ORDER BY c.id, o.id, i.id
    """)

    # Result maps: one row per item, collapsed by the id columns
    configuration = Configuration()
    configuration.add_result_map(
        result_map(Item, "customer.item").id("id").result("sku").result("quantity")
    )
    configuration.add_result_map(
        result_map(Customer, "customer.graph")
        .id("id", "c_id")
        .result("name", "c_name")
        .result("tier", "c_tier")
        .collection(
            "orders",
            result_map(Order).id("id", "o_id").result("status", "o_status").collection(
                "items", "customer.item", column_prefix="i_"
            ),
        )
        .discriminator(
            "c_tier",
            {"vip": result_map(VipCustomer).result("discount", "c_discount")},
            default="customer.graph",
        )
    )
    SQLRegistry(sql_dir).load_into(configuration)

    config = ConnectionConfig(driver="sqlite", database=db_path)
    factory = SessionFactory.from_config(config, configuration)

    print("=== Result Maps ===\n")

    with factory.open_session() as session:
        customers = session.select_list("customer.with_orders")

    print(f"{len(customers)} customers from one joined query:")
    for customer in customers:
        kind = type(customer).__name__
        extra = f", discount {customer.discount:.0%}" if isinstance(customer, VipCustomer) else ""
        print(f"  {customer.name} ({kind}{extra})")
        for order in customer.orders:
            skus = ", ".join(f"{item.sku} x{item.quantity}" for item in order.items)
            print(f"    order #{order.id} [{order.status}]: {skus}")
    print()

    factory.close()

    # Clean up
    Path(db_path).unlink()
    for file in customer_dir.glob("*.sql"):
        file.unlink()
    customer_dir.rmdir()
    sql_dir.rmdir()


if __name__ == "__main__":
    main()
