"""Deterministic seed data loaded into every backing store."""

from __future__ import annotations

from dataclasses import dataclass

from .models import Dialect


@dataclass(frozen=True, slots=True)
class SeedFixture:
    """Schema plus rows for one dialect's sample table.

    ``replace`` fixtures are wiped and reloaded on every start; the others are
    only inserted while the table is empty.
    """

    table: str
    create_sql: str
    insert_sql: str
    rows: tuple[tuple[object, ...], ...]
    replace: bool = False

    @property
    def count_sql(self) -> str:
        return f"SELECT COUNT(*) FROM {self.table}"

    @property
    def clear_sql(self) -> str:
        return f"DELETE FROM {self.table}"


SQLITE_FIXTURE = SeedFixture(
    table="test_data",
    create_sql="""
        CREATE TABLE IF NOT EXISTS test_data (
            id INTEGER PRIMARY KEY,
            name TEXT,
            value INTEGER
        )
    """,
    insert_sql="INSERT INTO test_data (id, name, value) VALUES (?, ?, ?)",
    rows=tuple((idx, f"Item {idx}", idx * 100) for idx in range(1, 11)),
    replace=True,
)

MYSQL_FIXTURE = SeedFixture(
    table="products",
    create_sql="""
        CREATE TABLE IF NOT EXISTS products (
            id INT AUTO_INCREMENT PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            description TEXT,
            price DECIMAL(10,2) NOT NULL,
            category VARCHAR(50),
            stock INT DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    insert_sql="INSERT INTO products (name, description, price, category, stock) VALUES (%s, %s, %s, %s, %s)",
    rows=(
        ("Laptop", "High-performance laptop with SSD", "899.99", "Electronics", 45),
        ("Smartphone", "Latest model with dual camera", "699.99", "Electronics", 120),
        ("Coffee Maker", "Premium coffee machine", "89.99", "Kitchen", 30),
        ("Headphones", "Noise cancelling wireless headphones", "199.99", "Audio", 75),
        ("Monitor", "27-inch 4K monitor", "349.99", "Computer Accessories", 25),
        ("Office Chair", "Ergonomic office chair", "249.99", "Furniture", 15),
        ("Tablet", "10-inch tablet with stylus", "429.99", "Electronics", 35),
        ("Smart Watch", "Fitness tracking smart watch", "159.99", "Wearables", 50),
        ("Desk", "Modern computer desk", "179.99", "Furniture", 10),
        ("Keyboard", "Mechanical gaming keyboard", "129.99", "Computer Accessories", 40),
        ("Mouse", "Wireless gaming mouse", "59.99", "Computer Accessories", 60),
        ("Speakers", "Bluetooth speakers", "79.99", "Audio", 45),
        ("External SSD", "1TB portable SSD drive", "149.99", "Storage", 30),
        ("Webcam", "HD webcam for video conferencing", "69.99", "Computer Accessories", 25),
        ("Printer", "Color laser printer", "299.99", "Office Equipment", 12),
    ),
)

POSTGRES_FIXTURE = SeedFixture(
    table="customers",
    create_sql="""
        CREATE TABLE IF NOT EXISTS customers (
            id SERIAL PRIMARY KEY,
            first_name VARCHAR(50) NOT NULL,
            last_name VARCHAR(50) NOT NULL,
            email VARCHAR(100) UNIQUE NOT NULL,
            phone VARCHAR(20),
            country VARCHAR(50),
            city VARCHAR(50),
            address TEXT,
            postal_code VARCHAR(20),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    insert_sql=(
        "INSERT INTO customers (first_name, last_name, email, phone, country, city, address, postal_code) "
        "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)"
    ),
    rows=(
        ("John", "Doe", "john.doe@example.com", "555-123-4567", "USA", "New York", "123 Broadway St", "10001"),
        ("Jane", "Smith", "jane.smith@example.com", "555-987-6543", "USA", "Los Angeles", "456 Hollywood Blvd", "90028"),
        ("Robert", "Johnson", "robert.j@example.com", "555-234-5678", "USA", "Chicago", "789 Michigan Ave", "60601"),
        ("Emily", "Williams", "emily.w@example.com", "555-345-6789", "Canada", "Toronto", "567 Yonge St", "M4Y 1Z2"),
        ("Michael", "Brown", "michael.b@example.com", "555-456-7890", "UK", "London", "234 Oxford St", "W1D 1BS"),
        ("Sarah", "Davis", "sarah.d@example.com", "555-567-8901", "Australia", "Sydney", "890 George St", "2000"),
        ("David", "Miller", "david.m@example.com", "555-678-9012", "Germany", "Berlin", "123 Unter den Linden", "10117"),
        ("Jennifer", "Wilson", "jennifer.w@example.com", "555-789-0123", "France", "Paris", "456 Champs-Élysées", "75008"),
        ("James", "Taylor", "james.t@example.com", "555-890-1234", "Japan", "Tokyo", "789 Shibuya", "150-0002"),
        ("Lisa", "Anderson", "lisa.a@example.com", "555-901-2345", "Italy", "Rome", "890 Via del Corso", "00186"),
        ("Thomas", "Jackson", "thomas.j@example.com", "555-012-3456", "Spain", "Madrid", "123 Gran Via", "28013"),
        ("Patricia", "White", "patricia.w@example.com", "555-123-4567", "Brazil", "Rio de Janeiro", "456 Copacabana", "22070"),
        ("Richard", "Harris", "richard.h@example.com", "555-234-5678", "USA", "San Francisco", "789 Market St", "94103"),
        ("Elizabeth", "Clark", "elizabeth.c@example.com", "555-345-6789", "USA", "Boston", "890 Newbury St", "02115"),
    ),
)

FIXTURES: dict[Dialect, SeedFixture] = {
    Dialect.SQLITE: SQLITE_FIXTURE,
    Dialect.MYSQL: MYSQL_FIXTURE,
    Dialect.POSTGRESQL: POSTGRES_FIXTURE,
}


__all__ = ["FIXTURES", "MYSQL_FIXTURE", "POSTGRES_FIXTURE", "SQLITE_FIXTURE", "SeedFixture"]
