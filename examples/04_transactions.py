"""
Example 04: Transactions and Caching

This example demonstrates session commit/rollback, the per-session cache and
a namespace cache shared by sessions once a transaction commits.
"""

from row_mapper import Configuration, ConnectionConfig, ExecutionError, SessionFactory, SQLRegistry
import tempfile
import sqlite3
from pathlib import Path


def main():
    # Set up database
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE
        )
    """)
    conn.execute("""
        CREATE TABLE audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.commit()
    conn.close()

    # Set up SQL registry
    sql_dir = Path(tempfile.mkdtemp())
    user_dir = sql_dir / "user"
    audit_dir = sql_dir / "audit"
    user_dir.mkdir()
    audit_dir.mkdir()

    (user_dir / "create.sql").write_text("INSERT INTO users (name, email) VALUES (#{name}, #{email})")
    (user_dir / "count.sql").write_text("SELECT COUNT(*) AS n FROM users")
    (user_dir / "all.sql").write_text("SELECT id, name FROM users ORDER BY id")
    (audit_dir / "log.sql").write_text("INSERT INTO audit_log (action) VALUES (#{action})")

    # The "user" namespace gets a shared LRU cache
    configuration = Configuration()
    configuration.add_cache("user", "lru", 256)
    SQLRegistry(sql_dir).load_into(configuration)

    config = ConnectionConfig(driver="sqlite", database=db_path, pool_size=2)
    factory = SessionFactory.from_config(config, configuration)

    print("=== Transactions ===\n")

    # Example 1: Successful transaction
    print("1. Successful transaction:")
    with factory.open_session() as session:
        session.insert("user.create", name="Alice", email="alice@example.com")
        session.insert("audit.log", action="user_created")
        session.commit()
    with factory.open_session() as session:
        print(f"   Users after commit: {session.select_one('user.count')['n']}\n")

    # Example 2: An error leaves the session open; closing without commit rolls back
    print("2. Transaction with error (rollback on close):")
    try:
        with factory.open_session() as session:
            session.insert("user.create", name="Bob", email="bob@example.com")
            # This will fail due to duplicate email
            session.insert("user.create", name="Charlie", email="alice@example.com")
            session.commit()
    except ExecutionError as e:
        print(f"   Error occurred: {type(e).__name__} ({type(e.__cause__).__name__})")
        print("   Transaction was rolled back on close\n")

    with factory.open_session() as session:
        print(f"   Users after rollback: {session.select_one('user.count')['n']} (Bob was not added)\n")

    # Example 3: Caching
    print("3. Caching:")
    with factory.open_session() as session:
        first = session.select_list("user.all")
        again = session.select_list("user.all")
        print(f"   Same session, same list object: {first is again}")
    # Results are visible to other sessions only after the first one commits or closes
    with factory.open_session() as session:
        print(f"   Next session served from the namespace cache: {session.select_list('user.all')}")
        session.insert("user.create", name="Dave", email="dave@example.com")
        session.commit()
    with factory.open_session() as session:
        print(f"   After a committed write the namespace is flushed: {session.select_list('user.all')}\n")

    factory.close()

    # Clean up
    Path(db_path).unlink()
    for directory in (user_dir, audit_dir):
        for file in directory.glob("*.sql"):
            file.unlink()
        directory.rmdir()
    sql_dir.rmdir()


if __name__ == "__main__":
    main()
