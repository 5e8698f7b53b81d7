"""
Example 01: Dynamic SQL

This example demonstrates statements loaded from .sql files, with <where>, <if>,
<foreach> and <include> tags rendered per call.
"""

from row_mapper import Configuration, ConnectionConfig, SessionFactory, SQLRegistry
import tempfile
import sqlite3
from pathlib import Path


def main():
    # Create a temporary database
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            active INTEGER DEFAULT 1
        )
    """)
    conn.execute("INSERT INTO users (name, email) VALUES ('Alice', 'alice@example.com')")
    conn.execute("INSERT INTO users (name, email) VALUES ('Bob', 'bob@example.com')")
    conn.execute("INSERT INTO users (name, email, active) VALUES ('Charlie', 'charlie@example.com', 0)")
    conn.commit()
    conn.close()

    # Create temporary SQL files directory
    sql_dir = Path(tempfile.mkdtemp())
    user_dir = sql_dir / "user"
    user_dir.mkdir()

    # Files starting with "_" are fragments for <include>
    (user_dir / "_columns.sql").write_text("id, name, email, active")
    (user_dir / "get_by_id.sql").write_text(
        "SELECT <include refid='_columns'/> FROM users WHERE id = #{id}"
    )
    (user_dir / "search.sql").write_text("""
        SELECT <include refid='_columns'/> FROM users
        <where>
          <if test="active != null">active = #{active}</if>
          <if test="name != null">
            <bind name="pattern" value="name + '%'"/>
            AND name LIKE #{pattern}
          </if>
        </where>
        ORDER BY id
    """)
    (user_dir / "by_ids.sql").write_text("""
        SELECT <include refid='_columns'/> FROM users WHERE id IN
        <foreach collection="list" item="id" open="(" separator="," close=")">#{id}</foreach>
    """)
    (user_dir / "count.sql").write_text("SELECT COUNT(*) AS total FROM users")

    # Configure the session factory
    config = ConnectionConfig(driver="sqlite", database=db_path)
    configuration = SQLRegistry(sql_dir).load_into(Configuration())
    factory = SessionFactory.from_config(config, configuration)

    print("=== Dynamic SQL ===\n")

    with factory.open_session() as session:
        # select_one: a single row as a dict (no result map registered)
        user = session.select_one("user.get_by_id", 1)
        print(f"select_one result: {user}\n")

        # <where> drops the leading AND when "active" is absent
        users = session.select_list("user.search", active=None, name="B")
        print(f"search by name prefix ({len(users)} rows):")
        for user in users:
            print(f"  - {user['name']} ({user['email']})")
        print()

        users = session.select_list("user.search", active=1, name=None)
        print(f"search active users ({len(users)} rows)\n")

        # A single list argument is exposed as "list"
        users = session.select_list("user.by_ids", [1, 3])
        print(f"foreach IN result: {[u['name'] for u in users]}\n")

        # The rendered SQL for a call
        bound = configuration.get_statement("user.search").get_bound_sql({"active": 1, "name": "A"})
        print(f"rendered: {' '.join(bound.sql.split())}")
        print(f"parameters: {[m.property for m in bound.parameter_mappings]}\n")

        total = session.select_one("user.count")
        print(f"count: {total['total']} total users\n")

    factory.close()

    # Clean up
    Path(db_path).unlink()
    for file in user_dir.glob("*.sql"):
        file.unlink()
    user_dir.rmdir()
    sql_dir.rmdir()


if __name__ == "__main__":
    main()
