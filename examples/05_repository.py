"""
Example 05: Repository Pattern

This example demonstrates binding Repository methods to mapped statements
with the @statement decorator.
"""

from row_mapper import (
    Configuration,
    ConnectionConfig,
    Repository,
    SessionFactory,
    SQLRegistry,
    result_map,
    statement,
)
from dataclasses import dataclass
from typing import Optional
import tempfile
import sqlite3
from pathlib import Path


@dataclass
class User:
    """User entity"""
    id: Optional[int] = None
    name: str = ""
    email: str = ""
    active: bool = True


class UserRepository(Repository):
    """Repository for User entities"""

    namespace = "user"

    @statement()
    def get_by_id(self, id: int) -> Optional[User]: ...

    @statement(many=True)
    def list_active(self) -> list[User]: ...

    @statement(many=True)
    def search(self, name: Optional[str] = None, active: Optional[bool] = None) -> list[User]: ...

    @statement()
    def create(self, user: User) -> int: ...

    @statement()
    def update(self, id: int, name: Optional[str] = None, email: Optional[str] = None) -> int: ...

    @statement()
    def delete(self, id: int) -> int: ...


def main():
    # Set up database
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            active INTEGER DEFAULT 1
        )
    """)
    conn.execute("INSERT INTO users (name, email) VALUES ('Alice', 'alice@example.com')")
    conn.execute("INSERT INTO users (name, email, active) VALUES ('Bob', 'bob@example.com', 0)")
    conn.commit()
    conn.close()

    # Set up SQL registry
    sql_dir = Path(tempfile.mkdtemp())
    user_dir = sql_dir / "user"
    user_dir.mkdir()

    (user_dir / "_columns.sql").write_text("id, name, email, active")
    (user_dir / "get_by_id.sql").write_text(
        "-- @result_map: user.entity\nSELECT <include refid='_columns'/> FROM users WHERE id = #{id}"
    )
    (user_dir / "list_active.sql").write_text(
        "-- @result_map: user.entity\nSELECT <include refid='_columns'/> FROM users WHERE active = 1"
    )
    (user_dir / "search.sql").write_text("""-- @result_map: user.entity
        SELECT <include refid='_columns'/> FROM users
        <where>
          <if test="name != null">name = #{name}</if>
          <if test="active != null">AND active = #{active}</if>
        </where>
    """)
    (user_dir / "create.sql").write_text(
        "INSERT INTO users (name, email, active) VALUES (#{name}, #{email}, #{active})"
    )
    (user_dir / "update.sql").write_text("""
        UPDATE users
        <set>
          <if test="name != null">name = #{name},</if>
          <if test="email != null">email = #{email},</if>
        </set>
        WHERE id = #{id}
    """)
    (user_dir / "delete.sql").write_text("DELETE FROM users WHERE id = #{id}")

    # SQLite stores booleans as integers; the result map converts them back
    configuration = Configuration()
    configuration.add_result_map(
        result_map(User, "user.entity").id("id").result("name").result("email").result("active", python_type=bool)
    )
    SQLRegistry(sql_dir).load_into(configuration)

    config = ConnectionConfig(driver="sqlite", database=db_path)
    factory = SessionFactory.from_config(config, configuration)

    print("=== Repository Pattern ===\n")

    with UserRepository(factory) as user_repo:
        # Find by ID
        print("1. Find user by ID:")
        user = user_repo.get_by_id(1)
        if user:
            print(f"   Found: {user.name} ({user.email})\n")

        # Find all active users
        print("2. Find all active users:")
        active_users = user_repo.list_active()
        print(f"   Active users: {len(active_users)}")
        for u in active_users:
            print(f"   - {u.name}")
        print()

        # Create a user from an entity
        print("3. Create new user:")
        created = user_repo.create(User(name="Charlie", email="charlie@example.com"))
        print(f"   Rows inserted: {created}\n")

        # Update only the columns given
        print("4. Update user:")
        user_repo.update(1, email="alice.updated@example.com")
        print("   Updated user #1\n")

        # Delete user
        print("5. Delete user:")
        user_repo.delete(2)
        print("   Deleted user #2\n")

        user_repo.session.commit()

    with UserRepository(factory) as user_repo:
        # Verify final state
        print("6. Final users:")
        for u in user_repo.search(active=True):
            print(f"   - {u.name} ({u.email})")
        print()

    factory.close()

    # Clean up
    Path(db_path).unlink()
    for file in user_dir.glob("*.sql"):
        file.unlink()
    user_dir.rmdir()
    sql_dir.rmdir()


if __name__ == "__main__":
    main()
