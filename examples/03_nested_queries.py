"""
Example 03: Nested Queries and Lazy Loading

This example demonstrates properties filled by running another statement per
row, either eagerly or lazily on first access.
"""

from row_mapper import (
    Configuration,
    ConnectionConfig,
    SessionFactory,
    Settings,
    SQLRegistry,
    resolve_all,
    result_map,
)
from row_mapper.mapping.proxy import pending_properties
from dataclasses import dataclass, field
from typing import Optional
import tempfile
import sqlite3
from pathlib import Path


@dataclass
class Post:
    id: int = 0
    title: str = ""


@dataclass
class Author:
    id: int = 0
    name: str = ""
    mentor: Optional["Author"] = None
    posts: list[Post] = field(default_factory=list)


def main():
    # Set up database
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT, mentor_id INTEGER);
        CREATE TABLE posts (id INTEGER PRIMARY KEY, author_id INTEGER, title TEXT);

        INSERT INTO authors VALUES (1, 'Ada', 2), (2, 'Grace', 1), (3, 'Linus', NULL);
        INSERT INTO posts VALUES (10, 1, 'Notes on the Engine'), (11, 1, 'Loops'), (30, 3, 'Kernels');
    """)
    conn.commit()
    conn.close()

    # Set up SQL registry
    sql_dir = Path(tempfile.mkdtemp())
    author_dir = sql_dir / "author"
    post_dir = sql_dir / "post"
    author_dir.mkdir()
    post_dir.mkdir()

    (author_dir / "by_id.sql").write_text(
        "-- @result_map: author.full\nSELECT id, name, mentor_id FROM authors WHERE id = #{id}"
    )
    (author_dir / "all.sql").write_text(
        "-- @result_map: author.full\nSELECT id, name, mentor_id FROM authors ORDER BY id"
    )
    (post_dir / "by_author.sql").write_text(
        "SELECT id, title FROM posts WHERE author_id = #{id} ORDER BY id"
    )

    # Lazy loading on by default; the mentor association opts out
    configuration = Configuration(Settings(lazy_loading_enabled=True))
    configuration.add_result_map(
        result_map(Author, "author.full")
        .id("id")
        .result("name")
        .association("mentor", select="author.by_id", column="mentor_id", lazy=False)
        .collection("posts", select="post.by_author", column="id")
    )
    SQLRegistry(sql_dir).load_into(configuration)

    config = ConnectionConfig(driver="sqlite", database=db_path)
    factory = SessionFactory.from_config(config, configuration)

    print("=== Nested Queries ===\n")

    with factory.open_session() as session:
        # Circular mentors resolve to the same objects within a session
        ada = session.select_one("author.by_id", 1)
        print(f"{ada.name} is mentored by {ada.mentor.name}")
        print(f"{ada.mentor.name} is mentored by {ada.mentor.mentor.name}\n")

        # Posts are loaded on first access
        print(f"pending before access: {pending_properties(ada)}")
        print(f"{ada.name} wrote {[p['title'] for p in ada.posts]}")
        print(f"pending after access: {pending_properties(ada)}\n")

        authors = resolve_all(session.select_list("author.all"))

    # Everything was loaded before the session closed
    for author in authors:
        print(f"  {author.name}: {len(author.posts)} post(s)")
    print()

    factory.close()

    # Clean up
    Path(db_path).unlink()
    for directory in (author_dir, post_dir):
        for file in directory.glob("*.sql"):
            file.unlink()
        directory.rmdir()
    sql_dir.rmdir()


if __name__ == "__main__":
    main()
