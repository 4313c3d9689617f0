"""SQLite-backed store handle for books and users.

Every state change on a book is a single conditional ``UPDATE ... WHERE``
so SQLite's per-row write serialisation decides races; callers inspect the
returned flag instead of reading the row first.
"""
import logging
import sqlite3
from contextlib import closing

import database
from errors import Conflict, NotFound
from models import Book, User

logger = logging.getLogger(__name__)

BOOK_COLUMNS = """
    b.id, b.title, b.author, b.isBorrowed, b.borrowedBy,
    b.coverImageUrl, b.borrowedAt, b.dueDate,
    u.username AS borrowerUsername
"""


class SqliteRepository:
    def __init__(self, connect=None):
        # Resolved per call so database.DATABASE can be swapped at runtime
        self._connect = connect or (lambda: database.connect())

    def connection(self):
        return closing(self._connect())

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def list_books(self):
        with self.connection() as conn:
            rows = conn.execute(f"""
                SELECT {BOOK_COLUMNS}
                FROM books b
                LEFT JOIN users u ON b.borrowedBy = u.id
                ORDER BY b.title COLLATE NOCASE
            """).fetchall()
        return [Book.from_row(row) for row in rows]

    def get_book(self, book_id):
        with self.connection() as conn:
            row = conn.execute(f"""
                SELECT {BOOK_COLUMNS}
                FROM books b
                LEFT JOIN users u ON b.borrowedBy = u.id
                WHERE b.id = ?
            """, (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def books_borrowed_by(self, user_id):
        with self.connection() as conn:
            rows = conn.execute(f"""
                SELECT {BOOK_COLUMNS}
                FROM books b
                LEFT JOIN users u ON b.borrowedBy = u.id
                WHERE b.borrowedBy = ?
                ORDER BY b.dueDate ASC
            """, (user_id,)).fetchall()
        return [Book.from_row(row) for row in rows]

    def try_borrow(self, book_id, user_id, borrowed_at, due_date):
        """Mark an available book as borrowed. False if it was not available."""
        with self.connection() as conn:
            cursor = conn.execute("""
                UPDATE books
                SET isBorrowed = 1, borrowedBy = ?, borrowedAt = ?, dueDate = ?
                WHERE id = ? AND isBorrowed = 0
            """, (user_id, borrowed_at, due_date, book_id))
            conn.commit()
            return cursor.rowcount == 1

    def try_return(self, book_id, user_id):
        """Release a book held by ``user_id``. False if it is not theirs to return."""
        with self.connection() as conn:
            cursor = conn.execute("""
                UPDATE books
                SET isBorrowed = 0, borrowedBy = NULL, borrowedAt = NULL, dueDate = NULL
                WHERE id = ? AND isBorrowed = 1 AND borrowedBy = ?
            """, (book_id, user_id))
            conn.commit()
            return cursor.rowcount == 1

    def add_book(self, title, author=None, cover_image_url=None):
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO books (title, author, coverImageUrl) VALUES (?, ?, ?)",
                (title, author, cover_image_url),
            )
            conn.commit()
            return cursor.lastrowid

    def update_book(self, book_id, fields):
        columns = [column for column in fields if column in ("title", "author", "coverImageUrl")]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [fields[column] for column in columns] + [book_id]

        with self.connection() as conn:
            cursor = conn.execute(f"UPDATE books SET {assignments} WHERE id = ?", params)
            conn.commit()
            return cursor.rowcount == 1

    def delete_book(self, book_id):
        with self.connection() as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username, password_hash, is_admin=False):
        with self.connection() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, passwordHash, isAdmin) VALUES (?, ?, ?)",
                    (username, password_hash, int(is_admin)),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                raise Conflict("Username already taken.")
            return cursor.lastrowid

    def get_user(self, user_id):
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_row(row) if row else None

    def get_user_by_username(self, username):
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return User.from_row(row) if row else None

    def list_users(self):
        with self.connection() as conn:
            rows = conn.execute("""
                SELECT
                    u.id, u.username, u.isAdmin,
                    (SELECT COUNT(*) FROM books WHERE borrowedBy = u.id) AS borrowedCount
                FROM users u
                ORDER BY u.username COLLATE NOCASE
            """).fetchall()
        return [
            dict(User.from_row(row).to_dict(), borrowedCount=row["borrowedCount"])
            for row in rows
        ]

    def release_books_and_delete_user(self, user_id):
        """Free every book the user holds, then delete them, all or nothing.

        Returns the number of books released. Raises NotFound (after rolling
        back the release) when no such user exists.
        """
        with self.connection() as conn:
            with database.transaction(conn):
                released = conn.execute("""
                    UPDATE books
                    SET isBorrowed = 0, borrowedBy = NULL, borrowedAt = NULL, dueDate = NULL
                    WHERE borrowedBy = ?
                """, (user_id,)).rowcount

                deleted = conn.execute("DELETE FROM users WHERE id = ?", (user_id,)).rowcount
                if deleted == 0:
                    raise NotFound("User not found.")
        return released
