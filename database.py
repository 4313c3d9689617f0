import logging
import sqlite3
from contextlib import contextmanager

from werkzeug.security import generate_password_hash

from config import Config

logger = logging.getLogger(__name__)

DATABASE = Config.DATABASE_PATH

SAMPLE_BOOKS = [
    ("The Hitchhiker's Guide to the Galaxy", "Douglas Adams",
     "https://m.media-amazon.com/images/I/81XSN3hA5gL._SY466_.jpg"),
    ("Pride and Prejudice", "Jane Austen",
     "https://m.media-amazon.com/images/I/71Q1tPupKjL._SY466_.jpg"),
    ("To Kill a Mockingbird", "Harper Lee",
     "https://m.media-amazon.com/images/I/81aY1lxk+9L._SY466_.jpg"),
    ("1984", "George Orwell",
     "https://m.media-amazon.com/images/I/71rpa1-kyvL._SY466_.jpg"),
    ("The Great Gatsby", "F. Scott Fitzgerald",
     "https://m.media-amazon.com/images/I/71uy7dM7R+L._SY466_.jpg"),
]

# Columns added to books after the first release
BOOK_MIGRATIONS = {
    "coverImageUrl": "TEXT",
    "borrowedAt": "TEXT",
    "dueDate": "TEXT",
}


def connect():
    conn = sqlite3.connect(DATABASE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn):
    """Run a block of statements as one unit: commit on success, roll back on any error."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def create_tables():
    conn = connect()
    cursor = conn.cursor()

    # ==============================
    # USERS
    # ==============================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            passwordHash TEXT NOT NULL,
            isAdmin INTEGER NOT NULL DEFAULT 0
        )
    """)

    # ==============================
    # BOOKS
    # ==============================
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            author TEXT,
            isBorrowed INTEGER NOT NULL DEFAULT 0,
            borrowedBy INTEGER,
            coverImageUrl TEXT,
            borrowedAt TEXT,
            dueDate TEXT,
            FOREIGN KEY (borrowedBy) REFERENCES users(id) ON DELETE SET NULL
        )
    """)

    conn.commit()
    _apply_migrations(conn)
    conn.close()


def _apply_migrations(conn):
    cursor = conn.cursor()
    cursor.execute("PRAGMA table_info(books)")
    existing = {row["name"] for row in cursor.fetchall()}

    for column, column_type in BOOK_MIGRATIONS.items():
        if column not in existing:
            cursor.execute(f"ALTER TABLE books ADD COLUMN {column} {column_type}")
            logger.info("Added column books.%s", column)

    conn.commit()


def seed_defaults():
    conn = connect()
    cursor = conn.cursor()

    cursor.execute("SELECT id FROM users WHERE username = ?", (Config.ADMIN_USERNAME,))
    if not cursor.fetchone():
        cursor.execute(
            "INSERT INTO users (username, passwordHash, isAdmin) VALUES (?, ?, 1)",
            (Config.ADMIN_USERNAME, generate_password_hash(Config.ADMIN_PASSWORD)),
        )
        logger.info("Admin user '%s' created", Config.ADMIN_USERNAME)

    cursor.execute("SELECT COUNT(*) AS total FROM books")
    if cursor.fetchone()["total"] == 0:
        cursor.executemany(
            "INSERT INTO books (title, author, coverImageUrl) VALUES (?, ?, ?)",
            SAMPLE_BOOKS,
        )
        logger.info("Seeded %d sample books", len(SAMPLE_BOOKS))

    conn.commit()
    conn.close()
