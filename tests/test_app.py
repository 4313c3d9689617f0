import importlib
import os
import tempfile
import unittest
from datetime import timedelta
from unittest.mock import patch

from werkzeug.security import generate_password_hash

import database
from config import Config
from models import format_timestamp, parse_timestamp, utcnow


class LibraryAppTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        cls._db_path = os.path.join(cls._tmpdir.name, "test_library.db")

        database.DATABASE = cls._db_path

        import app as app_module

        cls.app_module = importlib.reload(app_module)
        cls.app = cls.app_module.app
        cls.app.config.update(TESTING=True)

    @classmethod
    def tearDownClass(cls):
        cls._tmpdir.cleanup()

    def setUp(self):
        if os.path.exists(self._db_path):
            os.remove(self._db_path)

        database.DATABASE = self._db_path
        self.app_module.create_tables()
        self._seed_data()
        self.client = self.app.test_client()

    def _seed_data(self):
        conn = database.connect()
        cursor = conn.cursor()

        cursor.executemany(
            "INSERT INTO users (id, username, passwordHash, isAdmin) VALUES (?, ?, ?, ?)",
            [
                (1, "admin", generate_password_hash("admin123"), 1),
                (2, "reader", generate_password_hash("reader123"), 0),
                (3, "other", generate_password_hash("other123"), 0),
            ],
        )

        now = utcnow()
        cursor.executemany(
            """
            INSERT INTO books (id, title, author, isBorrowed, borrowedBy, coverImageUrl, borrowedAt, dueDate)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (1, "Clean Code", "Robert Martin", 0, None, None, None, None),
                (2, "Flask Web Development", "Miguel Grinberg", 1, 2, None,
                 format_timestamp(now - timedelta(days=10, hours=-1)),
                 format_timestamp(now - timedelta(days=7, hours=-1))),
                (3, "Fluent Python", "Luciano Ramalho", 1, 2, "https://example.com/fp.jpg",
                 format_timestamp(now - timedelta(days=1)), format_timestamp(now + timedelta(days=2))),
            ],
        )

        conn.commit()
        conn.close()

    def test_startup_seeds_admin_and_sample_books(self):
        os.remove(self._db_path)
        self.app_module = importlib.reload(self.app_module)
        type(self).app = self.app_module.app
        self.app.config.update(TESTING=True)

        conn = database.connect()
        admin = conn.execute(
            "SELECT isAdmin FROM users WHERE username = ?", (Config.ADMIN_USERNAME,)
        ).fetchone()
        total_books = conn.execute("SELECT COUNT(*) AS total FROM books").fetchone()["total"]
        conn.close()

        self.assertEqual(admin["isAdmin"], 1)
        self.assertEqual(total_books, len(database.SAMPLE_BOOKS))

        client = self.app.test_client()
        response = client.post(
            "/api/login",
            json={"username": Config.ADMIN_USERNAME, "password": Config.ADMIN_PASSWORD},
        )
        self.assertEqual(response.status_code, 200)

    def _token(self, username, password):
        response = self.client.post("/api/login", json={"username": username, "password": password})
        self.assertEqual(response.status_code, 200)
        return response.get_json()["token"]

    def _auth(self, username="reader", password="reader123"):
        return {"Authorization": f"Bearer {self._token(username, password)}"}

    def _admin(self):
        return self._auth("admin", "admin123")

    def _book_row(self, book_id):
        conn = database.connect()
        row = conn.execute(
            "SELECT isBorrowed, borrowedBy, borrowedAt, dueDate FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        conn.close()
        return row

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def test_login_success(self):
        response = self.client.post("/api/login", json={"username": "admin", "password": "admin123"})
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["user"], {"id": 1, "username": "admin", "isAdmin": True})
        self.assertTrue(body["token"])

    def test_login_with_wrong_password(self):
        response = self.client.post("/api/login", json={"username": "admin", "password": "nope"})
        self.assertEqual(response.status_code, 401)

    def test_login_requires_fields(self):
        response = self.client.post("/api/login", json={"username": "admin"})
        self.assertEqual(response.status_code, 400)

    def test_register_and_login(self):
        response = self.client.post("/api/register", json={"username": "newbie", "password": "pw"})
        self.assertEqual(response.status_code, 201)
        self.assertTrue(self._token("newbie", "pw"))

    def test_register_duplicate_username(self):
        response = self.client.post("/api/register", json={"username": "reader", "password": "pw"})
        self.assertEqual(response.status_code, 409)

    def test_request_without_token_is_rejected(self):
        response = self.client.get("/api/books")
        self.assertEqual(response.status_code, 401)

    def test_tampered_token_is_rejected(self):
        headers = {"Authorization": f"Bearer {self._token('reader', 'reader123')}x"}
        response = self.client.get("/api/books", headers=headers)
        self.assertEqual(response.status_code, 401)

    def test_token_of_deleted_user_stops_working(self):
        headers = self._auth("other", "other123")
        self.client.delete("/api/admin/users/3", headers=self._admin())
        response = self.client.get("/api/books", headers=headers)
        self.assertEqual(response.status_code, 401)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def test_list_books_includes_borrower_name(self):
        response = self.client.get("/api/books", headers=self._auth())
        self.assertEqual(response.status_code, 200)

        books = {book["id"]: book for book in response.get_json()}
        self.assertEqual([b["title"] for b in response.get_json()],
                         ["Clean Code", "Flask Web Development", "Fluent Python"])
        self.assertFalse(books[1]["isBorrowed"])
        self.assertIsNone(books[1]["borrowerUsername"])
        self.assertTrue(books[2]["isBorrowed"])
        self.assertEqual(books[2]["borrowerUsername"], "reader")

    def test_borrow_book(self):
        response = self.client.post(
            "/api/books/borrow", json={"bookId": 1, "duration": 7}, headers=self._auth("other", "other123")
        )
        self.assertEqual(response.status_code, 200)

        row = self._book_row(1)
        self.assertEqual(row["isBorrowed"], 1)
        self.assertEqual(row["borrowedBy"], 3)
        self.assertEqual(row["dueDate"], response.get_json()["dueDate"])
        self.assertEqual(
            parse_timestamp(row["dueDate"]) - parse_timestamp(row["borrowedAt"]), timedelta(days=7)
        )

    def test_borrow_with_invalid_duration(self):
        for duration in (0, 8, "soon"):
            with self.subTest(duration=duration):
                response = self.client.post(
                    "/api/books/borrow", json={"bookId": 1, "duration": duration}, headers=self._auth()
                )
                self.assertEqual(response.status_code, 400)
        self.assertEqual(self._book_row(1)["isBorrowed"], 0)

    def test_superscript_digits_are_rejected(self):
        response = self.client.post(
            "/api/books/borrow", json={"bookId": 1, "duration": "²"}, headers=self._auth()
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.delete("/api/books/³", headers=self._admin())
        self.assertEqual(response.status_code, 400)

    def test_borrow_requires_book_and_duration(self):
        response = self.client.post("/api/books/borrow", json={"bookId": 1}, headers=self._auth())
        self.assertEqual(response.status_code, 400)

    def test_borrow_already_borrowed_book(self):
        response = self.client.post(
            "/api/books/borrow", json={"bookId": 2, "duration": 3}, headers=self._auth("other", "other123")
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(self._book_row(2)["borrowedBy"], 2)

    def test_borrow_missing_book(self):
        response = self.client.post(
            "/api/books/borrow", json={"bookId": 42, "duration": 3}, headers=self._auth()
        )
        self.assertEqual(response.status_code, 404)

    def test_return_book(self):
        response = self.client.post("/api/books/return", json={"bookId": 3}, headers=self._auth())
        self.assertEqual(response.status_code, 200)

        row = self._book_row(3)
        self.assertEqual(row["isBorrowed"], 0)
        self.assertIsNone(row["borrowedBy"])
        self.assertIsNone(row["borrowedAt"])
        self.assertIsNone(row["dueDate"])

    def test_return_book_of_another_user(self):
        response = self.client.post(
            "/api/books/return", json={"bookId": 3}, headers=self._auth("other", "other123")
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self._book_row(3)["borrowedBy"], 2)

    def test_return_available_book(self):
        response = self.client.post("/api/books/return", json={"bookId": 1}, headers=self._auth())
        self.assertEqual(response.status_code, 400)

    # ------------------------------------------------------------------
    # Fines
    # ------------------------------------------------------------------

    def test_my_borrowed_books_report_fines(self):
        response = self.client.get("/api/users/me/borrowed", headers=self._auth())
        self.assertEqual(response.status_code, 200)

        books = response.get_json()
        self.assertEqual([book["id"] for book in books], [2, 3])
        overdue, current = books
        self.assertTrue(overdue["isOverdue"])
        self.assertEqual(overdue["daysOverdue"], 7)
        self.assertEqual(overdue["baseCost"], 3)
        self.assertEqual(overdue["fine"], 23)
        self.assertFalse(current["isOverdue"])
        self.assertEqual(current["fine"], 0)
        self.assertEqual(current["coverImageUrl"], "https://example.com/fp.jpg")

    def test_pay_overdue_fine(self):
        headers = self._auth()
        before = tuple(self._book_row(2))

        for _ in range(2):
            response = self.client.post("/api/users/me/pay/2", headers=headers)
            self.assertEqual(response.status_code, 200)

        self.assertEqual(tuple(self._book_row(2)), before)

    def test_pay_book_not_overdue(self):
        response = self.client.post("/api/users/me/pay/3", headers=self._auth())
        self.assertEqual(response.status_code, 400)

    def test_pay_for_book_of_another_user(self):
        response = self.client.post("/api/users/me/pay/2", headers=self._auth("other", "other123"))
        self.assertEqual(response.status_code, 403)

    def test_pay_with_invalid_book_id(self):
        response = self.client.post("/api/users/me/pay/abc", headers=self._auth())
        self.assertEqual(response.status_code, 400)

    # ------------------------------------------------------------------
    # Catalog administration
    # ------------------------------------------------------------------

    def test_regular_user_cannot_add_book(self):
        response = self.client.post("/api/books/add", json={"title": "X"}, headers=self._auth())
        self.assertEqual(response.status_code, 403)

    def test_admin_adds_book(self):
        response = self.client.post(
            "/api/books/add",
            json={"title": "  Dune ", "author": "", "coverImageUrl": "https://example.com/d.jpg"},
            headers=self._admin(),
        )
        self.assertEqual(response.status_code, 201)

        conn = database.connect()
        row = conn.execute("SELECT * FROM books WHERE id = ?", (response.get_json()["bookId"],)).fetchone()
        conn.close()
        self.assertEqual(row["title"], "Dune")
        self.assertIsNone(row["author"])
        self.assertEqual(row["isBorrowed"], 0)

    def test_add_book_requires_title(self):
        response = self.client.post("/api/books/add", json={"title": "   "}, headers=self._admin())
        self.assertEqual(response.status_code, 400)

    def test_admin_updates_book(self):
        response = self.client.patch("/api/books/1", json={"author": "Uncle Bob"}, headers=self._admin())
        self.assertEqual(response.status_code, 200)

        conn = database.connect()
        row = conn.execute("SELECT title, author FROM books WHERE id = 1").fetchone()
        conn.close()
        self.assertEqual(row["title"], "Clean Code")
        self.assertEqual(row["author"], "Uncle Bob")

    def test_update_book_validation(self):
        headers = self._admin()
        self.assertEqual(self.client.patch("/api/books/1", json={}, headers=headers).status_code, 400)
        self.assertEqual(
            self.client.patch("/api/books/1", json={"title": ""}, headers=headers).status_code, 400
        )
        self.assertEqual(
            self.client.patch("/api/books/99", json={"title": "X"}, headers=headers).status_code, 404
        )

    def test_admin_deletes_book(self):
        headers = self._admin()
        self.assertEqual(self.client.delete("/api/books/1", headers=headers).status_code, 200)
        self.assertEqual(self.client.delete("/api/books/1", headers=headers).status_code, 404)

    def test_delete_book_requires_delete_method(self):
        response = self.client.get("/api/books/1", headers=self._admin())
        self.assertEqual(response.status_code, 405)

    # ------------------------------------------------------------------
    # User administration
    # ------------------------------------------------------------------

    def test_admin_lists_users(self):
        response = self.client.get("/api/admin/users", headers=self._admin())
        self.assertEqual(response.status_code, 200)

        users = {user["username"]: user for user in response.get_json()}
        self.assertEqual(users["reader"]["borrowedCount"], 2)
        self.assertTrue(users["admin"]["isAdmin"])
        self.assertNotIn("passwordHash", users["reader"])

    def test_regular_user_cannot_list_users(self):
        response = self.client.get("/api/admin/users", headers=self._auth())
        self.assertEqual(response.status_code, 403)

    def test_admin_deletes_user_and_releases_books(self):
        response = self.client.delete("/api/admin/users/2", headers=self._admin())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["releasedCount"], 2)

        for book_id in (2, 3):
            row = self._book_row(book_id)
            self.assertEqual(row["isBorrowed"], 0)
            self.assertIsNone(row["borrowedBy"])
            self.assertIsNone(row["dueDate"])

        conn = database.connect()
        total = conn.execute("SELECT COUNT(*) AS total FROM users WHERE id = 2").fetchone()["total"]
        conn.close()
        self.assertEqual(total, 0)

    def test_admin_cannot_delete_self(self):
        response = self.client.delete("/api/admin/users/1", headers=self._admin())
        self.assertEqual(response.status_code, 403)

    def test_delete_missing_user(self):
        response = self.client.delete("/api/admin/users/99", headers=self._admin())
        self.assertEqual(response.status_code, 404)

    def test_unexpected_error_returns_json_500(self):
        headers = self._auth()
        with patch.object(self.app_module.services, "list_books", side_effect=RuntimeError("boom")):
            response = self.client.get("/api/books", headers=headers)

        self.assertEqual(response.status_code, 500)
        self.assertIn("message", response.get_json())


if __name__ == "__main__":
    unittest.main()
