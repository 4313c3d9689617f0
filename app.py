import logging
import os

from flask import Flask, jsonify, request
from flask_login import current_user, login_required
from werkzeug.exceptions import HTTPException

import auth
import services
from config import Config
from database import create_tables, seed_defaults
from errors import LibraryError
from models import BookForm, BorrowRequest, Credentials, ReturnRequest, format_timestamp, parse_id
from repository import SqliteRepository

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.from_object(Config)

create_tables()
seed_defaults()

store = SqliteRepository()
auth.init_auth(app, store)


def _json_body():
    return request.get_json(silent=True)


@app.errorhandler(LibraryError)
def handle_library_error(error):
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({"message": error.description}), error.code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    logger.exception("Unhandled error")
    return jsonify({"message": "Something went wrong on the server!"}), 500


@app.cli.command("init-db")
def init_db_command():
    """Create tables and seed the admin user and sample books."""
    create_tables()
    seed_defaults()


@app.route("/")
def index():
    return "Library API is running!"


# ==============================
# Authentication
# ==============================

@app.route("/api/register", methods=["POST"])
def register():
    credentials = Credentials.from_json(_json_body())
    user_id = auth.register(store, credentials)
    return jsonify({"message": "User registered successfully.", "userId": user_id}), 201


@app.route("/api/login", methods=["POST"])
def login():
    credentials = Credentials.from_json(_json_body())
    user = auth.authenticate(store, credentials)
    token = auth.issue_token(user, app.config["SECRET_KEY"])
    return jsonify({"message": "Login successful", "token": token, "user": user.to_dict()})


# ==============================
# Books
# ==============================

@app.route("/api/books", methods=["GET"])
@login_required
def list_books():
    return jsonify([book.to_dict() for book in services.list_books(store)])


@app.route("/api/books/borrow", methods=["POST"])
@login_required
def borrow():
    borrow_request = BorrowRequest.from_json(_json_body())
    due_date = services.borrow_book(
        store, borrow_request.book_id, current_user.id, borrow_request.duration
    )
    return jsonify({
        "message": f"Book borrowed successfully. Due on {due_date:%Y-%m-%d}.",
        "dueDate": format_timestamp(due_date),
    })


@app.route("/api/books/return", methods=["POST"])
@login_required
def return_book():
    return_request = ReturnRequest.from_json(_json_body())
    services.return_book(store, return_request.book_id, current_user.id)
    return jsonify({"message": "Book returned successfully."})


@app.route("/api/books/add", methods=["POST"])
@login_required
@auth.admin_required
def add_book():
    book_id = services.add_book(store, BookForm.for_create(_json_body()))
    return jsonify({"message": "Book added successfully.", "bookId": book_id}), 201


@app.route("/api/books/<book_id>", methods=["PATCH"])
@login_required
@auth.admin_required
def update_book(book_id):
    book_id = parse_id(book_id, "book ID")
    if services.update_book(store, book_id, BookForm.for_update(_json_body())):
        return jsonify({"message": "Book updated successfully."})
    return jsonify({"message": "Book data unchanged."})


@app.route("/api/books/<book_id>", methods=["DELETE"])
@login_required
@auth.admin_required
def delete_book(book_id):
    services.delete_book(store, parse_id(book_id, "book ID"))
    return jsonify({"message": "Book deleted successfully."})


# ==============================
# Current user
# ==============================

@app.route("/api/users/me/borrowed", methods=["GET"])
@login_required
def my_borrowed_books():
    return jsonify(services.list_borrowed_by(store, current_user.id))


@app.route("/api/users/me/pay/<book_id>", methods=["POST"])
@login_required
def pay_fine(book_id):
    services.simulate_payment(store, parse_id(book_id, "book ID"), current_user.id)
    return jsonify({"message": "Payment simulated successfully. You may now return the book."})


# ==============================
# Administration
# ==============================

@app.route("/api/admin/users", methods=["GET"])
@login_required
@auth.admin_required
def list_users():
    return jsonify(services.list_users(store))


@app.route("/api/admin/users/<user_id>", methods=["DELETE"])
@login_required
@auth.admin_required
def delete_user(user_id):
    released = services.delete_user(store, parse_id(user_id, "user ID"), current_user.id)
    return jsonify({
        "message": f"User deleted successfully. {released} borrowed book(s) were released.",
        "releasedCount": released,
    })


if __name__ == "__main__":
    logging.basicConfig(level=Config.LOG_LEVEL)
    app.run(debug=os.getenv("FLASK_DEBUG") == "1")
