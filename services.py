import logging
from datetime import timedelta

from errors import Conflict, Forbidden, InvalidState, LibraryError, NotFound
from fines import NO_FINE, compute_fine, is_overdue
from models import format_timestamp, parse_duration, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


# ==============================
# Catalog
# ==============================

def list_books(store):
    return store.list_books()


def add_book(store, form):
    return store.add_book(
        form.fields["title"],
        form.fields.get("author"),
        form.fields.get("coverImageUrl"),
    )


def update_book(store, book_id, form):
    """Apply a partial update. Returns False when the row exists but nothing changed."""
    if store.update_book(book_id, form.fields):
        return True
    if store.get_book(book_id) is None:
        raise NotFound("Book not found.")
    return False


def delete_book(store, book_id):
    if not store.delete_book(book_id):
        raise NotFound("Book not found.")


# ==============================
# Borrow / return
# ==============================

def borrow_book(store, book_id, user_id, duration, now=None):
    duration = parse_duration(duration)
    borrowed_at = now or utcnow()
    due_date = borrowed_at + timedelta(days=duration)

    if store.try_borrow(book_id, user_id, format_timestamp(borrowed_at), format_timestamp(due_date)):
        return due_date

    # The write was refused; find out why for the caller
    book = store.get_book(book_id)
    if book is None:
        raise NotFound("Book not found.")
    if book.is_borrowed:
        raise Conflict("Book is already borrowed by someone else.")

    logger.error("Borrow of book %s failed unexpectedly (isBorrowed=%s)", book_id, book.is_borrowed)
    raise LibraryError("Failed to borrow book for an unknown reason.")


def return_book(store, book_id, user_id):
    if store.try_return(book_id, user_id):
        return

    book = store.get_book(book_id)
    if book is None:
        raise NotFound("Book not found.")
    if not book.is_borrowed:
        raise InvalidState("Book is not currently borrowed.")
    if book.borrowed_by != user_id:
        raise Forbidden("You cannot return a book you haven't borrowed.")

    logger.error("Return of book %s failed unexpectedly (borrowedBy=%s)", book_id, book.borrowed_by)
    raise LibraryError("Failed to return book for an unknown reason.")


# ==============================
# Fines
# ==============================

def fine_status(book, now):
    borrowed_at = parse_timestamp(book.borrowed_at)
    due_date = parse_timestamp(book.due_date)
    if borrowed_at is None or due_date is None:
        logger.warning("Book %s borrowed by user %s is missing date info", book.id, book.borrowed_by)
        return NO_FINE
    return compute_fine(borrowed_at, due_date, now)


def list_borrowed_by(store, user_id, now=None):
    now = now or utcnow()
    result = []
    for book in store.books_borrowed_by(user_id):
        entry = {
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "coverImageUrl": book.cover_image_url,
            "borrowedAt": book.borrowed_at,
            "dueDate": book.due_date,
        }
        entry.update(fine_status(book, now).to_dict())
        result.append(entry)
    return result


def simulate_payment(store, book_id, user_id, now=None):
    """Check that ``user_id`` may pay the fine on ``book_id``.

    Nothing is recorded: the server keeps no notion of a paid fine, so the
    same call succeeds again for as long as the book stays overdue.
    """
    now = now or utcnow()
    book = store.get_book(book_id)
    if book is None:
        raise NotFound("Book not found.")
    if book.borrowed_by != user_id:
        raise Forbidden("You cannot pay for a book you haven't borrowed.")

    due_date = parse_timestamp(book.due_date)
    if due_date is None:
        raise InvalidState("Cannot determine payment status; due date missing.")
    if not is_overdue(due_date, now):
        raise InvalidState("Book is not overdue. No payment required.")

    logger.info("Simulated payment for overdue book %s by user %s", book_id, user_id)


# ==============================
# Users
# ==============================

def list_users(store):
    return store.list_users()


def delete_user(store, target_user_id, acting_admin_id):
    if target_user_id == acting_admin_id:
        raise Forbidden("Administrators cannot delete their own account.")

    released = store.release_books_and_delete_user(target_user_id)
    logger.info("Released %d books for user %s during deletion", released, target_user_id)
    return released
