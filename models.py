from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import Config
from errors import InvalidArgument


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as ISO 8601 UTC with millisecond precision."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


def parse_id(value: Any, label: str = "ID") -> int:
    parsed = _parse_int(value)
    if parsed is None or parsed < 1:
        raise InvalidArgument(f"Invalid {label} format.")
    return parsed


def parse_duration(value: Any) -> int:
    parsed = _parse_int(value)
    if parsed is None or not Config.MIN_BORROW_DAYS <= parsed <= Config.MAX_BORROW_DAYS:
        raise InvalidArgument(
            f"Duration must be between {Config.MIN_BORROW_DAYS} and "
            f"{Config.MAX_BORROW_DAYS} days."
        )
    return parsed


def _optional_text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"Field '{key}' must be a string.")
    return value.strip() or None


def _require_mapping(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidArgument("Request body must be a JSON object.")
    return data


@dataclass
class User:
    id: int
    username: str
    is_admin: bool
    password_hash: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        keys = row.keys()
        return cls(
            id=row["id"],
            username=row["username"],
            is_admin=bool(row["isAdmin"]),
            password_hash=row["passwordHash"] if "passwordHash" in keys else None,
        )

    def to_dict(self):
        return {"id": self.id, "username": self.username, "isAdmin": self.is_admin}


@dataclass
class Book:
    id: int
    title: str
    author: Optional[str] = None
    cover_image_url: Optional[str] = None
    is_borrowed: bool = False
    borrowed_by: Optional[int] = None
    borrowed_at: Optional[str] = None
    due_date: Optional[str] = None
    borrower_username: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        keys = row.keys()
        return cls(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            cover_image_url=row["coverImageUrl"],
            is_borrowed=bool(row["isBorrowed"]),
            borrowed_by=row["borrowedBy"],
            borrowed_at=row["borrowedAt"],
            due_date=row["dueDate"],
            borrower_username=row["borrowerUsername"] if "borrowerUsername" in keys else None,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "coverImageUrl": self.cover_image_url,
            "isBorrowed": self.is_borrowed,
            "borrowedBy": self.borrowed_by,
            "borrowedAt": self.borrowed_at,
            "dueDate": self.due_date,
            "borrowerUsername": self.borrower_username,
        }


@dataclass(frozen=True)
class BorrowRequest:
    book_id: int
    duration: int

    @classmethod
    def from_json(cls, data):
        data = _require_mapping(data)
        if not data.get("bookId") or data.get("duration") is None:
            raise InvalidArgument("Book ID and duration are required.")
        return cls(parse_id(data["bookId"], "book ID"), parse_duration(data["duration"]))


@dataclass(frozen=True)
class ReturnRequest:
    book_id: int

    @classmethod
    def from_json(cls, data):
        data = _require_mapping(data)
        if not data.get("bookId"):
            raise InvalidArgument("Book ID is required.")
        return cls(parse_id(data["bookId"], "book ID"))


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    @classmethod
    def from_json(cls, data):
        data = _require_mapping(data)
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            raise InvalidArgument("Username and password are required.")
        return cls(username, password)


class BookForm:
    """Book metadata submitted by an administrator.

    ``for_create`` demands a title; ``for_update`` keeps only the fields the
    caller actually sent so a PATCH can clear author or cover with an empty
    string while leaving the rest untouched.
    """

    FIELDS = ("title", "author", "coverImageUrl")

    def __init__(self, fields):
        self.fields = fields

    @classmethod
    def for_create(cls, data):
        data = _require_mapping(data)
        title = _optional_text(data, "title")
        if not title:
            raise InvalidArgument("Book title is required.")
        return cls({
            "title": title,
            "author": _optional_text(data, "author"),
            "coverImageUrl": _optional_text(data, "coverImageUrl"),
        })

    @classmethod
    def for_update(cls, data):
        data = _require_mapping(data)
        fields = {key: _optional_text(data, key) for key in cls.FIELDS if key in data}
        if not fields:
            raise InvalidArgument(
                "No valid fields provided for update (title, author, coverImageUrl)."
            )
        if "title" in fields and not fields["title"]:
            raise InvalidArgument("Book title cannot be empty.")
        return cls(fields)
