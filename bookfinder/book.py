from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


DEFAULT_TITLE = "No Title"
DEFAULT_AUTHOR = "Unknown Author"
DEFAULT_DESCRIPTION = "No description available."


class ReadingStatus(str, Enum):
    """Where a book sits on the owner's reading journey."""

    TO_READ = "to-read"
    READING = "reading"
    FINISHED = "finished"

    @classmethod
    def parse(cls, value: "ReadingStatus | str") -> "ReadingStatus":
        """Coerce a raw value into a status; raises ``ValueError`` for anything else."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())

    @property
    def label(self) -> str:
        return {
            ReadingStatus.TO_READ: "To Read",
            ReadingStatus.READING: "Reading",
            ReadingStatus.FINISHED: "Finished",
        }[self]


@dataclass(frozen=True)
class BookRecord:
    """A catalog book in the uniform shape produced by the normalizer."""

    external_id: str
    title: str = DEFAULT_TITLE
    authors: tuple[str, ...] = (DEFAULT_AUTHOR,)
    thumbnail: str | None = None
    description: str = DEFAULT_DESCRIPTION
    published_date: str = ""
    page_count: int = 0
    isbn: str | None = None

    def __post_init__(self) -> None:
        # Authors are never empty; a single name or a list is frozen into a tuple
        authors = self.authors or ()
        if isinstance(authors, str):
            authors = (authors,)
        authors = tuple(a.strip() for a in authors if isinstance(a, str) and a.strip()) or (DEFAULT_AUTHOR,)
        object.__setattr__(self, "authors", authors)

    def to_dict(self) -> dict:
        return {
            "external_id": self.external_id,
            "title": self.title,
            "authors": list(self.authors),
            "thumbnail": self.thumbnail,
            "description": self.description,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "isbn": self.isbn,
        }

    @staticmethod
    def from_dict(data: dict) -> "BookRecord":
        return BookRecord(
            external_id=str(data.get("external_id") or ""),
            title=data.get("title") or DEFAULT_TITLE,
            authors=data.get("authors") or (),
            thumbnail=data.get("thumbnail"),
            description=data.get("description") or DEFAULT_DESCRIPTION,
            published_date=data.get("published_date") or "",
            page_count=int(data.get("page_count") or 0),
            isbn=data.get("isbn"),
        )


@dataclass
class BookEntry:
    """A user's owned relationship to one catalog book."""

    id: int
    external_id: str
    owner_email: str
    title: str
    authors: list[str] = field(default_factory=lambda: [DEFAULT_AUTHOR])
    thumbnail: str | None = None
    description: str = DEFAULT_DESCRIPTION
    published_date: str = ""
    page_count: int = 0
    status: ReadingStatus = ReadingStatus.TO_READ
    favourite: bool = False
    notes: str = ""
    added_at: str = ""

    # Fields that may be patched after creation
    MUTABLE_FIELDS = frozenset({"status", "notes", "favourite"})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "owner_email": self.owner_email,
            "title": self.title,
            "authors": list(self.authors),
            "thumbnail": self.thumbnail,
            "description": self.description,
            "published_date": self.published_date,
            "page_count": self.page_count,
            "status": self.status.value,
            "favourite": self.favourite,
            "notes": self.notes,
            "added_at": self.added_at,
        }

    @staticmethod
    def from_row(row: dict) -> "BookEntry":
        # Authors are stored as a JSON array in SQLite
        authors = row.get("authors")
        if isinstance(authors, str):
            try:
                authors = json.loads(authors)
            except json.JSONDecodeError:
                authors = [authors] if authors else []
        return BookEntry(
            id=row["id"],
            external_id=row["external_id"],
            owner_email=row["owner_email"],
            title=row["title"],
            authors=list(authors or []) or [DEFAULT_AUTHOR],
            thumbnail=row.get("thumbnail"),
            description=row.get("description") or "",
            published_date=row.get("published_date") or "",
            page_count=row.get("page_count") or 0,
            status=ReadingStatus(row["status"]),
            favourite=bool(row.get("favourite")),
            notes=row.get("notes") or "",
            added_at=row["added_at"],
        )


@dataclass(frozen=True)
class User:
    """An authenticated identity. The password hash never leaves the user store."""

    id: int
    name: str
    email: str
    created_at: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "created_at": self.created_at}

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(id=data["id"], name=data["name"], email=data["email"], created_at=data["created_at"])
