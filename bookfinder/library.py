import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from bookfinder.book import BookEntry, BookRecord, ReadingStatus
from bookfinder.catalog import normalize_email
from bookfinder.database import get_db_connection, initialize_database
from bookfinder.errors import NotFoundError, OwnershipError, ValidationError
from bookfinder.session import SessionManager

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = """
    id, external_id, owner_email, title, authors, thumbnail, description,
    published_date, page_count, status, favourite, notes, added_at
"""

_SORT_COLUMNS = {"added_at": "added_at", "title": "title COLLATE NOCASE"}


class LibraryStore:
    """Owner-scoped collection of book entries.

    Every operation needs a live session. Listing and adding take the owner's
    email explicitly and refuse any owner other than the session user; reads
    and writes by id only ever see the session user's entries.

    The store does not recompute stats or post notifications; callers do that
    after a mutation returns.
    """

    def __init__(self, session: SessionManager, db_file: Optional[str] = None) -> None:
        self.session = session
        self.db_file = db_file
        initialize_database(db_file)

    # ------------------------- Core operations ------------------------- #
    def list_by_owner(
        self,
        email: str,
        status: Optional[ReadingStatus | str] = None,
        favourite: Optional[bool] = None,
        sort_by: str = "added_at",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[BookEntry]:
        """List the owner's entries, optionally filtered by status and favourite flag."""
        owner = self._require_owner(email)
        if sort_by not in _SORT_COLUMNS:
            raise ValidationError(f"Invalid sort field: {sort_by}. Allowed: {', '.join(_SORT_COLUMNS)}")

        clauses = ["owner_email = ?"]
        params: List[Any] = [owner]
        if status is not None:
            clauses.append("status = ?")
            params.append(self._parse_status(status).value)
        if favourite is not None:
            clauses.append("favourite = ?")
            params.append(int(bool(favourite)))

        direction = "DESC" if descending else "ASC"
        query = (
            f"SELECT {_ENTRY_COLUMNS} FROM book_entries WHERE {' AND '.join(clauses)} "
            f"ORDER BY {_SORT_COLUMNS[sort_by]} {direction}, id {direction}"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(int(limit), 0))

        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(query, params).fetchall()
            return [BookEntry.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    def add(
        self,
        email: str,
        record: BookRecord,
        initial_status: ReadingStatus | str = ReadingStatus.TO_READ,
    ) -> BookEntry:
        """Add a catalog record to the owner's library.

        No duplicate check is made: adding the same catalog book twice creates
        two independent entries.
        """
        owner = self._require_owner(email)
        status = self._parse_status(initial_status)
        added_at = datetime.now(timezone.utc).isoformat()
        authors = list(record.authors)

        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                """
                INSERT INTO book_entries (
                    external_id, owner_email, title, authors, thumbnail, description,
                    published_date, page_count, status, favourite, notes, added_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, '', ?)
                """,
                (
                    record.external_id, owner, record.title, json.dumps(authors),
                    record.thumbnail, record.description, record.published_date,
                    record.page_count, status.value, added_at,
                ),
            )
            conn.commit()
            entry_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Added entry {entry_id} ({record.title}) for {owner} as {status.value}")
        return BookEntry(
            id=entry_id,
            external_id=record.external_id,
            owner_email=owner,
            title=record.title,
            authors=authors,
            thumbnail=record.thumbnail,
            description=record.description,
            published_date=record.published_date,
            page_count=record.page_count,
            status=status,
            favourite=False,
            notes="",
            added_at=added_at,
        )

    def get(self, entry_id: int) -> BookEntry:
        owner = self.session.require_user().email
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM book_entries WHERE id = ? AND owner_email = ?",
                (entry_id, owner),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"Book entry {entry_id} not found.")
        return BookEntry.from_row(dict(row))

    def update(self, entry_id: int, **fields: Any) -> BookEntry:
        """Patch ``status``, ``notes`` and/or ``favourite`` of an entry.

        Raises ``ValidationError`` for any other field or an unknown status,
        and ``NotFoundError`` when the entry does not exist.
        """
        owner = self.session.require_user().email
        invalid = set(fields) - BookEntry.MUTABLE_FIELDS
        if invalid:
            raise ValidationError(f"Field(s) cannot be changed: {', '.join(sorted(invalid))}")

        changes = {}
        if fields.get("status") is not None:
            changes["status"] = self._parse_status(fields["status"]).value
        if fields.get("notes") is not None:
            changes["notes"] = str(fields["notes"])
        if fields.get("favourite") is not None:
            changes["favourite"] = int(bool(fields["favourite"]))

        conn = get_db_connection(self.db_file)
        try:
            exists = conn.execute(
                "SELECT 1 FROM book_entries WHERE id = ? AND owner_email = ?", (entry_id, owner)
            ).fetchone()
            if exists is None:
                raise NotFoundError(f"Book entry {entry_id} not found.")
            if changes:
                set_clause = ", ".join(f"{name} = ?" for name in changes)
                conn.execute(
                    f"UPDATE book_entries SET {set_clause} WHERE id = ? AND owner_email = ?",
                    [*changes.values(), entry_id, owner],
                )
                conn.commit()
        finally:
            conn.close()

        if changes:
            logger.info(f"Updated entry {entry_id} for {owner}: {', '.join(changes)}")
        return self.get(entry_id)

    def remove(self, entry_id: int) -> None:
        """Delete an entry. Deleting a missing (or already deleted) id raises ``NotFoundError``."""
        owner = self.session.require_user().email
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "DELETE FROM book_entries WHERE id = ? AND owner_email = ?", (entry_id, owner)
            )
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted == 0:
            raise NotFoundError(f"Book entry {entry_id} not found.")
        logger.info(f"Removed entry {entry_id} for {owner}")

    # ------------------------- Utilities ------------------------- #
    def _require_owner(self, email: str) -> str:
        user = self.session.require_user()
        owner = normalize_email(email)
        if owner != user.email:
            raise OwnershipError(f"Session user {user.email} cannot access the library of {owner}.")
        return owner

    @staticmethod
    def _parse_status(value: ReadingStatus | str) -> ReadingStatus:
        try:
            return ReadingStatus.parse(value)
        except ValueError as e:
            allowed = ", ".join(s.value for s in ReadingStatus)
            raise ValidationError(f"Invalid status: {value}. Allowed: {allowed}") from e
