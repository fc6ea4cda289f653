from dataclasses import asdict, dataclass
from typing import Iterable

from bookfinder.book import BookEntry, ReadingStatus


@dataclass(frozen=True)
class Stats:
    """Reading counts derived from an owner's entries. Never stored."""

    finished: int = 0
    reading: int = 0
    total: int = 0

    @property
    def to_read(self) -> int:
        return self.total - self.finished - self.reading

    def to_dict(self) -> dict:
        return asdict(self)


def compute(entries: Iterable[BookEntry]) -> Stats:
    """Recount everything from scratch over the given entries."""
    finished = reading = total = 0
    for entry in entries:
        total += 1
        if entry.status is ReadingStatus.FINISHED:
            finished += 1
        elif entry.status is ReadingStatus.READING:
            reading += 1
    return Stats(finished=finished, reading=reading, total=total)
