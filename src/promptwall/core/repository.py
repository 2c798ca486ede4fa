"""Metadata repository for generated images.

A record is written exactly once per successful generation and is never
updated or deleted afterwards.  The repository contract is deliberately
small::

    save(new_record)        -> GeneratedImageRecord   # assigns id + timestamp
    list_recent(limit=12)   -> list[GeneratedImageRecord]  # newest first
    get_by_id(image_id)     -> GeneratedImageRecord | None
    count()                 -> int

Two implementations satisfy it:

- :class:`InMemoryImageRepository` keeps records for the lifetime of the
  process.  A lock guards the underlying dict so concurrent saves from worker
  threads cannot corrupt it.
- :class:`SQLiteImageRepository` persists records in a ``generated_images``
  table.  Every operation uses its own connection and every insert commits
  on its own.

Repositories are built once at startup by :func:`create_repository` and
handed to the application; nothing in the package reaches for a global
instance.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from promptwall.core.config import PromptwallConfig
from promptwall.core.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 12


class NewImageRecord(BaseModel):
    """A generation result that has not been stored yet.

    Attributes:
        prompt: The visitor's original prompt.
        image_url: Internal path the image is served from.
        local_path: Absolute path of the downloaded file.
        file_size: Size of the downloaded file in bytes.
        resolution: Free-form resolution tag, e.g. ``"3:4"``.
        model_used: Label of the generation backend.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    prompt: str = Field(..., min_length=1, max_length=500)
    image_url: str
    local_path: str
    file_size: int = Field(..., ge=0)
    resolution: str
    model_used: str


class GeneratedImageRecord(NewImageRecord):
    """A stored generation record.

    Serialised with camelCase keys (``imageUrl``, ``generatedAt`` …) when
    dumped ``by_alias``.
    """

    id: str
    generated_at: datetime

    @property
    def filename(self) -> str:
        return Path(self.local_path).name


def _new_record(new: NewImageRecord, now: datetime | None = None) -> GeneratedImageRecord:
    return GeneratedImageRecord(
        **new.model_dump(),
        id=str(uuid.uuid4()),
        generated_at=now or datetime.now(timezone.utc),
    )


def _require_file(new: NewImageRecord) -> None:
    if not Path(new.local_path).is_file():
        raise StorageError(f"Refusing to store record for missing file: {new.local_path}")


class ImageRepository(ABC):
    """Interface every metadata store implements."""

    @abstractmethod
    def save(self, new: NewImageRecord) -> GeneratedImageRecord:
        """Assign an id and timestamp, store the record and return it.

        Raises:
            StorageError: If ``local_path`` does not exist or the store fails.
        """

    @abstractmethod
    def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[GeneratedImageRecord]:
        """Return at most *limit* records, newest first."""

    @abstractmethod
    def get_by_id(self, image_id: str) -> GeneratedImageRecord | None:
        """Return the record with *image_id*, or ``None``."""

    @abstractmethod
    def get_by_filename(self, filename: str) -> GeneratedImageRecord | None:
        """Return the record whose stored file is named *filename*, or ``None``."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored records."""


class InMemoryImageRepository(ImageRepository):
    """Process-lifetime repository backed by a dict."""

    def __init__(self) -> None:
        self._records: dict[str, GeneratedImageRecord] = {}
        # Insertion sequence breaks ties between equal timestamps.
        self._sequence: dict[str, int] = {}
        self._lock = threading.Lock()

    def save(self, new: NewImageRecord) -> GeneratedImageRecord:
        _require_file(new)
        record = _new_record(new)
        with self._lock:
            self._sequence[record.id] = len(self._records)
            self._records[record.id] = record
        logger.info(f"Stored image record {record.id}")
        return record

    def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[GeneratedImageRecord]:
        with self._lock:
            records = list(self._records.values())
            sequence = dict(self._sequence)
        records.sort(key=lambda r: (r.generated_at, sequence[r.id]), reverse=True)
        return records[: max(limit, 0)]

    def get_by_id(self, image_id: str) -> GeneratedImageRecord | None:
        with self._lock:
            return self._records.get(image_id)

    def get_by_filename(self, filename: str) -> GeneratedImageRecord | None:
        with self._lock:
            return next((r for r in self._records.values() if r.filename == filename), None)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class SQLiteImageRepository(ImageRepository):
    """Durable repository stored in a SQLite database file."""

    _COLUMNS = (
        "id, prompt, image_url, local_path, file_size, resolution, model_used, generated_at"
    )

    def __init__(self, db_path: Path):
        """Open (and if needed create) the database at *db_path*.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized image database at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _initialize_db(self) -> None:
        """Create the schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS generated_images (
                    id TEXT PRIMARY KEY,
                    prompt TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    local_path TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    resolution TEXT NOT NULL,
                    model_used TEXT NOT NULL,
                    generated_at TEXT NOT NULL
                )
                """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_generated_at
                ON generated_images(generated_at DESC)
                """)
            conn.commit()

    @staticmethod
    def _row_to_record(row: tuple) -> GeneratedImageRecord:
        image_id, prompt, image_url, local_path, file_size, resolution, model_used, at = row
        return GeneratedImageRecord(
            id=image_id,
            prompt=prompt,
            image_url=image_url,
            local_path=local_path,
            file_size=file_size,
            resolution=resolution,
            model_used=model_used,
            generated_at=datetime.fromisoformat(at),
        )

    def save(self, new: NewImageRecord) -> GeneratedImageRecord:
        _require_file(new)
        record = _new_record(new)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO generated_images ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.prompt,
                        record.image_url,
                        record.local_path,
                        record.file_size,
                        record.resolution,
                        record.model_used,
                        # Fixed-width UTC text keeps lexical order == time order.
                        record.generated_at.astimezone(timezone.utc).isoformat(
                            timespec="microseconds"
                        ),
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error storing image record {record.id}: {e}")
            raise StorageError(f"Failed to store image record: {e}") from e

        logger.info(f"Stored image record {record.id}")
        return record

    def list_recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[GeneratedImageRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {self._COLUMNS} FROM generated_images "
                "ORDER BY generated_at DESC, rowid DESC LIMIT ?",
                (max(limit, 0),),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_by_id(self, image_id: str) -> GeneratedImageRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM generated_images WHERE id = ? LIMIT 1",
                (image_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_filename(self, filename: str) -> GeneratedImageRecord | None:
        # local_path is absolute, so match on the trailing path component.
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {self._COLUMNS} FROM generated_images WHERE local_path LIKE ?",
                (f"%{filename}",),
            ).fetchall()
        for row in rows:
            record = self._row_to_record(row)
            if record.filename == filename:
                return record
        return None

    def count(self) -> int:
        with self._connect() as conn:
            result = conn.execute("SELECT COUNT(*) FROM generated_images").fetchone()
        return result[0] if result else 0


def create_repository(cfg: PromptwallConfig) -> ImageRepository:
    """Build the repository selected by ``cfg.repository_backend``."""
    if cfg.repository_backend == "sqlite":
        return SQLiteImageRepository(cfg.database_path)
    return InMemoryImageRepository()
