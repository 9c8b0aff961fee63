"""
Image record persistence.

Two interchangeable backends implement :class:`ImageStore`:

* :class:`JsonImageStore` keeps the whole collection in memory and rewrites a
  single ``{"images": [...], "tags": [...]}`` document after every mutation.
* :class:`SqlImageStore` keeps one row per image and one row per indexed tag
  through SQLAlchemy.

Records are returned in insertion order. The tag index only ever grows.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import Base, ImageRow, TagRow
from .errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


class ImageRecord(BaseModel):
    """Metadata of one stored image. Serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    filename: str
    original_name: str = Field(alias="originalName")
    url: str
    tags: List[str] = []
    created_at: str = Field(alias="createdAt")

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def merge_into_index(index: List[str], new_tags: Iterable[str]) -> List[str]:
    """
    Appends every tag not yet in ``index`` (compared case-insensitively) and
    returns the ones that were added. The first spelling seen is kept.
    """
    known = {t.lower() for t in index}
    added = []
    for tag in new_tags:
        key = tag.lower()
        if key in known:
            continue
        known.add(key)
        index.append(tag)
        added.append(tag)
    return added


class ImageStore(ABC):
    def __init__(self, uploads_dir: str):
        self.uploads_dir = uploads_dir

    @abstractmethod
    def load(self) -> None:
        """Reads persisted state, initializing empty storage when none exists."""

    @abstractmethod
    def append(self, record: ImageRecord) -> ImageRecord:
        """Adds a record, merges its tags into the index and persists."""

    @abstractmethod
    def replace_tags(self, image_id: str, tags: List[str]) -> ImageRecord:
        """Overwrites a record's tags. Raises NotFoundError for unknown ids."""

    @abstractmethod
    def remove(self, image_id: str) -> ImageRecord:
        """Drops a record and its backing file. Raises NotFoundError for unknown ids."""

    @abstractmethod
    def get(self, image_id: str) -> ImageRecord:
        pass

    @abstractmethod
    def all(self) -> List[ImageRecord]:
        pass

    @property
    @abstractmethod
    def tags(self) -> List[str]:
        pass

    def path_for(self, filename: str) -> str:
        return os.path.join(self.uploads_dir, filename)

    def _unlink_upload(self, filename: str) -> None:
        try:
            os.remove(self.path_for(filename))
        except OSError as e:
            logger.debug("Could not delete upload '%s': %s", filename, e)


class JsonImageStore(ImageStore):
    """Single JSON document, read once by load() and rewritten on each mutation."""

    def __init__(self, document_path: str, uploads_dir: str):
        super().__init__(uploads_dir)
        self.document_path = document_path
        self._images: List[ImageRecord] = []
        self._tags: List[str] = []
        # FastAPI runs sync endpoints in a threadpool.
        self._lock = threading.RLock()

    def load(self) -> None:
        with self._lock:
            if not os.path.exists(self.document_path):
                logger.info("No document at %s, initializing an empty store.", self.document_path)
                self._images, self._tags = [], []
                self._write()
                return

            try:
                with open(self.document_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top-level value is not an object")
                images = [ImageRecord.model_validate(item) for item in data.get("images") or []]
                tags = [str(t) for t in data.get("tags") or []]
            except (OSError, ValueError, TypeError) as e:
                raise StorageError(f"Could not read {self.document_path}: {e}") from e

            self._images, self._tags = images, tags
            logger.info("Loaded %d image(s) and %d tag(s) from %s", len(images), len(tags), self.document_path)

    def _write(self) -> None:
        document = {
            "images": [record.to_dict() for record in self._images],
            "tags": list(self._tags),
        }
        try:
            os.makedirs(os.path.dirname(self.document_path) or ".", exist_ok=True)
            payload = json.dumps(document, indent=2, ensure_ascii=False)
            with open(self.document_path, "w", encoding="utf-8") as f:
                f.write(payload)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Could not write {self.document_path}: {e}") from e

    @contextmanager
    def _mutation(self):
        """Applies a change and flushes it; the in-memory state is restored if the flush fails."""
        with self._lock:
            images_before = list(self._images)
            tags_before = list(self._tags)
            try:
                yield
                self._write()
            except StorageError:
                self._images, self._tags = images_before, tags_before
                raise

    def _find(self, image_id: str) -> Optional[int]:
        for idx, record in enumerate(self._images):
            if record.id == image_id:
                return idx
        return None

    def append(self, record: ImageRecord) -> ImageRecord:
        with self._lock:
            if self._find(record.id) is not None:
                raise StorageError(f"Image id '{record.id}' already exists.")
            with self._mutation():
                self._images.append(record)
                merge_into_index(self._tags, record.tags)
        return record

    def replace_tags(self, image_id: str, tags: List[str]) -> ImageRecord:
        with self._lock:
            idx = self._find(image_id)
            if idx is None:
                raise NotFoundError(image_id)
            updated = self._images[idx].model_copy(update={"tags": list(tags)})
            with self._mutation():
                self._images[idx] = updated
                merge_into_index(self._tags, updated.tags)
        return updated

    def remove(self, image_id: str) -> ImageRecord:
        with self._lock:
            idx = self._find(image_id)
            if idx is None:
                raise NotFoundError(image_id)
            with self._mutation():
                removed = self._images.pop(idx)
            self._unlink_upload(removed.filename)
        return removed

    def get(self, image_id: str) -> ImageRecord:
        with self._lock:
            idx = self._find(image_id)
            if idx is None:
                raise NotFoundError(image_id)
            return self._images[idx]

    def all(self) -> List[ImageRecord]:
        return self._images

    @property
    def tags(self) -> List[str]:
        return self._tags


def _row_to_record(row: ImageRow) -> ImageRecord:
    return ImageRecord(
        id=row.id,
        filename=row.filename,
        original_name=row.original_name,
        url=row.url,
        tags=list(row.tags or []),
        created_at=row.created_at,
    )


class SqlImageStore(ImageStore):
    """Per-record persistence through SQLAlchemy."""

    def __init__(self, database_url: str, uploads_dir: str):
        super().__init__(uploads_dir)
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @contextmanager
    def _session(self):
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Database operation failed: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def load(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialize database: {e}") from e

    def _merge_tags(self, db, new_tags: Iterable[str]) -> None:
        pending = {}
        for tag in new_tags:
            pending.setdefault(tag.lower(), tag)
        if not pending:
            return
        existing = {
            key for (key,) in db.query(TagRow.name_key).filter(TagRow.name_key.in_(pending.keys()))
        }
        for key, name in pending.items():
            if key not in existing:
                db.add(TagRow(name=name, name_key=key))

    def append(self, record: ImageRecord) -> ImageRecord:
        with self._session() as db:
            db.add(ImageRow(
                id=record.id,
                filename=record.filename,
                original_name=record.original_name,
                url=record.url,
                tags=list(record.tags),
                created_at=record.created_at,
            ))
            self._merge_tags(db, record.tags)
        return record

    def replace_tags(self, image_id: str, tags: List[str]) -> ImageRecord:
        with self._session() as db:
            row = db.query(ImageRow).filter(ImageRow.id == image_id).first()
            if not row:
                raise NotFoundError(image_id)
            row.tags = list(tags)
            self._merge_tags(db, tags)
            db.flush()
            updated = _row_to_record(row)
        return updated

    def remove(self, image_id: str) -> ImageRecord:
        with self._session() as db:
            row = db.query(ImageRow).filter(ImageRow.id == image_id).first()
            if not row:
                raise NotFoundError(image_id)
            removed = _row_to_record(row)
            db.delete(row)
        self._unlink_upload(removed.filename)
        return removed

    def get(self, image_id: str) -> ImageRecord:
        with self._session() as db:
            row = db.query(ImageRow).filter(ImageRow.id == image_id).first()
            if not row:
                raise NotFoundError(image_id)
            return _row_to_record(row)

    def all(self) -> List[ImageRecord]:
        with self._session() as db:
            return [_row_to_record(row) for row in db.query(ImageRow).order_by(ImageRow.seq).all()]

    @property
    def tags(self) -> List[str]:
        with self._session() as db:
            return [name for (name,) in db.query(TagRow.name).order_by(TagRow.seq).all()]


def create_store(backend: str, document_path: str, database_url: str, uploads_dir: str) -> ImageStore:
    if backend == "sql":
        return SqlImageStore(database_url, uploads_dir)
    if backend != "json":
        logger.warning("Unknown store backend '%s', using the JSON document store.", backend)
    return JsonImageStore(document_path, uploads_dir)
