"""
Path-addressed document store over SQLAlchemy.

Paths look like ``products/<key>``: a collection name and a child key. The
API mirrors what the bot needs from a real-time database: get/set/update/
remove, ``push`` with generated chronological keys, atomic create and
read-modify-write, and child-added notifications.

Child-added works two ways:
- in-process listeners fire right after ``push`` commits
- ``children_after(cursor)`` lets a poller pick up rows written by another
  process (the storefront writes purchases directly)
"""
import logging
import secrets
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stockbot.core.exceptions import StoreError
from stockbot.models.document import Document

logger = logging.getLogger(__name__)

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

ChildListener = Callable[[str, Dict[str, Any]], None]


def generate_push_key(now_ms: Optional[int] = None) -> str:
    """
    20-char key: 8 chars of millisecond timestamp, 12 random chars.

    Keys sort lexicographically in creation order (to the millisecond).
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    stamp = []
    for _ in range(8):
        stamp.append(PUSH_CHARS[now_ms % 64])
        now_ms //= 64
    tail = "".join(secrets.choice(PUSH_CHARS) for _ in range(12))
    return "".join(reversed(stamp)) + tail


def split_path(path: str) -> Tuple[str, str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) != 2:
        raise ValueError(f"Document path must be '<collection>/<key>', got '{path}'")
    return parts[0], parts[1]


class DocumentStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._listeners: Dict[str, List[ChildListener]] = defaultdict(list)

    @contextmanager
    def _session(self, operation: str):
        db: Session = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[STORE] {operation} failed: {type(e).__name__}: {e}")
            raise StoreError(f"Document store {operation} failed") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _find(db: Session, collection: str, key: str) -> Optional[Document]:
        return (
            db.query(Document)
            .filter(Document.collection == collection, Document.key == key)
            .first()
        )

    # ------------------------------------------------------------------
    # Single documents
    # ------------------------------------------------------------------

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, key = split_path(path)
        with self._session(f"get {path}") as db:
            doc = self._find(db, collection, key)
            return dict(doc.data) if doc else None

    def set(self, path: str, value: Dict[str, Any]) -> None:
        """Overwrite the whole document."""
        collection, key = split_path(path)
        with self._session(f"set {path}") as db:
            doc = self._find(db, collection, key)
            if doc:
                doc.data = dict(value)
            else:
                db.add(Document(collection=collection, key=key, data=dict(value)))
            db.commit()

    def update(self, path: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``fields`` into the document, creating it if needed."""
        collection, key = split_path(path)
        with self._session(f"update {path}") as db:
            doc = self._find(db, collection, key)
            if doc:
                merged = {**doc.data, **fields}
                doc.data = merged
            else:
                merged = dict(fields)
                db.add(Document(collection=collection, key=key, data=merged))
            db.commit()
            return merged

    def remove(self, path: str) -> bool:
        collection, key = split_path(path)
        with self._session(f"remove {path}") as db:
            doc = self._find(db, collection, key)
            if not doc:
                return False
            db.delete(doc)
            db.commit()
            return True

    def create_if_absent(self, path: str, value: Dict[str, Any]) -> bool:
        """Insert only if nothing lives at ``path``. Atomic via the unique path constraint."""
        collection, key = split_path(path)
        with self._session(f"create {path}") as db:
            db.add(Document(collection=collection, key=key, data=dict(value)))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"[STORE] {path} already exists")
                return False
            return True

    def transaction(
        self,
        path: str,
        update_fn: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Read-modify-write in one database transaction.

        ``update_fn`` receives the current document (or None) and returns the
        fields to merge, or None to leave it untouched. Exceptions raised by
        ``update_fn`` roll back and propagate unchanged.

        Returns:
            The document after the write (or as read, if nothing was written)
        """
        collection, key = split_path(path)
        with self._session(f"transaction {path}") as db:
            doc = (
                db.query(Document)
                .filter(Document.collection == collection, Document.key == key)
                .with_for_update()
                .first()
            )
            current = dict(doc.data) if doc else None
            fields = update_fn(current)
            if fields is None:
                db.rollback()
                return current
            if doc:
                merged = {**doc.data, **fields}
                doc.data = merged
            else:
                merged = dict(fields)
                db.add(Document(collection=collection, key=key, data=merged))
            db.commit()
            return merged

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def push(self, collection: str, value: Dict[str, Any]) -> str:
        """Append a child under a generated key and notify child-added listeners."""
        key = generate_push_key()
        with self._session(f"push {collection}") as db:
            db.add(Document(collection=collection, key=key, data=dict(value)))
            db.commit()

        for listener in list(self._listeners.get(collection, [])):
            try:
                listener(key, dict(value))
            except Exception as e:
                logger.error(f"[STORE] child-added listener on {collection} failed: {e}", exc_info=True)
        return key

    def children(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        """All children of a collection, in insertion order."""
        with self._session(f"read {collection}") as db:
            docs = (
                db.query(Document)
                .filter(Document.collection == collection)
                .order_by(Document.id)
                .all()
            )
            return [(doc.key, dict(doc.data)) for doc in docs]

    def children_after(self, collection: str, cursor: int = 0) -> List[Tuple[int, str, Dict[str, Any]]]:
        """Children appended after ``cursor`` as ``(seq, key, data)``; pass the last seq back in."""
        with self._session(f"read {collection}") as db:
            docs = (
                db.query(Document)
                .filter(Document.collection == collection, Document.id > cursor)
                .order_by(Document.id)
                .all()
            )
            return [(doc.id, doc.key, dict(doc.data)) for doc in docs]

    def on_child_added(self, collection: str, listener: ChildListener) -> None:
        self._listeners[collection].append(listener)
