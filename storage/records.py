"""
Document records for certificates and the domains that use them.

Two collections matter to the worker:
  certificates — owned here; one document per domain string
  domains      — owned elsewhere; each may carry a certificateId back-reference

Every stored document carries "$id" and "$version".  update_document()
accepts the version the caller read and raises ConcurrentUpdate when the
document moved on in between, so lost updates surface instead of vanishing.

Two stores ship: MemoryRecordStore (tests, embedding) and JsonRecordStore,
which keeps one JSON file per collection written atomically.
"""
from __future__ import annotations

import contextlib
import copy
import fcntl
import json
import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol

from storage.atomic import atomic_write_text
from worker.errors import ConcurrentUpdate, PersistenceError, RecordStoreError

logger = logging.getLogger(__name__)

CERTIFICATES = "certificates"
DOMAINS = "domains"
PROJECTS = "projects"

FANOUT_LIMIT = 1000
SAVE_ATTEMPTS = 3

# Collections with a unique key; a second insert for the same value is rejected
UNIQUE_KEYS = {CERTIFICATES: "domain"}


class DuplicateRecord(PersistenceError):
    pass


def new_id() -> str:
    """Time-ordered id: microsecond timestamp in hex plus a random tail."""
    return f"{time.time_ns() // 1000:013x}{secrets.token_hex(2)}"


# ─── Store contract ────────────────────────────────────────────────────────────


class RecordStore(Protocol):
    def find_one(self, collection: str, filters: dict) -> Optional[dict]: ...

    def find(self, collection: str, filters: dict, limit: int = 25) -> List[dict]: ...

    def find_first(self, collection: str, order_by: str = "$id") -> Optional[dict]: ...

    def create_document(self, collection: str, document: dict) -> dict: ...

    def update_document(
        self,
        collection: str,
        record_id: str,
        document: dict,
        expected_version: Optional[int] = None,
    ) -> dict: ...

    def delete_cached_document(self, collection: str, record_id: str) -> None: ...


class _DocumentStore:
    """Shared query / versioning logic; subclasses own loading and saving."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # Subclass hooks
    @contextlib.contextmanager
    def _collection(self, collection: str, write: bool = False) -> Iterator[Dict[str, dict]]:
        raise NotImplementedError

    # ── Reads ──────────────────────────────────────────────────────────────

    def find(self, collection: str, filters: dict, limit: int = 25) -> List[dict]:
        with self._collection(collection) as docs:
            matches = [
                d for _, d in sorted(docs.items())
                if all(d.get(k) == v for k, v in filters.items())
            ]
        return copy.deepcopy(matches[:limit])

    def find_one(self, collection: str, filters: dict) -> Optional[dict]:
        found = self.find(collection, filters, limit=1)
        return found[0] if found else None

    def find_first(self, collection: str, order_by: str = "$id") -> Optional[dict]:
        with self._collection(collection) as docs:
            if not docs:
                return None
            first = min(docs.values(), key=lambda d: str(d.get(order_by, "")))
        return copy.deepcopy(first)

    # ── Writes ─────────────────────────────────────────────────────────────

    def create_document(self, collection: str, document: dict) -> dict:
        doc = {k: v for k, v in document.items() if not k.startswith("$")}
        doc["$id"] = document.get("$id") or new_id()
        doc["$version"] = 1

        with self._collection(collection, write=True) as docs:
            if doc["$id"] in docs:
                raise DuplicateRecord(f"{collection}/{doc['$id']} already exists")
            unique = UNIQUE_KEYS.get(collection)
            if unique and any(d.get(unique) == doc.get(unique) for d in docs.values()):
                raise DuplicateRecord(f"{collection} already holds {unique}={doc.get(unique)!r}")
            docs[doc["$id"]] = doc

        return copy.deepcopy(doc)

    def update_document(
        self,
        collection: str,
        record_id: str,
        document: dict,
        expected_version: Optional[int] = None,
    ) -> dict:
        with self._collection(collection, write=True) as docs:
            current = docs.get(record_id)
            if current is None:
                raise RecordStoreError(f"{collection}/{record_id} not found")
            version = current.get("$version", 0)
            if expected_version is not None and expected_version != version:
                raise ConcurrentUpdate(collection, record_id, expected_version, version)

            doc = {k: v for k, v in document.items() if not k.startswith("$")}
            doc["$id"] = record_id
            doc["$version"] = version + 1
            docs[record_id] = doc

        return copy.deepcopy(doc)

    def delete_cached_document(self, collection: str, record_id: str) -> None:
        """
        Evict a document from the read cache of a caching backend.

        These stores read every query from their backing data, so there is
        nothing to evict; the call is part of the RecordStore contract.
        """
        logger.debug("No read cache to evict for %s/%s", collection, record_id)


class MemoryRecordStore(_DocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, Dict[str, dict]] = {}

    @contextlib.contextmanager
    def _collection(self, collection: str, write: bool = False) -> Iterator[Dict[str, dict]]:
        with self._lock:
            yield self._data.setdefault(collection, {})


class JsonRecordStore(_DocumentStore):
    """
    One <root>/<collection>.json file per collection.

    Writers hold an fcntl lock on <collection>.lock for the whole
    read-modify-write, so several worker processes can share a root.
    """

    def __init__(self, root: str) -> None:
        super().__init__()
        self.root = Path(root)

    def _path(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    @contextlib.contextmanager
    def _collection(self, collection: str, write: bool = False) -> Iterator[Dict[str, dict]]:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            lock_file = open(self.root / f"{collection}.lock", "a+")
        except OSError as exc:
            raise RecordStoreError(f"cannot open record store at {self.root}: {exc}") from exc

        with self._lock, lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if write else fcntl.LOCK_SH)
            try:
                docs = self._load(collection)
                yield docs
                if write:
                    try:
                        atomic_write_text(self._path(collection), json.dumps(docs, indent=2, sort_keys=True))
                    except OSError as exc:
                        raise RecordStoreError(f"cannot write {self._path(collection)}: {exc}") from exc
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self, collection: str) -> Dict[str, dict]:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text())
        except (OSError, ValueError) as exc:
            raise RecordStoreError(f"cannot read {path}: {exc}") from exc


# ─── Certificate Record Manager ───────────────────────────────────────────────


class CertificateRepository:
    """Owns certificate documents; one per domain string."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def load(self, domain: str) -> Optional[dict]:
        return self.store.find_one(CERTIFICATES, {"domain": domain})

    def save(self, domain: str, certificate: dict) -> dict:
        """
        Insert or merge-update the certificate for *domain*.

        Re-reads the stored document right before writing, lays the incoming
        fields over it (incoming wins) and writes with the version just read.
        A concurrent writer between read and write raises ConcurrentUpdate;
        the merge is then redone on the fresh snapshot, up to SAVE_ATTEMPTS.
        """
        incoming = {k: v for k, v in certificate.items() if not k.startswith("$")}
        incoming["domain"] = domain
        last_error: Optional[PersistenceError] = None

        for attempt in range(1, SAVE_ATTEMPTS + 1):
            current = self.store.find_one(CERTIFICATES, {"domain": domain})
            try:
                if current:
                    merged = {**current, **incoming}
                    return self.store.update_document(
                        CERTIFICATES, current["$id"], merged,
                        expected_version=current.get("$version"),
                    )
                return self.store.create_document(CERTIFICATES, incoming)
            except (ConcurrentUpdate, DuplicateRecord) as exc:
                logger.warning("Saving certificate for %s raced (attempt %d): %s", domain, attempt, exc)
                last_error = exc

        raise PersistenceError(
            f"Could not save certificate for {domain} after {SAVE_ATTEMPTS} attempts: {last_error}"
        )


# ─── Domain Fan-out Updater ───────────────────────────────────────────────────


class DomainFanout:
    """Points every domain record for a domain string at its certificate."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def propagate(self, certificate_id: str, domain: str, now: str) -> int:
        documents = self.store.find(DOMAINS, {"domain": domain}, limit=FANOUT_LIMIT)

        for document in documents:
            document["updated"] = now
            document["certificateId"] = certificate_id
            self.store.update_document(DOMAINS, document["$id"], document)

            if document.get("projectId"):
                self.store.delete_cached_document(PROJECTS, document["projectId"])

        logger.info("Linked %d domain record(s) for %s to certificate %s",
                    len(documents), domain, certificate_id)
        return len(documents)
