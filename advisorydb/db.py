"""Nested-bucket key-value store and the advisory database operations built on it."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from advisorydb.types import (
    Advisory,
    DataSource,
    SourceID,
    Vulnerability,
    VulnerabilityDetail,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

ADVISORY_DETAIL_BUCKET = "advisory-detail"
DATA_SOURCE_BUCKET = "data-source"
VULNERABILITY_BUCKET = "vulnerability"
VULNERABILITY_DETAIL_BUCKET = "vulnerability-detail"
VULNERABILITY_ID_BUCKET = "vulnerability-id"

REDHAT_CPE_ROOT_BUCKET = "Red Hat CPE"
REDHAT_REPO_BUCKET = "repository"
REDHAT_NVR_BUCKET = "nvr"
REDHAT_CPE_BUCKET = "cpe"  # Only for debugging; not used while scanning.

_ROOT = 0
_SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id INTEGER PRIMARY KEY,
    parent INTEGER NOT NULL,
    name TEXT NOT NULL,
    value BLOB,
    UNIQUE (parent, name)
)
"""
_DELETE_SUBTREE = """
WITH RECURSIVE sub(id) AS (
    SELECT ?
    UNION ALL
    SELECT n.id FROM nodes n JOIN sub ON n.parent = sub.id
)
DELETE FROM nodes WHERE id IN (SELECT id FROM sub)
"""

T = TypeVar("T")


class DBError(Exception):
    """Raised when a database operation fails."""


@contextmanager
def _wrapped(message: str) -> Iterator[None]:
    try:
        yield
    except DBError as exc:
        raise DBError(f"{message}: {exc}") from exc


class Transaction:
    """A read or write transaction over a store."""

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self.writable = writable
        self._done = False

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        if self._done:
            raise DBError("tx closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise DBError(f"storage error: {exc}") from exc

    def _require_writable(self) -> None:
        if not self.writable:
            raise DBError("tx not writable")

    def _child(self, parent: int, name: str) -> tuple[int, bytes | None] | None:
        row = self._execute(
            "SELECT id, value FROM nodes WHERE parent = ? AND name = ?", (parent, name)
        ).fetchone()
        if row is None:
            return None
        node_id, value = row
        return node_id, (bytes(value) if value is not None else None)

    def _children(self, parent: int) -> list[tuple[str, bytes | None]]:
        rows = self._execute(
            "SELECT name, value FROM nodes WHERE parent = ? ORDER BY name", (parent,)
        ).fetchall()
        return [(name, bytes(value) if value is not None else None) for name, value in rows]

    def _sub_bucket(self, parent: int, name: str) -> Bucket | None:
        child = self._child(parent, name)
        if child is None or child[1] is not None:
            return None
        return Bucket(self, child[0])

    def _create_bucket(self, parent: int, name: str) -> Bucket:
        self._require_writable()
        if not name:
            raise DBError("bucket name required")
        child = self._child(parent, name)
        if child is not None:
            if child[1] is not None:
                raise DBError("incompatible value")
            return Bucket(self, child[0])
        cursor = self._execute(
            "INSERT INTO nodes (parent, name, value) VALUES (?, ?, NULL)", (parent, name)
        )
        return Bucket(self, cursor.lastrowid)

    def _put(self, parent: int, key: str, value: bytes) -> None:
        self._require_writable()
        if not key:
            raise DBError("key required")
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"value must be bytes, not {type(value).__name__}")
        child = self._child(parent, key)
        if child is None:
            self._execute(
                "INSERT INTO nodes (parent, name, value) VALUES (?, ?, ?)",
                (parent, key, bytes(value)),
            )
        elif child[1] is None:
            raise DBError("incompatible value")
        else:
            self._execute("UPDATE nodes SET value = ? WHERE id = ?", (bytes(value), child[0]))

    def bucket(self, name: str) -> Bucket | None:
        """The root-level bucket with this name, or None."""
        return self._sub_bucket(_ROOT, name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        return self._create_bucket(_ROOT, name)

    def delete_bucket(self, name: str) -> None:
        """Delete a root-level bucket and everything under it."""
        self._require_writable()
        child = self._child(_ROOT, name)
        if child is None:
            raise DBError("bucket not found")
        if child[1] is not None:
            raise DBError("incompatible value")
        self._execute(_DELETE_SUBTREE, (child[0],))

    def keys_with_prefix(self, prefix: str) -> list[str]:
        """Root-level bucket names starting with prefix, in byte order."""
        rows = self._execute(
            "SELECT name FROM nodes WHERE parent = ? AND name >= ? ORDER BY name",
            (_ROOT, prefix),
        )
        names = []
        for (name,) in rows.fetchall():
            if not name.startswith(prefix):
                break
            names.append(name)
        return names


class Bucket:
    """A bucket of keys; values are bytes and nested buckets have no value."""

    def __init__(self, tx: Transaction, node_id: int) -> None:
        self._tx = tx
        self._id = node_id

    def get(self, key: str) -> bytes | None:
        child = self._tx._child(self._id, key)
        return None if child is None else child[1]

    def put(self, key: str, value: bytes) -> None:
        self._tx._put(self._id, key, value)

    def bucket(self, name: str) -> Bucket | None:
        return self._tx._sub_bucket(self._id, name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        return self._tx._create_bucket(self._id, name)

    def items(self) -> list[tuple[str, bytes | None]]:
        """All (key, value) pairs in key order; nested buckets have value None."""
        return self._tx._children(self._id)


class Store:
    """A file-backed store of nested buckets."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)
        if not os.path.exists(self.path):
            os.close(os.open(self.path, os.O_CREAT | os.O_WRONLY, 0o600))
        self._lock = threading.RLock()
        try:
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                self.path, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as exc:
            raise DBError(f"failed to open db: {exc}") from exc
        try:
            self._conn.execute(_SCHEMA)
        except sqlite3.Error as exc:
            self._conn.close()
            self._conn = None
            raise DBError(f"invalid database: {exc}") from exc

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DBError("database not open")
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """A read-only transaction; inside a write transaction it shares that one."""
        with self._lock:
            conn = self._require_open()
            if conn.in_transaction:
                yield Transaction(conn, writable=False)
                return
            conn.execute("BEGIN")
            tx = Transaction(conn, writable=False)
            try:
                yield tx
            finally:
                tx._done = True
                conn.execute("ROLLBACK")

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """A write transaction, committed on success and rolled back on error."""
        with self._lock:
            conn = self._require_open()
            if conn.in_transaction:
                raise DBError("a transaction is already open")
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise DBError(f"failed to begin transaction: {exc}") from exc
            tx = Transaction(conn, writable=True)
            try:
                yield tx
            except BaseException:
                tx._done = True
                conn.execute("ROLLBACK")
                raise
            tx._done = True
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                conn.execute("ROLLBACK")
                raise DBError(f"failed to commit: {exc}") from exc

    def batch(self, fn: Callable[[Transaction], T]) -> T:
        with self.update() as tx:
            return fn(tx)

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


_db: Store | None = None


def db_dir(cache_dir: str | os.PathLike[str]) -> str:
    return os.path.join(os.fspath(cache_dir), "db")


def db_path(cache_dir: str | os.PathLike[str]) -> str:
    return os.path.join(db_dir(cache_dir), "trivy.db")


def init(cache_dir: str | os.PathLike[str]) -> None:
    """Open the database under cache_dir, replacing it when it is broken."""
    global _db
    path = db_path(cache_dir)
    try:
        os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    except OSError as exc:
        raise DBError(f"failed to mkdir: {exc}") from exc
    close()
    try:
        _db = Store(path)
    except DBError as exc:
        logger.debug("removing broken database %s: %s", path, exc)
        os.remove(path)
        with _wrapped("failed to open db"):
            _db = Store(path)


def close() -> None:
    """Close the database if it is open."""
    global _db
    if _db is not None:
        _db.close()
        _db = None


def _store() -> Store:
    if _db is None:
        raise DBError("database is not initialized")
    return _db


def _encode(value: Any) -> bytes:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        value = to_dict()
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise DBError(f"failed to marshal JSON: {exc}") from exc


def _decode_object(content: bytes, cls: Any, message: str) -> Any:
    try:
        data = json.loads(content)
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return cls.from_dict(data)
    except (ValueError, TypeError, KeyError) as exc:
        raise DBError(f"{message}: {exc}") from exc


@dataclass(frozen=True)
class Value:
    """A stored value together with the data source of its root bucket."""

    source: DataSource = field(default_factory=DataSource)
    content: bytes = b""


class Config:
    """Database operations on the open store."""

    def connection(self) -> Store | None:
        return _db

    def batch_update(self, fn: Callable[[Transaction], Any]) -> None:
        with _wrapped("error in batch update"):
            _store().batch(fn)

    def _put(self, tx: Transaction, bkt_names: Sequence[str], key: str, value: Any) -> None:
        if not bkt_names:
            raise DBError("empty bucket name")
        with _wrapped(f"failed to create '{bkt_names[0]}' bucket"):
            bkt = tx.create_bucket_if_not_exists(bkt_names[0])
        for name in bkt_names[1:]:
            with _wrapped("failed to create a bucket"):
                bkt = bkt.create_bucket_if_not_exists(name)
        bkt.put(key, _encode(value))

    def _get(self, bkt_names: Sequence[str], key: str) -> bytes | None:
        with _wrapped("failed to get data from db"), _store().view() as tx:
            if not bkt_names:
                raise DBError("empty bucket name")
            bkt = tx.bucket(bkt_names[0])
            for name in bkt_names[1:]:
                if bkt is None:
                    break
                bkt = bkt.bucket(name)
            return None if bkt is None else bkt.get(key)

    def _for_each(self, bkt_names: Sequence[str]) -> dict[str, Value]:
        if len(bkt_names) < 2:
            raise DBError(f"bucket must be nested: {list(bkt_names)}")
        root_name, nested = bkt_names[0], bkt_names[1:]
        values: dict[str, Value] = {}
        with _wrapped("failed to get all key/value in the specified bucket"), _store().view() as tx:
            # e.g. "pip::" scans every pip bucket; other names are taken literally.
            roots = tx.keys_with_prefix(root_name) if "::" in root_name else [root_name]
            for root in roots:
                bkt = tx.bucket(root)
                if bkt is None:
                    continue
                try:
                    source = self._get_data_source(tx, root)
                except DBError as exc:
                    logger.debug("Data source error: %s", exc)
                    source = DataSource()
                for name in nested:
                    bkt = bkt.bucket(name)
                    if bkt is None:
                        break
                if bkt is None:
                    continue
                for key, content in bkt.items():
                    if content:
                        values[key] = Value(source=source, content=content)
        return values

    def _delete_bucket(self, name: str) -> None:
        with _wrapped("failed to delete bucket"), _store().update() as tx:
            tx.delete_bucket(name)

    # Advisories

    def put_advisory(self, tx: Transaction, bkt_names: Sequence[str], key: str, advisory: Any) -> None:
        with _wrapped("failed to put advisory"):
            self._put(tx, bkt_names, key, advisory)

    def for_each_advisory(self, sources: Sequence[str], pkg_name: str) -> dict[str, Value]:
        return self._for_each([*sources, pkg_name])

    def get_advisories(self, source: str, pkg_name: str) -> list[Advisory]:
        with _wrapped("advisory foreach error"):
            values = self.for_each_advisory([source], pkg_name)
        results = []
        for vuln_id, value in values.items():
            advisory = _decode_object(value.content, Advisory, "failed to unmarshal advisory JSON")
            advisory.vulnerability_id = vuln_id
            if value.source != DataSource():
                advisory.data_source = DataSource(
                    id=value.source.id, name=value.source.name, url=value.source.url
                )
            results.append(advisory)
        return results

    # Advisory details

    def put_advisory_detail(
        self,
        tx: Transaction,
        vuln_id: str,
        pkg_name: str,
        nested_bkt_names: Sequence[str],
        advisory: Any,
    ) -> None:
        with _wrapped("failed to put advisory detail"):
            self._put(tx, [ADVISORY_DETAIL_BUCKET, vuln_id, *nested_bkt_names], pkg_name, advisory)

    def save_advisory_details(self, tx: Transaction, vuln_id: str) -> None:
        """Copy the advisories of vuln_id from the detail bucket into each vendor's bucket."""
        root = tx.bucket(ADVISORY_DETAIL_BUCKET)
        if root is None:
            return
        cve_bucket = root.bucket(vuln_id)
        if cve_bucket is None:
            return
        with _wrapped("walk advisories error"):
            self._save_advisories(tx, cve_bucket, [], vuln_id)

    def _save_advisories(
        self, tx: Transaction, bkt: Bucket | None, bkt_names: list[str], vuln_id: str
    ) -> None:
        if bkt is None:
            return
        with _wrapped("foreach error"):
            for key, content in bkt.items():
                names = [*bkt_names, key]
                if content is None:
                    with _wrapped("walk advisories error"):
                        self._save_advisories(tx, bkt.bucket(key), names, vuln_id)
                    continue
                try:
                    detail = json.loads(content)
                    if detail is not None and not isinstance(detail, dict):
                        raise ValueError(f"expected a JSON object, got {type(detail).__name__}")
                except ValueError as exc:
                    raise DBError(f"failed to unmarshall the advisory detail: {exc}") from exc
                with _wrapped("database put error"):
                    self._put(tx, names, vuln_id, detail)

    def delete_advisory_detail_bucket(self) -> None:
        self._delete_bucket(ADVISORY_DETAIL_BUCKET)

    # Data sources

    def put_data_source(self, tx: Transaction, bkt_name: str, source: DataSource) -> None:
        with _wrapped(f"failed to create {DATA_SOURCE_BUCKET} bucket"):
            bucket = tx.create_bucket_if_not_exists(DATA_SOURCE_BUCKET)
        bucket.put(bkt_name, _encode(source))

    def _get_data_source(self, tx: Transaction, bkt_name: str) -> DataSource:
        bucket = tx.bucket(DATA_SOURCE_BUCKET)
        if bucket is None:
            return DataSource()
        content = bucket.get(bkt_name)
        if content is None:
            return DataSource()
        return _decode_object(content, DataSource, "JSON unmarshal error")

    # Red Hat CPE

    def put_red_hat_repositories(
        self, tx: Transaction, repository: str, cpe_indices: Sequence[int]
    ) -> None:
        with _wrapped("Red Hat CPE error"):
            self._put(tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_REPO_BUCKET], repository, list(cpe_indices))

    def put_red_hat_nvrs(self, tx: Transaction, nvr: str, cpe_indices: Sequence[int]) -> None:
        with _wrapped("Red Hat CPE error"):
            self._put(tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_NVR_BUCKET], nvr, list(cpe_indices))

    def put_red_hat_cpes(self, tx: Transaction, cpe_index: int, cpe: str) -> None:
        with _wrapped("Red Hat CPE error"):
            self._put(tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_CPE_BUCKET], str(cpe_index), cpe)

    def red_hat_repo_to_cpes(self, repository: str) -> list[int]:
        return self._get_cpes(REDHAT_REPO_BUCKET, repository)

    def red_hat_nvr_to_cpes(self, nvr: str) -> list[int]:
        return self._get_cpes(REDHAT_NVR_BUCKET, nvr)

    def _get_cpes(self, bucket: str, key: str) -> list[int]:
        with _wrapped(f"unable to get '{key}'"):
            content = self._get([REDHAT_CPE_ROOT_BUCKET, bucket], key)
        if not content:
            return []
        try:
            cpes = json.loads(content)
            if cpes is None:
                return []
            if not isinstance(cpes, list) or not all(
                isinstance(i, int) and not isinstance(i, bool) for i in cpes
            ):
                raise ValueError("expected a list of integers")
        except ValueError as exc:
            raise DBError(f"JSON unmarshal error: {exc}") from exc
        return cpes

    # Vulnerabilities

    def put_vulnerability(self, tx: Transaction, vuln_id: str, vuln: Vulnerability) -> None:
        with _wrapped("failed to put severity"):
            self._put(tx, [VULNERABILITY_BUCKET], vuln_id, vuln)

    def get_vulnerability(self, vuln_id: str) -> Vulnerability:
        with _wrapped(f'failed to get the vulnerability "{vuln_id}"'), _store().view() as tx:
            bucket = tx.bucket(VULNERABILITY_BUCKET)
            content = bucket.get(vuln_id) if bucket is not None else None
            if content is None:
                raise DBError(f"no vulnerability details for {vuln_id}")
            return _decode_object(content, Vulnerability, "failed to unmarshal JSON")

    def put_vulnerability_detail(
        self, tx: Transaction, vuln_id: str, source: SourceID, vuln: VulnerabilityDetail
    ) -> None:
        with _wrapped("failed to put vulnerability detail"):
            self._put(tx, [VULNERABILITY_DETAIL_BUCKET, vuln_id], str(source), vuln)

    def get_vulnerability_detail(self, vuln_id: str) -> dict[SourceID, VulnerabilityDetail]:
        with _wrapped("error in NVD get"):
            values = self._for_each([VULNERABILITY_DETAIL_BUCKET, vuln_id])
        return {
            source: _decode_object(
                value.content, VulnerabilityDetail, "failed to unmarshal Vulnerability JSON"
            )
            for source, value in values.items()
        }

    def delete_vulnerability_detail_bucket(self) -> None:
        self._delete_bucket(VULNERABILITY_DETAIL_BUCKET)

    # Vulnerability IDs

    def put_vulnerability_id(self, tx: Transaction, vuln_id: str) -> None:
        with _wrapped(f"failed to create {VULNERABILITY_ID_BUCKET} bucket"):
            bucket = tx.create_bucket_if_not_exists(VULNERABILITY_ID_BUCKET)
        bucket.put(vuln_id, b"{}")

    def for_each_vulnerability_id(self, fn: Callable[[Transaction, str], Any]) -> None:
        """Call fn(tx, vuln_id) for every stored vulnerability ID in one write transaction."""

        def walk(tx: Transaction) -> None:
            bucket = tx.bucket(VULNERABILITY_ID_BUCKET)
            if bucket is None:
                raise DBError(f"no such bucket: {VULNERABILITY_ID_BUCKET}")
            with _wrapped("error in for each"):
                for vuln_id, _ in bucket.items():
                    with _wrapped("something wrong"):
                        fn(tx, vuln_id)

        _store().batch(walk)

    def delete_vulnerability_id_bucket(self) -> None:
        self._delete_bucket(VULNERABILITY_ID_BUCKET)