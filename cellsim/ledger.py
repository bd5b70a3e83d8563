from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence

from .config import ConfigError, Metadata
from .models import OutPoint

log = logging.getLogger(__name__)

LEDGER_FILE = "ledger.db"
SQLITE_INT_MAX = (1 << 63) - 1


class LedgerError(RuntimeError):
    pass


class StorageCorruption(LedgerError):
    pass


class InsufficientFunds(LedgerError):
    pass


class RollbackTooDeep(LedgerError):
    pass


class CellStatus(str, Enum):
    LIVE = "live"
    RESERVED = "reserved"
    SPENT = "spent"


@dataclass(frozen=True)
class Cell:
    out_point: OutPoint
    capacity: int
    lock_hash: bytes
    status: CellStatus
    height: int
    confirmed: bool


@dataclass(frozen=True)
class ChainCursor:
    height: int
    block_hash: bytes


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    cells: tuple[Cell, ...]

    @property
    def out_points(self) -> tuple[OutPoint, ...]:
        return tuple(cell.out_point for cell in self.cells)

    @property
    def total_capacity(self) -> int:
        return sum(cell.capacity for cell in self.cells)


@dataclass(frozen=True)
class ProducedCell:
    index: int
    capacity: int
    lock_hash: bytes


@dataclass(frozen=True)
class TxDelta:
    tx_hash: bytes
    consumed: tuple[OutPoint, ...] = ()
    created: tuple[ProducedCell, ...] = ()


@dataclass(frozen=True)
class BlockDelta:
    number: int
    block_hash: bytes
    parent_hash: bytes
    transactions: tuple[TxDelta, ...] = ()


def select_smallest_first(cells: Sequence[Cell], target: int, limit: int) -> list[Cell]:
    """Pick up to ``limit`` cells, smallest capacities first, reaching ``target``.

    ``cells`` must be sorted by ascending capacity. The smallest ``limit`` cells
    are taken; while they fall short, the smallest selected cell is swapped for
    the largest unselected one. The loop ends at the ``limit`` largest cells at
    worst, so a shortfall there means no subset can reach the target.
    """
    count = min(limit, len(cells))
    if count <= 0:
        raise InsufficientFunds("no live cells")
    if sum(cell.capacity for cell in cells[len(cells) - count :]) < target:
        raise InsufficientFunds(f"live cells cannot reach {target} shannons within {count} inputs")

    selected = list(cells[:count])
    rest = list(cells[count:])
    total = sum(cell.capacity for cell in selected)
    while total < target:
        smallest = selected.pop(0)
        largest = rest.pop()
        selected.append(largest)
        total += largest.capacity - smallest.capacity
    return selected


class CellLedger:
    """SQLite-backed record of owned cells and of the synchronized chain position.

    Every mutation runs under one lock and one SQL transaction. Ingest writes an
    undo journal per block so that ``rollback`` can reverse exactly what the
    rolled-back blocks changed. Expiring a stale local transaction is not part of
    that journal and stays in effect across rollbacks.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        max_rollback_depth: int = 64,
        pending_expiry_blocks: int = 200,
    ) -> None:
        self.db_path = Path(db_path)
        self.max_rollback_depth = max(1, int(max_rollback_depth))
        self.pending_expiry_blocks = max(1, int(pending_expiry_blocks))
        self._lock = threading.RLock()
        self._init_db()

    @classmethod
    def init(cls, data_dir: str | Path, metadata: Metadata, **kwargs: Any) -> "CellLedger":
        path = Path(data_dir)
        if path.exists():
            raise LedgerError(f"the directory [{path}] already exists")
        path.mkdir(parents=True)
        ledger = cls(path / LEDGER_FILE, **kwargs)
        ledger.put_metadata(metadata)
        return ledger

    @classmethod
    def open(cls, data_dir: str | Path, **kwargs: Any) -> "CellLedger":
        path = Path(data_dir)
        if not path.is_dir() or not (path / LEDGER_FILE).is_file():
            raise LedgerError(f"the directory [{path}] doesn't hold a ledger")
        return cls(path / LEDGER_FILE, **kwargs)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        schema = """
        PRAGMA journal_mode=WAL;
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS cells (
            tx_hash TEXT NOT NULL,
            out_index INTEGER NOT NULL,
            lock_hash TEXT NOT NULL,
            capacity INTEGER NOT NULL,
            status TEXT NOT NULL,
            height INTEGER NOT NULL,
            confirmed INTEGER NOT NULL,
            reservation TEXT,
            spent_by TEXT,
            spent_height INTEGER,
            PRIMARY KEY (tx_hash, out_index)
        );

        CREATE TABLE IF NOT EXISTS block_hashes (
            number INTEGER PRIMARY KEY,
            hash TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS local_txs (
            tx_hash TEXT PRIMARY KEY,
            committed_height INTEGER NOT NULL,
            confirmed_height INTEGER
        );

        CREATE TABLE IF NOT EXISTS journal (
            number INTEGER NOT NULL,
            seq INTEGER NOT NULL,
            entry TEXT NOT NULL,
            PRIMARY KEY (number, seq)
        );

        CREATE INDEX IF NOT EXISTS idx_cells_lock_status ON cells(lock_hash, status);
        CREATE INDEX IF NOT EXISTS idx_cells_reservation ON cells(reservation);
        CREATE INDEX IF NOT EXISTS idx_cells_spent_by ON cells(spent_by);
        """
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    conn.executescript(schema)
                    conn.execute("INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?)", ("schema_version", "1"))
                    conn.commit()
            except sqlite3.DatabaseError as exc:
                raise StorageCorruption(f"cannot open ledger {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # meta
    # ------------------------------------------------------------------

    @staticmethod
    def _meta_get(conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row["value"])

    @staticmethod
    def _meta_set(cursor: sqlite3.Cursor, key: str, value: str) -> None:
        cursor.execute(
            "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def put_metadata(self, metadata: Metadata) -> None:
        with self._lock:
            with closing(self._connect()) as conn:
                self._meta_set(conn.cursor(), "metadata", metadata.to_yaml())
                conn.commit()

    def metadata(self) -> Metadata:
        with self._lock:
            with closing(self._connect()) as conn:
                raw = self._meta_get(conn, "metadata")
        if raw is None:
            raise StorageCorruption("can not find the metadata")
        try:
            return Metadata.from_yaml(raw)
        except ConfigError as exc:
            raise StorageCorruption(f"stored metadata is invalid: {exc}") from exc

    def _cursor(self, conn: sqlite3.Connection) -> ChainCursor | None:
        raw = self._meta_get(conn, "cursor")
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return ChainCursor(height=int(data["height"]), block_hash=bytes.fromhex(data["hash"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageCorruption(f"stored chain cursor is unreadable: {raw!r}") from exc

    def cursor(self) -> ChainCursor | None:
        with self._lock:
            with closing(self._connect()) as conn:
                return self._cursor(conn)

    def block_hash(self, number: int) -> bytes | None:
        with self._lock:
            with closing(self._connect()) as conn:
                row = conn.execute("SELECT hash FROM block_hashes WHERE number = ?", (int(number),)).fetchone()
        return None if row is None else bytes.fromhex(row["hash"])

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    @staticmethod
    def _decode_cell(row: sqlite3.Row) -> Cell:
        try:
            capacity = int(row["capacity"])
            if capacity < 0:
                raise ValueError("negative capacity")
            return Cell(
                out_point=OutPoint(tx_hash=bytes.fromhex(row["tx_hash"]), index=int(row["out_index"])),
                capacity=capacity,
                lock_hash=bytes.fromhex(row["lock_hash"]),
                status=CellStatus(row["status"]),
                height=int(row["height"]),
                confirmed=bool(row["confirmed"]),
            )
        except (ValueError, TypeError) as exc:
            raise StorageCorruption(f"cell record {row['tx_hash']}:{row['out_index']} is unreadable") from exc

    def live_cells(self, lock_hash: bytes | None = None) -> list[Cell]:
        with self._lock:
            with closing(self._connect()) as conn:
                rows = self._live_rows(conn, None if lock_hash is None else [lock_hash])
        return sorted((self._decode_cell(row) for row in rows), key=_cell_order)

    @staticmethod
    def _live_rows(conn: sqlite3.Connection, lock_hashes: Iterable[bytes] | None) -> list[sqlite3.Row]:
        if lock_hashes is None:
            return conn.execute("SELECT * FROM cells WHERE status = ?", (CellStatus.LIVE.value,)).fetchall()
        keys = [lock.hex() for lock in lock_hashes]
        if not keys:
            return []
        placeholders = ",".join("?" for _ in keys)
        return conn.execute(
            f"SELECT * FROM cells WHERE status = ? AND lock_hash IN ({placeholders})",
            [CellStatus.LIVE.value, *keys],
        ).fetchall()

    def live_count(self) -> int:
        with self._lock:
            with closing(self._connect()) as conn:
                row = conn.execute("SELECT COUNT(*) AS n FROM cells WHERE status = ?", (CellStatus.LIVE.value,)).fetchone()
        return int(row["n"])

    def get_cell(self, out_point: OutPoint) -> Cell | None:
        with self._lock:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT * FROM cells WHERE tx_hash = ? AND out_index = ?",
                    (out_point.tx_hash.hex(), out_point.index),
                ).fetchone()
        return None if row is None else self._decode_cell(row)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            with closing(self._connect()) as conn:
                cursor = self._cursor(conn)
                rows = conn.execute(
                    "SELECT lock_hash, status, COUNT(*) AS n, SUM(capacity) AS total "
                    "FROM cells GROUP BY lock_hash, status ORDER BY lock_hash, status"
                ).fetchall()
                pending = conn.execute(
                    "SELECT COUNT(*) AS n FROM local_txs WHERE confirmed_height IS NULL"
                ).fetchone()
        locks: dict[str, dict[str, Any]] = {}
        for row in rows:
            entry = locks.setdefault("0x" + row["lock_hash"], {})
            entry[row["status"]] = {"count": int(row["n"]), "capacity": int(row["total"] or 0)}
        return {
            "synced_height": None if cursor is None else cursor.height,
            "synced_hash": None if cursor is None else "0x" + cursor.block_hash.hex(),
            "pending_transactions": int(pending["n"]),
            "locks": locks,
        }

    def dump(self) -> dict[str, list[tuple[Any, ...]]]:
        """Every persisted row, ordered by primary key."""
        queries = {
            "meta": "SELECT * FROM meta WHERE key != 'schema_version' ORDER BY key",
            "cells": "SELECT * FROM cells ORDER BY tx_hash, out_index",
            "block_hashes": "SELECT * FROM block_hashes ORDER BY number",
            "local_txs": "SELECT * FROM local_txs ORDER BY tx_hash",
            "journal": "SELECT * FROM journal ORDER BY number, seq",
        }
        with self._lock:
            with closing(self._connect()) as conn:
                return {name: [tuple(row) for row in conn.execute(sql).fetchall()] for name, sql in queries.items()}

    # ------------------------------------------------------------------
    # reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        min_total_capacity: int,
        max_input_count: int,
        lock_hashes: Iterable[bytes] | None = None,
    ) -> Reservation:
        if max_input_count < 1:
            raise ValueError("max_input_count must be at least 1")
        with self._lock:
            with closing(self._connect()) as conn:
                rows = self._live_rows(conn, None if lock_hashes is None else list(lock_hashes))
                candidates = sorted((self._decode_cell(row) for row in rows), key=_cell_order)
                selected = select_smallest_first(candidates, int(min_total_capacity), int(max_input_count))

                reservation_id = secrets.token_hex(8)
                cursor = conn.cursor()
                for cell in selected:
                    cursor.execute(
                        "UPDATE cells SET status = ?, reservation = ? WHERE tx_hash = ? AND out_index = ? AND status = ?",
                        (
                            CellStatus.RESERVED.value,
                            reservation_id,
                            cell.out_point.tx_hash.hex(),
                            cell.out_point.index,
                            CellStatus.LIVE.value,
                        ),
                    )
                    if cursor.rowcount != 1:
                        raise LedgerError(f"cell {cell.out_point.key()} changed while being reserved")
                conn.commit()

        log.debug("reserved %d cells (%d shannons) as %s", len(selected), sum(c.capacity for c in selected), reservation_id)
        return Reservation(reservation_id=reservation_id, cells=tuple(selected))

    def release(self, reservation: Reservation) -> int:
        with self._lock:
            with closing(self._connect()) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "UPDATE cells SET status = ?, reservation = NULL WHERE reservation = ? AND status = ?",
                    (CellStatus.LIVE.value, reservation.reservation_id, CellStatus.RESERVED.value),
                )
                released = cursor.rowcount
                conn.commit()
        log.debug("released %d cells of reservation %s", released, reservation.reservation_id)
        return released

    def commit(self, reservation: Reservation, tx_hash: bytes, produced: Sequence[ProducedCell]) -> None:
        """Spend the reserved cells and credit ``produced`` as live, unconfirmed cells."""
        tx_key = tx_hash.hex()
        with self._lock:
            with closing(self._connect()) as conn:
                chain_cursor = self._cursor(conn)
                if chain_cursor is None:
                    raise LedgerError("cannot commit before the ledger is synchronized")

                cursor = conn.cursor()
                spent = 0
                for out_point in reservation.out_points:
                    cursor.execute(
                        "UPDATE cells SET status = ?, reservation = NULL, spent_by = ? "
                        "WHERE tx_hash = ? AND out_index = ? AND reservation = ?",
                        (
                            CellStatus.SPENT.value,
                            tx_key,
                            out_point.tx_hash.hex(),
                            out_point.index,
                            reservation.reservation_id,
                        ),
                    )
                    spent += cursor.rowcount
                if spent == 0 and reservation.cells:
                    raise LedgerError(f"reservation {reservation.reservation_id} is not active")
                if spent != len(reservation.cells):
                    # The connection closes uncommitted, discarding the partial spend above.
                    raise LedgerError(
                        f"reservation {reservation.reservation_id}: "
                        f"{len(reservation.cells) - spent} of {len(reservation.cells)} cells are no longer reserved"
                    )

                for cell in produced:
                    _check_capacity(cell.capacity)
                    cursor.execute(
                        "INSERT OR IGNORE INTO cells(tx_hash, out_index, lock_hash, capacity, status, height, confirmed) "
                        "VALUES(?, ?, ?, ?, ?, ?, 0)",
                        (tx_key, cell.index, cell.lock_hash.hex(), cell.capacity, CellStatus.LIVE.value, chain_cursor.height),
                    )
                cursor.execute(
                    "INSERT OR REPLACE INTO local_txs(tx_hash, committed_height, confirmed_height) VALUES(?, ?, NULL)",
                    (tx_key, chain_cursor.height),
                )
                conn.commit()
        log.debug("committed tx 0x%s: %d inputs, %d outputs", tx_key, len(reservation.cells), len(produced))

    # ------------------------------------------------------------------
    # chain synchronization
    # ------------------------------------------------------------------

    def ingest(self, block: BlockDelta) -> None:
        with self._lock:
            with closing(self._connect()) as conn:
                chain_cursor = self._cursor(conn)
                if chain_cursor is not None:
                    if block.number != chain_cursor.height + 1:
                        raise LedgerError(f"block #{block.number} does not follow synced height {chain_cursor.height}")
                    if block.parent_hash != chain_cursor.block_hash:
                        raise LedgerError(f"block #{block.number} does not extend the synced block")

                cursor = conn.cursor()
                journal = _Journal(cursor, block.number)
                local_pending = {
                    row["tx_hash"]
                    for row in conn.execute("SELECT tx_hash FROM local_txs WHERE confirmed_height IS NULL").fetchall()
                }

                for tx in block.transactions:
                    tx_key = tx.tx_hash.hex()
                    if tx_key in local_pending:
                        cursor.execute("UPDATE local_txs SET confirmed_height = ? WHERE tx_hash = ?", (block.number, tx_key))
                        journal.append({"op": "local_confirm", "tx": tx_key})

                    for out_point in tx.consumed:
                        key = (out_point.tx_hash.hex(), out_point.index)
                        cursor.execute(
                            "UPDATE cells SET status = ?, reservation = NULL, spent_height = ? "
                            "WHERE tx_hash = ? AND out_index = ? AND spent_height IS NULL",
                            (CellStatus.SPENT.value, block.number, *key),
                        )
                        if cursor.rowcount:
                            journal.append({"op": "spend", "cell": list(key)})

                    for produced in tx.created:
                        _check_capacity(produced.capacity)
                        key = (tx_key, produced.index)
                        row = conn.execute(
                            "SELECT height, confirmed FROM cells WHERE tx_hash = ? AND out_index = ?", key
                        ).fetchone()
                        if row is None:
                            cursor.execute(
                                "INSERT INTO cells(tx_hash, out_index, lock_hash, capacity, status, height, confirmed) "
                                "VALUES(?, ?, ?, ?, ?, ?, 1)",
                                (*key, produced.lock_hash.hex(), produced.capacity, CellStatus.LIVE.value, block.number),
                            )
                            journal.append({"op": "insert", "cell": list(key)})
                        elif not row["confirmed"]:
                            cursor.execute(
                                "UPDATE cells SET confirmed = 1, height = ? WHERE tx_hash = ? AND out_index = ?",
                                (block.number, *key),
                            )
                            journal.append({"op": "confirm", "cell": list(key), "height": int(row["height"])})

                self._expire_local_txs(conn, cursor, block.number)
                self._prune(cursor, block.number)
                cursor.execute(
                    "INSERT OR REPLACE INTO block_hashes(number, hash) VALUES(?, ?)", (block.number, block.block_hash.hex())
                )
                self._meta_set(cursor, "cursor", json.dumps({"height": block.number, "hash": block.block_hash.hex()}))
                conn.commit()

    def _expire_local_txs(self, conn: sqlite3.Connection, cursor: sqlite3.Cursor, number: int) -> None:
        # Expiry is a local decision: it is not journaled, so a rollback never revives an expired tx.
        stale = conn.execute(
            "SELECT tx_hash FROM local_txs "
            "WHERE confirmed_height IS NULL AND committed_height + ? < ? ORDER BY committed_height, tx_hash",
            (self.pending_expiry_blocks, number),
        ).fetchall()
        for row in stale:
            tx_key = row["tx_hash"]
            cursor.execute("DELETE FROM cells WHERE tx_hash = ? AND confirmed = 0", (tx_key,))
            cursor.execute(
                "UPDATE cells SET status = ?, spent_by = NULL WHERE spent_by = ? AND spent_height IS NULL",
                (CellStatus.LIVE.value, tx_key),
            )
            restored = cursor.rowcount
            cursor.execute("DELETE FROM local_txs WHERE tx_hash = ?", (tx_key,))
            log.warning(
                "local tx 0x%s was not confirmed within %d blocks; restored %d input cells",
                tx_key,
                self.pending_expiry_blocks,
                restored,
            )

    def _prune(self, cursor: sqlite3.Cursor, number: int) -> None:
        horizon = number - self.max_rollback_depth
        if horizon < 0:
            return
        cursor.execute(
            "DELETE FROM cells WHERE status = ? AND spent_height IS NOT NULL AND spent_height <= ?",
            (CellStatus.SPENT.value, horizon),
        )
        cursor.execute("DELETE FROM block_hashes WHERE number < ?", (horizon,))
        cursor.execute("DELETE FROM journal WHERE number <= ?", (horizon,))
        cursor.execute("DELETE FROM local_txs WHERE confirmed_height IS NOT NULL AND confirmed_height <= ?", (horizon,))

    def rollback(self, to_height: int) -> ChainCursor:
        """Undo every block above ``to_height`` and move the cursor back to it."""
        with self._lock:
            with closing(self._connect()) as conn:
                chain_cursor = self._cursor(conn)
                if chain_cursor is None:
                    raise RollbackTooDeep("nothing has been synchronized yet")
                if to_height >= chain_cursor.height:
                    if to_height == chain_cursor.height:
                        return chain_cursor
                    raise LedgerError(f"cannot roll back forward to #{to_height} from #{chain_cursor.height}")
                if chain_cursor.height - to_height > self.max_rollback_depth:
                    raise RollbackTooDeep(
                        f"rollback to #{to_height} exceeds the retained depth of {self.max_rollback_depth} blocks"
                    )
                row = conn.execute("SELECT hash FROM block_hashes WHERE number = ?", (to_height,)).fetchone()
                if row is None:
                    raise RollbackTooDeep(f"block #{to_height} is not in the retained history")

                cursor = conn.cursor()
                entries = conn.execute(
                    "SELECT number, seq, entry FROM journal WHERE number > ? ORDER BY number DESC, seq DESC",
                    (to_height,),
                ).fetchall()
                for entry_row in entries:
                    try:
                        entry = json.loads(entry_row["entry"])
                    except json.JSONDecodeError as exc:
                        raise StorageCorruption(
                            f"journal entry {entry_row['number']}/{entry_row['seq']} is unreadable"
                        ) from exc
                    self._undo(cursor, entry)

                cursor.execute("DELETE FROM journal WHERE number > ?", (to_height,))
                cursor.execute("DELETE FROM block_hashes WHERE number > ?", (to_height,))
                restored = ChainCursor(height=to_height, block_hash=bytes.fromhex(row["hash"]))
                self._meta_set(cursor, "cursor", json.dumps({"height": restored.height, "hash": row["hash"]}))
                conn.commit()

        log.info("rolled back %d blocks to #%d", chain_cursor.height - to_height, to_height)
        return restored

    @staticmethod
    def _undo(cursor: sqlite3.Cursor, entry: dict[str, Any]) -> None:
        op = entry.get("op")
        if op == "insert":
            row = cursor.execute(
                "SELECT status, reservation FROM cells WHERE tx_hash = ? AND out_index = ?", entry["cell"]
            ).fetchone()
            if row is not None and row["status"] == CellStatus.RESERVED.value:
                raise LedgerError(
                    f"cell {entry['cell'][0]}:{entry['cell'][1]} is held by reservation {row['reservation']}; "
                    "release it before rolling back"
                )
            cursor.execute("DELETE FROM cells WHERE tx_hash = ? AND out_index = ?", entry["cell"])
        elif op == "confirm":
            cursor.execute(
                "UPDATE cells SET confirmed = 0, height = ? WHERE tx_hash = ? AND out_index = ?",
                (entry["height"], *entry["cell"]),
            )
        elif op == "spend":
            cursor.execute(
                "UPDATE cells SET spent_height = NULL, "
                "status = CASE WHEN spent_by IS NULL THEN ? ELSE ? END "
                "WHERE tx_hash = ? AND out_index = ?",
                (CellStatus.LIVE.value, CellStatus.SPENT.value, *entry["cell"]),
            )
        elif op == "local_confirm":
            cursor.execute("UPDATE local_txs SET confirmed_height = NULL WHERE tx_hash = ?", (entry["tx"],))
        else:
            raise StorageCorruption(f"unknown journal operation {op!r}")


class _Journal:
    def __init__(self, cursor: sqlite3.Cursor, number: int) -> None:
        self._cursor = cursor
        self._number = number
        self._seq = 0

    def append(self, entry: dict[str, Any]) -> None:
        self._cursor.execute(
            "INSERT INTO journal(number, seq, entry) VALUES(?, ?, ?)",
            (self._number, self._seq, json.dumps(entry, sort_keys=True, separators=(",", ":"))),
        )
        self._seq += 1


def _cell_order(cell: Cell) -> tuple[int, bytes, int]:
    return (cell.capacity, cell.out_point.tx_hash, cell.out_point.index)


def _check_capacity(capacity: int) -> None:
    if not 0 <= int(capacity) <= SQLITE_INT_MAX:
        raise LedgerError(f"capacity {capacity} is out of range")
