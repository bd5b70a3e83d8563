from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Collection, Iterable

from .client import NodeClient
from .config import BlockMeta
from .ledger import BlockDelta, CellLedger, ChainCursor, ProducedCell, RollbackTooDeep, TxDelta
from .models import BlockView

log = logging.getLogger(__name__)


class SyncError(RuntimeError):
    pass


class ChainMismatch(SyncError):
    pass


class ForkDetected(SyncError):
    def __init__(self, number: int, expected_parent: bytes, actual_parent: bytes) -> None:
        super().__init__(
            f"block #{number} has parent 0x{actual_parent.hex()}, synced block is 0x{expected_parent.hex()}"
        )
        self.number = number
        self.expected_parent = expected_parent
        self.actual_parent = actual_parent


class ForkTooDeep(SyncError):
    pass


class SyncStatus(str, Enum):
    SYNCED = "synced"
    IDLE = "idle"


def block_delta(block: BlockView, tracked_locks: Collection[bytes]) -> BlockDelta:
    """Reduce a block to the changes that matter to the tracked accounts.

    Every input is kept because ownership of a spent out point is only known
    to the ledger; outputs are kept only for tracked locks.
    """
    transactions = []
    for tx in block.transactions:
        created = []
        for index, (capacity, lock) in enumerate(tx.outputs):
            lock_hash = lock.calc_hash()
            if lock_hash in tracked_locks:
                created.append(ProducedCell(index=index, capacity=capacity, lock_hash=lock_hash))
        if tx.inputs or created:
            transactions.append(TxDelta(tx_hash=tx.hash, consumed=tx.inputs, created=tuple(created)))
    return BlockDelta(
        number=block.number,
        block_hash=block.hash,
        parent_hash=block.parent_hash,
        transactions=tuple(transactions),
    )


class SyncEngine:
    def __init__(
        self,
        client: NodeClient,
        ledger: CellLedger,
        start_block: BlockMeta,
        tracked_locks: Iterable[bytes],
        delay_blocks: int,
        fork_lookback: int = 3,
        max_rollback_depth: int = 64,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.ledger = ledger
        self.start_block = start_block
        self.tracked_locks = frozenset(tracked_locks)
        self.delay_blocks = max(0, int(delay_blocks))
        self.fork_lookback = max(1, int(fork_lookback))
        self.max_rollback_depth = max(self.fork_lookback, int(max_rollback_depth))
        self.stop_event = stop_event or threading.Event()

    def check_chain(self) -> None:
        """The node must carry the provisioned start block."""
        header = self.client.get_header_by_number(self.start_block.number)
        if header is None:
            raise ChainMismatch(f"the node does not have the start block #{self.start_block.number}")
        if header.hash != self.start_block.hash:
            raise ChainMismatch(
                f"start block #{self.start_block.number} is 0x{header.hash.hex()} on the node, "
                f"expected 0x{self.start_block.hash.hex()}"
            )

    def step(self) -> SyncStatus:
        tip = self.client.get_tip_header()
        target = tip.number - self.delay_blocks
        ingested = 0
        rolled_back = 0

        while not self.stop_event.is_set():
            cursor = self.ledger.cursor()
            number = self.start_block.number if cursor is None else cursor.height + 1
            if number > target:
                break
            block = self.client.get_block_by_number(number)
            if block is None:
                log.info("block #%d is not available on the node yet", number)
                break
            try:
                self._check_block(block, cursor)
            except ForkDetected as fork:
                log.warning("fork detected: %s", fork)
                rolled_back += self._rollback(cursor, rolled_back)
                continue
            self.ledger.ingest(block_delta(block, self.tracked_locks))
            ingested += 1

        if ingested:
            log.info("synchronized %d blocks, now at #%d (tip #%d)", ingested, self.ledger.cursor().height, tip.number)
            return SyncStatus.SYNCED
        return SyncStatus.IDLE

    def _check_block(self, block: BlockView, cursor: ChainCursor | None) -> None:
        if cursor is None:
            if block.hash != self.start_block.hash:
                raise ChainMismatch(
                    f"start block #{block.number} is 0x{block.hash.hex()}, expected 0x{self.start_block.hash.hex()}"
                )
            return
        if block.parent_hash != cursor.block_hash:
            raise ForkDetected(block.number, cursor.block_hash, block.parent_hash)

    def _rollback(self, cursor: ChainCursor | None, already: int) -> int:
        # A fork below the start block means the provisioned chain is gone.
        if cursor is None or cursor.height <= self.start_block.number:
            raise ForkTooDeep(f"the fork reaches below the start block #{self.start_block.number}")
        to_height = max(self.start_block.number, cursor.height - self.fork_lookback)
        depth = cursor.height - to_height
        if already + depth > self.max_rollback_depth:
            raise ForkTooDeep(f"fork rollback would exceed {self.max_rollback_depth} blocks")
        try:
            self.ledger.rollback(to_height)
        except RollbackTooDeep as exc:
            raise ForkTooDeep(str(exc)) from exc
        return depth
