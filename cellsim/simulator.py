from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from .accounts import Account, load_accounts, lock_cell_deps
from .client import NetworkError, NodeClient, TransactionRejected
from .config import RunConfig
from .generator import TransactionGenerator
from .ledger import CellLedger
from .signer import SignerRegistry, SigningFailed
from .sync import SyncEngine, SyncStatus

log = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    SUBMITTED = "submitted"
    IDLE = "idle"
    NO_FUNDS = "no_funds"
    SYNC_FAILED = "sync_failed"
    SIGNING_FAILED = "signing_failed"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CycleReport:
    outcome: CycleOutcome
    pause_ms: int
    tx_hash: bytes | None = None


class Simulator:
    """Sync, build, sign, submit and pace, one transaction per cycle."""

    def __init__(
        self,
        config: RunConfig,
        ledger: CellLedger,
        client: NodeClient,
        sync: SyncEngine,
        generator: TransactionGenerator,
        accounts: Mapping[bytes, Account],
        signers: SignerRegistry | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.client = client
        self.sync = sync
        self.generator = generator
        self.accounts = dict(accounts)
        self.signers = signers or SignerRegistry()
        self.stop_event = stop_event or threading.Event()

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        ledger: CellLedger,
        client: NodeClient,
        stop_event: threading.Event | None = None,
        rng: random.Random | None = None,
    ) -> "Simulator":
        metadata = ledger.metadata()
        accounts = load_accounts(metadata)
        stop_event = stop_event or threading.Event()
        sync = SyncEngine(
            client,
            ledger,
            metadata.start_block,
            accounts.keys(),
            config.delay_blocks,
            fork_lookback=config.sync.fork_lookback,
            max_rollback_depth=config.sync.max_rollback_depth,
            stop_event=stop_event,
        )
        generator = TransactionGenerator(config.generator, ledger, accounts, lock_cell_deps(metadata), rng=rng)
        return cls(config, ledger, client, sync, generator, accounts, stop_event=stop_event)

    def stop(self) -> None:
        self.stop_event.set()

    def _pause(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self.stop_event.wait(milliseconds / 1000.0)

    def run_cycle(self) -> CycleReport:
        intervals = self.config.client
        try:
            status = self.sync.step()
        except NetworkError as exc:
            log.warning("sync failed: %s", exc)
            return CycleReport(CycleOutcome.SYNC_FAILED, intervals.failure_interval)

        if self.stop_event.is_set():
            return CycleReport(CycleOutcome.STOPPED, 0)
        if status is SyncStatus.IDLE and self.ledger.live_count() == 0:
            return CycleReport(CycleOutcome.IDLE, intervals.idle_interval)

        plan = self.generator.build()
        if plan is None:
            return CycleReport(CycleOutcome.NO_FUNDS, intervals.idle_interval)

        try:
            tx = self.signers.sign_transaction(plan.transaction, plan.input_lock_hashes, self.accounts)
        except SigningFailed as exc:
            log.error("signing failed: %s", exc)
            self.ledger.release(plan.reservation)
            return CycleReport(CycleOutcome.SIGNING_FAILED, intervals.failure_interval)

        tx_hash = tx.calc_tx_hash()
        try:
            accepted_hash = self.client.send_transaction(tx)
        except TransactionRejected as exc:
            log.warning("tx 0x%s rejected: %s", tx_hash.hex(), exc.message)
            self.ledger.release(plan.reservation)
            return CycleReport(CycleOutcome.REJECTED, intervals.failure_interval, tx_hash)
        except NetworkError as exc:
            log.warning("tx 0x%s not submitted: %s", tx_hash.hex(), exc)
            self.ledger.release(plan.reservation)
            return CycleReport(CycleOutcome.UNREACHABLE, intervals.failure_interval, tx_hash)

        if accepted_hash != tx_hash:
            log.warning("node reports hash 0x%s for tx 0x%s", accepted_hash.hex(), tx_hash.hex())
        self.ledger.commit(plan.reservation, tx_hash, plan.produced)
        log.info(
            "sent tx 0x%s: %d inputs, %d outputs, fee %d",
            tx_hash.hex(),
            len(tx.inputs),
            len(tx.outputs),
            plan.fee,
        )
        return CycleReport(CycleOutcome.SUBMITTED, intervals.success_interval, tx_hash)

    def wait_for_chain(self) -> bool:
        """Check the start block, retrying while the node is unreachable."""
        while not self.stop_event.is_set():
            try:
                self.sync.check_chain()
                return True
            except NetworkError as exc:
                log.warning("node not ready: %s", exc)
                self._pause(self.config.client.failure_interval)
        return False

    def run(self, max_cycles: int | None = None) -> int:
        if not self.wait_for_chain():
            return 0
        cycles = 0
        while not self.stop_event.is_set():
            if max_cycles is not None and cycles >= max_cycles:
                break
            report = self.run_cycle()
            cycles += 1
            log.debug("cycle %d: %s", cycles, report.outcome.value)
            self._pause(report.pause_ms)
        log.info("simulator stopped after %d cycles", cycles)
        return cycles
