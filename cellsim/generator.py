from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Mapping, Sequence

from .accounts import Account
from .config import ConfigError, GeneratorConfig, NormalDistributionConfig
from .ledger import Cell, CellLedger, InsufficientFunds, ProducedCell, Reservation
from .models import CellDep, CellInput, CellOutput, LockScheme, Transaction
from .molecule import U64_MAX

log = logging.getLogger(__name__)


class GeneratorError(RuntimeError):
    pass


class CapacityError(GeneratorError):
    pass


class InputSizeGenerator:
    """Expected input counts drawn from a normal distribution, rounded up."""

    def __init__(self, distribution: NormalDistributionConfig, rng: random.Random) -> None:
        self.mean = float(distribution.mean)
        self.std_dev = float(distribution.std_dev)
        self.rng = rng

    def sample(self) -> int:
        while True:
            value = self.rng.gauss(self.mean, self.std_dev)
            if 0 < value < 1000:
                return math.ceil(value)


class LockPicker:
    def __init__(self, accounts: Mapping[bytes, Account], weights: Mapping[LockScheme, int], rng: random.Random) -> None:
        ordered = [accounts[key] for key in sorted(accounts)]
        self.accounts = [account for account in ordered if weights.get(account.lock_id, 0) > 0]
        self.weights = [weights[account.lock_id] for account in self.accounts]
        if not self.accounts:
            raise ConfigError("no account has a lock scheme with a positive weight")
        self.rng = rng

    def pick(self) -> Account:
        return self.rng.choices(self.accounts, weights=self.weights, k=1)[0]


@dataclass(frozen=True)
class TransactionPlan:
    transaction: Transaction
    reservation: Reservation
    input_lock_hashes: tuple[bytes, ...]
    produced: tuple[ProducedCell, ...]

    @property
    def input_capacity(self) -> int:
        return self.reservation.total_capacity

    @property
    def fee(self) -> int:
        return self.input_capacity - self.transaction.total_output_capacity()


def order_inputs(cells: Sequence[Cell]) -> list[Cell]:
    """Put the first cell of every lock group ahead of the rest.

    Witness ``i`` then belongs to the lock group whose first input is ``i``.
    """
    by_lock = sorted(cells, key=lambda cell: (cell.lock_hash, cell.capacity, cell.out_point))
    leaders: list[Cell] = []
    followers: list[Cell] = []
    previous = None
    for cell in by_lock:
        (leaders if cell.lock_hash != previous else followers).append(cell)
        previous = cell.lock_hash
    return leaders + followers


def plan_output_capacities(total: int, config: GeneratorConfig) -> list[int]:
    """Split ``total`` minus the fee into outputs, change first."""
    if total < 0 or total > U64_MAX:
        raise CapacityError(f"input capacity {total} is out of range")
    available = total - config.tx_fee
    if available < config.output_min_capacity:
        raise CapacityError(f"inputs of {total} shannons cannot fund one output plus the fee")

    count = max(1, min(available // config.output_capacity, config.outputs_limit))
    change = available - config.output_capacity * (count - 1)
    capacities = [change] + [config.output_capacity] * (count - 1)
    if change < config.output_min_capacity and count > 1:
        capacities = [capacities[1] + change] + capacities[2:]

    for capacity in capacities:
        if capacity < config.output_min_capacity or capacity > U64_MAX:
            raise CapacityError(f"output capacity {capacity} violates the output bounds")
    if sum(capacities) + config.tx_fee != total:
        raise CapacityError(f"outputs {sum(capacities)} plus fee {config.tx_fee} do not balance inputs {total}")
    return capacities


class TransactionGenerator:
    def __init__(
        self,
        config: GeneratorConfig,
        ledger: CellLedger,
        accounts: Mapping[bytes, Account],
        cell_deps: Mapping[LockScheme, Sequence[CellDep]],
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.accounts = dict(accounts)
        self.cell_deps = {scheme: tuple(deps) for scheme, deps in cell_deps.items()}
        self.rng = rng or random.Random()
        self.input_sizes = InputSizeGenerator(config.inputs_size_normal_distribution, self.rng)
        self.locks = LockPicker(self.accounts, config.locks_weights, self.rng)

    @property
    def target_capacity(self) -> int:
        return self.config.output_min_capacity + self.config.tx_fee

    def build(self) -> TransactionPlan | None:
        """Reserve inputs and build an unsigned transaction, or ``None`` when funds are short."""
        input_count = min(self.input_sizes.sample(), self.config.inputs_limit)
        preferred = self.locks.pick()
        try:
            reservation = self.ledger.reserve(self.target_capacity, input_count, [preferred.lock_hash])
        except InsufficientFunds:
            try:
                reservation = self.ledger.reserve(self.target_capacity, input_count)
            except InsufficientFunds as exc:
                log.debug("no transaction this cycle: %s", exc)
                return None

        try:
            return self._plan(reservation)
        except Exception:
            self.ledger.release(reservation)
            raise

    def _plan(self, reservation: Reservation) -> TransactionPlan:
        cells = order_inputs(reservation.cells)
        for cell in cells:
            if cell.lock_hash not in self.accounts:
                raise GeneratorError(f"reserved cell {cell.out_point.key()} has an untracked lock")

        capacities = plan_output_capacities(reservation.total_capacity, self.config)
        owners = [self.locks.pick() for _ in capacities]
        outputs = [CellOutput(capacity=capacity, lock=owner.script) for capacity, owner in zip(capacities, owners)]
        outputs[1:] = sorted(outputs[1:], key=lambda output: output.lock.serialize())

        schemes = {self.accounts[cell.lock_hash].lock_id for cell in cells}
        cell_deps: dict[bytes, CellDep] = {}
        for scheme in schemes:
            for dep in self.cell_deps.get(scheme, ()):
                cell_deps[dep.serialize()] = dep
        if not cell_deps:
            raise GeneratorError(f"no cell deps configured for {sorted(scheme.value for scheme in schemes)}")

        tx = Transaction(
            inputs=[CellInput(previous_output=cell.out_point) for cell in cells],
            outputs=outputs,
            cell_deps=[cell_deps[key] for key in sorted(cell_deps)],
            outputs_data=[b"" for _ in outputs],
        )
        produced = tuple(
            ProducedCell(index=index, capacity=output.capacity, lock_hash=output.lock.calc_hash())
            for index, output in enumerate(outputs)
        )
        log.debug(
            "built tx with %d inputs (%d shannons) and %d outputs",
            len(cells),
            reservation.total_capacity,
            len(outputs),
        )
        return TransactionPlan(
            transaction=tx,
            reservation=reservation,
            input_lock_hashes=tuple(cell.lock_hash for cell in cells),
            produced=produced,
        )
