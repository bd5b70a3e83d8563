from __future__ import annotations

import random
import tempfile
import unittest
from pathlib import Path

from chain_fixtures import LOCK_SCRIPTS, PW_KEY, SECP_KEY, SECP_KEY_2, funding_delta, make_account, make_metadata

from cellsim.config import ConfigError, GeneratorConfig, NormalDistributionConfig
from cellsim.generator import (
    CapacityError,
    InputSizeGenerator,
    LockPicker,
    TransactionGenerator,
    order_inputs,
    plan_output_capacities,
)
from cellsim.ledger import CellLedger
from cellsim.models import BYTE_SHANNONS, LockScheme
from cellsim.molecule import U64_MAX

DEPS = {scheme: script.cell_deps for scheme, script in LOCK_SCRIPTS.items()}


def _config(**overrides) -> GeneratorConfig:
    values = {
        "inputs_limit": 4,
        "inputs_size_normal_distribution": NormalDistributionConfig(mean=2, std_dev=3),
        "outputs_limit": 8,
        "output_capacity": 100 * BYTE_SHANNONS,
        "output_min_capacity": 61 * BYTE_SHANNONS,
        "tx_fee": 1_000_000,
        "locks_weights": {LockScheme.SECP256K1_BLAKE160: 1, LockScheme.PWLOCK_K1_ACPL: 1},
    }
    values.update(overrides)
    return GeneratorConfig(**values)


class OutputPlanTest(unittest.TestCase):
    def test_change_goes_first(self) -> None:
        config = _config(outputs_limit=32)
        capacities = plan_output_capacities(350 * BYTE_SHANNONS, config)
        self.assertEqual(capacities, [150 * BYTE_SHANNONS - 1_000_000, 100 * BYTE_SHANNONS, 100 * BYTE_SHANNONS])

    def test_output_count_is_capped(self) -> None:
        config = _config(outputs_limit=2)
        capacities = plan_output_capacities(10_000 * BYTE_SHANNONS, config)
        self.assertEqual(len(capacities), 2)
        self.assertEqual(sum(capacities) + config.tx_fee, 10_000 * BYTE_SHANNONS)

    def test_single_output_below_output_capacity(self) -> None:
        config = _config()
        capacities = plan_output_capacities(70 * BYTE_SHANNONS, config)
        self.assertEqual(capacities, [70 * BYTE_SHANNONS - 1_000_000])

    def test_rejects_unfundable_or_oversized_totals(self) -> None:
        config = _config()
        with self.assertRaises(CapacityError):
            plan_output_capacities(61 * BYTE_SHANNONS, config)
        with self.assertRaises(CapacityError):
            plan_output_capacities(U64_MAX + 1, config)


class SamplingTest(unittest.TestCase):
    def test_input_sizes_stay_in_range(self) -> None:
        sizes = InputSizeGenerator(NormalDistributionConfig(mean=2, std_dev=3), random.Random(7))
        samples = [sizes.sample() for _ in range(500)]
        self.assertTrue(all(1 <= value <= 1000 for value in samples))

    def test_lock_picker_honours_weights(self) -> None:
        secp = make_account(SECP_KEY)
        pw = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        accounts = {secp.lock_hash: secp, pw.lock_hash: pw}
        picker = LockPicker(accounts, {LockScheme.PWLOCK_K1_ACPL: 1}, random.Random(1))
        self.assertEqual({picker.pick().lock_hash for _ in range(50)}, {pw.lock_hash})

        with self.assertRaises(ConfigError):
            LockPicker({secp.lock_hash: secp}, {LockScheme.PWLOCK_K1_ACPL: 1}, random.Random(1))


class TransactionGeneratorTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.ledger = CellLedger.init(Path(self._tmp.name) / "data", make_metadata())
        self.secp = make_account(SECP_KEY)
        self.secp_2 = make_account(SECP_KEY_2)
        self.pw = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        self.accounts = {account.lock_hash: account for account in (self.secp, self.secp_2, self.pw)}

    def _generator(self, config: GeneratorConfig, seed: int = 3) -> TransactionGenerator:
        return TransactionGenerator(config, self.ledger, self.accounts, DEPS, rng=random.Random(seed))

    def test_single_cell_two_outputs(self) -> None:
        self.ledger.ingest(funding_delta(0, [100_000_000], self.secp.lock_hash))
        config = _config(
            inputs_limit=1,
            outputs_limit=2,
            output_capacity=100,
            output_min_capacity=61,
            tx_fee=1_000_000,
            locks_weights={LockScheme.SECP256K1_BLAKE160: 1},
        )

        plan = self._generator(config).build()

        self.assertIsNotNone(plan)
        self.assertEqual(len(plan.transaction.inputs), 1)
        self.assertEqual([output.capacity for output in plan.transaction.outputs], [98_999_900, 100])
        self.assertEqual(plan.fee, 1_000_000)
        self.assertEqual(plan.transaction.outputs_data, [b"", b""])
        self.assertEqual(plan.transaction.cell_deps, list(DEPS[LockScheme.SECP256K1_BLAKE160]))

    def test_balance_and_bounds_hold(self) -> None:
        capacities = [(61 + 7 * index) * BYTE_SHANNONS for index in range(30)]
        self.ledger.ingest(
            funding_delta(0, capacities[:10], self.secp.lock_hash, label="a")
        )
        self.ledger.ingest(funding_delta(1, capacities[10:20], self.secp_2.lock_hash, label="b"))
        self.ledger.ingest(funding_delta(2, capacities[20:], self.pw.lock_hash, label="c"))
        config = _config()

        for seed in range(25):
            plan = self._generator(config, seed).build()
            self.assertIsNotNone(plan)
            tx = plan.transaction
            self.assertEqual(plan.input_capacity, tx.total_output_capacity() + config.tx_fee)
            self.assertTrue(1 <= len(tx.inputs) <= config.inputs_limit)
            self.assertTrue(1 <= len(tx.outputs) <= config.outputs_limit)
            self.assertTrue(all(output.capacity >= config.output_min_capacity for output in tx.outputs))
            self.assertEqual([cell.index for cell in plan.produced], list(range(len(tx.outputs))))
            self.ledger.release(plan.reservation)

    def test_inputs_grouped_by_lock(self) -> None:
        self.ledger.ingest(funding_delta(0, [70 * BYTE_SHANNONS] * 3, self.secp.lock_hash, label="a"))
        self.ledger.ingest(funding_delta(1, [70 * BYTE_SHANNONS] * 3, self.pw.lock_hash, label="b"))
        reservation = self.ledger.reserve(400 * BYTE_SHANNONS, 6)

        ordered = order_inputs(reservation.cells)
        leaders = [cell.lock_hash for cell in ordered[:2]]
        self.assertEqual(sorted(leaders), sorted([self.secp.lock_hash, self.pw.lock_hash]))
        self.assertEqual(len(set(leaders)), 2)

    def test_falls_back_to_any_account(self) -> None:
        self.ledger.ingest(funding_delta(0, [200 * BYTE_SHANNONS], self.pw.lock_hash))
        config = _config(locks_weights={LockScheme.SECP256K1_BLAKE160: 1})

        plan = self._generator(config).build()

        self.assertIsNotNone(plan)
        self.assertEqual(plan.input_lock_hashes, (self.pw.lock_hash,))
        self.assertEqual(
            sorted(plan.transaction.cell_deps, key=lambda dep: dep.serialize()),
            sorted(DEPS[LockScheme.PWLOCK_K1_ACPL], key=lambda dep: dep.serialize()),
        )

    def test_returns_none_without_funds(self) -> None:
        self.ledger.ingest(funding_delta(0, [50 * BYTE_SHANNONS], self.secp.lock_hash))
        before = self.ledger.dump()

        self.assertIsNone(self._generator(_config()).build())
        self.assertEqual(self.ledger.dump(), before)


if __name__ == "__main__":
    unittest.main()
