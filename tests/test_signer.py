from __future__ import annotations

import unittest
from dataclasses import replace

from chain_fixtures import PW_KEY, SECP_KEY, SECP_KEY_2, make_account, tx_hash

from cellsim.crypto import (
    blake160,
    ckb_hash,
    keccak256,
    private_key_to_public_key,
    private_key_to_uncompressed_public_key,
    recover_public_key,
)
from cellsim.models import CellInput, CellOutput, LockScheme, OutPoint, Transaction, blank_witness
from cellsim.molecule import pack_u64
from cellsim.signer import (
    PwLockK1AcplSigner,
    Secp256k1Blake160Signer,
    SignerRegistry,
    SigningFailed,
    lock_groups,
)


def _witness_signature(witness: bytes) -> bytes:
    # WitnessArgs header (16 bytes) then the lock's length prefix (4 bytes).
    return witness[20:85]


def _transaction(inputs: int = 2) -> Transaction:
    account = make_account(SECP_KEY)
    return Transaction(
        inputs=[CellInput(OutPoint(tx_hash(f"prev-{index}"), index)) for index in range(inputs)],
        outputs=[CellOutput(capacity=61 * 100_000_000, lock=account.script)],
        outputs_data=[b""],
    )


class LockArgsTest(unittest.TestCase):
    def test_secp256k1_blake160_args(self) -> None:
        account = make_account(SECP_KEY)
        self.assertEqual(account.script.args, blake160(private_key_to_public_key(SECP_KEY)))
        self.assertEqual(len(account.script.args), 20)

    def test_pwlock_args_are_ethereum_address(self) -> None:
        account = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        uncompressed = private_key_to_uncompressed_public_key(PW_KEY)
        self.assertEqual(account.script.args, keccak256(uncompressed[1:])[12:])


class SignerMessageTest(unittest.TestCase):
    def test_secp_message_covers_blank_witness(self) -> None:
        digest = tx_hash("tx")
        witness = blank_witness()
        expected = ckb_hash(digest + pack_u64(len(witness)) + witness)
        self.assertEqual(Secp256k1Blake160Signer().message(digest), expected)

    def test_pwlock_message_is_ethereum_personal_message(self) -> None:
        digest = tx_hash("tx")
        witness = blank_witness()
        raw = keccak256(digest + pack_u64(len(witness)) + witness)
        expected = keccak256(b"\x19Ethereum Signed Message:\n32" + raw)
        self.assertEqual(PwLockK1AcplSigner().message(digest), expected)


class SignerRegistryTest(unittest.TestCase):
    def test_secp_witness_recovers_account_key(self) -> None:
        account = make_account(SECP_KEY)
        tx = _transaction()
        witness = SignerRegistry().sign(tx, 0, account)

        self.assertEqual(len(witness), len(blank_witness()))
        message = Secp256k1Blake160Signer().message(tx.calc_tx_hash())
        self.assertEqual(recover_public_key(message, _witness_signature(witness)), account.public_key)

    def test_pwlock_witness_recovers_account_key(self) -> None:
        account = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        tx = _transaction()
        witness = SignerRegistry().sign(tx, 0, account)

        message = PwLockK1AcplSigner().message(tx.calc_tx_hash())
        self.assertEqual(recover_public_key(message, _witness_signature(witness)), account.public_key)

    def test_signing_is_deterministic(self) -> None:
        account = make_account(SECP_KEY)
        tx = _transaction()
        registry = SignerRegistry()
        self.assertEqual(registry.sign(tx, 1, account), registry.sign(tx, 1, account))

    def test_failures(self) -> None:
        account = make_account(SECP_KEY)
        tx = _transaction()
        registry = SignerRegistry()

        with self.assertRaisesRegex(SigningFailed, "out of range"):
            registry.sign(tx, 2, account)
        with self.assertRaisesRegex(SigningFailed, "does not own"):
            registry.sign(tx, 0, account, make_account(SECP_KEY_2).lock_hash)
        with self.assertRaises(SigningFailed):
            registry.sign(tx, 0, replace(account, private_key="zz"))
        with self.assertRaises(SigningFailed):
            registry.sign(tx, 0, replace(account, private_key=""))
        with self.assertRaisesRegex(SigningFailed, "no signer"):
            SignerRegistry([Secp256k1Blake160Signer()]).sign(
                tx, 0, make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
            )

    def test_sign_transaction_one_witness_per_group(self) -> None:
        secp = make_account(SECP_KEY)
        pw = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        accounts = {secp.lock_hash: secp, pw.lock_hash: pw}
        tx = _transaction(inputs=3)
        locks = (secp.lock_hash, pw.lock_hash, secp.lock_hash)

        signed = SignerRegistry().sign_transaction(tx, locks, accounts)

        self.assertEqual(len(signed.witnesses), 2)
        self.assertEqual(signed.calc_tx_hash(), tx.calc_tx_hash())
        self.assertEqual(tx.witnesses, [])
        pw_message = PwLockK1AcplSigner().message(tx.calc_tx_hash())
        self.assertEqual(recover_public_key(pw_message, _witness_signature(signed.witnesses[1])), pw.public_key)

    def test_sign_transaction_requires_leading_group_inputs(self) -> None:
        secp = make_account(SECP_KEY)
        pw = make_account(PW_KEY, LockScheme.PWLOCK_K1_ACPL)
        accounts = {secp.lock_hash: secp, pw.lock_hash: pw}
        tx = _transaction(inputs=3)

        with self.assertRaisesRegex(SigningFailed, "does not start"):
            SignerRegistry().sign_transaction(tx, (secp.lock_hash, secp.lock_hash, pw.lock_hash), accounts)
        with self.assertRaisesRegex(SigningFailed, "no account"):
            SignerRegistry().sign_transaction(tx, (secp.lock_hash, pw.lock_hash, pw.lock_hash), {secp.lock_hash: secp})

    def test_lock_groups_in_first_appearance_order(self) -> None:
        groups = lock_groups([b"b", b"a", b"b", b"a", b"c"])
        self.assertEqual([group.lock_hash for group in groups], [b"b", b"a", b"c"])
        self.assertEqual(groups[0].input_indices, (0, 2))


if __name__ == "__main__":
    unittest.main()
