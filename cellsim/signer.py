from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

from .accounts import Account
from .crypto import ckb_hash, keccak256, sign_recoverable
from .models import LockScheme, Transaction, WitnessArgs, blank_witness
from .molecule import pack_u64

log = logging.getLogger(__name__)

ETH_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


class SigningFailed(RuntimeError):
    pass


def _witness_preimage(tx_hash: bytes) -> list[bytes]:
    witness = blank_witness()
    return [tx_hash, pack_u64(len(witness)), witness]


class LockSigner:
    scheme: LockScheme

    def message(self, tx_hash: bytes) -> bytes:
        raise NotImplementedError

    def signature(self, private_key: str, tx_hash: bytes) -> bytes:
        return sign_recoverable(private_key, self.message(tx_hash))


class Secp256k1Blake160Signer(LockSigner):
    scheme = LockScheme.SECP256K1_BLAKE160

    def message(self, tx_hash: bytes) -> bytes:
        return ckb_hash(*_witness_preimage(tx_hash))


class PwLockK1AcplSigner(LockSigner):
    scheme = LockScheme.PWLOCK_K1_ACPL

    def message(self, tx_hash: bytes) -> bytes:
        raw = keccak256(*_witness_preimage(tx_hash))
        return keccak256(ETH_MESSAGE_PREFIX, raw)


@dataclass(frozen=True)
class LockGroup:
    lock_hash: bytes
    input_indices: tuple[int, ...]


def lock_groups(input_lock_hashes: Sequence[bytes]) -> list[LockGroup]:
    """Group input positions by lock hash, in order of first appearance."""
    positions: dict[bytes, list[int]] = {}
    for index, lock_hash in enumerate(input_lock_hashes):
        positions.setdefault(lock_hash, []).append(index)
    return [LockGroup(lock_hash=lock_hash, input_indices=tuple(indices)) for lock_hash, indices in positions.items()]


class SignerRegistry:
    def __init__(self, signers: Sequence[LockSigner] | None = None) -> None:
        if signers is None:
            signers = (Secp256k1Blake160Signer(), PwLockK1AcplSigner())
        self._signers = {signer.scheme: signer for signer in signers}

    def signer_for(self, scheme: LockScheme) -> LockSigner:
        signer = self._signers.get(scheme)
        if signer is None:
            raise SigningFailed(f"no signer registered for lock scheme {scheme.value}")
        return signer

    def sign(
        self,
        tx: Transaction,
        input_index: int,
        account: Account,
        input_lock_hash: bytes | None = None,
    ) -> bytes:
        """Return the serialized witness unlocking the lock group led by ``input_index``."""
        if not 0 <= input_index < len(tx.inputs):
            raise SigningFailed(f"input index {input_index} out of range for {len(tx.inputs)} inputs")
        if input_lock_hash is not None and input_lock_hash != account.lock_hash:
            raise SigningFailed(
                f"account 0x{account.lock_hash.hex()} does not own input {input_index} (lock 0x{input_lock_hash.hex()})"
            )
        if not account.private_key:
            raise SigningFailed(f"account 0x{account.lock_hash.hex()} has no secret key")

        signer = self.signer_for(account.lock_id)
        try:
            signature = signer.signature(account.private_key, tx.calc_tx_hash())
        except ValueError as exc:
            raise SigningFailed(f"cannot sign for account 0x{account.lock_hash.hex()}: {exc}") from exc
        return WitnessArgs(lock=signature).serialize()

    def sign_transaction(
        self,
        tx: Transaction,
        input_lock_hashes: Sequence[bytes],
        accounts: Mapping[bytes, Account],
    ) -> Transaction:
        """Attach one witness per lock group; group ``i`` must start at input ``i``."""
        if len(input_lock_hashes) != len(tx.inputs):
            raise SigningFailed(f"{len(input_lock_hashes)} input locks given for {len(tx.inputs)} inputs")

        groups = lock_groups(input_lock_hashes)
        witnesses = []
        for position, group in enumerate(groups):
            if group.input_indices[0] != position:
                raise SigningFailed(f"lock group {position} does not start at input {position}")
            account = accounts.get(group.lock_hash)
            if account is None:
                raise SigningFailed(f"no account for lock 0x{group.lock_hash.hex()}")
            witnesses.append(self.sign(tx, position, account, group.lock_hash))

        log.debug("signed %d lock groups of tx 0x%s", len(groups), tx.calc_tx_hash().hex())
        return replace(tx, witnesses=witnesses)
