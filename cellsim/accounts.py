from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Callable

from .config import ConfigError, LockScriptConfig, Metadata
from .crypto import (
    blake160,
    eth_address_from_public_key,
    private_key_to_public_key,
    private_key_to_uncompressed_public_key,
)
from .models import CellDep, LockScheme, Script


@dataclass(frozen=True)
class Account:
    lock_id: LockScheme
    private_key: str
    public_key: bytes
    script: Script

    @cached_property
    def lock_hash(self) -> bytes:
        return self.script.calc_hash()

    def describe(self) -> dict[str, str]:
        return {
            "lock_id": self.lock_id.value,
            "lock_hash": "0x" + self.lock_hash.hex(),
            "args": "0x" + self.script.args.hex(),
        }


def _secp256k1_blake160_args(private_key: str) -> bytes:
    return blake160(private_key_to_public_key(private_key))


def _pwlock_k1_acpl_args(private_key: str) -> bytes:
    return eth_address_from_public_key(private_key_to_uncompressed_public_key(private_key))


LOCK_ARGS: dict[LockScheme, Callable[[str], bytes]] = {
    LockScheme.SECP256K1_BLAKE160: _secp256k1_blake160_args,
    LockScheme.PWLOCK_K1_ACPL: _pwlock_k1_acpl_args,
}


def account_from_private_key(private_key: str, lock_id: LockScheme, lock_script: LockScriptConfig) -> Account:
    args = LOCK_ARGS[lock_id](private_key)
    script = Script(code_hash=lock_script.code_hash, hash_type=lock_script.hash_type, args=args)
    return Account(
        lock_id=lock_id,
        private_key=private_key,
        public_key=private_key_to_public_key(private_key),
        script=script,
    )


def load_accounts(metadata: Metadata) -> dict[bytes, Account]:
    """Derive every configured account, keyed by its lock script hash."""
    accounts: dict[bytes, Account] = {}
    for position, entry in enumerate(metadata.accounts):
        lock_script = metadata.lock_scripts.get(entry.lock_id)
        if lock_script is None:
            raise ConfigError(f"lock scripts are not enough, requires {entry.lock_id.value}")
        try:
            account = account_from_private_key(entry.secret_key, entry.lock_id, lock_script)
        except ValueError as exc:
            raise ConfigError(f"accounts[{position}]: {exc}") from exc
        if account.lock_hash in accounts:
            raise ConfigError(f"accounts[{position}] duplicates lock hash 0x{account.lock_hash.hex()}")
        accounts[account.lock_hash] = account
    return accounts


def lock_cell_deps(metadata: Metadata) -> dict[LockScheme, tuple[CellDep, ...]]:
    return {scheme: script.cell_deps for scheme, script in metadata.lock_scripts.items()}
