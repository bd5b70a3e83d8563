from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .crypto import SIGNATURE_SIZE, ckb_hash
from .molecule import (
    pack_byte32,
    pack_bytes,
    pack_dynvec,
    pack_fixvec,
    pack_option,
    pack_table,
    pack_u32,
    pack_u64,
)

BYTE_SHANNONS = 100_000_000


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def from_hex(text: str) -> bytes:
    raw = str(text).strip()
    if raw.startswith(("0x", "0X")):
        raw = raw[2:]
    return bytes.fromhex(raw)


def hex_uint(value: int) -> str:
    return hex(int(value))


def parse_hex_uint(text: Any) -> int:
    if isinstance(text, int):
        return text
    return int(str(text), 16)


class LockScheme(str, Enum):
    SECP256K1_BLAKE160 = "secp256k1_blake160"
    PWLOCK_K1_ACPL = "pwlock-k1-acpl"


class HashType(str, Enum):
    DATA = "data"
    TYPE = "type"

    def to_byte(self) -> bytes:
        return b"\x00" if self is HashType.DATA else b"\x01"


class DepType(str, Enum):
    CODE = "code"
    DEP_GROUP = "dep_group"

    def to_byte(self) -> bytes:
        return b"\x00" if self is DepType.CODE else b"\x01"


@dataclass(frozen=True, order=True)
class OutPoint:
    tx_hash: bytes
    index: int

    def serialize(self) -> bytes:
        return pack_byte32(self.tx_hash) + pack_u32(self.index)

    def key(self) -> str:
        return f"{self.tx_hash.hex()}:{self.index}"

    def to_json(self) -> dict[str, Any]:
        return {"tx_hash": to_hex(self.tx_hash), "index": hex_uint(self.index)}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "OutPoint":
        return cls(tx_hash=from_hex(data["tx_hash"]), index=parse_hex_uint(data["index"]))


@dataclass(frozen=True)
class Script:
    code_hash: bytes
    hash_type: HashType
    args: bytes

    def serialize(self) -> bytes:
        return pack_table(
            [
                pack_byte32(self.code_hash),
                self.hash_type.to_byte(),
                pack_bytes(self.args),
            ]
        )

    def calc_hash(self) -> bytes:
        return ckb_hash(self.serialize())

    def to_json(self) -> dict[str, Any]:
        return {
            "code_hash": to_hex(self.code_hash),
            "hash_type": self.hash_type.value,
            "args": to_hex(self.args),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Script":
        return cls(
            code_hash=from_hex(data["code_hash"]),
            hash_type=HashType(data["hash_type"]),
            args=from_hex(data["args"]),
        )


@dataclass(frozen=True)
class CellDep:
    out_point: OutPoint
    dep_type: DepType

    def serialize(self) -> bytes:
        return self.out_point.serialize() + self.dep_type.to_byte()

    def to_json(self) -> dict[str, Any]:
        return {"out_point": self.out_point.to_json(), "dep_type": self.dep_type.value}


@dataclass(frozen=True)
class CellInput:
    previous_output: OutPoint
    since: int = 0

    def serialize(self) -> bytes:
        return pack_u64(self.since) + self.previous_output.serialize()

    def to_json(self) -> dict[str, Any]:
        return {"since": hex_uint(self.since), "previous_output": self.previous_output.to_json()}


@dataclass(frozen=True)
class CellOutput:
    capacity: int
    lock: Script

    def serialize(self) -> bytes:
        # The simulator never attaches type scripts.
        return pack_table([pack_u64(self.capacity), self.lock.serialize(), pack_option(None)])

    def to_json(self) -> dict[str, Any]:
        return {"capacity": hex_uint(self.capacity), "lock": self.lock.to_json(), "type": None}


@dataclass(frozen=True)
class WitnessArgs:
    lock: bytes | None = None
    input_type: bytes | None = None
    output_type: bytes | None = None

    def serialize(self) -> bytes:
        return pack_table(
            [
                pack_option(None if self.lock is None else pack_bytes(self.lock)),
                pack_option(None if self.input_type is None else pack_bytes(self.input_type)),
                pack_option(None if self.output_type is None else pack_bytes(self.output_type)),
            ]
        )


def blank_witness() -> bytes:
    """WitnessArgs with a zeroed signature-sized lock, the layout signed over."""
    return WitnessArgs(lock=bytes(SIGNATURE_SIZE)).serialize()


@dataclass
class Transaction:
    inputs: list[CellInput] = field(default_factory=list)
    outputs: list[CellOutput] = field(default_factory=list)
    cell_deps: list[CellDep] = field(default_factory=list)
    outputs_data: list[bytes] = field(default_factory=list)
    witnesses: list[bytes] = field(default_factory=list)
    header_deps: list[bytes] = field(default_factory=list)
    version: int = 0

    def serialize_raw(self) -> bytes:
        return pack_table(
            [
                pack_u32(self.version),
                pack_fixvec(dep.serialize() for dep in self.cell_deps),
                pack_fixvec(pack_byte32(header) for header in self.header_deps),
                pack_fixvec(tx_input.serialize() for tx_input in self.inputs),
                pack_dynvec(output.serialize() for output in self.outputs),
                pack_dynvec(pack_bytes(data) for data in self.outputs_data),
            ]
        )

    def serialize(self) -> bytes:
        return pack_table(
            [
                self.serialize_raw(),
                pack_dynvec(pack_bytes(witness) for witness in self.witnesses),
            ]
        )

    def calc_tx_hash(self) -> bytes:
        return ckb_hash(self.serialize_raw())

    def total_output_capacity(self) -> int:
        return sum(output.capacity for output in self.outputs)

    def to_json(self) -> dict[str, Any]:
        return {
            "version": hex_uint(self.version),
            "cell_deps": [dep.to_json() for dep in self.cell_deps],
            "header_deps": [to_hex(header) for header in self.header_deps],
            "inputs": [tx_input.to_json() for tx_input in self.inputs],
            "outputs": [output.to_json() for output in self.outputs],
            "outputs_data": [to_hex(data) for data in self.outputs_data],
            "witnesses": [to_hex(witness) for witness in self.witnesses],
        }


@dataclass(frozen=True)
class HeaderInfo:
    number: int
    hash: bytes
    parent_hash: bytes

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "HeaderInfo":
        return cls(
            number=parse_hex_uint(data["number"]),
            hash=from_hex(data["hash"]),
            parent_hash=from_hex(data["parent_hash"]),
        )


@dataclass(frozen=True)
class BlockTransaction:
    hash: bytes
    inputs: tuple[OutPoint, ...]
    outputs: tuple[tuple[int, Script], ...]


@dataclass(frozen=True)
class BlockView:
    header: HeaderInfo
    transactions: tuple[BlockTransaction, ...]

    @property
    def number(self) -> int:
        return self.header.number

    @property
    def hash(self) -> bytes:
        return self.header.hash

    @property
    def parent_hash(self) -> bytes:
        return self.header.parent_hash

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "BlockView":
        transactions = []
        for raw_tx in data.get("transactions", []):
            # Cellbase inputs point at the null out point and never match a tracked cell.
            inputs = tuple(OutPoint.from_json(item["previous_output"]) for item in raw_tx.get("inputs", []))
            outputs = tuple(
                (parse_hex_uint(item["capacity"]), Script.from_json(item["lock"]))
                for item in raw_tx.get("outputs", [])
            )
            transactions.append(BlockTransaction(hash=from_hex(raw_tx["hash"]), inputs=inputs, outputs=outputs))
        return cls(header=HeaderInfo.from_json(data["header"]), transactions=tuple(transactions))
