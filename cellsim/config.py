from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import BYTE_SHANNONS, CellDep, DepType, HashType, LockScheme, OutPoint, from_hex, to_hex


class ConfigError(ValueError):
    pass


def _expect_mapping(raw: Any, where: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping")
    return raw


def _check_keys(raw: dict[str, Any], where: str, required: set[str], optional: set[str] = frozenset()) -> None:
    unknown = set(raw) - required - set(optional)
    if unknown:
        raise ConfigError(f"{where}: unknown field(s) {', '.join(sorted(map(str, unknown)))}")
    missing = required - set(raw)
    if missing:
        raise ConfigError(f"{where}: missing field(s) {', '.join(sorted(missing))}")


def _int_field(raw: dict[str, Any], key: str, where: str, *, minimum: int = 0) -> int:
    value = raw[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}.{key} must be an integer")
    if value < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}")
    return value


def _hex_text(value: Any) -> str:
    # YAML reads unquoted 0x... literals as integers.
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value:064x}"
    return str(value)


def _hash_field(raw: dict[str, Any], key: str, where: str) -> bytes:
    try:
        value = from_hex(_hex_text(raw[key]))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{where}.{key} is not valid hex") from exc
    if len(value) != 32:
        raise ConfigError(f"{where}.{key} must be 32 bytes")
    return value


def _lock_scheme(raw: Any, where: str) -> LockScheme:
    try:
        return LockScheme(raw)
    except ValueError as exc:
        choices = ", ".join(scheme.value for scheme in LockScheme)
        raise ConfigError(f"{where}: unsupported lock script '{raw}' (expected one of {choices})") from exc


# ---------------------------------------------------------------------------
# run config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalDistributionConfig:
    mean: int = 2
    std_dev: int = 3


@dataclass(frozen=True)
class GeneratorConfig:
    inputs_limit: int = 12
    inputs_size_normal_distribution: NormalDistributionConfig = NormalDistributionConfig()
    outputs_limit: int = 32
    # Capacities are kept in shannons; the YAML file states them in CKBytes.
    output_capacity: int = 100 * BYTE_SHANNONS
    output_min_capacity: int = 61 * BYTE_SHANNONS
    tx_fee: int = 1_000_000
    locks_weights: dict[LockScheme, int] = field(
        default_factory=lambda: {LockScheme.SECP256K1_BLAKE160: 1, LockScheme.PWLOCK_K1_ACPL: 9}
    )


@dataclass(frozen=True)
class ClientConfig:
    # All intervals are milliseconds.
    idle_interval: int = 5_000
    success_interval: int = 500
    failure_interval: int = 3_000
    request_timeout: int = 10_000


@dataclass(frozen=True)
class SyncConfig:
    fork_lookback: int = 3
    max_rollback_depth: int = 64
    pending_expiry_blocks: int = 200


@dataclass(frozen=True)
class RunConfig:
    delay_blocks: int = 30
    generator: GeneratorConfig = GeneratorConfig()
    client: ClientConfig = ClientConfig()
    sync: SyncConfig = SyncConfig()

    @classmethod
    def from_dict(cls, raw: Any) -> "RunConfig":
        raw = _expect_mapping(raw, "run config")
        _check_keys(raw, "run config", {"delay_blocks", "generator", "client"}, {"sync"})
        config = cls(
            delay_blocks=_int_field(raw, "delay_blocks", "run config"),
            generator=_generator_from_dict(raw["generator"]),
            client=_client_from_dict(raw["client"]),
            sync=_sync_from_dict(raw.get("sync", {})),
        )
        validate_run_config(config)
        return config


def _generator_from_dict(raw: Any) -> GeneratorConfig:
    where = "generator"
    raw = _expect_mapping(raw, where)
    _check_keys(
        raw,
        where,
        {
            "inputs_limit",
            "inputs_size_normal_distribution",
            "outputs_limit",
            "output_capacity",
            "output_min_capacity",
            "tx_fee",
            "locks_weights",
        },
    )
    dist_raw = _expect_mapping(raw["inputs_size_normal_distribution"], f"{where}.inputs_size_normal_distribution")
    _check_keys(dist_raw, f"{where}.inputs_size_normal_distribution", {"mean", "std_dev"})
    distribution = NormalDistributionConfig(
        mean=_int_field(dist_raw, "mean", f"{where}.inputs_size_normal_distribution"),
        std_dev=_int_field(dist_raw, "std_dev", f"{where}.inputs_size_normal_distribution"),
    )

    weights_raw = _expect_mapping(raw["locks_weights"], f"{where}.locks_weights")
    weights: dict[LockScheme, int] = {}
    for key in weights_raw:
        weights[_lock_scheme(key, f"{where}.locks_weights")] = _int_field(weights_raw, key, f"{where}.locks_weights")

    return GeneratorConfig(
        inputs_limit=_int_field(raw, "inputs_limit", where, minimum=1),
        inputs_size_normal_distribution=distribution,
        outputs_limit=_int_field(raw, "outputs_limit", where, minimum=1),
        output_capacity=_int_field(raw, "output_capacity", where, minimum=1) * BYTE_SHANNONS,
        output_min_capacity=_int_field(raw, "output_min_capacity", where, minimum=1) * BYTE_SHANNONS,
        tx_fee=_int_field(raw, "tx_fee", where),
        locks_weights=weights,
    )


def _client_from_dict(raw: Any) -> ClientConfig:
    where = "client"
    raw = _expect_mapping(raw, where)
    _check_keys(raw, where, {"idle_interval", "success_interval", "failure_interval"}, {"request_timeout"})
    return ClientConfig(
        idle_interval=_int_field(raw, "idle_interval", where),
        success_interval=_int_field(raw, "success_interval", where),
        failure_interval=_int_field(raw, "failure_interval", where),
        request_timeout=_int_field(raw, "request_timeout", where, minimum=1)
        if "request_timeout" in raw
        else ClientConfig.request_timeout,
    )


def _sync_from_dict(raw: Any) -> SyncConfig:
    where = "sync"
    raw = _expect_mapping(raw, where)
    _check_keys(raw, where, set(), {"fork_lookback", "max_rollback_depth", "pending_expiry_blocks"})
    defaults = SyncConfig()
    return SyncConfig(
        fork_lookback=_int_field(raw, "fork_lookback", where, minimum=1)
        if "fork_lookback" in raw
        else defaults.fork_lookback,
        max_rollback_depth=_int_field(raw, "max_rollback_depth", where, minimum=1)
        if "max_rollback_depth" in raw
        else defaults.max_rollback_depth,
        pending_expiry_blocks=_int_field(raw, "pending_expiry_blocks", where, minimum=1)
        if "pending_expiry_blocks" in raw
        else defaults.pending_expiry_blocks,
    )


def validate_run_config(config: RunConfig) -> None:
    generator = config.generator
    if generator.inputs_limit < 1 or generator.outputs_limit < 1:
        raise ConfigError("inputs_limit and outputs_limit must be at least 1")
    if generator.output_min_capacity < 1:
        raise ConfigError("output_min_capacity must be positive")
    if generator.output_capacity < generator.output_min_capacity:
        raise ConfigError("output_capacity must not be smaller than output_min_capacity")
    distribution = generator.inputs_size_normal_distribution
    if distribution.std_dev == 0 and not 0 < distribution.mean < 1000:
        raise ConfigError("inputs_size_normal_distribution never yields a size between 0 and 1000")
    if not any(weight > 0 for weight in generator.locks_weights.values()):
        raise ConfigError("locks_weights needs at least one positive weight")
    if config.sync.fork_lookback > config.sync.max_rollback_depth:
        raise ConfigError("sync.fork_lookback must not exceed sync.max_rollback_depth")
    if config.sync.pending_expiry_blocks <= config.delay_blocks:
        raise ConfigError("sync.pending_expiry_blocks must be larger than delay_blocks")


# ---------------------------------------------------------------------------
# init config / persisted metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockMeta:
    number: int
    hash: bytes


@dataclass(frozen=True)
class LockScriptConfig:
    code_hash: bytes
    hash_type: HashType
    cell_deps: tuple[CellDep, ...]


@dataclass(frozen=True)
class AccountConfig:
    secret_key: str
    lock_id: LockScheme


@dataclass(frozen=True)
class Metadata:
    start_block: BlockMeta
    lock_scripts: dict[LockScheme, LockScriptConfig]
    accounts: tuple[AccountConfig, ...]

    @classmethod
    def from_dict(cls, raw: Any) -> "Metadata":
        raw = _expect_mapping(raw, "init config")
        _check_keys(raw, "init config", {"start_block", "lock_scripts", "accounts"})

        start_raw = _expect_mapping(raw["start_block"], "start_block")
        _check_keys(start_raw, "start_block", {"number", "hash"})
        start_block = BlockMeta(
            number=_int_field(start_raw, "number", "start_block"),
            hash=_hash_field(start_raw, "hash", "start_block"),
        )

        scripts_raw = _expect_mapping(raw["lock_scripts"], "lock_scripts")
        lock_scripts: dict[LockScheme, LockScriptConfig] = {}
        for key, value in scripts_raw.items():
            scheme = _lock_scheme(key, "lock_scripts")
            where = f"lock_scripts.{scheme.value}"
            value = _expect_mapping(value, where)
            _check_keys(value, where, {"code_hash", "hash_type", "cell_deps"})
            try:
                hash_type = HashType(value["hash_type"])
            except ValueError as exc:
                raise ConfigError(f"{where}.hash_type must be 'data' or 'type'") from exc
            if not isinstance(value["cell_deps"], list):
                raise ConfigError(f"{where}.cell_deps must be a list")
            lock_scripts[scheme] = LockScriptConfig(
                code_hash=_hash_field(value, "code_hash", where),
                hash_type=hash_type,
                cell_deps=tuple(_cell_dep_from_dict(item, f"{where}.cell_deps") for item in value["cell_deps"]),
            )

        if not isinstance(raw["accounts"], list) or not raw["accounts"]:
            raise ConfigError("accounts must be a non-empty list")
        accounts = []
        for position, item in enumerate(raw["accounts"]):
            where = f"accounts[{position}]"
            item = _expect_mapping(item, where)
            _check_keys(item, where, {"secret_key", "lock_id"})
            scheme = _lock_scheme(item["lock_id"], where)
            if scheme not in lock_scripts:
                raise ConfigError(f"lock scripts are not enough, requires {scheme.value}")
            accounts.append(AccountConfig(secret_key=_hex_text(item["secret_key"]), lock_id=scheme))

        return cls(start_block=start_block, lock_scripts=lock_scripts, accounts=tuple(accounts))

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_block": {"number": self.start_block.number, "hash": to_hex(self.start_block.hash)},
            "lock_scripts": {
                scheme.value: {
                    "code_hash": to_hex(script.code_hash),
                    "hash_type": script.hash_type.value,
                    "cell_deps": [
                        {
                            "out_point": {"tx_hash": to_hex(dep.out_point.tx_hash), "index": dep.out_point.index},
                            "dep_type": dep.dep_type.value,
                        }
                        for dep in script.cell_deps
                    ],
                }
                for scheme, script in self.lock_scripts.items()
            },
            "accounts": [
                {"secret_key": account.secret_key, "lock_id": account.lock_id.value} for account in self.accounts
            ],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=True)

    @classmethod
    def from_yaml(cls, text: str) -> "Metadata":
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML: {exc}") from exc
        return cls.from_dict(raw)


def _cell_dep_from_dict(raw: Any, where: str) -> CellDep:
    raw = _expect_mapping(raw, where)
    _check_keys(raw, where, {"out_point", "dep_type"})
    out_point_raw = _expect_mapping(raw["out_point"], f"{where}.out_point")
    _check_keys(out_point_raw, f"{where}.out_point", {"tx_hash", "index"})
    try:
        dep_type = DepType(raw["dep_type"])
    except ValueError as exc:
        raise ConfigError(f"{where}.dep_type must be 'code' or 'dep_group'") from exc
    return CellDep(
        out_point=OutPoint(
            tx_hash=_hash_field(out_point_raw, "tx_hash", f"{where}.out_point"),
            index=_int_field(out_point_raw, "index", f"{where}.out_point"),
        ),
        dep_type=dep_type,
    )


def _read_yaml(path: str | Path) -> Any:
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"failed to read {source}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse {source}: {exc}") from exc


def load_run_config(path: str | Path) -> RunConfig:
    return RunConfig.from_dict(_read_yaml(path))


def load_init_config(path: str | Path) -> Metadata:
    return Metadata.from_dict(_read_yaml(path))
