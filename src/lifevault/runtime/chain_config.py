# src/lifevault/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

Json = Dict[str, Any]

ENV_PREFIX = "LIFEVAULT_"


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class LedgerConfig:
    mode: str  # "dev" | "testnet" | "prod"
    network: str  # "mainnet" | "testnet" | "devnet" | "local" | "memory"

    node_url: str
    # Empty module_address puts anchoring into mock mode.
    module_address: str
    module_name: str

    # Hex Ed25519 seed of the MasterAccount. Never logged.
    master_private_key: str

    confirm_timeout_s: int
    poll_interval_ms: int
    max_gas_amount: int
    gas_unit_price: int
    tx_expiration_s: int

    allow_reduced_assurance: bool
    strict_address_match: bool

    challenge_ttl_s: int
    session_ttl_s: int
    application: str

    log_level: str

    @property
    def program_configured(self) -> bool:
        return bool(self.module_address.strip())


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_NETWORKS = {"mainnet", "testnet", "devnet", "local", "memory"}


def validate_ledger_config(cfg: LedgerConfig) -> None:
    """Fail-fast validation for operator config."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    network = str(cfg.network or "").strip().lower()
    if network not in _ALLOWED_NETWORKS:
        raise ValueError(f"network must be one of {_ALLOWED_NETWORKS}; got: {cfg.network!r}")

    if not str(cfg.module_name or "").strip():
        raise ValueError("module_name must be a non-empty string")

    if int(cfg.confirm_timeout_s) <= 0:
        raise ValueError(f"confirm_timeout_s must be > 0; got: {cfg.confirm_timeout_s}")

    if int(cfg.poll_interval_ms) < 50:
        # Tighter polling just hammers the fullnode.
        raise ValueError(f"poll_interval_ms must be >= 50; got: {cfg.poll_interval_ms}")

    for name in ("max_gas_amount", "gas_unit_price", "tx_expiration_s", "challenge_ttl_s", "session_ttl_s"):
        if int(getattr(cfg, name)) <= 0:
            raise ValueError(f"{name} must be > 0; got: {getattr(cfg, name)}")

    if cfg.allow_reduced_assurance and mode == "prod":
        raise ValueError("allow_reduced_assurance is not permitted in prod mode")

    if cfg.program_configured and not str(cfg.master_private_key or "").strip():
        raise ValueError("master_private_key is required when module_address is set")


def default_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        # Production-safe defaults: no reduced-assurance logins unless an
        # operator explicitly opts in outside prod.
        mode="prod",
        network="testnet",
        node_url="",
        module_address="",
        module_name="memory_vault",
        master_private_key="",
        confirm_timeout_s=30,
        poll_interval_ms=500,
        max_gas_amount=2_000,
        gas_unit_price=100,
        tx_expiration_s=600,
        allow_reduced_assurance=False,
        strict_address_match=False,
        challenge_ttl_s=300,
        session_ttl_s=86_400,
        application="",
        log_level="INFO",
    )


def _from_mapping(raw: Mapping[str, Any], d: LedgerConfig) -> LedgerConfig:
    return LedgerConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        network=_as_str(raw.get("network"), d.network).strip().lower(),
        node_url=_as_str(raw.get("node_url"), d.node_url).strip(),
        module_address=_as_str(raw.get("module_address"), d.module_address).strip(),
        module_name=_as_str(raw.get("module_name"), d.module_name).strip(),
        master_private_key=_as_str(raw.get("master_private_key"), d.master_private_key).strip(),
        confirm_timeout_s=_as_int(raw.get("confirm_timeout_s"), d.confirm_timeout_s),
        poll_interval_ms=_as_int(raw.get("poll_interval_ms"), d.poll_interval_ms),
        max_gas_amount=_as_int(raw.get("max_gas_amount"), d.max_gas_amount),
        gas_unit_price=_as_int(raw.get("gas_unit_price"), d.gas_unit_price),
        tx_expiration_s=_as_int(raw.get("tx_expiration_s"), d.tx_expiration_s),
        allow_reduced_assurance=_as_bool(raw.get("allow_reduced_assurance"), d.allow_reduced_assurance),
        strict_address_match=_as_bool(raw.get("strict_address_match"), d.strict_address_match),
        challenge_ttl_s=_as_int(raw.get("challenge_ttl_s"), d.challenge_ttl_s),
        session_ttl_s=_as_int(raw.get("session_ttl_s"), d.session_ttl_s),
        application=_as_str(raw.get("application"), d.application).strip(),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )


def read_ledger_config_file(path: str) -> LedgerConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("ledger config must be a JSON object")

    cfg = _from_mapping(raw, default_ledger_config())
    validate_ledger_config(cfg)
    return cfg


def read_ledger_config_env(environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    env = os.environ if environ is None else environ
    raw: Json = {}
    for name in LedgerConfig.__dataclass_fields__:
        v = env.get(ENV_PREFIX + name.upper())
        if v is not None:
            raw[name] = v

    cfg = _from_mapping(raw, default_ledger_config())
    validate_ledger_config(cfg)
    return cfg


def load_ledger_config(*, config_path: Optional[str] = None) -> LedgerConfig:
    p = config_path or os.environ.get("LIFEVAULT_CONFIG_PATH")
    if p:
        return read_ledger_config_file(p)
    return read_ledger_config_env()


def with_overrides(cfg: LedgerConfig, **changes: Any) -> LedgerConfig:
    out = replace(cfg, **changes)
    validate_ledger_config(out)
    return out
