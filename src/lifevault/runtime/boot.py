# src/lifevault/runtime/boot.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from lifevault.anchor.pipeline import AnchorPipeline, TxOptions
from lifevault.auth.challenge import ChallengeStore
from lifevault.auth.session import SessionIssuer
from lifevault.auth.trust_policy import TrustPolicy
from lifevault.crypto.account import Account, account_from_private_key
from lifevault.ledger.state import ProvenanceLedger
from lifevault.runtime.chain_config import LedgerConfig, load_ledger_config
from lifevault.runtime.rest_client import AptosRestRpc
from lifevault.runtime.rpc import LedgerRpc, ProgramLocation
from lifevault.runtime.transport_memory import InMemoryLedgerRpc
from lifevault.util.structured_log import log_event

_log = logging.getLogger("lifevault.boot")


@dataclass
class Services:
    cfg: LedgerConfig
    pipeline: AnchorPipeline
    trust: TrustPolicy
    challenges: ChallengeStore
    sessions: SessionIssuer
    # Present only for the in-process ("memory") network.
    ledger: Optional[ProvenanceLedger] = None
    chain_id: Optional[int] = None


def _master_account(cfg: LedgerConfig) -> Optional[Account]:
    if not cfg.master_private_key:
        return None
    return account_from_private_key(cfg.master_private_key)


def _transport(cfg: LedgerConfig, program: ProgramLocation):
    """Returns (rpc, ledger, chain_id). rpc is None in mock mode."""
    if cfg.network == "memory":
        ledger = ProvenanceLedger()
        if not cfg.program_configured:
            return None, ledger, None
        rpc = InMemoryLedgerRpc(ledger, program=program, poll_interval_s=cfg.poll_interval_ms / 1000.0)
        return rpc, ledger, rpc.chain_id

    if not cfg.program_configured:
        return None, None, None
    rest = AptosRestRpc.for_network(
        cfg.network,
        program=program,
        node_url=cfg.node_url or None,
        poll_interval_s=cfg.poll_interval_ms / 1000.0,
    )
    # chain id is fetched lazily on the first build.
    return rest, None, None


def build_services(cfg: Optional[LedgerConfig] = None) -> Services:
    cfg = cfg or load_ledger_config()
    program = ProgramLocation(module_address=cfg.module_address, module_name=cfg.module_name)

    rpc: Optional[LedgerRpc]
    rpc, ledger, chain_id = _transport(cfg, program)
    master = _master_account(cfg)

    pipeline = AnchorPipeline(
        rpc,
        master,
        confirm_timeout_s=cfg.confirm_timeout_s,
        tx_options=TxOptions(
            max_gas_amount=cfg.max_gas_amount,
            gas_unit_price=cfg.gas_unit_price,
            expiration_s=cfg.tx_expiration_s,
        ),
    )
    services = Services(
        cfg=cfg,
        pipeline=pipeline,
        trust=TrustPolicy(
            allow_reduced_assurance=cfg.allow_reduced_assurance,
            strict_address_match=cfg.strict_address_match,
        ),
        challenges=ChallengeStore(
            ttl_s=cfg.challenge_ttl_s,
            application=cfg.application or None,
            chain_id=chain_id,
        ),
        sessions=SessionIssuer(ttl_s=cfg.session_ttl_s),
        ledger=ledger,
        chain_id=chain_id,
    )

    log_event(
        _log,
        "services_booted",
        mode=cfg.mode,
        network=cfg.network,
        program_configured=pipeline.program_configured,
        master=(master.address if master is not None else None),
        allow_reduced_assurance=cfg.allow_reduced_assurance,
        strict_address_match=cfg.strict_address_match,
    )
    if not pipeline.program_configured:
        log_event(_log, "anchor_mode_mock", level=logging.WARNING, network=cfg.network)
    return services
