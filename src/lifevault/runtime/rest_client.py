from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Sequence

from lifevault.crypto.account import Account
from lifevault.crypto.address import normalize_address, normalize_hex
from lifevault.runtime.errors import InvalidEncoding
from lifevault.runtime.rpc import (
    ENTRY_FUNCTIONS,
    FN_COUNT,
    FN_CREATE,
    FN_GET,
    FN_TRANSFER,
    FN_VERIFY_OWNERSHIP,
    Authenticator,
    PendingTransaction,
    ProgramLocation,
    RpcError,
    RpcTimeout,
    TransactionInfo,
    UnsignedTransaction,
)
from lifevault.util.structured_log import log_event

Json = Dict[str, Any]

_log = logging.getLogger("lifevault.rpc")

NETWORK_URLS: Dict[str, str] = {
    "mainnet": "https://fullnode.mainnet.aptoslabs.com/v1",
    "testnet": "https://fullnode.testnet.aptoslabs.com/v1",
    "devnet": "https://fullnode.devnet.aptoslabs.com/v1",
    "local": "http://127.0.0.1:8080/v1",
}

# Ledger-program entry/view function names behind the fixed function ids.
MOVE_FUNCTIONS: Dict[str, str] = {
    FN_CREATE: "store_memory",
    FN_GET: "get_memory",
    FN_TRANSFER: "transfer_memory",
    FN_VERIFY_OWNERSHIP: "verify_ownership",
    FN_COUNT: "get_total_memories",
}

# Per-account resource holding the ids of records the account owns.
OWNER_RESOURCE = "MemoryStore"


def _http_json(method: str, url: str, body: Optional[Any] = None, timeout_s: float = 10.0) -> Any:
    """JSON request/response. Raises RpcError on transport or HTTP errors."""
    method = method.upper().strip()
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    data: Optional[bytes] = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")

    req = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        try:
            raw = e.read().decode("utf-8", errors="replace")
        except Exception:
            raw = ""
        message = raw[:300]
        try:
            obj = json.loads(raw)
            if isinstance(obj, dict):
                message = str(obj.get("message") or obj.get("error_code") or message)
        except ValueError:
            pass
        raise RpcError(message or "http_error", status=int(getattr(e, "code", 0) or 0)) from e
    except urllib.error.URLError as e:
        raise RpcError(f"url_error:{getattr(e, 'reason', e)}") from e
    except TimeoutError as e:
        raise RpcError("http_timeout") from e
    except (OSError, http.client.HTTPException) as e:
        # Raised while reading the response; urlopen does not wrap these.
        raise RpcError(f"connection_error:{type(e).__name__}") from e

    try:
        return json.loads(raw)
    except ValueError as e:
        raise RpcError("bad_json", details={"raw": raw[:200]}) from e


def _opt_int(v: Any) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _tx_info(obj: Json) -> TransactionInfo:
    return TransactionInfo(
        tx_hash=str(obj.get("hash") or ""),
        success=bool(obj.get("success", False)),
        vm_status=str(obj.get("vm_status") or ""),
        version=_opt_int(obj.get("version")),
        gas_used=_opt_int(obj.get("gas_used")),
        sender=obj.get("sender"),
        timestamp=_opt_int(obj.get("timestamp")),
        events=[e for e in (obj.get("events") or []) if isinstance(e, dict)],
    )


class AptosRestRpc:
    """Fullnode REST client for the ledger program.

    Signing uses /transactions/encode_submission so that the BCS signing
    message is produced by the node; the Ed25519 signature itself is computed
    locally with the held key and never leaves the process.
    """

    def __init__(
        self,
        *,
        base_url: str,
        program: ProgramLocation,
        timeout_s: float = 10.0,
        poll_interval_s: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.program = program
        self.timeout_s = float(timeout_s)
        self.poll_interval_s = float(poll_interval_s)
        self._chain_id: Optional[int] = None

    @classmethod
    def for_network(cls, network: str, *, program: ProgramLocation, node_url: Optional[str] = None, **kw: Any):
        url = node_url or NETWORK_URLS.get(str(network).strip().lower())
        if not url:
            raise ValueError(f"unknown network: {network!r}")
        return cls(base_url=url, program=program, **kw)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _function(self, function: str) -> str:
        name = MOVE_FUNCTIONS.get(function)
        if name is None:
            raise RpcError("unknown_function", details={"function": function})
        return self.program.qualified(name)

    def chain_id(self) -> int:
        if self._chain_id is None:
            info = _http_json("GET", self._url("/"), timeout_s=self.timeout_s)
            self._chain_id = int(info.get("chain_id", 0)) if isinstance(info, dict) else 0
        return self._chain_id

    def account_sequence_number(self, address: str) -> int:
        addr = normalize_address(address)
        try:
            obj = _http_json("GET", self._url(f"/accounts/{addr}"), timeout_s=self.timeout_s)
        except RpcError as e:
            # Accounts that never transacted do not exist on chain yet.
            if e.status == 404:
                return 0
            raise
        return int(obj.get("sequence_number", 0)) if isinstance(obj, dict) else 0

    def build(
        self,
        sender: str,
        function: str,
        args: Sequence[Any],
        *,
        sequence_number: int,
        max_gas_amount: int = 2_000,
        gas_unit_price: int = 100,
        expiration_s: int = 600,
    ) -> UnsignedTransaction:
        if function not in ENTRY_FUNCTIONS:
            raise RpcError("unknown_entry_function", details={"function": function})
        expiration = int(time.time()) + int(expiration_s)
        raw: Json = {
            "sender": normalize_address(sender),
            "sequence_number": str(int(sequence_number)),
            "max_gas_amount": str(int(max_gas_amount)),
            "gas_unit_price": str(int(gas_unit_price)),
            "expiration_timestamp_secs": str(expiration),
            "payload": {
                "type": "entry_function_payload",
                "function": self._function(function),
                "type_arguments": [],
                "arguments": [str(a) for a in args],
            },
        }
        return UnsignedTransaction(
            sender=raw["sender"],
            function=function,
            args=tuple(args),
            sequence_number=int(sequence_number),
            max_gas_amount=int(max_gas_amount),
            gas_unit_price=int(gas_unit_price),
            expiration_timestamp_secs=expiration,
            chain_id=self.chain_id(),
            raw=raw,
        )

    def sign(self, account: Account, tx: UnsignedTransaction) -> Authenticator:
        encoded = _http_json("POST", self._url("/transactions/encode_submission"), tx.raw, timeout_s=self.timeout_s)
        if not isinstance(encoded, str):
            raise RpcError("bad_encode_submission_response")
        try:
            message = normalize_hex(encoded)
        except InvalidEncoding as e:
            raise RpcError("bad_encode_submission_response", details={"reason": e.reason}) from e
        return Authenticator(public_key=account.public_key, signature=account.sign(message))

    def submit(self, tx: UnsignedTransaction, authenticator: Authenticator) -> PendingTransaction:
        body = dict(tx.raw)
        body["signature"] = authenticator.to_json()
        obj = _http_json("POST", self._url("/transactions"), body, timeout_s=self.timeout_s)
        tx_hash = str(obj.get("hash") or "") if isinstance(obj, dict) else ""
        if not tx_hash:
            raise RpcError("submit_missing_hash")
        log_event(_log, "tx_submitted", hash=tx_hash, sender=tx.sender, sequence_number=tx.sequence_number)
        return PendingTransaction(tx_hash=tx_hash, sender=tx.sender, sequence_number=tx.sequence_number)

    def get_transaction(self, tx_hash: str) -> Optional[TransactionInfo]:
        try:
            obj = _http_json("GET", self._url(f"/transactions/by_hash/{urllib.parse.quote(tx_hash)}"), timeout_s=self.timeout_s)
        except RpcError as e:
            if e.status == 404:
                return None
            raise
        if not isinstance(obj, dict) or obj.get("type") == "pending_transaction":
            return None
        return _tx_info(obj)

    def wait_for_confirmation(self, pending: PendingTransaction, timeout_s: float) -> TransactionInfo:
        deadline = time.monotonic() + max(0.0, float(timeout_s))
        while True:
            info = self.get_transaction(pending.tx_hash)
            if info is not None:
                return info
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RpcTimeout("confirmation_timeout", details={"hash": pending.tx_hash})
            time.sleep(min(remaining, self.poll_interval_s))

    def view(self, function: str, args: Sequence[Any]) -> List[Any]:
        body = {"function": self._function(function), "type_arguments": [], "arguments": [str(a) for a in args]}
        out = _http_json("POST", self._url("/view"), body, timeout_s=self.timeout_s)
        if not isinstance(out, list):
            raise RpcError("bad_view_response")
        return out

    def owned_records(self, address: str) -> List[int]:
        addr = normalize_address(address)
        resource = urllib.parse.quote(self.program.qualified(OWNER_RESOURCE), safe=":")
        try:
            obj = _http_json("GET", self._url(f"/accounts/{addr}/resource/{resource}"), timeout_s=self.timeout_s)
        except RpcError as e:
            # No resource until the account first holds a record.
            if e.status == 404:
                return []
            raise
        data = obj.get("data") if isinstance(obj, dict) else None
        entries = data.get("memories") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RpcError("bad_resource_response", details={"resource": OWNER_RESOURCE})
        out: List[int] = []
        for entry in entries:
            raw = entry.get("id") if isinstance(entry, dict) else entry
            rid = _opt_int(raw)
            if rid is not None:
                out.append(rid)
        return out
