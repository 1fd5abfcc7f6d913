from __future__ import annotations

import http.client
import io
import json
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Tuple

import pytest

from lifevault.anchor.pipeline import AnchorPipeline
from lifevault.crypto.sig import verify_detached
from lifevault.runtime.errors import AnchorFailed
from lifevault.runtime.rest_client import AptosRestRpc, NETWORK_URLS
from lifevault.runtime.rpc import FN_COUNT, FN_CREATE, PendingTransaction, ProgramLocation, RpcError, RpcTimeout
from lifevault.testing.sigtools import deterministic_account

BASE = "http://node.test/v1"
PROGRAM = ProgramLocation(module_address="0xcafe", module_name="memory_vault")
MASTER = deterministic_account(label="master")
SIGNING_MESSAGE = b"\xb5\xe9\x7d\xb0" + b"rawtx"

Handler = Callable[[Any], Tuple[int, Any]]


class _Resp:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_Resp":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


class FakeNode:
    """Routes urllib requests to per-(method, path) handlers."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[Tuple[str, str, Any]] = []

    def on(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def urlopen(self, req: urllib.request.Request, timeout: float = 0) -> _Resp:
        method = req.get_method()
        path = req.full_url[len(BASE):]
        body = json.loads(req.data.decode("utf-8")) if req.data else None
        self.calls.append((method, path, body))
        handler = self.routes.get((method, path))
        if handler is None:
            status, obj = 404, {"message": "not_found", "error_code": "resource_not_found"}
        else:
            status, obj = handler(body)
        raw = json.dumps(obj).encode("utf-8")
        if status >= 400:
            raise urllib.error.HTTPError(req.full_url, status, "err", {}, io.BytesIO(raw))
        return _Resp(raw)


@pytest.fixture
def node(monkeypatch) -> FakeNode:
    n = FakeNode()
    monkeypatch.setattr(urllib.request, "urlopen", n.urlopen)
    n.on("GET", "/", lambda b: (200, {"chain_id": 2, "ledger_version": "100"}))
    return n


def _rpc() -> AptosRestRpc:
    return AptosRestRpc(base_url=BASE + "/", program=PROGRAM, poll_interval_s=0.001)


def _committed(tx_hash: str, *, success: bool = True, events: List[Any] | None = None) -> Dict[str, Any]:
    return {
        "type": "user_transaction",
        "hash": tx_hash,
        "success": success,
        "vm_status": "Executed successfully" if success else "Move abort in 0xcafe::memory_vault: 0x1",
        "version": "17",
        "gas_used": "6",
        "sender": MASTER.address,
        "timestamp": "1700000000000000",
        "events": events or [],
    }


def test_for_network_resolves_known_networks() -> None:
    rpc = AptosRestRpc.for_network("testnet", program=PROGRAM)
    assert rpc.base_url == NETWORK_URLS["testnet"]
    assert AptosRestRpc.for_network("mainnet", program=PROGRAM, node_url="http://x/v1").base_url == "http://x/v1"
    with pytest.raises(ValueError):
        AptosRestRpc.for_network("nowhere", program=PROGRAM)


def test_unknown_account_has_sequence_zero(node: FakeNode) -> None:
    assert _rpc().account_sequence_number(MASTER.address) == 0

    node.on("GET", f"/accounts/{MASTER.address}", lambda b: (200, {"sequence_number": "7"}))
    assert _rpc().account_sequence_number(MASTER.address) == 7


def test_build_sign_submit(node: FakeNode) -> None:
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x" + SIGNING_MESSAGE.hex()))
    node.on("POST", "/transactions", lambda b: (202, {"hash": "0xabc", "type": "pending_transaction"}))
    rpc = _rpc()

    tx = rpc.build(MASTER.address, FN_CREATE, ["QmHash"], sequence_number=3)
    assert tx.chain_id == 2
    assert tx.raw["payload"]["function"] == "0xcafe::memory_vault::store_memory"
    assert tx.raw["payload"]["arguments"] == ["QmHash"]
    assert tx.raw["sequence_number"] == "3"

    auth = rpc.sign(MASTER, tx)
    assert verify_detached(SIGNING_MESSAGE, auth.signature, auth.public_key) is True

    pending = rpc.submit(tx, auth)
    assert pending.tx_hash == "0xabc"

    submitted = [body for m, p, body in node.calls if (m, p) == ("POST", "/transactions")][0]
    assert submitted["signature"]["type"] == "ed25519_signature"
    assert submitted["signature"]["public_key"] == MASTER.public_key_hex


def test_http_errors_carry_status_and_message(node: FakeNode) -> None:
    node.on("POST", "/transactions", lambda b: (400, {"message": "SEQUENCE_NUMBER_TOO_OLD"}))
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x00"))
    rpc = _rpc()
    tx = rpc.build(MASTER.address, FN_CREATE, ["h"], sequence_number=0)

    with pytest.raises(RpcError) as e:
        rpc.submit(tx, rpc.sign(MASTER, tx))
    assert e.value.status == 400
    assert e.value.reason == "SEQUENCE_NUMBER_TOO_OLD"


def test_wait_polls_until_committed(node: FakeNode) -> None:
    polls = {"n": 0}

    def _by_hash(body: Any) -> Tuple[int, Any]:
        polls["n"] += 1
        if polls["n"] < 3:
            return 200, {"type": "pending_transaction", "hash": "0xabc"}
        return 200, _committed("0xabc")

    node.on("GET", "/transactions/by_hash/0xabc", _by_hash)
    rpc = _rpc()
    info = rpc.wait_for_confirmation(PendingTransaction("0xabc", MASTER.address, 0), 5.0)
    assert info.success is True
    assert info.version == 17
    assert info.gas_used == 6
    assert polls["n"] == 3


def test_wait_times_out(node: FakeNode) -> None:
    with pytest.raises(RpcTimeout):
        _rpc().wait_for_confirmation(PendingTransaction("0xdead", MASTER.address, 0), 0.01)


def test_view_count(node: FakeNode) -> None:
    node.on("POST", "/view", lambda b: (200, ["3"]))
    assert _rpc().view(FN_COUNT, []) == ["3"]
    body = node.calls[-1][2]
    assert body["function"] == "0xcafe::memory_vault::get_total_memories"


def test_pipeline_end_to_end_over_rest(node: FakeNode) -> None:
    event = {"type": "0xcafe::memory_vault::MemoryStored", "data": {"memory_id": "5", "owner": MASTER.address}}
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x" + SIGNING_MESSAGE.hex()))
    node.on("POST", "/transactions", lambda b: (202, {"hash": "0xfeed"}))
    node.on("GET", "/transactions/by_hash/0xfeed", lambda b: (200, _committed("0xfeed", events=[event])))
    node.on("POST", "/view", lambda b: (200, ["5"]))

    pipeline = AnchorPipeline(_rpc(), MASTER)
    r = pipeline.store("QmHash")

    assert r.confirmed is True
    assert r.tx_hash == "0xfeed"
    assert r.record_id == 5
    assert r.version == 17
    assert pipeline.count() == 5


def test_pipeline_reports_vm_abort_over_rest(node: FakeNode) -> None:
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x" + SIGNING_MESSAGE.hex()))
    node.on("POST", "/transactions", lambda b: (202, {"hash": "0xbad"}))
    node.on("GET", "/transactions/by_hash/0xbad", lambda b: (200, _committed("0xbad", success=False)))

    with pytest.raises(AnchorFailed) as e:
        AnchorPipeline(_rpc(), MASTER).store("QmHash")
    assert e.value.stage == "submitted"
    assert e.value.tx_hash == "0xbad"
    assert e.value.reason.startswith("vm_status:Move abort")


def _dropped(exc: BaseException) -> Handler:
    def _handler(body: Any) -> Tuple[int, Any]:
        raise exc

    return _handler


def test_dropped_connection_is_rpc_error(node: FakeNode) -> None:
    node.on("POST", "/view", _dropped(ConnectionResetError(104, "reset")))
    with pytest.raises(RpcError) as e:
        _rpc().view(FN_COUNT, [])
    assert e.value.reason == "connection_error:ConnectionResetError"


def test_dropped_connection_on_submit_is_anchor_failed(node: FakeNode) -> None:
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x" + SIGNING_MESSAGE.hex()))
    node.on("POST", "/transactions", _dropped(http.client.RemoteDisconnected("closed")))

    with pytest.raises(AnchorFailed) as e:
        AnchorPipeline(_rpc(), MASTER).store("QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG")
    assert e.value.code == "anchor_failed"
    assert e.value.stage == "signed"
    assert e.value.reason == "connection_error:RemoteDisconnected"
    assert e.value.tx_hash is None


def test_truncated_read_while_confirming_is_anchor_failed(node: FakeNode) -> None:
    node.on("POST", "/transactions/encode_submission", lambda b: (200, "0x" + SIGNING_MESSAGE.hex()))
    node.on("POST", "/transactions", lambda b: (202, {"hash": "0xcut"}))
    node.on("GET", "/transactions/by_hash/0xcut", _dropped(http.client.IncompleteRead(b"{")))

    with pytest.raises(AnchorFailed) as e:
        AnchorPipeline(_rpc(), MASTER).store("QmHash")
    assert e.value.stage == "submitted"
    assert e.value.tx_hash == "0xcut"
    assert e.value.reason == "connection_error:IncompleteRead"


def test_owned_records_reads_owner_resource(node: FakeNode) -> None:
    path = f"/accounts/{MASTER.address}/resource/0xcafe::memory_vault::MemoryStore"
    node.on("GET", path, lambda b: (200, {"type": "x", "data": {"memories": [{"id": "2", "ipfs_hash": "h"}, "5"]}}))

    assert _rpc().owned_records(MASTER.address) == [2, 5]
    assert AnchorPipeline(_rpc(), MASTER).list_by_owner("0x" + MASTER.address[2:].upper()) == [2, 5]


def test_owned_records_missing_resource_is_empty(node: FakeNode) -> None:
    assert _rpc().owned_records(MASTER.address) == []
    assert AnchorPipeline(_rpc(), MASTER).list_by_owner("not-an-address") == []
