from __future__ import annotations

import base64
import io
import json
from typing import Any, List

import pytest
from fastapi.testclient import TestClient

from lifevault.api.app import create_app
from lifevault.api.content_store import ContentStoreError, IpfsContentStore, parse_add_response
from lifevault.runtime.boot import build_services
from lifevault.runtime.chain_config import default_ledger_config
from lifevault.testing.sigtools import deterministic_account
from lifevault.util.ipfs_cid import validate_content_hash, validate_ipfs_cid

CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


class _FakeResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body


class FakeConnection:
    """Stands in for http.client.HTTPConnection; records what was sent."""

    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self.body = body
        self.sent: List[bytes] = []
        self.request_line: Any = None
        self.headers: dict = {}
        self.closed = False

    def putrequest(self, method: str, path: str) -> None:
        self.request_line = (method, path)

    def putheader(self, k: str, v: str) -> None:
        self.headers[k] = v

    def endheaders(self) -> None:
        pass

    def send(self, data: bytes) -> None:
        self.sent.append(data)

    def getresponse(self) -> _FakeResponse:
        return _FakeResponse(self.status, self.body)

    def close(self) -> None:
        self.closed = True


def _store(conn: FakeConnection) -> IpfsContentStore:
    return IpfsContentStore(
        api_base="http://ipfs.test:5001",
        gateway_base="https://gw.test/",
        connect=lambda scheme, host, port, timeout: conn,
    )


def test_cid_validation() -> None:
    assert validate_ipfs_cid(CID).ok
    assert validate_ipfs_cid("bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi").ok
    assert validate_ipfs_cid("").reason == "missing_cid"
    assert validate_ipfs_cid("bafy-demo-cid-001").reason == "invalid_cid_format"
    assert validate_ipfs_cid("Qm" + "a" * 200).reason == "cid_too_long"


def test_content_hash_accepts_sha256_hex() -> None:
    v = validate_content_hash("AB" * 32)
    assert v.ok and v.kind == "sha256" and v.cid == "ab" * 32
    assert validate_content_hash(CID).kind == "cidv0"
    assert not validate_content_hash("xyz").ok


def test_parse_add_response_takes_last_object() -> None:
    raw = b'{"Name":"a","Hash":"QmIgnored","Size":"1"}\nnot json\n{"Name":"m.txt","Hash":"%s","Size":"42"}\n' % CID.encode()
    assert parse_add_response(raw) == (CID, 42)
    with pytest.raises(ContentStoreError):
        parse_add_response(b"")
    with pytest.raises(ContentStoreError):
        parse_add_response(b'{"Name":"x"}')


def test_pin_bytes_streams_multipart_and_returns_cid() -> None:
    conn = FakeConnection(200, json.dumps({"Name": "m.txt", "Hash": CID, "Size": "9"}).encode())
    res = _store(conn).pin_bytes("m.txt", b"my memory")

    assert res.cid == CID
    assert res.size == 9
    assert res.gateway_url == f"https://gw.test/ipfs/{CID}"
    assert conn.request_line[0] == "POST"
    assert conn.request_line[1].startswith("/api/v0/add?pin=true")
    assert conn.headers["Transfer-Encoding"] == "chunked"
    wire = b"".join(conn.sent)
    assert b'filename="m.txt"' in wire
    assert b"my memory" in wire
    assert wire.endswith(b"0\r\n\r\n")
    assert conn.closed


def test_pin_rejects_http_errors_and_bad_cids() -> None:
    with pytest.raises(ContentStoreError) as e:
        _store(FakeConnection(500, b"boom")).pin_bytes("x", b"data")
    assert "http_500" in e.value.reason

    bad = FakeConnection(200, json.dumps({"Hash": "not-a-cid", "Size": "1"}).encode())
    with pytest.raises(ContentStoreError) as e2:
        _store(bad).pin_bytes("x", b"data")
    assert "invalid_cid_format" in e2.value.reason


def test_api_pins_uploads_when_store_configured() -> None:
    conn = FakeConnection(200, json.dumps({"Name": "m.txt", "Hash": CID, "Size": "9"}).encode())
    app = create_app(services=build_services(default_ledger_config()), content_store=_store(conn))
    c = TestClient(app)

    wallet = deterministic_account(label="wallet")
    ch = c.post("/v1/auth/challenge", json={"address": wallet.address}).json()["challenge"]
    text = next(f["text"] for f in ch["formats"] if f["name"] == "domain_prefixed")
    login = c.post(
        "/v1/auth/wallet",
        json={
            "address": wallet.address,
            "public_key": wallet.public_key_hex,
            "signature": "0x" + wallet.sign(text.encode("utf-8")).hex(),
            "nonce": ch["nonce"],
        },
    ).json()

    r = c.post(
        "/v1/content",
        json={"file_data": base64.b64encode(b"my memory").decode("ascii"), "file_name": "m.txt", "store_on_chain": False},
        headers={"Authorization": f"Bearer {login['token']}"},
    )
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["content_hash"] == CID
    assert j["pin"]["cid"] == CID
    assert j["anchor"] is None
    assert j["degraded"] is False


def test_api_maps_pin_failure_to_502() -> None:
    app = create_app(services=build_services(default_ledger_config()), content_store=_store(FakeConnection(503, b"down")))
    c = TestClient(app)
    wallet = deterministic_account(label="wallet")
    ch = c.post("/v1/auth/challenge", json={"address": wallet.address}).json()["challenge"]
    text = next(f["text"] for f in ch["formats"] if f["name"] == "raw")
    token = c.post(
        "/v1/auth/wallet",
        json={
            "address": wallet.address,
            "public_key": wallet.public_key_hex,
            "signature": "0x" + wallet.sign(text.encode("utf-8")).hex(),
            "nonce": ch["nonce"],
        },
    ).json()["token"]

    r = c.post(
        "/v1/content",
        json={"file_data": base64.b64encode(b"x").decode("ascii")},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "content_store_failed"
