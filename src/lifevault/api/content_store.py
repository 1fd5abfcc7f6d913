# src/lifevault/api/content_store.py
from __future__ import annotations

"""Content store boundary: pin bytes to an IPFS HTTP API.

Only the returned CID reaches the provenance core; size and gateway URL are
informational for the HTTP response.
"""

import http.client
import json
import logging
import os
import urllib.parse
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Callable, Dict, Optional, Tuple

from lifevault.util.ipfs_cid import validate_ipfs_cid
from lifevault.util.structured_log import log_event

Json = Dict[str, object]

_log = logging.getLogger("lifevault.content")

_BOUNDARY = "----lifevault-ipfs-boundary-5e1c9a0d7f2b4c3e"


class ContentStoreError(RuntimeError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class PinResult:
    cid: str
    size: int
    gateway_url: str

    def to_json(self) -> Json:
        return {"cid": self.cid, "size": self.size, "gateway_url": self.gateway_url}


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


def parse_add_response(raw: bytes) -> Tuple[str, int]:
    """
    /api/v0/add returns NDJSON (one JSON per line).
    The last valid object carries the Hash and Size of the root.
    """
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise ContentStoreError("ipfs_add_failed:empty_response")

    last_obj: Optional[dict] = None
    for line in txt.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if isinstance(obj, dict):
            last_obj = obj

    if last_obj is None:
        raise ContentStoreError(f"ipfs_add_failed:bad_response:{txt[:200]}")

    cid = str(last_obj.get("Hash") or "").strip()
    try:
        size = int(str(last_obj.get("Size") or "0").strip())
    except ValueError:
        size = 0

    if not cid:
        raise ContentStoreError("ipfs_add_failed:missing_hash")
    return cid, size


ConnectionFactory = Callable[[str, str, int, float], http.client.HTTPConnection]


def _default_connection(scheme: str, host: str, port: int, timeout_s: float) -> http.client.HTTPConnection:
    if scheme == "https":
        return http.client.HTTPSConnection(host, port, timeout=timeout_s)
    return http.client.HTTPConnection(host, port, timeout=timeout_s)


class IpfsContentStore:
    def __init__(
        self,
        *,
        api_base: str,
        gateway_base: str = "",
        timeout_s: float = 30.0,
        connect: Optional[ConnectionFactory] = None,
    ) -> None:
        self.api_base = api_base.strip().rstrip("/")
        self.gateway_base = gateway_base.strip().rstrip("/")
        self.timeout_s = float(timeout_s)
        self._connect = connect or _default_connection

    @classmethod
    def from_env(cls) -> "IpfsContentStore":
        return cls(
            api_base=(os.getenv("LIFEVAULT_IPFS_API_BASE") or "http://127.0.0.1:5001"),
            gateway_base=(os.getenv("LIFEVAULT_IPFS_GATEWAY_BASE") or "http://127.0.0.1:8080"),
        )

    def gateway_url(self, cid: str) -> str:
        cid = (cid or "").strip()
        if not cid or not self.gateway_base:
            return ""
        return f"{self.gateway_base}/ipfs/{cid}"

    def pin_fileobj(self, name: str, fileobj: BinaryIO) -> PinResult:
        """Stream a file-like object to /api/v0/add?pin=true with chunked encoding."""
        if not self.api_base:
            raise ContentStoreError("ipfs_disabled")

        u = urllib.parse.urlparse(self.api_base)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))
        qs = urllib.parse.urlencode({"pin": "true", "wrap-with-directory": "false", "progress": "false"})

        filename = ((name or "upload").strip() or "upload").replace('"', "_")
        preamble = (
            f"--{_BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'
            f"Content-Type: application/octet-stream\r\n"
            f"\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{_BOUNDARY}--\r\n".encode("utf-8")

        conn = self._connect(scheme, host, port, self.timeout_s)
        try:
            try:
                conn.putrequest("POST", f"/api/v0/add?{qs}")
                conn.putheader("Host", host)
                conn.putheader("Content-Type", f"multipart/form-data; boundary={_BOUNDARY}")
                conn.putheader("Transfer-Encoding", "chunked")
                conn.endheaders()

                _send_chunk(conn, preamble)
                while True:
                    chunk = fileobj.read(1024 * 256)
                    if not chunk:
                        break
                    _send_chunk(conn, chunk)
                _send_chunk(conn, epilogue)
                _finish_chunks(conn)

                resp = conn.getresponse()
                body = resp.read()
            except OSError as e:
                raise ContentStoreError(f"ipfs_unreachable:{type(e).__name__}") from e

            if resp.status < 200 or resp.status >= 300:
                msg = body.decode("utf-8", errors="replace").strip()
                raise ContentStoreError(f"ipfs_add_failed:http_{resp.status}:{msg[:300]}")
        finally:
            conn.close()

        cid, size = parse_add_response(body)
        v = validate_ipfs_cid(cid)
        if not v.ok:
            raise ContentStoreError(f"ipfs_add_failed:{v.reason}")

        log_event(_log, "content_pinned", cid=v.cid, size=size)
        return PinResult(cid=v.cid, size=size, gateway_url=self.gateway_url(v.cid))

    def pin_bytes(self, name: str, data: bytes) -> PinResult:
        return self.pin_fileobj(name, BytesIO(data))
