from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from assetstore.errors import ContentNotFoundError, NodeError
from assetstore.log import log_event


Json = Dict[str, object]
Args = Sequence[Tuple[str, str]]

log = logging.getLogger("assetstore.node")

_CHUNK = 1024 * 256

# Kubo error messages that mean "the network could not produce this content".
_NOT_FOUND_MARKERS = ("context deadline exceeded", "not found", "no link named", "could not resolve")


def _timed_out(err: NodeError) -> bool:
    cause = err.__cause__
    if isinstance(cause, urllib.error.URLError) and not isinstance(cause, urllib.error.HTTPError):
        cause = cause.reason
    return isinstance(cause, TimeoutError)


@dataclass(frozen=True, slots=True)
class PinRecord:
    cid: str
    status: str
    name: str = ""


class ContentNode(Protocol):
    """The surface the store needs from a content-addressed network node."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def add(self, name: str, data: bytes) -> str:
        ...

    def cat(self, path: str) -> Iterator[bytes]:
        ...

    def remote_services(self) -> List[str]:
        ...

    def add_remote_service(self, name: str, endpoint: str, key: str) -> None:
        ...

    def remove_remote_service(self, name: str) -> None:
        ...

    def remote_pin_ls(self, cid: str, service: str) -> Iterator[PinRecord]:
        ...

    def remote_pin_add(
        self, cid: str, service: str, *, background: bool = False, name: str = "", timeout_s: Optional[float] = None
    ) -> PinRecord:
        ...


class _KuboModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class KuboAddEntry(_KuboModel):
    name: str = Field(default="", alias="Name")
    hash: str = Field(default="", alias="Hash")
    size: int = Field(default=0, alias="Size")


class KuboRemotePin(_KuboModel):
    cid: str = Field(..., alias="Cid")
    status: str = Field(default="", alias="Status")
    name: str = Field(default="", alias="Name")

    def to_record(self) -> PinRecord:
        return PinRecord(cid=self.cid, status=self.status, name=self.name)


def _iter_ndjson(raw: bytes) -> Iterator[Json]:
    for line in raw.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def parse_add_response(raw: bytes) -> KuboAddEntry:
    """
    /api/v0/add returns NDJSON (one JSON per line, progress lines included).
    The last object carrying a Hash describes the added root.
    """
    last: Optional[KuboAddEntry] = None
    for obj in _iter_ndjson(raw):
        try:
            entry = KuboAddEntry.model_validate(obj)
        except ValidationError:
            continue
        if entry.hash:
            last = entry
    if last is None:
        txt = raw.decode("utf-8", errors="replace").strip()
        raise NodeError("/api/v0/add", f"missing_hash:{txt[:200]}")
    return last


def parse_remote_pins(raw: bytes) -> List[PinRecord]:
    out: List[PinRecord] = []
    for obj in _iter_ndjson(raw):
        try:
            out.append(KuboRemotePin.model_validate(obj).to_record())
        except ValidationError:
            continue
    return out


def _error_message(body: bytes) -> str:
    txt = body.decode("utf-8", errors="replace").strip()
    try:
        obj = json.loads(txt)
    except json.JSONDecodeError:
        return txt[:300]
    if isinstance(obj, dict) and obj.get("Message"):
        return str(obj["Message"])[:300]
    return txt[:300]


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


class KuboNode:
    """Client for a Kubo daemon's HTTP RPC API.

    The daemon is the embedded content node: every add/cat and every remote
    pinning call is delegated to it. start() verifies the daemon answers;
    no socket is held open between calls.
    """

    def __init__(self, api_url: str = "http://127.0.0.1:5001", *, timeout_s: float = 30.0, cat_timeout_s: float = 60.0) -> None:
        self.api_url = (api_url or "http://127.0.0.1:5001").strip().rstrip("/")
        self.timeout_s = float(timeout_s)
        self.cat_timeout_s = float(cat_timeout_s)
        self.peer_id: Optional[str] = None

    # ----------------------------
    # RPC plumbing
    # ----------------------------

    def _url(self, path: str, args: Args) -> str:
        qs = urllib.parse.urlencode(list(args))
        return f"{self.api_url}{path}?{qs}" if qs else f"{self.api_url}{path}"

    def _open(self, path: str, args: Args, *, timeout_s: float):
        # The RPC API only accepts POST.
        req = urllib.request.Request(url=self._url(path, args), method="POST", data=b"")
        req.add_header("Accept", "application/json")
        try:
            return urllib.request.urlopen(req, timeout=timeout_s)
        except urllib.error.HTTPError as e:
            try:
                body = e.read()
            except OSError:
                body = b""
            raise NodeError(path, _error_message(body) or str(e), int(e.code or 0)) from e
        except (urllib.error.URLError, OSError) as e:
            raise NodeError(path, str(getattr(e, "reason", e))) from e

    def _call(self, path: str, args: Args = (), *, timeout_s: Optional[float] = None) -> bytes:
        t = float(timeout_s if timeout_s is not None else self.timeout_s)
        with self._open(path, args, timeout_s=t) as resp:
            try:
                return resp.read()
            except OSError as e:
                raise NodeError(path, str(e)) from e

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def start(self) -> None:
        raw = self._call("/api/v0/id")
        try:
            info = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise NodeError("/api/v0/id", f"bad_response:{raw[:200]!r}") from e
        self.peer_id = str(info.get("ID") or "") if isinstance(info, dict) else ""
        log_event(log, "node_started", api_url=self.api_url, peer_id=self.peer_id)

    def stop(self) -> None:
        self.peer_id = None

    # ----------------------------
    # Content
    # ----------------------------

    def add_fileobj(self, name: str, fileobj: BinaryIO) -> KuboAddEntry:
        """
        Stream a file-like object to /api/v0/add without loading it into memory.

        Uses chunked transfer encoding to avoid buffering the whole multipart body.
        """
        u = urllib.parse.urlparse(self.api_url)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))

        qs = urllib.parse.urlencode(
            {
                "pin": "true",
                "cid-version": "1",
                "wrap-with-directory": "false",
                "progress": "false",
            }
        )
        path = f"{u.path.rstrip('/')}/api/v0/add?{qs}"

        conn: http.client.HTTPConnection
        if scheme == "https":
            conn = http.client.HTTPSConnection(host, port, timeout=self.timeout_s)
        else:
            conn = http.client.HTTPConnection(host, port, timeout=self.timeout_s)

        boundary = "----assetstore-boundary-5d0c1f2e8b7a4c93"
        filename = (name or "upload").strip().replace('"', "_") or "upload"

        preamble = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'
            f"Content-Type: application/octet-stream\r\n"
            f"\r\n"
        ).encode("utf-8")
        epilogue = f"\r\n--{boundary}--\r\n".encode("utf-8")

        try:
            conn.putrequest("POST", path)
            conn.putheader("Content-Type", f"multipart/form-data; boundary={boundary}")
            conn.putheader("Transfer-Encoding", "chunked")
            conn.endheaders()

            _send_chunk(conn, preamble)
            while True:
                chunk = fileobj.read(_CHUNK)
                if not chunk:
                    break
                _send_chunk(conn, chunk)
            _send_chunk(conn, epilogue)
            _finish_chunks(conn)

            resp = conn.getresponse()
            body = resp.read()
        except OSError as e:
            raise NodeError("/api/v0/add", str(e)) from e
        finally:
            conn.close()

        if resp.status < 200 or resp.status >= 300:
            raise NodeError("/api/v0/add", _error_message(body), int(resp.status))

        return parse_add_response(body)

    def add(self, name: str, data: bytes) -> str:
        return self.add_fileobj(name, BytesIO(data)).hash

    def cat(self, path: str) -> Iterator[bytes]:
        args = [("arg", path), ("timeout", f"{int(self.cat_timeout_s)}s")]
        try:
            resp = self._open("/api/v0/cat", args, timeout_s=self.cat_timeout_s + 5.0)
        except NodeError as e:
            msg = e.message.lower()
            if _timed_out(e) or any(m in msg for m in _NOT_FOUND_MARKERS):
                raise ContentNotFoundError(cid=path, reason=e.message) from e
            raise
        with resp:
            while True:
                try:
                    chunk = resp.read(_CHUNK)
                except TimeoutError as e:
                    # Blocks stopped arriving mid-stream.
                    raise ContentNotFoundError(cid=path, reason="timed out") from e
                except OSError as e:
                    raise NodeError("/api/v0/cat", str(e)) from e
                if not chunk:
                    return
                yield chunk

    # ----------------------------
    # Remote pinning services
    # ----------------------------

    def remote_services(self) -> List[str]:
        raw = self._call("/api/v0/pin/remote/service/ls")
        out: List[str] = []
        for obj in _iter_ndjson(raw):
            for svc in obj.get("RemoteServices") or []:
                if isinstance(svc, dict) and svc.get("Service"):
                    out.append(str(svc["Service"]))
        return out

    def add_remote_service(self, name: str, endpoint: str, key: str) -> None:
        self._call("/api/v0/pin/remote/service/add", [("arg", name), ("arg", endpoint), ("arg", key)])

    def remove_remote_service(self, name: str) -> None:
        self._call("/api/v0/pin/remote/service/rm", [("arg", name)])

    def remote_pin_ls(self, cid: str, service: str) -> Iterator[PinRecord]:
        raw = self._call(
            "/api/v0/pin/remote/ls",
            [("service", service), ("cid", cid), ("status", "pinned")],
        )
        yield from parse_remote_pins(raw)

    def remote_pin_add(
        self, cid: str, service: str, *, background: bool = False, name: str = "", timeout_s: Optional[float] = None
    ) -> PinRecord:
        args = [("arg", cid), ("service", service), ("background", "true" if background else "false")]
        if name:
            args.append(("name", name))
        # A foreground pin returns only once the service reports it pinned,
        # which can take minutes for content the service has to fetch.
        if timeout_s is None:
            timeout_s = self.timeout_s if background else max(self.timeout_s, 600.0)
        raw = self._call("/api/v0/pin/remote/add", args, timeout_s=timeout_s)
        pins = parse_remote_pins(raw)
        if not pins:
            return PinRecord(cid=cid, status="queued" if background else "pinned")
        return pins[-1]
