from __future__ import annotations

"""CID validation and asset URI helpers.

Validation stays lightweight:
  - CIDv0 (base58btc) starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) starts with "b" and uses the RFC4648
    base32 alphabet in lowercase: a-z2-7.

This is NOT a full multiformats parser. The goal is to fail early on obviously
bad input before it reaches the node, while accepting what Kubo hands back.
"""

import re
from dataclasses import dataclass

from assetstore.errors import InvalidCidError


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafy..., bafk...)

DEFAULT_SCHEME = "ipfs"


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def require_cid(cid: str) -> str:
    v = validate_cid(cid)
    if not v.ok:
        raise InvalidCidError(cid=v.cid, reason=v.reason)
    return v.cid


def strip_uri_scheme(value: str, *, scheme: str = DEFAULT_SCHEME) -> str:
    """Return the identifier part of `value`.

    "ipfs://<cid>/a.png" -> "<cid>/a.png"; anything without the prefix is
    returned trimmed, as a bare identifier.
    """
    s = (value or "").strip()
    prefix = f"{scheme}://"
    if s.lower().startswith(prefix.lower()):
        return s[len(prefix):]
    return s


def parse_asset_ref(value: str, *, scheme: str = DEFAULT_SCHEME) -> str:
    """Resolve a URI or bare CID to the path handed to the node.

    Only the root segment must be a CID; a sub-path inside a directory CID is
    passed through untouched.
    """
    ref = strip_uri_scheme(value, scheme=scheme).strip("/")
    root, sep, rest = ref.partition("/")
    root = require_cid(root)
    return f"{root}{sep}{rest}"


def asset_uri(cid: str, *, scheme: str = DEFAULT_SCHEME) -> str:
    return f"{scheme}://{require_cid(cid)}"
