"""
EchoKey Audit Signing

Ed25519 (RFC 8032) signatures over canonical JSON, used to make audit
log entries tamper-evident. Keys are stored as JSON:

    {"kid": "echokey-audit-01", "private_key_b64": "..."}
"""

import base64
import json
import os
from typing import Any, Dict

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

DEFAULT_KID = "echokey-audit-01"


def canonicalize(obj: Any) -> bytes:
    """Canonical JSON: sorted keys, no whitespace, UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode('ascii'))


class AuditSigner:
    """Holds one Ed25519 signing key and its key id."""

    def __init__(self, signing_key: bytes, kid: str = DEFAULT_KID):
        self._sk = SigningKey(signing_key)
        self.kid = kid

    @classmethod
    def generate(cls, kid: str = DEFAULT_KID) -> "AuditSigner":
        return cls(bytes(SigningKey.generate()), kid)

    @classmethod
    def from_file(cls, path: str) -> "AuditSigner":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(b64d(raw["private_key_b64"]), raw.get("kid", DEFAULT_KID))

    @classmethod
    def load_or_create(cls, path: str, kid: str = DEFAULT_KID) -> "AuditSigner":
        """Load the key at `path`, generating and saving one if the file is missing."""
        if os.path.exists(path):
            return cls.from_file(path)
        signer = cls.generate(kid)
        signer.save(path)
        return signer

    def save(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"kid": self.kid, "private_key_b64": b64e(bytes(self._sk))}, f, indent=2)

    @property
    def verify_key_b64(self) -> str:
        return b64e(bytes(self._sk.verify_key))

    def public_entry(self) -> Dict[str, str]:
        return {"kid": self.kid, "alg": "ed25519", "public_key_b64": self.verify_key_b64}

    def sign(self, payload: bytes) -> str:
        """Sign payload bytes, returning the base64 signature."""
        return b64e(self._sk.sign(payload).signature)


def verify_signature(payload: bytes, sig_b64: str, verify_key_b64: str) -> bool:
    """Verify a base64 Ed25519 signature. Malformed input never verifies."""
    try:
        VerifyKey(b64d(verify_key_b64)).verify(payload, b64d(sig_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False
