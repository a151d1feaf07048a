"""
Constraint sealing: AES-256-GCM over the request's numeric constraints.

The ledger stores the sealed blob as opaque bytes, so budget and quality
thresholds never appear on-chain in the clear. Wire format:

    [ iv (16 bytes) ][ tag (16 bytes) ][ ciphertext (variable) ]

open() verifies the GCM tag before returning anything; any mismatch,
truncation or undecodable plaintext raises SealError.

The key is SHA-256 of the configured secret. As with any symmetric secret,
it must be long and private: short secrets are refused unless
allow_insecure_secret=True (development and tests only).
"""
import hashlib
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from autoprocure.exceptions import SealError
from autoprocure.models import DecisionConstraints

IV_SIZE = 16
TAG_SIZE = 16
HEADER_SIZE = IV_SIZE + TAG_SIZE
MIN_SECRET_LENGTH = 32


class ConstraintSealer:
    def __init__(self, secret: str | None, allow_insecure_secret: bool = False):
        if not secret:
            raise ValueError(
                "No encryption secret provided. Set PROCUREMENT_ENCRYPTION_KEY "
                "or pass secret= explicitly."
            )
        if not allow_insecure_secret and len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"Encryption secret must be at least {MIN_SECRET_LENGTH} characters "
                f"(got {len(secret)}). Pass allow_insecure_secret=True for development only."
            )
        self._aead = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def seal(self, constraints: DecisionConstraints | dict) -> bytes:
        if isinstance(constraints, DecisionConstraints):
            constraints = constraints.model_dump(mode="json", by_alias=True)
        plaintext = json.dumps(constraints, sort_keys=True).encode("utf-8")
        iv = os.urandom(IV_SIZE)
        # AESGCM appends the tag to the ciphertext; the wire format wants it up front.
        sealed = self._aead.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return iv + tag + ciphertext

    def open(self, blob: bytes) -> dict:
        if len(blob) < HEADER_SIZE:
            raise SealError(f"Sealed blob too short: {len(blob)} bytes")
        iv = blob[:IV_SIZE]
        tag = blob[IV_SIZE:HEADER_SIZE]
        ciphertext = blob[HEADER_SIZE:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise SealError("Sealed constraints failed authentication") from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SealError("Sealed constraints are not valid JSON") from exc
