"""
Cryptographic primitives: ed25519 wallet signing + P-256 session keys
"""

import base64
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


def generate_ed25519_keypair() -> Tuple[str, str]:
    """Generate ed25519 keypair, return (private_key_hex, public_key_hex)."""
    signing_key = SigningKey.generate()
    private_key = signing_key.encode().hex()
    public_key = signing_key.verify_key.encode().hex()
    return private_key, public_key


def sign_ed25519(message: bytes, private_key_hex: str) -> str:
    """Sign bytes with an ed25519 private key, return signature hex."""
    signing_key = SigningKey(bytes.fromhex(private_key_hex))
    # PyNaCl returns message + signature, we just want signature
    return signing_key.sign(message).signature.hex()


def verify_ed25519(message: bytes, signature_hex: str, public_key_hex: str) -> bool:
    """Verify ed25519 signature, return True if valid."""
    try:
        verify_key = VerifyKey(bytes.fromhex(public_key_hex))
        verify_key.verify(message, bytes.fromhex(signature_hex))
        return True
    except (BadSignatureError, ValueError):
        return False


class Ed25519Account:
    """
    Local account signing with an ed25519 key (Solana style).

    Used for headless provisioning where no browser wallet is available.
    The address defaults to the hex public key.
    """

    def __init__(self, private_key_hex: Optional[str] = None, address: Optional[str] = None, chain: str = "SOL"):
        if private_key_hex is None:
            private_key_hex, _ = generate_ed25519_keypair()
        self._private_key_hex = private_key_hex
        self.public_key = SigningKey(bytes.fromhex(private_key_hex)).verify_key.encode().hex()
        self.address = address or self.public_key
        self.chain = chain

    def sign_message(self, payload: str) -> str:
        return sign_ed25519(payload.encode("utf-8"), self._private_key_hex)


def _b64url(value: int) -> str:
    raw = value.to_bytes(32, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@dataclass
class SessionKeyPair:
    """Ephemeral P-256 key used to sign node operations."""

    private_key: ec.EllipticCurvePrivateKey
    created_at: float

    @classmethod
    def generate(cls, created_at: float) -> "SessionKeyPair":
        return cls(private_key=ec.generate_private_key(ec.SECP256R1()), created_at=created_at)

    def public_jwk(self) -> Dict[str, str]:
        numbers = self.private_key.public_key().public_numbers()
        return {
            "kty": "EC",
            "crv": "P-256",
            "x": _b64url(numbers.x),
            "y": _b64url(numbers.y),
        }

    def sign(self, data: bytes) -> str:
        """ECDSA P-256/SHA-256 signature as hex of raw r||s (64 bytes)."""
        der = self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return (r.to_bytes(32, "big") + s.to_bytes(32, "big")).hex()
