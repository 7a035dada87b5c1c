"""
Ed25519 Signing

Every event in the log is signed by the engine. A verifier holding the
public key can prove an event was written by this engine and not edited
afterwards.
"""

import base64
import binascii
from typing import Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


class Signer:
    """Stateless Ed25519 helpers working on base64-encoded keys."""

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")
        return private_b64, public_b64

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key from a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """Sign a message, returning the base64 detached signature."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """True only if signature_b64 is a valid signature of message."""
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(message.encode("utf-8"), base64.b64decode(signature_b64))
            return True
        except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
            return False
