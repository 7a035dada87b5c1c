"""
Signing Service - Engine Key Management

The engine signs every event it appends with a single Ed25519 key.

CONFIGURATION:
- DISPUTE_ENGINE_SIGNING_PRIVATE_KEY: base64 Ed25519 private key
- DISPUTE_ENGINE_SIGNING_PUBLIC_KEY: base64 Ed25519 public key
- Generate with: dispute-engine generate-signing-key

DEVELOPMENT MODE:
- If keys are not set, an ephemeral keypair is generated (warning logged)
- Ephemeral keys change on every restart: signatures written by an older
  process will not verify. Fine for dev, NOT for prod.
- DISPUTE_ENGINE_PRODUCTION=1 turns a missing key into a startup error.
"""

import os
import warnings
from dataclasses import dataclass
from typing import Optional

from ..observability import get_logger, is_production
from .signer import Signer

logger = get_logger(__name__)

PRIVATE_KEY_ENV = "DISPUTE_ENGINE_SIGNING_PRIVATE_KEY"
PUBLIC_KEY_ENV = "DISPUTE_ENGINE_SIGNING_PUBLIC_KEY"


@dataclass(frozen=True)
class KeyPair:
    """An Ed25519 keypair."""
    private_key: str  # Base64-encoded
    public_key: str   # Base64-encoded


class SigningService:
    """
    Holds the engine keypair and signs event hashes.

    SECURITY NOTES:
    - The private key is never logged or exposed through a property
    - A configured keypair is validated on load
    """

    def __init__(self, keypair: Optional[KeyPair] = None):
        self._is_ephemeral = False
        if keypair is None:
            keypair = self._load_keypair()
        elif not self._validate_keypair(keypair):
            raise RuntimeError("Signing keypair validation failed: keys do not match.")
        self._keypair = keypair

    def _load_keypair(self) -> KeyPair:
        private_key = os.environ.get(PRIVATE_KEY_ENV, "")
        public_key = os.environ.get(PUBLIC_KEY_ENV, "")

        if private_key and public_key:
            keypair = KeyPair(private_key=private_key, public_key=public_key)
            if not self._validate_keypair(keypair):
                raise RuntimeError(
                    f"{PRIVATE_KEY_ENV} and {PUBLIC_KEY_ENV} do not form a valid keypair."
                )
            logger.info("Signing key loaded from environment")
            return keypair

        if is_production():
            raise RuntimeError(
                f"{PRIVATE_KEY_ENV} and {PUBLIC_KEY_ENV} must be set in production. "
                "Generate them with: dispute-engine generate-signing-key"
            )

        warnings.warn(
            "Signing key not configured. Generating ephemeral key for development. "
            "This key changes on each restart - NOT suitable for production!",
            stacklevel=3,
        )
        private_key, public_key = Signer.generate_keypair()
        self._is_ephemeral = True
        logger.warning("Generated ephemeral signing key (development mode)")
        return KeyPair(private_key=private_key, public_key=public_key)

    @staticmethod
    def _validate_keypair(keypair: KeyPair) -> bool:
        probe = "dispute-engine-keypair-probe"
        try:
            signature = Signer.sign(probe, keypair.private_key)
        except (ValueError, TypeError):
            return False
        return Signer.verify(probe, signature, keypair.public_key)

    @property
    def public_key(self) -> str:
        """Safe to expose; verifiers need it."""
        return self._keypair.public_key

    @property
    def is_ephemeral(self) -> bool:
        return self._is_ephemeral

    def sign_event_hash(self, event_hash: str) -> str:
        return Signer.sign(event_hash, self._keypair.private_key)

    def verify_event_hash(self, event_hash: str, signature: str) -> bool:
        return Signer.verify(event_hash, signature, self._keypair.public_key)


_signing_service: Optional[SigningService] = None


def get_signing_service() -> SigningService:
    """Process-wide SigningService, created on first use."""
    global _signing_service
    if _signing_service is None:
        _signing_service = SigningService()
    return _signing_service


def reset_signing_service() -> None:
    """Forget the process-wide instance (tests only)."""
    global _signing_service
    _signing_service = None
