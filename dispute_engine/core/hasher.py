"""
Canonical Hashing

Deterministic serialization and SHA-256 hashing for the domain event log.
Same event -> same hash, on every node, after every storage round-trip.

If this changes, every stored chain becomes unverifiable. Version it.

CANONICAL RULES:
1. "__canon_v" (format version) injected into every top-level output
2. Dictionary keys sorted recursively, keys must be strings
3. None values omitted
4. Empty strings, lists and dicts preserved
5. Datetimes: timezone-aware only, UTC, microseconds, Z suffix
6. Dates: YYYY-MM-DD
7. UUIDs: lowercase string
8. Enums: value, not name
9. Floats: BANNED (durations travel as integer days/seconds)
10. Decimals: string
11. Sets and bytes: rejected
12. Output: compact JSON, ASCII only
"""

import hashlib
import hmac
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """
    Canonical serialization and hashing.

    IMMUTABLE CONTRACT:
    - Same logical input -> same hash
    - Independent of dict ordering, timezone representation and driver
    """

    SERIALIZATION_VERSION = 1

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        if value is None:
            return None

        if isinstance(value, UUID):
            return str(value).lower()

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")

        if isinstance(value, Enum):
            return value.value

        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Floats are banned in canonical payloads. "
                "Use an integer unit or Decimal."
            )

        if isinstance(value, Decimal):
            return str(value)

        if isinstance(value, str):
            return value

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)

        if isinstance(value, bytes):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. Convert to base64 string first."
            )

        if isinstance(value, (set, frozenset)):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. "
                "Sets have no stable ordering. Convert to sorted list first."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}. "
            "Only JSON-compatible types are allowed."
        )

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """Format: YYYY-MM-DDTHH:MM:SS.ffffffZ"""
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware for deterministic serialization."
            )
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(cls, data: dict[str, Any], path: str = "") -> dict[str, Any]:
        result = {}
        for key in sorted(data.keys()):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, got {type(key).__name__}"
                )
            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)
            if serialized is not None:
                result[key] = serialized
        return result

    @classmethod
    def to_canonical(cls, data: dict[str, Any] | Any) -> dict[str, Any]:
        """
        Convert data to its JSON-native canonical dict (no version marker).

        Event payloads are stored in this form so that they hash the same
        before and after a trip through JSONB.
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")
        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}."
            )
        return cls._to_canonical_dict(data)

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Convert data to the canonical JSON string, version marker included.

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **cls.to_canonical(data)}
        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """Hex SHA-256 of the canonical form."""
        return hashlib.sha256(cls.canonicalize(data).encode("utf-8")).hexdigest()

    @classmethod
    def hash_event(cls, envelope: dict[str, Any], previous_hash: str | None = None) -> str:
        """
        Hash an event envelope with chain linkage.

        FORMAT:
        - Genesis: SHA256(canonical_envelope)
        - Chained: SHA256(previous_hash + ":" + canonical_envelope)
        """
        canonical = cls.canonicalize(envelope)

        if previous_hash is None:
            chain_input = canonical
        else:
            if len(previous_hash) != 64 or not all(
                c in "0123456789abcdef" for c in previous_hash.lower()
            ):
                raise CanonicalSerializationError(
                    f"Invalid previous_hash format: {previous_hash}. "
                    "Must be 64 hex characters."
                )
            chain_input = f"{previous_hash.lower()}:{canonical}"

        return hashlib.sha256(chain_input.encode("utf-8")).hexdigest()

    @classmethod
    def verify_chain(
        cls,
        envelope: dict[str, Any],
        expected_hash: str,
        previous_hash: str | None = None,
    ) -> bool:
        """True if the envelope (chained to previous_hash) hashes to expected_hash."""
        try:
            computed = cls.hash_event(envelope, previous_hash)
        except CanonicalSerializationError:
            return False
        return hmac.compare_digest(computed, expected_hash.lower())
