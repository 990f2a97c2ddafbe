"""
Product payload: the product-identity record that a token attests.

Metadata is a closed variant over str, int, finite float, bool, list and
mapping of str keys. Anything else is rejected before signing so that the
canonical encoding stays well-defined.
"""

import copy
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import PayloadError

MAX_ID_LENGTH = 128
MAX_NAME_LENGTH = 256
MAX_BATCH_LENGTH = 128
MAX_METADATA_DEPTH = 8

_KNOWN_FIELDS = {"id", "name", "batch", "metadata", "issuedAt"}


@dataclass(frozen=True)
class ProductPayload:
    """Signed product-identity record."""
    id: str
    name: str
    batch: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    issued_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire form. Absent optional fields are omitted, not null."""
        d: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.batch is not None:
            d["batch"] = self.batch
        if self.metadata:
            d["metadata"] = self.metadata
        if self.issued_at is not None:
            d["issuedAt"] = self.issued_at
        return d

    def with_issued_at(self, issued_at: int) -> 'ProductPayload':
        return ProductPayload(
            id=self.id,
            name=self.name,
            batch=self.batch,
            metadata=self.metadata,
            issued_at=issued_at,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProductPayload':
        """Build a payload from its wire form, validating every field."""
        return validate_payload(data)


def _require_str(data: Dict[str, Any], name: str, max_length: int, required: bool) -> Optional[str]:
    value = data.get(name)
    if value is None:
        if required:
            raise PayloadError(name, "is required")
        return None
    if not isinstance(value, str):
        raise PayloadError(name, "must be a string")
    if required and not value.strip():
        raise PayloadError(name, "cannot be empty")
    if len(value) > max_length:
        raise PayloadError(name, f"must not exceed {max_length} characters")
    return value


def validate_metadata_value(value: Any, path: str, depth: int = 0) -> None:
    """
    Check that a metadata value belongs to the closed variant.

    Raises:
        PayloadError: naming the offending path
    """
    if depth > MAX_METADATA_DEPTH:
        raise PayloadError(path, f"nesting exceeds {MAX_METADATA_DEPTH} levels")
    if isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise PayloadError(path, "must be a finite number")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            validate_metadata_value(item, f"{path}[{i}]", depth + 1)
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise PayloadError(path, "keys must be strings")
            validate_metadata_value(v, f"{path}.{k}", depth + 1)
        return
    raise PayloadError(path, f"unsupported value type {type(value).__name__}")


def validate_payload(data: Any) -> ProductPayload:
    """
    Validate a payload mapping and return a ProductPayload.

    Args:
        data: Payload in wire form (``id``, ``name``, ``batch``, ``metadata``, ``issuedAt``)

    Returns:
        The validated ProductPayload

    Raises:
        PayloadError: If any field is missing, mistyped or unknown
    """
    if isinstance(data, ProductPayload):
        data = data.to_dict()
    if not isinstance(data, dict):
        raise PayloadError("payload", "must be an object")

    unknown = set(data) - _KNOWN_FIELDS
    if unknown:
        raise PayloadError(sorted(unknown)[0], "unknown field (use metadata)")

    product_id = _require_str(data, "id", MAX_ID_LENGTH, required=True)
    name = _require_str(data, "name", MAX_NAME_LENGTH, required=True)
    batch = _require_str(data, "batch", MAX_BATCH_LENGTH, required=False)

    metadata = data.get("metadata")
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise PayloadError("metadata", "must be an object")
    validate_metadata_value(metadata, "metadata")

    issued_at = data.get("issuedAt")
    if issued_at is not None and (isinstance(issued_at, bool) or not isinstance(issued_at, int)):
        raise PayloadError("issuedAt", "must be an integer timestamp")

    return ProductPayload(
        id=product_id,
        name=name,
        batch=batch,
        metadata=copy.deepcopy(metadata),
        issued_at=issued_at,
    )
