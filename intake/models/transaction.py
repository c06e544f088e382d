"""
Transaction record dataclasses for the intake pipeline.

A TransactionRecord is what the data-entry front end produces after its
own field checks pass. Records are validated again here so that nothing
inconsistent ever reaches the record store or the delivery payload.

Persisted and wire field names are camelCase (productName, pricePerUnit)
because the remote collector was built around them; the Python side
uses snake_case attributes and converts in to_dict/from_dict.
"""

import base64
import math
import binascii
import logging
import mimetypes
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple

from intake.errors import ReadError, ValidationError

logger = logging.getLogger(__name__)

# Type alias for record types
TransactionType = Literal["Purchase", "Unloading", "Delivery"]
TRANSACTION_TYPES: Tuple[str, ...] = ("Purchase", "Unloading", "Delivery")

# Batch categories and the record types they contain
CATEGORY_TYPES: Dict[str, Tuple[str, ...]] = {
    "purchases": ("Purchase",),
    "unloadings": ("Unloading", "Delivery"),
}

# Keys used for the per-type "sections" object and the prefixed flat keys
SECTION_KEYS: Dict[str, str] = {
    "Purchase": "purchase",
    "Unloading": "unloading",
    "Delivery": "delivery",
}

_DATA_URL_PATTERN = re.compile(r'^data:(?P<mime>[^;,]*)(;base64)?,(?P<data>.*)$', re.DOTALL)


def category_of(record_type: str) -> str:
    """Return the batch category ("purchases" or "unloadings") for a type."""
    for category, types in CATEGORY_TYPES.items():
        if record_type in types:
            return category
    raise ValidationError(f"Unknown transaction type: '{record_type}'")


def section_key(record_type: str) -> Optional[str]:
    """Return the business section key for a type, or None if unmapped."""
    return SECTION_KEYS.get(record_type)


def is_priced(record_type: str, price_unloading: bool = False) -> bool:
    """
    Return True if records of this type carry a unit price.

    Purchases are always priced, deliveries never are. Unloadings are
    priced only when the deployment opts in with price_unloading.
    """
    if record_type == "Purchase":
        return True
    if record_type == "Unloading":
        return price_unloading
    return False


def compute_total(quantity: float, price_per_unit: float) -> float:
    """Line total rounded to cents."""
    return round(quantity * price_per_unit, 2)


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Format an instant as ISO-8601 UTC with millisecond precision and a Z suffix.

    Example:
        >>> utc_timestamp(datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc))
        '2026-03-01T09:30:00.000Z'
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z."""
    if not value:
        raise ValidationError("Timestamp cannot be empty")
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: '{value}'. Expected ISO-8601")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


# ============================================================
# Attachment
# ============================================================

@dataclass
class Attachment:
    """
    A photo attached to a record.

    The bytes live either inline as base64 text (content) or on disk
    (path). Inline content is what gets persisted; a path is only kept
    for attachments picked from the file system in the current session.

    Attributes:
        name: Original file name
        mime_type: Image MIME type, e.g. "image/jpeg"
        size: Byte length of the decoded content
        content: Base64-encoded bytes, if held inline
        path: File path, if the bytes are read lazily from disk
    """

    name: str
    mime_type: str
    size: int
    content: Optional[str] = None
    path: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValidationError("Attachment name cannot be empty")
        if not self.mime_type or not self.mime_type.startswith("image/"):
            raise ValidationError(
                f"Attachment must be an image, got mime type '{self.mime_type}'"
            )
        if not isinstance(self.size, int) or self.size < 0:
            raise ValidationError(f"Invalid attachment size: {self.size!r}")
        if self.content is None and self.path is None:
            raise ValidationError("Attachment needs inline content or a file path")
        if self.content is not None:
            try:
                decoded = base64.b64decode(self.content, validate=True)
            except (binascii.Error, ValueError):
                raise ValidationError(f"Attachment '{self.name}' is not valid base64")
            if len(decoded) != self.size:
                raise ValidationError(
                    f"Attachment '{self.name}' size {self.size} does not match "
                    f"its content length {len(decoded)}"
                )

    @classmethod
    def from_bytes(cls, name: str, mime_type: str, data: bytes) -> "Attachment":
        """Create an inline attachment from raw bytes."""
        return cls(
            name=name,
            mime_type=mime_type,
            size=len(data),
            content=base64.b64encode(data).decode('ascii'),
        )

    @classmethod
    def from_file(cls, path: str, mime_type: Optional[str] = None) -> "Attachment":
        """
        Create an attachment that reads its bytes from disk on demand.

        Raises:
            ValidationError: If the file does not exist or is not an image
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationError(f"Attachment file not found: {path}")
        guessed = mime_type or mimetypes.guess_type(file_path.name)[0] or ""
        return cls(
            name=file_path.name,
            mime_type=guessed,
            size=file_path.stat().st_size,
            path=str(file_path),
        )

    @classmethod
    def from_data_url(cls, data_url: str, name: str = "photo") -> "Attachment":
        """
        Create an inline attachment from a data: URL.

        Older exports kept photos as data URLs in a photoBase64 field.
        """
        match = _DATA_URL_PATTERN.match(data_url or "")
        if not match:
            raise ValidationError("Attachment is not a valid data URL")
        mime_type = match.group('mime') or 'application/octet-stream'
        try:
            data = base64.b64decode(match.group('data'), validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Attachment data URL is not valid base64")
        return cls.from_bytes(name, mime_type, data)

    def read_bytes(self) -> bytes:
        """
        Read the full attachment payload.

        Returns:
            The raw bytes

        Raises:
            ReadError: If the bytes are missing, unreadable, or shorter/longer
                than the recorded size
        """
        try:
            if self.content is not None:
                data = base64.b64decode(self.content, validate=True)
            else:
                with open(self.path, 'rb') as f:
                    data = f.read()
        except (OSError, binascii.Error, ValueError) as e:
            raise ReadError(f"Could not read attachment '{self.name}': {e}") from e

        if len(data) != self.size:
            raise ReadError(
                f"Attachment '{self.name}' read {len(data)} bytes, expected {self.size}"
            )
        return data

    def inlined(self) -> "Attachment":
        """Return a copy holding the bytes inline, ready for persistence."""
        if self.content is not None:
            return self
        return Attachment.from_bytes(self.name, self.mime_type, self.read_bytes())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.mime_type,
            "size": self.size,
        }
        if self.content is not None:
            data["content"] = self.content
        if self.path is not None:
            data["path"] = self.path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            name=data.get("name", ""),
            mime_type=data.get("type", ""),
            size=data.get("size", -1),
            content=data.get("content"),
            path=data.get("path"),
        )


# ============================================================
# TransactionRecord
# ============================================================

@dataclass
class TransactionRecord:
    """
    One purchase, unloading or delivery entered in the field.

    Use TransactionRecord.create() for new entries; it assigns the id and
    timestamp and computes the total. The constructor validates every
    invariant and raises ValidationError on the first violation.

    Attributes:
        id: Opaque unique identifier, never changes
        type: "Purchase", "Unloading" or "Delivery"
        product_name: What was bought or moved
        quantity: Positive amount in `unit`
        unit: Unit label such as "kg" or "box"
        location: Market or drop-off point
        timestamp: Creation instant, ISO-8601 UTC
        price_per_unit: Unit price, 0 for unpriced records
        total_amount: round(quantity * price_per_unit, 2)
        attachment: Optional photo

    Example:
        >>> record = TransactionRecord.create(
        ...     type="Purchase",
        ...     product_name="Potatoes",
        ...     quantity=12.5,
        ...     unit="kg",
        ...     location="Central market",
        ...     price_per_unit=18.4,
        ... )
        >>> record.total_amount
        230.0
    """

    id: str
    type: TransactionType
    product_name: str
    quantity: float
    unit: str
    location: str
    timestamp: str
    price_per_unit: float = 0.0
    total_amount: float = 0.0
    attachment: Optional[Attachment] = field(default=None)

    def __post_init__(self):
        self._validate_identity()
        self._validate_fields()
        self._validate_amounts()

    def _validate_identity(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise ValidationError("Record id cannot be empty")
        if self.type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"Invalid transaction type: '{self.type}'. "
                f"Must be one of: {TRANSACTION_TYPES}"
            )
        parse_timestamp(self.timestamp)

    def _validate_fields(self) -> None:
        if not self.product_name or not self.product_name.strip():
            raise ValidationError("Product name cannot be empty")
        if not _is_number(self.quantity) or self.quantity <= 0:
            raise ValidationError(f"Quantity must be a positive number, got {self.quantity!r}")
        if not self.unit:
            raise ValidationError("Unit cannot be empty")
        if not self.location or not self.location.strip():
            raise ValidationError("Location cannot be empty")

    def _validate_amounts(self) -> None:
        if not _is_number(self.price_per_unit) or self.price_per_unit < 0:
            raise ValidationError(
                f"Price per unit must be a non-negative number, got {self.price_per_unit!r}"
            )
        if self.type == "Delivery" and self.price_per_unit != 0:
            raise ValidationError("Delivery records cannot carry a price")

        expected = compute_total(self.quantity, self.price_per_unit)
        if not _is_number(self.total_amount) or abs(self.total_amount - expected) > 0.005:
            raise ValidationError(
                f"Total amount {self.total_amount!r} does not match "
                f"quantity * price ({expected})"
            )

    # ============================================================
    # Construction
    # ============================================================

    @classmethod
    def create(
        cls,
        type: str,
        product_name: str,
        quantity: float,
        unit: str,
        location: str,
        price_per_unit: float = 0.0,
        attachment: Optional[Attachment] = None,
        price_unloading: bool = False,
        timestamp: Optional[str] = None,
    ) -> "TransactionRecord":
        """
        Build a new record with a fresh id and creation timestamp.

        The price is dropped for types that are not priced, so the total
        is always consistent with the record type.

        Raises:
            ValidationError: If any field is invalid
        """
        price = price_per_unit if is_priced(type, price_unloading) else 0.0
        if not _is_number(quantity):
            raise ValidationError(f"Quantity must be a positive number, got {quantity!r}")
        if not _is_number(price):
            raise ValidationError(f"Price per unit must be a number, got {price!r}")
        return cls(
            id=str(uuid.uuid4()),
            type=type,
            product_name=(product_name or "").strip(),
            quantity=quantity,
            unit=unit,
            location=(location or "").strip(),
            timestamp=timestamp or utc_timestamp(),
            price_per_unit=price,
            total_amount=compute_total(quantity, price),
            attachment=attachment,
        )

    def replaced(self, **changes: Any) -> "TransactionRecord":
        """
        Return an edited copy that keeps the same id.

        The total is recomputed when quantity or price change.
        """
        changes.pop("id", None)
        if "quantity" in changes or "price_per_unit" in changes:
            quantity = changes.get("quantity", self.quantity)
            price = changes.get("price_per_unit", self.price_per_unit)
            if _is_number(quantity) and _is_number(price):
                changes["total_amount"] = compute_total(quantity, price)
        return replace(self, **changes)

    # ============================================================
    # Computed Properties
    # ============================================================

    @property
    def category(self) -> str:
        return category_of(self.type)

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    # ============================================================
    # Conversion Methods
    # ============================================================

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted camelCase form."""
        return {
            "id": self.id,
            "type": self.type,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "location": self.location,
            "timestamp": self.timestamp,
            "pricePerUnit": self.price_per_unit,
            "totalAmount": self.total_amount,
            "attachment": self.attachment.to_dict() if self.attachment else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        """
        Create a record from its persisted form.

        Raises:
            ValidationError: If required fields are missing or invalid
        """
        required_fields = ['id', 'type', 'productName', 'quantity', 'timestamp']
        missing = [f for f in required_fields if data.get(f) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {missing}")

        attachment = None
        if data.get("attachment"):
            attachment = Attachment.from_dict(data["attachment"])
        elif data.get("photoBase64"):
            attachment = Attachment.from_data_url(data["photoBase64"])

        return cls(
            id=data['id'],
            type=data['type'],
            product_name=data['productName'],
            quantity=data['quantity'],
            unit=data.get('unit', ''),
            location=data.get('location', ''),
            timestamp=data['timestamp'],
            price_per_unit=data.get('pricePerUnit') or 0,
            total_amount=data.get('totalAmount') or 0,
            attachment=attachment,
        )
