"""
Wire payload construction for record delivery.

The collector on the other side is a low-code automation flow whose
field bindings have changed over time. To keep every version of that
flow working, each payload carries the same data in three shapes:

- `submission` + `context`: structured objects
- `flat`: one level of string values, plus type-prefixed duplicates
  such as `purchase_product` and `purchase_total_amount`
- `sections`: the same fields keyed by business section

Attachments travel either embedded in the JSON (base64) or as a separate
binary part of a multipart body, depending on what the target expects.
"""

import base64
import json
import logging
import re
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Dict, List, Optional, Tuple

from intake.models.transaction import TransactionRecord, section_key, utc_timestamp

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 1

ENCODING_JSON = "json"
ENCODING_MULTIPART = "multipart"

# MIME type -> file extension for photo attachments
PHOTO_EXTENSIONS: Dict[str, str] = {
    "image/png": "png",
    "image/webp": "webp",
}
DEFAULT_PHOTO_EXTENSION = "jpg"


@dataclass
class BuiltPayload:
    """
    A payload ready to POST.

    Attributes:
        record_id: Id of the record the payload was built from
        encoding: ENCODING_JSON or ENCODING_MULTIPART
        data: JSON payload (without attachments when multipart)
        file: (filename, bytes, mime type) of the attachment part, multipart only
    """
    record_id: str
    encoding: str
    data: Dict[str, Any]
    file: Optional[Tuple[str, bytes, str]] = None

    @property
    def content_type(self) -> str:
        """Content type family of the body; multipart boundaries are added by requests."""
        if self.encoding == ENCODING_MULTIPART:
            return "multipart/form-data"
        return "application/json"

    def request_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for requests.Session.post().

        JSON payloads use `json=`; multipart payloads always go through
        `files=` so the body is multipart even without an attachment.
        """
        if self.encoding == ENCODING_JSON:
            return {"json": self.data}

        parts: List[Tuple[str, Tuple[Optional[str], Any, str]]] = [
            ("data", (None, json.dumps(self.data, ensure_ascii=False), "application/json")),
        ]
        if self.file is not None:
            filename, content, mime_type = self.file
            parts.append(("file", (filename, content, mime_type)))
        return {"files": parts}


def choose_encoding(setting: str, is_proxy: bool) -> str:
    """
    Resolve the "auto" attachment encoding for a target.

    The proxy relays JSON bodies; direct webhooks take multipart.
    """
    if setting in (ENCODING_JSON, ENCODING_MULTIPART):
        return setting
    return ENCODING_JSON if is_proxy else ENCODING_MULTIPART


def photo_extension(mime_type: str) -> str:
    return PHOTO_EXTENSIONS.get(mime_type, DEFAULT_PHOTO_EXTENSION)


def build_photo_filename(record: TransactionRecord, mime_type: str) -> str:
    """
    Derive the attachment filename sent to the collector.

    Format: <slugified-product-name>-<timestamp>.<ext>

    Example:
        >>> build_photo_filename(record, "image/png")   # product "Red Onions"
        'red-onions-2026-03-01T09-30-00-000Z.png'
    """
    slug = re.sub(r'[^a-z0-9]+', '-', (record.product_name or '').lower()).strip('-') or 'photo'
    stamp = re.sub(r'[:.]', '-', utc_timestamp(record.created_at))
    return f"{slug}-{stamp}.{photo_extension(mime_type)}"


def _stringify(value: Any) -> str:
    """String form used in the flat mapping."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _split_timestamp(record: TransactionRecord) -> Tuple[str, str]:
    """Return (YYYY-MM-DD, HH:MM:SS) in UTC, without sub-second precision."""
    moment = record.created_at.astimezone(timezone.utc)
    return moment.date().isoformat(), moment.strftime("%H:%M:%S")


def build_submission(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "type": record.type,
        "timestamp": record.timestamp,
        "productName": record.product_name,
        "quantity": record.quantity,
        "unit": record.unit,
        "pricePerUnit": record.price_per_unit,
        "totalAmount": record.total_amount,
        "location": record.location,
    }


def build_flat(record: TransactionRecord, date: str, time: str) -> Dict[str, str]:
    """
    Flat key -> string mapping, with type-prefixed duplicates.

    Example keys for a purchase: productName, purchase_product,
    purchase_total_amount.
    """
    flat = {key: _stringify(value) for key, value in build_submission(record).items()}
    flat["date"] = date
    flat["time"] = time

    prefix = section_key(record.type)
    if prefix:
        flat.update({
            f"{prefix}_product": _stringify(record.product_name),
            f"{prefix}_quantity": _stringify(record.quantity),
            f"{prefix}_unit": _stringify(record.unit),
            f"{prefix}_price_per_unit": _stringify(record.price_per_unit),
            f"{prefix}_total_amount": _stringify(record.total_amount),
            f"{prefix}_location": _stringify(record.location),
            f"{prefix}_date": date,
            f"{prefix}_time": time,
        })
    return flat


def build_payload(record: TransactionRecord, encoding: str = ENCODING_JSON) -> BuiltPayload:
    """
    Serialize one record into a wire payload.

    Args:
        record: The record to send
        encoding: ENCODING_JSON embeds the attachment as base64,
            ENCODING_MULTIPART sends it as a separate binary part

    Returns:
        BuiltPayload exposing the encoding it used

    Raises:
        ReadError: If the record has an attachment that cannot be fully read
        ValueError: If the encoding is unknown
    """
    if encoding not in (ENCODING_JSON, ENCODING_MULTIPART):
        raise ValueError(f"Unknown payload encoding: '{encoding}'")

    date, time = _split_timestamp(record)

    payload: Dict[str, Any] = {
        "version": PAYLOAD_VERSION,
        "submission": build_submission(record),
        "context": {"date": date, "time": time},
        "flat": build_flat(record, date, time),
    }

    section = section_key(record.type)
    if section:
        payload["sections"] = {
            section: {
                "productName": record.product_name,
                "quantity": record.quantity,
                "unit": record.unit,
                "pricePerUnit": record.price_per_unit,
                "totalAmount": record.total_amount,
                "location": record.location,
                "date": date,
                "time": time,
            }
        }

    if record.attachment is None:
        return BuiltPayload(record_id=record.id, encoding=encoding, data=payload)

    attachment = record.attachment
    content = attachment.read_bytes()

    if encoding == ENCODING_MULTIPART:
        filename = build_photo_filename(record, attachment.mime_type)
        logger.debug(f"Attaching {filename} ({len(content) / 1024:.1f} KB) as multipart")
        return BuiltPayload(
            record_id=record.id,
            encoding=encoding,
            data=payload,
            file=(filename, content, attachment.mime_type),
        )

    payload["attachments"] = [{
        "name": attachment.name,
        "type": attachment.mime_type,
        "size": len(content),
        "encoding": "base64",
        "content": base64.b64encode(content).decode('ascii'),
    }]
    return BuiltPayload(record_id=record.id, encoding=encoding, data=payload)
