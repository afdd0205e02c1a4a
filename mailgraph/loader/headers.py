"""RFC 2822 header parsing for raw email messages."""

from __future__ import annotations

import email
import logging
import re
from datetime import UTC, datetime
from email.message import Message
from email.policy import compat32
from email.utils import getaddresses, parsedate_to_datetime

from mailgraph.graph.types import Document

logger = logging.getLogger(__name__)

_TRAILING_COMMENT = re.compile(r"\s*\([^)]*\)\s*$")

_FALLBACK_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S",
    "%A, %d-%b-%y %H:%M:%S %Z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S%z",
)


class EmailParseError(ValueError):
    """Raised when a raw message has no usable Message-ID."""


def normalize_encoding(text: str) -> str:
    """Re-decode text holding undecodable bytes as Latin-1.

    Files are read with ``surrogateescape``, so bytes that were not valid
    UTF-8 survive as lone surrogates; such text is treated as Latin-1.
    """
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return text.encode("utf-8", errors="surrogateescape").decode("latin-1")
    return text


def parse_date(value: str | None) -> datetime:
    """Parse a Date header, falling back to alternative formats and then to now.

    Naive results are taken as UTC.
    """
    if not value or not value.strip():
        return datetime.now(UTC)

    candidates = [value.strip()]
    stripped = _TRAILING_COMMENT.sub("", candidates[0])
    if stripped != candidates[0]:
        candidates.append(stripped)

    for candidate in candidates:
        try:
            parsed = parsedate_to_datetime(candidate)
        except (TypeError, ValueError, IndexError):
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    for candidate in candidates:
        for fmt in _FALLBACK_DATE_FORMATS:
            try:
                parsed = datetime.strptime(candidate, fmt)
            except ValueError:
                continue
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    logger.debug("Unparseable Date header %r, using current time", value)
    return datetime.now(UTC)


def extract_address(value: str | None) -> str:
    """Return the first address in a header, or the trimmed raw value."""
    addresses = extract_address_list(value)
    if addresses:
        return addresses[0]
    return (value or "").strip()


def extract_address_list(value: str | None) -> list[str]:
    """Return the non-empty addresses in a To/Cc/Bcc style header."""
    if not value:
        return []
    unfolded = " ".join(value.split())
    return [addr.strip() for _name, addr in getaddresses([unfolded]) if addr.strip()]


def _body_text(message: Message) -> str:
    if not message.is_multipart():
        payload = message.get_payload()
        return payload if isinstance(payload, str) else ""

    parts = []
    for part in message.walk():
        if part.get_content_type() != "text/plain" or part.is_multipart():
            continue
        payload = part.get_payload(decode=True)
        if isinstance(payload, bytes):
            charset = part.get_content_charset() or "utf-8"
            parts.append(payload.decode(charset, errors="replace"))
    return "\n".join(parts)


def parse_email(raw: str, file_path: str | None = None) -> Document:
    """Parse a raw RFC 2822 message into an unpersisted Document.

    Args:
        raw: Full message text, headers and body.
        file_path: Source identifier kept on the document.

    Returns:
        A Document with ``id`` None.

    Raises:
        EmailParseError: If the message has no Message-ID header.
    """
    message = email.message_from_string(normalize_encoding(raw), policy=compat32)

    message_id = (message.get("Message-ID") or message.get("Message-Id") or "").strip().strip("<> ")
    if not message_id:
        raise EmailParseError(f"message {file_path or '<unknown>'} has no Message-ID")

    return Document(
        message_id=message_id,
        sender=extract_address(message.get("From")),
        to=extract_address_list(message.get("To")),
        cc=extract_address_list(message.get("Cc")),
        bcc=extract_address_list(message.get("Bcc")),
        subject=" ".join((message.get("Subject") or "").split()),
        body=_body_text(message),
        timestamp=parse_date(message.get("Date")),
        file_path=file_path,
    )
