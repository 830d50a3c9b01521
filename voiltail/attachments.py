"""File attachments forwarded to the providers alongside a prompt."""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
ATTACHMENT_TYPES = {"image", "document"}

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB decoded
MAX_DOCUMENT_SIZE = 10 * 1024 * 1024  # 10MB decoded
MAX_ATTACHMENTS = 10


class AttachmentError(ValueError):
    """Raised when a client-supplied attachment is unusable."""


@dataclass(frozen=True)
class Attachment:
    """A base64-encoded file sent with the prompt."""

    type: str  # "image" | "document"
    mime_type: str
    base64: str
    filename: str = ""

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    def data_url(self) -> str:
        """Format as a data URL (OpenAI image_url form)."""
        return f"data:{self.mime_type};base64,{self.base64}"


def _decoded_size(data: str) -> int:
    try:
        return len(base64.b64decode(data, validate=True))
    except (binascii.Error, ValueError) as e:
        raise AttachmentError("Attachment data is not valid base64") from e


def _string_field(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise AttachmentError(f"Attachment field '{key}' must be a string")
    return value


def validate_attachment(raw: dict[str, Any]) -> Attachment:
    """
    Validate one attachment payload.

    Args:
        raw: Dict with 'type', 'mime_type', 'base64' and optional 'filename'

    Returns:
        The validated Attachment

    Raises:
        AttachmentError: If the type, MIME type, encoding or size is invalid
    """
    attachment_type = raw.get("type")
    if not isinstance(attachment_type, str) or attachment_type not in ATTACHMENT_TYPES:
        raise AttachmentError(f"Unsupported attachment type: {attachment_type!r}")

    mime_type = _string_field(raw, "mime_type")
    data = _string_field(raw, "base64")
    filename = _string_field(raw, "filename")

    if not data:
        raise AttachmentError(f"Attachment {filename or '(unnamed)'} has no data")

    if attachment_type == "image" and mime_type not in SUPPORTED_IMAGE_TYPES:
        raise AttachmentError(f"Unsupported image type: {mime_type or '(none)'}")

    size = _decoded_size(data)
    if attachment_type == "image" and size > MAX_IMAGE_SIZE:
        raise AttachmentError(f"Image too large (max {MAX_IMAGE_SIZE // (1024 * 1024)}MB)")
    if attachment_type == "document" and size > MAX_DOCUMENT_SIZE:
        raise AttachmentError(f"Document too large (max {MAX_DOCUMENT_SIZE // (1024 * 1024)}MB)")

    return Attachment(type=attachment_type, mime_type=mime_type, base64=data, filename=filename)


def validate_attachments(raw_attachments: list[dict[str, Any]] | None) -> list[Attachment]:
    """
    Validate a list of attachment payloads.

    Args:
        raw_attachments: Attachment dicts from the request, or None

    Returns:
        Validated attachments, in request order

    Raises:
        AttachmentError: On the first invalid attachment or too many attachments
    """
    if not raw_attachments:
        return []
    if len(raw_attachments) > MAX_ATTACHMENTS:
        raise AttachmentError(f"Too many attachments (max {MAX_ATTACHMENTS})")

    attachments = [validate_attachment(raw) for raw in raw_attachments]
    logger.debug(
        "Validated attachments. Count: %d, Images: %d",
        len(attachments), sum(1 for a in attachments if a.is_image),
    )
    return attachments


def image_attachments(attachments: list[Attachment] | None) -> list[Attachment]:
    """Return only the image attachments; providers ignore documents."""
    return [a for a in attachments or [] if a.is_image]
