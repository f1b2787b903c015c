"""
MIME message encoding for the Gmail ``users.messages.send`` API.

Builds the ``raw`` field Gmail expects: a full RFC 822 message, base64
encoded. Plain messages use the standard alphabet; multipart messages with
an attachment use the URL-safe alphabet, which is the only form the API
accepts for them.
"""

import base64
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Union

from sniff import detect_content_type

BOUNDARY_LENGTH = 32
LINE_LIMIT = 76

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


class MessageEncodingError(Exception):
    """Base class for everything that can go wrong while building a message."""


class EncodingInputError(MessageEncodingError, ValueError):
    """A required envelope field is missing or would corrupt the header block."""


class AttachmentReadError(MessageEncodingError, OSError):
    """The attachment bytes could not be read."""


class ChunkingPreconditionError(MessageEncodingError, ValueError):
    pass


class BoundaryAlphabetError(MessageEncodingError, ValueError):
    pass


class Alphabet(str, Enum):
    ALPHANUM = "alphanum"
    ALPHA = "alpha"
    NUMBER = "number"


ALPHABETS: Dict[Alphabet, str] = {
    Alphabet.ALPHANUM: "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz",
    Alphabet.ALPHA: "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz",
    Alphabet.NUMBER: "0123456789",
}


def _check_header_value(field: str, value: str) -> None:
    if not isinstance(value, str):
        raise EncodingInputError(f"{field} must be a string, got {type(value).__name__}")
    if _CONTROL_CHARS.search(value):
        raise EncodingInputError(f"{field} must not contain control characters")


@dataclass(frozen=True)
class EmailEnvelope:
    sender: str
    to: str
    subject: str

    def __post_init__(self):
        for field in ("sender", "to", "subject"):
            value = getattr(self, field)
            _check_header_value(field, value)
            if not value.strip():
                raise EncodingInputError(f"{field} is required")


@dataclass(frozen=True)
class Attachment:
    raw_bytes: bytes
    file_name: str

    def __post_init__(self):
        _check_header_value("file_name", self.file_name)

    @property
    def content_type(self) -> str:
        return detect_content_type(self.raw_bytes)

    @classmethod
    def from_file(cls, path: Union[str, Path], file_name: Optional[str] = None) -> "Attachment":
        """
        Read an attachment from disk.

        ``file_name`` is what the recipient sees; it defaults to the basename
        of ``path``. Any OS-level failure surfaces as AttachmentReadError.
        """
        path = Path(path)
        try:
            raw_bytes = path.read_bytes()
        except OSError as e:
            raise AttachmentReadError(f"Unable to read file for attachment: {e}") from e
        return cls(raw_bytes=raw_bytes, file_name=path.name if file_name is None else file_name)


@dataclass(frozen=True)
class EncodedMessage:
    raw: str

    def as_payload(self) -> Dict[str, str]:
        return {"raw": self.raw}


def base64url_encode(bytestr: bytes) -> str:
    return base64.urlsafe_b64encode(bytestr).decode()


def random_string(length: int, kind: Union[Alphabet, str] = Alphabet.ALPHANUM) -> str:
    """Return ``length`` characters drawn uniformly from the ``kind`` alphabet."""
    try:
        alphabet = ALPHABETS[Alphabet(kind)]
    except ValueError:
        raise BoundaryAlphabetError(f"Unknown alphabet kind: {kind!r}") from None
    if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
        raise BoundaryAlphabetError(f"length must be a positive integer, got {length!r}")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def chunk_split(body: str, limit: int, end: str) -> str:
    """
    Insert ``end`` after every ``limit`` characters of ``body``.

    The final, possibly shorter, piece is terminated too, so
    ``chunk_split("abcde", 2, "\\n") == "ab\\ncd\\ne\\n"``.
    """
    if limit <= 0:
        raise ChunkingPreconditionError(f"limit must be positive, got {limit}")
    return "".join(body[i:i + limit] + end for i in range(0, len(body), limit))


def create_message(envelope: EmailEnvelope, content: str) -> EncodedMessage:
    message_body = (
        f"From: {envelope.sender}\r\n"
        f"To: {envelope.to}\r\n"
        f"Subject: {envelope.subject}\r\n\r\n"
        f"{content}"
    ).encode("utf-8")
    return EncodedMessage(raw=base64.b64encode(message_body).decode())


def create_message_with_attachment(
    envelope: EmailEnvelope,
    content: str,
    attachment: Attachment,
    boundary: Optional[str] = None,
) -> EncodedMessage:
    """
    Build a multipart/mixed message with a text part followed by one attachment.

    Gmail's parser is order sensitive here: the top-level headers, the text
    part and the attachment part must appear exactly as below. The boundary
    is random unless one is passed in.
    """
    if boundary is None:
        boundary = random_string(BOUNDARY_LENGTH, Alphabet.ALPHANUM)

    file_name = attachment.file_name
    file_data = chunk_split(base64.b64encode(attachment.raw_bytes).decode(), LINE_LIMIT, "\n")

    message_body = (
        f"Content-Type: multipart/mixed; boundary={boundary} \n"
        "MIME-Version: 1.0\n"
        f"to: {envelope.to}\n"
        f"from: {envelope.sender}\n"
        f"subject: {envelope.subject}\n\n"

        f"--{boundary}\n"
        'Content-Type: text/plain; charset="UTF-8"\n'
        "MIME-Version: 1.0\n"
        "Content-Transfer-Encoding: 7bit\n\n"
        f"{content}\n\n"
        f"--{boundary}\n"

        f'Content-Type: {attachment.content_type}; name="{file_name}" \n'
        "MIME-Version: 1.0\n"
        "Content-Transfer-Encoding: base64\n"
        f'Content-Disposition: attachment; filename="{file_name}" \n\n'
        f"{file_data}"
        f"--{boundary}--"
    ).encode("utf-8")

    return EncodedMessage(raw=base64url_encode(message_body))
