"""
Content-type sniffing for uploaded attachments.

Implements a subset of the WHATWG MIME sniffing algorithm, so the
type we put in the attachment header depends only on the file's bytes and
never on the client-supplied filename or Content-Type.
"""

from typing import Callable, List, Tuple

SNIFF_LEN = 512

DEFAULT_TYPE = "application/octet-stream"
TEXT_TYPE = "text/plain; charset=utf-8"

_WHITESPACE = b"\t\n\x0c\r "


def _is_ws(b: int) -> bool:
    return b in _WHITESPACE


def _is_tt(b: int) -> bool:
    # tag-terminating byte
    return b in (0x20, 0x3E)


def _exact(sig: bytes) -> Callable[[bytes, int], bool]:
    def match(data: bytes, first_non_ws: int) -> bool:
        return data.startswith(sig)
    return match


def _masked(mask: bytes, pat: bytes, skip_ws: bool = False) -> Callable[[bytes, int], bool]:
    assert len(mask) == len(pat)

    def match(data: bytes, first_non_ws: int) -> bool:
        if skip_ws:
            data = data[first_non_ws:]
        if len(data) < len(pat):
            return False
        return all(data[i] & mask[i] == pat[i] for i in range(len(pat)))
    return match


def _html(tag: bytes) -> Callable[[bytes, int], bool]:
    def match(data: bytes, first_non_ws: int) -> bool:
        data = data[first_non_ws:]
        if len(data) < len(tag) + 1:
            return False
        for i, b in enumerate(tag):
            db = data[i]
            if ord("A") <= b <= ord("Z"):
                db &= 0xDF
            if b != db:
                return False
        return _is_tt(data[len(tag)])
    return match


def _mp4(data: bytes, first_non_ws: int) -> bool:
    if len(data) < 12:
        return False
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0:
        return False
    if data[4:8] != b"ftyp":
        return False
    for st in range(8, box_size, 4):
        if st == 12:
            # minor version number
            continue
        if data[st:st + 3] == b"mp4":
            return True
    return False


def _text(data: bytes, first_non_ws: int) -> bool:
    for b in data[first_non_ws:]:
        if b <= 0x08 or b == 0x0B or 0x0E <= b <= 0x1A or 0x1C <= b <= 0x1F:
            return False
    return True


_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)

_SIGNATURES: List[Tuple[Callable[[bytes, int], bool], str]] = [
    *[(_html(tag), "text/html; charset=utf-8") for tag in _HTML_TAGS],
    (_masked(b"\xFF\xFF\xFF\xFF\xFF", b"<?xml", skip_ws=True), "text/xml; charset=utf-8"),
    (_exact(b"%PDF-"), "application/pdf"),
    (_exact(b"%!PS-Adobe-"), "application/postscript"),

    # UTF BOMs
    (_masked(b"\xFF\xFF\x00\x00", b"\xFE\xFF\x00\x00"), "text/plain; charset=utf-16be"),
    (_masked(b"\xFF\xFF\x00\x00", b"\xFF\xFE\x00\x00"), "text/plain; charset=utf-16le"),
    (_masked(b"\xFF\xFF\xFF\x00", b"\xEF\xBB\xBF\x00"), TEXT_TYPE),

    # images
    (_exact(b"\x00\x00\x01\x00"), "image/x-icon"),
    (_exact(b"\x00\x00\x02\x00"), "image/x-icon"),
    (_exact(b"BM"), "image/bmp"),
    (_exact(b"GIF87a"), "image/gif"),
    (_exact(b"GIF89a"), "image/gif"),
    (_masked(b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF\xFF\xFF",
             b"RIFF\x00\x00\x00\x00WEBPVP"), "image/webp"),
    (_exact(b"\x89PNG\x0D\x0A\x1A\x0A"), "image/png"),
    (_exact(b"\xFF\xD8\xFF"), "image/jpeg"),

    # audio and video
    (_masked(b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF",
             b"FORM\x00\x00\x00\x00AIFF"), "audio/aiff"),
    (_masked(b"\xFF\xFF\xFF", b"ID3"), "audio/mpeg"),
    (_masked(b"\xFF\xFF\xFF\xFF\xFF", b"OggS\x00"), "application/ogg"),
    (_masked(b"\xFF\xFF\xFF\xFF\xFF\xFF\xFF\xFF", b"MThd\x00\x00\x00\x06"), "audio/midi"),
    (_masked(b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF",
             b"RIFF\x00\x00\x00\x00AVI "), "video/avi"),
    (_masked(b"\xFF\xFF\xFF\xFF\x00\x00\x00\x00\xFF\xFF\xFF\xFF",
             b"RIFF\x00\x00\x00\x00WAVE"), "audio/wave"),
    (_mp4, "video/mp4"),
    (_exact(b"\x1A\x45\xDF\xA3"), "video/webm"),

    # fonts
    (_masked(b"\x00" * 34 + b"\xFF\xFF", b"\x00" * 34 + b"LP"), "application/vnd.ms-fontobject"),
    (_exact(b"\x00\x01\x00\x00"), "font/ttf"),
    (_exact(b"OTTO"), "font/otf"),
    (_exact(b"ttcf"), "font/collection"),
    (_exact(b"wOFF"), "font/woff"),
    (_exact(b"wOF2"), "font/woff2"),

    # archives
    (_exact(b"\x1F\x8B\x08"), "application/x-gzip"),
    (_exact(b"PK\x03\x04"), "application/zip"),
    (_exact(b"Rar!\x1A\x07\x00"), "application/x-rar-compressed"),
    (_exact(b"Rar!\x1A\x07\x01\x00"), "application/x-rar-compressed"),
    (_exact(b"\x00\x61\x73\x6D"), "application/wasm"),

    (_text, TEXT_TYPE),
]


def detect_content_type(data: bytes) -> str:
    """
    Return the MIME type of ``data`` judged from at most its first 512 bytes.

    Always returns a valid type, falling back to application/octet-stream
    when nothing more specific matches.
    """
    data = bytes(data[:SNIFF_LEN])

    first_non_ws = 0
    while first_non_ws < len(data) and _is_ws(data[first_non_ws]):
        first_non_ws += 1

    for match, content_type in _SIGNATURES:
        if match(data, first_non_ws):
            return content_type
    return DEFAULT_TYPE
