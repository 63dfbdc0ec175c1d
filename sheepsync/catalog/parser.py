"""
Catalog document decoding for Sheep Sync.

The server sends an XML sheep list, optionally gzip-compressed. Decoding is
tolerant: a bad <sheep> element is skipped, and a truncated document still
yields every sheep parsed before the damage.
"""

import struct
import xml.etree.ElementTree as ET
import zlib
from typing import Iterable, Optional

from ..core.errors import CatalogCorrupt
from ..core.logging import debug_log
from .models import ContentItem

GZIP_MAGIC = b"\x1f\x8b"
GZIP_HEADER_SIZE = 10
GZIP_FOOTER_SIZE = 8

# Gzip header flag bits
FHCRC = 0x02
FEXTRA = 0x04
FNAME = 0x08
FCOMMENT = 0x10

SHEEP_TAG = "sheep"

# Characters that would break the composite key or the cache filename
_FORBIDDEN_ID_CHARS = set("=/\\")


def _gzip_header_length(data: bytes) -> int:
    """Return the offset of the DEFLATE stream inside a gzip member."""
    if len(data) < GZIP_HEADER_SIZE:
        raise CatalogCorrupt("Gzip data shorter than header")

    flags = data[3]
    pos = GZIP_HEADER_SIZE

    if flags & FEXTRA:
        if len(data) < pos + 2:
            raise CatalogCorrupt("Gzip extra field truncated")
        extra_len = data[pos] | (data[pos + 1] << 8)
        pos += 2 + extra_len
    if flags & FNAME:
        end = data.find(b"\x00", pos)
        if end < 0:
            raise CatalogCorrupt("Gzip filename not terminated")
        pos = end + 1
    if flags & FCOMMENT:
        end = data.find(b"\x00", pos)
        if end < 0:
            raise CatalogCorrupt("Gzip comment not terminated")
        pos = end + 1
    if flags & FHCRC:
        pos += 2

    if len(data) <= pos + GZIP_FOOTER_SIZE:
        raise CatalogCorrupt("Gzip data has no compressed body")
    return pos


def decompress_gzip(data: bytes) -> bytes:
    """
    Inflate a single gzip member.

    Skips the variable-length header, inflates the raw DEFLATE body, and
    checks the 8-byte footer (CRC32 + length) against the result.
    """
    start = _gzip_header_length(data)
    body = data[start:-GZIP_FOOTER_SIZE]

    try:
        inflated = zlib.decompress(body, -zlib.MAX_WBITS)
    except zlib.error as e:
        raise CatalogCorrupt(f"Failed to decompress catalog: {e}") from e

    crc, isize = struct.unpack("<II", data[-GZIP_FOOTER_SIZE:])
    if zlib.crc32(inflated) != crc or len(inflated) & 0xFFFFFFFF != isize:
        raise CatalogCorrupt("Gzip footer does not match decompressed data")
    return inflated


def decode_catalog_body(data: bytes) -> bytes:
    """Return the XML document, decompressing it first if it is gzip."""
    if not data:
        raise CatalogCorrupt("Empty catalog response")
    if data.startswith(GZIP_MAGIC):
        data = decompress_gzip(data)
    if not data.strip():
        raise CatalogCorrupt("Empty catalog document")
    return data


def _int_attr(attrs: dict, name: str) -> int:
    """Missing numeric attributes default to 0; malformed ones raise ValueError."""
    value = attrs.get(name)
    if value is None or value.strip() == "":
        return 0
    return int(value.strip())


def _item_from_attributes(attrs: dict) -> Optional[ContentItem]:
    """Build a ContentItem from a <sheep> element's attributes, or None if malformed."""
    sheep_id = (attrs.get("id") or "").strip()
    if not sheep_id or _FORBIDDEN_ID_CHARS & set(sheep_id):
        return None

    try:
        generation = _int_attr(attrs, "generation")
        first = _int_attr(attrs, "first")
        last = _int_attr(attrs, "last")
        size = _int_attr(attrs, "size") if "size" in attrs else None
    except ValueError:
        return None

    if generation < 0 or last < first:
        return None

    url = (attrs.get("url") or "").strip() or None
    return ContentItem(
        id=sheep_id,
        generation=generation,
        first=first,
        last=last,
        # A zero size carries no information to validate against
        size=size if size and size > 0 else None,
        url=url,
    )


def parse_catalog(data: bytes) -> list[ContentItem]:
    """
    Parse a sheep list document into ContentItems, in document order.

    Raises:
        CatalogCorrupt: if the document is unparseable and yielded no sheep
    """
    parser = ET.XMLPullParser(events=("end",))
    error = None
    try:
        parser.feed(data)
        parser.close()
    except ET.ParseError as e:
        error = e

    items: list[ContentItem] = []
    skipped = 0
    try:
        # A syntax error hit during feed() is raised here, after the
        # events that preceded it
        for _, elem in parser.read_events():
            if elem.tag != SHEEP_TAG:
                continue
            item = _item_from_attributes(elem.attrib)
            if item is None:
                skipped += 1
                continue
            items.append(item)
    except ET.ParseError as e:
        error = error or e

    if skipped:
        debug_log(f"CATALOG | skipped_malformed={skipped}")

    if error is not None:
        if not items:
            raise CatalogCorrupt(f"Unparseable catalog: {error}") from error
        debug_log(f"CATALOG | truncated after {len(items)} sheep | error={error}")

    return items


def diff(catalog_items: Iterable[ContentItem], local_ids: set[str]) -> list[ContentItem]:
    """Catalog items whose full_id is not already cached, in catalog order."""
    return [item for item in catalog_items if item.full_id not in local_ids]
