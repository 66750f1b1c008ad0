"""
Document identifiers for the progress server.

The server keys every progress slot on a digest of the document. KOReader
computes it either from a sparse sample of the file bytes ("binary") or from
the bare file name ("filename"). Both must match KOReader bit for bit, or the
two devices will never see each other's progress.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

CHECKSUM_BINARY = "binary"
CHECKSUM_FILENAME = "filename"

FIXED_LAYOUT_FORMATS = {"PDF", "CBZ"}


@dataclass
class Book:
    title: str
    format: str = "EPUB"
    hash: Optional[str] = None
    source_title: Optional[str] = None
    path: Optional[str] = None

    @property
    def is_fixed_layout(self) -> bool:
        return self.format.upper() in FIXED_LAYOUT_FORMATS


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()  # nosec - identifier, not security


def password_digest(password: str) -> str:
    """The userkey sent as X-Auth-Key. Raw passwords never leave this function."""
    return md5_hex((password or "").encode('utf-8'))


def partial_md5(path) -> Optional[str]:
    """
    KOReader's partialMD5: 1024 bytes sampled at 0, 1K, 4K, 16K ... 1G.

    KOReader computes the offsets with LuaJIT's bit.lshift(1024, 2*i) for i in
    -1..10. LuaJIT only honours the low 5 bits of the shift count, so the
    i=-1 step becomes lshift(1024, 30), which overflows 32 bits to offset 0.
    """
    if not path or not os.path.exists(path):
        return None

    md5 = hashlib.md5()  # nosec
    step = size = 1024
    try:
        with open(path, 'rb') as f:
            for i in range(-1, 11):
                offset = (step << ((2 * i) & 0x1F)) & 0xFFFFFFFF
                f.seek(offset)
                chunk = f.read(size)
                if not chunk:
                    break
                md5.update(chunk)
    except OSError as e:
        logger.error(f"Failed to hash {path}: {e}")
        return None
    return md5.hexdigest()


def filename_digest(name: str) -> str:
    normalized = name.replace('\\', '/')
    base = normalized.split('/')[-1]
    stem = '.'.join(base.split('.')[:-1]) if '.' in base else base
    return md5_hex((stem or normalized).encode('utf-8'))


def document_digest(book: Optional[Book], method: str = CHECKSUM_BINARY) -> Optional[str]:
    if book is None:
        return None
    if method == CHECKSUM_FILENAME:
        name = book.source_title or book.title
        return filename_digest(name) if name else None
    if book.hash:
        return book.hash
    digest = partial_md5(book.path)
    if digest:
        book.hash = digest
    return digest
