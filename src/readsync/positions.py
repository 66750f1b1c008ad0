"""
Translate reading positions between the reader and the progress server.

Fixed-layout documents (PDF, CBZ) travel as 1-based page numbers. Reflowable
documents travel as KOReader XPointers when the rendered content lets us
translate the CFI, and fall back to the CFI itself (which KOReader ignores, so
effectively percentage only) when it does not.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from .xpointer import CFI_PREFIX, XPOINTER_PREFIX, collapse_cfi

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedPage:
    index: int
    total: int


@dataclass(frozen=True)
class Flowing:
    pointer: Optional[str]
    percentage: float


Position = Union[FixedPage, Flowing]


@dataclass(frozen=True)
class WireProgress:
    progress: str
    percentage: float


@dataclass(frozen=True)
class LocalProgress:
    """What the reader knows about the open document. updated_at is in milliseconds."""
    position: Position
    updated_at: float = 0
    label: str = ""


@dataclass(frozen=True)
class NavigationTarget:
    page_index: Optional[int] = None
    pointer: Optional[str] = None
    fraction: Optional[float] = None


class PointerTranslator(Protocol):
    def cfi_to_xpointer(self, cfi: str) -> str: ...

    def xpointer_to_cfi(self, xpointer: str) -> str: ...


def is_cfi(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(CFI_PREFIX)


def is_xpointer(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(XPOINTER_PREFIX)


def encode_fixed(position: FixedPage) -> WireProgress:
    page = position.index + 1
    percentage = page / position.total if position.total > 0 else 0
    return WireProgress(str(page), percentage)


def decode_fixed(progress: Optional[str], total: int = 0) -> Optional[FixedPage]:
    try:
        page = int(progress)
    except (TypeError, ValueError):
        return None
    return FixedPage(page - 1, total)


def encode_flowing(position: Flowing, translator: Optional[PointerTranslator] = None) -> WireProgress:
    progress = position.pointer or ""
    if progress and translator is not None:
        try:
            progress = translator.cfi_to_xpointer(progress)
        except Exception as e:
            logger.warning(f"Failed to convert CFI to XPointer, progress will be sent as percentage only: {e}")
    elif progress:
        logger.debug("No rendered content to translate against, sending CFI as-is")
    return WireProgress(progress, position.percentage)


def decode_flowing(progress: Optional[str], percentage: Optional[float],
                   translator: Optional[PointerTranslator] = None) -> Optional[NavigationTarget]:
    by_fraction = NavigationTarget(fraction=percentage) if percentage is not None else None
    if is_xpointer(progress):
        if translator is None:
            logger.warning("No rendered content to translate XPointer against, falling back to percentage")
            return by_fraction
        try:
            return NavigationTarget(pointer=translator.xpointer_to_cfi(progress))
        except Exception as e:
            logger.warning(f"Failed to convert XPointer to CFI, falling back to percentage: {e}")
            return by_fraction
    if is_cfi(progress):
        return NavigationTarget(pointer=progress)
    return by_fraction


def encode(position: Position, translator: Optional[PointerTranslator] = None) -> WireProgress:
    if isinstance(position, FixedPage):
        return encode_fixed(position)
    return encode_flowing(position, translator)


def local_identifier(position: Position) -> Optional[str]:
    if isinstance(position, FixedPage):
        return str(position.index)
    return position.pointer


def remote_identifier(progress: Optional[str], fixed_layout: bool) -> Optional[str]:
    if fixed_layout:
        page = decode_fixed(progress)
        return str(page.index) if page else None
    return progress if is_cfi(progress) else None


def positions_equal(local_id: Optional[str], remote_id: Optional[str],
                    local_pct: float, remote_pct: Optional[float], tolerance: float) -> bool:
    if is_cfi(local_id) and is_cfi(remote_id):
        if collapse_cfi(local_id) == collapse_cfi(remote_id):
            return True
    if remote_pct is None:
        return False
    return abs(local_pct - remote_pct) < tolerance
