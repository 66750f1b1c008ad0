"""
EPUB CFI <-> KOReader XPointer translation for one rendered spine item.

A CFI such as ``epubcfi(/6/4!/4/2/3:10)`` addresses nodes by position: even
steps are element children (``step / 2``), odd steps are the text chunks
between them, and ``:10`` is a character offset. KOReader's XPointer names the
same place as ``/body/DocFragment[2]/body/p/text().10``: the spine item is
``DocFragment[spine_index + 1]``, elements are addressed by tag name and
1-based index among same-named siblings, and text nodes by ordinal.
"""

import re
from typing import List, Optional, Tuple

import lxml.etree as ET

from .errors import TranslationError

CFI_PREFIX = "epubcfi("
XPOINTER_PREFIX = "/body"

_ASSERTION = re.compile(r"\[[^\]]*\]")
_FRAGMENT = re.compile(r"^/body/DocFragment\[(\d+)\](.*)$")
_SEGMENT = re.compile(r"^([A-Za-z_][\w-]*)(?:\[(\d+)\])?$")
_TEXT = re.compile(r"^text\(\)(?:\[(\d+)\])?(?:\.(\d+))?$")


def collapse_cfi(cfi: str) -> str:
    """Collapse a range CFI ``epubcfi(P,S,E)`` to its start ``epubcfi(PS)``."""
    if not cfi or not cfi.startswith(CFI_PREFIX) or not cfi.endswith(")"):
        return cfi
    inner = cfi[len(CFI_PREFIX):-1]
    parts = inner.split(",")
    if len(parts) != 3:
        return cfi
    return f"{CFI_PREFIX}{parts[0]}{parts[1]})"


def _elements(node) -> list:
    return [c for c in node if isinstance(c.tag, str)]


def _text_slots(node) -> List[Optional[str]]:
    """Slot 0 is node.text, slot j is the tail of element child j-1."""
    return [node.text] + [c.tail for c in _elements(node)]


def _has_text(text: Optional[str]) -> bool:
    return bool(text and text.strip())


def _local_name(node) -> str:
    return ET.QName(node).localname.lower()


class XCFI:
    def __init__(self, document, spine_index: int = 0):
        if isinstance(document, (str, bytes)):
            content = document.encode('utf-8') if isinstance(document, str) else document
            parser = ET.HTMLParser(encoding='utf-8')
            document = ET.fromstring(content, parser)
        if hasattr(document, "getroot"):
            document = document.getroot()
        if document is None:
            raise TranslationError("Empty content document")
        self.root = document
        self.spine_index = spine_index

    # CFI -> XPointer

    def _parse_cfi(self, cfi: str) -> Tuple[int, List[int], Optional[int]]:
        cfi = collapse_cfi(cfi)
        if not cfi.startswith(CFI_PREFIX) or not cfi.endswith(")"):
            raise TranslationError(f"Not a CFI: {cfi}")
        inner = _ASSERTION.sub("", cfi[len(CFI_PREFIX):-1])
        if "!" not in inner:
            raise TranslationError(f"CFI has no content path: {cfi}")
        package, content = inner.split("!", 1)

        package_steps = [s for s in package.split("/") if s]
        try:
            spine_index = int(package_steps[-1]) // 2 - 1
        except (IndexError, ValueError):
            raise TranslationError(f"Bad package path in {cfi}")

        offset = None
        if ":" in content:
            content, raw_offset = content.rsplit(":", 1)
            try:
                offset = int(raw_offset.split("~")[0].split("@")[0])
            except ValueError:
                raise TranslationError(f"Bad character offset in {cfi}")
        try:
            steps = [int(s) for s in content.split("/") if s]
        except ValueError:
            raise TranslationError(f"Bad content path in {cfi}")
        return spine_index, steps, offset

    def cfi_to_xpointer(self, cfi: str) -> str:
        spine_index, steps, offset = self._parse_cfi(cfi)
        if spine_index != self.spine_index:
            raise TranslationError(f"CFI points at spine item {spine_index}, content is {self.spine_index}")
        if not steps:
            raise TranslationError(f"CFI has an empty content path: {cfi}")

        node = self.root
        segments = []
        text_slot = None
        for position, step in enumerate(steps):
            if step % 2 == 1:
                if position != len(steps) - 1:
                    raise TranslationError(f"Text step in the middle of {cfi}")
                text_slot = (step - 1) // 2
                break
            children = _elements(node)
            index = step // 2 - 1
            if index < 0 or index >= len(children):
                raise TranslationError(f"CFI step /{step} out of range in {cfi}")
            node = children[index]
            name = _local_name(node)
            siblings = [c for c in children if _local_name(c) == name]
            if len(siblings) > 1:
                segments.append(f"{name}[{siblings.index(node) + 1}]")
            else:
                segments.append(name)

        xpointer = f"/body/DocFragment[{self.spine_index + 1}]/" + "/".join(segments)
        if text_slot is None and offset is None:
            return xpointer

        slots = _text_slots(node)
        if text_slot is None:
            text_slot = 0
        if text_slot >= len(slots):
            raise TranslationError(f"CFI text step out of range in {cfi}")
        ordinal = sum(1 for text in slots[:text_slot + 1] if _has_text(text))
        if not _has_text(slots[text_slot]):
            # Whitespace-only chunk: anchor to the element itself
            return xpointer
        text = "text()" if ordinal == 1 else f"text()[{ordinal}]"
        return f"{xpointer}/{text}.{offset or 0}"

    # XPointer -> CFI

    def xpointer_to_cfi(self, xpointer: str) -> str:
        match = _FRAGMENT.match(xpointer or "")
        if not match:
            raise TranslationError(f"Not a KOReader XPointer: {xpointer}")
        fragment = int(match.group(1))
        if fragment - 1 != self.spine_index:
            raise TranslationError(f"XPointer points at DocFragment[{fragment}], content is {self.spine_index + 1}")

        node = self.root
        steps = []
        text_part = None
        segments = [s for s in match.group(2).split("/") if s]
        for position, segment in enumerate(segments):
            text_match = _TEXT.match(segment)
            if text_match:
                if position != len(segments) - 1:
                    raise TranslationError(f"text() in the middle of {xpointer}")
                text_part = (int(text_match.group(1) or 1), int(text_match.group(2) or 0))
                break

            element_offset = None
            if "." in segment and not _SEGMENT.match(segment):
                segment, raw = segment.rsplit(".", 1)
                if not raw.isdigit():
                    raise TranslationError(f"Bad segment '{segment}' in {xpointer}")
                element_offset = int(raw)
            seg_match = _SEGMENT.match(segment)
            if not seg_match:
                raise TranslationError(f"Bad segment '{segment}' in {xpointer}")
            name, index = seg_match.group(1).lower(), int(seg_match.group(2) or 1)
            children = _elements(node)
            same_name = [c for c in children if _local_name(c) == name]
            if index < 1 or index > len(same_name):
                raise TranslationError(f"No element {segment} in {xpointer}")
            node = same_name[index - 1]
            steps.append((children.index(node) + 1) * 2)
            if element_offset is not None:
                text_part = (1, element_offset)
                if position != len(segments) - 1:
                    raise TranslationError(f"Offset in the middle of {xpointer}")

        if not steps:
            raise TranslationError(f"XPointer has no element path: {xpointer}")

        path = "".join(f"/{s}" for s in steps)
        if text_part is not None:
            ordinal, offset = text_part
            seen = 0
            for slot, text in enumerate(_text_slots(node)):
                if _has_text(text):
                    seen += 1
                    if seen == ordinal:
                        path += f"/{slot * 2 + 1}:{offset}"
                        break
            else:
                if ordinal != 1 or offset:
                    raise TranslationError(f"No text node {ordinal} in {xpointer}")

        return f"{CFI_PREFIX}/6/{(self.spine_index + 1) * 2}!{path})"
