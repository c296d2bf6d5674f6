"""Minimal regex-based XML element reader for the OOXML parts sheetguard needs.

This is a narrow adapter, not a general XML parser.  It understands the
shapes actually emitted for relationship parts, drawings, the vendor
``cellimages.xml`` part, ``workbook.xml`` and worksheet cell/formula
markup, and exposes a ``getElementsByTagName`` / ``getAttribute`` style API
over them.

Known gaps:

- CDATA sections are not recognised; markup inside them is read as markup.
- Comments and processing instructions are not skipped.
- An unescaped ``>`` inside an attribute value ends the tag early.
- Tag names are matched by qualified name (or by local name when the query
  has no prefix); namespace URIs are never resolved.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from functools import lru_cache

_NAME_CHARS = r"[\w.\-]"


@dataclass
class XmlElement:
    """One matched element: its qualified tag, attributes and inner markup."""

    tag: str
    attributes: dict[str, str]
    inner: str = ""
    start: int = 0
    end: int = 0
    children_cache: dict[str, list[XmlElement]] = field(default_factory=dict, repr=False)

    @property
    def local_name(self) -> str:
        return self.tag.rsplit(":", 1)[-1]

    def get_attribute(self, name: str) -> str | None:
        return _lookup_attribute(self.attributes, name)

    def find_all(self, tag: str) -> list[XmlElement]:
        if tag not in self.children_cache:
            self.children_cache[tag] = find_elements(self.inner, tag)
        return self.children_cache[tag]

    def find(self, tag: str) -> XmlElement | None:
        found = self.find_all(tag)
        return found[0] if found else None

    @property
    def text(self) -> str:
        """Inner text with child markup removed and entities decoded."""
        return unescape(re.sub(r"<[^>]*>", "", self.inner))


# ---------------------------------------------------------------------------
# Attribute parsing
# ---------------------------------------------------------------------------

_ATTR_RE = re.compile(
    rf"({_NAME_CHARS}+(?::{_NAME_CHARS}+)?)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')"
)


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse ``name="value"`` pairs from the attribute text of a start tag."""
    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(raw):
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attrs[match.group(1)] = unescape(value)
    return attrs


def _lookup_attribute(attrs: dict[str, str], name: str) -> str | None:
    if name in attrs:
        return attrs[name]
    # Writers are free to choose namespace prefixes; fall back to local name.
    local = name.rsplit(":", 1)[-1]
    for key, value in attrs.items():
        if key.rsplit(":", 1)[-1] == local:
            return value
    return None


def get_attribute(element: XmlElement, name: str) -> str | None:
    """``getAttribute`` equivalent; tolerates a different namespace prefix."""
    return element.get_attribute(name)


def unescape(text: str) -> str:
    """Decode XML character and entity references."""
    if "&" not in text:
        return text
    return html.unescape(text)


# ---------------------------------------------------------------------------
# Element matching
# ---------------------------------------------------------------------------


@lru_cache(maxsize=128)
def _tag_pattern(tag: str) -> re.Pattern[str]:
    if ":" in tag:
        name = re.escape(tag)
    else:
        name = rf"(?:{_NAME_CHARS}+:)?{re.escape(tag)}"
    return re.compile(rf"<(/?)({name})(?=[\s/>])([^>]*?)(/?)>", re.S)


def find_elements(xml: str, tag: str) -> list[XmlElement]:
    """Return every element named *tag* in document order.

    Nested elements with the same name are returned too, outer before
    inner, as ``getElementsByTagName`` would.
    """
    pattern = _tag_pattern(tag)
    found: list[XmlElement] = []
    stack: list[tuple[str, dict[str, str], int, int]] = []

    for match in pattern.finditer(xml):
        closing, qname, raw_attrs, self_closing = match.groups()
        if closing:
            if not stack:
                continue
            open_tag, attrs, open_start, inner_start = stack.pop()
            found.append(
                XmlElement(
                    tag=open_tag,
                    attributes=attrs,
                    inner=xml[inner_start:match.start()],
                    start=open_start,
                    end=match.end(),
                )
            )
        elif self_closing:
            found.append(
                XmlElement(
                    tag=qname,
                    attributes=parse_attributes(raw_attrs),
                    start=match.start(),
                    end=match.end(),
                )
            )
        else:
            stack.append((qname, parse_attributes(raw_attrs), match.start(), match.end()))

    found.sort(key=lambda el: el.start)
    return found


def find_first(xml: str, tag: str) -> XmlElement | None:
    elements = find_elements(xml, tag)
    return elements[0] if elements else None
