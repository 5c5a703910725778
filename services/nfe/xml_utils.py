"""XML helpers for reading NF-e documents with lxml.

NF-e exports are inconsistent about namespaces: most declare the
portalfiscal namespace, some emitters strip it. Every lookup here tries the
namespaced tag first and falls back to the bare tag.
"""

import logging
import re
from decimal import Decimal, InvalidOperation

from lxml import etree

logger = logging.getLogger(__name__)

NFE_NAMESPACE = "http://www.portalfiscal.inf.br/nfe"

# Unparseable numeric fields read as zero instead of failing the import.
LENIENT_NUMBER_DEFAULT = Decimal("0")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_xml_document(xml_text: str) -> etree._Element:
    """Parse XML text into an element tree root.

    The text is always read as UTF-8, whatever its declaration says. Entity
    expansion and network access are disabled for untrusted uploads.

    Raises:
        etree.XMLSyntaxError: If the document is not well-formed
    """
    parser = etree.XMLParser(
        encoding="utf-8",
        resolve_entities=False,
        no_network=True,
        recover=False,
    )
    return etree.fromstring(xml_text.encode("utf-8"), parser)


def local_name(element: etree._Element) -> str:
    """Tag name without namespace ('' for comments and processing instructions)."""
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def find_first(element: etree._Element | None, tag: str) -> etree._Element | None:
    """First descendant named `tag`, namespaced match preferred."""
    if element is None:
        return None
    found = next(element.iterdescendants(f"{{{NFE_NAMESPACE}}}{tag}"), None)
    if found is None:
        found = next(element.iterdescendants(tag), None)
    return found


def find_all(element: etree._Element | None, tag: str) -> list[etree._Element]:
    """All descendants named `tag` in document order, namespaced matches preferred."""
    if element is None:
        return []
    found = list(element.iterdescendants(f"{{{NFE_NAMESPACE}}}{tag}"))
    if not found:
        found = list(element.iterdescendants(tag))
    return found


def _text_content(element: etree._Element) -> str:
    # Only element text and tails count; unresolved entity nodes add nothing.
    parts = [element.text or ""]
    for child in element:
        if isinstance(child.tag, str):
            parts.append(_text_content(child))
        parts.append(child.tail or "")
    return "".join(parts)


def get_text(element: etree._Element | None, tag: str) -> str:
    """Stripped text of the first descendant named `tag`, or ''.

    A namespaced match only wins when it has text; otherwise the bare
    tag is tried.
    """
    if element is None:
        return ""

    with_ns = next(element.iterdescendants(f"{{{NFE_NAMESPACE}}}{tag}"), None)
    if with_ns is not None:
        text = _text_content(with_ns)
        if text:
            return text.strip()

    without_ns = next(element.iterdescendants(tag), None)
    if without_ns is not None:
        text = _text_content(without_ns)
        if text:
            return text.strip()

    return ""


def parse_number(text: str) -> Decimal:
    """Parse a numeric field, accepting a comma as decimal separator.

    Anything that is not a finite number yields LENIENT_NUMBER_DEFAULT. Only
    the first comma is replaced, so thousands separators ("1.234,56") are
    not supported and read as LENIENT_NUMBER_DEFAULT.
    """
    cleaned = text.strip().replace(",", ".", 1)
    if not cleaned:
        return LENIENT_NUMBER_DEFAULT
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        logger.debug(f"Non-numeric value '{text}' read as {LENIENT_NUMBER_DEFAULT}")
        return LENIENT_NUMBER_DEFAULT
    if not value.is_finite():
        return LENIENT_NUMBER_DEFAULT
    return value


def get_number(element: etree._Element | None, tag: str) -> Decimal:
    """Numeric value of the first descendant named `tag`."""
    return parse_number(get_text(element, tag))


def normalize_date(raw: str) -> tuple[str, bool]:
    """Normalize an NF-e issue date to YYYY-MM-DD.

    Handles ISO-8601 timestamps (dhEmi, date portion kept as written) and
    DD/MM/YYYY. Plain YYYY-MM-DD passes through. Anything else is
    returned unchanged.

    Returns:
        Tuple of (date string, whether the format was recognised)
    """
    if "T" in raw:
        return raw.split("T", 1)[0], True

    if "/" in raw:
        parts = raw.split("/")
        if len(parts) == 3:
            day, month, year = parts
            return f"{year}-{month}-{day}", True
        return raw, False

    return raw, bool(_ISO_DATE.match(raw))
