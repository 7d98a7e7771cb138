"""
Structural comparison of job documents.

Jenkins reformats config.xml on storage (declaration, indentation,
attribute order, plugin versions), so documents are compared in a
canonical form rather than byte for byte.
"""

import logging
import re
import xml.etree.ElementTree as ET

logger = logging.getLogger(__name__)

_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


def parse_document(xml: str) -> ET.Element:
    """Parse a config.xml document, ignoring its XML declaration."""
    return ET.fromstring(_DECLARATION.sub("", xml, count=1))


def canonical_xml(xml: str) -> str:
    """
    Canonical form of a job document.

    plugin attributes are dropped (Jenkins rewrites them to "name@version")
    and whitespace around text content is ignored.

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not well-formed
    """
    root = parse_document(xml)
    for element in root.iter():
        element.attrib.pop("plugin", None)
    return ET.canonicalize(ET.tostring(root, encoding="unicode"), strip_text=True)


def documents_equivalent(current: str | None, desired: str) -> bool:
    """True when the stored document matches the desired one structurally."""
    if current is None:
        return False
    try:
        return canonical_xml(current) == canonical_xml(desired)
    except ET.ParseError as e:
        logger.warning(f"Stored job document is not well-formed, treating as changed: {e}")
        return False
