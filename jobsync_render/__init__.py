"""
Jobsync render module.

Turns RepositoryRecords into Jenkins config.xml documents and compares
stored documents against rendered ones.
"""

from .compare import canonical_xml, documents_equivalent, parse_document
from .renderer import render

__all__ = ["canonical_xml", "documents_equivalent", "parse_document", "render"]
