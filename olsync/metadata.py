"""Extraction of JSON metadata embedded in Overleaf HTML pages.

Overleaf has no public API for the dashboard and editor data, but embeds it
in ``<meta>`` tags. The exact tag changed several times, so each value is
looked up with an ordered chain of small extractors; the first one that
returns something wins.
"""

import json
import logging
import re
from typing import Any, Callable, Optional, TypeVar

from lxml import etree, html

logger = logging.getLogger(__name__)

T = TypeVar("T")

Extractor = Callable[[Any], Optional[T]]

_CSRF_SCRIPT_PATTERN = re.compile(r"csrfToken[\"']?\s*[:=]\s*[\"']([^\"']+)[\"']")


def parse_html(text: str) -> Optional[Any]:
    """Parse an HTML document, returning None for empty or unparsable input."""
    if not text or not text.strip():
        return None
    try:
        return html.fromstring(text)
    except (etree.ParserError, ValueError) as e:
        logger.debug("Could not parse HTML: %s", e)
        return None


def first_match(extractors: list[Extractor], tree: Any) -> Optional[Any]:
    """Run extractors in order and return the first non-None result."""
    if tree is None:
        return None
    for extractor in extractors:
        result = extractor(tree)
        if result is not None:
            logger.debug("Metadata found by %s", extractor.__name__)
            return result
    return None


def _meta_content(tree: Any, name: str) -> Optional[str]:
    values = tree.xpath(f'//meta[@name="{name}"]/@content')
    return str(values[0]) if values else None


def _load_json(content: Optional[str]) -> Optional[Any]:
    if not content:
        return None
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return None


# =========================
# CSRF token
# =========================


def csrf_from_meta(tree: Any) -> Optional[str]:
    return _meta_content(tree, "ol-csrfToken") or None


def csrf_from_input(tree: Any) -> Optional[str]:
    values = tree.xpath('//input[@name="_csrf"]/@value')
    return str(values[0]) if values and values[0] else None


def csrf_from_script(tree: Any) -> Optional[str]:
    for script in tree.xpath("//script"):
        match = _CSRF_SCRIPT_PATTERN.search(script.text or "")
        if match:
            return match.group(1)
    return None


CSRF_EXTRACTORS: list[Extractor] = [csrf_from_meta, csrf_from_input, csrf_from_script]


def extract_csrf_token(page: str) -> Optional[str]:
    """Find the CSRF token on a logged-in page."""
    return first_match(CSRF_EXTRACTORS, parse_html(page))


# =========================
# Project list
# =========================


def projects_from_prefetched_blob(tree: Any) -> Optional[list[dict[str, Any]]]:
    data = _load_json(_meta_content(tree, "ol-prefetchedProjectsBlob"))
    if isinstance(data, dict) and isinstance(data.get("projects"), list):
        return data["projects"]
    if isinstance(data, list):
        return data
    return None


def projects_from_any_meta(tree: Any) -> Optional[list[dict[str, Any]]]:
    for content in tree.xpath("//meta[@content]/@content"):
        if '"projects"' not in content:
            continue
        data = _load_json(str(content))
        if isinstance(data, dict) and isinstance(data.get("projects"), list):
            return data["projects"]
    return None


def projects_from_legacy_meta(tree: Any) -> Optional[list[dict[str, Any]]]:
    data = _load_json(_meta_content(tree, "ol-projects"))
    return data if isinstance(data, list) else None


PROJECT_LIST_EXTRACTORS: list[Extractor] = [
    projects_from_prefetched_blob,
    projects_from_any_meta,
    projects_from_legacy_meta,
]


def extract_projects(page: str) -> list[dict[str, Any]]:
    """Extract raw project dictionaries from the dashboard page."""
    result = first_match(PROJECT_LIST_EXTRACTORS, parse_html(page))
    return [p for p in result or [] if isinstance(p, dict)]


# =========================
# Project details
# =========================


def project_info_from_meta(tree: Any) -> Optional[dict[str, Any]]:
    data = _load_json(_meta_content(tree, "ol-project"))
    return data if isinstance(data, dict) else None


def project_info_from_any_meta(tree: Any) -> Optional[dict[str, Any]]:
    for content in tree.xpath("//meta[@content]/@content"):
        if "rootFolder" not in content:
            continue
        data = _load_json(str(content))
        if isinstance(data, dict):
            return data
    return None


PROJECT_INFO_EXTRACTORS: list[Extractor] = [
    project_info_from_meta,
    project_info_from_any_meta,
]


def extract_project_info(page: str) -> Optional[dict[str, Any]]:
    """Extract the project detail payload from the editor page."""
    return first_match(PROJECT_INFO_EXTRACTORS, parse_html(page))
