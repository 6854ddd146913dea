"""Note metadata: YAML frontmatter, tags, wiki-links and aliases."""

from __future__ import annotations

import logging
import re
from typing import Any

import yaml

from vaultcue.errors import ChunkingError
from vaultcue.models import DocumentMetadata

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"\A---\n(.*?)\n---[ \t]*(?:\n|\Z)", re.S)
_TAG = re.compile(r"(?<![\w#&/])#([A-Za-z0-9/_-]+)")
_LINK = re.compile(r"\[\[(.*?)(?:\|.*?)?\]\]")


def split_frontmatter(content: str) -> tuple[str | None, str]:
    """Split ``content`` into its raw frontmatter block (or None) and body."""
    match = _FRONTMATTER.match(content)
    if match is None:
        return None, content
    return match.group(1), content[match.end():]


def extract_frontmatter(content: str) -> dict[str, Any]:
    """
    Parse the leading ``---`` YAML block of a note.

    Returns an empty dict when there is no block or it is not a mapping.

    Raises:
        ChunkingError: With code ``YAML_PARSE_ERROR`` if the block is not
            valid YAML.
    """
    raw, _ = split_frontmatter(content)
    if raw is None:
        return {}
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ChunkingError(f"Invalid frontmatter: {e}", code="YAML_PARSE_ERROR") from e
    if not isinstance(data, dict):
        logger.debug("Ignoring non-mapping frontmatter (%s)", type(data).__name__)
        return {}
    return data


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def extract_tags(content: str, frontmatter: dict[str, Any] | None = None) -> list[str]:
    """Inline ``#tags`` from the body followed by frontmatter ``tags``, deduplicated."""
    _, body = split_frontmatter(content)
    tags = dict.fromkeys(_TAG.findall(body))
    for tag in _as_list((frontmatter or {}).get("tags")):
        if isinstance(tag, str) and tag.strip():
            tags.setdefault(tag.strip().lstrip("#"), None)
    return list(tags)


def extract_links(content: str) -> list[str]:
    """Targets of ``[[wiki links]]``, without aliases, headings or queries."""
    links = {}
    for target in _LINK.findall(content):
        target = target.split("#")[0].split("?")[0].strip()
        if target:
            links.setdefault(target, None)
    return list(links)


def extract_aliases(frontmatter: dict[str, Any] | None) -> list[str]:
    return [a for a in _as_list((frontmatter or {}).get("aliases")) if isinstance(a, str)]


def extract_metadata(
    path: str,
    content: str,
    *,
    size: int | None = None,
    created: float | None = None,
    modified: float | None = None,
) -> DocumentMetadata:
    """
    Build the ``DocumentMetadata`` for one note.

    ``size`` defaults to the UTF-8 length of ``content``.

    Example:
        meta = extract_metadata("notes/a.md", text, modified=stat.st_mtime)
        task = Task(id=meta.path, kind=TaskKind.UPDATE, metadata=meta.to_dict())
    """
    frontmatter = extract_frontmatter(content)
    return DocumentMetadata(
        path=path,
        size=len(content.encode("utf-8")) if size is None else size,
        created=created,
        modified=modified,
        tags=extract_tags(content, frontmatter),
        links=extract_links(content),
        aliases=extract_aliases(frontmatter),
        frontmatter=frontmatter,
    )
