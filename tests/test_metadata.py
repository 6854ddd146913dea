"""Tests for note metadata extraction."""

import pytest

from vaultcue import ChunkingError, extract_metadata
from vaultcue.metadata import extract_aliases, extract_frontmatter, extract_links, extract_tags

NOTE = """---
tags: [project, "#draft"]
aliases: Alpha
status: active
---
# Heading

Working on #ideas/new and #project.
See [[Other Note|other]], [[Plan#Goals]] and [[Other Note]].
"""


class TestFrontmatter:
    """Tests for the YAML block at the top of a note."""

    def test_parsed(self):
        assert extract_frontmatter(NOTE) == {
            "tags": ["project", "#draft"],
            "aliases": "Alpha",
            "status": "active",
        }

    def test_missing(self):
        assert extract_frontmatter("# Just a heading\n") == {}

    def test_not_at_start(self):
        assert extract_frontmatter("intro\n---\na: 1\n---\n") == {}

    def test_non_mapping_ignored(self):
        assert extract_frontmatter("---\n- a\n- b\n---\nbody") == {}

    def test_invalid_yaml(self):
        with pytest.raises(ChunkingError) as exc_info:
            extract_frontmatter("---\ntags: [a\n---\nbody")

        assert exc_info.value.code == "YAML_PARSE_ERROR"


class TestTagsAndLinks:
    def test_tags_merge_inline_and_frontmatter(self):
        frontmatter = extract_frontmatter(NOTE)

        assert extract_tags(NOTE, frontmatter) == ["ideas/new", "project", "draft"]

    def test_headings_are_not_tags(self):
        assert extract_tags("# Title\n## Section\ntext #real") == ["real"]

    def test_links_cleaned_and_unique(self):
        assert extract_links(NOTE) == ["Other Note", "Plan"]

    def test_aliases(self):
        assert extract_aliases({"aliases": ["A", 3, "B"]}) == ["A", "B"]
        assert extract_aliases({"aliases": "A"}) == ["A"]
        assert extract_aliases(None) == []


class TestExtractMetadata:
    def test_full_note(self):
        meta = extract_metadata("notes/a.md", NOTE, modified=12.0)

        assert meta.path == "notes/a.md"
        assert meta.size == len(NOTE.encode("utf-8"))
        assert meta.modified == 12.0
        assert meta.tags == ["ideas/new", "project", "draft"]
        assert meta.links == ["Other Note", "Plan"]
        assert meta.aliases == ["Alpha"]
        assert meta.to_dict()["frontmatter"]["status"] == "active"

    def test_size_counts_bytes(self):
        assert extract_metadata("a.md", "é").size == 2
