"""
Tests for the node content parser and frontmatter helpers.
"""

import hashlib


class TestParseFrontmatter:
    """Tests for the parse_frontmatter function."""

    def test_valid_frontmatter(self):
        """Test parsing valid YAML frontmatter."""
        from kegdex.utils import parse_frontmatter

        content = """---
title: Test Node
tags:
  - python
  - testing
---

# Body content
"""
        frontmatter, body = parse_frontmatter(content)

        assert frontmatter["title"] == "Test Node"
        assert frontmatter["tags"] == ["python", "testing"]
        assert body.strip() == "# Body content"

    def test_missing_frontmatter(self):
        """Test parsing content without frontmatter."""
        from kegdex.utils import parse_frontmatter

        content = "# Just a heading\n\nNo frontmatter here.\n"
        frontmatter, body = parse_frontmatter(content)

        assert frontmatter == {}
        assert body == content

    def test_invalid_yaml_frontmatter(self):
        """Invalid YAML is dropped but still stripped from the body."""
        from kegdex.utils import parse_frontmatter

        content = """---
title: [broken yaml syntax
---

Body content here.
"""
        frontmatter, body = parse_frontmatter(content)

        assert frontmatter == {}
        assert "broken" not in body
        assert "Body content here." in body


class TestParseContent:
    """Tests for parse_content."""

    def test_title_lead_and_links(self):
        from kegdex.content import parse_content
        from kegdex.models import NodeId

        raw = b"# Title\n\nThe lead\nspans two lines.\n\nSee ../3 and [x](../1).\n"
        content = parse_content(raw)

        assert content.title == "Title"
        assert content.lead == "The lead spans two lines."
        assert content.links == [NodeId(id=3), NodeId(id=1)]

    def test_no_heading_gives_empty_title(self):
        from kegdex.content import parse_content

        content = parse_content(b"Just a paragraph.\n\nAnother.\n")

        assert content.title == ""
        assert content.lead == "Just a paragraph."

    def test_no_paragraph_after_heading(self):
        from kegdex.content import parse_content

        assert parse_content(b"# Only a title\n").lead == ""
        assert parse_content(b"# Title\n\n## Section\n\nText.\n").lead == ""

    def test_links_deduplicated_in_first_seen_order(self):
        from kegdex.content import parse_content

        content = parse_content(b"../5 ../2 [again](../5) ../2-0001 ../2\n")

        assert [str(i) for i in content.links] == ["5", "2", "2-0001"]

    def test_link_boundaries(self):
        """Only whole ids count as links."""
        from kegdex.content import parse_content

        content = parse_content(b"../12abc ../007 ../4/images/x.png ../8.\n")

        assert [str(i) for i in content.links] == ["4", "8"]

    def test_frontmatter_is_stripped(self):
        from kegdex.content import parse_content

        content = parse_content(b"---\nauthor: me\n---\n# Real Title\n\nLead.\n")

        assert content.title == "Real Title"
        assert content.frontmatter == {"author": "me"}
        assert not content.body.startswith("---")

    def test_digest_is_md5_of_trimmed_bytes(self):
        from kegdex.content import parse_content

        raw = b"\n# T\n\nL\n\n"
        content = parse_content(raw)

        assert content.digest == hashlib.md5(raw.strip()).hexdigest()
        assert parse_content(b"# T\n\nL").digest == content.digest

    def test_deterministic(self):
        from kegdex.content import parse_content

        raw = b"# A\n\nB ../1\n"
        assert parse_content(raw) == parse_content(raw)

    def test_empty_input(self):
        from kegdex.content import parse_content

        content = parse_content(b"  \n\n")

        assert content.format == "empty"
        assert content.title == ""
        assert content.links == []

    def test_heading_inside_code_fence_is_not_title(self):
        from kegdex.content import parse_content

        content = parse_content(b"```\n# not a title\n```\n\n# Real\n\nLead.\n")

        assert content.title == "Real"
        assert content.lead == "Lead."
