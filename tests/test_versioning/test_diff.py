"""属性级文本差异测试"""

import pytest

from yhistory.versioning import DiffSpan, diff_text
from yhistory.versioning.diff import DELETE, EQUAL, INSERT, to_text


class TestDiffText:
    """diff_text 测试"""

    @pytest.mark.parametrize("old,new", [
        ("", ""),
        ("same\n", "same\n"),
        ("line1\nline2\n", "line1\nline2 changed\n"),
        ("a\nb\nc", "a\nc\nd"),
        ("no newline", "no newline\n"),
        ("", "inserted\ntext"),
        ("removed\ntext\n", ""),
        ("中文\n第二行\n", "中文\n第三行\n"),
    ])
    def test_reconstructs_inputs(self, old, new):
        """由片段还原的新旧文本与原文完全一致"""
        diff = diff_text(old, new)
        assert diff.old_text() == old
        assert diff.new_text() == new

    def test_none_is_empty_text(self):
        diff = diff_text(None, "value")
        assert diff.old_text() == ""
        assert diff.new_text() == "value"

    def test_non_string_values(self):
        diff = diff_text(1, 2)
        assert diff.old_text() == "1"
        assert diff.new_text() == "2"
        assert to_text(True) == "true"

    def test_spans(self):
        diff = diff_text("keep\nold\n", "keep\nnew\n")
        assert diff.spans == (
            DiffSpan(EQUAL, ("keep\n",)),
            DiffSpan(DELETE, ("old\n",)),
            DiffSpan(INSERT, ("new\n",)),
        )
        assert diff.changed

    def test_unchanged(self):
        diff = diff_text("same", "same")
        assert not diff.changed
        assert diff.stats == {"added": 0, "removed": 0}

    def test_stats(self):
        diff = diff_text("a\nb\nc\n", "a\nx\ny\nc\n")
        assert diff.stats == {"added": 2, "removed": 1}

    def test_to_dict(self):
        diff = diff_text("a\n", "b\n")
        assert diff.to_dict() == [
            {"type": "delete", "text": "a\n"},
            {"type": "insert", "text": "b\n"},
        ]

    def test_to_unified(self):
        diff = diff_text("title\nold body", "title\nnew body")
        unified = diff.to_unified(fromfile="v1", tofile="v2")

        assert "--- v1" in unified
        assert "+++ v2" in unified
        assert "-old body\n" in unified
        assert "+new body\n" in unified

    def test_to_html(self):
        html = diff_text("old\n", "new\n").to_html(fromdesc="v1", todesc="v2")
        assert html.startswith("\n    <table")
        assert "v1" in html and "v2" in html
