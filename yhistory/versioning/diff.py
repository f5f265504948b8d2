"""属性级文本差异

按需计算，不落库。以行为单位（保留换行符）对比两个值转换成的文本，
结果由 equal / insert / delete 三种片段组成，依次拼接能精确还原新旧文本。

使用示例:
    diff = diff_text("line1\\nline2\\n", "line1\\nline2 changed\\n")
    diff.stats             # {"added": 1, "removed": 1}
    print(diff.to_unified())
"""

from dataclasses import dataclass
from difflib import HtmlDiff, SequenceMatcher, unified_diff
from typing import Any, Dict, List, Tuple

EQUAL = "equal"
INSERT = "insert"
DELETE = "delete"


def to_text(value: Any) -> str:
    """把属性值转换为文本，None 视为空串"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _with_newlines(lines: List[str]) -> List[str]:
    # 最后一行没有换行符时补上，unified_diff / HtmlDiff 才能正确分行
    if lines and not lines[-1].endswith("\n"):
        lines = lines[:-1] + [lines[-1] + "\n"]
    return lines


@dataclass(frozen=True)
class DiffSpan:
    """连续的一段相同、插入或删除的行"""
    operation: str
    lines: Tuple[str, ...]

    @property
    def text(self) -> str:
        return "".join(self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.operation, "text": self.text}


@dataclass(frozen=True)
class TextDiff:
    """两段文本的行级差异"""
    spans: Tuple[DiffSpan, ...]

    def old_text(self) -> str:
        """还原旧文本"""
        return "".join(span.text for span in self.spans if span.operation != INSERT)

    def new_text(self) -> str:
        """还原新文本"""
        return "".join(span.text for span in self.spans if span.operation != DELETE)

    @property
    def changed(self) -> bool:
        return any(span.operation != EQUAL for span in self.spans)

    @property
    def stats(self) -> Dict[str, int]:
        """行级统计：新增行数和删除行数"""
        added = sum(len(span.lines) for span in self.spans if span.operation == INSERT)
        removed = sum(len(span.lines) for span in self.spans if span.operation == DELETE)
        return {"added": added, "removed": removed}

    def to_dict(self) -> List[Dict[str, Any]]:
        """结构化的片段列表，便于前端渲染"""
        return [span.to_dict() for span in self.spans]

    def to_unified(self, fromfile: str = "old", tofile: str = "new", context_lines: int = 3) -> str:
        """统一格式（类似 git diff）"""
        old_lines = _with_newlines(self.old_text().splitlines(keepends=True))
        new_lines = _with_newlines(self.new_text().splitlines(keepends=True))
        return "".join(unified_diff(old_lines, new_lines, fromfile=fromfile, tofile=tofile, n=context_lines))

    def to_html(self, fromdesc: str = "", todesc: str = "", context_lines: int = 3) -> str:
        """HTML 表格，可直接在浏览器中渲染对比视图"""
        old_lines = _with_newlines(self.old_text().splitlines(keepends=True))
        new_lines = _with_newlines(self.new_text().splitlines(keepends=True))
        return HtmlDiff().make_table(
            old_lines, new_lines,
            fromdesc=fromdesc,
            todesc=todesc,
            context=True,
            numlines=context_lines
        )


def diff_text(old: Any, new: Any) -> TextDiff:
    """计算两个值的行级差异

    Args:
        old: 旧值，会先转换为文本
        new: 新值，会先转换为文本

    Returns:
        TextDiff
    """
    old_lines = to_text(old).splitlines(keepends=True)
    new_lines = to_text(new).splitlines(keepends=True)

    spans: List[DiffSpan] = []
    matcher = SequenceMatcher(None, old_lines, new_lines)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            spans.append(DiffSpan(EQUAL, tuple(old_lines[i1:i2])))
            continue
        if tag in ("delete", "replace"):
            spans.append(DiffSpan(DELETE, tuple(old_lines[i1:i2])))
        if tag in ("insert", "replace"):
            spans.append(DiffSpan(INSERT, tuple(new_lines[j1:j2])))

    return TextDiff(tuple(spans))
