"""版本描述生成

把实体引用和变更的属性名转换为可读的描述文字::

    describe(EntityRef("Article", "125"), [], created=True)   -> "Created Article #125"
    describe(EntityRef("Article", "125"), ["title", "body"])  -> "Changed title and body"
    describe(EntityRef("Article", None), [])                  -> "Generated Version"

change_type 由描述的第一个词推导（见 derive_change_type）。
"""

import re
from enum import Enum
from typing import Iterable, Optional, Sequence

from .entity import EntityRef


_ACRONYM_BOUNDARY = re.compile(r'([A-Z\d]+)([A-Z][a-z])')
_CAMEL_BOUNDARY = re.compile(r'([a-z\d])([A-Z])')
_SEPARATORS = re.compile(r'[_\s]+')


class ChangeType(str, Enum):
    """版本的变更类型"""
    CREATED = "created"
    UPDATED = "updated"
    DESTROYED = "destroyed"


def to_snake_case(name: str) -> str:
    """驼峰命名转下划线命名（支持连续大写缩写如 API、URL）

    Examples:
        >>> to_snake_case("BlogPost")
        'blog_post'
        >>> to_snake_case("APIClient")
        'api_client'
    """
    s1 = _ACRONYM_BOUNDARY.sub(r'\1_\2', name)
    return _CAMEL_BOUNDARY.sub(r'\1_\2', s1).lower()


def humanize(attribute_name: str) -> str:
    """属性名转为小写的空格分隔单词

    结尾的 ``_id`` 会被去掉（单独的 ``id`` 除外）。

    Examples:
        >>> humanize("published_at")
        'published at'
        >>> humanize("author_id")
        'author'
        >>> humanize("publishedAt")
        'published at'
    """
    words = to_snake_case(attribute_name.strip())
    if words.endswith("_id") and words != "_id":
        words = words[:-3]
    return _SEPARATORS.sub(" ", words).strip()


def titleize(type_name: str) -> str:
    """类型名转为首字母大写的单词

    Examples:
        >>> titleize("BlogPost")
        'Blog Post'
        >>> titleize("article")
        'Article'
    """
    words = _SEPARATORS.sub(" ", to_snake_case(type_name.strip())).split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def to_sentence(words: Sequence[str]) -> str:
    """用自然语言连接单词

    Examples:
        >>> to_sentence([])
        ''
        >>> to_sentence(["title", "body"])
        'title and body'
        >>> to_sentence(["title", "body", "published at"])
        'title, body, and published at'
    """
    words = list(words)
    if not words:
        return ""
    if len(words) == 1:
        return words[0]
    if len(words) == 2:
        return f"{words[0]} and {words[1]}"
    return f"{', '.join(words[:-1])}, and {words[-1]}"


def describe(entity: EntityRef, attribute_names: Iterable[str] = (), created: bool = False) -> str:
    """生成版本描述

    Args:
        entity: 实体引用
        attribute_names: 变更的属性名，按变更集的顺序
        created: 实体是否刚被创建（此前没有标识）

    Returns:
        描述字符串
    """
    if not entity.has_identity:
        return "Generated Version"

    if created:
        return f"Created {titleize(entity.type_name)} #{entity.identity}"

    changed = to_sentence([humanize(name) for name in attribute_names])
    return f"Changed {changed}".rstrip()


def describe_destroyed(entity: EntityRef) -> str:
    """实体被删除时的描述，如 ``"Destroyed Article #125"``"""
    if not entity.has_identity:
        return "Generated Version"
    return f"Destroyed {titleize(entity.type_name)} #{entity.identity}"


def derive_change_type(description: Optional[str]) -> Optional[ChangeType]:
    """从描述推导变更类型

    只看小写后的第一个词：created / destroyed / changed，其余返回 None（未知）。
    描述文字和类型由此耦合，是有损的推导；改写描述格式会改变 change_type。
    """
    words = (description or "").lower().split()
    if not words:
        return None
    first_word = words[0]
    if first_word == "created":
        return ChangeType.CREATED
    if first_word == "destroyed":
        return ChangeType.DESTROYED
    if first_word == "changed":
        return ChangeType.UPDATED
    return None
