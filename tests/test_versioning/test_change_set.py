"""变更集测试"""

import datetime
import enum

import pytest

from yhistory.versioning import AttributeChange, ChangeSet, normalize_value


class Status(enum.Enum):
    DRAFT = "draft"


class TestNormalizeValue:
    """值规整测试"""

    def test_scalars_pass_through(self):
        assert normalize_value(None) is None
        assert normalize_value(True) is True
        assert normalize_value(3) == 3
        assert normalize_value(1.5) == 1.5
        assert normalize_value("x") == "x"

    def test_datetime_to_iso(self):
        value = datetime.datetime(2024, 1, 2, 3, 4, 5)
        assert normalize_value(value) == "2024-01-02T03:04:05"
        assert normalize_value(datetime.date(2024, 1, 2)) == "2024-01-02"

    def test_enum_uses_value(self):
        assert normalize_value(Status.DRAFT) == "draft"

    def test_other_objects_use_str(self):
        class Thing:
            def __str__(self):
                return "thing"

        assert normalize_value(Thing()) == "thing"


class TestChangeSet:
    """ChangeSet 测试"""

    def test_mapping_interface(self):
        changes = ChangeSet({"title": ("Old", "New"), "body": (None, "text")})

        assert len(changes) == 2
        assert "title" in changes
        assert changes["title"] == AttributeChange("Old", "New")
        assert changes["body"].old is None

    def test_keeps_insertion_order(self):
        changes = ChangeSet([("z", (1, 2)), ("a", (3, 4)), ("m", (5, 6))])
        assert list(changes) == ["z", "a", "m"]
        assert changes.attribute_names == ["z", "a", "m"]

    def test_empty(self):
        assert ChangeSet().is_empty
        assert ChangeSet({}).is_empty
        assert not ChangeSet({"a": (1, 2)}).is_empty

    def test_immutable(self):
        changes = ChangeSet({"title": ("a", "b")})
        with pytest.raises(AttributeError):
            changes.extra = 1
        with pytest.raises(TypeError):
            changes["title"] = ("c", "d")

    def test_rejects_blank_attribute_name(self):
        with pytest.raises(ValueError):
            ChangeSet({"": (1, 2)})

    def test_to_dict_and_from_dict(self):
        changes = ChangeSet({"published_at": (None, datetime.date(2024, 5, 1)), "title": ("a", "b")})
        data = changes.to_dict()

        assert data == {"published_at": [None, "2024-05-01"], "title": ["a", "b"]}
        restored = ChangeSet.from_dict(data)
        assert restored == changes
        assert list(restored) == ["published_at", "title"]

    def test_from_dict_none(self):
        assert ChangeSet.from_dict(None).is_empty

    def test_accepts_attribute_change_values(self):
        changes = ChangeSet({"title": AttributeChange("a", "b")})
        assert changes.to_dict() == {"title": ["a", "b"]}
