"""版本模型测试"""

from datetime import datetime

from yhistory.versioning import ChangeType, TextDiff, Version, VersionChangeSet


def _version(**overrides):
    values = dict(
        id=1,
        versioned_type="Article",
        versioned_id="125",
        version_number=6,
        change_type="updated",
        description="Changed title and body",
        created_at=datetime(2024, 5, 1, 12, 0, 0),
    )
    values.update(overrides)
    version = Version(**values)
    version.change_set_record = VersionChangeSet(
        object_changes={"title": ["Old", "New"], "body": ["a\nb\n", "a\nc\n"]}
    )
    return version


class TestVersionModel:
    """Version 属性测试"""

    def test_title(self):
        assert _version().title == "Article #125 v6"
        assert _version(versioned_type="BlogPost").title == "Blog Post #125 v6"

    def test_changes(self):
        changes = _version().changes
        assert list(changes) == ["title", "body"]
        assert changes["title"].new == "New"

    def test_changes_without_record(self):
        version = Version(versioned_type="Article", versioned_id="1", version_number=1)
        assert version.changes.is_empty

    def test_change_type_enum(self):
        assert _version().change_type_enum is ChangeType.UPDATED
        assert _version(change_type=None).change_type_enum is None

    def test_attribute_diffs_memoized(self):
        version = _version()
        diffs = version.attribute_diffs

        assert list(diffs) == ["title", "body"]
        assert isinstance(diffs["body"], TextDiff)
        assert diffs["body"].stats == {"added": 1, "removed": 1}
        assert version.attribute_diffs is diffs

    def test_is_deleted(self):
        assert not _version().is_deleted
        assert _version(deleted_at=datetime.now()).is_deleted

    def test_to_dict(self):
        data = _version().to_dict()
        assert data["created_at"] == "2024-05-01T12:00:00"
        assert data["object_changes"]["title"] == ["Old", "New"]

    def test_repr(self):
        assert repr(_version()) == "<Version Article#125 v6 updated>"
        assert repr(_version(change_type=None)) == "<Version Article#125 v6 unknown>"
