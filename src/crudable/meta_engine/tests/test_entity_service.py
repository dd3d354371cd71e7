import pytest

from crudable.config import get_settings
from crudable.exceptions import ForbiddenError, NotFoundError, ValidationError
from crudable.meta_engine.schemas.requests import FetchOptions, SearchCondition, SearchGroup
from crudable.meta_engine.tests.conftest import ADMIN, ANONYMOUS, DEV, MEMBER, OTHER_MEMBER

pytestmark = pytest.mark.store


@pytest.fixture()
def guard(music, engine_for):
    return engine_for().guard


class TestFetchOne:
    def test_shared_row(self, guard):
        row = guard.fetch_one(MEMBER, "MusicAlbum", 10).row
        assert row["name"] == "Blue Train"
        assert row["nameLength"] == len("Blue Train")
        assert row["_label"] == "Blue Train"
        assert [t["id"] for t in row["_relations"]["track"]] == [1, 2, 3, 4]
        assert "byArtist" not in row["_relations"]

    def test_draft_of_someone_else_is_forbidden(self, guard):
        with pytest.raises(ForbiddenError):
            guard.fetch_one(MEMBER, "MusicAlbum", 11)

    def test_draft_visible_to_owner(self, guard):
        assert guard.fetch_one(OTHER_MEMBER, "MusicAlbum", 11).row["id"] == 11

    def test_missing_row(self, guard):
        with pytest.raises(NotFoundError):
            guard.fetch_one(MEMBER, "MusicAlbum", 999)

    def test_unknown_table(self, guard):
        with pytest.raises(NotFoundError):
            guard.fetch_one(MEMBER, "Nope", 1)

    def test_table_read_required(self, guard):
        with pytest.raises(ForbiddenError):
            guard.fetch_one(MEMBER, "Organization", 5)
        assert guard.fetch_one(ADMIN, "organization", 5).row["name"] == "Blue Note"

    def test_field_grants(self, guard):
        assert "password" not in guard.fetch_one(MEMBER, "Person", 3).row
        assert guard.fetch_one(DEV, "Person", 3).row["password"] == "x"

    def test_relation_options(self, guard):
        options = FetchOptions(relation="byArtist", compact=True)
        row = guard.fetch_one(ADMIN, "MusicAlbum", 10, options).row
        assert row["_relations"] == {
            "byArtist": {"_table": "Organization", "id": 5, "name": "Blue Note"}
        }

    def test_output_options(self, guard):
        row = guard.fetch_one(
            MEMBER, "MusicAlbum", 10, FetchOptions(field_selection=["name"], relation=[])
        ).row
        assert set(row) == {"id", "name", "_label"}

        row = guard.fetch_one(MEMBER, "MusicAlbum", 10, FetchOptions(no_system_fields=True)).row
        assert "id" in row
        assert not {"ownerId", "granted", "createdAt", "updatedAt"} & set(row)

        row = guard.fetch_one(MEMBER, "MusicAlbum", 10, FetchOptions(no_id=True)).row
        assert "id" not in row

    def test_include_schema(self, guard):
        result = guard.fetch_one(MEMBER, "MusicAlbum", 10, FetchOptions(include_schema=True))
        schema = result.to_dict()["schema"]
        assert schema["table"] == "MusicAlbum"
        assert "byArtist" not in schema["fields"]
        assert schema["permissions"]["update"] is True
        assert schema["permissions"]["publish"] is False


class TestFetchMany:
    def test_drafts_of_others_are_excluded(self, guard):
        result = guard.fetch_many(MEMBER, "MusicAlbum")
        assert [r["id"] for r in result.rows] == [10]
        assert result.pagination.total == 1

        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum")
        assert [r["id"] for r in result.rows] == [10, 11]

    def test_anonymous_sees_shared_rows(self, guard):
        assert [r["id"] for r in guard.fetch_many(ANONYMOUS, "MusicAlbum").rows] == [10]

    def test_pagination(self, guard):
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", FetchOptions(limit=1, offset=1))
        assert [r["id"] for r in result.rows] == [11]
        assert result.to_dict()["pagination"] == {"total": 2, "count": 1, "limit": 1, "offset": 1}

    def test_offset_without_limit_uses_max_page_size(self, guard):
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", FetchOptions(offset=1))
        assert result.pagination.limit == get_settings().MAX_PAGE_SIZE
        assert [r["id"] for r in result.rows] == [11]

    def test_limit_is_clamped(self, guard, monkeypatch):
        monkeypatch.setenv("CRUDABLE_MAX_PAGE_SIZE", "1")
        get_settings.cache_clear()
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", FetchOptions(limit=50))
        assert result.pagination.limit == 1
        assert len(result.rows) == 1

    def test_sorting(self, guard):
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", FetchOptions(order_by="name", order="DESC"))
        assert [r["name"] for r in result.rows] == ["Secret Sessions", "Blue Train"]

    def test_search(self, guard):
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", FetchOptions(search="TRAIN"))
        assert [r["id"] for r in result.rows] == [10]

    def test_advanced_search(self, guard):
        options = FetchOptions(
            advanced_search=[
                SearchGroup(conditions=[SearchCondition(field="name", operator="starts_with", value="secret")]),
                SearchGroup(conditions=[SearchCondition(field="id", operator="equals", value=999)]),
            ]
        )
        result = guard.fetch_many(OTHER_MEMBER, "MusicAlbum", options)
        assert [r["id"] for r in result.rows] == [11]

    def test_related_sort_needs_read(self, guard):
        with pytest.raises(ForbiddenError):
            guard.fetch_many(MEMBER, "MusicAlbum", FetchOptions(order_by="Organization.name"))
        rows = guard.fetch_many(ADMIN, "MusicAlbum", FetchOptions(order_by="Organization.name")).rows
        assert {r["id"] for r in rows} == {10}

    def test_bad_sort_order(self, guard):
        with pytest.raises(ValidationError):
            guard.fetch_many(MEMBER, "MusicAlbum", FetchOptions(order_by="name", order="up"))

    def test_default_grants(self, guard):
        with pytest.raises(ForbiddenError):
            guard.fetch_many(ADMIN, "AuditNote")
        assert guard.fetch_many(DEV, "AuditNote").rows == []


class TestGetOperation:
    def test_get_by_id(self, guard, engine_for):
        result = engine_for(MEMBER).get("musicalbum", 10, relation="track", compact=True)
        assert result["success"] is True
        assert result["row"]["id"] == 10
        assert "rows" not in result

    def test_list(self, guard, engine_for):
        result = engine_for(MEMBER).list("MusicAlbumTrack", limit=2)
        assert [r["id"] for r in result["rows"]] == [1, 2]
        assert result["pagination"]["total"] == 4
