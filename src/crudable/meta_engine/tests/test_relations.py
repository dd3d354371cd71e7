import pytest

from crudable.exceptions import ValidationError
from crudable.meta_engine.tests.conftest import ADMIN, ANONYMOUS, MEMBER, OTHER_MEMBER

pytestmark = pytest.mark.store


@pytest.fixture()
def resolver(engine_for):
    return engine_for().relations


def album(store, album_id=10):
    return store.query('SELECT * FROM "MusicAlbum" WHERE "id" = :id', {"id": album_id})[0]


class TestRelationNames:
    def test_default_policy(self, resolver):
        # readable N:1 plus Strong 1:N; Review is Weak
        assert resolver.relation_names(ADMIN, "MusicAlbum") == ["byArtist", "track"]

    def test_default_policy_respects_target_read(self, resolver):
        assert resolver.relation_names(MEMBER, "MusicAlbum") == ["track"]

    def test_all(self, resolver):
        assert resolver.relation_names(MEMBER, "MusicAlbum", "all") == ["track", "reviews"]
        assert resolver.relation_names(ANONYMOUS, "MusicAlbum", "all") == ["track"]

    def test_csv_and_list(self, resolver):
        assert resolver.relation_names(MEMBER, "MusicAlbum", " reviews, track ,,") == [
            "reviews",
            "track",
        ]
        assert resolver.relation_names(MEMBER, "MusicAlbum", ["track", "track"]) == ["track"]

    def test_malformed_name(self, resolver):
        with pytest.raises(ValidationError, match="Malformed relation name"):
            resolver.relation_names(MEMBER, "MusicAlbum", "track;DROP")


class TestResolve:
    def test_strong_one_to_many_loaded_by_default(self, music, resolver):
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music))
        assert [t["id"] for t in relations["track"]] == [1, 2, 3, 4]
        assert all(t["_table"] == "MusicAlbumTrack" for t in relations["track"])
        assert "reviews" not in relations

    def test_many_to_one_hidden_without_target_read(self, music, resolver):
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music), "byArtist,track")
        assert "byArtist" not in relations

    def test_many_to_one_loaded(self, music, resolver):
        relations = resolver.resolve(ADMIN, "MusicAlbum", album(music), "byArtist")
        assert relations["byArtist"]["name"] == "Blue Note"
        assert relations["byArtist"]["_table"] == "Organization"

    def test_default_sort(self, music, resolver):
        music.execute('UPDATE "MusicAlbumTrack" SET "position" = 10 - "id"')
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music), "track")
        assert [t["id"] for t in relations["track"]] == [4, 3, 2, 1]

    def test_nested_expansion_skips_parent_table(self, music, resolver):
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music), "track")
        first = relations["track"][0]
        assert set(first["_relations"]) == {"idMusicRecording"}
        assert first["_relations"]["idMusicRecording"]["name"] == "Moment's Notice"
        for track in relations["track"]:
            for related in track["_relations"].values():
                assert related["_table"] != "MusicAlbum"

    def test_nested_expansion_can_be_disabled(self, music, resolver):
        relations = resolver.resolve(
            MEMBER, "MusicAlbum", album(music), "track", expand_nested=False
        )
        assert "_relations" not in relations["track"][0]

    def test_children_filtered_by_row_visibility(self, music, resolver):
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music), "reviews")
        assert [r["id"] for r in relations["reviews"]] == [30]
        relations = resolver.resolve(OTHER_MEMBER, "MusicAlbum", album(music), "reviews")
        assert [r["id"] for r in relations["reviews"]] == [30, 31]

    def test_children_fields_filtered(self, music, resolver):
        relations = resolver.resolve(MEMBER, "MusicAlbum", album(music), "reviews")
        author = relations["reviews"][0]["_relations"]["author"]
        assert author["givenName"] == "Ada"
        assert "password" not in author

    def test_compact(self, music, resolver):
        relations = resolver.resolve(ADMIN, "MusicAlbum", album(music), "byArtist,track", compact=True)
        assert relations["byArtist"] == {"_table": "Organization", "id": 5, "name": "Blue Note"}
        nested = relations["track"][0]["_relations"]["idMusicRecording"]
        assert nested == {"_table": "MusicRecording", "id": 20, "name": "Moment's Notice"}

    def test_zero_foreign_key_never_fetches(self, resolver):
        store = resolver.store
        row = {"id": 99, "byArtist": 0}
        assert resolver.resolve(ADMIN, "MusicAlbum", row, "byArtist") == {}
        row["byArtist"] = None
        assert resolver.resolve(ADMIN, "MusicAlbum", row, "byArtist") == {}
        assert store.query('SELECT COUNT(*) AS n FROM "Organization"')[0]["n"] == 0

    def test_unknown_names_are_omitted(self, music, resolver):
        assert resolver.resolve(MEMBER, "MusicAlbum", album(music), "nothing,here") == {}

    def test_empty_collections_are_omitted(self, music, resolver):
        assert resolver.resolve(MEMBER, "MusicAlbum", album(music, 11), "track") == {}

    def test_attach(self, music, resolver):
        row = album(music)
        resolver.attach(MEMBER, "MusicAlbum", row, "track")
        assert len(row["_relations"]["track"]) == 4


class TestCompact:
    def test_is_idempotent(self, resolver):
        entity = {"_table": "Person", "id": 3, "givenName": "Ada", "familyName": "L", "password": "x"}
        once = resolver.compact(entity)
        assert once == {"_table": "Person", "id": 3, "givenName": "Ada", "familyName": "L"}
        assert resolver.compact(once) == once

    def test_table_argument(self, resolver):
        assert resolver.compact({"id": 1, "name": "n", "url": "u"}, "Organization") == {
            "_table": "Organization",
            "id": 1,
            "name": "n",
        }

    def test_label(self, resolver):
        assert resolver.label("Person", {"givenName": "Ada", "familyName": None}) == "Ada"
