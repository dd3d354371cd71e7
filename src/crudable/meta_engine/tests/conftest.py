from __future__ import annotations

import pytest

from crudable.database import Store, create_db_engine, init_db
from crudable.meta_engine.permission.roles import Actor, ActorRoleResolver, RoleGraph
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.schemas.loader import parse_schema
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.engine import CrudEngine
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService

SCHEMA = {
    "roles": {
        "public": {"description": "Anyone"},
        "member": {"inherits": ["public"]},
        "premium": {"inherits": ["member"]},
        "promo": {"inherits": ["premium"]},
        "road": {"inherits": ["premium"]},
        "admin": {"inherits": ["promo", "road"]},
        "dir": {"inherits": ["admin"]},
        "dev": {"inherits": ["dir"]},
    },
    "tables": {
        "Organization": {
            "granted": {"admin": ["read", "create", "update", "delete"]},
            "fields": {"name": "varchar", "url": "varchar"},
        },
        "Person": {
            "displayFields": ["givenName", "familyName"],
            "granted": {"member": ["read"], "admin": "all"},
            "fields": {
                "givenName": "varchar",
                "familyName": "varchar",
                "password": {
                    "type": "varchar",
                    "grant": {"dev": ["read", "update"], "admin": ["read"]},
                },
            },
        },
        "MusicAlbum": {
            "granted": {
                "public": ["read"],
                "member": ["read", "create", "update", "delete"],
                "admin": "all",
            },
            "fields": {
                "name": {"type": "varchar"},
                "description": "text",
                "albumType": {"type": "enum", "values": ["Studio", "Live"]},
                "byArtist": {"type": "integer", "relation": "Organization"},
                "summary": {"type": "text", "computed": True},
                "nameLength": {"type": "integer", "as": "LENGTH(name)"},
                "catalogNumber": {"type": "varchar", "readonly": True},
            },
        },
        "MusicRecording": {
            "granted": {"public": ["read"], "member": ["read", "create", "update", "delete"]},
            "fields": {"name": "varchar", "duration": "integer"},
        },
        "MusicAlbumTrack": {
            "displayFields": ["position", "name"],
            "granted": {"public": ["read"], "member": ["read", "create", "update", "delete"]},
            "fields": {
                "name": "varchar",
                "position": "integer",
                "idMusicAlbum": {
                    "type": "integer",
                    "relation": "MusicAlbum",
                    "arrayName": "track",
                    "relationshipStrength": "Strong",
                    "orderable": "position",
                    "defaultSort": "position",
                },
                "idMusicRecording": {"type": "integer", "relation": "MusicRecording"},
            },
        },
        "Review": {
            "granted": {"member": ["read", "create"], "admin": "all"},
            "fields": {
                "body": "text",
                "rating": "integer",
                "idMusicAlbum": {
                    "type": "integer",
                    "relation": "MusicAlbum",
                    "arrayName": "reviews",
                },
                "author": {"type": "integer", "relation": "Person"},
            },
        },
        "AuditNote": {
            "fields": {"text": "text"},
        },
    },
}

ANONYMOUS = Actor.anonymous()
MEMBER = Actor(id=7, roles="@member")
OTHER_MEMBER = Actor(id=42, roles="@member")
ADMIN = Actor(id=2, roles="@admin")
DEV = Actor(id=1, roles=["dev"])


@pytest.fixture()
def schema():
    return parse_schema(SCHEMA)


@pytest.fixture()
def catalog(schema):
    return TableCatalog(schema)


@pytest.fixture()
def permissions(catalog):
    return MetaPermissionService(catalog, ActorRoleResolver(RoleGraph(catalog.schema.roles)))


@pytest.fixture()
def visibility(permissions):
    return RowVisibility(permissions)


@pytest.fixture()
def store(catalog):
    engine = create_db_engine("sqlite:///:memory:")
    store = Store(engine)
    init_db(store, catalog)
    yield store
    engine.dispose()


@pytest.fixture()
def engine_for(store, catalog):
    def build(actor=None):
        return CrudEngine(store, catalog, actor)

    return build


@pytest.fixture()
def music(store):
    """
    Two albums by one label, four tracks on the first album, two reviews.

    Album 10 is shared; album 11 is a draft owned by actor 42.
    """
    store.insert("Organization", {"id": 5, "name": "Blue Note", "granted": "shared"})
    store.insert("Person", {"id": 3, "givenName": "Ada", "familyName": "L", "password": "x"})
    store.insert(
        "MusicAlbum",
        {"id": 10, "name": "Blue Train", "byArtist": 5, "granted": "shared", "ownerId": 42},
    )
    store.insert(
        "MusicAlbum",
        {"id": 11, "name": "Secret Sessions", "byArtist": 5, "granted": "draft", "ownerId": 42},
    )
    for rec_id, name in ((20, "Moment's Notice"), (21, "Locomotion")):
        store.insert("MusicRecording", {"id": rec_id, "name": name, "granted": ""})
    for track_id, position in ((1, 0), (2, 1), (3, 2), (4, 3)):
        store.insert(
            "MusicAlbumTrack",
            {
                "id": track_id,
                "name": f"Track {track_id}",
                "position": position,
                "idMusicAlbum": 10,
                "idMusicRecording": 20 if track_id % 2 else 21,
                "granted": None,
            },
        )
    store.insert(
        "Review",
        {"id": 30, "body": "Great", "rating": 5, "idMusicAlbum": 10, "author": 3, "granted": "shared"},
    )
    store.insert(
        "Review",
        {"id": 31, "body": "Hidden", "rating": 1, "idMusicAlbum": 10, "granted": "draft", "ownerId": 42},
    )
    return store
