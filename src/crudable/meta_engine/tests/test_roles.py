import dataclasses

import pytest

from crudable.meta_engine.permission.roles import (
    PUBLIC_ROLE,
    Actor,
    ActorRoleResolver,
    RoleGraph,
    parse_roles,
)
from crudable.meta_engine.schemas.definitions import RoleDef


@pytest.fixture()
def graph(schema):
    return RoleGraph(schema.roles)


class TestParseRoles:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("@member @premium", ["member", "premium"]),
            ("member  admin", ["member", "admin"]),
            (["@dev", "admin"], ["dev", "admin"]),
            ("@member @member", ["member"]),
            ("", []),
            (None, []),
        ],
    )
    def test_formats(self, raw, expected):
        assert parse_roles(raw) == expected


class TestRoleGraph:
    def test_closure_follows_inheritance(self, graph):
        assert graph.closure("admin") == {
            "admin",
            "promo",
            "road",
            "premium",
            "member",
            "public",
        }

    def test_closure_is_reflexive_and_contains_public(self, graph):
        for role in graph.role_names():
            closure = graph.closure(role)
            assert role in closure
            assert PUBLIC_ROLE in closure

    def test_closure_is_a_fixed_point(self, graph):
        for role in graph.role_names():
            once = graph.closure(role)
            assert graph.closure(once) == once

    def test_cycle_is_absorbed(self):
        graph = RoleGraph(
            {
                "a": RoleDef(inherits=("b",)),
                "b": RoleDef(inherits=("c",)),
                "c": RoleDef(inherits=("a",)),
            }
        )
        assert graph.closure("a") == {"a", "b", "c", PUBLIC_ROLE}

    def test_unknown_role_only_yields_public(self, graph):
        assert graph.closure("ghost") == {PUBLIC_ROLE}


class TestActorRoleResolver:
    def test_anonymous_is_public(self, graph):
        resolver = ActorRoleResolver(graph)
        assert resolver.effective_roles(Actor.anonymous()) == {PUBLIC_ROLE}
        assert resolver.effective_roles(None) == {PUBLIC_ROLE}

    def test_anonymous_roles_are_ignored(self, graph):
        resolver = ActorRoleResolver(graph)
        assert resolver.effective_roles(Actor(roles="@dev")) == {PUBLIC_ROLE}

    def test_union_of_closures(self, graph):
        resolver = ActorRoleResolver(graph)
        roles = resolver.effective_roles(Actor(id=9, roles="@promo @member"))
        assert roles == {"promo", "premium", "member", "public"}

    def test_authenticated_without_roles(self, graph):
        resolver = ActorRoleResolver(graph)
        assert resolver.effective_roles(Actor(id=9)) == {PUBLIC_ROLE}


class TestActor:
    def test_identity_and_roles_only(self):
        assert [f.name for f in dataclasses.fields(Actor)] == ["id", "roles"]

    def test_equality(self):
        assert Actor(id=7, roles="@member") == Actor(id=7, roles="@member")
        assert Actor.anonymous() == Actor()
        assert not Actor.anonymous().is_authenticated
