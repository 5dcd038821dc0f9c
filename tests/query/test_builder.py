"""
Tests for the Builder's execution methods.

The connection is a mock: each test checks the statement and bindings handed
to it and how the builder turns the returned rows into records.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from neoquery.core.graph_node import GraphNode
from neoquery.exceptions import QueryBuilderError
from neoquery.orm.entities import GraphEntity
from neoquery.query.builder import Builder, Page
from neoquery.query.grammar import CypherGrammar


class Member(GraphEntity):
    name: str
    age: int = 0


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.get_query_grammar.return_value = CypherGrammar()
    conn.select = AsyncMock(return_value=[])
    conn.insert = AsyncMock(return_value=[])
    conn.update = AsyncMock(return_value=0)
    conn.delete = AsyncMock(return_value=0)
    return conn


@pytest.fixture
def users(connection):
    return Builder(connection).from_("User")


def sent(mock):
    """(statement, bindings) of the last call."""
    args = mock.await_args.args
    return args[0], args[1]


@pytest.mark.asyncio
class TestReads:
    async def test_get_returns_nodes(self, users, connection, node_factory):
        connection.select.return_value = [{"user": node_factory(1, ["User"], {"name": "Alice"})}]

        results = await users.where("age", ">", 18).get()

        assert sent(connection.select) == ("MATCH (user:User) WHERE user.age > $age RETURN user", {"age": 18})
        assert len(results) == 1
        assert isinstance(results[0], GraphNode)
        assert results[0].id == 1
        assert results[0].get_property("name") == "Alice"

    async def test_get_hydrates_entity_class(self, connection, node_factory):
        connection.select.return_value = [{"member": node_factory(3, ["Member"], {"name": "Bo", "age": 40})}]

        results = await Builder(connection).from_(Member).get()

        assert sent(connection.select)[0] == "MATCH (member:Member) RETURN member"
        assert isinstance(results[0], Member)
        assert results[0].id == 3
        assert results[0].age == 40

    async def test_get_with_columns_keeps_builder_columns(self, users, connection):
        connection.select.return_value = [{"user.name": "Alice", "user.email": "a@x.io"}]

        results = await users.get(["name", "email"])

        assert sent(connection.select)[0] == "MATCH (user:User) RETURN user.name, user.email"
        assert results == [{"name": "Alice", "email": "a@x.io"}]
        assert users.columns is None

    async def test_get_relation_rows_are_paired(self, users, connection, node_factory):
        connection.select.return_value = [
            {"user": node_factory(1, ["User"]), "post": node_factory(2, ["Post"], {"title": "Hi"})}
        ]

        results = await users.match_relation("User", "Post", "post", "POSTED").get()

        assert results[0]["user"].id == 1
        assert results[0]["post"].get_property("title") == "Hi"

    async def test_first(self, users, connection, node_factory):
        connection.select.return_value = [{"user": node_factory(1, ["User"])}]

        result = await users.first()

        assert sent(connection.select)[0] == "MATCH (user:User) RETURN user LIMIT 1"
        assert result.id == 1

    async def test_first_without_rows(self, users, connection):
        assert await users.first() is None

    async def test_find(self, users, connection, node_factory):
        connection.select.return_value = [{"user": node_factory(5, ["User"])}]

        result = await users.find(5)

        assert sent(connection.select) == (
            "MATCH (user:User) WHERE id(user) = $iduser RETURN user LIMIT 1",
            {"iduser": 5},
        )
        assert result.id == 5

    async def test_value(self, users, connection):
        connection.select.return_value = [{"user.name": "jd"}]
        assert await users.value("name") == "jd"

    async def test_pluck(self, users, connection):
        connection.select.return_value = [{"user.name": "a"}, {"user.name": "b"}]
        assert await users.pluck("name") == ["a", "b"]

    async def test_exists(self, users, connection):
        connection.select.return_value = [{"aggregate": 0}]
        assert await users.exists() is False

        connection.select.return_value = [{"aggregate": 2}]
        assert await users.exists() is True
        assert await users.doesnt_exist() is False

    async def test_without_connection(self):
        with pytest.raises(QueryBuilderError, match="no connection"):
            await Builder().from_("User").get()


@pytest.mark.asyncio
class TestAggregates:
    async def test_count(self, users, connection):
        connection.select.return_value = [{"aggregate": 3}]

        assert await users.count() == 3
        assert sent(connection.select)[0] == "MATCH (user:User) RETURN count(*) AS aggregate"
        assert users.aggregate_clause is None

    async def test_count_without_rows(self, users, connection):
        assert await users.count() == 0

    async def test_sum_defaults_to_zero(self, users, connection):
        connection.select.return_value = [{"aggregate": None}]
        assert await users.sum("score") == 0

    async def test_max(self, users, connection):
        connection.select.return_value = [{"aggregate": 99}]
        assert await users.max("score") == 99
        assert sent(connection.select)[0] == "MATCH (user:User) RETURN max(user.score) AS aggregate"

    async def test_percentile_binding_is_temporary(self, users, connection):
        connection.select.return_value = [{"aggregate": 12}]

        assert await users.percentile_disc("score", 0.5) == 12
        statement, bindings = sent(connection.select)
        assert statement == "MATCH (user:User) RETURN percentileDisc(user.score, $percentile) AS aggregate"
        assert bindings == {"percentile": 0.5}
        assert users.get_bindings() == {}

    async def test_collect(self, users, connection):
        connection.select.return_value = [{"aggregate": ["a", "b"]}]
        assert await users.collect("name") == ["a", "b"]

    async def test_collect_star_returns_records(self, users, connection, node_factory):
        connection.select.return_value = [{"aggregate": [
            node_factory(1, ["User"], {"name": "Al"}),
            node_factory(2, ["User"], {"name": "Bo"}),
        ]}]

        result = await users.collect("*")

        assert sent(connection.select)[0] == "MATCH (user:User) RETURN collect(user) AS aggregate"
        assert all(isinstance(record, GraphNode) for record in result)
        assert [record.id for record in result] == [1, 2]
        assert result[1].get_property("name") == "Bo"

    async def test_collect_star_hydrates_entity_class(self, connection, node_factory):
        connection.select.return_value = [{"aggregate": [node_factory(5, ["Member"], {"name": "Cy", "age": 30})]}]

        result = await Builder(connection).from_(Member).collect("*")

        assert isinstance(result[0], Member)
        assert result[0].id == 5
        assert result[0].age == 30

    async def test_count_over_union(self, users, connection):
        connection.select.return_value = [{"aggregate": 5}]
        users.union(lambda q: q.from_("User").where("age", ">", 60))

        assert await users.count() == 5
        assert sent(connection.select) == (
            "CALL { MATCH (user:User) RETURN user UNION MATCH (user:User) WHERE user.age > $age RETURN user } "
            "RETURN count(*) AS aggregate",
            {"age": 60},
        )

    async def test_grouped_count_returns_rows(self, users, connection):
        connection.select.return_value = [{"city": "Paris", "aggregate": 2}, {"city": "Oslo", "aggregate": 1}]

        result = await users.group_by("city").count()

        assert sent(connection.select)[0] == (
            "MATCH (user:User) WITH user.city AS city, count(*) AS aggregate RETURN city, aggregate"
        )
        assert result == [{"city": "Paris", "aggregate": 2}, {"city": "Oslo", "aggregate": 1}]

    async def test_failed_aggregate_resets_state(self, users, connection):
        connection.select.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await users.avg("score")
        assert users.aggregate_clause is None


@pytest.mark.asyncio
class TestPagination:
    async def test_count_for_pagination_ignores_paging_and_ordering(self, users, connection):
        connection.select.return_value = [{"aggregate": 42}]
        users.where("age", ">", 18).select("name").order_by("name").skip(10).take(5)

        assert await users.get_count_for_pagination() == 42
        assert sent(connection.select) == (
            "MATCH (user:User) WHERE user.age > $age RETURN count(*) AS aggregate",
            {"age": 18},
        )
        # Everything is back in place afterwards
        assert users.limit_value == 5
        assert users.offset_value == 10
        assert users.columns == ["name"]
        assert len(users.orders) == 1

    async def test_count_for_pagination_restores_on_failure(self, users, connection):
        connection.select.side_effect = RuntimeError("boom")
        users.order_by("name").take(5)

        with pytest.raises(RuntimeError):
            await users.get_count_for_pagination()

        assert users.limit_value == 5
        assert len(users.orders) == 1
        assert users.aggregate_clause is None

    async def test_grouped_count_for_pagination_counts_groups(self, users, connection):
        connection.select.return_value = [{"city": "a", "aggregate": 1}, {"city": "b", "aggregate": 4}]
        assert await users.group_by("city").get_count_for_pagination() == 2

    async def test_paginate(self, users, connection, node_factory):
        connection.select.side_effect = [
            [{"aggregate": 21}],
            [{"user": node_factory(i, ["User"])} for i in range(11, 21)],
        ]

        page = await users.paginate(per_page=10, page=2)

        assert isinstance(page, Page)
        assert page.total == 21
        assert page.last_page == 3
        assert page.has_more_pages
        assert len(page.items) == 10
        assert connection.select.await_args_list[1].args[0] == "MATCH (user:User) RETURN user SKIP 10 LIMIT 10"

    async def test_paginate_empty(self, users, connection):
        connection.select.return_value = [{"aggregate": 0}]

        page = await users.paginate()

        assert page.items == []
        assert page.last_page == 1
        connection.select.assert_awaited_once()


@pytest.mark.asyncio
class TestWrites:
    async def test_insert(self, users, connection):
        assert await users.insert({"name": "a", "age": 3}) is True
        assert sent(connection.insert) == (
            "CREATE (user:User {age: $age, name: $name})",
            {"age": 3, "name": "a"},
        )

    async def test_insert_many(self, users, connection):
        await users.insert([{"name": "a"}, {"name": "b"}])
        assert sent(connection.insert) == (
            "CREATE (user:User {name: $name}), (user_2:User {name: $name_2})",
            {"name": "a", "name_2": "b"},
        )

    async def test_insert_nothing(self, users, connection):
        assert await users.insert([]) is True
        connection.insert.assert_not_awaited()

    async def test_insert_formats_dates(self, users, connection):
        await users.insert({"joined": datetime(2024, 1, 2, 3, 4, 5)})
        assert sent(connection.insert)[1] == {"joined": "2024-01-02 03:04:05"}

    async def test_insert_get_id(self, users, connection, node_factory):
        connection.insert.return_value = [{"user": node_factory(42, ["User"])}]

        assert await users.insert_get_id({"name": "a"}) == 42
        assert sent(connection.insert) == ("CREATE (user:User {name: $name}) RETURN user", {"name": "a"})

    async def test_update(self, users, connection):
        connection.update.return_value = 1

        assert await users.where("id", 5).update({"name": "x"}) == 1
        assert sent(connection.update) == (
            "MATCH (user:User) WHERE id(user) = $iduser SET user.name = $name_update RETURN count(user) AS affected",
            {"iduser": 5, "name_update": "x"},
        )

    async def test_update_keeps_filter_and_value_apart(self, users, connection):
        await users.where("name", "old").update({"name": "new"})
        assert sent(connection.update)[1] == {"name": "old", "name_update": "new"}

    async def test_update_identity_is_rejected(self, users, connection):
        with pytest.raises(QueryBuilderError):
            await users.update({"id": 3})

    async def test_delete_by_id(self, users, connection):
        connection.delete.return_value = 1

        assert await users.delete(7) == 1
        assert sent(connection.delete) == (
            "MATCH (user:User) WHERE id(user) = $iduser DETACH DELETE user RETURN count(user) AS affected",
            {"iduser": 7},
        )

    async def test_update_labels(self, users, connection):
        connection.update.return_value = 2

        assert await users.where("name", "jd").update_labels(["Admin"]) is True
        assert sent(connection.update)[0] == (
            "MATCH (user:User) WHERE user.name = $name SET user:Admin RETURN count(user) AS affected"
        )

    async def test_update_labels_unknown_operation(self, users):
        with pytest.raises(QueryBuilderError):
            await users.update_labels("Admin", "flip")

    async def test_create_with(self, connection, node_factory):
        connection.insert.return_value = [{"post": node_factory(9, ["Post"], {"title": "Hello"})}]

        post = await Builder(connection).from_("Post").create_with(
            {"title": "Hello"},
            {
                "photos": {"labels": "Photo", "relationship": "PHOTO", "values": {"url": "a.jpg"}},
                "tags": {"labels": "Tag", "relationship": "TAGGED", "ids": [3, 4]},
            },
        )

        statement, bindings = sent(connection.insert)
        assert statement.startswith("CREATE (post:Post {title: $title}), (post)-[:PHOTO]->(with_photos:Photo {url: $url})")
        assert "WHERE id(with_tags_attached) IN $with_tags_ids" in statement
        assert bindings == {"title": "Hello", "url": "a.jpg", "with_tags_ids": [3, 4]}
        assert post.id == 9


class TestBuilderState:
    def test_clone_is_independent(self, users):
        users.where("age", 18)
        copy = users.clone()
        copy.where("age", 65)

        assert users.get_bindings() == {"age": 18}
        assert copy.get_bindings() == {"age": 18, "age_2": 65}
        assert len(users.wheres) == 1

    def test_new_query_has_fresh_bindings(self, users, connection):
        users.where("age", 18)
        fresh = users.new_query()

        assert fresh.connection is connection
        assert fresh.get_bindings() == {}
        assert fresh.labels == ()

    def test_nested_builder_shares_bindings(self, users):
        nested = users.for_nested_where()
        assert nested.bindings is users.bindings
        assert nested.alias == "user"

    def test_nested_group_does_not_change_parent_matches(self, users):
        users.where(lambda q: q.match_relation("User", "Post", "post", "POSTED").where("name", "jd"))

        assert users.matches == []
        assert users.to_statement() == "MATCH (user:User) WHERE (user.name = $name) RETURN user"

    def test_add_binding_strips_alias(self, users):
        users.add_binding({"user.name": "jd"}, "where")
        assert users.get_raw_bindings()["where"] == {"name": "jd"}

    def test_add_binding_to_unknown_bucket(self, users):
        with pytest.raises(QueryBuilderError):
            users.add_binding({"x": 1}, "nope")

    def test_model_as_node(self, users):
        assert users.model_as_node() == "user"
        assert users.model_as_node(["Post", "Draft"]) == "post_draft"

    def test_from_entity_uses_its_labels(self):
        query = Builder().from_(Member)
        assert query.labels == ("Member",)
        assert query.entity is Member

    def test_to_cypher_alias(self, users):
        assert users.to_cypher() == users.to_statement()

    def test_add_select(self, users):
        users.select("name").add_select("email")
        assert users.columns == ["name", "email"]
