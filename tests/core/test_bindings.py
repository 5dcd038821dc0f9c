"""
Tests for the BindingTable.

Covers bucket validation, collision-free naming, flattening order and the
backup/restore cycle used while counting for pagination.
"""

import pytest

from neoquery.core.bindings import BINDING_BUCKETS, BindingTable
from neoquery.exceptions import InvalidBindingBucketError, QueryBuilderError


class TestBindingNames:
    """Names handed out by bind() never collide."""

    def test_first_binding_keeps_its_base_name(self):
        table = BindingTable()
        assert table.bind("age", 18) == "age"
        assert table.flatten() == {"age": 18}

    def test_repeated_base_gets_numeric_suffix(self):
        table = BindingTable()
        names = [table.bind("age", value) for value in (18, 65, 90)]

        assert names == ["age", "age_2", "age_3"]
        assert table.flatten() == {"age": 18, "age_2": 65, "age_3": 90}

    def test_names_are_unique_across_buckets(self):
        table = BindingTable()
        table.bind("name", "a", "matches")
        assert table.bind("name", "b", "where") == "name_2"
        assert table.bind("name", "c", "having") == "name_3"

    def test_unique_name_skips_taken_suffixes(self):
        table = BindingTable()
        table.add("score", 1)
        table.add("score_2", 2)
        assert table.unique_name("score") == "score_3"

    def test_add_overwrites_exact_name(self):
        table = BindingTable()
        table.add("name", "a").add("name", "b")
        assert table.flatten() == {"name": "b"}


class TestBuckets:
    def test_known_buckets(self):
        assert BINDING_BUCKETS == ("matches", "select", "where", "having", "order")

    def test_unknown_bucket_raises(self):
        table = BindingTable()
        with pytest.raises(InvalidBindingBucketError, match="Invalid binding type: limit."):
            table.add("x", 1, "limit")

    def test_unknown_bucket_error_is_a_builder_error(self):
        with pytest.raises(QueryBuilderError) as exc_info:
            BindingTable().bind("x", 1, "nope")
        assert exc_info.value.bucket == "nope"

    def test_bucket_returns_a_copy(self):
        table = BindingTable()
        table.add("x", 1)
        copy = table.bucket("where")
        copy["y"] = 2
        assert "y" not in table

    def test_flatten_follows_bucket_order(self):
        table = BindingTable()
        table.add("w", 1, "where")
        table.add("m", 2, "matches")
        table.add("h", 3, "having")
        table.add("s", 4, "select")

        assert list(table.flatten()) == ["m", "s", "w", "h"]

    def test_contains_len_get(self):
        table = BindingTable()
        table.add("a", 1, "matches").add("b", 2, "order")

        assert "a" in table and "b" in table
        assert "c" not in table
        assert len(table) == 2
        assert table.get("b") == 2
        assert table.get("missing", "default") == "default"
        assert list(table) == ["a", "b"]


class TestSnapshots:
    def test_backup_empties_and_restore_puts_back(self):
        table = BindingTable()
        table.add("name", "x", "order")
        table.add("percentile", 0.5, "select")
        table.add("age", 18, "where")

        snapshot = table.backup("order", "select")
        assert table.flatten() == {"age": 18}

        table.restore(snapshot)
        assert table.flatten() == {"percentile": 0.5, "age": 18, "name": "x"}

    def test_copy_is_independent(self):
        table = BindingTable()
        table.add("age", 18)
        clone = table.copy()
        clone.bind("age", 65)

        assert table.flatten() == {"age": 18}
        assert clone.flatten() == {"age": 18, "age_2": 65}

    def test_absorb_copies_bindings(self):
        table = BindingTable()
        other = BindingTable()
        other.add("name", "jd", "where")

        assert table.absorb(other) == {}
        assert table.bucket("where") == {"name": "jd"}

    def test_absorb_suffixes_taken_names(self):
        table = BindingTable()
        table.add("age", 18)
        other = BindingTable()
        other.add("age", 65)
        other.add("iduser", 3, "matches")

        assert table.absorb(other) == {"age": "age_2"}
        assert table.flatten() == {"iduser": 3, "age": 18, "age_2": 65}

    def test_absorb_skips_names_still_to_come(self):
        table = BindingTable()
        table.add("age", 18)
        other = BindingTable()
        other.add("age", 30)
        other.add("age_2", 40)

        renames = table.absorb(other)

        assert renames == {"age": "age_3"}
        assert table.flatten() == {"age": 18, "age_3": 30, "age_2": 40}

    def test_absorb_itself_is_noop(self):
        table = BindingTable()
        table.add("name", "jd")
        assert table.absorb(table) == {}
        assert len(table) == 1
