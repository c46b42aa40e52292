"""
Tests for SQL compilation.
"""

import pytest

from chousun.exceptions import QueryError
from chousun.query.builder import Builder
from chousun.query.expression import raw
from chousun.query.grammar import Grammar
from chousun.query.model import QueryModel
from chousun.query.where import WhereType


class TestSelect:
    """Select statement compilation."""

    def test_from_only(self, builder):
        """A query with only a table selects everything from it."""
        assert builder.from_("events").to_sql() == "select * from `events`"

    def test_compile_is_pure(self, grammar):
        """Compiling twice gives the same SQL and leaves columns untouched."""
        model = QueryModel(from_="events")

        first = grammar.compile_select(model)
        second = grammar.compile_select(model)

        assert first == second
        assert model.columns is None

    def test_end_to_end_placeholder(self, builder):
        """Values become placeholders."""
        sql = builder.table("events").where("id", "=", 5).to_sql()
        assert sql == "select * from `events` where `id` = ?"

    def test_columns_and_alias(self, builder):
        """Selected columns are wrapped, aliases split once."""
        sql = builder.from_("events").select("id", "name AS n").to_sql()
        assert sql == "select `id`, `name` as `n` from `events`"

    def test_distinct(self, builder):
        """Distinct prefixes the column list."""
        assert builder.from_("events").distinct().select("type").to_sql() == "select distinct `type` from `events`"

    def test_aggregate_wins_over_columns(self, grammar):
        """An aggregate replaces the column list."""
        from chousun.query.model import Aggregate

        model = QueryModel(from_="events", columns=["id"], aggregate=Aggregate("count"))
        assert grammar.compile_select(model) == "select count(*) as aggregate from `events`"

    def test_select_raw(self, builder):
        """Raw select expressions are not wrapped."""
        sql = builder.from_("events").select("id").select_raw("count() as c").to_sql()
        assert sql == "select `id`, count() as c from `events`"

    def test_group_having_order_limit_offset(self, builder):
        """Components come out in fixed order."""
        sql = (
            builder.from_("events")
            .offset(5)
            .limit(10)
            .order_by("total", "desc")
            .having("total", ">", 10)
            .group_by("type")
            .select("type")
            .to_sql()
        )
        assert sql == (
            "select `type` from `events` group by `type` having `total` > ? "
            "order by `total` desc limit 10 offset 5"
        )

    def test_having_raw(self, builder):
        """Raw having conditions keep their text."""
        sql = builder.from_("events").group_by("type").having_raw("count(*) > ?", [3]).to_sql()
        assert sql == "select * from `events` group by `type` having count(*) > ?"

    def test_order_by_raw(self, builder):
        """Raw order expressions are emitted verbatim."""
        assert builder.from_("events").order_by_raw("rand()").to_sql() == "select * from `events` order by rand()"


class TestWhereClauses:
    """Where compilation."""

    def test_empty_in_is_false(self, builder):
        """An empty in-list never matches."""
        assert builder.from_("events").where_in("id", []).to_sql() == "select * from `events` where 0 = 1"

    def test_empty_not_in_is_true(self, builder):
        """An empty not-in-list always matches."""
        assert builder.from_("events").where_not_in("id", []).to_sql() == "select * from `events` where 1 = 1"

    def test_in_list(self, builder):
        """In-lists get one placeholder per value."""
        sql = builder.from_("events").where_in("id", [1, 2, 3]).to_sql()
        assert sql == "select * from `events` where `id` in (?, ?, ?)"

    def test_leading_boolean_dropped_once(self, builder):
        """Only the first boolean is removed."""
        sql = builder.from_("events").where_raw("a=1").or_where_raw("b=2").to_sql()
        assert sql == "select * from `events` where a=1 or b=2"

    def test_remove_leading_boolean(self, grammar):
        """Exactly one leading and/or token is stripped, case-insensitively."""
        assert grammar.remove_leading_boolean("and a=1 or b=2") == "a=1 or b=2"
        assert grammar.remove_leading_boolean("OR a=1 and b=2") == "a=1 and b=2"
        assert grammar.remove_leading_boolean("android = 1") == "android = 1"

    def test_nested(self, builder):
        """Nested groups are parenthesised without their where prefix."""
        sql = (
            builder.from_("events")
            .where("a", 1)
            .where(lambda q: q.where("b", 2).or_where("c", 3))
            .to_sql()
        )
        assert sql == "select * from `events` where `a` = ? and (`b` = ? or `c` = ?)"

    def test_nested_matches_inner_compilation(self, grammar):
        """The parenthesised text equals the inner where compilation minus its prefix."""
        inner = Builder(grammar=grammar).from_("events").where("b", 2).or_where("c", 3)
        outer = Builder(grammar=grammar).from_("events").where_nested(lambda q: q.where("b", 2).or_where("c", 3))

        inner_sql = grammar.compile_wheres(inner.model)[len("where "):]
        assert outer.to_sql() == f"select * from `events` where ({inner_sql})"

    def test_empty_nested_is_skipped(self, builder):
        """A callback adding no conditions adds no group."""
        assert builder.from_("events").where_nested(lambda q: None).to_sql() == "select * from `events`"

    def test_null_checks(self, builder):
        """None values turn into null checks."""
        sql = builder.from_("events").where("deleted_at", None).or_where("name", "!=", None).to_sql()
        assert sql == "select * from `events` where `deleted_at` is null or `name` is not null"

    def test_between(self, builder):
        """Between takes two placeholders."""
        sql = builder.from_("events").where_between("id", [1, 9]).where_not_between("age", [3, 4]).to_sql()
        assert sql == "select * from `events` where `id` between ? and ? and `age` not between ? and ?"

    def test_date_functions(self, builder):
        """Date helpers wrap the column in the conversion function."""
        sql = builder.from_("events").where_date("created_at", "2024-01-01").where_year("created_at", ">", 2020).to_sql()
        assert sql == "select * from `events` where toDate(`created_at`) = ? and toYear(`created_at`) > ?"

    def test_where_column(self, builder):
        """Column comparisons wrap both sides."""
        sql = builder.from_("events").where_column("updated_at", ">", "created_at").to_sql()
        assert sql == "select * from `events` where `updated_at` > `created_at`"

    def test_in_sub_select(self, builder):
        """A callback in where_in builds a sub-select."""
        sql = builder.from_("events").where_in("user_id", lambda q: q.select("id").from_("users")).to_sql()
        assert sql == "select * from `events` where `user_id` in (select `id` from `users`)"

    def test_exists(self, builder):
        """Exists wraps the sub-select."""
        sql = (
            builder.from_("users")
            .where_exists(lambda q: q.from_("events").where_column("events.user_id", "users.id"))
            .to_sql()
        )
        assert sql == (
            "select * from `users` where exists (select * from `events` "
            "where `events`.`user_id` = `users`.`id`)"
        )

    def test_sub_comparison(self, grammar):
        """A builder as value compiles to a parenthesised sub-select."""
        sub = Builder(grammar=grammar).from_("orders").select("total").limit(1)
        sql = Builder(grammar=grammar).from_("events").where("total", "<", sub).to_sql()
        assert sql == "select * from `events` where `total` < (select `total` from `orders` limit 1)"

    def test_raw_value(self, builder):
        """Raw expressions are inlined instead of bound."""
        query = builder.from_("events").where("id", "=", raw("toUInt64(1)"))
        assert query.to_sql() == "select * from `events` where `id` = toUInt64(1)"
        assert query.get_bindings() == []

    def test_dict_where(self, builder):
        """A dict adds a nested group of equalities."""
        sql = builder.from_("events").where({"a": 1, "b": 2}).to_sql()
        assert sql == "select * from `events` where (`a` = ? and `b` = ?)"

    def test_missing_compiler(self, grammar, builder):
        """A tag without compiler is reported."""
        grammar._where_compilers.pop(WhereType.RAW)
        with pytest.raises(QueryError):
            builder.from_("events").where_raw("1").to_sql()


class TestJoins:
    """Join compilation."""

    def test_simple_join(self, builder):
        """A join adds the table and its ON condition."""
        sql = builder.from_("events").join("users as u", "u.id", "=", "events.user_id").to_sql()
        assert sql == "select * from `events` inner join `users` as `u` on `u`.`id` = `events`.`user_id`"

    def test_join_callback_with_where(self, builder):
        """A callback may combine ON conditions and value filters."""
        sql = (
            builder.from_("events")
            .left_join("users", lambda j: j.on("users.id", "=", "events.user_id").where("users.active", 1))
            .to_sql()
        )
        assert sql == (
            "select * from `events` left join `users` on `users`.`id` = `events`.`user_id` "
            "and `users`.`active` = ?"
        )

    def test_nested_on(self, builder):
        """Nested ON groups drop their on prefix."""
        sql = (
            builder.from_("e")
            .left_join("u", lambda j: j.on("u.id", "=", "e.uid").or_on(
                lambda n: n.on("u.a", "=", "e.a").on("u.b", "=", "e.b")
            ))
            .to_sql()
        )
        assert sql == (
            "select * from `e` left join `u` on `u`.`id` = `e`.`uid` "
            "or (`u`.`a` = `e`.`a` and `u`.`b` = `e`.`b`)"
        )

    def test_cross_join(self, builder):
        """A cross join has no ON clause."""
        assert builder.from_("a").cross_join("b").to_sql() == "select * from `a` cross join `b`"


class TestUnions:
    """Union compilation."""

    def test_union(self, grammar):
        """The main select is parenthesised before the unions."""
        other = Builder(grammar=grammar).from_("b")
        sql = Builder(grammar=grammar).from_("a").union(other).to_sql()
        assert sql == "(select * from `a`) union (select * from `b`)"

    def test_union_all_with_pagination(self, grammar):
        """Orders and limits after a union apply to the whole union."""
        sql = (
            Builder(grammar=grammar).from_("a")
            .union_all(lambda q: q.from_("b"))
            .order_by("id")
            .limit(5)
            .to_sql()
        )
        assert sql == "(select * from `a`) union all (select * from `b`) order by `id` asc limit 5"


class TestWrapping:
    """Identifier quoting."""

    def test_qualified(self, grammar):
        """Every segment of a qualified name is quoted."""
        assert grammar.wrap("t.name") == "`t`.`name`"

    def test_star(self, grammar):
        """A star is never quoted."""
        assert grammar.wrap("*") == "*"
        assert grammar.wrap("t.*") == "`t`.*"

    def test_embedded_quote(self, grammar):
        """Embedded backticks are doubled."""
        assert grammar.wrap_value("we`ird") == "`we``ird`"

    def test_json_selector(self, grammar):
        """Arrow paths become JSON selectors."""
        assert grammar.wrap("meta->a->b") == "`meta`->'$.\"a\".\"b\"'"

    def test_table_prefix(self):
        """The table prefix applies to table name and alias."""
        assert Grammar("p_").wrap_table("users as u") == "`p_users` as `p_u`"

    def test_expression(self, grammar):
        """Expressions pass through."""
        assert grammar.wrap(raw("now()")) == "now()"


class TestStatements:
    """Insert and exists statements."""

    def test_insert_rows(self, grammar):
        """Columns come from the first row, one tuple per row."""
        sql = grammar.compile_insert(QueryModel(from_="events"), [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])
        assert sql == "insert into `events` (`id`, `name`) values (?, ?), (?, ?)"

    def test_insert_single_row(self, grammar):
        """A dict is promoted to one row."""
        sql = grammar.compile_insert(QueryModel(from_="events"), {"id": 1, "at": raw("now()")})
        assert sql == "insert into `events` (`id`, `at`) values (?, now())"

    def test_insert_mismatched_rows(self, grammar):
        """Rows with different columns are rejected."""
        with pytest.raises(QueryError):
            grammar.compile_insert(QueryModel(from_="events"), [{"id": 1}, {"name": "b"}])

    def test_exists(self, builder, grammar):
        """Exists checks wrap the select."""
        builder.from_("events").where("id", 5)
        assert grammar.compile_exists(builder.model) == (
            "select exists(select * from `events` where `id` = ?) as `exists`"
        )
