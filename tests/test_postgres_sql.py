"""Tests for the PostgreSQL store's SQL building. No database server is needed."""

import pytest
from psycopg2.extras import Json

from revmigrate.errors import ConfigurationError, ConnectivityError, QueryError
from revmigrate.loaders.postgres import (
    PostgresStore,
    adapt_value,
    build_insert,
    build_where,
    mask_url,
    quote_ident,
)


class TestQuoteIdent:

    def test_plain_name(self):
        assert quote_ident("star_rating") == '"star_rating"'

    def test_revision_column(self):
        assert quote_ident("_old_rev_of") == '"_old_rev_of"'

    @pytest.mark.parametrize("name", ["id; DROP TABLE users", 'a"b', "1st", ""])
    def test_rejects_unsafe_names(self, name):
        with pytest.raises(QueryError):
            quote_ident(name)


class TestBuildWhere:
    """Filter mappings become parameterized clauses."""

    def test_empty(self):
        assert build_where(None) == ("", {})
        assert build_where({}) == ("", {})

    def test_equality(self):
        clause, params = build_where({"id": "abc"})
        assert clause == 'WHERE "id" = :w0'
        assert params == {"w0": "abc"}

    def test_none_is_null(self):
        clause, params = build_where({"_old_rev_of": None})
        assert clause == 'WHERE "_old_rev_of" IS NULL'
        assert params == {}

    def test_list_is_any(self):
        clause, params = build_where({"id": ("a", "b")})
        assert clause == 'WHERE "id" = ANY(:w0)'
        assert params == {"w0": ["a", "b"]}

    def test_conditions_joined_with_and(self):
        clause, params = build_where({"id": "a", "_old_rev_of": None, "_rev_deleted": False}, prefix="p")
        assert clause == 'WHERE "id" = :p0 AND "_old_rev_of" IS NULL AND "_rev_deleted" = :p2'
        assert params == {"p0": "a", "p2": False}


class TestBuildInsert:

    def test_named_parameters(self):
        sql = build_insert("things", ["id", "label"])
        assert sql == 'INSERT INTO things ("id", "label") VALUES (:c0, :c1)'

    def test_invalid_column(self):
        with pytest.raises(QueryError):
            build_insert("things", ["label) VALUES (1); --"])


class TestAdaptValue:
    """JSON columns are wrapped, everything else passes through."""

    def test_multilingual_string_wrapped(self):
        value = adapt_value({"en": "A Book"})
        assert isinstance(value, Json)
        assert value.adapted == {"en": "A Book"}

    def test_list_of_objects_wrapped(self):
        assert isinstance(adapt_value([{"en": "Jane Doe"}]), Json)

    def test_text_array_unchanged(self):
        urls = ["https://example.com/book"]
        assert adapt_value(urls) is urls

    def test_scalars_unchanged(self):
        assert adapt_value(4) == 4
        assert adapt_value(None) is None


class TestMaskUrl:

    def test_password_hidden(self):
        masked = mask_url("postgresql+psycopg2://reviews:s3cret@db:5432/libreviews")
        assert masked == "postgresql+psycopg2://reviews:***@db:5432/libreviews"

    def test_url_without_password(self):
        url = "postgresql+psycopg2://reviews@db:5432/libreviews"
        assert mask_url(url) == url


class TestPostgresStore:
    """Store behavior that does not reach a server."""

    def test_invalid_namespace_rejected(self):
        with pytest.raises(ConfigurationError):
            PostgresStore("postgresql+psycopg2://localhost/test", namespace="test-run; DROP")

    def test_namespaced_table_names(self):
        store = PostgresStore("postgresql+psycopg2://localhost/test", namespace="run_42")
        assert store.table_name("things") == "run_42.things"
        assert store.schema == "run_42"

    def test_default_schema(self):
        store = PostgresStore("postgresql+psycopg2://localhost/test")
        assert store.table_name("things") == "things"
        assert store.schema == "public"

    def test_invalid_table_name(self):
        store = PostgresStore("postgresql+psycopg2://localhost/test")
        with pytest.raises(QueryError):
            store.table_name("things; --")

    def test_queries_require_connection(self):
        store = PostgresStore("postgresql+psycopg2://localhost/test")
        with pytest.raises(ConnectivityError):
            store.count("things")

    def test_unreachable_server(self):
        store = PostgresStore("postgresql+psycopg2://nobody:pw@127.0.0.1:1/test")
        with pytest.raises(ConnectivityError):
            store.connect()
        assert not store.is_connected

    def test_table_from_sql(self):
        assert PostgresStore._table_from_sql('INSERT INTO run_1.things ("id") VALUES (:c0)') == "run_1.things"
        assert PostgresStore._table_from_sql("UPDATE reviews SET x = 1") == "reviews"
