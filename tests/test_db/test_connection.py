"""Tests for database URL handling."""

from sales_pipeline.db.connection import database_url


class TestDatabaseUrl:
    def test_heroku_style_scheme(self):
        url = database_url("postgres://u:p@localhost:5432/sales")
        assert url == "postgresql+psycopg://u:p@localhost:5432/sales"

    def test_plain_postgresql_gets_psycopg(self):
        assert database_url("postgresql://u:p@127.0.0.1/sales").startswith("postgresql+psycopg://")

    def test_hosted_db_requires_ssl(self):
        url = database_url("postgresql://u:p@db.example.com:5432/sales")
        assert url.endswith("?sslmode=require")

    def test_existing_sslmode_kept(self):
        url = database_url("postgresql+psycopg://u:p@db.example.com/sales?sslmode=disable")
        assert "sslmode=disable" in url
        assert "sslmode=require" not in url
