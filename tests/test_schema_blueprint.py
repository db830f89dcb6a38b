"""
Tests for quarry.schema Blueprint, ColumnDefinition and Schema.

Covers:
- CREATE TABLE compilation per dialect (columns, keys, inline foreign keys)
- Secondary indexes following the CREATE statement
- Column groups (timestamps, soft deletes, remember token)
- Argument validation and the compile-once column contract
- ALTER blueprints (drops and renames only)
- Schema facade against a live SQLite database
"""

import logging
import re

import pytest

from quarry.faults import (
    DriverCapabilityFault,
    InvalidBlueprintArgumentFault,
    InvalidForeignKeyFault,
)
from quarry.schema import Blueprint, Grammar, Schema

from tests.conftest import RecordingDatabase


def blueprint(driver: str, table: str = "users", alter: bool = False) -> Blueprint:
    return Blueprint(table, Grammar(driver), alter=alter)


# ============================================================================
# CREATE TABLE
# ============================================================================


class TestCreateTable:

    def test_sqlite_inlines_the_autoincrement_key(self):
        bp = blueprint("sqlite")
        bp.id()
        bp.string("name")
        assert bp.compile_create() == [
            'CREATE TABLE "users" (\n'
            '    "id" INTEGER PRIMARY KEY AUTOINCREMENT,\n'
            '    "name" TEXT COLLATE NOCASE\n'
            ")"
        ]

    def test_mysql_declares_a_table_level_key(self):
        bp = blueprint("mysql")
        bp.id()
        bp.string("name", 80)
        assert bp.compile_create() == [
            "CREATE TABLE `users` (\n"
            "    `id` INT UNSIGNED AUTO_INCREMENT,\n"
            "    `name` VARCHAR(80),\n"
            "    PRIMARY KEY (`id`)\n"
            ")"
        ]

    def test_pgsql_serial_key(self):
        bp = blueprint("pgsql")
        bp.big_increments()
        sql = bp.compile_create()[0]
        assert '"id" BIGSERIAL' in sql
        assert 'PRIMARY KEY ("id")' in sql

    def test_foreign_id_adds_column_and_constraint(self):
        bp = blueprint("mysql", "posts")
        bp.id()
        bp.foreign_id("user_id").constrained().cascade_on_delete()
        sql = bp.compile_create()[0]
        assert "`user_id` INT UNSIGNED" in sql
        assert (
            "CONSTRAINT `fk_posts_users_user_id` FOREIGN KEY (`user_id`) "
            "REFERENCES `users` (`id`) ON DELETE CASCADE"
        ) in sql

    def test_constraint_names_are_unique_per_table(self):
        names = {}
        for table in ("posts", "comments"):
            bp = blueprint("mysql", table)
            bp.id()
            bp.foreign_id("user_id").constrained()
            names[table] = set(re.findall(r"CONSTRAINT `(\w+)`", bp.compile_create()[0]))
        assert names["posts"] == {"fk_posts_users_user_id"}
        assert names["comments"] == {"fk_comments_users_user_id"}
        assert names["posts"].isdisjoint(names["comments"])

    def test_foreign_with_explicit_table(self):
        bp = blueprint("pgsql", "posts")
        bp.integer("author_id")
        bp.foreign("author_id", "users").references("id")
        assert 'REFERENCES "users" ("id")' in bp.compile_create()[0]

    def test_constrained_shortcut(self):
        bp = blueprint("pgsql", "posts")
        bp.integer("user_id")
        bp.constrained("user_id")
        assert 'FOREIGN KEY ("user_id") REFERENCES "users" ("id")' in bp.compile_create()[0]

    def test_foreign_key_without_table_raises(self):
        bp = blueprint("mysql", "posts")
        bp.integer("user_id")
        bp.foreign("user_id").references("id")
        with pytest.raises(InvalidForeignKeyFault):
            bp.compile_create()

    def test_composite_primary_key(self):
        bp = blueprint("sqlite", "posts_tags")
        bp.integer("post_id")
        bp.integer("tag_id")
        bp.primary(["post_id", "tag_id"])
        assert 'PRIMARY KEY ("post_id", "tag_id")' in bp.compile_create()[0]

    def test_indexes_follow_the_create_statement(self):
        bp = blueprint("pgsql", "posts")
        bp.id()
        bp.string("title")
        bp.string("slug")
        bp.index("title")
        bp.unique("slug")
        statements = bp.compile_create()
        assert len(statements) == 3
        assert statements[0].startswith('CREATE TABLE "posts"')
        assert statements[1] == 'CREATE INDEX "posts_index_title" ON "posts" USING btree ("title")'
        assert statements[2] == 'CREATE UNIQUE INDEX "posts_unique_slug" ON "posts" USING btree ("slug")'

    def test_compile_dispatches_on_mode(self):
        bp = blueprint("sqlite")
        bp.id()
        assert bp.compile() == bp.compile_create()


class TestColumnGroups:

    def test_timestamps_mysql(self):
        bp = blueprint("mysql")
        bp.timestamps()
        sql = bp.compile_create()[0]
        assert "`created_at` TIMESTAMP DEFAULT CURRENT_TIMESTAMP,\n" in sql
        assert "`updated_at` TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP\n" in sql

    def test_timestamps_pgsql_drop_on_update(self):
        bp = blueprint("pgsql")
        bp.timestamps()
        assert '"updated_at" TIMESTAMP DEFAULT CURRENT_TIMESTAMP\n' in bp.compile_create()[0]

    def test_nullable_timestamps_and_soft_deletes(self):
        bp = blueprint("sqlite")
        bp.nullable_timestamps()
        bp.soft_deletes()
        bp.remember_token()
        sql = bp.compile_create()[0]
        assert '"created_at" DATETIME NULL' in sql
        assert '"deleted_at" DATETIME NULL' in sql
        assert '"remember_token" TEXT COLLATE NOCASE NULL' in sql

    def test_address_helpers(self):
        bp = blueprint("mysql")
        bp.ip_address("ip")
        bp.mac_address("mac")
        sql = bp.compile_create()[0]
        assert "`ip` VARCHAR(45)" in sql
        assert "`mac` VARCHAR(17)" in sql

    def test_column_modifiers_chain(self):
        bp = blueprint("mysql")
        bp.string("email", 120).unique().comment("login")
        bp.boolean("active").default(True)
        bp.decimal("price").unsigned()
        bp.enum("status", ["draft", "live"]).default("draft")
        sql = bp.compile_create()[0]
        assert "`email` VARCHAR(120) UNIQUE COMMENT 'login'" in sql
        assert "`active` TINYINT(1) DEFAULT 1" in sql
        assert "`price` DECIMAL(8, 2) UNSIGNED" in sql
        assert "`status` ENUM('draft', 'live') DEFAULT 'draft'" in sql

    def test_sqlite_enum_checks_values(self):
        bp = blueprint("sqlite")
        bp.enum("status", ["draft", "live"])
        assert "\"status\" TEXT CHECK (\"status\" IN ('draft', 'live'))" in bp.compile_create()[0]


class TestArgumentValidation:

    @pytest.mark.parametrize("length", [0, -5])
    def test_string_length_must_be_positive(self, length):
        with pytest.raises(InvalidBlueprintArgumentFault):
            blueprint("mysql").string("name", length)

    def test_char_length_must_be_positive(self):
        with pytest.raises(InvalidBlueprintArgumentFault):
            blueprint("mysql").char("code", 0)

    def test_enum_needs_values(self):
        with pytest.raises(InvalidBlueprintArgumentFault):
            blueprint("mysql").enum("status", [])

    def test_unknown_drop_index_type(self):
        with pytest.raises(InvalidBlueprintArgumentFault):
            blueprint("mysql", alter=True).drop_index("email", "spatial")

    def test_columns_compile_once(self):
        bp = blueprint("mysql")
        column = bp.string("name")
        first = column.to_sql()
        assert column.compiled
        assert column.to_sql() == first
        with pytest.raises(InvalidBlueprintArgumentFault):
            column.nullable()


# ============================================================================
# ALTER
# ============================================================================


class TestAlterTable:

    def test_drops_then_renames(self):
        bp = blueprint("mysql", alter=True)
        bp.drop_column("age").drop_index("email", "unique").rename_column("name", "full_name")
        assert bp.compile() == [
            "ALTER TABLE `users` DROP COLUMN `age`",
            "ALTER TABLE `users` DROP INDEX `users_unique_email`",
            "ALTER TABLE `users` RENAME COLUMN `name` TO `full_name`",
        ]

    def test_drop_foreign(self):
        bp = blueprint("pgsql", "posts", alter=True)
        bp.drop_foreign("user_id", "users")
        assert bp.compile_alter() == ['ALTER TABLE "posts" DROP CONSTRAINT "fk_posts_users_user_id"']

    def test_new_columns_are_not_compiled(self, caplog):
        bp = blueprint("pgsql", alter=True)
        bp.string("nickname")
        with caplog.at_level(logging.DEBUG, logger="quarry.schema"):
            assert bp.compile_alter() == []
        assert "compile_add_column" in caplog.text

    def test_sqlite_cannot_drop_columns(self):
        bp = blueprint("sqlite", alter=True)
        bp.drop_column("age")
        with pytest.raises(DriverCapabilityFault):
            bp.compile_alter()

    def test_sqlite_can_drop_indexes(self):
        bp = blueprint("sqlite", alter=True)
        bp.drop_index("email")
        assert bp.compile_alter() == ['DROP INDEX "idx_users_email"']


# ============================================================================
# Schema facade
# ============================================================================


class TestSchema:

    def test_create_introspect_drop(self, db):
        schema = Schema(db)

        def notes(t):
            t.id()
            t.string("title")
            t.timestamps()
            t.index("title")

        statements = schema.create("notes", notes)
        assert len(statements) == 2
        assert schema.has_table("notes")
        assert schema.has_column("notes", "created_at")
        assert not schema.has_column("notes", "missing")

        schema.drop("notes")
        assert not schema.has_table("notes")
        schema.drop_if_exists("notes")

    def test_prefix_is_applied(self):
        with RecordingDatabase("sqlite:///:memory:", prefix="app_") as database:
            schema = Schema(database)
            schema.create("notes", lambda t: t.id())
            assert database.table_exists("app_notes")
            assert schema.has_table("notes")

    def test_alter_runs_statements(self, db):
        schema = Schema(db)
        schema.create("notes", lambda t: (t.id(), t.string("title"), t.index("title")))
        assert schema.table("notes", lambda t: t.drop_index("title")) == ['DROP INDEX "idx_notes_title"']

    def test_timestamps_fill_in_on_insert(self, db):
        schema = Schema(db)
        schema.create("notes", lambda t: (t.id(), t.string("title"), t.timestamps()))
        db.exec("INSERT INTO \"notes\" (\"title\") VALUES ('x')")
        row = db.fetch_one('SELECT * FROM "notes"')
        assert row["created_at"] is not None
        assert row["updated_at"] is not None
