"""
Tests for quarry.schema Wrapper and Grammar.

Covers:
- Identifier quoting per dialect (dotted, aliased, wildcard, escaping)
- Table prefixes and identifier truncation
- Column type vocabulary and the TEXT fallback
- Modifiers and default literals
- Foreign keys, indexes, ALTER helpers and their driver limits
- Insert verbs, upsert conflict clauses and RETURNING
"""

import logging

import pytest

from quarry.faults import (
    DriverCapabilityFault,
    InvalidForeignKeyFault,
    UnsupportedDriverFault,
)
from quarry.schema import (
    ColumnDefinition,
    ForeignKeyConstraint,
    Grammar,
    SUPPORTED_TYPES,
    Wrapper,
)
from quarry.schema.column import IndexDefinition


DRIVERS = ("mysql", "sqlite", "pgsql")


# ============================================================================
# Wrapper
# ============================================================================


class TestWrapper:

    def test_quote_characters(self):
        assert Wrapper("mysql").wrap("users") == "`users`"
        assert Wrapper("sqlite").wrap("users") == '"users"'
        assert Wrapper("pgsql").wrap("users") == '"users"'

    def test_driver_name_is_case_insensitive(self):
        assert Wrapper("MySQL").driver == "mysql"

    def test_unsupported_driver(self):
        with pytest.raises(UnsupportedDriverFault):
            Wrapper("oracle")

    def test_dotted_names_are_quoted_per_segment(self):
        assert Wrapper("mysql").wrap("users.id") == "`users`.`id`"

    def test_wildcard_is_never_quoted(self):
        assert Wrapper("pgsql").wrap("*") == "*"
        assert Wrapper("mysql").wrap("p.*") == "`p`.*"

    def test_alias(self):
        assert Wrapper("mysql").wrap("name as label") == "`name` AS `label`"
        assert Wrapper("sqlite").wrap("u.name AS label") == '"u"."name" AS "label"'

    def test_embedded_quotes_are_doubled(self):
        assert Wrapper("sqlite").wrap('we"ird') == '"we""ird"'
        assert Wrapper("mysql").wrap("we`ird") == "`we``ird`"

    def test_identifiers_are_truncated(self):
        name = "x" * 100
        assert Wrapper("pgsql").wrap(name) == f'"{"x" * 63}"'
        assert Wrapper("mysql").wrap(name) == f"`{'x' * 64}`"

    def test_table_prefix(self):
        w = Wrapper("sqlite")
        assert w.wrap_table("users", "app_") == '"app_users"'
        assert w.wrap_table("main.users", "app_") == '"main"."app_users"'
        assert w.wrap_table("users as u", "app_") == '"app_users" AS "u"'

    def test_columnize(self):
        assert Wrapper("mysql").columnize(["a", "b"]) == "`a`, `b`"

    def test_quote_string(self):
        assert Wrapper.quote_string("it's") == "'it''s'"
        assert Wrapper("mysql").quote_enum_values(["a", "b"]) == "'a', 'b'"


# ============================================================================
# Types & modifiers
# ============================================================================


class TestColumnTypes:

    @pytest.mark.parametrize(
        "driver, type_, params, expected",
        [
            ("mysql", "string", {"length": 50}, "VARCHAR(50)"),
            ("mysql", "string", {}, "VARCHAR(255)"),
            ("sqlite", "string", {"length": 50}, "TEXT COLLATE NOCASE"),
            ("pgsql", "char", {"length": 2}, "CHAR(2)"),
            ("mysql", "id", {}, "INT UNSIGNED AUTO_INCREMENT"),
            ("sqlite", "id", {}, "INTEGER PRIMARY KEY AUTOINCREMENT"),
            ("pgsql", "id", {}, "SERIAL"),
            ("pgsql", "big_increments", {}, "BIGSERIAL"),
            ("mysql", "decimal", {}, "DECIMAL(8, 2)"),
            ("pgsql", "decimal", {"precision": 10, "scale": 4}, "DECIMAL(10, 4)"),
            ("mysql", "double", {"precision": 10, "scale": 2}, "DOUBLE(10, 2)"),
            ("mysql", "double", {}, "DOUBLE"),
            ("pgsql", "double", {}, "DOUBLE PRECISION"),
            ("mysql", "timestamp", {"precision": 0}, "TIMESTAMP"),
            ("mysql", "timestamp", {"precision": 6}, "TIMESTAMP(6)"),
            ("pgsql", "date_time", {"precision": 3}, "TIMESTAMP(3)"),
            ("mysql", "boolean", {}, "TINYINT(1)"),
            ("pgsql", "boolean", {}, "BOOLEAN"),
            ("pgsql", "binary", {}, "BYTEA"),
            ("pgsql", "uuid", {}, "UUID"),
            ("mysql", "uuid", {}, "CHAR(36)"),
        ],
    )
    def test_map_column_type(self, driver, type_, params, expected):
        assert Grammar(driver).map_column_type(type_, params) == expected

    def test_enum_rendering(self):
        params = {"allowed": ["draft", "live"], "name": "status"}
        assert Grammar("mysql").map_column_type("enum", params) == "ENUM('draft', 'live')"
        assert Grammar("sqlite").map_column_type("enum", params) == (
            "TEXT CHECK (\"status\" IN ('draft', 'live'))"
        )

    def test_unknown_type_falls_back_to_text(self, caplog):
        with caplog.at_level(logging.WARNING, logger="quarry.schema"):
            assert Grammar("pgsql").map_column_type("geometry") == "TEXT"
        assert "Unmapped column type 'geometry'" in caplog.text
        assert [r.levelname for r in caplog.records] == ["WARNING"]

    def test_every_dialect_knows_the_same_vocabulary(self):
        assert set(SUPPORTED_TYPES["mysql"]) == set(SUPPORTED_TYPES["sqlite"]) == set(SUPPORTED_TYPES["pgsql"])

    @pytest.mark.parametrize("driver", DRIVERS)
    def test_no_known_type_hits_the_fallback(self, driver, caplog):
        grammar = Grammar(driver)
        params = {"allowed": ["a"], "name": "col"}
        with caplog.at_level(logging.DEBUG, logger="quarry.schema"):
            for type_ in SUPPORTED_TYPES[driver]:
                assert grammar.supports_type(type_)
                assert grammar.map_column_type(type_, params)
        assert "Unmapped" not in caplog.text


class TestModifiers:

    @pytest.mark.parametrize(
        "driver, name, value, expected",
        [
            ("mysql", "nullable", None, "NULL"),
            ("pgsql", "required", None, "NOT NULL"),
            ("sqlite", "unique", None, "UNIQUE"),
            ("mysql", "unsigned", None, "UNSIGNED"),
            ("pgsql", "unsigned", None, ""),
            ("mysql", "auto_increment", None, "AUTO_INCREMENT"),
            ("sqlite", "auto_increment", None, "PRIMARY KEY AUTOINCREMENT"),
            ("pgsql", "auto_increment", None, ""),
            ("mysql", "after", "email", "AFTER `email`"),
            ("sqlite", "after", "email", ""),
            ("mysql", "comment", "it's", "COMMENT 'it''s'"),
            ("pgsql", "comment", "x", ""),
            ("mysql", "charset", "utf8mb4", "CHARACTER SET utf8mb4"),
            ("mysql", "collation", "utf8mb4_bin", "COLLATE utf8mb4_bin"),
            ("pgsql", "default_current_timestamp", None, "DEFAULT CURRENT_TIMESTAMP"),
            ("mysql", "on_update_current_timestamp", None, "ON UPDATE CURRENT_TIMESTAMP"),
            ("sqlite", "on_update_current_timestamp", None, ""),
        ],
    )
    def test_map_modifier(self, driver, name, value, expected):
        assert Grammar(driver).map_modifier(name, value) == expected

    def test_unknown_modifier_is_empty(self):
        assert Grammar("mysql").map_modifier("sparkly") == ""

    @pytest.mark.parametrize(
        "driver, value, expected",
        [
            ("pgsql", True, "TRUE"),
            ("pgsql", False, "FALSE"),
            ("mysql", True, "1"),
            ("sqlite", False, "0"),
            ("mysql", None, "NULL"),
            ("mysql", 42, "42"),
            ("mysql", 1.5, "1.5"),
            ("sqlite", "o'clock", "'o''clock'"),
        ],
    )
    def test_format_default(self, driver, value, expected):
        assert Grammar(driver).format_default(value) == expected

    def test_compile_column_keeps_modifier_order(self):
        column = ColumnDefinition("email", "string", {"length": 120}).nullable().unique()
        assert Grammar("mysql").compile_column(column) == "`email` VARCHAR(120) NULL UNIQUE"

    def test_id_types_skip_auto_increment_modifier(self):
        column = ColumnDefinition("id", "id").auto_increment()
        assert Grammar("sqlite").compile_column(column) == '"id" INTEGER PRIMARY KEY AUTOINCREMENT'


# ============================================================================
# Keys, indexes & ALTER helpers
# ============================================================================


class TestForeignKeys:

    def test_named_constraint(self):
        fk = ForeignKeyConstraint("user_id").constrained().cascade_on_delete()
        assert Grammar("mysql").compile_foreign_key("posts", fk) == (
            "CONSTRAINT `fk_posts_users_user_id` FOREIGN KEY (`user_id`) "
            "REFERENCES `users` (`id`) ON DELETE CASCADE"
        )

    def test_constrained_guesses_plural_table(self):
        fk = ForeignKeyConstraint("country_id").constrained()
        assert fk.on_table == "countries"
        assert fk.reference_columns == ["id"]

    def test_both_actions(self):
        fk = ForeignKeyConstraint("user_id").references("id").on("users")
        fk.set_null_on_delete().cascade_on_update()
        assert Grammar("pgsql").compile_foreign_key("posts", fk).endswith("ON DELETE SET NULL ON UPDATE CASCADE")

    def test_sqlite_has_no_set_default(self):
        fk = ForeignKeyConstraint("user_id").constrained().set_default_on_delete()
        assert Grammar("sqlite").compile_foreign_key("posts", fk).endswith("ON DELETE NO ACTION")
        assert Grammar("pgsql").compile_foreign_key("posts", fk).endswith("ON DELETE SET DEFAULT")

    def test_missing_table_raises(self):
        with pytest.raises(InvalidForeignKeyFault):
            Grammar("mysql").compile_foreign_key("posts", ForeignKeyConstraint("user_id").references("id"))

    def test_missing_reference_columns_raises(self):
        with pytest.raises(InvalidForeignKeyFault):
            Grammar("mysql").compile_foreign_key("posts", ForeignKeyConstraint("user_id").on("users"))

    def test_unknown_action_raises(self):
        fk = ForeignKeyConstraint("user_id").constrained().on_delete("explode")
        with pytest.raises(InvalidForeignKeyFault):
            Grammar("pgsql").compile_foreign_key("posts", fk)

    def test_constraint_name_includes_the_source_table(self):
        grammar = Grammar("mysql")
        assert grammar.foreign_key_name("posts", "users", ["user_id"]) == "fk_posts_users_user_id"
        assert grammar.foreign_key_name("comments", "users", ["user_id"]) == "fk_comments_users_user_id"

    def test_long_constraint_names_are_truncated(self):
        name = Grammar("mysql").foreign_key_name("a" * 40, "b" * 40, ["c"])
        assert len(name) == 64
        assert name.startswith("fk_" + "a" * 40)

    def test_add_foreign_needs_alter_support(self):
        fk = ForeignKeyConstraint("user_id").constrained()
        assert Grammar("pgsql").compile_add_foreign("posts", fk).startswith(
            'ALTER TABLE "posts" ADD CONSTRAINT "fk_posts_users_user_id"'
        )
        with pytest.raises(DriverCapabilityFault):
            Grammar("sqlite").compile_add_foreign("posts", fk)


class TestIndexes:

    def test_index_names_per_dialect(self):
        index = IndexDefinition("index", ("title",))
        assert Grammar("sqlite").compile_index("posts", index) == 'CREATE INDEX "idx_posts_title" ON "posts" ("title")'
        assert Grammar("pgsql").compile_index("posts", index) == (
            'CREATE INDEX "posts_index_title" ON "posts" USING btree ("title")'
        )

    def test_unique_index(self):
        index = IndexDefinition("unique", ("slug",))
        assert Grammar("mysql").compile_index("posts", index) == (
            "CREATE UNIQUE INDEX `posts_unique_slug` ON `posts` (`slug`)"
        )

    def test_index_name_is_truncated(self):
        name = Grammar("pgsql").index_name("t" * 50, "index", ["c" * 50])
        assert len(name) == 63


class TestAlterHelpers:

    def test_add_column(self):
        column = ColumnDefinition("age", "integer").nullable()
        assert Grammar("pgsql").compile_add_column("users", column) == (
            'ALTER TABLE "users" ADD COLUMN "age" INTEGER NULL'
        )

    def test_drop_columns(self):
        assert Grammar("mysql").compile_drop_column("users", ["a", "b"]) == (
            "ALTER TABLE `users` DROP COLUMN `a`, DROP COLUMN `b`"
        )

    def test_drop_index_per_dialect(self):
        assert Grammar("mysql").compile_drop_index("users", ["email"], "unique") == (
            "ALTER TABLE `users` DROP INDEX `users_unique_email`"
        )
        assert Grammar("pgsql").compile_drop_index("users", ["email"], "unique") == 'DROP INDEX "users_unique_email"'
        assert Grammar("sqlite").compile_drop_index("users", ["email"]) == 'DROP INDEX "idx_users_email"'

    def test_drop_foreign_per_dialect(self):
        assert Grammar("mysql").compile_drop_foreign("posts", ["user_id"], "users") == (
            "ALTER TABLE `posts` DROP FOREIGN KEY `fk_posts_users_user_id`"
        )
        assert Grammar("pgsql").compile_drop_foreign("posts", ["user_id"], "users") == (
            'ALTER TABLE "posts" DROP CONSTRAINT "fk_posts_users_user_id"'
        )

    def test_rename_column(self):
        assert Grammar("pgsql").compile_rename_column("users", "name", "full_name") == (
            'ALTER TABLE "users" RENAME COLUMN "name" TO "full_name"'
        )

    @pytest.mark.parametrize(
        "call",
        [
            lambda g: g.compile_drop_column("users", ["a"]),
            lambda g: g.compile_drop_foreign("posts", ["user_id"], "users"),
            lambda g: g.compile_rename_column("users", "a", "b"),
        ],
    )
    def test_sqlite_limits(self, call):
        with pytest.raises(DriverCapabilityFault):
            call(Grammar("sqlite"))

    def test_drop_table(self):
        assert Grammar("mysql").compile_drop_table("users") == "DROP TABLE `users`"
        assert Grammar("sqlite").compile_drop_table("users", if_exists=True) == 'DROP TABLE IF EXISTS "users"'


# ============================================================================
# DML fragments
# ============================================================================


class TestInsertFragments:

    @pytest.mark.parametrize(
        "driver, ignore, replace, expected",
        [
            ("mysql", False, False, "INSERT INTO"),
            ("mysql", True, False, "INSERT IGNORE INTO"),
            ("sqlite", True, False, "INSERT OR IGNORE INTO"),
            ("pgsql", True, False, "INSERT INTO"),
            ("mysql", False, True, "REPLACE INTO"),
            ("sqlite", False, True, "INSERT OR REPLACE INTO"),
        ],
    )
    def test_insert_verb(self, driver, ignore, replace, expected):
        assert Grammar(driver).compile_insert_verb(ignore=ignore, replace=replace) == expected

    def test_pgsql_replace_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="quarry.schema"):
            assert Grammar("pgsql").compile_insert_verb(replace=True) == "INSERT INTO"
        assert "REPLACE is not supported" in caplog.text

    def test_upsert_clauses(self):
        columns = ["id", "name"]
        assert Grammar("mysql").compile_conflict(columns, ["id"], ["name"]) == (
            " ON DUPLICATE KEY UPDATE `name` = VALUES(`name`)"
        )
        assert Grammar("pgsql").compile_conflict(columns, ["id"], ["name"]) == (
            ' ON CONFLICT ("id") DO UPDATE SET "name" = EXCLUDED."name"'
        )
        assert Grammar("sqlite").compile_conflict(columns, ["id"], {"name": "name"}) == (
            ' ON CONFLICT ("id") DO UPDATE SET "name" = excluded."name"'
        )

    def test_conflict_target_defaults_to_first_column(self):
        assert Grammar("pgsql").compile_conflict(["email", "name"], (), ["name"]) == (
            ' ON CONFLICT ("email") DO UPDATE SET "name" = EXCLUDED."name"'
        )

    def test_do_nothing(self):
        assert Grammar("pgsql").compile_conflict(["id"], ["id"], ignore=True) == ' ON CONFLICT ("id") DO NOTHING'
        assert Grammar("pgsql").compile_conflict(["id"], (), ignore=True) == " ON CONFLICT DO NOTHING"
        assert Grammar("sqlite").compile_conflict(["id"], ["id"]) == ' ON CONFLICT ("id") DO NOTHING'
        assert Grammar("mysql").compile_conflict(["id"], ["id"]) == ""

    def test_returning(self, caplog):
        assert Grammar("pgsql").compile_returning(["id", "*"]) == ' RETURNING "id", *'
        with caplog.at_level(logging.WARNING, logger="quarry.schema"):
            assert Grammar("mysql").compile_returning(["id"]) == ""
        assert "RETURNING is only supported on pgsql" in caplog.text
