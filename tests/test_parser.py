"""Tests for dbml_parser.py: whole documents, partials, diagnostics and options."""

import logging
import time

import pytest

from dbml_ast import RelationshipKind, ValueKind
from dbml_parser import ParseError, ParseOptions, parse_dbml

QUOTES = "'\"`"


BASIC = """
Project p { database_type: 'PostgreSQL' }
Table users { id integer }
Table posts {
  id integer [primary key]
  user_id integer
}
Ref: posts.user_id > users.id
"""

ECOMMERCE = """
// E-commerce schema
Project ecommerce {
  database_type: 'PostgreSQL'
  Note: 'Online store'
}

Table users as U {
  id integer [pk, increment]
  email varchar(255) [unique, not null]
  created_at timestamp [default: `now()`]
  Note: 'Registered customers'
}

Table orders {
  id integer [pk]
  user_id integer [ref: > U.id, not null]
  status order_status
  total decimal(10, 2) [default: 0]
}

enum order_status {
  created [note: 'Order created']
  paid
  shipped
}

Ref: orders.user_id > users.id [delete: cascade]

TableGroup user_management {
  users
  orders
}
"""

QUOTED = """
Table "projects" {
  "id" varchar(500) [pk, not null] [ref: < "task_results"."project_id"]
  "name" varchar(200)
}

Table "agents" {
  "type" varchar(100) [pk, not null] [ref: < "task_results"."agent_type"]
}

Table "task_results" {
  "task_id" varchar(500) [not null]
  "agent_type" varchar(100) [not null]
  "project_id" varchar(500) [not null]

  Indexes {
    (task_id, agent_type, project_id) [unique, name: "public_index_1"]
  }
}
"""

BOOKINGS = """
Table bookings {
  id integer
  country varchar
  booking_date date
  created_at timestamp

  indexes {
    (id, country) [pk]
    created_at [name: 'created_at_index', note: 'Date']
    booking_date
    (country, booking_date) [unique]
    booking_date [type: hash]
    (`id*2`)
    (`id*3`,`getdate()`)
    (`id*3`,id)
  }
}
"""

PROJECT_NOTE = """
Project DBML {
  Note: '''
    # DBML - Database Markup Language
    DBML (database markup language) is a simple, readable DSL language designed to define database structures.

    ## Benefits

    * It is simple, flexible and highly human-readable
    * It is database agnostic, focusing on the essential database structure definition without worrying about the detailed syntaxes of each database
    * Comes with a free, simple database visualiser at [dbdiagram.io](http://dbdiagram.io)
  '''
}

Table "users" {
  "id" integer [pk]
  "name" varchar [note: "full name"]
}
"""

PARTIALS = """
TablePartial base_template [headercolor: #ff0000, note: 'from partial'] {
  id int [pk]
  created_at timestamp
  indexes {
    created_at
  }
}

Table users [headercolor: #00ff00] {
  ~base_template
  name varchar
}

Table logs {
  ~base_template
  message text
}
"""


class TestScenarios:
    def test_basic_document(self):
        doc = parse_dbml(BASIC)

        assert doc.project.name == "p"
        assert doc.project.database_type == "PostgreSQL"
        assert [t.name for t in doc.tables] == ["users", "posts"]

        posts = doc.get_table("posts")
        assert posts.schema == "public"
        assert posts.columns[0].is_primary_key
        assert posts.columns[0].is_not_null

        assert len(doc.relationships) == 1
        rel = doc.relationships[0]
        assert rel.left_table == "posts"
        assert rel.left_columns == ["user_id"]
        assert rel.right_table == "users"
        assert rel.right_columns == ["id"]
        assert rel.kind == RelationshipKind.MANY_TO_ONE

    def test_alias_resolution(self):
        doc = parse_dbml("Table users as U { id integer }\nTable posts { user_id integer }\nRef: U.id < posts.user_id")
        assert doc.tables[0].alias == "U"
        rel = doc.relationships[0]
        assert rel.left_table == "users"
        assert rel.right_table == "posts"
        assert rel.kind == RelationshipKind.ONE_TO_MANY

    def test_composite_relationship(self):
        doc = parse_dbml("Ref: orders.(customer_id, store_id) > customers.(customer_id, store_id)")
        rel = doc.relationships[0]
        assert rel.left_columns == ["customer_id", "store_id"]
        assert rel.right_columns == ["customer_id", "store_id"]
        assert rel.kind == RelationshipKind.MANY_TO_ONE

    def test_inline_reference(self):
        text = """
        Table datasource_providers {
          id integer [pk]
          nuget_package_id integer [ref: < "nuget_packages"."id"]
        }
        """
        doc = parse_dbml(text)
        rel = doc.relationships[0]
        assert rel.left_table == "datasource_providers"
        assert rel.left_columns == ["nuget_package_id"]
        assert rel.right_table == "nuget_packages"
        assert rel.right_columns == ["id"]
        assert rel.kind == RelationshipKind.ONE_TO_MANY

    def test_indexes_on_one_line(self):
        doc = parse_dbml("Table t { id int\n indexes { (id, country) [pk] created_at [name: 'idx1'] (`id*2`) } }")
        indexes = doc.tables[0].indexes
        assert len(indexes) == 3
        assert indexes[0].is_primary_key
        assert indexes[0].column_names == ["id", "country"]
        assert indexes[0].is_composite
        assert indexes[1].name == "idx1"
        assert indexes[2].is_expression
        assert indexes[2].column_names == ["id*2"]

    def test_columns_on_one_line(self):
        doc = parse_dbml("Table posts { id integer [primary key] user_id integer }")
        columns = doc.tables[0].columns
        assert [c.name for c in columns] == ["id", "user_id"]
        assert columns[0].is_primary_key
        assert not columns[1].is_primary_key

    def test_default_values(self):
        text = """
        Table events {
          id integer [pk]
          source varchar(255) [default: 'direct']
          created_at timestamp [default: `now()`]
          rating integer [default: 10]
          title varchar
          body text
          published boolean [default: false]
        }
        """
        table = parse_dbml(text).tables[0]
        assert len(table.columns) == 7

        source = table.get_column("source")
        assert source.type == "varchar(255)"
        assert source.default == "direct"
        assert source.default_kind == ValueKind.STRING

        created = table.get_column("created_at")
        assert created.default == "now()"
        assert created.default_kind == ValueKind.EXPRESSION

        rating = table.get_column("rating")
        assert rating.default == "10"
        assert rating.default_kind == ValueKind.BARE

        assert table.get_column("title").default is None


class TestDocuments:
    def test_ecommerce(self):
        doc = parse_dbml(ECOMMERCE)

        assert doc.project.note == "Online store"
        assert len(doc.tables) == 2
        assert len(doc.enums) == 1
        assert len(doc.relationships) == 2
        assert len(doc.table_groups) == 1

        users = doc.get_table("users")
        assert [c.name for c in users.columns] == ["id", "email", "created_at"]
        assert users.note == "Registered customers"
        assert users.columns[0].is_increment

        orders = doc.get_table("orders")
        assert orders.get_column("total").type == "decimal(10, 2)"
        assert orders.get_column("user_id").is_not_null

        # explicit refs come before inline ones
        explicit, inline = doc.relationships
        assert explicit.settings == {"delete": "cascade"}
        assert inline.left_table == "orders"
        assert inline.right_table == "users"
        assert inline.kind == RelationshipKind.MANY_TO_ONE

        enum = doc.enums[0]
        assert enum.schema == "public"
        assert [v.value for v in enum.values] == ["created", "paid", "shipped"]
        assert enum.values[0].note == "Order created"

        assert doc.table_groups[0].tables == ["users", "orders"]

    def test_quoted_names(self):
        doc = parse_dbml(QUOTED)

        assert [t.name for t in doc.tables] == ["projects", "agents", "task_results"]
        assert len(doc.relationships) == 2
        assert doc.relationships[0].left_table == "projects"
        assert doc.relationships[0].right_table == "task_results"
        assert doc.relationships[1].left_table == "agents"

        index = doc.get_table("task_results").indexes[0]
        assert index.name == "public_index_1"
        assert index.is_unique
        assert index.column_names == ["task_id", "agent_type", "project_id"]

    def test_bookings_indexes(self):
        indexes = parse_dbml(BOOKINGS).tables[0].indexes

        assert len(indexes) == 8
        assert indexes[0].is_primary_key
        assert indexes[1].name == "created_at_index"
        assert indexes[1].note == "Date"
        assert indexes[2].column_names == ["booking_date"]
        assert not indexes[2].is_composite
        assert indexes[3].is_unique
        assert indexes[4].type == "hash"
        assert indexes[5].is_expression
        assert indexes[6].column_names == ["id*3", "getdate()"]
        assert [c.is_expression for c in indexes[7].columns] == [True, False]
        assert indexes[7].is_expression

    def test_project_note_keeps_urls(self):
        doc = parse_dbml(PROJECT_NOTE)

        assert doc.project.name == "DBML"
        assert doc.project.note.startswith("# DBML - Database Markup Language")
        assert "http://dbdiagram.io" in doc.project.note
        assert doc.get_table("users").get_column("name").note == "full name"

    def test_no_quotes_survive_in_names(self):
        for text in (ECOMMERCE, QUOTED, PROJECT_NOTE):
            doc = parse_dbml(text)
            names = [t.name for t in doc.tables]
            names += [c.name for t in doc.tables for c in t.columns]
            names += [r.left_table for r in doc.relationships] + [r.right_table for r in doc.relationships]
            notes = [c.note for t in doc.tables for c in t.columns if c.note]
            for value in names + notes:
                assert not any(q in value for q in QUOTES), value

    def test_comments_are_ignored(self):
        text = """
        /* Table hidden { id int } */
        Table visible { // trailing
          id int // the key
          /* name varchar */
        }
        """
        doc = parse_dbml(text)
        assert [t.name for t in doc.tables] == ["visible"]
        assert [c.name for c in doc.tables[0].columns] == ["id"]

    def test_schema_qualified_table(self):
        doc = parse_dbml("Table core.customers as C { id int }\nTable orders { cid int [ref: > C.id] }")
        table = doc.tables[0]
        assert table.schema == "core"
        assert table.qualified_name == "core.customers"
        rel = doc.relationships[0]
        assert (rel.right_schema, rel.right_table) == ("core", "customers")
        assert doc.get_table("customers", schema="core") is table
        assert doc.get_table("customers", schema="public") is None

    def test_custom_default_schema(self):
        doc = parse_dbml("Table t { id int }\nenum e { a }", ParseOptions(default_schema="main"))
        assert doc.tables[0].schema == "main"
        assert doc.enums[0].schema == "main"

    def test_array_type(self):
        column = parse_dbml("Table t { tags text[] [not null] }").tables[0].columns[0]
        assert column.type == "text[]"
        assert column.is_not_null

    def test_table_settings_and_note_block(self):
        text = """
        Table users [headercolor: #3498DB, note: 'from header'] {
          id int
          Note {
            'from block'
          }
        }
        """
        table = parse_dbml(text).tables[0]
        assert table.settings["headercolor"] == "#3498DB"
        assert table.note == "from block"

    def test_empty_document(self):
        doc = parse_dbml("")
        assert doc.project is None
        assert doc.tables == []
        assert doc.relationships == []

    def test_parsing_is_idempotent(self):
        for text in (BASIC, ECOMMERCE, QUOTED, BOOKINGS, PARTIALS):
            assert parse_dbml(text) == parse_dbml(text)


class TestRefBlocks:
    def test_named_short_form(self):
        rel = parse_dbml("Ref fk_user: posts.user_id > users.id").relationships[0]
        assert rel.name == "fk_user"

    def test_single_line_block(self):
        rel = parse_dbml("Ref named { a.x - b.y [update: no action] }").relationships[0]
        assert rel.name == "named"
        assert rel.kind == RelationshipKind.ONE_TO_ONE
        assert rel.settings == {"update": "no action"}

    def test_multi_line_block(self):
        text = """
        Ref fk_block {
          orders.customer_id > customers.id
          orders.store_id <> stores.id [delete: cascade]
        }
        """
        rels = parse_dbml(text).relationships
        assert len(rels) == 2
        assert [r.name for r in rels] == ["fk_block", "fk_block"]
        assert rels[1].kind == RelationshipKind.MANY_TO_MANY
        assert rels[1].settings == {"delete": "cascade"}

    def test_unnamed_block(self):
        rels = parse_dbml("Ref {\n a.x > b.y\n}").relationships
        assert len(rels) == 1
        assert rels[0].name is None


class TestEnumsGroupsNotes:
    def test_enum_with_schema_and_quoted_values(self):
        text = """
        enum core.order_status {
          created [note: 'Order created']
          "in progress"
          done
        }
        """
        enum = parse_dbml(text).enums[0]
        assert enum.schema == "core"
        assert enum.name == "order_status"
        assert [v.value for v in enum.values] == ["created", "in progress", "done"]
        assert enum.values[0].settings == {"note": "Order created"}

    def test_table_group(self):
        text = """
        TableGroup billing [color: #345] {
          Note: 'Billing tables'
          core.invoices
          "public"."payments"
        }
        """
        group = parse_dbml(text).table_groups[0]
        assert group.name == "billing"
        assert group.note == "Billing tables"
        assert group.settings["color"] == "#345"
        assert group.tables == ["core.invoices", "public.payments"]

    def test_sticky_notes(self):
        text = """
        Note release_notes {
          '''
          Remember to
          migrate
          '''
        }
        Note short { 'hello' }
        Note plain { just text }
        """
        notes = parse_dbml(text).sticky_notes
        assert [n.name for n in notes] == ["release_notes", "short", "plain"]
        assert notes[0].content == "Remember to\n          migrate"
        assert notes[1].content == "hello"
        assert notes[2].content == "just text"

    def test_second_project_is_ignored(self, caplog):
        with caplog.at_level(logging.WARNING, logger="dbml_parser"):
            doc = parse_dbml("Project first {}\nProject second {}")
        assert doc.project.name == "first"
        assert "extra Project" in caplog.text


class TestPartials:
    def test_definition(self):
        text = """
        TablePartial user_base {
          Note: 'Partial for user table'
          Columns {
            id integer [primary key]
            username varchar(50) [not null, unique]
          }
          Indexes {
            username [unique]
          }
        }
        """
        partial = parse_dbml(text).table_partials[0]
        assert partial.name == "user_base"
        assert partial.note == "Partial for user table"
        assert len(partial.columns) == 2
        assert len(partial.indexes) == 1
        assert partial.columns[1].is_unique

    def test_injection(self):
        doc = parse_dbml(PARTIALS)
        partial = doc.table_partials[0]
        users = doc.get_table("users")

        assert [c.name for c in users.columns] == ["id", "created_at", "name"]
        assert len(users.indexes) == 1
        assert users.injected_partials == ["base_template"]
        assert users.columns[0].is_primary_key
        # table settings win by default, missing keys are filled in
        assert users.settings["headercolor"] == "#00ff00"
        assert users.settings["note"] == "from partial"
        assert users.note == "from partial"
        # the partial itself is untouched
        assert len(partial.columns) == 2

    def test_injected_columns_are_copies(self):
        doc = parse_dbml(PARTIALS)
        users, logs = doc.tables
        assert users.columns[0] == logs.columns[0]
        assert users.columns[0] is not logs.columns[0]
        users.columns[0].name = "renamed"
        assert logs.columns[0].name == "id"
        assert doc.table_partials[0].columns[0].name == "id"

    def test_partial_settings_policy(self):
        doc = parse_dbml(PARTIALS, ParseOptions(partial_settings="partial"))
        assert doc.get_table("users").settings["headercolor"] == "#ff0000"

    def test_repeated_injection(self):
        text = "TablePartial p { a int\n b int }\nTable t {\n ~p\n ~p\n}"
        table = parse_dbml(text).tables[0]
        assert len(table.columns) == 4
        assert table.injected_partials == ["p", "p"]

    def test_partial_may_inject_earlier_partial(self):
        text = "TablePartial a { x int }\nTablePartial b {\n ~a\n y int\n}\nTable t { ~b }"
        doc = parse_dbml(text)
        assert [c.name for c in doc.tables[0].columns] == ["x", "y"]

    def test_unknown_partial(self):
        text = "Table t {\n  ~missing\n  id int\n}"
        doc = parse_dbml(text, ParseOptions(collect_diagnostics=True))
        table = doc.tables[0]
        assert [c.name for c in table.columns] == ["id"]
        assert table.injected_partials == []
        assert [d.source for d in doc.diagnostics] == ["partial"]
        assert doc.diagnostics[0].line == 2


class TestSettingKeys:
    def test_key_spelling_is_kept(self):
        table = parse_dbml("Table users [headerColor: #3498DB] { id int }").tables[0]
        assert table.settings == {"headerColor": "#3498DB"}

    def test_known_keys_in_any_case(self):
        text = "Project p { Database_Type: 'MySQL' }\nTable t [NOTE: 'hi'] { id int }"
        doc = parse_dbml(text)
        assert doc.project.database_type == "MySQL"
        assert doc.tables[0].note == "hi"
        assert doc.tables[0].settings == {"NOTE": "hi"}

    def test_partial_merge_ignores_case(self):
        text = (
            "TablePartial p [headerColor: #f00, Note: 'p'] { id int }\n"
            "Table t [HEADERCOLOR: #0f0] { ~p }"
        )
        assert parse_dbml(text).tables[0].settings == {"HEADERCOLOR": "#0f0", "Note": "p"}

        doc = parse_dbml(text, ParseOptions(partial_settings="partial"))
        assert doc.tables[0].settings == {"HEADERCOLOR": "#f00", "Note": "p"}


class TestDefaultSchema:
    def test_explicit_default_schema_matches_bare_name(self):
        text = (
            "Table users { id int }\n"
            "Table posts { user_id int }\n"
            "Ref: posts.user_id > public.users.id\n"
            "Ref: public.posts.user_id > users.id\n"
        )
        doc = parse_dbml(text, ParseOptions(collect_diagnostics=True))
        first, second = doc.relationships
        assert (first.left_schema, first.right_schema) == (None, None)
        assert (first.left_table, first.right_table) == (second.left_table, second.right_table)
        assert (first.left_schema, first.right_schema) == (second.left_schema, second.right_schema)
        assert doc.diagnostics == []


class TestNestedColumns:
    def test_columns_block_nests_one_level(self):
        text = "Table t {\n columns {\n  id int\n  columns {\n   x int\n  }\n }\n}"
        doc = parse_dbml(text, ParseOptions(collect_diagnostics=True))
        assert [c.name for c in doc.tables[0].columns] == ["id"]
        assert [(d.line, d.source) for d in doc.diagnostics] == [(4, "table")]


class TestLargeInput:
    @pytest.mark.parametrize("text", [
        "{" * 20000,
        "[" * 20000 + "(" * 20000,
        "Table t {\n" + "a int [\n" * 4000 + "}",
        "Table t\n" * 5000,
        "Ref: a.b > c.d [\n" * 4000,
        "Table t [\n" * 4000,
    ])
    def test_parses_in_linear_time(self, text):
        started = time.perf_counter()
        parse_dbml(text)
        assert time.perf_counter() - started < 1.0


class TestDiagnostics:
    MALFORMED = "Table users {\n  id integer\n  username [unique]\n  email varchar\n}\n"

    def test_malformed_column_is_skipped(self):
        doc = parse_dbml(self.MALFORMED)
        assert [c.name for c in doc.tables[0].columns] == ["id", "email"]
        assert doc.diagnostics == []

    def test_collected(self):
        doc = parse_dbml(self.MALFORMED, ParseOptions(collect_diagnostics=True))
        assert len(doc.diagnostics) == 1
        diagnostic = doc.diagnostics[0]
        assert diagnostic.line == 3
        assert diagnostic.source == "column"
        assert "username" in diagnostic.message

    def test_strict_raises(self):
        with pytest.raises(ParseError) as excinfo:
            parse_dbml(self.MALFORMED, ParseOptions(strict=True))
        assert excinfo.value.diagnostic.line == 3
        assert str(excinfo.value).startswith("line 3: column:")

    def test_unresolved_endpoint(self):
        text = "Table posts { user_id int }\nRef: posts.user_id > ghosts.id"
        doc = parse_dbml(text, ParseOptions(collect_diagnostics=True))
        assert len(doc.relationships) == 1
        assert len(doc.diagnostics) == 1
        assert doc.diagnostics[0].line == 0
        assert "ghosts" in doc.diagnostics[0].message

    def test_unterminated_block(self):
        text = "Table broken {\n  id int\n\nTable ok { id int }"
        doc = parse_dbml(text, ParseOptions(collect_diagnostics=True))
        assert [t.name for t in doc.tables] == ["ok"]
        assert doc.diagnostics[0].source == "block"
        assert doc.diagnostics[0].line == 1

    def test_bad_ref_line(self):
        doc = parse_dbml("Ref: posts.user_id users.id", ParseOptions(collect_diagnostics=True))
        assert doc.relationships == []
        assert doc.diagnostics[0].source == "ref"

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            ParseOptions(partial_settings="merge")
