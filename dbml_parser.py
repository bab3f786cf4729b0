# DBML parser implementation

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from dbml_ast import (
    Column,
    Diagnostic,
    Document,
    EnumDef,
    EnumValue,
    Index,
    IndexColumn,
    KeyValue,
    Project,
    Relationship,
    StickyNote,
    Table,
    TableGroup,
    TablePartial,
    get_setting,
)
from dbml_attributes import (
    derive_column_flags,
    derive_index_flags,
    last_value,
    parse_attribute_items,
    parse_attribute_list,
    set_setting,
    settings_of,
)
from dbml_refs import (
    RefParseError,
    inline_relationships,
    parse_inline_ref,
    parse_relation_line,
    parse_table_member,
    resolve_aliases,
    unresolved_endpoints,
)
from dbml_scanner import (
    GRAMMAR,
    QUOTES,
    BodyItem,
    Grammar,
    RawBlock,
    clean_quotes,
    clean_string,
    find_matching,
    iter_body_items,
    scan_blocks,
    skip_quoted,
    split_bracket_groups,
    split_top_level,
    strip_comments,
)

logger = logging.getLogger(__name__)

PARTIAL_SETTINGS_POLICIES = ("table", "partial")

TableLike = Union[Table, TablePartial]


@dataclass
class ParseOptions:
    """
    default_schema:      schema given to tables and enums declared without one
    partial_settings:    "table"   - partial settings only fill keys the table lacks
                         "partial" - partial settings overwrite the table's
    collect_diagnostics: record every skipped construct in Document.diagnostics
    strict:              raise ParseError on the first skipped construct
    """
    default_schema: str = "public"
    partial_settings: str = "table"
    collect_diagnostics: bool = False
    strict: bool = False

    def __post_init__(self):
        if self.partial_settings not in PARTIAL_SETTINGS_POLICIES:
            raise ValueError(
                f"partial_settings must be one of {PARTIAL_SETTINGS_POLICIES}, "
                f"got {self.partial_settings!r}"
            )


class ParseError(Exception):
    def __init__(self, diagnostic: Diagnostic):
        super().__init__(f"line {diagnostic.line}: {diagnostic.source}: {diagnostic.message}")
        self.diagnostic = diagnostic


class Parser:
    def __init__(self, text: str, options: Optional[ParseOptions] = None, grammar: Grammar = GRAMMAR):
        self.text = strip_comments(text)
        self.options = options or ParseOptions()
        self.grammar = grammar
        self.diagnostics: List[Diagnostic] = []
        self.partials: Dict[str, TablePartial] = {}

    def report(self, line: int, source: str, message: str) -> None:
        diagnostic = Diagnostic(line=line, source=source, message=message)
        logger.debug("Skipped %s at line %d: %s", source, line, message)
        if self.options.strict:
            raise ParseError(diagnostic)
        if self.options.collect_diagnostics:
            self.diagnostics.append(diagnostic)

    # top-level document
    def parse_document(self) -> Document:
        blocks = scan_blocks(self.text, self.grammar, on_skip=self.report)

        def of_kind(keyword: str) -> List[RawBlock]:
            return [b for b in blocks if b.keyword == keyword]

        doc = Document()

        projects = of_kind("Project")
        if projects:
            doc.project = self.parse_project(projects[0])
            if len(projects) > 1:
                logger.warning("Ignoring %d extra Project block(s) after line %d",
                               len(projects) - 1, projects[0].line)

        # partials first: tables inject them
        for block in of_kind("TablePartial"):
            partial = self.parse_table_partial(block)
            self.partials[partial.name] = partial
            doc.table_partials.append(partial)

        doc.tables = [self.parse_table(b) for b in of_kind("Table")]
        doc.enums = [self.parse_enum(b) for b in of_kind("enum")]
        for block in of_kind("Ref"):
            doc.relationships.extend(self.parse_ref(block))
        doc.table_groups = [self.parse_table_group(b) for b in of_kind("TableGroup")]
        doc.sticky_notes = [self.parse_sticky_note(b) for b in of_kind("Note")]

        default_schema = self.options.default_schema
        resolve_aliases(doc.relationships, doc.tables, default_schema)
        inline = inline_relationships(doc.tables, default_schema)
        # the left side of an inline ref is the table itself
        resolve_aliases(inline, doc.tables, default_schema, sides=("right",))
        doc.relationships.extend(inline)

        if self.options.collect_diagnostics or self.options.strict:
            for _, table_name in unresolved_endpoints(doc.relationships, doc.tables):
                self.report(0, "ref", f"relationship endpoint {table_name!r} names no declared table")

        doc.diagnostics = self.diagnostics
        logger.debug(
            "Parsed %d tables, %d enums, %d relationships, %d groups, %d partials, %d notes",
            len(doc.tables), len(doc.enums), len(doc.relationships),
            len(doc.table_groups), len(doc.table_partials), len(doc.sticky_notes),
        )
        return doc

    # project
    def parse_project(self, block: RawBlock) -> Project:
        """
        Parse:

          Project ecommerce {
            database_type: 'PostgreSQL'
            Note: '''
              multi-line description
            '''
          }
        """
        project = Project(name=block.name or "")
        for item in iter_body_items(block.body or "", block.body_line):
            if item.body is not None:
                if item.text.lower() == "note":
                    project.note = clean_string(item.body)
                else:
                    self.report(item.line, "project", f"unknown sub-block {item.text!r}")
                continue

            items = parse_attribute_items(item.text, self.grammar)
            for attr in items:
                if isinstance(attr, KeyValue) and attr.key.lower() == "note":
                    project.note = attr.value
                elif isinstance(attr, KeyValue):
                    set_setting(project.settings, attr.key, attr.value)
            project.attributes.extend(items)
        return project

    # tables and partials
    def parse_table(self, block: RawBlock) -> Table:
        items = parse_attribute_list(block.settings, self.grammar)
        table = Table(
            name=block.name or "",
            schema=block.schema or self.options.default_schema,
            alias=block.alias,
            settings=settings_of(items),
            attributes=items,
        )
        table.note = get_setting(table.settings, "note")
        self.parse_table_body(block.body or "", block.body_line, table)
        return table

    def parse_table_partial(self, block: RawBlock) -> TablePartial:
        items = parse_attribute_list(block.settings, self.grammar)
        partial = TablePartial(
            name=block.name or "",
            settings=settings_of(items),
            attributes=items,
        )
        partial.note = get_setting(partial.settings, "note")
        self.parse_table_body(block.body or "", block.body_line, partial)
        return partial

    def parse_table_body(self, body: str, body_line: int, target: TableLike,
                         in_columns: bool = False) -> None:
        for item in iter_body_items(body, body_line):
            if item.body is not None:
                self._parse_table_sub_block(item, target, in_columns)
                continue

            line = item.text
            m = self.grammar.note_line.match(line)
            if m:
                target.note = clean_string(m.group("value"))
                continue

            m = self.grammar.partial_injection.match(line)
            if m:
                self.inject_partial(target, clean_quotes(m.group("name")), item.line)
                continue

            # several columns may share a line: `id int [pk] name varchar`
            while line:
                column, rest = self.parse_column(line, item.line)
                if column is None:
                    self.report(item.line, "column", f"not a column definition: {line!r}")
                    break
                target.columns.append(column)
                line = rest

    def _parse_table_sub_block(self, item: BodyItem, target: TableLike, in_columns: bool) -> None:
        head = item.text.lower()
        if head == "indexes":
            target.indexes.extend(self.parse_indexes(item.body or "", item.body_line))
        elif head == "columns" and not in_columns:
            # one level only: `columns { columns { ... } }` is not a table body
            self.parse_table_body(item.body or "", item.body_line, target, in_columns=True)
        elif head == "note":
            target.note = clean_string(item.body or "")
        else:
            self.report(item.line, "table", f"unknown sub-block {item.text!r}")

    def inject_partial(self, target: TableLike, name: str, line: int) -> None:
        partial = self.partials.get(name)
        if partial is None:
            self.report(line, "partial", f"unknown table partial {name!r}")
            return

        target.columns.extend(copy.deepcopy(partial.columns))
        target.indexes.extend(copy.deepcopy(partial.indexes))
        target.injected_partials.append(partial.name)

        for key, value in partial.settings.items():
            existing = next((k for k in target.settings if k.lower() == key.lower()), None)
            if existing is None:
                target.settings[key] = value
            elif self.options.partial_settings == "partial":
                target.settings[existing] = value
        if target.note is None and partial.note is not None:
            target.note = partial.note

    # columns
    def _split_column_type(self, rest: str) -> int:
        """Index where the column type ends: the first '[' opening an attribute group."""
        depth = 0
        i = 0
        n = len(rest)
        while i < n:
            ch = rest[i]
            if ch in QUOTES:
                i = skip_quoted(rest, i)
                continue
            if ch == "(":
                depth += 1
            elif ch == ")" and depth > 0:
                depth -= 1
            elif ch == "[" and depth == 0:
                close = find_matching(rest, i, "[", "]")
                # `int[]`: an empty group is an array suffix, part of the type
                if close != -1 and not rest[i + 1:close].strip():
                    i = close + 1
                    continue
                return i
            i += 1
        return n

    def parse_column(self, line: str, line_no: int = 0) -> Tuple[Optional[Column], str]:
        """
        Column:
          name type [settings]*
        e.g.
          id integer [pk, increment]
          "total" decimal(10, 2) [not null] [note: 'gross']

        Returns the column and any text left after its settings.
        """
        m = self.grammar.leading_name.match(line)
        if not m or not line[m.end():m.end() + 1].isspace():
            return None, line
        rest = line[m.end():]
        type_end = self._split_column_type(rest)
        col_type = rest[:type_end].strip()
        if not col_type or any(ch in col_type for ch in "{}:"):
            return None, line

        groups, trailing = split_bracket_groups(rest[type_end:])
        items = parse_attribute_list("".join(f"[{g}]" for g in groups), self.grammar)

        column = Column(
            name=clean_quotes(m.group("name")),
            type=col_type,
            settings=settings_of(items),
            attributes=items,
            **derive_column_flags(items),
        )

        default = last_value(items, "default")
        if default is not None:
            column.default = default.value
            column.default_kind = default.kind
        note = last_value(items, "note")
        if note is not None:
            column.note = note.value
        ref = last_value(items, "ref")
        if ref is not None:
            try:
                column.inline_ref = parse_inline_ref(ref.value)
            except RefParseError as e:
                self.report(line_no, "ref", f"bad inline ref on column {column.name!r}: {e}")
        return column, trailing

    # indexes
    def _index_column(self, raw: str) -> Optional[IndexColumn]:
        raw = raw.strip()
        if not raw:
            return None
        if raw.startswith("`"):
            return IndexColumn(name=clean_quotes(raw), is_expression=True)
        return IndexColumn(name=clean_quotes(raw))

    def parse_index(self, line: str) -> Tuple[Optional[Index], str]:
        """
        Index line:
          (col_a, `lower(col_b)`) [unique, name: 'idx_ab']
          created_at [type: btree]
          `id*2`

        Returns the index and any text left after its settings.
        """
        columns: List[IndexColumn] = []
        if line.startswith("("):
            close = find_matching(line, 0, "(", ")")
            if close == -1:
                return None, line
            for raw in split_top_level(line[1:close], ","):
                col = self._index_column(raw)
                if col is None:
                    return None, line
                columns.append(col)
            rest = line[close + 1:]
        else:
            m = self.grammar.leading_name.match(line)
            if not m:
                return None, line
            columns.append(self._index_column(m.group("name")))
            rest = line[m.end():]

        groups, trailing = split_bracket_groups(rest)
        items = parse_attribute_list("".join(f"[{g}]" for g in groups), self.grammar)
        index = Index(
            columns=columns,
            is_expression=any(c.is_expression for c in columns),
            settings=settings_of(items),
            attributes=items,
            **derive_index_flags(items),
        )
        return index, trailing

    def parse_indexes(self, body: str, body_line: int) -> List[Index]:
        indexes: List[Index] = []
        for item in iter_body_items(body, body_line):
            if item.body is not None:
                self.report(item.line, "index", f"unexpected block {item.text!r} in indexes")
                continue
            line = item.text
            while line:
                index, rest = self.parse_index(line)
                if index is None:
                    self.report(item.line, "index", f"not an index definition: {line!r}")
                    break
                indexes.append(index)
                line = rest
        return indexes

    # enums
    def parse_enum(self, block: RawBlock) -> EnumDef:
        enum = EnumDef(name=block.name or "", schema=block.schema or self.options.default_schema)
        for item in iter_body_items(block.body or "", block.body_line):
            m = self.grammar.leading_name.match(item.text)
            groups, trailing = split_bracket_groups(item.text[m.end():]) if m else ([], "")
            if item.body is not None or not m or trailing:
                self.report(item.line, "enum", f"not an enum value: {item.text!r}")
                continue
            items = parse_attribute_list("".join(f"[{g}]" for g in groups), self.grammar)
            value = EnumValue(
                value=clean_quotes(m.group("name")),
                settings=settings_of(items),
                attributes=items,
            )
            value.note = get_setting(value.settings, "note")
            enum.values.append(value)
        return enum

    # relationships
    def parse_ref(self, block: RawBlock) -> List[Relationship]:
        """
        Three shapes, all normalized to Relationship:

          Ref name?: a.x > b.y [settings]
          Ref name? { a.x > b.y [settings] }
          Ref name? {
            a.x > b.y
            a.(p, q) - c.(p, q)
          }
        """
        if block.body is None:
            try:
                return [parse_relation_line(block.statement, name=block.name)]
            except RefParseError as e:
                self.report(block.line, "ref", str(e))
                return []

        relationships: List[Relationship] = []
        for item in iter_body_items(block.body, block.body_line):
            if item.body is not None:
                self.report(item.line, "ref", f"unexpected block {item.text!r} in Ref")
                continue
            try:
                relationships.append(parse_relation_line(item.text, name=block.name))
            except RefParseError as e:
                self.report(item.line, "ref", str(e))
        return relationships

    # table groups
    def parse_table_group(self, block: RawBlock) -> TableGroup:
        items = parse_attribute_list(block.settings, self.grammar)
        group = TableGroup(name=block.name or "", settings=settings_of(items), attributes=items)
        group.note = get_setting(group.settings, "note")

        for item in iter_body_items(block.body or "", block.body_line):
            if item.body is not None:
                if item.text.lower() == "note":
                    group.note = clean_string(item.body)
                else:
                    self.report(item.line, "group", f"unknown sub-block {item.text!r}")
                continue

            m = self.grammar.note_line.match(item.text)
            if m:
                group.note = clean_string(m.group("value"))
                continue
            if self.grammar.key_value.match(item.text):
                for attr in parse_attribute_items(item.text, self.grammar):
                    if isinstance(attr, KeyValue):
                        set_setting(group.settings, attr.key, attr.value)
                    group.attributes.append(attr)
                continue
            if not self.grammar.member_name.match(item.text):
                self.report(item.line, "group", f"not a table name: {item.text!r}")
                continue
            try:
                group.tables.append(parse_table_member(item.text))
            except RefParseError as e:
                self.report(item.line, "group", str(e))
        return group

    # sticky notes
    def parse_sticky_note(self, block: RawBlock) -> StickyNote:
        return StickyNote(name=block.name or "", content=clean_string(block.body or ""))


# -----------------------------
# Public entry

def parse_dbml(text: str, options: Optional[ParseOptions] = None) -> Document:
    return Parser(text, options=options).parse_document()
