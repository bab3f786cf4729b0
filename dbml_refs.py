# DBML relationships: relation lines, inline `ref:` values, alias resolution

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from dbml_ast import Relationship, RelationshipKind, Table
from dbml_attributes import parse_attribute_list, settings_of
from dbml_scanner import QUOTES, clean_quotes, find_matching, skip_quoted, split_top_level

SYMBOL_KINDS: Dict[str, RelationshipKind] = {
    "<": RelationshipKind.ONE_TO_MANY,
    ">": RelationshipKind.MANY_TO_ONE,
    "-": RelationshipKind.ONE_TO_ONE,
    "<>": RelationshipKind.MANY_TO_MANY,
}


def relationship_kind(symbol: str) -> RelationshipKind:
    return SYMBOL_KINDS.get(symbol.strip(), RelationshipKind.ONE_TO_MANY)


@dataclass
class Endpoint:
    """One side of a relation: [schema.]table.column or [schema.]table.(c1, c2)."""
    schema: Optional[str]
    table: str
    columns: List[str]


class RefParseError(Exception):
    pass


class RefParser:
    def __init__(self, text: str):
        self.text = text
        self.n = len(text)
        self.i = 0

    def peek(self) -> str:
        return self.text[self.i] if self.i < self.n else ''

    def advance(self) -> str:
        ch = self.peek()
        if ch:
            self.i += 1
        return ch

    def skip_ws(self):
        while self.peek() and self.peek().isspace():
            self.i += 1

    def at_end(self) -> bool:
        self.skip_ws()
        return self.i >= self.n

    def parse_ident(self) -> str:
        self.skip_ws()
        start = self.i
        if self.peek() and self.peek() in QUOTES:
            self.i = skip_quoted(self.text, self.i)
            return clean_quotes(self.text[start:self.i])
        while self.peek() and (self.peek().isalnum() or self.peek() == "_"):
            self.i += 1
        if self.i == start:
            raise RefParseError(f"Expected identifier at pos {self.i} in {self.text!r}")
        return self.text[start:self.i]

    def parse_column_list(self) -> List[str]:
        """`(c1, "c 2", c3)` -> ["c1", "c 2", "c3"]"""
        close = find_matching(self.text, self.i, "(", ")")
        if close == -1:
            raise RefParseError(f"Unclosed '(' in {self.text!r}")
        inner = self.text[self.i + 1:close]
        self.i = close + 1
        columns = [clean_quotes(c) for c in split_top_level(inner, ",")]
        if not all(columns):
            raise RefParseError(f"Empty column in {inner!r}")
        return columns

    def parse_endpoint(self, with_column: bool = True) -> Endpoint:
        parts = [self.parse_ident()]
        columns: Optional[List[str]] = None
        while True:
            self.skip_ws()
            if self.peek() != ".":
                break
            self.advance()
            self.skip_ws()
            if self.peek() == "(":
                columns = self.parse_column_list()
                break
            parts.append(self.parse_ident())

        if columns is None:
            if not with_column:
                if len(parts) > 2:
                    raise RefParseError(f"Too many name parts in {'.'.join(parts)!r}")
                columns = []
            else:
                if len(parts) < 2:
                    raise RefParseError(f"Missing column in {'.'.join(parts)!r}")
                columns = [parts.pop()]

        if len(parts) == 1:
            return Endpoint(schema=None, table=parts[0], columns=columns)
        if len(parts) == 2:
            return Endpoint(schema=parts[0], table=parts[1], columns=columns)
        raise RefParseError(f"Too many name parts in {'.'.join(parts)!r}")

    def parse_symbol(self) -> str:
        self.skip_ws()
        if self.text.startswith("<>", self.i):
            self.i += 2
            return "<>"
        if self.peek() in ("<", ">", "-"):
            return self.advance()
        raise RefParseError(f"Expected one of <, >, -, <> at pos {self.i} in {self.text!r}")

    def parse_relation(self, name: Optional[str] = None) -> Relationship:
        """
        Relation:
          left SYMBOL right [settings]?
        e.g.
          orders.user_id > users.id [delete: cascade]
          orders.(a, b) > core.customers.(a, b)
        """
        left = self.parse_endpoint()
        symbol = self.parse_symbol()
        right = self.parse_endpoint()

        self.skip_ws()
        attributes = []
        if self.peek() == "[":
            attributes = parse_attribute_list(self.text[self.i:])
            close = find_matching(self.text, self.i, "[", "]")
            while close != -1:
                self.i = close + 1
                self.skip_ws()
                if self.peek() != "[":
                    break
                close = find_matching(self.text, self.i, "[", "]")
        if not self.at_end():
            raise RefParseError(f"Unexpected trailing content: {self.text[self.i:]!r}")

        return Relationship(
            name=name,
            left_schema=left.schema,
            left_table=left.table,
            left_columns=left.columns,
            right_schema=right.schema,
            right_table=right.table,
            right_columns=right.columns,
            kind=relationship_kind(symbol),
            settings=settings_of(attributes),
            attributes=attributes,
        )


def parse_relation_line(text: str, name: Optional[str] = None) -> Relationship:
    return RefParser(text.strip()).parse_relation(name=name)


def parse_inline_ref(value: str) -> Relationship:
    """
    Parse the value of a column's `ref:` setting, e.g. `> users.id` or
    `< "core"."users"."id"`. The left side stays empty: it is the column
    that carries the setting, filled in by `inline_relationships`.
    """
    parser = RefParser(value.strip())
    symbol = parser.parse_symbol()
    target = parser.parse_endpoint()
    if not parser.at_end():
        raise RefParseError(f"Unexpected trailing content: {value!r}")
    return Relationship(
        left_table="",
        right_schema=target.schema,
        right_table=target.table,
        right_columns=target.columns,
        kind=relationship_kind(symbol),
    )


def parse_table_member(value: str) -> str:
    """`"core"."users"` -> `core.users` (table group member lines)."""
    parser = RefParser(value.strip())
    endpoint = parser.parse_endpoint(with_column=False)
    if not parser.at_end():
        raise RefParseError(f"Unexpected trailing content: {value!r}")
    if endpoint.schema:
        return f"{endpoint.schema}.{endpoint.table}"
    return endpoint.table


# -----------------------------
# Resolution

def alias_map(tables: Iterable[Table]) -> Dict[str, Table]:
    return {t.alias: t for t in tables if t.alias}


def _resolve(schema: Optional[str], table: str, aliases: Dict[str, Table],
             default_schema: str) -> Tuple[Optional[str], str]:
    if schema is not None or table not in aliases:
        return (None if schema == default_schema else schema), table
    target = aliases[table]
    return (target.schema if target.schema != default_schema else None), target.name


def resolve_aliases(relationships: Iterable[Relationship], tables: Iterable[Table],
                    default_schema: str = "public", sides: Tuple[str, ...] = ("left", "right")) -> None:
    """
    Rewrite endpoints that name a table alias and drop an explicit default
    schema, so `public.users` and `users` compare equal. Unknown names pass
    through.
    """
    aliases = alias_map(tables)
    for rel in relationships:
        if "left" in sides:
            rel.left_schema, rel.left_table = _resolve(
                rel.left_schema, rel.left_table, aliases, default_schema)
        if "right" in sides:
            rel.right_schema, rel.right_table = _resolve(
                rel.right_schema, rel.right_table, aliases, default_schema)


def inline_relationships(tables: Iterable[Table], default_schema: str = "public") -> List[Relationship]:
    """Anchor every column-level `ref:` at its table and column."""
    out: List[Relationship] = []
    for table in tables:
        for column in table.columns:
            if column.inline_ref is None:
                continue
            out.append(replace(
                column.inline_ref,
                left_schema=table.schema if table.schema != default_schema else None,
                left_table=table.name,
                left_columns=[column.name],
                right_columns=list(column.inline_ref.right_columns),
                settings=dict(column.inline_ref.settings),
                attributes=list(column.inline_ref.attributes),
            ))
    return out


def unresolved_endpoints(relationships: Iterable[Relationship],
                         tables: Iterable[Table]) -> List[Tuple[Relationship, str]]:
    """(relationship, table name) for every endpoint naming no declared table."""
    tables = list(tables)

    def known(schema: Optional[str], name: str) -> bool:
        return any(t.name == name and (schema is None or t.schema == schema) for t in tables)

    missing: List[Tuple[Relationship, str]] = []
    for rel in relationships:
        if not known(rel.left_schema, rel.left_table):
            missing.append((rel, rel.left_table))
        if not known(rel.right_schema, rel.right_table):
            missing.append((rel, rel.right_table))
    return missing
