# JSON conversion for DBML document structures

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Any, Dict, List, Optional

from dbml_ast import (
    Column,
    Diagnostic,
    Document,
    EnumDef,
    EnumValue,
    Flag,
    Index,
    IndexColumn,
    KeyValue,
    Project,
    Relationship,
    RelationshipKind,
    StickyNote,
    Table,
    TableGroup,
    TablePartial,
    ValueKind,
)
from dbml_refs import SYMBOL_KINDS

_TYPES = {
    cls.__name__: cls
    for cls in (
        Column, Diagnostic, Document, EnumDef, EnumValue, Flag, Index, IndexColumn,
        KeyValue, Project, Relationship, StickyNote, Table, TableGroup, TablePartial,
    )
}

# enum-typed fields, stored as their plain string value
_ENUM_FIELDS = {
    ("KeyValue", "kind"): ValueKind,
    ("Column", "default_kind"): ValueKind,
    ("Relationship", "kind"): RelationshipKind,
}

_KIND_SYMBOLS = {kind: symbol for symbol, kind in SYMBOL_KINDS.items()}


def _to_json_value(v: Any) -> Any:
    """
    Recursively convert AST values (Document, Table, Column, ..., lists,
    dicts, primitives) into JSON-serializable structures with type tags.
    """
    if dataclasses.is_dataclass(v) and not isinstance(v, type):
        data: Dict[str, Any] = {"__type__": v.__class__.__name__}
        for f in dataclasses.fields(v):
            data[f.name] = _to_json_value(getattr(v, f.name))
        return data

    if isinstance(v, Enum):
        return v.value

    if isinstance(v, list):
        return [_to_json_value(x) for x in v]

    if isinstance(v, dict):
        return {k: _to_json_value(val) for k, val in v.items()}

    # simple types: str, int, bool, None
    return v


def _from_json_value(v: Any) -> Any:
    """
    Recursively reconstruct AST values from JSON-serializable structures.
    """
    if isinstance(v, list):
        return [_from_json_value(x) for x in v]

    if not isinstance(v, dict):
        return v

    t = v.get("__type__")
    cls = _TYPES.get(t) if t else None
    if cls is None:
        # plain mapping (settings)
        return {k: _from_json_value(val) for k, val in v.items()}

    kwargs: Dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name not in v:
            continue
        value = _from_json_value(v[f.name])
        enum_cls = _ENUM_FIELDS.get((t, f.name))
        if enum_cls is not None and value is not None:
            value = enum_cls(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def document_to_json_dict(doc: Document) -> dict:
    """
    Convert a Document into a JSON-serializable dict.
    """
    return _to_json_value(doc)


def document_from_json_dict(data: dict) -> Document:
    """
    Convert a JSON dict (previously produced by document_to_json_dict) back into a Document.
    """
    if not isinstance(data, dict):
        raise ValueError("document_from_json_dict expects a dict")
    if data.get("__type__", "Document") != "Document":
        raise ValueError(f"Expected a Document, got {data.get('__type__')!r}")
    return _from_json_value({**data, "__type__": "Document"})


# -----------------------------
# SIMPLE JSON conversion: no __type__, empty fields dropped, entities keyed by name.
# Good for human viewing, but in contrast to the full JSON form it cannot be
# converted back to a Document.

def _qualified(schema: Optional[str], name: str, default_schema: str = "public") -> str:
    if schema and schema != default_schema:
        return f"{schema}.{name}"
    return name


def _drop_empty(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v not in (None, "", [], {}, False)}


def _column_to_simple(c: Column) -> Any:
    out = _drop_empty({
        "type": c.type,
        "pk": c.is_primary_key,
        "not_null": c.is_not_null,
        "null": c.is_nullable,
        "unique": c.is_unique,
        "increment": c.is_increment,
        "default": c.default,
        "note": c.note,
    })
    if c.inline_ref is not None:
        out["ref"] = f"{_KIND_SYMBOLS[c.inline_ref.kind]} " + _endpoint_text(
            c.inline_ref.right_schema, c.inline_ref.right_table, c.inline_ref.right_columns)
    # only a type: collapse to the raw type string
    if set(out.keys()) == {"type"}:
        return c.type
    return out


def _index_to_simple(i: Index) -> Any:
    names = [f"`{c.name}`" if c.is_expression else c.name for c in i.columns]
    out = _drop_empty({
        "columns": names,
        "pk": i.is_primary_key,
        "unique": i.is_unique,
        "settings": i.settings,
    })
    if set(out.keys()) == {"columns"} and len(names) == 1:
        return names[0]
    return out


def _endpoint_text(schema: Optional[str], table: str, columns: List[str]) -> str:
    prefix = f"{schema}.{table}" if schema else table
    if len(columns) == 1:
        return f"{prefix}.{columns[0]}"
    return f"{prefix}.({', '.join(columns)})"


def _relationship_to_simple(r: Relationship) -> Any:
    definition = " ".join([
        _endpoint_text(r.left_schema, r.left_table, r.left_columns),
        _KIND_SYMBOLS[r.kind],
        _endpoint_text(r.right_schema, r.right_table, r.right_columns),
    ])
    return _drop_empty({"def": definition, "name": r.name, "kind": r.kind.value, "settings": r.settings})


def _table_body_to_simple(columns: List[Column], indexes: List[Index], **extra: Any) -> Dict[str, Any]:
    out = _drop_empty(extra)
    out["columns"] = {c.name: _column_to_simple(c) for c in columns}
    if indexes:
        out["indexes"] = [_index_to_simple(i) for i in indexes]
    return out


def _enum_value_to_simple(v: EnumValue) -> Any:
    settings = {k: val for k, val in v.settings.items() if k.lower() != "note"}
    if v.note is None and not settings:
        return v.value
    return _drop_empty({"value": v.value, "note": v.note, "settings": settings})


def document_to_simple_json_dict(doc: Document) -> dict:
    """
    Public entry-point: convert a Document into simplified JSON,
    good for human scrolling (not convertible back to a Document).
    """
    out: Dict[str, Any] = {}
    if doc.project is not None:
        out["project"] = _drop_empty({
            "name": doc.project.name,
            "database_type": doc.project.database_type,
            "note": doc.project.note,
            "settings": {k: v for k, v in doc.project.settings.items() if k.lower() != "database_type"},
        })

    out["tables"] = {
        _qualified(t.schema, t.name): _table_body_to_simple(
            t.columns, t.indexes,
            alias=t.alias, note=t.note, settings=t.settings, partials=t.injected_partials,
        )
        for t in doc.tables
    }
    if doc.enums:
        out["enums"] = {
            _qualified(e.schema, e.name): [_enum_value_to_simple(v) for v in e.values]
            for e in doc.enums
        }
    if doc.relationships:
        out["relationships"] = [_relationship_to_simple(r) for r in doc.relationships]
    if doc.table_groups:
        out["table_groups"] = {
            g.name: _drop_empty({"tables": g.tables, "note": g.note, "settings": g.settings})
            for g in doc.table_groups
        }
    if doc.table_partials:
        out["table_partials"] = {
            p.name: _table_body_to_simple(p.columns, p.indexes, note=p.note, settings=p.settings)
            for p in doc.table_partials
        }
    if doc.sticky_notes:
        out["notes"] = {n.name: n.content for n in doc.sticky_notes}
    if doc.diagnostics:
        out["diagnostics"] = [f"line {d.line}: {d.source}: {d.message}" for d in doc.diagnostics]
    return out
