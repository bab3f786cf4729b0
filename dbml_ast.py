# AST structures for the DBML schema language

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union


class ValueKind(Enum):
    TRIPLE = "triple"          # '''multi-line'''
    EXPRESSION = "expression"  # `now()`
    STRING = "string"          # 'text' or "text"
    BARE = "bare"              # 10, cascade, > users.id


class RelationshipKind(Enum):
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_ONE = "one-to-one"
    MANY_TO_MANY = "many-to-many"


@dataclass
class Flag:
    name: str  # lower case, whitespace collapsed: "not null", "pk"


@dataclass
class KeyValue:
    key: str  # as written, whitespace collapsed
    value: str
    kind: ValueKind = ValueKind.BARE


AttrItem = Union[Flag, KeyValue]


def get_setting(settings: Dict[str, str], key: str) -> Optional[str]:
    """Look up a known key whatever its spelling: `note`, `Note` and `NOTE` are one key."""
    key = key.lower()
    for name, value in settings.items():
        if name.lower() == key:
            return value
    return None


@dataclass
class Diagnostic:
    line: int
    source: str   # "block", "column", "index", "enum", "ref", "partial", ...
    message: str


@dataclass
class Relationship:
    left_table: str
    right_table: str
    left_columns: List[str] = field(default_factory=list)
    right_columns: List[str] = field(default_factory=list)
    kind: RelationshipKind = RelationshipKind.ONE_TO_MANY
    name: Optional[str] = None
    left_schema: Optional[str] = None   # None: not qualified in the source
    right_schema: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)


@dataclass
class Column:
    name: str
    type: str
    default: Optional[str] = None
    default_kind: Optional[ValueKind] = None
    note: Optional[str] = None
    is_primary_key: bool = False
    is_nullable: bool = False
    is_not_null: bool = False
    is_unique: bool = False
    is_increment: bool = False
    # left side is empty until the owning table is known
    inline_ref: Optional[Relationship] = None
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)


@dataclass
class IndexColumn:
    name: str
    is_expression: bool = False  # backtick expression, e.g. `id*2`


@dataclass
class Index:
    columns: List[IndexColumn] = field(default_factory=list)
    is_primary_key: bool = False
    is_unique: bool = False
    is_expression: bool = False
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1

    @property
    def name(self) -> Optional[str]:
        return get_setting(self.settings, "name")

    @property
    def type(self) -> Optional[str]:
        return get_setting(self.settings, "type")

    @property
    def note(self) -> Optional[str]:
        return get_setting(self.settings, "note")


@dataclass
class TablePartial:
    name: str
    columns: List[Column] = field(default_factory=list)
    indexes: List[Index] = field(default_factory=list)
    note: Optional[str] = None
    injected_partials: List[str] = field(default_factory=list)
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)


@dataclass
class Table:
    name: str
    schema: str = "public"
    alias: Optional[str] = None
    columns: List[Column] = field(default_factory=list)
    indexes: List[Index] = field(default_factory=list)
    note: Optional[str] = None
    injected_partials: List[str] = field(default_factory=list)
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def get_column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None


@dataclass
class EnumValue:
    value: str
    note: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)


@dataclass
class EnumDef:
    name: str
    schema: str = "public"
    values: List[EnumValue] = field(default_factory=list)


@dataclass
class TableGroup:
    name: str
    tables: List[str] = field(default_factory=list)  # "users" or "core.users"
    note: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)


@dataclass
class StickyNote:
    name: str
    content: str = ""


@dataclass
class Project:
    name: str
    note: Optional[str] = None
    settings: Dict[str, str] = field(default_factory=dict)
    attributes: List[AttrItem] = field(default_factory=list)

    @property
    def database_type(self) -> Optional[str]:
        return get_setting(self.settings, "database_type")


@dataclass
class Document:
    project: Optional[Project] = None
    tables: List[Table] = field(default_factory=list)
    enums: List[EnumDef] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    table_groups: List[TableGroup] = field(default_factory=list)
    table_partials: List[TablePartial] = field(default_factory=list)
    sticky_notes: List[StickyNote] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def get_table(self, name: str, schema: Optional[str] = None) -> Optional[Table]:
        for table in self.tables:
            if table.name == name and (schema is None or table.schema == schema):
                return table
        return None
