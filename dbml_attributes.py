# Attribute lists: `[pk, not null, default: `now()`, note: 'x']`

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from dbml_ast import AttrItem, Flag, KeyValue, ValueKind
from dbml_scanner import GRAMMAR, Grammar, skip_quoted, split_bracket_groups, split_top_level

PRIMARY_KEY_FLAGS = frozenset({"pk", "primary key"})


def normalize_flag(text: str) -> str:
    return " ".join(text.lower().split())


def parse_value(raw: str) -> KeyValue:
    """
    Classify one value, in priority order:
      '''multi-line'''  -> TRIPLE (inner text trimmed)
      `expression`      -> EXPRESSION (kept verbatim)
      'text' / "text"   -> STRING (unwrapped)
      anything else     -> BARE (trimmed)
    Text trailing a closed quote is ignored.
    """
    v = raw.strip()
    if v.startswith("'''"):
        end = v.find("'''", 3)
        inner = v[3:] if end == -1 else v[3:end]
        return KeyValue(key="", value=inner.strip(), kind=ValueKind.TRIPLE)
    if v.startswith("`"):
        end = v.find("`", 1)
        inner = v[1:] if end == -1 else v[1:end]
        return KeyValue(key="", value=inner, kind=ValueKind.EXPRESSION)
    if v[:1] in ("'", '"'):
        quote = v[0]
        end = skip_quoted(v, 0)
        inner = v[1:end - 1] if end > 1 and v[end - 1] == quote else v[1:end]
        return KeyValue(key="", value=inner.replace("\\" + quote, quote), kind=ValueKind.STRING)
    return KeyValue(key="", value=v, kind=ValueKind.BARE)


def parse_attribute_items(text: str, grammar: Grammar = GRAMMAR) -> List[AttrItem]:
    """Parse comma-separated items without the surrounding brackets."""
    items: List[AttrItem] = []
    for part in split_top_level(text, ","):
        part = part.strip()
        if not part:
            continue
        m = grammar.key_value.match(part)
        if m:
            kv = parse_value(m.group("value"))
            kv.key = " ".join(m.group("key").split())
            items.append(kv)
        else:
            items.append(Flag(name=normalize_flag(part)))
    return items


def parse_attribute_list(text: str, grammar: Grammar = GRAMMAR) -> List[AttrItem]:
    """
    Parse one or more consecutive bracket groups: `[pk] [ref: > users.id]`.

    Groups are concatenated in source order, so later keys override
    earlier ones once turned into settings.
    """
    groups, _ = split_bracket_groups(text)
    items: List[AttrItem] = []
    for inner in groups:
        items.extend(parse_attribute_items(inner, grammar))
    return items


def set_setting(settings: Dict[str, str], key: str, value: str) -> None:
    """Store key, replacing any earlier key that differs from it only in case."""
    for existing in [k for k in settings if k.lower() == key.lower()]:
        del settings[existing]
    settings[key] = value


def settings_of(items: Iterable[AttrItem]) -> Dict[str, str]:
    """
    Key/value items as a mapping. Keys keep their spelling; a later key
    replaces an earlier one that differs only in case.
    """
    settings: Dict[str, str] = {}
    for item in items:
        if isinstance(item, KeyValue):
            set_setting(settings, item.key, item.value)
    return settings


def last_value(items: Iterable[AttrItem], key: str) -> Optional[KeyValue]:
    found = None
    for item in items:
        if isinstance(item, KeyValue) and item.key.lower() == key:
            found = item
    return found


def has_flag(items: Iterable[AttrItem], *names: str) -> bool:
    return any(isinstance(item, Flag) and item.name in names for item in items)


def derive_column_flags(items: Iterable[AttrItem]) -> Dict[str, bool]:
    flags = {
        "is_primary_key": False,
        "is_nullable": False,
        "is_not_null": False,
        "is_unique": False,
        "is_increment": False,
    }
    for item in items:
        if not isinstance(item, Flag):
            continue
        name = item.name
        if name in PRIMARY_KEY_FLAGS:
            flags["is_primary_key"] = True
        elif name == "null":
            flags["is_nullable"] = True
            flags["is_not_null"] = False
        elif name == "not null":
            flags["is_not_null"] = True
            flags["is_nullable"] = False
        elif name == "unique":
            flags["is_unique"] = True
        elif name == "increment":
            flags["is_increment"] = True

    # a primary key is never nullable, whatever order the flags came in
    if flags["is_primary_key"]:
        flags["is_not_null"] = True
        flags["is_nullable"] = False
    return flags


def derive_index_flags(items: Iterable[AttrItem]) -> Dict[str, bool]:
    items = list(items)
    return {
        "is_primary_key": has_flag(items, *PRIMARY_KEY_FLAGS),
        "is_unique": has_flag(items, "unique"),
    }
