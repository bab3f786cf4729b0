# DBML scanner: comment stripping, balanced-delimiter matching, block discovery

from __future__ import annotations

import re
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

QUOTES = "'\"`"
_CLOSERS = {"}": "{", "]": "[", ")": "("}

# one identifier: bare word or a quoted name (quotes stripped later)
_ID = r"(?:\"[^\"\n]*\"|'[^'\n]*'|`[^`\n]*`|\w+)"


def _compile(pattern: str, flags: int = 0) -> re.Pattern:
    return re.compile(pattern.replace("ID", _ID), flags)


@dataclass(frozen=True)
class Grammar:
    """
    Every pattern the parser needs, compiled once.

    Patterns are only ever applied to short, already-delimited strings
    (a block header, one logical line). Block bodies and bracket groups
    are found by depth counting, never by a pattern.
    """

    keyword: re.Pattern = field(default_factory=lambda: re.compile(
        r"(TablePartial|TableGroup|Table|Project|enum|Note|Ref)\b", re.IGNORECASE))
    # Table [schema.]name [as alias] [settings]
    table_header: re.Pattern = field(default_factory=lambda: _compile(
        r"^\s*(?:(?P<schema>ID)\s*\.\s*)?(?P<name>ID)(?:\s+as\s+(?P<alias>ID))?\s*(?P<settings>\[.*\])?\s*$",
        re.IGNORECASE | re.DOTALL))
    # enum [schema.]name
    qualified_header: re.Pattern = field(default_factory=lambda: _compile(
        r"^\s*(?:(?P<schema>ID)\s*\.\s*)?(?P<name>ID)\s*(?P<settings>\[.*\])?\s*$", re.DOTALL))
    # TablePartial / TableGroup / Note: name [settings]
    named_header: re.Pattern = field(default_factory=lambda: _compile(
        r"^\s*(?P<name>ID)\s*(?P<settings>\[.*\])?\s*$", re.DOTALL))
    # Project and Ref: the name is optional
    optional_name_header: re.Pattern = field(default_factory=lambda: _compile(
        r"^\s*(?P<name>ID)?\s*(?P<settings>\[.*\])?\s*$", re.DOTALL))
    note_line: re.Pattern = field(default_factory=lambda: re.compile(
        r"^note\s*:(?P<value>.*)$", re.IGNORECASE | re.DOTALL))
    partial_injection: re.Pattern = field(default_factory=lambda: _compile(r"^~\s*(?P<name>ID)\s*$"))
    leading_name: re.Pattern = field(default_factory=lambda: _compile(r"^(?P<name>ID)"))
    key_value: re.Pattern = field(default_factory=lambda: re.compile(
        r"^(?P<key>[A-Za-z_]\w*(?:[ \t]+[A-Za-z_]\w*)*)\s*:(?P<value>.*)$", re.DOTALL))
    member_name: re.Pattern = field(default_factory=lambda: _compile(r"^ID(?:\s*\.\s*ID)?$"))


GRAMMAR = Grammar()

_CANONICAL_KEYWORDS = {
    "tablepartial": "TablePartial",
    "tablegroup": "TableGroup",
    "table": "Table",
    "project": "Project",
    "enum": "enum",
    "note": "Note",
    "ref": "Ref",
}


# -----------------------------
# Low-level helpers

def skip_quoted(text: str, i: int) -> int:
    """
    Return the index just past the quoted string starting at text[i].

    '''...''' may span lines. Single-line quotes ('...', "...", `...`)
    stop at the end of their line when unterminated, so one stray quote
    cannot swallow the rest of the document.
    """
    n = len(text)
    if text.startswith("'''", i):
        end = text.find("'''", i + 3)
        return n if end == -1 else end + 3

    quote = text[i]
    j = i + 1
    while j < n:
        ch = text[j]
        if ch == "\\" and quote != "`":
            j += 2
            continue
        if ch == quote:
            return j + 1
        if ch == "\n":
            return j
        j += 1
    return n


def find_matching(text: str, open_pos: int, open_ch: str = "{", close_ch: str = "}") -> int:
    """Index of the delimiter closing text[open_pos], or -1 if it is never closed."""
    depth = 0
    i = open_pos
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            i = skip_quoted(text, i)
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split on `sep` outside quotes, parentheses and brackets."""
    parts: List[str] = []
    depth = 0
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            i = skip_quoted(text, i)
            continue
        if ch in "([":
            depth += 1
        elif ch in ")]" and depth > 0:
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return parts


def split_bracket_groups(text: str) -> Tuple[List[str], str]:
    """
    Read consecutive `[...]` groups from the start of `text`.

    Returns the inner text of each group and whatever trails the last one.
    """
    groups: List[str] = []
    i = 0
    n = len(text)
    while True:
        while i < n and text[i].isspace():
            i += 1
        if i >= n or text[i] != "[":
            break
        close = find_matching(text, i, "[", "]")
        if close == -1:
            break
        groups.append(text[i + 1:close])
        i = close + 1
    return groups, text[i:].strip()


def clean_quotes(value: str) -> str:
    if not value:
        return value
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in QUOTES:
        return value[1:-1]
    return value


def clean_string(value: str) -> str:
    """Unwrap a '''triple''' or single-quoted value; triple content is trimmed."""
    if not value:
        return value
    value = value.strip()
    if len(value) >= 6 and value.startswith("'''") and value.endswith("'''"):
        return value[3:-3].strip()
    return clean_quotes(value)


class BracketIndex:
    """
    Matching `{}`, `[]` and `()` pairs and line starts of one text, found in
    a single quote-aware pass.

    Each delimiter kind keeps its own stack, so a pair is exactly what
    `find_matching` would return from the opener, but every later lookup
    is O(1). An opener that is never closed has no entry.
    """

    def __init__(self, text: str):
        self.pairs: Dict[int, int] = {}
        self.newlines = [i for i, ch in enumerate(text) if ch == "\n"]
        stacks: Dict[str, List[int]] = {"{": [], "[": [], "(": []}
        i = 0
        n = len(text)
        while i < n:
            ch = text[i]
            if ch in QUOTES:
                i = skip_quoted(text, i)
                continue
            if ch in stacks:
                stacks[ch].append(i)
            elif ch in _CLOSERS and stacks[_CLOSERS[ch]]:
                self.pairs[stacks[_CLOSERS[ch]].pop()] = i
            i += 1

    def close_of(self, pos: int) -> int:
        return self.pairs.get(pos, -1)

    def line_at(self, pos: int, base_line: int = 1) -> int:
        return base_line + bisect_left(self.newlines, pos)


# -----------------------------
# Preprocessor

def strip_comments(text: str) -> str:
    """
    Blank out // and /* */ comments.

    Every removed character becomes a space (newlines are kept), so line
    and column positions of the remaining text do not move. Comment markers
    inside quoted strings are left alone.
    """
    out: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            j = skip_quoted(text, i)
            out.append(text[i:j])
            i = j
            continue
        if ch == "/" and text.startswith("//", i):
            end = text.find("\n", i)
            if end == -1:
                end = n
            out.append(" " * (end - i))
            i = end
            continue
        if ch == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append("".join("\n" if c == "\n" else " " for c in text[i:end]))
            i = end
            continue
        out.append(ch)
        i += 1
    return "".join(out)


# -----------------------------
# Block bodies

@dataclass
class BodyItem:
    text: str                    # the stripped line, or the header of a sub-block
    line: int
    body: Optional[str] = None   # set for `header { ... }` sub-blocks
    body_line: int = 0


def _read_logical_line(text: str, i: int, index: BracketIndex) -> Tuple[int, int]:
    """
    Scan one logical line starting at i.

    Returns (end, brace): `end` is where the line stops (a newline or end of
    text); `brace` is the position of a top-level '{' opening a sub-block,
    or -1. Newlines inside quotes and inside closed brackets/parentheses
    continue the line; an opener that is never closed is plain text.
    """
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            i = skip_quoted(text, i)
            continue
        if ch in "[(":
            close = index.close_of(i)
            if close != -1:
                i = close + 1
                continue
        elif ch == "{":
            return i, i
        elif ch == "\n":
            return i, -1
        i += 1
    return n, -1


def iter_body_items(body: str, base_line: int = 1) -> Iterator[BodyItem]:
    """Yield the logical lines and nested sub-blocks of a block body."""
    index = BracketIndex(body)
    i = 0
    n = len(body)
    while i < n:
        while i < n and body[i].isspace():
            i += 1
        if i >= n:
            break

        end, brace = _read_logical_line(body, i, index)
        line = index.line_at(i, base_line)
        if brace == -1:
            yield BodyItem(text=body[i:end].strip(), line=line)
            i = end
            continue

        close = index.close_of(brace)
        if close == -1:
            # unterminated sub-block: hand back the rest as one (malformed) line
            yield BodyItem(text=body[i:].strip(), line=line)
            return
        yield BodyItem(
            text=body[i:brace].strip(),
            line=line,
            body=body[brace + 1:close],
            body_line=index.line_at(brace, base_line),
        )
        i = close + 1


# -----------------------------
# Top-level blocks

@dataclass
class RawBlock:
    keyword: str                     # canonical: "Table", "Ref", "enum", ...
    line: int
    name: Optional[str] = None
    schema: Optional[str] = None
    alias: Optional[str] = None
    settings: str = ""               # raw "[...]" text of the header
    body: Optional[str] = None       # None for the short `Ref: ...` form
    body_line: int = 0
    statement: str = ""              # short Ref text after ':'


SkipCallback = Callable[[int, str, str], None]


def _header_pattern(keyword: str, grammar: Grammar) -> re.Pattern:
    if keyword == "Table":
        return grammar.table_header
    if keyword == "enum":
        return grammar.qualified_header
    if keyword in ("Project", "Ref"):
        return grammar.optional_name_header
    return grammar.named_header


def _group(m: re.Match, name: str) -> Optional[str]:
    try:
        value = m.group(name)
    except IndexError:
        return None
    return clean_quotes(value) if value else None


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _resume_at(text: str, start: int, end: int, grammar: Grammar) -> int:
    """Start of the last keyword in text[start:end], else `end`."""
    resume = end
    for m in grammar.keyword.finditer(text, start, end):
        if not _is_word_char(text[m.start() - 1]):
            resume = m.start()
    return resume


def _read_block(text: str, start: int, keyword: str, grammar: Grammar, index: BracketIndex,
                on_skip: Optional[SkipCallback]) -> Tuple[Optional[RawBlock], int]:
    """
    Read one declaration whose keyword ends at `start`. Returns (block, resume_at).

    The header ends at its line: a body may open on a later line only when
    nothing but whitespace comes before the '{'. Bracketed settings are
    skipped as one unit and may span lines.
    """
    n = len(text)
    line = index.line_at(start)
    j = start
    stop = -1
    short_ref = False
    while j < n:
        ch = text[j]
        if ch in QUOTES:
            j = skip_quoted(text, j)
            continue
        if ch == "[" and index.close_of(j) != -1:
            j = index.close_of(j) + 1
            continue
        if ch == "{":
            stop = j
            break
        if ch == ":" and keyword == "Ref":
            stop = j
            short_ref = True
            break
        if ch == "}":
            break
        if ch == "\n":
            k = j
            while k < n and text[k].isspace():
                k += 1
            if k < n and text[k] == "{":
                stop = k
            break
        j += 1

    def skip(message: str, resume: int) -> Tuple[None, int]:
        if on_skip is not None:
            on_skip(line, "block", f"{keyword}: {message}")
        return None, resume

    if stop == -1:
        return skip("no body found", _resume_at(text, start, j, grammar))

    m = _header_pattern(keyword, grammar).match(text[start:stop])
    if not m:
        return skip(f"malformed header {text[start:stop].strip()!r}",
                    _resume_at(text, start, stop, grammar))

    block = RawBlock(
        keyword=keyword,
        line=line,
        name=_group(m, "name"),
        schema=_group(m, "schema"),
        alias=_group(m, "alias"),
        settings=m.group("settings") or "",
    )

    if short_ref:
        end, _ = _read_logical_line(text, stop + 1, index)
        block.statement = text[stop + 1:end].strip()
        return block, end

    close = index.close_of(stop)
    if close == -1:
        return skip("unterminated block", stop)
    block.body = text[stop + 1:close]
    block.body_line = index.line_at(stop)
    return block, close + 1


def scan_blocks(text: str, grammar: Grammar = GRAMMAR,
                on_skip: Optional[SkipCallback] = None) -> List[RawBlock]:
    """
    Find every top-level declaration in comment-free text, in source order.

    Only brace depth 0 is searched, so keywords inside bodies (a `Note:`
    line in a table, a column called `ref`) never start a declaration.
    """
    index = BracketIndex(text)
    blocks: List[RawBlock] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in QUOTES:
            i = skip_quoted(text, i)
            continue
        if ch == "{":
            # stray body with no recognizable header
            close = index.close_of(i)
            i = close + 1 if close != -1 else i + 1
            continue
        if _is_word_char(ch):
            if i == 0 or not _is_word_char(text[i - 1]):
                m = grammar.keyword.match(text, i)
                if m:
                    keyword = _CANONICAL_KEYWORDS[m.group(1).lower()]
                    block, resume = _read_block(text, m.end(), keyword, grammar, index, on_skip)
                    if block is not None:
                        blocks.append(block)
                    i = resume
                    continue
            while i < n and _is_word_char(text[i]):
                i += 1
            continue
        i += 1
    return blocks
