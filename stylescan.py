#!/usr/bin/env python3
"""
Stylescan - House Style Conformance Scanner for C and Java

High-level goals:
- Load one C/Java source file into a rewindable buffer
- Run six lexical passes over the same buffer, each with its own ordered
  rule list (indentation, brace length, line length, magic numbers,
  naming/whitespace, control flow)
- Report Sure diagnostics (errors) and Unsure diagnostics (warnings)

There is no grammar-level parsing here. Every rule is a regular expression
tried at the current scan position, optionally gated by a predicate, and the
heuristics are deliberately line-scoped.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union
import argparse
import bisect
from collections import deque
import enum
import json
import os
import re
import sys

import yaml


TOOL_NAME = "stylescan"
TOOL_VERSION = "0.1.0"


def _notice(message: str) -> None:
    sys.stderr.write(f"[{TOOL_NAME}] {message}\n")


def _discard_progress(message: str) -> None:
    return None


# ============================================================
# ====================== CONFIGURATION =======================
# ============================================================

DEFAULT_ALLOWED_LITERALS = ("0", "1", "0.0", "1.0")


@dataclass
class StyleConfig:
    """
    Tunable thresholds of the house style. Every field can be overridden
    from a YAML mapping with the same key names.
    """
    indent_width: int = 3
    line_limit: int = 132            # characters per physical line
    brace_length_limit: int = 12     # interior lines before a brace needs an echo comment
    allowed_literals: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_LITERALS))
    disabled_rules: List[str] = field(default_factory=list)
    color: bool = True


_INT_CONFIG_KEYS = ("indent_width", "line_limit", "brace_length_limit")
_LIST_CONFIG_KEYS = ("allowed_literals", "disabled_rules")
_BOOL_CONFIG_KEYS = ("color",)


def load_config_from_yaml(path: str) -> StyleConfig:
    """
    Build a StyleConfig from a YAML file.

    Problems with the file are reported on stderr and never abort the scan;
    the affected keys (or the whole file) fall back to the defaults.
    """
    config = StyleConfig()

    def _to_str_list(value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return [str(value)]

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError:
        _notice(f"Config file not found: {path}")
        return config
    except OSError as exc:
        _notice(f"Could not read config file {path}: {exc}")
        return config
    except yaml.YAMLError as exc:
        _notice(f"Could not parse config file {path}: {exc}")
        return config

    if data is None:
        return config
    if not isinstance(data, dict):
        _notice(f"Ignoring config file {path}: expected a mapping at the top level.")
        return config

    for key, value in data.items():
        if key in _INT_CONFIG_KEYS:
            try:
                number = int(value)
            except (TypeError, ValueError):
                _notice(f"Ignoring config key '{key}' in {path}: {value!r} is not an integer.")
                continue
            if number <= 0:
                _notice(f"Ignoring config key '{key}' in {path}: value must be positive.")
                continue
            setattr(config, key, number)
        elif key in _LIST_CONFIG_KEYS:
            setattr(config, key, _to_str_list(value))
        elif key in _BOOL_CONFIG_KEYS:
            setattr(config, key, bool(value))
        else:
            _notice(f"Ignoring unknown config key '{key}' in {path}.")

    return config


def resolve_config(path: Optional[str] = None) -> StyleConfig:
    """
    Pick the configuration source: explicit path, then the STYLESCAN_CONFIG
    environment variable, then built-in defaults.
    """
    chosen = path or os.environ.get("STYLESCAN_CONFIG")
    if not chosen:
        return StyleConfig()
    return load_config_from_yaml(chosen)


# ============================================================
# ====================== SOURCE BUFFER =======================
# ============================================================

class SourceBufferError(Exception):
    """Raised when the source buffer can no longer be re-read from the start."""


class SourceBuffer:
    """
    Full source text plus a scan position.

    Line endings are normalized to "\\n" on load so every pattern can rely on
    MULTILINE anchors. Lines are 1-based, columns 0-based.
    """

    def __init__(self, text: str, name: str = "<input>") -> None:
        self.name = name
        self.text = text.replace("\r\n", "\n").replace("\r", "\n")
        self.pos = 0
        self.closed = False
        self._line_starts = [0] + [m.end() for m in re.finditer(r"\n", self.text)]

    @classmethod
    def from_file(cls, path: str) -> "SourceBuffer":
        with open(path, "r", encoding="utf-8", errors="replace") as handle:
            return cls(handle.read(), name=path)

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def match(self, pattern: re.Pattern[str]) -> Optional[re.Match[str]]:
        return pattern.match(self.text, self.pos)

    def seek(self, pos: int) -> None:
        self.pos = min(max(pos, 0), len(self.text))

    def skip_one(self) -> None:
        self.seek(self.pos + 1)

    def rewind(self) -> None:
        if self.closed:
            raise SourceBufferError(f"cannot rewind closed buffer {self.name}")
        self.pos = 0

    def close(self) -> None:
        self.closed = True

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def line_of(self, pos: int) -> int:
        return bisect.bisect_right(self._line_starts, pos)

    def column_of(self, pos: int) -> int:
        return pos - self._line_starts[self.line_of(pos) - 1]

    def line_text(self, line: int) -> str:
        if line < 1 or line > self.line_count:
            return ""
        start = self._line_starts[line - 1]
        end = self.text.find("\n", start)
        return self.text[start:] if end == -1 else self.text[start:end]

    def previous_nonblank_line(self, line: int) -> Optional[int]:
        candidate = line - 1
        while candidate >= 1:
            if self.line_text(candidate).strip():
                return candidate
            candidate -= 1
        return None


# ============================================================
# ================ LEXICAL HELPERS (C / JAVA) ================
# ============================================================

def _skip_literal(text: str, start: int) -> int:
    """Index just past the string/char literal opening at `start` (stops at end of line)."""
    quote = text[start]
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n":
            return i
        i += 1
    return n


def code_positions(text: str, start: int = 0, keep_literals: bool = False) -> Iterator[Tuple[int, str]]:
    """
    Yield (index, char) for every character outside comments. String and
    character literals are skipped unless `keep_literals` is set.
    """
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "/" and text.startswith("//", i):
            newline = text.find("\n", i)
            if newline == -1:
                return
            i = newline
            continue
        if ch == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                return
            i = end + 2
            continue
        if ch in "\"'":
            end = _skip_literal(text, i)
            if keep_literals:
                for j in range(i, end):
                    yield j, text[j]
            i = end
            continue
        yield i, ch
        i += 1


def code_portion(line: str) -> str:
    """The line with comments removed and trailing whitespace stripped."""
    return "".join(ch for _, ch in code_positions(line, keep_literals=True)).rstrip()


def find_matching_brace(text: str, open_index: int, opener: str = "{", closer: str = "}") -> Optional[int]:
    depth = 0
    for index, ch in code_positions(text, open_index):
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def collapse_ws(text: str) -> str:
    return " ".join(text.split())


def unclosed_comment_column(line: str) -> Optional[int]:
    """Column of a `/*` that is still open at the end of `line`, if any."""
    i = 0
    n = len(line)
    while i < n:
        if line.startswith("//", i):
            return None
        if line.startswith("/*", i):
            end = line.find("*/", i + 2)
            if end == -1:
                return i
            i = end + 2
            continue
        if line[i] in "\"'":
            i = _skip_literal(line, i)
            continue
        i += 1
    return None


def preceded_by_block_comment(buffer: SourceBuffer, line: int) -> bool:
    # Java annotations may sit between the comment and the header
    above = line - 1
    while above >= 1 and buffer.line_text(above).strip().startswith("@"):
        above -= 1
    return buffer.line_text(above).strip().endswith("*/")


# ============================================================
# ======================= DIAGNOSTICS ========================
# ============================================================

class Certainty(enum.Enum):
    SURE = "sure"        # deterministic rule violation
    UNSURE = "unsure"    # heuristic guess, may be a false positive


@dataclass(frozen=True)
class Diagnostic:
    message: str
    line: int
    certainty: Certainty
    rule_id: str = ""

    @property
    def sure(self) -> bool:
        return self.certainty is Certainty.SURE

    def __str__(self) -> str:
        return f"[line {self.line}] {self.message}"


class EndOfInput:
    """Sentinel returned by PassEngine.next() once every pass has finished."""

    def __repr__(self) -> str:
        return "END_OF_INPUT"


END_OF_INPUT = EndOfInput()


class ScanState(enum.Enum):
    INIT = 0
    INDENT_PASS = 1
    BRACE_LENGTH_PASS = 2
    LINE_LENGTH_PASS = 3
    MAGIC_NUMBER_PASS = 4
    NAMING_PASS = 5
    CONTROL_FLOW_PASS = 6


ReportResult = Union[None, Diagnostic, List[Diagnostic]]


@dataclass
class ScanRule:
    """
    One entry of a pass's ordered rule list.

    - pattern: matched at the current buffer position; the buffer advances
      to the end of the match, so trailing context belongs in a lookahead
    - predicate: optional veto; a rejected match counts as no match
    - report: turns the accepted match into zero or more diagnostics
    """
    rule_id: str
    pattern: re.Pattern[str]
    report: Optional[Callable[[re.Match[str]], ReportResult]] = None
    predicate: Optional[Callable[[re.Match[str]], bool]] = None


# Shared skip patterns. Passes that must not look inside comments or literals
# list these ahead of their own rules.
BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)
LINE_COMMENT = re.compile(r"//[^\n]*")
STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\\n])*"')
CHAR_LITERAL = re.compile(r"'(?:\\.|[^'\\\n])*'")

# Parenthesized group with up to three levels of nesting, kept on one line.
PAREN_GROUP = r"\((?:[^()\n]|\((?:[^()\n]|\([^()\n]*\))*\))*\)"
NOT_AFTER_IDENT = r"(?<![\w.$])"


def _skip_rules() -> List[ScanRule]:
    return [
        ScanRule("SKIP-BLOCK-COMMENT", BLOCK_COMMENT),
        ScanRule("SKIP-LINE-COMMENT", LINE_COMMENT),
        ScanRule("SKIP-STRING", STRING_LITERAL),
        ScanRule("SKIP-CHAR", CHAR_LITERAL),
    ]


class ScanPass:
    """
    Base class for one full left-to-right scan. A fresh instance (and so a
    fresh context) is created every time the engine enters the pass.
    """
    state: ScanState = ScanState.INIT
    title: str = ""

    def __init__(self, engine: "PassEngine") -> None:
        self.engine = engine
        self.buffer = engine.buffer
        self.config = engine.config
        self.rules: List[ScanRule] = self.build_rules()

    def build_rules(self) -> List[ScanRule]:
        raise NotImplementedError

    def finish(self) -> ReportResult:
        return None

    def diagnostic(self, rule_id: str, message: str, line: int, certainty: Certainty = Certainty.SURE) -> Diagnostic:
        return Diagnostic(message=message, line=max(line, 1), certainty=certainty, rule_id=rule_id)

    def line_of(self, match: re.Match[str], group: Union[int, str] = 0) -> int:
        return self.buffer.line_of(match.start(group))


# ============================================================
# ============ PASS 1: INDENTATION & BLOCK COMMENTS ==========
# ============================================================

@dataclass
class IndentContext:
    depth: int = 0
    last_complete: bool = True
    colon_column: Optional[int] = None      # tolerated column opened by a line ending in ':'
    labels: List[int] = field(default_factory=list)   # depths whose label body is still open


class IndentationPass(ScanPass):
    state = ScanState.INDENT_PASS
    title = "indentation and block comments"

    MULTILINE_BLOCK_COMMENT = re.compile(r"^[ \t]*/\*(?:(?!\*/)[^\n])*\n.*?\*/", re.M | re.S)
    SOURCE_LINE = re.compile(r"^(?P<indent>[ \t]*)(?P<body>\S[^\n]*)", re.M)
    # code followed by a block comment that runs onto later lines
    TRAILING_BLOCK_COMMENT = re.compile(
        r"^(?P<indent>[ \t]*)(?P<body>\S[^\n]*?)(?P<comment>/\*(?:(?!\*/)[^\n])*\n.*?\*/)",
        re.M | re.S,
    )

    def __init__(self, engine: "PassEngine") -> None:
        self.ctx = IndentContext()
        super().__init__(engine)

    def build_rules(self) -> List[ScanRule]:
        return [
            ScanRule("COMMENT-BLOCK", self.MULTILINE_BLOCK_COMMENT, self._check_block_comment),
            ScanRule("COMMENT-BLOCK", self.TRAILING_BLOCK_COMMENT, self._check_trailing_comment,
                     self._opens_comment),
            ScanRule("INDENT", self.SOURCE_LINE, self._check_line),
        ]

    def _opens_comment(self, match: re.Match[str]) -> bool:
        line = self.buffer.line_text(self.line_of(match))
        return unclosed_comment_column(line) == self.buffer.column_of(match.start("comment"))

    def _check_trailing_comment(self, match: re.Match[str]) -> List[Diagnostic]:
        line = self.line_of(match)
        found = self._comment_diagnostics(match.group("comment"), line)
        code_check = self._check_code(match.group("indent"), match.group("body"), line)
        if code_check is not None:
            found.insert(0, code_check)
        return found

    def _check_block_comment(self, match: re.Match[str]) -> List[Diagnostic]:
        return self._comment_diagnostics(match.group(0), self.line_of(match))

    def _comment_diagnostics(self, comment: str, first_line: int) -> List[Diagnostic]:
        columns: List[int] = []
        missing_asterisk = False
        for text in comment.split("\n")[1:]:
            stripped = text.lstrip(" \t")
            if not stripped.startswith("*"):
                missing_asterisk = True
                continue
            columns.append(len(text) - len(stripped))

        found: List[Diagnostic] = []
        if columns:
            flush = all(c in (0, 1) for c in columns)
            indented_once = all(c in (3, 4) for c in columns)
            if not (flush or indented_once):
                found.append(self.diagnostic(
                    "COMMENT-BLOCK-INDENT",
                    "Block comment is inconsistently or improperly indented",
                    first_line + 1,
                ))
        if missing_asterisk:
            found.append(self.diagnostic(
                "COMMENT-BLOCK-ASTERISK",
                "Block comment does not have asterisks on each line",
                first_line,
            ))
        return found

    def _check_line(self, match: re.Match[str]) -> Optional[Diagnostic]:
        return self._check_code(match.group("indent"), match.group("body"), self.line_of(match))

    def _check_code(self, indent: str, body: str, line: int) -> Optional[Diagnostic]:
        ctx = self.ctx
        width = self.config.indent_width
        code = code_portion(body).strip()
        column = len(indent)

        if not code:
            # comment-only lines are exempt from depth checks
            if "\t" in indent:
                return self.diagnostic("INDENT-TAB", "Indent contains tab(s).", line)
            return None

        is_label = code.endswith(":") and not code.startswith("}")
        label_open = bool(ctx.labels) and ctx.labels[-1] == ctx.depth - 1
        if code.startswith("}"):
            if label_open:
                ctx.labels.pop()
                ctx.depth -= 1
            ctx.depth = max(ctx.depth - 1, 0)
        elif is_label and label_open:
            ctx.labels.pop()
            ctx.depth -= 1

        expected = width * ctx.depth
        found: Optional[Diagnostic] = None
        if "\t" in indent:
            found = self.diagnostic("INDENT-TAB", "Indent contains tab(s).", line)
        elif not self._indent_ok(column, expected, is_label):
            qualifier = "" if ctx.last_complete else "at least "
            found = self.diagnostic(
                "INDENT-DEPTH",
                f"Incorrect indentation: {column} spaces found, {qualifier}{expected} expected",
                line,
            )

        if ctx.colon_column is not None and column != ctx.colon_column:
            ctx.colon_column = None
        if is_label:
            ctx.colon_column = column + width
            ctx.labels.append(ctx.depth)
            ctx.depth += 1
        elif code == "{":
            ctx.depth += 1
        ctx.last_complete = code.startswith("#") or code.endswith((";", "{", ":", "}"))
        return found

    def _indent_ok(self, column: int, expected: int, is_label: bool) -> bool:
        ctx = self.ctx
        width = self.config.indent_width
        if ctx.colon_column is not None and column == ctx.colon_column:
            return True
        shallower = expected - width if is_label and expected >= width else expected
        if ctx.last_complete:
            return column in (expected, shallower)
        return column >= shallower


# ============================================================
# ========= PASS 2: BRACE LENGTH & SINGLE LINE COMMENTS ======
# ============================================================

class BraceLengthPass(ScanPass):
    state = ScanState.BRACE_LENGTH_PASS
    title = "brace length and line comments"

    OWN_LINE_COMMENT = re.compile(r"^[ \t]*//[^\n]*", re.M)
    OPEN_BRACE = re.compile(r"\{")
    ECHO_COMMENT = re.compile(r"\s*;?\s*(?://(?P<line>.*)|/\*(?P<block>.*?)\*/)\s*")

    def build_rules(self) -> List[ScanRule]:
        return [
            ScanRule("SKIP-BLOCK-COMMENT", BLOCK_COMMENT),
            ScanRule("COMMENT-LINE", self.OWN_LINE_COMMENT, self._report_line_comment),
            ScanRule("SKIP-LINE-COMMENT", LINE_COMMENT),
            ScanRule("SKIP-STRING", STRING_LITERAL),
            ScanRule("SKIP-CHAR", CHAR_LITERAL),
            ScanRule("BRACE-LENGTH", self.OPEN_BRACE, self._check_brace),
        ]

    def _report_line_comment(self, match: re.Match[str]) -> Diagnostic:
        return self.diagnostic(
            "COMMENT-LINE",
            "Single line comment on its own line; should be converted to a block comment",
            self.line_of(match),
        )

    def _check_brace(self, match: re.Match[str]) -> List[Diagnostic]:
        buffer = self.buffer
        open_index = match.start()
        close_index = find_matching_brace(buffer.text, open_index)
        if close_index is None:
            return []
        open_line = buffer.line_of(open_index)
        close_line = buffer.line_of(close_index)
        if close_line - open_line - 1 <= self.config.brace_length_limit:
            return []

        found: List[Diagnostic] = []
        open_text = buffer.line_text(open_line)
        if open_text.strip() == "{":
            header = buffer.line_text(open_line - 1).strip() if open_line > 1 else ""
        else:
            found.append(self.diagnostic("BRACE-OWN-LINE", "Opening brace must be on its own line", open_line))
            header = open_text[:buffer.column_of(open_index)].strip()

        if header:
            trailer = buffer.line_text(close_line)[buffer.column_of(close_index) + 1:]
            if not self._echoes(trailer, header):
                found.append(self.diagnostic(
                    "BRACE-COMMENT",
                    "Block has no comment or it is improperly placed/formatted",
                    close_line,
                ))
        return found

    def _echoes(self, trailer: str, header: str) -> bool:
        match = self.ECHO_COMMENT.fullmatch(trailer)
        if match is None:
            return False
        comment = match.group("line") if match.group("line") is not None else match.group("block")
        comment = collapse_ws(comment)
        return comment in (collapse_ws(header), collapse_ws(code_portion(header)))


# ============================================================
# ==================== PASS 3: LINE LENGTH ===================
# ============================================================

class LineLengthPass(ScanPass):
    state = ScanState.LINE_LENGTH_PASS
    title = "line length"

    def build_rules(self) -> List[ScanRule]:
        limit = self.config.line_limit
        long_line = re.compile(r"^[^\n]{%d,}" % (limit + 1), re.M)
        return [ScanRule("LINE-LENGTH", long_line, self._report_long_line)]

    def _report_long_line(self, match: re.Match[str]) -> Diagnostic:
        length = len(match.group(0))
        return self.diagnostic(
            "LINE-LENGTH",
            f"Line exceeds limit: {length} characters, at most {self.config.line_limit} allowed",
            self.line_of(match),
        )


# ============================================================
# =================== PASS 4: MAGIC NUMBERS ==================
# ============================================================

class MagicNumberPass(ScanPass):
    """
    Flags numeric literals other than the allowed few.

    This is not real magic-number detection: the only exemption is a
    `final ` or `#define ` token earlier on the same physical line, with no
    notion of scope or of what the literal is used for.
    """
    state = ScanState.MAGIC_NUMBER_PASS
    title = "magic numbers"

    IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")
    NUMBER = re.compile(
        NOT_AFTER_IDENT
        + r"(?:0[xX][0-9a-fA-F]+|\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?[lLfFdDuU]*(?![\w.$])"
    )
    CONSTANT_MARKER = re.compile(r"\bfinal |#define ")

    def build_rules(self) -> List[ScanRule]:
        return _skip_rules() + [
            ScanRule("SKIP-IDENTIFIER", self.IDENTIFIER),
            ScanRule("MAGIC-NUMBER", self.NUMBER, self._check_literal),
        ]

    def _check_literal(self, match: re.Match[str]) -> Optional[Diagnostic]:
        literal = match.group(0)
        # 1.0f and 0L are the allowed values; hex digits are not suffixes
        value = literal if literal[:2] in ("0x", "0X") else literal.rstrip("lLfFdDuU")
        if literal in self.config.allowed_literals or value in self.config.allowed_literals:
            return None
        line = self.line_of(match)
        prefix = self.buffer.line_text(line)[:self.buffer.column_of(match.start())]
        if self.CONSTANT_MARKER.search(prefix):
            return None
        return self.diagnostic("MAGIC-NUMBER", f"Potential magic number {literal}", line, Certainty.UNSURE)


# ============================================================
# ============ PASS 5: NAMING, WHITESPACE & CLASSES ==========
# ============================================================

UPPER_CAMEL = re.compile(r"(?:[A-Z0-9_][a-z0-9_]*)*")
LOWER_CAMEL = re.compile(r"[a-z][a-zA-Z0-9]*")
UPPER_SNAKE = re.compile(r"[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*")


class NamingPass(ScanPass):
    state = ScanState.NAMING_PASS
    title = "naming, white space and classes"

    BRACE_WITHOUT_GAP = re.compile(
        r"^[ \t]*\}[ \t;]*(?://[^\n]*|/\*[^\n]*?\*/)?[ \t]*\n"
        r"(?=[ \t]*[^\s}])(?![ \t]*(?:else|catch|finally|while)\b)",
        re.M,
    )
    CLASS_HEADER = re.compile(
        r"^[ \t]*(?:public|private)[ \t]+(?:abstract[ \t]+)?(?:static[ \t]+)?(?:final[ \t]+)?"
        r"(?:class|interface)[ \t]+(?P<name>[\w$]+)",
        re.M,
    )
    DEFINE = re.compile(r"^[ \t]*#[ \t]*define[ \t]+(?P<name>\w+)", re.M)
    IF_ELSE_TAIL = re.compile(r";[ \t]*(?://[^\n]*)?\n(?=[ \t]*else\b)")
    ONE_LINE_IF = re.compile(r"\s*(?:\}\s*)?(?:else\s+)?if\s*\(.*\)\s*[^\s{].*;.*")
    FOR_KEYWORD = re.compile(NOT_AFTER_IDENT + r"for\b(?=[ \t]*\()")
    KEYWORD_PAREN = re.compile(NOT_AFTER_IDENT + r"(?P<keyword>if|while|switch)(?P<gap>\s*)\(")
    BLANKS_BEFORE_OPEN = re.compile(r"\n(?:[ \t]*\n)+(?=[ \t]*\{)")
    BLANKS_BEFORE_CLOSE = re.compile(r"\n(?:[ \t]*\n)+(?=[ \t]*\})")
    BLANKS_AFTER_OPEN = re.compile(r"\{[ \t]*\n(?:[ \t]*\n){2,}")
    HEADER_WITHOUT_GAP = re.compile(
        r"(?<=\S)[ \t]*\n(?=[ \t]*(?:for|while|if|switch)\b[^\n]*\n[ \t]*\{)"
    )
    DECLARATION = re.compile(
        NOT_AFTER_IDENT
        + r"(?P<type>(?:(?:unsigned|signed|long|short)[ \t]+)*"
        r"(?:int|long|short|char|float|double|boolean|bool|byte|void|size_t|[A-Z][\w$]*)"
        r"(?:[ \t]*<[^<>;(){}\n]*>)?(?:[ \t]*\[[ \t]*\])*)"
        r"[ \t]*\**[ \t]+\**(?P<name>[A-Za-z_$][\w$]*)"
        r"(?=[ \t]*(?:\[[^\]\n]*\][ \t]*)*[=;,):])"
    )
    IN_FOR_HEADER = re.compile(r"\bfor\s*\(\s*$")
    FINAL_OR_DEFINE = re.compile(r"\bfinal\b|#[ \t]*define\b")
    FOR_EACH_CANONICAL = re.compile(r"\S(?:[^:]*\S)? : \S(?:.*\S)?")

    def build_rules(self) -> List[ScanRule]:
        unsure = Certainty.UNSURE
        return _skip_rules() + [
            ScanRule("SPACING-AFTER-BRACE", self.BRACE_WITHOUT_GAP,
                     self._fixed("SPACING-AFTER-BRACE", "Missing whitespace after closing brace")),
            ScanRule("NAMING-CLASS", self.CLASS_HEADER, self._check_class_header),
            ScanRule("NAMING-DEFINE", self.DEFINE, self._check_define),
            ScanRule("FORMAT-IF-ELSE", self.IF_ELSE_TAIL,
                     self._fixed("FORMAT-IF-ELSE", "if/else statement is formatted improperly"), self._is_one_line_if),
            ScanRule("SPACING-FOR", self.FOR_KEYWORD, self._check_for_header),
            ScanRule("SPACING-KEYWORD", self.KEYWORD_PAREN, self._check_keyword_gap),
            ScanRule("SPACING-AFTER-OPEN", self.BLANKS_AFTER_OPEN,
                     self._fixed("SPACING-AFTER-OPEN", "Superfluous new line after opening brace")),
            ScanRule("SPACING-BEFORE-OPEN", self.BLANKS_BEFORE_OPEN,
                     self._fixed("SPACING-BEFORE-OPEN", "Likely superfluous new line before opening brace", unsure, offset=1)),
            ScanRule("SPACING-BEFORE-CLOSE", self.BLANKS_BEFORE_CLOSE,
                     self._fixed("SPACING-BEFORE-CLOSE", "Superfluous new line before closing brace", offset=1)),
            ScanRule("SPACING-BEFORE-HEADER", self.HEADER_WITHOUT_GAP,
                     self._fixed("SPACING-BEFORE-HEADER", "Missing whitespace before control statement", unsure, offset=1)),
            ScanRule("NAMING-VARIABLE", self.DECLARATION, self._check_declaration),
        ]

    def _fixed(
        self,
        rule_id: str,
        message: str,
        certainty: Certainty = Certainty.SURE,
        offset: int = 0,
    ) -> Callable[[re.Match[str]], Diagnostic]:
        """Reporter with a constant message; `offset` shifts the reported line."""
        def report(match: re.Match[str]) -> Diagnostic:
            return self.diagnostic(rule_id, message, self.line_of(match) + offset, certainty)
        return report

    # -- classes & constants --

    def _check_class_header(self, match: re.Match[str]) -> List[Diagnostic]:
        self.engine.is_java = True
        line = self.line_of(match)
        name = match.group("name")
        found: List[Diagnostic] = []
        if not UPPER_CAMEL.fullmatch(name):
            found.append(self.diagnostic("NAMING-CLASS", f"Class name {name} must be in UpperCamelCase", line))
        if not preceded_by_block_comment(self.buffer, line):
            found.append(self.diagnostic(
                "COMMENT-CLASS",
                "Class or interface must be preceded by a block comment",
                line,
                Certainty.UNSURE,
            ))
        return found

    def _check_define(self, match: re.Match[str]) -> Optional[Diagnostic]:
        name = match.group("name")
        if UPPER_SNAKE.fullmatch(name):
            return None
        return self.diagnostic("NAMING-CONSTANT", f"Constant {name} must be in UPPER_SNAKE_CASE", self.line_of(match))

    # -- statement shape --

    def _is_one_line_if(self, match: re.Match[str]) -> bool:
        text = self.buffer.line_text(self.line_of(match))
        return self.ONE_LINE_IF.fullmatch(code_portion(text)) is not None

    def _check_for_header(self, match: re.Match[str]) -> Optional[Diagnostic]:
        text = self.buffer.text
        open_index = text.find("(", match.end())
        close_index = find_matching_brace(text, open_index, "(", ")")
        if close_index is None:
            return None
        header = text[match.start():close_index + 1]
        if self._for_spacing_ok(header):
            return None
        return self.diagnostic("SPACING-FOR", "for loop white space is incorrect", self.line_of(match))

    def _for_spacing_ok(self, header: str) -> bool:
        if not header.startswith("for (") or not header.endswith(")"):
            return False
        inner = header[len("for ("):-1]
        parts = inner.split(";")
        if len(parts) == 1:
            return self.FOR_EACH_CANONICAL.fullmatch(inner) is not None
        if len(parts) != 3:
            return False
        if all(part.strip() for part in parts):
            return (parts[0] == parts[0].strip()
                    and all(part == " " + part.strip() for part in parts[1:]))
        return all(len(part) - len(part.lstrip(" ")) <= 1 for part in parts[1:])

    def _check_keyword_gap(self, match: re.Match[str]) -> Optional[Diagnostic]:
        if match.group("gap") == " ":
            return None
        keyword = match.group("keyword")
        return self.diagnostic(
            "SPACING-KEYWORD",
            f"There must be exactly one space between {keyword} and (",
            self.line_of(match),
        )

    # -- variables --

    def _check_declaration(self, match: re.Match[str]) -> Optional[Diagnostic]:
        name = match.group("name")
        line = self.line_of(match)
        prefix = self.buffer.line_text(line)[:self.buffer.column_of(match.start())]
        in_for = self.IN_FOR_HEADER.search(prefix) is not None
        constant = self.FINAL_OR_DEFINE.search(prefix) is not None

        if name in ("l", "O"):
            return self.diagnostic("NAMING-FORBIDDEN", f"Variable name {name} is not allowed", line)
        if name in ("i", "j", "k") and not in_for:
            return self.diagnostic(
                "NAMING-LOOP-INDEX",
                f"Variable name {name} should only be used as a for loop index",
                line,
                Certainty.UNSURE,
            )
        if len(name) == 1 and name.isupper():
            return self.diagnostic("NAMING-SINGLE-UPPER", f"Variable name {name} must not be a single uppercase letter", line)
        if constant:
            if UPPER_SNAKE.fullmatch(name):
                return None
            return self.diagnostic("NAMING-CONSTANT", f"Constant {name} must be in UPPER_SNAKE_CASE", line)
        if LOWER_CAMEL.fullmatch(name) or UPPER_SNAKE.fullmatch(name):
            return None
        return self.diagnostic("NAMING-VARIABLE", f"Variable name {name} must be in lowerCamelCase", line)


# ============================================================
# ============ PASS 6: CONTROL FLOW (RETURN / BREAK) =========
# ============================================================

class BlockFrame(enum.Enum):
    CONDITIONAL = "conditional"
    LOOP = "loop"
    SWITCH = "switch"
    FUNCTION_RETURNING_VALUE = "function returning a value"
    FUNCTION_VOID = "void function"


FUNCTION_FRAMES = (BlockFrame.FUNCTION_RETURNING_VALUE, BlockFrame.FUNCTION_VOID)


@dataclass
class ControlFlowContext:
    stack: List[BlockFrame] = field(default_factory=list)
    pending: Optional[BlockFrame] = None     # kind announced by the last header, claimed by the next '{'
    last_was_return: bool = False

    def push(self, frame: BlockFrame) -> None:
        self.stack.append(frame)

    def pop(self) -> Optional[BlockFrame]:
        if not self.stack:
            return None
        return self.stack.pop()

    def top(self) -> Optional[BlockFrame]:
        return self.stack[-1] if self.stack else None

    def last_index(self, frame: BlockFrame) -> int:
        for index in range(len(self.stack) - 1, -1, -1):
            if self.stack[index] is frame:
                return index
        return -1

    def break_in_loop(self) -> bool:
        return self.last_index(BlockFrame.LOOP) > self.last_index(BlockFrame.SWITCH)


@dataclass
class FunctionHeader:
    name: str
    return_type: str
    returns_value: bool
    space_before_paren: bool


_JAVA_MODIFIERS = {
    "public", "private", "protected", "static", "final", "abstract",
    "synchronized", "native", "inline", "extern", "const",
}
_NOT_A_SIGNATURE = {"return", "new", "throw", "else", "if", "class", "interface", "case", "goto", "enum"}
_NOT_A_FUNCTION_NAME = {"for", "while", "switch", "catch", "if", "synchronized", "sizeof", "return"}

SIGNATURE = re.compile(
    r"(?P<prefix>(?:[A-Za-z_$][\w$.]*(?:<[^;{}]*>)?(?:\[\])*[ \t*]+)+)"
    r"(?P<name>[A-Za-z_$][\w$]*)(?P<gap>[ \t]*)\([^;{}]*\)"
    r"(?:[ \t]*throws[ \t]+[\w$., \t]+)?(?:[ \t]*const)?"
)
SIGNATURE_EXCLUDED = re.compile(r"\b(?:if|else|class|interface)\b")
TYPE_TOKEN = re.compile(r"[A-Za-z_$][\w$.]*(?:<[^;{}]*>)?(?:\[\])*")


def parse_function_header(text: str) -> Optional[FunctionHeader]:
    """
    Recognize a function/method signature on one line of code. Returns None
    for anything that is not signature-shaped.
    """
    code = code_portion(text).strip()
    if not code or SIGNATURE_EXCLUDED.search(code):
        return None
    match = SIGNATURE.fullmatch(code)
    if match is None:
        return None
    name = match.group("name")
    prefix = match.group("prefix")
    tokens = TYPE_TOKEN.findall(prefix)
    if not tokens or name in _NOT_A_FUNCTION_NAME or any(t in _NOT_A_SIGNATURE for t in tokens):
        return None
    return_type = tokens[-1]
    pointer = "*" in prefix[prefix.rfind(return_type):]
    constructor = return_type in _JAVA_MODIFIERS
    returns_value = pointer or not (return_type == "void" or constructor)
    return FunctionHeader(
        name=name,
        return_type="" if constructor else return_type,
        returns_value=returns_value,
        space_before_paren=bool(match.group("gap")),
    )


class ControlFlowPass(ScanPass):
    state = ScanState.CONTROL_FLOW_PASS
    title = "control flow"

    CLASS_HEADER = re.compile(
        r"^[ \t]*(?:(?:public|private|protected|abstract|static|final)[ \t]+)*"
        r"(?:class|interface)[ \t]+[\w$]+[^\n{]*",
        re.M,
    )
    LOOP_HEADER = re.compile(NOT_AFTER_IDENT + r"(?:for|while)[ \t]*" + PAREN_GROUP)
    DO_KEYWORD = re.compile(NOT_AFTER_IDENT + r"do\b")
    SWITCH_HEADER = re.compile(NOT_AFTER_IDENT + r"switch[ \t]*" + PAREN_GROUP)
    IF_HEADER = re.compile(NOT_AFTER_IDENT + r"(?:else[ \t]+if|if)[ \t]*" + PAREN_GROUP)
    ELSE_KEYWORD = re.compile(NOT_AFTER_IDENT + r"else\b")
    OPEN_BRACE = re.compile(r"\{")
    CLOSE_BRACE = re.compile(r"\}")
    RETURN = re.compile(NOT_AFTER_IDENT + r"""return\b(?:"(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*'|[^;"'])*;""")
    BREAK = re.compile(NOT_AFTER_IDENT + r"break[ \t]*;")
    SEMICOLON = re.compile(r";")
    CLOSES_BLOCK = re.compile(r"(?:\s|//[^\n]*|/\*.*?\*/)*\}", re.S)

    def __init__(self, engine: "PassEngine") -> None:
        self.ctx = ControlFlowContext()
        super().__init__(engine)

    def build_rules(self) -> List[ScanRule]:
        return _skip_rules() + [
            ScanRule("FLOW-CLASS", self.CLASS_HEADER, self._enter_class),
            ScanRule("FLOW-LOOP", self.LOOP_HEADER, self._announce(BlockFrame.LOOP)),
            ScanRule("FLOW-DO", self.DO_KEYWORD, self._announce(BlockFrame.LOOP)),
            ScanRule("FLOW-SWITCH", self.SWITCH_HEADER, self._announce(BlockFrame.SWITCH)),
            ScanRule("FLOW-IF", self.IF_HEADER, self._announce(BlockFrame.CONDITIONAL)),
            ScanRule("FLOW-ELSE", self.ELSE_KEYWORD, self._announce(BlockFrame.CONDITIONAL)),
            ScanRule("FLOW-OPEN", self.OPEN_BRACE, self._open_block),
            ScanRule("FLOW-CLOSE", self.CLOSE_BRACE, self._close_block),
            ScanRule("FLOW-RETURN", self.RETURN, self._check_return),
            ScanRule("FLOW-BREAK", self.BREAK, self._check_break),
            ScanRule("FLOW-STATEMENT", self.SEMICOLON, self._end_statement),
        ]

    def _enter_class(self, match: re.Match[str]) -> None:
        self.engine.is_java = True
        self.ctx.pending = BlockFrame.CONDITIONAL

    def _announce(self, frame: BlockFrame) -> Callable[[re.Match[str]], None]:
        def report(match: re.Match[str]) -> None:
            self.ctx.pending = frame
        return report

    def _end_statement(self, match: re.Match[str]) -> None:
        self.ctx.pending = None
        self.ctx.last_was_return = False

    def _open_block(self, match: re.Match[str]) -> List[Diagnostic]:
        ctx = self.ctx
        buffer = self.buffer
        line = buffer.line_of(match.start())
        before = buffer.line_text(line)[:buffer.column_of(match.start())]
        if before.strip():
            header_line: Optional[int] = line
            header_text = before
        else:
            header_line = buffer.previous_nonblank_line(line)
            header_text = buffer.line_text(header_line) if header_line else ""

        found: List[Diagnostic] = []
        header = parse_function_header(header_text) if header_line else None
        if header is not None and header_line is not None:
            frame = BlockFrame.FUNCTION_RETURNING_VALUE if header.returns_value else BlockFrame.FUNCTION_VOID
            if not preceded_by_block_comment(buffer, header_line):
                found.append(self.diagnostic(
                    "COMMENT-FUNCTION",
                    f"Function {header.name} must be preceded by a block comment",
                    header_line,
                ))
            if header.space_before_paren:
                found.append(self.diagnostic(
                    "SPACING-FUNCTION",
                    f"There must be no space between {header.name} and (",
                    header_line,
                ))
        else:
            frame = ctx.pending or BlockFrame.CONDITIONAL
        ctx.push(frame)
        ctx.pending = None
        ctx.last_was_return = False
        return found

    def _close_block(self, match: re.Match[str]) -> Optional[Diagnostic]:
        ctx = self.ctx
        frame = ctx.pop()
        needs_return = frame is BlockFrame.FUNCTION_RETURNING_VALUE or (
            frame is BlockFrame.FUNCTION_VOID and not self.engine.is_java
        )
        found = None
        if needs_return and not ctx.last_was_return:
            found = self.diagnostic("FLOW-MISSING-RETURN", "Missing final return statement", self.line_of(match))
        ctx.pending = None
        ctx.last_was_return = False
        return found

    def _check_return(self, match: re.Match[str]) -> Optional[Diagnostic]:
        ctx = self.ctx
        is_last = self.CLOSES_BLOCK.match(self.buffer.text, match.end()) is not None
        ctx.pending = None
        ctx.last_was_return = True
        if is_last and ctx.top() in FUNCTION_FRAMES:
            return None
        return self.diagnostic(
            "FLOW-RETURN",
            "return statement is not the last executable line... only allowed for very small functions",
            self.line_of(match),
            Certainty.UNSURE,
        )

    def _check_break(self, match: re.Match[str]) -> Optional[Diagnostic]:
        ctx = self.ctx
        ctx.pending = None
        ctx.last_was_return = False
        if not ctx.break_in_loop():
            return None
        return self.diagnostic("FLOW-BREAK", "break statement in loop", self.line_of(match))

    def finish(self) -> ReportResult:
        if self.ctx.stack:
            _notice(f"{len(self.ctx.stack)} block(s) still open at end of input; braces are unbalanced.")
        return None


# ============================================================
# ======================= PASS ENGINE ========================
# ============================================================

PASS_ORDER: Tuple[Type[ScanPass], ...] = (
    IndentationPass,
    BraceLengthPass,
    LineLengthPass,
    MagicNumberPass,
    NamingPass,
    ControlFlowPass,
)


def _report_progress(message: str) -> None:
    _notice(message)


class PassEngine:
    """
    Pull-based driver for the pass sequence.

    Each call to next() resumes scanning where the previous one stopped and
    returns either the next Diagnostic or END_OF_INPUT once the final pass has
    consumed the whole buffer. The buffer is rewound between passes; the first
    pass starts from wherever the buffer was handed over (normally offset 0).
    """

    def __init__(
        self,
        buffer: SourceBuffer,
        config: Optional[StyleConfig] = None,
        progress: Optional[Callable[[str], None]] = None,
        passes: Optional[Sequence[Type[ScanPass]]] = None,
    ) -> None:
        self.buffer = buffer
        self.config = config or StyleConfig()
        self.progress = progress if progress is not None else _report_progress
        self.passes: Tuple[Type[ScanPass], ...] = tuple(passes) if passes is not None else PASS_ORDER
        self.state = ScanState.INIT
        self.is_java = False      # set by the first class/interface header, never cleared
        self._pass_index = -1
        self._current: Optional[ScanPass] = None
        self._pending: deque = deque()
        self._finished = False

    def next(self) -> Union[Diagnostic, EndOfInput]:
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._finished:
                return END_OF_INPUT
            if self._current is None:
                self._enter_pass(0)
                continue
            if self.buffer.at_end():
                self._queue(self._current.finish())
                self._advance_pass()
                continue
            self._step(self._current)

    def __iter__(self) -> Iterator[Diagnostic]:
        while True:
            item = self.next()
            if isinstance(item, EndOfInput):
                return
            yield item

    def _enter_pass(self, index: int) -> None:
        if index >= len(self.passes):
            self._finished = True
            self.progress("Analysis passes complete.")
            return
        if index > 0:
            self.buffer.rewind()
        pass_cls = self.passes[index]
        self._pass_index = index
        self.state = pass_cls.state
        self._current = pass_cls(self)
        self.progress(f"Starting pass {index + 1} of {len(self.passes)}: {pass_cls.title}")

    def _advance_pass(self) -> None:
        self._enter_pass(self._pass_index + 1)

    def _step(self, scan_pass: ScanPass) -> None:
        buffer = self.buffer
        start = buffer.pos
        for rule in scan_pass.rules:
            match = buffer.match(rule.pattern)
            if match is None or match.end() == start:
                continue
            if rule.predicate is not None and not rule.predicate(match):
                continue
            buffer.seek(match.end())
            if rule.report is not None:
                self._queue(rule.report(match))
            return
        buffer.skip_one()

    def _queue(self, result: ReportResult) -> None:
        if result is None:
            return
        items = [result] if isinstance(result, Diagnostic) else result
        disabled = self.config.disabled_rules
        for item in items:
            if item.rule_id not in disabled:
                self._pending.append(item)


def scan_text(
    text: str,
    config: Optional[StyleConfig] = None,
    passes: Optional[Sequence[Type[ScanPass]]] = None,
    progress: Callable[[str], None] = _discard_progress,
) -> List[Diagnostic]:
    """Run the passes over `text` and return the diagnostics in discovery order."""
    engine = PassEngine(SourceBuffer(text), config, progress=progress, passes=passes)
    return list(engine)


def scan_file(
    path: str,
    config: Optional[StyleConfig] = None,
    progress: Callable[[str], None] = _discard_progress,
) -> List[Diagnostic]:
    engine = PassEngine(SourceBuffer.from_file(path), config, progress=progress)
    return list(engine)


def sort_diagnostics(diagnostics: Sequence[Diagnostic]) -> List[Diagnostic]:
    # sorted() is stable: ties keep discovery order
    return sorted(diagnostics, key=lambda d: d.line)


# ============================================================
# ========================= OUTPUT ===========================
# ============================================================

ANSI_RED = "\033[31m"
ANSI_YELLOW = "\033[33m"
ANSI_RESET = "\033[0m"
SUMMARY_RULE = "=" * 30


def render_diagnostic(diagnostic: Diagnostic, color: bool = True) -> str:
    text = str(diagnostic)
    if not color:
        return text
    tint = ANSI_RED if diagnostic.sure else ANSI_YELLOW
    return f"{tint}{text}{ANSI_RESET}"


def format_report(diagnostics: Sequence[Diagnostic], color: bool = True) -> str:
    errors = sum(1 for d in diagnostics if d.sure)
    warnings = len(diagnostics) - errors
    lines = [
        "Analysis Complete:",
        f"{errors} Errors,",
        f"{warnings} Warnings",
        SUMMARY_RULE,
    ]
    lines.extend(render_diagnostic(d, color) for d in sort_diagnostics(diagnostics))
    return "\n".join(lines)


def diagnostic_to_json_obj(d: Diagnostic) -> Dict[str, Any]:
    """
    Convert a Diagnostic into a JSON-friendly dict with a stable field order.
    """
    return {
        "rule_id": d.rule_id,
        "certainty": d.certainty.value,
        "message": d.message,
        "line": d.line,
        "tool": TOOL_NAME,
        "version": TOOL_VERSION,
    }


def emit_diagnostics_json(diagnostics: Sequence[Diagnostic], out: Optional[str] = None) -> None:
    as_json = [diagnostic_to_json_obj(d) for d in sort_diagnostics(diagnostics)]
    text = json.dumps(as_json, indent=2, sort_keys=False)
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text + "\n")
    else:
        print(text)


# ============================================================
# ============================ CLI ===========================
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.
    Intended usage:
      python stylescan.py [--config style.yaml] [--json [OUT]] Source.java
    """
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description="Stylescan: house style conformance scanner for C and Java",
    )
    parser.add_argument(
        "files",
        nargs="*",
        help="The C or Java source file to scan (exactly one).",
    )
    parser.add_argument(
        "--config",
        metavar="CONFIG_YAML",
        help="YAML file overriding the style thresholds (default: $STYLESCAN_CONFIG).",
    )
    parser.add_argument(
        "--json",
        nargs="?",
        const="-",
        metavar="OUT_JSON",
        help="Emit diagnostics as JSON, to OUT_JSON or stdout.",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Do not color diagnostics.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress pass progress messages.",
    )

    args = parser.parse_args(argv)
    if len(args.files) != 1:
        parser.print_usage()
        return 0

    path = args.files[0]
    config = resolve_config(args.config)

    try:
        buffer = SourceBuffer.from_file(path)
    except OSError:
        print(f"Could not open {path}.")
        return 1

    engine = PassEngine(buffer, config, progress=_discard_progress if args.quiet else None)
    diagnostics: List[Diagnostic] = []
    try:
        while True:
            item = engine.next()
            if isinstance(item, EndOfInput):
                break
            if item.message:
                diagnostics.append(item)
    except SourceBufferError as exc:
        print(f"Could not rewind {path}: {exc}")
        return 1

    if args.json:
        emit_diagnostics_json(diagnostics, out=None if args.json == "-" else args.json)
        return 0

    color = config.color and not args.no_color and os.environ.get("NO_COLOR") is None
    print(format_report(diagnostics, color=color))
    return 0


if __name__ == "__main__":
    sys.exit(main())
