#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.10"
# dependencies = []
# ///
"""Autocompletor - infer a program's command-line interface from its docs.

Scrapes man pages and `--help`/`-h` output of an arbitrary program and builds a
normalized command tree (flags + nested subcommands) that shell completion
generators can render.

Extraction model:
- Man page first. When it documents at least one flag it is the primary source
  and `--help` only contributes subcommands the man page does not list.
- Otherwise the program is walked through `--help`, descending into every
  discovered subcommand up to `max_depth` levels below the root.
- Every external invocation is bounded by a timeout and runs with pagers
  disabled, so interactive programs cannot block the scan.

Configuration lives in `~/.config/autocompletor/config.json`
(`AUTOCOMPLETOR_HOME` overrides the location, `AUTOCOMPLETOR_<KEY>` overrides
single keys).

Usage:
    autocompletor scan gobuster                    # Print the command tree as JSON
    autocompletor scan git --max-depth 1           # Only direct subcommands
    autocompletor extract help.txt --strict        # Run the extractors on a file
    autocompletor classify help.txt                # Show how each line is classified
    autocompletor check git.json                   # Validate a saved command tree
"""

from __future__ import annotations

import argparse
import enum
import json
import os
import re
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Iterable, Protocol, Sequence, TypedDict

# Constants
PROTOCOL_VERSION: Final[int] = 1
DEFAULT_MAX_DEPTH: Final[int] = 3
DEFAULT_TIMEOUT_S: Final[int] = 5

SubcommandPath = tuple[str, ...]


class FlagData(TypedDict):
    short: str
    long: str
    description: str
    takes_arg: bool


class CommandNodeData(TypedDict):
    name: str
    description: str
    flags: list[FlagData]
    subcommands: list["CommandNodeData"]


class CommandTreeData(TypedDict):
    protocol_version: int
    generated_at: str
    name: str
    description: str
    flags: list[FlagData]
    subcommands: list[CommandNodeData]


def _flag_schema() -> dict:
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "short": {"type": "string"},
            "long": {"type": "string"},
            "description": {"type": "string"},
            "takes_arg": {"type": "boolean"},
        },
        "required": ["short", "long", "description", "takes_arg"],
    }


def _command_node_schema_ref() -> dict:
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "flags": {"type": "array", "items": {"$ref": "#/$defs/flag"}},
            "subcommands": {
                "type": "array",
                "items": {"$ref": "#/$defs/command"},
            },
        },
        "required": ["name", "description", "flags", "subcommands"],
    }


def command_tree_json_schema() -> dict:
    """JSON Schema for the serialized command tree handed to generators."""
    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "protocol_version": {"type": "integer"},
            "generated_at": {"type": "string", "minLength": 1},
            "name": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "flags": {"type": "array", "items": {"$ref": "#/$defs/flag"}},
            "subcommands": {
                "type": "array",
                "items": {"$ref": "#/$defs/command"},
            },
        },
        "$defs": {
            "flag": _flag_schema(),
            "command": _command_node_schema_ref(),
        },
        "required": [
            "protocol_version",
            "generated_at",
            "name",
            "description",
            "flags",
            "subcommands",
        ],
    }


class ExtractionError(RuntimeError):
    pass


class SourceUnavailable(ExtractionError):
    """A man page or help invocation produced no usable text."""


class DepthExceeded(ExtractionError):
    """A help node was requested below the maximum subcommand depth."""


class NoCompletionsFound(ExtractionError):
    """Neither the man page nor `--help` yielded flags or subcommands."""


@dataclass(frozen=True, slots=True)
class Flag:
    """Represents one command-line option."""

    short: str = ""  # e.g., "-u"
    long: str = ""  # e.g., "--url"
    description: str = ""
    takes_arg: bool = False

    @property
    def key(self) -> str:
        return self.long or self.short


@dataclass(slots=True)
class Command:
    """The root program or one of its subcommands."""

    name: str
    description: str = ""
    flags: list[Flag] = field(default_factory=list)
    subcommands: list[Command] = field(default_factory=list)

    def find_subcommand(self, name: str) -> Command | None:
        for sub in self.subcommands:
            if sub.name == name:
                return sub
        return None

    def depth(self) -> int:
        """Levels of subcommands below this node (0 for a leaf)."""
        if not self.subcommands:
            return 0
        return 1 + max(sub.depth() for sub in self.subcommands)


@dataclass(frozen=True, slots=True)
class SubcommandEntry:
    """A subcommand listing harvested from help text."""

    name: str
    description: str


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def flag_to_dict(flag: Flag) -> FlagData:
    return {
        "short": flag.short,
        "long": flag.long,
        "description": flag.description,
        "takes_arg": flag.takes_arg,
    }


def command_to_dict(command: Command) -> CommandNodeData:
    return {
        "name": command.name,
        "description": command.description,
        "flags": [flag_to_dict(f) for f in command.flags],
        "subcommands": [command_to_dict(sub) for sub in command.subcommands],
    }


def command_tree_to_dict(command: Command) -> CommandTreeData:
    node = command_to_dict(command)
    return {
        "protocol_version": PROTOCOL_VERSION,
        "generated_at": _utc_now_iso(),
        "name": node["name"],
        "description": node["description"],
        "flags": node["flags"],
        "subcommands": node["subcommands"],
    }


def _validate_flags(*, flags: object) -> list[Flag]:
    if not isinstance(flags, list):
        raise ValueError("flags must be an array")
    out: list[Flag] = []
    seen: set[str] = set()
    for item in flags:
        if not isinstance(item, dict):
            raise ValueError("flag entries must be objects")
        short = item.get("short", "")
        long = item.get("long", "")
        description = item.get("description", "")
        takes_arg = item.get("takes_arg", False)
        if not isinstance(short, str) or not isinstance(long, str):
            raise ValueError("flag short/long must be strings")
        if not isinstance(description, str):
            raise ValueError("flag description must be a string")
        if not isinstance(takes_arg, bool):
            raise ValueError("flag takes_arg must be a boolean")
        if not short and not long:
            raise ValueError("flag needs a short or a long form")
        flag = Flag(
            short=short,
            long=long,
            description=description.strip(),
            takes_arg=takes_arg,
        )
        if flag.key in seen:
            raise ValueError(f"duplicate flag: {flag.key}")
        seen.add(flag.key)
        out.append(flag)
    return out


def _validate_command_node(*, payload: object) -> Command:
    if not isinstance(payload, dict):
        raise ValueError("command payload must be an object")
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("command name must be a non-empty string")
    description = payload.get("description", "")
    if not isinstance(description, str):
        raise ValueError("command description must be a string")
    flags = _validate_flags(flags=payload.get("flags", []))

    subcommands_raw = payload.get("subcommands")
    if subcommands_raw is None:
        subcommands_raw = []
    if not isinstance(subcommands_raw, list):
        raise ValueError("command subcommands must be an array")
    node = Command(name=name, description=description, flags=flags)
    for sub_payload in subcommands_raw:
        sub = _validate_command_node(payload=sub_payload)
        if node.find_subcommand(sub.name) is not None:
            raise ValueError(f"duplicate subcommand: {sub.name}")
        node.subcommands.append(sub)
    return node


def validate_command_tree(*, payload: object, command: str | None = None) -> Command:
    """Validate a serialized command tree and rebuild the `Command` objects."""
    if not isinstance(payload, dict):
        raise ValueError("payload must be an object")
    if payload.get("protocol_version") != PROTOCOL_VERSION:
        raise ValueError("protocol_version mismatch")
    if command is not None and payload.get("name") != command:
        raise ValueError("command mismatch")
    generated_at = payload.get("generated_at")
    if not isinstance(generated_at, str) or not generated_at:
        raise ValueError("generated_at must be a non-empty string")
    return _validate_command_node(payload=payload)


def autocompletor_home() -> Path:
    """Return Autocompletor's home directory.

    Defaults to `~/.config/autocompletor`, overridable via `AUTOCOMPLETOR_HOME`.
    """
    raw = os.environ.get("AUTOCOMPLETOR_HOME")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".config" / "autocompletor"


def autocompletor_config_path() -> Path:
    return autocompletor_home() / "config.json"


def _load_config() -> dict:
    path = autocompletor_config_path()
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def _config_get(*, key: str) -> object | None:
    # Environment variables override config.json.
    # Example: `AUTOCOMPLETOR_MAX_DEPTH=1`, `AUTOCOMPLETOR_VERBOSE=2`.
    env_key = f"AUTOCOMPLETOR_{key.upper()}"
    env_val = os.environ.get(env_key)
    if env_val is not None and env_val.strip() != "":
        return env_val
    return _load_config().get(key)


def _setting_int(*, config_key: str, default: int) -> int:
    cfg = _config_get(key=config_key)
    if cfg is None or isinstance(cfg, bool):
        return default
    try:
        return int(cfg)
    except (TypeError, ValueError):
        return default


def _max_depth() -> int:
    return max(0, _setting_int(config_key="max_depth", default=DEFAULT_MAX_DEPTH))


def _timeout_s() -> int:
    return max(1, _setting_int(config_key="timeout_s", default=DEFAULT_TIMEOUT_S))


def _verbose_level() -> int:
    raw = _config_get(key="verbose")
    if raw is None:
        return 0
    if isinstance(raw, bool):
        return 1 if raw else 0
    if isinstance(raw, int):
        if raw <= 0:
            return 0
        return 2 if raw > 1 else 1
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in {"", "0", "false", "no", "off"}:
            return 0
        if value in {"1", "true", "yes", "on", "basic"}:
            return 1
        return 2
    return 0


def _debug(message: str, *, level: int = 1) -> None:
    if _verbose_level() >= level:
        print(f"[autocompletor] {message}", file=sys.stderr)


# Flags part, then 2+ spaces or a tab, then the description. Up to 12 columns
# of indent: man pages use 7, --help output typically 2-6.
FLAG_LINE_RE: Final = re.compile(r"^(\s{1,12}-[^\t]+?)(?:\s{2,}|\t)(.+)$")

# --flag and git-style --[no-]flag
LONG_FLAG_RE: Final = re.compile(r"--(?:\[no-\])?([a-zA-Z0-9][a-zA-Z0-9\-]*)")

# -x bounded by comma, whitespace or the line edges (never inside a word)
SHORT_FLAG_RE: Final = re.compile(r"(?<![^,\s])(-[a-zA-Z0-9])(?![^,\s])")

TAKES_ARG_RE: Final = re.compile(
    r"value|<[^>]+>|\[.*\]"
    r"|file|path|string|int|num|port|url|host|addr|dir|name|key|secret|token",
    re.IGNORECASE,
)

# git-style listing outside an explicit section: 2-4 columns, name, 2+ spaces, text
SUBCOMMAND_LINE_RE: Final = re.compile(r"^\s{2,4}([a-z][a-zA-Z0-9_\-]+)\s{2,}(.+)$")

SUBCOMMAND_NAME_RE: Final = re.compile(r"^[a-z][a-zA-Z0-9_\-]*$")

TWO_SPACES_RE: Final = re.compile(r"\s{2,}")

COMMANDS_HEADERS: Final[frozenset[str]] = frozenset(
    {
        "commands",
        "commands:",
        "command:",
        "subcommands",
        "subcommands:",
        "available commands:",
    }
)

RESERVED_SUBCOMMANDS: Final[frozenset[str]] = frozenset(
    {"help", "version", "completion"}
)

MAX_HEADER_INDENT: Final[int] = 4
MAX_FLAG_INDENT: Final[int] = 12
DEEP_CONTINUATION_INDENT: Final[int] = 20


class LineKind(enum.Enum):
    BLANK = "blank"
    SECTION_HEADER = "section_header"
    FLAG = "flag"
    FLAG_ONLY = "flag_only"
    DEEP_CONTINUATION = "deep_continuation"
    SUBCOMMAND = "subcommand"
    PROSE = "prose"


@dataclass(frozen=True, slots=True)
class ClassifiedLine:
    text: str
    kind: LineKind
    indent: int

    @property
    def stripped(self) -> str:
        return self.text.strip()

    @property
    def is_deep(self) -> bool:
        """Wrapped description text far to the right of any flag column."""
        return (
            self.indent >= DEEP_CONTINUATION_INDENT
            and len(self.text) > DEEP_CONTINUATION_INDENT
        )


def indent_of(line: str) -> int:
    """Number of leading spaces/tabs in a line."""
    return len(line) - len(line.lstrip(" \t"))


def is_commands_header(text: str) -> bool:
    # `text` is trimmed and lowercased. Only the plural "commands" is accepted
    # as a prefix so prose like "command. If --help..." never opens a section.
    return text in COMMANDS_HEADERS or text.startswith("commands ")


def is_reserved_subcommand(name: str) -> bool:
    return name in RESERVED_SUBCOMMANDS


def _flag_tokens(flags_part: str) -> tuple[list[str], list[str]]:
    longs = [f"--{name}" for name in LONG_FLAG_RE.findall(flags_part)]
    shorts = SHORT_FLAG_RE.findall(flags_part)
    return longs, shorts


def takes_argument(flags_part: str) -> bool:
    """Guess whether a flag consumes a value from its declaration text."""
    return TAKES_ARG_RE.search(flags_part) is not None


def classify_line(line: str) -> ClassifiedLine:
    """Decide what a single line of help/man text represents."""
    indent = indent_of(line)
    stripped = line.strip()
    match = FLAG_LINE_RE.match(line)

    if not stripped:
        kind = LineKind.BLANK
    elif indent <= MAX_HEADER_INDENT and is_commands_header(stripped.lower()):
        kind = LineKind.SECTION_HEADER
    elif parse_flag_line(line) is not None:
        kind = LineKind.FLAG
    elif 1 <= indent <= MAX_FLAG_INDENT and stripped.startswith("-") and match is None:
        kind = LineKind.FLAG_ONLY
    elif indent >= DEEP_CONTINUATION_INDENT and len(line) > DEEP_CONTINUATION_INDENT:
        kind = LineKind.DEEP_CONTINUATION
    elif SUBCOMMAND_LINE_RE.match(line):
        kind = LineKind.SUBCOMMAND
    else:
        kind = LineKind.PROSE

    return ClassifiedLine(text=line, kind=kind, indent=indent)


def classify_lines(lines: Iterable[str]) -> list[ClassifiedLine]:
    return [classify_line(line) for line in lines]


def join_flag_lines(lines: Sequence[str]) -> list[str]:
    """Fold multi-line flag declarations into one line per flag.

    - Deeply indented lines are wrapped descriptions: appended to the previous
      line.
    - A flag alone on its line (man page style) takes its description from the
      next, more indented line.
    Inline `--help` style lines pass through unchanged.
    """
    joined: list[str] = []
    i = 0
    while i < len(lines):
        current = classify_line(lines[i])

        if joined and current.is_deep:
            joined[-1] += " " + current.stripped
            i += 1
            continue

        if current.kind is LineKind.FLAG_ONLY and i + 1 < len(lines):
            following = classify_line(lines[i + 1])
            if (
                following.stripped
                and not following.stripped.startswith("-")
                and following.indent > current.indent
            ):
                joined.append(current.text.rstrip(" \t") + "    " + following.stripped)
                i += 2
                continue

        joined.append(current.text)
        i += 1

    return joined


def parse_flag_line(line: str) -> Flag | None:
    """Parse one (joined) flag line, e.g. `  -u, --url <URL>    Target URL`."""
    match = FLAG_LINE_RE.match(line)
    if match is None:
        return None

    flags_part = match.group(1)
    description = match.group(2).strip()
    if "-" not in flags_part:
        return None

    longs, shorts = _flag_tokens(flags_part)
    if not longs and not shorts:
        return None

    return Flag(
        short=shorts[0] if shorts else "",
        long=longs[0] if longs else "",
        description=description,
        takes_arg=takes_argument(flags_part),
    )


def extract_flags(lines: Sequence[str]) -> list[Flag]:
    """Return the flags declared in a block of help/man text.

    Output keeps first-seen order; a flag whose key (long form, falling back to
    the short form) was already seen is dropped.
    """
    flags: list[Flag] = []
    seen: set[str] = set()

    for line in join_flag_lines(lines):
        flag = parse_flag_line(line)
        if flag is None or flag.key in seen:
            continue
        seen.add(flag.key)
        flags.append(flag)

    return flags


def _first_sentence(text: str) -> str:
    idx = text.find(". ")
    if idx != -1:
        return text[: idx + 1]
    return text


def _section_entry(
    lines: Sequence[str], index: int, line: ClassifiedLine
) -> SubcommandEntry | None:
    parts = TWO_SPACES_RE.split(line.stripped, maxsplit=1)
    words = parts[0].split()
    if not words or not SUBCOMMAND_NAME_RE.match(words[0]):
        return None

    description = parts[1].strip() if len(parts) > 1 else ""
    # man page style: name (plus args) alone, description on the next line
    if not description and index + 1 < len(lines):
        following = classify_line(lines[index + 1])
        if (
            following.stripped
            and following.indent > line.indent
            and not following.stripped.startswith("-")
        ):
            description = _first_sentence(following.stripped)

    return SubcommandEntry(name=words[0], description=description)


def extract_subcommands(
    lines: Sequence[str], *, strict: bool
) -> list[SubcommandEntry]:
    """Find subcommand listings in a block of help/man text.

    strict=True only trusts explicit COMMANDS/SUBCOMMANDS sections (man pages).
    strict=False also accepts git-style `  name   description` lines anywhere,
    which is safe for the cleaner `--help` output.
    """
    entries: list[SubcommandEntry] = []
    seen: set[str] = set()
    in_section = False
    section_indent: int | None = None

    for i, raw in enumerate(lines):
        line = classify_line(raw)

        if line.kind is LineKind.SECTION_HEADER:
            in_section = True
            section_indent = None
            continue

        # Any unindented text closes the section.
        if in_section and raw and raw[0] not in " \t":
            in_section = False
            section_indent = None

        if not in_section and (strict or line.kind is not LineKind.SUBCOMMAND):
            continue
        if line.kind is LineKind.BLANK:
            continue

        entry: SubcommandEntry | None
        if in_section:
            if section_indent is None:
                section_indent = line.indent
            # More indented than the first entry: description or example text.
            if line.indent > section_indent:
                continue
            entry = _section_entry(lines, i, line)
        else:
            match = SUBCOMMAND_LINE_RE.match(raw)
            entry = (
                SubcommandEntry(name=match.group(1), description=match.group(2).strip())
                if match
                else None
            )

        if entry is None:
            continue
        if is_reserved_subcommand(entry.name) or entry.name in seen:
            continue
        seen.add(entry.name)
        entries.append(entry)

    return entries


MAN_NAME_SEPARATOR_RE: Final = re.compile(r"\s+(?:\\-|-|–|—)\s+")


def truncate_description(text: str, max_length: int = 160) -> str:
    """Truncate description at sentence or word boundary."""
    if len(text) <= max_length:
        return text

    limit = max_length - 3  # Room for "..."
    truncated = text[:limit]

    # Try sentence boundary (. ! ?) followed by space
    for punct in (". ", "! ", "? "):
        pos = truncated.rfind(punct)
        if pos > limit // 2:
            return text[: pos + 1]

    # Fall back to word boundary
    last_space = truncated.rfind(" ")
    if last_space > limit // 2:
        return truncated[:last_space] + "..."

    return truncated + "..."


def extract_man_summary(lines: Sequence[str]) -> str:
    """One-line summary from the NAME section (`git-commit - Record changes`)."""
    collected: list[str] = []
    in_name = False
    for raw in lines:
        stripped = raw.strip()
        if not in_name:
            if stripped == "NAME" and indent_of(raw) == 0:
                in_name = True
            continue
        if not stripped:
            if collected:
                break
            continue
        if indent_of(raw) == 0:
            break
        collected.append(stripped)

    text = " ".join(collected)
    parts = MAN_NAME_SEPARATOR_RE.split(text, maxsplit=1)
    if len(parts) < 2:
        return ""
    return truncate_description(parts[1].strip())


def extract_help_summary(lines: Sequence[str]) -> str:
    """First prose line of `--help` output that precedes any listing.

    Usage blocks are skipped; a header line (`Options:`), a flag or a
    subcommand listing ends the search.
    """
    in_usage = False
    for raw in lines:
        line = classify_line(raw)
        if line.kind is LineKind.BLANK:
            in_usage = False
            continue
        if line.stripped.lower().startswith("usage"):
            in_usage = True
            continue
        if in_usage:
            continue
        if line.kind in (
            LineKind.SECTION_HEADER,
            LineKind.FLAG,
            LineKind.FLAG_ONLY,
            LineKind.SUBCOMMAND,
        ):
            return ""
        if line.stripped.endswith(":"):
            return ""
        if line.indent <= MAX_HEADER_INDENT:
            return truncate_description(_first_sentence(line.stripped))
    return ""


HELP_FLAGS: Final[tuple[str, ...]] = ("--help", "-h")

# Keeps programs like git from blocking on a pager or a credential prompt.
SANDBOX_ENV: Final[dict[str, str]] = {
    "PAGER": "cat",
    "GIT_PAGER": "cat",
    "MANPAGER": "cat",
    "MAN_KEEP_FORMATTING": "",
    "TERM": "dumb",
    "GIT_TERMINAL_PROMPT": "0",
}

OVERSTRIKE_RE: Final = re.compile(r".\x08")


def _sandbox_env() -> dict[str, str]:
    return {**os.environ, **SANDBOX_ENV}


def _subcommand_tokens(subcommand: SubcommandPath | None) -> list[str]:
    return list(subcommand or ())


def _command_exists(*, command: str) -> bool:
    if not command:
        return False
    if "/" in command or "\\" in command:
        path = Path(command).expanduser()
        return path.is_file() and os.access(path, os.X_OK)
    return shutil.which(command) is not None


def get_help_text(
    *,
    command: str,
    subcommand: SubcommandPath | None = None,
    timeout_s: int = DEFAULT_TIMEOUT_S,
) -> str | None:
    """
    Get combined stdout+stderr of `command [subcommand...] --help`.

    Falls back to `-h` when `--help` prints nothing. A timeout counts as no
    output.
    """
    base_cmd = [command, *_subcommand_tokens(subcommand)]

    for help_flag in HELP_FLAGS:
        cmd = [*base_cmd, help_flag]
        _debug(f"run: {shlex.join(cmd)}", level=2)
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=timeout_s,
                env=_sandbox_env(),
                check=False,
            )
        except subprocess.TimeoutExpired:
            _debug(f"timed out after {timeout_s}s: {shlex.join(cmd)}")
            continue
        except (FileNotFoundError, PermissionError):
            _debug(f"cannot execute: {shlex.join(cmd)}")
            continue

        output = result.stdout or ""
        if output.strip():
            _debug(f"{shlex.join(cmd)}: {len(output)} chars", level=2)
            return output

    return None


def _is_man_error_output(*, text: str) -> bool:
    # Some man implementations write "No manual entry for ..." to stdout.
    # Treat short error messages as missing docs so we can fall back to --help.
    if not text or not text.strip():
        return True
    if len(text) > 300:
        return False
    lowered = text.strip().lower()
    patterns = [
        "no manual entry",
        "no entry for",
        "nothing appropriate",
        "man: no entry",
        "not found",
    ]
    return any(pat in lowered for pat in patterns)


def get_man_text(
    *,
    command: str,
    subcommand: SubcommandPath | None = None,
    timeout_s: int = DEFAULT_TIMEOUT_S,
) -> str | None:
    """
    Get man page text for a command.

    Uses `col -bx` to strip overstrike formatting and expand tabs. Plain `man`
    output is only read when `col` or `sh` is unavailable.
    """
    # Build man page name (git-commit for git commit, etc.)
    sub_tokens = _subcommand_tokens(subcommand)
    man_page = f"{command}-{'-'.join(sub_tokens)}" if sub_tokens else command

    if shutil.which("col") is not None:
        try:
            result = subprocess.run(
                ["sh", "-c", f"man {shlex.quote(man_page)} 2>/dev/null | col -bx"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout_s,
                env=_sandbox_env(),
                check=False,
            )
        except subprocess.TimeoutExpired:
            _debug(f"timed out after {timeout_s}s: man {man_page}")
            return None
        except FileNotFoundError:
            _debug(f"cannot run sh for man {man_page}")
        else:
            if result.returncode == 0 and not _is_man_error_output(
                text=result.stdout or ""
            ):
                return result.stdout
            return None

    # Fallback: no col available, strip overstrike ourselves
    try:
        result = subprocess.run(
            ["man", man_page],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout_s,
            env=_sandbox_env(),
            check=False,
        )
        if result.returncode == 0 and result.stdout:
            text = OVERSTRIKE_RE.sub("", result.stdout).expandtabs()
            if not _is_man_error_output(text=text):
                return text
    except (subprocess.TimeoutExpired, FileNotFoundError):
        _debug(f"man {man_page} failed")

    return None


class HelpProvider(Protocol):
    def get_help_text(
        self, *, command: str, subcommand: SubcommandPath | None
    ) -> str | None: ...

    def get_man_text(
        self, *, command: str, subcommand: SubcommandPath | None
    ) -> str | None: ...


@dataclass(frozen=True, slots=True)
class DefaultHelpProvider:
    timeout_s: int = DEFAULT_TIMEOUT_S

    def get_help_text(
        self, *, command: str, subcommand: SubcommandPath | None
    ) -> str | None:
        return get_help_text(
            command=command, subcommand=subcommand, timeout_s=self.timeout_s
        )

    def get_man_text(
        self, *, command: str, subcommand: SubcommandPath | None
    ) -> str | None:
        return get_man_text(
            command=command, subcommand=subcommand, timeout_s=self.timeout_s
        )


@dataclass(frozen=True, slots=True)
class HelpPage:
    """Everything extracted from one `--help` invocation."""

    text: str
    summary: str
    flags: list[Flag]
    entries: list[SubcommandEntry]


@dataclass(frozen=True, slots=True)
class _HelpTask:
    path: SubcommandPath
    depth: int
    node: Command
    ancestor_texts: tuple[str, ...] = ()


def _path_label(command: str, subcommand: SubcommandPath | None) -> str:
    return " ".join([command, *(subcommand or ())])


def parse_help_text(text: str) -> HelpPage:
    lines = text.splitlines()
    return HelpPage(
        text=text,
        summary=extract_help_summary(lines),
        flags=extract_flags(lines),
        entries=extract_subcommands(lines, strict=False),
    )


def parse_man_text(*, command: str, text: str) -> Command:
    lines = text.splitlines()
    return Command(
        name=command,
        description=extract_man_summary(lines),
        flags=extract_flags(lines),
        subcommands=[
            Command(name=entry.name, description=entry.description)
            for entry in extract_subcommands(lines, strict=True)
        ],
    )


def parse_man_page(*, help_provider: HelpProvider, command: str) -> Command:
    text = help_provider.get_man_text(command=command, subcommand=None)
    if not text or not text.strip():
        raise SourceUnavailable(f"No man page found for command: {command}")
    _debug(f"man {command}: {len(text)} chars", level=2)
    return parse_man_text(command=command, text=text)


def read_help_page(
    *,
    help_provider: HelpProvider,
    command: str,
    subcommand: SubcommandPath = (),
    depth: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> HelpPage:
    """Run `--help` for one node of the tree and extract its records."""
    if depth > max_depth:
        raise DepthExceeded(
            f"{_path_label(command, subcommand)} is {depth} levels deep (max {max_depth})"
        )
    text = help_provider.get_help_text(command=command, subcommand=subcommand or None)
    if not text or not text.strip():
        raise SourceUnavailable(
            f"No help output found for: {_path_label(command, subcommand)}"
        )
    return parse_help_text(text)


def parse_help_tree(
    *,
    help_provider: HelpProvider,
    command: str,
    subcommand: SubcommandPath = (),
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Command:
    """Build a command tree by walking `--help` output.

    The root must produce help text (SourceUnavailable otherwise). Below the
    root a failing subcommand is kept with the description from its parent's
    listing. Subcommands listed at `max_depth` are not created.
    """
    root_page = read_help_page(
        help_provider=help_provider,
        command=command,
        subcommand=subcommand,
        max_depth=max_depth,
    )
    return _walk_help_tree(
        help_provider=help_provider,
        command=command,
        root_page=root_page,
        subcommand=subcommand,
        max_depth=max_depth,
    )


def _walk_help_tree(
    *,
    help_provider: HelpProvider,
    command: str,
    root_page: HelpPage,
    subcommand: SubcommandPath = (),
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Command:
    root = Command(name=subcommand[-1] if subcommand else command)
    stack = [_HelpTask(path=subcommand, depth=0, node=root)]

    while stack:
        task = stack.pop()
        if task.node is root:
            page = root_page
        else:
            try:
                page = read_help_page(
                    help_provider=help_provider,
                    command=command,
                    subcommand=task.path,
                    depth=task.depth,
                    max_depth=max_depth,
                )
            except (SourceUnavailable, DepthExceeded) as e:
                _debug(f"keeping {task.node.name} without details: {e}")
                continue

        if page.text in task.ancestor_texts:
            # Unknown arguments ignored: the program printed a parent's help again.
            _debug(f"{_path_label(command, task.path)} repeats a parent's help")
            continue

        task.node.flags = page.flags
        if not task.node.description:
            task.node.description = page.summary

        if not page.entries:
            continue
        if task.depth >= max_depth:
            _debug(
                f"not descending below {_path_label(command, task.path)} "
                f"(max depth {max_depth})"
            )
            continue

        children: list[_HelpTask] = []
        for entry in page.entries:
            child = Command(name=entry.name, description=entry.description)
            task.node.subcommands.append(child)
            children.append(
                _HelpTask(
                    path=(*task.path, entry.name),
                    depth=task.depth + 1,
                    node=child,
                    ancestor_texts=(*task.ancestor_texts, page.text),
                )
            )
        # Depth-first, in listing order.
        stack.extend(reversed(children))

    return root


def merge_subcommands(dst: Command, src: Command) -> list[str]:
    """Merge `src`'s subcommands into `dst`.

    Names already in `dst` keep their fields; empty ones are filled from `src`.
    Names only in `src` are appended in `src`'s order. Returns the names both
    sides had in common.
    """
    shared: list[str] = []
    for sub in src.subcommands:
        existing = dst.find_subcommand(sub.name)
        if existing is None:
            dst.subcommands.append(sub)
            continue
        shared.append(sub.name)
        if not existing.description:
            existing.description = sub.description
        if not existing.flags:
            existing.flags = list(sub.flags)
        if not existing.subcommands:
            existing.subcommands = list(sub.subcommands)
    return shared


def _backfill_from_help(
    *,
    help_provider: HelpProvider,
    command: str,
    sub: Command,
    max_depth: int,
    root_text: str | None = None,
) -> None:
    try:
        page = read_help_page(
            help_provider=help_provider,
            command=command,
            subcommand=(sub.name,),
            depth=1,
            max_depth=max_depth,
        )
    except (SourceUnavailable, DepthExceeded) as e:
        _debug(f"no --help backfill for {command} {sub.name}: {e}")
        return
    if page.text == root_text:
        _debug(f"{command} {sub.name} repeats the root help")
        return
    sub.flags = page.flags
    if not sub.description:
        sub.description = page.summary


def build_command_tree(
    *,
    help_provider: HelpProvider,
    command: str,
    max_depth: int = DEFAULT_MAX_DEPTH,
    source: str = "auto",
) -> Command:
    """Build the command tree for `command` from its man page and `--help`.

    source: "auto" (man page first, `--help` fills gaps), "man" or "help".
    Raises NoCompletionsFound when nothing usable was extracted.
    """
    if source not in ("auto", "man", "help"):
        raise ValueError(f"unknown source: {source}")

    man_cmd: Command | None = None
    if source in ("auto", "man"):
        try:
            man_cmd = parse_man_page(help_provider=help_provider, command=command)
        except SourceUnavailable as e:
            _debug(str(e))
        if man_cmd is not None and max_depth < 1:
            man_cmd.subcommands.clear()

    if man_cmd is not None and man_cmd.flags:
        _debug(
            f"man {command}: {len(man_cmd.flags)} flags, "
            f"{len(man_cmd.subcommands)} subcommands"
        )
        if source == "man":
            return man_cmd

        man_subcommands = list(man_cmd.subcommands)
        shared: list[str] = []
        root_text: str | None = None
        try:
            root_page = read_help_page(
                help_provider=help_provider, command=command, max_depth=max_depth
            )
        except SourceUnavailable as e:
            _debug(str(e))
        else:
            root_text = root_page.text
            help_cmd = _walk_help_tree(
                help_provider=help_provider,
                command=command,
                root_page=root_page,
                max_depth=max_depth,
            )
            shared = merge_subcommands(man_cmd, help_cmd)
            if not man_cmd.description:
                man_cmd.description = help_cmd.description

        for sub in man_subcommands:
            if sub.flags or sub.name in shared:
                continue
            _backfill_from_help(
                help_provider=help_provider,
                command=command,
                sub=sub,
                max_depth=max_depth,
                root_text=root_text,
            )
        return man_cmd

    if source == "man":
        raise NoCompletionsFound(f"No flags found in the man page for: {command}")

    _debug(f"falling back to --help for {command}")
    try:
        tree = parse_help_tree(
            help_provider=help_provider, command=command, max_depth=max_depth
        )
    except SourceUnavailable as e:
        if man_cmd is not None and man_cmd.subcommands:
            return man_cmd
        raise NoCompletionsFound(
            f"No man page or --help output found for: {command}"
        ) from e

    if not tree.flags and not tree.subcommands:
        if man_cmd is not None and man_cmd.subcommands:
            return man_cmd
        raise NoCompletionsFound(f"No flags or subcommands found for: {command}")
    if man_cmd is not None and not tree.description:
        tree.description = man_cmd.description
    return tree


def _read_input(path: str | None) -> str:
    if not path or path == "-":
        return sys.stdin.read()
    return Path(path).expanduser().read_text(errors="replace")


def _tree_stats(command: Command) -> tuple[int, int]:
    """(number of subcommands, number of flags) in the whole tree."""
    subcommands = len(command.subcommands)
    flags = len(command.flags)
    for sub in command.subcommands:
        sub_count, flag_count = _tree_stats(sub)
        subcommands += sub_count
        flags += flag_count
    return subcommands, flags


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Infer a program's flags and subcommands from its man page and --help",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="action")

    # scan command
    scan_p = subparsers.add_parser(
        "scan", help="Build the command tree for a program and print it as JSON"
    )
    scan_p.add_argument("program", help="Program to scan")
    scan_p.add_argument(
        "--max-depth",
        type=int,
        default=_max_depth(),
        help="Maximum subcommand depth to scan (default from config)",
    )
    scan_p.add_argument(
        "--timeout-s",
        type=int,
        default=_timeout_s(),
        help="Timeout for each man/--help invocation",
    )
    scan_p.add_argument(
        "--source",
        default="auto",
        choices=["auto", "man", "help"],
        help="Documentation source to use (default: man page, then --help)",
    )

    # extract command
    extract_p = subparsers.add_parser(
        "extract", help="Run the flag/subcommand extractors over captured text"
    )
    extract_p.add_argument("file", nargs="?", help="Text file (default: stdin)")
    extract_p.add_argument(
        "--strict",
        action="store_true",
        help="Only trust explicit COMMANDS sections (man page mode)",
    )
    extract_p.add_argument(
        "--kind", default="all", choices=["all", "flags", "subcommands"]
    )

    # classify command
    classify_p = subparsers.add_parser(
        "classify", help="Show how each line of captured text is classified"
    )
    classify_p.add_argument("file", nargs="?", help="Text file (default: stdin)")

    # check command
    check_p = subparsers.add_parser("check", help="Validate a saved command tree")
    check_p.add_argument("file", help="JSON file produced by `scan`")
    check_p.add_argument("--command", help="Expected root command name")

    args = parser.parse_args(argv)

    if args.action is None:
        parser.print_usage(sys.stderr)
        return 2

    if args.action == "scan":
        if not _command_exists(command=args.program):
            print(f"Command not found: {args.program}", file=sys.stderr)
            return 1
        help_provider = DefaultHelpProvider(timeout_s=max(1, args.timeout_s))
        try:
            tree = build_command_tree(
                help_provider=help_provider,
                command=args.program,
                max_depth=max(0, args.max_depth),
                source=args.source,
            )
        except NoCompletionsFound as e:
            print(
                f"Could not extract completions for {args.program!r}: {e}",
                file=sys.stderr,
            )
            print("Tip: use an AI-backed generator as a fallback", file=sys.stderr)
            return 1
        print(json.dumps(command_tree_to_dict(tree), indent=2, sort_keys=True))
        return 0

    elif args.action == "extract":
        lines = _read_input(args.file).splitlines()
        payload: dict[str, object] = {}
        if args.kind in ("all", "flags"):
            payload["flags"] = [flag_to_dict(f) for f in extract_flags(lines)]
        if args.kind in ("all", "subcommands"):
            payload["subcommands"] = [
                {"name": e.name, "description": e.description}
                for e in extract_subcommands(lines, strict=args.strict)
            ]
        print(json.dumps(payload, indent=2))
        return 0

    elif args.action == "classify":
        for line in classify_lines(_read_input(args.file).splitlines()):
            print(f"{line.kind.value:<18} {line.indent:>3}  {line.text}")
        return 0

    elif args.action == "check":
        try:
            data = json.loads(Path(args.file).read_text())
            tree = validate_command_tree(payload=data, command=args.command)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            print(f"Invalid command tree: {e}", file=sys.stderr)
            return 1
        subcommands, flags = _tree_stats(tree)
        print(
            f"{tree.name}: {subcommands} subcommands, {flags} flags, "
            f"depth {tree.depth()}"
        )
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
