"""
Layered configuration in the GNUnet INI dialect.

A store is built from a base source plus any number of override sources;
later sources win key by key. Syntax:

    # comment          ; comment          % comment
    [section]
    KEY = value
    OTHER = $KEY/sub     ${KEY}     ${MISSING:-fallback}
    @INLINE@ other.conf

Section names and keys are case-insensitive. ``$NAME`` references are
expanded once, after all sources are merged, looking ``NAME`` up in the same
section, then in ``[PATHS]``, then as ``SECTION_KEY``, then in the process
environment. Anything unresolved, unterminated or circular fails the load.
"""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Iterable, NamedTuple, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict

from pygnunet.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "/usr/share/gnunet"
DEFAULT_USER_CONFIG = "~/.config/gnunet.conf"
PATHS_SECTION = "paths"

_MAX_INLINE_DEPTH = 16
_SECTION_RE = re.compile(r"^\[([^\[\]]*)\]$")
_INLINE = "@inline@"

_TRUE = frozenset({"YES", "TRUE", "ON", "1"})
_FALSE = frozenset({"NO", "FALSE", "OFF", "0"})

_SECOND = 1_000_000
_YEAR = 31_536_000_000_000
RELATIVE_TIME_UNITS: dict[str, int] = {
    "us": 1,
    "ms": 1000,
    "s": _SECOND,
    '"': _SECOND,
    "m": 60 * _SECOND,
    "min": 60 * _SECOND,
    "minutes": 60 * _SECOND,
    "'": 60 * _SECOND,
    "h": 3600 * _SECOND,
    "d": 86400 * _SECOND,
    "day": 86400 * _SECOND,
    "days": 86400 * _SECOND,
    "week": 7 * 86400 * _SECOND,
    "weeks": 7 * 86400 * _SECOND,
    "year": _YEAR,
    "years": _YEAR,
    "a": _YEAR,
}

PathLike = Union[str, "os.PathLike[str]"]


def parse_relative_time(text: str) -> Optional[int]:
    """Parse ``"3 min 10 s"`` style durations into microseconds.

    ``FOREVER`` yields None. Raises ValueError on anything else that does not
    pair every number with a known unit.
    """
    if text.strip().upper() == "FOREVER":
        return None
    tokens = text.split()
    if not tokens:
        raise ValueError("empty duration")
    if len(tokens) % 2:
        raise ValueError(f"missing unit in duration {text!r}")
    total = 0
    for amount, unit in zip(tokens[::2], tokens[1::2]):
        if not amount.isdigit():
            raise ValueError(f"{amount!r} is not a number")
        if unit not in RELATIVE_TIME_UNITS:
            raise ValueError(f"unknown time unit {unit!r}")
        total += int(amount) * RELATIVE_TIME_UNITS[unit]
    return total


class ConfigValue(BaseModel):
    """One configuration value, remembered with where it came from."""

    model_config = ConfigDict(frozen=True)

    raw: str
    section: str = ""
    key: str = ""
    source: Optional[str] = None
    line: Optional[int] = None

    def __str__(self) -> str:
        return self.raw

    def _error(self, message: str) -> ConfigError:
        return ConfigError(f"[{self.section}] {self.key}: {message}", self.source, self.line)

    def as_int(self) -> int:
        try:
            return int(self.raw.strip())
        except ValueError:
            raise self._error(f"{self.raw!r} is not an integer")

    def as_bool(self) -> bool:
        word = self.raw.strip().upper()
        if word in _TRUE:
            return True
        if word in _FALSE:
            return False
        raise self._error(f"{self.raw!r} is not YES or NO")

    def as_duration(self) -> timedelta:
        """Relative time; ``FOREVER`` maps to ``timedelta.max``."""
        try:
            micros = parse_relative_time(self.raw)
        except ValueError as e:
            raise self._error(str(e))
        if micros is None:
            return timedelta.max
        return timedelta(microseconds=micros)

    def as_path(self) -> Path:
        return Path(self.raw).expanduser()


class _RawEntry(NamedTuple):
    value: str
    source: str
    line: int


_RawTable = dict[str, dict[str, _RawEntry]]


def _read_source(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(f"not valid UTF-8: {e}", str(path))
    except OSError as e:
        raise ConfigError(f"cannot read configuration file: {e.strerror or e}", str(path))


def _parse_into(table: _RawTable, text: str, source: str, base_dir: Optional[Path], depth: int = 0) -> None:
    section = ""
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped[0] in "#;%":
            continue

        if stripped.lower().startswith(_INLINE):
            target = stripped[len(_INLINE):].strip()
            if not target:
                raise ConfigError("@INLINE@ without a file name", source, number)
            if depth >= _MAX_INLINE_DEPTH:
                raise ConfigError(f"@INLINE@ nested deeper than {_MAX_INLINE_DEPTH} levels", source, number)
            path = Path(target).expanduser()
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            logger.debug("Inlining %s from %s:%d", path, source, number)
            _parse_into(table, _read_source(path), str(path), path.parent, depth + 1)
            continue

        if stripped.startswith("["):
            match = _SECTION_RE.match(stripped)
            if not match or not match.group(1).strip():
                raise ConfigError(f"malformed section header {stripped!r}", source, number)
            section = match.group(1).strip().lower()
            table.setdefault(section, {})
            continue

        key, sep, value = stripped.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(f"syntax error in {stripped!r}", source, number)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        table.setdefault(section, {})[key.upper()] = _RawEntry(value, source, number)


def _is_name_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


class _Resolver:
    """Expands ``$`` references across the merged table, memoised, cycle-checked."""

    def __init__(self, table: _RawTable) -> None:
        self._table = table
        self._done: dict[tuple[str, str], str] = {}
        self._active: list[tuple[str, str]] = []

    def resolve(self) -> dict[str, dict[str, ConfigValue]]:
        out: dict[str, dict[str, ConfigValue]] = {}
        for section, entries in self._table.items():
            out[section] = {
                key: ConfigValue(raw=self.value(section, key), section=section, key=key,
                                 source=entry.source, line=entry.line)
                for key, entry in entries.items()
            }
        return out

    def value(self, section: str, key: str) -> str:
        ident = (section, key)
        if ident in self._done:
            return self._done[ident]
        entry = self._table[section][key]
        if ident in self._active:
            loop = self._active[self._active.index(ident):] + [ident]
            chain = " -> ".join(f"[{s}] {k}" for s, k in loop)
            raise ConfigError(f"substitution cycle: {chain}", entry.source, entry.line)
        self._active.append(ident)
        try:
            result = self._expand(entry.value, section, entry)
        finally:
            self._active.pop()
        self._done[ident] = result
        return result

    def _lookup(self, name: str, section: str) -> Optional[str]:
        key = name.upper()
        if key in self._table.get(section, {}):
            return self.value(section, key)
        if key in self._table.get(PATHS_SECTION, {}):
            return self.value(PATHS_SECTION, key)
        for i, ch in enumerate(name):
            if ch == "_" and 0 < i < len(name) - 1:
                other, other_key = name[:i].lower(), name[i + 1:].upper()
                if other_key in self._table.get(other, {}):
                    return self.value(other, other_key)
        return os.environ.get(name)

    def _fail(self, entry: _RawEntry, message: str, column: int) -> ConfigError:
        return ConfigError(f"{message} (column {column + 1})", entry.source, entry.line,
                           details={"column": column + 1})

    def _expand(self, text: str, section: str, entry: _RawEntry) -> str:
        out: list[str] = []
        i, n = 0, len(text)
        while i < n:
            if text[i] != "$":
                out.append(text[i])
                i += 1
                continue
            start = i
            i += 1
            if i >= n:
                raise self._fail(entry, "unterminated substitution: '$' at end of value", start)

            if text[i] != "{":
                j = i
                while j < n and _is_name_char(text[j]):
                    j += 1
                name = text[i:j]
                if not name:
                    raise self._fail(entry, "'$' is not followed by a variable name", start)
                resolved = self._lookup(name, section)
                if resolved is None:
                    raise self._fail(entry, f"unresolved reference ${name}", start)
                out.append(resolved)
                i = j
                continue

            i += 1
            j = i
            while j < n and _is_name_char(text[j]):
                j += 1
            name = text[i:j]
            if j >= n:
                raise self._fail(entry, "unterminated substitution: missing '}'", start)
            if not name:
                raise self._fail(entry, "empty variable name in '${}'", start)
            if text[j] == "}":
                resolved = self._lookup(name, section)
                if resolved is None:
                    raise self._fail(entry, f"unresolved reference ${{{name}}}", start)
                out.append(resolved)
                i = j + 1
            elif text.startswith(":-", j):
                depth, k = 0, j + 2
                while k < n:
                    if text[k] == "{":
                        depth += 1
                    elif text[k] == "}":
                        if depth == 0:
                            break
                        depth -= 1
                    k += 1
                if k >= n:
                    raise self._fail(entry, "unterminated substitution: missing '}'", start)
                resolved = self._lookup(name, section)
                if resolved is None:
                    resolved = self._expand(text[j + 2:k], section, entry)
                out.append(resolved)
                i = k + 1
            else:
                raise self._fail(entry, f"unexpected {text[j]!r} in '${{...}}'", j)
        return "".join(out)


class ConfigStore:
    """Merged, fully expanded configuration. Read-only once built."""

    def __init__(self, data: Optional[dict[str, dict[str, ConfigValue]]] = None):
        self._data = data or {}

    @classmethod
    def _build(cls, table: _RawTable) -> "ConfigStore":
        return cls(_Resolver(table).resolve())

    @classmethod
    def load(cls, paths: Iterable[PathLike]) -> "ConfigStore":
        """Load the base file followed by override files, in order."""
        table: _RawTable = {}
        for p in paths:
            path = Path(p).expanduser()
            logger.debug("Loading configuration from %s", path)
            _parse_into(table, _read_source(path), str(path), path.parent)
        return cls._build(table)

    @classmethod
    def from_text(cls, *texts: str, names: Optional[Sequence[str]] = None) -> "ConfigStore":
        """Like load(), from in-memory sources."""
        table: _RawTable = {}
        for index, text in enumerate(texts):
            name = names[index] if names and index < len(names) else f"<text:{index}>"
            _parse_into(table, text, name, None)
        return cls._build(table)

    @classmethod
    def default(cls, user_config: Optional[PathLike] = None) -> "ConfigStore":
        """Installation defaults from ``config.d`` layered under the user's file."""
        data_dir = Path(os.environ.get("GNUNET_DATA_DIR", DEFAULT_DATA_DIR))
        paths: list[Path] = sorted((data_dir / "config.d").glob("*.conf"))

        explicit = user_config or os.environ.get("GNUNET_CONFIG")
        user_path = Path(explicit or DEFAULT_USER_CONFIG).expanduser()
        if user_path.is_file():
            paths.append(user_path)
        elif explicit:
            raise ConfigError("configuration file not found", str(user_path))

        if not paths:
            logger.warning("No GNUnet configuration found under %s or at %s", data_dir, user_path)
        return cls.load(paths)

    def get(self, section: str, key: str) -> Optional[ConfigValue]:
        """The value, or None when the key is absent (an empty value is not absent)."""
        return self._data.get(section.lower(), {}).get(key.upper())

    def get_with_default(self, section: str, key: str, fallback: Union[str, int, ConfigValue]) -> ConfigValue:
        value = self.get(section, key)
        if value is not None:
            return value
        if isinstance(fallback, ConfigValue):
            return fallback
        return ConfigValue(raw=str(fallback), section=section.lower(), key=key.upper())

    def require(self, section: str, key: str) -> ConfigValue:
        value = self.get(section, key)
        if value is None:
            raise ConfigError(f"missing required key [{section.lower()}] {key.upper()}")
        return value

    def has_section(self, section: str) -> bool:
        return section.lower() in self._data

    def sections(self) -> list[str]:
        return sorted(self._data)

    def keys(self, section: str) -> list[str]:
        return sorted(self._data.get(section.lower(), {}))

    def __repr__(self) -> str:
        return f"ConfigStore(sections={len(self._data)})"
