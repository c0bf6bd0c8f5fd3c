"""
Parameter binding.

Scans statement text for placeholders and resolves a caller's parameters
into the ordered slot values the engine binds. Slot numbering follows the
engine's rules: an unlabelled ``?`` takes the next number after the
largest seen so far, ``?N`` is slot N, and each distinct named
placeholder (``:x``, ``$x``, ``@x``; the prefix is part of the name) gets
the next number on first use and reuses it afterwards.

Values are always bound, never interpolated into the SQL text.
"""

import string
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from yeslite.errors import MissingParameter, ParameterCountMismatch
from yeslite.record import to_engine


# Largest ?NNN the engine accepts (SQLITE_MAX_VARIABLE_NUMBER)
MAX_PARAMETER_NUMBER = 32766

NAMED_PREFIXES = (':', '$', '@')

_IDENT_CHARS = frozenset(string.ascii_letters + string.digits + '_$')
_DIGITS = frozenset(string.digits)


def _is_ident_char(ch: str) -> bool:
    return ch in _IDENT_CHARS or ord(ch) > 127


# ── Placeholders ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Positional:
    """A ``?`` (explicit=False) or ``?N`` (explicit=True) placeholder."""
    ordinal: int
    explicit: bool = False

    @property
    def literal(self) -> str:
        return f"?{self.ordinal}" if self.explicit else "?"


@dataclass(frozen=True)
class Named:
    """A ``:key``, ``$key`` or ``@key`` placeholder."""
    prefix: str
    key: str
    ordinal: int

    @property
    def literal(self) -> str:
        return f"{self.prefix}{self.key}"


Parameter = Union[Positional, Named]


# ── Parameter sources ────────────────────────────────────────────


@dataclass(frozen=True)
class PositionalSource:
    """Parameters supplied as an ordered sequence."""
    values: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class NamedSource:
    """Parameters supplied as a name -> value mapping."""
    values: Mapping


ParameterSource = Union[PositionalSource, NamedSource]


def parameter_source(params: Any) -> ParameterSource:
    """
    Classify caller parameters once per execution.

    Args:
        params: None, a mapping, a list/tuple, or a single scalar value

    Returns:
        PositionalSource or NamedSource
    """
    if isinstance(params, (PositionalSource, NamedSource)):
        return params
    if params is None:
        return PositionalSource(())
    if isinstance(params, Mapping):
        return NamedSource(params)
    if isinstance(params, Sequence) and not isinstance(params, (str, bytes, bytearray)):
        return PositionalSource(tuple(params))
    # A lone scalar is shorthand for a one-element sequence
    return PositionalSource((params,))


# ── Scanning ─────────────────────────────────────────────────────


def _placeholders(sql: str) -> Iterator[Tuple[str, str]]:
    """Yield (marker, label) for every placeholder outside literals and comments."""
    i, n = 0, len(sql)
    while i < n:
        ch = sql[i]
        if ch in "'\"`":
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            i = j + 1
        elif ch == '[':
            j = sql.find(']', i + 1)
            i = n if j < 0 else j + 1
        elif sql.startswith('--', i):
            j = sql.find('\n', i)
            i = n if j < 0 else j + 1
        elif sql.startswith('/*', i):
            j = sql.find('*/', i + 2)
            i = n if j < 0 else j + 2
        elif ch == '?':
            j = i + 1
            while j < n and sql[j] in _DIGITS:
                j += 1
            yield '?', sql[i + 1:j]
            i = j
        elif ch in NAMED_PREFIXES:
            j = i + 1
            while j < n and _is_ident_char(sql[j]):
                j += 1
            if j > i + 1:
                yield ch, sql[i + 1:j]
            i = max(j, i + 1)
        elif _is_ident_char(ch):
            # Skip whole words so a '$' inside an identifier is not a marker
            j = i + 1
            while j < n and _is_ident_char(sql[j]):
                j += 1
            i = j
        else:
            i += 1


def is_blank(sql: str) -> bool:
    """Return True if the text holds only whitespace, comments and semicolons."""
    i, n = 0, len(sql)
    while i < n:
        if sql[i].isspace() or sql[i] == ';':
            i += 1
        elif sql.startswith('--', i):
            j = sql.find('\n', i)
            i = n if j < 0 else j + 1
        elif sql.startswith('/*', i):
            j = sql.find('*/', i + 2)
            i = n if j < 0 else j + 2
        else:
            return False
    return True


class ParameterLayout:
    """
    The placeholders of one statement, grouped by engine slot.

    Attributes:
        parameters: Placeholders in source order
        count: Number of engine slots (the largest slot number)
    """

    def __init__(self, parameters: List[Parameter], count: int):
        self.parameters = parameters
        self.count = count
        self.slots: Dict[int, List[Parameter]] = {}
        for param in parameters:
            self.slots.setdefault(param.ordinal, []).append(param)

    @classmethod
    def scan(cls, sql: str) -> 'ParameterLayout':
        """Build the layout for a statement's source text."""
        parameters: List[Parameter] = []
        names: Dict[str, int] = {}
        count = 0

        for marker, label in _placeholders(sql):
            if marker == '?':
                if label:
                    ordinal = int(label)
                    if ordinal < 1 or ordinal > MAX_PARAMETER_NUMBER:
                        raise ParameterCountMismatch(
                            f"Parameter ?{label} is outside 1..{MAX_PARAMETER_NUMBER}"
                        )
                    count = max(count, ordinal)
                    parameters.append(Positional(ordinal, explicit=True))
                else:
                    count += 1
                    parameters.append(Positional(count))
            else:
                literal = marker + label
                if literal not in names:
                    count += 1
                    names[literal] = count
                parameters.append(Named(marker, label, names[literal]))

        return cls(parameters, count)

    @property
    def is_named(self) -> bool:
        return any(isinstance(p, Named) for p in self.parameters)

    def null_bindings(self) -> Tuple[None, ...]:
        """Bindings that satisfy every slot with NULL."""
        return (None,) * self.count

    def bind(self, params: Any) -> Tuple[Any, ...]:
        """
        Resolve caller parameters into engine slot values.

        Args:
            params: Anything accepted by parameter_source()

        Returns:
            Tuple of engine values, one per slot

        Raises:
            ParameterCountMismatch: Positional input does not cover the slots
            MissingParameter: A placeholder has no entry in the mapping
            TypeMismatch: A value cannot be represented by the engine
        """
        source = parameter_source(params)

        if isinstance(source, PositionalSource):
            supplied = len(source.values)
            if supplied != self.count:
                raise ParameterCountMismatch(
                    f"Statement uses {self.count} parameter(s) but {supplied} were supplied"
                )
            return tuple(to_engine(value) for value in source.values)

        bound: List[Any] = []
        for ordinal in range(1, self.count + 1):
            params_in_slot = self.slots.get(ordinal)
            if not params_in_slot:
                # Gap left by an explicit ?N
                bound.append(None)
                continue
            bound.append(to_engine(_lookup(source.values, params_in_slot[0])))
        return tuple(bound)


def _lookup(mapping: Mapping, param: Parameter) -> Any:
    if isinstance(param, Named):
        for key in (param.literal, param.key):
            if key in mapping:
                return mapping[key]
    else:
        for key in (param.ordinal, f"?{param.ordinal}"):
            if key in mapping:
                return mapping[key]
    raise MissingParameter(f"Missing value for parameter {param.literal}")


def bind_parameters(sql: str, params: Any = None) -> Tuple[Any, ...]:
    """Scan sql and bind params in one call."""
    return ParameterLayout.scan(sql).bind(params)
