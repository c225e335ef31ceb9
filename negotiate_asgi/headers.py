"""
HTTP list-header splitting and value parsing utilities.

Handles headers that follow the list syntax of RFC 7230 section 7, such as
Accept and Accept-Encoding. Headers with a different grammar (e.g.
User-Agent) are not supported.
"""
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from starlette.datastructures import Headers
from starlette.types import Scope

logger = logging.getLogger(__name__)

# Weight used when no (valid) "q" attribute was given
DEFAULT_WEIGHT = 1.0


def _parse_qvalue(raw: str | None) -> float | None:
    """
    Parses a "q" attribute value. Returns None if it is missing or is not a
    finite number.
    """
    if raw is None:
        return None
    try:
        q_val = float(raw)
    except ValueError:
        return None
    if not math.isfinite(q_val):
        return None
    # Negative weights are as unacceptable as q=0
    return max(q_val, 0.0)


@dataclass(frozen=True)
class ValueTuple:
    """
    A single header value such as ``text/html;level=1;q=0.5``.

    ``attributes`` holds every ``key=value`` segment as strings, including
    ``q``. Keys and values compare by plain string equality.

    ``weight`` may be left as None when constructing; it is then taken from
    the ``q`` attribute, or defaults to 1.0 if that is missing or
    unparsable. After construction it is always a float of at least 0, and
    negative weights are stored as 0.
    """

    name: str
    attributes: Mapping[str, str] = field(default_factory=dict, hash=False)
    weight: float | None = None  # None only as a constructor default

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "attributes", MappingProxyType(dict(self.attributes))
        )
        if self.weight is None:
            q_val = _parse_qvalue(self.attributes.get("q"))
            object.__setattr__(
                self, "weight", DEFAULT_WEIGHT if q_val is None else q_val
            )
        elif self.weight < 0:
            object.__setattr__(self, "weight", 0.0)

    @property
    def has_explicit_weight(self) -> bool:
        """True if the value carried a usable "q" attribute."""
        return _parse_qvalue(self.attributes.get("q")) is not None

    def __str__(self) -> str:
        params = "".join(f";{k}={v}" for k, v in self.attributes.items())
        return f"{self.name}{params}"


def split_header_value(*values: str) -> list[str]:
    """
    Splits one or more comma-delimited header values into trimmed tokens.

    Repeated instances of a header should be passed in arrival order; their
    items are concatenated in that order. Empty items are dropped.
    """
    tokens: list[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part:
                tokens.append(part)
    return tokens


def get_header_values(source: Headers | Scope, name: str) -> list[str]:
    """
    Returns the split tokens of every instance of header ``name``.

    ``source`` may be a Starlette ``Headers`` instance or a raw ASGI scope.
    """
    headers = source if isinstance(source, Headers) else Headers(scope=source)
    return split_header_value(*headers.getlist(name))


def parse_value_tuple(token: str) -> ValueTuple:
    """
    Parses a single token (e.g., "foo;a=1;b=2") into a ValueTuple.

    Attribute segments without "=" are dropped.
    """
    components = token.split(";")
    name = components[0].strip()

    attributes: dict[str, str] = {}
    for param in components[1:]:
        key, sep, value = param.partition("=")
        key = key.strip()
        if not sep or not key:
            logger.debug("Dropping malformed attribute %r in %r", param, token)
            continue
        attributes[key] = value.strip()

    return ValueTuple(name, attributes)


def parse_header(*values: str) -> list[ValueTuple]:
    """Splits and parses raw header values, preserving their order."""
    return [parse_value_tuple(token) for token in split_header_value(*values)]


def sort_by_qvalue(values: Iterable[ValueTuple]) -> list[ValueTuple]:
    """
    Removes duplicate names and orders the rest by descending weight.

    The last occurrence of a name wins. Equal weights keep their input
    order. For example::

        [a;q=5, a;q=2, b;q=3] -> [b;q=3, a;q=2]
    """
    values = list(values)

    # 1. Walk backwards so the last occurrence of each name survives
    seen: set[str] = set()
    survivors: list[ValueTuple] = []
    for value in reversed(values):
        if value.name in seen:
            continue
        seen.add(value.name)
        survivors.append(value)
    survivors.reverse()

    # 2. Stable sort, highest preference first
    survivors.sort(key=lambda v: -v.weight)
    return survivors
