"""
Match predicates and specificity comparators used during negotiation.

A comparator receives the reference (server) value and two matching client
candidates, and returns a negative number if ``a`` should be preferred, a
positive number if ``b`` should be, and 0 if they are equivalent.
"""
from collections.abc import Callable
from dataclasses import dataclass

from negotiate_asgi.headers import ValueTuple

WILDCARD_TOKEN = "*"


def _cmp(a: float, b: float) -> int:
    return (a > b) - (a < b)


def _matched_params(reference: ValueTuple, value: ValueTuple) -> int:
    return sum(
        1
        for key, val in value.attributes.items()
        if key != "q" and reference.attributes.get(key) == val
    )


def parameter_match(server: ValueTuple, client: ValueTuple) -> bool:
    """
    True if every client attribute (other than "q") is present on the server
    value with the same value. The server may carry extra attributes.
    """
    return all(
        key in server.attributes and server.attributes[key] == val
        for key, val in client.attributes.items()
        if key != "q"
    )


def parameter_compare(reference: ValueTuple, a: ValueTuple, b: ValueTuple) -> int:
    """
    Prefers the candidate sharing more attributes with ``reference``, then
    the candidate with the higher weight.
    """
    c = _cmp(_matched_params(reference, b), _matched_params(reference, a))
    if c != 0:
        return c
    return _cmp(b.weight, a.weight)


def _segment_match(server: str, client: str) -> bool:
    return client == WILDCARD_TOKEN or server == client


def _segment_compare(a: str, b: str) -> int:
    # Exact segments sort before wildcards
    return _cmp(a == WILDCARD_TOKEN, b == WILDCARD_TOKEN)


def strict_value_match(server: ValueTuple, client: ValueTuple) -> bool:
    return server.name == client.name and parameter_match(server, client)


def wildcard_value_match(server: ValueTuple, client: ValueTuple) -> bool:
    # Only the client may generalize; a server "*" never matches
    return _segment_match(server.name, client.name) and parameter_match(server, client)


def wildcard_value_compare(reference: ValueTuple, a: ValueTuple, b: ValueTuple) -> int:
    c = _segment_compare(a.name, b.name)
    if c != 0:
        return c
    return parameter_compare(reference, a, b)


def split_media_range(name: str) -> tuple[str, str]:
    """Splits "type/subtype"; a missing subtype is returned as ""."""
    type_, _, subtype = name.partition("/")
    return type_, subtype


def media_range_value_match(server: ValueTuple, client: ValueTuple) -> bool:
    s_type, s_subtype = split_media_range(server.name)
    c_type, c_subtype = split_media_range(client.name)
    return (
        _segment_match(s_type, c_type)
        and _segment_match(s_subtype, c_subtype)
        and parameter_match(server, client)
    )


def media_range_value_compare(reference: ValueTuple, a: ValueTuple, b: ValueTuple) -> int:
    """
    Orders candidates ``type/subtype`` > ``type/*`` > ``*/subtype`` > ``*/*``,
    then by parameters.
    """
    a_type, a_subtype = split_media_range(a.name)
    b_type, b_subtype = split_media_range(b.name)

    c = _segment_compare(a_type, b_type)
    if c != 0:
        return c
    c = _segment_compare(a_subtype, b_subtype)
    if c != 0:
        return c
    return parameter_compare(reference, a, b)


@dataclass(frozen=True)
class MatchStrategy:
    """A match predicate paired with its specificity comparator."""

    name: str
    matches: Callable[[ValueTuple, ValueTuple], bool]
    compare: Callable[[ValueTuple, ValueTuple, ValueTuple], int]


STRICT = MatchStrategy("strict", strict_value_match, parameter_compare)
WILDCARD = MatchStrategy("wildcard", wildcard_value_match, wildcard_value_compare)
MEDIA_RANGE = MatchStrategy("media-range", media_range_value_match, media_range_value_compare)
