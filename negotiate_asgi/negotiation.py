"""
Content negotiation between client preferences and server capabilities.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from functools import cmp_to_key

from negotiate_asgi.headers import ValueTuple, sort_by_qvalue
from negotiate_asgi.matching import (
    MEDIA_RANGE,
    WILDCARD,
    WILDCARD_TOKEN,
    MatchStrategy,
    split_media_range,
)

logger = logging.getLogger(__name__)

IDENTITY = "identity"


@dataclass(frozen=True)
class NegotiationPolicy:
    """
    Default weights applied by the encoding and media type negotiators.

    RFC 7231 section 5.3.4 makes "identity" acceptable unless excluded, but
    does not give it a weight. ``identity_weight`` is that weight. With
    ``identity_last_resort`` the implicit identity is only considered once
    negotiation without it has failed.
    """

    identity_weight: float = 1.0
    identity_last_resort: bool = False
    full_wildcard_weight: float = 0.01
    partial_wildcard_weight: float = 0.02

    def __post_init__(self) -> None:
        for name in ("identity_weight", "full_wildcard_weight", "partial_wildcard_weight"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


DEFAULT_POLICY = NegotiationPolicy()


@dataclass(frozen=True)
class NegotiationResult:
    server: ValueTuple
    client: ValueTuple
    score: float


def perform_negotiation(
    client_values: Sequence[ValueTuple],
    server_values: Sequence[ValueTuple],
    strategy: MatchStrategy,
) -> list[NegotiationResult]:
    """
    Pairs each server value with its most specific matching client value.

    Returns every pairing with a positive score, highest score first. Equal
    scores keep the order of ``server_values``. An empty list means nothing
    is acceptable.
    """
    results: list[NegotiationResult] = []

    for sv in server_values:
        candidates = [cv for cv in client_values if strategy.matches(sv, cv)]
        if not candidates:
            continue

        # Pick the most specific client value for the current server value
        cv = sorted(
            candidates, key=cmp_to_key(lambda a, b: strategy.compare(sv, a, b))
        )[0]

        score = sv.weight * cv.weight
        if score <= 0:
            # q=0 means the value is explicitly forbidden
            continue

        results.append(NegotiationResult(server=sv, client=cv, score=score))

    results.sort(key=lambda r: -r.score)
    logger.debug(
        "%s negotiation: %d of %d server values acceptable",
        strategy.name,
        len(results),
        len(server_values),
    )
    return results


def _best_server_value(server_values: Sequence[ValueTuple]) -> ValueTuple | None:
    if not server_values:
        return None
    # max() keeps the first of equal weights
    return max(server_values, key=lambda v: v.weight)


def _first_server(results: list[NegotiationResult]) -> ValueTuple | None:
    return results[0].server if results else None


def perform_encoding_negotiation(
    client_values: Sequence[ValueTuple],
    server_values: Sequence[ValueTuple],
    policy: NegotiationPolicy = DEFAULT_POLICY,
    *,
    header_present: bool | None = None,
) -> ValueTuple | None:
    """
    Selects a content coding from parsed Accept-Encoding values.

    No Accept-Encoding header means the client accepts anything, so the
    highest-weighted server value is returned. Otherwise "identity" is
    implicitly acceptable unless the client mentions it or "*".

    ``header_present`` tells an empty header apart from a missing one. An
    empty header only accepts identity. When None, an empty
    ``client_values`` is taken to mean the header is missing.
    """
    if header_present is None:
        header_present = bool(client_values)
    if not header_present:
        return _best_server_value(server_values)

    client_values = list(client_values)
    if any(cv.name in (IDENTITY, WILDCARD_TOKEN) for cv in client_values):
        return _first_server(
            perform_negotiation(sort_by_qvalue(client_values), server_values, WILDCARD)
        )

    implicit = ValueTuple(IDENTITY, weight=policy.identity_weight)
    if policy.identity_last_resort:
        selected = _first_server(
            perform_negotiation(sort_by_qvalue(client_values), server_values, WILDCARD)
        )
        if selected is not None:
            return selected

    return _first_server(
        perform_negotiation(
            sort_by_qvalue([implicit, *client_values]), server_values, WILDCARD
        )
    )


def _wildcard_segments(name: str) -> int:
    type_, subtype = split_media_range(name)
    return (type_ == WILDCARD_TOKEN) + (subtype == WILDCARD_TOKEN)


def perform_type_negotiation(
    client_values: Sequence[ValueTuple],
    server_values: Sequence[ValueTuple],
    policy: NegotiationPolicy = DEFAULT_POLICY,
) -> ValueTuple | None:
    """
    Selects a media type from parsed Accept values.

    Media ranges without an explicit "q" get low default weights ("*/*" 0.01,
    "type/*" 0.02) so that they only win when nothing more specific does.
    """
    if not client_values:
        return _best_server_value(server_values)

    weighted: list[ValueTuple] = []
    for cv in client_values:
        wildcards = _wildcard_segments(cv.name)
        if cv.has_explicit_weight or not wildcards:
            weighted.append(cv)
        elif wildcards == 2:
            weighted.append(replace(cv, weight=policy.full_wildcard_weight))
        else:
            weighted.append(replace(cv, weight=policy.partial_wildcard_weight))

    return _first_server(
        perform_negotiation(sort_by_qvalue(weighted), server_values, MEDIA_RANGE)
    )
