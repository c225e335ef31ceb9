from negotiate_asgi.headers import (
    ValueTuple,
    get_header_values,
    parse_header,
    parse_value_tuple,
    sort_by_qvalue,
    split_header_value,
)
from negotiate_asgi.matching import (
    MEDIA_RANGE,
    STRICT,
    WILDCARD,
    MatchStrategy,
    media_range_value_compare,
    media_range_value_match,
    parameter_compare,
    parameter_match,
    split_media_range,
    strict_value_match,
    wildcard_value_compare,
    wildcard_value_match,
)
from negotiate_asgi.middleware import NegotiationMiddleware
from negotiate_asgi.negotiation import (
    DEFAULT_POLICY,
    NegotiationPolicy,
    NegotiationResult,
    perform_encoding_negotiation,
    perform_negotiation,
    perform_type_negotiation,
)

__all__ = [
    "DEFAULT_POLICY",
    "MEDIA_RANGE",
    "STRICT",
    "WILDCARD",
    "MatchStrategy",
    "NegotiationMiddleware",
    "NegotiationPolicy",
    "NegotiationResult",
    "ValueTuple",
    "get_header_values",
    "media_range_value_compare",
    "media_range_value_match",
    "parameter_compare",
    "parameter_match",
    "parse_header",
    "parse_value_tuple",
    "perform_encoding_negotiation",
    "perform_negotiation",
    "perform_type_negotiation",
    "sort_by_qvalue",
    "split_header_value",
    "split_media_range",
    "strict_value_match",
    "wildcard_value_compare",
    "wildcard_value_match",
]
