"""Main tests for content negotiation.

The negotiation cases mirror RFC 7231 section 5.3; the middleware tests run
through starlette's TestClient.
"""

import functools

import pytest

from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from negotiate_asgi import (
    MEDIA_RANGE,
    STRICT,
    WILDCARD,
    NegotiationMiddleware,
    NegotiationPolicy,
    NegotiationResult,
    ValueTuple,
    get_header_values,
    media_range_value_compare,
    media_range_value_match,
    parameter_compare,
    parameter_match,
    parse_header,
    parse_value_tuple,
    perform_encoding_negotiation,
    perform_negotiation,
    perform_type_negotiation,
    sort_by_qvalue,
    split_header_value,
    wildcard_value_compare,
    wildcard_value_match,
)


def VT(name, attributes=None, weight=None):
    return ValueTuple(name, attributes or {}, weight)


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


# --- splitting and parsing ---


@pytest.mark.parametrize(
    "header, expected",
    [
        ("a, b, c", ["a", "b", "c"]),
        ("a , b,c ", ["a", "b", "c"]),
        ("image/a, image/b", ["image/a", "image/b"]),
        ("image/*, */*", ["image/*", "*/*"]),
        ("a,, b,", ["a", "b"]),
        ("", []),
    ],
)
def test_split_header_value(header, expected):
    assert split_header_value(header) == expected


def test_split_header_value_preserves_instance_order():
    assert split_header_value("deflate, gzip, br", "identity, deflate") == [
        "deflate", "gzip", "br", "identity", "deflate",
    ]


def test_get_header_values_combines_repeated_headers():
    headers = Headers(raw=[
        (b"accept-encoding", b"deflate, gzip, br"),
        (b"Accept-Encoding", b"identity, deflate"),
    ])
    assert get_header_values(headers, "Accept-Encoding") == [
        "deflate", "gzip", "br", "identity", "deflate",
    ]


def test_get_header_values_from_scope():
    scope = {"type": "http", "headers": [(b"accept", b"text/html, */*;q=0.1")]}
    assert get_header_values(scope, "accept") == ["text/html", "*/*;q=0.1"]
    assert get_header_values(scope, "accept-encoding") == []


def test_parse_value_tuple_without_attributes():
    assert parse_value_tuple("foo") == VT("foo")
    assert parse_value_tuple("foo").weight == 1.0


def test_parse_value_tuple_attributes():
    vt = parse_value_tuple("foo;a=1;b=2")
    assert vt.name == "foo"
    assert dict(vt.attributes) == {"a": "1", "b": "2"}
    assert vt.weight == 1.0


def test_parse_value_tuple_attributes_after_wildcard():
    assert parse_value_tuple("image/*;a=1;b=2") == VT("image/*", {"a": "1", "b": "2"})


def test_parse_value_tuple_explicit_q():
    vt = parse_value_tuple("image/*;a=1;b=2;q=0.25")
    assert vt.weight == 0.25
    assert vt.has_explicit_weight
    assert vt.attributes["q"] == "0.25"


def test_parse_value_tuple_strips_whitespace():
    vt = parse_value_tuple("text/html; charset=utf-8 ; q=0.5")
    assert vt.name == "text/html"
    assert dict(vt.attributes) == {"charset": "utf-8", "q": "0.5"}
    assert vt.weight == 0.5


def test_parse_value_tuple_drops_malformed_attributes():
    vt = parse_value_tuple("foo;bar;a=1;=2")
    assert dict(vt.attributes) == {"a": "1"}


@pytest.mark.parametrize("q", ["abc", "", "nan", "inf"])
def test_parse_value_tuple_invalid_q_defaults(q):
    vt = parse_value_tuple(f"foo;q={q}")
    assert vt.weight == 1.0
    assert not vt.has_explicit_weight


def test_parse_header():
    assert parse_header("gzip;q=0.5, br") == [VT("gzip", {"q": "0.5"}), VT("br")]


def test_value_tuple_is_immutable():
    vt = VT("a", {"b": "1"})
    with pytest.raises(AttributeError):
        vt.name = "b"
    with pytest.raises(TypeError):
        vt.attributes["b"] = "2"


def test_value_tuple_str():
    assert str(VT("text/html", {"level": "1"})) == "text/html;level=1"


# --- q-value resolution ---


def test_sort_by_qvalue_last_wins():
    values = [VT("a", {"q": "5"}), VT("a", {"q": "2"}), VT("b", {"q": "3"})]
    assert [(v.name, v.weight) for v in sort_by_qvalue(values)] == [("b", 3.0), ("a", 2.0)]


def test_sort_by_qvalue_stable_for_equal_weights():
    values = [VT("a"), VT("b", {"q": "0.5"}), VT("c"), VT("d")]
    assert [v.name for v in sort_by_qvalue(values)] == ["a", "c", "d", "b"]


# --- negotiation engine ---


def test_select_common_value():
    cv = [VT("a", {"q": "1"}), VT("b", {"q": "1"}), VT("c", {"q": "1"})]
    sv = [VT("c", {"q": "1"}), VT("z", {"q": "1"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [NegotiationResult(sv[0], cv[2], 1)]


def test_no_common_values():
    cv = [VT("a"), VT("b"), VT("c")]
    sv = [VT("z")]

    assert perform_negotiation(cv, sv, WILDCARD) == []


def test_client_weights():
    cv = [VT("a", {"q": "1"}), VT("b", {"q": "1"}), VT("c", {"q": "0.8"})]
    sv = [VT("b", {"q": "0.9"}), VT("c", {"q": "1"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [
        NegotiationResult(sv[0], cv[1], 0.9),
        NegotiationResult(sv[1], cv[2], 0.8),
    ]


def test_server_weights():
    cv = [VT("a"), VT("b"), VT("c")]
    sv = [VT("b", {"q": "0.9"}), VT("c", {"q": "1"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [
        NegotiationResult(sv[1], cv[2], 1),
        NegotiationResult(sv[0], cv[1], 0.9),
    ]


def test_zero_weight_is_not_a_match():
    assert perform_negotiation([VT("a")], [VT("a", {"q": "0"})], WILDCARD) == []
    assert perform_negotiation([VT("a", {"q": "0"})], [VT("a")], WILDCARD) == []


def test_negative_weights_are_not_a_match():
    cv = [parse_value_tuple("a;q=-1")]
    sv = [parse_value_tuple("a;q=-1")]
    assert cv[0].weight == 0.0
    assert perform_negotiation(cv, sv, WILDCARD) == []
    assert perform_negotiation([VT("a", weight=-1)], [VT("a", weight=-2)], WILDCARD) == []


def test_encoding_negative_weights_both_sides():
    cv = [parse_value_tuple("gzip;q=-0.5")]
    sv = [parse_value_tuple("gzip;q=-1")]
    assert perform_encoding_negotiation(cv, sv) is None


def test_wildcard_matching():
    cv = [VT("a", {"q": "1"}), VT("*", {"q": "0.5"})]
    sv = [VT("a", {"q": "0.25"}), VT("b", {"q": "1"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [
        NegotiationResult(sv[1], cv[1], 0.5),
        NegotiationResult(sv[0], cv[0], 0.25),
    ]


def test_wildcard_not_applied_to_explicit_values():
    cv = [VT("a", {"q": "1"}), VT("*", {"q": "0.5"})]
    sv = [VT("a", {"q": "0.8"}), VT("b", {"q": "1"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [
        NegotiationResult(sv[0], cv[0], 0.8),
        NegotiationResult(sv[1], cv[1], 0.5),
    ]


def test_server_parameters_pass_through():
    cv = [VT("a"), VT("b"), VT("*", {"q": "0.5"})]
    sv = [VT("a", {"q": "0.8"}), VT("b", {"z": "yabba"})]

    assert perform_negotiation(cv, sv, WILDCARD) == [
        NegotiationResult(sv[1], cv[1], 1),
        NegotiationResult(sv[0], cv[0], 0.8),
    ]


def test_equal_scores_keep_server_order():
    cv = [VT("*")]
    sv = [VT("x"), VT("y"), VT("z")]

    assert [r.server.name for r in perform_negotiation(cv, sv, WILDCARD)] == ["x", "y", "z"]


def test_strict_strategy():
    cv = [VT("*"), VT("b", {"q": "0.5"})]
    sv = [VT("a"), VT("b")]

    assert perform_negotiation(cv, sv, STRICT) == [NegotiationResult(sv[1], cv[1], 0.5)]


def test_media_range_strategy_picks_most_specific():
    cv = [VT("*/*", {"q": "0.1"}), VT("text/*", {"q": "0.3"}), VT("text/html", {"q": "0.7"})]
    sv = [VT("text/html"), VT("text/plain"), VT("image/png")]

    assert perform_negotiation(cv, sv, MEDIA_RANGE) == [
        NegotiationResult(sv[0], cv[2], 0.7),
        NegotiationResult(sv[1], cv[1], 0.3),
        NegotiationResult(sv[2], cv[0], 0.1),
    ]


# --- parameter matching ---


@pytest.mark.parametrize(
    "server, client, expected",
    [
        (VT("a", {"a": "1", "b": "2"}), VT("a", {"a": "1", "b": "2"}), True),
        (VT("a", {"a": "1"}), VT("a", {"a": "1", "b": "2"}), False),
        (VT("a", {"a": "1", "b": "2"}), VT("a", {"a": "1"}), True),
        (VT("a", {"a": "1", "b": "2", "q": "3"}), VT("a", {"a": "1", "b": "2"}), True),
        (VT("a", {"a": "1", "b": "2"}), VT("a", {"a": "1", "b": "2", "q": "3"}), True),
        (VT("a", {"a": "1", "b": "2", "q": "4"}), VT("a", {"a": "1", "b": "2", "q": "3"}), True),
        (VT("a", {"a": "1"}), VT("a", {"a": "2"}), False),
        (VT("a", {"A": "1"}), VT("a", {"a": "1"}), False),
    ],
)
def test_parameter_match(server, client, expected):
    assert parameter_match(server, client) is expected


def test_parameter_compare_prefers_more_specific():
    ref = VT("a", {"a": "1", "b": "2"})
    assert parameter_compare(ref, VT("a", {"a": "1"}), VT("a")) < 0
    assert parameter_compare(ref, VT("a"), VT("a", {"a": "1"})) > 0


def test_parameter_compare_equal_counts():
    ref = VT("a", {"a": "1", "b": "2"})
    assert parameter_compare(ref, VT("a", {"a": "1"}), VT("a", {"b": "2"})) == 0
    assert parameter_compare(ref, VT("a"), VT("a")) == 0


def test_parameter_compare_falls_back_to_weight():
    ref = VT("a", {"a": "1"})
    assert parameter_compare(ref, VT("a"), VT("a", {"q": "0.5"})) < 0
    assert parameter_compare(ref, VT("a"), VT("a", {"q": "2"})) > 0


# --- wildcard strategy ---


def test_wildcard_value_match():
    assert wildcard_value_match(VT("a"), VT("a"))
    assert not wildcard_value_match(VT("a"), VT("b"))
    assert wildcard_value_match(VT("a"), VT("*"))
    assert not wildcard_value_match(VT("*"), VT("a"))


def test_wildcard_value_match_uses_parameters():
    assert not wildcard_value_match(VT("a"), VT("*", {"a": "1"}))
    assert wildcard_value_match(VT("a", {"a": "1"}), VT("*"))
    assert wildcard_value_match(VT("a"), VT("*", {"q": "13"}))


def test_wildcard_value_compare():
    assert wildcard_value_compare(VT("a"), VT("a"), VT("*")) < 0
    assert wildcard_value_compare(VT("a"), VT("*"), VT("a")) > 0
    assert wildcard_value_compare(VT("a"), VT("a"), VT("a")) == 0
    assert wildcard_value_compare(VT("a"), VT("*"), VT("*")) == 0


def test_wildcard_value_compare_uses_parameters():
    assert wildcard_value_compare(VT("a", {"a": "1"}), VT("a", {"a": "1"}), VT("a")) < 0
    assert wildcard_value_compare(VT("a", {"a": "1"}), VT("a"), VT("a", {"a": "1"})) > 0


# --- media range strategy ---


@pytest.mark.parametrize(
    "client, expected",
    [
        ("a/aa", True),
        ("b/aa", False),
        ("a/bb", False),
        ("*/aa", True),
        ("a/*", True),
        ("*/*", True),
    ],
)
def test_media_range_value_match(client, expected):
    assert media_range_value_match(VT("a/aa"), VT(client)) is expected


def test_media_range_value_match_uses_parameters():
    assert not media_range_value_match(VT("a/aa"), VT("a/aa", {"a": "1"}))
    assert media_range_value_match(VT("a/aa", {"a": "1"}), VT("a/aa"))
    assert media_range_value_match(VT("a/aa"), VT("a/aa", {"q": "13"}))


SPECIFICITY = ["a/aa", "a/*", "*/aa", "*/*"]


@pytest.mark.parametrize("i", range(len(SPECIFICITY)))
@pytest.mark.parametrize("j", range(len(SPECIFICITY)))
def test_media_range_value_compare_matrix(i, j):
    c = media_range_value_compare(VT("a/aa"), VT(SPECIFICITY[i]), VT(SPECIFICITY[j]))
    if i < j:
        assert c < 0
    elif i > j:
        assert c > 0
    else:
        assert c == 0


def test_media_range_value_compare_uses_parameters():
    ref = VT("a/aa", {"a": "1"})
    assert media_range_value_compare(ref, VT("a/aa", {"a": "1"}), VT("a/aa")) < 0
    assert media_range_value_compare(ref, VT("a/aa"), VT("a/aa", {"a": "1"})) > 0


# --- encoding negotiation ---


def test_encoding_without_accept_encoding():
    sv = [VT("gzip", {"q": "0.5"}), VT("br", {"q": "1"}), VT("identity", {"q": "0.1"})]
    assert perform_encoding_negotiation([], sv) is sv[1]


def test_encoding_without_accept_encoding_ties_use_first():
    sv = [VT("gzip"), VT("br")]
    assert perform_encoding_negotiation([], sv) is sv[0]
    assert perform_encoding_negotiation([], []) is None


def test_encoding_implicit_identity():
    cv = [VT("gzip", {"q": "0.5"})]
    sv = [VT("identity", {"q": "1"}), VT("gzip", {"q": "1"})]
    assert perform_encoding_negotiation(cv, sv) is sv[0]


def test_encoding_identity_overridden_explicitly():
    cv = [VT("gzip", {"q": "0.5"}), VT("identity", {"q": "0"})]
    sv = [VT("identity", {"q": "1"}), VT("gzip", {"q": "1"})]
    assert perform_encoding_negotiation(cv, sv) is sv[1]


def test_encoding_identity_overridden_by_wildcard():
    cv = [VT("gzip", {"q": "0.5"}), VT("*", {"q": "0"})]
    sv = [VT("identity", {"q": "1"}), VT("gzip", {"q": "1"})]
    assert perform_encoding_negotiation(cv, sv) is sv[1]


def test_encoding_empty_header_only_accepts_identity():
    sv = [VT("gzip"), VT("identity", {"q": "0.5"})]
    assert perform_encoding_negotiation([], sv, header_present=True) is sv[1]
    assert perform_encoding_negotiation([], sv, header_present=False) is sv[0]
    assert perform_encoding_negotiation([], [VT("gzip")], header_present=True) is None


def test_encoding_nothing_acceptable():
    cv = [VT("br"), VT("identity", {"q": "0"})]
    sv = [VT("gzip"), VT("identity")]
    assert perform_encoding_negotiation(cv, sv) is None


def test_encoding_identity_weight_policy():
    cv = [VT("gzip", {"q": "0.5"})]
    sv = [VT("identity"), VT("gzip")]
    policy = NegotiationPolicy(identity_weight=0.1)
    assert perform_encoding_negotiation(cv, sv, policy) is sv[1]


def test_encoding_identity_last_resort_policy():
    policy = NegotiationPolicy(identity_last_resort=True)
    sv = [VT("identity"), VT("gzip")]

    assert perform_encoding_negotiation([VT("gzip", {"q": "0.1"})], sv, policy) is sv[1]
    assert perform_encoding_negotiation([VT("br")], sv, policy) is sv[0]


def test_negative_policy_weight_rejected():
    with pytest.raises(ValueError):
        NegotiationPolicy(full_wildcard_weight=-1)


# --- media type negotiation ---


def test_type_without_accept():
    sv = [VT("image/webp", {"q": "1"}), VT("image/jpeg", {"q": "0.9"})]
    assert perform_type_negotiation([], sv) is sv[0]


def test_type_prefers_more_specific_match():
    cv = [VT("image/webp"), VT("image/*", {"q": "0.8"})]
    sv = [VT("image/webp", {"q": "1.0"}), VT("image/jpeg", {"q": "0.9"})]
    assert perform_type_negotiation(cv, sv) is sv[0]


def test_type_falls_back_to_wildcard_match():
    cv = [VT("image/webp"), VT("image/*", {"q": "0.8"})]
    sv = [VT("image/bmp", {"q": "0.8"}), VT("image/jpeg", {"q": "0.9"})]
    assert perform_type_negotiation(cv, sv) is sv[1]


@pytest.mark.parametrize(
    "client",
    [
        # */* defaults to q=0.01
        [VT("text/plain"), VT("*/*")],
        # text/* defaults to q=0.02
        [VT("text/plain"), VT("text/*")],
        # defaults apply even when other values carry a q
        [VT("text/plain", {"q": "1.0"}), VT("*/*")],
        # */html defaults to q=0.02 as well
        [VT("text/plain"), VT("*/html")],
        # explicit wildcard q is kept
        [VT("text/plain"), VT("*/*", {"q": "1"})],
    ],
)
def test_type_wildcard_default_weights(client):
    sv = [VT("text/plain", {"q": "0.001"}), VT("text/html")]
    assert perform_type_negotiation(client, sv) is sv[1]


def test_type_wildcard_default_is_low():
    cv = [VT("text/plain", {"q": "0.5"}), VT("*/*")]
    sv = [VT("text/plain"), VT("text/html")]
    assert perform_type_negotiation(cv, sv) is sv[0]


def test_type_nothing_acceptable():
    cv = [VT("application/json")]
    sv = [VT("text/html")]
    assert perform_type_negotiation(cv, sv) is None


def test_type_negotiation_from_raw_header():
    cv = parse_header("text/html;level=1, text/html;q=0.7, */*;q=0.5")
    sv = [VT("application/json"), VT("text/html", {"level": "1"})]
    assert perform_type_negotiation(cv, sv) is sv[1]


# --- middleware ---


def homepage(request):
    return PlainTextResponse(
        f"{request.state.media_type} {request.state.encoding}", status_code=200
    )


def make_app(**options):
    app = Starlette(routes=[Route("/", homepage), Route("/excluded", homepage)])
    app.add_middleware(NegotiationMiddleware, **options)
    return app


def test_middleware_negotiates(test_client_factory):
    app = make_app(media_types=["application/json", "text/html;q=0.9"], encodings=["gzip", "identity"])

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": "text/html, */*;q=0.1", "accept-encoding": "gzip"}
    )
    assert response.status_code == 200
    assert response.text == "text/html;q=0.9 gzip"


def test_middleware_without_headers_uses_server_preference(test_client_factory):
    app = make_app(media_types=["text/html;q=0.9", "application/json"], encodings=["gzip", "identity;q=0.5"])

    client = test_client_factory(app)
    del client.headers["accept"]
    del client.headers["accept-encoding"]
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "application/json gzip"


def test_middleware_empty_accept_encoding_selects_identity(test_client_factory):
    app = make_app(media_types=["text/html"], encodings=["gzip", "identity;q=0.5"])

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/html", "accept-encoding": ""})
    assert response.status_code == 200
    assert response.text == "text/html identity;q=0.5"


def test_middleware_stores_none_when_not_acceptable(test_client_factory):
    app = make_app(media_types=["text/html"], encodings=["identity"])

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": "application/json", "accept-encoding": "identity"}
    )
    assert response.status_code == 200
    assert response.text == "None identity"


@pytest.mark.parametrize(
    "accept, accept_encoding, expected_status",
    [
        ("application/json", "identity", 406),
        ("text/html", "br, identity;q=0", 406),
        ("text/*", "br", 200),
    ],
)
def test_middleware_not_acceptable(
    test_client_factory, accept, accept_encoding, expected_status
):
    app = make_app(media_types=["text/html"], encodings=["identity"], not_acceptable=True)

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": accept, "accept-encoding": accept_encoding}
    )
    assert response.status_code == expected_status
    if expected_status == 406:
        assert response.text == "Not Acceptable"


def test_middleware_excluded_handlers(test_client_factory):
    def excluded(request):
        return PlainTextResponse(str(getattr(request.state, "media_type", "unset")))

    app = Starlette(routes=[Route("/excluded", excluded)])
    app.add_middleware(
        NegotiationMiddleware,
        media_types=["text/html"],
        not_acceptable=True,
        excluded_handlers=["/excluded"],
    )

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept": "application/json"})
    assert response.status_code == 200
    assert response.text == "unset"


def test_middleware_rejects_invalid_server_values():
    with pytest.raises(TypeError):
        NegotiationMiddleware(app=None, media_types=[42])
