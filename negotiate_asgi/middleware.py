import logging
import re
from collections.abc import Sequence

from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from negotiate_asgi.headers import ValueTuple, get_header_values, parse_value_tuple
from negotiate_asgi.negotiation import (
    DEFAULT_POLICY,
    NegotiationPolicy,
    perform_encoding_negotiation,
    perform_type_negotiation,
)

logger = logging.getLogger(__name__)


def _server_values(values: Sequence[ValueTuple | str] | None) -> list[ValueTuple] | None:
    if values is None:
        return None
    parsed = []
    for value in values:
        if isinstance(value, ValueTuple):
            parsed.append(value)
        elif isinstance(value, str):
            parsed.append(parse_value_tuple(value))
        else:
            raise TypeError(f"expected str or ValueTuple, got {type(value).__name__}")
    return parsed


class NegotiationMiddleware:
    """
    Negotiates the response media type and content coding of each request.

    The selected values (or None) are stored as ``request.state.media_type``
    and ``request.state.encoding``. With ``not_acceptable=True`` a request
    for which nothing is acceptable is answered with 406 directly.
    """

    def __init__(
        self,
        app: ASGIApp,
        media_types: Sequence[ValueTuple | str] | None = None,
        encodings: Sequence[ValueTuple | str] | None = None,
        not_acceptable: bool = False,
        excluded_handlers: Sequence[str] | None = None,
        policy: NegotiationPolicy = DEFAULT_POLICY,
    ) -> None:
        self.app = app
        self.media_types = _server_values(media_types)
        self.encodings = _server_values(encodings)
        self.not_acceptable = not_acceptable
        self.excluded_handlers = [re.compile(path) for path in excluded_handlers or []]
        self.policy = policy

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._is_excluded(scope):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        state = scope.setdefault("state", {})
        acceptable = True

        if self.media_types is not None:
            selected = perform_type_negotiation(
                [parse_value_tuple(t) for t in get_header_values(headers, "accept")],
                self.media_types,
                self.policy,
            )
            state["media_type"] = selected
            acceptable = acceptable and selected is not None

        if self.encodings is not None:
            selected = perform_encoding_negotiation(
                [parse_value_tuple(t) for t in get_header_values(headers, "accept-encoding")],
                self.encodings,
                self.policy,
                header_present="accept-encoding" in headers,
            )
            state["encoding"] = selected
            acceptable = acceptable and selected is not None

        if not acceptable and self.not_acceptable:
            logger.debug("No acceptable representation for %s", scope.get("path"))
            response = PlainTextResponse("Not Acceptable", status_code=406)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

    def _is_excluded(self, scope: Scope) -> bool:
        path = scope.get("path", "")
        return any(pattern.search(path) for pattern in self.excluded_handlers)
