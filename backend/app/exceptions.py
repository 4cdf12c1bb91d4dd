"""Error taxonomy for the chat relay.

Errors raised before a stream is opened are mapped to HTTP responses by the
handler in ``app.main``. Errors raised while a stream is open are turned into a
terminal ``error`` event by the stream relay.
"""


class ChatServiceError(Exception):
    """Base class for errors the API layer knows how to report.

    Attributes:
        code: machine-readable error code, e.g. ``"store_unavailable"``.
        message: human-readable message safe to show to the client.
        http_status: status used when the error surfaces as an HTTP response.
    """

    code = "chat_service_error"
    http_status = 500

    def __init__(self, message: str, **extra):
        self.message = message
        self.extra = extra
        super().__init__(message)


class StoreUnavailable(ChatServiceError):
    """Transcript store read or write failed."""

    code = "store_unavailable"
    http_status = 503


class MalformedRecord(StoreUnavailable):
    """A stored chat or message row does not match the expected schema."""

    code = "malformed_record"


class ChatNotFound(ChatServiceError):
    code = "chat_not_found"
    http_status = 404


class ProviderError(ChatServiceError):
    """The completion provider failed to start or broke off mid-stream."""

    code = "provider_error"
    http_status = 502


class UnknownCapability(ChatServiceError):
    """No capability is registered under the requested function name.

    The dispatcher records this as a structured tool result; it is never
    propagated out of a dispatch batch.
    """

    code = "unknown_capability"
    http_status = 400
