from __future__ import annotations


class GatewayError(Exception):
    kind = "gateway_error"
    fallback_reply = "hmm, that didn't come through. mind trying again?"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def notice(self) -> str:
        return str(self)


class ConfigurationError(GatewayError):
    kind = "configuration"
    fallback_reply = "i can't reach my assistant service right now. it isn't set up on this device yet."


class NetworkError(GatewayError):
    kind = "network"
    TIMEOUT = "timeout"
    OFFLINE = "offline"
    UNREACHABLE = "unreachable"
    UNAVAILABLE = "unavailable"

    _FALLBACKS = {
        TIMEOUT: "that took longer than expected. mind trying again?",
        OFFLINE: "looks like you're offline. reconnect and try again.",
        UNREACHABLE: "i couldn't reach the assistant service. try again in a moment.",
        UNAVAILABLE: "i couldn't reach the assistant service. try again in a moment.",
    }

    def __init__(self, message: str, *, sub_kind: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.sub_kind = sub_kind

    @property
    def fallback_reply(self) -> str:  # type: ignore[override]
        return self._FALLBACKS.get(self.sub_kind, GatewayError.fallback_reply)


class RateLimited(GatewayError):
    kind = "rate_limited"
    fallback_reply = "i'm getting a lot of requests right now. give it a minute and try again."


class MalformedRequest(GatewayError):
    kind = "malformed_request"


class MalformedResponse(GatewayError):
    kind = "malformed_response"
