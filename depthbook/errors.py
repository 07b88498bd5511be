from typing import Optional


class DepthError(Exception):
    status = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class InvalidInput(DepthError):
    """Rejected before any network call."""

    status = 400


class UnsupportedChainOrPoolType(DepthError):
    status = 400


class UpstreamUnavailable(DepthError):
    """Connection-level failure or timeout talking to the chain."""

    status = 502
