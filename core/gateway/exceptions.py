"""
Gateway error taxonomy
"""


class GatewayError(Exception):
    """Base class for channel adapter errors."""

    pass


class AuthError(GatewayError):
    """Token exchange rejected by the platform."""

    def __init__(self, message: str, code: int = -1):
        super().__init__(message)
        self.code = code


class TransportError(GatewayError):
    """HTTP/WebSocket failure or non-success API response."""

    def __init__(self, message: str, code: int = -1):
        super().__init__(message)
        self.code = code


class ProtocolError(GatewayError):
    """Malformed inbound frame."""

    pass


class SignatureError(GatewayError):
    """Webhook signature mismatch."""

    pass
