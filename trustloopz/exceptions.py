"""Custom exceptions for the TrustLoopz companion."""


class TrustLoopzError(Exception):
    """Base class for all companion errors."""
    pass


class ApiError(TrustLoopzError):
    """Raised when the API answers with a non-2xx status.

    ``message`` carries the server's error text verbatim so it can be shown
    to the user unchanged.
    """

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class NetworkError(TrustLoopzError):
    """Raised when a request fails in transport or returns an undecodable body."""
    pass


class MalformedPayloadError(TrustLoopzError):
    """Raised when a server or socket payload does not have the expected shape."""
    pass


class AccessDeniedError(TrustLoopzError):
    """Raised when a viewer asks for data their access level does not expose."""
    pass
