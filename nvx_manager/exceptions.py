"""Exception hierarchy for the NVX manager."""

from __future__ import annotations


class NvxError(Exception):
    """Base exception for the NVX manager.

    All NVX-specific exceptions inherit from this class, allowing
    consumers to catch every device error with a single except clause.
    """

    __slots__ = ()


class NvxConnectionError(NvxError):
    """Unable to reach the DM-NVX device.

    Raised when neither the secure nor the insecure transport answers,
    including DNS failures, refused connections and TLS handshake errors.
    """

    __slots__ = ()


class NvxAuthError(NvxError):
    """The device rejected the supplied credentials.

    Raised when the login form POST completes with a status other than
    200 or 302, or when an authenticated call is attempted without a
    usable session.
    """

    __slots__ = ()


class NvxApiError(NvxError):
    """The device returned an error response.

    Raised for rejected writes (non-2xx), server errors during the
    handshake and malformed response bodies.

    Attributes:
        status_code: The HTTP status returned by the device, if available.
    """

    __slots__ = ("status_code",)

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize NvxApiError.

        Args:
            message: Human-readable error description.
            status_code: Optional HTTP status code (e.g., 400).
        """
        super().__init__(message)
        self.status_code = status_code


class NvxTimeoutError(NvxConnectionError):
    """Request to the device timed out.

    Inherits from NvxConnectionError as timeouts are a type of
    connection failure and can be handled similarly.
    """

    __slots__ = ()
