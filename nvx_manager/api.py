"""DM-NVX web API client and session negotiator."""

from __future__ import annotations

import json
import logging
from types import TracebackType
from typing import TYPE_CHECKING, cast

import aiohttp

from .const import (
    DEFAULT_TIMEOUT,
    LOGIN_PATH,
    LOGOUT_PATH,
    LOGOUT_TIMEOUT,
    REACHABILITY_TIMEOUT,
    TRACKID_COOKIE,
    WRITE_TIMEOUT,
    XSRF_RESPONSE_HEADER,
)
from .exceptions import (
    NvxApiError,
    NvxAuthError,
    NvxConnectionError,
    NvxTimeoutError,
)
from .models import (
    CertificateOptions,
    Credentials,
    SessionContext,
    SessionState,
    TransportScheme,
)

if TYPE_CHECKING:
    from typing import Any

_LOGGER = logging.getLogger(__name__)

LOGIN_SUCCESS_STATUSES = (200, 302)


def _parse_set_cookies(response: aiohttp.ClientResponse) -> list[str]:
    """Return every Set-Cookie entry truncated to its name=value pair."""
    return [
        header.split(";", 1)[0].strip()
        for header in response.headers.getall("Set-Cookie", [])
        if header.strip()
    ]


def _find_track_id(cookies: list[str]) -> str | None:
    """Return the TRACKID value from name=value cookie pairs."""
    for cookie in cookies:
        name, _, value = cookie.partition("=")
        if name.strip() == TRACKID_COOKIE and value:
            return value
    return None


class NvxClient:
    """Async client for the DM-NVX device web server.

    The device has no standard REST authentication. A session is obtained
    by fetching the login page (TRACKID cookie), posting the credentials as
    a form, and then echoing the returned cookies and optional XSRF token
    on every call. HTTPS is tried first; if the device cannot be reached
    over HTTPS the whole session is pinned to HTTP.

    The client can be used as an async context manager for automatic
    session cleanup.

    Example:
        async with NvxClient("192.168.1.50", Credentials("admin", "pw")) as client:
            ctx = await client.async_login()
            info = await client.async_get_json(ctx, "/Device/DeviceInfo")
            await client.async_logout(ctx)
    """

    __slots__ = (
        "_address",
        "_cert_options",
        "_credentials",
        "_owns_session",
        "_session",
        "_timeout",
    )

    def __init__(
        self,
        address: str,
        credentials: Credentials,
        cert_options: CertificateOptions | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize NvxClient.

        Args:
            address: IP address or hostname (optionally with port) of the device.
            credentials: Username and password for the login form.
            cert_options: HTTPS certificate policy. Defaults to accepting any
                certificate, as shipped devices use self-signed ones.
            session: Optional aiohttp ClientSession. If not provided, one will
                be created and managed by this client.
            timeout: Per-request timeout in seconds. Defaults to 10.
        """
        self._address = self._normalize_address(address)
        self._credentials = credentials
        self._cert_options = cert_options or CertificateOptions()
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @staticmethod
    def _normalize_address(address: str) -> str:
        """Strip any scheme and trailing slashes from the address.

        Args:
            address: The address string to normalize.

        Returns:
            Bare host[:port] string.
        """
        address = address.strip().rstrip("/")
        for prefix in ("https://", "http://"):
            if address.startswith(prefix):
                address = address[len(prefix) :]
        return address

    @property
    def address(self) -> str:
        """Return the normalized device address."""
        return self._address

    @property
    def cert_options(self) -> CertificateOptions:
        """Return the certificate policy used for HTTPS requests."""
        return self._cert_options

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session.

        Cookies are managed per SessionContext, so an owned session never
        keeps a cookie jar of its own.

        Returns:
            The aiohttp ClientSession for making requests.
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self._session

    def _url(self, scheme: TransportScheme, path: str) -> str:
        return f"{scheme.value}://{self._address}{path}"

    def _ssl(self, scheme: TransportScheme) -> bool:
        # Ignored by aiohttp for plain HTTP.
        if scheme is TransportScheme.SECURE:
            return self._cert_options.ssl_context()
        return True

    async def _async_fetch_track_id(self, scheme: TransportScheme) -> str | None:
        """Fetch the login page and return the TRACKID cookie value.

        Raises:
            aiohttp.ClientError: If the device cannot be reached on this scheme.
            TimeoutError: If the request times out.
        """
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with session.get(
            self._url(scheme, LOGIN_PATH),
            headers={"Accept": "text/html"},
            timeout=timeout,
            ssl=self._ssl(scheme),
        ) as response:
            return _find_track_id(_parse_set_cookies(response))

    async def _async_obtain_track_id(self, ctx: SessionContext) -> None:
        """Handshake step 1: obtain the TRACKID, falling back to HTTP once.

        Raises:
            NvxConnectionError: If no TRACKID was obtained on either scheme.
        """
        last_error: BaseException | None = None
        for scheme in (TransportScheme.SECURE, TransportScheme.INSECURE):
            try:
                track_id = await self._async_fetch_track_id(scheme)
            except (aiohttp.ClientError, TimeoutError) as err:
                _LOGGER.debug("Login page over %s failed for %s: %s", scheme, self._address, err)
                last_error = err
                continue

            if track_id:
                ctx.scheme = scheme
                ctx.track_id = track_id
                ctx.state = SessionState.TRACK_ID_OBTAINED
                _LOGGER.debug("TRACKID obtained from %s over %s", self._address, scheme)
                return
            _LOGGER.debug("No TRACKID in %s login page from %s", scheme, self._address)

        ctx.state = SessionState.FAILED
        detail = f": {last_error}" if last_error is not None else ""
        raise NvxConnectionError(f"Device {self._address} unreachable{detail}") from last_error

    async def _async_authenticate(self, ctx: SessionContext) -> None:
        """Handshake step 2: post the credentials and capture the session.

        Raises:
            NvxConnectionError: If the POST cannot be delivered.
            NvxTimeoutError: If the POST times out.
            NvxApiError: If the device answers with a server error.
            NvxAuthError: If the credentials are rejected.
        """
        session = await self._get_session()
        url = self._url(ctx.scheme, LOGIN_PATH)
        form = {"login": self._credentials.username, "passwd": self._credentials.password}

        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            async with session.post(
                url,
                data=form,
                headers=ctx.login_headers(),
                allow_redirects=False,
                timeout=timeout,
                ssl=self._ssl(ctx.scheme),
            ) as response:
                status = response.status
                xsrf_token = response.headers.get(XSRF_RESPONSE_HEADER)
                cookies = _parse_set_cookies(response)
        except TimeoutError as err:
            ctx.state = SessionState.FAILED
            raise NvxTimeoutError(
                f"Login to {url} timed out after {self._timeout} seconds"
            ) from err
        except aiohttp.ClientError as err:
            ctx.state = SessionState.FAILED
            raise NvxConnectionError(f"Unable to connect to {self._address}: {err}") from err

        _LOGGER.debug(
            "Login to %s returned %s, XSRF token %s",
            self._address,
            status,
            "obtained" if xsrf_token else "not found",
        )

        if status >= 500:
            ctx.state = SessionState.FAILED
            raise NvxApiError(f"Device error during login: {status}", status_code=status)

        if status not in LOGIN_SUCCESS_STATUSES:
            ctx.state = SessionState.FAILED
            raise NvxAuthError(f"Authentication rejected by {self._address} (status {status})")

        ctx.xsrf_token = xsrf_token or None
        ctx.cookies = "; ".join(cookies)
        ctx.state = SessionState.AUTHENTICATED

    async def async_login(self) -> SessionContext:
        """Negotiate an authenticated session with the device.

        The steps run strictly in order; each has its own timeout and only
        the first one may retry (HTTPS to HTTP).

        Returns:
            An authenticated SessionContext pinned to the chosen scheme.

        Raises:
            NvxConnectionError: If the device is unreachable on both schemes.
            NvxAuthError: If the credentials are rejected.
            NvxApiError: If the device answers the login with a server error.
        """
        ctx = SessionContext(address=self._address, scheme=TransportScheme.SECURE)
        await self._async_obtain_track_id(ctx)
        await self._async_authenticate(ctx)
        _LOGGER.info("Authenticated to %s over %s", self._address, ctx.scheme)
        return ctx

    async def async_logout(self, ctx: SessionContext) -> None:
        """End a session. Best effort: failures are logged, never raised.

        Args:
            ctx: The session to close.
        """
        if ctx.state is not SessionState.AUTHENTICATED:
            ctx.state = SessionState.CLOSED
            return

        session = await self._get_session()
        try:
            timeout = aiohttp.ClientTimeout(total=LOGOUT_TIMEOUT)
            async with session.get(
                f"{ctx.base_url}{LOGOUT_PATH}",
                headers={"Cookie": ctx.cookies},
                timeout=timeout,
                ssl=self._ssl(ctx.scheme),
            ) as response:
                _LOGGER.debug("Logout from %s returned %s", self._address, response.status)
        except (aiohttp.ClientError, TimeoutError) as err:
            _LOGGER.warning("Logout from %s failed: %s", self._address, err)
        finally:
            ctx.state = SessionState.CLOSED

    def _require_session(self, ctx: SessionContext) -> None:
        if ctx.address != self._address:
            raise NvxAuthError(
                f"Session for {ctx.address} cannot be used with {self._address}"
            )
        if not ctx.is_authenticated:
            raise NvxAuthError(f"Session for {self._address} is {ctx.state}")

    async def async_get_json(self, ctx: SessionContext, path: str) -> dict[str, Any]:
        """Make an authenticated GET and return the JSON object.

        Args:
            ctx: An authenticated session.
            path: The resource path (e.g., "/Device/DeviceInfo").

        Returns:
            The parsed JSON object.

        Raises:
            NvxConnectionError: If the connection fails.
            NvxTimeoutError: If the request times out.
            NvxAuthError: If the session is not valid or was rejected.
            NvxApiError: If the device returns an error or malformed JSON.
        """
        self._require_session(ctx)
        session = await self._get_session()
        url = f"{ctx.base_url}{path}"

        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            async with session.get(
                url,
                headers=ctx.auth_headers(),
                timeout=timeout,
                ssl=self._ssl(ctx.scheme),
            ) as response:
                return await self._handle_json_response(response, url)
        except TimeoutError as err:
            raise NvxTimeoutError(
                f"Request to {url} timed out after {self._timeout} seconds"
            ) from err
        except aiohttp.ClientError as err:
            raise NvxConnectionError(f"Unable to connect to {self._address}: {err}") from err

    async def _handle_json_response(
        self,
        response: aiohttp.ClientResponse,
        url: str,
    ) -> dict[str, Any]:
        """Check the status and decode a JSON object body.

        Raises:
            NvxAuthError: If the device rejected the session.
            NvxApiError: If the status is an error or the body is not a JSON object.
        """
        if response.status in (401, 403):
            raise NvxAuthError(f"Session rejected by {self._address} ({response.status})")
        if response.status >= 400:
            raise NvxApiError(
                f"{url} returned {response.status} {response.reason or ''}".rstrip(),
                status_code=response.status,
            )

        try:
            data = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, json.JSONDecodeError, UnicodeDecodeError) as err:
            raise NvxApiError(f"Invalid JSON response from {url}: {err}") from err

        if not isinstance(data, dict):
            raise NvxApiError(f"Unexpected response from {url}: expected a JSON object")
        return cast("dict[str, Any]", data)

    async def async_post_json(
        self,
        ctx: SessionContext,
        path: str,
        payload: dict[str, Any],
    ) -> int:
        """Make an authenticated JSON POST.

        Args:
            ctx: An authenticated session.
            path: The resource path (e.g., "/Device/Identify").
            payload: JSON body.

        Returns:
            The HTTP status code (always 2xx).

        Raises:
            NvxConnectionError: If the connection fails.
            NvxTimeoutError: If the request times out.
            NvxAuthError: If the session is not valid or was rejected.
            NvxApiError: If the device rejects the write.
        """
        self._require_session(ctx)
        session = await self._get_session()
        url = f"{ctx.base_url}{path}"
        headers = {**ctx.auth_headers(), "Content-Type": "application/json"}

        try:
            timeout = aiohttp.ClientTimeout(total=WRITE_TIMEOUT)
            async with session.post(
                url,
                json=payload,
                headers=headers,
                timeout=timeout,
                ssl=self._ssl(ctx.scheme),
            ) as response:
                status = response.status
                reason = response.reason or ""
        except TimeoutError as err:
            raise NvxTimeoutError(
                f"Request to {url} timed out after {WRITE_TIMEOUT} seconds"
            ) from err
        except aiohttp.ClientError as err:
            raise NvxConnectionError(f"Unable to connect to {self._address}: {err}") from err

        _LOGGER.debug("POST %s returned %s", url, status)
        if status in (401, 403):
            raise NvxAuthError(f"Session rejected by {self._address} ({status})")
        if not 200 <= status < 300:
            raise NvxApiError(f"Update failed: {status} - {reason}".rstrip(" -"), status_code=status)
        return status

    async def close(self) -> None:
        """Close the client session.

        Only closes the session if it was created by this client.
        Safe to call multiple times.
        """
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> NvxClient:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context manager."""
        await self.close()


async def async_check_reachable(
    address: str,
    session: aiohttp.ClientSession,
    timeout: float = REACHABILITY_TIMEOUT,
    cert_options: CertificateOptions | None = None,
) -> bool:
    """Check whether a device web server answers at the address.

    Tries HTTPS and then HTTP; any response below 500 counts.

    Args:
        address: Device address.
        session: aiohttp session to use.
        timeout: Per-attempt timeout in seconds.
        cert_options: HTTPS certificate policy.

    Returns:
        True if the device answered on either scheme.
    """
    cert_options = cert_options or CertificateOptions()
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    for scheme in (TransportScheme.SECURE, TransportScheme.INSECURE):
        try:
            async with session.get(
                f"{scheme.value}://{address}{LOGIN_PATH}",
                timeout=client_timeout,
                allow_redirects=False,
                ssl=cert_options.ssl_context() if scheme is TransportScheme.SECURE else True,
            ) as response:
                if response.status < 500:
                    return True
        except (aiohttp.ClientError, TimeoutError) as err:
            _LOGGER.debug("%s not reachable over %s: %s", address, scheme, err)
    return False
