"""Fixtures for NVX manager tests."""

from __future__ import annotations

import copy
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict, CIMultiDictProxy

from nvx_manager.models import Credentials

TEST_TRACK_ID = "a1b2c3d4e5"
TEST_USERNAME = "admin"
TEST_PASSWORD = "secret"


def create_mock_response(
    status: int = 200,
    data: Any = None,
    headers: list[tuple[str, str]] | None = None,
    reason: str = "OK",
) -> MagicMock:
    """Create a mock aiohttp response.

    Args:
        status: HTTP status code.
        data: JSON data to return from response.json().
        headers: Response headers; repeated names are allowed.
        reason: HTTP reason phrase.

    Returns:
        Mock response object.
    """
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.reason = reason
    mock_response.headers = CIMultiDictProxy(CIMultiDict(headers or []))
    mock_response.json = AsyncMock(return_value=data if data is not None else {})
    return mock_response


def _context_manager(item: MagicMock) -> MagicMock:
    context_manager = MagicMock()
    context_manager.__aenter__ = AsyncMock(return_value=item)
    context_manager.__aexit__ = AsyncMock(return_value=None)
    return context_manager


def create_mock_session(
    get: list[MagicMock | BaseException] | None = None,
    post: list[MagicMock | BaseException] | None = None,
) -> MagicMock:
    """Create a mock aiohttp session with context manager support.

    Each call to get() or post() consumes the next item from its list. An
    exception item is raised from the call instead of returning a response.

    Args:
        get: Responses or exceptions for get() calls, in order.
        post: Responses or exceptions for post() calls, in order.

    Returns:
        Mock session object.
    """
    mock_session = MagicMock(spec=aiohttp.ClientSession)
    mock_session.closed = False
    mock_session.close = AsyncMock()
    mock_session.get = MagicMock(side_effect=[_context_manager_factory(r) for r in get or []])
    mock_session.post = MagicMock(side_effect=[_context_manager_factory(r) for r in post or []])
    return mock_session


def _context_manager_factory(item: MagicMock | BaseException) -> Any:
    if isinstance(item, BaseException):
        return item
    return _context_manager(item)


def login_page_response(track_id: str = TEST_TRACK_ID) -> MagicMock:
    """Return a login page response carrying a TRACKID cookie."""
    return create_mock_response(
        headers=[("Set-Cookie", f"TRACKID={track_id}; Path=/; HttpOnly")],
    )


def login_post_response(
    status: int = 200,
    xsrf_token: str | None = "xsrf-token-value",
) -> MagicMock:
    """Return a login POST response with session cookies."""
    headers = [
        ("Set-Cookie", f"TRACKID={TEST_TRACK_ID}; Path=/; Secure"),
        ("Set-Cookie", "userstr=admin-hash; Path=/; HttpOnly"),
        ("Set-Cookie", "userid=42; Path=/"),
    ]
    if xsrf_token is not None:
        headers.append(("CREST-XSRF-TOKEN", xsrf_token))
    return create_mock_response(status=status, headers=headers)


@pytest.fixture
def credentials() -> Credentials:
    """Return test credentials."""
    return Credentials(TEST_USERNAME, TEST_PASSWORD)


@pytest.fixture
def mock_device_info() -> dict[str, Any]:
    """Return a DeviceInfo resource as served by the device."""
    return {
        "Name": "DM-NVX-384",
        "HostName": "NVX-384-LOBBY",
        "FriendlyName": "Lobby Encoder",
        "Model": "DM-NVX-384",
        "SerialNumber": "2045JBH01234",
        "FirmwareVersion": "7.3.0173.23090",
        "MacAddress": "00.10.7f.aa.bb.cc",
    }


@pytest.fixture
def mock_network_adapters() -> dict[str, Any]:
    """Return a NetworkAdapters resource as served by the device."""
    return {
        "HostName": "NVX-384-LOBBY",
        "IsIcmpPingEnabled": True,
        "IsTcpKeepAliveEnabled": False,
        "IgmpVersion": "v3",
        "Version": "2.1.0",
        "Adapters": {
            "EthernetPrimary": {
                "Name": "eth0",
                "MacAddress": "00.10.7f.aa.bb.cc",
                "IsAdapterEnabled": True,
                "LinkStatus": True,
                "IsActive": True,
                "IPv4": {
                    "IsDhcpEnabled": False,
                    "Addresses": [{"Address": "10.0.0.5", "SubnetMask": "255.255.255.0"}],
                    "DefaultGateway": "10.0.0.1",
                },
            }
        },
        "DnsSettings": {"IPv4": {"DnsServers": ["10.0.0.2", "10.0.0.3"]}},
    }


def default_device_resources() -> dict[str, dict[str, Any]]:
    """Return the resources served by the stub device."""
    return {
        "DeviceInfo": {
            "Name": "DM-NVX-384",
            "HostName": "NVX-384-LOBBY",
            "Model": "DM-NVX-384",
            "SerialNumber": "2045JBH01234",
            "FirmwareVersion": "7.3.0173.23090",
        },
        "NetworkAdapters": {
            "HostName": "NVX-384-LOBBY",
            "IsIcmpPingEnabled": True,
            "Adapters": {
                "EthernetPrimary": {
                    "MacAddress": "00.10.7f.aa.bb.cc",
                    "IPv4": {"Addresses": [{"Address": "10.0.0.5"}]},
                }
            },
        },
        "DeviceSpecific": {"LedsEnabled": True},
        "StreamingVideo": {"Mode": "Transmitter", "Source": "HDMI 1", "Bitrate": 750},
        "StreamingAudio": {"Mode": "Auto"},
        "USB": {"Mode": "Host"},
        "Network": {"TTL": 32, "MulticastIP": "239.10.0.5"},
        "EdidMgmnt": {
            "Version": "1.0.0",
            "SystemEdidList": {"DM 1080p": {}, "DM 4K": {}},
            "CustomEdidList": {},
            "CopyEdidList": {"Display 1": {}},
            "UploadFilePath": "/edid",
        },
        "DiscoveredStreams": {
            "Streams": {"Stream1": {"Address": "239.10.0.5"}, "Stream2": {}},
        },
        "Identify": {"IsSupported": True},
        "AudioVideoInputOutput": {"VideoInputs": {"Hdmi1": {"IsSyncDetected": True}}},
        "Device": {"Status": "Streaming"},
    }


def _deep_merge(target: dict[str, Any], update: dict[str, Any]) -> None:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


@dataclass
class RecordedRequest:
    """A request received by the stub device."""

    method: str
    path: str
    scheme: str
    headers: CIMultiDict[str]
    body: Any = None


@dataclass
class StubDevice:
    """In-process DM-NVX web server speaking the login and /Device protocol."""

    username: str = TEST_USERNAME
    password: str = TEST_PASSWORD
    login_status: int = 200
    session_id: str = "42"
    reject_sessions: bool = False
    xsrf_token: str | None = None
    write_status: int = 200
    failing_resources: set[str] = field(default_factory=set)
    resources: dict[str, dict[str, Any]] = field(default_factory=default_device_resources)
    requests: list[RecordedRequest] = field(default_factory=list)

    def build_app(self) -> web.Application:
        """Return the aiohttp application for this device."""
        app = web.Application()
        app.router.add_get("/userlogin.html", self._login_page)
        app.router.add_post("/userlogin.html", self._login)
        app.router.add_get("/logout", self._logout)
        app.router.add_get("/Device", self._get_root)
        app.router.add_get("/Device/{resource}", self._get_resource)
        app.router.add_post("/Device/{resource}", self._post_resource)
        return app

    def _record(self, request: web.Request, body: Any = None) -> None:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                scheme=request.url.scheme,
                headers=CIMultiDict(request.headers),
                body=body,
            )
        )

    def requests_to(self, method: str, path_prefix: str = "") -> list[RecordedRequest]:
        """Return recorded requests matching a method and path prefix."""
        return [
            r for r in self.requests if r.method == method and r.path.startswith(path_prefix)
        ]

    def _authorized(self, request: web.Request) -> bool:
        cookie = request.headers.get("Cookie", "")
        return not self.reject_sessions and f"userid={self.session_id}" in cookie

    async def _login_page(self, request: web.Request) -> web.Response:
        self._record(request)
        response = web.Response(text="<html>login</html>", content_type="text/html")
        response.headers.add("Set-Cookie", f"TRACKID={TEST_TRACK_ID}; Path=/; HttpOnly")
        return response

    async def _login(self, request: web.Request) -> web.Response:
        form = await request.post()
        self._record(request, dict(form))
        valid = (
            form.get("login") == self.username
            and form.get("passwd") == self.password
            and f"TRACKID={TEST_TRACK_ID}" in request.headers.get("Cookie", "")
        )
        if not valid:
            return web.Response(status=401)
        if self.login_status not in (200, 302):
            return web.Response(status=self.login_status)

        response = web.Response(status=self.login_status, text="ok")
        response.headers.add("Set-Cookie", "userstr=admin-hash; Path=/; HttpOnly")
        response.headers.add("Set-Cookie", f"userid={self.session_id}; Path=/")
        if self.xsrf_token is not None:
            response.headers["CREST-XSRF-TOKEN"] = self.xsrf_token
        return response

    async def _logout(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.Response(text="bye")

    async def _get_root(self, request: web.Request) -> web.Response:
        self._record(request)
        if not self._authorized(request):
            return web.Response(status=401)
        return web.json_response({"Device": self.resources["Device"]})

    async def _get_resource(self, request: web.Request) -> web.Response:
        self._record(request)
        resource = request.match_info["resource"]
        if not self._authorized(request):
            return web.Response(status=401)
        if resource in self.failing_resources:
            return web.Response(status=500, text="internal error")
        if resource not in self.resources:
            return web.Response(status=404)
        return web.json_response({"Device": {resource: self.resources[resource]}})

    async def _post_resource(self, request: web.Request) -> web.Response:
        body = await request.json()
        self._record(request, body)
        resource = request.match_info["resource"]
        if not self._authorized(request):
            return web.Response(status=401)
        if not 200 <= self.write_status < 300:
            return web.Response(status=self.write_status, reason="Bad Request")
        update = body.get("Device", {}).get(resource, {})
        if resource != "Identify":
            _deep_merge(self.resources.setdefault(resource, {}), update)
        return web.json_response({"Actions": [{"Results": [{"StatusId": 0}]}]})


@pytest.fixture
def stub_device() -> StubDevice:
    """Return a stub device with default resources."""
    return StubDevice()


@pytest_asyncio.fixture
async def stub_server(stub_device: StubDevice) -> AsyncGenerator[TestServer]:
    """Serve the stub device over plain HTTP on a local port."""
    server = TestServer(stub_device.build_app())
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def stub_address(stub_server: TestServer) -> str:
    """Return the host:port address of the stub device."""
    return f"127.0.0.1:{stub_server.port}"
