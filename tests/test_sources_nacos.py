"""Tests for the Nacos HTTP client and source (httpx.MockTransport, no network)."""

import threading
import time
from urllib.parse import parse_qs

import httpx
import pytest

from service_config.errors import SourceUnreachableError
from service_config.provider import ConfigProvider, new_options
from service_config.schemas import NacosSettings
from service_config.sources.nacos import NacosClient, NacosSource, content_md5
from tests.helpers import AppConfig


def _settings(**overrides) -> NacosSettings:
    data = {"host": "nacos.test", "data_id": "app.json", "group": "DEFAULT_GROUP", "namespace_id": "dev"}
    data.update(overrides)
    return NacosSettings(**data)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class FakeNacosServer:
    """Just enough of the Nacos open API for the client: login, configs, listener."""

    def __init__(self, content: str = '{"port": 8080}'):
        self.content = content
        self.logins = 0
        self.requests: list[httpx.Request] = []
        self.changed = threading.Event()
        self.lock = threading.Lock()

    def set_content(self, content: str) -> None:
        with self.lock:
            self.content = content
        self.changed.set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/nacos/v1/auth/login":
            self.logins += 1
            form = _form(request)
            if form.get("password") != "secret":
                return httpx.Response(403, text="unknown user!")
            return httpx.Response(200, json={"accessToken": f"tok-{self.logins}", "tokenTtl": 18000})
        if path == "/nacos/v1/cs/configs":
            if request.url.params.get("dataId") != "app.json":
                return httpx.Response(404, text="config data not exist")
            with self.lock:
                return httpx.Response(200, text=self.content)
        if path == "/nacos/v1/cs/configs/listener":
            # Short hang instead of the real 30s long poll
            if self.changed.wait(timeout=0.05):
                self.changed.clear()
                return httpx.Response(200, text="app.json%02DEFAULT_GROUP%02dev%01\n")
            return httpx.Response(200, text="")
        return httpx.Response(404)


@pytest.fixture
def server() -> FakeNacosServer:
    return FakeNacosServer()


@pytest.fixture
def client(server):
    c = NacosClient(_settings(), timeout=2, transport=httpx.MockTransport(server.handler))
    yield c
    c.close()


def test_get_config_sends_ids_and_tenant(client, server):
    assert client.get_config("app.json", "DEFAULT_GROUP") == '{"port": 8080}'
    params = server.requests[-1].url.params
    assert params["dataId"] == "app.json"
    assert params["group"] == "DEFAULT_GROUP"
    assert params["tenant"] == "dev"
    assert "accessToken" not in params


def test_get_config_not_found(client):
    with pytest.raises(SourceUnreachableError, match="not found"):
        client.get_config("missing.json", "DEFAULT_GROUP")


def test_get_config_server_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    c = NacosClient(_settings(), transport=transport)
    with pytest.raises(SourceUnreachableError, match="HTTP 500"):
        c.get_config("app.json", "DEFAULT_GROUP")


def test_connection_error_is_source_unreachable():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    c = NacosClient(_settings(), transport=httpx.MockTransport(refuse))
    with pytest.raises(SourceUnreachableError, match="connection refused"):
        c.get_config("app.json", "DEFAULT_GROUP")


def test_login_once_and_reuse_token(server):
    c = NacosClient(
        _settings(username="svc", password="secret"),
        transport=httpx.MockTransport(server.handler),
    )
    c.get_config("app.json", "DEFAULT_GROUP")
    c.get_config("app.json", "DEFAULT_GROUP")
    assert server.logins == 1
    assert server.requests[-1].url.params["accessToken"] == "tok-1"


def test_login_rejected(server):
    c = NacosClient(
        _settings(username="svc", password="wrong"),
        transport=httpx.MockTransport(server.handler),
    )
    with pytest.raises(SourceUnreachableError, match="login failed"):
        c.get_config("app.json", "DEFAULT_GROUP")


def test_listen_request_format_and_result(client, server):
    md5 = content_md5(server.content)
    assert client.listen("app.json", "DEFAULT_GROUP", md5, timeout=1) is False
    request = server.requests[-1]
    assert _form(request)["Listening-Configs"] == f"app.json\x02DEFAULT_GROUP\x02{md5}\x02dev\x01"
    assert request.headers["Long-Pulling-Timeout"] == "1000"
    server.set_content('{"port": 9090}')
    assert client.listen("app.json", "DEFAULT_GROUP", md5, timeout=1) is True


def test_listen_without_namespace_omits_tenant(server):
    c = NacosClient(_settings(namespace_id=""), transport=httpx.MockTransport(server.handler))
    c.listen("app.json", "DEFAULT_GROUP", "abc", timeout=1)
    assert _form(server.requests[-1])["Listening-Configs"] == "app.json\x02DEFAULT_GROUP\x02abc\x01"


def test_subscribe_delivers_namespace_group_data_id_content(client, server):
    received = []
    got = threading.Event()

    def on_change(namespace, group, data_id, content):
        received.append((namespace, group, data_id, content))
        got.set()

    sub = client.subscribe("app.json", "DEFAULT_GROUP", on_change, md5=content_md5(server.content), poll_timeout=1)
    try:
        server.set_content('{"port": 9090}')
        assert got.wait(timeout=5)
    finally:
        sub.stop()
    assert received[0] == ("dev", "DEFAULT_GROUP", "app.json", '{"port": 9090}')
    assert not sub.running


def test_subscribe_survives_transient_errors(server):
    """A failing listen is logged and retried; the loop keeps going."""
    failures = {"left": 1}

    def flaky(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/listener") and failures["left"]:
            failures["left"] -= 1
            raise httpx.ReadTimeout("read timed out", request=request)
        return server.handler(request)

    c = NacosClient(_settings(), transport=httpx.MockTransport(flaky))
    got = threading.Event()
    sub = c.subscribe("app.json", "DEFAULT_GROUP", lambda *args: got.set(), md5=content_md5(server.content), poll_timeout=1)
    try:
        server.set_content('{"port": 7070}')
        assert got.wait(timeout=5)
    finally:
        sub.stop()
    assert failures["left"] == 0


def test_source_fetch_tracks_md5_for_subscription(server):
    source = NacosSource(_settings(), client=NacosClient(_settings(), transport=httpx.MockTransport(server.handler)))
    assert source.fetch() == '{"port": 8080}'
    sub = source.subscribe(lambda content: None)
    try:
        deadline = time.monotonic() + 5
        while not any(r.url.path.endswith("/listener") for r in server.requests) and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        sub.stop()
    listen = next(r for r in server.requests if r.url.path.endswith("/listener"))
    assert content_md5('{"port": 8080}') in _form(listen)["Listening-Configs"]


def test_provider_reloads_on_nacos_push(server, wait_until):
    """REMOTE + watch: a change on the server reaches config() without an extra read by the caller."""
    settings = _settings()
    source = NacosSource(
        settings,
        client=NacosClient(settings, transport=httpx.MockTransport(server.handler)),
        long_poll_timeout=1,
    )
    with ConfigProvider(new_options("json", AppConfig, watch=True), source=source) as provider:
        assert provider.config().port == 8080
        server.set_content('{"port": 9090}')
        assert wait_until(lambda: provider.config().port == 9090)
        server.set_content('{"port": oops}')
        server.set_content('{"port": 9191}')
        assert wait_until(lambda: provider.config().port == 9191)


def test_close_returns_promptly_while_long_poll_hangs(server):
    """Shutdown does not wait for a long poll the server is still holding open."""
    release = threading.Event()
    polling = threading.Event()

    def hanging(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/listener"):
            polling.set()
            release.wait(timeout=3)
            return httpx.Response(200, text="")
        return server.handler(request)

    settings = _settings()
    source = NacosSource(
        settings,
        client=NacosClient(settings, transport=httpx.MockTransport(hanging)),
        long_poll_timeout=3,
    )
    provider = ConfigProvider(new_options("json", AppConfig, watch=True), source=source)
    try:
        assert polling.wait(timeout=5)
        started = time.monotonic()
        provider.close()
        assert time.monotonic() - started < 1.0
        assert provider.closed
    finally:
        release.set()
