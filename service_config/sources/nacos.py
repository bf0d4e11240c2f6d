"""
Nacos config source over the HTTP open API.

- Uses httpx (sync client; the accessor and reload worker are plain threads).
- Fetch: GET {ctx}/v1/cs/configs.
- Push: long poll on POST {ctx}/v1/cs/configs/listener keyed by content MD5;
  on change the new text is fetched and delivered as
  (namespace, group, data_id, content).
- Auth: POST {ctx}/v1/auth/login when a username is configured; the token is
  reused until shortly before its TTL runs out.
"""

import hashlib
import threading
import time
from typing import Any, Callable

import httpx
import structlog

from service_config.errors import SourceUnreachableError
from service_config.schemas import NacosSettings, SourceKind
from service_config.sources.base import ChangeCallback, ConfigSource, Subscription

logger = structlog.get_logger(__name__)

NacosChangeCallback = Callable[[str, str, str, str], None]

WORD_SEPARATOR = "\x02"
LINE_SEPARATOR = "\x01"
# Refresh the token once this fraction of its TTL has elapsed
TOKEN_REFRESH_RATIO = 0.9
MAX_RETRY_DELAY = 30.0
# How long stop() waits for the listener thread after aborting its long poll
STOP_JOIN_TIMEOUT = 0.5


def content_md5(content: str) -> str:
    return hashlib.md5(content.encode("utf-8")).hexdigest()


class NacosSubscription(Subscription):
    """Background long-poll listener; stop() ends the loop."""

    def __init__(
        self,
        thread: threading.Thread,
        stop_event: threading.Event,
        poll_http: httpx.Client,
        join_timeout: float = STOP_JOIN_TIMEOUT,
    ):
        self._thread = thread
        self._stop_event = stop_event
        self._poll_http = poll_http
        self._join_timeout = join_timeout

    def stop(self) -> None:
        self._stop_event.set()
        # Closing the long-poll client aborts a request that is still hanging
        self._poll_http.close()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._join_timeout)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()


class NacosClient:
    """Minimal Nacos config client: fetch, long-poll listen, subscribe."""

    def __init__(
        self,
        settings: NacosSettings,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings
        self.timeout = timeout
        self._transport = transport
        self._http = self._new_http()
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _new_http(self) -> httpx.Client:
        try:
            return httpx.Client(base_url=self.settings.base_url, timeout=self.timeout, transport=self._transport)
        except (httpx.InvalidURL, ValueError) as e:
            raise SourceUnreachableError(f"cannot create Nacos client for {self.settings.base_url}: {e}") from e

    def close(self) -> None:
        self._http.close()

    def _login(self) -> None:
        try:
            r = self._http.post(
                "/v1/auth/login",
                data={"username": self.settings.username, "password": self.settings.password or ""},
            )
            r.raise_for_status()
            data = r.json()
            token = data["accessToken"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise SourceUnreachableError(f"Nacos login failed: {e}") from e
        ttl = float(data.get("tokenTtl") or 18000)
        self._token = token
        self._token_expires_at = time.monotonic() + ttl * TOKEN_REFRESH_RATIO
        logger.debug("nacos_login_ok", host=self.settings.host, token_ttl=ttl)

    def _auth_params(self) -> dict[str, str]:
        if not self.settings.username:
            return {}
        with self._token_lock:
            if self._token is None or time.monotonic() >= self._token_expires_at:
                self._login()
            return {"accessToken": self._token or ""}

    def _invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None

    def _tenant_params(self) -> dict[str, str]:
        return {"tenant": self.settings.namespace_id} if self.settings.namespace_id else {}

    def get_config(self, data_id: str, group: str) -> str:
        """
        Fetch the full configuration text for data_id/group.

        Raises:
            SourceUnreachableError: connection error, auth failure, or config not found.
        """
        params: dict[str, Any] = {"dataId": data_id, "group": group, **self._tenant_params(), **self._auth_params()}
        try:
            r = self._http.get("/v1/cs/configs", params=params)
        except httpx.HTTPError as e:
            raise SourceUnreachableError(f"Nacos fetch {data_id}/{group} failed: {e}") from e
        if r.status_code == 404:
            raise SourceUnreachableError(f"Nacos config {data_id}/{group} not found")
        if r.status_code == 403:
            self._invalidate_token()
        if r.is_error:
            raise SourceUnreachableError(f"Nacos fetch {data_id}/{group} failed: HTTP {r.status_code} {r.text[:200]}")
        return r.text

    def listen(
        self,
        data_id: str,
        group: str,
        md5: str,
        timeout: float = 30.0,
        http: httpx.Client | None = None,
    ) -> bool:
        """
        Long poll until data_id/group differs from md5 or timeout elapses.

        http overrides the client used for the poll (subscriptions pass their own).

        Returns:
            True when the server reports a change, False on a quiet timeout.
        """
        fields = [data_id, group, md5]
        if self.settings.namespace_id:
            fields.append(self.settings.namespace_id)
        listening = WORD_SEPARATOR.join(fields) + LINE_SEPARATOR
        try:
            r = (http or self._http).post(
                "/v1/cs/configs/listener",
                params=self._auth_params(),
                data={"Listening-Configs": listening},
                headers={"Long-Pulling-Timeout": str(int(timeout * 1000))},
                timeout=timeout + self.timeout,
            )
        except httpx.HTTPError as e:
            raise SourceUnreachableError(f"Nacos listen {data_id}/{group} failed: {e}") from e
        if r.status_code == 403:
            self._invalidate_token()
        if r.is_error:
            raise SourceUnreachableError(f"Nacos listen {data_id}/{group} failed: HTTP {r.status_code}")
        return bool(r.text.strip())

    def subscribe(
        self,
        data_id: str,
        group: str,
        on_change: NacosChangeCallback,
        md5: str = "",
        poll_timeout: float = 30.0,
    ) -> NacosSubscription:
        """
        Start a daemon thread that long-polls and calls
        on_change(namespace, group, data_id, content) for every new version.
        """
        stop_event = threading.Event()
        namespace = self.settings.namespace_id
        poll_http = self._new_http()

        def run() -> None:
            last_md5 = md5
            delay = 1.0
            while not stop_event.is_set():
                try:
                    if not self.listen(data_id, group, last_md5, timeout=poll_timeout, http=poll_http):
                        delay = 1.0
                        continue
                    content = self.get_config(data_id, group)
                except SourceUnreachableError as e:
                    if stop_event.is_set():
                        break
                    logger.warning("nacos_listen_failed", data_id=data_id, group=group, error=str(e), retry_in=delay)
                    stop_event.wait(delay)
                    delay = min(delay * 2, MAX_RETRY_DELAY)
                    continue
                except RuntimeError:
                    # httpx refuses requests on a closed client; stop() closed it
                    if stop_event.is_set():
                        break
                    raise
                delay = 1.0
                new_md5 = content_md5(content)
                if new_md5 == last_md5:
                    continue
                last_md5 = new_md5
                if stop_event.is_set():
                    break
                try:
                    on_change(namespace, group, data_id, content)
                except Exception as e:
                    logger.exception("nacos_change_callback_failed", data_id=data_id, group=group, error=str(e))
            logger.info("nacos_listener_stopped", data_id=data_id, group=group)

        thread = threading.Thread(target=run, name=f"nacos-listener-{data_id}", daemon=True)
        thread.start()
        logger.info("nacos_listener_started", data_id=data_id, group=group, namespace=namespace)
        return NacosSubscription(thread, stop_event, poll_http)


class NacosSource(ConfigSource):
    """Configuration held in Nacos under (namespace, group, data_id)."""

    kind = SourceKind.REMOTE

    def __init__(
        self,
        settings: NacosSettings,
        client: NacosClient | None = None,
        fetch_timeout: float = 10.0,
        long_poll_timeout: float = 30.0,
    ):
        self.settings = settings
        self.client = client or NacosClient(settings, timeout=fetch_timeout)
        self.long_poll_timeout = long_poll_timeout
        self._md5 = ""

    def fetch(self) -> str:
        content = self.client.get_config(self.settings.data_id, self.settings.group)
        self._md5 = content_md5(content)
        return content

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        def forward(_namespace: str, _group: str, _data_id: str, content: str) -> None:
            on_change(content)

        return self.client.subscribe(
            self.settings.data_id,
            self.settings.group,
            forward,
            md5=self._md5,
            poll_timeout=self.long_poll_timeout,
        )

    def close(self) -> None:
        self.client.close()

    def describe(self) -> str:
        s = self.settings
        return f"nacos:{s.host}:{s.port}/{s.namespace_id or 'public'}/{s.group}/{s.data_id}"
