"""Connecting to a kubelet, locally or through the API server proxy, and querying it."""

from __future__ import annotations

import logging
import posixpath
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests
import requests.auth

HEALTHZ_PATH = "/healthz"
DEFAULT_HTTP_KUBELET_PORT = 10255
DEFAULT_HTTPS_KUBELET_PORT = 10250
API_PROXY_PATH = "/api/v1/nodes/{node}/proxy/"
HTTP_SCHEME = "http"
HTTPS_SCHEME = "https"

_BACKOFF_STEP_SECONDS = 1.0


class ConnectionError_(Exception):
    """Raised when the kubelet cannot be reached or queried."""


def _join_path(*parts: str) -> str:
    """Join URL path segments and clean the result; empty when all parts are."""
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _with_path(base_url: str, url_path: str) -> str:
    parts = urlsplit(base_url)
    return urlunsplit(
        (parts.scheme, parts.netloc, _join_path(parts.path, url_path), parts.query, parts.fragment)
    )


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class _BearerTokenFileAuth(requests.auth.AuthBase):
    """Adds a bearer token read from a file, picking up changes to the file."""

    def __init__(self, token_file: str) -> None:
        self._path = Path(token_file)
        self._token = self._path.read_text().strip()

    def _current_token(self) -> str:
        try:
            self._token = self._path.read_text().strip()
        except OSError:
            pass
        return self._token

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        if "Authorization" not in request.headers:
            request.headers["Authorization"] = f"Bearer {self._current_token()}"
        return request


@dataclass
class ConnParams:
    """Where the kubelet is reached and the session used to reach it."""

    url: str
    session: Any
    timeout: float | None = None


@dataclass
class ConnectorSettings:
    """What the default connector needs to find the kubelet of a node."""

    node_name: str
    node_ip: str
    api_server_host: str = ""
    bearer_token_file: str = ""
    api_server_verify: bool | str = True
    kubelet_port: int = 0
    kubelet_scheme: str = ""
    timeout: float | None = None


def _check_connection(conn: ConnParams) -> None:
    url = _with_path(conn.url, HEALTHZ_PATH)
    try:
        response = conn.session.get(url, timeout=conn.timeout)
    except requests.RequestException as err:
        raise ConnectionError_(f'connecting to "{url}": {err}') from err
    try:
        if response.status_code != 200:
            raise ConnectionError_(
                f"calling {url} got non-200 status code: {response.status_code}"
            )
    finally:
        response.close()


class DefaultConnector:
    """Probes the kubelet on the node IP first, then through the API server proxy."""

    def __init__(
        self,
        settings: ConnectorSettings,
        node_port_lookup: Callable[[str], int] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._node_port_lookup = node_port_lookup
        self._logger = logger or logging.getLogger(__name__)

    def connect(self) -> ConnParams:
        """Return connection parameters for the first kubelet endpoint that answers."""
        try:
            port = self._port()
        except Exception as err:
            raise ConnectionError_(f"getting kubelet port: {err}") from err

        scheme = self._scheme_for(port)
        host_url = _join_host_port(self._settings.node_ip, port)

        self._logger.info(
            "Trying to connect to kubelet locally with scheme=%r hostURL=%r", scheme, host_url
        )
        try:
            auth = self._bearer_auth()
        except OSError as err:
            raise ConnectionError_(
                f"creating tripper connecting to kubelet through nodeIP: {err}"
            ) from err

        try:
            conn = self._check_local_connection(auth, scheme, host_url)
        except ConnectionError_ as err:
            self._logger.info(
                "Kubelet not reachable locally with scheme=%r hostURL=%r: %s",
                scheme,
                host_url,
                err,
            )
        else:
            self._logger.info(
                "Connected to Kubelet through nodeIP with scheme=%r hostURL=%r", scheme, host_url
            )
            return conn

        self._logger.info(
            "Trying to connect to kubelet through API proxy %r to node %r",
            self._settings.api_server_host,
            self._settings.node_name,
        )
        try:
            proxy_auth = self._bearer_auth()
        except OSError as err:
            raise ConnectionError_(
                f"creating tripper connecting to kubelet through API server proxy: {err}"
            ) from err

        try:
            return self._check_connection_api_proxy(proxy_auth)
        except ConnectionError_ as err:
            raise ConnectionError_(
                f"creating connection parameters for API proxy: {err}"
            ) from err

    def _bearer_auth(self) -> _BearerTokenFileAuth | None:
        if not self._settings.bearer_token_file:
            return None
        return _BearerTokenFileAuth(self._settings.bearer_token_file)

    def _port(self) -> int:
        if self._settings.kubelet_port:
            self._logger.debug(
                "Setting Port %d as specified by user config", self._settings.kubelet_port
            )
            return self._settings.kubelet_port
        if self._node_port_lookup is None:
            raise LookupError("no node port lookup configured")
        try:
            port = int(self._node_port_lookup(self._settings.node_name))
        except Exception as err:
            raise LookupError(f'getting node "{self._settings.node_name}": {err}') from err
        self._logger.debug("Setting Port %d as found in status condition", port)
        return port

    def _scheme_for(self, port: int) -> str:
        if self._settings.kubelet_scheme:
            self._logger.debug(
                "Setting Kubelet Endpoint Scheme %s as specified by user config",
                self._settings.kubelet_scheme,
            )
            return self._settings.kubelet_scheme
        if port == DEFAULT_HTTP_KUBELET_PORT:
            self._logger.debug("Setting Kubelet Endpoint Scheme http since kubeletPort is %d", port)
            return HTTP_SCHEME
        if port == DEFAULT_HTTPS_KUBELET_PORT:
            self._logger.debug(
                "Setting Kubelet Endpoint Scheme https since kubeletPort is %d", port
            )
            return HTTPS_SCHEME
        self._logger.info(
            "Cannot automatically figure out scheme from non-standard port %d, "
            "please set kubelet.scheme in the config file.",
            port,
        )
        return ""

    def _check_local_connection(
        self, auth: _BearerTokenFileAuth | None, scheme: str, host_url: str
    ) -> ConnParams:
        self._logger.debug("connecting to kubelet directly with nodeIP")
        if scheme == HTTP_SCHEME:
            attempts = [lambda: self._check_http(host_url)]
        elif scheme == HTTPS_SCHEME:
            attempts = [lambda: self._check_https(host_url, auth)]
        else:
            self._logger.info(
                "Checking both HTTP and HTTPS since the scheme was not detected automatically, "
                "you can set kubelet.scheme to avoid this behaviour"
            )
            attempts = [
                lambda: self._check_https(host_url, auth),
                lambda: self._check_http(host_url),
            ]

        last_error: ConnectionError_ | None = None
        for attempt in attempts:
            try:
                return attempt()
            except ConnectionError_ as err:
                last_error = err
        raise ConnectionError_(f"no connection succeeded through localhost: {last_error}")

    def _check_http(self, host_url: str) -> ConnParams:
        self._logger.debug("testing kubelet connection over plain http to %s", host_url)
        conn = ConnParams(
            url=f"{HTTP_SCHEME}://{host_url}",
            session=requests.Session(),
            timeout=self._settings.timeout,
        )
        try:
            _check_connection(conn)
        except ConnectionError_ as err:
            raise ConnectionError_(f"checking connection over http: {err}") from err
        return conn

    def _check_https(self, host_url: str, auth: _BearerTokenFileAuth | None) -> ConnParams:
        self._logger.debug("testing kubelet connection over https to %s", host_url)
        session = requests.Session()
        session.auth = auth
        # The kubelet serving certificate cannot be verified like the API server's.
        session.verify = False
        conn = ConnParams(
            url=f"{HTTPS_SCHEME}://{host_url}", session=session, timeout=self._settings.timeout
        )
        try:
            _check_connection(conn)
        except ConnectionError_ as err:
            raise ConnectionError_(f"checking connection over https: {err}") from err
        return conn

    def _check_connection_api_proxy(self, auth: _BearerTokenFileAuth | None) -> ConnParams:
        api = urlsplit(self._settings.api_server_host)
        if not api.scheme or not api.netloc:
            raise ConnectionError_(
                "parsing kubernetes api url from in cluster config: "
                f"invalid URL {self._settings.api_server_host!r}"
            )
        session = requests.Session()
        session.auth = auth
        session.verify = self._settings.api_server_verify
        proxy_path = _join_path(API_PROXY_PATH.format(node=self._settings.node_name))
        conn = ConnParams(
            url=urlunsplit((api.scheme, api.netloc, proxy_path, "", "")),
            session=session,
            timeout=self._settings.timeout,
        )
        self._logger.debug(
            "Testing kubelet connection through API proxy: %s%s", api.netloc, proxy_path
        )
        try:
            _check_connection(conn)
        except ConnectionError_ as err:
            raise ConnectionError_(f"checking connection via API proxy: {err}") from err
        return conn


class StaticConnector:
    """A connector that returns fixed parameters without probing anything."""

    def __init__(self, session: Any, base_url: str) -> None:
        self._session = session
        self._base_url = base_url

    def connect(self) -> ConnParams:
        """Return the fixed connection parameters."""
        return ConnParams(url=self._base_url, session=self._session)


class KubeletClient:
    """Sends GET requests to a kubelet, retrying with a linear backoff."""

    def __init__(
        self,
        connector: Any,
        max_retries: int = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        if connector is None:
            raise ValueError("connector must not be None")
        try:
            conn = connector.connect()
        except Exception as err:
            raise ConnectionError_(
                f"connecting to kubelet using the connector: {err}"
            ) from err
        self._conn = conn
        self._attempts = max(1, max_retries)

    def url_for(self, url_path: str) -> str:
        """The full URL of ``url_path`` on the connected kubelet."""
        return _with_path(self._conn.url, url_path)

    def get(self, url_path: str) -> requests.Response:
        """GET ``url_path``, retrying on errors and server-side failures."""
        url = self.url_for(url_path)
        self._logger.debug("Calling Kubelet endpoint: %s", url)

        response = None
        last_error: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                response = self._conn.session.get(url, timeout=self._conn.timeout)
            except requests.RequestException as err:
                last_error = err
                response = None
                self._logger.debug("getting data from kubelet: attempt %d: %s", attempt, err)
            else:
                if response.status_code < 500:
                    return response
                self._logger.debug(
                    "getting data from kubelet: attempt %d: status %d",
                    attempt,
                    response.status_code,
                )
            if attempt < self._attempts:
                time.sleep(attempt * _BACKOFF_STEP_SECONDS)

        if response is not None:
            return response
        raise ConnectionError_(f"GET {url}: {last_error}") from last_error