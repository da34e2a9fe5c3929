"""HTTP client for the Cortex ruler, Alertmanager and query APIs."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote, urlsplit, urlunsplit

import requests
import yaml

logger = logging.getLogger(__name__)

RULER_API_PATH = "/api/v1/rules"
LEGACY_API_PATH = "/api/prom/rules"
ALERTMANAGER_API_PATH = "/api/v1/alerts"

_MAX_ERROR_BODY = 512
# Characters left unescaped in a single path segment, besides the unreserved ones.
_PATH_SEGMENT_SAFE = "$&+:=@"


class CortexAPIError(Exception):
    """Raised when the Cortex API cannot be used or returns an error."""


class ResourceNotFoundError(CortexAPIError):
    """Raised when the requested resource does not exist."""

    def __init__(self, message: str = "requested resource not found") -> None:
        super().__init__(message)


@dataclass
class ClientConfig:
    """Connection and authentication settings for a Cortex client."""

    address: str = ""
    id: str = ""
    user: str = ""
    key: str = ""
    auth_token: str = ""
    use_legacy_routes: bool = False
    tls_ca_path: str = ""
    tls_cert_path: str = ""
    tls_key_path: str = ""
    tls_insecure_skip_verify: bool = False
    timeout: float | None = None


def join_path(base_path: str, target_path: str) -> str:
    """Join two URL paths, dropping exactly one trailing slash of the base.

    The target path is expected to start with a slash.
    """
    if base_path.endswith("/"):
        base_path = base_path[:-1]
    return base_path + target_path


def build_url(path: str, endpoint: str) -> str:
    """Append an already escaped ``path`` (with optional query) to ``endpoint``."""
    base = urlsplit(endpoint)
    target = urlsplit(path)
    return urlunsplit(
        (
            base.scheme,
            base.netloc,
            join_path(base.path, target.path),
            target.query or base.query,
            "",
        )
    )


def _escape_segment(text: str) -> str:
    return quote(text, safe=_PATH_SEGMENT_SAFE)


def _first_line(body: bytes) -> str:
    line = body[:_MAX_ERROR_BODY].split(b"\n", 1)[0]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode("utf-8", errors="replace")


def _check_response(response: requests.Response) -> None:
    """Raise if the response does not carry a 2xx status."""
    status = f"{response.status_code} {response.reason or ''}".strip()
    logger.debug("checking response, status=%s", status)
    if 200 <= response.status_code <= 299:
        return

    message = _first_line(response.content or b"")
    if message:
        error = f"server returned HTTP status {status}: {message}"
    else:
        error = f"server returned HTTP status {status}"

    if response.status_code == 404:
        logger.debug(error)
        raise ResourceNotFoundError()

    logger.error(error)
    raise CortexAPIError(error)


class CortexClient:
    """Loads and reads rules and Alertmanager configuration in Cortex."""

    def __init__(
        self, config: ClientConfig, session: requests.Session | None = None
    ) -> None:
        urlsplit(config.address)
        logger.debug("new ruler client created, address=%s id=%s", config.address, config.id)

        self._config = config
        self._session = session or requests.Session()
        self._verify, self._cert = self._tls_options(config)
        self.api_path = LEGACY_API_PATH if config.use_legacy_routes else RULER_API_PATH

    @staticmethod
    def _tls_options(config: ClientConfig) -> tuple[bool | str, tuple[str, str] | None]:
        if bool(config.tls_cert_path) != bool(config.tls_key_path):
            logger.error(
                "error loading tls files, tls-ca=%s tls-cert=%s tls-key=%s",
                config.tls_ca_path,
                config.tls_cert_path,
                config.tls_key_path,
            )
            raise CortexAPIError("client initialization unsuccessful")
        for path in (config.tls_ca_path, config.tls_cert_path, config.tls_key_path):
            if path and not os.path.isfile(path):
                logger.error("error loading tls file %s", path)
                raise CortexAPIError("client initialization unsuccessful")

        verify: bool | str = True
        if config.tls_insecure_skip_verify:
            verify = False
        elif config.tls_ca_path:
            verify = config.tls_ca_path
        cert = (config.tls_cert_path, config.tls_key_path) if config.tls_cert_path else None
        return verify, cert

    def _request(
        self, path: str, method: str, payload: bytes | None = None
    ) -> requests.Response:
        cfg = self._config
        url = build_url(path, cfg.address)

        if (cfg.user or cfg.key) and cfg.auth_token:
            message = "atmost one of basic auth or auth token should be configured"
            logger.error("error during request to cortex api, url=%s method=%s: %s", url, method, message)
            raise CortexAPIError(message)

        auth: tuple[str, str] | None = None
        if cfg.user:
            auth = (cfg.user, cfg.key)
        elif cfg.key:
            auth = (cfg.id, cfg.key)

        headers = {"X-Scope-OrgID": cfg.id}
        if cfg.auth_token:
            headers["Authorization"] = "Bearer " + cfg.auth_token

        logger.debug("sending request to cortex api, url=%s method=%s", url, method)
        try:
            response = self._session.request(
                method,
                url,
                data=payload,
                headers=headers,
                auth=auth,
                verify=self._verify,
                cert=self._cert,
                timeout=cfg.timeout,
            )
        except requests.RequestException as exc:
            logger.error("error during request to cortex api, url=%s method=%s: %s", url, method, exc)
            raise

        try:
            _check_response(response)
        except CortexAPIError:
            response.close()
            raise
        return response

    def query(self, query: str) -> requests.Response:
        """Run a PromQL instant query and return the raw response."""
        text = f"query={query}&time={int(time.time())}"
        return self._request("/api/prom/api/v1/query?" + _escape_segment(text), "GET")

    def create_alertmanager_config(
        self, config: str, templates: Mapping[str, str] | None = None
    ) -> None:
        """Upload an Alertmanager configuration and its templates."""
        payload = yaml.safe_dump(
            {"template_files": dict(templates or {}), "alertmanager_config": config},
            sort_keys=False,
        ).encode("utf-8")
        self._request(ALERTMANAGER_API_PATH, "POST", payload).close()

    def delete_alertmanager_config(self) -> None:
        """Delete the tenant's Alertmanager configuration."""
        self._request(ALERTMANAGER_API_PATH, "DELETE").close()

    def get_alertmanager_config(self) -> tuple[str, dict[str, str]]:
        """Return the Alertmanager configuration and its template files."""
        try:
            response = self._request(ALERTMANAGER_API_PATH, "GET")
        except CortexAPIError:
            logger.debug("no alert config present in response")
            raise
        with response:
            body = response.content
        try:
            data = yaml.safe_load(body) or {}
        except yaml.YAMLError as exc:
            logger.debug("failed to unmarshal alertmanager config from response: %s", body)
            raise CortexAPIError(f"unable to unmarshal response: {exc}") from exc
        if not isinstance(data, dict):
            raise CortexAPIError("unable to unmarshal response: not a mapping")
        return data.get("alertmanager_config") or "", dict(data.get("template_files") or {})

    def create_rule_group(self, namespace: str, rule_group: Mapping[str, Any]) -> None:
        """Create or replace a rule group in ``namespace``."""
        payload = yaml.safe_dump(dict(rule_group), sort_keys=False).encode("utf-8")
        path = f"{self.api_path}/{_escape_segment(namespace)}"
        self._request(path, "POST", payload).close()

    def _group_path(self, namespace: str, group_name: str) -> str:
        return f"{self.api_path}/{_escape_segment(namespace)}/{_escape_segment(group_name)}"

    def delete_rule_group(self, namespace: str, group_name: str) -> None:
        """Delete a rule group."""
        self._request(self._group_path(namespace, group_name), "DELETE").close()

    def get_rule_group(self, namespace: str, group_name: str) -> dict[str, Any]:
        """Return a single rule group."""
        path = self._group_path(namespace, group_name)
        logger.debug("fetching rule group %s", path)
        with self._request(path, "GET") as response:
            body = response.content
        try:
            data = yaml.safe_load(body) or {}
        except yaml.YAMLError as exc:
            logger.debug("failed to unmarshal rule group from response: %s", body)
            raise CortexAPIError(f"unable to unmarshal response: {exc}") from exc
        if not isinstance(data, dict):
            raise CortexAPIError("unable to unmarshal response: not a mapping")
        return data

    def list_rules(self, namespace: str = "") -> dict[str, list[dict[str, Any]]]:
        """Return rule groups by namespace, optionally for one namespace only."""
        path = self.api_path
        if namespace:
            path = f"{path}/{namespace}"
        with self._request(path, "GET") as response:
            body = response.content
        try:
            data = yaml.safe_load(body) or {}
        except yaml.YAMLError as exc:
            raise CortexAPIError(f"unable to unmarshal response: {exc}") from exc
        if not isinstance(data, dict):
            raise CortexAPIError("unable to unmarshal response: not a mapping")
        return {str(ns): list(groups or []) for ns, groups in data.items()}