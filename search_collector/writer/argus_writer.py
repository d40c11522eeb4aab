"""
Argus writer for the search collector.

Posts metric and annotation batches to the Argus web services collection
endpoints over a cookie-authenticated HTTP session.
"""

import logging
from typing import List, Optional
from urllib.parse import urlparse

import requests

from .base import Writer
from ..core.exceptions import ConfigurationError, RelayForwardError
from ..schema.models import Annotation, Metric

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30


class ArgusWriter(Writer):
    """
    Writer submitting batches to Argus web services.
    """

    def __init__(self, endpoint: str, username: Optional[str] = None, password: Optional[str] = None,
                 timeout: int = DEFAULT_TIMEOUT_SEC, session: Optional[requests.Session] = None):
        """
        Initialize the writer.

        Args:
            endpoint: Base URL including an explicit port, e.g. https://argus:8443/argusws
            username: Argus user name
            password: Argus password
            timeout: Per-request timeout in seconds
            session: Pre-built session, mainly for tests

        Raises:
            ConfigurationError: If the endpoint is malformed or has no port
        """
        parsed = urlparse(endpoint or '')
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise ConfigurationError(f"Invalid Argus endpoint: {endpoint!r}", context=endpoint)
        try:
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(f"Invalid port in Argus endpoint: {endpoint!r}", context=endpoint) from e
        if port is None:
            raise ConfigurationError(f"Argus endpoint must include an explicit port: {endpoint!r}", context=endpoint)

        self.endpoint = endpoint.rstrip('/')
        self.username = username
        self.password = password
        self.timeout = timeout
        self.logged_in = False

        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json', 'Accept': 'application/json'})

        LOG.info(f"ArgusWriter initialized for {self.endpoint}")

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.endpoint}{path}"
        kwargs.setdefault('timeout', self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise RelayForwardError(f"{method} {path} failed: {e}", context=path) from e

        if not response.ok:
            raise RelayForwardError(f"{method} {path} returned {response.status_code}: {response.reason}",
                                    status_code=response.status_code, context=path)
        return response

    def login(self) -> None:
        if not self.username or not self.password:
            raise ConfigurationError("Argus username and password are required", context=self.endpoint)
        self._request('POST', '/auth/login', json={'username': self.username, 'password': self.password})
        self.logged_in = True
        LOG.info(f"Logged into Argus at {self.endpoint} as {self.username}")

    def logout(self) -> None:
        self._request('GET', '/auth/logout')
        self.logged_in = False
        LOG.debug(f"Logged out from Argus at {self.endpoint}")

    def put_metrics(self, metrics: List[Metric]) -> None:
        self._require_batch(metrics, "Metrics")
        self._request('POST', '/collection/metrics', json=[m.to_dict() for m in metrics])
        LOG.info(f"Posted {len(metrics)} metrics to Argus")

    def put_annotations(self, annotations: List[Annotation]) -> None:
        self._require_batch(annotations, "Annotations")
        self._request('POST', '/collection/annotations', json=[a.to_dict() for a in annotations])
        LOG.info(f"Posted {len(annotations)} annotations to Argus")

    def query_metrics(self, expression: str) -> requests.Response:
        """Run an Argus metric expression and return the raw response."""
        if not expression:
            raise ValueError("Expression cannot be null or empty.")
        return self._request('GET', '/metrics', params={'expression': expression})

    def close(self) -> None:
        try:
            if self.logged_in:
                self.logout()
        except RelayForwardError as e:
            LOG.warning(f"Failed to log out from Argus: {e}")
        finally:
            self.session.close()
            LOG.info("ArgusWriter closed")
