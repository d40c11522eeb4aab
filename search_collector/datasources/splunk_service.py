"""Splunk REST API client.

Wraps the search job endpoints used by the query workers: login, job
creation, status polling, finalize and streamed CSV results.
"""

import csv
import io
import logging
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

import requests
import urllib3

from ..core.exceptions import RemoteQueryError

LOG = logging.getLogger(__name__)

# Dispatch states in which a job is not yet ready
_NOT_READY_STATES = ('QUEUED', 'PARSING')


class RowReader:
    """Lazy, finite, closeable sequence of result rows.

    Rows are dictionaries of column name to value. Empty CSV cells are
    dropped so that ``row.get(column)`` returns None for them, matching the
    behavior of a missing column.
    """

    def __init__(self, rows: Iterable[Mapping[str, Optional[str]]], response: Optional[requests.Response] = None):
        self._rows = rows
        self._response = response
        self.closed = False

    @classmethod
    def empty(cls) -> 'RowReader':
        """Reader standing in for a job that was terminated before completion."""
        return cls([])

    def __iter__(self) -> Iterator[Dict[str, str]]:
        for row in self._rows:
            yield {k: v for k, v in row.items() if k is not None and v not in (None, '')}

    def close(self) -> None:
        if self._response is not None and not self.closed:
            self._response.close()
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class SplunkService:
    """Session with a Splunk management endpoint.

    A single service is created per collection run and shared by all the
    query workers of that run. Each worker only issues its own requests over
    the underlying session.
    """

    def __init__(self, username: str, password: str, host: str, port: int,
                 tls_validation: str = 'normal', tls_ca: Optional[str] = None,
                 request_timeout: int = 60, session: Optional[requests.Session] = None):
        """Create the service and log in.

        Args:
            username: Splunk user name
            password: Splunk password
            host: Management host name or address
            port: Management port
            tls_validation: strict, normal or none
            tls_ca: Optional CA bundle for certificate verification
            request_timeout: Per-request timeout in seconds
            session: Pre-built session, mainly for tests

        Raises:
            ValueError: On invalid arguments
            RemoteQueryError: If login fails
        """
        if not username or not password or not host:
            raise ValueError("Username, password and host are required.")
        if port < 0:
            raise ValueError("Illegal port specified.")

        self.username = username
        self.password = password
        self.base_url = f"https://{host}:{port}"
        self.request_timeout = request_timeout
        self.session_key: Optional[str] = None

        self.session = session or requests.Session()
        if tls_validation == 'none':
            self.session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            LOG.warning("TLS validation is DISABLED for the Splunk endpoint. This is insecure.")
        else:
            self.session.verify = tls_ca if tls_ca else True

        self.login()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        kwargs.setdefault('timeout', self.request_timeout)
        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            raise RemoteQueryError(f"{method} {path} failed: {e}", context=path) from e

    def login(self) -> None:
        """Authenticate and attach the session key to later requests."""
        response = self._request('POST', '/services/auth/login',
                                 data={'username': self.username, 'password': self.password, 'output_mode': 'json'})
        try:
            self.session_key = response.json()['sessionKey']
        except (ValueError, KeyError) as e:
            raise RemoteQueryError(f"Login response from {self.base_url} has no session key", context=self.base_url) from e

        self.session.headers.update({'Authorization': f"Splunk {self.session_key}"})
        LOG.info(f"Logged into Splunk at {self.base_url} as {self.username}")

    def close(self) -> None:
        """Log out and close the session."""
        try:
            if self.session_key:
                self._request('DELETE', f"/services/authentication/httpauth-tokens/{self.session_key}")
                LOG.debug(f"Logged out from Splunk at {self.base_url}")
        except RemoteQueryError as e:
            LOG.debug(f"Logout attempt failed (not critical): {e}")
        finally:
            self.session_key = None
            self.session.close()

    def submit_query(self, query: str) -> str:
        """Create a normal search job and return its id."""
        response = self._request('POST', '/services/search/jobs',
                                 data={'search': query, 'exec_mode': 'normal', 'output_mode': 'json'})
        try:
            return response.json()['sid']
        except (ValueError, KeyError) as e:
            raise RemoteQueryError("Job creation response has no sid", context=query) from e

    def _job_content(self, sid: str) -> Dict[str, Any]:
        response = self._request('GET', f"/services/search/jobs/{sid}", params={'output_mode': 'json'})
        try:
            return response.json()['entry'][0]['content']
        except (ValueError, KeyError, IndexError) as e:
            raise RemoteQueryError(f"Unexpected status response for job {sid}", context=sid) from e

    def poll_ready(self, sid: str) -> bool:
        """True when the job has been dispatched and has finished."""
        content = self._job_content(sid)
        return bool(content.get('isDone')) and content.get('dispatchState') not in _NOT_READY_STATES

    def run_duration(self, sid: str) -> float:
        """Seconds the job has been running. Queued jobs report 0."""
        try:
            return float(self._job_content(sid).get('runDuration', 0.0))
        except (RemoteQueryError, TypeError, ValueError):
            return 0.0

    def terminate(self, sid: str) -> str:
        """Ask the job to finalize. Failures are not fatal."""
        try:
            self._request('POST', f"/services/search/jobs/{sid}/control", data={'action': 'finalize'})
        except RemoteQueryError as e:
            LOG.debug(f"Failed to terminate job {sid}: {e}")
        return sid

    def fetch_results(self, sid: str) -> RowReader:
        """Stream all results of a finished job.

        The returned reader holds the HTTP response open and must be closed.
        """
        response = self._request('GET', f"/services/search/jobs/{sid}/results",
                                 params={'output_mode': 'csv', 'count': 0}, stream=True)
        # The csv module needs line endings intact to read quoted multi-line cells
        response.raw.decode_content = True
        text = io.TextIOWrapper(response.raw, encoding=response.encoding or 'utf-8', newline='')
        return RowReader(csv.DictReader(text), response=response)
