"""
DatoCMS Client - requests wrapper for the Content Management API.
Provides the item type and field CRUD operations the build needs, with
retry of transient failures and mapping of CMA error payloads.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ..exceptions import ApiError, NotFoundError, UniquenessError

logger = logging.getLogger(__name__)

API_VERSION = '3'

# CMA error codes -> exception classes; the inner (details) code wins
ERROR_MAP = {
    'VALIDATION_UNIQUENESS': UniquenessError,
    'NOT_FOUND': NotFoundError,
}


def _flatten(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a JSON:API resource object into a flat dict with its id."""
    flat = {'id': resource.get('id')}
    flat.update(resource.get('attributes') or {})
    return flat


def _error_entities(body: Any) -> List[Dict[str, Any]]:
    if not isinstance(body, dict):
        return []
    data = body.get('data')
    if not isinstance(data, list):
        return []
    return [e for e in data if isinstance(e, dict) and e.get('type') == 'api_error']


def parse_api_error(response: requests.Response, operation: str = '') -> ApiError:
    """Build the most specific ApiError for a failed CMA response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    return api_error_from_body(response.status_code, body, operation)


def api_error_from_body(status: int, body: Any, operation: str = '') -> ApiError:
    """
    Build the most specific ApiError from a CMA error status and body.

    Rate limiting (429) and server errors (5xx) are always transient; other
    errors are transient only when the CMA flags them so.
    """
    code = inner_code = doc_url = None
    details = None
    transient = status == 429 or status >= 500

    entities = _error_entities(body)
    if entities:
        attrs = entities[0].get('attributes') or {}
        code = attrs.get('code')
        details = attrs.get('details')
        doc_url = attrs.get('doc_url')
        transient = transient or bool(attrs.get('transient'))
        if isinstance(details, dict) and 'code' in details:
            inner_code = details['code']

    error_cls = ERROR_MAP.get(inner_code or '') or ERROR_MAP.get(code or '')
    if error_cls is None:
        error_cls = NotFoundError if status == 404 else ApiError

    label = inner_code or code or f"HTTP {status}"
    message = f"{operation} failed: {label}" if operation else f"CMA request failed: {label}"
    return error_cls(message, status_code=status, code=code, inner_code=inner_code,
                     details=details, doc_url=doc_url, transient=transient)


class DatoClient:
    """
    DatoCMS Content Management API client.
    Supports item type and field create, update, delete and listing.
    """

    def __init__(self, api_token: str, base_url: str = "https://site-api.datocms.com",
                 environment: str = "", verify_ssl: bool = True, timeout: int = 30,
                 max_retries: int = 3, retry_backoff: float = 0.5,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.environment = environment
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.job_poll_attempts = 60
        self._session = session
        self._connected = False

    @classmethod
    def from_settings(cls, settings) -> "DatoClient":
        """Create a client from DatoSettings."""
        return cls(
            api_token=settings.api_token,
            base_url=settings.base_url,
            environment=settings.environment,
            verify_ssl=settings.verify_ssl,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
        )

    def connect(self) -> bool:
        """Establish the HTTP session and check the token against the site endpoint."""
        try:
            self.session.get(self._url('/site'), timeout=self.timeout).raise_for_status()
            self._connected = True
            logger.info(f"Connected to DatoCMS at {self.base_url}"
                        + (f" (environment {self.environment})" if self.environment else ""))
            return True
        except requests.RequestException as e:
            logger.error(f"Failed to connect to DatoCMS: {e}")
            self._connected = False
            return False

    @property
    def session(self) -> requests.Session:
        """Get the configured requests session."""
        if self._session is None:
            self._session = requests.Session()
        self._session.verify = self.verify_ssl
        self._session.headers.update(self._headers())
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {
            'Authorization': f"Bearer {self.api_token}",
            'Accept': 'application/json',
            'Content-Type': 'application/vnd.api+json',
            'X-Api-Version': API_VERSION,
        }
        if self.environment:
            headers['X-Environment'] = self.environment
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _retry_delay(self, attempt: int, response: Optional[requests.Response] = None) -> float:
        """Linear backoff, or what the server asks for when it says so."""
        if response is not None:
            for header in ('Retry-After', 'X-RateLimit-Reset'):
                value = response.headers.get(header)
                if value:
                    try:
                        return max(float(value), 0.0)
                    except ValueError:
                        pass
        return self.retry_backoff * attempt

    def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Any:
        """
        Perform a CMA request, retrying transient failures.

        Returns the response's "data" member (or the finished job's data for
        asynchronous operations).
        """
        operation = f"{method} {path}"
        for attempt in range(1, self.max_retries + 1):
            logger.debug(f"API call {operation} (attempt {attempt})")
            try:
                response = self.session.request(
                    method, self._url(path), json=payload, timeout=self.timeout
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt < self.max_retries:
                    logger.warning(f"{operation} connection error, retrying: {e}")
                    time.sleep(self._retry_delay(attempt))
                    continue
                raise ApiError(f"{operation} failed: {e}", transient=True) from e

            if response.status_code < 400:
                return self._handle_success(response, operation)

            error = parse_api_error(response, operation)
            if error.transient and attempt < self.max_retries:
                logger.warning(f"{operation} transient error ({error.status_code}), retrying")
                time.sleep(self._retry_delay(attempt, response))
                continue
            logger.debug(f"{operation} failed: {error} details={error.details}")
            raise error

        raise ApiError(f"{operation} failed after {self.max_retries} attempts", transient=True)

    def _handle_success(self, response: requests.Response, operation: str) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        body = response.json()
        data = body.get('data') if isinstance(body, dict) else None
        if response.status_code == 202 and isinstance(data, dict) and data.get('type') == 'job':
            return self._wait_for_job(data['id'], operation)
        return data

    def _wait_for_job(self, job_id: str, operation: str) -> Any:
        """Poll an asynchronous CMA job until its result is available."""
        logger.debug(f"{operation} queued as job {job_id}")
        for attempt in range(1, self.job_poll_attempts + 1):
            try:
                result = self._request('GET', f"/job-results/{job_id}")
            except NotFoundError:
                time.sleep(self.retry_backoff)
                continue
            attrs = (result or {}).get('attributes') or {}
            status = attrs.get('status', 200)
            payload = attrs.get('payload') or {}
            if status >= 400:
                raise api_error_from_body(status, payload, operation)
            return payload.get('data')
        raise ApiError(f"{operation} job {job_id} did not finish", transient=True)

    # Item type operations
    def list_item_types(self) -> List[Dict[str, Any]]:
        """List all item types (blocks and models)."""
        return [_flatten(r) for r in self._request('GET', '/item-types') or []]

    def create_item_type(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Create an item type and return it."""
        payload = {'data': {'type': 'item_type', 'attributes': attributes}}
        return _flatten(self._request('POST', '/item-types', payload))

    def update_item_type(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update an item type's attributes."""
        payload = {'data': {'type': 'item_type', 'id': item_type_id, 'attributes': attributes}}
        return _flatten(self._request('PUT', f"/item-types/{item_type_id}", payload))

    def delete_item_type(self, item_type_id: str) -> None:
        """Delete an item type."""
        self._request('DELETE', f"/item-types/{item_type_id}")

    # Field operations
    def list_fields(self, item_type_id: str) -> List[Dict[str, Any]]:
        """List the fields of an item type."""
        return [_flatten(r) for r in self._request('GET', f"/item-types/{item_type_id}/fields") or []]

    def create_field(self, item_type_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Create a field on an item type."""
        payload = {'data': {'type': 'field', 'attributes': attributes}}
        return _flatten(self._request('POST', f"/item-types/{item_type_id}/fields", payload))

    def update_field(self, field_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Patch a field in place."""
        payload = {'data': {'type': 'field', 'id': field_id, 'attributes': attributes}}
        return _flatten(self._request('PUT', f"/fields/{field_id}", payload))

    def delete_field(self, field_id: str) -> None:
        """Delete a field."""
        self._request('DELETE', f"/fields/{field_id}")
