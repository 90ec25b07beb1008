"""
Directory API Client.

Thin authenticated JSON client over ``requests`` for the two REST surfaces the
package talks to: Microsoft Graph (relationships, assignments, groups,
service principals) and Partner Center (application consents).

Every non-2xx response is converted into an exception that keeps the remote
status code, error code and message:

    409 / 412          -> RemoteConflictError (duplicate or stale etag)
    other non-2xx      -> RemoteRequestError
    no response at all -> DirectoryTransportError

Nothing here retries: the caller owns retry policy.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requests

from ..exceptions import DirectoryTransportError, RemoteConflictError, RemoteRequestError
from ..models import AccessToken
from ..timeout_config import http_timeout

logger = logging.getLogger(__name__)

CONFLICT_STATUS_CODES = (409, 412)

Token = Union[AccessToken, str]


def parse_remote_error(response: requests.Response) -> Tuple[Optional[str], Optional[str]]:
    """Extract (code, message) from a Graph, Partner Center or token endpoint error body."""
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return None, text[:500] or response.reason

    if not isinstance(body, dict):
        return None, str(body)[:500]

    error = body.get("error")
    # Graph: {"error": {"code": ..., "message": ...}}
    if isinstance(error, dict):
        return error.get("code"), error.get("message")
    # Identity platform: {"error": "invalid_grant", "error_description": ...}
    if isinstance(error, str):
        return error, body.get("error_description")
    # Partner Center: {"code": 600xx, "description": ...}
    if "code" in body or "description" in body:
        code = body.get("code")
        return (str(code) if code is not None else None), body.get("description")
    return None, response.reason


@dataclass
class DirectoryResponse:
    """Successful directory response."""

    status_code: int
    data: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def etag(self) -> Optional[str]:
        return self.data.get("@odata.etag") or self.headers.get("ETag")


class DirectoryClient:
    """Authenticated HTTPS JSON requests against the directory service."""

    def __init__(
        self,
        graph_base_url: str = "https://graph.microsoft.com/v1.0",
        partner_center_base_url: str = "https://api.partnercenter.microsoft.com/v1",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.graph_base_url = graph_base_url.rstrip("/")
        self.partner_center_base_url = partner_center_base_url.rstrip("/")
        self.session = session or requests.Session()

    def graph_url(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self.graph_base_url}/{path.lstrip('/')}"

    def partner_center_url(self, path: str) -> str:
        return f"{self.partner_center_base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        url: str,
        token: Token,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        etag: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> DirectoryResponse:
        """Send one request; ``etag`` becomes an ``If-Match`` precondition.

        Raises:
            RemoteConflictError: 409/412
            RemoteRequestError: Any other non-2xx status
            DirectoryTransportError: The request produced no response
        """
        request_headers = {
            "Authorization": token if isinstance(token, str) else token.authorization_header,
            "Accept": "application/json",
        }
        if etag:
            request_headers["If-Match"] = etag
        if headers:
            request_headers.update(headers)

        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=request_headers,
                timeout=http_timeout(),
            )
        except requests.RequestException as e:
            raise DirectoryTransportError(
                f"{method} {url} failed without a response",
                method=method,
                url=url,
                cause=e,
            ) from e

        if not response.ok:
            remote_code, remote_message = parse_remote_error(response)
            error_cls = (
                RemoteConflictError
                if response.status_code in CONFLICT_STATUS_CODES
                else RemoteRequestError
            )
            logger.debug(
                f"{method} {url} -> {response.status_code} {remote_code}: {remote_message}"
            )
            raise error_cls(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                remote_code=remote_code,
                remote_message=remote_message,
                method=method,
                url=url,
            )

        data: Dict[str, Any] = {}
        if response.content:
            try:
                body = response.json()
                data = body if isinstance(body, dict) else {"value": body}
            except ValueError:
                data = {}
        return DirectoryResponse(
            status_code=response.status_code,
            data=data,
            headers=dict(response.headers or {}),
        )

    def get(self, url: str, token: Token, **kwargs: Any) -> DirectoryResponse:
        return self.request("GET", url, token, **kwargs)

    def post(self, url: str, token: Token, **kwargs: Any) -> DirectoryResponse:
        return self.request("POST", url, token, **kwargs)

    def patch(self, url: str, token: Token, **kwargs: Any) -> DirectoryResponse:
        return self.request("PATCH", url, token, **kwargs)

    def delete(self, url: str, token: Token, **kwargs: Any) -> DirectoryResponse:
        return self.request("DELETE", url, token, **kwargs)

    def get_all(
        self,
        url: str,
        token: Token,
        params: Optional[Dict[str, Any]] = None,
        max_pages: int = 100,
    ) -> List[Dict[str, Any]]:
        """GET a collection, following ``@odata.nextLink`` pages."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        page_params = params
        pages = 0
        while next_url and pages < max_pages:
            page = self.get(next_url, token, params=page_params)
            items.extend(page.data.get("value") or [])
            next_url = page.data.get("@odata.nextLink")
            # nextLink already carries the query string
            page_params = None
            pages += 1
            if next_url:
                logger.debug(f"Fetching next page (current count: {len(items)})")
        return items


def odata_quote(value: str) -> str:
    """Quote a literal for an OData ``$filter`` expression."""
    return "'" + value.replace("'", "''") + "'"


def odata_filter_eq(name: str, value: str) -> str:
    return f"{name} eq {odata_quote(value)}"


def join_filters(filters: Iterable[str]) -> str:
    return " and ".join(f for f in filters if f)
