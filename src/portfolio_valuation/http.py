"""
HTTP Helpers

A shared requests session with a bounded timeout, and a JSON GET that maps
transport failures onto the valuation error taxonomy.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .errors import AuthError, NetworkError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
USER_AGENT = "portfolio-valuation/0.1"


def create_session() -> requests.Session:
    """Create a session shared by all sources and providers of a process."""
    session = requests.Session()
    session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
    return session


def get_json(
    session: requests.Session,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """
    GET a URL and decode the JSON body.

    Args:
        session: requests session
        url: Absolute URL
        headers: Extra request headers
        params: Query parameters
        timeout: Timeout in seconds for connect and read

    Returns:
        Decoded JSON body

    Raises:
        AuthError: HTTP 401/403
        NetworkError: Timeout, connection failure or other non-2xx status
        ParseError: Body is not valid JSON
    """
    try:
        response = session.get(url, headers=headers, params=params, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise NetworkError(f"Timeout after {timeout}s: {url}") from e
    except requests.exceptions.ConnectionError as e:
        raise NetworkError(f"Connection error: {url}: {e}") from e
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"Request failed: {url}: {e}") from e

    status = response.status_code
    if status in (401, 403):
        raise AuthError(f"HTTP {status} from {url}: {_snippet(response)}")
    if not 200 <= status < 300:
        error = NetworkError(f"HTTP {status} from {url}: {_snippet(response)}", status_code=status)
        try:
            error.body = response.json()
        except ValueError:
            pass
        raise error

    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"Invalid JSON from {url}: {_snippet(response)}") from e


def _snippet(response: requests.Response, limit: int = 200) -> str:
    text = getattr(response, "text", "") or ""
    return text[:limit]
