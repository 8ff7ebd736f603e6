"""Minimal Nomad HTTP API client used by the driver and assertions.

No Nomad SDK dependency required — uses urllib for HTTP.
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.request

from nomad_chaos.errors import RemoteFailureError

logger = logging.getLogger(__name__)

LEADER_PATH = "/v1/status/leader"
HEALTH_PATH = "/v1/agent/health"

# Malformed responses surface as HTTPException; bad URLs as ValueError.
_TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError, ValueError)


def _request(address: str, path: str, token: str = "") -> urllib.request.Request:
    headers = {"Accept": "application/json"}
    if token:
        headers["X-Nomad-Token"] = token
    return urllib.request.Request(address.rstrip("/") + path, headers=headers, method="GET")


def query_leader(address: str, timeout: float = 2.0, token: str = "") -> str:
    """Return the leader address reported by one server ("" if none is elected).

    Raises RemoteFailureError on transport errors or a non-200 status.
    """
    try:
        req = _request(address, LEADER_PATH, token)
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        raise RemoteFailureError(f"unexpected status: {e.code}") from e
    except _TRANSPORT_ERRORS as e:
        raise RemoteFailureError(f"querying {address}: {e}") from e

    try:
        leader = json.loads(body)
    except ValueError as e:
        raise RemoteFailureError(f"decoding leader response from {address}: {e}") from e
    if not isinstance(leader, str):
        raise RemoteFailureError(f"unexpected leader response from {address}: {body!r}")
    return leader


def check_health(address: str, timeout: float = 5.0, token: str = "") -> bool:
    """True when the agent health endpoint answers 200.

    A non-200 answer means unhealthy; transport failures raise
    RemoteFailureError.
    """
    try:
        req = _request(address, HEALTH_PATH, token)
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status == 200
    except urllib.error.HTTPError as e:
        logger.debug("Health check %s answered %d", address, e.code)
        return False
    except _TRANSPORT_ERRORS as e:
        raise RemoteFailureError(f"querying {address}: {e}") from e
