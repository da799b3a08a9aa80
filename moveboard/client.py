# moveboard — HTTP gateway
#
# REST/JSON binding of the data-access contract against moveboard_server.
# Blocking requests calls run on a worker thread so the engines stay async.

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from .errors import NetworkError, NotFound, TriageUnavailable, ValidationError
from .gateway import MoveGateway
from .schema import Lane, Move, TriageResult

logger = logging.getLogger(__name__)


class HttpMoveGateway(MoveGateway):
    """HTTP client for the moveboard API."""

    def __init__(self, base_url: str = "http://localhost:5000", timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "HttpMoveGateway":
        return cls(settings.api_base_url, timeout=settings.request_timeout)

    def _request(self, method: str, path: str, move_id: Optional[int] = None, **kwargs) -> Any:
        """Send one request and map failures onto the error taxonomy."""
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if r.status_code == 404:
            raise NotFound(move_id if move_id is not None else -1, _error_message(r))
        if r.status_code == 400:
            body = _json(r)
            raise ValidationError(body.get("error", "Invalid request"), field=body.get("field"))
        if not r.ok:
            raise NetworkError(f"{method} {path} returned {r.status_code}: {_error_message(r)}")
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            logger.warning(f"{method} {path} returned a non-JSON body")
            raise NetworkError(f"{method} {path} returned invalid JSON") from e

    # ── Contract ─────────────────────────────────────────────────────────────

    def list_moves_sync(self, lane: Optional[Lane] = None, client_id: Optional[int] = None) -> List[Move]:
        params = {}
        if lane is not None:
            params["lane"] = lane.value
        if client_id is not None:
            params["client_id"] = client_id
        data = self._request("GET", "/api/moves", params=params) or []
        return [Move.from_dict(m) for m in data]

    def patch_move_sync(self, move_id: int, fields: Dict[str, Any]) -> Move:
        data = self._request("PATCH", f"/api/moves/{move_id}", move_id=move_id, json=fields)
        return Move.from_dict(data)

    def complete_move_sync(self, move_id: int) -> None:
        self._request("POST", f"/api/moves/{move_id}/complete", move_id=move_id)

    def run_triage_sync(self) -> TriageResult:
        try:
            data = self._request("POST", "/api/triage")
        except (NetworkError, NotFound) as e:
            raise TriageUnavailable(str(e)) from e
        return TriageResult.from_dict(data)

    def create_move_sync(self, fields: Dict[str, Any]) -> Move:
        return Move.from_dict(self._request("POST", "/api/moves", json=fields))

    def health_sync(self) -> bool:
        """Check if the server is reachable."""
        try:
            r = self.session.get(f"{self.base_url}/health", timeout=2)
            return r.ok
        except requests.RequestException:
            return False

    async def list_moves(self, lane: Optional[Lane] = None, client_id: Optional[int] = None) -> List[Move]:
        return await asyncio.to_thread(self.list_moves_sync, lane, client_id)

    async def patch_move(self, move_id: int, fields: Dict[str, Any]) -> Move:
        return await asyncio.to_thread(self.patch_move_sync, move_id, fields)

    async def complete_move(self, move_id: int) -> None:
        await asyncio.to_thread(self.complete_move_sync, move_id)

    async def run_triage(self) -> TriageResult:
        return await asyncio.to_thread(self.run_triage_sync)

    async def create_move(self, fields: Dict[str, Any]) -> Move:
        return await asyncio.to_thread(self.create_move_sync, fields)

    async def health(self) -> bool:
        return await asyncio.to_thread(self.health_sync)


def _json(r: requests.Response) -> Dict[str, Any]:
    try:
        body = r.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(r: requests.Response) -> str:
    return _json(r).get("error", "") or r.reason or ""
