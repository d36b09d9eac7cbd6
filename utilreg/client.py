# utilreg/client.py
"""
Client SDK for the registry server.

Usage:
    actor = ActorStore("~/.utilreg/actors").get("alice")
    client = RegistryClient("http://localhost:8420", actor=actor)

    app_id = client.register_app("ipfs://info")
    client.register_collections(app_id, [(1, "0xc1")])
    client.set_app_update_module(app_id, "ipfs://module")
    update = client.update_app_status(app_id, "ipfs://update-1")
    print(f"Position: {update['position']}")
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .errors import ERRORS_BY_CODE
from .identity import Actor, sign_request


class ClientError(RuntimeError):
    """Server answered with an error that has no registry counterpart."""

    def __init__(self, message: str, status: int = 0, code: str = ""):
        super().__init__(message)
        self.status = status
        self.code = code


def _raise_for(status: int, data: Dict[str, Any]):
    message = data.get("error", f"HTTP {status}")
    code = data.get("code", "")
    cls = ERRORS_BY_CODE.get(code)
    if cls is None:
        raise ClientError(message, status, code)
    raise cls(message=message)


class RegistryClient:
    """
    Client for the registry server.

    Args:
        base_url: Server URL (e.g., "http://localhost:8420")
        actor: Identity to act as; requests are signed when it holds a
            private key, otherwise only X-Actor is sent
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8420",
        actor: Optional[Actor] = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.actor = actor
        self.timeout = timeout

    def _request(self, method: str, path: str, data: dict = None) -> dict:
        """Make HTTP request to server."""
        url = f"{self.base_url}{path}"
        body = json.dumps(data).encode() if data is not None else b""

        headers = {}
        if data is not None:
            headers["Content-Type"] = "application/json"
        if self.actor is not None:
            if self.actor.can_sign:
                headers.update(sign_request(self.actor, method, path, body))
            else:
                headers["X-Actor"] = self.actor.id

        req = Request(url, data=body if data is not None else None, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            error_body = e.read().decode()
            try:
                error_data = json.loads(error_body)
            except json.JSONDecodeError:
                raise ClientError(f"HTTP {e.code}: {error_body}", e.code)
            _raise_for(e.code, error_data)
        except URLError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")

    def health(self) -> bool:
        """Check if server is healthy."""
        try:
            result = self._request("GET", "/health")
            return result.get("status") == "ok"
        except (ConnectionError, ClientError):
            return False

    def register_actor(self, actor: Actor) -> str:
        """Publish an actor's public key; returns its id."""
        result = self._request("POST", "/actors", {
            "username": actor.username,
            "display_name": actor.display_name,
            "public_key": actor.public_key.decode("utf-8"),
        })
        return result["id"]

    def register_app(self, info_locator: str) -> int:
        """Register an application owned by this client's actor."""
        result = self._request("POST", "/apps", {"info_locator": info_locator})
        return result["app_id"]

    def register_collections(self, app_id: int, entries: Iterable[Tuple[int, str]]) -> List[Dict[str, Any]]:
        """Claim collections; returns the newly registered ones."""
        result = self._request("POST", f"/apps/{app_id}/collections", {
            "entries": [[chain_id, address] for chain_id, address in entries],
        })
        return result["registered"]

    def set_app_update_module(self, app_id: int, module_locator: str) -> Dict[str, Any]:
        return self._request("PUT", f"/apps/{app_id}/module", {"module_locator": module_locator})

    def transfer_app_owner(self, app_id: int, new_owner: str) -> Dict[str, Any]:
        return self._request("PUT", f"/apps/{app_id}/owner", {"new_owner": new_owner})

    def change_app_info(self, app_id: int, info_locator: str) -> Dict[str, Any]:
        return self._request("PUT", f"/apps/{app_id}/info", {"info_locator": info_locator})

    def update_app_status(self, app_id: int, update_url: str) -> Dict[str, Any]:
        """Emit a status update; returns it with its position."""
        return self._request("POST", f"/apps/{app_id}/status", {"update_url": update_url})

    def get_app(self, app_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/apps/{app_id}")

    def list_apps(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/apps")["apps"]

    def status_history(self, app_id: int) -> List[Dict[str, Any]]:
        return self._request("GET", f"/apps/{app_id}/status")["updates"]

    def events(self, since: int = 0, app_id: int = None) -> List[Dict[str, Any]]:
        """Read the notification log after a sequence number."""
        params = {"since": since}
        if app_id is not None:
            params["app_id"] = app_id
        return self._request("GET", f"/events?{urlencode(params)}")["events"]
