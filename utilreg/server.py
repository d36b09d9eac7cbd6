# utilreg/server.py
"""
HTTP server for the registry.

Provides a REST API over a Ledger.

Endpoints:
    GET  /health                       - Liveness check
    POST /actors                       - Register a caller's public key
    POST /apps                         - Register an application
    GET  /apps                         - List applications
    GET  /apps/:id                     - Get one application
    POST /apps/:id/collections         - Claim collections
    PUT  /apps/:id/module              - Set the update-module locator
    PUT  /apps/:id/owner               - Transfer ownership
    PUT  /apps/:id/info                - Change the info locator
    POST /apps/:id/status              - Emit a status update
    GET  /apps/:id/status              - Status update history
    GET  /events?since=N&app_id=M      - Notification log

The caller is named by the X-Actor header. With signatures required, the
request must also carry Date, Digest, Nonce and Signature headers that
verify against the actor's registered public key, and a signature is
accepted only once.
"""

import json
import logging
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from .config import RegistryConfig, ServerConfig, load_config
from .errors import RegistryError
from .identity import ActorStore, ReplayGuard, verify_request
from .ledger import Ledger

logger = logging.getLogger(__name__)

_APP_RE = re.compile(r"^/apps/(\d+)(/[a-z]+)?$")


class RequestError(Exception):
    """Request-level failure that maps straight to a response."""

    def __init__(self, message: str, status: int = 400, code: str = "bad_request"):
        super().__init__(message)
        self.status = status
        self.code = code


def _require(data: Dict[str, Any], key: str, kind: type = str) -> Any:
    if key not in data:
        raise RequestError(f"Missing field: {key}")
    value = data[key]
    if not isinstance(value, kind) or isinstance(value, bool):
        raise RequestError(f"Field {key} must be {kind.__name__}")
    return value


class RegistryServer:
    """
    HTTP server for the registry.

    Usage:
        server = RegistryServer(data_dir="/var/lib/utilreg", port=8420)
        server.start()  # Blocking
    """

    def __init__(
        self,
        data_dir: Path | str,
        host: str = "127.0.0.1",
        port: int = 8420,
        require_signatures: bool = True,
        max_body_bytes: int = 1024 * 1024,
    ):
        self.data_dir = Path(data_dir)
        self.host = host
        self.port = port
        self.require_signatures = require_signatures
        self.max_body_bytes = max_body_bytes
        self.ledger = Ledger(self.data_dir)
        self.actors = ActorStore(self.data_dir / "actors")
        self.replays = ReplayGuard()
        self._httpd: Optional[ThreadingHTTPServer] = None

    @classmethod
    def from_config(cls, config: RegistryConfig) -> "RegistryServer":
        server: ServerConfig = config.server
        return cls(
            data_dir=config.data_dir,
            host=server.host,
            port=server.port,
            require_signatures=server.require_signatures,
            max_body_bytes=server.max_body_bytes,
        )

    def authenticate(self, headers, method: str, path: str, body: bytes) -> Optional[str]:
        """Resolve the caller identity of a request, or None."""
        actor_id = headers.get("X-Actor")
        if not actor_id:
            return None
        if not self.require_signatures:
            return actor_id

        actor = self.actors.get_by_id(actor_id)
        if actor is None:
            logger.warning(f"Request from unknown actor {actor_id}")
            return None
        if not verify_request(headers, method, path, body, actor):
            logger.warning(f"Bad signature from {actor_id} on {method} {path}")
            return None
        if not self.replays.accept(headers["Signature"]):
            logger.warning(f"Replayed request from {actor_id} on {method} {path}")
            return None
        return actor.id

    # Request handling, independent of the HTTP plumbing

    def handle(self, method: str, target: str, caller: Optional[str], data: Dict[str, Any]) -> Tuple[int, Any]:
        """
        Dispatch one request.

        Returns:
            (status, JSON-serializable body)
        """
        parsed = urlparse(target)
        path = parsed.path.rstrip("/") or "/"
        query = parse_qs(parsed.query)

        if method == "GET" and path == "/health":
            return 200, {"status": "ok"}

        if method == "POST" and path == "/actors":
            return self._add_actor(data)

        if path == "/events" and method == "GET":
            since = int(query.get("since", ["0"])[0])
            app_id = query.get("app_id", [None])[0]
            events = self.ledger.notifications(
                since=since, app_id=int(app_id) if app_id is not None else None,
            )
            return 200, {"events": [e.to_dict() for e in events]}

        if path == "/apps":
            if method == "GET":
                return 200, {"apps": [a.to_dict() for a in self.ledger.list_apps()]}
            if method == "POST":
                caller = self._need_caller(caller)
                app_id = self.ledger.register_app(_require(data, "info_locator"), caller)
                return 201, {"app_id": app_id}

        match = _APP_RE.match(path)
        if match:
            app_id = int(match.group(1))
            action = (match.group(2) or "")[1:]
            return self._app_route(method, app_id, action, caller, data)

        raise RequestError("Not found", 404, "not_found")

    def _app_route(self, method: str, app_id: int, action: str, caller: Optional[str], data: Dict[str, Any]) -> Tuple[int, Any]:
        ledger = self.ledger

        if method == "GET" and action == "":
            app = ledger.get_app(app_id)
            if app is None:
                raise RequestError(f"Application {app_id} not found", 404, "not_found")
            return 200, app.to_dict()

        if method == "GET" and action == "status":
            return 200, {"updates": [u.to_dict() for u in ledger.status_history(app_id)]}

        if method == "POST" and action == "collections":
            caller = self._need_caller(caller)
            if "entries" in data:
                entries = _require(data, "entries", list)
                try:
                    pairs = [(int(chain_id), address) for chain_id, address in entries]
                except (TypeError, ValueError):
                    raise RequestError("entries must be [chain_id, address] pairs")
                added = ledger.register_collections(app_id, pairs, caller)
            else:
                added = ledger.register_collections_parallel(
                    app_id,
                    _require(data, "chain_ids", list),
                    _require(data, "addresses", list),
                    caller,
                )
            return 200, {"registered": [c.to_dict() for c in added]}

        if method == "PUT" and action == "module":
            caller = self._need_caller(caller)
            ledger.set_app_update_module(app_id, _require(data, "module_locator"), caller)
            return 200, ledger.get_app(app_id).to_dict()

        if method == "PUT" and action == "owner":
            caller = self._need_caller(caller)
            ledger.transfer_app_owner(app_id, _require(data, "new_owner"), caller)
            return 200, ledger.get_app(app_id).to_dict()

        if method == "PUT" and action == "info":
            caller = self._need_caller(caller)
            ledger.change_app_info(app_id, _require(data, "info_locator"), caller)
            return 200, ledger.get_app(app_id).to_dict()

        if method == "POST" and action == "status":
            caller = self._need_caller(caller)
            update = ledger.update_app_status(app_id, _require(data, "update_url"), caller)
            return 201, update.to_dict()

        raise RequestError("Not found", 404, "not_found")

    def _add_actor(self, data: Dict[str, Any]) -> Tuple[int, Any]:
        username = _require(data, "username")
        if not re.fullmatch(r"[A-Za-z0-9_.-]+", username):
            raise RequestError(f"Invalid username: {username}")
        try:
            actor = self.actors.add(
                username, _require(data, "public_key"), data.get("display_name"),
            )
        except ValueError as e:
            raise RequestError(str(e), 409, "conflict")
        return 201, {"id": actor.id, "username": actor.username}

    @staticmethod
    def _need_caller(caller: Optional[str]) -> str:
        if not caller:
            raise RequestError("Authentication required", 401, "unauthenticated")
        return caller

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200):
                body = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _send_error(self, message: str, status: int = 400, code: str = "bad_request"):
                self._send_json({"error": message, "code": code}, status)

            def _dispatch(self):
                server = self.server_ref
                try:
                    length = int(self.headers.get("Content-Length", 0))
                    if length > server.max_body_bytes:
                        raise RequestError("Request body too large", 413, "too_large")
                    body = self.rfile.read(length) if length else b""

                    data = {}
                    if body:
                        try:
                            data = json.loads(body.decode())
                        except (UnicodeDecodeError, json.JSONDecodeError) as e:
                            raise RequestError(f"Invalid JSON: {e}")
                        if not isinstance(data, dict):
                            raise RequestError("Request body must be a JSON object")

                    caller = server.authenticate(self.headers, self.command, self.path, body)
                    status, payload = server.handle(self.command, self.path, caller, data)
                    self._send_json(payload, status)

                except RequestError as e:
                    self._send_error(str(e), e.status, e.code)
                except RegistryError as e:
                    self._send_error(str(e), e.status, e.code)
                except (TypeError, ValueError) as e:
                    self._send_error(str(e), 400)
                except Exception as e:
                    logger.exception(f"{self.command} {self.path} failed")
                    self._send_error(str(e), 500, "internal_error")

            do_GET = _dispatch
            do_POST = _dispatch
            do_PUT = _dispatch

        return RequestHandler

    def bind(self) -> ThreadingHTTPServer:
        """Create the listening socket; port 0 picks a free port."""
        if self._httpd is None:
            handler = self._create_handler()
            self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
            self.port = self._httpd.server_address[1]
        return self._httpd

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self.bind()
        logger.info(f"Registry server starting on {self.host}:{self.port}")
        print(f"Registry server running on http://{self.host}:{self.port}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            httpd.server_close()
            self.ledger.close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread."""
        httpd = self.bind()
        logger.info(f"Registry server starting on {self.host}:{self.port}")
        thread = threading.Thread(target=httpd.serve_forever)
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        """Stop a server started with start_background()."""
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
        self.ledger.close()


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Utility registry server")
    parser.add_argument("--config", help="YAML config file (default: ./utilreg.yml)")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument("--data-dir", help="Data directory")
    parser.add_argument("--insecure", action="store_true",
                        help="Trust X-Actor without request signatures")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.data_dir:
        config.data_dir = Path(args.data_dir)
    if args.insecure:
        config.server.require_signatures = False

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    server = RegistryServer.from_config(config)
    server.start()


if __name__ == "__main__":
    main()
