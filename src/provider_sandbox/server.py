import json
import threading
import time
import uuid
from collections import deque
from decimal import Decimal, InvalidOperation
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Self

_ID_PREFIXES = {"/payments": "ch", "/refunds": "re", "/captures": "cp"}


class _ProviderHandler(BaseHTTPRequestHandler):
    """HTTP request handler emulating the payment provider API."""

    def do_POST(self):
        state = self.server.state  # type: ignore[attr-defined]
        path = self.path.rstrip("/")
        content_length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(content_length)

        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            body = None

        with state["lock"]:
            state["received_requests"].append({
                "path": path,
                "body": body,
                "headers": dict(self.headers),
            })
            scripted = state["script"].popleft() if state["script"] else {}

        code, text = self._reply(state, scripted, path, body)

        # The request is fully processed before a slow reply, so a client
        # that times out and retries with the same key finds the result.
        delay = scripted.get("delay", state["response_delay"])
        if delay > 0:
            time.sleep(delay)
        self._send_raw(code, text)

    def _reply(self, state: dict, scripted: dict, path: str, body) -> tuple[int, str]:
        if path not in _ID_PREFIXES:
            return 404, json.dumps(_failure("not_found", path))

        if not isinstance(body, dict):
            return 400, json.dumps(_failure("invalid_request", "Body must be a JSON object"))

        if state["api_key"] and self.headers.get("Authorization") != f"Bearer {state['api_key']}":
            return 401, json.dumps(_failure("authentication_failed", "Invalid API key"))

        # Amounts travel as decimal strings, never JSON numbers.
        if "amount" in body:
            amount = body["amount"]
            try:
                if not isinstance(amount, str):
                    raise ValueError(amount)
                Decimal(amount)
            except (ValueError, InvalidOperation):
                return 400, json.dumps(_failure("invalid_amount", f"Amount must be a decimal string: {amount!r}"))

        key = body.get("idempotency_key") or self.headers.get("Idempotency-Key")
        if not key:
            return 400, json.dumps(_failure("missing_idempotency_key", "Idempotency key is required"))

        with state["lock"]:
            if state["idempotency_enabled"] and key in state["responses"]:
                return state["responses"][key]

            if "raw" in scripted:
                return scripted.get("status_code", 200), scripted["raw"]

            status_code = scripted.get("status_code", 200)
            if status_code >= 500 or status_code == 429:
                # Rejected before processing: nothing stored, the client may retry.
                return status_code, json.dumps({"error": "provider unavailable"})

            if "body" in scripted:
                payload = scripted["body"]
            else:
                payload = self._process(state, path, body)
            response = (status_code, json.dumps(payload))
            state["responses"][key] = response
            return response

    @staticmethod
    def _process(state: dict, path: str, body: dict) -> dict:
        # Caller holds state["lock"].
        provider_id = f"{_ID_PREFIXES[path]}_{uuid.uuid4().hex[:16]}"
        state["operations"].append({"path": path, "id": provider_id, "request": body})
        return {
            "id": provider_id,
            "status": "succeeded",
            "amount": body.get("amount"),
            "currency": body.get("currency"),
        }

    def _send_raw(self, code: int, text: str) -> None:
        data = text.encode()
        try:
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)
        except (BrokenPipeError, ConnectionResetError):
            # Client gave up (timeout) before the reply was written.
            pass

    def log_message(self, format, *args):
        """Suppress default request logging."""
        pass


def _failure(code: str, message: str) -> dict:
    return {"status": "failed", "error": {"code": code, "message": message}}


class ProviderSandboxServer:
    """Configurable HTTP server that simulates the external payment provider.

    Deduplicates by idempotency key the way a real provider does, and can
    be scripted to return transient failures, declines, malformed bodies
    or slow replies for the next N requests.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, api_key: str | None = None):
        self._host = host
        self._port = port
        self._state = {
            "api_key": api_key,
            "response_delay": 0,
            "idempotency_enabled": True,
            "script": deque(),
            "received_requests": [],
            "responses": {},
            "operations": [],
            "lock": threading.Lock(),
        }
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _push(self, entry: dict) -> None:
        with self._state["lock"]:
            self._state["script"].append(entry)

    def queue_transient_failures(self, count: int, status_code: int = 503) -> Self:
        for _ in range(count):
            self._push({"status_code": status_code})
        return self

    def queue_timeouts(self, count: int, delay: float) -> Self:
        """Delay the next ``count`` replies; the requests are still processed."""
        for _ in range(count):
            self._push({"delay": delay})
        return self

    def queue_decline(self, code: str = "card_declined", message: str = "Card declined") -> Self:
        self._push({"status_code": 402, "body": _failure(code, message)})
        return self

    def queue_response(self, status_code: int, body: dict) -> Self:
        self._push({"status_code": status_code, "body": body})
        return self

    def queue_raw(self, text: str, status_code: int = 200) -> Self:
        self._push({"status_code": status_code, "raw": text})
        return self

    def set_response_delay(self, seconds: float) -> Self:
        self._state["response_delay"] = seconds
        return self

    def disable_idempotency(self) -> Self:
        self._state["idempotency_enabled"] = False
        return self

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self._host, self._port), _ProviderHandler)
        self._server.state = self._state  # type: ignore[attr-defined]
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}"

    @property
    def port(self) -> int:
        return self._port

    def get_received_requests(self, path: str | None = None) -> list[dict]:
        with self._state["lock"]:
            requests = list(self._state["received_requests"])
        if path is None:
            return requests
        return [r for r in requests if r["path"] == path]

    def get_operations(self, path: str | None = None) -> list[dict]:
        """Side effects actually performed, one per distinct idempotency key."""
        with self._state["lock"]:
            operations = list(self._state["operations"])
        if path is None:
            return operations
        return [o for o in operations if o["path"] == path]

    def idempotency_keys(self, path: str | None = None) -> list[str]:
        return [
            (r["body"] or {}).get("idempotency_key") for r in self.get_received_requests(path)
        ]

    def clear(self) -> None:
        with self._state["lock"]:
            self._state["script"].clear()
            self._state["received_requests"].clear()
            self._state["responses"].clear()
            self._state["operations"].clear()
