"""HTTP server entrypoints for quote rendering."""

from __future__ import annotations

import errno
import json
import logging
import threading
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple

from .config import (
    MAX_BODY_BYTES as MAX_BODY_BYTES_CONFIG,
    MAX_CONCURRENT_RENDERS,
    RENDER_QUEUE_TIMEOUT_MS,
    SERVICE_NAME,
    SERVICE_VERSION,
    TEMPLATE_PATH,
)
from .errors import DependencyError, QuoteServiceError, TemplateNotFoundError
from .rendering import load_sync_playwright, render_quote, render_test_pdf

log = logging.getLogger(__name__)

RENDER_SEMAPHORE = threading.BoundedSemaphore(MAX_CONCURRENT_RENDERS)
ValidationError = Tuple[int, Dict[str, Any]]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
REQUIRED_SECTIONS = ("client", "terrain")

DISCONNECT_ERRNOS = frozenset(
    getattr(errno, name)
    for name in ("EPIPE", "ECONNRESET", "ECONNABORTED", "ETIMEDOUT", "WSAECONNRESET")
    if hasattr(errno, name)
)


def is_client_disconnect(exc: BaseException) -> bool:
    """True when ``exc`` means the peer went away mid-request."""
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in DISCONNECT_ERRNOS


def validate_quote_payload(body: bytes) -> Tuple[Optional[Dict[str, Any]], Optional[ValidationError]]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError:
        return None, (
            400,
            {"error": "invalid_encoding", "detail": "Body must be UTF-8 encoded JSON."},
        )
    except json.JSONDecodeError as exc:
        return None, (
            400,
            {
                "error": "invalid_json",
                "detail": f"{exc.msg} (line {exc.lineno}, column {exc.colno})",
            },
        )

    if not isinstance(payload, dict):
        return None, (
            400,
            {"error": "invalid_payload", "detail": "JSON root must be an object."},
        )

    # An empty object still counts as present; scalars and null do not.
    if not any(isinstance(payload.get(section), dict) for section in REQUIRED_SECTIONS):
        return None, (
            400,
            {
                "error": "insufficient_data",
                "detail": "Payload needs a 'client' or a 'terrain' section.",
                "required": ["client or terrain"],
                "received": sorted(payload.keys()),
            },
        )

    return payload, None


def service_description() -> Dict[str, Any]:
    return {
        "service": "Quote PDF Service",
        "version": SERVICE_VERSION,
        "status": "running",
        "endpoints": {
            "health": "GET /health",
            "generate": "POST /generate",
            "test": "POST /test",
        },
    }


def health_status() -> Dict[str, Any]:
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class QuoteHandler(BaseHTTPRequestHandler):
    MAX_BODY_BYTES = MAX_BODY_BYTES_CONFIG
    TEMPLATE_PATH = TEMPLATE_PATH

    def _write_response(
        self,
        status: int,
        content_type: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            for name, value in {**CORS_HEADERS, **(headers or {})}.items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(body)
            return True
        except Exception as exc:
            if is_client_disconnect(exc):
                return False
            raise

    def _send_json(self, status: int, payload: Dict[str, Any]) -> bool:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        return self._write_response(status, "application/json; charset=utf-8", body)

    def _send_pdf(self, pdf_bytes: bytes, filename: str) -> bool:
        return self._write_response(
            200,
            "application/pdf",
            pdf_bytes,
            {"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    def _read_body(self) -> Optional[bytes]:
        header = self.headers.get("Content-Length")
        if header is None:
            self._send_json(
                411,
                {
                    "error": "missing_content_length",
                    "detail": "Content-Length header is required.",
                },
            )
            return None

        try:
            content_length = int(header)
        except ValueError:
            self._send_json(
                400,
                {
                    "error": "invalid_content_length",
                    "detail": "Content-Length must be an integer.",
                },
            )
            return None

        if content_length <= 0:
            self._send_json(400, {"error": "empty_body", "detail": "Request body cannot be empty."})
            return None

        if content_length > self.MAX_BODY_BYTES:
            self._send_json(
                413,
                {
                    "error": "payload_too_large",
                    "detail": f"Body exceeds {self.MAX_BODY_BYTES} bytes.",
                },
            )
            return None

        try:
            return self.rfile.read(content_length)
        except Exception as exc:
            if is_client_disconnect(exc):
                return None
            raise

    def _acquire_render_slot(self) -> bool:
        if RENDER_SEMAPHORE.acquire(timeout=RENDER_QUEUE_TIMEOUT_MS / 1000.0):
            return True
        self._send_json(
            503,
            {
                "error": "server_busy",
                "detail": "All renderers are busy; retry shortly.",
                "retry_after_ms": RENDER_QUEUE_TIMEOUT_MS,
                "max_concurrent_renders": MAX_CONCURRENT_RENDERS,
            },
        )
        return False

    def do_OPTIONS(self) -> None:
        self._write_response(204, "text/plain", b"")

    def do_POST(self) -> None:
        if self.path == "/test":
            self._handle_test()
            return
        if self.path not in ("/generate", "/generate-pdf"):
            self._send_json(404, {"error": "not_found", "detail": "Unsupported endpoint."})
            return

        body = self._read_body()
        if body is None:
            return

        payload, validation_error = validate_quote_payload(body)
        if validation_error is not None:
            status, payload_body = validation_error
            self._send_json(status, payload_body)
            return

        if not self._acquire_render_slot():
            return

        started = time.monotonic()
        try:
            rendered = render_quote(payload, self.TEMPLATE_PATH)
        except TemplateNotFoundError as exc:
            log.error("%s", exc)
            self._send_json(500, {"error": exc.code, "detail": "HTML template not found."})
            return
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            log.exception("PDF generation failed after %d ms", duration_ms)
            code = exc.code if isinstance(exc, QuoteServiceError) else "render_failed"
            self._send_json(
                500,
                {
                    "error": code,
                    "detail": str(exc),
                    "type": type(exc).__name__,
                    "duration_ms": duration_ms,
                },
            )
            return
        finally:
            RENDER_SEMAPHORE.release()

        duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "PDF generated in %d ms for %s (%d bytes)",
            duration_ms,
            rendered.client_name,
            len(rendered.pdf),
        )
        self._send_pdf(rendered.pdf, rendered.filename)

    def _handle_test(self) -> None:
        if not self._acquire_render_slot():
            return
        try:
            pdf_bytes = render_test_pdf()
        except Exception as exc:
            log.exception("Test PDF failed")
            code = exc.code if isinstance(exc, QuoteServiceError) else "render_failed"
            self._send_json(500, {"error": code, "detail": str(exc), "type": type(exc).__name__})
            return
        finally:
            RENDER_SEMAPHORE.release()
        self._send_pdf(pdf_bytes, "quote-pdf-test.pdf")

    def do_GET(self) -> None:
        if self.path == "/":
            self._send_json(200, service_description())
            return
        if self.path in ("/health", "/healthz"):
            self._send_json(200, health_status())
            return
        self._send_json(404, {"error": "not_found", "detail": "Unsupported endpoint."})

    def handle_one_request(self) -> None:
        try:
            super().handle_one_request()
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            raise

    def log_message(self, format: str, *args: Any) -> None:
        return


class QuoteHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True


def run(host: str = "0.0.0.0", port: int = 3000) -> None:
    load_sync_playwright()
    server = QuoteHTTPServer((host, port), QuoteHandler)
    log.info("Quote PDF service %s listening on http://%s:%d", SERVICE_VERSION, host, port)
    try:
        server.serve_forever()
    finally:
        server.server_close()


__all__ = ["DependencyError", "QuoteHTTPServer", "QuoteHandler", "run", "validate_quote_payload"]
