import errno
import json
import threading
import unittest
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Tuple
from unittest.mock import patch

from quote_pdf.errors import RenderError, TemplateNotFoundError
from quote_pdf.rendering import RenderedQuote
from quote_pdf.server import QuoteHandler, QuoteHTTPServer, is_client_disconnect, validate_quote_payload


class ApiValidationTests(unittest.TestCase):
    def _json_bytes(self, payload: object) -> bytes:
        return json.dumps(payload).encode("utf-8")

    def test_accepts_valid_payload(self) -> None:
        payload, error = validate_quote_payload(self._json_bytes({"client": {"nom": "Dupont"}}))

        self.assertIsNone(error)
        assert payload is not None
        self.assertIn("client", payload)

    def test_accepts_terrain_only_payload(self) -> None:
        _, error = validate_quote_payload(self._json_bytes({"terrain": {"surface": 40}}))

        self.assertIsNone(error)

    def test_rejects_invalid_utf8(self) -> None:
        _, error = validate_quote_payload(b"\xff")

        self.assertIsNotNone(error)
        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_encoding")

    def test_rejects_invalid_json(self) -> None:
        _, error = validate_quote_payload(b'{"client":')

        self.assertIsNotNone(error)
        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_json")

    def test_rejects_non_object_root(self) -> None:
        _, error = validate_quote_payload(self._json_bytes(["bad-root"]))

        self.assertIsNotNone(error)
        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_payload")

    def test_rejects_payload_without_client_or_terrain(self) -> None:
        _, error = validate_quote_payload(self._json_bytes({"produit": {"prix": 20}}))

        self.assertIsNotNone(error)
        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "insufficient_data")
        self.assertEqual(error[1]["received"], ["produit"])

    def test_rejects_sections_that_are_not_objects(self) -> None:
        for payload in ({"client": ""}, {"client": False}, {"client": None, "terrain": 12}, {"terrain": ["a"]}):
            with self.subTest(payload=payload):
                _, error = validate_quote_payload(self._json_bytes(payload))

                self.assertIsNotNone(error)
                assert error is not None
                self.assertEqual(error[1]["error"], "insufficient_data")

    def test_accepts_empty_client_object(self) -> None:
        _, error = validate_quote_payload(self._json_bytes({"client": {}}))

        self.assertIsNone(error)


class ClientDisconnectTests(unittest.TestCase):
    def test_connection_errors_are_disconnects(self) -> None:
        self.assertTrue(is_client_disconnect(BrokenPipeError()))
        self.assertTrue(is_client_disconnect(ConnectionResetError()))
        self.assertTrue(is_client_disconnect(OSError(errno.EPIPE, "Broken pipe")))

    def test_other_errors_are_not_disconnects(self) -> None:
        self.assertFalse(is_client_disconnect(ValueError("boom")))
        self.assertFalse(is_client_disconnect(OSError(errno.ENOENT, "missing")))


class ServerTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.server = QuoteHTTPServer(("127.0.0.1", 0), QuoteHandler)
        cls.base_url = f"http://127.0.0.1:{cls.server.server_address[1]}"
        cls.thread = threading.Thread(target=cls.server.serve_forever, daemon=True)
        cls.thread.start()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.server.shutdown()
        cls.server.server_close()
        cls.thread.join(timeout=5)

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Any] = None,
    ) -> Tuple[int, Dict[str, str], bytes]:
        data = None if payload is None else json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self.base_url + path, data=data, method=method)
        if data is not None:
            request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                return response.status, dict(response.headers), response.read()
        except urllib.error.HTTPError as exc:
            return exc.code, dict(exc.headers), exc.read()

    def test_health(self) -> None:
        status, headers, body = self._request("GET", "/health")

        self.assertEqual(status, 200)
        self.assertEqual(json.loads(body)["status"], "ok")
        self.assertEqual(headers["Access-Control-Allow-Origin"], "*")

    def test_root_lists_endpoints(self) -> None:
        status, _, body = self._request("GET", "/")

        self.assertEqual(status, 200)
        self.assertEqual(json.loads(body)["endpoints"]["generate"], "POST /generate")

    def test_unknown_paths_return_404(self) -> None:
        self.assertEqual(self._request("GET", "/nope")[0], 404)
        self.assertEqual(self._request("POST", "/nope")[0], 404)

    def test_options_preflight(self) -> None:
        status, headers, _ = self._request("OPTIONS", "/generate")

        self.assertEqual(status, 204)
        self.assertIn("POST", headers["Access-Control-Allow-Methods"])

    def test_generate_returns_pdf_attachment(self) -> None:
        rendered = RenderedQuote(
            pdf=b"%PDF-1.4 fake",
            filename="guide-pose-elodie-muller.pdf",
            client_name="Élodie Müller",
        )
        with patch("quote_pdf.server.render_quote", return_value=rendered) as render:
            status, headers, body = self._request("POST", "/generate", {"client": {"prenom": "Élodie"}})

        self.assertEqual(status, 200)
        self.assertEqual(body, b"%PDF-1.4 fake")
        self.assertEqual(headers["Content-Type"], "application/pdf")
        self.assertEqual(
            headers["Content-Disposition"],
            'attachment; filename="guide-pose-elodie-muller.pdf"',
        )
        self.assertEqual(render.call_args[0][0], {"client": {"prenom": "Élodie"}})

    def test_generate_rejects_insufficient_payload(self) -> None:
        with patch("quote_pdf.server.render_quote") as render:
            status, _, body = self._request("POST", "/generate", {"questionnaire": {}})

        self.assertEqual(status, 400)
        self.assertEqual(json.loads(body)["error"], "insufficient_data")
        render.assert_not_called()

    def test_generate_reports_missing_template(self) -> None:
        with patch("quote_pdf.server.render_quote", side_effect=TemplateNotFoundError("/x/template.html")):
            with self.assertLogs("quote_pdf.server", level="ERROR"):
                status, _, body = self._request("POST", "/generate", {"client": {}, "terrain": {"surface": 1}})

        self.assertEqual(status, 500)
        self.assertEqual(json.loads(body)["error"], "template_not_found")

    def test_generate_reports_render_failure(self) -> None:
        with patch("quote_pdf.server.render_quote", side_effect=RenderError("browser crashed")):
            with self.assertLogs("quote_pdf.server", level="ERROR"):
                status, _, body = self._request("POST", "/generate", {"terrain": {"surface": 1}})

        payload = json.loads(body)
        self.assertEqual(status, 500)
        self.assertEqual(payload["error"], "render_failed")
        self.assertEqual(payload["type"], "RenderError")
        self.assertIn("duration_ms", payload)

    def test_generate_reports_busy_when_no_render_slot_is_free(self) -> None:
        with patch("quote_pdf.server.RENDER_SEMAPHORE", threading.BoundedSemaphore(1)) as semaphore:
            semaphore.acquire()
            with patch("quote_pdf.server.RENDER_QUEUE_TIMEOUT_MS", 10):
                with patch("quote_pdf.server.render_quote") as render:
                    status, _, body = self._request("POST", "/generate", {"client": {"nom": "Dupont"}})

        self.assertEqual(status, 503)
        self.assertEqual(json.loads(body)["error"], "server_busy")
        render.assert_not_called()

    def test_test_endpoint_prints_self_check_page_with_chromium(self) -> None:
        with patch("quote_pdf.rendering.render_pdf", return_value=b"%PDF-test") as render_pdf:
            status, headers, body = self._request("POST", "/test")

        self.assertEqual(status, 200)
        self.assertEqual(body, b"%PDF-test")
        self.assertIn("quote-pdf-test.pdf", headers["Content-Disposition"])
        render_pdf.assert_called_once()
        html, options = render_pdf.call_args[0]
        self.assertIn("Le service fonctionne correctement", html)
        self.assertEqual(options["format"], "A4")
        self.assertFalse(options.get("landscape", False))
        self.assertEqual(options["margin"]["top"], "20mm")

    def test_test_endpoint_reports_render_failure(self) -> None:
        with patch("quote_pdf.rendering.render_pdf", side_effect=RenderError("no browser")):
            with self.assertLogs("quote_pdf.server", level="ERROR"):
                status, _, body = self._request("POST", "/test")

        self.assertEqual(status, 500)
        self.assertEqual(json.loads(body)["error"], "render_failed")

    def test_test_endpoint_waits_for_a_render_slot(self) -> None:
        with patch("quote_pdf.server.RENDER_SEMAPHORE", threading.BoundedSemaphore(1)) as semaphore:
            semaphore.acquire()
            with patch("quote_pdf.server.RENDER_QUEUE_TIMEOUT_MS", 10):
                with patch("quote_pdf.rendering.render_pdf") as render_pdf:
                    status, _, _ = self._request("POST", "/test")

        self.assertEqual(status, 503)
        render_pdf.assert_not_called()


if __name__ == "__main__":
    unittest.main()
