import os
import unittest

from fastapi.testclient import TestClient
from starlette.requests import Request

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from caseforms.main import app
from caseforms.core.http_hardening import client_ip, request_id_from_header


def _request(headers: list[tuple[bytes, bytes]], client=("127.0.0.1", 12345)) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/api/forms/templates",
        "raw_path": b"/api/forms/templates",
        "query_string": b"",
        "headers": headers,
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


class HttpHardeningTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()

    def test_health_has_security_headers_and_request_id(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)

        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("x-frame-options"), "DENY")
        self.assertEqual(response.headers.get("referrer-policy"), "no-referrer")
        self.assertEqual(response.headers.get("cache-control"), "no-store")

        request_id = response.headers.get("x-request-id")
        self.assertIsNotNone(request_id)
        self.assertRegex(str(request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_valid_request_id_is_preserved(self):
        external_request_id = "intake-check-2026_10_19"
        response = self.client.get("/health", headers={"X-Request-ID": external_request_id})
        self.assertEqual(response.headers.get("x-request-id"), external_request_id)

    def test_invalid_request_id_is_replaced(self):
        bad_request_id = "bad id with spaces"
        response = self.client.get("/health", headers={"X-Request-ID": bad_request_id})

        response_request_id = response.headers.get("x-request-id")
        self.assertNotEqual(response_request_id, bad_request_id)
        self.assertRegex(str(response_request_id), r"^[A-Za-z0-9._-]{1,128}$")
        self.assertEqual(len(request_id_from_header("")), 32)

    def test_error_response_keeps_security_headers_and_request_id(self):
        # No bearer token => 401 from dependency, middleware headers must still be present.
        response = self.client.get("/api/forms/templates")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("cache-control"), "no-store")
        self.assertTrue(bool(response.headers.get("x-request-id")))

    def test_client_ip_prefers_first_forwarded_address(self):
        forwarded = _request([(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")])
        self.assertEqual(client_ip(forwarded), "203.0.113.7")
        self.assertEqual(client_ip(_request([])), "127.0.0.1")
        self.assertIsNone(client_ip(_request([], client=None)))
        self.assertIsNone(client_ip(None))


if __name__ == "__main__":
    unittest.main()
