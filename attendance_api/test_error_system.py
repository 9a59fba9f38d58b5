import json
import os
import tempfile
import threading
import unittest
from datetime import datetime

from flask import Flask
from werkzeug.exceptions import BadRequest

from .error_manager import error_manager
from .errors import ConflictError, ServiceUnavailable
from .main import register_error_handlers
from .testing import auth_header, make_app


class ErrorManagerTestCase(unittest.TestCase):
    def setUp(self):
        self.previous_file = error_manager.persistence_file
        handle, self.test_file = tempfile.mkstemp(suffix=".json")
        os.close(handle)
        error_manager.persistence_file = self.test_file
        error_manager.counters = {}
        error_manager.save_counters()

    def tearDown(self):
        error_manager.persistence_file = self.previous_file
        error_manager.load_counters()
        if os.path.exists(self.test_file):
            os.remove(self.test_file)


class TestErrorManager(ErrorManagerTestCase):
    def test_increment_logic(self):
        self.assertEqual(error_manager.get_next_code(500), 500)
        self.assertEqual(error_manager.get_next_code(500), 501)
        self.assertEqual(error_manager.get_next_code(404), 404)
        self.assertEqual(error_manager.get_next_code(404), 405)
        # Separate sequences per status
        self.assertEqual(error_manager.get_next_code(500), 502)

    def test_persistence(self):
        error_manager.get_next_code(409)
        error_manager.get_next_code(409)
        with open(self.test_file) as f:
            self.assertEqual(json.load(f)["409"], 410)

        # Simulate a restart
        error_manager.counters = {}
        error_manager.load_counters()
        self.assertEqual(error_manager.get_next_code(409), 411)

    def test_corrupt_file_starts_fresh(self):
        with open(self.test_file, "w") as f:
            f.write("{not json")
        error_manager.load_counters()
        self.assertEqual(error_manager.counters, {})

    def test_concurrency(self):
        error_manager.counters = {"500": 500}

        def worker():
            for _ in range(50):
                error_manager.get_next_code(500)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(error_manager.counters["500"], 500 + 400)

    def test_log_error_entry(self):
        try:
            raise ValueError("boom")
        except ValueError as e:
            code, entry = error_manager.log_error(500, "boom", exception=e, context={"url": "/x"})
        self.assertEqual(code, 500)
        self.assertEqual(entry["context"], {"url": "/x"})
        self.assertIn("ValueError: boom", entry["stack_trace"])


class TestErrorResponses(ErrorManagerTestCase):
    def setUp(self):
        super().setUp()
        self.app = Flask(__name__)
        self.app.config["TESTING"] = True
        register_error_handlers(self.app)

        @self.app.route("/bad-request")
        def bad_request():
            raise BadRequest("This is a test error for console logging")

        @self.app.route("/conflict")
        def conflict():
            raise ConflictError("Roll number exists", {"roll_number": "A1"})

        @self.app.route("/unavailable")
        def unavailable():
            raise ServiceUnavailable("Database not configured")

        @self.app.route("/crash")
        def crash():
            raise RuntimeError("unexpected")

        self.client = self.app.test_client()

    def test_http_exception_structure(self):
        response = self.client.get("/bad-request")
        self.assertEqual(response.status_code, 400)
        data = response.get_json()
        self.assertIsInstance(data["error_code"], int)
        datetime.fromisoformat(data["timestamp"])
        self.assertIn("url", data["context"])
        self.assertEqual(data["context"]["method"], "GET")
        self.assertEqual(data["message"], "This is a test error for console logging")
        self.assertEqual(data["status"], "error")

    def test_domain_error_keeps_status_and_details(self):
        response = self.client.get("/conflict")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["details"], {"roll_number": "A1"})
        self.assertEqual(response.get_json()["error_code"], 409)

    def test_service_unavailable(self):
        self.assertEqual(self.client.get("/unavailable").status_code, 503)

    def test_unexpected_exception(self):
        response = self.client.get("/crash")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["message"], "RuntimeError: unexpected")


class TestErrorIntegration(ErrorManagerTestCase):
    def setUp(self):
        self.app, self.store, _ = make_app()
        super().setUp()
        self.client = self.app.test_client()

    def tearDown(self):
        super().tearDown()
        self.store.close()

    def test_404_codes_increment(self):
        first = self.client.get("/non-existent-route")
        self.assertEqual(first.status_code, 404)
        self.assertEqual(first.get_json()["error_code"], 404)
        second = self.client.get("/non-existent-route-2")
        self.assertEqual(second.get_json()["error_code"], 405)

    def test_missing_store_is_503(self):
        self.app.extensions["attendance_store"] = None
        response = self.client.get("/api/students", headers=auth_header(self.app, "admin"))
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()["message"], "Database not configured")
        self.assertEqual(self.client.get("/health").get_json()["database"], "not_configured")


if __name__ == "__main__":
    unittest.main()
