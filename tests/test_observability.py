import json
import logging
import unittest

from app.db import close_db
from app.observability import JsonLogFormatter, bind_request_id, reset_metrics_for_tests
from tests.helpers.temp_db import TempDbSandbox


class ObservabilityMetricsTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = self._temp_db.make_app()
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_prometheus_text(self) -> None:
        parent = self.client.post("/api/cad/categories", json={"name": "Raiz"}).get_json()["data"]["id"]
        self.client.post("/api/cad/categories", json={"name": "Filha", "parent_id": parent})
        self.client.put(f"/api/cad/categories/{parent}", json={"name": "Raiz 2"})
        self.client.get("/api/cad/categories/12345")

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")

        payload = response.get_data(as_text=True)
        self.assertIn('http_request_total{method="GET",route="/api/cad/categories/<int:category_id>",status="404"} 1', payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn('domain_event_emitted_total{event_type="CategoryCreated"} 2', payload)
        self.assertIn('category_mutations_total{operation="create"} 2', payload)
        self.assertIn("category_hierarchy_recompute_nodes_count 1", payload)

    def test_response_time_header(self) -> None:
        response = self.client.get("/api/cad/categories/stats")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers.get("X-Response-Time-Ms"))


class JsonLogFormatterTest(unittest.TestCase):
    def test_background_record_uses_bound_request_id(self) -> None:
        formatter = JsonLogFormatter()
        record = logging.LogRecord("app", logging.INFO, __file__, 1, "category_moved", None, None)
        record.category_id = 7

        with bind_request_id("job-42"):
            payload = json.loads(formatter.format(record))

        self.assertEqual(payload["message"], "category_moved")
        self.assertEqual(payload["request_id"], "job-42")
        self.assertEqual(payload["category_id"], 7)
        self.assertEqual(payload["level"], "info")


if __name__ == "__main__":
    unittest.main()
