from __future__ import annotations

import os
import unittest

from app import create_app
from app.extensions import db
from app.utils.rate_limit import reset_memory_windows


class RateLimitRuntimeTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._saved_env = {
            k: os.getenv(k)
            for k in (
                "SQLALCHEMY_DATABASE_URI",
                "DATABASE_URL",
                "INTEGRATIONS_MODE",
                "RATE_LIMIT_IN_TESTS",
                "RATE_LIMIT_REDIS_URL",
                "TRUST_PROXY_HEADERS",
            )
        }
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        os.environ["INTEGRATIONS_MODE"] = "sandbox"
        os.environ["RATE_LIMIT_IN_TESTS"] = "true"
        os.environ["RATE_LIMIT_REDIS_URL"] = ""
        os.environ["TRUST_PROXY_HEADERS"] = "true"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        reset_memory_windows()

    def setUp(self):
        reset_memory_windows()

    def test_contact_route_limit(self):
        headers = {"X-Forwarded-For": "10.0.0.21"}
        payload = {"name": "Rana", "email": "rana@example.com", "subject": "Hello", "message": "Testing the limiter."}
        for _ in range(10):
            res = self.client.post("/api/contact", json=payload, headers=headers)
            self.assertEqual(res.status_code, 200)
        res = self.client.post("/api/contact", json=payload, headers=headers)
        self.assertEqual(res.status_code, 429)
        body = res.get_json() or {}
        self.assertEqual(body.get("error"), "RATE_LIMITED")
        self.assertTrue((res.headers.get("Retry-After") or "").isdigit())

        other = self.client.post("/api/contact", json=payload, headers={"X-Forwarded-For": "10.0.0.22"})
        self.assertEqual(other.status_code, 200)

    def test_auth_tier_limit(self):
        headers = {"X-Forwarded-For": "10.0.0.31"}
        for _ in range(20):
            res = self.client.post("/api/auth/login", json={}, headers=headers)
            self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/auth/login", json={}, headers=headers)
        self.assertEqual(res.status_code, 429)
        self.assertEqual(res.get_json()["retry_after"] >= 1, True)


if __name__ == "__main__":
    unittest.main()
