from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from flask import Flask

from app.utils.observability import _before_send_scrub, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            init_sentry(app)

    def test_before_send_redacts_credentials(self):
        event = {
            "request": {
                "headers": {
                    "Authorization": "Bearer secret",
                    "Cookie": "session=abc",
                    "Accept": "application/json",
                }
            }
        }
        scrubbed = _before_send_scrub(event, None)
        headers = scrubbed["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["Cookie"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "application/json")


if __name__ == "__main__":
    unittest.main()
