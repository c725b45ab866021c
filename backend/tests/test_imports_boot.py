from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("app")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_main_app(self):
        module = importlib.import_module("main")
        app = getattr(module, "app", None)
        self.assertIsNotNone(app)

    def test_import_route_segments(self):
        for name in (
            "segment_auth",
            "segment_users",
            "segment_categories",
            "segment_listings",
            "segment_conversations",
            "segment_messages",
            "segment_follow",
            "segment_notifications",
            "segment_reports",
            "segment_version",
            "segment_contact",
        ):
            module = importlib.import_module(f"app.segments.{name}")
            self.assertIsNotNone(module)

    def test_blueprints_registered(self):
        module = importlib.import_module("main")
        rules = {rule.rule for rule in module.app.url_map.iter_rules()}
        for path in ("/api/auth/login", "/api/listings", "/api/messages", "/api/version/latest-version", "/api/health"):
            self.assertIn(path, rules)


if __name__ == "__main__":
    unittest.main()
