from __future__ import annotations

import os
import time
import unittest
from unittest.mock import patch

from app import create_app
from app.extensions import db
from app.integrations.mail import mock_provider
from app.models import User
from app.utils.jwt_utils import create_access_token


class UsersCategoriesVersionContactTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._old_env = {k: os.environ.get(k) for k in ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL", "INTEGRATIONS_MODE")}
        os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        os.environ["INTEGRATIONS_MODE"] = "sandbox"
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def _unique(self) -> str:
        return str(time.time_ns())

    def _create_user(self, role: str = "user", **fields) -> tuple[int, dict]:
        suffix = self._unique()
        with self.app.app_context():
            user = User(
                first_name="Maya",
                last_name="Azar",
                email=f"user-{suffix}@seraj.test",
                role=role,
                is_email_verified=True,
                **fields,
            )
            user.set_password("Passw0rd!")
            db.session.add(user)
            db.session.commit()
            uid = int(user.id)
            token = create_access_token(uid)
        return uid, {"Authorization": f"Bearer {token}"}

    # -- users ------------------------------------------------------------

    def test_preferences_round_trip(self):
        _uid, headers = self._create_user()
        body = self.client.get("/api/users/preferences", headers=headers).get_json()
        self.assertFalse(body["preferences"]["show_phone"])
        self.assertTrue(body["notification_settings"]["new_listings"])

        res = self.client.patch(
            "/api/users/preferences",
            json={"show_phone": True, "notification_settings": {"listing_updates": False}},
            headers=headers,
        )
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["preferences"]["show_phone"])
        self.assertFalse(res.get_json()["notification_settings"]["listing_updates"])

        res = self.client.patch("/api/users/preferences", json={"show_email": "true"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertIn("show_email", res.get_json()["errors"])

    def test_public_profile_respects_privacy_flags(self):
        target_id, _target_headers = self._create_user(phone="+963911111111", show_phone=True)
        _viewer_id, viewer_headers = self._create_user()

        profile = self.client.get(f"/api/users/{target_id}", headers=viewer_headers).get_json()["user"]
        self.assertEqual(profile["name"], "Maya Azar")
        self.assertEqual(profile["contact_info"], {"phone": "+963911111111"})
        self.assertFalse(profile["is_following"])
        self.assertEqual(profile["stats"]["total_listings"], 0)

        self.assertEqual(self.client.get(f"/api/users/{target_id}").status_code, 401)
        self.assertEqual(self.client.get("/api/users/999999", headers=viewer_headers).status_code, 404)

    def test_rating_is_upserted_and_averaged(self):
        target_id, target_headers = self._create_user()
        _a_id, a_headers = self._create_user()
        _b_id, b_headers = self._create_user()

        self.assertEqual(self.client.post(f"/api/users/{target_id}/rate", json={"rating": 5}, headers=target_headers).status_code, 400)
        self.assertEqual(self.client.post(f"/api/users/{target_id}/rate", json={"rating": 6}, headers=a_headers).status_code, 400)
        self.assertEqual(self.client.post(f"/api/users/{target_id}/rate", json={"rating": True}, headers=a_headers).status_code, 400)
        self.assertEqual(self.client.post("/api/users/999999/rate", json={"rating": 3}, headers=a_headers).status_code, 404)

        self.client.post(f"/api/users/{target_id}/rate", json={"rating": 2}, headers=a_headers)
        self.client.post(f"/api/users/{target_id}/rate", json={"rating": 4, "comment": "Quick reply"}, headers=a_headers)
        res = self.client.post(f"/api/users/{target_id}/rate", json={"rating": 5}, headers=b_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["total_ratings"], 2)
        self.assertEqual(res.get_json()["average_rating"], 4.5)

        ratings = self.client.get(f"/api/users/{target_id}/ratings").get_json()
        self.assertEqual(ratings["pagination"]["totalItems"], 2)
        self.assertIn("Quick reply", [r["comment"] for r in ratings["ratings"]])

    def test_admin_user_management(self):
        target_id, headers = self._create_user()
        _admin_id, admin_headers = self._create_user(role="admin")

        self.assertEqual(self.client.get("/api/users", headers=headers).status_code, 403)
        body = self.client.get("/api/users", headers=admin_headers).get_json()
        self.assertGreaterEqual(body["total"], 2)

        res = self.client.patch(f"/api/users/{target_id}/role", json={"role": "owner"}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.patch(f"/api/users/{target_id}/role", json={"role": "moderator"}, headers=admin_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["user"]["role"], "moderator")

    # -- categories -------------------------------------------------------

    def test_category_creation_and_tree(self):
        _uid, headers = self._create_user()
        _admin_id, admin_headers = self._create_user(role="admin")
        name = f"Books {self._unique()[-6:]}"

        self.assertEqual(self.client.post("/api/categories", json={"name_ar": "كتب", "name_en": name}, headers=headers).status_code, 403)
        res = self.client.post("/api/categories", json={"name_ar": "ك", "name_en": "B"}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        self.assertIn("name_ar", res.get_json()["errors"])

        root = self.client.post("/api/categories", json={"name_ar": "كتب", "name_en": name, "icon": "book"}, headers=admin_headers)
        self.assertEqual(root.status_code, 201)
        root = root.get_json()["category"]
        self.assertEqual(root["slug"], name.lower().replace(" ", "-"))

        child = self.client.post(
            "/api/categories", json={"name_ar": "روايات", "name_en": "Novels", "parent_id": root["id"]}, headers=admin_headers
        ).get_json()["category"]
        res = self.client.post(
            "/api/categories", json={"name_ar": "قصيرة", "name_en": "Short", "parent_id": child["id"]}, headers=admin_headers
        )
        self.assertEqual(res.status_code, 400)
        res = self.client.post(
            "/api/categories", json={"name_ar": "قصيرة", "name_en": "Short", "parent_id": 999999}, headers=admin_headers
        )
        self.assertEqual(res.status_code, 400)

        tree = self.client.get("/api/categories").get_json()["categories"]
        node = next(c for c in tree if c["id"] == root["id"])
        self.assertEqual([s["slug"] for s in node["subcategories"]], ["novels"])
        self.assertNotIn(child["id"], [c["id"] for c in tree])

    def test_seed_categories_command(self):
        runner = self.app.test_cli_runner()
        first = runner.invoke(args=["seed-categories"])
        self.assertEqual(first.exit_code, 0, first.output)
        self.assertIn("seed_categories_ok", first.output)
        again = runner.invoke(args=["seed-categories"])
        self.assertIn("created=0", again.output)

        tree = self.client.get("/api/categories").get_json()["categories"]
        vehicles = next(c for c in tree if c["slug"] == "vehicles")
        self.assertIn("cars", [s["slug"] for s in vehicles["subcategories"]])

    def test_bootstrap_admin_command(self):
        email = f"root-{self._unique()}@seraj.test"
        runner = self.app.test_cli_runner()
        with patch.dict(os.environ, {"ADMIN_EMAIL": "", "ADMIN_PASSWORD": ""}, clear=False):
            missing = runner.invoke(args=["bootstrap-admin"])
        self.assertNotEqual(missing.exit_code, 0)

        with patch.dict(os.environ, {"SERAJ_ENV": "dev", "ADMIN_EMAIL": email, "ADMIN_PASSWORD": "Str0ngAdmin!"}, clear=False):
            result = runner.invoke(args=["bootstrap-admin"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn(f"admin_bootstrap_ok {email}", result.output)
        with self.app.app_context():
            admin = User.query.filter_by(email=email).first()
            self.assertEqual(admin.role, "admin")
            self.assertTrue(admin.check_password("Str0ngAdmin!"))

    # -- app versions -----------------------------------------------------

    def test_app_version_upsert(self):
        _uid, headers = self._create_user()
        _admin_id, admin_headers = self._create_user(role="admin")

        self.assertEqual(self.client.get("/api/version/latest-version").status_code, 400)
        self.assertEqual(self.client.get("/api/version/latest-version?platform=tizen").status_code, 404)

        payload = {"platform": "Android", "version": "1.2.0", "link": "https://play.example.com/seraj"}
        self.assertEqual(self.client.post("/api/version/update-version", json=payload, headers=headers).status_code, 403)
        self.assertEqual(
            self.client.post("/api/version/update-version", json={"platform": "android"}, headers=admin_headers).status_code,
            400,
        )
        self.assertEqual(self.client.post("/api/version/update-version", json=payload, headers=admin_headers).status_code, 200)
        self.client.post("/api/version/update-version", json={"platform": "android", "version": "1.3.0"}, headers=admin_headers)

        body = self.client.get("/api/version/latest-version?platform=android").get_json()
        self.assertEqual(body["version"], "1.3.0")
        self.assertEqual(body["link"], "https://play.example.com/seraj")

    # -- contact ----------------------------------------------------------

    def test_contact_message_is_delivered(self):
        payload = {
            "name": "Rana",
            "email": "rana@example.com",
            "subject": f"Question {self._unique()}",
            "message": "How do I feature my listing?",
        }
        res = self.client.post("/api/contact", json=payload)
        self.assertEqual(res.status_code, 200)
        sent = [m for m in mock_provider.OUTBOX if m.subject == f"[Contact] {payload['subject']}"]
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0].reply_to, "rana@example.com")

        res = self.client.post("/api/contact", json={"name": "R", "email": "nope", "subject": "Hi", "message": "short"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(set(res.get_json()["errors"]), {"name", "email", "subject", "message"})

    def test_contact_reports_delivery_failure(self):
        payload = {"name": "Rana", "email": "rana@example.com", "subject": "Refund", "message": "Please call me back."}
        with patch.dict(os.environ, {"MOCK_EMAIL_FORCE_FAIL": "1"}, clear=False):
            res = self.client.post("/api/contact", json=payload)
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.get_json()["code"], "EMAIL_PROVIDER_DOWN")


if __name__ == "__main__":
    unittest.main()
