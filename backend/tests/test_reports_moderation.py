from __future__ import annotations

import os
import time
import unittest

from app import create_app
from app.extensions import db
from app.models import Listing, User
from app.segments.segment_categories import create_category
from app.utils.jwt_utils import create_access_token


class ReportsModerationTestCase(unittest.TestCase):
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
            category = create_category(name_ar="ملابس", name_en="Clothing")
            db.session.commit()
            cls.category_id = int(category.id)
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

    def _create_user(self, role: str = "user") -> tuple[int, dict]:
        suffix = self._unique()
        with self.app.app_context():
            user = User(
                first_name="Hadi",
                last_name="Nasser",
                email=f"report-{suffix}@seraj.test",
                role=role,
                is_email_verified=True,
            )
            user.set_password("Passw0rd!")
            db.session.add(user)
            db.session.commit()
            uid = int(user.id)
            token = create_access_token(uid)
        return uid, {"Authorization": f"Bearer {token}"}

    def _create_listing(self, owner_id: int) -> int:
        with self.app.app_context():
            row = Listing(
                user_id=owner_id,
                title="Winter jacket",
                description="Warm jacket, size L.",
                category_id=self.category_id,
                price=40,
                city="latakia",
                area="Corniche",
                street="Beach road",
            )
            db.session.add(row)
            db.session.commit()
            return int(row.id)

    def _report(self, headers: dict, **body):
        payload = {"reason": "SPAM", "description": "Posting the same ad every hour."}
        payload.update(body)
        return self.client.post("/api/reports", json=payload, headers=headers)

    def test_report_validation(self):
        reporter_id, headers = self._create_user()
        target_id, _target_headers = self._create_user()

        res = self._report(headers, type="PERSON", reason="BORED", description="short", evidence=["ftp://x"])
        self.assertEqual(res.status_code, 400)
        errors = res.get_json()["errors"]
        for field in ("type", "reason", "description", "evidence"):
            self.assertIn(field, errors)

        self.assertEqual(self._report(headers, type="USER").status_code, 400)
        self.assertEqual(self._report(headers, type="USER", reported_user_id=999999).status_code, 404)
        self.assertEqual(self._report(headers, type="USER", reported_user_id=reporter_id).status_code, 400)
        self.assertEqual(self._report(headers, type="LISTING").status_code, 400)

        own_listing = self._create_listing(reporter_id)
        self.assertEqual(self._report(headers, type="LISTING", reported_listing_id=own_listing).status_code, 400)

        res = self._report(
            headers,
            type="user",
            reported_user_id=target_id,
            evidence=["https://img.example.com/1.png"],
        )
        self.assertEqual(res.status_code, 201)
        report = res.get_json()["report"]
        self.assertEqual(report["type"], "USER")
        self.assertEqual(report["status"], "PENDING")
        self.assertEqual(report["evidence"], ["https://img.example.com/1.png"])

        mine = self.client.get("/api/reports/my-reports", headers=headers).get_json()["reports"]
        self.assertEqual([r["id"] for r in mine], [report["id"]])

    def test_admin_listing_requires_staff(self):
        _uid, headers = self._create_user()
        _mod_id, mod_headers = self._create_user(role="moderator")
        self.assertEqual(self.client.get("/api/reports/admin", headers=headers).status_code, 403)

        res = self.client.get("/api/reports/admin?status=PENDING&type=USER", headers=mod_headers)
        self.assertEqual(res.status_code, 200)
        self.assertIn("totalReports", res.get_json()["pagination"])
        self.assertEqual(self.client.get("/api/reports/admin?status=LOST", headers=mod_headers).status_code, 400)

    def test_permanent_ban_blocks_user(self):
        _reporter_id, headers = self._create_user()
        target_id, target_headers = self._create_user()
        admin_id, admin_headers = self._create_user(role="admin")
        report_id = self._report(headers, type="USER", reported_user_id=target_id).get_json()["report"]["id"]

        self.assertEqual(self.client.get("/api/auth/me", headers=target_headers).status_code, 200)

        res = self.client.put(
            f"/api/reports/{report_id}",
            json={"status": "RESOLVED", "resolution": "PERMANENT_BAN", "admin_notes": "Repeated spam"},
            headers=admin_headers,
        )
        self.assertEqual(res.status_code, 200)
        report = res.get_json()["report"]
        self.assertEqual(report["resolved_by_id"], admin_id)
        self.assertIsNotNone(report["resolved_at"])

        res = self.client.get("/api/auth/me", headers=target_headers)
        self.assertEqual(res.status_code, 403)
        with self.app.app_context():
            target = db.session.get(User, target_id)
            self.assertEqual(target.ban_type, "permanent")
            self.assertEqual(target.ban_reason, "Repeated spam")

    def test_temporary_ban_falls_back_to_listing_owner(self):
        _reporter_id, headers = self._create_user()
        owner_id, _owner_headers = self._create_user()
        _mod_id, mod_headers = self._create_user(role="moderator")
        listing_id = self._create_listing(owner_id)
        report_id = self._report(headers, type="LISTING", reason="FRAUD", reported_listing_id=listing_id).get_json()["report"]["id"]

        res = self.client.put(f"/api/reports/{report_id}", json={"resolution": "TEMPORARY_BAN"}, headers=mod_headers)
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            owner = db.session.get(User, owner_id)
            self.assertEqual(owner.ban_type, "temporary")
            self.assertIsNotNone(owner.ban_expires_at)

    def test_listing_removed_resolution(self):
        _reporter_id, headers = self._create_user()
        owner_id, _owner_headers = self._create_user()
        _admin_id, admin_headers = self._create_user(role="admin")
        listing_id = self._create_listing(owner_id)
        report_id = self._report(headers, type="LISTING", reported_listing_id=listing_id).get_json()["report"]["id"]

        self.assertEqual(
            self.client.put(f"/api/reports/{report_id}", json={"resolution": "EXILE"}, headers=admin_headers).status_code,
            400,
        )
        res = self.client.put(f"/api/reports/{report_id}", json={"resolution": "LISTING_REMOVED"}, headers=admin_headers)
        self.assertEqual(res.status_code, 200)

        self.assertEqual(self.client.get(f"/api/listings/{listing_id}").status_code, 404)
        self.assertEqual(self.client.put("/api/reports/999999", json={}, headers=admin_headers).status_code, 404)


if __name__ == "__main__":
    unittest.main()
