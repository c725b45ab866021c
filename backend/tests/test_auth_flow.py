from __future__ import annotations

import os
import re
import time
import unittest
from datetime import datetime, timedelta

from app import create_app
from app.extensions import db
from app.integrations.mail import mock_provider
from app.models import User, UserSession, VerificationCode


class AuthFlowTestCase(unittest.TestCase):
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

    def _register(self, **overrides) -> tuple[dict, str]:
        suffix = self._unique()
        payload = {
            "first_name": "Sami",
            "last_name": "Haddad",
            "email": f"auth-{suffix}@seraj.test",
            "password": "Passw0rd!",
            "phone": "+963912345678",
        }
        payload.update(overrides)
        res = self.client.post("/api/auth/register", json=payload)
        self.assertEqual(res.status_code, 201, res.get_json())
        return res.get_json(force=True) or {}, payload["email"]

    def _last_code(self, email: str, subject: str) -> str:
        for message in reversed(mock_provider.OUTBOX):
            if message.to == email and message.subject == subject:
                match = re.search(r"(\d{6})", message.text)
                if match:
                    return match.group(1)
        self.fail(f"no '{subject}' email for {email}")

    def _verify(self, email: str) -> None:
        code = self._last_code(email, "Confirm your email address")
        res = self.client.post("/api/auth/verify-email", json={"email": email, "code": code})
        self.assertEqual(res.status_code, 200, res.get_json())

    def _auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def test_register_returns_tokens_and_sends_emails(self):
        data, email = self._register()
        self.assertTrue(data.get("ok"))
        self.assertTrue((data.get("token") or "").strip())
        self.assertTrue((data.get("refresh_token") or "").strip())
        self.assertEqual(data["user"]["email"], email)
        self.assertFalse(data["user"]["is_email_verified"])
        subjects = [m.subject for m in mock_provider.OUTBOX if m.to == email]
        self.assertIn("Confirm your email address", subjects)
        self.assertIn("Welcome to Seraj!", subjects)

    def test_register_duplicate_email_rejected(self):
        _data, email = self._register()
        res = self.client.post(
            "/api/auth/register",
            json={"first_name": "Sami", "last_name": "Haddad", "email": email, "password": "Passw0rd!"},
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("message"), "Email already registered")

    def test_register_validation_errors(self):
        res = self.client.post(
            "/api/auth/register",
            json={"first_name": "S", "last_name": "", "email": "bad-email", "password": "123", "phone": "0912"},
        )
        self.assertEqual(res.status_code, 400)
        body = res.get_json() or {}
        self.assertEqual(body.get("message"), "Validation failed")
        for field in ("email", "password", "first_name", "last_name", "phone"):
            self.assertIn(field, body.get("errors") or {})

        res = self.client.post(
            "/api/auth/register",
            json={
                "first_name": "N" * 45,
                "last_name": "Haddad",
                "email": f"long-{self._unique()}@seraj.test",
                "password": "Passw0rd!",
            },
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(set(res.get_json()["errors"]), {"first_name"})

    def test_login_requires_verified_email(self):
        _data, email = self._register()
        res = self.client.post("/api/auth/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual((res.get_json() or {}).get("message"), "Please verify your email first")

        self._verify(email)
        res = self.client.post("/api/auth/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 200, res.get_json())
        body = res.get_json() or {}
        self.assertTrue(body.get("token"))
        self.assertTrue(body.get("refresh_token"))
        self.assertIsInstance(body.get("session_id"), int)
        self.assertEqual(body["user"]["email"], email)
        self.assertTrue(body["user"]["is_email_verified"])
        subjects = [m.subject for m in mock_provider.OUTBOX if m.to == email]
        self.assertIn("Your account is verified", subjects)

    def test_verify_email_rejects_wrong_code(self):
        _data, email = self._register()
        real = self._last_code(email, "Confirm your email address")
        wrong = "000000" if real != "000000" else "111111"
        res = self.client.post("/api/auth/verify-email", json={"email": email, "code": wrong})
        self.assertEqual(res.status_code, 400)

    def test_verify_email_rejects_expired_code(self):
        _data, email = self._register()
        code = self._last_code(email, "Confirm your email address")
        with self.app.app_context():
            user = User.query.filter_by(email=email).first()
            VerificationCode.query.filter_by(user_id=user.id).update(
                {"expires_at": datetime.utcnow() - timedelta(minutes=1)}, synchronize_session=False
            )
            db.session.commit()
        res = self.client.post("/api/auth/verify-email", json={"email": email, "code": code})
        self.assertEqual(res.status_code, 400)

    def test_lockout_after_five_failed_logins(self):
        _data, email = self._register()
        self._verify(email)
        for _ in range(5):
            res = self.client.post("/api/auth/login", json={"email": email, "password": "wrong-pass"})
            self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/auth/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 423)
        self.assertGreater(int((res.get_json() or {}).get("retry_after") or 0), 0)

        with self.app.app_context():
            user = User.query.filter_by(email=email).first()
            user.lock_until = datetime.utcnow() - timedelta(seconds=1)
            db.session.commit()
        res = self.client.post("/api/auth/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(res.status_code, 200)

    def test_login_from_new_device_sends_alert(self):
        _data, email = self._register()
        self._verify(email)
        res = self.client.post(
            "/api/auth/login",
            json={"email": email, "password": "Passw0rd!"},
            headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0 Safari/537.36"},
        )
        self.assertEqual(res.status_code, 200)
        self.assertTrue((res.get_json() or {}).get("is_new_device"))
        subjects = [m.subject for m in mock_provider.OUTBOX if m.to == email]
        self.assertIn("Alert: sign-in from a new device", subjects)

    def test_me_and_profile_update(self):
        data, _email = self._register()
        headers = self._auth(data["token"])
        res = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["user"]["first_name"], "Sami")

        res = self.client.put(
            "/api/auth/profile",
            json={
                "first_name": "Rami",
                "city": "aleppo",
                "bio": "Selling used books",
                "profile_image": "data:image/png;base64,AAAA",
            },
            headers=headers,
        )
        self.assertEqual(res.status_code, 200, res.get_json())
        user = res.get_json()["user"]
        self.assertEqual(user["first_name"], "Rami")
        self.assertEqual(user["city"], "aleppo")
        self.assertTrue(user["profile_image"].startswith("https://media.mock.seraj.local/avatars/"))

        res = self.client.put("/api/auth/profile", json={"city": "paris"}, headers=headers)
        self.assertEqual(res.status_code, 400)

    def test_protected_route_without_token(self):
        res = self.client.get("/api/auth/me")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["message"], "Access denied. No token provided.")
        res = self.client.get("/api/auth/me", headers=self._auth("not-a-jwt"))
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["message"], "Invalid token.")

    def test_forgot_and_reset_password(self):
        data, email = self._register()
        self._verify(email)

        res = self.client.post("/api/auth/forgot-password", json={"email": f"missing-{self._unique()}@seraj.test"})
        self.assertEqual(res.status_code, 404)

        res = self.client.post("/api/auth/forgot-password", json={"email": email})
        self.assertEqual(res.status_code, 200)
        code = self._last_code(email, "Password reset code")

        same = self.client.post("/api/auth/reset-password", json={"email": email, "code": code, "password": "Passw0rd!"})
        self.assertEqual(same.status_code, 400)

        res = self.client.post("/api/auth/forgot-password", json={"email": email})
        code = self._last_code(email, "Password reset code")
        res = self.client.post("/api/auth/reset-password", json={"email": email, "code": code, "password": "NewPass#1"})
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(self.client.get("/api/auth/me", headers=self._auth(data["token"])).status_code, 401)

        old = self.client.post("/api/auth/login", json={"email": email, "password": "Passw0rd!"})
        self.assertEqual(old.status_code, 400)
        new = self.client.post("/api/auth/login", json={"email": email, "password": "NewPass#1"})
        self.assertEqual(new.status_code, 200)

        # previous password is in history now
        self.client.post("/api/auth/forgot-password", json={"email": email})
        code = self._last_code(email, "Password reset code")
        reuse = self.client.post("/api/auth/reset-password", json={"email": email, "code": code, "password": "Passw0rd!"})
        self.assertEqual(reuse.status_code, 400)

    def test_resend_verification(self):
        _data, email = self._register()
        res = self.client.post("/api/auth/resend-verification", json={"email": email})
        self.assertEqual(res.status_code, 200)
        self._verify(email)
        res = self.client.post("/api/auth/resend-verification", json={"email": email})
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/auth/resend-verification", json={"email": f"nobody-{self._unique()}@seraj.test"})
        self.assertEqual(res.status_code, 404)

    def test_sessions_list_and_terminate(self):
        _data, email = self._register()
        self._verify(email)
        login = self.client.post(
            "/api/auth/login",
            json={"email": email, "password": "Passw0rd!"},
            headers={"User-Agent": "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"},
        ).get_json()
        headers = self._auth(login["token"])

        res = self.client.get("/api/auth/sessions", headers=headers)
        self.assertEqual(res.status_code, 200)
        sessions = res.get_json()["sessions"]
        self.assertGreaterEqual(len(sessions), 2)
        current = [s for s in sessions if s["current"]]
        self.assertEqual(len(current), 1)
        self.assertEqual(current[0]["device_info"]["browser"], "Firefox")
        self.assertEqual(current[0]["device_info"]["os"], "Linux")

        other = next(s for s in sessions if not s["current"])
        res = self.client.delete(f"/api/auth/sessions/{other['id']}", headers=headers)
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertFalse(db.session.get(UserSession, other["id"]).is_active)

        res = self.client.delete("/api/auth/sessions/999999", headers=headers)
        self.assertEqual(res.status_code, 404)

    def test_banned_user_is_rejected(self):
        data, email = self._register()
        with self.app.app_context():
            user = User.query.filter_by(email=email).first()
            user.ban(permanent=True, reason="spam")
            db.session.commit()
        res = self.client.get("/api/auth/me", headers=self._auth(data["token"]))
        self.assertEqual(res.status_code, 403)

    def test_expired_temporary_ban_is_lifted(self):
        data, email = self._register()
        with self.app.app_context():
            user = User.query.filter_by(email=email).first()
            user.ban(permanent=False, reason="cooldown", days=1)
            user.ban_expires_at = datetime.utcnow() - timedelta(minutes=5)
            db.session.commit()
        res = self.client.get("/api/auth/me", headers=self._auth(data["token"]))
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.get_json()["user"]["is_banned"])


if __name__ == "__main__":
    unittest.main()
