from __future__ import annotations

import time
import unittest

from flask import Flask

from app.models.category import slugify
from app.services.listing_search_service import haversine_km
from app.utils.jwt_utils import create_access_token, decode_token, get_bearer_token
from app.utils.pagination import page_args, pagination_block, total_pages
from app.utils.rate_limit import check_limit, reset_memory_windows
from app.utils.validation import (
    as_bool,
    as_float,
    as_int,
    pick,
    validate_contact,
    validate_listing_fields,
    validate_login,
    validate_registration,
)


class ValidatorsTestCase(unittest.TestCase):
    def test_registration_accepts_valid_payload(self):
        errors = validate_registration(
            {
                "email": "sami.h@seraj.test",
                "password": "secret1",
                "firstName": "Sami",
                "last_name": "Haddad",
                "phone": "00963912345678",
            }
        )
        self.assertEqual(errors, {})

    def test_registration_rejects_bad_fields(self):
        errors = validate_registration({"email": "sami@", "password": "123", "first_name": "S", "phone": "0999"})
        self.assertEqual(set(errors), {"email", "password", "first_name", "last_name", "phone"})
        self.assertIn("last_name", validate_registration({"email": "a@b.co", "password": "secret1", "first_name": "Sami", "last_name": "H" * 31}))

    def test_login_requires_password(self):
        self.assertIn("password", validate_login({"email": "a@b.co"}))
        self.assertEqual(validate_login({"email": "a@b.co", "password": "x"}), {})

    def test_contact_minimums(self):
        ok = {"name": "Al", "email": "al@example.com", "subject": "Hey", "message": "0123456789"}
        self.assertEqual(validate_contact(ok), {})
        self.assertIn("message", validate_contact({**ok, "message": "short"}))

    def test_listing_fields_only_checks_present_keys(self):
        self.assertEqual(validate_listing_fields({}), {})
        errors = validate_listing_fields({"title": "", "description": "tiny", "price": "-3"})
        self.assertEqual(set(errors), {"title", "description", "price"})

    def test_coercion_helpers(self):
        self.assertEqual(pick({"firstName": "A", "first_name": None}, "first_name", "firstName"), "A")
        self.assertEqual(pick({}, "x", default=5), 5)
        self.assertEqual(as_int("12"), 12)
        self.assertIsNone(as_int("twelve"))
        self.assertEqual(as_int(None, 7), 7)
        self.assertEqual(as_float("2.5"), 2.5)
        self.assertIsNone(as_float(True))
        self.assertTrue(as_bool(True))
        self.assertIsNone(as_bool("true"))


class PaginationTestCase(unittest.TestCase):
    def test_total_pages(self):
        self.assertEqual(total_pages(0, 12), 0)
        self.assertEqual(total_pages(12, 12), 1)
        self.assertEqual(total_pages(13, 12), 2)

    def test_block_flags(self):
        block = pagination_block(page=2, limit=10, total=25, returned=10)
        self.assertEqual(block["totalPages"], 3)
        self.assertTrue(block["hasNextPage"])
        self.assertTrue(block["hasPreviousPage"])
        self.assertEqual(block["itemsReturned"], 10)
        self.assertNotIn("itemsReturned", pagination_block(page=1, limit=10, total=0))

    def test_page_args_are_clamped(self):
        app = Flask(__name__)
        with app.test_request_context("/?page=-4&limit=500"):
            self.assertEqual(page_args(default_limit=12, max_limit=50), (1, 50))
        with app.test_request_context("/?page=abc"):
            self.assertEqual(page_args(default_limit=12, max_limit=50), (1, 12))


class GeoAndSlugTestCase(unittest.TestCase):
    def test_haversine_damascus_to_aleppo(self):
        distance = haversine_km(33.5138, 36.2765, 36.2021, 37.1343)
        self.assertGreater(distance, 300)
        self.assertLess(distance, 320)
        self.assertAlmostEqual(haversine_km(33.5, 36.3, 33.5, 36.3), 0.0)

    def test_slugify(self):
        self.assertEqual(slugify("Real Estate"), "real-estate")
        self.assertEqual(slugify("  TVs & Audio!! "), "tvs-audio")
        self.assertEqual(slugify("عقارات"), "")


class TokenAndLimiterTestCase(unittest.TestCase):
    def test_access_token_round_trip(self):
        token = create_access_token(42, ttl_seconds=60, session_id=7)
        payload = decode_token(token)
        self.assertEqual(payload["sub"], "42")
        self.assertEqual(payload["sid"], 7)
        self.assertIsNone(decode_token("garbage"))
        self.assertIsNone(decode_token(create_access_token(42, ttl_seconds=-10)))
        self.assertEqual(get_bearer_token(f"Bearer {token}"), token)
        self.assertIsNone(get_bearer_token("Basic abc"))

    def test_memory_window_blocks_after_limit(self):
        reset_memory_windows()
        key = f"unit:{time.time_ns()}"
        self.assertEqual(check_limit(key, limit=2, window_seconds=60), (True, 0))
        self.assertEqual(check_limit(key, limit=2, window_seconds=60), (True, 0))
        allowed, retry_after = check_limit(key, limit=2, window_seconds=60)
        self.assertFalse(allowed)
        self.assertGreaterEqual(retry_after, 1)
        reset_memory_windows()
        self.assertTrue(check_limit(key, limit=2, window_seconds=60)[0])


if __name__ == "__main__":
    unittest.main()
