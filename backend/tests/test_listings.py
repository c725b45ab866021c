from __future__ import annotations

import os
import time
import unittest

from app import create_app
from app.extensions import db
from app.models import Listing, Notification, User, UserFollow
from app.segments.segment_categories import create_category
from app.utils.jwt_utils import create_access_token


class ListingsTestCase(unittest.TestCase):
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
            root = create_category(name_ar="إلكترونيات", name_en="Electronics")
            sub = create_category(name_ar="هواتف", name_en="Phones", parent_id=int(root.id))
            other = create_category(name_ar="سيارات", name_en="Vehicles")
            db.session.commit()
            cls.category_id = int(root.id)
            cls.subcategory_id = int(sub.id)
            cls.other_category_id = int(other.id)
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
                first_name="Lina",
                last_name="Khoury",
                email=f"listing-{suffix}@seraj.test",
                role=role,
                is_email_verified=True,
            )
            user.set_password("Passw0rd!")
            db.session.add(user)
            db.session.commit()
            uid = int(user.id)
            token = create_access_token(uid)
        return uid, {"Authorization": f"Bearer {token}"}

    def _payload(self, **overrides) -> dict:
        payload = {
            "title": "Used phone in good shape",
            "description": "Phone with charger and original box, barely used.",
            "category": "electronics",
            "subcategory": "phones",
            "price": 150,
            "price_type": "negotiable",
            "currency": "USD",
            "condition": "good",
            "location": {
                "city": "damascus",
                "area": "Mezzeh",
                "street": "Autostrad",
                "coordinates": [36.2765, 33.5138],
            },
            "attributes": {"brand": "Nokia"},
            "images": ["data:image/png;base64,AAAA"],
        }
        payload.update(overrides)
        return payload

    def _create_listing(self, headers: dict, **overrides) -> dict:
        res = self.client.post("/api/listings", json=self._payload(**overrides), headers=headers)
        self.assertEqual(res.status_code, 201, res.get_json())
        return res.get_json()["listing"]

    def test_create_listing_resolves_category_and_stores_images(self):
        uid, headers = self._create_user()
        listing = self._create_listing(headers)
        self.assertEqual(listing["user_id"], uid)
        self.assertEqual(listing["category"]["slug"], "electronics")
        self.assertEqual(listing["subcategory"]["slug"], "phones")
        self.assertEqual(listing["status"], "active")
        self.assertEqual(listing["location"]["coordinates"], [36.2765, 33.5138])
        self.assertEqual(listing["attributes"], {"brand": "Nokia"})
        self.assertEqual(len(listing["images"]), 1)
        self.assertTrue(listing["images"][0].startswith("https://media.mock.seraj.local/listings/"))

    def test_create_listing_validation(self):
        _uid, headers = self._create_user()
        res = self.client.post(
            "/api/listings",
            json=self._payload(category="no-such-category", images=[], location={"city": "paris"}),
            headers=headers,
        )
        self.assertEqual(res.status_code, 400)
        errors = (res.get_json() or {}).get("errors") or {}
        for field in ("category", "images", "location"):
            self.assertIn(field, errors)

        res = self.client.post("/api/listings", json=self._payload(description="too short"), headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertIn("description", res.get_json()["errors"])

        res = self.client.post("/api/listings", json=self._payload(subcategory="phones", category=str(self.other_category_id)), headers=headers)
        self.assertEqual(res.status_code, 400)
        self.assertIn("subcategory", res.get_json()["errors"])

    def test_free_listing_forces_zero_price(self):
        _uid, headers = self._create_user()
        listing = self._create_listing(headers, price=None, price_type="free")
        self.assertEqual(listing["price"], 0.0)
        self.assertEqual(listing["price_type"], "free")

    def test_search_filters_and_pagination(self):
        _uid, headers = self._create_user()
        token = f"Zq{self._unique()}"
        self._create_listing(headers, title=f"Cheap {token}", price=10)
        self._create_listing(headers, title=f"Pricey {token}", price=900)

        res = self.client.get(f"/api/listings?search={token}&minPrice=100")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual([item["title"] for item in body["listings"]], [f"Pricey {token}"])
        self.assertEqual(body["pagination"]["totalItems"], 1)
        self.assertEqual(body["pagination"]["itemsReturned"], 1)
        self.assertEqual(body["filters"]["min_price"], 100.0)

        res = self.client.get(f"/api/listings?search={token}&category=electronics&subcategory=phones&limit=1")
        body = res.get_json()
        self.assertEqual(body["pagination"]["totalPages"], 2)
        self.assertTrue(body["pagination"]["hasNextPage"])

        res = self.client.get(f"/api/listings?search={token}&page=7")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["totalPages"], 1)

    def test_search_rejects_unknown_category_slug(self):
        res = self.client.get("/api/listings?category=spaceships")
        self.assertEqual(res.status_code, 400)
        body = res.get_json()
        self.assertEqual(body["message"], "Invalid category slug")
        self.assertEqual(body["providedSlug"], "spaceships")

    def test_search_by_radius(self):
        _uid, headers = self._create_user()
        token = f"Geo{self._unique()}"
        self._create_listing(headers, title=f"Near {token}")
        self._create_listing(
            headers,
            title=f"Far {token}",
            location={"city": "aleppo", "area": "Aziziyeh", "street": "Main", "coordinates": [37.1613, 36.2021]},
        )
        res = self.client.get(f"/api/listings?search={token}&lat=33.51&lng=36.28&radiusKm=20")
        self.assertEqual(res.status_code, 200)
        titles = [item["title"] for item in res.get_json()["listings"]]
        self.assertEqual(titles, [f"Near {token}"])

    def test_search_treats_wildcards_literally(self):
        _uid, headers = self._create_user()
        token = f"Pct{self._unique()}"
        self._create_listing(headers, title=f"Cotton 100% {token}")
        self._create_listing(headers, title=f"Cotton 1000 {token}")

        res = self.client.get("/api/listings", query_string={"search": f"100% {token}"})
        self.assertEqual([i["title"] for i in res.get_json()["listings"]], [f"Cotton 100% {token}"])
        res = self.client.get("/api/listings", query_string={"search": f"1_0% {token}"})
        self.assertEqual(res.get_json()["listings"], [])
        res = self.client.get("/api/listings", query_string={"search": "%", "limit": 50})
        titles = [i["title"] for i in res.get_json()["listings"]]
        self.assertIn(f"Cotton 100% {token}", titles)
        self.assertTrue(all("%" in t for t in titles))

    def test_search_rejects_bad_coordinates(self):
        for query in (
            "lat=inf&lng=36&radiusKm=5",
            "lat=nan&lng=36&radiusKm=5",
            "lat=33.5&lng=-inf&radiusKm=5",
            "lat=91&lng=36&radiusKm=5",
            "lat=33.5&lng=181&radiusKm=5",
            "lat=33.5&lng=36&radiusKm=nan",
            "lat=33.5&lng=36&radiusKm=-2",
            "maxPrice=inf",
        ):
            res = self.client.get(f"/api/listings?{query}")
            self.assertEqual(res.status_code, 400, query)
            self.assertTrue(res.get_json()["message"].startswith("Invalid"), query)
        self.assertEqual(self.client.get("/api/listings?lat=-90&lng=180&radiusKm=1").status_code, 200)

    def test_featured_listings_are_pinned_first(self):
        _uid, headers = self._create_user()
        _admin_id, admin_headers = self._create_user(role="admin")
        token = f"Pin{self._unique()}"
        older = self._create_listing(headers, title=f"Older {token}")
        self._create_listing(headers, title=f"Newer {token}")

        res = self.client.post(f"/api/listings/{older['id']}/feature", json={"duration_days": 3}, headers=admin_headers)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["listing"]["is_featured"])

        res = self.client.post(f"/api/listings/{older['id']}/feature", json={"duration_days": 0}, headers=admin_headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.post(f"/api/listings/{older['id']}/feature", json={}, headers=headers)
        self.assertEqual(res.status_code, 403)

        listings = self.client.get(f"/api/listings?search={token}").get_json()["listings"]
        self.assertEqual([item["title"] for item in listings], [f"Older {token}", f"Newer {token}"])

        featured_ids = [item["id"] for item in self.client.get("/api/listings/featured?limit=50").get_json()["listings"]]
        self.assertIn(older["id"], featured_ids)

        res = self.client.post(f"/api/listings/{older['id']}/unfeature", headers=admin_headers)
        self.assertEqual(res.status_code, 200)
        listings = self.client.get(f"/api/listings?search={token}").get_json()["listings"]
        self.assertEqual(listings[0]["title"], f"Newer {token}")

    def test_get_listing_counts_views_and_favorites(self):
        _uid, headers = self._create_user()
        _viewer_id, viewer_headers = self._create_user()
        listing = self._create_listing(headers)

        first = self.client.get(f"/api/listings/{listing['id']}").get_json()["listing"]
        self.assertEqual(first["views"], 1)
        self.assertFalse(first["is_favorited"])

        res = self.client.post(f"/api/listings/{listing['id']}/favorite", headers=viewer_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["favorites_count"], 1)
        res = self.client.post(f"/api/listings/{listing['id']}/favorite", headers=viewer_headers)
        self.assertEqual(res.status_code, 400)

        second = self.client.get(f"/api/listings/{listing['id']}", headers=viewer_headers).get_json()["listing"]
        self.assertEqual(second["views"], 2)
        self.assertTrue(second["is_favorited"])
        self.assertEqual(second["favorites_count"], 1)

        favorites = self.client.get("/api/listings/my-favorites", headers=viewer_headers).get_json()["listings"]
        self.assertEqual([item["id"] for item in favorites], [listing["id"]])

        res = self.client.delete(f"/api/listings/{listing['id']}/favorite", headers=viewer_headers)
        self.assertEqual(res.status_code, 200)
        res = self.client.delete(f"/api/listings/{listing['id']}/favorite", headers=viewer_headers)
        self.assertEqual(res.status_code, 400)

        self.assertEqual(self.client.get("/api/listings/999999").status_code, 404)

    def test_update_requires_owner_and_notifies_followers(self):
        author_id, headers = self._create_user()
        follower_id, follower_headers = self._create_user()
        with self.app.app_context():
            db.session.add(UserFollow(follower_id=follower_id, followed_id=author_id))
            db.session.commit()

        listing = self._create_listing(headers)
        res = self.client.put(f"/api/listings/{listing['id']}", json={"price": 120}, headers=follower_headers)
        self.assertEqual(res.status_code, 403)

        res = self.client.put(f"/api/listings/{listing['id']}", json={"price": 120}, headers=headers)
        self.assertEqual(res.status_code, 200, res.get_json())
        self.assertEqual(res.get_json()["listing"]["price"], 120.0)

        res = self.client.put(f"/api/listings/{listing['id']}", json={"title": "Phone with new case"}, headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["listing"]["location"]["city"], "damascus")

        with self.app.app_context():
            types = [
                n.type
                for n in Notification.query.filter_by(recipient_id=follower_id, listing_id=listing["id"])
                .order_by(Notification.id.asc())
                .all()
            ]
        self.assertEqual(types, ["NEW_LISTING", "PRICE_CHANGE", "LISTING_UPDATE"])

    def test_status_change_and_owner_views(self):
        uid, headers = self._create_user()
        active = self._create_listing(headers)
        sold = self._create_listing(headers)

        res = self.client.patch(f"/api/listings/{sold['id']}/status", json={"status": "removed"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.patch(f"/api/listings/{sold['id']}/status", json={"status": "sold"}, headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["listing"]["status"], "sold")

        public = self.client.get(f"/api/listings/user/{uid}").get_json()
        self.assertEqual([item["id"] for item in public["listings"]], [active["id"]])
        self.assertEqual(public["pagination"]["totalItems"], 1)
        self.assertEqual(self.client.get("/api/listings/user/999999").status_code, 404)

        mine = self.client.get("/api/listings/my-listings?status=sold", headers=headers).get_json()
        self.assertEqual([item["id"] for item in mine["listings"]], [sold["id"]])
        self.assertEqual(self.client.get("/api/listings/my-listings?sort=random", headers=headers).status_code, 400)
        self.assertEqual(self.client.get("/api/listings/my-listings?status=removed", headers=headers).status_code, 400)

        stats = self.client.get(f"/api/listings/{active['id']}/stats", headers=headers).get_json()["stats"]
        self.assertEqual(stats["status"], "active")
        self.assertFalse(stats["is_featured"])

    def test_delete_listing(self):
        _uid, headers = self._create_user()
        _other_id, other_headers = self._create_user()
        listing = self._create_listing(headers)
        self.client.post(f"/api/listings/{listing['id']}/favorite", headers=other_headers)

        res = self.client.delete(f"/api/listings/{listing['id']}", headers=other_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.delete(f"/api/listings/{listing['id']}", headers=headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.client.get(f"/api/listings/{listing['id']}").status_code, 404)
        with self.app.app_context():
            self.assertIsNone(db.session.get(Listing, listing["id"]))

    def test_reviews_require_moderation(self):
        _uid, headers = self._create_user()
        _reviewer_id, reviewer_headers = self._create_user()
        _mod_id, mod_headers = self._create_user(role="moderator")
        listing = self._create_listing(headers)

        res = self.client.post(f"/api/listings/{listing['id']}/reviews", json={"rating": 5, "comment": "Mine"}, headers=headers)
        self.assertEqual(res.status_code, 400)
        res = self.client.post(f"/api/listings/{listing['id']}/reviews", json={"rating": 9, "comment": "ok"}, headers=reviewer_headers)
        self.assertEqual(res.status_code, 400)

        res = self.client.post(
            f"/api/listings/{listing['id']}/reviews",
            json={"rating": 4, "comment": "Seller was honest"},
            headers=reviewer_headers,
        )
        self.assertEqual(res.status_code, 201)
        review = res.get_json()["review"]
        self.assertEqual(review["status"], "pending")

        res = self.client.post(
            f"/api/listings/{listing['id']}/reviews",
            json={"rating": 3, "comment": "Second try"},
            headers=reviewer_headers,
        )
        self.assertEqual(res.status_code, 400)

        self.assertEqual(self.client.get(f"/api/listings/{listing['id']}/reviews").get_json()["reviews"], [])

        res = self.client.patch(f"/api/reviews/{review['id']}", json={"status": "approved"}, headers=reviewer_headers)
        self.assertEqual(res.status_code, 403)
        res = self.client.patch(f"/api/reviews/{review['id']}", json={"status": "approved"}, headers=mod_headers)
        self.assertEqual(res.status_code, 200)

        body = self.client.get(f"/api/listings/{listing['id']}/reviews").get_json()
        self.assertEqual(len(body["reviews"]), 1)
        self.assertEqual(body["average_rating"], 4.0)
        self.assertEqual(body["review_count"], 1)


if __name__ == "__main__":
    unittest.main()
