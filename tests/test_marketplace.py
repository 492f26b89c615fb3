"""Tests for the student marketplace."""

from __future__ import annotations

import pytest


@pytest.fixture
def seller(app, classroom, teacher, make_student, headers_for):
    """An approved seller with their own bearer headers."""
    from marketplace import SellerStoreDB

    student_id = make_student("vendor")
    with app.app_context():
        profile = SellerStoreDB.apply(student_id, classroom["id"], "Vendor Crafts")["seller"]
        SellerStoreDB.set_status(profile["id"], "approved", teacher["id"])
    return {"id": profile["id"], "student_id": student_id, "headers": headers_for(student_id)}


@pytest.fixture
def make_listing(app, seller):
    from marketplace import ListingStoreDB, SellerStoreDB

    def _make(**fields):
        fields.setdefault("title", "Friendship Bracelet")
        fields.setdefault("price", 10)
        with app.app_context():
            result = ListingStoreDB.create(SellerStoreDB.get(seller["id"]), fields)
        assert result["success"], result
        return result["listing"]

    return _make


class TestSellers:
    def test_apply_starts_pending(self, client, classroom, student_headers):
        resp = client.post("/api/marketplace/sellers", headers=student_headers, json={
            "classroom_id": classroom["id"], "business_name": "Sam's Snacks",
        })
        assert resp.status_code == 201
        assert resp.get_json()["seller"]["status"] == "pending"

    def test_apply_twice(self, client, classroom, student_headers):
        body = {"classroom_id": classroom["id"], "business_name": "Sam's Snacks"}
        client.post("/api/marketplace/sellers", headers=student_headers, json=body)
        resp = client.post("/api/marketplace/sellers", headers=student_headers, json=body)
        assert resp.status_code == 400

    def test_pending_seller_cannot_list(self, client, classroom, student_headers):
        client.post("/api/marketplace/sellers", headers=student_headers, json={
            "classroom_id": classroom["id"], "business_name": "Sam's Snacks",
        })
        resp = client.post("/api/marketplace/listings", headers=student_headers, json={
            "classroom_id": classroom["id"], "title": "Cookie", "price": 3,
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Seller is not approved"

    def test_no_profile_cannot_list(self, client, classroom, student_headers):
        resp = client.post("/api/marketplace/listings", headers=student_headers, json={
            "classroom_id": classroom["id"], "title": "Cookie", "price": 3,
        })
        assert resp.status_code == 400

    def test_suspension_hides_listings(self, client, classroom, seller, make_listing,
                                       teacher_headers, student_headers):
        make_listing()
        resp = client.put(f"/api/marketplace/sellers/{seller['id']}/status", headers=teacher_headers,
                          json={"status": "suspended"})
        assert resp.status_code == 200
        listings = client.get(f"/api/marketplace/listings/classroom/{classroom['id']}",
                              headers=student_headers)
        assert listings.get_json()["listings"] == []

    def test_teacher_lists_pending_sellers(self, client, classroom, seller, student_headers, teacher_headers):
        client.post("/api/marketplace/sellers", headers=student_headers, json={
            "classroom_id": classroom["id"], "business_name": "Sam's Snacks",
        })
        resp = client.get(f"/api/marketplace/sellers/classroom/{classroom['id']}?status=pending",
                          headers=teacher_headers)
        assert [s["business_name"] for s in resp.get_json()["sellers"]] == ["Sam's Snacks"]


class TestListings:
    def test_search_and_category(self, client, classroom, make_listing, student_headers):
        make_listing(title="Bookmark", category="crafts")
        make_listing(title="Comic Drawing", category="art")
        url = f"/api/marketplace/listings/classroom/{classroom['id']}"
        by_cat = client.get(f"{url}?category=art", headers=student_headers).get_json()["listings"]
        by_search = client.get(f"{url}?search=book", headers=student_headers).get_json()["listings"]
        assert [l["title"] for l in by_cat] == ["Comic Drawing"]
        assert [l["title"] for l in by_search] == ["Bookmark"]

    def test_view_counts(self, client, make_listing, student_headers):
        listing = make_listing()
        client.get(f"/api/marketplace/listings/{listing['id']}", headers=student_headers)
        resp = client.get(f"/api/marketplace/listings/{listing['id']}", headers=student_headers)
        assert resp.get_json()["listing"]["view_count"] == 2

    def test_only_seller_updates(self, client, seller, make_listing, student_headers):
        listing = make_listing()
        url = f"/api/marketplace/listings/{listing['id']}"
        assert client.put(url, headers=student_headers, json={"price": 1}).status_code == 404
        resp = client.put(url, headers=seller["headers"], json={"price": 12})
        assert resp.get_json()["listing"]["price"] == 12

    def test_teacher_deactivates(self, client, make_listing, teacher_headers):
        listing = make_listing()
        resp = client.delete(f"/api/marketplace/listings/{listing['id']}", headers=teacher_headers)
        assert resp.get_json()["listing"]["status"] == "inactive"


class TestBuying:
    def test_buy_transfers_tokens(self, app, client, classroom, student, seller, fund,
                                  make_listing, student_headers):
        fund(student["id"], 50)
        listing = make_listing(price=8, quantity=3)
        resp = client.post(f"/api/marketplace/listings/{listing['id']}/buy",
                           headers=student_headers, json={"quantity": 2})
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["balance_after"] == 34
        assert data["transaction"]["total_amount"] == 16
        from marketplace import ListingStoreDB, SellerStoreDB
        from wallet import WalletStoreDB
        with app.app_context():
            seller_balance = WalletStoreDB(seller["student_id"], classroom["id"]).balance()
            remaining = ListingStoreDB.get(listing["id"])["quantity"]
            profile = SellerStoreDB.get(seller["id"])
        assert seller_balance == 16
        assert remaining == 1
        assert (profile["total_sales"], profile["total_revenue"]) == (2, 16)

    def test_last_unit_marks_sold_out(self, client, student, fund, make_listing, student_headers):
        fund(student["id"], 50)
        listing = make_listing(quantity=1)
        url = f"/api/marketplace/listings/{listing['id']}/buy"
        client.post(url, headers=student_headers, json={})
        resp = client.post(url, headers=student_headers, json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Listing is not available"

    def test_cannot_buy_own_listing(self, client, seller, make_listing):
        listing = make_listing()
        resp = client.post(f"/api/marketplace/listings/{listing['id']}/buy",
                           headers=seller["headers"], json={})
        assert resp.status_code == 400

    def test_insufficient_tokens_leaves_no_transaction(self, app, client, classroom, student,
                                                       make_listing, student_headers):
        listing = make_listing(price=10)
        resp = client.post(f"/api/marketplace/listings/{listing['id']}/buy",
                           headers=student_headers, json={})
        assert resp.status_code == 400
        from marketplace import MarketplaceService
        with app.app_context():
            assert MarketplaceService.transactions_for_classroom(classroom["id"]) == []


class TestRefundsAndReviews:
    def _sale(self, client, fund, student, listing, student_headers):
        fund(student["id"], 30)
        resp = client.post(f"/api/marketplace/listings/{listing['id']}/buy",
                           headers=student_headers, json={})
        return resp.get_json()["transaction"]["id"]

    def test_refund(self, app, client, classroom, student, fund, make_listing,
                    teacher_headers, student_headers):
        listing = make_listing(price=10, quantity=1)
        tx_id = self._sale(client, fund, student, listing, student_headers)
        resp = client.post(f"/api/marketplace/transactions/{tx_id}/refund", headers=teacher_headers)
        assert resp.status_code == 200
        assert resp.get_json()["transaction"]["status"] == "refunded"
        from marketplace import ListingStoreDB
        from wallet import WalletStoreDB
        with app.app_context():
            balance = WalletStoreDB(student["id"], classroom["id"]).balance()
            restored = ListingStoreDB.get(listing["id"])
        assert balance == 30
        assert (restored["quantity"], restored["status"]) == (1, "active")
        again = client.post(f"/api/marketplace/transactions/{tx_id}/refund", headers=teacher_headers)
        assert again.status_code == 400

    def test_refund_when_seller_spent_tokens(self, app, client, classroom, student, seller, fund,
                                             make_listing, teacher_headers, student_headers):
        listing = make_listing(price=10)
        tx_id = self._sale(client, fund, student, listing, student_headers)
        from wallet import deduct_tokens
        with app.app_context():
            deduct_tokens(seller["student_id"], classroom["id"], 10, "Spent", None)
        resp = client.post(f"/api/marketplace/transactions/{tx_id}/refund", headers=teacher_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Seller has insufficient tokens for refund"

    def test_review_once(self, client, seller, student, fund, make_listing, student_headers):
        tx_id = self._sale(client, fund, student, make_listing(), student_headers)
        body = {"transaction_id": tx_id, "rating": 4, "comment": "Nice"}
        assert client.post("/api/marketplace/reviews", headers=student_headers, json=body).status_code == 201
        assert client.post("/api/marketplace/reviews", headers=student_headers, json=body).status_code == 400
        summary = client.get(f"/api/marketplace/sellers/{seller['id']}/reviews", headers=student_headers)
        data = summary.get_json()
        assert (data["average_rating"], data["review_count"]) == (4, 1)

    def test_review_rating_range(self, client, student, fund, make_listing, student_headers):
        tx_id = self._sale(client, fund, student, make_listing(), student_headers)
        resp = client.post("/api/marketplace/reviews", headers=student_headers,
                           json={"transaction_id": tx_id, "rating": 6})
        assert resp.status_code == 400

    def test_analytics(self, client, classroom, student, fund, make_listing, teacher_headers, student_headers):
        self._sale(client, fund, student, make_listing(price=7, category="crafts"), student_headers)
        resp = client.get(f"/api/marketplace/analytics/{classroom['id']}", headers=teacher_headers)
        analytics = resp.get_json()["analytics"]
        assert analytics["transaction_count"] == 1
        assert analytics["total_volume"] == 7
        assert analytics["category_breakdown"][0]["category"] == "crafts"


class TestWishlist:
    def test_add_and_remove(self, client, make_listing, student_headers):
        listing = make_listing()
        resp = client.post("/api/marketplace/wishlist", headers=student_headers,
                           json={"listing_id": listing["id"]})
        assert resp.status_code == 201
        items = client.get("/api/marketplace/wishlist", headers=student_headers).get_json()["wishlist"]
        assert [i["id"] for i in items] == [listing["id"]]
        client.delete(f"/api/marketplace/wishlist/{listing['id']}", headers=student_headers)
        assert client.get("/api/marketplace/wishlist", headers=student_headers).get_json()["wishlist"] == []

    def test_unknown_listing(self, client, student_headers):
        resp = client.post("/api/marketplace/wishlist", headers=student_headers, json={"listing_id": 99})
        assert resp.status_code == 404
