"""Tests for review gating and rating aggregation."""

import pytest
from bson import ObjectId

import orders
import reviews
from errors import DuplicateReviewError, InvalidRatingError, ProductNotFoundError, PurchaseRequiredError
from schemas import Role


@pytest.fixture
def deliver(db, admin):
    """Place an order for the buyer and mark it delivered."""

    def _deliver(principal, product_id):
        order = orders.create_order(db, [(product_id, 1)], buyer_id=principal.id)
        return orders.update_status(db, str(order["_id"]), admin, "delivered")

    return _deliver


def _product(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})


class TestSubmitReview:
    def test_requires_an_order(self, db, buyer, seller, make_product):
        product = make_product(seller)
        with pytest.raises(PurchaseRequiredError):
            reviews.submit_review(db, buyer.id, product, 5)

    def test_undelivered_order_is_not_enough(self, db, buyer, seller, admin, make_product):
        product = make_product(seller)
        order = orders.create_order(db, [(product, 1)], buyer_id=buyer.id)
        orders.update_status(db, str(order["_id"]), admin, "shipped")

        with pytest.raises(PurchaseRequiredError):
            reviews.submit_review(db, buyer.id, product, 5)

    def test_delivered_order_allows_review(self, db, buyer, seller, make_product, deliver):
        product = make_product(seller)
        deliver(buyer, product)

        review = reviews.submit_review(db, buyer.id, product, 4, "Solid")

        assert review["verified_purchase"] is True
        assert review["rating"] == 4
        assert review["comment"] == "Solid"
        assert _product(db, product)["average_rating"] == 4.0
        assert _product(db, product)["review_count"] == 1

    def test_legacy_completed_order_allows_review(self, db, buyer, seller, make_product):
        product = make_product(seller)
        order = orders.create_order(db, [(product, 1)], buyer_id=buyer.id)
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"status": "completed"}})

        assert reviews.submit_review(db, buyer.id, product, 3)["rating"] == 3

    def test_someone_elses_order_does_not_count(self, db, buyer, other_buyer, seller, make_product, deliver):
        product = make_product(seller)
        deliver(other_buyer, product)

        with pytest.raises(PurchaseRequiredError):
            reviews.submit_review(db, buyer.id, product, 5)

    def test_second_review_rejected(self, db, buyer, seller, make_product, deliver):
        product = make_product(seller)
        deliver(buyer, product)
        reviews.submit_review(db, buyer.id, product, 5)

        with pytest.raises(DuplicateReviewError):
            reviews.submit_review(db, buyer.id, product, 1)
        assert db["review"].count_documents({"product": product}) == 1
        assert _product(db, product)["average_rating"] == 5.0

    @pytest.mark.parametrize("rating", [0, 6, -1, 4.5, "5", True, None])
    def test_invalid_rating(self, db, buyer, seller, make_product, deliver, rating):
        product = make_product(seller)
        deliver(buyer, product)

        with pytest.raises(InvalidRatingError):
            reviews.submit_review(db, buyer.id, product, rating)
        assert db["review"].count_documents({}) == 0

    def test_unknown_product(self, db, buyer):
        with pytest.raises(ProductNotFoundError):
            reviews.submit_review(db, buyer.id, str(ObjectId()), 5)

    def test_average_is_the_exact_mean(self, db, make_user, seller, make_product, deliver):
        product = make_product(seller, stock=10)
        ratings = [5, 4, 2, 1]
        for rating in ratings:
            reviewer = make_user(Role.BUYER)
            deliver(reviewer, product)
            reviews.submit_review(db, reviewer.id, product, rating)

        stored = _product(db, product)
        assert stored["average_rating"] == pytest.approx(sum(ratings) / len(ratings))
        assert stored["review_count"] == len(ratings)


class TestListReviews:
    def test_reviews_carry_reviewer_name(self, db, buyer, other_buyer, seller, make_product, deliver):
        product = make_product(seller)
        other = make_product(seller, name="Other")
        for principal in (buyer, other_buyer):
            deliver(principal, product)
        deliver(buyer, other)
        reviews.submit_review(db, buyer.id, product, 5)
        reviews.submit_review(db, other_buyer.id, product, 3)
        reviews.submit_review(db, buyer.id, other, 1)

        listed = reviews.list_reviews(db, product)

        assert [(r["user_name"], r["rating"]) for r in listed] == [("Otto Other", 3), ("Bea Buyer", 5)]

    def test_no_reviews(self, db, seller, make_product):
        assert reviews.list_reviews(db, make_product(seller)) == []

    def test_refresh_with_no_reviews_resets_rating(self, db, seller, make_product):
        product = make_product(seller)
        db["product"].update_one({"_id": ObjectId(product)}, {"$set": {"average_rating": 4.2}})

        assert reviews.refresh_rating(db, product) == 0.0
        assert _product(db, product)["average_rating"] == 0.0

    def test_refresh_after_last_review_removed(self, db, buyer, seller, make_product, deliver):
        product = make_product(seller)
        deliver(buyer, product)
        reviews.submit_review(db, buyer.id, product, 4)
        db["review"].delete_many({"product": product})

        assert reviews.refresh_rating(db, product) == 0.0
        stored = _product(db, product)
        assert (stored["average_rating"], stored["review_count"]) == (0.0, 0)
