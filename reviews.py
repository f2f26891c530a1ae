import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

import catalog
import orders
from database import create_document, get_documents, to_object_id
from errors import DuplicateReviewError, InvalidRatingError, PurchaseRequiredError
from schemas import Review
from users import display_name

logger = logging.getLogger(__name__)


def _check_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRatingError(rating)
    return rating


def submit_review(db, user_id: str, product_id: str, rating, comment: Optional[str] = None) -> Dict[str, Any]:
    """Store a verified-purchase review and refresh the product's average rating.

    Only buyers holding a delivered order that contains the product may
    review it, once per product.
    """
    rating = _check_rating(rating)
    product_id = str(catalog.get_product(db, product_id)["_id"])

    if not orders.has_fulfilled_purchase(db, user_id, product_id):
        raise PurchaseRequiredError()
    if db["review"].find_one({"product": product_id, "user": user_id}):
        raise DuplicateReviewError()

    review = Review(product=product_id, user=user_id, rating=rating, comment=comment, verified_purchase=True)
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        # Lost a race against a concurrent submission for the same pair
        raise DuplicateReviewError()
    logger.info("User %s rated product %s with %d", user_id, product_id, rating)

    refresh_rating(db, product_id)
    return db["review"].find_one({"_id": to_object_id(review_id)})


def refresh_rating(db, product_id: str) -> float:
    """Recompute the mean rating of a product from all of its reviews."""
    result = list(db["review"].aggregate([
        {"$match": {"product": product_id}},
        {"$group": {"_id": None, "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    # An empty match may still yield one group with a null average
    if result and result[0]["average"] is not None:
        average, count = float(result[0]["average"]), result[0]["count"]
    else:
        average, count = 0.0, 0
    catalog.set_rating(db, product_id, average, count)
    return average


def list_reviews(db, product_id: str) -> List[Dict[str, Any]]:
    reviews = get_documents(db, "review", {"product": product_id})
    user_ids = list({to_object_id(r["user"]) for r in reviews})
    names = {}
    if user_ids:
        for user in db["user"].find({"_id": {"$in": user_ids}}, {"first_name": 1, "last_name": 1}):
            names[str(user["_id"])] = display_name(user)
    for review in reviews:
        review["user_name"] = names.get(review["user"], "Unknown user")
    return reviews
