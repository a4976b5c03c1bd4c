from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from flask import current_app

from .errors import Conflict, Forbidden, InvalidInput, NotFound

MIN_RATING = 1
MAX_RATING = 5
MAX_WRITE_ATTEMPTS = 5


def summarize_ratings(reviews: List[Dict]) -> Tuple[int, float]:
    """Return ``(numOfReviews, ratings)`` recomputed from the full review list."""
    if not reviews:
        return 0, 0
    total = sum(review.get("rating", 0) for review in reviews)
    return len(reviews), total / len(reviews)


def normalize_rating(value) -> int:
    if isinstance(value, bool):
        raise InvalidInput("Rating must be a whole number between 1 and 5.")
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        raise InvalidInput("Rating must be a whole number between 1 and 5.") from None
    if not numeric.is_integer() or not MIN_RATING <= numeric <= MAX_RATING:
        raise InvalidInput("Rating must be a whole number between 1 and 5.")
    return int(numeric)


def validate_review(review: Dict) -> None:
    if not isinstance(review.get("user"), ObjectId):
        raise InvalidInput("Each review must reference a user.")
    if not str(review.get("name") or "").strip():
        raise InvalidInput("Each review must carry the reviewer name.")
    normalize_rating(review.get("rating"))


def _revision_filter(product: Dict) -> Dict:
    if "revision" in product:
        return {"_id": product["_id"], "revision": product["revision"]}
    return {"_id": product["_id"], "revision": {"$exists": False}}


class ReviewAggregator:
    """Keeps a product's review list and its derived rating fields in step.

    Every write is a compare-and-swap on the product ``revision`` counter, so
    two requests editing the same product cannot overwrite each other's
    review list; the loser re-reads and re-applies its change.
    """

    def __init__(self, products_collection, max_attempts: int = MAX_WRITE_ATTEMPTS):
        self.products = products_collection
        self.max_attempts = max_attempts

    def _load(self, product_id: ObjectId) -> Dict:
        product = self.products.find_one({"_id": product_id})
        if not product:
            raise NotFound("Product not found")
        return product

    def _commit(self, product: Dict, reviews: List[Dict]) -> bool:
        num_of_reviews, ratings = summarize_ratings(reviews)
        result = self.products.update_one(
            _revision_filter(product),
            {
                "$set": {
                    "reviews": reviews,
                    "numOfReviews": num_of_reviews,
                    "ratings": ratings,
                },
                "$inc": {"revision": 1},
            },
        )
        return result.matched_count == 1

    def submit_review(
        self,
        product_id: ObjectId,
        user_id: ObjectId,
        user_name: str,
        rating,
        comment: Optional[str],
    ) -> None:
        rating_value = normalize_rating(rating)
        comment_value = str(comment or "").strip()

        for _ in range(self.max_attempts):
            product = self._load(product_id)
            reviews = list(product.get("reviews") or [])

            for review in reviews:
                if review.get("user") == user_id:
                    review["rating"] = rating_value
                    review["comment"] = comment_value
                    break
            else:
                reviews.append(
                    {
                        "_id": ObjectId(),
                        "user": user_id,
                        "name": user_name,
                        "rating": rating_value,
                        "comment": comment_value,
                    }
                )

            if self._commit(product, reviews):
                return
            current_app.logger.info(
                "Review write for product %s lost a concurrent update, retrying", product_id
            )

        raise Conflict("The product was updated by another request. Please retry.")

    def list_reviews(self, product_id: ObjectId) -> List[Dict]:
        return list(self._load(product_id).get("reviews") or [])

    def delete_review(
        self,
        product_id: ObjectId,
        review_id: ObjectId,
        requested_by: Optional[ObjectId] = None,
    ) -> bool:
        """Remove a review; returns ``False`` when no review had that id.

        An id that is already gone is a no-op success. When ``requested_by``
        is given, only that user's own review may be removed.
        """
        for _ in range(self.max_attempts):
            product = self._load(product_id)
            existing = list(product.get("reviews") or [])
            remaining = [review for review in existing if review.get("_id") != review_id]
            if len(remaining) == len(existing):
                return False

            if requested_by is not None:
                target = next(review for review in existing if review.get("_id") == review_id)
                if target.get("user") != requested_by:
                    raise Forbidden("You can only delete your own review.")

            for review in remaining:
                validate_review(review)

            if self._commit(product, remaining):
                return True
            current_app.logger.info(
                "Review delete for product %s lost a concurrent update, retrying", product_id
            )

        raise Conflict("The product was updated by another request. Please retry.")
