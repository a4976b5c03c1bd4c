import pytest
from bson import ObjectId

from conftest import create_user, insert_product, login
from storefront.errors import Conflict, Forbidden, InvalidInput, NotFound
from storefront.reviews import ReviewAggregator, summarize_ratings


class RacingCollection:
    """Runs ``interloper`` right before each write, simulating a concurrent request."""

    def __init__(self, collection, interloper, times=1):
        self.collection = collection
        self.interloper = interloper
        self.times = times

    def __getattr__(self, name):
        return getattr(self.collection, name)

    def update_one(self, filter, update, *args, **kwargs):
        if self.times:
            self.times -= 1
            self.interloper()
        return self.collection.update_one(filter, update, *args, **kwargs)


@pytest.fixture
def aggregator(db):
    return ReviewAggregator(db.products)


@pytest.fixture
def product(db):
    return insert_product(db, name="Red Shoe", price=10)


def reload(db, product):
    return db.products.find_one({"_id": product["_id"]})


class TestSummarizeRatings:
    def test_empty(self):
        assert summarize_ratings([]) == (0, 0)

    def test_mean(self):
        assert summarize_ratings([{"rating": 5}, {"rating": 4}, {"rating": 3}]) == (3, 4)


class TestSubmitReview:
    def test_first_review_sets_aggregates(self, app, db, aggregator, product):
        user_id = ObjectId()
        with app.app_context():
            aggregator.submit_review(product["_id"], user_id, "Jane", 4, "Comfortable")

        stored = reload(db, product)
        assert stored["numOfReviews"] == 1
        assert stored["ratings"] == 4
        assert stored["reviews"][0]["user"] == user_id
        assert stored["reviews"][0]["name"] == "Jane"
        assert stored["reviews"][0]["comment"] == "Comfortable"
        assert isinstance(stored["reviews"][0]["_id"], ObjectId)

    def test_same_user_overwrites(self, app, db, aggregator, product):
        user_id = ObjectId()
        with app.app_context():
            aggregator.submit_review(product["_id"], user_id, "Jane", 4, "Comfortable")
            first_review_id = reload(db, product)["reviews"][0]["_id"]
            aggregator.submit_review(product["_id"], user_id, "Jane Renamed", 2, "Fell apart")

        stored = reload(db, product)
        assert stored["numOfReviews"] == 1
        assert stored["ratings"] == 2
        review = stored["reviews"][0]
        assert review["_id"] == first_review_id
        assert review["name"] == "Jane"
        assert review["comment"] == "Fell apart"

    def test_distinct_users_average(self, app, db, aggregator, product):
        ratings = [5, 4, 2, 1]
        with app.app_context():
            for rating in ratings:
                aggregator.submit_review(product["_id"], ObjectId(), "Someone", rating, "")

        stored = reload(db, product)
        assert stored["numOfReviews"] == len(ratings)
        assert stored["ratings"] == sum(ratings) / len(ratings)

    def test_missing_product(self, app, aggregator):
        with app.app_context(), pytest.raises(NotFound):
            aggregator.submit_review(ObjectId(), ObjectId(), "Jane", 4, "")

    @pytest.mark.parametrize("rating", [0, 6, 4.5, "great", None, True])
    def test_rating_out_of_range_is_rejected(self, app, db, aggregator, product, rating):
        with app.app_context(), pytest.raises(InvalidInput):
            aggregator.submit_review(product["_id"], ObjectId(), "Jane", rating, "")
        assert reload(db, product)["numOfReviews"] == 0

    def test_numeric_string_rating_is_accepted(self, app, db, aggregator, product):
        with app.app_context():
            aggregator.submit_review(product["_id"], ObjectId(), "Jane", "5", "")
        assert reload(db, product)["ratings"] == 5

    def test_product_without_revision_counter(self, app, db, aggregator):
        legacy = insert_product(db, name="Legacy")
        db.products.update_one({"_id": legacy["_id"]}, {"$unset": {"revision": ""}})

        with app.app_context():
            aggregator.submit_review(legacy["_id"], ObjectId(), "Jane", 3, "")

        stored = reload(db, legacy)
        assert stored["numOfReviews"] == 1
        assert stored["revision"] == 1

    def test_lost_race_is_retried(self, app, db, product):
        other_user = ObjectId()

        def concurrent_submission():
            ReviewAggregator(db.products).submit_review(product["_id"], other_user, "Other", 2, "")

        racing = ReviewAggregator(RacingCollection(db.products, concurrent_submission))
        with app.app_context():
            racing.submit_review(product["_id"], ObjectId(), "Jane", 4, "")

        stored = reload(db, product)
        assert stored["numOfReviews"] == 2
        assert stored["ratings"] == 3
        assert stored["revision"] == 2

    def test_gives_up_after_repeated_conflicts(self, app, db, product):
        def bump_revision():
            db.products.update_one({"_id": product["_id"]}, {"$inc": {"revision": 1}})

        racing = ReviewAggregator(
            RacingCollection(db.products, bump_revision, times=10), max_attempts=3
        )
        with app.app_context(), pytest.raises(Conflict):
            racing.submit_review(product["_id"], ObjectId(), "Jane", 4, "")
        assert reload(db, product)["numOfReviews"] == 0


class TestDeleteReview:
    def test_deleting_only_review_resets_aggregates(self, app, db, aggregator, product):
        with app.app_context():
            aggregator.submit_review(product["_id"], ObjectId(), "Jane", 4, "")
            review_id = reload(db, product)["reviews"][0]["_id"]
            assert aggregator.delete_review(product["_id"], review_id) is True

        stored = reload(db, product)
        assert stored["reviews"] == []
        assert stored["numOfReviews"] == 0
        assert stored["ratings"] == 0

    def test_recomputes_from_remaining(self, app, db, aggregator, product):
        with app.app_context():
            aggregator.submit_review(product["_id"], ObjectId(), "Jane", 5, "")
            aggregator.submit_review(product["_id"], ObjectId(), "Omar", 3, "")
            aggregator.submit_review(product["_id"], ObjectId(), "Ling", 1, "")
            review_id = reload(db, product)["reviews"][0]["_id"]
            aggregator.delete_review(product["_id"], review_id)

        stored = reload(db, product)
        assert stored["numOfReviews"] == 2
        assert stored["ratings"] == 2

    def test_unknown_review_is_idempotent_success(self, app, db, aggregator, product):
        with app.app_context():
            aggregator.submit_review(product["_id"], ObjectId(), "Jane", 5, "")
            revision_before = reload(db, product)["revision"]
            assert aggregator.delete_review(product["_id"], ObjectId()) is False

        stored = reload(db, product)
        assert stored["numOfReviews"] == 1
        assert stored["revision"] == revision_before

    def test_missing_product(self, app, aggregator):
        with app.app_context(), pytest.raises(NotFound):
            aggregator.delete_review(ObjectId(), ObjectId())

    def test_owner_check(self, app, db, aggregator, product):
        author = ObjectId()
        with app.app_context():
            aggregator.submit_review(product["_id"], author, "Jane", 5, "")
            review_id = reload(db, product)["reviews"][0]["_id"]
            with pytest.raises(Forbidden):
                aggregator.delete_review(product["_id"], review_id, requested_by=ObjectId())
            assert aggregator.delete_review(product["_id"], review_id, requested_by=author)


class TestReviewRoutes:
    def test_submit_list_delete(self, app, db, user, user_client, product):
        response = user_client.put(
            "/api/v1/review",
            json={"productId": str(product["_id"]), "rating": 5, "comment": "Love it"},
        )
        assert response.status_code == 200
        assert response.get_json() == {"success": True}

        response = user_client.get(f"/api/v1/reviews?id={product['_id']}")
        body = response.get_json()
        assert set(body) == {"success", "reviews"}
        assert len(body["reviews"]) == 1
        review = body["reviews"][0]
        assert review["name"] == user["name"]
        assert review["user"] == str(user["_id"])
        assert review["rating"] == 5

        response = user_client.delete(
            f"/api/v1/reviews?productId={product['_id']}&id={review['_id']}"
        )
        assert response.status_code == 200
        assert response.get_json() == {
            "success": True,
            "message": "Review has been deleted successfully",
        }
        stored = reload(db, product)
        assert stored["numOfReviews"] == 0
        assert stored["ratings"] == 0

    def test_resubmission_by_same_user_overwrites(self, db, user_client, product):
        for rating in (2, 5):
            user_client.put(
                "/api/v1/review",
                json={"productId": str(product["_id"]), "rating": rating, "comment": "x"},
            )
        stored = reload(db, product)
        assert stored["numOfReviews"] == 1
        assert stored["ratings"] == 5

    def test_two_users(self, app, db, user_client, product):
        other = create_user(db, name="Omar Buyer", email="omar@example.com")
        other_client = app.test_client()
        login(other_client, other["email"])

        user_client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 5})
        other_client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 2})

        stored = reload(db, product)
        assert stored["numOfReviews"] == 2
        assert stored["ratings"] == 3.5

    def test_other_users_cannot_delete_a_review(self, app, db, user_client, product):
        user_client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 5})
        review_id = reload(db, product)["reviews"][0]["_id"]

        other = create_user(db, name="Omar Buyer", email="omar@example.com")
        other_client = app.test_client()
        login(other_client, other["email"])

        response = other_client.delete(f"/api/v1/reviews?productId={product['_id']}&id={review_id}")
        assert response.status_code == 403
        assert reload(db, product)["numOfReviews"] == 1

    def test_admin_can_delete_any_review(self, db, user_client, admin_client, product):
        user_client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 5})
        review_id = reload(db, product)["reviews"][0]["_id"]

        response = admin_client.delete(f"/api/v1/reviews?productId={product['_id']}&id={review_id}")
        assert response.status_code == 200
        assert reload(db, product)["numOfReviews"] == 0

    def test_deleting_unknown_review_succeeds(self, user_client, product):
        response = user_client.delete(f"/api/v1/reviews?productId={product['_id']}&id={ObjectId()}")
        assert response.status_code == 200

    def test_errors(self, client, user_client, product):
        assert client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 5}).status_code == 401

        response = user_client.put("/api/v1/review", json={"productId": "nope", "rating": 5})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Invalid Product ID"

        response = user_client.put("/api/v1/review", json={"productId": str(ObjectId()), "rating": 5})
        assert response.status_code == 404

        response = user_client.put("/api/v1/review", json={"productId": str(product["_id"]), "rating": 9})
        assert response.status_code == 400

        assert user_client.get(f"/api/v1/reviews?id={ObjectId()}").status_code == 404
        assert user_client.delete(f"/api/v1/reviews?productId={ObjectId()}&id={ObjectId()}").status_code == 404
        assert user_client.delete(f"/api/v1/reviews?productId={product['_id']}&id=bad").status_code == 400
