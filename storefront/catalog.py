from datetime import datetime
from typing import Dict

from flask import jsonify, request
from flask_jwt_extended import jwt_required
from pymongo.errors import PyMongoError

from .auth import get_current_user, require_admin_user
from .errors import InvalidInput, NotFound
from .features import ApiFeatures
from .helpers import parse_object_id
from .images import UploadedImage, destroy_images, discard_images, upload_images
from .reviews import ReviewAggregator
from .serializers import serialize_product, serialize_reviews

MAX_PRICE = 99999999
MAX_STOCK = 9999
MAX_NAME_LENGTH = 120


def normalize_product_payload(payload: Dict, partial: bool = False) -> Dict:
    """Validate catalog fields; with ``partial`` only the keys present are checked."""
    product: Dict = {}

    def wants(field_name: str) -> bool:
        return not partial or field_name in payload

    if wants("name"):
        name = str(payload.get("name", "")).strip()
        if not name:
            raise InvalidInput("A product name is required.")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidInput(f"Product name cannot exceed {MAX_NAME_LENGTH} characters.")
        product["name"] = name

    if wants("description"):
        description = str(payload.get("description", "")).strip()
        if not description:
            raise InvalidInput("A product description is required.")
        product["description"] = description

    if wants("price"):
        try:
            price_value = round(float(payload.get("price", "")), 2)
        except (TypeError, ValueError):
            raise InvalidInput("Price must be a valid number.") from None
        if price_value < 0 or price_value > MAX_PRICE:
            raise InvalidInput("Price must be between 0 and 99999999.")
        product["price"] = price_value

    if wants("category"):
        category = str(payload.get("category", "")).strip()
        if not category:
            raise InvalidInput("A product category is required.")
        product["category"] = category

    if "stock" in payload:
        try:
            stock_value = int(str(payload.get("stock")).strip())
        except (TypeError, ValueError):
            raise InvalidInput("Stock must be a whole number.") from None
        if stock_value < 0 or stock_value > MAX_STOCK:
            raise InvalidInput("Stock must be between 0 and 9999.")
        product["stock"] = stock_value
    elif not partial:
        product["stock"] = 1

    return product


def _request_payload() -> Dict:
    payload = request.form.to_dict() if request.form else {}
    if not payload:
        payload = request.get_json(silent=True) or {}
    return payload


def _request_images():
    if not request.files:
        return []
    return [image for image in request.files.getlist("images") if image and image.filename]


def register_catalog_routes(app, db, image_store, settings):
    reviews = ReviewAggregator(db.products)

    def load_product(raw_product_id) -> Dict:
        product_id = parse_object_id(raw_product_id, "Invalid Product ID")
        product_document = db.products.find_one({"_id": product_id})
        if not product_document:
            raise NotFound("Product not found")
        return product_document

    @app.route("/api/v1/products", methods=["GET"])
    def list_products():
        result_per_page = settings.products_per_page

        # The count is taken before pagination so it reports every match.
        products_count = ApiFeatures(db.products, request.args).search().filter().count()
        features = (
            ApiFeatures(db.products, request.args)
            .search()
            .filter()
            .paginate(result_per_page)
        )
        products = [serialize_product(document) for document in features.fetch()]

        return jsonify(
            {
                "success": True,
                "products": products,
                "productsCount": products_count,
                "resultPerPage": result_per_page,
                "filteredProductsCount": products_count,
            }
        )

    @app.route("/api/v1/admin/products", methods=["GET"])
    @jwt_required()
    def list_admin_products():
        require_admin_user(db)
        products = [serialize_product(document) for document in db.products.find().sort("_id", 1)]
        return jsonify({"success": True, "products": products})

    @app.route("/api/v1/product/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product_document = load_product(product_id)
        return jsonify({"success": True, "product": serialize_product(product_document)})

    @app.route("/api/v1/admin/product/new", methods=["POST"])
    @jwt_required()
    def create_product():
        current_user = require_admin_user(db)

        image_files = _request_images()
        if not image_files:
            raise InvalidInput("No images provided")

        product_fields = normalize_product_payload(_request_payload())
        uploaded = upload_images(image_store, image_files)

        product_document = {
            **product_fields,
            "images": [image.to_document() for image in uploaded],
            "user": current_user["_id"],
            "reviews": [],
            "ratings": 0,
            "numOfReviews": 0,
            "revision": 0,
            "createdAt": datetime.utcnow(),
        }
        try:
            result = db.products.insert_one(product_document)
        except PyMongoError:
            discard_images(image_store, uploaded)
            raise

        created_product = db.products.find_one({"_id": result.inserted_id})
        app.logger.info(
            "Product %s created by %s with %s images",
            result.inserted_id,
            current_user.get("email"),
            len(uploaded),
        )
        return jsonify({"success": True, "product": serialize_product(created_product)}), 201

    @app.route("/api/v1/admin/product/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        require_admin_user(db)
        product_document = load_product(product_id)

        updates = normalize_product_payload(_request_payload(), partial=True)
        image_files = _request_images()
        if not updates and not image_files:
            raise InvalidInput("No fields to update.")

        new_images = []
        if image_files:
            new_images = upload_images(image_store, image_files)
            updates["images"] = [image.to_document() for image in new_images]

        try:
            result = db.products.update_one(
                {"_id": product_document["_id"]},
                {"$set": updates, "$inc": {"revision": 1}},
            )
        except PyMongoError:
            discard_images(image_store, new_images)
            raise
        if result.matched_count == 0:
            discard_images(image_store, new_images)
            raise NotFound("Product not found")

        if new_images:
            previous_images = [
                UploadedImage(public_id=image.get("publicId"), url=image.get("url", ""))
                for image in product_document.get("images") or []
                if image.get("publicId")
            ]
            discard_images(image_store, previous_images)

        updated_product = db.products.find_one({"_id": product_document["_id"]})
        return jsonify({"success": True, "product": serialize_product(updated_product)})

    @app.route("/api/v1/admin/product/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        require_admin_user(db)
        product_document = load_product(product_id)

        def forget_image(image):
            db.products.update_one(
                {"_id": product_document["_id"]},
                {
                    "$pull": {"images": {"publicId": image["publicId"]}},
                    "$inc": {"revision": 1},
                },
            )

        destroy_images(image_store, product_document.get("images"), on_destroyed=forget_image)
        db.products.delete_one({"_id": product_document["_id"]})

        return jsonify({"success": True, "message": "Product Delete Successfully"})

    # Reviews
    @app.route("/api/v1/review", methods=["PUT"])
    @jwt_required()
    def submit_review():
        current_user = get_current_user(db)
        payload = request.get_json(silent=True) or {}
        product_id = parse_object_id(payload.get("productId"), "Invalid Product ID")

        reviews.submit_review(
            product_id,
            current_user["_id"],
            current_user.get("name", ""),
            payload.get("rating"),
            payload.get("comment"),
        )
        return jsonify({"success": True})

    @app.route("/api/v1/reviews", methods=["GET"])
    def list_product_reviews():
        product_id = parse_object_id(request.args.get("id"), "Invalid Product ID")
        return jsonify(
            {"success": True, "reviews": serialize_reviews(reviews.list_reviews(product_id))}
        )

    @app.route("/api/v1/reviews", methods=["DELETE"])
    @jwt_required()
    def delete_product_review():
        current_user = get_current_user(db)
        product_id = parse_object_id(request.args.get("productId"), "Invalid Product ID")
        review_id = parse_object_id(request.args.get("id"), "Invalid Review ID")

        requested_by = None if current_user.get("role") == "admin" else current_user["_id"]
        reviews.delete_review(product_id, review_id, requested_by=requested_by)

        return jsonify({"success": True, "message": "Review has been deleted successfully"})
