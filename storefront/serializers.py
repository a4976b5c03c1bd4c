from datetime import datetime
from typing import Dict, List, Optional


def _id_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def serialize_image(image: Dict) -> Dict[str, str]:
    return {
        "publicId": str(image.get("publicId") or ""),
        "url": str(image.get("url") or ""),
    }


def serialize_review(review: Dict) -> Dict:
    return {
        "_id": _id_or_none(review.get("_id")),
        "user": _id_or_none(review.get("user")),
        "name": review.get("name", "") or "",
        "rating": review.get("rating", 0),
        "comment": review.get("comment", "") or "",
    }


def serialize_reviews(reviews: Optional[List[Dict]]) -> List[Dict]:
    return [serialize_review(review) for review in reviews or []]


def serialize_product(product_document: Dict) -> Dict:
    try:
        price_value = float(product_document.get("price", 0) or 0)
    except (TypeError, ValueError):
        price_value = 0.0

    raw_images = product_document.get("images")
    images = [serialize_image(image) for image in raw_images] if isinstance(raw_images, list) else []

    return {
        "_id": _id_or_none(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", ""),
        "price": price_value,
        "category": product_document.get("category", ""),
        "stock": product_document.get("stock", 0),
        "images": images,
        "user": _id_or_none(product_document.get("user")),
        "ratings": product_document.get("ratings", 0) or 0,
        "numOfReviews": product_document.get("numOfReviews", 0) or 0,
        "reviews": serialize_reviews(product_document.get("reviews")),
        "createdAt": _iso(product_document.get("createdAt")),
    }


def serialize_user(user_document: Optional[Dict]) -> Dict:
    if not user_document:
        return {}
    return {
        "_id": _id_or_none(user_document.get("_id")),
        "name": user_document.get("name", "") or "",
        "email": user_document.get("email", "") or "",
        "role": user_document.get("role", "user") or "user",
        "createdAt": _iso(user_document.get("createdAt")),
    }


def serialize_order(order_document: Dict, user_document: Optional[Dict] = None) -> Dict:
    items = []
    for item in order_document.get("orderItems") or []:
        items.append(
            {
                "name": item.get("name", ""),
                "price": item.get("price", 0),
                "quantity": item.get("quantity", 0),
                "image": item.get("image", ""),
                "product": _id_or_none(item.get("product")),
            }
        )

    if user_document:
        user = {
            "_id": _id_or_none(user_document.get("_id")),
            "name": user_document.get("name", "") or "",
            "email": user_document.get("email", "") or "",
        }
    else:
        user = _id_or_none(order_document.get("user"))

    return {
        "_id": _id_or_none(order_document.get("_id")),
        "shippingInfo": dict(order_document.get("shippingInfo") or {}),
        "orderItems": items,
        "user": user,
        "paymentInfo": dict(order_document.get("paymentInfo") or {}),
        "paidAt": _iso(order_document.get("paidAt")),
        "itemsPrice": order_document.get("itemsPrice", 0),
        "taxPrice": order_document.get("taxPrice", 0),
        "shippingPrice": order_document.get("shippingPrice", 0),
        "totalPrice": order_document.get("totalPrice", 0),
        "orderStatus": order_document.get("orderStatus", "Processing"),
        "deliveredAt": _iso(order_document.get("deliveredAt")),
        "createdAt": _iso(order_document.get("createdAt")),
    }
