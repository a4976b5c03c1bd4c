from datetime import datetime
from typing import Dict, List

from flask import jsonify, request
from flask_jwt_extended import jwt_required

from .auth import get_current_user, require_admin_user
from .errors import Forbidden, InvalidInput, NotFound
from .helpers import parse_object_id, safe_float, safe_positive_int
from .serializers import serialize_order

ORDER_STATUSES = ("Processing", "Shipped", "Delivered")
SHIPPING_FIELDS = ("address", "city", "state", "country", "pinCode", "phoneNo")


def normalize_shipping_info(payload) -> Dict[str, str]:
    if not isinstance(payload, dict):
        raise InvalidInput("Shipping information is required.")
    shipping_info = {}
    for field_name in SHIPPING_FIELDS:
        value = str(payload.get(field_name) or "").strip()
        if not value:
            raise InvalidInput(f"Shipping field '{field_name}' is required.")
        shipping_info[field_name] = value
    return shipping_info


def normalize_order_items(raw_items) -> List[Dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInput("Include at least one item to place an order.")

    items = []
    for entry in raw_items:
        if not isinstance(entry, dict):
            raise InvalidInput("Each order item must be an object.")
        quantity = safe_positive_int(entry.get("quantity"), 0)
        if quantity < 1:
            raise InvalidInput("Each order item needs a quantity of at least 1.")
        items.append(
            {
                "name": str(entry.get("name") or "").strip() or "Item",
                "price": round(safe_float(entry.get("price"), 0.0), 2),
                "quantity": quantity,
                "image": str(entry.get("image") or "").strip(),
                "product": parse_object_id(entry.get("product"), "Invalid Product ID"),
            }
        )
    return items


def register_order_routes(app, db):
    def load_order(raw_order_id) -> Dict:
        order_id = parse_object_id(raw_order_id, "Invalid Order ID")
        order_document = db.orders.find_one({"_id": order_id})
        if not order_document:
            raise NotFound("Order not found with this Id")
        return order_document

    def update_stock(product_id, quantity: int):
        result = db.products.update_one(
            {"_id": product_id},
            {"$inc": {"stock": -quantity, "revision": 1}},
        )
        if result.matched_count == 0:
            app.logger.warning("Stock not updated, product %s no longer exists", product_id)

    @app.route("/api/v1/order/new", methods=["POST"])
    @jwt_required()
    def new_order():
        current_user = get_current_user(db)
        payload = request.get_json(silent=True) or {}

        payment_info = payload.get("paymentInfo") or {}
        if not isinstance(payment_info, dict) or not payment_info.get("id"):
            raise InvalidInput("Payment information is required.")

        now = datetime.utcnow()
        order_document = {
            "shippingInfo": normalize_shipping_info(payload.get("shippingInfo")),
            "orderItems": normalize_order_items(payload.get("orderItems")),
            "paymentInfo": {
                "id": str(payment_info.get("id")),
                "status": str(payment_info.get("status") or ""),
            },
            "itemsPrice": round(safe_float(payload.get("itemsPrice")), 2),
            "taxPrice": round(safe_float(payload.get("taxPrice")), 2),
            "shippingPrice": round(safe_float(payload.get("shippingPrice")), 2),
            "totalPrice": round(safe_float(payload.get("totalPrice")), 2),
            "paidAt": now,
            "user": current_user["_id"],
            "orderStatus": "Processing",
            "createdAt": now,
        }
        result = db.orders.insert_one(order_document)
        order_document["_id"] = result.inserted_id

        return jsonify({"success": True, "order": serialize_order(order_document)}), 201

    @app.route("/api/v1/order/<order_id>", methods=["GET"])
    @jwt_required()
    def get_single_order(order_id: str):
        current_user = get_current_user(db)
        order_document = load_order(order_id)
        if (
            current_user.get("role") != "admin"
            and order_document.get("user") != current_user["_id"]
        ):
            raise Forbidden("You can only view your own orders.")

        owner = db.users.find_one({"_id": order_document.get("user")})
        return jsonify({"success": True, "order": serialize_order(order_document, owner)})

    @app.route("/api/v1/orders/me", methods=["GET"])
    @jwt_required()
    def my_orders():
        current_user = get_current_user(db)
        cursor = db.orders.find({"user": current_user["_id"]}).sort("createdAt", -1)
        return jsonify({"success": True, "orders": [serialize_order(order) for order in cursor]})

    @app.route("/api/v1/admin/orders", methods=["GET"])
    @jwt_required()
    def list_all_orders():
        require_admin_user(db)
        orders = list(db.orders.find().sort("createdAt", -1))
        total_amount = round(sum(safe_float(order.get("totalPrice")) for order in orders), 2)
        return jsonify(
            {
                "success": True,
                "totalAmount": total_amount,
                "orders": [serialize_order(order) for order in orders],
            }
        )

    @app.route("/api/v1/admin/order/<order_id>", methods=["PUT"])
    @jwt_required()
    def update_order(order_id: str):
        admin_user = require_admin_user(db)
        order_document = load_order(order_id)
        payload = request.get_json(silent=True) or {}

        status = str(payload.get("status") or "").strip()
        if status not in ORDER_STATUSES:
            raise InvalidInput(f"Status must be one of: {', '.join(ORDER_STATUSES)}.")
        if order_document.get("orderStatus") == "Delivered":
            raise InvalidInput("You have already delivered this order")

        updates = {"orderStatus": status}

        # Stock leaves the shelf once per order, however often it is re-shipped.
        stock_released = order_document.get("stockReleased") or (
            order_document.get("orderStatus") == "Shipped"
        )
        if status == "Shipped" and not stock_released:
            for item in order_document.get("orderItems") or []:
                update_stock(item.get("product"), int(item.get("quantity") or 0))
            updates["stockReleased"] = True

        if status == "Delivered":
            updates["deliveredAt"] = datetime.utcnow()
        db.orders.update_one({"_id": order_document["_id"]}, {"$set": updates})

        app.logger.info(
            "Order %s moved to %s by %s", order_document["_id"], status, admin_user.get("email")
        )
        return jsonify({"success": True})

    @app.route("/api/v1/admin/order/<order_id>", methods=["DELETE"])
    @jwt_required()
    def delete_order(order_id: str):
        require_admin_user(db)
        order_document = load_order(order_id)
        db.orders.delete_one({"_id": order_document["_id"]})
        return jsonify({"success": True})
