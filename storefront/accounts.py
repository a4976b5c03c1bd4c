import secrets
from datetime import datetime, timedelta

import bcrypt
from flask import jsonify, request
from flask_jwt_extended import jwt_required

from .auth import get_current_user, normalize_role, require_admin_user
from .errors import InvalidInput, NotFound, Unauthorized, UpstreamFailure
from .helpers import is_valid_email, normalize_email, parse_object_id
from .serializers import serialize_user

MIN_PASSWORD_LENGTH = 8
MIN_NAME_LENGTH = 4
MAX_NAME_LENGTH = 30
reset_code_length = 6
reset_code_expiration_minutes = 15
max_failed_reset_attempts = 5


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), hashed)


def validate_name(value) -> str:
    name = str(value or "").strip()
    if len(name) < MIN_NAME_LENGTH or len(name) > MAX_NAME_LENGTH:
        raise InvalidInput(
            f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters."
        )
    return name


def validate_email(value) -> str:
    email = normalize_email(value)
    if not is_valid_email(email):
        raise InvalidInput("Please enter a valid email address.")
    return email


def validate_new_password(password: str, confirm_password=None) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if confirm_password is not None and password != confirm_password:
        raise InvalidInput("Password does not match.")
    return password


def generate_reset_code(length: int = reset_code_length) -> str:
    upper_bound = 10**length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


def register_account_routes(app, db, token_issuer, mailer):
    def clear_password_reset_state(user_id):
        db.users.update_one(
            {"_id": user_id},
            {
                "$unset": {
                    "resetPasswordOtp": "",
                    "resetPasswordExpire": "",
                    "resetPasswordAttempts": "",
                }
            },
        )

    def load_user(raw_user_id):
        user_id = parse_object_id(raw_user_id, "Invalid User ID")
        user = db.users.find_one({"_id": user_id})
        if not user:
            raise NotFound(f"User does not exist with Id: {raw_user_id}")
        return user

    @app.route("/api/v1/register", methods=["POST"])
    def register():
        payload = request.get_json(silent=True) or {}
        name = validate_name(payload.get("name"))
        email = validate_email(payload.get("email"))
        password = validate_new_password(str(payload.get("password", "")))

        if db.users.find_one({"email": email}):
            raise InvalidInput("An account with this email already exists.")

        insert_result = db.users.insert_one(
            {
                "name": name,
                "email": email,
                "password": hash_password(password),
                "role": "user",
                "createdAt": datetime.utcnow(),
            }
        )
        user = db.users.find_one({"_id": insert_result.inserted_id})
        app.logger.info("Registered new account %s", email)
        return token_issuer.send_token(user, 201)

    @app.route("/api/v1/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            raise InvalidInput("Please Enter Email & Password")

        user = db.users.find_one({"email": email})
        if not user or not check_password(password, user.get("password")):
            raise Unauthorized("Invalid email or password")

        return token_issuer.send_token(user, 200)

    @app.route("/api/v1/logout", methods=["GET"])
    def logout():
        response = jsonify({"success": True, "message": "Logged Out"})
        return token_issuer.clear(response)

    @app.route("/api/v1/password/forgot", methods=["POST"])
    def forgot_password():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        generic_message = {
            "success": True,
            "message": "If this email exists, a reset code has been sent.",
        }

        if not is_valid_email(email):
            return jsonify(generic_message)

        user = db.users.find_one({"email": email})
        if not user:
            return jsonify(generic_message)

        code = generate_reset_code()
        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {
                    "resetPasswordOtp": hash_password(code),
                    "resetPasswordExpire": datetime.utcnow()
                    + timedelta(minutes=reset_code_expiration_minutes),
                    "resetPasswordAttempts": 0,
                }
            },
        )

        sent, error_details = mailer.send_password_reset_code(
            email, code, reset_code_expiration_minutes
        )
        if not sent:
            clear_password_reset_state(user["_id"])
            app.logger.error(
                "Password reset email delivery failed for %s: %s",
                email,
                error_details or "Unknown delivery error",
            )
            raise UpstreamFailure("We could not send the reset email. Please try again.")

        return jsonify(generic_message)

    @app.route("/api/v1/password/reset", methods=["PUT"])
    def reset_password():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        code = str(payload.get("code", "")).strip()
        password = str(payload.get("password", ""))
        confirm_password = str(payload.get("confirmPassword", ""))

        if not email or not code or not password:
            raise InvalidInput("Email, reset code, and new password are required.")

        invalid_code = InvalidInput("Reset code is invalid or has expired.")
        user = db.users.find_one({"email": email})
        if not user or not user.get("resetPasswordOtp"):
            raise invalid_code

        expires_at = user.get("resetPasswordExpire")
        if not isinstance(expires_at, datetime) or expires_at < datetime.utcnow():
            clear_password_reset_state(user["_id"])
            raise invalid_code

        if not check_password(code, user.get("resetPasswordOtp")):
            failed_attempts = int(user.get("resetPasswordAttempts") or 0) + 1
            if failed_attempts >= max_failed_reset_attempts:
                clear_password_reset_state(user["_id"])
                app.logger.warning("Reset code for %s invalidated after repeated failures", email)
            else:
                db.users.update_one(
                    {"_id": user["_id"]},
                    {"$set": {"resetPasswordAttempts": failed_attempts}},
                )
            raise invalid_code

        validate_new_password(password, confirm_password)
        db.users.update_one(
            {"_id": user["_id"]},
            {
                "$set": {"password": hash_password(password)},
                "$unset": {
                    "resetPasswordOtp": "",
                    "resetPasswordExpire": "",
                    "resetPasswordAttempts": "",
                },
            },
        )
        user = db.users.find_one({"_id": user["_id"]})
        return token_issuer.send_token(user, 200)

    @app.route("/api/v1/me", methods=["GET"])
    @jwt_required()
    def get_user_details():
        user = get_current_user(db)
        return jsonify({"success": True, "user": serialize_user(user)})

    @app.route("/api/v1/password/update", methods=["PUT"])
    @jwt_required()
    def update_password():
        user = get_current_user(db)
        payload = request.get_json(silent=True) or {}

        if not check_password(str(payload.get("oldPassword", "")), user.get("password")):
            raise InvalidInput("Old password is incorrect")

        new_password = validate_new_password(
            str(payload.get("newPassword", "")), str(payload.get("confirmPassword", ""))
        )
        db.users.update_one(
            {"_id": user["_id"]}, {"$set": {"password": hash_password(new_password)}}
        )
        return token_issuer.send_token(user, 200)

    @app.route("/api/v1/me/update", methods=["PUT"])
    @jwt_required()
    def update_profile():
        user = get_current_user(db)
        payload = request.get_json(silent=True) or {}

        updates = {}
        if "name" in payload:
            updates["name"] = validate_name(payload.get("name"))
        if "email" in payload:
            updates["email"] = validate_email(payload.get("email"))
        if not updates:
            raise InvalidInput("No fields to update.")

        db.users.update_one({"_id": user["_id"]}, {"$set": updates})
        return jsonify({"success": True})

    # Admin
    @app.route("/api/v1/admin/users", methods=["GET"])
    @jwt_required()
    def list_users():
        require_admin_user(db)
        users = [serialize_user(user) for user in db.users.find().sort("_id", 1)]
        return jsonify({"success": True, "users": users})

    @app.route("/api/v1/admin/user/<user_id>", methods=["GET"])
    @jwt_required()
    def get_single_user(user_id: str):
        require_admin_user(db)
        return jsonify({"success": True, "user": serialize_user(load_user(user_id))})

    @app.route("/api/v1/admin/user/<user_id>", methods=["PUT"])
    @jwt_required()
    def update_user_role(user_id: str):
        admin_user = require_admin_user(db)
        target_user = load_user(user_id)
        payload = request.get_json(silent=True) or {}

        updates = {"role": normalize_role(payload.get("role"))}
        if "name" in payload:
            updates["name"] = validate_name(payload.get("name"))
        if "email" in payload:
            updates["email"] = validate_email(payload.get("email"))

        db.users.update_one({"_id": target_user["_id"]}, {"$set": updates})
        app.logger.info(
            "%s set role of %s to %s",
            admin_user.get("email"),
            target_user.get("email"),
            updates["role"],
        )
        return jsonify({"success": True})

    @app.route("/api/v1/admin/user/<user_id>", methods=["DELETE"])
    @jwt_required()
    def delete_user(user_id: str):
        require_admin_user(db)
        target_user = load_user(user_id)
        db.users.delete_one({"_id": target_user["_id"]})
        return jsonify({"success": True, "message": "User Deleted Successfully"})
