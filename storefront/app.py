import os
from typing import Optional

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .accounts import register_account_routes
from .catalog import register_catalog_routes
from .config import Settings
from .errors import ApiError, Unauthorized
from .images import ImageStore, LocalImageStore, build_image_store
from .mailer import Mailer
from .orders import register_order_routes
from .payments import SumUpGateway, register_payment_routes
from .tokens import TOKEN_COOKIE_NAME, TokenIssuer


def _error_response(message: str, status_code: int):
    return jsonify({"success": False, "message": message}), status_code


def create_app(
    settings: Optional[Settings] = None,
    *,
    db=None,
    image_store: Optional[ImageStore] = None,
    mailer: Optional[Mailer] = None,
    payment_gateway: Optional[SumUpGateway] = None,
) -> Flask:
    """Create and configure the Flask application.

    Settings are read from the environment when not supplied; a missing or
    malformed cookie expiry raises ``ConfigurationError`` here, before any
    request can be served. ``db``, ``image_store``, ``mailer`` and
    ``payment_gateway`` may be injected, otherwise they are built from
    ``settings``.
    """
    if settings is None:
        settings = Settings.from_env()

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    # --- Configuration ---
    app.config["MONGO_URI"] = settings.mongo_uri
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_mb * 1024 * 1024
    app.config["JWT_SECRET_KEY"] = settings.jwt_secret_key
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = settings.jwt_expires
    app.config["JWT_TOKEN_LOCATION"] = ["cookies", "headers"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = TOKEN_COOKIE_NAME
    app.config["JWT_COOKIE_SECURE"] = settings.production
    app.config["JWT_COOKIE_SAMESITE"] = "Strict"
    app.config["JWT_COOKIE_CSRF_PROTECT"] = False

    upload_folder = settings.upload_folder or os.path.join(app.root_path, "uploads")

    # --- Initialize extensions ---
    CORS(app, supports_credentials=True, origins=settings.cors_origins or "*")
    jwt = JWTManager(app)

    if db is None:
        mongo = PyMongo(app)
        db = mongo.db

    try:
        db.users.create_index("email", unique=True)
        db.products.create_index("name")
        db.orders.create_index([("user", 1), ("createdAt", -1)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)

    if image_store is None:
        image_store = build_image_store(settings, upload_folder)
    if mailer is None:
        mailer = Mailer(settings.resend_api_key, settings.mail_sender)
    if payment_gateway is None:
        payment_gateway = SumUpGateway(
            settings.sumup_client_id,
            settings.sumup_client_secret,
            settings.sumup_merchant_email,
            settings.payment_currency,
        )
    if not payment_gateway.configured:
        app.logger.warning("SumUp credentials are missing; payment routes will fail.")

    token_issuer = TokenIssuer(settings)

    # --- Error handling ---
    @jwt.unauthorized_loader
    def missing_token(reason):
        return _error_response(Unauthorized.default_message, 401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _error_response("Json Web Token is invalid, Try again", 401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _error_response("Json Web Token is Expired, Try again", 401)

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        if error.status_code >= 500:
            app.logger.error("%s: %s", type(error).__name__, error.message)
        return _error_response(error.message, error.status_code)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(error: DuplicateKeyError):
        return _error_response("Duplicate value entered for a unique field.", 400)

    @app.errorhandler(PyMongoError)
    def handle_database_error(error: PyMongoError):
        app.logger.error("Database error: %s", error)
        return _error_response("Internal Server Error", 500)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return _error_response(error.description or error.name, error.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        return _error_response("Internal Server Error", 500)

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "Welcome to the Ecommerce site."

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    if isinstance(image_store, LocalImageStore):

        @app.route("/uploads/<path:filename>")
        def serve_uploaded_file(filename: str):
            return send_from_directory(image_store.upload_folder, filename)

    register_catalog_routes(app, db, image_store, settings)
    register_account_routes(app, db, token_issuer, mailer)
    register_order_routes(app, db)
    register_payment_routes(app, db, payment_gateway)

    return app
