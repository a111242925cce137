import logging
import os
import uuid
from functools import wraps

from flask import Flask, g, jsonify, request
from flask_cors import CORS

from .auth import resolve_user
from .config import Config
from .domain import CreateCheckout, UpdateReturned, utcnow
from .errors import AppError, BadRequest, Unauthenticated, Unauthorized
from .registry import AppRegistry

logger = logging.getLogger(__name__)


def create_app(config=Config, registry=None):
    app = Flask(__name__)
    app.config.from_object(config)
    CORS(app)

    if registry is None:
        registry = AppRegistry.from_config(config)
    if registry.db is not None:
        registry.db.create_schema()

    register_error_handlers(app)
    register_routes(app, registry)
    return app


# ----------------- helpers: errors, auth, ids -----------------

def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(error):
        if error.status_code >= 500:
            logger.error("%s on %s: %s", type(error).__name__, request.path, error.message)
        return jsonify({"error": error.message}), error.status_code


def require_user(registry):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            scheme, _, token = header.partition(" ")
            token = token.strip()
            if scheme.lower() != "bearer" or not token:
                raise Unauthorized("Missing bearer access token")

            user = resolve_user(registry.auth_repository, registry.user_repository, token)
            if user is None:
                raise Unauthenticated("Invalid or expired access token")
            g.user = user
            g.access_token = token
            return func(*args, **kwargs)

        return wrapper

    return decorator


def parse_id(value, kind):
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise BadRequest(f"Invalid {kind} id: {value}") from None


def checkouts_response(checkouts):
    return jsonify({"items": [c.to_dict() for c in checkouts]})


def register_routes(app, registry):
    authorized = require_user(registry)

    # ----------------- health -----------------

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.get("/api/health/db")
    def health_db():
        if registry.health_check_repository.check_db():
            return jsonify({"status": "ok"})
        return jsonify({"status": "unavailable"}), 500

    # ----------------- checkout endpoints -----------------

    @app.post("/api/v1/books/<book_id>/checkouts")
    @authorized
    def checkout_book(book_id):
        event = CreateCheckout(
            book_id=parse_id(book_id, "book"),
            checked_out_by=g.user.user_id,
            checked_out_at=utcnow(),
        )
        registry.checkout_repository.create(event)
        return "", 201

    @app.put("/api/v1/books/<book_id>/checkouts/<checkout_id>/returned")
    @authorized
    def return_book(book_id, checkout_id):
        event = UpdateReturned(
            checkout_id=parse_id(checkout_id, "checkout"),
            book_id=parse_id(book_id, "book"),
            returned_by=g.user.user_id,
            returned_at=utcnow(),
        )
        registry.checkout_repository.update_returned(event)
        return "", 200

    @app.get("/api/v1/books/checkouts")
    @authorized
    def show_checked_out_list():
        return checkouts_response(registry.checkout_repository.find_unreturned_all())

    @app.get("/api/v1/books/<book_id>/checkout-history")
    @authorized
    def checkout_history(book_id):
        book_id = parse_id(book_id, "book")
        return checkouts_response(
            registry.checkout_repository.find_history_by_book_id(book_id)
        )

    @app.get("/api/v1/users/me/checkouts")
    @authorized
    def my_checkouts():
        return checkouts_response(
            registry.checkout_repository.find_unreturned_by_user_id(g.user.user_id)
        )

    # ----------------- auth -----------------

    @app.post("/api/v1/auth/logout")
    @authorized
    def logout():
        registry.auth_repository.delete_token(g.access_token)
        logger.info("User %s logged out", g.user.user_id)
        return "", 204


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", str(Config.PORT)))
    create_app().run(host="0.0.0.0", port=port, debug=True)
