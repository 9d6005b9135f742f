import atexit
import math
import os
import re
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import stripe
from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
)
from flask_pymongo import PyMongo
from pymongo.errors import DuplicateKeyError, PyMongoError
from redis import Redis
from rq import Queue
from werkzeug.middleware.proxy_fix import ProxyFix

from .notifications import (
    build_customer_order_email,
    build_seller_order_email,
    enqueue_email,
)

load_dotenv()

ALLOWED_USER_ROLES = {"customer", "seller", "admin"}
PROTECTED_USER_FIELDS = {"_id", "email", "role", "status", "created_at"}
PLANT_UPDATE_FIELDS = ("name", "category", "description", "price", "quantity", "image")
ROLE_DENIED_MESSAGES = {
    "admin": "Admin only actions!",
    "seller": "Seller only actions!",
}
DELIVERED_STATUS = "Delivered"
REQUESTED_STATUS = "Requested"
VERIFIED_STATUS = "Verified"


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def serialize_document(value):
    """Convert BSON values into something ``jsonify`` can emit."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return (
            value.isoformat()
            if value.tzinfo is not None
            else f"{value.isoformat()}Z"
        )
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_document(item) for item in value]
    return value


def create_app(
    config_overrides: Optional[Dict] = None, *, database=None, email_queue=None
) -> Flask:
    """Create and configure the plantNet Flask application.

    ``database`` lets callers hand in an already connected store (tests pass a
    mongomock database); otherwise the app owns a Flask-PyMongo client built
    from ``MONGO_URI``. ``email_queue`` replaces the rq queue built from
    ``REDIS_URL``.
    """
    app = Flask(__name__)

    # Honor proxy headers so secure cookies survive TLS termination.
    trusted_proxy_hops = max(0, env_int("TRUSTED_PROXY_HOPS", 1))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    environment = (
        os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development"
    ).strip().lower()
    is_production = environment == "production"

    app.config["JWT_SECRET_KEY"] = os.getenv(
        "ACCESS_TOKEN_SECRET", "change-me-in-production"
    )
    app.config["JWT_TOKEN_LOCATION"] = ["cookies"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = "token"
    app.config["JWT_COOKIE_CSRF_PROTECT"] = False
    app.config["JWT_COOKIE_SECURE"] = is_production
    app.config["JWT_COOKIE_SAMESITE"] = "None" if is_production else "Strict"
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=365)
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/plantnet"
    )
    app.config["STRIPE_SECRET_KEY"] = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    app.config["PAYMENT_CURRENCY"] = os.getenv("PAYMENT_CURRENCY", "usd").lower()
    app.config["MIN_PAYMENT_AMOUNT"] = 50
    app.config["PLANT_LIST_LIMIT"] = 20
    app.config["REDIS_URL"] = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    app.config["EMAIL_QUEUE_NAME"] = os.getenv("EMAIL_QUEUE_NAME", "emails")
    app.config["ORDER_EMAIL_SENDER"] = (
        os.getenv("ORDER_EMAIL_SENDER") or "plantNet <orders@plantnet.shop>"
    )
    app.config["EMAIL_QUEUE_SIZE"] = env_int("EMAIL_QUEUE_SIZE", 100)
    app.config["EMAIL_MAX_RETRIES"] = env_int("EMAIL_MAX_RETRIES", 2)
    app.config["EMAIL_RETRY_INTERVAL_SECONDS"] = env_int(
        "EMAIL_RETRY_INTERVAL_SECONDS", 2
    )
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:5174",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins)

    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def handle_missing_token(reason):
        return jsonify({"message": "unauthorized access"}), 401

    @jwt.invalid_token_loader
    def handle_invalid_token(reason):
        app.logger.info("Rejected session token: %s", reason)
        return jsonify({"message": "unauthorized access"}), 401

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return jsonify({"message": "unauthorized access"}), 401

    owned_client = None
    if database is None:
        mongo = PyMongo(app)
        database = mongo.db
        owned_client = mongo.cx
    db = database
    app.extensions["plantnet_db"] = db

    try:
        db.users.create_index("email", unique=True)
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure unique index on user emails: %s", exc)

    try:
        db.command("ping")
    except Exception as exc:
        app.logger.warning("Document store did not answer ping at startup: %s", exc)

    if owned_client is not None:
        atexit.register(owned_client.close)

    if email_queue is None:
        email_queue = Queue(
            app.config["EMAIL_QUEUE_NAME"],
            connection=Redis.from_url(app.config["REDIS_URL"]),
        )
    app.extensions["plantnet_email_queue"] = email_queue

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    # --- Request logging ---

    @app.before_request
    def start_request_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get("request_started")
        elapsed_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        app.logger.info(
            "%s %s %s %.1f ms",
            request.method,
            request.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.errorhandler(PyMongoError)
    def handle_store_error(exc):
        app.logger.error("Document store error on %s %s: %s", request.method, request.path, exc)
        return jsonify({"message": "Internal server error"}), 500

    # --- Helpers ---

    def normalize_email(value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = normalize_email(value)
        return bool(normalized and email_regex.match(normalized))

    def current_email() -> str:
        return normalize_email(get_jwt_identity())

    def require_role(role: str):
        caller_email = current_email()
        current_user = db.users.find_one({"email": caller_email}) if caller_email else None

        if current_user and current_user.get("role") == role:
            return current_user, None

        return (
            None,
            (
                jsonify({"message": ROLE_DENIED_MESSAGES.get(role, "forbidden access")}),
                403,
            ),
        )

    def safe_float(value, default=0.0):
        if isinstance(value, bool):
            return default
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return default
        if math.isfinite(numeric):
            return numeric
        return default

    def safe_positive_int(value, default=0):
        try:
            numeric = int(float(value))
        except (TypeError, ValueError):
            return default
        return max(default, numeric)

    def parse_whole_number(value) -> Optional[int]:
        numeric = safe_float(value, None)
        if numeric is None or numeric < 0 or not numeric.is_integer():
            return None
        return int(numeric)

    def parse_object_id(value) -> Optional[ObjectId]:
        if isinstance(value, ObjectId):
            return value
        if not isinstance(value, str):
            return None
        try:
            return ObjectId(value)
        except (InvalidId, TypeError):
            return None

    def validate_plant_fields(fields: Dict) -> Optional[str]:
        if "price" in fields:
            price_value = safe_float(fields.get("price"), None)
            if price_value is None or price_value <= 0:
                return "Price must be greater than zero."
            fields["price"] = round(price_value, 2)
        if "quantity" in fields:
            quantity_value = parse_whole_number(fields.get("quantity"))
            if quantity_value is None:
                return "Quantity must be a whole number of zero or more."
            fields["quantity"] = quantity_value
        return None

    def fetch_plant(plant_id):
        object_id = parse_object_id(plant_id)
        if object_id is None:
            return None, (jsonify({"message": "Invalid plant id format"}), 400)

        plant_document = db.plants.find_one({"_id": object_id})
        if not plant_document:
            return None, (jsonify({"message": "Plant not found"}), 404)

        return plant_document, None

    def plant_owner_email(plant_document) -> str:
        seller = plant_document.get("seller") if plant_document else None
        if not isinstance(seller, dict):
            return ""
        return normalize_email(seller.get("email"))

    def order_placed_at(order_document) -> Optional[datetime]:
        created_at = order_document.get("created_at")
        if isinstance(created_at, datetime):
            return created_at
        order_id = order_document.get("_id")
        if isinstance(order_id, ObjectId):
            return order_id.generation_time
        return None

    def build_order_chart() -> List[Dict]:
        buckets: Dict[str, Dict] = {}
        projection = {"created_at": 1, "price": 1, "quantity": 1}
        for document in db.orders.find({}, projection):
            placed_at = order_placed_at(document)
            if placed_at is None:
                continue
            day = placed_at.strftime("%Y-%m-%d")
            bucket = buckets.setdefault(
                day, {"date": day, "quantity": 0, "price": 0.0, "order": 0}
            )
            bucket["quantity"] += safe_positive_int(document.get("quantity"), 0)
            bucket["price"] += safe_float(document.get("price"), 0.0)
            bucket["order"] += 1

        chart = [buckets[day] for day in sorted(buckets)]
        for bucket in chart:
            bucket["price"] = round(bucket["price"], 2)
        return chart

    def joined_orders(match: Dict, plant_fields: Dict[str, str]) -> List[Dict]:
        """Orders matching ``match`` with the listed plant fields copied in.

        ``plantId`` is stored as the client sent it, usually a hex string, so
        it is converted here before the plant lookup. Orders whose plant is
        gone or whose id does not parse are left out.
        """
        orders = list(db.orders.find(match))
        plant_ids = {
            parse_object_id(order.get("plantId")) for order in orders
        } - {None}

        plants_by_id = {}
        if plant_ids:
            projection = {source: 1 for source in plant_fields.values()}
            for plant in db.plants.find({"_id": {"$in": list(plant_ids)}}, projection):
                plants_by_id[plant["_id"]] = plant

        joined = []
        for order in orders:
            plant = plants_by_id.get(parse_object_id(order.get("plantId")))
            if plant is None:
                continue
            for field, source in plant_fields.items():
                order[field] = plant.get(source)
            joined.append(serialize_document(order))
        return joined

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "Hello from plantNet Server.."

    @app.route("/health")
    def health():
        try:
            db.command("ping")
        except Exception as exc:
            app.logger.warning("Health check ping failed: %s", exc)
            return jsonify({"status": "degraded"}), 503
        return jsonify({"status": "ok"}), 200

    # Session

    @app.route("/jwt", methods=["POST"])
    def issue_session_cookie():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        email = normalize_email(payload.get("email"))
        if not email:
            return jsonify({"message": "An email is required to sign in."}), 400

        token = create_access_token(identity=email)
        response = jsonify({"success": True})
        set_access_cookies(response, token)
        return response

    @app.route("/logout", methods=["GET"])
    def logout():
        response = jsonify({"success": True})
        unset_jwt_cookies(response)
        return response

    # Users

    @app.route("/users/<email>", methods=["POST"])
    def register_user(email: str):
        normalized_email = normalize_email(email)
        if not is_valid_email(normalized_email):
            return jsonify({"message": "Please provide a valid email address."}), 400

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        user_document = {
            key: value
            for key, value in payload.items()
            if key not in PROTECTED_USER_FIELDS
        }
        user_document["role"] = "customer"
        user_document["created_at"] = datetime.utcnow()

        try:
            result = db.users.update_one(
                {"email": normalized_email},
                {"$setOnInsert": user_document},
                upsert=True,
            )
        except DuplicateKeyError:
            return jsonify({"message": "user already exists"}), 200

        if result.upserted_id is None:
            return jsonify({"message": "user already exists"}), 200

        app.logger.info("Registered new customer %s", normalized_email)
        return (
            jsonify(
                {
                    "message": "User registered.",
                    "insertedId": str(result.upserted_id),
                }
            ),
            201,
        )

    @app.route("/users", methods=["GET"])
    @jwt_required()
    def list_users():
        _, admin_error = require_role("admin")
        if admin_error:
            return admin_error

        users = [serialize_document(user) for user in db.users.find({})]
        return jsonify({"users": users})

    @app.route("/users/role/<email>", methods=["GET"])
    @jwt_required()
    def get_user_role(email: str):
        user = db.users.find_one({"email": normalize_email(email)}, {"role": 1})
        return jsonify({"role": user.get("role") if user else None})

    @app.route("/users/<email>", methods=["PATCH"])
    @jwt_required()
    def request_seller_status(email: str):
        normalized_email = normalize_email(email)
        result = db.users.update_one(
            {"email": normalized_email, "status": {"$ne": REQUESTED_STATUS}},
            {"$set": {"status": REQUESTED_STATUS}},
        )
        if result.matched_count == 0:
            if not db.users.find_one({"email": normalized_email}, {"_id": 1}):
                return jsonify({"message": "User not found."}), 404
            return jsonify({"message": "Already Requested"}), 400

        app.logger.info("%s requested seller status", normalized_email)
        return jsonify(
            {
                "message": "Seller request submitted.",
                "modified_count": result.modified_count,
            }
        )

    @app.route("/user/role/<email>", methods=["PATCH"])
    @jwt_required()
    def update_user_role(email: str):
        admin_user, admin_error = require_role("admin")
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        desired_role = str(payload.get("role") or "").strip().lower()
        if desired_role not in ALLOWED_USER_ROLES:
            return (
                jsonify({"message": "Role must be 'customer', 'seller', or 'admin'."}),
                400,
            )

        target_email = normalize_email(email)
        result = db.users.update_one(
            {"email": target_email},
            {"$set": {"role": desired_role, "status": VERIFIED_STATUS}},
        )
        if result.matched_count == 0:
            return jsonify({"message": "User not found."}), 404

        app.logger.info(
            "%s set role of %s to %s", admin_user.get("email"), target_email, desired_role
        )
        return jsonify(
            {
                "message": f"Role updated to {desired_role}.",
                "modified_count": result.modified_count,
            }
        )

    # Plants

    @app.route("/plants", methods=["POST"])
    @jwt_required()
    def create_plant():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not payload:
            return jsonify({"message": "Plant details are required."}), 400

        plant_document = {key: value for key, value in payload.items() if key != "_id"}
        validation_error = validate_plant_fields(plant_document)
        if validation_error:
            return jsonify({"message": validation_error}), 400

        seller_payload = plant_document.get("seller")
        seller = dict(seller_payload) if isinstance(seller_payload, dict) else {}
        seller["email"] = normalize_email(current_user.get("email"))
        if not seller.get("name"):
            seller["name"] = current_user.get("name", "") or ""
        plant_document["seller"] = seller

        result = db.plants.insert_one(plant_document)
        app.logger.info(
            "%s listed plant %s", seller["email"], result.inserted_id
        )
        return (
            jsonify(
                {
                    "message": "Plant added successfully.",
                    "insertedId": str(result.inserted_id),
                }
            ),
            201,
        )

    @app.route("/plants", methods=["GET"])
    def list_plants():
        cursor = db.plants.find().limit(app.config["PLANT_LIST_LIMIT"])
        return jsonify({"plants": [serialize_document(plant) for plant in cursor]})

    @app.route("/plants/seller", methods=["GET"])
    @jwt_required()
    def list_seller_plants():
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        cursor = db.plants.find({"seller.email": current_user.get("email")})
        return jsonify({"plants": [serialize_document(plant) for plant in cursor]})

    @app.route("/plants/<plant_id>", methods=["GET"])
    def get_plant(plant_id: str):
        plant_document, load_error = fetch_plant(plant_id)
        if load_error:
            return load_error
        return jsonify({"plant": serialize_document(plant_document)})

    @app.route("/plants/<plant_id>", methods=["PATCH"])
    @jwt_required()
    def update_plant(plant_id: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        plant_document, load_error = fetch_plant(plant_id)
        if load_error:
            return load_error

        caller_email = normalize_email(current_user.get("email"))
        if plant_owner_email(plant_document) != caller_email:
            return (
                jsonify({"message": "You do not have permission to update this plant."}),
                403,
            )

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        updates = {field: payload[field] for field in PLANT_UPDATE_FIELDS if field in payload}
        if not updates:
            return (
                jsonify(
                    {
                        "message": "Provide at least one of: "
                        + ", ".join(PLANT_UPDATE_FIELDS)
                        + "."
                    }
                ),
                400,
            )

        validation_error = validate_plant_fields(updates)
        if validation_error:
            return jsonify({"message": validation_error}), 400

        changes = {
            field: value
            for field, value in updates.items()
            if plant_document.get(field) != value
        }
        if not changes:
            return jsonify({"message": "No changes were made.", "modified_count": 0})

        changes["updatedAt"] = datetime.utcnow()
        result = db.plants.update_one(
            {"_id": plant_document["_id"], "seller.email": plant_document["seller"]["email"]},
            {"$set": changes},
        )
        if result.matched_count == 0:
            return jsonify({"message": "Plant not found"}), 404

        return jsonify(
            {
                "message": "Plant updated successfully.",
                "modified_count": result.modified_count,
            }
        )

    @app.route("/plants/<plant_id>", methods=["DELETE"])
    @jwt_required()
    def delete_plant(plant_id: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        plant_document, load_error = fetch_plant(plant_id)
        if load_error:
            return load_error

        caller_email = normalize_email(current_user.get("email"))
        if plant_owner_email(plant_document) != caller_email:
            return (
                jsonify({"message": "You do not have permission to delete this plant."}),
                403,
            )

        result = db.plants.delete_one(
            {"_id": plant_document["_id"], "seller.email": plant_document["seller"]["email"]}
        )
        if result.deleted_count == 0:
            return jsonify({"message": "Plant not found"}), 404

        app.logger.info("%s removed plant %s", caller_email, plant_id)
        return jsonify({"message": "Plant removed successfully.", "deleted_count": 1})

    @app.route("/plants/quantity/<plant_id>", methods=["PATCH"])
    @jwt_required()
    def adjust_plant_quantity(plant_id: str):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        amount = parse_whole_number(payload.get("updatedQuantity"))
        if amount is None:
            return (
                jsonify({"message": "updatedQuantity must be a whole number of zero or more."}),
                400,
            )

        object_id = parse_object_id(plant_id)
        if object_id is None:
            return jsonify({"message": "Invalid plant id format"}), 400

        delta = amount if payload.get("status") == "increase" else -amount
        result = db.plants.update_one({"_id": object_id}, {"$inc": {"quantity": delta}})
        if result.matched_count == 0:
            return jsonify({"message": "Plant not found"}), 404

        return jsonify(
            {"message": "Stock updated.", "modified_count": result.modified_count}
        )

    # Orders

    @app.route("/order", methods=["POST"])
    @jwt_required()
    def create_order():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not payload:
            return jsonify({"message": "Order details are required."}), 400

        order_document = {key: value for key, value in payload.items() if key != "_id"}

        customer = order_document.get("customer")
        if isinstance(customer, dict) and customer.get("email"):
            order_document["customer"] = {
                **customer,
                "email": normalize_email(customer.get("email")),
            }
        if isinstance(order_document.get("seller"), str):
            order_document["seller"] = normalize_email(order_document["seller"])

        order_document.setdefault("status", "Pending")
        order_document["created_at"] = datetime.utcnow()

        result = db.orders.insert_one(order_document)
        order_document["_id"] = result.inserted_id

        sender = app.config["ORDER_EMAIL_SENDER"]
        queue_options = {
            "max_retries": app.config["EMAIL_MAX_RETRIES"],
            "retry_interval": app.config["EMAIL_RETRY_INTERVAL_SECONDS"],
            "max_backlog": app.config["EMAIL_QUEUE_SIZE"],
            "log": app.logger,
        }
        enqueue_email(
            email_queue,
            build_customer_order_email(order_document, sender),
            description=f"customer email for order {result.inserted_id}",
            **queue_options,
        )
        enqueue_email(
            email_queue,
            build_seller_order_email(order_document, sender),
            description=f"seller email for order {result.inserted_id}",
            **queue_options,
        )

        return (
            jsonify(
                {
                    "message": "Order placed successfully.",
                    "insertedId": str(result.inserted_id),
                }
            ),
            201,
        )

    @app.route("/order", methods=["GET"])
    @jwt_required()
    def list_orders():
        orders = [serialize_document(order) for order in db.orders.find()]
        return jsonify({"orders": orders})

    @app.route("/customer-orders/<email>", methods=["GET"])
    @jwt_required()
    def list_customer_orders(email: str):
        orders = joined_orders(
            {"customer.email": normalize_email(email)},
            {
                "plantName": "name",
                "plantImage": "image",
                "plantQuantity": "quantity",
            },
        )
        return jsonify({"orders": orders})

    @app.route("/seller-orders/<email>", methods=["GET"])
    @jwt_required()
    def list_seller_orders(email: str):
        current_user, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        seller_email = normalize_email(email)
        if seller_email != normalize_email(current_user.get("email")):
            return jsonify({"message": "You can only view your own orders."}), 403

        orders = joined_orders({"seller": seller_email}, {"plantName": "name"})
        return jsonify({"orders": orders})

    @app.route("/order/<order_id>", methods=["PATCH"])
    @jwt_required()
    def update_order_status(order_id: str):
        _, permission_error = require_role("seller")
        if permission_error:
            return permission_error

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        new_status = str(payload.get("status") or "").strip()
        if not new_status:
            return jsonify({"message": "A status value is required."}), 400

        object_id = parse_object_id(order_id)
        if object_id is None:
            return jsonify({"message": "Invalid order id format"}), 400

        result = db.orders.update_one({"_id": object_id}, {"$set": {"status": new_status}})
        if result.matched_count == 0:
            return jsonify({"message": "Order not found"}), 404

        return jsonify(
            {
                "message": f"Order marked as {new_status}.",
                "modified_count": result.modified_count,
            }
        )

    @app.route("/order/<order_id>", methods=["DELETE"])
    @jwt_required()
    def cancel_order(order_id: str):
        object_id = parse_object_id(order_id)
        if object_id is None:
            return jsonify({"message": "Invalid order id format"}), 400

        result = db.orders.delete_one(
            {"_id": object_id, "status": {"$ne": DELIVERED_STATUS}}
        )
        if result.deleted_count == 0:
            if not db.orders.find_one({"_id": object_id}, {"_id": 1}):
                return jsonify({"message": "Order not found"}), 404
            return jsonify({"message": "Delivered order can't be cancelled"}), 409

        app.logger.info("%s cancelled order %s", current_email(), order_id)
        return jsonify({"message": "Order cancelled.", "deleted_count": 1})

    # Admin

    @app.route("/admin-stat", methods=["GET"])
    @jwt_required()
    def admin_stats():
        _, admin_error = require_role("admin")
        if admin_error:
            return admin_error

        totals_pipeline = [
            {
                "$group": {
                    "_id": None,
                    "totalRevenue": {"$sum": "$price"},
                    "totalOrders": {"$sum": 1},
                }
            },
            {"$project": {"_id": 0}},
        ]
        totals = next(iter(db.orders.aggregate(totals_pipeline)), {})

        return jsonify(
            {
                "totalUsers": db.users.estimated_document_count(),
                "totalPlants": db.plants.estimated_document_count(),
                "totalRevenue": totals.get("totalRevenue", 0),
                "totalOrders": totals.get("totalOrders", 0),
                "chartData": build_order_chart(),
            }
        )

    # Payments

    @app.route("/create-payment-intent", methods=["POST"])
    @jwt_required()
    def create_payment_intent():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        quantity = parse_whole_number(payload.get("quantity"))
        if not quantity:
            return jsonify({"message": "Quantity must be a whole number above zero."}), 400

        plant_document, load_error = fetch_plant(payload.get("plantId"))
        if load_error:
            return load_error

        price_value = safe_float(plant_document.get("price"), 0.0)
        amount = int(round(price_value * quantity * 100))
        minimum_amount = app.config["MIN_PAYMENT_AMOUNT"]
        if amount < minimum_amount:
            return (
                jsonify(
                    {
                        "message": f"Amount must be at least {minimum_amount} cents.",
                        "amount": amount,
                    }
                ),
                400,
            )

        secret_key = app.config["STRIPE_SECRET_KEY"]
        if not secret_key:
            return (
                jsonify({"message": "Payment configuration is incomplete. Please contact support."}),
                500,
            )

        stripe.api_key = secret_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=app.config["PAYMENT_CURRENCY"],
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            app.logger.error("Payment intent creation failed: %s", exc)
            return jsonify({"message": "Failed to create payment intent."}), 502

        client_secret = getattr(intent, "client_secret", None)
        if not client_secret:
            app.logger.error("Payment intent response had no client secret")
            return jsonify({"message": "Failed to create payment intent."}), 502

        return jsonify({"clientSecret": client_secret})

    return app
