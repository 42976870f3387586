"""
Ride United: community ride board API for electric-unicycle riders.
Riders submit routes, admins moderate them, everyone chats per ride.

Run with:  flask --app app run
"""

import logging
import os

from dotenv import load_dotenv
load_dotenv()

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

import auth
import db
import email_notify
import identity
import models
import route_stats
import storage
from errors import AuthenticationError, NotFoundError, RideError, ValidationError

log = logging.getLogger(__name__)

CHAT_POLL_SECONDS = 10


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def _env_list(name: str) -> list[str]:
    return [v.strip() for v in os.environ.get(name, "").split(",") if v.strip()]


def _env_config() -> dict:
    return {
        "SECRET_KEY":                os.environ.get("SECRET_KEY"),
        "DATABASE_URL":              os.environ.get("DATABASE_URL", ""),
        "LOG_LEVEL":                 os.environ.get("LOG_LEVEL", "INFO"),
        "API_PREFIX":                os.environ.get("API_PREFIX", "").rstrip("/"),
        "ADMIN_PASSWORD":            os.environ.get("ADMIN_PASSWORD", ""),
        "ADMIN_EMAILS":              _env_list("ADMIN_EMAILS"),
        "ADMIN_SESSION_HOURS":       float(os.environ.get("ADMIN_SESSION_HOURS", "24")),
        "SUPABASE_URL":              os.environ.get("SUPABASE_URL", ""),
        "SUPABASE_SERVICE_ROLE_KEY": os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        "IMAGE_BASE_URL":            os.environ.get("IMAGE_BASE_URL", ""),
        "CORS_ORIGINS":              _env_list("CORS_ORIGINS") or "*",
        "SITE_URL":                  os.environ.get("SITE_URL", "https://rideunited.org"),
        "EMAIL_ENABLED":             os.environ.get("EMAIL_ENABLED", "false").lower() == "true",
        "SMTP_HOST":                 os.environ.get("SMTP_HOST", "localhost"),
        "SMTP_PORT":                 int(os.environ.get("SMTP_PORT", "25")),
        "EMAIL_FROM":                os.environ.get("EMAIL_FROM", "noreply@rideunited.org"),
        "NOTIFY_EMAIL":              os.environ.get("NOTIFY_EMAIL", ""),
        "CHAT_POLL_SECONDS":         int(os.environ.get("CHAT_POLL_SECONDS", CHAT_POLL_SECONDS)),
        # Image limit is 5 MB; leave headroom for the other form fields
        "MAX_CONTENT_LENGTH":        6 * 1024 * 1024,
    }


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.update(_env_config())
    if config:
        app.config.update(config)
    if not app.config.get("SECRET_KEY"):
        raise RuntimeError("SECRET_KEY is not set")

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Trust the reverse proxy for host/scheme headers
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    CORS(app, origins=app.config["CORS_ORIGINS"],
         allow_headers=["Content-Type", "Authorization", "X-Admin-Token"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    @app.after_request
    def log_request(response):
        log.info("%s %s %s", request.method, request.path, response.status_code)
        return response

    @app.errorhandler(RideError)
    def ride_error(e):
        if e.status_code >= 500:
            log.error("%s on %s %s: %s", type(e).__name__, request.method, request.path, e.message)
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.cli.command("init-db")
    def init_db_command():
        """Create the key-value and image tables."""
        db.init_schema()
        print("Schema applied.")

    api = Blueprint("api", __name__)
    register_routes(api)
    app.register_blueprint(api, url_prefix=app.config["API_PREFIX"] or None)
    return app


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _image_upload() -> tuple:
    """(bytes, content_type, filename) for the optional image field."""
    f = request.files.get("image")
    if not f or not f.filename:
        return None, None, None
    return f.read(storage.MAX_IMAGE_BYTES + 1), f.mimetype, f.filename


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def register_routes(api: Blueprint):

    # -- Public rides ----------------------------------------------------

    @api.route("/routes", methods=["POST"])
    def submit_route():
        user = auth.current_user()
        owner_id = user["id"] if user else (request.form.get("userId") or None)
        image_bytes, image_type, image_name = _image_upload()
        route = models.submit_route(request.form.to_dict(), owner_id=owner_id,
                                    image_bytes=image_bytes, image_type=image_type,
                                    image_name=image_name)
        email_notify.notify_route_submitted(route)
        return jsonify({
            "success": True,
            "message": "Route submitted for approval",
            "routeId": route["id"],
        })

    @api.route("/routes", methods=["GET"])
    def list_routes():
        routes = route_stats.order_rides(models.list_approved_routes())
        for r in routes:
            r["tagBadges"] = route_stats.tag_badges(r.get("tags") or [])
        return jsonify({"routes": routes})

    @api.route("/routes/user/<user_id>", methods=["GET"])
    def user_routes(user_id):
        return jsonify({"routes": models.list_routes_for_owner(user_id)})

    @api.route("/routes/<route_id>", methods=["PUT"])
    def update_route(route_id):
        is_admin = auth.current_admin() is not None
        user = None if is_admin else auth.current_user()
        image_bytes, image_type, image_name = _image_upload()
        route = models.update_route(
            route_id, request.form.to_dict(),
            user_id=user["id"] if user else None, is_admin=is_admin,
            image_bytes=image_bytes, image_type=image_type, image_name=image_name,
        )
        return jsonify({
            "success": True,
            "message": "Route updated successfully",
            "route":   models.public_view(route),
        })

    # -- Accounts --------------------------------------------------------

    @api.route("/signup", methods=["POST"])
    def signup():
        body = _json_body()
        email = (body.get("email") or "").strip()
        password = body.get("password") or ""
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = identity.create_user(email, password, (body.get("name") or "").strip() or None)
        return jsonify({"success": True, "user": user})

    @api.route("/delete-account", methods=["POST"])
    @auth.user_required
    def delete_account():
        user_id = g.user["id"]
        deleted = models.delete_routes_for_owner(user_id)
        identity.delete_user(user_id)
        log.info("Account deleted: %s (%d route(s) removed)", user_id, deleted)
        return jsonify({"success": True, "message": "Account deleted successfully"})

    # -- Admin -----------------------------------------------------------

    @api.route("/admin/login", methods=["POST"])
    def admin_login():
        body = _json_body()
        access_token = body.get("accessToken") or body.get("access_token")
        if access_token:
            session = auth.login_with_access_token(access_token)
        else:
            session = auth.login_with_password(body.get("password") or "")
        return jsonify({"success": True, "token": session["token"],
                        "expiresAt": session["expiresAt"]})

    @api.route("/admin/logout", methods=["POST"])
    @auth.admin_required
    def admin_logout():
        auth.logout_admin(auth.admin_token())
        return jsonify({"success": True})

    @api.route("/admin/password", methods=["POST"])
    @auth.admin_required
    def admin_password():
        auth.set_admin_password(_json_body().get("password") or "")
        return jsonify({"success": True})

    @api.route("/admin/routes/pending", methods=["GET"])
    @auth.admin_required
    def admin_pending():
        return jsonify({"routes": models.list_pending_routes()})

    @api.route("/admin/routes/approved", methods=["GET"])
    @auth.admin_required
    def admin_approved():
        return jsonify({"routes": models.list_approved_routes()})

    @api.route("/admin/routes/<route_id>/approve", methods=["POST"])
    @auth.admin_required
    def admin_approve(route_id):
        models.approve_route(route_id)
        return jsonify({"success": True, "message": "Route approved"})

    @api.route("/admin/routes/<route_id>/reject", methods=["POST"])
    @auth.admin_required
    def admin_reject(route_id):
        models.reject_route(route_id)
        return jsonify({"success": True, "message": "Route rejected"})

    @api.route("/admin/routes/<route_id>", methods=["DELETE"])
    @auth.admin_required
    def admin_delete(route_id):
        models.delete_route(route_id)
        return jsonify({"success": True, "message": "Route deleted"})

    @api.route("/admin/contact/submissions", methods=["GET"])
    @auth.admin_required
    def admin_contact():
        return jsonify({"submissions": models.list_contact_submissions()})

    # -- Contact ---------------------------------------------------------

    @api.route("/contact", methods=["POST"])
    def contact():
        body = _json_body()
        submission = models.submit_contact(
            body.get("name"), body.get("email"), body.get("subject"), body.get("text"))
        email_notify.notify_contact_submission(submission)
        return jsonify({"success": True, "message": "Message sent successfully"})

    # -- Chat ------------------------------------------------------------

    @api.route("/chat/<ride_id>", methods=["GET"])
    def chat_messages(ride_id):
        return jsonify({"messages": models.get_chat_messages(ride_id)})

    @api.route("/chat/<ride_id>", methods=["POST"])
    def chat_post(ride_id):
        body = _json_body()
        if not (body.get("text") or "").strip():
            raise ValidationError("Message text is required")
        user = identity.get_user(body.get("userToken") or auth.bearer_token())
        if not user:
            raise AuthenticationError("Unauthorized")
        message = models.post_chat_message(ride_id, user, body["text"])
        return jsonify({"success": True, "message": message})

    @api.route("/chat/<ride_id>/<message_id>", methods=["DELETE"])
    def chat_delete(ride_id, message_id):
        is_admin = auth.current_admin() is not None
        user = None if is_admin else auth.current_user()
        if not is_admin and not user:
            raise AuthenticationError("Unauthorized")
        models.delete_chat_message(ride_id, message_id,
                                   user_id=user["id"] if user else None, is_admin=is_admin)
        return jsonify({"success": True})

    # -- Images ----------------------------------------------------------

    @api.route("/images/<token>", methods=["GET"])
    def route_image(token):
        ref = storage.read_token(token)
        row = storage.load_image(ref)
        if not row:
            raise NotFoundError("Image not found")
        return Response(
            bytes(row["data"]),
            mimetype=row["content_type"],
            headers={"Cache-Control": f"private, max-age={storage.SIGNED_URL_SECONDS}"},
        )

    # -- Misc ------------------------------------------------------------

    @api.route("/config", methods=["GET"])
    def client_config():
        return jsonify({
            "chatPollSeconds":  current_app.config["CHAT_POLL_SECONDS"],
            "chatHistoryLimit": models.CHAT_HISTORY_LIMIT,
        })

    @api.route("/health", methods=["GET"])
    def health():
        return jsonify({"ok": True})


if __name__ == "__main__":
    create_app().run(debug=True, port=5000)
