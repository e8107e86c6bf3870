"""
MasterGuard Web API
===================
Flask surface for master login, session handling and security review.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import wraps

from flask import Flask, g, jsonify, request

from masterguard.core.auth import AuthGateway, SessionNotFoundError
from masterguard.core.errors import MasterGuardError
from masterguard.core.models import SessionContext
from masterguard.security.audit import AlertStore, SecurityEventLog
from masterguard.security.events import SecurityEventLevel, SecurityEventType


log = logging.getLogger("masterguard.web")

SESSION_HEADER = "X-Session-Id"
MAX_QUERY_LIMIT = 1000


class BadRequestError(MasterGuardError):
    code = "bad_request"
    public_message = "Malformed request"
    status = 400


class NotFoundError(MasterGuardError):
    code = "not_found"
    public_message = "Not found"
    status = 404


def _parse_time(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise BadRequestError(f"Invalid timestamp: {value!r}") from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_enum(enum_type, value):
    if not value:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise BadRequestError(f"Unknown {enum_type.__name__}: {value!r}") from None


def _parse_int(value, default):
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise BadRequestError(f"Invalid integer: {value!r}") from None


def _request_context():
    return SessionContext(
        ip=request.remote_addr or "unknown",
        user_agent=request.headers.get("User-Agent", "unknown"),
    )


def create_app(
    gateway: AuthGateway,
    event_log: SecurityEventLog,
    alerts: AlertStore,
) -> Flask:
    """Build the Flask application around already-wired services."""

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 64 * 1024

    # ============================================================
    # CORS & ERRORS
    # ============================================================

    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = f'Content-Type, Authorization, {SESSION_HEADER}'
        response.headers['Access-Control-Max-Age'] = '3600'
        return response

    @app.errorhandler(MasterGuardError)
    def handle_domain_error(error: MasterGuardError):
        log.info("Request failed with %s: %s", error.code, error)
        response = jsonify(error.to_dict())
        response.status_code = error.status
        if error.retry_after is not None:
            response.headers['Retry-After'] = str(error.retry_after)
        return response

    # ============================================================
    # AUTHENTICATION HELPERS
    # ============================================================

    def require_session(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            token = request.headers.get("Authorization", "").replace("Bearer ", "", 1)
            session_id = request.headers.get(SESSION_HEADER, "")
            if not token or not session_id:
                raise SessionNotFoundError("Missing session credentials")
            try:
                g.session = gateway.authorize(session_id, token)
            except ValueError:
                raise SessionNotFoundError("Malformed session id") from None
            return f(*args, **kwargs)
        return wrapper

    def json_body():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise BadRequestError("Expected a JSON object")
        return data

    # ============================================================
    # HEALTH CHECK
    # ============================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "event_flusher": event_log.is_running,
            "pending_events": event_log.pending_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # ============================================================
    # MASTER SESSION ROUTES
    # ============================================================

    @app.route("/api/master/login", methods=["POST"])
    def login():
        data = json_body()
        email = str(data.get("email", "")).strip()
        password = str(data.get("password", ""))

        if not email or not password:
            raise BadRequestError("Email and password are required")

        result = gateway.login(email, password, _request_context())

        return jsonify({
            "message": "Login successful",
            "session_id": result.session_id,
            "token": result.token,
            "user_id": result.user_id,
            "expires_at": result.expires_at.isoformat(),
        })

    @app.route("/api/master/logout", methods=["POST"])
    @require_session
    def logout():
        gateway.logout(g.session.session_id)
        return jsonify({"message": "Logged out successfully"})

    @app.route("/api/master/activity", methods=["POST"])
    @require_session
    def activity():
        signal = str(json_body().get("signal", ""))
        try:
            extended = gateway.record_activity(g.session.session_id, signal)
        except ValueError:
            raise BadRequestError(f"Unknown activity signal: {signal!r}") from None

        session = gateway.sessions.get(g.session.session_id) or g.session
        return jsonify({
            "extended": extended,
            "expires_at": session.expires_at.isoformat(),
        })

    @app.route("/api/master/session", methods=["GET"])
    @require_session
    def session_info():
        session = g.session
        return jsonify({
            "session_id": session.session_id,
            "user_id": session.user_id,
            "email": session.email,
            "state": session.state.value,
            "start_time": session.start_time.isoformat(),
            "last_activity": session.last_activity.isoformat(),
            "expires_at": session.expires_at.isoformat(),
        })

    # ============================================================
    # SECURITY REVIEW
    # ============================================================

    @app.route("/api/security/events", methods=["GET"])
    @require_session
    def list_events():
        args = request.args
        limit = _parse_int(args.get("limit"), 100)
        if not 0 < limit <= MAX_QUERY_LIMIT:
            raise BadRequestError(f"limit must be between 1 and {MAX_QUERY_LIMIT}")

        events = event_log.query(
            event_type=_parse_enum(SecurityEventType, args.get("type")),
            level=_parse_enum(SecurityEventLevel, args.get("level")),
            user_id=args.get("user_id") or None,
            since=_parse_time(args.get("since")),
            until=_parse_time(args.get("until")),
            limit=limit,
        )
        return jsonify({"events": [e.to_dict() for e in events]})

    @app.route("/api/security/stats", methods=["GET"])
    @require_session
    def stats():
        top_n = _parse_int(request.args.get("top"), 5)
        try:
            result = event_log.statistics(request.args.get("window", "24h"), top_n=top_n)
        except ValueError as e:
            raise BadRequestError(str(e)) from None
        return jsonify(result.to_dict())

    @app.route("/api/security/alerts", methods=["GET"])
    @require_session
    def list_alerts():
        return jsonify({"alerts": alerts.list_unacknowledged()})

    @app.route("/api/security/alerts/<alert_id>/ack", methods=["POST"])
    @require_session
    def acknowledge_alert(alert_id):
        try:
            alert = alerts.acknowledge(alert_id, operator=g.session.user_id)
        except (KeyError, ValueError):
            raise NotFoundError(f"Alert {alert_id} not found") from None
        return jsonify(alert)

    return app


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    from masterguard.bootstrap import build_services, configure_logging
    from masterguard.core.config import SecureConfig

    config = SecureConfig.load()
    configure_logging(config)
    services = build_services(config)
    app = create_app(services.gateway, services.event_log, services.alerts)
    try:
        app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
    finally:
        services.shutdown()
