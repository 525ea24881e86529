import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from crm.config import Config
from crm.db import close_db, init_db
from crm.db_migrations import register_db_cli
from crm.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from crm.services import register_services


_HTTP_ERROR_KEYS = {
    403: "permission_denied",
    404: "not_found",
    405: "method_not_allowed",
}


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    register_services(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes criam o schema sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from crm.contexts.insights.interfaces.http import alerts_bp
    from crm.contexts.pricing.interfaces.http import pricing_api_bp, pricing_v2_bp
    from crm.contexts.sales.interfaces.http import leads_bp, orders_bp

    app.register_blueprint(leads_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(pricing_v2_bp)
    app.register_blueprint(pricing_api_bp)
    app.register_blueprint(alerts_bp)


def _register_scheduler(app: Flask) -> None:
    from crm.scheduler import start_insights_scheduler

    start_insights_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from crm.errors import AppError, IntegrationError, SystemError, UserActionError
    from crm.pricing_api import PricingApiError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(PricingApiError)
    def _handle_pricing_api_error(exc: PricingApiError):
        request_id = ensure_request_id()
        answered = exc.status_code is not None
        mapped = IntegrationError(
            code="PRICING_API_ERROR" if answered else "PRICING_API_UNAVAILABLE",
            message_key="pricing_api_error" if answered else "pricing_api_unavailable",
            http_status=exc.status_code or 503,
            critical=False,
            details=str(exc),
            payload={"details": exc.details} if exc.details is not None else None,
        )
        _log_error(mapped, request_id)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        request_id = ensure_request_id()
        if isinstance(exc, HTTPException):
            status = exc.code or 500
            message_key = _HTTP_ERROR_KEYS.get(status, "action_invalid")
            http_error = UserActionError(
                code=message_key.upper(),
                message_key=message_key,
                http_status=status,
            )
            return jsonify(http_error.to_response_payload(request_id)), status

        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from crm.db import get_read_db

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        scheduler = app.extensions.get("insights_scheduler")
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "scheduler": "running" if scheduler is not None else "disabled",
            "metrics": {
                "http": metrics_snapshot(),
            },
        }
        try:
            get_read_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unreachable", exc_info=True)
            payload["status"] = "degraded"
        return payload, 200
