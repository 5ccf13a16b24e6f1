import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from app.config import Config
from app.db import close_db, get_read_db, init_db
from app.db_migrations import register_db_cli
from app.errors import AppError, SystemError
from app.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)

    _register_request_hooks(app)
    _register_error_handlers(app)

    from app.routes.category_routes import cadastros_bp

    app.register_blueprint(cadastros_bp)
    _register_operational_routes(app)
    register_db_cli(app)
    app.teardown_appcontext(close_db)

    if _should_auto_init_schema(app):
        with app.app_context():
            init_db()
    return app


def _should_auto_init_schema(app: Flask) -> bool:
    # Testes sempre usam o schema do db.py, sem migrations.
    if app.testing:
        return True
    if not app.config.get("DB_AUTO_INIT", False):
        return False
    flask_env = (os.environ.get("FLASK_ENV") or "development").strip().lower()
    if flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return False
    return True


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _start_request() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)


def _request_context_fields() -> dict:
    return {"request_path": request.path, "http_method": request.method}


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        log = app.logger.error if exc.critical else app.logger.warning
        log(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": exc.code,
                "http_status": exc.http_status,
                "error_payload": exc.payload,
                "details": exc.details,
                **_request_context_fields(),
            },
            exc_info=exc.critical,
        )
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        # 404/405 do roteamento seguem o fluxo padrao do werkzeug.
        if isinstance(exc, HTTPException):
            return exc
        request_id = ensure_request_id()
        app.logger.exception(
            "unexpected_exception",
            extra={"request_id": request_id, "error_code": "unexpected_error", **_request_context_fields()},
        )
        mapped = SystemError(code="unexpected_error", critical=True, details=str(exc))
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_operational_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        db_url = str(app.config.get("DB_PATH") or "")
        payload = {
            "status": "ok",
            "db": "postgres" if db_url.startswith("postgres") else "sqlite",
            "env": app.config.get("ENV", "unknown"),
            "metrics": {"http": metrics_snapshot()},
        }
        try:
            get_read_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.warning("health_db_unreachable", exc_info=True)
            payload["status"] = "degraded"
        return payload, 200

    @app.get("/metrics")
    def metrics():
        return prometheus_metrics_text(), 200, {"Content-Type": PROMETHEUS_CONTENT_TYPE}
