# backend/stockline/__init__.py
import atexit
import logging
import os
from logging.handlers import RotatingFileHandler

from flask import Flask, request, jsonify

from .config import Config, build_remote_database_uri
from .extensions import db, migrate

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(app: Flask) -> None:
    """
    app.logger is the "stockline" logger, so module loggers
    (stockline.services.sync_manager, ...) propagate into it.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return
    os.makedirs(log_dir, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "stockline.log"),
        maxBytes=2_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
        app.logger.addHandler(file_handler)


def _build_services(app: Flask) -> None:
    """One instance of each component per app, kept on app.extensions."""
    from .services.data_adapter import DataAdapter
    from .services.notification_service import NotificationEngine
    from .services.remote_service import RemoteDataService
    from .services.sync_manager import SyncManager
    from .storage.local_store import LocalCacheStore

    local_store = LocalCacheStore(app.config["LOCAL_CACHE_URL"])
    remote = RemoteDataService(db)
    notifications = NotificationEngine(
        remote,
        default_threshold=app.config["LOW_STOCK_DEFAULT_THRESHOLD"],
        read_retention_days=app.config["NOTIFICATION_READ_RETENTION_DAYS"],
    )
    adapter = DataAdapter(
        local_store,
        remote,
        queued_tables=app.config["OFFLINE_QUEUED_TABLES"],
        notifications=notifications,
    )
    sync_manager = SyncManager(
        app,
        local_store,
        remote,
        interval_seconds=app.config["SYNC_INTERVAL_SECONDS"],
        max_attempts=app.config["SYNC_MAX_ATTEMPTS"],
        backoff_base_seconds=app.config["SYNC_BACKOFF_BASE_SECONDS"],
        backoff_max_seconds=app.config["SYNC_BACKOFF_MAX_SECONDS"],
        run_in_background=app.config["SYNC_AUTOSTART"],
    )

    app.extensions["stockline.local_store"] = local_store
    app.extensions["stockline.remote"] = remote
    app.extensions["stockline.notifications"] = notifications
    app.extensions["stockline.data_adapter"] = adapter
    app.extensions["stockline.sync_manager"] = sync_manager

    if app.config["SYNC_AUTOSTART"]:
        sync_manager.start()
        atexit.register(sync_manager.stop)


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
        if "REMOTE_DATABASE_URL" in test_config and "SQLALCHEMY_DATABASE_URI" not in test_config:
            app.config["SQLALCHEMY_DATABASE_URI"] = build_remote_database_uri(
                app.config["REMOTE_DATABASE_URL"],
                app.config.get("REMOTE_DATABASE_USER"),
                app.config.get("REMOTE_DATABASE_PASSWORD"),
            )

    _configure_logging(app)

    if not app.config.get("REMOTE_DATABASE_URL") and not (test_config and "SQLALCHEMY_DATABASE_URI" in test_config):
        app.logger.warning(
            "REMOTE_DATABASE_URL is not set; using development database %s",
            app.config["SQLALCHEMY_DATABASE_URI"],
        )
    if app.config["SECRET_KEY"] == "dev-secret-key-change-me" and not app.testing:
        app.logger.warning("SECRET_KEY is not set; using the development key")

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    _build_services(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.customers import customers_bp
    from .routes.sales import sales_bp
    from .routes.returns import returns_bp
    from .routes.notifications import notifications_bp
    from .routes.sync import sync_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(sync_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    @app.errorhandler(404)
    def _handle_404(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def _handle_405(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def _handle_500(e):
        app.logger.exception("Unhandled error: %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
