import io
import logging
import os
import click
from flask import Flask, Request, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from marshmallow import ValidationError
from sqlalchemy import select
from sqlalchemy.engine import make_url
from werkzeug.middleware.proxy_fix import ProxyFix

from valentina.config import Config
from valentina.models import db, User
from valentina.logging_config import setup_logging
from valentina.exceptions import ApiError

# Initialize extensions
limiter = Limiter(key_func=get_remote_address)
migrate = Migrate()


class InMemoryUploadRequest(Request):
    """Keeps uploaded files in memory instead of spooling large ones to disk."""

    def _get_file_stream(self, total_content_length, content_type, filename=None, content_length=None):
        return io.BytesIO()


def _ensure_sqlite_directory(database_uri):
    url = make_url(database_uri)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)


def _create_user(username, password, is_admin):
    if db.session.execute(select(User).filter_by(username=username)).scalar_one_or_none():
        return None
    user = User(username=username, is_admin=is_admin)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def ensure_admin_user(app):
    """Seeds the dashboard admin from ADMIN_USER / ADMIN_PASS when it does not exist yet."""
    username, password = app.config.get("ADMIN_USER"), app.config.get("ADMIN_PASS")
    if not (username and password):
        logging.getLogger('security').warning(
            "ADMIN_USER or ADMIN_PASS is not set; no dashboard admin was seeded. "
            "Use 'flask create-admin' to add one."
        )
        return
    if _create_user(username, password, is_admin=True):
        logging.getLogger('security').info(f"Seeded admin user '{username}'.")


def create_app(config_class=Config):
    """Application factory function."""
    setup_logging()
    access_logger = logging.getLogger('access')
    error_logger = logging.getLogger('error')
    security_logger = logging.getLogger('security')

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.request_class = InMemoryUploadRequest

    # Trust the first reverse-proxy hop for client IP, scheme and host
    hops = app.config.get("TRUST_PROXY_HOPS", 1)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    from valentina.celery_worker import celery
    celery.conf.update(
        broker_url=app.config['CELERY_BROKER_URL'],
        result_backend=app.config['CELERY_RESULT_BACKEND'],
        task_always_eager=app.config['CELERY_TASK_ALWAYS_EAGER'],
    )

    # Initialize extensions with the app object
    _ensure_sqlite_directory(app.config['SQLALCHEMY_DATABASE_URI'])
    db.init_app(app)
    limiter.init_app(app)
    migrate.init_app(app, db)

    from valentina.knowledge import init_knowledge
    init_knowledge(app)

    from valentina import utils
    with app.app_context():
        if app.config.get("AUTO_CREATE_TABLES"):
            db.create_all()
            ensure_admin_user(app)
        utils.configure_genai()

    # --- Register Blueprints ---
    from valentina.auth import auth_bp
    from valentina.routes import api_bp
    from valentina.webhook import webhook_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(webhook_bp)
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS")}})

    # --- CLI Commands ---
    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("password")
    def create_user(username, password):
        """Creates a dashboard user without admin rights."""
        if _create_user(username, password, is_admin=False) is None:
            print(f"User '{username}' already exists.")
            return
        print(f"User '{username}' created successfully.")

    @app.cli.command("create-admin")
    @click.argument("username")
    @click.argument("password")
    def create_admin(username, password):
        """Creates a new admin user."""
        if _create_user(username, password, is_admin=True) is None:
            print(f"Admin user '{username}' already exists.")
            return
        print(f"Admin user '{username}' created successfully.")

    @app.cli.command("import-inventory")
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    def import_inventory(csv_path):
        """Loads inventory items from a CSV file with a header row."""
        from valentina.knowledge import import_inventory_csv
        with open(csv_path, "rb") as fh:
            inserted = import_inventory_csv(fh)
        print(f"Imported {inserted} new inventory items.")

    # --- Request Guards, Logging & Error Handlers ---
    @app.before_request
    def log_request_info():
        if not request.path.startswith('/static'):
            access_logger.info(f"Request: {request.method} {request.path} - IP: {request.remote_addr}")

    @app.before_request
    def block_internal_paths():
        path = request.path
        if (path.endswith('.json') or '/data/' in path) and not path.startswith('/api/'):
            security_logger.warning(f"Blocked internal path {path} - IP: {request.remote_addr}")
            return "Forbidden", 403

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        return jsonify({"error": "Validation failed", "messages": err.messages}), 400

    @app.errorhandler(413)
    def handle_too_large(err):
        error_logger.error(f"Upload rejected on {request.path}: body exceeds MAX_CONTENT_LENGTH")
        return jsonify({"error": "File too large"}), 413

    return app
