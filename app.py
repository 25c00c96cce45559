import logging
import os

import click
from flask import Flask, abort, jsonify, request
from flask.cli import AppGroup

from config import Config
from errors import register_error_handlers
from extensions import db, login_manager, migrate
from models import ROLE_ADMIN, User
from blueprints.auth.routes import bp as auth_bp
from blueprints.admin.routes import bp as admin_bp
from blueprints.teacher.routes import bp as teacher_bp
from blueprints.student.routes import bp as student_bp
from blueprints.health.routes import bp as health_bp

logger = logging.getLogger(__name__)

sources_cli = AppGroup("sources", help="Source document maintenance.")
storage_cli = AppGroup("storage", help="Object storage maintenance.")


def seed_admin():
    """Create the tables and a bootstrap admin; returns the admin user."""
    db.create_all()
    email = os.getenv("ADMIN_SEED_EMAIL", "admin@example.com").strip().lower()
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        user = User(email=email, given_name="Admin", family_name="User", role=ROLE_ADMIN, is_active=True)
        user.set_password(os.getenv("ADMIN_SEED_PASSWORD", "admin123"))
        db.session.add(user)
        db.session.commit()
        logger.info("Seeded admin %s", email)
    return user


@sources_cli.command("process")
@click.option("--limit", type=int, default=None, help="Process at most this many pending sources.")
def process_sources(limit):
    from queries.sources import process_pending

    completed, failed = process_pending(limit)
    click.echo(f"Processed sources: {completed} completed, {failed} failed")


@storage_cli.command("sweep")
@click.option("--limit", type=int, default=None)
def sweep_storage(limit):
    from services.storage import sweep_pending_deletions

    removed, failed = sweep_pending_deletions(limit)
    click.echo(f"Storage sweep: {removed} removed, {failed} still pending")


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    register_error_handlers(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(teacher_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(health_bp)

    app.cli.add_command(sources_cli)
    app.cli.add_command(storage_cli)

    @app.cli.command("seed")
    def seed():
        user = seed_admin()
        click.echo(f"Admin account: {user.email}")

    @app.route("/init", methods=["POST"])
    def init():
        # Guard: only allow in debug or with INIT_TOKEN
        if not app.debug:
            token = request.args.get("token")
            if not token or token != os.getenv("INIT_TOKEN"):
                abort(403)
        user = seed_admin()
        return jsonify({"message": "Initialized", "admin": user.email})

    return app


if __name__ == "__main__":
    app = create_app()
    debug = os.getenv("FLASK_DEBUG") == "1"
    app.run(host="0.0.0.0", port=5000, debug=debug)
