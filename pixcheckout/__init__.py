import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from pixcheckout.config import config_by_name
from pixcheckout.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from pixcheckout import models  # noqa: F401

    # --- Persistence handle and payment gateway, built once ---
    from pixcheckout.services import gateways, persistence

    store = persistence.Persistence(db.session)
    app.extensions[persistence.EXTENSION_KEY] = store
    app.extensions[gateways.EXTENSION_KEY] = gateways.build_gateway(app.config, store)

    # --- Register blueprints ---
    from pixcheckout.blueprints.auth import auth_bp
    from pixcheckout.blueprints.payments import payments_bp
    from pixcheckout.blueprints.admin import admin_bp
    from pixcheckout.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF: authenticated by HMAC signature instead
    csrf.exempt(webhooks_bp)
    # Exempt the public checkout API: called cross-origin by the storefront
    csrf.exempt(payments_bp)

    # --- Error handlers (JSON only, there are no templates) ---
    @app.errorhandler(403)
    def forbidden(e):
        return jsonify(error="forbidden", message="Forbidden."), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="not_found", message="Not found."), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="method_not_allowed", message="Method not allowed."), 405

    @app.errorhandler(429)
    def too_many_requests(e):
        return jsonify(error="rate_limited", message="Too many requests."), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(
            error="server_error", message="Something went wrong. Please try again."
        ), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON API: nothing should ever be rendered or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@pixcheckout.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create the admin user for the key store and diagnostics.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from pixcheckout.models.user import User

        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
            return

        db.session.add(User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name="Admin",
            is_admin=True,
        ))
        db.session.commit()
        click.echo(f"Created admin user: {email}")

    @app.cli.command("add-key")
    @click.option("--label", required=True, help="Human readable name")
    @click.option("--secret", prompt=True, hide_input=True, help="The API key")
    @click.option(
        "--environment",
        type=click.Choice(["sandbox", "production"]),
        default="sandbox",
        show_default=True,
    )
    @click.option("--priority", type=int, default=1, show_default=True)
    @click.option("--activate", is_flag=True, help="Deactivate the environment's other keys.")
    def add_key(label, secret, environment, priority, activate):
        """Add an Asaas API key to the key store.

        Usage:
            flask add-key --label main --environment production --activate
        """
        from pixcheckout.services import key_service
        from pixcheckout.services.persistence import get_persistence

        persistence = get_persistence()
        credential, result = key_service.add_credential(
            persistence, label, secret, environment, priority=priority
        )
        if activate:
            key_service.set_active(persistence, credential.id)

        click.echo(f"Added key {credential.id}: {credential.to_dict()['secret']}")
        if not result.valid:
            click.echo(f"WARNING: {result.reason}")

    @app.cli.command("test-key")
    @click.argument("credential_id", type=int)
    def test_key(credential_id):
        """Call Asaas with a stored key and report the result.

        Usage:
            flask test-key 3
        """
        from pixcheckout.services import key_service
        from pixcheckout.services.gateways import asaas_base_url
        from pixcheckout.services.persistence import get_persistence

        persistence = get_persistence()
        credential = persistence.get_credential(credential_id)
        if credential is None:
            click.echo(f"ERROR: no key with id {credential_id}")
            return

        result = key_service.test_credential(
            persistence,
            credential_id,
            asaas_base_url(app.config, credential.environment),
            timeout=app.config["GATEWAY_TIMEOUT"],
        )

        click.echo(f"Key {result['id']} ({result['environment']}): {result['masked']}")
        click.echo(f"  format valid: {result['valid']} {result['reason']}")
        click.echo(f"  reachable:    {result['reachable']} (HTTP {result['http_status']})")
        if result["error"]:
            click.echo(f"  error:        {result['error']}")

    @app.cli.command("watch-payment")
    @click.argument("payment_id")
    @click.option("--interval", type=float, default=None, help="Seconds between polls.")
    @click.option("--max-polls", type=int, default=None, help="Give up after this many polls.")
    def watch_payment(payment_id, interval, max_polls):
        """Poll a payment's status until it settles.

        Usage:
            flask watch-payment pay_080225913252
        """
        from pixcheckout.services import status_service
        from pixcheckout.services.gateways import get_gateway
        from pixcheckout.services.persistence import get_persistence
        from pixcheckout.services.poller import StatusPoller

        persistence = get_persistence()
        gateway = get_gateway()

        def fetch():
            result = status_service.check_status(persistence, gateway, payment_id)
            click.echo(f"  {result['status']} (source={result['source']})")
            return result

        poller = StatusPoller(
            fetch,
            interval=interval if interval is not None else app.config["POLL_INTERVAL"],
            max_polls=max_polls or app.config["POLL_MAX_ATTEMPTS"],
            on_terminal=lambda status: click.echo(f"Payment {payment_id} is {status}"),
        )
        outcome = poller.run()

        if outcome == "still_pending":
            click.echo(f"Payment {payment_id} is still pending, check back later.")
