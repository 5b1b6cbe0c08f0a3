import os
import logging

import click
from flask import Flask, jsonify

from crm.config import config_by_name
from crm.errors import CRMError
from crm.extensions import db, migrate, login_manager, limiter


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
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from crm import models  # noqa: F401

    # --- Register blueprints ---
    from crm.blueprints.auth import auth_bp
    from crm.blueprints.leads import leads_bp
    from crm.blueprints.gmail import gmail_bp
    from crm.blueprints.meta import meta_bp
    from crm.blueprints.cron import cron_bp
    from crm.blueprints.ai import ai_bp
    from crm.blueprints.settings import settings_bp
    from crm.blueprints.stats import stats_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(leads_bp)
    app.register_blueprint(gmail_bp)
    app.register_blueprint(meta_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(stats_bp)

    # --- Error handlers ---
    @app.errorhandler(CRMError)
    def crm_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests, slow down"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
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


DEMO_LEADS = [
    {
        "name": "Maria Lopez",
        "company": "Lopez Bakery",
        "email": "maria@lopezbakery.com",
        "phone": "+1 555-0110",
        "stage": "interested",
        "source": "referral",
        "conversion_probability": 60,
        "notes": "Wants a quote for a spring campaign",
    },
    {
        "name": "Sam Okafor",
        "company": "Okafor Fitness",
        "email": "sam@okaforfitness.com",
        "stage": "contacted_1",
        "source": "instagram",
        "notes": "Found us through a reel",
    },
    {
        "name": "Priya Natarajan",
        "company": "Bloom Florists",
        "email": "priya@bloomflorists.com",
        "stage": "converted",
        "source": "website",
        "conversion_probability": 100,
        "revenue": 2400,
    },
    {
        "name": "Tom Becker",
        "company": "Becker Plumbing",
        "email": "tom@beckerplumbing.com",
        "stage": "not_interested",
        "source": "linkedin",
        "conversion_probability": 5,
    },
]


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("run-follow-ups")
    def run_follow_ups_command():
        """Run the follow-up job once (same as GET /api/cron/follow-up).

        Usage:
            flask run-follow-ups
        """
        from crm.services import gmail_service, response_service

        try:
            mailbox = gmail_service.get_mailbox()
        except CRMError as e:
            click.echo(f"ERROR: {e.message}")
            return

        result = response_service.run_follow_ups(mailbox)
        click.echo(
            f"Processed {result['processed']} lead(s): "
            f"{result['follow_ups_sent']} follow-up(s) sent, "
            f"{result['skipped_due_to_response']} already replied, "
            f"{result['errors']} error(s)"
        )

    @app.cli.command("check-responses")
    @click.option("--lead-id", default=None, help="Only check this lead.")
    def check_responses_command(lead_id):
        """Move contacted_1 leads who replied by email to interested.

        Usage:
            flask check-responses
            flask check-responses --lead-id <uuid>
        """
        from crm.services import gmail_service, response_service

        try:
            mailbox = gmail_service.get_mailbox()
        except CRMError as e:
            click.echo(f"ERROR: {e.message}")
            return

        result = response_service.check_responses(mailbox, lead_id=lead_id)
        click.echo(f"Checked {result['checked']} lead(s), advanced {result['advanced']}")
        for name in result["advanced_leads"]:
            click.echo(f"  -> {name}")

    @app.cli.command("migrate-stages")
    def migrate_stages_command():
        """Rename pre-pipeline stages (new, contacted, demo, lost, ...)."""
        from crm.services import lead_service

        result = lead_service.migrate_legacy_stages()
        db.session.commit()
        click.echo(
            f"Migrated {result['migrated_count']} of {result['total_leads']} lead(s)"
        )

    @app.cli.command("seed-leads")
    def seed_leads_command():
        """Create a handful of demo leads (skips emails that already exist)."""
        from crm.services import lead_service

        created = 0
        for data in DEMO_LEADS:
            if lead_service.find_by_email(data["email"]):
                click.echo(f"Lead already exists: {data['email']}")
                continue
            lead_service.create_lead(data)
            created += 1
        db.session.commit()
        click.echo(f"Created {created} demo lead(s)")

    @app.cli.command("add-meta-page")
    @click.option("--page-id", required=True, help="Facebook page id")
    @click.option("--page-name", default=None, help="Display name")
    @click.option("--token", required=True, help="Page access token")
    def add_meta_page_command(page_id, page_name, token):
        """Store a page access token so its lead forms can be ingested.

        Usage:
            flask add-meta-page --page-id 1234 --page-name "Seam Media" --token EAAB...
        """
        from crm.services import meta_service

        connection = meta_service.save_connection(page_id, page_name, token)
        click.echo(f"Connected page {connection.page_id} ({connection.page_name})")
