#!/usr/bin/env python3
"""
Quote service: Application Entry Point
Creates the Flask app and registers the quote Blueprint.
"""

import os
import logging
from flask import Flask
from flask_cors import CORS

from logging_config import setup_logging


def create_app(run_checks: bool = True):
    """Application factory."""
    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY", "quotedesk-dev")

    # The quote form is served from another origin
    CORS(app, origins=os.environ.get("CORS_ORIGINS", "*").split(","),
         expose_headers=["Content-Disposition"])

    from src.api.dashboard import bp
    app.register_blueprint(bp)

    # ── Runtime self-test: catches path/template/catalog problems at boot ──
    if run_checks:
        from src.core.startup_checks import run_startup_checks
        with app.app_context():
            checks = run_startup_checks(app)
        if checks["failed"] > 0:
            logging.getLogger("quotedesk").error(
                "STARTUP: %d checks FAILED, review logs", checks["failed"])

    return app


if __name__ == "__main__":
    setup_logging()
    port = int(os.environ.get("PORT", 3000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
