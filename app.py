import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import click
import sentry_sdk
from flask import Flask
from sentry_sdk.integrations.flask import FlaskIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config import Config
from extensions import db

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


# -------------------------------------------------------------------
# 1) Logging to file + console (UTF-8)
# -------------------------------------------------------------------
def configure_logging(log_dir: str, level: str = "INFO"):
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    if root.handlers:
        return

    fh = RotatingFileHandler(
        os.path.join(log_dir, "app.log"),
        maxBytes=2_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    fh.setFormatter(formatter)

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(formatter)

    root.addHandler(fh)
    root.addHandler(sh)


# -------------------------------------------------------------------
# 2) Sentry (only when SENTRY_DSN is set)
# -------------------------------------------------------------------
def init_sentry(config) -> bool:
    dsn = (config.get("SENTRY_DSN") or "").strip()
    if not dsn:
        logging.info("Sentry DSN not set; skipping Sentry init.")
        return False
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration(), LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        traces_sample_rate=float(config.get("SENTRY_TRACES") or 0.0),
        send_default_pii=False,
        environment=config.get("ENVIRONMENT", "development"),
    )
    logging.info("Sentry initialized.")
    return True


# -------------------------------------------------------------------
# 3) App factory
# -------------------------------------------------------------------
def create_app(config_class=Config, configure_logs: bool = True) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.from_pyfile("config.py", silent=True)  # instance/config.py if present

    if configure_logs:
        configure_logging(app.config["LOG_DIR"], app.config.get("LOG_LEVEL", "INFO"))
    init_sentry(app.config)

    os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)

    # field tables must line up before any report is served
    from utils.report_columns import validate_field_map
    validate_field_map()

    from reports import reports_bp
    app.register_blueprint(reports_bp)

    @app.cli.command("init-db")
    def init_db_command():
        """Create the event store tables."""
        db.create_all()
        click.echo("DB tables ensured (create_all).")

    logging.info("Flask app configured and blueprints registered.")
    return app


# -------------------------------------------------------------------
# 4) Local run
# -------------------------------------------------------------------
if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
        logging.info("DB tables ensured (create_all).")

    port = int(os.environ.get("PORT", 5000))
    debug = os.getenv("DEBUG", "false").lower() == "true"
    logging.info("Starting HTTP server on http://0.0.0.0:%s, debug=%s", port, debug)
    app.run(host="0.0.0.0", port=port, debug=debug)
