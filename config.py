# config.py
import os


def _labels_from_env(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if not raw:
        return default
    labels = tuple(p.strip() for p in raw.split(";") if p.strip())
    return labels or default


class Config:
    # Secrets
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")

    # Paths
    BASE_DIR = os.path.abspath(os.path.dirname(__file__))
    LOG_DIR = os.environ.get("LOG_DIR", os.path.join(BASE_DIR, "logs"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # DB
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "instance", "stock.db"),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Request bodies carry whole row sets for PDF/XLSX export
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", 16 * 1024 * 1024))

    # Sentry (optional)
    SENTRY_DSN = os.environ.get("SENTRY_DSN", "").strip()
    SENTRY_TRACES = float(os.environ.get("SENTRY_TRACES", "0.0"))
    ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

    # Report chrome
    REPORT_LOGO_PATH = os.environ.get(
        "REPORT_LOGO_PATH", os.path.join(BASE_DIR, "static", "images", "logo.png")
    )
    REPORT_TITLE_PREFIX = os.environ.get("REPORT_TITLE_PREFIX", "")
    # seconds a PDF may take before the request gives up (0 = no limit)
    REPORT_RENDER_TIMEOUT = float(os.environ.get("REPORT_RENDER_TIMEOUT", "60"))
    REPORT_FOOTER_LABELS = _labels_from_env(
        os.environ.get("REPORT_FOOTER_LABELS"),
        (
            "Store by: ________________________",
            "Received by: ________________________",
            "Project Manager: ________________________",
            "Vehicle No. ________________________",
        ),
    )
