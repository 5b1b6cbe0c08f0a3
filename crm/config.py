import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Dashboard access ---
    MASTER_PIN = os.environ.get("MASTER_PIN")
    CRON_SECRET = os.environ.get("CRON_SECRET")
    WEBHOOK_API_KEY = os.environ.get("WEBHOOK_API_KEY")  # optional, Zapier intake

    # --- Business defaults ---
    BUSINESS_NAME = os.environ.get("BUSINESS_NAME", "Seam Media")
    DEFAULT_LEAD_OWNER = os.environ.get("DEFAULT_LEAD_OWNER", "Heath Maes")
    MAIL_SIGNATURE_NAME = os.environ.get("MAIL_SIGNATURE_NAME", "Heath")
    FOLLOW_UP_AFTER_DAYS = int(os.environ.get("FOLLOW_UP_AFTER_DAYS", 2))

    # --- Gmail (Google OAuth client) ---
    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = os.environ.get(
        "GOOGLE_REDIRECT_URI", "http://localhost:5001/api/gmail/callback"
    )

    # --- Meta (Lead Ads / Messenger / Instagram) ---
    META_GRAPH_API_URL = os.environ.get(
        "META_GRAPH_API_URL", "https://graph.facebook.com/v18.0"
    )
    META_APP_SECRET = os.environ.get("META_APP_SECRET")
    META_WEBHOOK_VERIFY_TOKEN = os.environ.get("META_WEBHOOK_VERIFY_TOKEN")
    META_VERIFY_SIGNATURES = os.environ.get(
        "META_VERIFY_SIGNATURES", "true"
    ).lower() in ("1", "true", "yes")

    # --- AI drafting ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_DURATION = 60 * 60 * 24 * 30  # 30 days

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "MASTER_PIN",
            "CRON_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    META_VERIFY_SIGNATURES = False


class TestConfig(Config):
    """Testing — in-memory SQLite, fake provider credentials."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MASTER_PIN = "123456"
    CRON_SECRET = "cron_test_secret"
    WEBHOOK_API_KEY = None
    GOOGLE_CLIENT_ID = "google-client-test"
    GOOGLE_CLIENT_SECRET = "google-secret-test"
    OPENAI_API_KEY = "sk-test-fake"
    META_APP_SECRET = "meta_secret_test"
    META_WEBHOOK_VERIFY_TOKEN = "verify_test_token"
    META_VERIFY_SIGNATURES = False
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False

    @staticmethod
    def validate():
        """Test values are hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
