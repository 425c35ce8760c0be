import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


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

    # --- Payment gateway selection ---
    # environment_is_production: selects the production base URL and
    # the production credential set. Anything else means sandbox.
    ASAAS_USE_PRODUCTION = _env_flag("ASAAS_USE_PRODUCTION")
    PAYMENT_PROVIDER = os.environ.get("PAYMENT_PROVIDER", "asaas").lower()  # asaas | pushinpay

    # --- Asaas (primary) ---
    ASAAS_SANDBOX_URL = os.environ.get(
        "ASAAS_SANDBOX_URL", "https://sandbox.asaas.com/api/v3"
    )
    ASAAS_PRODUCTION_URL = os.environ.get(
        "ASAAS_PRODUCTION_URL", "https://api.asaas.com/v3"
    )
    ASAAS_WEBHOOK_SECRET = os.environ.get("ASAAS_WEBHOOK_SECRET")

    # --- PushinPay (alternate) ---
    PUSHINPAY_API_KEY = os.environ.get("PUSHINPAY_API_KEY")
    PUSHINPAY_API_URL = os.environ.get(
        "PUSHINPAY_API_URL", "https://api.pushinpay.com.br"
    )
    PUSHINPAY_WEBHOOK_URL = os.environ.get("PUSHINPAY_WEBHOOK_URL")
    PUSHINPAY_WEBHOOK_SECRET = os.environ.get("PUSHINPAY_WEBHOOK_SECRET")

    # --- Orchestration ---
    VALIDATION_POLICY = os.environ.get("VALIDATION_POLICY", "strict").lower()  # strict | permissive
    GATEWAY_TIMEOUT = float(os.environ.get("GATEWAY_TIMEOUT", 30))          # per HTTP call
    ORCHESTRATION_TIMEOUT = float(os.environ.get("ORCHESTRATION_TIMEOUT", 90))  # whole checkout attempt
    # Days added to "today" for the charge due date. 0 = pay today.
    CHARGE_DUE_DAYS = int(os.environ.get("CHARGE_DUE_DAYS", 0))

    # --- Status polling ---
    POLL_INTERVAL = float(os.environ.get("POLL_INTERVAL", 8))
    POLL_MAX_ATTEMPTS = int(os.environ.get("POLL_MAX_ATTEMPTS", 15))

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

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "ASAAS_WEBHOOK_SECRET",
        ]
        # The alternate provider reads its key and callback from env,
        # not from the key store.
        if os.environ.get("PAYMENT_PROVIDER", "asaas").lower() == "pushinpay":
            required += [
                "PUSHINPAY_API_KEY",
                "PUSHINPAY_WEBHOOK_URL",
                "PUSHINPAY_WEBHOOK_SECRET",
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


class TestConfig(Config):
    """Testing: in-memory SQLite, CSRF disabled, fake gateway secrets."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    ASAAS_USE_PRODUCTION = False
    PAYMENT_PROVIDER = "asaas"
    ASAAS_SANDBOX_URL = "https://sandbox.asaas.test/api/v3"
    ASAAS_PRODUCTION_URL = "https://api.asaas.test/v3"
    ASAAS_WEBHOOK_SECRET = "whsec_asaas_test"
    PUSHINPAY_API_KEY = "12345|pushinpay_test_token"
    PUSHINPAY_API_URL = "https://api.pushinpay.test"
    PUSHINPAY_WEBHOOK_URL = "http://localhost:5000/webhooks/pushinpay"
    PUSHINPAY_WEBHOOK_SECRET = "whsec_pushinpay_test"
    VALIDATION_POLICY = "strict"
    GATEWAY_TIMEOUT = 30
    ORCHESTRATION_TIMEOUT = 90
    CHARGE_DUE_DAYS = 0
    POLL_INTERVAL = 0
    POLL_MAX_ATTEMPTS = 3
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode: everything is hardcoded."""
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
