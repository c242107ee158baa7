# mlchat/core/config.py
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


CORS_ALLOWED_HEADERS = ["Content-Type", "Authorization", "X-Client-Info", "Apikey"]


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In prod, env vars come from the service config.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            load_dotenv()

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

        # ----------------------------
        # Database
        # ----------------------------
        self.DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_APP_USER = os.getenv("DB_APP_USER", "")
        self.DB_APP_PASSWORD = os.getenv("DB_APP_PASSWORD", "")
        self.DB_MIGRATOR_USER = os.getenv("DB_MIGRATOR_USER", "")
        self.DB_MIGRATOR_PASSWORD = os.getenv("DB_MIGRATOR_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "require").strip().lower()

        # ----------------------------
        # CORS
        # ----------------------------
        # The chat API is called straight from the browser; any origin by default.
        self.CORS_ORIGINS = parse_csv(os.getenv("CORS_ORIGINS")) or ["*"]

        # ----------------------------
        # Auth (Supabase)
        # ----------------------------
        self.SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
        self.SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
        self.SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "")
        self.SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
        self.SUPABASE_AUTH_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_AUTH_TIMEOUT_SECONDS", "5"))
        self.PROFILE_AUTO_PROVISION = str_to_bool(os.getenv("PROFILE_AUTO_PROVISION"), default=True)
        self.SIGNUP_CREDITS = int(os.getenv("SIGNUP_CREDITS", "20"))

        # ----------------------------
        # Chat
        # ----------------------------
        self.CREDIT_CHARGE_MODE = os.getenv("CREDIT_CHARGE_MODE", "reserve").strip().lower()  # reserve | post_charge
        self.CHAT_MAX_INPUT_CHARS = int(os.getenv("CHAT_MAX_INPUT_CHARS", "4000"))
        self.CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "50"))

        # ----------------------------
        # Generation
        # ----------------------------
        self.GENERATION_PROVIDER = os.getenv("GENERATION_PROVIDER", "gemini").strip().lower()  # gemini | openai
        self.GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.7"))
        self.GENERATION_MAX_OUTPUT_TOKENS = int(os.getenv("GENERATION_MAX_OUTPUT_TOKENS", "1000"))
        self.GENERATION_MAX_RETRIES = max(1, int(os.getenv("GENERATION_MAX_RETRIES", "1")))
        self.GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))

        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.GEMINI_API_BASE = os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        ).strip().rstrip("/")

        self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
        self.OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
        self.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "").strip() or None

        # ----------------------------
        # Billing (Stripe)
        # ----------------------------
        self.STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
        self.STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
        self.STRIPE_DEFAULT_CURRENCY = os.getenv("STRIPE_DEFAULT_CURRENCY", "usd").strip().lower()
        self.CREDIT_UNIT_PRICE_CENTS = int(os.getenv("CREDIT_UNIT_PRICE_CENTS", "100"))

        self._validate()

    def _validate(self) -> None:
        if self.CREDIT_CHARGE_MODE not in {"reserve", "post_charge"}:
            raise RuntimeError("CREDIT_CHARGE_MODE must be 'reserve' or 'post_charge'")
        if self.GENERATION_PROVIDER not in {"gemini", "openai"}:
            raise RuntimeError("GENERATION_PROVIDER must be 'gemini' or 'openai'")

        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.DATABASE_URL:
            for name in ("DB_HOST", "DB_NAME", "DB_APP_USER", "DB_APP_PASSWORD"):
                if not getattr(self, name):
                    missing.append(name)
            if self.DB_SSLMODE != "require":
                raise RuntimeError("DB_SSLMODE must be 'require' in prod")

        if not self.SUPABASE_JWT_SECRET and not (self.SUPABASE_URL and self.SUPABASE_ANON_KEY):
            missing.append("SUPABASE_JWT_SECRET (or SUPABASE_URL + SUPABASE_ANON_KEY)")

        if self.GENERATION_PROVIDER == "gemini" and not self.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY")
        if self.GENERATION_PROVIDER == "openai" and not self.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")

        if self.STRIPE_SECRET_KEY and not self.STRIPE_WEBHOOK_SECRET:
            missing.append("STRIPE_WEBHOOK_SECRET")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    def _build_database_url(self, user: str, password: str) -> str:
        encoded_password = quote_plus(password)
        return (
            f"postgresql+psycopg2://{user}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return self._build_database_url(self.DB_APP_USER, self.DB_APP_PASSWORD)

    @property
    def migrations_database_url(self) -> str:
        if self.DB_MIGRATOR_USER and self.DB_MIGRATOR_PASSWORD:
            return self._build_database_url(self.DB_MIGRATOR_USER, self.DB_MIGRATOR_PASSWORD)
        return self.database_url


settings = Settings()
