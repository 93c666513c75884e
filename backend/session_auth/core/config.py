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


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def _path_setting(name: str, default: str) -> str:
    value = (os.getenv(name, default) or default).strip()
    if not value.startswith("/"):
        value = "/" + value
    return value


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In prod, env vars come from the service config.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            load_dotenv()

        # ----------------------------
        # Database (user directory)
        # ----------------------------
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_APP_USER = os.getenv("DB_APP_USER", "")
        self.DB_APP_PASSWORD = os.getenv("DB_APP_PASSWORD", "")
        self.DB_MIGRATOR_USER = os.getenv("DB_MIGRATOR_USER", "")
        self.DB_MIGRATOR_PASSWORD = os.getenv("DB_MIGRATOR_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "require").strip().lower()

        # ----------------------------
        # Password policy
        # ----------------------------
        self.PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))

        # ----------------------------
        # CORS
        # ----------------------------
        dev_defaults = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        # ----------------------------
        # Identity provider (Cognito)
        # ----------------------------
        self.COGNITO_REGION = os.getenv("COGNITO_REGION", "").strip()
        self.COGNITO_USER_POOL_ID = os.getenv("COGNITO_USER_POOL_ID", "").strip()
        self.COGNITO_APP_CLIENT_ID = os.getenv("COGNITO_APP_CLIENT_ID", "").strip()
        self.COGNITO_JWKS_CACHE_SECONDS = int(os.getenv("COGNITO_JWKS_CACHE_SECONDS", "900"))

        # ----------------------------
        # Session credential / cookie
        # ----------------------------
        self.SESSION_SECRET = os.getenv("SESSION_SECRET", "")
        self.SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
        self.SESSION_ISSUER = os.getenv("SESSION_ISSUER", "session-auth").strip() or "session-auth"
        self.SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session").strip() or "session"
        # Minting requires a sign-in no older than this many seconds.
        self.SESSION_RECENT_SIGN_IN_SECONDS = int(os.getenv("SESSION_RECENT_SIGN_IN_SECONDS", "300"))

        # ----------------------------
        # Navigation targets
        # ----------------------------
        self.LOGIN_PATH = _path_setting("LOGIN_PATH", "/login")
        self.DASHBOARD_PATH = _path_setting("DASHBOARD_PATH", "/dashboard")
        self.LANDING_PATH = _path_setting("LANDING_PATH", "/")

        # Final: fail fast in prod
        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.SESSION_SECRET:
            missing.append("SESSION_SECRET")
        if not self.DB_HOST:
            missing.append("DB_HOST")
        if not self.DB_NAME:
            missing.append("DB_NAME")
        if not self.DB_APP_USER:
            missing.append("DB_APP_USER")
        if not self.DB_APP_PASSWORD:
            missing.append("DB_APP_PASSWORD")
        if not self.COGNITO_REGION:
            missing.append("COGNITO_REGION")
        if not self.COGNITO_USER_POOL_ID:
            missing.append("COGNITO_USER_POOL_ID")
        if not self.COGNITO_APP_CLIENT_ID:
            missing.append("COGNITO_APP_CLIENT_ID")

        if self.DB_SSLMODE != "require":
            raise RuntimeError("DB_SSLMODE must be 'require' in prod")

        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")

        if self.SESSION_SECRET and len(self.SESSION_SECRET) < 32:
            raise RuntimeError("SESSION_SECRET must be at least 32 characters in prod")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def cognito_issuer(self) -> str:
        if not self.COGNITO_REGION or not self.COGNITO_USER_POOL_ID:
            return ""
        return f"https://cognito-idp.{self.COGNITO_REGION}.amazonaws.com/{self.COGNITO_USER_POOL_ID}"

    @property
    def cognito_jwks_url(self) -> str:
        issuer = self.cognito_issuer
        return f"{issuer}/.well-known/jwks.json" if issuer else ""

    def _build_database_url(self, user: str, password: str) -> str:
        encoded_password = quote_plus(password)
        return (
            f"postgresql+psycopg2://{user}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )

    @property
    def database_url(self) -> str:
        return self._build_database_url(self.DB_APP_USER, self.DB_APP_PASSWORD)

    @property
    def migrations_database_url(self) -> str:
        return self._build_database_url(self.DB_MIGRATOR_USER, self.DB_MIGRATOR_PASSWORD)


settings = Settings()


def require_session_secret() -> None:
    if not settings.SESSION_SECRET:
        raise RuntimeError("SESSION_SECRET must be set")
