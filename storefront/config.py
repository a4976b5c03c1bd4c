import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_JWT_SECRET = "change-me-in-production"
DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:4000",
)


def parse_day_duration(value: Optional[str], setting_name: str) -> int:
    """Parse a day count written with a trailing unit suffix, e.g. ``"7d"``."""
    candidate = str(value or "").strip().lower()
    if not candidate:
        raise ConfigurationError(f"{setting_name} is not configured.")
    if not candidate.endswith("d"):
        raise ConfigurationError(
            f"{setting_name} must be a day count with a 'd' suffix, e.g. '7d' (got {value!r})."
        )
    try:
        days = int(candidate[:-1])
    except ValueError:
        raise ConfigurationError(
            f"{setting_name} must be a day count with a 'd' suffix, e.g. '7d' (got {value!r})."
        ) from None
    if days <= 0:
        raise ConfigurationError(f"{setting_name} must be at least one day.")
    return days


def _positive_int(raw: Optional[str], setting_name: str, default: int) -> int:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{setting_name} must be an integer (got {raw!r}).") from None
    if value <= 0:
        raise ConfigurationError(f"{setting_name} must be greater than zero.")
    return value


def _clean(raw: Optional[str]) -> str:
    return (raw or "").strip()


@dataclass(frozen=True)
class Settings:
    cookie_expire_days: int
    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_expires: timedelta = timedelta(days=7)
    production: bool = False
    mongo_uri: str = "mongodb://localhost:27017/storefront"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    products_per_page: int = 8
    upload_folder: str = ""
    max_upload_mb: int = 16
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    resend_api_key: str = ""
    mail_sender: str = "Storefront <no-reply@storefront.local>"
    sumup_client_id: str = ""
    sumup_client_secret: str = ""
    sumup_merchant_email: str = ""
    payment_currency: str = "EUR"

    @property
    def cookie_lifetime(self) -> timedelta:
        return timedelta(days=self.cookie_expire_days)

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read and validate every setting once, at process start.

        Any missing or malformed required value raises ``ConfigurationError``
        so a broken deployment fails before accepting its first request.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        cookie_expire_days = parse_day_duration(environ.get("COOKIE_EXPIRE"), "COOKIE_EXPIRE")

        raw_jwt_expire = environ.get("JWT_EXPIRE")
        if raw_jwt_expire is not None and raw_jwt_expire.strip():
            jwt_expires = timedelta(days=parse_day_duration(raw_jwt_expire, "JWT_EXPIRE"))
        else:
            jwt_expires = timedelta(days=cookie_expire_days)

        production = _clean(environ.get("APP_ENV")).upper() == "PRODUCTION"
        jwt_secret_key = _clean(environ.get("JWT_SECRET_KEY")) or DEFAULT_JWT_SECRET
        if production and jwt_secret_key == DEFAULT_JWT_SECRET:
            raise ConfigurationError("JWT_SECRET_KEY must be set in production.")

        cors_origins = list(DEFAULT_CORS_ORIGINS)
        cors_extra = environ.get("CORS_ALLOWED_ORIGINS", "")
        if cors_extra:
            for origin in cors_extra.split(","):
                trimmed = origin.strip()
                if trimmed and trimmed not in cors_origins:
                    cors_origins.append(trimmed)

        return cls(
            cookie_expire_days=cookie_expire_days,
            jwt_secret_key=jwt_secret_key,
            jwt_expires=jwt_expires,
            production=production,
            mongo_uri=_clean(environ.get("MONGO_URI")) or "mongodb://localhost:27017/storefront",
            cors_origins=cors_origins,
            products_per_page=_positive_int(
                environ.get("PRODUCTS_PER_PAGE"), "PRODUCTS_PER_PAGE", 8
            ),
            upload_folder=_clean(environ.get("UPLOAD_FOLDER")),
            max_upload_mb=_positive_int(
                environ.get("MAX_UPLOAD_SIZE_MB"), "MAX_UPLOAD_SIZE_MB", 16
            ),
            cloudinary_cloud_name=_clean(environ.get("CLOUDINARY_CLOUD_NAME")),
            cloudinary_api_key=_clean(environ.get("CLOUDINARY_API_KEY")),
            cloudinary_api_secret=_clean(environ.get("CLOUDINARY_API_SECRET")),
            resend_api_key=_clean(environ.get("RESEND_API_KEY")),
            mail_sender=_clean(environ.get("MAIL_SENDER"))
            or "Storefront <no-reply@storefront.local>",
            sumup_client_id=_clean(environ.get("SUMUP_CLIENT_ID")),
            sumup_client_secret=_clean(environ.get("SUMUP_CLIENT_SECRET")),
            sumup_merchant_email=_clean(environ.get("SUMUP_MERCHANT_EMAIL")),
            payment_currency=_clean(environ.get("PAYMENT_CURRENCY")).upper() or "EUR",
        )
