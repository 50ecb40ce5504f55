import os


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development")
        self.APP_VERSION = os.getenv("APP_VERSION", "dev")
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", "5002"))

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./recruitflow.db")

        # "Today" for validity windows is the calendar date in this zone.
        self.APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Karachi")

        self.ALLOWED_ORIGINS = [
            s.strip() for s in (os.getenv("ALLOWED_ORIGINS", "*") or "*").split(",") if s.strip()
        ]

        self.UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")

        # Document storage for checklist attachments:
        # - local: store bytes in UPLOAD_DIR and serve via GET /files/<fileRef>?expires=...&sig=...
        # - gas: forward put/delete/sign calls to a Google Apps Script WebApp (Drive)
        self.FILE_STORAGE_MODE = os.getenv("FILE_STORAGE_MODE", "local").strip().lower()
        self.FILE_URL_SECRET = os.getenv("FILE_URL_SECRET", "").strip()
        self.SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))

        # Google Apps Script WebApp (used when FILE_STORAGE_MODE=gas)
        self.GAS_UPLOAD_URL = os.getenv("GAS_UPLOAD_URL", "").strip()
        self.GAS_UPLOAD_REQUEST_FORMAT = os.getenv("GAS_UPLOAD_REQUEST_FORMAT", "json").strip().lower()
        self.GAS_UPLOAD_TIMEOUT_SECONDS = float(os.getenv("GAS_UPLOAD_TIMEOUT_SECONDS", "30"))
        self.GAS_UPLOAD_API_KEY = os.getenv("GAS_UPLOAD_API_KEY", "").strip()
        self.GAS_UPLOAD_FOLDER_ID = os.getenv("GAS_UPLOAD_FOLDER_ID", "").strip()

        # Shared secret the upstream identity gateway sends with X-Actor-* headers (optional).
        self.ACTOR_HEADER_SECRET = os.getenv("ACTOR_HEADER_SECRET", "").strip()

        self.MEDICAL_VALIDITY_DAYS = int(os.getenv("MEDICAL_VALIDITY_DAYS", "60"))
        self.VISA_VALIDITY_DAYS = int(os.getenv("VISA_VALIDITY_DAYS", "90"))
        self.EXPIRY_WATCH_DAYS = int(os.getenv("EXPIRY_WATCH_DAYS", "15"))

        self.RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "300 per minute")
        self.RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "2000 per minute")

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in {"prod", "production"}

    def validate(self) -> None:
        if self.IS_PRODUCTION and str(self.DATABASE_URL or "").startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production")

        if self.IS_PRODUCTION and any(str(o or "").strip() == "*" for o in (self.ALLOWED_ORIGINS or [])):
            raise RuntimeError("ALLOWED_ORIGINS must not contain '*' in production")

        if self.IS_PRODUCTION and len(str(self.FILE_URL_SECRET or "")) < 16:
            raise RuntimeError("FILE_URL_SECRET must be a long random string in production")

        if str(self.FILE_STORAGE_MODE or "").strip().lower() not in {"local", "gas"}:
            raise RuntimeError("FILE_STORAGE_MODE must be 'local' or 'gas'")

        if str(self.FILE_STORAGE_MODE or "").strip().lower() == "gas" and not str(self.GAS_UPLOAD_URL or "").strip():
            raise RuntimeError("GAS_UPLOAD_URL must be set when FILE_STORAGE_MODE=gas")

        if self.MEDICAL_VALIDITY_DAYS <= 0 or self.VISA_VALIDITY_DAYS <= 0:
            raise RuntimeError("Validity windows must be positive day counts")
