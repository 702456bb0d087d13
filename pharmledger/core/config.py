# pharmledger/core/config.py
import os
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Pharmacy Ledger")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- MySQL ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "pharmacy_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "pharmacy_ledger")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins when set (sqlite for local runs and tests)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+{self.DB_DRIVER}://{quote_plus(self.MYSQL_USER)}:{quote_plus(self.MYSQL_PASSWORD)}"
            f"@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}?charset=utf8mb4")

    # ---------- Pharmacy ----------
    PHARMACY_NAME: str = os.getenv("PHARMACY_NAME", "Western Pharmacy")
    DEFAULT_TABLETS_PER_STRIP: int = int(
        os.getenv("DEFAULT_TABLETS_PER_STRIP", "10"))
    LOW_STOCK_THRESHOLD: int = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
    EXPIRY_WARNING_DAYS: int = int(os.getenv("EXPIRY_WARNING_DAYS", "30"))

    # ---------- Billing ----------
    BILL_NUMBER_PREFIX: str = os.getenv("BILL_NUMBER_PREFIX", "BILL-")
    BILL_NUMBER_PADDING: int = int(os.getenv("BILL_NUMBER_PADDING", "4"))

    # ---------- Import / backup ----------
    SNAPSHOT_VERSION: int = int(os.getenv("SNAPSHOT_VERSION", "1"))
    IMPORT_CHUNK_SIZE: int = int(os.getenv("IMPORT_CHUNK_SIZE", "50"))
    BACKUP_REMINDER_DAYS: int = int(os.getenv("BACKUP_REMINDER_DAYS", "7"))

    # ---------- License ----------
    LICENSE_IS_DEMO: bool = _env_bool("LICENSE_IS_DEMO")
    LICENSE_DEMO_EXPIRES_AT: Optional[str] = os.getenv(
        "LICENSE_DEMO_EXPIRES_AT") or None
    LICENSE_EXPIRES_AT: Optional[str] = os.getenv("LICENSE_EXPIRES_AT") or None
    LICENSE_GRACE_DAYS: int = int(os.getenv("LICENSE_GRACE_DAYS", "7"))
    # when false, writes are not gated at all (initial setup)
    LICENSE_ENFORCED: bool = _env_bool("LICENSE_ENFORCED", "true")


settings = Settings()
