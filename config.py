import os


def _env_bool(name, default=False):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class BaseConfig:
    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")

    # 🗄Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///staff_ledger.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FILE = "ledger.log"

    # Per-staff critical section + retry of concurrency errors
    LEDGER_LOCK_TIMEOUT_SECONDS = float(os.getenv("LEDGER_LOCK_TIMEOUT_SECONDS", 5))
    LEDGER_RETRY_ATTEMPTS = int(os.getenv("LEDGER_RETRY_ATTEMPTS", 3))
    LEDGER_RETRY_BACKOFF_SECONDS = float(os.getenv("LEDGER_RETRY_BACKOFF_SECONDS", 0.05))

    # Authorization through the role permission matrix
    LEDGER_ENFORCE_PERMISSIONS = _env_bool("LEDGER_ENFORCE_PERMISSIONS", True)

    # Leave policy
    # bit N set => weekday N (Mon=0 .. Sun=6) is a weekly day off. 96 = Sat + Sun
    LEAVE_WEEKLY_OFF_MASK = int(os.getenv("LEAVE_WEEKLY_OFF_MASK", 96))
    LEAVE_ALLOW_NEGATIVE_BALANCE = _env_bool("LEAVE_ALLOW_NEGATIVE_BALANCE", False)

    # Default window (days) for qualification expiry alerts
    QUALIFICATION_ALERT_DAYS = int(os.getenv("QUALIFICATION_ALERT_DAYS", 30))

    # Background sweep flipping past-expiry qualifications to "expired"
    QUALIFICATION_EXPIRY_WORKER = _env_bool("QUALIFICATION_EXPIRY_WORKER", False)
    QUALIFICATION_EXPIRY_INTERVAL_SECONDS = int(os.getenv("QUALIFICATION_EXPIRY_INTERVAL_SECONDS", 6 * 60 * 60))


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    DEBUG = False


class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LEDGER_LOCK_TIMEOUT_SECONDS = 0.2
    LEDGER_RETRY_BACKOFF_SECONDS = 0
    LEDGER_ENFORCE_PERMISSIONS = True
    LEAVE_ALLOW_NEGATIVE_BALANCE = False
    QUALIFICATION_EXPIRY_WORKER = False
