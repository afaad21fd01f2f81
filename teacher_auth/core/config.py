import os

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./teacher_auth.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# PIN policy
PIN_LENGTH = int(os.getenv("PIN_LENGTH", "6"))
MAX_FAILED_ATTEMPTS = int(os.getenv("MAX_FAILED_ATTEMPTS", "3"))
LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "15"))
PIN_EXPIRY_DAYS = int(os.getenv("PIN_EXPIRY_DAYS", "90"))

# "sha256" keeps digests compatible with records hashed by the legacy service;
# "bcrypt" switches new hashes to a per-hash random salt.
PIN_HASH_SCHEME = os.getenv("PIN_HASH_SCHEME", "sha256").strip().lower()
if PIN_HASH_SCHEME not in {"sha256", "bcrypt"}:
    PIN_HASH_SCHEME = "sha256"
PIN_HASH_SALT = os.getenv("PIN_HASH_SALT", "TeacherPinSalt")

DEMO_ENDPOINTS_ENABLED = _env_flag("DEMO_ENDPOINTS_ENABLED", "1" if IS_DEV else "0")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
