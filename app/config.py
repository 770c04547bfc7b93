import os
from dotenv import load_dotenv

load_dotenv()

# Backend for the document store: sql, memory or firestore
DOCUMENT_STORE = os.getenv("DOCUMENT_STORE", "sql").strip().lower()
DB_URL = os.getenv("DB_URL", "sqlite:///./downloads.db")
DB_CONNECT_ARGS = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

# Firestore (falls back to GOOGLE_CLOUD_PROJECT / default database when unset)
FIRESTORE_PROJECT = os.getenv("FIRESTORE_PROJECT") or None
FIRESTORE_DATABASE = os.getenv("FIRESTORE_DATABASE") or None

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
API_KEY = os.getenv("API_KEY")
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Consistency auditor
ENABLE_AUDITOR = os.getenv("ENABLE_AUDITOR", "false").lower() in {"true", "1", "yes"}
AUDIT_INTERVAL_MINUTES = max(1, int(os.getenv("AUDIT_INTERVAL_MINUTES", "60")))

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "")
