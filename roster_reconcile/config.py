"""
Configuration Management
Centralized configuration for the roster reconciliation service
"""

import os
from dotenv import load_dotenv

load_dotenv()

# === File Storage Configuration ===
DATA_FOLDER = os.environ.get(
    "DATA_FOLDER",
    os.path.join(os.getcwd(), "data")
)
UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(DATA_FOLDER, "uploads"))
EXTRACT_FOLDER = os.environ.get("EXTRACT_FOLDER", os.path.join(DATA_FOLDER, "temp"))
OUTPUT_FOLDER = os.environ.get("OUTPUT_FOLDER", os.path.join(DATA_FOLDER, "output"))

# === File Size Limits ===
MAX_ARCHIVE_SIZE_MB = int(os.environ.get("MAX_ARCHIVE_SIZE_MB", "200"))  # 200 MB default
MAX_ARCHIVE_SIZE_BYTES = MAX_ARCHIVE_SIZE_MB * 1024 * 1024

# === Excel Limits ===
MAX_EXCEL_ROWS = int(os.environ.get("MAX_EXCEL_ROWS", "50000"))

# === Retention ===
RETENTION_HOURS = float(os.environ.get("RETENTION_HOURS", "24"))
RETENTION_SECONDS = RETENTION_HOURS * 60 * 60
CLEANUP_INTERVAL_MINUTES = float(os.environ.get("CLEANUP_INTERVAL_MINUTES", "60"))
CLEANUP_ENABLED = os.environ.get("CLEANUP_ENABLED", "1") == "1"

# === Documents ===
DOCUMENT_EXTENSION = os.environ.get("DOCUMENT_EXTENSION", ".pdf")

# Archives produced on Windows with a Chinese locale store GBK filenames
# without the UTF-8 flag.
ARCHIVE_FILENAME_ENCODING = os.environ.get("ARCHIVE_FILENAME_ENCODING", "cp936")

# === File Type Validation ===
ARCHIVE_ALLOWED_EXTENSIONS = {".zip", ".rar"}
ROSTER_ALLOWED_EXTENSIONS = {".xlsx", ".xlsm", ".xls"}

# === Rate Limiting ===
DEFAULT_RATE_LIMIT = os.environ.get("RATE_LIMIT", "60 per minute")

RATE_LIMITS = {
    "/api/upload-archive": os.environ.get("RATE_LIMIT_UPLOAD_ARCHIVE", "10 per minute"),
    "/api/upload-excel": os.environ.get("RATE_LIMIT_UPLOAD_EXCEL", "30 per minute"),
}

# === Security Configuration ===
ALLOWED_ORIGINS = os.environ.get("ALLOWED_ORIGINS", "*").split(",")
CORS_ENABLED = os.environ.get("CORS_ENABLED", "1") == "1"

# === Flask Configuration ===
FLASK_DEBUG = os.environ.get("FLASK_DEBUG", "0") == "1"
FLASK_HOST = os.environ.get("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.environ.get("FLASK_PORT", "3000"))


def as_flask_config() -> dict:
    """Settings copied into ``app.config`` by the application factory."""
    return {
        "UPLOAD_FOLDER": UPLOAD_FOLDER,
        "EXTRACT_FOLDER": EXTRACT_FOLDER,
        "OUTPUT_FOLDER": OUTPUT_FOLDER,
        "MAX_CONTENT_LENGTH": MAX_ARCHIVE_SIZE_BYTES,
        "MAX_EXCEL_ROWS": MAX_EXCEL_ROWS,
        "RETENTION_SECONDS": RETENTION_SECONDS,
        "CLEANUP_INTERVAL_SECONDS": CLEANUP_INTERVAL_MINUTES * 60,
        "CLEANUP_ENABLED": CLEANUP_ENABLED,
        "DOCUMENT_EXTENSION": DOCUMENT_EXTENSION,
        "ARCHIVE_FILENAME_ENCODING": ARCHIVE_FILENAME_ENCODING,
        "ARCHIVE_ALLOWED_EXTENSIONS": ARCHIVE_ALLOWED_EXTENSIONS,
        "ROSTER_ALLOWED_EXTENSIONS": ROSTER_ALLOWED_EXTENSIONS,
        "RATELIMIT_DEFAULT": DEFAULT_RATE_LIMIT,
        "RATELIMIT_ENABLED": True,
        "RATE_LIMITS": RATE_LIMITS,
        "ALLOWED_ORIGINS": ALLOWED_ORIGINS,
        "CORS_ENABLED": CORS_ENABLED,
    }
