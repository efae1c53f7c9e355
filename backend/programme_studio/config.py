from __future__ import annotations

import os


DATABASE_URL = os.getenv("PDS_DATABASE_URL", "sqlite:///./pds.db")
SESSION_SECRET = os.getenv("PDS_SESSION_SECRET", "change-me")
SESSION_SALT = "pds"
CORS_ORIGINS = [x.strip() for x in os.getenv("PDS_CORS_ORIGINS", "*").split(",") if x.strip()]
LOG_LEVEL = os.getenv("PDS_LOG_LEVEL", "INFO").upper()
SAVE_DEBOUNCE_SECONDS = float(os.getenv("PDS_SAVE_DEBOUNCE_SECONDS", "0.4"))
CURRENT_SCHEMA_VERSION = 4
