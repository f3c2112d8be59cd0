import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./maintenance_scheduler.db")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Scheduling engine
# Upper bound on how many calendar days the multi-day allocator walks (3 months)
MAX_ALLOCATION_DAYS = int(os.getenv("MAX_ALLOCATION_DAYS", "90"))

# Time extension requests: 15 minutes to 4 hours per request
EXTENSION_MIN_MINUTES = int(os.getenv("EXTENSION_MIN_MINUTES", "15"))
EXTENSION_MAX_MINUTES = int(os.getenv("EXTENSION_MAX_MINUTES", "240"))

# When enabled, a finished assignment is approved into "completed" by the system
AUTO_APPROVE_FINISHED = os.getenv("AUTO_APPROVE_FINISHED", "false").lower() == "true"

# How many times a check-then-commit sequence is rerun after lock contention
COMMIT_RETRY_ATTEMPTS = int(os.getenv("COMMIT_RETRY_ATTEMPTS", "3"))
