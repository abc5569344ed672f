import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///tutoring.db")

CONFIG_PATH = os.getenv("TUTORING_CONFIG", "config.json")

LOG_LEVEL = os.getenv("TUTORING_LOG_LEVEL", "INFO")

# Flush the working set back to the store when the app shuts down.
SYNC_ON_SHUTDOWN = os.getenv("TUTORING_SYNC_ON_SHUTDOWN", "1") not in ("0", "false", "no")
