# Runtime settings. Everything comes from the environment (or backend/.env) so the
# same code runs against a laptop SQLite file and a hosted Postgres.
import os
from dotenv import load_dotenv

load_dotenv()

API_VERSION = os.getenv("CARDFLOW_API_VERSION", "0.1.0")

# ---- server ----
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cardflow.db")
SESSION_TTL_HOURS = int(os.getenv("CARDFLOW_SESSION_TTL_HOURS", "168"))     # abandoned sessions expire after a week
SESSION_CREATE_LIMIT = int(os.getenv("CARDFLOW_SESSION_CREATE_LIMIT", "30"))  # creates per client per window
SESSION_CREATE_WINDOW_SECONDS = int(os.getenv("CARDFLOW_SESSION_CREATE_WINDOW_SECONDS", "60"))
OPENAI_MODEL = os.getenv("CARDFLOW_OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("CARDFLOW_OPENAI_TEMPERATURE", "0.7"))
LOG_LEVEL = os.getenv("CARDFLOW_LOG_LEVEL", "INFO")
API_HOST = os.getenv("CARDFLOW_HOST", "127.0.0.1")
API_PORT = int(os.getenv("CARDFLOW_PORT", "8000"))

# ---- client / engine ----
API_BASE_URL = os.getenv("CARDFLOW_API_URL", "http://localhost:8000/api")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("CARDFLOW_REQUEST_TIMEOUT_SECONDS", "10"))
MIN_TRACKING_TIME_SECONDS = 1   # sub-second card dwell is noise from quick back/forward clicks
DEFAULT_SUCCESS_MESSAGE = os.getenv("CARDFLOW_SUCCESS_MESSAGE", "Thank you! Your response has been recorded.")
