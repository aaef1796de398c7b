# Deploy on Replit: Set secrets and run 'uvicorn server:app --host=0.0.0.0 --port=8000'
import logging
import os

from dotenv import load_dotenv

from campus_checkin.api import create_app
from campus_checkin.config import load_settings
from campus_checkin.main import configure_logging

load_dotenv()

configure_logging(os.getenv("LOG_LEVEL", "info"))
logger = logging.getLogger("campus_checkin")

settings = load_settings()
if settings.store_backend == "sqlite":
    logger.warning("STORE_BACKEND is sqlite; events are stored locally in %s", settings.database_path)
if not settings.connectivity_check_url:
    logger.warning("CONNECTIVITY_CHECK_URL is not set. The service will assume it is always online.")

app = create_app(settings)
