from supabase import create_client, Client
from typing import Optional
from core.config import Settings
import logging

logger = logging.getLogger(__name__)


def create_db_client(settings: Settings) -> Optional[Client]:
    """Build the Supabase client. Owned by the application lifespan, not a module global."""
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        logger.error(
            "❌ SUPABASE_URL or SUPABASE_KEY is empty! "
            f"Check that your .env file exists and is readable. "
            f"Expected .env path: {settings.model_config.get('env_file', 'unknown')}"
        )
        return None
    try:
        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
        logger.info("✅ Supabase client initialized successfully")
        return client
    except Exception as e:
        logger.error(f"❌ Could not initialize Supabase client: {e}")
        return None
