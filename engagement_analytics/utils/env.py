import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def load_env_file() -> bool:
    """Load variables from a local .env file without overwriting existing ones.

    WHAT:
        Reads .env into os.environ; variables already set win.
    WHY:
        Developers keep DATABASE_URL in .env; deployments export it.
    """
    loaded = load_dotenv(override=False)
    if loaded:
        logger.info("Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("No local .env file found or loaded")
    return loaded
