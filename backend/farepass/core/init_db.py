import logging
from pathlib import Path

from .crypto import load_server_keys, write_server_keys
from .settings import settings

logger = logging.getLogger(__name__)


def init_keys():
    try:
        load_server_keys()
        logger.info("Server signing keys loaded.")
    except FileNotFoundError:
        keys_dir = Path(settings.KEYS_DIR)
        logger.info("Generating server RSA keys (2048 bits) in %s...", keys_dir)
        write_server_keys(keys_dir)
        logger.info("Server keys created successfully.")
