import os
import logging
from dotenv import load_dotenv
import sys

# --- Load Environment Variables ---
load_dotenv() # Load variables from .env file

# --- Logging Setup ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Basic configuration - logs LOG_LEVEL and higher to stdout
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
                    stream=sys.stdout)

# Get a logger instance for the application
logger = logging.getLogger("VsixGallery")

# --- Gallery Configuration ---

# Base URL the stored blobs are served from. Download and icon links are built from it.
STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "")
FEED_ID = os.getenv("FEED_ID", "Gallery")
FEED_TITLE = os.getenv("FEED_TITLE", "Gallery")

# Keep the original <published> timestamp when a package id is republished.
preserve_published_str = os.getenv("PRESERVE_PUBLISHED", "false")
PRESERVE_PUBLISHED = preserve_published_str.lower() in ('true', '1', 't', 'yes', 'y')

# --- Store Configuration ---
STORE_DIR = os.getenv("STORE_DIR", "gallery")
FEED_FILE_NAME = os.getenv("FEED_FILE_NAME", "atom.xml")

DEFAULT_PUBLISH_MAX_ATTEMPTS = 5
max_attempts_str = os.getenv("PUBLISH_MAX_ATTEMPTS", str(DEFAULT_PUBLISH_MAX_ATTEMPTS))
try:
    PUBLISH_MAX_ATTEMPTS = int(max_attempts_str)
    if PUBLISH_MAX_ATTEMPTS < 1:
        raise ValueError(max_attempts_str)
except ValueError:
    logger.warning(f"Invalid PUBLISH_MAX_ATTEMPTS value: {max_attempts_str}. Using default of {DEFAULT_PUBLISH_MAX_ATTEMPTS}.")
    PUBLISH_MAX_ATTEMPTS = DEFAULT_PUBLISH_MAX_ATTEMPTS


# --- Validation ---
# The base URL is only required when publishing, so it is checked by the caller.
if not STORAGE_BASE_URL:
    logger.debug("STORAGE_BASE_URL environment variable not set.")

logger.debug("Configuration loaded successfully.")
