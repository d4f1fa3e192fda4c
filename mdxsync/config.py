from pathlib import Path
import dotenv
import logging
import os


ROOT = Path(__file__).parent.parent

dotenv.load_dotenv(ROOT / '.env')

# Logging configuration
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name"""
    logger = logging.getLogger(name)
    logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())
    return logger


# Default locations
DEFAULT_DATABASE_PATH = './data/content.sqlite'

# GitHub API settings
GITHUB_API_URL = 'https://api.github.com'
GITHUB_API_VERSION = '2022-11-28'
USER_AGENT = 'mdxsync/0.1'

# Environment variable names
GITHUB_TOKEN_ENV = 'GITHUB_TOKEN'
WEBHOOK_SECRET_ENV = 'GITHUB_WEBHOOK_SECRET'
