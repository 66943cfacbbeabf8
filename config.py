"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # The API is JSON only, forms are used for validation
    WTF_CSRF_ENABLED = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'minierp')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'minierp')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'minierp')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '10'))
    DB_MAX_OVERFLOW = int(os.getenv('DB_MAX_OVERFLOW', '20'))

    # Startup supervisor
    DB_CONNECT_RETRIES = int(os.getenv('DB_CONNECT_RETRIES', '3'))
    DB_CONNECT_RETRY_DELAY = float(os.getenv('DB_CONNECT_RETRY_DELAY', '2'))

    # Stock ledger: 0 disables the lock/statement timeout
    LEDGER_LOCK_TIMEOUT_MS = int(os.getenv('LEDGER_LOCK_TIMEOUT_MS', '5000'))

    # Products below this stock level are reported as low stock
    LOW_STOCK_THRESHOLD = int(os.getenv('LOW_STOCK_THRESHOLD', '10'))

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_REPORTS_TTL = int(os.getenv('CACHE_REPORTS_TTL', '60'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'minierp')

    # Advisory service (OpenAI compatible chat completions endpoint)
    AI_API_BASE_URL = os.getenv('AI_API_BASE_URL', 'https://integrate.api.nvidia.com/v1')
    AI_API_KEY = os.getenv('AI_API_KEY') or os.getenv('NVIDIA_API_KEY')
    AI_MODEL = os.getenv('AI_MODEL', 'nvidia/llama-3.3-nemotron-super-49b-v1.5')
    AI_TIMEOUT = float(os.getenv('AI_TIMEOUT', '20'))

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestingConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///minierp-test.db')
    SQLALCHEMY_ECHO = False
    LEDGER_LOCK_TIMEOUT_MS = 0
    CACHE_ENABLED = False
    AI_API_KEY = None
    DB_CONNECT_RETRIES = 1
    DB_CONNECT_RETRY_DELAY = 0
