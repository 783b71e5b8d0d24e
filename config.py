"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'gestion')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'gestion')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'gestion')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Purchasing
    LOCAL_CURRENCY = os.getenv('LOCAL_CURRENCY', 'ARS')
    # LAST (costo de la última compra completada) | WEIGHTED_AVERAGE
    COST_POLICY = os.getenv('COST_POLICY', 'LAST').upper()
    PURCHASES_PAGE_SIZE = int(os.getenv('PURCHASES_PAGE_SIZE', '10'))

    # Transactions (large purchases can hold product locks for a while)
    PURCHASE_TX_TIMEOUT_MS = int(os.getenv('PURCHASE_TX_TIMEOUT_MS', '60000'))
    PURCHASE_MAX_RETRIES = int(os.getenv('PURCHASE_MAX_RETRIES', '3'))
    PURCHASE_RETRY_BASE_DELAY = float(os.getenv('PURCHASE_RETRY_BASE_DELAY', '1.0'))  # seconds
    PURCHASE_RETRY_MAX_DELAY = float(os.getenv('PURCHASE_RETRY_MAX_DELAY', '5.0'))


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    COST_POLICY = 'LAST'
    PURCHASE_RETRY_BASE_DELAY = 0.0
    PURCHASE_RETRY_MAX_DELAY = 0.0
