#!/usr/bin/env python3
"""
Relay Configuration
Environment-driven settings for the poll relay backend
"""
import os

from dotenv import load_dotenv

# Class attributes below read the environment at import time
load_dotenv()


class RelayConfig:
    """Configuration for the poll relay"""

    # Service Configuration
    SERVICE_HOST = os.getenv('POLLCAST_HOST', '0.0.0.0')
    SERVICE_PORT = int(os.getenv('POLLCAST_PORT', 8787))
    DEBUG = os.getenv('POLLCAST_DEBUG', 'false').lower() == 'true'

    # Telegram
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_API_BASE = os.getenv('TELEGRAM_API_BASE', 'https://api.telegram.org/bot')
    WEBHOOK_SECRET = os.getenv('WEBHOOK_SECRET', '')
    PROVIDER_TIMEOUT = int(os.getenv('POLLCAST_PROVIDER_TIMEOUT', 10))

    # Redis
    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 0))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD') or None
    KEY_PREFIX = os.getenv('POLLCAST_KEY_PREFIX', 'pollcast:')

    # Rate limits and TTLs (seconds)
    RATE_LIMIT_SECONDS = int(os.getenv('POLLCAST_RATE_LIMIT_SECONDS', 60))
    CODE_TTL_SECONDS = int(os.getenv('POLLCAST_CODE_TTL', 600))
    CODE_REQUEST_COOLDOWN_SECONDS = int(os.getenv('POLLCAST_CODE_COOLDOWN', 120))
    ACTIVITY_TTL_SECONDS = int(os.getenv('POLLCAST_ACTIVITY_TTL', 21600))
    SESSION_TTL_SECONDS = int(os.getenv('POLLCAST_SESSION_TTL', 600))

    # Fan-out and lookup bounds
    BROADCAST_MAX_WORKERS = int(os.getenv('POLLCAST_BROADCAST_WORKERS', 16))
    REVERSE_LOOKUP_SCAN_LIMIT = int(os.getenv('POLLCAST_REVERSE_SCAN_LIMIT', 500))

    # Logging Configuration
    LOG_LEVEL = os.getenv('POLLCAST_LOG_LEVEL', 'INFO')

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if cls.SERVICE_PORT < 1024 or cls.SERVICE_PORT > 65535:
            issues.append("SERVICE_PORT must be between 1024 and 65535")

        if not cls.TELEGRAM_BOT_TOKEN:
            issues.append("TELEGRAM_BOT_TOKEN is not set; messages will fail to send")

        if cls.RATE_LIMIT_SECONDS < 60:
            # Redis accepts shorter TTLs, but the client treats 60s as the retry hint
            issues.append("RATE_LIMIT_SECONDS should be at least 60")

        if cls.BROADCAST_MAX_WORKERS < 1:
            issues.append("BROADCAST_MAX_WORKERS must be positive")

        if cls.REVERSE_LOOKUP_SCAN_LIMIT < 1:
            issues.append("REVERSE_LOOKUP_SCAN_LIMIT must be positive")

        return issues


# Environment-specific configurations
class DevelopmentConfig(RelayConfig):
    """Development environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(RelayConfig):
    """Production environment configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'


class TestConfig(RelayConfig):
    """Test environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    TELEGRAM_BOT_TOKEN = 'test-bot-token'
    WEBHOOK_SECRET = 'test-webhook-secret'
    KEY_PREFIX = 'pollcast-test:'
    BROADCAST_MAX_WORKERS = 4
    REVERSE_LOOKUP_SCAN_LIMIT = 50


# Configuration factory
def get_config(env=None):
    """Get configuration based on environment"""
    env = env or os.getenv('POLLCAST_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'test': TestConfig
    }

    return configs.get(env, DevelopmentConfig)
