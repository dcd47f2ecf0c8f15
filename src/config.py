import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = 86400  # 24 hours

    # AI personalization gateway (OpenAI-compatible chat completions)
    AI_API_KEY = os.environ.get('AI_API_KEY') or os.environ.get('NOVITA_API_KEY')
    AI_API_BASE_URL = os.environ.get('AI_API_BASE_URL', 'https://api.novita.ai/openai')
    AI_MODEL = os.environ.get('AI_MODEL') or os.environ.get('NOVITA_MODEL') or 'meta-llama/llama-3.3-70b-instruct'
    AI_TIMEOUT_SECONDS = int(os.environ.get('AI_TIMEOUT_SECONDS', '30'))

    # Email channel (Resend)
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    OUTREACH_EMAIL_FROM = os.environ.get('OUTREACH_EMAIL_FROM', 'outreach@example.com')
    RESEND_WEBHOOK_SECRET = os.environ.get('RESEND_WEBHOOK_SECRET')

    # Scheduler configuration
    SCHEDULER_TICK_SECONDS = int(os.environ.get('SCHEDULER_TICK_SECONDS', '60'))
    SCHEDULER_BATCH_SIZE = int(os.environ.get('SCHEDULER_BATCH_SIZE', '100'))
    CLAIM_VISIBILITY_TIMEOUT = int(os.environ.get('CLAIM_VISIBILITY_TIMEOUT', '300'))  # 5 minutes
    AUTO_GENERATE = os.environ.get('AUTO_GENERATE', 'true').lower() == 'true'
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'false').lower() == 'true'

    # Stats cache
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    STATS_CACHE_TTL = int(os.environ.get('STATS_CACHE_TTL', '60'))

    # CORS configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///outreach_sequences.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = True

    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False

    # Production database (PostgreSQL)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Production security settings
    SECRET_KEY = os.environ.get('SECRET_KEY')
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY')

    # Production CORS (more restrictive)
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',')

    @classmethod
    def validate_config(cls):
        """Validate production configuration."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable is required for production")

        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable is required for production")

        if not cls.JWT_SECRET_KEY:
            raise ValueError("JWT_SECRET_KEY environment variable is required for production")

        if not cls.AI_API_KEY:
            raise ValueError("AI_API_KEY environment variable is required for production")

        if not cls.RESEND_API_KEY:
            raise ValueError("RESEND_API_KEY environment variable is required for production")

        if not cls.CORS_ORIGINS or cls.CORS_ORIGINS == ['']:
            raise ValueError("CORS_ORIGINS environment variable is required for production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AI_API_KEY = 'test-ai-key'
    RESEND_API_KEY = None
    RESEND_WEBHOOK_SECRET = None
    START_SCHEDULER = False
    # Never reach out to a real Redis from the test suite
    REDIS_URL = None


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
