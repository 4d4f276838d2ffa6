# config.py
import os
import secrets
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance', 'studyhub.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Host used to build absolute links in outgoing e-mail
    APP_HOST = os.environ.get('APP_HOST', 'http://localhost:5001')

    # Email settings
    MAIL_SERVER = os.environ.get('MAIL_SERVER')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 587))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'True').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@studyhub.local')

    BCRYPT_LOG_ROUNDS = int(os.environ.get('BCRYPT_LOG_ROUNDS', 12))

    # Policy constants
    RECRUITING_COOLDOWN = timedelta(
        minutes=int(os.environ.get('RECRUITING_COOLDOWN_MINUTES', 60))
    )
    EMAIL_TOKEN_RESEND_COOLDOWN = timedelta(
        minutes=int(os.environ.get('EMAIL_TOKEN_RESEND_COOLDOWN_MINUTES', 5))
    )

    # Domain event delivery: "scheduler" runs handlers on the APScheduler
    # thread pool after commit, "inline" runs them right after commit.
    EVENT_DISPATCH_MODE = os.environ.get('EVENT_DISPATCH_MODE', 'scheduler')
    DISPATCH_MAX_RETRIES = int(os.environ.get('DISPATCH_MAX_RETRIES', 3))
    DISPATCH_RETRY_DELAY = timedelta(
        seconds=int(os.environ.get('DISPATCH_RETRY_DELAY_SECONDS', 60))
    )

    SCHEDULER_API_ENABLED = False
    SCHEDULER_JOB_DEFAULTS = {
        'coalesce': False,
        'max_instances': 1,
        'misfire_grace_time': 3600,  # 1 h tolerance
    }


class DevelopmentConfig(Config):
    DEBUG = True
    FLASK_ENV = 'development'


class ProductionConfig(Config):
    DEBUG = False
    FLASK_ENV = 'production'
    APP_HOST = os.environ.get('PROD_APP_HOST') or os.environ.get('APP_HOST', 'http://localhost:5001')


# Function to get the appropriate config
def get_config():
    env = os.environ.get('FLASK_ENV', 'development').lower()
    if env == 'production':
        if not os.environ.get('SECRET_KEY'):
            import warnings
            warnings.warn('SECRET_KEY not set. A random key is generated on every start.')
        return ProductionConfig()
    return DevelopmentConfig()
