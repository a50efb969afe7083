import os


def _flag(name, default='false'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///costtrack.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    DB_TIMEOUT = float(os.getenv('DB_TIMEOUT', '10'))

    # Variance alerting and ranking
    VARIANCE_ALERT_THRESHOLD = float(os.getenv('VARIANCE_ALERT_THRESHOLD', '20'))
    ALERT_INCLUDE_UNDER_BUDGET = _flag('ALERT_INCLUDE_UNDER_BUDGET')
    TOP_VARIANCES_LIMIT = int(os.getenv('TOP_VARIANCES_LIMIT', '10'))

    # Re-derive recorded actuals when their estimate item is edited
    RECOMPUTE_ACTUALS_ON_ITEM_EDIT = _flag('RECOMPUTE_ACTUALS_ON_ITEM_EDIT')

    REPORT_COMPANY_NAME = os.getenv('REPORT_COMPANY_NAME', 'Construction Cost Tracker')
    REPORT_CURRENCY = os.getenv('REPORT_CURRENCY', 'GHS')

class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'

class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'

class TestConfig(BaseConfig):
    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    VARIANCE_ALERT_THRESHOLD = 20.0
    ALERT_INCLUDE_UNDER_BUDGET = False
    TOP_VARIANCES_LIMIT = 10
    RECOMPUTE_ACTUALS_ON_ITEM_EDIT = False
