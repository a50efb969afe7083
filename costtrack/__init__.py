import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from dotenv import load_dotenv

from .config import DevConfig, ProdConfig, TestConfig

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

CONFIGS = {
    'development': DevConfig,
    'production': ProdConfig,
    'testing': TestConfig,
}


def _engine_options(cfg) -> dict:
    """Bound every call to the store by the configured timeout."""
    uri = cfg['SQLALCHEMY_DATABASE_URI']
    timeout = cfg['DB_TIMEOUT']
    if uri.startswith('sqlite'):
        return {'connect_args': {'timeout': timeout}}
    return {'pool_timeout': timeout, 'pool_pre_ping': True}


def create_app(config_name: str | None = None) -> Flask:
    """Application factory with environment based configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    # Pick configuration
    env = config_name or os.getenv('ENV') or os.getenv('FLASK_ENV') or 'production'
    cfg_cls = CONFIGS.get(env, ProdConfig)
    app.config.from_object(cfg_cls)
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', _engine_options(app.config))

    # Initialise logging
    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure models loaded so tables can be created
    from costtrack import models  # noqa
    with app.app_context():
        db.create_all()

    from costtrack.errors import CostTrackError

    @app.errorhandler(CostTrackError)
    def cost_error(err):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def not_found(_):
        return jsonify(error='not_found', message='Resource not found'), 404

    @app.errorhandler(500)
    def server_error(_):
        return jsonify(error='server_error', message='Internal server error'), 500

    @app.route('/')
    def index():
        return jsonify(service='costtrack', status='ok')

    from costtrack.sites.routes import bp as sites_bp
    from costtrack.estimates.routes import bp as estimates_bp
    from costtrack.actuals.routes import bp as actuals_bp
    from costtrack.variance.routes import bp as variance_bp
    from costtrack.reports.routes import bp as reports_bp
    from costtrack.cli import costs_cli

    app.register_blueprint(sites_bp, url_prefix='/sites')
    app.register_blueprint(estimates_bp, url_prefix='/estimates')
    app.register_blueprint(actuals_bp, url_prefix='/actuals')
    app.register_blueprint(variance_bp, url_prefix='/variance')
    app.register_blueprint(reports_bp, url_prefix='/reports')
    app.cli.add_command(costs_cli)

    return app
