import os
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS

db = SQLAlchemy()
migrate = Migrate()

RUN_STATUS_EXTENSION = 'pesos.run_status'


def create_app(test_config=None):
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///pesos.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Feed synchronization
    app.config['FEED_FETCH_TIMEOUT'] = float(os.getenv('FEED_FETCH_TIMEOUT', 10))
    app.config['FEED_USER_AGENT'] = os.getenv('FEED_USER_AGENT', 'PESOS RSS Aggregator/1.0')
    app.config['SYNC_BATCH_SIZE'] = int(os.getenv('SYNC_BATCH_SIZE', 5))
    app.config['SYNC_BATCH_DELAY'] = float(os.getenv('SYNC_BATCH_DELAY', 0.1))
    app.config['SYNC_MAX_ITEMS_PER_FEED'] = int(os.getenv('SYNC_MAX_ITEMS_PER_FEED', 50))
    app.config['FAILURE_COOLDOWN_HOURS'] = float(os.getenv('FAILURE_COOLDOWN_HOURS', 24))
    app.config['MISSING_DATE_POLICY'] = os.getenv('MISSING_DATE_POLICY', 'now')
    app.config['UNTITLED_PLACEHOLDER'] = os.getenv('UNTITLED_PLACEHOLDER', '•')
    app.config['RUN_LOG_LIMIT'] = int(os.getenv('RUN_LOG_LIMIT', 1000))
    app.config['CRON_SECRET_TOKEN'] = os.getenv('CRON_SECRET_TOKEN')

    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # CORS configuration - secure for production
    allowed_origins = os.getenv('CORS_ORIGINS', '*')
    if allowed_origins != '*':
        origins = [o.strip() for o in allowed_origins.split(',')]
    else:
        origins = '*'
    CORS(app, origins=origins)

    # One run status per process; concurrent runs are only excluded within it
    from pesos.services.run_status import RunStatus
    app.extensions[RUN_STATUS_EXTENSION] = RunStatus.from_config(app.config)

    # Register blueprints
    from pesos.routes.sync import sync_bp
    from pesos.routes.api import api_bp

    app.register_blueprint(sync_bp, url_prefix='/api/v1')
    app.register_blueprint(api_bp, url_prefix='/api/v1')

    # Create tables
    with app.app_context():
        db.create_all()

    return app


def get_run_status(app):
    """Return the RunStatus owned by the given app."""
    return app.extensions[RUN_STATUS_EXTENSION]
