import os
import logging
from flask import Flask

from .config import config
from .models import db
from .tournament_lifecycle import TournamentLifecycle
from .registration_controller import RegistrationAdmissionController
from shared.pubsub import EventPublisher

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, overrides: dict = None) -> Flask:
    """Application factory for the lobby core.

    The app only carries configuration, the database session and the two
    services; transport lives in the command layer that embeds it.
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    # Initialize extensions
    db.init_app(app)

    publisher = EventPublisher()
    if app.config.get('PUBLISH_EVENTS'):
        publisher = EventPublisher.from_url(app.config['REDIS_URL'])
        logger.info(f"Publishing lobby events to {app.config['REDIS_URL']}")

    # Create tables
    with app.app_context():
        db.create_all()

    # Store services on app for access by the command layer
    app.publisher = publisher
    app.lifecycle = TournamentLifecycle(publisher)
    app.admissions = RegistrationAdmissionController(publisher)

    return app
