"""
Pytest configuration and fixtures for lobby tests.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from lobby.app import create_app
from lobby.models import db, User, Team, Tournament, Registration
from shared.permissions import Actor


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


def actor_for(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


@pytest.fixture
def users(app, db_session):
    """Admin, two organizers and four players."""
    specs = [
        ('admin', 'ADMIN'),
        ('organizer', 'ORGANIZER'),
        ('other_organizer', 'ORGANIZER'),
        ('player1', 'PLAYER'),
        ('player2', 'PLAYER'),
        ('player3', 'PLAYER'),
        ('player4', 'PLAYER'),
    ]
    created = {}
    for username, role in specs:
        user = User(username=username, email=f'{username}@lobby.test', role=role)
        db.session.add(user)
        created[username] = user
    db.session.commit()
    return created


@pytest.fixture
def actors(users):
    return {name: actor_for(user) for name, user in users.items()}


@pytest.fixture
def make_tournament(app, db_session, users):
    """Factory inserting a tournament straight into the store, in any status."""
    def _make(
        status='OPEN',
        format='SOLO',
        max_participants=4,
        start_date=None,
        organizer=None,
        **extra
    ):
        tournament = Tournament(
            name=extra.pop('name', 'Test Cup'),
            game=extra.pop('game', 'Counter-Strike 2'),
            format=format,
            max_participants=max_participants,
            prize_pool=extra.pop('prize_pool', 500),
            start_date=start_date or datetime.utcnow() + timedelta(days=7),
            status=status,
            organizer_id=(organizer or users['organizer']).id,
            **extra
        )
        db.session.add(tournament)
        db.session.commit()
        db.session.refresh(tournament)
        return tournament
    return _make


@pytest.fixture
def make_team(app, db_session):
    """Factory for teams captained by the given user."""
    counter = {'n': 0}

    def _make(captain, name=None):
        counter['n'] += 1
        team = Team(
            name=name or f'Team {counter["n"]}',
            tag=f'T{counter["n"]}',
            captain_id=captain.id
        )
        db.session.add(team)
        db.session.commit()
        captain.team_id = team.id
        db.session.commit()
        db.session.refresh(team)
        return team
    return _make


@pytest.fixture
def make_registration(app, db_session):
    """Factory inserting a registration directly, bypassing admission rules."""
    def _make(tournament, player=None, team=None, status='PENDING', registered_at=None):
        registration = Registration(
            tournament_id=tournament.id,
            player_id=player.id if player is not None else None,
            team_id=team.id if team is not None else None,
            status=status,
            confirmed_at=datetime.utcnow() if status == 'CONFIRMED' else None,
            registered_at=registered_at or datetime.utcnow()
        )
        db.session.add(registration)
        db.session.commit()
        db.session.refresh(registration)
        return registration
    return _make


@pytest.fixture
def lifecycle(app):
    return app.lifecycle


@pytest.fixture
def admissions(app):
    return app.admissions


@pytest.fixture
def mock_redis(mocker):
    """Redis client double for event publishing."""
    return mocker.MagicMock()
