from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

from shared.state_machine import TournamentStatus, RegistrationStatus, Role

db = SQLAlchemy()


class User(db.Model):
    """Authenticated principals. Read-only to the lobby core."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.PLAYER.value)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id', use_alter=True), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    team = db.relationship('Team', back_populates='members', foreign_keys=[team_id])

    def summary(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
        }


class Team(db.Model):
    """Teams are owned elsewhere; the core only reads captaincy."""
    __tablename__ = 'teams'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    tag = db.Column(db.String(10), unique=True, nullable=False)
    captain_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    captain = db.relationship('User', foreign_keys=[captain_id])
    members = db.relationship('User', back_populates='team', foreign_keys=[User.team_id])

    def summary(self):
        return {
            'id': self.id,
            'name': self.name,
            'tag': self.tag,
            'captain_id': self.captain_id,
        }


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    game = db.Column(db.String(100), nullable=False)
    format = db.Column(db.String(10), nullable=False)
    max_participants = db.Column(db.Integer, nullable=False)
    prize_pool = db.Column(db.Float, nullable=False, default=0)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=TournamentStatus.DRAFT.value)
    organizer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    # Bumped by every admission write; see lobby.store.lock_roster
    roster_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organizer = db.relationship('User')
    registrations = db.relationship('Registration', back_populates='tournament', cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('max_participants >= 2', name='ck_tournament_min_participants'),
        db.CheckConstraint('prize_pool >= 0', name='ck_tournament_prize_pool'),
    )

    def summary(self):
        return {
            'id': self.id,
            'name': self.name,
            'status': self.status,
            'format': self.format,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'game': self.game,
            'format': self.format,
            'max_participants': self.max_participants,
            'prize_pool': self.prize_pool,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'status': self.status,
            'organizer_id': self.organizer_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Registration(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    team_id = db.Column(db.Integer, db.ForeignKey('teams.id'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=RegistrationStatus.PENDING.value)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    registered_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    tournament = db.relationship('Tournament', back_populates='registrations')
    player = db.relationship('User')
    team = db.relationship('Team')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='unique_player_per_tournament'),
        db.UniqueConstraint('tournament_id', 'team_id', name='unique_team_per_tournament'),
        db.CheckConstraint(
            '(player_id IS NULL) <> (team_id IS NULL)',
            name='ck_registration_one_participant'
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'player_id': self.player_id,
            'team_id': self.team_id,
            'status': self.status,
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'registered_at': self.registered_at.isoformat() if self.registered_at else None,
            'player': self.player.summary() if self.player else None,
            'team': self.team.summary() if self.team else None,
            'tournament': self.tournament.summary() if self.tournament else None,
        }
