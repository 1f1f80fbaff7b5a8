"""
app/errors.py — Turning database and validation failures into API errors

The API layer catches IntegrityError from a commit and needs to tell the user
*what* went wrong: a taken email, a taken username, a record that points at
something that doesn't exist. classify_integrity_error() works that out from
the constraint names (PostgreSQL) or the table.column text (SQLite).

register_error_handlers() installs JSON handlers for every error type the
data layer raises, so blueprints can let them propagate.
"""

from dataclasses import dataclass

from flask import current_app, jsonify
from sqlalchemy.exc import IntegrityError

from app.database import DatabaseNotConfigured
from app.models import InsertShapeError
from app.world_tree import WorldTreeError

# kind -> markers that identify it in a driver error message.
# Checked in order; the first hit wins.
_UNIQUE_MARKERS = [
    ('duplicate_email', ('uq_users_email', 'users.email')),
    ('duplicate_username', ('uq_users_username', 'users.username')),
    ('duplicate_membership', ('uq_campaign_members_campaign_user',
                              'campaign_members.campaign_id, campaign_members.user_id')),
    ('duplicate_session_number', ('uq_sessions_campaign_number',
                                  'sessions.campaign_id, sessions.session_number')),
]

_MESSAGES = {
    'duplicate_email': 'That email is already registered.',
    'duplicate_username': 'That username is already taken.',
    'duplicate_membership': 'That user is already a member of this campaign.',
    'duplicate_session_number': 'A session with that number already exists in this campaign.',
    'duplicate': 'A record with those values already exists.',
    'not_found': 'A referenced record does not exist.',
    'missing_field': 'A required field is missing.',
    'constraint': 'The change violates a database constraint.',
}

_STATUS = {
    'not_found': 422,
    'missing_field': 422,
    'constraint': 400,
}


@dataclass(frozen=True)
class ConstraintViolation:
    kind: str
    message: str
    status: int


def classify_integrity_error(exc):
    """Map an IntegrityError to a ConstraintViolation."""
    text = str(getattr(exc, 'orig', exc))
    lowered = text.lower()

    if 'unique' in lowered or 'duplicate key' in lowered:
        kind = 'duplicate'
        for candidate, markers in _UNIQUE_MARKERS:
            if any(marker in text for marker in markers):
                kind = candidate
                break
    elif 'foreign key' in lowered:
        kind = 'not_found'
    elif 'not null' in lowered or 'not-null' in lowered:
        kind = 'missing_field'
    else:
        kind = 'constraint'

    return ConstraintViolation(kind=kind, message=_MESSAGES[kind], status=_STATUS.get(kind, 409))


def register_error_handlers(app):

    @app.errorhandler(DatabaseNotConfigured)
    def database_not_configured(e):
        return jsonify({'error': 'database not configured'}), 503

    @app.errorhandler(IntegrityError)
    def integrity_error(e):
        from app import db
        # The session is unusable until rolled back
        db.session.rollback()
        violation = classify_integrity_error(e)
        current_app.logger.warning(f'Constraint violation ({violation.kind}): {e.orig}')
        return jsonify({'error': violation.kind, 'message': violation.message}), violation.status

    @app.errorhandler(WorldTreeError)
    def world_tree_error(e):
        return jsonify({'error': 'invalid_world_tree', 'message': str(e)}), 422

    @app.errorhandler(InsertShapeError)
    def insert_shape_error(e):
        return jsonify({'error': 'invalid_fields', 'message': str(e)}), 400
