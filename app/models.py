import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import event, inspect
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from app import db

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONData = db.JSON().with_variant(postgresql.JSONB(), 'postgresql')

# Requester IPs are INET on PostgreSQL; 45 chars fits any IPv6 text form
IPAddress = db.String(45).with_variant(postgresql.INET(), 'postgresql')

# Columns the database or the ORM fills in; never part of an insert shape
GENERATED_FIELDS = ('id', 'created_at', 'updated_at', 'deleted_at')


def utcnow():
    return datetime.now(timezone.utc)


class InsertShapeError(ValueError):
    """Raised when insert data has unknown fields or misses required ones."""
    pass


class AuditLogImmutableError(RuntimeError):
    """Raised when something tries to change or delete an audit log row."""
    pass


def _serialise(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class EntityMixin:
    """UUID primary key plus the select/insert shapes handed to the API layer.

    The id is generated when the object is constructed rather than at flush,
    so it can be referenced (e.g. by world tree validation) before the row
    exists in the database.
    """

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __init__(self, **kwargs):
        super().__init__(id=kwargs.pop('id', None) or uuid.uuid4(), **kwargs)

    def to_dict(self):
        """Select shape: every mapped column keyed by attribute name."""
        return {attr.key: _serialise(getattr(self, attr.key))
                for attr in inspect(type(self)).column_attrs}

    @classmethod
    def insert_fields(cls):
        """Every attribute a caller may supply on insert."""
        return [attr.key for attr in inspect(cls).column_attrs
                if attr.key not in GENERATED_FIELDS]

    @classmethod
    def required_insert_fields(cls):
        """Attributes a caller must supply: not nullable and no default."""
        required = []
        for attr in inspect(cls).column_attrs:
            column = attr.columns[0]
            if attr.key in GENERATED_FIELDS:
                continue
            if column.nullable or column.default is not None or column.server_default is not None:
                continue
            required.append(attr.key)
        return required

    @classmethod
    def from_insert(cls, data):
        """Build an instance from an insert shape, rejecting bad field sets."""
        unknown = sorted(set(data) - set(cls.insert_fields()))
        if unknown:
            raise InsertShapeError(f'{cls.__name__}: unknown field(s): {", ".join(unknown)}')
        missing = [f for f in cls.required_insert_fields() if data.get(f) is None]
        if missing:
            raise InsertShapeError(f'{cls.__name__}: missing required field(s): {", ".join(missing)}')
        return cls(**data)


class UpdatedAtMixin:
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=utcnow, onupdate=utcnow)


class SoftDeleteMixin:
    """Rows with deleted_at set are hidden from active() listings but stay in
    the table, so foreign keys pointing at them keep working."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @classmethod
    def active(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def soft_delete(self):
        if self.deleted_at is None:
            self.deleted_at = utcnow()

    def restore(self):
        self.deleted_at = None


class User(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, UserMixin, db.Model):
    __tablename__ = 'users'

    # Stored lowercased (see _normalise), so uniqueness is case-insensitive.
    # A soft-deleted user keeps both values reserved.
    email = db.Column(db.String(255), nullable=False)
    username = db.Column(db.String(50), nullable=False)
    display_name = db.Column(db.String(100))
    password_hash = db.Column(db.String(255), nullable=False)
    avatar_url = db.Column(db.Text)
    preferences = db.Column(JSONData, default=dict)
    email_verified_at = db.Column(db.DateTime(timezone=True))
    last_login_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.UniqueConstraint('email', name='uq_users_email'),
        db.UniqueConstraint('username', name='uq_users_username'),
    )

    campaigns = db.relationship('Campaign', backref='owner', lazy=True)

    @validates('email', 'username')
    def _normalise(self, key, value):
        return value.strip().lower() if value else value

    @property
    def is_active(self):
        # Flask-Login refuses to log in inactive users
        return not self.is_deleted

    def set_password(self, password):
        self.password_hash = generate_password_hash(password, method='pbkdf2:sha256')

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.username}>'


class Campaign(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, db.Model):
    __tablename__ = 'campaigns'

    owner_id = db.Column(db.Uuid, db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(100))
    description = db.Column(db.Text)
    cover_image_url = db.Column(db.Text)
    game_system = db.Column(db.String(50), nullable=False, default='dnd5e')
    world_info = db.Column(JSONData, default=dict)
    status = db.Column(db.String(20), nullable=False, default='active')  # active / paused / completed
    ai_settings = db.Column(JSONData, default=dict)   # model, temperature, narrator style...
    started_at = db.Column(db.DateTime(timezone=True))
    completed_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.Index('idx_campaigns_owner', 'owner_id'),
        db.Index('idx_campaigns_status', 'status'),
        db.Index('idx_campaigns_slug', 'slug'),
    )

    # Children are declared on the child side with backrefs:
    # members, characters, sessions, messages, world_elements, dice_rolls,
    # media (all cascade) and audit_logs (left alone, DB nulls the reference).

    def __repr__(self):
        return f'<Campaign {self.name}>'


def _cascade_from_campaign(name):
    """Backref for a child that goes away with its campaign.

    passive_deletes leaves the actual deletion of unloaded rows to the
    ON DELETE CASCADE rule in the database.
    """
    return db.backref(name, cascade='all, delete-orphan', passive_deletes=True)


class Membership(EntityMixin, UpdatedAtMixin, db.Model):
    """A user's seat in a campaign (game master, player, spectator)."""
    __tablename__ = 'campaign_members'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.Uuid, db.ForeignKey('users.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='player')   # gm / player / spectator
    nickname = db.Column(db.String(50))
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    left_at = db.Column(db.DateTime(timezone=True))
    settings = db.Column(JSONData, default=dict)

    __table_args__ = (
        db.UniqueConstraint('campaign_id', 'user_id', name='uq_campaign_members_campaign_user'),
        db.Index('idx_campaign_members_campaign', 'campaign_id'),
        db.Index('idx_campaign_members_user', 'user_id'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('members'))
    user = db.relationship('User', backref='memberships')

    def __repr__(self):
        return f'<Membership {self.role} campaign={self.campaign_id} user={self.user_id}>'


class Character(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, db.Model):
    """A player character, NPC or monster. NPCs and monsters may have no owner."""
    __tablename__ = 'characters'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    owner_id = db.Column(db.Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    character_type = db.Column(db.String(20), nullable=False, default='pc')  # pc / npc / monster
    race = db.Column(db.String(50))
    character_class = db.Column('class', db.String(100))
    level = db.Column(db.Integer, default=1)
    background = db.Column(db.String(50))
    alignment = db.Column(db.String(20))
    avatar_url = db.Column(db.Text)
    token_url = db.Column(db.Text)

    stats = db.Column(JSONData, default=dict)        # {"str": 16, "dex": 12, ...}
    inventory = db.Column(JSONData, default=list)
    abilities = db.Column(JSONData, default=dict)

    backstory = db.Column(db.Text)
    personality = db.Column(db.Text)
    notes = db.Column(db.Text)
    ai_behavior = db.Column(JSONData, default=dict)  # how the AI plays this character

    is_active = db.Column(db.Boolean, default=True)
    died_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.Index('idx_characters_campaign', 'campaign_id'),
        db.Index('idx_characters_owner', 'owner_id'),
        db.Index('idx_characters_type', 'character_type'),
        db.Index('idx_characters_active', 'campaign_id', 'is_active'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('characters'))
    owner = db.relationship('User', backref=db.backref('characters', passive_deletes=True))

    def __repr__(self):
        return f'<Character {self.name}>'


class Session(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, db.Model):
    __tablename__ = 'sessions'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    session_number = db.Column(db.Integer, nullable=False)   # 1, 2, 3... unique per campaign
    title = db.Column(db.String(255))
    scheduled_at = db.Column(db.DateTime(timezone=True))
    started_at = db.Column(db.DateTime(timezone=True))
    ended_at = db.Column(db.DateTime(timezone=True))
    duration_minutes = db.Column(db.Integer)
    summary = db.Column(db.Text)
    notes = db.Column(db.Text)
    highlights = db.Column(JSONData, default=list)
    attendees = db.Column(JSONData, default=list)
    rewards = db.Column(JSONData, default=dict)
    status = db.Column(db.String(20), default='planned')   # planned / active / completed / cancelled

    __table_args__ = (
        db.UniqueConstraint('campaign_id', 'session_number', name='uq_sessions_campaign_number'),
        db.Index('idx_sessions_campaign', 'campaign_id'),
        db.Index('idx_sessions_status', 'status'),
        db.Index('idx_sessions_scheduled', 'scheduled_at'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('sessions'))

    @staticmethod
    def next_number(campaign_id):
        """Next free session number for a campaign. Soft-deleted sessions
        still hold their number, so numbers are never reused."""
        current = db.session.query(db.func.max(Session.session_number))\
            .filter(Session.campaign_id == campaign_id).scalar()
        return (current or 0) + 1

    def __repr__(self):
        return f'<Session {self.session_number}: {self.title}>'


class Message(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, db.Model):
    """One unit of conversation: player chat, AI narration or a system event."""
    __tablename__ = 'messages'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    session_id = db.Column(db.Uuid, db.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True)
    sender_type = db.Column(db.String(20), nullable=False)   # player / ai / system
    sender_id = db.Column(db.Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    character_id = db.Column(db.Uuid, db.ForeignKey('characters.id', ondelete='SET NULL'), nullable=True)
    content = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(30), nullable=False, default='chat')  # chat / narration / roll / ooc ...
    meta = db.Column('metadata', JSONData, default=dict)

    ai_model = db.Column(db.String(50))
    ai_context = db.Column(JSONData)
    tokens_used = db.Column(db.Integer)

    # List of user id strings. NULL means everyone in the campaign can see it.
    visible_to = db.Column(JSONData)

    __table_args__ = (
        db.Index('idx_messages_campaign', 'campaign_id', 'created_at'),
        db.Index('idx_messages_session', 'session_id', 'created_at'),
        db.Index('idx_messages_sender', 'sender_id'),
        db.Index('idx_messages_type', 'campaign_id', 'message_type'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('messages'))
    session = db.relationship('Session', backref=db.backref('messages', passive_deletes=True))
    sender = db.relationship('User', backref=db.backref('messages', passive_deletes=True))
    character = db.relationship('Character', backref=db.backref('messages', passive_deletes=True))

    def is_visible_to(self, user_id):
        if self.visible_to is None:
            return True
        return str(user_id) in {str(u) for u in self.visible_to}

    def __repr__(self):
        return f'<Message {self.sender_type}/{self.message_type} {self.content[:40]}>'


class WorldElement(EntityMixin, UpdatedAtMixin, SoftDeleteMixin, db.Model):
    """A piece of lore: location, faction, item, deity, NPC background...

    Elements form a tree through parent_id (region > city > tavern). The tree
    is checked on every parent assignment, see app/world_tree.py. Children are
    looked up, not held: use child_elements() or world_tree.build_tree().
    """
    __tablename__ = 'world_elements'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    parent_id = db.Column(db.Uuid, db.ForeignKey('world_elements.id', ondelete='SET NULL'), nullable=True)
    element_type = db.Column(db.String(30), nullable=False)   # location / faction / item / lore ...
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(100))
    description = db.Column(db.Text)
    image_url = db.Column(db.Text)
    properties = db.Column(JSONData, default=dict)
    tags = db.Column(JSONData, default=list)
    is_secret = db.Column(db.Boolean, default=False)   # hidden from players until revealed
    revealed_at = db.Column(db.DateTime(timezone=True))
    coordinates = db.Column(JSONData)                  # {"x": .., "y": .., "z": ..} on the world map

    __table_args__ = (
        db.Index('idx_world_elements_campaign', 'campaign_id'),
        db.Index('idx_world_elements_type', 'campaign_id', 'element_type'),
        db.Index('idx_world_elements_parent', 'parent_id'),
        db.Index('idx_world_elements_secret', 'campaign_id', 'is_secret'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('world_elements'))
    parent = db.relationship('WorldElement', remote_side='WorldElement.id', foreign_keys=[parent_id])

    def __init__(self, **kwargs):
        # Assign the parent last so the campaign is known when it is checked
        parent = kwargs.pop('parent', None)
        parent_id = kwargs.pop('parent_id', None)
        super().__init__(**kwargs)
        if parent is not None:
            self.parent = parent
        elif parent_id is not None:
            self.parent_id = parent_id

    @validates('parent_id')
    def _check_parent_id(self, key, parent_id):
        from app.world_tree import check_parent_id
        parent = self.__dict__.get('parent')
        # The flush copies parent.id into parent_id; that parent was already
        # checked when it was assigned
        if parent is None or parent.id != parent_id:
            check_parent_id(self, parent_id)
        return parent_id

    @validates('parent')
    def _check_parent(self, key, parent):
        from app.world_tree import check_parent
        check_parent(self, parent)
        return parent

    def child_elements(self):
        return WorldElement.query.filter(WorldElement.parent_id == self.id)

    def ancestors(self):
        """Parents from the nearest up to the root."""
        from app.world_tree import iter_ancestors
        return list(iter_ancestors(self))

    def reveal(self):
        self.is_secret = False
        if self.revealed_at is None:
            self.revealed_at = utcnow()

    def __repr__(self):
        return f'<WorldElement {self.element_type}: {self.name}>'


class DiceRoll(EntityMixin, db.Model):
    """A recorded roll, e.g. expression '2d20kh1+5', results [7, 18], total 23."""
    __tablename__ = 'dice_rolls'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=False)
    session_id = db.Column(db.Uuid, db.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True)
    message_id = db.Column(db.Uuid, db.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True)
    user_id = db.Column(db.Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    character_id = db.Column(db.Uuid, db.ForeignKey('characters.id', ondelete='SET NULL'), nullable=True)

    expression = db.Column(db.String(100), nullable=False)
    results = db.Column(JSONData, nullable=False)   # individual die faces
    modifier = db.Column(db.Integer, default=0)
    total = db.Column(db.Integer, nullable=False)
    roll_type = db.Column(db.String(30))             # attack / damage / save / check / initiative
    context = db.Column(JSONData, default=dict)

    __table_args__ = (
        db.Index('idx_dice_rolls_campaign', 'campaign_id', 'created_at'),
        db.Index('idx_dice_rolls_session', 'session_id'),
        db.Index('idx_dice_rolls_user', 'user_id'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('dice_rolls'))
    session = db.relationship('Session', backref=db.backref('dice_rolls', passive_deletes=True))
    message = db.relationship('Message', backref=db.backref('dice_rolls', passive_deletes=True))
    user = db.relationship('User', backref=db.backref('dice_rolls', passive_deletes=True))
    character = db.relationship('Character', backref=db.backref('dice_rolls', passive_deletes=True))

    def __repr__(self):
        return f'<DiceRoll {self.expression} = {self.total}>'


class Media(EntityMixin, SoftDeleteMixin, db.Model):
    """An uploaded file. We store where it lives, never the bytes."""
    __tablename__ = 'media'

    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='CASCADE'), nullable=True)
    uploaded_by = db.Column(db.Uuid, db.ForeignKey('users.id'), nullable=False)
    filename = db.Column(db.String(255), nullable=False)
    original_name = db.Column(db.String(255))
    mime_type = db.Column(db.String(100), nullable=False)
    size_bytes = db.Column(db.BigInteger, nullable=False)
    storage_path = db.Column(db.Text, nullable=False)
    cdn_url = db.Column(db.Text)
    media_type = db.Column(db.String(30), nullable=False, default='image')  # image / audio / map / handout
    meta = db.Column('metadata', JSONData, default=dict)
    is_public = db.Column(db.Boolean, default=False)

    __table_args__ = (
        db.Index('idx_media_campaign', 'campaign_id'),
        db.Index('idx_media_type', 'campaign_id', 'media_type'),
    )

    campaign = db.relationship('Campaign', backref=_cascade_from_campaign('media'))
    uploader = db.relationship('User', backref='uploaded_media', foreign_keys=[uploaded_by])

    def __repr__(self):
        return f'<Media {self.filename}>'


class AuditLog(EntityMixin, db.Model):
    """Append-only record of a mutating action.

    Rows outlive the user and campaign they mention: the database sets those
    references to NULL when the parent row is deleted.
    """
    __tablename__ = 'audit_logs'

    user_id = db.Column(db.Uuid, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    campaign_id = db.Column(db.Uuid, db.ForeignKey('campaigns.id', ondelete='SET NULL'), nullable=True)
    action = db.Column(db.String(50), nullable=False)   # e.g. campaign.update, character.delete
    entity_type = db.Column(db.String(50))
    entity_id = db.Column(db.Uuid)
    old_values = db.Column(JSONData)
    new_values = db.Column(JSONData)
    ip_address = db.Column(IPAddress)
    user_agent = db.Column(db.Text)

    __table_args__ = (
        db.Index('idx_audit_logs_user', 'user_id', 'created_at'),
        db.Index('idx_audit_logs_campaign', 'campaign_id', 'created_at'),
        db.Index('idx_audit_logs_entity', 'entity_type', 'entity_id'),
        db.Index('idx_audit_logs_action', 'action', 'created_at'),
    )

    # passive_deletes='all' stops the ORM from nulling the reference itself,
    # which would be an UPDATE on an immutable row
    user = db.relationship('User', backref=db.backref('audit_logs', passive_deletes='all'))
    campaign = db.relationship('Campaign', backref=db.backref('audit_logs', passive_deletes='all'))

    @staticmethod
    def record(action, entity=None, user=None, campaign=None, old_values=None,
               new_values=None, ip_address=None, user_agent=None):
        """Add an audit row to the current session. The caller commits, so the
        log entry lands in the same transaction as the change it describes."""
        entry = AuditLog(
            action=action,
            user_id=user.id if user is not None else None,
            campaign_id=campaign.id if campaign is not None else None,
            entity_type=entity.__tablename__ if entity is not None else None,
            entity_id=entity.id if entity is not None else None,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.add(entry)
        return entry

    def __repr__(self):
        return f'<AuditLog {self.action} {self.entity_type}:{self.entity_id}>'


@event.listens_for(AuditLog, 'before_update')
def _refuse_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f'Audit log {target.id} cannot be modified')


@event.listens_for(AuditLog, 'before_delete')
def _refuse_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f'Audit log {target.id} cannot be deleted')


# Entities with a deleted_at marker, for callers that need to treat them alike
SOFT_DELETE_MODELS = (User, Campaign, Character, Session, Message, WorldElement, Media)
ALL_MODELS = (User, Campaign, Membership, Character, Session, Message,
              WorldElement, DiceRoll, Media, AuditLog)
