import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from app import db
from app.models import (AuditLog, AuditLogImmutableError, Campaign, Character, DiceRoll,
                        InsertShapeError, Media, Membership, Message, Session, User,
                        WorldElement)


# ── Users ────────────────────────────────────────────────────────────────────

def test_email_and_username_are_normalised(make_user):
    user = make_user(username='  Strahd ', email='Strahd@Barovia.EXAMPLE')
    assert user.username == 'strahd'
    assert user.email == 'strahd@barovia.example'


def test_email_uniqueness_ignores_case(make_user):
    make_user(username='ireena', email='ireena@example.com')
    db.session.add(User(username='tatyana', email='IREENA@example.com', password_hash='x'))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_soft_deleted_user_keeps_username_reserved(make_user):
    user = make_user(username='van_richten')
    user.soft_delete()
    db.session.commit()
    db.session.add(User(username='Van_Richten', email='other@example.com', password_hash='x'))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_password_round_trip(make_user):
    user = make_user(password='correct horse battery')
    assert user.check_password('correct horse battery')
    assert not user.check_password('wrong')
    assert user.password_hash.startswith('pbkdf2:sha256')


# ── Soft delete ──────────────────────────────────────────────────────────────

def test_soft_deleted_rows_hidden_from_active_but_fetchable_by_id(campaign):
    alive = Character(campaign_id=campaign.id, name='Ismark')
    gone = Character(campaign_id=campaign.id, name='Doru', character_type='npc')
    db.session.add_all([alive, gone])
    db.session.commit()

    gone.soft_delete()
    db.session.commit()

    listed = Character.active().filter_by(campaign_id=campaign.id).all()
    assert [c.name for c in listed] == ['Ismark']

    fetched = db.session.get(Character, gone.id)
    assert fetched is not None
    assert fetched.is_deleted


def test_soft_deleted_row_stays_referenceable(campaign, owner):
    npc = Character(campaign_id=campaign.id, name='Rahadin', character_type='npc')
    db.session.add(npc)
    db.session.commit()
    npc.soft_delete()
    db.session.commit()

    message = Message(campaign_id=campaign.id, sender_type='ai', content='Rahadin bows.',
                      character_id=npc.id)
    db.session.add(message)
    db.session.commit()
    assert message.character is npc


def test_restore_clears_marker(campaign):
    campaign.soft_delete()
    db.session.commit()
    assert Campaign.active().count() == 0
    campaign.restore()
    db.session.commit()
    assert Campaign.active().count() == 1


def test_soft_delete_is_idempotent(campaign):
    campaign.soft_delete()
    first = campaign.deleted_at
    campaign.soft_delete()
    assert campaign.deleted_at == first


# ── Uniqueness ───────────────────────────────────────────────────────────────

def test_duplicate_membership_fails(campaign, make_user):
    player = make_user()
    db.session.add(Membership(campaign_id=campaign.id, user_id=player.id))
    db.session.commit()

    db.session.add(Membership(campaign_id=campaign.id, user_id=player.id, role='gm'))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_same_user_can_join_two_campaigns(make_campaign, make_user):
    player = make_user()
    first = make_campaign('Tomb of Annihilation')
    second = make_campaign('Waterdeep')
    db.session.add_all([Membership(campaign_id=first.id, user_id=player.id),
                        Membership(campaign_id=second.id, user_id=player.id)])
    db.session.commit()
    assert len(player.memberships) == 2


def test_session_numbers_unique_per_campaign(campaign, make_campaign):
    db.session.add(Session(campaign_id=campaign.id, session_number=1))
    db.session.commit()
    db.session.add(Session(campaign_id=campaign.id, session_number=2))
    db.session.commit()

    other = make_campaign('Other Table')
    db.session.add(Session(campaign_id=other.id, session_number=1))
    db.session.commit()

    db.session.add(Session(campaign_id=campaign.id, session_number=1))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_next_session_number_counts_soft_deleted(campaign):
    assert Session.next_number(campaign.id) == 1
    first = Session(campaign_id=campaign.id, session_number=1)
    db.session.add(first)
    db.session.commit()
    first.soft_delete()
    db.session.commit()
    assert Session.next_number(campaign.id) == 2


# ── Cascades ─────────────────────────────────────────────────────────────────

def test_deleting_campaign_cascades_to_its_rows_only(owner, make_campaign):
    doomed = make_campaign('Doomed')
    survivor = make_campaign('Survivor')

    session = Session(campaign_id=doomed.id, session_number=1)
    pc = Character(campaign_id=doomed.id, owner_id=owner.id, name='Esmerelda')
    db.session.add_all([session, pc, Membership(campaign_id=doomed.id, user_id=owner.id, role='gm')])
    db.session.flush()

    message = Message(campaign_id=doomed.id, session_id=session.id, sender_type='player',
                      sender_id=owner.id, character_id=pc.id, content='I attack!')
    db.session.add(message)
    db.session.flush()

    region = WorldElement(campaign_id=doomed.id, element_type='location', name='Barovia')
    village = WorldElement(campaign_id=doomed.id, element_type='location', name='Vallaki',
                           parent=region)
    db.session.add_all([
        region, village,
        DiceRoll(campaign_id=doomed.id, session_id=session.id, message_id=message.id,
                 user_id=owner.id, character_id=pc.id, expression='1d20+5',
                 results=[14], modifier=5, total=19, roll_type='attack'),
        Media(campaign_id=doomed.id, uploaded_by=owner.id, filename='map.png',
              mime_type='image/png', size_bytes=2048, storage_path='uploads/map.png'),
        Character(campaign_id=survivor.id, name='Bystander', character_type='npc'),
    ])
    log = AuditLog.record('campaign.create', entity=doomed, user=owner, campaign=doomed)
    db.session.commit()

    doomed_id, survivor_id, owner_id, log_id = doomed.id, survivor.id, owner.id, log.id
    # Start from an empty identity map so the database does the cascading
    db.session.expunge_all()

    db.session.delete(db.session.get(Campaign, doomed_id))
    db.session.commit()

    for model in (Membership, Character, Session, Message, WorldElement, DiceRoll, Media):
        assert model.query.filter_by(campaign_id=doomed_id).count() == 0, model.__name__

    assert db.session.get(User, owner_id) is not None
    assert Character.query.filter_by(campaign_id=survivor_id).count() == 1

    surviving_log = db.session.get(AuditLog, log_id)
    assert surviving_log is not None
    assert surviving_log.campaign_id is None
    assert surviving_log.user_id == owner_id


def test_user_with_campaigns_cannot_be_hard_deleted(owner, campaign):
    db.session.delete(owner)
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


# ── Audit log ────────────────────────────────────────────────────────────────

def test_audit_log_record_describes_entity(owner, campaign):
    log = AuditLog.record('campaign.update', entity=campaign, user=owner, campaign=campaign,
                          old_values={'status': 'active'}, new_values={'status': 'paused'},
                          ip_address='203.0.113.7', user_agent='pytest')
    db.session.commit()
    assert log.entity_type == 'campaigns'
    assert log.entity_id == campaign.id
    assert log.new_values == {'status': 'paused'}


def test_audit_log_cannot_be_updated_or_deleted(owner):
    log = AuditLog.record('user.login', user=owner)
    db.session.commit()

    log.action = 'user.logout'
    with pytest.raises(AuditLogImmutableError):
        db.session.commit()
    db.session.rollback()

    db.session.delete(log)
    with pytest.raises(AuditLogImmutableError):
        db.session.commit()
    db.session.rollback()


# ── Insert and select shapes ─────────────────────────────────────────────────

@pytest.mark.parametrize('model, required', [
    (User, {'email', 'username', 'password_hash'}),
    (Campaign, {'owner_id', 'name'}),
    (Membership, {'campaign_id', 'user_id'}),
    (Character, {'campaign_id', 'name'}),
    (Session, {'campaign_id', 'session_number'}),
    (Message, {'campaign_id', 'sender_type', 'content'}),
    (WorldElement, {'campaign_id', 'element_type', 'name'}),
    (DiceRoll, {'campaign_id', 'expression', 'results', 'total'}),
    (Media, {'uploaded_by', 'filename', 'mime_type', 'size_bytes', 'storage_path'}),
    (AuditLog, {'action'}),
])
def test_required_insert_fields(model, required):
    assert set(model.required_insert_fields()) == required


def test_insert_fields_exclude_generated_columns():
    fields = Character.insert_fields()
    assert 'character_class' in fields
    for generated in ('id', 'created_at', 'updated_at', 'deleted_at'):
        assert generated not in fields


def test_from_insert_rejects_unknown_fields(campaign):
    with pytest.raises(InsertShapeError, match='unknown field'):
        Character.from_insert({'campaign_id': campaign.id, 'name': 'Ezmerelda', 'hp': 40})


def test_from_insert_rejects_missing_fields(campaign):
    with pytest.raises(InsertShapeError, match='name'):
        Character.from_insert({'campaign_id': campaign.id})


def test_from_insert_builds_row_with_defaults(campaign):
    character = Character.from_insert({'campaign_id': campaign.id, 'name': 'Kasimir',
                                       'character_class': 'Wizard'})
    db.session.add(character)
    db.session.commit()
    shape = character.to_dict()
    assert shape['id'] == str(character.id)
    assert shape['character_type'] == 'pc'
    assert shape['level'] == 1
    assert shape['inventory'] == []
    assert shape['is_active'] is True
    assert shape['deleted_at'] is None
    assert isinstance(shape['created_at'], str)


def test_id_is_assigned_at_construction():
    element = WorldElement(element_type='item', name='Sunsword')
    assert isinstance(element.id, uuid.UUID)


# ── Messages ─────────────────────────────────────────────────────────────────

def test_message_visibility(campaign, make_user):
    player = make_user()
    whisper = Message(campaign_id=campaign.id, sender_type='ai', content='Psst.',
                      visible_to=[str(player.id)])
    public = Message(campaign_id=campaign.id, sender_type='system', content='Session started.')
    assert whisper.is_visible_to(player.id)
    assert not whisper.is_visible_to(uuid.uuid4())
    assert public.is_visible_to(uuid.uuid4())


def test_message_metadata_column(campaign):
    message = Message(campaign_id=campaign.id, sender_type='ai', content='Roll initiative.',
                      message_type='narration', meta={'scene': 'castle'},
                      ai_model='claude', tokens_used=120)
    db.session.add(message)
    db.session.commit()
    assert 'metadata' in Message.__table__.c
    assert 'meta' not in Message.__table__.c
    assert db.session.get(Message, message.id).meta == {'scene': 'castle'}
