from datetime import timedelta

from plantshop.database.tables import PendingRegistration, utcnow
from plantshop.services.pending_registrations import PendingRegistrationStore
from plantshop.services.phone_verification import PhoneVerificationService


USER_DATA = {"email": "anna@example.com", "password_hash": "hash", "full_name": "Анна"}


def test_save_then_verify_with_any_phone_format(db):
    store = PendingRegistrationStore(db)
    assert store.save("8 (999) 123-45-67", USER_DATA, "token-1")

    assert not store.check_verified("+79991234567", "token-1")
    assert store.get_data("+79991234567", "token-1") is None

    assert store.mark_verified("9991234567", "token-1", chat_id=555)

    assert store.check_verified("89991234567", "token-1")
    assert store.get_data("+79991234567", "token-1") == USER_DATA
    assert store.get_record("+79991234567", "token-1").telegram_chat_id == "555"


def test_last_save_wins_for_same_phone(db):
    store = PendingRegistrationStore(db)
    store.save("+79991234567", USER_DATA, "old-token")
    store.save("+79991234567", {**USER_DATA, "full_name": "Новая"}, "new-token")

    assert store.find_by_token("old-token") is None
    assert store.get_token_by_phone("+79991234567") == "new-token"
    assert db.query(PendingRegistration).count() == 1


def test_mark_verified_requires_exact_phone_and_token(db):
    store = PendingRegistrationStore(db)
    store.save("+79991234567", USER_DATA, "token-1")

    assert not store.mark_verified("+79990000000", "token-1")
    assert not store.mark_verified("+79991234567", "other-token")
    assert not store.check_verified("+79991234567", "token-1")


def test_remove_is_idempotent(db):
    store = PendingRegistrationStore(db)
    store.save("+79991234567", USER_DATA, "token-1")

    assert store.remove("+79991234567", "token-1")
    assert store.remove("+79991234567", "token-1")
    assert store.find_by_token("token-1") is None


def test_expired_rows_are_invisible_and_swept(db):
    store = PendingRegistrationStore(db, ttl_hours=24)
    store.save("+79991234567", USER_DATA, "stale")
    store.save("+79997654321", USER_DATA, "fresh")

    stale = db.query(PendingRegistration).filter_by(verification_token="stale").one()
    stale.created_at = utcnow() - timedelta(hours=25)
    db.commit()

    assert store.find_by_token("stale") is None
    assert not store.mark_verified("+79991234567", "stale")

    assert store.cleanup_expired() == 1
    assert store.find_by_token("fresh") is not None


def test_contact_with_matching_phone_confirms(db):
    PendingRegistrationStore(db).save("+79991234567", USER_DATA, "token-1")

    result = PhoneVerificationService(db).confirm_contact("token-1", "8 999 123 45 67", chat_id=42)

    assert result.verified
    assert result.expected_phone == "+79991234567"
    assert PendingRegistrationStore(db).check_verified("+79991234567", "token-1")


def test_contact_with_other_phone_is_rejected(db):
    PendingRegistrationStore(db).save("+79991234567", USER_DATA, "token-1")

    result = PhoneVerificationService(db).confirm_contact("token-1", "+79990000000", chat_id=42)

    assert not result.verified
    assert result.reason == "phone_mismatch"
    assert not PendingRegistrationStore(db).check_verified("+79991234567", "token-1")


def test_contact_for_unknown_token(db):
    result = PhoneVerificationService(db).confirm_contact("missing", "+79991234567", chat_id=42)
    assert result.reason == "not_found"


def test_link_chat_only_for_existing_users(db, make_user):
    user = make_user(phone="+79991234567")
    service = PhoneVerificationService(db)

    assert service.link_chat("8 999 123-45-67", 777).id == user.id
    assert service.find_user_by_chat(777).id == user.id
    assert service.link_chat("+79990000000", 778) is None

    assert service.unlink_chat(777)
    assert service.find_user_by_chat(777) is None
