"""
密钥轮换测试
"""

import json
import secrets

import pytest
from sqlalchemy.exc import SQLAlchemyError

from generate_test_data import seed_records
from phivault.core.rotation import STATUS_COMPLETED, STATUS_FAILED, KeyRotation
from phivault.crypto.errors import AuthenticationFailure, RotationValidationError
from phivault.crypto.key_manager import KeyManager
from phivault.crypto.phi_encryption import PHIEncryptionService, encrypt_with_key
from phivault.database.models import Client, Patient
from phivault.database.registry import ENCRYPTED_ENTITIES, decrypt_entity_fields


def _service(key_hex):
    return PHIEncryptionService(KeyManager.from_hex(key_hex))


def _assert_readable(db_manager, seeded, service):
    for name, records in seeded.items():
        entity = ENCRYPTED_ENTITIES[name]
        for record_id, phi in records:
            decrypted = decrypt_entity_fields(entity, db_manager.get_record(entity.model, record_id), service)
            for field, plaintext in phi.items():
                assert decrypted[field] == plaintext


def test_rotation_reencrypts_every_entity(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=3)

    summary = KeyRotation(db_manager, key_hex, other_key_hex, reason="scheduled", batch_size=2).run()

    assert summary.status == STATUS_COMPLETED
    assert summary.entity_counts == {name: 3 for name in ENCRYPTED_ENTITIES}
    assert summary.total_records == 12
    assert summary.skipped == []
    assert not summary.aborted
    _assert_readable(db_manager, seeded, _service(other_key_hex))


def test_old_key_no_longer_decrypts(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=1)
    KeyRotation(db_manager, key_hex, other_key_hex).run()

    record_id, _ = seeded["patients"][0]
    record = db_manager.get_record(Patient, record_id)
    with pytest.raises(AuthenticationFailure):
        decrypt_entity_fields(ENCRYPTED_ENTITIES["patients"], record, service)


def test_rotate_forward_and_back(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=2)

    KeyRotation(db_manager, key_hex, other_key_hex).run()
    summary = KeyRotation(db_manager, other_key_hex, key_hex).run()

    assert summary.status == STATUS_COMPLETED
    _assert_readable(db_manager, seeded, service)


def test_rotation_writes_audit_record(db_manager, service, key_hex, other_key_hex):
    seed_records(db_manager, service, count=2)

    summary = KeyRotation(
        db_manager, key_hex, other_key_hex, reason="compromised", rotated_by="ops@example.com"
    ).run()

    history = db_manager.get_rotation_history()
    assert len(history) == 1
    record = history[0]
    assert record.id == summary.audit_record_id
    assert record.key_type == "PHI_ENCRYPTION_KEY"
    assert record.rotation_reason == "compromised"
    assert record.rotated_by == "ops@example.com"
    assert record.old_key_fingerprint == key_hex[-8:]
    assert record.new_key_fingerprint == other_key_hex[-8:]
    assert record.records_reencrypted == 8
    assert json.loads(record.entity_counts) == summary.entity_counts
    assert record.rotation_status == STATUS_COMPLETED
    assert key_hex not in json.dumps(summary.as_dict())


def test_bad_fields_are_skipped_not_fatal(db_manager, service, key_hex, other_key_hex):
    third_key = bytes.fromhex(secrets.token_hex(32))
    good_email = "good@example.com"
    record_id = db_manager.add_record(
        Client,
        email_encrypted=service.encrypt(good_email),
        phone_encrypted=encrypt_with_key("(503) 555-0101", third_key),
        notes_encrypted="not-an-envelope",
        city_encrypted="   ",
    )
    other_id = db_manager.add_record(Client, city_encrypted=service.encrypt("Denver"))

    summary = KeyRotation(db_manager, key_hex, other_key_hex).run(entities=["clients"])

    assert summary.status == STATUS_COMPLETED
    assert summary.entity_counts == {"clients": 2}
    skipped = {(error.record_id, error.field) for error in summary.skipped}
    assert skipped == {(record_id, "phone_encrypted"), (record_id, "notes_encrypted")}
    reasons = {error.field: error.reason for error in summary.skipped}
    assert reasons["phone_encrypted"].startswith("AuthenticationFailure")
    assert reasons["notes_encrypted"].startswith("InvalidCiphertextFormat")

    new_service = _service(other_key_hex)
    record = db_manager.get_record(Client, record_id)
    assert new_service.decrypt(record.email_encrypted) == good_email
    assert record.notes_encrypted == "not-an-envelope"
    assert record.city_encrypted == "   "
    assert new_service.decrypt(db_manager.get_record(Client, other_id).city_encrypted) == "Denver"


def test_skipped_field_log_contains_no_plaintext(db_manager, key_hex, other_key_hex, caplog):
    third_key = bytes.fromhex(secrets.token_hex(32))
    db_manager.add_record(Patient, ssn_encrypted=encrypt_with_key("123-45-6789", third_key))

    summary = KeyRotation(db_manager, key_hex, other_key_hex).run(entities=["patients"])

    assert len(summary.skipped) == 1
    assert "123-45-6789" not in caplog.text
    assert key_hex not in caplog.text
    assert other_key_hex not in caplog.text


def test_rerun_is_idempotent(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=2)
    KeyRotation(db_manager, key_hex, other_key_hex).run()

    summary = KeyRotation(db_manager, key_hex, other_key_hex).run()

    assert summary.status == STATUS_COMPLETED
    assert summary.total_records == 0
    assert summary.skipped
    _assert_readable(db_manager, seeded, _service(other_key_hex))


@pytest.mark.parametrize(
    "old_key, new_key, message",
    [
        ("", "NEW", "OLD_KEY is required"),
        ("short", "NEW", "OLD_KEY must be 64 hex characters"),
        ("OLD", "", "NEW_KEY is required"),
        ("OLD", "x" * 64, "NEW_KEY must be 64 hex characters"),
        ("OLD", "OLD", "must be different"),
    ],
)
def test_preconditions_leave_data_untouched(db_manager, service, key_hex, other_key_hex, old_key, new_key, message):
    keys = {"OLD": key_hex, "NEW": other_key_hex}
    seeded = seed_records(db_manager, service, count=1)

    rotation = KeyRotation(db_manager, keys.get(old_key, old_key), keys.get(new_key, new_key))
    with pytest.raises(RotationValidationError, match=message):
        rotation.run()

    _assert_readable(db_manager, seeded, service)
    assert db_manager.get_rotation_history() == []


def test_identical_keys_differing_in_case_are_rejected(db_manager, key_hex):
    with pytest.raises(RotationValidationError, match="must be different"):
        KeyRotation(db_manager, key_hex.lower(), key_hex.upper()).validate_keys()


def test_unknown_entity_is_rejected(db_manager, key_hex, other_key_hex):
    with pytest.raises(RotationValidationError, match="Unknown encrypted entity"):
        KeyRotation(db_manager, key_hex, other_key_hex).run(entities=["appointments"])


def test_abort_between_entities_and_resume(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=2)
    calls = []

    def should_abort():
        calls.append(1)
        return len(calls) > 1

    summary = KeyRotation(db_manager, key_hex, other_key_hex).run(should_abort=should_abort)

    assert summary.aborted
    assert summary.status == STATUS_FAILED
    assert summary.completed_entities == ["therapist_phi"]
    assert summary.pending_entities == ["patients", "clients", "clinical_sessions"]
    assert db_manager.get_rotation_history()[0].rotation_status == STATUS_FAILED

    resumed = KeyRotation(db_manager, key_hex, other_key_hex).run(entities=summary.pending_entities)

    assert resumed.status == STATUS_COMPLETED
    assert resumed.completed_entities == ["patients", "clients", "clinical_sessions"]
    _assert_readable(db_manager, seeded, _service(other_key_hex))


def test_audit_failure_does_not_fail_rotation(db_manager, service, key_hex, other_key_hex, monkeypatch, caplog):
    seeded = seed_records(db_manager, service, count=1)

    def broken_audit(**values):
        raise SQLAlchemyError("key_rotation_history is unavailable")

    monkeypatch.setattr(db_manager, "add_rotation_record", broken_audit)
    summary = KeyRotation(db_manager, key_hex, other_key_hex).run()

    assert summary.status == STATUS_COMPLETED
    assert summary.audit_record_id is None
    assert "Failed to log rotation" in caplog.text
    _assert_readable(db_manager, seeded, _service(other_key_hex))


def test_database_error_is_raised_with_pending_entities(db_manager, service, key_hex, other_key_hex, monkeypatch):
    seed_records(db_manager, service, count=1)
    original_update = db_manager.update_fields

    def failing_update(model, record_id, updates):
        if model is Client:
            raise SQLAlchemyError("connection lost")
        return original_update(model, record_id, updates)

    monkeypatch.setattr(db_manager, "update_fields", failing_update)

    with pytest.raises(SQLAlchemyError):
        KeyRotation(db_manager, key_hex, other_key_hex).run()

    record = db_manager.get_rotation_history()[0]
    assert record.rotation_status == STATUS_FAILED
    assert json.loads(record.entity_counts) == {"therapist_phi": 1, "patients": 1}


def test_search_hashes_survive_rotation(db_manager, service, key_hex, other_key_hex):
    seeded = seed_records(db_manager, service, count=2)
    record_id, phi = seeded["clients"][1]

    KeyRotation(db_manager, key_hex, other_key_hex).run()

    matches = db_manager.find_by_search_hash(
        Client.email_search_hash, service.create_search_hash(phi["email"].upper())
    )
    assert [match.id for match in matches] == [record_id]


def test_trailing_newline_key_is_rejected(db_manager, key_hex, other_key_hex):
    with pytest.raises(RotationValidationError, match="OLD_KEY must be 64 hex characters"):
        KeyRotation(db_manager, key_hex + "\n", other_key_hex).run()
    assert db_manager.get_rotation_history() == []


def test_fingerprints_come_from_decoded_keys(db_manager, key_hex, other_key_hex):
    summary = KeyRotation(db_manager, key_hex.upper(), other_key_hex).run()

    record = db_manager.get_rotation_history()[0]
    assert summary.old_fingerprint == record.old_key_fingerprint == key_hex[-8:]
    assert summary.new_fingerprint == record.new_key_fingerprint == other_key_hex[-8:]
