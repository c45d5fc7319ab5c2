"""Tests for services/phi_records.py — manifest-driven record encryption.

Covers:
- Manifest isolation: non-PHI fields pass through untouched
- Partial records: absent fields stay absent, explicit None stays None
- Legacy rows and corrupted fields on the read path
- Missing key aborts the write
"""

import pytest

from crypto import FieldCipher, KeyProvider, generate_encryption_key
from exceptions import ConfigurationError
from services.phi_records import (
    ENTITY_FIELD_MANIFESTS,
    EntityType,
    RecordTransformer,
    decrypt_record,
    encrypt_record,
    protected_fields,
)

ENVELOPE_KEYS = {"ciphertext", "iv", "tag"}


@pytest.fixture
def transformer(cipher):
    return RecordTransformer(cipher)


# ─── Manifests ────────────────────────────────────────────────────────────────


class TestManifests:
    def test_every_entity_type_has_a_manifest(self):
        assert set(ENTITY_FIELD_MANIFESTS) == set(EntityType)

    def test_lookup_by_string(self):
        assert protected_fields("treatment_session") == ("notes", "original_document_text")

    def test_patient_manifest_order(self):
        assert protected_fields(EntityType.patient)[:2] == ("first_name", "last_name")

    def test_unknown_entity_type(self):
        with pytest.raises(ValueError, match="invoice"):
            protected_fields("invoice")


# ─── encrypt_record ───────────────────────────────────────────────────────────


class TestEncryptRecord:
    def test_manifest_fields_encrypted_others_untouched(self, transformer):
        record = {"first_name": "Jane", "last_name": "Doe", "age": 8}
        encrypted = transformer.encrypt_record(EntityType.patient, record)

        assert encrypted["age"] == 8
        assert set(encrypted["first_name"]) == ENVELOPE_KEYS
        assert set(encrypted["last_name"]) == ENVELOPE_KEYS

    def test_input_not_mutated(self, transformer):
        record = {"first_name": "Jane"}
        transformer.encrypt_record("patient", record)
        assert record == {"first_name": "Jane"}

    def test_passthrough_preserves_identity(self, transformer):
        metadata = {"source": "intake"}
        encrypted = transformer.encrypt_record("patient", {"first_name": "Jane", "meta": metadata})
        assert encrypted["meta"] is metadata

    def test_absent_fields_stay_absent(self, transformer):
        encrypted = transformer.encrypt_record("patient", {"first_name": "Jane"})
        assert "last_name" not in encrypted
        assert set(encrypted) == {"first_name"}

    def test_explicit_none_and_empty_become_none(self, transformer):
        encrypted = transformer.encrypt_record("patient", {"email": None, "phone": ""})
        assert encrypted == {"email": None, "phone": None}

    def test_soap_note_fields(self, transformer):
        note = {"id": 7, "subjective": "Knee pain", "plan": "Stretching", "minutes": 45}
        encrypted = transformer.encrypt_record(EntityType.soap_note, note)
        assert set(encrypted["subjective"]) == ENVELOPE_KEYS
        assert set(encrypted["plan"]) == ENVELOPE_KEYS
        assert encrypted["id"] == 7
        assert encrypted["minutes"] == 45

    def test_missing_key_aborts(self):
        transformer = RecordTransformer(FieldCipher(KeyProvider("")))
        with pytest.raises(ConfigurationError):
            transformer.encrypt_record("patient", {"first_name": "Jane"})

    def test_record_without_phi_needs_no_key(self):
        transformer = RecordTransformer(FieldCipher(KeyProvider("")))
        assert transformer.encrypt_record("patient", {"age": 8}) == {"age": 8}


# ─── decrypt_record ───────────────────────────────────────────────────────────


class TestDecryptRecord:
    def test_round_trip_restores_record(self, transformer):
        record = {"first_name": "Jane", "last_name": "Doe", "age": 8}
        encrypted = transformer.encrypt_record("patient", record)
        assert transformer.decrypt_record("patient", encrypted) == record

    def test_treatment_session_round_trip(self, transformer):
        session = {"notes": "Tolerated well", "original_document_text": "Scanned page", "units": 3}
        encrypted = transformer.encrypt_record(EntityType.treatment_session, session)
        assert transformer.decrypt_record(EntityType.treatment_session, encrypted) == session

    def test_none_record(self, transformer):
        assert transformer.decrypt_record("patient", None) is None

    def test_legacy_row_reads_unchanged(self, transformer):
        row = {"first_name": "Jane", "last_name": "Doe", "age": 8}
        assert transformer.decrypt_record("patient", row) == row

    def test_json_text_envelopes_decrypt(self, cipher, transformer):
        row = {"notes": cipher.encrypt("Tolerated well").to_json()}
        assert transformer.decrypt_record("treatment_session", row) == {"notes": "Tolerated well"}

    def test_null_fields_left_alone(self, transformer):
        row = {"first_name": None, "age": 8}
        assert transformer.decrypt_record("patient", row) == row

    def test_corrupted_field_degrades_to_none(self, transformer):
        encrypted = transformer.encrypt_record("patient", {"first_name": "Jane", "last_name": "Doe"})
        encrypted["first_name"] = {**encrypted["first_name"], "tag": "00" * 16}

        decrypted = transformer.decrypt_record("patient", encrypted)
        assert decrypted == {"first_name": None, "last_name": "Doe"}

    def test_rotated_key_degrades_to_none(self, transformer):
        encrypted = transformer.encrypt_record("patient", {"first_name": "Jane", "age": 8})
        rotated = RecordTransformer(FieldCipher(KeyProvider(generate_encryption_key())))
        assert rotated.decrypt_record("patient", encrypted) == {"first_name": None, "age": 8}


# ─── Default Transformer ──────────────────────────────────────────────────────


class TestModuleFunctions:
    def test_round_trip_from_settings(self, settings_with_key):
        record = {"first_name": "Jane", "date_of_birth": "2016-04-01", "age": 8}
        encrypted = encrypt_record("patient", record)
        assert set(encrypted["date_of_birth"]) == ENVELOPE_KEYS
        assert decrypt_record("patient", encrypted) == record

    def test_missing_setting_aborts_write(self, settings_without_key):
        with pytest.raises(ConfigurationError):
            encrypt_record("patient", {"first_name": "Jane"})
