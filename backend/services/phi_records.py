"""Record-level PHI encryption driven by per-entity field manifests.

The persistence layer calls ``encrypt_record`` exactly once per record
before insert/update and ``decrypt_record`` exactly once per row after
select.  Only the fields named in the entity's manifest are touched; every
other key is passed through as the same object.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any

from crypto import FieldCipher, get_field_cipher


class EntityType(str, enum.Enum):
    patient = "patient"
    soap_note = "soap_note"
    treatment_session = "treatment_session"


ENTITY_FIELD_MANIFESTS: dict[EntityType, tuple[str, ...]] = {
    EntityType.patient: (
        "first_name",
        "last_name",
        "date_of_birth",
        "email",
        "phone",
        "address",
        "insurance_id",
        "policy_number",
        "group_number",
    ),
    EntityType.soap_note: (
        "subjective",
        "objective",
        "assessment",
        "plan",
        "progress_notes",
        "home_program",
    ),
    EntityType.treatment_session: (
        "notes",
        "original_document_text",
    ),
}


def protected_fields(entity_type: EntityType | str) -> tuple[str, ...]:
    """Return the ordered manifest for an entity type.

    Raises ValueError for an entity type with no manifest.
    """
    try:
        return ENTITY_FIELD_MANIFESTS[EntityType(entity_type)]
    except (ValueError, KeyError):
        raise ValueError(f"No PHI field manifest for entity type {entity_type!r}") from None


class RecordTransformer:
    def __init__(self, cipher: FieldCipher):
        self.cipher = cipher

    def encrypt_record(
        self, entity_type: EntityType | str, record: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Return a shallow copy with every present manifest field encrypted.

        Absent fields stay absent so partial updates don't invent columns.
        Raises ConfigurationError if no key is configured.
        """
        fields = protected_fields(entity_type)
        encrypted = dict(record)
        for field in fields:
            if field in encrypted:
                envelope = self.cipher.encrypt(encrypted[field])
                encrypted[field] = envelope.model_dump() if envelope is not None else None
        return encrypted

    def decrypt_record(
        self, entity_type: EntityType | str, record: Mapping[str, Any] | None
    ) -> dict[str, Any] | None:
        """Return a shallow copy with every non-null manifest field decrypted.

        Fields that fail to decrypt come back as ``None``.
        """
        if record is None:
            return None
        fields = protected_fields(entity_type)
        decrypted = dict(record)
        for field in fields:
            if decrypted.get(field) is not None:
                decrypted[field] = self.cipher.decrypt(decrypted[field])
        return decrypted


def encrypt_record(entity_type: EntityType | str, record: Mapping[str, Any]) -> dict[str, Any]:
    return RecordTransformer(get_field_cipher()).encrypt_record(entity_type, record)


def decrypt_record(
    entity_type: EntityType | str, record: Mapping[str, Any] | None
) -> dict[str, Any] | None:
    return RecordTransformer(get_field_cipher()).decrypt_record(entity_type, record)
