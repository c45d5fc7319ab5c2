"""SQLAlchemy custom column type for transparent PHI field encryption.

Encrypts on write, decrypts on read — application code works with plaintext.
Stored values are classified here, at the persistence boundary, so legacy
plaintext rows keep reading back unchanged.
"""

from sqlalchemy import Text, TypeDecorator

from crypto import encrypt_value, get_field_cipher
from models.envelope import parse_stored_value, serialize_envelope


class EncryptedString(TypeDecorator):
    """A String column whose value is stored as a JSON envelope.

    The envelope is several times longer than the plaintext, so the
    underlying DB column is stored as Text to avoid truncation.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Encrypt before writing to the database."""
        if value is None:
            return None
        return serialize_envelope(encrypt_value(str(value)))

    def process_result_value(self, value, dialect):
        """Decrypt when reading from the database."""
        if value is None:
            return None
        return get_field_cipher().decrypt_stored(parse_stored_value(value))
