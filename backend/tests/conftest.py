from unittest.mock import MagicMock, patch

import pytest

import crypto
from crypto import FieldCipher, KeyProvider, generate_encryption_key


@pytest.fixture(autouse=True)
def _reset_cipher_cache():
    """Reset the module-level default cipher between tests."""
    crypto._cipher = None
    yield
    crypto._cipher = None


@pytest.fixture
def raw_key():
    """A fresh 64-hex-character raw key."""
    return generate_encryption_key()


@pytest.fixture
def cipher(raw_key):
    return FieldCipher(KeyProvider(raw_key))


def _settings(key: str) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.phi_encryption_key = key
    mock_settings.phi_cache_derived_key = False
    return mock_settings


@pytest.fixture
def settings_with_key(raw_key):
    """Patch get_settings so the default cipher uses a valid raw key."""
    mock_settings = _settings(raw_key)
    with patch("crypto.get_settings", return_value=mock_settings):
        yield mock_settings


@pytest.fixture
def settings_without_key():
    """Patch get_settings so no encryption key is configured."""
    mock_settings = _settings("")
    with patch("crypto.get_settings", return_value=mock_settings):
        yield mock_settings
