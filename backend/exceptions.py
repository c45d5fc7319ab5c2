"""Error taxonomy for PHI field encryption."""


class PHIEncryptionError(Exception):
    """Base class for field-encryption errors."""


class ConfigurationError(PHIEncryptionError):
    """The encryption secret is missing or unusable.

    Fatal on the write path: the enclosing operation must abort rather than
    persist plaintext.
    """


class DecryptionFailure(PHIEncryptionError):
    """A stored value could not be decrypted.

    Raised and caught inside ``FieldCipher``; callers only ever see ``None``.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
