class StoreError(Exception):
    """Base class for every failure the store reports."""


class ConfigurationMissing(StoreError):
    """Database configuration could not be obtained; fatal at construction."""


class ConnectionFailure(StoreError):
    """No usable database connection for the current call."""


class SchemaFailure(StoreError):
    """A table creation statement failed."""


class SerializationFailure(StoreError):
    """Stored attribute text could not be decoded."""


class TypeMismatch(StoreError):
    """The stored type tag differs from the one a reader asked for."""

    def __init__(self, expected, actual) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected type tag {getattr(expected, 'value', expected)!r}, found {getattr(actual, 'value', actual)!r}")
