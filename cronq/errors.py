import sqlite3

# Driver failures (connection loss, constraint violations, locked database)
# reach callers as-is; the alias only gives them a name to catch.
StorageError = sqlite3.Error


class MalformedRecord(Exception):
    """A stored attribute blob could not be decoded."""
