"""Exceptions raised by the chat core."""


class ChatError(Exception):
    """Base class for chat service failures."""


class PersistenceError(ChatError):
    """A message could not be written to the store."""


class QueryError(ChatError):
    """The store failed while reading or deleting messages."""
