"""ORM models. Importing this package registers every table on `Base.metadata`."""

from lawcms.models import audit, cases, documents, exports, foil, messages, security, sequences, tasks  # noqa: F401

__all__ = ["audit", "cases", "documents", "exports", "foil", "messages", "security", "sequences", "tasks"]
