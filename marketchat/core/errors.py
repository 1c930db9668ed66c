# file: marketchat/core/errors.py


class ChatError(Exception):
    status_code = 400


# ============================================================
# Caller errors (never retried)
# ============================================================

class InvalidParticipants(ChatError):
    status_code = 422


class NotAParticipant(ChatError):
    status_code = 403


class EmptyContent(ChatError):
    status_code = 422


class ContentTooLong(ChatError):
    status_code = 422


class ConversationNotFound(ChatError):
    status_code = 404


# ============================================================
# Store / transport errors
# ============================================================

class StoreUnavailable(ChatError):
    status_code = 503


class DirectoryError(StoreUnavailable):
    pass


class ConflictError(ChatError):
    """Another writer inserted the same conversation pair first."""
    status_code = 409
