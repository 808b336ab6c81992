"""Error taxonomy for the conversation engine."""


class ChatError(Exception):
    """Base error for nativechat"""


class ValidationError(ChatError):
    """Rejected input, e.g. an edit with neither text nor images"""


class NotFoundError(ChatError):
    """Unknown conversation id, or a message index that does not resolve"""


class PersistenceError(ChatError):
    """The durable store failed to read or write"""


class BackendError(ChatError):
    """A generation request failed"""

    retryable = True


class NetworkError(BackendError):
    pass


class AuthError(BackendError):
    retryable = False


class ContentPolicyError(BackendError):
    retryable = False


class MalformedResponseError(BackendError):
    pass
