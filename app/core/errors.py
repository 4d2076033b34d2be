"""Domain exceptions raised by the chatbot core."""


class ChatbotError(Exception):
    """Base class for chatbot errors."""


class NotFoundError(ChatbotError):
    """Unknown conversation, ticket or escalation id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class UpstreamUnavailableError(ChatbotError):
    """External trip service failed or timed out."""

    def __init__(self, service: str, message: str = "unavailable"):
        self.service = service
        super().__init__(f"[{service}] {message}")


class InvalidTransitionError(ChatbotError):
    """A status change that would move a record backwards."""

    def __init__(self, kind: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"{kind} cannot move from {current} to {requested}")


class ConversationClosedError(InvalidTransitionError):
    """Turn submitted on a closed conversation."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__("conversation", "closed", "active")


class EscalationError(ChatbotError):
    """Escalation request cannot produce the requested record."""
