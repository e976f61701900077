"""Client-side reconstruction of ChatKit conversation streams."""

from .client import AuthError, ChatKitError, ConversationClient, ConversationError
from .config import ChatKitConfig, load_config
from .models import ContentPart, Item, WorkflowState
from .state import ConversationState
from .stream import EventFramer, StreamDecodeError
from .thread import Thread

__all__ = [
    "AuthError",
    "ChatKitConfig",
    "ChatKitError",
    "ContentPart",
    "ConversationClient",
    "ConversationError",
    "ConversationState",
    "EventFramer",
    "Item",
    "StreamDecodeError",
    "Thread",
    "WorkflowState",
    "load_config",
]
