from .command_mixin import CommandMixin
from .message_mixin import MessageMixin

__all__ = [
    "CommandMixin",
    "MessageMixin",
]
