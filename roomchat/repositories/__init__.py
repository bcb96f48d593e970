from roomchat.repositories.config_repository import ConfigRepository
from roomchat.repositories.interfaces import (
    ConfigRepositoryProtocol,
    MessageRepositoryProtocol,
    ProfileRepositoryProtocol,
    TypingRepositoryProtocol,
)
from roomchat.repositories.message_repository import MessageRepository
from roomchat.repositories.profile_repository import ProfileRepository
from roomchat.repositories.typing_repository import TypingRepository

__all__ = [
    "ConfigRepository",
    "ConfigRepositoryProtocol",
    "MessageRepository",
    "MessageRepositoryProtocol",
    "ProfileRepository",
    "ProfileRepositoryProtocol",
    "TypingRepository",
    "TypingRepositoryProtocol",
]
