from roomchat.services.ai_interaction_store import AIInteractionStore
from roomchat.services.ai_service import AIService
from roomchat.services.auth_service import AuthService
from roomchat.services.composer_service import Composer, ComposerState
from roomchat.services.message_reconciler import MessageReconciler
from roomchat.services.realtime_service import RealtimeService, Subscription
from roomchat.services.storage_service import RoomStore, StorageService
from roomchat.services.theme_service import ThemeStore
from roomchat.services.typing_reconciler import TypingReconciler

__all__ = [
    "AIInteractionStore",
    "AIService",
    "AuthService",
    "Composer",
    "ComposerState",
    "MessageReconciler",
    "RealtimeService",
    "RoomStore",
    "StorageService",
    "Subscription",
    "ThemeStore",
    "TypingReconciler",
]
