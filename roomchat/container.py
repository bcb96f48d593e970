from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from roomchat.controller import ChatRoom
from roomchat.event_bus import EventBus
from roomchat.providers import GeminiClient, OpenAIClient
from roomchat.repositories import (
    ConfigRepository,
    MessageRepository,
    ProfileRepository,
    TypingRepository,
)
from roomchat.services import (
    AIInteractionStore,
    AIService,
    AuthService,
    Composer,
    MessageReconciler,
    RealtimeService,
    StorageService,
    ThemeStore,
    TypingReconciler,
)
from roomchat.state import RoomViewState, Session
from roomchat.view import PromptToolkitView


class RoomContainer(containers.DeclarativeContainer):
    data_root = providers.Dependency()

    session = providers.Singleton(Session)
    view_state = providers.Singleton(RoomViewState)

    config_repository = providers.Singleton(ConfigRepository)
    message_repository = providers.Singleton(MessageRepository, data_root=data_root)
    typing_repository = providers.Singleton(TypingRepository, data_root=data_root)
    profile_repository = providers.Singleton(ProfileRepository, data_root=data_root)

    storage_service = providers.Singleton(
        StorageService,
        message_repository=message_repository,
        typing_repository=typing_repository,
        profile_repository=profile_repository,
    )
    realtime_service = providers.Singleton(
        RealtimeService,
        message_repository=message_repository,
        typing_repository=typing_repository,
        profile_repository=profile_repository,
    )

    ai_provider_clients = providers.Callable(
        lambda gemini, openai: {"gemini": gemini, "openai": openai},
        gemini=providers.Factory(GeminiClient),
        openai=providers.Factory(OpenAIClient),
    )
    ai_service = providers.Singleton(
        AIService,
        store=storage_service,
        config_repository=config_repository,
        provider_clients=ai_provider_clients,
    )
    auth_service = providers.Singleton(
        AuthService,
        config_repository=config_repository,
        store=storage_service,
        session=session,
    )
    theme_store = providers.Singleton(
        ThemeStore,
        config_repository=config_repository,
        store=storage_service,
        session=session,
    )

    ai_interaction_store = providers.Singleton(
        AIInteractionStore, store=storage_service, session=session
    )
    message_reconciler = providers.Singleton(
        MessageReconciler,
        store=storage_service,
        session=session,
        on_ai_change=ai_interaction_store.provided.refresh_on_ai_complete,
    )
    typing_reconciler = providers.Singleton(TypingReconciler, store=storage_service)
    composer = providers.Singleton(
        Composer,
        store=storage_service,
        session=session,
        typing=typing_reconciler,
        messages=message_reconciler,
        ai_store=ai_interaction_store,
        ai_service=ai_service,
    )

    event_bus = providers.Singleton(EventBus, maxsize=512)
    room = providers.Singleton(
        ChatRoom,
        session=session,
        feed=realtime_service,
        auth=auth_service,
        messages=message_reconciler,
        typing=typing_reconciler,
        ai_store=ai_interaction_store,
        composer=composer,
        ai_service=ai_service,
        theme=theme_store,
        event_bus=event_bus,
        view_state=view_state,
    )
    view = providers.Singleton(
        PromptToolkitView,
        room=room,
        style=theme_store.provided.build_style.call(),
    )
