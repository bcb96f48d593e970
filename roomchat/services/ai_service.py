from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import Any
from urllib import error as urlerror
from urllib import request as urlrequest

from roomchat.constants import AI_HTTP_TIMEOUT_SECONDS, AI_PROVIDERS, SUMMARY_PROMPT_LIMIT
from roomchat.models import (
    AIProviderConfig,
    AIReplyRequest,
    AIReplyResponse,
    AuthUser,
    Message,
    SummaryRequest,
    SummaryResponse,
)
from roomchat.providers.base import PostJsonRequest, ProviderClient
from roomchat.repositories.interfaces import ConfigRepositoryProtocol
from roomchat.services.storage_service import RoomStore

logger = logging.getLogger(__name__)

SUMMARY_PROMPT_PREFIX = (
    "Please provide a brief summary (2-3 sentences) of the following conversation:\n\n"
)


def post_json_request(
    url: str, headers: dict[str, str], payload: dict[str, Any]
) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    request = urlrequest.Request(
        url=url,
        data=body,
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urlrequest.urlopen(request, timeout=AI_HTTP_TIMEOUT_SECONDS) as response:
            raw = response.read().decode("utf-8")
            data = json.loads(raw) if raw else {}
            if isinstance(data, dict):
                return data
            return {}
    except urlerror.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"HTTP {exc.code} from provider. {detail[:200]}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise RuntimeError(f"Provider request failed: {exc}") from exc


def build_summary_prompt(messages: list[Message]) -> str:
    user_messages = [message for message in messages if not message.is_ai_message]
    recent = user_messages[-SUMMARY_PROMPT_LIMIT:]
    return SUMMARY_PROMPT_PREFIX + "\n".join(message.content for message in recent)


class AIService:
    """Server-side handlers for AI replies and conversation summaries.

    Replies are written to the store here with ``ai_prompt`` set; callers only
    ever see the confirmed row. Provider failures are reported in the response
    and never retried.
    """

    def __init__(
        self,
        store: RoomStore,
        config_repository: ConfigRepositoryProtocol,
        provider_clients: dict[str, ProviderClient],
        http_post: PostJsonRequest = post_json_request,
    ):
        self.store = store
        self.config_repository = config_repository
        self.provider_clients = provider_clients
        self.http_post = http_post
        self.ai_config: dict[str, Any] = config_repository.load_ai_config()

    def save_ai_config(self) -> None:
        self.config_repository.save_ai_config(self.ai_config)

    def resolve_provider_config(
        self, provider_override: str | None = None
    ) -> tuple[AIProviderConfig | None, str | None]:
        providers = self.ai_config.get("providers", {})
        default_provider = str(self.ai_config.get("default_provider", "gemini")).lower()
        provider = (provider_override or default_provider).strip().lower()
        if provider not in AI_PROVIDERS or provider not in self.provider_clients:
            return None, f"Unknown provider '{provider}'. Use gemini or openai."
        provider_data = providers.get(provider, {})
        if not isinstance(provider_data, dict):
            provider_data = {}
        api_key = str(provider_data.get("api_key", "")).strip()
        model = str(provider_data.get("model", "")).strip()
        if not api_key:
            return (
                None,
                f"Provider '{provider}' is missing API key. Run /aiconfig set-key {provider} <API_KEY>.",
            )
        if not model:
            return (
                None,
                f"Provider '{provider}' is missing model. Run /aiconfig set-model {provider} <model>.",
            )
        return AIProviderConfig(provider=provider, api_key=api_key, model=model), None

    def call_provider(self, config: AIProviderConfig, prompt: str) -> str:
        client = self.provider_clients[config.provider]
        return client.generate(
            api_key=config.api_key,
            model=config.model,
            prompt=prompt,
            post_json_request=self.http_post,
        )

    async def generate(self, prompt: str) -> tuple[str | None, str | None]:
        config, error = self.resolve_provider_config()
        if config is None:
            return None, error
        try:
            answer = await asyncio.to_thread(self.call_provider, config, prompt)
        except RuntimeError as exc:
            logger.warning("AI provider %s failed: %s", config.provider, exc)
            return None, str(exc)
        return answer, None

    async def reply(
        self, request: AIReplyRequest, user: AuthUser | None
    ) -> AIReplyResponse:
        if user is None:
            return AIReplyResponse(success=False, error="Unauthorized")
        prompt = request.message.strip()
        if not prompt:
            return AIReplyResponse(success=False, error="Message is required")

        answer, error = await self.generate(prompt)
        if answer is None:
            return AIReplyResponse(success=False, error=error)

        ai_message = Message(
            user_id=user.id,
            content=answer,
            is_ai_message=True,
            ai_output_mode=request.outputMode,
            ai_prompt=prompt,
        )
        saved, save_error = await self.store.insert_message(ai_message)
        if saved is None:
            logger.warning("Failed saving AI response: %s", save_error)
            return AIReplyResponse(success=False, error="Failed to save AI response")
        return AIReplyResponse(success=True, message=saved)

    async def summarize(
        self, request: SummaryRequest, user: AuthUser | None
    ) -> SummaryResponse:
        if user is None:
            return SummaryResponse(success=False, error="Unauthorized")
        if not request.messages:
            return SummaryResponse(success=False, error="No messages provided")
        if all(message.is_ai_message for message in request.messages):
            return SummaryResponse(
                success=False, error="No user messages to summarize yet."
            )

        summary, error = await self.generate(build_summary_prompt(request.messages))
        if summary is None:
            return SummaryResponse(success=False, error=error)
        return SummaryResponse(success=True, summary=summary)

    def get_provider_summary(self) -> str:
        providers = self.ai_config.get("providers", {})
        default_provider = str(self.ai_config.get("default_provider", "gemini"))
        parts: list[str] = [f"default={default_provider}"]
        for provider in AI_PROVIDERS:
            data = providers.get(provider, {})
            if not isinstance(data, dict):
                data = {}
            configured = (
                "configured" if str(data.get("api_key", "")).strip() else "missing-key"
            )
            model = str(data.get("model", "")).strip() or "<unset>"
            parts.append(f"{provider}({configured}, model={model})")
        return "; ".join(parts)

    def _provider_settings(self, provider: str) -> dict[str, Any]:
        providers = self.ai_config.setdefault("providers", {})
        settings = providers.setdefault(provider, {})
        if not isinstance(settings, dict):
            settings = {}
            providers[provider] = settings
        return settings

    def handle_aiconfig_command(self, args: str) -> str:
        """Apply an ``/aiconfig`` command and return the text to show the user."""
        try:
            tokens = shlex.split(args)
        except ValueError:
            return "Invalid /aiconfig syntax. Check quotes."
        if not tokens:
            return f"AI config: {self.get_provider_summary()}"

        if len(tokens) >= 2 and tokens[0].lower() in AI_PROVIDERS:
            if tokens[1].lower() in {"set-key", "set-model"}:
                tokens = [tokens[1], tokens[0], *tokens[2:]]

        action = tokens[0].lower()
        if action in {"set-key", "set-model", "set-provider"} and len(tokens) >= 2:
            provider = tokens[1].strip().lower()
            if provider not in AI_PROVIDERS:
                return "Unknown provider. Use gemini or openai."
            if action == "set-provider":
                self.ai_config["default_provider"] = provider
                self.save_ai_config()
                return f"Default AI provider set to {provider}."
            if len(tokens) >= 3:
                value = tokens[2].strip()
                if action == "set-key":
                    self._provider_settings(provider)["api_key"] = value
                    self.save_ai_config()
                    return f"Saved API key for {provider}."
                self._provider_settings(provider)["model"] = value
                self.save_ai_config()
                return f"Saved model for {provider}: {value}"

        return (
            "Usage: /aiconfig [set-key <provider> <key> | set-model <provider> <model> "
            "| set-provider <provider>]"
        )
