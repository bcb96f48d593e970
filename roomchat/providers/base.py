from collections.abc import Callable
from typing import Any, Protocol

PostJsonRequest = Callable[[str, dict[str, str], dict[str, Any]], dict[str, Any]]


class ProviderClient(Protocol):
    def generate(
        self,
        *,
        api_key: str,
        model: str,
        prompt: str,
        post_json_request: PostJsonRequest,
    ) -> str:
        pass
