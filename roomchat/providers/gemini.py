from roomchat.providers.base import PostJsonRequest

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class GeminiClient:
    def generate(
        self,
        *,
        api_key: str,
        model: str,
        prompt: str,
        post_json_request: PostJsonRequest,
    ) -> str:
        url = GEMINI_ENDPOINT.format(model=model)
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        data = post_json_request(url, {"x-goog-api-key": api_key}, payload)
        if not isinstance(data, dict):
            raise RuntimeError("Gemini response format was invalid.")
        candidates = data.get("candidates", [])
        if not isinstance(candidates, list) or not candidates:
            raise RuntimeError("Gemini returned no candidates.")
        first = candidates[0]
        if not isinstance(first, dict):
            raise RuntimeError("Gemini response format was invalid.")
        content = first.get("content") or {}
        if not isinstance(content, dict):
            raise RuntimeError("Gemini response format was invalid.")
        parts = content.get("parts", [])
        if not isinstance(parts, list) or not parts:
            raise RuntimeError("Gemini returned empty content.")
        texts = [
            str(part.get("text", "")).strip()
            for part in parts
            if isinstance(part, dict)
        ]
        answer = "\n".join(text for text in texts if text)
        if not answer:
            raise RuntimeError("Gemini response did not contain text.")
        return answer
