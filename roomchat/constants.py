import os

CONFIG_FILE = "chat_config.json"
LOCAL_CHAT_ROOT = ".local_chat"
AI_CONFIG_FILE = os.path.join(LOCAL_CHAT_ROOT, "ai_config.json")
DEFAULT_PATH = None

MESSAGES_TABLE = "messages"
PROFILES_TABLE = "profiles"
TYPING_TABLE = "typing_indicators"
MESSAGES_FILE = "messages.jsonl"
ROW_SCHEMA_VERSION = 1

LOCK_TIMEOUT_SECONDS = 2.0
LOCK_MAX_ATTEMPTS = 20
LOCK_BACKOFF_BASE_SECONDS = 0.05
LOCK_BACKOFF_MAX_SECONDS = 0.5
MAX_ROW_ID_LENGTH = 64

TYPING_THROTTLE_SECONDS = 1.0
TYPING_INACTIVITY_SECONDS = 2.0
TYPING_FRESHNESS_SECONDS = 3.0
TYPING_SWEEP_INTERVAL_SECONDS = 5.0

PLACEHOLDER_ID_LENGTH = 8
SUMMARY_CONTEXT_LIMIT = 50
SUMMARY_PROMPT_LIMIT = 20
MAX_RENDERED_MESSAGES = 200

AI_HTTP_TIMEOUT_SECONDS = 45
AI_DEFAULT_OUTPUT_MODE = "private"
AI_OUTPUT_MODES = ("public", "private")
AI_PROVIDERS = ("gemini", "openai")

MONITOR_POLL_INTERVAL_MIN_SECONDS = 0.2
MONITOR_POLL_INTERVAL_MAX_SECONDS = 1.5
MONITOR_POLL_INTERVAL_ACTIVE_SECONDS = 0.35

THEME_MODES = ("light", "dark", "system")
THEME_COLORS = ("default", "pink", "blue", "green", "purple", "orange", "teal")
DEFAULT_THEME = {"mode": "system", "color": "default"}

MODE_STYLES = {
    "dark": {
        "chat-area": "bg:#0a0a0a #ededed",
        "input-area": "bg:#18181b #ededed",
        "sidebar": "bg:#111111 #a1a1aa",
        "status": "bg:#27272a #ededed",
        "completion-menu": "bg:#27272a #ededed",
        "timestamp": "fg:#71717a",
        "own": "fg:#ffffff bold",
        "typing": "fg:#a1a1aa italic",
        "summary": "fg:#e9d5ff",
        "ai": "fg:#c4b5fd",
    },
    "light": {
        "chat-area": "bg:#ffffff #171717",
        "input-area": "bg:#f4f4f5 #171717",
        "sidebar": "bg:#fafafa #3f3f46",
        "status": "bg:#e4e4e7 #171717",
        "completion-menu": "bg:#e4e4e7 #171717",
        "timestamp": "fg:#71717a",
        "own": "fg:#000000 bold",
        "typing": "fg:#71717a italic",
        "summary": "fg:#581c87",
        "ai": "fg:#6d28d9",
    },
}

COLOR_ACCENTS = {
    "default": "#3b82f6",
    "pink": "#ec4899",
    "blue": "#2563eb",
    "green": "#16a34a",
    "purple": "#9333ea",
    "orange": "#ea580c",
    "teal": "#0d9488",
}
