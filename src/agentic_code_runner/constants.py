"""Constants for the code runner."""

# Retry budget bounds for one top-level query
MIN_RETRY_BUDGET = 1
MAX_RETRY_BUDGET = 10
DEFAULT_RETRY_BUDGET = 3

# Wall-clock deadline per execution attempt
DEFAULT_TIMEOUT_S = 30.0

# How often the harness and engine look at the cancel signal
POLL_INTERVAL_S = 0.05

# Provider request defaults
DEFAULT_PROVIDER = "huggingface"
DEFAULT_MAX_TOKENS = 2000
DEFAULT_HTTP_TIMEOUT_S = 120.0
ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_PROMPT_FILE = "prompt.txt"
DEFAULT_CONFIG_FILE = "providers.yaml"

# Built-in endpoints used when no config file is present
DEFAULT_ENDPOINTS = {
    "huggingface": "https://router.huggingface.co/v1/chat/completions",
    "openai": "https://api.openai.com/v1/chat/completions",
    "anthropic": "https://api.anthropic.com/v1/messages",
}

DEFAULT_MODELS = {
    "huggingface": "Qwen/Qwen2.5-Coder-32B-Instruct",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
}

# Tail of stderr kept in a RuntimeFailure
MAX_FAULT_CHARS = 4000
