import os


def _env(name: str, default):
    """Reads an optional FLEET_-prefixed override, coerced to the default's type."""
    raw = os.environ.get(f"FLEET_{name}")
    if raw is None or raw == "":
        return default
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def _env_seconds(name: str):
    raw = os.environ.get(f"FLEET_{name}")
    return float(raw) if raw else None


DEBUG_MODE = _env("DEBUG_MODE", False)
TRACE_ENABLED = _env("TRACE_ENABLED", False)

# Server configuration
SERVER_HOST = _env("SERVER_HOST", "0.0.0.0")
SERVER_PORT = _env("SERVER_PORT", 5001)

# Game server defaults
DEFAULT_GAME_PORT = 25565

# Session records are owned by an external store; this is the JSON stand-in.
SESSION_STORE_PATH = _env("SESSION_STORE_PATH", os.path.join(os.path.dirname(__file__), "sessions.json"))

# Dotted path "module:callable" of the game protocol connection factory.
CONNECTION_FACTORY = _env("CONNECTION_FACTORY", "")

# None means wait forever, matching the unbounded long-poll behaviour.
PROXY_HANDSHAKE_TIMEOUT_SECONDS = _env_seconds("PROXY_HANDSHAKE_TIMEOUT_SECONDS")
DEVICE_FLOW_TIMEOUT_SECONDS = _env_seconds("DEVICE_FLOW_TIMEOUT_SECONDS")

# "none" or "fixed_delay"
RECONNECT_POLICY = _env("RECONNECT_POLICY", "none")
RECONNECT_DELAY_SECONDS = _env("RECONNECT_DELAY_SECONDS", 15.0)

# Transport errors that are expected churn rather than news for viewers.
NOISY_ERROR_CODES = frozenset({"ECONNRESET", "EPIPE", "ETIMEDOUT"})
