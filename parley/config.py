"""Relay configuration from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODEL = "claude-3-7-sonnet-20250219"


def _parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"invalid {name}: {raw!r}") from None
    if value < minimum:
        raise ValueError(f"invalid {name}: must be >= {minimum}")
    return value


@dataclass(frozen=True)
class RelayConfig:
    jid: str
    password: str
    server: str
    port: int
    plaintext: bool
    muc_service: str
    api_key: str
    model: str
    max_tokens: int
    context_message_count: int
    allowed_domain: str
    cursor_file: Path
    owner_jid: str
    max_concurrent_handlers: int

    @property
    def domain(self) -> str:
        return self.jid.split("@", 1)[-1]

    @property
    def masked_api_key(self) -> str:
        if not self.api_key:
            return "not set"
        return self.api_key[:8] + "..."


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


# =============================================================================
# Configuration (call load_env() before this)
# =============================================================================


def get_relay_config() -> RelayConfig:
    """Build the relay configuration, raising ValueError when incomplete."""
    jid = (os.getenv("PARLEY_XMPP_JID") or "").strip().split("/", 1)[0]
    if not jid or "@" not in jid:
        raise ValueError("PARLEY_XMPP_JID must be set to a bare JID (name@domain)")

    password = os.getenv("PARLEY_XMPP_PASSWORD") or ""
    if not password:
        raise ValueError("PARLEY_XMPP_PASSWORD must be set")

    api_key = (os.getenv("PARLEY_ANTHROPIC_API_KEY") or "").strip()
    if not api_key:
        raise ValueError("PARLEY_ANTHROPIC_API_KEY must be set")

    domain = jid.split("@", 1)[1]

    return RelayConfig(
        jid=jid,
        password=password,
        server=(os.getenv("PARLEY_XMPP_SERVER") or "").strip() or domain,
        port=_parse_int("PARLEY_XMPP_PORT", 5222, minimum=1),
        plaintext=_parse_bool(os.getenv("PARLEY_XMPP_PLAINTEXT"), default=False),
        muc_service=(os.getenv("PARLEY_MUC_SERVICE") or "").strip()
        or f"conference.{domain}",
        api_key=api_key,
        model=(os.getenv("PARLEY_MODEL") or "").strip() or DEFAULT_MODEL,
        max_tokens=_parse_int("PARLEY_MAX_TOKENS", 1024, minimum=1),
        context_message_count=_parse_int("PARLEY_CONTEXT_MESSAGE_COUNT", 10),
        allowed_domain=(os.getenv("PARLEY_ALLOWED_DOMAIN") or "").strip() or domain,
        cursor_file=Path(
            (os.getenv("PARLEY_CURSOR_FILE") or "").strip() or "cursor.txt"
        ),
        owner_jid=(os.getenv("PARLEY_OWNER_JID") or "").strip() or f"user@{domain}",
        max_concurrent_handlers=_parse_int("PARLEY_MAX_CONCURRENT_HANDLERS", 32),
    )
