import os
from pathlib import Path

import pytest

from parley.config import DEFAULT_MODEL, get_relay_config, load_env

REQUIRED = {
    "PARLEY_XMPP_JID": "henry@example.org",
    "PARLEY_XMPP_PASSWORD": "secret",
    "PARLEY_ANTHROPIC_API_KEY": "sk-ant-1234567890",
}

OPTIONAL = [
    "PARLEY_XMPP_SERVER",
    "PARLEY_XMPP_PORT",
    "PARLEY_XMPP_PLAINTEXT",
    "PARLEY_MUC_SERVICE",
    "PARLEY_MODEL",
    "PARLEY_MAX_TOKENS",
    "PARLEY_CONTEXT_MESSAGE_COUNT",
    "PARLEY_ALLOWED_DOMAIN",
    "PARLEY_CURSOR_FILE",
    "PARLEY_OWNER_JID",
    "PARLEY_MAX_CONCURRENT_HANDLERS",
]


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults_follow_the_account_domain(env):
    cfg = get_relay_config()

    assert cfg.jid == "henry@example.org"
    assert cfg.server == "example.org"
    assert cfg.port == 5222
    assert cfg.plaintext is False
    assert cfg.muc_service == "conference.example.org"
    assert cfg.allowed_domain == "example.org"
    assert cfg.owner_jid == "user@example.org"
    assert cfg.model == DEFAULT_MODEL
    assert cfg.max_tokens == 1024
    assert cfg.context_message_count == 10
    assert cfg.max_concurrent_handlers == 32
    assert cfg.cursor_file == Path("cursor.txt")


def test_overrides_are_applied(env):
    env.setenv("PARLEY_XMPP_JID", "henry@example.org/laptop")
    env.setenv("PARLEY_XMPP_SERVER", "xmpp.internal")
    env.setenv("PARLEY_XMPP_PORT", "5223")
    env.setenv("PARLEY_XMPP_PLAINTEXT", "yes")
    env.setenv("PARLEY_CONTEXT_MESSAGE_COUNT", "25")
    env.setenv("PARLEY_ALLOWED_DOMAIN", "corp.example")

    cfg = get_relay_config()

    assert cfg.jid == "henry@example.org"
    assert cfg.server == "xmpp.internal"
    assert cfg.port == 5223
    assert cfg.plaintext is True
    assert cfg.context_message_count == 25
    assert cfg.allowed_domain == "corp.example"


@pytest.mark.parametrize("name", sorted(REQUIRED))
def test_missing_required_setting_is_rejected(env, name):
    env.delenv(name)

    with pytest.raises(ValueError):
        get_relay_config()


def test_invalid_number_is_rejected(env):
    env.setenv("PARLEY_MAX_TOKENS", "lots")

    with pytest.raises(ValueError, match="PARLEY_MAX_TOKENS"):
        get_relay_config()


def test_api_key_is_masked(env):
    assert get_relay_config().masked_api_key == "sk-ant-1..."


def test_load_env_reads_quoted_values(tmp_path, monkeypatch):
    monkeypatch.setenv("PARLEY_MODEL", "before")
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\nPARLEY_MODEL = "claude-test"\n\nnot a pair\n')

    load_env(env_file)

    assert os.environ["PARLEY_MODEL"] == "claude-test"
