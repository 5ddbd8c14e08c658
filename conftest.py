"""Root conftest: test environment is fixed before chat_sync.config is imported."""
from __future__ import annotations

import os
from pathlib import Path

_TEST_DEFAULTS = {
    "TENANT_ID": "acme",
    "TOPIC_PREFIX": "chat",
    "PUSH_TYPING_DESTINATION": "chat.typing",
    "JWT_SECRET": "test-secret-for-hs256-signing-0123456789",
    "JWT_ALGORITHM": "HS256",
}

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for line in _env_test.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())

for _key, _value in _TEST_DEFAULTS.items():
    os.environ.setdefault(_key, _value)
