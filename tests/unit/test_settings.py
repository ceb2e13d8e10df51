"""Unit test for settings configuration."""

from chat_memory.config.settings import MemorySettings


def test_default_settings():
    """Test that default settings are correctly configured."""
    settings = MemorySettings()
    assert settings.max_memories_per_user == 1000
    assert settings.ttl_days == 30
    assert settings.enable_auto_extraction is True
    assert settings.enable_explicit_commands is True
    assert settings.storage == "auto"


def test_storage_defaults():
    """Test that default storage locations are properly set."""
    settings = MemorySettings()
    assert settings.local.base_path == ".chat_memory"
    assert settings.local.lock_timeout is None
    assert settings.remote.prefix == "memories"
    assert settings.remote.max_retries == 3
    assert settings.remote.token is None


def test_from_env_reads_values():
    env = {
        "MEMORY_MAX_PER_USER": "50",
        "MEMORY_TTL_DAYS": "7",
        "MEMORY_AUTO_EXTRACT": "false",
        "MEMORY_EXPLICIT_COMMANDS": "0",
        "MEMORY_STORAGE": "Local",
        "MEMORY_LOCAL_PATH": "/tmp/mem",
        "MEMORY_LOCK_TIMEOUT": "2.5",
        "BLOB_READ_WRITE_TOKEN": "tok",
    }
    settings = MemorySettings.from_env(env)

    assert settings.max_memories_per_user == 50
    assert settings.ttl_days == 7
    assert settings.enable_auto_extraction is False
    assert settings.enable_explicit_commands is False
    assert settings.storage == "local"
    assert settings.local.base_path == "/tmp/mem"
    assert settings.local.lock_timeout == 2.5
    assert settings.remote.token == "tok"


def test_from_env_bad_values_fall_back_to_defaults():
    settings = MemorySettings.from_env({
        "MEMORY_MAX_PER_USER": "lots",
        "MEMORY_TTL_DAYS": "",
        "MEMORY_STORAGE": "floppy",
    })
    assert settings.max_memories_per_user == 1000
    assert settings.ttl_days == 30
    assert settings.storage == "auto"


def test_auto_backend_needs_token_and_platform_marker():
    assert MemorySettings.from_env({}).resolve_backend() == "local"
    assert MemorySettings.from_env({"BLOB_READ_WRITE_TOKEN": "tok"}).resolve_backend() == "local"
    assert MemorySettings.from_env({"VERCEL": "1"}).resolve_backend() == "local"
    assert MemorySettings.from_env({"VERCEL": "1", "BLOB_READ_WRITE_TOKEN": "tok"}).resolve_backend() == "remote"


def test_explicit_backend_wins():
    env = {"VERCEL": "1", "BLOB_READ_WRITE_TOKEN": "tok", "MEMORY_STORAGE": "local"}
    assert MemorySettings.from_env(env).resolve_backend() == "local"
    assert MemorySettings(storage="remote").resolve_backend() == "remote"
