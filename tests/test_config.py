from __future__ import annotations

from pathlib import Path

from rendezvous.config import CoordinatorConfig, load_config


def write_profiles(tmp_path: Path) -> Path:
    path = tmp_path / "profiles.yaml"
    path.write_text(
        "custom:\n"
        "  port: 4555\n"
        "  ping_interval: 5\n"
        "  cors_origins: ['https://example.com']\n"
        "  bogus_key: 1\n",
        encoding="utf-8",
    )
    return path


def test_profile_values_are_applied(tmp_path: Path) -> None:
    config = load_config("custom", path=write_profiles(tmp_path), environ={})

    assert config.profile == "custom"
    assert config.port == 4555
    assert config.ping_interval == 5
    assert config.cors_origins == ["https://example.com"]
    assert config.host == CoordinatorConfig().host


def test_environment_overrides_profile(tmp_path: Path) -> None:
    environ = {"RENDEZVOUS_PORT": "9000", "RENDEZVOUS_LOG_LEVEL": "debug"}
    config = load_config("custom", path=write_profiles(tmp_path), environ=environ)

    assert config.port == 9000
    assert config.log_level == "debug"


def test_invalid_environment_values_are_ignored(tmp_path: Path) -> None:
    environ = {"RENDEZVOUS_PORT": "not-a-port", "RENDEZVOUS_QUEUE_SIZE": ""}
    config = load_config("custom", path=write_profiles(tmp_path), environ=environ)

    assert config.port == 4555
    assert config.queue_size == CoordinatorConfig().queue_size


def test_unknown_profile_and_missing_file_fall_back_to_defaults(tmp_path: Path) -> None:
    config = load_config("nope", path=tmp_path / "missing.yaml", environ={})

    assert config == CoordinatorConfig(profile="nope")


def test_bundled_profiles_load() -> None:
    config = load_config("test", environ={})

    assert config.ping_interval == 0.0
    assert config.queue_size == 32


def test_profile_values_are_cast_like_environment_values(tmp_path: Path) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text(
        "quoted:\n"
        "  port: '4000'\n"
        "  queue_size: '64'\n"
        "  ping_interval: 10\n"
        "  pong_timeout: soon\n"
        "  cors_origins: 'https://a.example, https://b.example'\n",
        encoding="utf-8",
    )

    config = load_config("quoted", path=path, environ={})

    assert config.port == 4000
    assert config.queue_size == 64
    assert isinstance(config.ping_interval, float)
    assert config.ping_interval == 10.0
    assert config.pong_timeout == CoordinatorConfig().pong_timeout
    assert config.cors_origins == ["https://a.example", "https://b.example"]
