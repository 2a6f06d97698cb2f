from __future__ import annotations

from pathlib import Path

import pytest

from walletqr.models import ConfigSource, ConfigurationStatus
from walletqr.provider import ConfigurationProvider
from walletqr.status_store import StatusStore


def _provider(workspace: Path, **kwargs) -> ConfigurationProvider:
    kwargs.setdefault("environment", {})
    return ConfigurationProvider(workspace / "qrimages", **kwargs)


def test_default_source(workspace: Path) -> None:
    provider = _provider(workspace)

    assert provider.get_configuration_source() is ConfigSource.DEFAULT
    assert provider.get_qr_directory() == (workspace / "qrimages").resolve()


def test_precedence_chain(workspace: Path) -> None:
    cli_dir = workspace / "cli"
    env_dir = workspace / "env"

    only_cli = _provider(workspace, command_line_directory=cli_dir)
    assert only_cli.get_configuration_source() is ConfigSource.COMMAND_LINE
    assert only_cli.get_qr_directory() == cli_dir.resolve()

    env_and_cli = _provider(
        workspace,
        command_line_directory=cli_dir,
        environment={"WALLETQR_DIRECTORY": str(env_dir)},
    )
    assert env_and_cli.get_configuration_source() is ConfigSource.ENVIRONMENT
    assert env_and_cli.get_qr_directory() == env_dir.resolve()

    env_and_cli.update_qr_directory(workspace / "negotiated")
    assert env_and_cli.get_configuration_source() is ConfigSource.EXTERNAL_ROOTS


def test_external_directory_persists_until_reset(workspace: Path) -> None:
    provider = _provider(workspace, command_line_directory=workspace / "cli")
    negotiated = workspace / "negotiated"

    provider.update_qr_directory(negotiated)

    assert provider.get_configuration_source() is ConfigSource.EXTERNAL_ROOTS
    assert provider.get_qr_directory() == negotiated.resolve()
    assert provider.status.offered_directories == (negotiated.resolve(),)

    status = provider.reset_to_default()

    assert status.source is ConfigSource.COMMAND_LINE
    assert status.directory == (workspace / "cli").resolve()
    assert status.offered_directories == (negotiated.resolve(),)


def test_offered_directories_are_unique(workspace: Path) -> None:
    provider = _provider(workspace)

    provider.update_qr_directory(workspace / "a")
    provider.update_qr_directory(workspace / "b")
    provider.update_qr_directory(workspace / "a")

    assert provider.status.offered_directories == ((workspace / "a").resolve(), (workspace / "b").resolve())
    assert provider.get_qr_directory() == (workspace / "a").resolve()


def test_observers_receive_updates_and_can_unsubscribe(workspace: Path) -> None:
    provider = _provider(workspace)
    seen: list[ConfigurationStatus] = []

    unsubscribe = provider.on_configuration_changed(seen.append)
    provider.update_qr_directory(workspace / "one")
    unsubscribe()
    provider.update_qr_directory(workspace / "two")

    assert [status.directory for status in seen] == [(workspace / "one").resolve()]


def test_failing_observer_does_not_block_others(workspace: Path, caplog: pytest.LogCaptureFixture) -> None:
    provider = _provider(workspace)
    seen: list[Path] = []

    def broken(status: ConfigurationStatus) -> None:
        raise RuntimeError("boom")

    provider.on_configuration_changed(broken)
    provider.on_configuration_changed(lambda status: seen.append(status.directory))

    provider.update_qr_directory(workspace / "target")

    assert seen == [(workspace / "target").resolve()]
    assert "failed" in caplog.text


def test_status_is_persisted_and_restored(workspace: Path) -> None:
    store = StatusStore(workspace / ".state" / "status.toml")
    first = _provider(workspace, store=store)

    first.update_qr_directory(workspace / "negotiated")

    second = _provider(workspace, store=store)
    assert second.get_configuration_source() is ConfigSource.EXTERNAL_ROOTS
    assert second.get_qr_directory() == (workspace / "negotiated").resolve()

    second.reset_to_default()

    third = _provider(workspace, store=store)
    assert third.get_configuration_source() is ConfigSource.DEFAULT
    assert third.status.offered_directories == ((workspace / "negotiated").resolve(),)


def test_malformed_status_file_is_ignored(workspace: Path) -> None:
    state = workspace / "status.toml"
    state.write_text("this is [not toml")

    provider = _provider(workspace, store=StatusStore(state))

    assert provider.get_configuration_source() is ConfigSource.DEFAULT


def test_has_precedence() -> None:
    assert ConfigurationProvider.has_precedence(ConfigSource.EXTERNAL_ROOTS, ConfigSource.ENVIRONMENT)
    assert ConfigurationProvider.has_precedence(ConfigSource.COMMAND_LINE, ConfigSource.DEFAULT)
    assert not ConfigurationProvider.has_precedence(ConfigSource.DEFAULT, ConfigSource.ENVIRONMENT)
