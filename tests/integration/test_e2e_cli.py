from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from walletqr.cli import app

runner = CliRunner()

DEEP_LINK = "radixwallet://connect?sessionId=e2e&origin=https%3A%2F%2Fdapp.example"


def _write_minimal_config(project: Path) -> Path:
    project.mkdir(parents=True, exist_ok=True)
    config_path = project / "walletqr.toml"
    config_path.write_text(
        f"""
[directory]
path = "default-qr"

[security]
allowed_roots = ["{project}"]

[retention]
max_age_days = 1

[settings]
state_path = "{project / 'state.toml'}"
"""
    )
    return config_path


def test_cli_negotiated_directory_cycle(tmp_path: Path, fake_home: Path) -> None:
    project = tmp_path / "project"
    config_path = _write_minimal_config(project)
    negotiated = project / "wallet" / "qr"

    roots_result = runner.invoke(app, ["roots", str(negotiated), "--config", str(config_path)])
    assert roots_result.exit_code == 0, roots_result.stdout

    generate_result = runner.invoke(app, ["generate", DEEP_LINK, "--config", str(config_path), "--size", "96"])
    assert generate_result.exit_code == 0, generate_result.stdout
    written = list(negotiated.glob("qr-*.png"))
    assert len(written) == 1
    assert written[0].read_bytes().startswith(b"\x89PNG\r\n\x1a\n")
    assert not (project / "default-qr").exists()

    repeat_result = runner.invoke(app, ["generate", DEEP_LINK, "--config", str(config_path)])
    assert repeat_result.exit_code == 0
    assert list(negotiated.glob("qr-*.png")) == written

    dirs_result = runner.invoke(app, ["dirs", "--config", str(config_path)])
    assert dirs_result.exit_code == 0
    assert "Offered directories" in dirs_result.stdout

    reset_result = runner.invoke(app, ["reset-dir", "--config", str(config_path)])
    assert reset_result.exit_code == 0

    default_result = runner.invoke(app, ["generate", DEEP_LINK, "--config", str(config_path)])
    assert default_result.exit_code == 0
    assert len(list((project / "default-qr").glob("qr-*.png"))) == 1


def test_cli_environment_takes_precedence_over_option(tmp_path: Path, fake_home: Path) -> None:
    project = tmp_path / "project"
    config_path = _write_minimal_config(project)
    from_env = project / "from-env"

    result = runner.invoke(
        app,
        ["generate", DEEP_LINK, "--config", str(config_path), "--qr-directory", str(project / "from-option")],
        env={"WALLETQR_DIRECTORY": str(from_env)},
    )
    where_result = runner.invoke(
        app,
        ["where", "--config", str(config_path)],
        env={"WALLETQR_DIRECTORY": str(from_env)},
    )

    assert result.exit_code == 0, result.stdout
    assert len(list(from_env.glob("qr-*.png"))) == 1
    assert not (project / "from-option").exists()
    assert "Source: ENVIRONMENT" in where_result.stdout
