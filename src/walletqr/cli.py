"""Command-line interface for walletqr."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .addresses import AddressValidator, Network
from .config import ConfigError, Config, load_config
from .directory import DirectoryManager
from .errors import ErrorKind, WalletQRError
from .generator import LocalArtifactGenerator
from .ledger import BalanceChecker, FileBalanceFetcher
from .manager import QUALITY_LEVELS, LocalArtifactManager, validate_payload
from .models import (
    ArtifactRequest,
    ArtifactResult,
    MethodCandidate,
    OutputFormat,
    QRContext,
    QRHybridConfig,
    QROptimizationResult,
    QualityHint,
    RootsValidationResult,
)
from .provider import ConfigurationProvider
from .qr_config import (
    BALANCED_CONFIG,
    CAPACITY_CONFIG,
    QUALITY_CONFIG,
    TERMINAL_CONFIG,
    QRHybridConfigManager,
)
from .qr_validation import QRValidationEngine
from .roots import RootsManager
from .security import SecurityValidator

app = typer.Typer(help="Wallet deep-link QR artifacts in a negotiated directory")
console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to walletqr.toml")
QR_DIRECTORY_OPTION = typer.Option(
    None,
    "--qr-directory",
    help="Directory for artifacts (overridden by WALLETQR_DIRECTORY and negotiated roots)",
)


@dataclass
class Services:
    config: Config
    provider: ConfigurationProvider
    validator: SecurityValidator

    def roots_manager(self) -> RootsManager:
        return RootsManager(self.validator, self.provider, rate_limit_ms=self.config.roots.rate_limit_ms)

    def directory_manager(self) -> DirectoryManager:
        directory = self.config.directory.with_base_path(self.provider.get_qr_directory())
        return DirectoryManager(directory, self.config.filenames)

    def artifact_manager(self) -> LocalArtifactManager:
        return LocalArtifactManager(self.config, self.provider, self.validator)


def _load_services(config: Path | None, qr_directory: Path | None = None) -> Services:
    config_obj = load_config(config)
    return Services(
        config=config_obj,
        provider=ConfigurationProvider.from_config(config_obj, command_line_directory=qr_directory),
        validator=SecurityValidator(config_obj.security),
    )


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=False)],
        force=True,
    )


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Check that the QR directory is writable.")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{message}[/red]")
        if "Expected to find" in message:
            console.print(
                "[yellow]Point --config at the directory containing walletqr.toml, or at the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, WalletQRError):
        console.print(f"[red]{exc}[/red]")
        if exc.kind is ErrorKind.SECURITY_ERROR:
            console.print("[yellow]Tip: the directory must be inside one of the allowed roots (see 'walletqr dirs').[/yellow]")
        elif exc.kind is ErrorKind.PERMISSION_ERROR:
            console.print("[yellow]Tip: grant write access to the QR directory or choose another one.[/yellow]")
        raise typer.Exit(code=1)
    raise exc


def _format_artifact(result: ArtifactResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Field")
    table.add_column("Value", overflow="fold")

    metadata = result.metadata
    table.add_row("Filename", result.filename)
    table.add_row("Size", f"{result.file_size} bytes")
    table.add_row("Dimensions", f"{result.dimensions[0]}x{result.dimensions[1]}")
    table.add_row("Hash", result.hash)
    table.add_row("Level", f"{metadata.error_correction.value} (margin {metadata.margin})")
    table.add_row("Score", f"{metadata.score:.1f}")
    table.add_row("Reused", "yes" if result.reused else "no")
    table.add_row("Source", metadata.source.value if metadata.source else "override")
    if metadata.used_fallback:
        table.add_row("Fallback", "yes")

    console.print(table)
    console.print(f"[green]Saved[/green] {result.file_path}", soft_wrap=True)


def _format_roots_result(result: RootsValidationResult) -> None:
    if result.is_valid:
        console.print(f"[green]{result.message}[/green]", soft_wrap=True)
    else:
        console.print(f"[red]{result.message}[/red]", soft_wrap=True)

    if result.errors:
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Reason")
        table.add_column("Path", overflow="fold")
        table.add_column("Details", overflow="fold")
        for error in result.errors:
            table.add_row(error.code.value, error.path or "", error.detail)
        console.print(table)


def _format_paths(title: str, paths: Iterable[Path]) -> None:
    console.print(f"[bold]{title}[/bold]")
    items = list(paths)
    if not items:
        console.print("  (none)")
    for item in items:
        console.print(f"  {item}", soft_wrap=True)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    _configure_logging(verbose)


@app.command()
def generate(
    payload: str = typer.Argument(..., help="Wallet deep link to encode"),
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
    size: int | None = typer.Option(None, "--size", "-s", help="Image width and height in pixels"),
    quality: QualityHint | None = typer.Option(None, "--quality", "-q", help="Error-correction preference"),
    context: QRContext | None = typer.Option(None, "--context", help="Where the code will be viewed"),
    output_dir: str | None = typer.Option(None, "--output-dir", "-o", help="One-off output directory"),
) -> None:
    """Write a PNG artifact for PAYLOAD into the active QR directory."""

    try:
        services = _load_services(config, qr_directory)
        request = ArtifactRequest(payload=payload, size=size, quality=quality, context=context, output_dir=output_dir)
        result = asyncio.run(_generate(services, request))
        _format_artifact(result)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


async def _generate(services: Services, request: ArtifactRequest) -> ArtifactResult:
    manager = services.artifact_manager()
    try:
        return await manager.generate(request)
    finally:
        await manager.close()


@app.command()
def roots(
    candidates: list[str] = typer.Argument(..., help="Candidate directories, in order of preference"),
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Offer candidate directories; the first one that passes validation becomes active."""

    try:
        services = _load_services(config, qr_directory)
        result = asyncio.run(services.roots_manager().handle_roots_changed({"roots": candidates}))
        _format_roots_result(result)
        if not result.is_valid:
            raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("set-dir")
def set_dir(
    path: str = typer.Argument(..., help="Directory to use for artifacts"),
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Select the QR directory explicitly."""

    try:
        services = _load_services(config, qr_directory)
        result = asyncio.run(services.roots_manager().set_directory(path))
        _format_roots_result(result)
        if not result.is_valid:
            raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("reset-dir")
def reset_dir(
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Forget the negotiated directory and fall back to environment, option or default."""

    try:
        services = _load_services(config, qr_directory)
        status = services.roots_manager().reset_to_default()
        console.print(f"[green]QR directory reset to[/green] {status.directory} ({status.source.value})", soft_wrap=True)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def where(
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Show the active QR directory and where it came from."""

    try:
        services = _load_services(config, qr_directory)
        status = services.provider.status
        console.print(f"Directory: {status.directory}", soft_wrap=True)
        console.print(f"Source: {status.source.value}")
        console.print(f"Updated: {status.last_updated.isoformat(timespec='seconds')}")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def dirs(
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """List allowed roots and the directories offered so far."""

    try:
        services = _load_services(config, qr_directory)
        manager = services.roots_manager()
        _format_paths("Allowed roots", manager.allowed_directories())
        _format_paths("Offered directories", services.provider.status.offered_directories)
        _format_paths("Active", manager.current_roots())
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def stats(
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Show artifact count and disk usage of the active QR directory."""

    try:
        services = _load_services(config, qr_directory)
        info = services.directory_manager().get_stats()
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Path", overflow="fold")
        table.add_column("Exists")
        table.add_column("Writable")
        table.add_column("Artifacts")
        table.add_column("Bytes")
        table.add_row(
            str(info.path),
            "yes" if info.exists else "no",
            "yes" if info.writable else "no",
            str(info.file_count),
            str(info.total_size),
        )
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def cleanup(
    config: Path | None = CONFIG_OPTION,
    qr_directory: Path | None = QR_DIRECTORY_OPTION,
) -> None:
    """Apply the retention policy to the active QR directory."""

    try:
        services = _load_services(config, qr_directory)
        result = services.directory_manager().cleanup_old_files()
        console.print(f"[green]Removed {result.removed_files} file(s), freed {result.freed_bytes} bytes.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def inspect(
    payload: str = typer.Argument(..., help="Deep link to analyse"),
    context: QRContext = typer.Option(QRContext.MOBILE_SCAN, "--context", help="Where the code will be viewed"),
    quality: QualityHint | None = typer.Option(None, "--quality", "-q", help="Error-correction preference"),
) -> None:
    """Show the chosen encoder settings and quality score without writing anything."""

    optimization = QRHybridConfigManager().get_optimal_qr_config(
        payload, context, QUALITY_LEVELS[quality] if quality else None
    )
    validation = QRValidationEngine().validate_qr(payload, optimization.config, context)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Field")
    table.add_column("Value", overflow="fold")
    table.add_row("Length", str(len(payload)))
    table.add_row("Level", optimization.config.error_correction.value)
    table.add_row("Margin", str(optimization.config.margin))
    table.add_row("Capacity", str(optimization.expected_capacity))
    table.add_row("Modules", str(optimization.estimated_size))
    if optimization.fallback_config:
        fallback = optimization.fallback_config
        table.add_row("Fallback", f"{fallback.error_correction.value} (margin {fallback.margin})")
    table.add_row("Score", f"{validation.score:.1f}")
    table.add_row("Valid", "yes" if validation.is_valid else "no")
    console.print(table)
    console.print(optimization.recommendation)

    for error in validation.errors:
        console.print(f"[red]error:[/red] {error}")
    for warning in validation.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for recommendation in validation.recommendations:
        console.print(f"[cyan]hint:[/cyan] {recommendation}")


@app.command()
def compare(
    payload: str = typer.Argument(..., help="Deep link to analyse"),
    context: QRContext = typer.Option(QRContext.MOBILE_SCAN, "--context", help="Where the code will be viewed"),
) -> None:
    """Score the built-in encoder presets against PAYLOAD."""

    optimal = QRHybridConfigManager().get_optimal_qr_config(payload, context).config
    candidates = [
        MethodCandidate("adaptive", optimal, context),
        MethodCandidate("capacity", CAPACITY_CONFIG, context),
        MethodCandidate("balanced", BALANCED_CONFIG, context),
        MethodCandidate("quality", QUALITY_CONFIG, context),
        MethodCandidate("terminal", TERMINAL_CONFIG, context),
    ]
    comparison = QRValidationEngine().compare_qr_methods(payload, candidates)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Method")
    table.add_column("Level")
    table.add_column("Margin")
    table.add_column("Score")
    table.add_column("Performance")
    for method in comparison.methods:
        table.add_row(
            method.name,
            method.config.error_correction.value,
            str(method.config.margin),
            f"{method.validation.score:.1f}",
            f"{method.estimated_performance:.1f}",
        )
    console.print(table)
    console.print(f"[green]Best:[/green] {comparison.recommendation.best_method}")
    console.print(comparison.recommendation.reasoning)
    if comparison.recommendation.alternatives:
        console.print(f"Alternatives: {', '.join(comparison.recommendation.alternatives)}")


@app.command()
def show(
    payload: str = typer.Argument(..., help="Wallet deep link to encode"),
    output_format: OutputFormat = typer.Option(OutputFormat.TERMINAL, "--format", "-f", help="How to render the code"),
    context: QRContext | None = typer.Option(None, "--context", help="Where the code will be viewed"),
    quality: QualityHint | None = typer.Option(None, "--quality", "-q", help="Error-correction preference"),
    size: int = typer.Option(256, "--size", "-s", help="Image width and height for png-base64"),
    small: bool = typer.Option(False, "--small", help="Pack two module rows into each terminal line"),
    inverse: bool = typer.Option(False, "--inverse", help="Swap dark and light modules in the terminal"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write svg or png-base64 output to this file"),
) -> None:
    """Render PAYLOAD in the terminal, as SVG or as base64 PNG without touching the QR directory."""

    try:
        payload = validate_payload(payload)
        default_context = QRContext.TERMINAL_RENDER if output_format is OutputFormat.TERMINAL else QRContext.MOBILE_SCAN
        optimization = QRHybridConfigManager().get_optimal_qr_config(
            payload, context or default_context, QUALITY_LEVELS[quality] if quality else None
        )
        generator = LocalArtifactGenerator()

        if output_format is OutputFormat.TERMINAL:
            rendered = _with_fallback(
                lambda config: generator.render_terminal(payload, config, small=small, inverse=inverse), optimization
            )
            console.print(rendered.text, markup=False, highlight=False, soft_wrap=True)
            if not rendered.fits(console.width):
                console.print(
                    f"[yellow]The code is {rendered.width} columns wide but the terminal has {console.width};"
                    " try --small.[/yellow]"
                )
            return

        if output_format is OutputFormat.SVG:
            text = _with_fallback(lambda config: generator.generate_svg(payload, config), optimization).text
        else:
            png = _with_fallback(lambda config: generator.generate_png_buffer(payload, config, size), optimization)
            text = base64.b64encode(png.data).decode("ascii")

        if output is None:
            typer.echo(text)
        else:
            generator.write_atomic(output, text.encode("utf-8"))
            console.print(f"[green]Wrote[/green] {output}", soft_wrap=True)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def _with_fallback(render: Callable[[QRHybridConfig], T], optimization: QROptimizationResult) -> T:
    try:
        return render(optimization.config)
    except WalletQRError as exc:
        if optimization.fallback_config is None or not exc.details.get("overflow"):
            raise
    return render(optimization.fallback_config)


@app.command("check-address")
def check_address(
    address: str = typer.Argument(..., help="Ledger address to validate"),
    network: Network = typer.Option(Network.STOKENET, "--network", "-n", help="Expected network"),
) -> None:
    """Validate an address and its Bech32m checksum."""

    result = AddressValidator(network).validate(address)
    if not result.is_valid:
        console.print(f"[red]Invalid address:[/red] {result.message}")
        raise typer.Exit(code=1)
    console.print(f"[green]Valid[/green] {result.entity_type.value} address on {result.network.value}")


@app.command("check-balance")
def check_balance(
    address: str = typer.Argument(..., help="Account address to check"),
    amount: str = typer.Argument(..., help="Amount the account must hold"),
    balances: Path = typer.Option(
        ..., "--balances", "-b", help="TOML balance snapshot with state_version and a balances table"
    ),
    network: Network = typer.Option(Network.STOKENET, "--network", "-n", help="Expected network"),
    fee_buffer: bool = typer.Option(True, "--fee-buffer/--no-fee-buffer", help="Require a fee buffer on top of AMOUNT"),
) -> None:
    """Check that ADDRESS holds at least AMOUNT according to a balance snapshot."""

    try:
        checker = BalanceChecker(FileBalanceFetcher(balances), validator=AddressValidator(network))
        result = asyncio.run(checker.check_balance(address, amount, include_fee_buffer=fee_buffer))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if result.error_kind is not None:
        console.print(f"[red][{result.error_kind.value}] {result.message}[/red]", soft_wrap=True)
        raise typer.Exit(code=1)
    console.print(
        f"[green]Sufficient balance:[/green] {result.current_balance} available, {result.total_required} required"
    )


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
