"""CLI application for depmend."""

import asyncio
import json
import logging
import shlex
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from core.analyze_errors import ErrorAnalyzer
from core.config import load_settings
from core.dead_urls import MANIFEST_SECTIONS, DeadURLResolver, generate_report
from core.fix_history import FixHistoryStore
from core.fix_strategy import FixStrategyEngine
from core.lockfile import LockfileParser
from core.logging_config import setup_logging
from core.manifest import PackageJsonFile
from core.models import AnalyzedError, DeadUrlHandlingSummary, FixResult, HistoricalFix
from core.npm_registry import NpmRegistryClient, UrlValidator
from core.parse_node import parse_package_json
from core.registry import PatternRegistry
from core.remediate import RemediationLoop, RemediationReport, VerificationOutcome

console = Console()
logger = logging.getLogger(__name__)


def format_json_summary(summary: DeadUrlHandlingSummary, applied: bool) -> str:
    """Format JSON output for a dead URL pass."""
    return json.dumps({**summary.to_dict(), "applied": applied}, indent=2)


def format_fix_table(rows: list[tuple[AnalyzedError, FixResult]], dry_run: bool) -> Table:
    """Render selected fixes, one row per error."""
    table = Table(title="Planned fixes" if dry_run else "Applied fixes")
    table.add_column("Error")
    table.add_column("Package")
    table.add_column("Strategy")
    table.add_column("Result")

    for error, result in rows:
        if dry_run:
            status = "[yellow]planned[/yellow]"
        elif result.success:
            status = "[green]applied[/green]"
        else:
            status = f"[red]failed[/red] {result.error or ''}"
        table.add_row(error.category.value, error.package_name or "-", describe_strategy(result.strategy.to_dict()), status)
    return table


def format_history_table(repo_id: str, fixes: list[HistoricalFix]) -> Table:
    table = Table(title=f"Fix history for {repo_id}")
    table.add_column("Error pattern")
    table.add_column("Strategy")
    table.add_column("Successes", justify="right")
    table.add_column("Last used")

    for fix in fixes:
        table.add_row(
            fix.error_pattern,
            describe_strategy(fix.strategy.to_dict()),
            str(fix.success_count),
            fix.last_used.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def describe_strategy(data: dict) -> str:
    """``{"type": "adjust_version", "package": "x"}`` -> ``adjust_version package=x``."""
    details = " ".join(f"{key}={value}" for key, value in data.items() if key != "type" and value not in ("", None))
    return f"{data['type']} {details}".strip()


def direct_url_dependencies(project_path: Path) -> dict[str, str]:
    """Dependencies and devDependencies of the project's package.json."""
    manifest = parse_package_json(PackageJsonFile(project_path).read_text())
    return {entry.name: entry.spec for entry in manifest.entries if entry.section in MANIFEST_SECTIONS}


def make_command_verifier(command: str):
    """Build a verifier that runs ``command`` in the project directory."""
    args = shlex.split(command)

    async def verify(project_path: Path) -> VerificationOutcome:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=project_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output, _ = await process.communicate()
        return VerificationOutcome(success=process.returncode == 0, output=output.decode(errors="replace"))

    return verify


app = typer.Typer(
    name="depmend",
    help="depmend - Repair dead URL dependencies and failing installs in Node.js projects",
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress"),
    debug: bool = typer.Option(False, "--debug", help="Log everything"),
    log_file: str | None = typer.Option(None, "--log-file", help="Also write a detailed log here"),
) -> None:
    """depmend - Repair dead URL dependencies and failing installs."""
    settings = load_settings()
    level = "DEBUG" if debug else "INFO" if verbose else settings.log_level
    setup_logging(level, log_file)


@app.command("dead-urls")
def dead_urls(
    project_path: Path = typer.Argument(help="Project directory containing package.json"),
    registry_path: Path | None = typer.Option(None, "--registry", help="Pattern registry JSON file"),
    transitive: bool = typer.Option(False, "--transitive", help="Also check URL dependencies in the lockfile"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without modifying package.json"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
    timeout: float | None = typer.Option(None, "--timeout", help="HTTP timeout in seconds"),
) -> None:
    """Find dead URL-based dependencies and replace or remove them."""
    try:
        if format_type not in ("text", "json"):
            console.print(f"Error: Unknown format: {format_type}", style="red")
            raise typer.Exit(1)
        if not project_path.is_dir():
            console.print(f"Error: Directory {project_path} not found", style="red")
            raise typer.Exit(1)

        settings = load_settings()
        http_timeout = timeout or settings.http_timeout

        registry = PatternRegistry(registry_path or settings.registry_path)
        registry.load()

        resolver = DeadURLResolver(
            registry=registry,
            url_checker=UrlValidator(timeout=http_timeout),
            npm_lookup=NpmRegistryClient(settings.npm_registry, timeout=http_timeout),
            lockfile_reader=LockfileParser(),
        )

        dependencies = direct_url_dependencies(project_path)
        if transitive:
            summary = asyncio.run(resolver.handle_dead_urls_with_transitive(project_path, dependencies))
        else:
            summary = asyncio.run(resolver.handle_dead_urls(project_path, dependencies))

        applied = False
        if not dry_run and summary.dead_urls_found:
            applied = resolver.apply_to_package_json(project_path, summary.results)

        if format_type == "json":
            typer.echo(format_json_summary(summary, applied))
        else:
            console.print(generate_report(summary), highlight=False)
            if applied:
                console.print(f"Updated {project_path / 'package.json'}", style="green")
            elif dry_run and summary.dead_urls_found:
                console.print("Dry run: package.json not modified", style="yellow")

    except typer.Exit:
        raise
    except Exception as e:
        logger.debug("dead-urls failed", exc_info=True)
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)


@app.command()
def fix(
    project_path: Path = typer.Argument(help="Project directory containing package.json"),
    log: Path = typer.Option(..., "--log", help="Captured install/build output"),
    repo_id: str | None = typer.Option(None, "--repo-id", help="Repository id for fix history"),
    history_dir: Path | None = typer.Option(None, "--history-dir", help="Fix history directory"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show strategies without applying them"),
) -> None:
    """Analyze an install log and apply one fix per error."""
    try:
        if not log.is_file():
            console.print(f"Error: Log file {log} not found", style="red")
            raise typer.Exit(1)

        settings = load_settings()
        repo = repo_id or str(project_path.resolve())
        store = FixHistoryStore(history_dir or settings.history_dir)
        engine = FixStrategyEngine(history_store=store)
        history = store.load_history(repo)

        errors = ErrorAnalyzer().analyze(log.read_text(encoding="utf-8", errors="replace"))
        if not errors:
            console.print("No errors found in log")
            raise typer.Exit(0)

        rows = []
        for error in errors:
            if not engine.has_untried_strategies(error, history, repo):
                continue
            strategy = engine.select_strategy(error, history, repo)
            engine.mark_strategy_attempted(error, strategy)
            if dry_run:
                result = FixResult(success=True, strategy=strategy)
            else:
                result = engine.apply_fix(project_path, strategy)
            rows.append((error, result))

        if not rows:
            console.print("No applicable fix strategies for the errors found")
            raise typer.Exit(1)

        console.print(format_fix_table(rows, dry_run))
        if not dry_run and not any(result.success for _, result in rows):
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        logger.debug("fix failed", exc_info=True)
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)


@app.command()
def remediate(
    project_path: Path = typer.Argument(help="Project directory containing package.json"),
    command: str = typer.Option("npm install", "--command", "-c", help="Install/build command to verify with"),
    repo_id: str | None = typer.Option(None, "--repo-id", help="Repository id for fix history"),
    history_dir: Path | None = typer.Option(None, "--history-dir", help="Fix history directory"),
    max_iterations: int = typer.Option(10, "--max-iterations", help="Maximum verification runs"),
) -> None:
    """Run the install, fix the top error, and repeat until it passes."""
    try:
        if not project_path.is_dir():
            console.print(f"Error: Directory {project_path} not found", style="red")
            raise typer.Exit(1)

        settings = load_settings()
        store = FixHistoryStore(history_dir or settings.history_dir)
        loop = RemediationLoop(
            engine=FixStrategyEngine(history_store=store),
            store=store,
            analyzer=ErrorAnalyzer(),
            verifier=make_command_verifier(command),
            max_iterations=max_iterations,
        )
        report: RemediationReport = asyncio.run(loop.run(project_path, repo_id or str(project_path.resolve())))

        if report.applied:
            console.print(format_fix_table([(fix.error, fix.result) for fix in report.applied], dry_run=False))
        if report.success:
            console.print(f"Install succeeded after {report.iterations} run(s)", style="green")
            return

        console.print(f"Install still failing ({report.stop_reason})", style="red")
        for error in report.remaining_errors:
            console.print(f"  {error.category.value}: {error.package_name or '-'}")
        raise typer.Exit(1)

    except typer.Exit:
        raise
    except Exception as e:
        logger.debug("remediate failed", exc_info=True)
        console.print(f"Error: {e}", style="red")
        raise typer.Exit(1)


@app.command()
def history(
    repo_id: str = typer.Argument(help="Repository id or local path"),
    history_dir: Path | None = typer.Option(None, "--history-dir", help="Fix history directory"),
) -> None:
    """Show recorded fixes for a repository, most successful first."""
    settings = load_settings()
    store = FixHistoryStore(history_dir or settings.history_dir)
    if store.load_history(repo_id) is None:
        console.print(f"No fix history for {repo_id}")
        raise typer.Exit(0)

    console.print(format_history_table(repo_id, store.get_prioritized_fixes(repo_id)))


if __name__ == "__main__":
    app()
