"""Command-line interface for prbench.

Subcommands:
    prbench serve     Listen for GitHub webhooks and benchmark pull requests
    prbench handle    Process one saved pull_request payload
    prbench compare   Compare two benchmark result files offline
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click

from prbench import __version__
from prbench.config import AppConfig, load_config
from prbench.errors import ConfigurationError, InvalidEventError, OrchestrationError, SuiteError
from prbench.logging import get_logger, setup_logging
from prbench.orchestrator import Orchestrator, PullRequestEvent
from prbench.publish import DryRunPublisher, GitHubPublisher, Publisher
from prbench.suite import SuiteRunner
from prbench.workspace import WorkspaceManager

log = get_logger("cli")


def build_orchestrator(config: AppConfig, publisher: Publisher) -> Orchestrator:
    """Construct the long-lived collaborators from a validated config."""
    workspaces = WorkspaceManager(
        config.scratch_dir,
        python=config.python,
        install_command=config.install_command,
        clone_depth=config.clone_depth,
        clone_timeout=config.clone_timeout,
        install_timeout=config.install_timeout,
    )
    runner = SuiteRunner(suite_command=config.suite_command, timeout=config.suite_timeout)
    return Orchestrator(workspaces, runner, publisher, config.suite_filename)


def _load_config_or_exit(**kwargs: Any) -> AppConfig:
    try:
        return load_config(**kwargs)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(2) from exc


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """prbench — benchmark pull requests against their base branch."""


_config_option = click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file.",
)
_verbose_option = click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
_quiet_option = click.option("-q", "--quiet", is_flag=True, help="Only show errors.")
_log_file_option = click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also log at DEBUG level to this file.",
)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@main.command()
@_config_option
@click.option("--host", type=str, default=None, help="Listen address (default: 0.0.0.0).")
@click.option("--port", type=int, default=None, help="Listen port (default: 4278).")
@click.option(
    "--scratch-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for workspaces (default: ./tmp).",
)
@_verbose_option
@_quiet_option
@_log_file_option
def serve(
    config_file: Path | None,
    host: str | None,
    port: int | None,
    scratch_dir: Path | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Listen for GitHub webhooks and benchmark pull requests.

    Required settings (environment or --config): REPO_OWNER, REPO_NAME,
    SUITE_FILENAME, GITHUB_TOKEN.
    """
    import uvicorn

    from prbench.webhook import create_app

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    config = _load_config_or_exit(
        config_file=config_file,
        overrides={"host": host, "port": port, "scratch_dir": scratch_dir},
    )

    publisher = GitHubPublisher(
        config.repo_owner,
        config.repo_name,
        config.github_token,
        api_url=config.api_url,
    )
    app = create_app(build_orchestrator(config, publisher))

    log.info(
        "Listening on http://%s:%d/github-hook for %s",
        config.host,
        config.port,
        config.repo_slug,
    )
    try:
        uvicorn.run(
            app,
            host=config.host,
            port=config.port,
            log_level="warning" if quiet else "info",
        )
    finally:
        publisher.close()


# ---------------------------------------------------------------------------
# handle
# ---------------------------------------------------------------------------


@main.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_config_option
@click.option("--dry-run", is_flag=True, help="Print the report instead of posting it.")
@_verbose_option
@_quiet_option
@_log_file_option
def handle(
    payload_file: Path,
    config_file: Path | None,
    dry_run: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Process one saved pull_request webhook payload.

    PAYLOAD_FILE is the JSON body of a GitHub pull_request delivery.
    """
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    config = _load_config_or_exit(config_file=config_file, require_token=not dry_run)

    try:
        payload = json.loads(payload_file.read_text(encoding="utf-8"))
        event = PullRequestEvent.from_payload(payload)
    except (json.JSONDecodeError, InvalidEventError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    publisher: Publisher
    if dry_run:
        publisher = DryRunPublisher()
    else:
        publisher = GitHubPublisher(
            config.repo_owner, config.repo_name, config.github_token, api_url=config.api_url
        )

    try:
        outcome = build_orchestrator(config, publisher).process(event)
    except OrchestrationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(f"PR #{event.number}: {outcome.final_state.value}")
    if dry_run and outcome.report:
        click.echo()
        click.echo(outcome.report)


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


@main.command()
@click.argument("base_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("candidate_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["markdown", "json"]),
    default="markdown",
    help="Output format.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (default: stdout).",
)
def compare(base_file: Path, candidate_file: Path, fmt: str, output: Path | None) -> None:
    """Compare two benchmark result documents.

    \b
    Examples:
        prbench compare master.json pr.json
        prbench compare master.json pr.json --format json -o diff.json
    """
    from prbench.compare import compare_results
    from prbench.report import render_report
    from prbench.results import load_result

    try:
        base = load_result(base_file)
        candidate = load_result(candidate_file)
    except SuiteError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    comparison = compare_results(base, candidate)
    if fmt == "json":
        text = json.dumps(comparison.to_dict(), indent=2) + "\n"
    else:
        text = render_report(comparison)

    if output:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Exported to {output}")
    else:
        click.echo(text, nl=False)
