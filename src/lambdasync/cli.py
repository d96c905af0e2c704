"""lambdasync command line.

Usage:
    lambdasync staging                  # Deploy the project in the current directory
    lambdasync ./service staging        # Deploy the project in ./service
    lambdasync ./service staging glue.yaml
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .main import run_deploy, setup_logging
from .provenance import TOOL_VERSION


@click.command()
@click.version_option(version=TOOL_VERSION, prog_name="lambdasync")
@click.argument("path_or_environment")
@click.argument("environment", required=False)
@click.argument("glue_file", required=False, type=click.Path(path_type=Path))
@click.option("--json-logs", is_flag=True, help="Emit log lines as JSON objects")
@click.option("--verbose", "-v", is_flag=True, help="Log every AWS call and retry")
def main(
    path_or_environment: str,
    environment: str | None,
    glue_file: Path | None,
    json_logs: bool,
    verbose: bool,
) -> None:
    """Deploy a project's functions to ENVIRONMENT.

    With a single argument it is the environment name and the project is the
    current directory.
    """
    if environment is None:
        project_path, environment = Path.cwd(), path_or_environment
    else:
        project_path = Path(path_or_environment)

    setup_logging(json_output=json_logs, verbose=verbose)
    exit_code, result = asyncio.run(run_deploy(environment, project_path, glue_file))
    if result is None:
        sys.exit(exit_code)

    click.echo("done.")
    if result.host:
        click.echo()
        click.echo(f"hosting on {result.host}")
    if result.log_link:
        click.echo()
        click.echo(f"See logs here: {result.log_link}")


if __name__ == "__main__":
    main()
