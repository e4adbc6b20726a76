"""CLI entrypoint for model-relay."""

import logging

import rich_click as click

from model_relay import __version__
from model_relay.orchestrator.controllers import GenerateCommand, RelayCliController

click.rich_click.USE_MARKDOWN = True
RELAY_CONTROLLER = RelayCliController()


@click.group()
@click.version_option(version=__version__, prog_name="model-relay")
@click.option("--verbose", "-v", is_flag=True, help="Log routing and retry decisions to stderr.")
def model_relay(verbose: bool) -> None:
    """Model relay CLI: role-based LLM routing with fallback."""

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@model_relay.command("models")
def models() -> None:
    """Show the provider/model bound to each role and whether its credential is set."""

    try:
        lines = RELAY_CONTROLLER.models()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@model_relay.command("generate")
@click.option(
    "--role",
    type=click.Choice(["main", "fallback", "research"], case_sensitive=False),
    default="main",
    show_default=True,
    help="Initial role; remaining roles are tried in priority order on failure.",
)
@click.option("--prompt", required=True, help="User prompt text.")
@click.option("--system-prompt", default=None, help="Optional system prompt.")
@click.option(
    "--command-name",
    default="generate",
    show_default=True,
    help="Command name recorded in usage telemetry.",
)
@click.option(
    "--object",
    "as_object",
    is_flag=True,
    help="Request a structured JSON object instead of free text.",
)
@click.option(
    "--stream",
    is_flag=True,
    help="Print text chunks as the provider streams them.",
)
@click.option(
    "--background",
    is_flag=True,
    help="Run through the background operation manager and wait for its status.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Maximum wait for a background operation.",
)
def generate(  # noqa: PLR0913
    role: str,
    prompt: str,
    system_prompt: str | None,
    command_name: str,
    as_object: bool,
    stream: bool,
    background: bool,
    timeout_seconds: float | None,
) -> None:
    """Generate a completion, falling back across roles on failure."""

    try:
        result = RELAY_CONTROLLER.generate(
            GenerateCommand(
                role=role.lower(),
                prompt=prompt,
                system_prompt=system_prompt,
                command_name=command_name,
                as_object=as_object,
                background=background,
                timeout_seconds=timeout_seconds,
                stream=stream,
            ),
            on_chunk=_emit_chunk,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Generation failed.")


def _emit_chunk(text: str) -> None:
    click.echo(text, nl=False)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    model_relay()
