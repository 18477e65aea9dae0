import time
from pathlib import Path
from typing import Optional

import typer

import quill_settings
from quill_client import LanguageServerSession, path_to_uri
from quill_completion import parse_completions, parse_resolve_documentation
from quill_diagnostics import find_project_dir

app = typer.Typer(add_completion=False)

kEXIT_NO_SERVER = 1
kEXIT_TIMEOUT = 2


@app.command()
def probe(
    file: Path = typer.Argument(..., help="Source file to open on the server."),
    line: int = typer.Option(0, "--line", help="Zero-based line of the completion position."),
    character: int = typer.Option(0, "--character", help="Zero-based column of the completion position."),
    timeout: float = typer.Option(15.0, "--timeout", help="Seconds to wait for each reply."),
    settle: float = typer.Option(
        1.0,
        "--settle",
        help="Seconds to let the server index after initialize and after didOpen.",
    ),
    limit: int = typer.Option(20, "--limit", help="Print at most this many items."),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file (Quill.json)."),
) -> None:
    """Ask the configured language server for completions at a position and print them."""
    settings = quill_settings.load_settings(config)

    quill_settings.setup_logging(settings)

    file = file.absolute()

    checker_config = quill_settings.setting(settings, "checker", {})

    project_dir = find_project_dir(file, checker_config.get("manifest") or "Cargo.toml") or file.parent

    typer.echo(f"Starting server in {project_dir}...")

    session = LanguageServerSession.start(file, project_dir, settings)

    if session is None:
        typer.echo("Failed to start language server", err=True)
        quill_settings.teardown_logging()
        raise typer.Exit(code=kEXIT_NO_SERVER)

    try:
        with session:
            session.initialize(timeout)

            time.sleep(settle)

            session.did_open(path_to_uri(file), file.read_text(encoding="utf-8"))

            time.sleep(settle)

            typer.echo(f"Requesting completion at line {line}, char {character}...")

            session.drain_server_requests()

            request_id = session.request_completion(line, character)

            message = session.wait_response(request_id, timeout)

            if message is None:
                typer.echo("Timeout: no response from server", err=True)
                raise typer.Exit(code=kEXIT_TIMEOUT)

            if error := message.get("error"):
                typer.echo(f"LSP error: {error.get('code')} {error.get('message')}", err=True)
                raise typer.Exit(code=kEXIT_TIMEOUT)

            items = parse_completions(message)

            typer.echo(f"=== {len(items)} completion(s) ===")

            for i, item in enumerate(items[:limit], 1):
                typer.echo(f"{i:>3}. [{item['kind']:<6}] {item['label']:<30} {item['detail'] or ''}")

            if items:
                resolve_id = session.resolve_completion(items[0]["raw"])

                resolved = session.wait_response(resolve_id, timeout)

                if resolved is None:
                    typer.echo("Timeout: no documentation for the first item", err=True)
                    raise typer.Exit(code=kEXIT_TIMEOUT)

                typer.echo("")
                typer.echo(parse_resolve_documentation(resolved) or "(no documentation)")

    finally:
        quill_settings.teardown_logging()


def main():
    app()


if __name__ == "__main__":
    main()
