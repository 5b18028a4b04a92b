"""Command-line interface for the ORD aggregator.

Example:
    >>> # From terminal:
    >>> # orda --version
    >>> # orda validate document.json --spec-version 1.7
    >>> # orda ingest doc1.json doc2.json --provider s4 --db orda.db
    >>> # orda crawl s4=https://s4.example.com --db orda.db
    >>> # orda list --kind apiResource --tag finance --db orda.db
    >>> # orda show sap.s4:apiResource:orders:v1 --db orda.db
    >>> # orda purge --db orda.db
    >>> # orda serve --db orda.db --port 8080
"""

import asyncio
import dataclasses
import json
from pathlib import Path
from typing import Annotated, Optional
from urllib.parse import urlparse

import typer

from orda import __version__
from orda.aggregator import Aggregator
from orda.config import AggregatorConfig
from orda.crawler.orchestrator import crawl_summary
from orda.errors import OrdError
from orda.models.enums import EntityKind
from orda.observability.logging import configure_logging
from orda.validation.parser import parse_document

app = typer.Typer(help="ORD aggregator CLI.")

DEFAULT_DB_PATH = Path("orda_state.db")

_verbose = False


def _version_callback(value: bool) -> None:
    """Print the version and exit when requested."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


VERSION_OPTION = typer.Option(
    False,
    "--version",
    help="Show the ORD aggregator version and exit.",
    callback=_version_callback,
    is_eager=True,
)

# Module-level singleton options to avoid B008 linting errors
DB_OPTION = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite file holding the aggregated graph.")


@app.callback()
def cli(
    version: bool = VERSION_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """ORD aggregator CLI entrypoint."""
    global _verbose
    _verbose = verbose
    if verbose:
        configure_logging(log_level="DEBUG", force=True)


def _aggregator(db: Path) -> Aggregator:
    config = dataclasses.replace(
        AggregatorConfig.from_env(), storage_backend="sqlite", storage_path=str(db)
    )
    return Aggregator(config)


def _read(path: Path) -> bytes:
    if not path.exists():
        raise typer.BadParameter(f"File not found: {path}")
    try:
        return path.read_bytes()
    except OSError as exc:
        raise typer.BadParameter(f"Cannot read {path}: {exc}") from exc


def _provider_target(value: str) -> tuple[str, str]:
    """``id=url`` or a bare URL (the host becomes the provider id)."""
    if "=" in value and not value.startswith("http"):
        provider_id, url = value.split("=", 1)
        return provider_id.strip(), url.strip()
    host = urlparse(value).hostname
    if not host:
        raise typer.BadParameter(f"Not a provider URL: {value}")
    return host, value


@app.command("validate")
def validate(
    file: Annotated[Path, typer.Argument(help="ORD document (JSON).")],
    spec_version: Annotated[
        Optional[str],
        typer.Option("--spec-version", help="Rule set to apply (default: declared version)."),
    ] = None,
    output_format: Annotated[
        str, typer.Option("--format", "-o", help="Output format: text or json.")
    ] = "text",
) -> None:
    """Validate one ORD document and print every issue; exit 1 on errors."""
    result = parse_document(_read(file), spec_version=spec_version)
    if output_format.strip().lower() == "json":
        typer.echo(
            json.dumps(
                {
                    "valid": result.ok,
                    "specVersion": result.spec_version,
                    "issues": [i.model_dump(mode="json", by_alias=True) for i in result.issues],
                },
                indent=2,
            )
        )
    else:
        for issue in result.issues:
            typer.echo(str(issue))
        status = "valid" if result.ok else "invalid"
        counts = f"{len(result.errors)} error(s), {len(result.issues)} issue(s)"
        typer.echo(f"{file}: {status} ({counts})")
    if not result.ok:
        raise typer.Exit(1)


@app.command("ingest")
def ingest(
    files: Annotated[list[Path], typer.Argument(help="ORD documents of one provider.")],
    provider: Annotated[str, typer.Option("--provider", "-p", help="Provider id.")],
    db: Path = DB_OPTION,
) -> None:
    """Run a provider's documents through the pipeline and persist the graph."""
    raw = [_read(path) for path in files]
    aggregator = _aggregator(db)

    async def _run() -> None:
        await aggregator.load()
        report = await aggregator.ingest(provider, raw)
        for issue in report.issues:
            typer.echo(str(issue))
        typer.echo(
            f"revision {report.revision}: {len(report.accepted)} accepted, "
            f"{len(report.parked)} parked, {len(report.rejected)} rejected, "
            f"{len(report.tombstoned)} tombstoned"
        )

    try:
        asyncio.run(_run())
    except OrdError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(1) from exc


@app.command("crawl")
def crawl(
    providers: Annotated[
        list[str], typer.Argument(help="Provider base URLs, optionally as id=url.")
    ],
    db: Path = DB_OPTION,
) -> None:
    """Crawl providers' well-known ORD endpoints; exit 1 if any provider failed."""
    targets = [_provider_target(value) for value in providers]
    aggregator = _aggregator(db)

    async def _run() -> dict[str, list[str]]:
        await aggregator.load()
        for provider_id, url in targets:
            aggregator.register_provider(provider_id, url)
        results = await aggregator.crawl([provider_id for provider_id, _ in targets])
        for provider_id, result in sorted(results.items()):
            if result.ok and result.report is not None:
                typer.echo(
                    f"{provider_id}: {result.documents} document(s), "
                    f"{len(result.report.accepted)} accepted, {len(result.report.issues)} issue(s)"
                )
            else:
                typer.echo(f"{provider_id}: failed: {result.error}")
        return crawl_summary(results)

    try:
        summary = asyncio.run(_run())
    except OrdError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(1) from exc
    if summary["failed"]:
        raise typer.Exit(1)


@app.command("show")
def show(
    ord_id: Annotated[str, typer.Argument(help="ORD ID of the entity.")],
    db: Path = DB_OPTION,
    include_removed: Annotated[
        bool, typer.Option("--include-removed", help="Also show tombstoned entities.")
    ] = False,
) -> None:
    """Print one entity (effective attributes and flags) as JSON."""
    aggregator = _aggregator(db)
    asyncio.run(aggregator.load())
    view = aggregator.query.get(ord_id, include_removed=include_removed)
    if view is None:
        typer.echo(f"Not found: {ord_id}", err=True)
        raise typer.Exit(1)
    payload = view.model_dump(mode="json", by_alias=True)
    if _verbose:
        payload["issues"] = [
            i.model_dump(mode="json", by_alias=True) for i in aggregator.query.issues(ord_id)
        ]
    typer.echo(json.dumps(payload, indent=2))


@app.command("list")
def list_entities(
    kind: Annotated[Optional[EntityKind], typer.Option("--kind", help="Entity kind.")] = None,
    visibility: Annotated[Optional[str], typer.Option("--visibility")] = None,
    tag: Annotated[Optional[list[str]], typer.Option("--tag", help="Required tag.")] = None,
    policy_level: Annotated[Optional[str], typer.Option("--policy-level")] = None,
    include_removed: Annotated[bool, typer.Option("--include-removed")] = False,
    db: Path = DB_OPTION,
) -> None:
    """List entities of the aggregated graph."""
    aggregator = _aggregator(db)
    asyncio.run(aggregator.load())
    views = aggregator.query.list(
        kind=kind,
        visibility=visibility,
        tags=tag,
        policy_level=policy_level,
        include_removed=include_removed,
    )
    for view in views:
        flags = [
            name
            for name, on in (
                ("removed", view.removed),
                ("stale", view.stale),
                ("conflicted", view.conflicted),
                ("dangling", bool(view.dangling)),
            )
            if on
        ]
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        typer.echo(f"{view.ord_id}  {view.kind.value}{suffix}")
    if _verbose:
        typer.echo(f"{len(views)} entities")


@app.command("purge")
def purge(db: Path = DB_OPTION) -> None:
    """Delete tombstoned entities whose grace window has elapsed."""
    aggregator = _aggregator(db)

    async def _run() -> list[str]:
        await aggregator.load()
        return await aggregator.purge()

    purged = asyncio.run(_run())
    for ord_id in purged:
        typer.echo(ord_id)
    typer.echo(f"Purged {len(purged)} entities")


@app.command("serve")
def serve(
    db: Path = DB_OPTION,
    host: Annotated[str, typer.Option("--host")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port")] = 8080,
) -> None:
    """Serve the read-only query API over HTTP."""
    import uvicorn

    from orda.server import create_app

    aggregator = _aggregator(db)
    asyncio.run(aggregator.load())
    uvicorn.run(create_app(aggregator), host=host, port=port)


def main() -> None:
    """Run the ORD aggregator CLI."""
    app()


if __name__ == "__main__":
    main()
