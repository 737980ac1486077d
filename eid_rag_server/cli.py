"""Command line entry point: ingestion, ad-hoc questions, model listing and the API server."""

import dataclasses
import json
import logging
import sys

import click

from .backends import GeminiAPIError, list_models
from .config import ServerConfig
from .rag.config import RAGConfig
from .rag.indexer import IngestionPipeline
from .rag.retriever import DisallowedURLError
from .rag.scheduler import IngestionScheduler, describe_failure
from .rag.service import RAGService
from .server import RAGServer


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def reloading_ingest(server_config):
    """Build an ingestion callable that re-reads the sources file and RAG_* settings on every run."""

    def run():
        return IngestionPipeline.from_config(server_config, RAGConfig.from_env()).run()

    return run


@click.group()
@click.option("--env-prefix", default="", help="Prefix for server environment variables (e.g. EID_).")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, env_prefix, verbose):
    """Eid knowledge search: crawl trusted sites and answer questions from them."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["server_config"] = ServerConfig.from_env(env_prefix)
    ctx.obj["rag_config"] = RAGConfig.from_env()


@main.command()
@click.option("--max-pages", type=int, default=None, help="Page budget for this run.")
@click.option("--no-follow", is_flag=True, help="Only fetch the seed URLs.")
@click.option("--progress/--no-progress", default=True, help="Show a progress bar.")
@click.pass_context
def ingest(ctx, max_pages, no_follow, progress):
    """Crawl the seed URLs once and index new or changed pages."""
    server_config = ctx.obj["server_config"]
    rag_config = ctx.obj["rag_config"]

    overrides = {"show_progress": progress}
    if max_pages is not None:
        overrides["max_pages"] = max_pages
    if no_follow:
        overrides["follow_links"] = False
    rag_config = dataclasses.replace(rag_config, **overrides)

    pipeline = IngestionPipeline.from_config(server_config, rag_config)
    try:
        stats = pipeline.run()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    except Exception as e:
        raise click.ClickException(f"Ingestion failed: {e} {describe_failure(e)}".strip()) from e

    click.echo(json.dumps(stats.to_dict(), indent=2))


@main.command()
@click.argument("query")
@click.option("--legacy", is_flag=True, help="Skip vector search and use the legacy keyword sources.")
@click.option("--url", "urls", multiple=True, help="Answer from this trusted page instead (repeatable).")
@click.pass_context
def ask(ctx, query, legacy, urls):
    """Answer QUERY and print the sources it was grounded on."""
    server_config = ctx.obj["server_config"]
    rag_config = ctx.obj["rag_config"]
    if legacy:
        rag_config = dataclasses.replace(rag_config, retriever_mode="legacy")

    service = RAGService.from_config(server_config, rag_config)
    try:
        if urls:
            result = service.answer_from_urls(query, list(urls))
        else:
            result = service.search(query)
    except DisallowedURLError as e:
        raise click.BadParameter(str(e), param_hint="--url") from e
    except Exception as e:
        message = f"{e}: {e.__cause__}" if e.__cause__ else str(e)
        raise click.ClickException(message) from e

    click.echo(result.answer.strip())
    click.echo("")
    for i, source in enumerate(result.sources, start=1):
        click.echo(f"[{i}] {source.title} ({source.score_kind} {source.relevance:.3f})")
        click.echo(f"    {source.url}")
    click.echo(f"\nconfidence={result.confidence:.2f} model={result.model} time={result.response_time_ms}ms")


@main.command("list-models")
@click.pass_context
def list_models_command(ctx):
    """List Gemini models available to the configured API key."""
    server_config = ctx.obj["server_config"]
    try:
        models = list_models(server_config, timeout=server_config.HEALTH_CHECK_TIMEOUT * 2)
    except (ValueError, GeminiAPIError) as e:
        raise click.ClickException(str(e)) from e

    for model in models:
        methods = ", ".join(model["supportedGenerationMethods"])
        click.echo(f"{model['name']}\t{methods}")


@main.command()
@click.option("--host", default=None, help="Interface to bind (default: HOST or 127.0.0.1).")
@click.option("--port", type=int, default=None, help="Port to listen on (default: PORT or 5000).")
@click.option("--debug", is_flag=True, help="Run Flask in debug mode.")
@click.pass_context
def serve(ctx, host, port, debug):
    """Run the knowledge search API with background indexing."""
    server_config = ctx.obj["server_config"]
    rag_config = ctx.obj["rag_config"]

    service = RAGService.from_config(server_config, rag_config)
    scheduler = IngestionScheduler(reloading_ingest(server_config), rag_config, server_config)

    server = RAGServer("Eid", service, server_config, scheduler=scheduler)
    try:
        server.run(port=port, host=host, debug=debug)
    finally:
        scheduler.stop()


if __name__ == "__main__":
    main()
