import asyncio
import json
import sys
from pathlib import Path

import click

from .config import get_logger
from .sync.config import SyncConfig, create_example_config
from .sync.content_parser import parse_article, validate_article_content
from .sync.error_tracker import ParseError, SyncException
from .sync.github_client import GitHubClient
from .sync.orchestrator import print_summary, run_manual_sync
from .sync.store import ContentStore

logger = get_logger(__name__)


def _load_config(config_path):
    try:
        return SyncConfig.load(config_path)
    except (FileNotFoundError, SyncException) as e:
        raise click.ClickException(str(e))


@click.group()
def cli():
    """Mirror MDX articles and JSON settings from GitHub into a content store."""
    pass


@cli.command(name='sync')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Sync configuration YAML (defaults to environment variables)')
@click.option('--force', is_flag=True, default=False, help='Reprocess every file, ignoring stored fingerprints')
def sync(config_path, force):
    """Run a full-scan sync of the configured repository."""
    config = _load_config(config_path)
    click.echo(f"Syncing {config.repository.full_name}@{config.repository.branch} into {config.database_path}")
    try:
        summary = asyncio.run(run_manual_sync(config, force=force))
    except SyncException as e:
        logger.error(f"Sync aborted: {e.message}")
        if e.recovery_suggestion:
            click.echo(f"Hint: {e.recovery_suggestion}", err=True)
        sys.exit(1)
    print_summary(summary)
    click.echo(f"{summary.succeeded} applied, {summary.failed} failed, {summary.skipped} skipped")
    if summary.failed:
        sys.exit(1)


@cli.command(name='serve')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Sync configuration YAML (defaults to environment variables)')
@click.option('--host', default='127.0.0.1', show_default=True)
@click.option('--port', default=8000, show_default=True, type=int)
def serve(config_path, host, port):
    """Run the webhook receiver and content API."""
    import uvicorn
    from .api.server import create_app

    config = _load_config(config_path)
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())


@cli.command(name='show')
@click.argument('slug')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False))
@click.option('--body', is_flag=True, default=False, help='Print the article body as well')
def show(slug, config_path, body):
    """Show a stored article."""
    store = ContentStore(_load_config(config_path).database_path)
    article = store.get_article(slug)
    if article is None:
        raise click.ClickException(f"No article with slug '{slug}'")
    data = article.to_dict()
    if not body:
        data.pop('body')
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@cli.command(name='setting')
@click.argument('key', required=False)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False))
def setting(key, config_path):
    """Show one stored setting, or list all keys."""
    store = ContentStore(_load_config(config_path).database_path)
    if key is None:
        for record in store.list_settings():
            click.echo(f"{record.key}\t{record.updated_at}")
        return
    record = store.get_setting(key)
    if record is None:
        raise click.ClickException(f"No setting with key '{key}'")
    click.echo(json.dumps(record.value, indent=2, ensure_ascii=False))


@cli.command(name='stats')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False))
def stats(config_path):
    """Show content store statistics."""
    store = ContentStore(_load_config(config_path).database_path)
    click.echo(json.dumps(store.get_statistics(), indent=2))


async def _fetch_rate_limit(config):
    async with GitHubClient(config) as client:
        return await client.check_rate_limit()


@cli.command(name='rate-limit')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False))
def rate_limit(config_path):
    """Show the remaining GitHub API quota for the configured token."""
    config = _load_config(config_path)
    try:
        info = asyncio.run(_fetch_rate_limit(config))
    except SyncException as e:
        raise click.ClickException(e.message)
    reset = info.reset_time()
    click.echo(f"{info.remaining}/{info.limit} requests left" + (f", resets at {reset.isoformat()}" if reset else ""))


@cli.command(name='validate')
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def validate(files):
    """Check article files before pushing them."""
    failures = 0
    for file in files:
        raw = Path(file).read_text(encoding='utf-8')
        result = validate_article_content(raw)
        status = 'ok' if result.is_valid else 'invalid'
        click.echo(f"{file}: {status}")
        for warning in result.warnings:
            click.echo(f"  warning: {warning}")
        for error in result.errors:
            click.echo(f"  error: {error}")
        if result.is_valid:
            try:
                parsed = parse_article(raw, source_id=file)
                click.echo(f"  {parsed.word_count} words, {parsed.reading_time} min read, {len(parsed.headings)} headings")
            except ParseError as e:
                click.echo(f"  error: {e.message}")
                result.is_valid = False
        if not result.is_valid:
            failures += 1
    if failures:
        sys.exit(1)


@cli.command(name='init-config')
@click.argument('path', type=click.Path(dir_okay=False))
def init_config(path):
    """Write an example sync configuration."""
    create_example_config().to_yaml(path)
    click.echo(f"Example configuration saved to {path}")


def main():
    cli()


if __name__ == '__main__':
    main()
