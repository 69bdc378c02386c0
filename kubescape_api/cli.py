import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import click

from .config import ConfigManager
from .core.api import KubescapeApi
from .core.downloader import CancelToken, ProgressCallback
from .core.errors import KubescapeError
from .models import KubescapeConfig
from .ui import KubescapeUi

T = TypeVar("T")

PROGRESS_STEPS = 1000


class ClickUi(KubescapeUi):
    """Terminal rendering of kubescape feedback"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def info(self, msg: str) -> None:
        click.echo(msg, err=True)

    def error(self, msg: str) -> None:
        click.secho(f"Error: {msg}", fg="red", err=True)

    def debug(self, msg: str) -> None:
        if self.verbose:
            click.secho(msg, dim=True, err=True)

    def show_help(self, message: str, url: str) -> None:
        click.echo(f"{message} {click.style(url, underline=True)}", err=True)

    async def slow(self, title: str, work: Callable[[], Awaitable[T]]) -> T:
        click.echo(f"{title}...", err=True)
        return await work()

    async def progress(
        self,
        title: str,
        cancel: Optional[CancelToken],
        work: Callable[[ProgressCallback], Awaitable[T]],
    ) -> T:
        with click.progressbar(length=PROGRESS_STEPS, label=title, file=sys.stderr) as bar:
            done = 0

            def report(fraction: Optional[float]) -> None:
                nonlocal done
                if fraction is None:
                    return
                target = int(fraction * PROGRESS_STEPS)
                if target > done:
                    bar.update(target - done)
                    done = target

            return await work(report)


def _setup_logging(config_manager: ConfigManager, verbose: bool):
    """Setup logging configuration"""
    level_name = "DEBUG" if verbose else config_manager.logging.level
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    config_manager.create_directories()
    log_dir = Path(config_manager.logging.logs_dir)

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.FileHandler(log_dir / 'kubescape_api.log'),
            logging.StreamHandler()
        ]
    )


def _parse_options(options: Tuple[str, ...]) -> Dict[str, object]:
    """Turn KEY=VALUE pairs into scan flag overrides; bare KEY means a flag"""
    parsed: Dict[str, object] = {}
    for option in options:
        key, sep, value = option.partition("=")
        if not key:
            raise click.BadParameter(f"Invalid option: {option!r}")
        parsed[key] = value if sep else True
    return parsed


def _run_with_api(ctx, action: Callable[[KubescapeApi], Awaitable[T]]) -> T:
    """Set kubescape up, then run ``action`` against the ready API"""
    config = ctx.obj['config_manager'].get_config()
    api = KubescapeApi(ui=ctx.obj['ui'])

    async def run():
        if not await api.setup(config):
            raise click.ClickException("Kubescape setup failed")
        return await action(api)

    try:
        return asyncio.run(run())
    except KubescapeError as e:
        raise click.ClickException(str(e))


def _emit_report(report: dict, output: Optional[str]):
    text = json.dumps(report, indent=2)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Report written to {output}", err=True)
    else:
        click.echo(text)
    if not report:
        sys.exit(1)


@click.group()
@click.option('--config', '-c', default='kubescape.yaml', help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.pass_context
def cli(ctx, config, verbose):
    """Kubescape installer and scan runner"""
    ctx.ensure_object(dict)
    try:
        config_manager = ConfigManager(config)
    except ValueError as e:
        raise click.ClickException(str(e))
    _setup_logging(config_manager, verbose)
    ctx.obj['config_manager'] = config_manager
    ctx.obj['ui'] = ClickUi(verbose=verbose)


@cli.command()
@click.pass_context
def setup(ctx):
    """Install kubescape and its frameworks"""
    async def describe(api: KubescapeApi):
        click.echo(f"Kubescape:  {api.path}")
        click.echo(f"Version:    {api.version}{' (latest)' if api.is_latest_version else ''}")
        click.echo(f"Frameworks: {', '.join(api.frameworks_names) or '-'}")
        for name, reason in api.framework_failures.items():
            click.secho(f"Failed:     {name}: {reason}", fg="yellow")

    _run_with_api(ctx, describe)


@cli.command()
@click.pass_context
def version(ctx):
    """Show the installed kubescape version"""
    async def show(api: KubescapeApi):
        click.echo(api.version)
        if not api.is_latest_version:
            click.echo("A newer kubescape release may be available", err=True)

    _run_with_api(ctx, show)


@cli.group()
def frameworks():
    """Framework bundles"""
    pass


@frameworks.command('list')
@click.pass_context
def list_frameworks(ctx):
    """List cataloged frameworks (* = selected for scanning)"""
    async def show(api: KubescapeApi):
        for framework in api.frameworks:
            marker = "*" if framework.is_installed else " "
            click.echo(f"{marker} {framework.name:<20} {framework.location}")

    _run_with_api(ctx, show)


@frameworks.command()
@click.pass_context
def available(ctx):
    """List frameworks kubescape can download"""
    async def show(api: KubescapeApi):
        for name in await api.list_frameworks():
            click.echo(name)

    _run_with_api(ctx, show)


@cli.group()
def scan():
    """Run kubescape scans"""
    pass


@scan.command('file')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--option', '-o', 'options', multiple=True, help='Scan flag override KEY=VALUE')
@click.option('--output', help='Write the JSON report to this file')
@click.pass_context
def scan_file(ctx, path, options, output):
    """Scan a manifest file"""
    overrides = _parse_options(options)
    report = _run_with_api(ctx, lambda api: api.scan_file(path, overrides))
    _emit_report(report, output)


@scan.command('cluster')
@click.option('--context', 'kube_context', help='Kubernetes context name')
@click.option('--kubeconfig', type=click.Path(exists=True, dir_okay=False), help='Kubeconfig file')
@click.option('--option', '-o', 'options', multiple=True, help='Scan flag override KEY=VALUE')
@click.option('--output', help='Write the JSON report to this file')
@click.pass_context
def scan_cluster(ctx, kube_context, kubeconfig, options, output):
    """Scan a live cluster"""
    overrides = _parse_options(options)
    report = _run_with_api(
        ctx, lambda api: api.scan_cluster(kube_context, kubeconfig, overrides)
    )
    _emit_report(report, output)


@cli.group()
def config():
    """Configuration management"""
    pass


@config.command()
@click.pass_context
def show(ctx):
    """Show the effective configuration"""
    config_manager = ctx.obj['config_manager']
    click.echo(f"Configuration ({config_manager.config_path}):")
    click.echo("=" * 40)
    for key, value in config_manager.get_config().model_dump().items():
        click.echo(f"{key}: {value}")


@config.command('set')
@click.option('--key', '-k', required=True, help='Configuration key')
@click.option('--value', '-v', required=True, help='Configuration value')
@click.pass_context
def set_value(ctx, key, value):
    """Set a configuration value and save it"""
    config_manager = ctx.obj['config_manager']
    if key not in KubescapeConfig.model_fields:
        raise click.BadParameter(f"Unknown configuration key: {key}")
    config_manager.update_config({key: value})
    click.echo(f"Set {key} = {value}")


if __name__ == '__main__':
    cli()
