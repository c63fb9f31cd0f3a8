import functools
from collections.abc import Callable
from typing import Any

import click

from steward._cogs.helpers import loaders
from steward._core.actions import loggers
from steward._core.reactor import routing, running


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(prog_name='steward')
@click.group(name='steward', context_settings=dict(
    auto_envvar_prefix='STEWARD',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-n', '--namespace', type=str, default=None)
@click.option('--name', type=str, default=None)
@click.option('--standalone', is_flag=True, default=None)
@click.option('-P', '--peering', 'peering_name', type=str)
@click.option('-m', '--module', 'modules', multiple=True)
@click.argument('paths', nargs=-1)
def run(
        paths: list[str],
        modules: list[str],
        namespace: str | None,
        name: str | None,
        peering_name: str | None,
        standalone: bool | None,
) -> None:
    """ Start a controller process and handle all the objects. """
    loaders.preload(
        paths=paths,
        modules=modules,
    )
    router = routing.get_default_router()
    if name:
        router.name = name
    if peering_name:
        router.settings.peering.name = peering_name
        router.settings.peering.standalone = False
    if standalone is not None:
        router.settings.peering.standalone = standalone
    return running.run(
        router=router,
        namespace=namespace,
    )
