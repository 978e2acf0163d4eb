"""Command line entrypoint: ``deka apply -f manifests.yaml``."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

import click

from deka import __version__
from deka.config import Settings, load_settings
from deka.domain.objects import TargetObject
from deka.domain.outcomes import BatchReport
from deka.errors import KubeConfigError, ManifestError
from deka.execution.backoff import ExponentialBackoff
from deka.execution.events import LoggingEventSink
from deka.execution.orchestrator import Orchestrator
from deka.kube.client import KubeClient
from deka.kube.config import ClusterConfig, infer_config
from deka.logging_utils import configure_logging
from deka.manifests.loader import load_objects
from deka.reporting import render_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_TOTAL_FAILURE = 3
EXIT_CONFIG_ERROR = 4
EXIT_INTERRUPTED = 130


class DekaCliError(click.ClickException):
    exit_code = EXIT_CONFIG_ERROR


@dataclass
class GlobalOptions:
    settings: Settings
    kubeconfig: Path | None
    context: str | None
    namespace: str | None
    parallelism: int
    output: str
    log_level: int
    debug: bool = False


def exit_code_for(report: BatchReport, interrupted: bool = False) -> int:
    if interrupted:
        return EXIT_INTERRUPTED
    if report.success:
        return EXIT_OK
    if report.total_failure:
        return EXIT_TOTAL_FAILURE
    return EXIT_PARTIAL_FAILURE


def build_backoff(settings: Settings) -> ExponentialBackoff:
    return ExponentialBackoff(
        initial_delay=settings.backoff.initial_seconds,
        multiplier=settings.backoff.multiplier,
        max_delay=settings.backoff.max_seconds,
        randomization_factor=settings.backoff.randomization_factor,
    )


def _log_level(settings: Settings, verbose: int, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return getattr(logging, settings.logging.level.upper(), logging.INFO)


@click.group()
@click.version_option(version=__version__, prog_name="deka")
@click.option(
    "--kubeconfig",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to the kubeconfig file to use.",
)
@click.option("--context", default=None, help="Kubeconfig context to use.")
@click.option(
    "-n",
    "--namespace",
    default=None,
    help="Namespace for objects that do not set one.",
)
@click.option(
    "-p",
    "--parallelism",
    type=click.IntRange(min=0),
    default=None,
    help="Maximum concurrent API requests. 0 to disable the limit.",
)
@click.option(
    "-o",
    "--output",
    type=click.Choice(["plain", "pretty", "json", "logfmt"]),
    default=None,
    help="Log and report format.",
)
@click.option("-v", "--verbose", count=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors.")
@click.option(
    "-D",
    "--debug",
    is_flag=True,
    help="Also show logs from dependencies such as httpx.",
)
@click.pass_context
def deka(
    ctx: click.Context,
    kubeconfig: Path | None,
    context: str | None,
    namespace: str | None,
    parallelism: int | None,
    output: str | None,
    verbose: int,
    quiet: bool,
    debug: bool,
) -> None:
    """Apply Kubernetes manifests the dumb way."""

    try:
        settings = load_settings()
    except RuntimeError as exc:
        raise DekaCliError(str(exc)) from exc

    if kubeconfig is None and settings.kube.kubeconfig:
        kubeconfig = Path(settings.kube.kubeconfig)

    ctx.obj = GlobalOptions(
        settings=settings,
        kubeconfig=kubeconfig,
        context=context or settings.kube.context,
        namespace=namespace,
        parallelism=settings.apply.parallelism if parallelism is None else parallelism,
        output=output or settings.logging.format,
        log_level=_log_level(settings, verbose, quiet),
        debug=debug,
    )


@deka.command("apply")
@click.option(
    "-f",
    "--filename",
    required=True,
    help="File containing the objects to apply, or - for stdin.",
)
@click.option(
    "--field-manager",
    default=None,
    help="Name of the manager used to track field ownership.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait before giving up. 0 to wait indefinitely.",
)
@click.pass_obj
def apply_command(
    options: GlobalOptions,
    filename: str,
    field_manager: str | None,
    timeout: float | None,
) -> None:
    """Server-side apply manifests in undefined order."""

    settings = options.settings
    configure_logging(level=options.log_level, fmt=options.output, debug=options.debug)

    try:
        cluster = infer_config(options.kubeconfig, options.context)
        objects = load_objects(filename, options.namespace or cluster.namespace)
    except (KubeConfigError, ManifestError) as exc:
        raise DekaCliError(str(exc)) from exc
    logger.debug("Loaded %d object(s) from %s", len(objects), filename)

    try:
        report, interrupted = asyncio.run(
            _run_apply(
                objects,
                cluster,
                settings=settings,
                field_manager=field_manager or settings.apply.field_manager,
                parallelism=options.parallelism,
                timeout=settings.apply.timeout_seconds if timeout is None else timeout,
            )
        )
    except (KubeConfigError, ValueError) as exc:
        raise DekaCliError(str(exc)) from exc

    click.echo(render_report(report, options.output))
    click.get_current_context().exit(exit_code_for(report, interrupted))


async def _run_apply(
    objects: list[TargetObject],
    cluster: ClusterConfig,
    *,
    settings: Settings,
    field_manager: str,
    parallelism: int,
    timeout: float,
) -> tuple[BatchReport, bool]:
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops or outside the main thread.
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, shutdown.set)
            installed.append(sig)

    try:
        async with KubeClient(
            cluster,
            field_manager=field_manager,
            request_timeout=settings.kube.request_timeout_seconds,
        ) as client:
            orchestrator = Orchestrator(
                client,
                backoff=build_backoff(settings),
                sink=LoggingEventSink(),
            )
            report = await orchestrator.apply_batch(
                objects,
                parallelism=parallelism,
                timeout=timeout,
                shutdown=shutdown,
            )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    return report, shutdown.is_set()


def main() -> None:
    deka()


if __name__ == "__main__":  # pragma: no cover
    main()
