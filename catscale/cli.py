"""
Cat-Scale Command Line Interface
Entry point for a single forensic collection run.
"""

import logging
import shutil
import sys
from typing import Optional

import click

from catscale import __version__
from catscale.collectors.catalogue import build_catalogue, detect_platform
from catscale.core.config import ConfigError, build_config
from catscale.core.utils import format_duration, format_size, is_privileged, safe_json_dump, Timer
from catscale.core.workspace import OutputWorkspace, WorkspaceExistsError
from catscale.forensics.orchestrator import Orchestrator, results_by_category
from catscale.forensics.packager import Packager

logger = logging.getLogger("catscale.cli")


# Configure logging
def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


class UsageOnErrorCommand(click.Command):
    """Unknown flags and flags missing their value print usage and exit 0 instead of click's status 2."""

    def parse_args(self, ctx: click.Context, args):
        try:
            return super().parse_args(ctx, args)
        except (click.NoSuchOption, click.BadOptionUsage) as e:
            click.echo(f"Error: {e.format_message()}\n", err=True)
            click.echo(ctx.get_help())
            ctx.exit(0)


def _fail(message: str) -> None:
    click.echo(click.style(f"\n✗ {message}", fg="red"))
    sys.exit(1)


@click.command(
    cls=UsageOnErrorCommand,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("-d", "outdir", default=None, help="Staging directory name (default: catscale_out)")
@click.option("-f", "outfile", default=None, help="Output file name (default: <hostname>-<YYYYMMDD-HHMM>)")
@click.option("-o", "outroot", default=None, help="Directory for staging and archive (default: .)")
@click.option("-p", "outfile_prefix", default=None, help="Archive name prefix (default: catscale_)")
@click.option("--platform", "platform_id", default=None, help="Catalogue to use instead of the detected platform")
@click.option("--host-root", default=None, help="Collect from a mounted host image rooted here")
@click.option("--workers", "-w", type=int, default=None, help="Number of concurrent jobs (default: 1)")
@click.option("--timeout", "job_timeout_s", type=float, default=None, help="Per-job timeout in seconds")
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML configuration file")
@click.option("--no-manifest", is_flag=True, help="Do not write the JSON run manifest")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(__version__, prog_name="catscale")
def cli(
    outdir: Optional[str],
    outfile: Optional[str],
    outroot: Optional[str],
    outfile_prefix: Optional[str],
    platform_id: Optional[str],
    host_root: Optional[str],
    workers: Optional[int],
    job_timeout_s: Optional[float],
    config_path: Optional[str],
    no_manifest: bool,
    verbose: bool,
) -> None:
    """
    Cat-Scale forensic triage collector.

    Gathers process, network, log, configuration, persistence and
    user-file artifacts into a single timestamped .tar.gz. Must run as root.
    """
    setup_logging(verbose)

    click.echo(click.style("\n╔══════════════════════════════════════════════╗", fg="cyan"))
    click.echo(click.style("║        Cat-Scale Forensic Collection         ║", fg="cyan"))
    click.echo(click.style("╚══════════════════════════════════════════════╝\n", fg="cyan"))

    try:
        config = build_config(
            config_path,
            outdir=outdir,
            outfile=outfile,
            outroot=outroot,
            outfile_prefix=outfile_prefix,
            platform_id=platform_id,
            host_root=host_root,
            workers=workers,
            job_timeout_s=job_timeout_s,
            write_manifest=False if no_manifest else None,
        )
    except ConfigError as e:
        _fail(f"Configuration error: {e}")

    if not is_privileged():
        _fail("This collector needs to be run as root.")

    platform_id = config.platform_id or detect_platform()
    archive_path = config.archive_path

    if archive_path.exists():
        _fail(f"Output archive ({archive_path}) already exists. Choose another -f or -p.")

    try:
        workspace = OutputWorkspace.create(config.outroot, config.outdir, config.outfile_name)
    except WorkspaceExistsError as e:
        _fail(f"{e}. Choose another -d or remove it.")
    except OSError as e:
        _fail(f"Cannot create staging directory {config.staging_path}: {e.strerror or e}")

    logger.info(f"Platform: {platform_id}")
    logger.info(f"Staging: {workspace.path}")

    date_line = workspace.record_metadata(platform_id)
    click.echo(f"oscheck: {platform_id}")
    click.echo(f"Date : {date_line}\n")

    try:
        catalogue = build_catalogue(platform_id, config)
    except ValueError as e:
        # Nothing collected yet; the staging tree only holds the run metadata.
        shutil.rmtree(workspace.path, ignore_errors=True)
        _fail(f"Invalid job catalogue: {e}")

    orchestrator = Orchestrator(config, on_status=lambda msg: click.echo(f"  {msg}"))

    with Timer() as timer:
        manifest = orchestrator.run(catalogue, workspace, date_line=date_line)

    if config.write_manifest:
        safe_json_dump(manifest.to_dict(), workspace.top_level_path("run-manifest.json"))

    click.echo(click.style("\n═══ Collection Summary ═══", fg="green", bold=True))
    for category, results in results_by_category(manifest).items():
        ok = sum(1 for r in results if r.ok)
        click.echo(f"{category.value:<22} {ok}/{len(results)} jobs succeeded")
    click.echo(
        f"\nSucceeded: {manifest.succeeded}  Failed: {manifest.failed}  "
        f"Skipped: {manifest.skipped}  ({format_duration(timer.duration_s)})"
    )
    if manifest.cancelled:
        click.echo(click.style("Collection was cancelled; archive is partial", fg="yellow"))

    click.echo("\nPackaging...")
    result = Packager().package(workspace, archive_path)

    if not result.success:
        click.echo(click.style(f"\n✗ {result.error_message}", fg="red"))
        click.echo(click.style(f"  {result.warning}", fg="yellow"))
        sys.exit(1)

    if result.warning:
        click.echo(click.style(f"  {result.warning}", fg="yellow"))

    click.echo(click.style(f"\n✓ Archive: {result.archive_path} ({format_size(result.archive_size_bytes)})", fg="green"))
    click.echo(f"  sha256: {result.sha256}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
