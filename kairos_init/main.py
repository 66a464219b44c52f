"""
kairos-init — CLI entrypoint.

Usage:
    kairos-init --help
    kairos-init plan -s all --variant standard -p k3s
    kairos-init detect --json
    kairos-init packages --trusted
    kairos-init steps
    kairos-init validate --root /mnt/rootfs
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from kairos_init import __version__
from kairos_init.core.observability.logging_config import LoggingSettings, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="kairos-init")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """kairos-init — turn a minimal OS image into a Kairos image."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    settings = LoggingSettings.from_environ(os.environ, debug=debug, verbose=verbose, quiet=quiet)
    setup_logging(settings)
    ctx.obj["level"] = settings.level.lower()


def _fail(message: str) -> None:
    click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(1)


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--stage", "-s", default="all", type=click.Choice(["install", "init", "all"]),
              show_default=True, help="Pipeline(s) to compose.")
@click.option("--model", "-m", default="generic", show_default=True, help="Board model (generic, rpi4, ...).")
@click.option("--variant", "-v", default="core", show_default=True, help="core or standard.")
@click.option("--provider", "-p", "kubernetes_provider", default="k3s", show_default=True,
              help="Kubernetes provider for the standard variant (k3s, k0s).")
@click.option("--k8s-version", "kubernetes_version", default="", help="Kubernetes version (default: latest).")
@click.option("--framework-version", "-f", default=None, help="Framework image tag.")
@click.option("--kairos-version", default=None, help="Version written to /etc/kairos-release.")
@click.option("--registry", "-r", default=None, help="Registry/org the image is pushed to.")
@click.option("--trusted", "-t", "trusted_boot", is_flag=True, help="Trusted boot (systemd-boot, signed UKI).")
@click.option("--fips", is_flag=True, help="Use FIPS builds of the framework.")
@click.option("--extensions/--no-extensions", default=False, show_default=True,
              help="Merge stage fragments from the extension directories.")
@click.option("--skip-step", "skip_steps", multiple=True, help="Skip a built-in step (repeatable).")
@click.option("--version-overrides", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="YAML file with pinned component versions.")
@click.option("--os-release", "os_release_path", default=None, help="os-release file to detect from.")
@click.option("--output", "-o", "output_path", default="", help="Where to save the plan.")
@click.option("--execute", is_flag=True, help="Run the phases with yip.")
@click.option("--dry-run", is_flag=True, help="Walk the phases without touching the filesystem.")
@click.option("--root", type=click.Path(file_okay=False, resolve_path=True, path_type=Path), default=Path("/"),
              show_default=True, help="Filesystem root the phases are applied to.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(
    ctx: click.Context,
    stage: str,
    model: str,
    variant: str,
    kubernetes_provider: str,
    kubernetes_version: str,
    framework_version: str | None,
    kairos_version: str | None,
    registry: str | None,
    trusted_boot: bool,
    fips: bool,
    extensions: bool,
    skip_steps: tuple[str, ...],
    version_overrides: Path | None,
    os_release_path: str | None,
    output_path: str,
    execute: bool,
    dry_run: bool,
    root: Path,
    as_json: bool,
) -> None:
    """Compose (and optionally run) the provisioning plan."""
    from kairos_init.core.config.loader import build_config
    from kairos_init.core.detection.system import detect_system
    from kairos_init.core.engine.runner import RecordingRunner, YipPhaseRunner
    from kairos_init.core.errors import ConfigError, KairosInitError
    from kairos_init.core.persistence.plan_file import dump_plan, plan_to_dict, save_plan
    from kairos_init.core.stages.composer import compose_plan, execute_plan, remaining_phases

    try:
        config = build_config(
            level=ctx.obj.get("level", "info"),
            stage=stage,
            model=model,
            variant=variant,
            kubernetes_provider=kubernetes_provider,
            kubernetes_version=kubernetes_version,
            framework_version=framework_version,
            kairos_version=kairos_version,
            registry=registry,
            trusted_boot=trusted_boot,
            fips=fips,
            extensions=extensions,
            skip_steps=skip_steps,
            version_overrides=version_overrides,
            os_release_path=os_release_path,
            output_path=output_path,
        )
    except ConfigError as e:
        _fail(str(e))
        return

    system = detect_system(os_release_path)
    if execute and dry_run:
        _fail("--execute and --dry-run are mutually exclusive")
    runner = None
    if execute:
        runner = YipPhaseRunner(system)
        if not runner.is_available():
            _fail(f"{runner.binary} not found in PATH, cannot --execute")
    elif dry_run:
        runner = RecordingRunner()

    try:
        result = compose_plan(system, config, runner=runner, root=root)
    except KairosInitError as e:
        _fail(str(e))
        return

    # The plan copy is for audit only, never fatal
    target = Path(config.plan_output_path())
    try:
        save_plan(result, target)
    except OSError as e:
        click.secho(f"⚠️  Could not save plan to {target}: {e}", fg="yellow", err=True)

    if runner is not None:
        try:
            execute_plan(result, runner, root, remaining_phases(config, runner_used_for_install=True))
        except KairosInitError as e:
            _fail(str(e))

    if as_json:
        click.echo(json.dumps(plan_to_dict(result), indent=2))
        return

    if ctx.obj.get("debug"):
        click.echo(dump_plan(result))
        return

    if not ctx.obj.get("quiet"):
        name = system.name or system.distro.value
        click.secho(f"\n📋 Plan for {name} ({system.arch.value})", fg="cyan", bold=True)
    for phase in result.phases:
        stages = result.stages_in(phase)
        click.secho(f"   {phase}: {len(stages)} stage(s)", fg="white", bold=True)
        for s in stages:
            cond = f"  [if {s.condition}]" if s.condition else ""
            click.echo(f"     • {s.name}{cond}")
    if isinstance(runner, RecordingRunner):
        click.secho(f"   🔎 Dry run, would run: {', '.join(runner.phases)}", fg="yellow")
    click.echo()


# ── detect ──────────────────────────────────────────────────────


@cli.command()
@click.option("--os-release", "os_release_path", default=None, help="os-release file to detect from.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def detect(os_release_path: str | None, as_json: bool) -> None:
    """Show the detected system."""
    from kairos_init.core.detection.system import detect_system

    system = detect_system(os_release_path)
    if as_json:
        click.echo(json.dumps(system.model_dump(mode="json"), indent=2))
        return

    click.secho(f"🖥️  {system.name or 'Unknown system'}", fg="cyan", bold=True)
    click.echo(f"   Distro:  {system.distro.value}")
    click.echo(f"   Family:  {system.family.value}")
    click.echo(f"   Arch:    {system.arch.value}")
    click.echo(f"   Version: {system.version or '-'}")
    if not system.is_known:
        click.secho("   ⚠️  Unknown distro, only common packages apply", fg="yellow")


# ── packages ────────────────────────────────────────────────────


@cli.command()
@click.option("--trusted", "-t", "trusted_boot", is_flag=True, help="Resolve for trusted boot.")
@click.option("--os-release", "os_release_path", default=None, help="os-release file to detect from.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def packages(trusted_boot: bool, os_release_path: str | None, as_json: bool) -> None:
    """Show the resolved package list."""
    from kairos_init.core.config.loader import build_config
    from kairos_init.core.detection.system import detect_system
    from kairos_init.core.errors import KairosInitError
    from kairos_init.core.packages.resolver import resolve_packages, select_matrices

    system = detect_system(os_release_path)
    try:
        config = build_config(trusted_boot=trusted_boot, version_overrides=None)
        resolved = resolve_packages(system, select_matrices(config))
    except KairosInitError as e:
        _fail(str(e))
        return

    if as_json:
        click.echo(json.dumps({"system": system.model_dump(mode="json"), "packages": resolved}, indent=2))
        return

    click.secho(f"📦 {len(resolved)} package(s) for {system.distro.value} {system.version}",
                fg="cyan", bold=True)
    for name in resolved:
        click.echo(f"   {name}")


# ── validate ────────────────────────────────────────────────────


@cli.command()
@click.option("--variant", "-v", default="core", show_default=True, help="core or standard.")
@click.option("--provider", "-p", "kubernetes_provider", default="k3s", show_default=True,
              help="Kubernetes provider for the standard variant (k3s, k0s).")
@click.option("--trusted", "-t", "trusted_boot", is_flag=True, help="Image was built for trusted boot.")
@click.option("--root", type=click.Path(exists=True, file_okay=False, resolve_path=True, path_type=Path),
              default=Path("/"), show_default=True, help="Root of the image to validate.")
@click.option("--os-release", "os_release_path", default=None,
              help="os-release file to detect from (default: the one under --root).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def validate(
    variant: str,
    kubernetes_provider: str,
    trusted_boot: bool,
    root: Path,
    os_release_path: str | None,
    as_json: bool,
) -> None:
    """Check that a built image has every Kairos piece in place."""
    from kairos_init.core.config.loader import build_config
    from kairos_init.core.detection.system import detect_system
    from kairos_init.core.errors import ConfigError
    from kairos_init.core.validation.image import validate_image

    try:
        config = build_config(
            variant=variant,
            kubernetes_provider=kubernetes_provider,
            trusted_boot=trusted_boot,
            version_overrides=None,
        )
    except ConfigError as e:
        _fail(str(e))
        return

    system = detect_system(os_release_path or root / "etc" / "os-release")
    report = validate_image(config, system, root)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(0 if report.valid else 1)
        return

    if report.valid:
        click.secho("✅ System validation passed", fg="green", bold=True)
    else:
        click.secho("❌ System validation failed:", fg="red", bold=True)
        for err in report.errors:
            click.echo(f"   • {err}")

    if report.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in report.warnings:
            click.echo(f"   • {warn}")

    if not report.valid:
        click.echo()
        sys.exit(1)


# ── steps ───────────────────────────────────────────────────────


@cli.command()
def steps() -> None:
    """List built-in step keys usable with --skip-step."""
    from kairos_init.core.stages.steps import steps_info

    info = steps_info()
    width = max(len(key) for key, _ in info)
    for key, description in info:
        click.echo(f"{key:<{width}}  {description}")


if __name__ == "__main__":
    cli()
