"""
CI Orchestrator CLI

Command-line interface for the orchestrator.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import PipelineDefinition, load_pipelines
from .exceptions import ConfigurationError, ExternalToolUnavailable, ReleaseGateViolation
from .history import GitHistory
from .logging_config import setup_logging
from .main import ApiDiff, Event, EventKind, OrchestratorConfig
from .orchestrator import PipelineOrchestrator
from .output.console import ConsoleFormatter, OutputLevel, print_banner
from .release_gate import ReleaseGate
from .versioning import VersionArbiter, write_manifest_version

DEFAULT_CONFIG_PATH = "ci-orchestrator.yml"

API_DIFF_CHOICES = [d.value for d in ApiDiff]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="ci-orchestrator",
        description="CI Orchestrator - matrix builds, semantic versions and release gates",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the pipelines an event triggers")
    run_parser.add_argument(
        "--event",
        choices=[k.value for k in EventKind],
        default=EventKind.PUSH.value,
        help="Trigger kind",
    )
    run_parser.add_argument("--ref", default="main", help="Branch or ref the event is for")
    run_parser.add_argument("--base-ref", help="Target branch of a pull request")
    run_parser.add_argument("--schedule", help="Cron expression of a scheduled run")
    run_parser.add_argument("--sha", help="Commit the event points at")
    run_parser.add_argument(
        "--api-diff",
        choices=API_DIFF_CHOICES,
        help="API classification to use instead of running the API check",
    )

    # Expand command
    expand_parser = subparsers.add_parser("expand", help="Show the job instances of each pipeline")
    expand_parser.add_argument("--pipeline", "-p", help="Only this pipeline")

    # Version command
    version_parser = subparsers.add_parser("version", help="Compute the next release version")
    version_parser.add_argument("--repo", default=".", help="Git checkout to read history from")
    version_parser.add_argument("--ref", default="HEAD", help="Ref to compute the version for")
    version_parser.add_argument(
        "--previous-tag",
        help="Release tag to compare against (default: latest reachable tag)",
    )
    version_parser.add_argument(
        "--api-diff",
        choices=API_DIFF_CHOICES,
        help="API classification; when given, the release gate is evaluated",
    )
    version_parser.add_argument(
        "--write-version",
        metavar="MANIFEST",
        help="Write the computed version into a manifest's version line",
    )
    version_parser.add_argument("--json", action="store_true", help="Print JSON")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show/init configuration")
    config_parser.add_argument("--show", action="store_true", help="Show current config")
    config_parser.add_argument("--init", action="store_true", help="Initialize config file")

    # Global options
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode",
    )
    parser.add_argument(
        "--log-file",
        help="Log to file",
    )
    parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_PATH,
        help="Config file path",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> OrchestratorConfig:
    if args.config and Path(args.config).exists():
        return OrchestratorConfig.from_yaml(args.config)
    return OrchestratorConfig.from_env()


def load_pipeline_file(args: argparse.Namespace) -> List[PipelineDefinition]:
    if not Path(args.config).exists():
        raise ConfigurationError(
            f"Config file not found: {args.config} (create one with 'config --init')"
        )
    return load_pipelines(args.config)


async def run_event(args: argparse.Namespace, formatter: ConsoleFormatter) -> int:
    """Run every pipeline the event triggers"""
    config = load_config(args)
    pipelines = load_pipeline_file(args)

    event = Event(
        kind=EventKind(args.event),
        ref=args.ref,
        base_ref=args.base_ref,
        schedule=args.schedule,
        sha=args.sha,
    )
    orchestrator = PipelineOrchestrator(config=config, pipelines=pipelines)
    formatter.attach(orchestrator)

    api_diff = ApiDiff(args.api_diff) if args.api_diff else None

    await orchestrator.initialize()
    try:
        reports = await orchestrator.handle_event(event, api_diff=api_diff)
    finally:
        await orchestrator.shutdown()

    if not reports:
        print(f"No pipeline is triggered by {event.kind.value} on {event.branch}")
        return 0

    for report in reports:
        formatter.render(report)

    formatter.summary(orchestrator.get_stats())
    return max(report.exit_code for report in reports)


def show_expansion(args: argparse.Namespace) -> int:
    """Print the job instances each pipeline expands to"""
    pipelines = load_pipeline_file(args)
    if args.pipeline:
        pipelines = [p for p in pipelines if p.name == args.pipeline]
        if not pipelines:
            print(f"Pipeline not found: {args.pipeline}")
            return 1

    orchestrator = PipelineOrchestrator(pipelines=pipelines)
    for pipeline in pipelines:
        instances = orchestrator.plan(pipeline)
        print(f"{pipeline.name}: {len(instances)} job instance(s)")
        for instance in instances:
            marker = " [tolerant]" if instance.tolerant else ""
            print(f"  {instance.name}{marker}")
            print(f"    $ {instance.command}")
    return 0


async def compute_version(args: argparse.Namespace, formatter: ConsoleFormatter) -> int:
    """Compute the next version and optionally gate and write it"""
    config = load_config(args)
    policy = config.policy
    history = GitHistory(Path(args.repo), tag_prefix=policy.tag_prefix)

    tag = args.previous_tag or await history.previous_tag(args.ref)
    commits = await history.commits_since(tag, args.ref)
    decision = VersionArbiter(policy).decide(commits, tag)

    gate_result = None
    if args.api_diff:
        gate_result = ReleaseGate(policy).evaluate(decision, ApiDiff(args.api_diff))

    if args.json:
        print(json.dumps({
            "decision": decision.to_dict(),
            "gate": gate_result.to_dict() if gate_result else None,
        }, indent=2))
    else:
        formatter.version_decision(decision)
        if gate_result is not None:
            formatter.gate_result(gate_result)

    try:
        if gate_result is not None:
            gate_result.raise_for_status()
    except ReleaseGateViolation as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.write_version:
        changed = write_manifest_version(args.write_version, decision.computed_version)
        if not changed:
            print(f"{args.write_version} already at {decision.computed_version}", file=sys.stderr)

    return 0


def show_config(args: argparse.Namespace) -> int:
    """Show or initialize configuration"""
    if args.init:
        config_path = Path(args.config)
        if config_path.exists():
            print(f"Config already exists: {config_path}")
            return 1

        default_config = """# CI Orchestrator Configuration

name: ci-orchestrator

# Execution settings
max_concurrent_jobs: 8
default_job_timeout_ms: 3600000  # 1 hour

# Release policy
policy:
  tag_prefix: "v"
  floor_version: "0.1.0"
  # Before 1.0, a breaking API change only needs a (MINOR) bump
  allow_minor_breaking_pre_stable: true
  markers:
    major: "(MAJOR)"
    minor: "(MINOR)"
    ignore: "(IGNORE)"

# Event delivery
enable_events: false
# events_url: http://localhost:8080

pipelines:
  - name: ci
    triggers:
      pull_request:
      push:
        branches: [main]
      schedule:
        - "0 18 * * 1,4,6"  # 1800 UTC every Monday, Thursday, Saturday

    jobs:
      tests-cargo:
        name: Unit tests
        matrix:
          os: [windows-latest, macos-latest, ubuntu-latest]
          rust_version: [stable, 1.74.0]
        run: cargo +${{ matrix.rust_version }} test --all-features --verbose

      tests-cross:
        name: Unit tests (cross)
        matrix:
          target: [aarch64-unknown-linux-gnu]
          rust_version: [stable, 1.74.0]
        run: cross +${{ matrix.rust_version }} test --all-targets --all-features --target ${{ matrix.target }}

      clippy:
        name: Clippy
        run: cargo clippy --all-features --all-targets -- -D warnings
        env:
          RUST_BACKTRACE: "1"

      cargo-fmt:
        name: Enforce Rust code format
        run: cargo +nightly fmt --all -- --check

      cargo-deny:
        name: License / vulnerability audit
        matrix:
          checks: [advisories, bans licenses sources]
        # A newly announced advisory must not fail the build
        tolerant_when:
          checks: [advisories]
        run: cargo deny check ${{ matrix.checks }}

    release:
      # Prints "api-diff: no-change|additive|breaking"
      api_check:
        run: ./scripts/api-diff.sh
"""
        config_path.write_text(default_config)
        print(f"Created config: {config_path}")
        return 0

    if args.show:
        config = load_config(args)
        print(json.dumps({
            "name": config.name,
            "max_concurrent_jobs": config.max_concurrent_jobs,
            "default_job_timeout_ms": config.default_job_timeout_ms,
            "policy": config.policy.to_dict(),
            "enable_events": config.enable_events,
            "events_url": config.events_url,
            "workspace_path": str(config.workspace_path),
        }, indent=2))
        return 0

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    log_level = "DEBUG" if args.verbose >= 2 else ("INFO" if args.verbose >= 1 else "WARNING")
    if args.quiet:
        log_level = "ERROR"

    setup_logging(
        level=log_level,
        log_file=args.log_file,
        use_colors=not args.no_color,
    )

    output_level = OutputLevel.DEBUG if args.verbose >= 2 else (
        OutputLevel.VERBOSE if args.verbose >= 1 else (
            OutputLevel.QUIET if args.quiet else OutputLevel.NORMAL
        )
    )
    formatter = ConsoleFormatter(level=output_level, use_colors=not args.no_color)

    if not args.quiet and args.command == "run":
        print_banner()

    try:
        if args.command == "run":
            return asyncio.run(run_event(args, formatter))
        elif args.command == "expand":
            return show_expansion(args)
        elif args.command == "version":
            return asyncio.run(compute_version(args, formatter))
        elif args.command == "config":
            return show_config(args)
        else:
            print("Use --help for usage information")
            return 1
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except ExternalToolUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
