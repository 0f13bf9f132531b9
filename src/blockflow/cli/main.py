"""Command-line driver for blocks and workflows."""

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from ..blocks import create_default_registry
from ..core.config import DEFAULT_CONFIG_PATH, EngineConfig, load_config
from ..errors import BlockflowError
from ..utils.rich_logging import setup_logging
from ..workflow.context import ContextFactory, ExecutionMode
from ..workflow.definition import load_workflow
from ..workflow.orchestrator import WorkflowOrchestrator
from ..workflow.results import NodeStatus

console = Console()

SECRET_ENV_PREFIX = "BLOCKFLOW_SECRET_"
DEFAULT_BASELINE_DIR = "test-configs/baseline"
MODE_CHOICES = ["live", "mock", "production", "demo", "test"]

# blocks test exit codes
EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def load_secrets_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """``BLOCKFLOW_SECRET_API_KEY=...`` becomes ``{"api_key": ...}``."""
    environ = os.environ if environ is None else environ
    return {
        key[len(SECRET_ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(SECRET_ENV_PREFIX) and len(key) > len(SECRET_ENV_PREFIX)
    }


def _read_data_file(path: Path) -> Any:
    with open(path) as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def find_baseline(block_type: str, baseline_dir: Path) -> Optional[Path]:
    for suffix in (".baseline.json", ".baseline.yaml", ".baseline.yml"):
        candidate = baseline_dir / f"{block_type}{suffix}"
        if candidate.exists():
            return candidate
    return None


@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help=f"Engine config file (YAML, default: {DEFAULT_CONFIG_PATH})")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx, config_path, log_level):
    """Blockflow - pluggable DAG workflow engine."""
    ctx.ensure_object(dict)
    if config_path is None and not DEFAULT_CONFIG_PATH.exists():
        config = EngineConfig()
    else:
        config = load_config(Path(config_path or DEFAULT_CONFIG_PATH))
    setup_logging(
        level=log_level or config.logging.level,
        use_colors=config.logging.use_colors,
        log_file=config.logging.log_file,
    )
    ctx.obj["config"] = config


@cli.group()
def blocks():
    """Inspect and test block types."""


@blocks.command("list")
@click.option("--category", help="Only show blocks in this category")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def list_blocks(category, as_json):
    """List registered block types."""
    registry = create_default_registry()
    entries = registry.by_category(category) if category else registry.all_metadata()

    if as_json:
        click.echo(json.dumps([m.to_dict() for m in entries], indent=2))
        return

    table = Table(title=f"Blocks ({len(entries)})")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Version")
    table.add_column("Mock", justify="center")
    for metadata in entries:
        table.add_row(
            metadata.type,
            metadata.name,
            metadata.category,
            metadata.version,
            "✓" if metadata.supports_mock else "",
        )
    console.print(table)


@blocks.command("info")
@click.argument("block_type")
@click.pass_context
def block_info(ctx, block_type):
    """Show metadata and config schema for a block type."""
    registry = create_default_registry()
    if not registry.has(block_type):
        console.print(f"[red]Block not found: {block_type}[/]")
        console.print("Use 'blockflow blocks list' to see available blocks")
        ctx.exit(EXIT_USAGE)

    metadata = registry.get_metadata(block_type)
    console.print(f"[bold]{metadata.name}[/] ({metadata.type})")
    console.print(f"  Category:    {metadata.category}")
    console.print(f"  Version:     {metadata.version}")
    console.print(f"  Mock:        {'yes' if metadata.supports_mock else 'no'}")
    console.print(f"  Description: {metadata.description or '-'}")
    if metadata.tags:
        console.print(f"  Tags:        {', '.join(metadata.tags)}")

    schema = registry.create(block_type).config_model.model_json_schema()
    console.print("\n[bold]Config schema:[/]")
    console.print_json(json.dumps(schema.get("properties", {})))


@blocks.command("test")
@click.option("--type", "-t", "block_type", required=True, help="Block type to run")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Test file with input/config/variables (JSON or YAML)")
@click.option("--use-baseline", is_flag=True, help="Load <baseline-dir>/<type>.baseline.json")
@click.option("--baseline-dir", default=DEFAULT_BASELINE_DIR, type=click.Path(path_type=Path),
              show_default=True)
@click.option("--mode", "-m", type=click.Choice(MODE_CHOICES), default="test", show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print the result envelope as JSON only")
@click.pass_context
def test_block(ctx, block_type, config_file, use_baseline, baseline_dir, mode, as_json):
    """Run a single block and print its result envelope.

    Exit code 0 when the block completed, 1 when it failed, 2 otherwise.
    """
    registry = create_default_registry()
    execution_mode = ExecutionMode.parse(mode)

    if not registry.has(block_type):
        console.print(f"[red]Block not found: {block_type}[/]")
        ctx.exit(EXIT_USAGE)

    test_spec = _load_test_spec(block_type, config_file, use_baseline, baseline_dir, execution_mode)
    if test_spec is None:
        ctx.exit(EXIT_USAGE)

    # Secrets are only needed on the live path
    secrets = load_secrets_from_env() if execution_mode == ExecutionMode.PRODUCTION else {}
    context = ContextFactory.create(
        "block-test",
        mode=execution_mode,
        variables=test_spec.get("variables") or {},
        secrets=secrets,
    )

    if not as_json:
        metadata = registry.get_metadata(block_type)
        console.print(f"[bold]Test block:[/] {metadata.name} ({block_type})")
        label = "MOCK" if execution_mode.is_mock else "LIVE"
        console.print(f"  Mode: {execution_mode.value.upper()} ({label})")
        if test_spec.get("description"):
            console.print(f"  Description: {test_spec['description']}")

    block = registry.create(block_type)
    result = asyncio.run(block.execute(test_spec.get("config") or {}, test_spec.get("input"), context))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        colour = "green" if result.status == NodeStatus.COMPLETED else "red"
        console.print(f"\n[bold {colour}]Status: {result.status.value.upper()}[/]")
        console.print(f"  Execution time: {result.execution_time_ms:.0f}ms")
        if result.error:
            console.print(f"  Error: {result.error}")
        console.print_json(json.dumps(result.to_dict(), default=str))

    if result.status == NodeStatus.COMPLETED:
        ctx.exit(EXIT_COMPLETED)
    if result.status == NodeStatus.FAILED:
        ctx.exit(EXIT_FAILED)
    ctx.exit(EXIT_USAGE)


def _load_test_spec(
    block_type: str,
    config_file: Optional[Path],
    use_baseline: bool,
    baseline_dir: Path,
    mode: ExecutionMode,
) -> Optional[Dict[str, Any]]:
    """Resolve the test input from file, baseline or stdin; None on error."""
    if use_baseline or (config_file is None and mode == ExecutionMode.DEMO and sys.stdin.isatty()):
        baseline = find_baseline(block_type, baseline_dir)
        if baseline is None:
            console.print(f"[red]Baseline not found: {baseline_dir / (block_type + '.baseline.json')}[/]")
            return None
        return _parse_test_file(baseline)

    if config_file is not None:
        return _parse_test_file(config_file)

    stdin = click.get_text_stream("stdin")
    raw = "" if stdin.isatty() else stdin.read()
    if not raw.strip():
        console.print("[red]Must provide --config, --use-baseline, or pipe a test JSON via stdin[/]")
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        console.print(f"[red]Failed to parse stdin as JSON: {e}[/]")
        return None
    return _validate_test_spec(data, "stdin")


def _parse_test_file(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = _read_data_file(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Failed to read {path}: {e}[/]")
        return None
    return _validate_test_spec(data, str(path))


def _validate_test_spec(data: Any, origin: str) -> Optional[Dict[str, Any]]:
    if not isinstance(data, dict):
        console.print(f"[red]Test spec from {origin} must be an object with input/config[/]")
        return None
    return data


@cli.group()
def workflow():
    """Validate and run workflow definitions."""


@workflow.command("validate")
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def validate_workflow(ctx, workflow_file):
    """Check a workflow definition and print its execution plan."""
    registry = create_default_registry()
    try:
        definition = load_workflow(workflow_file)
    except (BlockflowError, yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Invalid workflow: {e}[/]")
        for error in getattr(e, "errors", []) or []:
            console.print(f"  - {error}")
        ctx.exit(1)

    unknown = sorted({n.type for n in definition.nodes if not registry.has(n.type)})
    if unknown:
        console.print(f"[red]Unknown block types: {', '.join(unknown)}[/]")
        ctx.exit(1)

    plan = WorkflowOrchestrator(registry, ctx.obj["config"]).plan(definition)
    console.print(f"[green]✓ Workflow '{definition.display_name}' is valid[/]")
    console.print(f"  {len(definition.nodes)} nodes, {len(definition.edges)} edges, {len(plan.layers)} layers")
    for index, layer in enumerate(plan.layers):
        console.print(f"  Layer {index}: {', '.join(layer)}")


@workflow.command("run")
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--input", "input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Initial input (JSON or YAML)")
@click.option("--mode", "-m", type=click.Choice(MODE_CHOICES), default=None,
              help="Execution mode (defaults to the engine config)")
@click.option("--json", "as_json", is_flag=True, help="Print the run result as JSON only")
@click.pass_context
def run_workflow(ctx, workflow_file, input_file, mode, as_json):
    """Execute a workflow. Exit code 0 when every node completed."""
    config = ctx.obj["config"]
    try:
        definition = load_workflow(workflow_file)
    except (BlockflowError, yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Invalid workflow: {e}[/]")
        ctx.exit(1)

    initial_input = _read_data_file(input_file) if input_file else {}
    execution_mode = ExecutionMode.parse(mode or config.engine.default_mode)
    secrets = load_secrets_from_env() if execution_mode == ExecutionMode.PRODUCTION else {}

    orchestrator = WorkflowOrchestrator(create_default_registry(), config)
    result = asyncio.run(orchestrator.execute(definition, initial_input, mode=execution_mode, secrets=secrets))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_run_summary(result)

    ctx.exit(0 if result.is_completed else 1)


def _print_run_summary(result) -> None:
    colour = "green" if result.is_completed else "red"
    console.print(f"[bold {colour}]Workflow {result.workflow_id}: {result.status.value.upper()}[/]"
                  f" in {result.execution_time_ms:.0f}ms")

    table = Table()
    table.add_column("Node", style="cyan")
    table.add_column("Status")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Error")
    styles = {NodeStatus.COMPLETED: "green", NodeStatus.FAILED: "red", NodeStatus.NEVER_RUN: "yellow"}
    for node_id, node_result in result.node_results.items():
        style = styles[node_result.status]
        table.add_row(
            node_id,
            f"[{style}]{node_result.status.value}[/]",
            f"{node_result.execution_time_ms:.0f}",
            str(node_result.retry_count),
            node_result.error or node_result.metadata.get("reason", ""),
        )
    console.print(table)
    console.print_json(json.dumps(result.output, default=str))


if __name__ == "__main__":
    cli()
