from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from content_flow.graph.diagnostics import render_rejections
from content_flow.graph.document import WorkflowDocument, load_workflow_file, save_workflow_file
from content_flow.graph.executor import WorkflowExecutionResult, WorkflowExecutor
from content_flow.graph.registry import DEFAULT_REGISTRY, InputPort, OutputPort
from content_flow.graph.validator import WorkflowValidationError, validate_workflow
from content_flow.graph.workflow import WorkflowGraph
from content_flow.logging_utils import configure_logging
from content_flow.settings import ALLOWED_TRAVERSALS, AppSettings, load_settings
from content_flow.workflow_store import SavedWorkflowStore

console = Console(highlight=False, markup=False)

app = typer.Typer(
    name="content-flow",
    help="Validate, run and store typed content workflows.",
    no_args_is_help=True,
)

WorkflowFile = Annotated[
    Path,
    typer.Argument(help="Workflow JSON file.", exists=True, file_okay=True, dir_okay=False, resolve_path=True),
]


@app.callback()
def main(
    log_level: Annotated[str | None, typer.Option("--log-level", help="Overrides LOG_LEVEL.")] = None,
) -> None:
    configure_logging(log_level)


@app.command("types")
def list_types() -> None:
    """Show the node types and their ports."""
    table = Table(title="Node types")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Inputs")
    table.add_column("Outputs")
    table.add_column("Max")
    for definition in DEFAULT_REGISTRY.node_types():
        table.add_row(
            definition.type_id,
            definition.title,
            definition.category,
            "\n".join(_describe_port(port) for port in definition.inputs) or "-",
            "\n".join(_describe_port(port) for port in definition.outputs) or "-",
            str(definition.max_instances) if definition.max_instances is not None else "-",
        )
    console.print(table)


@app.command()
def validate(path: WorkflowFile) -> None:
    """Check every node and edge of a workflow file."""
    document = _load_document(path)
    rejections = validate_workflow(document.to_nodes(), document.to_edges())
    if rejections:
        console.print(f"Workflow '{document.name}' has {len(rejections)} problem(s):")
        console.print(render_rejections(rejections))
        raise typer.Exit(code=1)
    console.print(f"Workflow '{document.name}' is valid ({len(document.nodes)} nodes, {len(document.edges)} edges).")


@app.command()
def run(
    path: WorkflowFile,
    traversal: Annotated[
        str | None,
        typer.Option("--traversal", help="linear or worklist; defaults to CONTENT_FLOW_TRAVERSAL."),
    ] = None,
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", min=1, help="Maximum number of node executions."),
    ] = None,
    skip_validation: Annotated[
        bool,
        typer.Option("--skip-validation", help="Run without validating the workflow first."),
    ] = False,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the workflow with run results applied to this file."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full result as JSON.")] = False,
) -> None:
    """Execute a workflow file and report per-node results."""
    settings = load_settings()
    document = _load_document(path)
    graph = WorkflowGraph(document.to_nodes(), document.to_edges())

    if not skip_validation:
        rejections = graph.validate()
        if rejections:
            console.print(f"Workflow '{document.name}' failed validation:")
            console.print(render_rejections(rejections))
            raise typer.Exit(code=1)

    if traversal is not None and traversal not in ALLOWED_TRAVERSALS:
        console.print(f"Unsupported traversal '{traversal}'. Use linear or worklist.")
        raise typer.Exit(code=2)

    executor = _build_executor(settings, traversal=traversal, max_depth=max_depth)
    result = executor.run(*graph.snapshot())

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_result(document.name, result)

    if output is not None:
        graph.apply_execution_results(result)
        updated = WorkflowDocument.from_parts(document.name, graph.nodes, graph.edges)
        updated.created_at = document.created_at
        save_workflow_file(updated, output)
        console.print(f"Wrote results to {output}")

    if result.status in {"failed", "cancelled"}:
        raise typer.Exit(code=1)


@app.command()
def save(
    path: WorkflowFile,
    name: Annotated[str | None, typer.Option("--name", help="Name to store the workflow under.")] = None,
) -> None:
    """Store a workflow file in the saved-workflow library."""
    document = _load_document(path)
    if name:
        document.name = name
    record = _store().save(document)
    console.print(f"Saved '{record.name}' ({record.node_count} nodes, {record.edge_count} edges).")


@app.command("list")
def list_saved() -> None:
    """List saved workflows."""
    records = _store().list()
    if not records:
        console.print("No saved workflows.")
        return
    table = Table(title="Saved workflows")
    table.add_column("Name")
    table.add_column("Nodes", justify="right")
    table.add_column("Edges", justify="right")
    table.add_column("Created")
    for record in records:
        table.add_row(record.name, str(record.node_count), str(record.edge_count), record.created_at)
    console.print(table)


@app.command()
def load(
    name: Annotated[str, typer.Argument(help="Saved workflow name.")],
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write the workflow to this file.")] = None,
) -> None:
    """Print or export a saved workflow."""
    document = _store().load(name)
    if document is None:
        console.print(f"No saved workflow named '{name}'.")
        raise typer.Exit(code=1)
    if output is None:
        typer.echo(json.dumps(document.to_payload(), indent=2, ensure_ascii=False))
        return
    save_workflow_file(document, output)
    console.print(f"Wrote '{name}' to {output}")


@app.command()
def delete(name: Annotated[str, typer.Argument(help="Saved workflow name.")]) -> None:
    """Remove a saved workflow."""
    if not _store().delete(name):
        console.print(f"No saved workflow named '{name}'.")
        raise typer.Exit(code=1)
    console.print(f"Deleted '{name}'.")


def _describe_port(port: InputPort | OutputPort) -> str:
    flags = ""
    if isinstance(port, InputPort):
        flags = ("*" if port.required else "") + ("+" if port.allow_multiple else "")
    return f"{port.id}{flags}: {port.data_type}"


def _load_document(path: Path) -> WorkflowDocument:
    try:
        return load_workflow_file(path)
    except WorkflowValidationError as exc:
        console.print(str(exc))
        raise typer.Exit(code=1) from exc


def _store() -> SavedWorkflowStore:
    return SavedWorkflowStore(db_path=load_settings().workflow_db_path)


def _build_executor(settings: AppSettings, *, traversal: str | None, max_depth: int | None) -> WorkflowExecutor:
    return WorkflowExecutor(
        max_execution_depth=max_depth or settings.max_execution_depth,
        traversal=traversal or settings.traversal,
        deadline_seconds=settings.run_deadline_seconds,
    )


def _print_result(name: str, result: WorkflowExecutionResult) -> None:
    console.print(f"Workflow '{name}' finished with status: {result.status}")
    console.print(f"Path: {' -> '.join(result.exec_path) or '(none)'}")

    table = Table(title="Node results")
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Error")
    for node_id, state in result.execution_state.items():
        table.add_row(node_id, state.status, state.error or "")
    console.print(table)

    summary = result.summary()
    console.print(
        f"Executed {summary.nodes_executed}/{summary.total_nodes} nodes: "
        f"{summary.nodes_succeeded} succeeded, {summary.nodes_failed} failed "
        f"in {summary.execution_time_ms:.1f} ms"
    )
    for line in summary.errors:
        console.print(f"- {line}")


def run_cli() -> None:
    app()
