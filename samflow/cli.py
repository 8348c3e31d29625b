"""
Samflow Command Line Interface

Validate, optimize and run workflow files, and serve the HTTP API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from samflow import codec
from samflow.builder.builder import WorkflowBuilder
from samflow.core.config import SamflowConfig, get_config, set_config
from samflow.core.logs import setup_logging
from samflow.engine import WorkflowExecutor
from samflow.errors import WorkflowError
from samflow.templates.manager import TemplateManager
from samflow.triggers.schedule import describe_cron, validate_cron
from samflow.types import WorkflowDefinition


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="samflow",
        description="Samflow - workflow definition and execution engine",
    )
    parser.add_argument("--config", type=Path, help="JSON config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    validate_parser = subparsers.add_parser("validate", help="Validate a workflow file")
    validate_parser.add_argument("file", type=Path, help="Workflow JSON file")

    optimize_parser = subparsers.add_parser("optimize", help="Optimize a workflow file")
    optimize_parser.add_argument("file", type=Path, help="Workflow JSON file")
    optimize_parser.add_argument("--output", "-o", type=Path, help="Write result here")

    run_parser = subparsers.add_parser("run", help="Run a workflow file")
    run_parser.add_argument("file", type=Path, help="Workflow JSON file")
    run_parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Initial variable (repeatable)",
    )

    cron_parser = subparsers.add_parser("describe-cron", help="Describe a cron expression")
    cron_parser.add_argument("expression", help="Five-field cron expression")

    templates_parser = subparsers.add_parser("templates", help="List workflow templates")
    templates_parser.add_argument("--category", help="Only this category")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.config:
        set_config(SamflowConfig.from_file(args.config))
    config = get_config()
    setup_logging(config.logging.level.value, config.logging.format)

    try:
        if args.command == "validate":
            return cmd_validate(args.file)
        elif args.command == "optimize":
            return cmd_optimize(args.file, args.output)
        elif args.command == "run":
            return asyncio.run(cmd_run(args.file, parse_variables(args.var)))
        elif args.command == "describe-cron":
            return cmd_describe_cron(args.expression)
        elif args.command == "templates":
            return cmd_templates(args.category)
        elif args.command == "serve":
            return cmd_serve(args.host, args.port)
    except WorkflowError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 0


def parse_variables(pairs: List[str]) -> Dict[str, Any]:
    """Parse KEY=VALUE pairs. Values are read as JSON when possible."""
    variables: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"Invalid --var {pair!r}, expected KEY=VALUE")
        try:
            variables[key] = json.loads(raw)
        except ValueError:
            variables[key] = raw
    return variables


def load_definition(path: Path) -> WorkflowDefinition:
    return codec.import_workflow(path.read_text())


def cmd_validate(path: Path) -> int:
    """Validate a workflow file and print the issues."""
    builder = WorkflowBuilder(config=get_config().builder)
    result = builder.validate(load_definition(path))
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.valid else 1


def cmd_optimize(path: Path, output: Optional[Path]) -> int:
    """Optimize a workflow file."""
    builder = WorkflowBuilder(config=get_config().builder)
    definition = load_definition(path)
    optimized = builder.optimize(definition)

    text = codec.export_workflow(optimized)
    if output:
        output.write_text(text)
        print(f"{len(definition.steps)} -> {len(optimized.steps)} steps, written to {output}")
    else:
        print(text)
    return 0


async def cmd_run(path: Path, variables: Dict[str, Any]) -> int:
    """Run a workflow file with the local capabilities."""
    definition = load_definition(path)
    executor = WorkflowExecutor(config=get_config().engine)

    result = await executor.execute(definition, variables)

    for step_result in result.step_results:
        if step_result.skipped:
            marker = "-"
        elif step_result.success:
            marker = "+"
        else:
            marker = "x"
        detail = step_result.output if step_result.success else step_result.error
        print(f"[{marker}] {step_result.step_name}: {detail}")

    print(
        f"{result.status.value}: {result.completed_steps}/{result.total_steps} steps "
        f"in {result.duration:.2f}s"
    )
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
    return 0 if result.success else 1


def cmd_describe_cron(expression: str) -> int:
    if not validate_cron(expression):
        print(f"Invalid cron expression: {expression}", file=sys.stderr)
        return 1
    print(describe_cron(expression))
    return 0


def cmd_templates(category: Optional[str]) -> int:
    """List workflow templates."""
    templates = TemplateManager().list(category)
    for template in templates:
        print(f"- {template.id} [{template.category}]: {template.description}")
    if not templates:
        print("No templates found")
    return 0


def cmd_serve(host: Optional[str], port: Optional[int]) -> int:
    """Start the HTTP server."""
    import uvicorn

    config = get_config()
    if host:
        config.host = host
    if port:
        config.port = port
    set_config(config)

    uvicorn.run(
        "samflow.api:create_app",
        factory=True,
        host=config.host,
        port=config.port,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
