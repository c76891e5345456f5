#!/usr/bin/env python3
"""Run the interactive workflow over a workspace.

Usage:
  python -m migrationflow --workspace ../my-app --incidents incidents.json [--yes] [--apply]

incidents.json holds a JSON list of incidents as reported by the analyzer.
Questions the workflow asks are read from stdin unless --yes answers them.
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog
from pydantic import TypeAdapter

from migrationflow.container import Container
from migrationflow.domain.entities.incident import Incident
from migrationflow.domain.entities.workflow_messages import (
    ErrorMessage,
    InteractionResponse,
    LLMResponseMessage,
    ModifiedFileMessage,
    UserInteractionMessage,
    WorkflowMessage,
)
from migrationflow.infrastructure.workflow import InteractiveWorkflow, WorkflowInput, WorkflowResponse
from migrationflow.infrastructure.workflow.interactive import RunCollector
from migrationflow.shared.logging import setup_logging
from migrationflow.shared.messages import content_to_text

log = structlog.get_logger()

_incidents_adapter = TypeAdapter(list[Incident])


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="migrationflow", description=__doc__.splitlines()[0])
    parser.add_argument("--workspace", type=Path, required=True)
    parser.add_argument("--incidents", type=Path, required=True)
    parser.add_argument("--config-dir", type=Path, default=None)
    parser.add_argument("--yes", action="store_true", help="accept every question and change")
    parser.add_argument("--apply", action="store_true", help="write modified files to disk")
    parser.add_argument("--no-diagnostics", action="store_true")
    return parser.parse_args(argv)


async def _answer(message: UserInteractionMessage, assume_yes: bool) -> UserInteractionMessage:
    """Build the response to a question, asking on stdin unless assume_yes."""
    if message.data.type == "tasks":
        # No IDE diagnostics to offer from the command line
        accepted = False
    elif assume_yes:
        accepted = True
    else:
        prompt = message.data.system_message.yes_no or f"Accept {message.data.type} {message.id}?"
        reply = await asyncio.to_thread(input, f"{prompt} [y/N] ")
        accepted = reply.strip().lower() in ("y", "yes")
    response = InteractionResponse(yes_no=accepted)
    return message.model_copy(update={"data": message.data.model_copy(update={"response": response})})


def _write_files(workspace: Path, response: WorkflowResponse) -> None:
    for modified in response.modified_files:
        path = Path(modified.path)
        if not path.is_absolute():
            path = workspace / path
        path.write_text(modified.content, encoding="utf-8")
        log.info("file_written", path=str(path))


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    container = Container(config_dir=args.config_dir)
    config = container.config
    setup_logging(
        level=config.log_level,
        file_path=config.log_file or "",
        rotation_max_mb=config.log_rotation_max_mb,
        rotation_backups=config.log_rotation_backups,
    )

    incidents = _incidents_adapter.validate_json(args.incidents.read_bytes())
    workspace = args.workspace.resolve()
    log.info("startup_begin", workspace=str(workspace), incidents=len(incidents))

    if config.solution_server.enabled:
        await container.solution_server.connect()

    workflow = InteractiveWorkflow()
    collector = RunCollector()
    workflow.subscribe(collector)
    try:
        await workflow.init(container.workflow_options(workspace))
        request = WorkflowInput(
            incidents=incidents,
            migration_hint=config.agent.migration_hint,
            programming_language=config.agent.programming_language,
            enable_diagnostics_fixes=config.agent.enable_diagnostics_fixes and not args.no_diagnostics,
        )
        message: WorkflowMessage
        async for message in workflow.stream(request):
            if isinstance(message, UserInteractionMessage) and message.data.response is None:
                # The run is parked on this question until it is resolved
                await workflow.resolve_user_interaction(await _answer(message, args.yes))
            elif isinstance(message, LLMResponseMessage):
                log.info("llm_response", id=message.id, chars=len(content_to_text(message.data.content)))
            elif isinstance(message, ModifiedFileMessage):
                log.info("file_modified", path=message.data.path, rejected=message.data.rejected)
            elif isinstance(message, ErrorMessage):
                log.warning("workflow_error", error=message.data)
    finally:
        await container.close()

    response = collector.response()
    if args.apply:
        _write_files(workspace, response)
    print(response.model_dump_json(indent=2))
    return 1 if response.errors else 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
