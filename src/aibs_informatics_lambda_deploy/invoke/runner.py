"""Run a function handler locally against an event document."""

import json
import os
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from aibs_informatics_core.utils.modules import as_module_type
from dotenv import load_dotenv

from aibs_informatics_lambda_deploy.common.config import (
    DEFAULT_HANDLER,
    DEFAULT_RUNTIME,
    SUPPORTED_RUNTIMES,
)
from aibs_informatics_lambda_deploy.common.exceptions import DeployValidationError
from aibs_informatics_lambda_deploy.common.logging import get_service_logger
from aibs_informatics_lambda_deploy.invoke.context import LocalLambdaContext

logger = get_service_logger(__name__)

SUCCESS_EXIT_CODE = 0
ERROR_EXIT_CODE = 255
UNSUPPORTED_RUNTIME_EXIT_CODE = 254

HandlerType = Callable[[Any, LocalLambdaContext], Any]


@dataclass
class InvokeRequest:
    """Options of a local run.

    Attributes:
        handler: Handler reference, "<module>.<function>", relative to `source_directory`.
        event_file: JSON event document. A list runs every element in its own process.
        context_file: Optional JSON context document.
        config_file: Optional dotenv file loaded into the environment before import.
        timeout: Function timeout in seconds.
    """

    handler: str = DEFAULT_HANDLER
    event_file: Path = field(default_factory=lambda: Path("event.json"))
    context_file: Optional[Path] = None
    config_file: Optional[Path] = None
    source_directory: Path = field(default_factory=lambda: Path("."))
    timeout: int = 3
    runtime: str = DEFAULT_RUNTIME

    def to_args(self, event_file: Path) -> List[str]:
        """Command line of the `run` subcommand for a single event file."""
        args = [
            "run",
            "--handler",
            self.handler,
            "--event-file",
            str(event_file),
            "--source-directory",
            str(self.source_directory),
            "--timeout",
            str(self.timeout),
            "--runtime",
            self.runtime,
        ]
        if self.context_file is not None:
            args += ["--context-file", str(self.context_file)]
        if self.config_file is not None:
            args += ["--config-file", str(self.config_file)]
        return args


def load_handler(handler: str, source_directory: Path) -> HandlerType:
    """Import the handler function from the function's source tree.

    Args:
        handler (str): Handler reference, "<module>.<function>".
        source_directory (Path): Directory the handler module is imported from.

    Raises:
        DeployValidationError: If the reference is malformed or not callable.

    Returns:
        The handler callable.
    """
    module_name, _, function_name = handler.rpartition(".")
    if not module_name or not function_name:
        raise DeployValidationError(f"Handler [{handler}] must be of the form <module>.<function>")

    source_path = str(source_directory.resolve())
    if source_path not in sys.path:
        sys.path.insert(0, source_path)

    handler_code = getattr(as_module_type(module_name), function_name, None)
    if not callable(handler_code):
        raise DeployValidationError(f"{handler} is not a callable handler")
    return handler_code


def run_handler(handler: HandlerType, event: Any, context: LocalLambdaContext) -> int:
    """Invoke the handler once and print its outcome.

    Returns:
        int: 0 if the handler returned, 255 if it raised.
    """
    try:
        result = handler(event, context)
    except Exception as e:
        logger.debug("Handler raised", exc_info=True)
        print(f"Error: {e}")
        return ERROR_EXIT_CODE
    print("Success:")
    if result is not None:
        print(json.dumps(result, default=str))
    return SUCCESS_EXIT_CODE


def run_events_in_subprocesses(request: InvokeRequest, events: List[Any]) -> int:
    """Run each event in a fresh interpreter, one after another.

    Each run gets its own temporary event file, so handlers never share process
    state between events.

    Returns:
        int: 0 if every run succeeded, otherwise the last nonzero exit code.
    """
    logger.warning(
        "The event document holds a list. Running each of its "
        f"{len(events)} events in a separate process."
    )
    exit_code = SUCCESS_EXIT_CODE
    for i, event in enumerate(events):
        with tempfile.TemporaryDirectory() as tmp_dir:
            event_file = Path(tmp_dir) / f"{i}_event.json"
            event_file.write_text(json.dumps(event))
            completed = subprocess.run(
                [sys.executable, "-m", "aibs_informatics_lambda_deploy.main"]
                + request.to_args(event_file),
                capture_output=True,
                text=True,
                env=os.environ.copy(),
            )
        print(f">>> Event: {json.dumps(event)} <<<")
        print(completed.stdout)
        if completed.stderr:
            print(completed.stderr, file=sys.stderr)
        if completed.returncode != 0:
            exit_code = completed.returncode
    return exit_code


def read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise DeployValidationError(f"Could not read {path}: {e}") from e


def exit_now(exit_code: int) -> None:
    """Terminate the process without waiting for outstanding threads."""
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(exit_code)


def run_local(request: InvokeRequest) -> int:
    """Run the handler locally against the event document of the request.

    Args:
        request (InvokeRequest): The run options.

    Returns:
        int: Process exit code. 0 on success, 255 if the handler raised and 254 if
            the runtime is not supported.
    """
    if request.runtime not in SUPPORTED_RUNTIMES:
        print(f"Runtime [{request.runtime}] is not supported.", file=sys.stderr)
        return UNSUPPORTED_RUNTIME_EXIT_CODE

    if request.config_file is not None:
        load_dotenv(request.config_file, override=True)

    event = read_json(request.event_file)
    if isinstance(event, list):
        return run_events_in_subprocesses(request, event)

    context_document = None
    if request.context_file is not None and request.context_file.is_file():
        context_document = read_json(request.context_file)
    context = LocalLambdaContext.from_document(
        context_document,
        function_name=request.handler.rpartition(".")[0],
        timeout_seconds=request.timeout,
    )

    handler = load_handler(request.handler, request.source_directory)
    exit_code = run_handler(handler, event, context)
    if not context.callback_waits_for_empty_event_loop:
        exit_now(exit_code)
    return exit_code
