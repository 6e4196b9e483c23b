import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import marshmallow as mm

from aibs_informatics_lambda_deploy.common.exceptions import DesiredStateError
from aibs_informatics_lambda_deploy.common.logging import get_service_logger
from aibs_informatics_lambda_deploy.desired_state.model import (
    DesiredState,
    EventSourceBinding,
    ScheduleBinding,
)

logger = get_service_logger(__name__)

EVENT_SOURCE_KEYS = ("EventSourceMappings", "event_source_bindings")
SCHEDULE_KEYS = ("ScheduleEvents", "schedule_bindings")


def _collection(document: Dict[str, Any], keys) -> List[Dict[str, Any]]:
    for key in keys:
        value = document.get(key)
        if value is not None:
            if not isinstance(value, list):
                raise DesiredStateError(f"{key} must be a list, got {type(value).__name__}")
            return value
    return []


def parse_desired_state(document: Union[List[Any], Dict[str, Any]]) -> DesiredState:
    """Normalize a desired-state document into event source and schedule bindings.

    A bare list is the legacy form and is read entirely as event sources.

    Args:
        document (Union[List[Any], Dict[str, Any]]): The parsed JSON document.

    Raises:
        DesiredStateError: If the document does not describe valid bindings
            or declares the same event source ARN twice.

    Returns:
        DesiredState: The normalized desired state.
    """
    if isinstance(document, list):
        event_sources, schedules = document, []
    elif isinstance(document, dict):
        event_sources = _collection(document, EVENT_SOURCE_KEYS)
        schedules = _collection(document, SCHEDULE_KEYS)
    else:
        raise DesiredStateError(
            f"Desired-state document must be a list or an object, got {type(document).__name__}"
        )

    try:
        state = DesiredState(
            event_source_bindings=[
                EventSourceBinding.from_dict(_ensure_dict(e)) for e in event_sources
            ],
            schedule_bindings=[ScheduleBinding.from_dict(_ensure_dict(s)) for s in schedules],
        )
    except mm.ValidationError as e:
        raise DesiredStateError(f"Invalid desired-state document: {e.messages}") from e

    seen = set()
    for binding in state.event_source_bindings:
        if binding.source_arn in seen:
            raise DesiredStateError(
                f"Event source {binding.source_arn} is declared more than once"
            )
        seen.add(binding.source_arn)
    return state


def _ensure_dict(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise DesiredStateError(f"Binding entries must be objects, got {value!r}")
    return value


def load_desired_state(path: Optional[Union[str, Path]]) -> DesiredState:
    """Read the desired-state document at `path`.

    Args:
        path (Optional[Union[str, Path]]): Location of the JSON document. If not provided,
            an empty desired state is returned and reconciliation becomes a no-op.

    Raises:
        DesiredStateError: If the document is unreadable or invalid.

    Returns:
        DesiredState: The event source and schedule bindings to reconcile.
    """
    if not path:
        logger.info("No event source file provided. Skipping event source reconciliation.")
        return DesiredState()

    path = Path(path)
    logger.info(f"Reading event source file {path}")
    try:
        document = json.loads(path.read_text())
    except OSError as e:
        raise DesiredStateError(f"Could not read event source file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise DesiredStateError(f"Event source file {path} is not valid JSON: {e}") from e

    state = parse_desired_state(document)
    logger.info(
        f"Loaded {len(state.event_source_bindings)} event source(s) and "
        f"{len(state.schedule_bindings)} schedule(s) from {path}"
    )
    return state
