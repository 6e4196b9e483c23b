from typing import Dict, List, Sequence

from aibs_informatics_lambda_deploy.desired_state.model import EventSourceBinding
from aibs_informatics_lambda_deploy.reconcile.model import (
    BindingOperation,
    CreateBinding,
    DeleteBinding,
    UpdateBinding,
)


def diff_bindings(
    desired: Sequence[EventSourceBinding], existing: Sequence[EventSourceBinding]
) -> List[BindingOperation]:
    """Compute the operations that move the existing bindings to the desired ones.

    Bindings are matched by source ARN. A desired binding with an existing match is
    updated in place using the existing remote handle, one without a match is
    created and every existing binding without a desired match is deleted.

    Args:
        desired (Sequence[EventSourceBinding]): Locally declared bindings.
        existing (Sequence[EventSourceBinding]): Bindings currently on the remote side.
            Each must carry its remote id.

    Returns:
        List[BindingOperation]: Creates and updates in desired order, then deletes
            in existing order.
    """
    existing_by_arn: Dict[str, EventSourceBinding] = {}
    for binding in existing:
        existing_by_arn.setdefault(binding.source_arn, binding)

    operations: List[BindingOperation] = []
    for binding in desired:
        match = existing_by_arn.get(binding.source_arn)
        if match is not None and match.remote_id:
            operations.append(UpdateBinding(binding=binding, remote_id=match.remote_id))
        else:
            operations.append(CreateBinding(binding=binding))

    desired_arns = {binding.source_arn for binding in desired}
    for binding in existing:
        if binding.source_arn not in desired_arns and binding.remote_id:
            operations.append(
                DeleteBinding(remote_id=binding.remote_id, source_arn=binding.source_arn)
            )
    return operations
