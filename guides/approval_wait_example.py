"""Example demonstrating a run suspended on a wait token.

The run pauses at the ``approval`` node until the token is completed. With
the Redis wait backend the token can be completed from another process,
for example with ``stepwright wait complete <token> --output '{"approved": true}'``.
"""

import asyncio

from stepwright import RunExecutor, StepDispatcher, WorkflowDefinition, default_registry
from stepwright.waits import InMemoryWaitCoordinator

DEFINITION = {
    "id": "manager-approval",
    "nodes": [
        {"id": "approval", "type": "wait", "config": {"timeout": "15m"}},
        {
            "id": "approved",
            "type": "logicIf",
            "config": {
                "condition": {
                    "left": "{{steps.approval.output.output.approved}}",
                    "op": "eq",
                    "right": "true",
                }
            },
        },
        {"id": "book", "type": "book-travel"},
        {"id": "reject", "type": "notify-rejection"},
    ],
    "edges": [
        {"from": "approval", "to": "approved"},
        {"from": "approved", "to": "book", "branch": "yes"},
        {"from": "approved", "to": "reject", "branch": "no"},
    ],
}


async def approve_later(waits: InMemoryWaitCoordinator):
    while not waits.pending_tokens():
        await asyncio.sleep(0.1)
    token = waits.pending_tokens()[0]
    print(f"Completing {token.id} (POST {token.url})")
    await waits.complete_token(token.id, {"approved": True})


async def main():
    waits = InMemoryWaitCoordinator()
    executor = RunExecutor(dispatcher=StepDispatcher(default_registry(), waits))

    definition = WorkflowDefinition.model_validate(DEFINITION)
    result, _ = await asyncio.gather(
        executor.run(definition, {"traveller": "ada@example.com"}),
        approve_later(waits),
    )

    print(f"Run {result.run.id}: {result.status.value}")
    print(f"Visited: {' -> '.join(result.visited)}")


if __name__ == "__main__":
    asyncio.run(main())
