"""Simple example showing a branching workflow run in memory."""

import asyncio

from stepwright import (
    ExecutorRegistry,
    RunExecutor,
    StepDispatcher,
    WorkflowDefinition,
)
from stepwright.persistence import InMemoryRunRepository


async def notify(settings, context):
    print(f"  [{context.node_id}] {settings['message']}")
    return {"delivered": True}


async def main():
    """Basic run example."""
    registry = ExecutorRegistry()
    registry.register("notify", notify)

    definition = WorkflowDefinition.model_validate(
        {
            "id": "order-review",
            "nodes": [
                {
                    "id": "check-amount",
                    "type": "logicIf",
                    "config": {
                        "condition": {
                            "left": "{{trigger.payload.amount}}",
                            "op": "gt",
                            "right": "100",
                        }
                    },
                },
                {
                    "id": "escalate",
                    "type": "notify",
                    "config": {"settings": {"message": "Order of {{trigger.payload.amount}} needs review"}},
                },
                {
                    "id": "auto-approve",
                    "type": "notify",
                    "config": {"settings": {"message": "Order auto-approved"}},
                },
            ],
            "edges": [
                {"from": "check-amount", "to": "escalate", "branch": "yes"},
                {"from": "check-amount", "to": "auto-approve", "branch": "no"},
            ],
        }
    )

    repository = InMemoryRunRepository()
    executor = RunExecutor(repository=repository, dispatcher=StepDispatcher(registry))

    for amount in (250, 40):
        result = await executor.run(definition, {"amount": amount})
        print(f"Run {result.run.id}: {result.status.value}")
        print(f"  visited: {' -> '.join(result.visited)}")
        for step in await repository.list_steps(result.run.id):
            print(f"  - {step.node_id}: {step.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
