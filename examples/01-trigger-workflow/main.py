"""
Trigger Workflow Example

This example demonstrates the dispatch pipeline end to end:
1. Register a custom adapter
2. Give it a tight rate limit
3. Trigger it until the limiter rejects a call
4. Read analytics back from the activity log

Run: python -m examples.01-trigger-workflow.main
"""

import asyncio
from typing import Any

from crmflow import IntegrationManager, TriggerMetadata, WorkflowTrigger
from crmflow.integrations import ServiceAdapter
from crmflow.pipeline import OperationType, RateLimitConfig, RateLimiter
from crmflow.storage import InMemoryRowStore

# =============================================================================
# Custom Adapter
# =============================================================================


class GreetingAdapter(ServiceAdapter):
    """Pretends to call an external API that greets leads."""

    service_key = "greeter"
    actions = {"greet": OperationType.CREATE}

    async def greet(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return {"message": f"Hello, {data.get('name', 'there')}!"}


# =============================================================================
# Main
# =============================================================================


async def main():
    store = InMemoryRowStore()
    limiter = RateLimiter({"greeter": RateLimitConfig(requests_per_minute=2, requests_per_hour=10)})

    manager = IntegrationManager(
        store,
        "user-1",
        adapters={"greeter": GreetingAdapter()},
        rate_limiter=limiter,
    )

    for name in ["Ada", "Grace", "Edsger"]:
        result = await manager.trigger_workflow(
            WorkflowTrigger(
                service_key="greeter",
                action="greet",
                data={"name": name},
                metadata=TriggerMetadata(lead_id=f"lead-{name.lower()}"),
            )
        )
        print(f"{name}: {result.to_dict()}")

    print()
    metrics = await manager.get_analytics("greeter")
    print(f"Requests logged: {metrics.total_requests}")
    print(f"Success rate: {metrics.success_rate}%")
    print(f"Error rate: {metrics.error_rate}%")
    print(f"Limiter: {limiter.get_stats('greeter')}")

    await manager.aclose()


if __name__ == "__main__":
    asyncio.run(main())
