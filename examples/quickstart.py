#!/usr/bin/env python3
"""
routeq Quickstart Example

Demonstrates routing, priority ordering, similarity batching, cost tracking,
and async dispatch against stand-in backends.
"""

import asyncio

from routeq import EVENT_FALLBACK, GenerationResult, Priority, WorkQueue, drain


class FakeBackend:
    """Stand-in for a real client; echoes a canned answer."""

    def __init__(self, name):
        self.name = name

    async def generate(self, prompt, model):
        await asyncio.sleep(0)
        return GenerationResult(text=f"[{self.name}/{model}] ok", tokens_used=len(prompt) // 4)


def main():
    """Run quickstart demonstration."""
    print("=== routeq Quickstart ===\n")

    # Initialize queue
    print("1. Initializing queue...")
    queue = WorkQueue(budget_limit=0.50)
    pricing = queue.cost_model.pricing
    print(f"   Backends: {', '.join(pricing.backends())}")
    print(f"   Local routes: {len(pricing.local_routes())}, paid routes: {len(pricing.paid_routes())}")
    print()

    queue.subscribe(EVENT_FALLBACK, lambda r: print(f"   ! fallback route for {r.id}"))

    test_prompts = [
        ("Simple", "What is a monad?", Priority.NORMAL),
        ("Reasoning", "Explain recursion", Priority.HIGH),
        ("Complex", """
Firstly design the database architecture for a multi-tenant api, then
optimize cache performance for parallel stream processing. Finally compare
the thread and async memory models and justify the algorithm you pick.
""", Priority.URGENT),
        ("Batchable", "list all files in the repository", Priority.LOW),
        ("Batchable", "list all files in the repository recursively", Priority.LOW),
        ("Batchable", "please list all files in the repository", Priority.LOW),
    ]

    print("2. Enqueueing prompts...")
    for label, prompt, priority in test_prompts:
        result = queue.enqueue(prompt, priority=priority)
        route = result.route
        record = queue.get_item(result.id)
        print(f"\n   {label} prompt: {prompt.strip()[:60]}")
        print(f"   → {route.backend}/{route.model} (quality {route.quality:.2f}, {route.speed})")
        print(f"   → Complexity: {record.complexity.level} ({record.complexity.score})")
        print(f"   → Estimated cost: ${route.estimated_cost:.6f}")
        print(f"   → Position: {result.position}, batch: {record.batch_id or '-'}")

    print("\n" + "=" * 60)

    print("\n3. Ready batches:")
    for batch_id in queue.ready_batches():
        members = queue.take_batch(batch_id)
        print(f"   {batch_id}: {[r.text for r in members]}")

    print("\n4. Similar pending prompts to 'list the repository files':")
    for match in queue.find_similar("list the repository files", threshold=0.3):
        print(f"   {match.similarity:.2f}  {match.record.text}")

    print("\n5. Draining queue...")
    backends = {name: FakeBackend(name) for name in pricing.backends()}
    processed = asyncio.run(drain(queue, backends))
    for record in processed:
        print(f"   {record.id} [{record.status.value}] → {record.result.text}")

    print("\n6. Status:")
    status = queue.get_status()
    print(f"   Completed: {status['completed_count']}, failed: {status['failed_count']}")
    print(f"   By backend: {status['per_backend_counts']}")
    print(f"   By complexity: {status['per_complexity_counts']}")
    ledger = status["ledger"]
    print(f"   Spent: ${ledger['total_spent']:.6f} of ${ledger['budget_limit']:.2f} "
          f"(remaining ${ledger['remaining']:.6f})")

    print("\n" + "=" * 60)
    print("Quickstart complete!")


if __name__ == "__main__":
    main()
