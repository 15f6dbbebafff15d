"""
Basic Lifecycle Example

Demonstrates the full pool lifecycle: construct the manager at the entry
point, initialize, inject it into a collaborator, persist through the pool
with graceful degradation, and shut down.

Point it at a database with POSTGRES_DSN or the POSTGRES_HOST/... variables.
Without a reachable database it still runs and shows the degraded path.
"""

import sys
import os
import asyncio

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from client import PoolOpsClient
from connection_management import LifecycleEvent, run_if_available
from monitoring import build_health_report
# Import usage_examples utils (not the project's utils package)
import importlib.util
utils_file_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'utils.py'))
spec = importlib.util.spec_from_file_location("example_utils", utils_file_path)
example_utils = importlib.util.module_from_spec(spec)
spec.loader.exec_module(example_utils)
print_section = example_utils.print_section
print_step = example_utils.print_step
print_success = example_utils.print_success
print_warning = example_utils.print_warning
print_error = example_utils.print_error
print_info = example_utils.print_info
print_dict = example_utils.print_dict


class AuditLog:
    """Toy collaborator that persists through the shared pool."""

    def __init__(self, manager):
        self.manager = manager

    async def server_version(self):
        async def query(pool):
            return await pool.fetchval("SHOW server_version")

        return await run_if_available(self.manager, query, description="server version lookup")


async def main():
    """Main function to demonstrate the pool lifecycle."""
    print_section("PostgreSQL Pool Lifecycle Example")

    # Step 1: Construct the client
    print_step(1, "Construct client and subscribe to lifecycle events")
    client = PoolOpsClient()
    print_info("Target", client.config.connection.describe_target())
    print_info("Max retries", client.config.resilience.max_retries)
    print_info("Circuit threshold", client.config.resilience.circuit_breaker_threshold)

    client.events.subscribe(LifecycleEvent.CONNECTED, lambda pool: print_success(f"event: connected ({pool!r})"))
    client.events.subscribe(LifecycleEvent.CONNECTION_FAILED, lambda error: print_warning(f"event: connectionFailed ({error})"))
    client.events.subscribe(LifecycleEvent.POOL_ERROR, lambda error: print_warning(f"event: poolError ({error})"))
    client.events.subscribe(LifecycleEvent.SHUTDOWN, lambda: print_success("event: shutdown"))

    # Step 2: Initialize
    print_step(2, "Initialize the pool")
    pool = await client.start()
    if pool is None:
        print_warning("Database unavailable; continuing in degraded mode")
    else:
        print_success("Pool established")

    # Step 3: Inject into a collaborator
    print_step(3, "Persist through the pool")
    audit = AuditLog(client.register("audit-log"))
    try:
        version = await audit.server_version()
        print_info("Server version", version if version is not None else "skipped")
    except Exception as e:
        print_error(f"Query failed: {e}")

    # Step 4: Health
    print_step(4, "Health report")
    report = build_health_report(client.manager)
    print_info("Status", report["status"])
    print_dict(report["stats"])

    # Step 5: Shutdown
    print_step(5, "Shut down")
    await client.close()
    print_info("get_pool() after shutdown", await client.manager.get_pool())

    print_section("Example Completed")
    print("\nKey Takeaways:")
    print("  - One manager per process, passed to every collaborator")
    print("  - A None pool means degrade, never crash")
    print("  - Lifecycle events make connectivity changes observable")


if __name__ == "__main__":
    asyncio.run(main())
