"""
Circuit Breaker Demo

Points the manager at a port where nothing listens and shows retries with
exponential backoff, the circuit opening after repeated failures, callers
being short-circuited, and the automatic half-open recovery attempt.
"""

import sys
import os
import asyncio
import time

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from config import PoolOpsSettings
from connection_management import ConnectionLifecycleManager, LifecycleEvent
from utils import configure_logging
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


async def main():
    """Main function to demonstrate the circuit breaker."""
    print_section("PostgreSQL Circuit Breaker Demo")

    settings = PoolOpsSettings(
        connection={"host": "127.0.0.1", "port": 1},
        pool={"connection_timeout": 1.0},
        resilience={
            "max_retries": 3,
            "base_delay": 0.2,
            "circuit_breaker_threshold": 3,
            "circuit_breaker_cooldown": 2.0,
        },
    )
    configure_logging(settings.monitoring)

    # Step 1: Exhaust one retry cycle
    print_step(1, "Initialize against an unreachable server")
    manager = ConnectionLifecycleManager(settings)
    manager.events.subscribe(LifecycleEvent.CONNECTION_FAILED, lambda error: print_warning(f"connectionFailed: {error}"))

    started = time.perf_counter()
    pool = await manager.initialize()
    if pool is not None:
        print_error("Expected the connection to fail; something is listening on 127.0.0.1:1")
        await manager.shutdown()
        return
    print_info("Pool", pool)
    print_info("Elapsed", f"{time.perf_counter() - started:.2f}s")
    print_info("Backoff schedule", manager.backoff.delays(settings.resilience.max_retries))
    print_info("Circuit state", manager.circuit_breaker.get_state())

    # Step 2: Short-circuited callers
    print_step(2, "Call get_pool() while the circuit is open")
    started = time.perf_counter()
    pool = await manager.get_pool()
    print_info("Pool", pool)
    print_info("Elapsed", f"{(time.perf_counter() - started) * 1000:.1f}ms (no network I/O)")

    # Step 3: Wait for the half-open trial
    print_step(3, "Wait for the cooldown and the automatic recovery attempt")
    await asyncio.sleep(settings.resilience.circuit_breaker_cooldown + 1.5)
    metrics = manager.circuit_breaker.get_metrics()
    print_info("Circuit state", metrics["state"])
    print_info("Total attempts", metrics["counters"]["total_attempts"])
    print_info("Short circuits", metrics["counters"]["total_short_circuits"])

    await manager.shutdown()
    print_success("Manager shut down")


if __name__ == "__main__":
    asyncio.run(main())
