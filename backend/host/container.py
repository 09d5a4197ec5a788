"""Queries the local container runtime for workload state."""

import asyncio
import logging

logger = logging.getLogger(__name__)

RUNNING = "RUNNING"
UNKNOWN = "UNKNOWN"
QUERY_TIMEOUT = 5.0  # seconds


def parse_state(output: str) -> str:
    """Extract the state from ``lxc-info --state`` output (``State: RUNNING``)."""
    for line in output.splitlines():
        name, _, value = line.partition(":")
        if name.strip().lower() == "state" and value.strip():
            return value.strip().upper()
    return UNKNOWN


async def container_state(name: str) -> str:
    """Return the runtime state of container ``name``, or UNKNOWN."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "lxc-info", "--name", name, "--state",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug(f"Container runtime unavailable: {e}")
        return UNKNOWN

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), QUERY_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug(f"Timed out querying state of container {name}")
        return UNKNOWN

    if proc.returncode != 0:
        logger.debug(
            f"lxc-info for {name} exited with {proc.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
        return UNKNOWN

    return parse_state(stdout.decode(errors="replace"))
