"""
SSDP-based management discovery service.

Every monitor cycle checks whether the management workload runs on this
node. If it does, the node pairs with itself and advertises; otherwise it
listens briefly for another node's advertisement.
"""

import asyncio
import logging
from enum import Enum

from config import (
    ADVERTISE_MAX_AGE,
    HOST_PLACEHOLDER_LENGTH,
    LISTEN_WINDOW,
    LOCAL_MANAGEMENT_ADDRESS,
    MANAGEMENT_CONTAINER,
    MONITOR_INTERVAL,
    PROBE_INTERVAL,
    SERVICE_TYPE,
    ManagementSettings,
)
from discovery.models import AdvertisedService, Announcement
from discovery.pairing import PairingPersister
from discovery.policy import should_accept
from discovery.ssdp import SsdpClient, SsdpServer
from host.container import RUNNING, container_state
from host.network import get_local_ip
from security.keyman import ManagementClient

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """What a monitor cycle decided this node should do."""
    ADVERTISING = "advertising"
    LISTENING = "listening"


class DiscoveryService:
    """Runs the role monitor and its supervised advertiser/listener tasks."""

    def __init__(
        self,
        settings: ManagementSettings,
        persister: PairingPersister,
        management_client: ManagementClient,
        state_query=container_state,
        local_ip=get_local_ip,
        server_factory=SsdpServer,
        client_factory=SsdpClient,
    ) -> None:
        self._settings = settings
        self._persister = persister
        self._management = management_client
        self._state_query = state_query  # async fn(container_name) -> state
        self._local_ip = local_ip
        self._server_factory = server_factory
        self._client_factory = client_factory
        self._monitor_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._last_role: Role | None = None

    @property
    def role(self) -> Role | None:
        return self._last_role

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """Start the role monitor."""
        logger.info(f"Starting management discovery for {SERVICE_TYPE}")
        self._monitor_task = asyncio.create_task(self.monitor())

    async def stop(self) -> None:
        """Stop the monitor and any roles still running."""
        tasks = list(self._tasks)
        if self._monitor_task:
            tasks.append(self._monitor_task)
            self._monitor_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Management discovery stopped")

    async def monitor(self) -> None:
        """Re-evaluate the node's role every cycle, forever."""
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Discovery monitor cycle failed: {e}", exc_info=True)
            await asyncio.sleep(MONITOR_INTERVAL)

    async def tick(self) -> Role:
        """Run one monitor cycle and return the role it launched."""
        state = await self._state_query(MANAGEMENT_CONTAINER)
        if state == RUNNING:
            await self._persister.save(LOCAL_MANAGEMENT_ADDRESS)
            self.spawn(self.advertise(), Role.ADVERTISING)
            role = Role.ADVERTISING
        else:
            self.spawn(self.listen(), Role.LISTENING)
            role = Role.LISTENING

        if role != self._last_role:
            logger.info(f"Discovery role: {role.value}")
        self._last_role = role
        return role

    def spawn(self, coro, role: Role) -> asyncio.Task:
        """Run ``coro`` in the background; failures end the task quietly."""
        task = asyncio.create_task(self._supervise(coro, role))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _supervise(self, coro, role: Role) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Discovery {role.value} task failed: {e}", exc_info=True)

    # --- Advertiser ---

    async def advertise(self) -> None:
        """Advertise this node while the local management server has an identity."""
        server = self._server_factory()
        try:
            await server.start()
        except OSError as e:
            logger.warning(f"Failed to start SSDP server: {e}")
            return

        try:
            fingerprint = await self._management.fetch_fingerprint()
            if not fingerprint:
                logger.debug("Local management server has no fingerprint yet")
                return

            logger.debug(f"Launching SSDP server on {SERVICE_TYPE}")
            server.advertise(AdvertisedService(
                service_type=SERVICE_TYPE,
                device_id=fingerprint,
                location=self._local_ip(),
                max_age=ADVERTISE_MAX_AGE,
            ))

            while fingerprint:
                await asyncio.sleep(PROBE_INTERVAL)
                fingerprint = await self._management.fetch_fingerprint()
            logger.info("Local management identity cleared, stopping advertisement")
        finally:
            server.stop()

    # --- Listener ---

    async def listen(self) -> None:
        """Listen briefly for advertisements unless already paired."""
        if len(self._settings.host) > HOST_PLACEHOLDER_LENGTH:
            return

        queue: asyncio.Queue[Announcement] = asyncio.Queue()
        client = self._client_factory(queue.put_nowait)
        try:
            await client.start()
            logger.debug(f"Launching SSDP client on {SERVICE_TYPE}")
            client.listen_for(SERVICE_TYPE)
        except OSError as e:
            logger.warning(f"Failed to start SSDP client: {e}")
            client.stop()
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + LISTEN_WINDOW
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    announcement = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    break
                await self.consider(announcement)
        finally:
            client.stop()

    async def consider(self, announcement: Announcement) -> bool:
        """Run ``announcement`` through the selection policy; pair if accepted."""
        logger.debug(
            f"Found server {announcement.location}/{announcement.device_id}/{announcement.server}"
        )
        if not should_accept(announcement, self._settings.fingerprint, self._settings.host):
            logger.debug(f"Ignoring management candidate {announcement.location}")
            return False
        return await self._persister.save(announcement.location)
