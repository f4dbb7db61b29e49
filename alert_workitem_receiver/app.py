"""FastAPI application for receiving Alertmanager webhooks."""

import asyncio
import os
import sys
from contextlib import asynccontextmanager, nullcontext
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from loguru import logger

from alert_workitem_receiver.backend import AzureDevOpsClient, WorkItemBackend
from alert_workitem_receiver.config import Config
from alert_workitem_receiver.exceptions import NotifyError
from alert_workitem_receiver.models import AlertGroup
from alert_workitem_receiver.receiver import Receiver

SERVICE_NAME = "alert-workitem-receiver"
DEFAULT_CONFIG_PATH = "config.yaml"


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout in the service's format."""
    logger.remove()  # Remove default handler
    logger.add(
        sys.stdout,
        format="{time:YYYY-MM-DDTHH:mm:ss.SSS}Z [{extra[service]}] {level}: {message}",
        level=level.upper(),
    )
    logger.configure(extra={"service": SERVICE_NAME})


class FingerprintLocks:
    """One asyncio lock per fingerprint, dropped once nobody holds or awaits it.

    Serializes notifications for the same alert group within this process so
    the lookup and the create of one delivery cannot interleave with another.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, fingerprint: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(fingerprint, asyncio.Lock())
        self._users[fingerprint] = self._users.get(fingerprint, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[fingerprint] -= 1
            if self._users[fingerprint] == 0:
                del self._users[fingerprint]
                del self._locks[fingerprint]


def build_client(config: Config) -> AzureDevOpsClient:
    """Create the REST client, authenticating with the token from the environment."""
    token = os.getenv(config.azure_devops.token_env, "")
    if not token:
        logger.warning(f"{config.azure_devops.token_env} is not set, requests will be unauthenticated")
    return AzureDevOpsClient(
        config.azure_devops.organization_url,
        auth=httpx.BasicAuth("", token) if token else None,
        timeout=config.azure_devops.timeout,
    )


def create_app(config: Optional[Config] = None, client: Optional[WorkItemBackend] = None) -> FastAPI:
    """Build the webhook application.

    Args:
        config: Receiver configuration; loaded from ALERT_RECEIVER_CONFIG at startup when None
        client: Work item backend; an AzureDevOpsClient is created at startup when None
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Configure application lifespan events."""
        configure_logging(os.getenv("LOG_LEVEL", "INFO"))
        logger.info("Application startup")

        app_config = config
        if app_config is None:
            app_config = Config.from_yaml(os.getenv("ALERT_RECEIVER_CONFIG", DEFAULT_CONFIG_PATH))

        backend = client if client is not None else build_client(app_config)

        app.state.receivers = {r.name: Receiver(r, backend) for r in app_config.receivers}
        app.state.locks = FingerprintLocks() if app_config.serialize_by_fingerprint else None
        logger.info(f"Serving receivers: {', '.join(app_config.list_receivers())}")

        yield

        # Shutdown
        if client is None:
            await backend.aclose()
        logger.info("Application shutdown")

    app = FastAPI(title="Alert Work Item Receiver", version="0.1.0", lifespan=lifespan)

    @app.get("/")
    async def root() -> Dict[str, str]:
        """Root endpoint."""
        return {"message": "Alert Work Item Receiver is running"}

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post("/alert")
    async def alert_webhook(payload: AlertGroup, request: Request) -> Dict[str, Any]:
        """Reflect an Alertmanager notification into a work item.

        Args:
            payload: The Alertmanager webhook payload
            request: FastAPI request object to access app state

        Returns:
            The receiver, fingerprint and work item touched by the notification
        """
        logger.info(f"Received Alertmanager webhook: {payload.group_key}")
        logger.debug(f"Status: {payload.status.value}, receiver: {payload.receiver}, alerts: {len(payload.alerts)}")

        receiver: Optional[Receiver] = request.app.state.receivers.get(payload.receiver)
        if receiver is None:
            logger.warning(f"No receiver configured with name {payload.receiver!r}")
            raise HTTPException(status_code=404, detail=f"Receiver {payload.receiver!r} is not configured")

        locks: Optional[FingerprintLocks] = request.app.state.locks
        guard = locks.hold(payload.fingerprint) if locks is not None else nullcontext()

        try:
            async with guard:
                item = await receiver.notify(payload)
        except NotifyError as e:
            logger.error(f"Error processing webhook: {e}")
            raise HTTPException(status_code=500, detail={"stage": e.stage, "error": str(e)})

        return {
            "status": "success",
            "receiver": receiver.config.name,
            "fingerprint": payload.fingerprint,
            "work_item_id": item.id,
        }

    return app


app = create_app()
