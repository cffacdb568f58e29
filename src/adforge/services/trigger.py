"""Worker trigger - asks the worker endpoint to start processing a job."""

from uuid import UUID

import httpx
import structlog

from adforge.services.exceptions import InternalError

logger = structlog.get_logger(__name__)

RUN_JOB_PATH = "/internal/jobs/run"


class WorkerTrigger:
    """Authenticated POST to the worker with the service token, never the user's."""

    def __init__(self, base_url: str, service_token: str, client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.service_token = service_token
        self.client = client

    async def trigger(self, job_id: UUID) -> dict:
        """Trigger job execution.

        Returns:
            Worker acknowledgement body ({success, result_path})

        Raises:
            InternalError: If the worker is unreachable or rejects the trigger
        """
        try:
            response = await self.client.post(
                f"{self.base_url}{RUN_JOB_PATH}",
                json={"job_id": str(job_id)},
                headers={"Authorization": f"Bearer {self.service_token}"},
            )
        except httpx.HTTPError as e:
            logger.error("trigger.unreachable", job_id=str(job_id), error=str(e))
            raise InternalError("Failed to start job", job_id=str(job_id)) from e

        if response.status_code >= 400:
            logger.error(
                "trigger.rejected",
                job_id=str(job_id),
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise InternalError("Failed to start job", job_id=str(job_id))

        try:
            ack = response.json()
        except ValueError as e:
            logger.error("trigger.bad_ack", job_id=str(job_id), body=response.text[:500])
            raise InternalError("Failed to start job", job_id=str(job_id)) from e

        logger.info("trigger.accepted", job_id=str(job_id))
        return ack
