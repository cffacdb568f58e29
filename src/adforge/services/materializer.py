"""Result materializer - copies provider outputs into owned object storage."""

import secrets
from urllib.parse import urlparse

import httpx
import structlog

from adforge.core.timezone import utcnow
from adforge.models.job import Job
from adforge.services.exceptions import StorageError
from adforge.services.storage.s3_client import S3Storage

logger = structlog.get_logger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
}
EXTENSION_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "webm": "video/webm",
}


def default_extension(job: Job) -> str:
    return "mp4" if job.result_type == "video" else "png"


def single_result_key(job: Job, ext: str) -> str:
    """Job-scoped key. Retrying the same job overwrites its own result only."""
    return f"{job.user_id}/{job.id}-result.{ext}"


def multi_result_key(job: Job, ext: str) -> str:
    """Timestamp + random suffix key for one asset of a multi-output job."""
    folder = str(job.folder_id) if job.folder_id else "root"
    ts = int(utcnow().timestamp() * 1000)
    return f"{job.user_id}/{folder}/{ts}-{secrets.token_hex(4)}.{ext}"


def planned_result_path(job: Job) -> str | None:
    """Key the worker will write for a single-output job, None for multi-output jobs."""
    if job.output_count != 1:
        return None
    return single_result_key(job, default_extension(job))


def detect_format(url: str, content_type: str | None, fallback_ext: str) -> tuple[str, str]:
    """Pick (extension, content type) from the response header, then the URL suffix."""
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in CONTENT_TYPE_EXTENSIONS:
            return CONTENT_TYPE_EXTENSIONS[mime], mime

    path = urlparse(url).path
    if "." in path.rsplit("/", 1)[-1]:
        suffix = path.rsplit(".", 1)[-1].lower()
        if suffix in EXTENSION_CONTENT_TYPES:
            return ("jpg" if suffix == "jpeg" else suffix), EXTENSION_CONTENT_TYPES[suffix]

    return fallback_ext, EXTENSION_CONTENT_TYPES[fallback_ext]


class ResultMaterializer:
    """Downloads generated assets and uploads them under owned storage keys."""

    def __init__(
        self,
        storage: S3Storage,
        results_bucket: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize materializer.

        Args:
            storage: Object storage client
            results_bucket: Bucket receiving generated results
            timeout: Download timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.storage = storage
        self.results_bucket = results_bucket
        self.timeout = timeout
        self.transport = transport

    async def download(self, client: httpx.AsyncClient, url: str) -> tuple[bytes, str | None]:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"Result download failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"Result download failed: {e}") from e
        return response.content, response.headers.get("content-type")

    async def materialize(self, job: Job, urls: list[str]) -> list[str]:
        """Copy every provider URL into the results bucket.

        Args:
            job: Job the assets belong to
            urls: Provider URLs in output order

        Returns:
            Stored keys in the same order

        Raises:
            StorageError: If any download or upload fails
        """
        if not urls:
            raise StorageError("No result URLs to materialize")

        fallback = default_extension(job)
        single = len(urls) == 1 and job.output_count == 1
        keys: list[str] = []

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            for url in urls:
                data, content_type = await self.download(client, url)
                ext, mime = detect_format(url, content_type, fallback)
                # Single-output keys always match planned_result_path
                key = single_result_key(job, fallback) if single else multi_result_key(job, ext)

                await self.storage.upload(self.results_bucket, key, data, mime)
                keys.append(key)
                logger.info(
                    "materializer.uploaded",
                    job_id=str(job.id),
                    key=key,
                    content_type=mime,
                    size_bytes=len(data),
                )

        return keys
