"""Generation request builder.

Resolves a job's ordered source images into short-lived signed URLs and pairs
them with the composed prompt and output parameters.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog

from adforge.models.job import Job
from adforge.repositories.source_image import SourceImageRepository
from adforge.services.exceptions import StorageError, ValidationError
from adforge.services.generation.prompt_validator import validate_prompt
from adforge.services.pricing import ModelSelector, parse_model
from adforge.services.storage.s3_client import S3Storage

logger = structlog.get_logger(__name__)

TEXT_REQUIREMENTS = (
    "Absolute requirements for TEXT:\n"
    "- All existing labels/logos must be reproduced exactly.\n"
    "- Text must be crystal-clear, sharp, and perfectly legible.\n"
    "- No misspellings, distortions, or extra words."
)

STYLE_PRESETS = {
    "photorealistic": "Generate a photorealistic commercial image from the reference photos.",
    "studio": "Generate a clean studio product shot on a seamless background.",
    "lifestyle": "Generate a natural lifestyle scene featuring the product in everyday use.",
    "illustration": "Generate a polished flat illustration suitable for an advertisement.",
    "minimal": "Generate a minimal composition with generous negative space.",
}
DEFAULT_STYLE = "photorealistic"


def validate_style(style: str | None) -> str:
    """Return a known style preset name.

    Raises:
        ValidationError: If the style is not a known preset
    """
    style = style or DEFAULT_STYLE
    if style not in STYLE_PRESETS:
        raise ValidationError(f"Unknown style: {style}. Expected one of {sorted(STYLE_PRESETS)}")
    return style


def compose_prompt(user_prompt: str, style: str) -> str:
    """Prefix the user's prompt with the style preset and the text-fidelity rules."""
    prefix = f"{STYLE_PRESETS.get(style, STYLE_PRESETS[DEFAULT_STYLE])}\n\n{TEXT_REQUIREMENTS}"
    return f"{prefix}\n\n{user_prompt.strip()}"


@dataclass(frozen=True)
class GenerationRequest:
    """Transient provider payload. Exists only for the duration of a provider call.

    image_urls keeps the job's order: index 0 is the scene image.
    """

    image_urls: tuple[str, ...]
    prompt: str
    selector: ModelSelector
    output_count: int = 1
    output_format: str = "png"

    @property
    def scene_url(self) -> str | None:
        return self.image_urls[0] if self.image_urls else None

    @property
    def reference_urls(self) -> tuple[str, ...]:
        return self.image_urls[1:]


class GenerationRequestBuilder:
    """Builds GenerationRequests from persisted jobs."""

    def __init__(self, storage: S3Storage, uploads_bucket: str, signed_url_ttl: int = 300):
        """Initialize builder.

        Args:
            storage: Object storage client used to sign source image URLs
            uploads_bucket: Bucket holding user uploads
            signed_url_ttl: Signed URL lifetime in seconds (default: 5 minutes)
        """
        self.storage = storage
        self.uploads_bucket = uploads_bucket
        self.signed_url_ttl = signed_url_ttl

    async def build(self, images: SourceImageRepository, job: Job) -> GenerationRequest:
        """Resolve every image reference in order and assemble the request.

        Any resolution failure aborts the whole request; partial-image
        generation is never attempted.

        Args:
            images: Repository the source image rows are read through
            job: Job to build the request for

        Returns:
            GenerationRequest with image URLs in the job's order

        Raises:
            StorageError: If an image row is missing or a URL cannot be signed
            ValidationError: If the stored model identifier or prompt is invalid
        """
        urls: list[str] = []
        for position, raw_id in enumerate(job.image_ids):
            image = await images.get_by_id(UUID(str(raw_id)))
            if image is None:
                raise StorageError(f"Source image not found: {raw_id}")

            url = await self.storage.create_signed_url(
                self.uploads_bucket, image.file_path, expires_in=self.signed_url_ttl
            )
            urls.append(url)
            logger.debug(
                "request.image_resolved",
                job_id=str(job.id),
                position=position,
                role="scene" if position == 0 else "reference",
            )

        selector = parse_model(job.model, job.aspect_ratio)
        try:
            prompt = validate_prompt(job.prompt)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        return GenerationRequest(
            image_urls=tuple(urls),
            prompt=compose_prompt(prompt, job.style),
            selector=selector,
            output_count=job.output_count,
            output_format="mp4" if selector.result_type == "video" else "png",
        )
