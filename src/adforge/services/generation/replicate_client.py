"""Replicate API client for image/video generation with error classification."""

import asyncio
from typing import Any

import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from adforge.services.exceptions import (
    ContentPolicyError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from adforge.services.generation.request_builder import GenerationRequest
from adforge.services.pricing import FlatModel, TieredModel

logger = structlog.get_logger(__name__)

# Provider aspect strings. Tiered models only support 3:2/2:3 for non-square.
TIERED_ASPECTS = {"square": "1:1", "landscape": "3:2", "portrait": "2:3"}
FLAT_ASPECTS = {"square": "1:1", "landscape": "16:9", "portrait": "9:16"}


def classify_error(exception: Exception) -> ProviderError:
    """Classify exception into a provider error category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ProviderError subclass instance

    Classification rules:
        - Timeout errors → TransientProviderError
        - 429 (rate limit) → TransientProviderError
        - 503 (service unavailable) → TransientProviderError
        - 401/403 (authentication) → PermanentProviderError
        - Content policy violations → ContentPolicyError
        - Connection errors → TransientProviderError
        - Anything else → PermanentProviderError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return TransientProviderError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return TransientProviderError(f"Rate limit exceeded: {error_message}")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return TransientProviderError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return PermanentProviderError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return TransientProviderError(f"Connection error: {error_message}")

    return PermanentProviderError(f"Provider error: {error_message}")


def extract_urls(output: Any) -> list[str]:
    """Normalize provider output (single URL, list of URLs, file objects) to URL strings."""
    if output is None:
        return []
    if isinstance(output, (list, tuple)):
        items = list(output)
    else:
        items = [output]

    urls = []
    for item in items:
        url = getattr(item, "url", item)
        if url:
            urls.append(str(url))
    return urls


class ReplicateGenerator:
    """Routes GenerationRequests to Replicate models.

    One model per selector family:
    - openai-<quality>-<aspect> → OpenAI image model
    - gemini → Gemini image model
    - seedream → Seedream image model
    - seedance → Seedance video model
    """

    def __init__(
        self,
        api_token: str,
        openai_model: str,
        gemini_model: str,
        seedream_model: str,
        seedance_model: str,
        client: replicate.Client | None = None,
    ):
        self.api_token = api_token
        self.routes = {
            "openai": openai_model,
            "gemini": gemini_model,
            "seedream": seedream_model,
            "seedance": seedance_model,
        }
        self._client = client

    @property
    def client(self) -> replicate.Client:
        if self._client is None:
            if not self.api_token:
                raise PermanentProviderError("REPLICATE_API_TOKEN not configured")
            self._client = replicate.Client(api_token=self.api_token)
        return self._client

    def resolve_model(self, request: GenerationRequest) -> str:
        selector = request.selector
        if isinstance(selector, TieredModel):
            return self.routes[selector.provider]
        return self.routes[selector.name]

    def build_input(self, request: GenerationRequest) -> dict[str, Any]:
        """Map a request onto the selected model's input schema."""
        selector = request.selector
        urls = list(request.image_urls)

        if isinstance(selector, TieredModel):
            payload: dict[str, Any] = {
                "prompt": request.prompt,
                "quality": selector.quality,
                "aspect_ratio": TIERED_ASPECTS[selector.aspect],
                "number_of_images": request.output_count,
                "output_format": request.output_format,
            }
            if urls:
                payload["input_images"] = urls
            return payload

        if not isinstance(selector, FlatModel):
            raise PermanentProviderError(f"Unsupported model selector: {selector!r}")

        aspect = FLAT_ASPECTS[selector.aspect]

        if selector.name == "seedance":
            payload = {"prompt": request.prompt, "aspect_ratio": aspect}
            if request.scene_url:
                payload["image"] = request.scene_url
            return payload

        if selector.name == "seedream":
            payload = {
                "prompt": request.prompt,
                "aspect_ratio": aspect,
                "max_images": request.output_count,
                "sequential_image_generation": (
                    "auto" if request.output_count > 1 else "disabled"
                ),
            }
            if urls:
                payload["image_input"] = urls
            return payload

        payload = {
            "prompt": request.prompt,
            "aspect_ratio": aspect,
            "output_format": request.output_format,
        }
        if urls:
            payload["image_input"] = urls
        return payload

    async def generate(self, request: GenerationRequest) -> list[str]:
        """Invoke the provider and return URLs of the generated assets.

        Returns:
            Provider URLs in output order (at most request.output_count)

        Raises:
            ProviderError: Classified provider failure, or empty output
        """
        model = self.resolve_model(request)
        payload = self.build_input(request)
        client = self.client

        logger.info(
            "provider.request",
            model=model,
            selector=request.selector.identifier,
            image_count=len(request.image_urls),
            output_count=request.output_count,
        )

        try:
            # SDK is synchronous
            output = await asyncio.to_thread(
                client.run, model, input=payload, use_file_output=False
            )
        except ReplicateAPIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        except Exception as e:
            raise PermanentProviderError(f"Unexpected error: {e}") from e

        urls = extract_urls(output)
        if not urls:
            raise PermanentProviderError("No images generated")

        logger.info("provider.response", model=model, output_count=len(urls))
        return urls[: request.output_count]
