"""Model selector parsing and credit pricing.

Model identifiers arrive as strings ("openai-high-portrait", "gemini"). They are
parsed once into a typed selector; every later decision (cost, provider route,
provider parameters) reads the selector's fields.
"""

import math
from dataclasses import dataclass
from typing import Union

from adforge.services.exceptions import ValidationError

QUALITIES = ("low", "medium", "high")
ASPECTS = ("square", "landscape", "portrait")
FLAT_MODELS = ("gemini", "seedream", "seedance")
VIDEO_MODELS = ("seedance",)

TIERED_PROVIDER = "openai"
DEFAULT_QUALITY = "medium"
DEFAULT_ASPECT = "square"

# Credits per output for provider-tier models, independent of aspect
QUALITY_RATES = {"low": 0.5, "medium": 1, "high": 7}
FLAT_RATE = 1

MAX_OUTPUTS = 4


@dataclass(frozen=True)
class TieredModel:
    """Provider model billed by quality tier (e.g. openai-medium-square)."""

    quality: str
    aspect: str
    provider: str = TIERED_PROVIDER

    @property
    def identifier(self) -> str:
        return f"{self.provider}-{self.quality}-{self.aspect}"

    @property
    def result_type(self) -> str:
        return "image"


@dataclass(frozen=True)
class FlatModel:
    """Model billed at a flat rate per output (gemini, seedream, seedance)."""

    name: str
    aspect: str = DEFAULT_ASPECT

    @property
    def identifier(self) -> str:
        return self.name

    @property
    def result_type(self) -> str:
        return "video" if self.name in VIDEO_MODELS else "image"


ModelSelector = Union[TieredModel, FlatModel]


def parse_model(identifier: str | None, aspect_ratio: str | None = None) -> ModelSelector:
    """Parse a model identifier into a typed selector.

    Args:
        identifier: Model identifier. When omitted the selector defaults to
            openai-medium-<aspect_ratio>.
        aspect_ratio: Requested aspect (square, landscape, portrait). Ignored for
            tiered identifiers, which encode their own aspect.

    Returns:
        TieredModel or FlatModel

    Raises:
        ValidationError: If the identifier or aspect ratio is unknown
    """
    aspect = aspect_ratio or DEFAULT_ASPECT
    if aspect not in ASPECTS:
        raise ValidationError(f"Unknown aspect ratio: {aspect}. Expected one of {list(ASPECTS)}")

    if not identifier:
        return TieredModel(quality=DEFAULT_QUALITY, aspect=aspect)

    identifier = identifier.strip().lower()

    if identifier.startswith(f"{TIERED_PROVIDER}-"):
        parts = identifier.split("-")
        if len(parts) != 3 or parts[1] not in QUALITIES or parts[2] not in ASPECTS:
            raise ValidationError(
                f"Invalid model identifier: {identifier}. "
                f"Expected {TIERED_PROVIDER}-<{'|'.join(QUALITIES)}>-<{'|'.join(ASPECTS)}>"
            )
        return TieredModel(quality=parts[1], aspect=parts[2])

    if identifier in FLAT_MODELS:
        return FlatModel(name=identifier, aspect=aspect)

    raise ValidationError(f"Unknown model: {identifier}")


def credits_required(selector: ModelSelector, output_count: int = 1) -> int:
    """Compute the credit cost of a job.

    Tiered models cost rate(quality) per output (low 0.5, medium 1, high 7);
    all other models cost 1 per output. The total is rounded up so the ledger
    stays integral.

    Raises:
        ValidationError: If output_count is outside 1..MAX_OUTPUTS
    """
    if output_count < 1 or output_count > MAX_OUTPUTS:
        raise ValidationError(f"Output count must be between 1 and {MAX_OUTPUTS}")

    if isinstance(selector, TieredModel):
        return math.ceil(QUALITY_RATES[selector.quality] * output_count)
    return FLAT_RATE * output_count
