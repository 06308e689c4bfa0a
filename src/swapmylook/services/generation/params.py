"""Generation parameters accepted by POST /generate and passed to the provider."""

from enum import Enum

from pydantic import BaseModel, Field


class Background(str, Enum):
    ORIGINAL = "original"
    TRANSPARENT = "transparent"
    WHITE = "white"
    BLACK = "black"


class GenerationParameters(BaseModel):
    """User-tunable knobs for a try-on generation."""

    strength: float = Field(default=0.9, ge=0.0, le=1.0)
    preserve_face: bool = True
    background: Background = Background.ORIGINAL
    style: str | None = Field(default=None, max_length=100)
    seed: int | None = Field(default=None, ge=0)


def build_prompt(base_prompt: str, user_prompt: str | None, params: GenerationParameters) -> str:
    """Compose the provider prompt from the configured base, the user's text and the parameters.

    Args:
        base_prompt: Configured default instruction
        user_prompt: Optional free text supplied with the request
        params: Validated generation parameters

    Returns:
        Prompt string sent to the provider
    """
    parts = [base_prompt.strip()]
    if user_prompt:
        parts.append(user_prompt.strip())
    if params.preserve_face:
        parts.append("Preserve the person's face and identity exactly.")
    if params.background != Background.ORIGINAL:
        parts.append(f"Use a {params.background.value} background.")
    if params.style:
        parts.append(f"Style: {params.style}.")
    return " ".join(parts)


def build_provider_input(
    prompt: str, subject_url: str, style_url: str, params: GenerationParameters
) -> dict:
    """Model input for a two-image editing model on Replicate."""
    provider_input: dict = {
        "prompt": prompt,
        "input_image_1": subject_url,
        "input_image_2": style_url,
        "output_format": "png",
        "prompt_strength": params.strength,
    }
    if params.seed is not None:
        provider_input["seed"] = params.seed
    return provider_input
