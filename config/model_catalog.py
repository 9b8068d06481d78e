"""
Static catalog of the AI models a chat can be bound to.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

PROVIDERS = ("openai", "claude", "llama", "gemini")

PROVIDER_LABELS = {
    "openai": "OpenAI",
    "claude": "Anthropic Claude",
    "llama": "Meta Llama",
    "gemini": "Google Gemini",
}


@dataclass(frozen=True)
class AIModel:
    """Model capabilities and the parameters sent to its provider"""
    id: str
    name: str
    provider: str  # "openai", "claude", "llama", "gemini"
    api_param: str
    max_tokens: int
    description: str = ""
    supports_images: bool = False
    supports_files: bool = False
    is_image_generator: bool = False


MODEL_CATALOG: List[AIModel] = [
    AIModel(
        id="gpt-4o",
        name="GPT-4o",
        provider="openai",
        api_param="gpt-4o",
        max_tokens=4096,
        description="OpenAI flagship multimodal model",
        supports_images=True,
        supports_files=True,
    ),
    AIModel(
        id="gpt-4o-mini",
        name="GPT-4o mini",
        provider="openai",
        api_param="gpt-4o-mini",
        max_tokens=4096,
        description="Fast and affordable OpenAI model",
        supports_images=True,
        supports_files=True,
    ),
    AIModel(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider="openai",
        api_param="gpt-3.5-turbo",
        max_tokens=4096,
        description="Text-only OpenAI model",
    ),
    AIModel(
        id="dall-e-3",
        name="DALL-E 3",
        provider="openai",
        api_param="dall-e-3",
        max_tokens=4000,
        description="Image generation from a text prompt",
        is_image_generator=True,
    ),
    AIModel(
        id="claude-3-5-sonnet",
        name="Claude 3.5 Sonnet",
        provider="claude",
        api_param="claude-3-5-sonnet-20240620",
        max_tokens=4096,
        description="Anthropic model with vision support",
        supports_images=True,
        supports_files=True,
    ),
    AIModel(
        id="claude-3-haiku",
        name="Claude 3 Haiku",
        provider="claude",
        api_param="claude-3-haiku-20240307",
        max_tokens=4096,
        description="Fast Anthropic model",
        supports_images=True,
    ),
    AIModel(
        id="llama-3-70b",
        name="Llama 3 70B",
        provider="llama",
        api_param="llama3-70b",
        max_tokens=2048,
        description="Meta open-weights model, text only",
    ),
    AIModel(
        id="gemini-1.5-pro",
        name="Gemini 1.5 Pro",
        provider="gemini",
        api_param="gemini-1.5-pro",
        max_tokens=8192,
        description="Google multimodal model",
        supports_images=True,
        supports_files=True,
    ),
    AIModel(
        id="gemini-1.5-flash",
        name="Gemini 1.5 Flash",
        provider="gemini",
        api_param="gemini-1.5-flash",
        max_tokens=8192,
        description="Fast Google multimodal model",
        supports_images=True,
    ),
]

DEFAULT_MODEL_ID = "gpt-4o"

_MODELS_BY_ID: Dict[str, AIModel] = {model.id: model for model in MODEL_CATALOG}


def get_model_by_id(model_id: str) -> Optional[AIModel]:
    """Look up a catalog model, None when unknown"""
    return _MODELS_BY_ID.get(model_id)


def get_models_by_provider() -> Dict[str, List[AIModel]]:
    """Group catalog models by provider tag, in catalog order"""
    groups: Dict[str, List[AIModel]] = {provider: [] for provider in PROVIDERS}
    for model in MODEL_CATALOG:
        groups.setdefault(model.provider, []).append(model)
    return groups
