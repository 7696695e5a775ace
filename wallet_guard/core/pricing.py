"""
Model catalog and pricing.

Maps model identifiers to their owning provider, transport constraints and
per-token pricing.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from typing import Callable, Dict, List, Optional, Tuple

from .token_counter import TokenUsage
from wallet_guard.config.loader import provider_api_key


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model, in USD."""
    input_per_1m: Decimal  # Cost per 1M prompt tokens
    output_per_1m: Decimal  # Cost per 1M completion tokens
    cached_input_per_1m: Optional[Decimal] = None  # None: cache hits bill at input rate


@dataclass(frozen=True)
class ModelInfo:
    """Catalog entry for one upstream model."""
    id: str
    provider: str
    label: str
    family: str
    pricing: ModelPricing
    tags: Tuple[str, ...] = ()
    permitted_over_http: bool = True


@dataclass(frozen=True)
class ModelCatalog:
    """Fixed catalog of supported models."""
    models: Dict[str, ModelInfo] = field(default_factory=dict)

    def get(self, model_id: str) -> Optional[ModelInfo]:
        return self.models.get(model_id)

    def get_model(self, model_id: str) -> ModelInfo:
        """Get catalog entry for a specific model.

        Args:
            model_id: Model identifier

        Returns:
            ModelInfo for the model

        Raises:
            ValueError: If model is not supported
        """
        if model_id not in self.models:
            raise ValueError(f"Unsupported model: {model_id}")
        return self.models[model_id]

    def list_models(
        self, key_lookup: Callable[[str], Optional[str]] = provider_api_key
    ) -> List[Dict[str, object]]:
        """List models with a locked flag for providers lacking an API key."""
        return [
            {
                "id": info.id,
                "provider": info.provider,
                "label": info.label,
                "family": info.family,
                "tags": list(info.tags),
                "permitted_over_http": info.permitted_over_http,
                "locked": key_lookup(info.provider) is None,
                "pricing_usd": {
                    "input_per_1m": str(info.pricing.input_per_1m),
                    "output_per_1m": str(info.pricing.output_per_1m),
                    "cached_input_per_1m": (
                        str(info.pricing.cached_input_per_1m)
                        if info.pricing.cached_input_per_1m is not None else None
                    ),
                },
            }
            for info in self.models.values()
        ]


def _model(id, provider, label, family, input_per_1m, output_per_1m,
           cached=None, tags=(), permitted_over_http=True) -> Tuple[str, ModelInfo]:
    return id, ModelInfo(
        id=id,
        provider=provider,
        label=label,
        family=family,
        pricing=ModelPricing(
            input_per_1m=Decimal(input_per_1m),
            output_per_1m=Decimal(output_per_1m),
            cached_input_per_1m=Decimal(cached) if cached is not None else None,
        ),
        tags=tuple(tags),
        permitted_over_http=permitted_over_http,
    )


# Fixed catalog - update here if vendor model strings change
DEFAULT_CATALOG = ModelCatalog(dict([
    _model("gpt-5-2025-08-07", "openai", "GPT-5", "gpt-5", "1.25", "10.00", "0.125",
           tags=("Flagship", "Reasoning", "Multimodal")),
    _model("gpt-5-mini-2025-08-07", "openai", "GPT-5 Mini", "gpt-5", "0.25", "2.00", "0.025",
           tags=("Fast", "Budget", "Efficient")),
    _model("gpt-5-nano-2025-08-07", "openai", "GPT-5 Nano", "gpt-5", "0.05", "0.40", "0.005",
           tags=("Ultra Fast", "Ultra Budget", "Minimal")),
    _model("gpt-4o", "openai", "GPT-4o", "gpt-4", "2.50", "10.00", "1.25",
           tags=("Multimodal", "Vision", "Legacy")),
    _model("gpt-4o-mini", "openai", "GPT-4o Mini", "gpt-4", "0.15", "0.60", "0.075",
           tags=("Fast", "Budget", "Vision")),
    # Realtime models need a WebSocket/WebRTC channel
    _model("gpt-realtime", "openai", "GPT Realtime", "gpt-realtime", "4.00", "16.00",
           tags=("Realtime", "Voice"), permitted_over_http=False),
    _model("claude-3-5-sonnet-20241022", "anthropic", "Claude 3.5 Sonnet", "claude-3",
           "3.00", "15.00", "0.30", tags=("Reasoning", "Coding", "Analysis")),
    _model("claude-3-5-haiku-20241022", "anthropic", "Claude 3.5 Haiku", "claude-3",
           "0.80", "4.00", "0.08", tags=("Fast", "Budget", "Quick")),
    _model("models/gemini-2.5-flash", "google", "Gemini 2.5 Flash", "gemini-2",
           "0.35", "1.05", tags=("Google", "Multimodal", "Fast")),
]))


def calculate_cost(model: str, usage: TokenUsage, catalog: ModelCatalog = DEFAULT_CATALOG) -> Decimal:
    """Calculate USD cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data
        catalog: Catalog to price against

    Returns:
        Total cost rounded UP to 6 decimal places

    Raises:
        ValueError: If model is not supported
    """
    pricing = catalog.get_model(model).pricing

    cached_rate = pricing.cached_input_per_1m
    if cached_rate is None:
        cached_rate = pricing.input_per_1m
    cached_tokens = min(usage.cached_prompt_tokens, usage.prompt_tokens)
    uncached_tokens = usage.prompt_tokens - cached_tokens

    prompt_cost = (
        (Decimal(uncached_tokens) / Decimal("1000000")) * pricing.input_per_1m
        + (Decimal(cached_tokens) / Decimal("1000000")) * cached_rate
    )
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000000")) * pricing.output_per_1m

    total_cost = prompt_cost + completion_cost
    return total_cost.quantize(Decimal("0.000001"), rounding=ROUND_UP)
