"""
Unit tests for the model catalog and pricing calculations.

Tests cost accuracy, rounding behavior, and error handling.
"""

import pytest
from decimal import Decimal

from wallet_guard.core.pricing import DEFAULT_CATALOG, calculate_cost
from wallet_guard.core.token_counter import TokenUsage, estimate_tokens


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_defaults_to_zero(self):
        """Usage omitted by an upstream counts as zero."""
        assert TokenUsage().total_tokens == 0


class TestEstimateTokens:
    """Test pre-call token estimates."""

    def test_four_characters_per_token(self):
        """About four characters make one token."""
        usage = estimate_tokens("a" * 40)
        assert usage.prompt_tokens == 10
        assert usage.completion_tokens == 15

    def test_rounds_up(self):
        """Partial tokens round up."""
        usage = estimate_tokens("abcde")
        assert usage.prompt_tokens == 2
        assert usage.completion_tokens == 3

    def test_empty_message(self):
        """An empty message estimates zero tokens."""
        assert estimate_tokens("").total_tokens == 0


class TestModelCatalog:
    """Test catalog lookups."""

    def test_get_supported_model(self):
        """Verify pricing retrieval for supported models."""
        info = DEFAULT_CATALOG.get_model("gpt-4o")
        assert info.provider == "openai"
        assert info.pricing.input_per_1m == Decimal("2.50")
        assert info.pricing.output_per_1m == Decimal("10.00")

    def test_unsupported_model_raises_error(self):
        """Verify error for unknown models."""
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            DEFAULT_CATALOG.get_model("unknown-model")

    def test_get_returns_none_for_unknown(self):
        """get returns None for unknown models."""
        assert DEFAULT_CATALOG.get("unknown-model") is None

    def test_every_provider_represented(self):
        """The catalog covers every provider."""
        providers = {info.provider for info in DEFAULT_CATALOG.models.values()}
        assert providers == {"openai", "anthropic", "google"}

    def test_only_realtime_models_blocked_over_http(self):
        """Only realtime models are blocked over HTTP."""
        blocked = [m for m, info in DEFAULT_CATALOG.models.items() if not info.permitted_over_http]
        assert blocked == ["gpt-realtime"]

    def test_list_models_locked_flag(self):
        """Models without a provider key are listed as locked."""
        keys = {"openai": "sk-test"}
        listed = {m["id"]: m for m in DEFAULT_CATALOG.list_models(key_lookup=keys.get)}

        assert listed["gpt-5-2025-08-07"]["locked"] is False
        assert listed["claude-3-5-sonnet-20241022"]["locked"] is True
        assert listed["models/gemini-2.5-flash"]["locked"] is True
        assert listed["gpt-4o"]["pricing_usd"] == {
            "input_per_1m": "2.50", "output_per_1m": "10.00", "cached_input_per_1m": "1.25",
        }
        assert listed["models/gemini-2.5-flash"]["pricing_usd"]["cached_input_per_1m"] is None


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost(self):
        """Verify exact cost calculation for GPT-4o."""
        usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=500_000)
        # Prompt: 1M * $2.50/1M = $2.50
        # Completion: 0.5M * $10.00/1M = $5.00
        assert calculate_cost("gpt-4o", usage) == Decimal("7.500000")

    def test_rounds_up_to_six_places(self):
        """Fractions of a micro-dollar are rounded up."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        # 1 * $0.05/1M = $0.00000005
        assert calculate_cost("gpt-5-nano-2025-08-07", usage) == Decimal("0.000001")

    def test_cached_prompt_tokens_billed_at_cached_rate(self):
        """Cache hits use the discounted input rate."""
        usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=0, cached_prompt_tokens=400_000)
        # 0.6M * $2.50/1M + 0.4M * $1.25/1M = $1.50 + $0.50
        assert calculate_cost("gpt-4o", usage) == Decimal("2.000000")

    def test_cached_tokens_without_cached_price(self):
        """Models without a cached price bill cache hits at the input rate."""
        usage = TokenUsage(prompt_tokens=1_000_000, cached_prompt_tokens=1_000_000)
        assert calculate_cost("models/gemini-2.5-flash", usage) == Decimal("0.350000")

    def test_cached_count_capped_at_prompt(self):
        """A cached count above the prompt count never yields a negative charge."""
        usage = TokenUsage(prompt_tokens=100, cached_prompt_tokens=500)
        assert calculate_cost("gpt-4o", usage) == calculate_cost(
            "gpt-4o", TokenUsage(prompt_tokens=100, cached_prompt_tokens=100)
        )

    def test_zero_usage(self):
        """No tokens cost nothing."""
        assert calculate_cost("gpt-4o-mini", TokenUsage()) == Decimal("0")

    def test_unsupported_model(self):
        """Pricing an unknown model raises."""
        with pytest.raises(ValueError):
            calculate_cost("unknown-model", TokenUsage(prompt_tokens=10))
