"""Provider metadata and per-model token pricing used for cost estimates.

Token prices are USD per 1M tokens. Unit prices are USD per ``unit_scale``
units (queries, characters, messages, minutes).
"""

from __future__ import annotations

from typing import NamedTuple, Optional


class ProviderInfo(NamedTuple):
    id: str
    name: str
    color: str
    unit_type: str
    tracking_method: str
    description: str


class ModelPrice(NamedTuple):
    model: str
    provider: str
    input_per_1m: float
    output_per_1m: float
    cache_read_per_1m: Optional[float] = None
    cache_write_per_1m: Optional[float] = None


class UnitPrice(NamedTuple):
    provider: str
    service: str
    cost_per_unit: float
    unit_label: str
    unit_scale: int
    notes: Optional[str] = None


PROVIDERS: list[ProviderInfo] = [
    ProviderInfo("claude", "Anthropic", "#ef4444", "token", "codexbar", "Claude models"),
    ProviderInfo("codex", "OpenAI", "#22c55e", "token", "codexbar", "GPT and Codex models"),
    ProviderInfo("google", "Google", "#3b82f6", "token", "session-tokens", "Gemini API models"),
    ProviderInfo("xai", "xAI", "#eab308", "token", "session-tokens", "Grok models"),
    ProviderInfo("perplexity", "Perplexity", "#06b6d4", "mixed", "api-logs", "Sonar search API"),
    ProviderInfo("brave", "Brave", "#f97316", "query", "api-logs", "Brave Search API"),
    ProviderInfo("elevenlabs", "ElevenLabs", "#8b5cf6", "character", "api-logs", "Text-to-speech"),
    ProviderInfo("twilio", "Twilio", "#ec4899", "mixed", "api-logs", "Voice calls and SMS"),
]

# Longer names first within a family so prefix matching picks the most specific entry.
MODEL_PRICES: list[ModelPrice] = [
    ModelPrice("claude-opus-4-6", "claude", 5.00, 25.00, 0.50, 6.25),
    ModelPrice("claude-opus-4-5", "claude", 5.00, 25.00, 0.50, 6.25),
    ModelPrice("claude-sonnet-4-5", "claude", 3.00, 15.00, 0.30, 3.75),
    ModelPrice("claude-sonnet-4", "claude", 3.00, 15.00, 0.30, 3.75),
    ModelPrice("claude-haiku-4-5", "claude", 1.00, 5.00, 0.10, 1.25),
    ModelPrice("claude-haiku-3-5", "claude", 0.80, 4.00, 0.08, 1.00),
    ModelPrice("gpt-5.3-codex", "codex", 1.25, 10.00),
    ModelPrice("gpt-5.2", "codex", 1.25, 10.00),
    ModelPrice("gpt-5-mini", "codex", 0.25, 1.25),
    ModelPrice("gpt-5", "codex", 1.25, 10.00),
    ModelPrice("o4-mini", "codex", 1.10, 4.40),
    ModelPrice("o3", "codex", 2.00, 8.00),
    ModelPrice("gemini-3-pro", "google", 2.00, 12.00),
    ModelPrice("gemini-3-flash", "google", 0.50, 3.00),
    ModelPrice("gemini-2.5-pro", "google", 1.25, 10.00),
    ModelPrice("gemini-2.5-flash", "google", 0.15, 0.60),
    ModelPrice("gemini-flash-lite", "google", 0.10, 0.40),
    ModelPrice("grok-4.1-fast", "xai", 0.20, 0.50),
    ModelPrice("grok-4", "xai", 3.00, 15.00),
    ModelPrice("grok-3", "xai", 3.00, 15.00),
    ModelPrice("sonar-pro", "perplexity", 3.00, 15.00),
    ModelPrice("sonar", "perplexity", 1.00, 1.00),
]

UNIT_PRICES: list[UnitPrice] = [
    UnitPrice("brave", "Web Search", 5.00, "queries", 1000, "$5 free credit/mo with attribution"),
    UnitPrice("perplexity", "Sonar Search", 5.00, "searches", 1000),
    UnitPrice("elevenlabs", "TTS Standard", 180.00, "characters", 1_000_000),
    UnitPrice("twilio", "SMS (US)", 0.0079, "SMS", 1),
    UnitPrice("twilio", "Voice (US)", 0.014, "minutes", 1, "Per minute, outbound US"),
]

DEFAULT_PROVIDER_COLOR = "#71717a"

_PROVIDER_HINTS: list[tuple[str, tuple[str, ...]]] = [
    ("claude", ("claude", "anthropic", "sonnet", "opus", "haiku")),
    ("codex", ("gpt", "openai", "codex", "o1-", "o3", "o4-")),
    ("google", ("gemini", "google")),
    ("xai", ("grok", "xai")),
    ("perplexity", ("sonar", "perplexity")),
]


def provider_info(provider_id: str) -> Optional[ProviderInfo]:
    for provider in PROVIDERS:
        if provider.id == provider_id:
            return provider
    return None


def provider_color(provider_id: str) -> str:
    provider = provider_info(provider_id)
    return provider.color if provider else DEFAULT_PROVIDER_COLOR


def identify_provider(model: str) -> str:
    """Best-effort provider id for a model name, ``"unknown"`` if none match."""
    lowered = model.lower()
    for provider_id, hints in _PROVIDER_HINTS:
        if any(hint in lowered for hint in hints):
            return provider_id
    return "unknown"


def find_model_pricing(model: str) -> Optional[ModelPrice]:
    """Exact match, then prefix (dated suffixes), then substring."""
    lowered = model.lower()
    if not lowered:
        return None
    for price in MODEL_PRICES:
        if lowered == price.model:
            return price
    for price in MODEL_PRICES:
        if lowered.startswith(price.model):
            return price
    for price in MODEL_PRICES:
        if price.model in lowered:
            return price
    return None


def calculate_token_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_write_tokens: int = 0,
) -> tuple[float, str]:
    """Return ``(cost_usd, provider_id)``; unknown models cost nothing."""
    price = find_model_pricing(model)
    if price is None:
        return 0.0, identify_provider(model)

    cost = input_tokens / 1_000_000 * price.input_per_1m
    cost += output_tokens / 1_000_000 * price.output_per_1m
    if cache_read_tokens and price.cache_read_per_1m:
        cost += cache_read_tokens / 1_000_000 * price.cache_read_per_1m
    if cache_write_tokens and price.cache_write_per_1m:
        cost += cache_write_tokens / 1_000_000 * price.cache_write_per_1m
    return cost, price.provider


def model_pricing_summary(model: str) -> str:
    price = find_model_pricing(model)
    if price is None:
        return "Pricing unknown"
    summary = f"${price.input_per_1m:g}/${price.output_per_1m:g} per 1M tokens (in/out)"
    if price.cache_read_per_1m:
        summary += f" • Cache read: ${price.cache_read_per_1m:g}/1M"
    return summary


def unit_prices_for(provider_id: str) -> list[UnitPrice]:
    return [price for price in UNIT_PRICES if price.provider == provider_id]
