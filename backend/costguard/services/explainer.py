"""Best-effort natural-language explanations for recommendations (Anthropic Claude)."""

import structlog
from anthropic import AnthropicError, AsyncAnthropic

from costguard.core.config import Settings
from costguard.models.recommendation import Recommendation

logger = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a cloud cost optimization assistant. Explain a recommendation to an "
    "operator in plain language: what was detected, what the action does, the risk "
    "involved, and what to check before approving. Keep it under 150 words."
)


def build_prompt(recommendation: Recommendation) -> str:
    return "\n".join(
        [
            f"Title: {recommendation.title}",
            f"Scenario: {recommendation.scenario_name}",
            f"Resource: {recommendation.resource_type} {recommendation.resource_name} "
            f"({recommendation.region}, env={recommendation.env})",
            f"Action: {recommendation.action}",
            f"Impact: {recommendation.impact_level}, risk: {recommendation.risk_level}, "
            f"confidence: {recommendation.confidence}%",
            f"Current monthly cost: ${recommendation.current_monthly_cost:.2f}",
            f"Potential savings: ${recommendation.potential_savings:.2f}/month",
            f"Description: {recommendation.description}",
        ]
    )


class Explainer:
    """Wraps the Anthropic client; every failure degrades to None."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 600) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.client = AsyncAnthropic(api_key=api_key) if api_key else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Explainer":
        return cls(settings.ANTHROPIC_API_KEY, settings.EXPLAIN_MODEL, settings.EXPLAIN_MAX_TOKENS)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def explain(self, recommendation: Recommendation) -> str | None:
        """
        Generate an explanation for a recommendation.

        Returns:
            The explanation text, or None when disabled or when the call fails
        """
        if self.client is None:
            logger.info("explainer.disabled", recommendation_id=str(recommendation.id))
            return None

        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_prompt(recommendation)}],
            )
        except AnthropicError as e:
            logger.warning("explainer.failed", recommendation_id=str(recommendation.id), error=str(e))
            return None

        text = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        logger.info(
            "explainer.generated",
            recommendation_id=str(recommendation.id),
            tokens_input=message.usage.input_tokens,
            tokens_output=message.usage.output_tokens,
        )
        return text.strip() or None
