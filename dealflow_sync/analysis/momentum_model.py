"""
Momentum models.

A momentum model maps a deal's history to a score between -100 and 100 and
a trend. Two implementations are provided: a deterministic local heuristic
and an OpenAI-backed scorer using a line-oriented response format.
"""

import re
from statistics import mean
from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from dealflow_sync.models.insight import DealHistory, MomentumResult, MomentumTrend
from dealflow_sync.utils.config import get_settings
from dealflow_sync.utils.exceptions import MomentumComputeFailedError
from dealflow_sync.utils.logger import get_logger

logger = get_logger("momentum")

# Trend thresholds
STALLED_AFTER_DAYS = 30
TREND_DELTA = 10.0

MOMENTUM_SYSTEM_PROMPT = """You are a sales momentum analyzer. Analyze the provided deal data and return ONLY a structured response in this exact format:

MOMENTUM_SCORE: [number between -100 and 100]
TREND: [accelerating/decelerating/stalled/steady]
OPPORTUNITIES: [list each on new line with - prefix]
BLOCKERS: [list each on new line with - prefix]
REASONING: [brief explanation]"""

SCORE_PATTERN = re.compile(r"MOMENTUM_SCORE:\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
TREND_PATTERN = re.compile(
    r"TREND:\s*(accelerating|decelerating|stalled|steady)", re.IGNORECASE
)
OPPORTUNITIES_PATTERN = re.compile(
    r"OPPORTUNITIES:([\s\S]*?)(?:BLOCKERS:|REASONING:|$)", re.IGNORECASE
)
BLOCKERS_PATTERN = re.compile(r"BLOCKERS:([\s\S]*?)(?:REASONING:|$)", re.IGNORECASE)
REASONING_PATTERN = re.compile(r"REASONING:([\s\S]*)$", re.IGNORECASE)
LIST_PREFIX_PATTERN = re.compile(r"^[-•*]\s*")


class MomentumModel(Protocol):
    """Anything that can score a deal's momentum from its history."""

    async def compute(self, history: DealHistory) -> MomentumResult:
        """
        Raises:
            MomentumComputeFailedError: No score could be produced.
        """
        ...


def _recency_adjustment(days_since_last: Optional[float]) -> float:
    if days_since_last is None:
        return -15.0
    if days_since_last <= 7:
        return 15.0
    if days_since_last <= 14:
        return 5.0
    if days_since_last <= 30:
        return -10.0
    return -25.0


def classify_trend(
    score: float,
    previous_score: Optional[float],
    days_since_last: Optional[float],
) -> MomentumTrend:
    """
    Classify momentum direction.

    No activity for a month is stalled regardless of score; otherwise the
    trend follows the change from the previous score.
    """
    if days_since_last is not None and days_since_last > STALLED_AFTER_DAYS:
        return MomentumTrend.STALLED
    if previous_score is None:
        return MomentumTrend.STEADY
    if score - previous_score >= TREND_DELTA:
        return MomentumTrend.ACCELERATING
    if previous_score - score >= TREND_DELTA:
        return MomentumTrend.DECELERATING
    return MomentumTrend.STEADY


class HeuristicMomentumModel:
    """
    Deterministic, local momentum scoring.

    Combines recent meeting quality, the balance of green and red flags,
    whether next steps exist, and how recently the deal last met.
    """

    def __init__(self, quality_window: int = 3) -> None:
        self.quality_window = quality_window

    async def compute(self, history: DealHistory) -> MomentumResult:
        latest = history.latest_analysis
        # A quality score of zero means the engine did not rate the meeting.
        scored = [
            a.meeting_quality_score
            for a in history.analyses[-self.quality_window:]
            if a.meeting_quality_score > 0
        ]
        quality = (mean(scored) - 50.0) * 0.8 if scored else 0.0

        green = [f for a in history.analyses for f in a.green_flags]
        red = [f for a in history.analyses for f in a.red_flags]
        flags = max(-25.0, min(25.0, (len(green) - len(red)) * 5.0))

        has_next_steps = bool(latest and latest.next_steps)
        next_steps = 10.0 if has_next_steps else -10.0

        days = history.days_since_last_meeting
        recency = _recency_adjustment(days)

        score = max(-100.0, min(100.0, quality + flags + next_steps + recency))
        previous = history.previous.score if history.previous else None
        trend = classify_trend(score, previous, days)

        reasoning = (
            f"{len(history.analyses)} analyzed meetings; "
            f"quality {quality:+.0f}, flags {flags:+.0f}, "
            f"next steps {next_steps:+.0f}, recency {recency:+.0f}"
        )
        logger.debug(f"Heuristic momentum for deal {history.deal.deal_id}: {score:.0f} ({trend.value})")

        return MomentumResult(
            score=round(score, 1),
            trend=trend,
            opportunities=list(dict.fromkeys(green)),
            blockers=list(dict.fromkeys(red)),
            reasoning=reasoning,
        )


def _bullets(block: str) -> list[str]:
    items = [LIST_PREFIX_PATTERN.sub("", line).strip() for line in block.splitlines()]
    return [item for item in items if len(item) > 3]


def parse_momentum_response(content: str) -> MomentumResult:
    """
    Parse a ``MOMENTUM_SCORE:``/``TREND:``/... response.

    Missing fields fall back to a zero score and a steady trend; the raw text
    is kept as the reasoning when no ``REASONING:`` block is present.

    Raises:
        MomentumComputeFailedError: The response has no score at all.
    """
    score_match = SCORE_PATTERN.search(content)
    if score_match is None:
        raise MomentumComputeFailedError(
            "Momentum response has no MOMENTUM_SCORE",
            details={"response_preview": content[:200]},
        )

    trend_match = TREND_PATTERN.search(content)
    trend = (
        MomentumTrend(trend_match.group(1).lower())
        if trend_match
        else MomentumTrend.STEADY
    )

    opportunities_match = OPPORTUNITIES_PATTERN.search(content)
    blockers_match = BLOCKERS_PATTERN.search(content)
    reasoning_match = REASONING_PATTERN.search(content)

    return MomentumResult(
        score=float(score_match.group(1)),
        trend=trend,
        opportunities=_bullets(opportunities_match.group(1)) if opportunities_match else [],
        blockers=_bullets(blockers_match.group(1)) if blockers_match else [],
        reasoning=reasoning_match.group(1).strip() if reasoning_match else content.strip(),
    )


def format_deal_history(history: DealHistory) -> str:
    """Render a deal's history as the momentum prompt's input block."""
    deal = history.deal

    def flat(field: str) -> list[str]:
        return [b for a in history.analyses for b in getattr(a, field)]

    def bullets(items) -> str:
        return "\n".join(f"- {i}" for i in items)

    days_since = history.days_since_last_meeting
    days_to_close = (
        int((deal.close_date - history.as_of).total_seconds() // 86400)
        if deal.close_date
        else None
    )
    previous = history.previous

    return f"""
DEAL MOMENTUM ANALYSIS REQUEST

Company: {deal.company_name}
Stage: {deal.stage}
Value: {deal.value_amount if deal.value_amount is not None else 'Unknown'}
Days in Pipeline: {int(history.days_in_pipeline)}
{f'Days to Close: {days_to_close}' if days_to_close is not None else 'No close date set'}
Total Meetings: {len(history.meeting_times)}
{f'Days Since Last Meeting: {int(days_since)}' if days_since is not None else 'No meetings yet'}

PAIN POINTS:
{bullets(flat('pain_points'))}

NEXT STEPS:
{bullets(history.latest_analysis.next_steps if history.latest_analysis else [])}

GREEN FLAGS:
{bullets(flat('green_flags'))}

RED FLAGS:
{bullets(flat('red_flags'))}

MEETING SUMMARIES:
{bullets(a.summary for a in history.analyses if a.summary)}

Current Momentum Score: {previous.score if previous else 'None'}
Current Trend: {previous.trend.value if previous else 'None'}
"""


class OpenAIMomentumModel:
    """
    Momentum model backed by OpenAI chat completions.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 2048,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.ai.momentum_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or AsyncOpenAI(
            api_key=api_key or settings.ai.openai_api_key or None
        )

    async def compute(self, history: DealHistory) -> MomentumResult:
        deal_id = history.deal.deal_id
        logger.info(f"Scoring deal momentum for: {history.deal.company_name or deal_id}")

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": MOMENTUM_SYSTEM_PROMPT},
                    {"role": "user", "content": format_deal_history(history)},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise MomentumComputeFailedError(
                f"Momentum request failed: {e}", deal_id=deal_id, cause=e
            )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise MomentumComputeFailedError(
                "Momentum model returned an empty response", deal_id=deal_id
            )

        result = parse_momentum_response(content)
        logger.info(f"Momentum for deal {deal_id}: {result.score:.0f} ({result.trend.value})")
        return result
