"""
Tests for the transcript analysis engine.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APITimeoutError

from conftest import START
from dealflow_sync.analysis.engine import OpenAIAnalysisEngine, parse_analysis_response
from dealflow_sync.models.transcript import Segment, SyncTarget, TranscriptRecord
from dealflow_sync.utils.exceptions import AnalysisFailedError

ANALYSIS_JSON = {
    "pain_points": ["Manual reporting takes two days", "  "],
    "next_steps": ["Send pricing proposal by Friday"],
    "green_flags": ["VP of Sales joined"],
    "red_flags": [],
    "organizational_context": ["Sales team of 40"],
    "competitor_mentions": ["Evaluated Gong last year"],
    "sentiment_and_engagement": ["Engaged and curious"],
    "summary": "Prospect wants a proposal.",
    "meeting_quality_score": 82,
    "suggested_stage": "Proposal",
}

MARKDOWN_RESPONSE = """### 1. Pain Points
* Manual reporting takes two days
* Data lives in spreadsheets

### 2. Next-Step Actions (for the sales rep)
* Send pricing proposal by Friday

### 4. Red Flags
* Budget not yet approved
"""


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


class TestParseAnalysisResponse:
    """Tests for response parsing."""

    def test_json(self) -> None:
        """Test the JSON format fills every field."""
        insights = parse_analysis_response(json.dumps(ANALYSIS_JSON))

        assert insights.pain_points == ["Manual reporting takes two days"]
        assert insights.competitor_mentions == ["Evaluated Gong last year"]
        assert insights.meeting_quality_score == 82
        assert insights.suggested_stage == "proposal"

    def test_json_in_code_fence(self) -> None:
        """Test fenced JSON is unwrapped."""
        content = f"```json\n{json.dumps(ANALYSIS_JSON)}\n```"

        insights = parse_analysis_response(content)

        assert insights.summary == "Prospect wants a proposal."

    def test_score_is_clamped_and_coerced(self) -> None:
        """Test out-of-range and non-numeric scores."""
        high = parse_analysis_response(json.dumps({"summary": "x", "meeting_quality_score": 250}))
        junk = parse_analysis_response(json.dumps({"summary": "x", "meeting_quality_score": "n/a"}))

        assert high.meeting_quality_score == 100
        assert junk.meeting_quality_score == 0

    def test_markdown_fallback(self) -> None:
        """Test numbered markdown sections are accepted."""
        insights = parse_analysis_response(MARKDOWN_RESPONSE)

        assert insights.pain_points == [
            "Manual reporting takes two days",
            "Data lives in spreadsheets",
        ]
        assert insights.next_steps == ["Send pricing proposal by Friday"]
        assert insights.red_flags == ["Budget not yet approved"]
        assert insights.green_flags == []

    def test_unparseable_is_empty(self) -> None:
        """Test free text yields empty insights."""
        assert parse_analysis_response("I cannot help with that.").is_empty


class TestOpenAIAnalysisEngine:
    """Test suite for OpenAIAnalysisEngine."""

    @pytest.fixture
    def transcript(self, sample_segments: list[Segment], target_m1: SyncTarget) -> TranscriptRecord:
        return TranscriptRecord(
            meeting_id=target_m1.meeting_id,
            deal_id=target_m1.deal_id,
            account_id=target_m1.account_id,
            segments=sample_segments,
            fetched_at=START,
        )

    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_analyze(self, client: MagicMock, transcript: TranscriptRecord) -> None:
        """Test a JSON completion becomes insights."""
        client.chat.completions.create.return_value = completion(json.dumps(ANALYSIS_JSON))
        engine = OpenAIAnalysisEngine(api_key="test", model="gpt-4o", client=client)

        insights = await engine.analyze(transcript)

        assert insights.next_steps == ["Send pricing proposal by Friday"]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "Prospect: Our team spends two days" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_api_error(self, client: MagicMock, transcript: TranscriptRecord) -> None:
        """Test client errors become analysis failures at the engine stage."""
        client.chat.completions.create.side_effect = APITimeoutError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        engine = OpenAIAnalysisEngine(api_key="test", client=client)

        with pytest.raises(AnalysisFailedError) as exc_info:
            await engine.analyze(transcript)

        assert exc_info.value.stage == "engine"
        assert exc_info.value.meeting_id == "M1"

    @pytest.mark.asyncio
    async def test_empty_completion(self, client: MagicMock, transcript: TranscriptRecord) -> None:
        """Test an empty completion is a failure."""
        client.chat.completions.create.return_value = completion(None)
        engine = OpenAIAnalysisEngine(api_key="test", client=client)

        with pytest.raises(AnalysisFailedError) as exc_info:
            await engine.analyze(transcript)

        assert exc_info.value.stage == "engine"

    @pytest.mark.asyncio
    async def test_no_insights(self, client: MagicMock, transcript: TranscriptRecord) -> None:
        """Test a response with nothing in it is a parse failure."""
        client.chat.completions.create.return_value = completion("Sorry, no transcript.")
        engine = OpenAIAnalysisEngine(api_key="test", client=client)

        with pytest.raises(AnalysisFailedError) as exc_info:
            await engine.analyze(transcript)

        assert exc_info.value.stage == "parse"
