import pytest
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import Mock

import anthropic
import httpx

from edgeiq.core.exceptions import NarrativeGenerationError
from edgeiq.services.narrative_generator import (
    AnthropicNarrativeGenerator, NarrativeResult, PeriodStats, extract_json, render_prompt
)


@pytest.fixture
def sample_stats():
    return PeriodStats(
        period_start=datetime(2024, 3, 4),
        period_end=datetime(2024, 3, 10),
        total_trades=4,
        win_count=3,
        loss_count=1,
        win_rate=75.0,
        total_pnl=120.5,
        avg_r_multiple=1.25,
        best_trade=80.0,
        worst_trade=-30.0,
        mistake_counts={"Early Exit": 1},
        strategies=["Breakout"],
        sessions=["London"],
        emotions_before=["Confident", "FOMO"],
    )


def _message(text):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


class TestExtractJson:
    def test_fenced_json(self):
        assert extract_json('結果:\n```json\n{"summary": "ok"}\n```') == {"summary": "ok"}

    def test_plain_fence(self):
        assert extract_json('```\n{"summary": "ok"}\n```') == {"summary": "ok"}

    def test_bare_json(self):
        assert extract_json('  {"summary": "ok"} ') == {"summary": "ok"}

    def test_invalid(self):
        assert extract_json("not json") is None
        assert extract_json("[1, 2]") is None
        assert extract_json("") is None


class TestNarrativeResult:
    def test_ratings_are_clamped(self):
        result = NarrativeResult.from_payload({
            "summary": "良い週",
            "disciplineScore": 140,
            "consistencyScore": -5,
            "keyStrengths": "単一の強み",
        })
        assert result.discipline_score == 100.0
        assert result.consistency_score == 0.0
        assert result.strengths == ["単一の強み"]

    def test_non_numeric_rating(self):
        result = NarrativeResult.from_payload({"disciplineScore": "high"})
        assert result.discipline_score is None
        assert result.summary == ""


class TestAnthropicNarrativeGenerator:
    """Anthropicナラティブ生成テスト"""

    def test_prompt_contains_stats(self, sample_stats):
        prompt = render_prompt(sample_stats)
        assert "2024-03-04 to 2024-03-10" in prompt
        assert "Total Trades: 4 (3W / 1L)" in prompt
        assert "Win Rate: 75.0%" in prompt
        assert '{"Early Exit": 1}' in prompt
        assert "Confident, FOMO" in prompt

    def test_generate_parses_reply(self, sample_stats):
        client = Mock()
        client.messages.create.return_value = _message(
            '```json\n{"summary": "堅実な週", "recommendations": ["継続"], '
            '"disciplineScore": 82, "behavioralWarnings": ["FOMOエントリー"]}\n```'
        )
        generator = AnthropicNarrativeGenerator(api_key="test", model="test-model", client=client)

        result = generator.generate(sample_stats)

        assert result.summary == "堅実な週"
        assert result.recommendations == ["継続"]
        assert result.discipline_score == 82.0
        assert result.behavioral_warnings == ["FOMOエントリー"]
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][0]["role"] == "user"

    def test_unparseable_reply_raises(self, sample_stats):
        client = Mock()
        client.messages.create.return_value = _message("申し訳ありません")
        generator = AnthropicNarrativeGenerator(api_key="test", client=client)

        with pytest.raises(NarrativeGenerationError):
            generator.generate(sample_stats)

    def test_api_error_raises(self, sample_stats):
        client = Mock()
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create.side_effect = anthropic.APIConnectionError(request=request)
        generator = AnthropicNarrativeGenerator(api_key="test", client=client)

        with pytest.raises(NarrativeGenerationError):
            generator.generate(sample_stats)
