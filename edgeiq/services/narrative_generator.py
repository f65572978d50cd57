import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import anthropic
from jinja2 import Template

from edgeiq.core.exceptions import NarrativeGenerationError

logger = logging.getLogger(__name__)


@dataclass
class PeriodStats:
    """ナラティブ生成に渡す期間統計"""
    period_start: datetime
    period_end: datetime
    total_trades: int
    win_count: int
    loss_count: int
    win_rate: float
    total_pnl: float
    avg_r_multiple: float
    best_trade: float
    worst_trade: float
    mistake_counts: Dict[str, int] = field(default_factory=dict)
    strategies: List[str] = field(default_factory=list)
    sessions: List[str] = field(default_factory=list)
    emotions_before: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "totalTrades": self.total_trades,
            "winCount": self.win_count,
            "lossCount": self.loss_count,
            "winRate": self.win_rate,
            "totalPnl": self.total_pnl,
            "avgRMultiple": self.avg_r_multiple,
            "bestTrade": self.best_trade,
            "worstTrade": self.worst_trade,
            "mistakeCounts": self.mistake_counts,
            "strategies": self.strategies,
            "sessions": self.sessions,
        }


@dataclass
class NarrativeResult:
    """外部生成されたナラティブ"""
    summary: str = ""
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    focus: str = ""
    discipline_score: Optional[float] = None
    consistency_score: Optional[float] = None
    psychology_rating: Optional[str] = None
    behavioral_warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "NarrativeResult":
        return cls(
            summary=str(payload.get("summary") or ""),
            strengths=_string_list(payload.get("keyStrengths")),
            weaknesses=_string_list(payload.get("keyWeaknesses")),
            recommendations=_string_list(payload.get("recommendations")),
            focus=str(payload.get("focusForNextWeek") or ""),
            discipline_score=_rating(payload.get("disciplineScore")),
            consistency_score=_rating(payload.get("consistencyScore")),
            psychology_rating=payload.get("psychologyRating"),
            behavioral_warnings=_string_list(payload.get("behavioralWarnings")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "keyStrengths": self.strengths,
            "keyWeaknesses": self.weaknesses,
            "recommendations": self.recommendations,
            "focusForNextPeriod": self.focus,
            "disciplineScore": self.discipline_score,
            "consistencyScore": self.consistency_score,
            "psychologyRating": self.psychology_rating,
            "behavioralWarnings": self.behavioral_warnings,
        }


def _string_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _rating(value) -> Optional[float]:
    """0-100にクランプ（数値でなければNone）"""
    if isinstance(value, bool) or value is None:
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    return min(100.0, max(0.0, rating))


def extract_json(raw_text: str) -> Optional[Dict[str, Any]]:
    """応答テキストからJSONを抽出（コードブロック対応）"""
    if not raw_text:
        return None

    text = raw_text.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class NarrativeGenerator(ABC):
    """ナラティブ生成の基底クラス"""

    @abstractmethod
    def generate(self, stats: PeriodStats) -> NarrativeResult:
        """期間統計からナラティブを生成"""
        pass


SYSTEM_PROMPT = (
    "You are an elite trading performance coach. "
    "Provide period performance analysis in JSON only. Be direct, specific, and actionable."
)

PROMPT_TEMPLATE = Template("""Generate a trading performance report for {{ stats.period_start.date() }} to {{ stats.period_end.date() }}. Return JSON:
{
  "summary": "<2-3 sentence executive summary of the period>",
  "keyStrengths": ["<strength 1>", "<strength 2>"],
  "keyWeaknesses": ["<weakness 1>", "<weakness 2>"],
  "recommendations": ["<action 1>", "<action 2>", "<action 3>"],
  "focusForNextWeek": "<one clear focus for next period>",
  "disciplineScore": <number 0-100>,
  "consistencyScore": <number 0-100>,
  "psychologyRating": <"excellent"|"good"|"needs_work"|"poor">,
  "behavioralWarnings": ["<warning if any>"]
}

Period Stats:
- Total Trades: {{ stats.total_trades }} ({{ stats.win_count }}W / {{ stats.loss_count }}L)
- Win Rate: {{ "%.1f"|format(stats.win_rate) }}%
- Total PnL: ${{ "%.2f"|format(stats.total_pnl) }}
- Avg R-Multiple: {{ "%.2f"|format(stats.avg_r_multiple) }}
- Best Trade: ${{ "%.2f"|format(stats.best_trade) }} | Worst Trade: ${{ "%.2f"|format(stats.worst_trade) }}
- Strategies Used: {{ stats.strategies|join(", ") }}
- Sessions Traded: {{ stats.sessions|join(", ") }}
- Mistakes Tagged: {{ mistakes_json }}
- Emotions Before Trading: {{ stats.emotions_before|join(", ") }}""")


def render_prompt(stats: PeriodStats) -> str:
    return PROMPT_TEMPLATE.render(stats=stats, mistakes_json=json.dumps(stats.mistake_counts))


class AnthropicNarrativeGenerator(NarrativeGenerator):
    """Anthropic Messages APIによるナラティブ生成"""

    def __init__(self,
                 api_key: str,
                 model: str = "claude-sonnet-4-20250514",
                 max_tokens: int = 800,
                 client: Optional[anthropic.Anthropic] = None):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def generate(self, stats: PeriodStats) -> NarrativeResult:
        logger.info(f"ナラティブ生成開始: {stats.total_trades}トレード")

        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.4,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": render_prompt(stats)}],
            )
        except anthropic.APIError as e:
            logger.error(f"ナラティブ生成APIエラー: {str(e)}")
            raise NarrativeGenerationError(f"ナラティブ生成に失敗しました: {str(e)}") from e

        raw_text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        payload = extract_json(raw_text)
        if payload is None:
            logger.error("ナラティブ応答のJSON解析に失敗")
            raise NarrativeGenerationError("ナラティブ応答を解析できません")

        return NarrativeResult.from_payload(payload)
