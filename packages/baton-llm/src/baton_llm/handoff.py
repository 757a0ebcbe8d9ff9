"""Content-based handoff detection for models without native function calling.

Models that cannot emit tool calls are instructed to write a handoff
directive into their text instead. ``HandoffDetector`` scans that text with an
ordered pattern table (JSON key, bracket directive, natural language,
call-style) and accepts the first capture that names an agent on the roster.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionPattern:
    regex: re.Pattern[str]
    group: int = 1
    rank: int = 0
    style: str = ""


def _pattern(expr: str, rank: int, style: str) -> DetectionPattern:
    return DetectionPattern(re.compile(expr, re.IGNORECASE), 1, rank, style)


_NAME = r"([a-zA-Z_][a-zA-Z0-9_]*(?:\s*agent)?)"

# Order is precedence: earlier patterns win.
DEFAULT_PATTERNS: tuple[DetectionPattern, ...] = (
    _pattern(r'"handoff_to":\s*"([^"]+)"', 0, "json"),
    _pattern(r'"transfer_to":\s*"([^"]+)"', 0, "json"),
    _pattern(r'"assistant":\s*"([^"]+)"', 0, "json"),
    _pattern(r"\[HANDOFF:([^\]]+)\]", 1, "bracket"),
    _pattern(r"\[TRANSFER:([^\]]+)\]", 1, "bracket"),
    _pattern(r"\[AGENT:([^\]]+)\]", 1, "bracket"),
    _pattern(r"transfer(?:ring)?\s+(?:to|you)\s+(?:to\s+)?" + _NAME, 2, "natural_language"),
    _pattern(r"handoff?\s+to\s+" + _NAME, 2, "natural_language"),
    _pattern(r"switching\s+to\s+" + _NAME, 2, "natural_language"),
    _pattern(r"forwarding\s+to\s+" + _NAME, 2, "natural_language"),
    _pattern(r"""handoff\(["']([^"']+)["']\)""", 3, "call"),
    _pattern(r"""transfer\(["']([^"']+)["']\)""", 3, "call"),
    _pattern(r"""agent\(["']([^"']+)["']\)""", 3, "call"),
)

HANDOFF_INSTRUCTIONS = """\
You are part of a multi-agent system. When you need to transfer control to \
another agent, use one of these formats:

```json
{{"handoff_to": "AgentName"}}
```

Or:
- [HANDOFF:AgentName]
- [TRANSFER:AgentName]
- Transfer to AgentName

Available agents:
{available_agents}

Rules:
- Only handoff when necessary
- Use exact agent names
- Include the handoff instruction in your response
- Continue with a normal response after the handoff instruction
"""

_AGENT_SUFFIX = re.compile(r"\s*agent\s*$", re.IGNORECASE)
_AMBIGUITY_WORDS = re.compile(r"transfer|handoff|agent", re.IGNORECASE)


@runtime_checkable
class AgentRoster(Protocol):
    def agent_names(self) -> Iterable[str]:
        ...


RosterLike = Union[AgentRoster, Iterable[str]]


def roster_names(roster: RosterLike | None) -> list[str]:
    if roster is None:
        return []
    if isinstance(roster, AgentRoster):
        return list(roster.agent_names())
    if isinstance(roster, str):
        return [roster]
    return list(roster)


def normalize_agent_name(name: str) -> str:
    return _AGENT_SUFFIX.sub("", name).strip()


@dataclass
class DetectionStats:
    attempts: int = 0
    successes: int = 0
    per_pattern_hits: Counter = field(default_factory=Counter)

    @property
    def success_rate(self) -> float:
        """Percentage of attempts that found a roster agent."""
        if not self.attempts:
            return 0.0
        return round(self.successes / self.attempts * 100, 2)

    def most_effective(self, n: int = 3) -> list[tuple[int, int]]:
        return self.per_pattern_hits.most_common(n)


@dataclass(frozen=True)
class HandoffDetection:
    target: str | None = None
    confidence: float = 0.0
    method: str | None = None
    pattern_index: int | None = None
    pattern_style: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def detected(self) -> bool:
        return self.target is not None


@dataclass
class EvaluationReport:
    total: int = 0
    passed: int = 0
    failed: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return round(self.passed / self.total * 100, 2) if self.total else 0.0


class HandoffDetector:
    """Finds handoff directives in free text and keeps detection statistics."""

    def __init__(
        self,
        roster: RosterLike | None = None,
        patterns: Iterable[DetectionPattern] = DEFAULT_PATTERNS,
    ) -> None:
        self._roster = roster_names(roster)
        self._patterns = tuple(patterns)
        self._stats = DetectionStats()
        self._lock = threading.Lock()

    @property
    def roster(self) -> list[str]:
        return list(self._roster)

    @property
    def patterns(self) -> tuple[DetectionPattern, ...]:
        return self._patterns

    def update_roster(self, roster: RosterLike) -> None:
        self._roster = roster_names(roster)
        logger.debug("Handoff roster updated: %s", ", ".join(self._roster))

    def detect_handoff_in_content(
        self, content: str, roster: RosterLike | None = None
    ) -> str | None:
        """Return the canonical roster name of the first valid directive."""
        target, _ = self._scan(content, roster)
        return target

    def detect(
        self,
        content: str,
        roster: RosterLike | None = None,
        context: dict[str, Any] | None = None,
    ) -> HandoffDetection:
        target, index = self._scan(content, roster)
        if target is None or index is None:
            return HandoffDetection(context=dict(context or {}))
        return HandoffDetection(
            target=target,
            confidence=self.calculate_confidence(content, target),
            method="content_based",
            pattern_index=index,
            pattern_style=self._patterns[index].style,
            context=dict(context or {}),
        )

    def _scan(
        self, content: str, roster: RosterLike | None
    ) -> tuple[str | None, int | None]:
        with self._lock:
            self._stats.attempts += 1

        if not isinstance(content, str) or not content:
            return None, None

        names = roster_names(roster) if roster is not None else self._roster
        by_folded = {name.casefold(): name for name in names}
        logger.debug(
            "Scanning %d chars for handoff directives (roster: %s)",
            len(content), ", ".join(names),
        )

        for index, pattern in enumerate(self._patterns):
            match = pattern.regex.search(content)
            if not match:
                continue
            raw = match.group(pattern.group)
            candidate = normalize_agent_name(raw)
            actual = by_folded.get(candidate.casefold()) or by_folded.get(raw.strip().casefold())
            if actual is None:
                logger.debug("Handoff candidate %r is not on the roster", candidate)
                continue

            with self._lock:
                self._stats.successes += 1
                self._stats.per_pattern_hits[index] += 1
            logger.debug(
                "Handoff to %s detected by pattern %d (%s)", actual, index, pattern.style
            )
            return actual, index

        return None, None

    def calculate_confidence(self, content: str, target: str) -> float:
        confidence = 0.5
        if '{"handoff_to"' in content or '{"transfer_to"' in content:
            confidence += 0.3
        if "[HANDOFF:" in content or "[TRANSFER:" in content:
            confidence += 0.2
        if target in content:
            confidence += 0.2
        if len(_AMBIGUITY_WORDS.findall(content)) > 3:
            confidence -= 0.1
        return round(min(confidence, 1.0), 2)

    def generate_handoff_instructions(self, roster: RosterLike | None = None) -> str:
        names = roster_names(roster) if roster is not None else self._roster
        agents = "\n".join(f"- {name}" for name in names)
        return HANDOFF_INSTRUCTIONS.format(available_agents=agents)

    def generate_handoff_response(self, target: str, message: str | None = None) -> str:
        base = message or f"Transferring to {target}"
        return f"{base}\n\n{json.dumps({'handoff_to': target})}"

    def stats(self) -> DetectionStats:
        with self._lock:
            return DetectionStats(
                attempts=self._stats.attempts,
                successes=self._stats.successes,
                per_pattern_hits=Counter(self._stats.per_pattern_hits),
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = DetectionStats()

    def evaluate(self, cases: Iterable[tuple[str, str | None]]) -> EvaluationReport:
        """Run ``(content, expected_agent)`` cases through the detector."""
        report = EvaluationReport()
        for content, expected in cases:
            detected = self.detect_handoff_in_content(content)
            passed = detected == expected
            report.total += 1
            if passed:
                report.passed += 1
            else:
                report.failed += 1
            preview = content[:100] + ("..." if len(content) > 100 else "")
            report.details.append({
                "content": preview,
                "expected": expected,
                "detected": detected,
                "passed": passed,
            })
        return report
