"""
审稿意见质量分析（纯函数/无 IO）。

中文注释:
- 完整度打分：ratio = len/target；ratio < 1 取 ratio；ratio >= 2 取 max(0.7, 2 - ratio)（即 0.7 下限）；其余为 1.0。
  ratio 恰为 2 是唯一的分歧点：按“ratio > 2 才衰减”的分段式应得 1.0，但 2 倍目标长度处的分数约定为 0.7，
  这里以后者为准（>= 2），2 以外的所有取值两种写法一致。
  已落库的报告分数依赖这个公式，改动需要同时迁移历史报告。
- 语气/清晰度是启发式规则：建议文案可以不同，但触发条件（长度阈值、计数阈值）保持一致。
- 偏见检测通过 BiasDetector 协议注入，默认实现是关键词规则。
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Protocol

from editorial_flow.core.timeutils import ensure_utc
from editorial_flow.models.review import AnalysisResult, AnalysisWarning, QualityReport, Review, Suggestion

SECTIONS = ("summary", "strengths", "weaknesses", "detailed_comments", "recommendation")

SECTION_TARGET_LENGTHS: dict[str, int] = {
    "summary": 300,
    "strengths": 200,
    "weaknesses": 200,
    "detailed_comments": 500,
    "recommendation": 100,
}
DEFAULT_TARGET_LENGTH = 200

SECTION_MIN_LENGTHS: dict[str, int] = {
    "summary": 150,
    "strengths": 100,
    "weaknesses": 100,
    "detailed_comments": 300,
    "recommendation": 50,
}
DEFAULT_MIN_LENGTH = 100

# 每个必备要点对应一组提示词，命中任意一个即视为已覆盖
REQUIRED_ELEMENTS: dict[str, dict[str, tuple[str, ...]]] = {
    "summary": {
        "main findings": ("main finding", "findings", "results", "shows that", "demonstrate"),
        "methodology": ("methodology", "method", "approach", "experiment", "study design"),
        "contribution": ("contribution", "contributes", "novel", "advances"),
    },
    "strengths": {
        "specific examples": ("specific example", "for example", "for instance", "e.g.", "such as"),
        "positive aspects": ("positive", "strength", "well", "clear", "convincing", "valuable"),
    },
    "weaknesses": {
        "areas for improvement": ("area for improvement", "areas for improvement", "improve", "could be", "should be"),
        "specific issues": ("specific issue", "issue", "problem", "missing", "unclear", "inconsistent"),
    },
    "detailed_comments": {
        "specific sections": ("specific section", "section", "page", "line", "figure", "table"),
        "actionable feedback": ("actionable", "suggest", "recommend", "consider", "please"),
    },
    "recommendation": {
        "clear decision": ("clear decision", "accept", "reject", "revision"),
        "justification": ("justification", "because", "due to", "given", "therefore"),
    },
}

MIN_TEXT_FOR_STYLE_CHECKS = 20
LONG_SENTENCE_WORDS = 30
PASSIVE_THRESHOLD = 2
_PASSIVE_RE = re.compile(r"\b(was|were|been|being|be)\s+\w+ed\b", re.IGNORECASE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
VAGUE_TERMS = ("very", "really", "quite", "somewhat", "rather", "fairly")

DISMISSIVE_PHRASES = (
    "obviously",
    "nonsense",
    "worthless",
    "ridiculous",
    "stupid",
    "incompetent",
    "sloppy",
    "garbage",
    "waste of time",
    "pointless",
    "laughable",
    "amateurish",
)

SPECIFICITY_MARKERS = (
    "for example",
    "specifically",
    "page",
    "line",
    "section",
    "figure",
    "table",
    "equation",
    "citation",
    "reference",
)

CONSTRUCTIVE_MARKERS = ("suggest", "recommend", "consider", "could", "should", "would benefit")

_POSITIVE_KEYWORDS = ("excellent", "outstanding", "strong", "well-written", "accept", "minor revisions")
_NEGATIVE_KEYWORDS = ("major issues", "significant problems", "serious concerns", "fundamental flaws", "reject")

_GENDER_PATTERNS = (
    re.compile(r"\b(he|his|him)\b", re.IGNORECASE),
    re.compile(r"\b(she|her|hers)\b", re.IGNORECASE),
)
_BIAS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "geographic": ("western", "eastern", "third-world", "developing country"),
    "institutional": ("ivy league", "prestigious", "unknown institution"),
    "career_stage": ("junior", "young researcher", "established", "veteran"),
}


def completeness_score(text: str | None, section: str) -> float:
    if not text:
        return 0.0
    target = SECTION_TARGET_LENGTHS.get(section, DEFAULT_TARGET_LENGTH)
    ratio = len(text) / target
    if ratio < 1:
        return ratio
    if ratio >= 2:
        return max(0.7, 2 - ratio)
    return 1.0


def _count_phrases(text: str, phrases: Iterable[str]) -> int:
    return sum(len(re.findall(r"\b" + re.escape(p) + r"\b", text)) for p in phrases)


def check_completeness(section: str, text: str) -> list[Suggestion]:
    out: list[Suggestion] = []
    min_length = SECTION_MIN_LENGTHS.get(section, DEFAULT_MIN_LENGTH)
    if len(text) < min_length:
        out.append(
            Suggestion(
                type="completeness",
                section=section,
                message=f"This section appears too brief. Aim for at least {min_length} characters.",
            )
        )

    lowered = text.lower()
    for element, hints in REQUIRED_ELEMENTS.get(section, {}).items():
        if element in lowered or any(h in lowered for h in hints):
            continue
        out.append(
            Suggestion(type="completeness", section=section, message=f'Consider addressing "{element}" in this section.')
        )
    return out


def check_clarity(text: str, section: str = "") -> list[Suggestion]:
    if not text or len(text) < MIN_TEXT_FOR_STYLE_CHECKS:
        return []
    out: list[Suggestion] = []

    for sentence in _SENTENCE_SPLIT_RE.split(text):
        if len(sentence.split()) > LONG_SENTENCE_WORDS:
            out.append(
                Suggestion(
                    type="clarity",
                    section=section,
                    message="This sentence is very long. Consider breaking it into shorter sentences.",
                )
            )

    if len(_PASSIVE_RE.findall(text)) > PASSIVE_THRESHOLD:
        out.append(
            Suggestion(type="clarity", section=section, message="Consider using active voice for more direct feedback.")
        )

    lowered = text.lower()
    for term in VAGUE_TERMS:
        if re.search(r"\b" + term + r"\b", lowered):
            out.append(
                Suggestion(type="clarity", section=section, message=f'Replace "{term}" with more specific language.')
            )
            break
    return out


def dismissive_hits(text: str) -> list[str]:
    lowered = (text or "").lower()
    return [p for p in DISMISSIVE_PHRASES if re.search(r"\b" + re.escape(p) + r"\b", lowered)]


def check_tone(text: str, section: str = "") -> tuple[list[Suggestion], list[AnalysisWarning]]:
    if not text or len(text) < MIN_TEXT_FOR_STYLE_CHECKS:
        return [], []
    hits = dismissive_hits(text)
    suggestions = [
        Suggestion(
            type="tone",
            section=section,
            message=f'"{phrase}" reads as dismissive. Rephrase it as constructive feedback.',
        )
        for phrase in hits
    ]
    warnings: list[AnalysisWarning] = []
    if hits:
        warnings.append(
            AnalysisWarning(
                type="tone",
                severity="high" if len(hits) >= 3 else "medium",
                message="The review contains dismissive language: " + ", ".join(hits),
            )
        )
    return suggestions, warnings


class BiasDetector(Protocol):
    def detect(self, text: str) -> list[AnalysisWarning]: ...


class KeywordBiasDetector:
    """
    关键词版偏见检测：代词高频使用（>2 次）为 medium，地域/机构/职业阶段用语为 low。
    """

    def detect(self, text: str) -> list[AnalysisWarning]:
        warnings: list[AnalysisWarning] = []
        if not text:
            return warnings

        for pattern in _GENDER_PATTERNS:
            matches = pattern.findall(text)
            if len(matches) > 2:
                warnings.append(
                    AnalysisWarning(
                        type="bias",
                        severity="medium",
                        category="gender",
                        message="Consider using gender-neutral language (" + ", ".join(matches) + ")",
                    )
                )

        lowered = text.lower()
        for category, keywords in _BIAS_KEYWORDS.items():
            for keyword in keywords:
                if keyword in lowered:
                    warnings.append(
                        AnalysisWarning(
                            type="bias",
                            severity="low",
                            category=category,
                            message=f'Avoid references to {category.replace("_", " ")} ("{keyword}") that may introduce bias',
                        )
                    )
        return warnings


def estimate_quality_impact(suggestions: list[Suggestion], warnings: list[AnalysisWarning]) -> float:
    high = sum(1 for w in warnings if w.severity == "high")
    medium = sum(1 for w in warnings if w.severity == "medium")
    return round(min(0.3, len(suggestions) * 0.05 + high * 0.1 + medium * 0.05), 4)


def timeliness_score(due_date: datetime | None, submitted_at: datetime | None) -> float:
    if due_date is None or submitted_at is None:
        return 0.7
    days_early = (ensure_utc(due_date) - ensure_utc(submitted_at)).total_seconds() / 86400
    score = 0.7 + (days_early / 7) * 0.3
    return min(1.0, score) if days_early >= 0 else max(0.0, score)


def recommendation_alignment(recommendation: str | None, text: str) -> float:
    lowered = text.lower()
    balance = _count_phrases(lowered, _POSITIVE_KEYWORDS) - _count_phrases(lowered, _NEGATIVE_KEYWORDS)
    if recommendation == "accept" and balance > 0:
        return 1.0
    if recommendation == "reject" and balance < 0:
        return 1.0
    if recommendation == "major_revisions" and abs(balance) < 5:
        return 0.9
    if recommendation == "minor_revisions" and balance >= 0:
        return 0.9
    return 0.5


class ReviewAnalyzer:
    def __init__(self, bias_detector: BiasDetector | None = None) -> None:
        self.bias_detector: BiasDetector = bias_detector or KeywordBiasDetector()

    def analyze(self, text: str | None, section: str) -> AnalysisResult:
        """
        单个段落的实时辅助：完整度建议 + 清晰度/语气建议 + 偏见告警。
        """
        text = text or ""
        suggestions = check_completeness(section, text)
        suggestions.extend(check_clarity(text, section))
        tone_suggestions, warnings = check_tone(text, section)
        suggestions.extend(tone_suggestions)
        warnings.extend(self.bias_detector.detect(text))
        return AnalysisResult(
            suggestions=suggestions,
            warnings=warnings,
            completeness_score=completeness_score(text, section),
            estimated_quality_impact=estimate_quality_impact(suggestions, warnings),
        )

    def build_report(self, review: Review, *, due_date: datetime | None = None) -> QualityReport:
        """
        整篇审稿意见的质量报告（分数 + 自动 flags）。
        """
        form = review.form_data
        texts = {section: form.section_text(section) for section in SECTIONS}

        filled = [t for t in texts.values() if len(t.strip()) > 10]
        total_length = sum(len(t) for t in filled)
        body = " ".join(texts[s] for s in ("summary", "strengths", "weaknesses", "detailed_comments")).lower()
        full_text = " ".join(texts.values())

        clarity_issues = sum(len(check_clarity(texts[s], s)) for s in SECTIONS)
        tone_hits = dismissive_hits(full_text)

        scores: dict[str, float] = {
            "completeness": round(len(filled) / len(SECTIONS), 4),
            "depth": round(min(total_length / 5 / 1000, 1.0), 4),
            "timeliness": round(timeliness_score(due_date, review.submitted_at), 4),
            "specificity": round(min(sum(body.count(m) for m in SPECIFICITY_MARKERS) / 20, 1.0), 4),
            "professionalism": round(max(0.0, 1 - 0.2 * len(tone_hits)), 4),
            "clarity": round(max(0.0, 1 - 0.1 * clarity_issues), 4),
            "constructiveness": round(min(_count_phrases(body, CONSTRUCTIVE_MARKERS) / 5, 1.0), 4),
        }
        strengths_len, weaknesses_len = len(form.strengths), len(form.weaknesses)
        scores["internal_consistency"] = round(
            1 - abs(strengths_len - weaknesses_len) / (strengths_len + weaknesses_len + 1), 4
        )
        if review.recommendation:
            scores["recommendation_alignment"] = recommendation_alignment(
                review.recommendation, " ".join([form.strengths, form.weaknesses, form.detailed_comments])
            )

        overall_keys = ("completeness", "depth", "specificity", "timeliness", "professionalism", "clarity")
        overall_values = [scores[k] for k in overall_keys]
        if "recommendation_alignment" in scores:
            overall_values.append(scores["recommendation_alignment"])
        scores["overall"] = round(sum(overall_values) / len(overall_values), 4)

        bias_warnings = self.bias_detector.detect(full_text)
        flags = self._derive_flags(scores, bias_warnings)
        return QualityReport(
            review_id=review.id,
            scores=scores,
            section_scores={s: round(completeness_score(texts[s], s), 4) for s in SECTIONS},
            bias_warnings=bias_warnings,
            flags=flags,
            status=report_status(flags),
        )

    @staticmethod
    def _derive_flags(scores: dict[str, float], bias_warnings: list[AnalysisWarning]) -> list[str]:
        flags: list[str] = []
        if scores["overall"] >= 0.9:
            flags.append("excellent_quality")
        if scores["overall"] < 0.6:
            flags.append("needs_improvement")
        if any(w.severity in {"medium", "high"} for w in bias_warnings):
            flags.append("bias_suspected")
        if scores["professionalism"] < 0.6:
            flags.append("unprofessional_tone")
        if scores["completeness"] < 0.7:
            flags.append("incomplete_review")
        if scores.get("recommendation_alignment", 1.0) < 0.6:
            flags.append("inconsistent_recommendation")
        if scores["constructiveness"] < 0.5:
            flags.append("low_constructiveness")
        return flags


def report_status(flags: Iterable[str]) -> str:
    return "flagged_for_review" if any(f != "excellent_quality" for f in flags) else "clean"
