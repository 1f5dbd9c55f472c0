"""
선언형 피드백 규칙 평가

규칙 = {metric, op, threshold, severity, message, appliesIn 태그}
적용 대상 필터 → 임계값 비교 (캘리브레이션 반영) → 심각도 정렬 → 메시지/점수/위험도 산출
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from rep_engine.calibration import CalibrationBaseline, Sensitivity, effective_threshold
from rep_engine.exercise_config import (
    EXERCISE_TAGS,
    Comparator,
    ExerciseKind,
    FeedbackRule,
    Metric,
    Severity,
)

logger = logging.getLogger(__name__)

CLEAN_MESSAGE = "GOOD: Form is clean"

SEVERITY_PENALTY = {
    Severity.CRITICAL: 35,
    Severity.IMPORTANT: 15,
    Severity.MINOR: 5,
}


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    CRITICAL = "critical"


class FeedbackFocus(str, Enum):
    ARMS_ONLY = "armsOnly"
    FULL_BODY = "fullBody"


@dataclass(frozen=True)
class RuleContext:
    view: str
    exercise: ExerciseKind
    portrait: bool = True
    focus: FeedbackFocus = FeedbackFocus.ARMS_ONLY

    @property
    def rule_view(self) -> str:
        """armsOnly 모드의 푸시업은 뷰와 무관하게 front 규칙으로 평가한다."""
        if self.exercise is ExerciseKind.PUSHUP and self.focus is FeedbackFocus.ARMS_ONLY:
            return "front"
        return self.view


def rule_applies(rule: FeedbackRule, context: RuleContext) -> bool:
    tags = rule.applies_in
    if not tags:
        return True
    if any(tag in EXERCISE_TAGS for tag in tags) and context.exercise.value not in tags:
        return False
    if context.rule_view not in tags:
        return False
    if "portrait" in tags and not context.portrait:
        return False
    if "landscape" in tags and context.portrait:
        return False
    if "fullBody" in tags and context.focus is not FeedbackFocus.FULL_BODY:
        return False
    if "armsOnly" in tags and context.focus is not FeedbackFocus.ARMS_ONLY:
        return False
    return True


def rank_rules(rules: Sequence[FeedbackRule]) -> List[FeedbackRule]:
    """심각도 내림차순 (안정 정렬) 후 메시지 기준 중복 제거."""
    ordered = sorted(rules, key=lambda r: r.severity.rank, reverse=True)
    seen = set()
    unique = []
    for rule in ordered:
        if rule.message in seen:
            continue
        seen.add(rule.message)
        unique.append(rule)
    return unique


def primary_message(rules: Sequence[FeedbackRule]) -> str:
    ranked = rank_rules(rules)
    if not ranked:
        return CLEAN_MESSAGE
    return f"{ranked[0].severity.label}: {ranked[0].message}"


def secondary_message(rules: Sequence[FeedbackRule]) -> str:
    ranked = rank_rules(rules)
    if len(ranked) < 2:
        return ""
    return f"Also: {ranked[1].message}"


def risk_for(rules: Sequence[FeedbackRule]) -> RiskLevel:
    severities = {rule.severity for rule in rules}
    if Severity.CRITICAL in severities:
        return RiskLevel.CRITICAL
    if Severity.IMPORTANT in severities:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score_for(rules: Sequence[FeedbackRule]) -> int:
    score = 100 - sum(SEVERITY_PENALTY[rule.severity] for rule in rules)
    return max(0, min(100, score))


@dataclass(frozen=True)
class FeedbackResult:
    matched: Tuple[FeedbackRule, ...]
    message: str
    secondary: str
    risk: RiskLevel
    score: int

    @property
    def has_critical(self) -> bool:
        return any(rule.severity is Severity.CRITICAL for rule in self.matched)

    @property
    def primary_rule(self) -> Optional[FeedbackRule]:
        ranked = rank_rules(self.matched)
        return ranked[0] if ranked else None

    @property
    def matched_ids(self) -> List[str]:
        return [rule.id for rule in self.matched]


class FeedbackRuleEngine:
    """설정된 규칙 목록을 메트릭 스냅샷에 대해 평가한다."""

    def __init__(self, rules: Sequence[FeedbackRule], sensitivity: Sensitivity = Sensitivity.NORMAL):
        self.rules = list(rules)
        self.sensitivity = sensitivity

    def matches(self, rule: FeedbackRule, values: Dict[Metric, float],
                baseline: Optional[CalibrationBaseline]) -> bool:
        metric, comparator = rule.metric_id, rule.comparator
        if metric is None or comparator is None:
            return False
        value = values.get(metric)
        if value is None:
            return False
        threshold = effective_threshold(rule, baseline, self.sensitivity)
        if comparator is Comparator.GREATER_THAN:
            return value > threshold
        return value < threshold

    def evaluate(self, values: Dict[Metric, float], context: RuleContext,
                 baseline: Optional[CalibrationBaseline] = None) -> FeedbackResult:
        matched = tuple(
            rule for rule in self.rules
            if rule_applies(rule, context) and self.matches(rule, values, baseline)
        )
        return FeedbackResult(
            matched=matched,
            message=primary_message(matched),
            secondary=secondary_message(matched),
            risk=risk_for(matched),
            score=score_for(matched),
        )

    def explain(self, values: Dict[Metric, float], context: RuleContext,
                baseline: Optional[CalibrationBaseline] = None):
        """규칙별 판정 내역을 DEBUG 로그로 남긴다."""
        for rule in self.rules:
            metric = rule.metric_id
            value = values.get(metric) if metric is not None else None
            threshold = effective_threshold(rule, baseline, self.sensitivity)
            logger.debug(
                f"[RuleCheck] {rule.id} metric={rule.metric} value={value} op={rule.op} "
                f"thr={threshold:.3f} applies={rule_applies(rule, context)} tags={rule.applies_in or []}"
            )
