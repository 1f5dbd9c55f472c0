"""
세션 집계: 반복 점수, 클린 반복 수, 이슈 빈도, 목표 도달 시 요약 고정
"""
import logging
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from rep_engine.feedback_rules import FeedbackResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSummary:
    total_reps: int
    average_score: int
    clean_reps: int
    best_rep_score: int
    worst_rep_score: int
    most_frequent_issue: Optional[str]

    def to_dict(self) -> Dict:
        d = asdict(self)
        return {
            "totalReps": d["total_reps"],
            "averageScore": d["average_score"],
            "cleanReps": d["clean_reps"],
            "bestRepScore": d["best_rep_score"],
            "worstRepScore": d["worst_rep_score"],
            "mostFrequentIssue": d["most_frequent_issue"],
        }


class SessionAggregator:
    def __init__(self, target_reps: int = 10):
        self.target_reps = target_reps
        self.rep_scores: List[int] = []
        self.clean_reps = 0
        self.issue_counts: Counter = Counter()
        self.summary: Optional[SessionSummary] = None

    @property
    def rep_count(self) -> int:
        return len(self.rep_scores)

    @property
    def is_complete(self) -> bool:
        return self.summary is not None

    @property
    def overall_score(self) -> int:
        if not self.rep_scores:
            return 0
        return int(round(sum(self.rep_scores) / len(self.rep_scores)))

    @property
    def last_score(self) -> int:
        return self.rep_scores[-1] if self.rep_scores else 0

    def add_rep(self, result: FeedbackResult) -> Optional[SessionSummary]:
        """
        완료된 반복 하나를 반영한다. 요약이 이미 고정되었으면 무시한다.

        Returns:
            이번 반복으로 목표에 도달했다면 SessionSummary, 아니면 None
        """
        if self.is_complete:
            return None

        self.rep_scores.append(result.score)
        if not result.has_critical:
            self.clean_reps += 1
        primary = result.primary_rule
        if primary is not None:
            self.issue_counts[primary.message] += 1

        if self.rep_count >= self.target_reps:
            self.summary = self._build_summary()
            logger.info(f"세션 완료: {self.rep_count}회, 평균 {self.summary.average_score}점, "
                        f"클린 {self.clean_reps}회")
            return self.summary
        return None

    def _build_summary(self) -> SessionSummary:
        most_common = self.issue_counts.most_common(1)
        return SessionSummary(
            total_reps=self.rep_count,
            average_score=self.overall_score,
            clean_reps=self.clean_reps,
            best_rep_score=max(self.rep_scores, default=0),
            worst_rep_score=min(self.rep_scores, default=0),
            most_frequent_issue=most_common[0][0] if most_common else None,
        )
