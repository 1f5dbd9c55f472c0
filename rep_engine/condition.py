"""
선언형 FSM 조건식 파서

"angle < 100 & velocity < -20" 형태의 문자열을 설정 로드 시점에 한 번만 파싱하여
Comparison / Conjunction 트리로 만든다. 프레임마다는 트리만 평가한다.

문법:
    condition  := clause (("&" | "&&" | "and") clause)*
    clause     := metric OP number
    OP         := ">=" | "<=" | ">" | "<"

파싱 실패 / 알 수 없는 메트릭은 ConditionError → compile_fsm 에서 경고 로그 후
항상 False인 NeverMatch 로 대체된다.
"""
import logging
import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from rep_engine.exercise_config import FSMDefinition, Metric

logger = logging.getLogger(__name__)

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}

_SPLIT_RE = re.compile(r"&&|&|\band\b")
_CLAUSE_RE = re.compile(
    r"^\s*([A-Za-z_]\w*)\s*(>=|<=|>|<)\s*([-+]?(?:\d+\.?\d*|\.\d+))\s*$"
)


class ConditionError(ValueError):
    """조건식 파싱 실패."""


@dataclass(frozen=True)
class Comparison:
    metric: Metric
    op: str
    threshold: float

    def evaluate(self, values: Dict[Metric, float]) -> bool:
        value = values.get(self.metric)
        if value is None:
            return False
        return _OPERATORS[self.op](value, self.threshold)


@dataclass(frozen=True)
class Conjunction:
    clauses: Tuple[Comparison, ...]

    def evaluate(self, values: Dict[Metric, float]) -> bool:
        return all(clause.evaluate(values) for clause in self.clauses)


class NeverMatch:
    def evaluate(self, values: Dict[Metric, float]) -> bool:
        return False

    def __repr__(self):
        return "NeverMatch()"


NEVER_MATCH = NeverMatch()


def parse_clause(text: str) -> Comparison:
    m = _CLAUSE_RE.match(text)
    if m is None:
        raise ConditionError(f"조건 절을 해석할 수 없습니다: {text!r}")
    name, op, number = m.groups()
    metric = Metric.parse(name)
    if metric is None:
        raise ConditionError(f"알 수 없는 메트릭: {name!r}")
    return Comparison(metric=metric, op=op, threshold=float(number))


def parse_condition(text: str) -> Conjunction:
    """
    조건 문자열 → Conjunction.

    빈 절("a > 1 & & b < 2" 의 가운데)은 건너뛴다.

    Raises:
        ConditionError: 절 형식 오류 또는 알 수 없는 메트릭
    """
    parts = [p.strip() for p in _SPLIT_RE.split(text or "")]
    return Conjunction(clauses=tuple(parse_clause(p) for p in parts if p))


@dataclass(frozen=True)
class CompiledFSM:
    state_order: Tuple[str, ...]
    conditions: Dict[str, object]
    counter_from: str
    counter_to: str
    min_rep_duration_sec: float

    @property
    def initial_state(self) -> str:
        return self.state_order[0]

    def match(self, values: Dict[Metric, float]) -> Optional[str]:
        """state_order 순서로 처음 만족하는 상태 이름, 없으면 None."""
        for name in self.state_order:
            if self.conditions[name].evaluate(values):
                return name
        return None


def compile_condition(text: str, label: str = "") -> object:
    try:
        return parse_condition(text)
    except ConditionError as e:
        logger.warning(f"FSM 조건 무시 {label}: {e}")
        return NEVER_MATCH


def compile_fsm(definition: FSMDefinition, view: str = "") -> CompiledFSM:
    conditions = {}
    for name in definition.state_order:
        state = definition.states.get(name)
        if state is None:
            logger.warning(f"FSM[{view}] 상태 '{name}' 정의 없음, 매칭되지 않음")
            conditions[name] = NEVER_MATCH
            continue
        conditions[name] = compile_condition(state.condition, f"[{view}:{name}]")

    return CompiledFSM(
        state_order=tuple(definition.state_order),
        conditions=conditions,
        counter_from=definition.counter.from_state,
        counter_to=definition.counter.to_state,
        min_rep_duration_sec=definition.min_rep_duration_sec,
    )
