"""
운동별 설정 (임계값 / 피드백 규칙 / 선언형 FSM) 로딩

rep_engine/definitions/{push_up,squat,pull_up}.json 을 읽어 pydantic 모델로 검증한다.
파일이 없으면 내장 기본값, 형식이 잘못되면 경고 로그 후 내장 기본값을 사용한다.
외부 문자열 메트릭 이름 → Metric 변환은 이 모듈에서만 일어난다.
"""
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).resolve().parent / "definitions"


# ─── 식별자 ───────────────────────────────────────────────

class Metric(str, Enum):
    """엔진이 다루는 메트릭 식별자 (닫힌 집합)."""
    ELBOW_FLEXION = "elbowFlexion"
    BACK_ANGLE = "backAngle"
    ELBOW_FLARE = "elbowFlare"
    HIP_DROP_RATIO = "hipDropRatio"
    HIP_RISE_RATIO = "hipRiseRatio"
    ELBOW_FLARE_RATIO = "elbowFlareRatio"
    SHOULDER_ASYM = "shoulderAsym"
    HIP_ASYM = "hipAsym"
    ELBOW_ANGLE_DIFF = "elbowAngleDiff"
    KNEE_ANGLE = "kneeAngle"
    KNEE_VALGUS = "kneeValgus"
    FORWARD_LEAN = "forwardLean"
    DEPTH_PROGRESS = "depthProgress"
    TEMPO_FAST = "tempoFast"
    HIPS_VISIBLE = "hipsVisible"
    ARMS_VISIBLE = "armsVisible"
    BODY_VISIBLE = "bodyVisible"
    ANGLE = "angle"
    VELOCITY = "velocity"

    @classmethod
    def parse(cls, name: str) -> Optional["Metric"]:
        try:
            return cls(name.strip())
        except (ValueError, AttributeError):
            return None


class ExerciseKind(str, Enum):
    PUSHUP = "pushup"
    SQUAT = "squat"
    PULLUP = "pullup"

    @classmethod
    def parse(cls, value: str) -> "ExerciseKind":
        """'push-up', 'Push Up', 'pushups' 등 표기를 허용한다."""
        normalized = (value or "").strip().lower().replace("-", "").replace("_", "").replace(" ", "")
        if normalized.endswith("s"):
            normalized = normalized[:-1]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"지원하지 않는 운동입니다: {value!r} (pushup / squat / pullup)") from None

    @property
    def primary_metric(self) -> Metric:
        return Metric.KNEE_ANGLE if self is ExerciseKind.SQUAT else Metric.ELBOW_FLEXION

    @property
    def file_stem(self) -> str:
        return {"pushup": "push_up", "squat": "squat", "pullup": "pull_up"}[self.value]


EXERCISE_TAGS = frozenset(kind.value for kind in ExerciseKind)


class Severity(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    MINOR = "minor"

    @property
    def rank(self) -> int:
        return {"critical": 3, "important": 2, "minor": 1}[self.value]

    @property
    def label(self) -> str:
        return self.value.upper()


class Comparator(str, Enum):
    GREATER_THAN = "gt"
    LESS_THAN = "lt"

    @classmethod
    def parse(cls, op: str) -> Optional["Comparator"]:
        aliases = {
            "gt": cls.GREATER_THAN, "greaterthan": cls.GREATER_THAN, ">": cls.GREATER_THAN,
            "lt": cls.LESS_THAN, "lessthan": cls.LESS_THAN, "<": cls.LESS_THAN,
        }
        return aliases.get((op or "").strip().lower())


# ─── 설정 모델 ───────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FeedbackRule(_CamelModel):
    """선언형 피드백 규칙. metric/op를 해석할 수 없으면 매칭되지 않는 규칙이 된다."""
    id: str
    severity: Severity
    message: str
    metric: str
    op: str
    threshold: float
    applies_in: Optional[List[str]] = Field(default=None, alias="appliesIn")

    @property
    def metric_id(self) -> Optional[Metric]:
        return Metric.parse(self.metric)

    @property
    def comparator(self) -> Optional[Comparator]:
        return Comparator.parse(self.op)


class ViewThresholds(_CamelModel):
    """뷰(front/side)별 반복 경계 임계값. 각도는 °, 속도는 °/s."""
    depth_threshold: float = Field(alias="depthThreshold")
    lockout_threshold: float = Field(alias="lockoutThreshold")
    min_down_velocity: float = Field(alias="minDownVelocity")
    min_up_velocity: float = Field(alias="minUpVelocity")
    dwell_ms: int = Field(alias="dwellMS")


class FSMState(_CamelModel):
    condition: str


class FSMCounter(_CamelModel):
    from_state: str = Field(alias="from")
    to_state: str = Field(alias="to")


class FSMDefinition(_CamelModel):
    state_order: List[str] = Field(alias="stateOrder", min_length=1)
    states: Dict[str, FSMState]
    counter: FSMCounter
    min_rep_duration_sec: float = Field(default=0.0, alias="minRepDurationSec")


class ExerciseConfig(_CamelModel):
    exercise: ExerciseKind
    views: Dict[str, ViewThresholds] = Field(min_length=1)
    lockout_hold_ms: int = Field(default=300, alias="lockoutHoldMS")
    tempo_min_sec: float = Field(default=0.6, alias="tempoMinSec")
    calibration_reps: int = Field(default=3, alias="calibrationReps", ge=0)
    hip_base_default: float = Field(default=0.18, alias="hipBaseDefault")
    flare_base_default: float = Field(default=0.5, alias="flareBaseDefault")
    feedback_rules: List[FeedbackRule] = Field(default_factory=list, alias="feedbackRules")
    fsm: Dict[str, FSMDefinition] = Field(default_factory=dict)

    def thresholds_for(self, view: str) -> ViewThresholds:
        """해당 뷰 임계값, 없으면 front → 첫 번째 항목 순으로 대체한다."""
        if view in self.views:
            return self.views[view]
        if "front" in self.views:
            return self.views["front"]
        return next(iter(self.views.values()))


# ─── 내장 기본값 ─────────────────────────────────────────

def _view(depth, lockout, down_vel, up_vel, dwell_ms) -> Dict[str, Union[float, int]]:
    return {
        "depthThreshold": depth,
        "lockoutThreshold": lockout,
        "minDownVelocity": down_vel,
        "minUpVelocity": up_vel,
        "dwellMS": dwell_ms,
    }


DEFAULT_CONFIGS: Dict[ExerciseKind, Dict] = {
    ExerciseKind.PUSHUP: {
        "exercise": "pushup",
        "views": {
            "front": _view(110, 145, -1, 1, 40),
            "side": _view(130, 165, -20, 20, 40),
        },
        "lockoutHoldMS": 300,
        "tempoMinSec": 0.6,
        "hipBaseDefault": 0.18,
        "flareBaseDefault": 0.5,
    },
    ExerciseKind.SQUAT: {
        "exercise": "squat",
        "views": {"front": _view(95, 170, -20, 20, 80)},
        "lockoutHoldMS": 300,
        "tempoMinSec": 0.6,
    },
    ExerciseKind.PULLUP: {
        "exercise": "pullup",
        "views": {"front": _view(65, 160, -20, 20, 80)},
        "lockoutHoldMS": 300,
        "tempoMinSec": 0.6,
    },
}


def default_config(kind: ExerciseKind) -> ExerciseConfig:
    return ExerciseConfig.model_validate(DEFAULT_CONFIGS[kind])


def load_exercise_config(kind: Union[ExerciseKind, str],
                         path: Optional[Union[str, Path]] = None) -> ExerciseConfig:
    """
    운동 설정 JSON을 읽는다.

    Args:
        kind: 운동 종류
        path: 설정 파일 경로 (None이면 definitions/<운동>.json)

    Returns:
        ExerciseConfig: 파일이 없거나 잘못되었으면 내장 기본값
    """
    kind = ExerciseKind.parse(kind) if isinstance(kind, str) else kind
    config_path = Path(path) if path is not None else DEFINITIONS_DIR / f"{kind.file_stem}.json"

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.info(f"{config_path.name} 없음, 내장 기본값 사용")
        return default_config(kind)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"{config_path.name} 읽기 실패, 내장 기본값 사용: {e}")
        return default_config(kind)

    if isinstance(raw, dict):
        raw.setdefault("exercise", kind.value)
    try:
        config = ExerciseConfig.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"{config_path.name} 형식 오류, 내장 기본값 사용: {e.error_count()}개 오류")
        return default_config(kind)

    if config.exercise is not kind:
        logger.warning(f"{config_path.name}: exercise={config.exercise.value} (요청 {kind.value}), 내장 기본값 사용")
        return default_config(kind)

    for rule in config.feedback_rules:
        if rule.metric_id is None:
            logger.warning(f"규칙 {rule.id}: 알 수 없는 메트릭 '{rule.metric}', 매칭되지 않음")
        if rule.comparator is None:
            logger.warning(f"규칙 {rule.id}: 알 수 없는 연산자 '{rule.op}', 매칭되지 않음")

    logger.debug(f"{config_path.name} 로드: 규칙 {len(config.feedback_rules)}개, FSM 뷰 {sorted(config.fsm)}")
    return config
