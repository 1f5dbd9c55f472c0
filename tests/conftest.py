import pytest

from rep_engine.exercise_config import ExerciseKind, load_exercise_config
from rep_engine.exercise_engine import ExerciseEngine, SessionSettings
from rep_engine.feedback_rules import FeedbackFocus


@pytest.fixture
def pushup_config():
    return load_exercise_config(ExerciseKind.PUSHUP)


@pytest.fixture
def squat_config():
    return load_exercise_config(ExerciseKind.SQUAT)


@pytest.fixture
def make_engine():
    def _make(exercise=ExerciseKind.PUSHUP, config=None, **kwargs):
        return ExerciseEngine(SessionSettings(exercise=exercise, **kwargs), config=config)
    return _make


@pytest.fixture
def full_body_settings():
    """측면 규칙이 적용되는 설정 (전신 + 가로 촬영)."""
    return {"focus": FeedbackFocus.FULL_BODY, "portrait": False}
