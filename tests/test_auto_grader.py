import pytest

from app.engine import auto_grader
from app.engine.states import QuestionType

from factories import question


@pytest.fixture
def choice():
    return question(question_type=QuestionType.MULTIPLE_CHOICE, correct_answer="Mitochondria", points=3)


def test_exact_match_earns_points(choice):
    assert auto_grader.grade(choice, "Mitochondria") == 3


def test_comparison_trims_and_ignores_case(choice):
    assert auto_grader.grade(choice, "  mitochondria ") == 3


def test_wrong_answer_earns_zero(choice):
    assert auto_grader.grade(choice, "Nucleus") == 0


@pytest.mark.parametrize("blank", [None, "", "   "])
def test_blank_answer_earns_zero(choice, blank):
    assert auto_grader.grade(choice, blank) == 0


def test_true_false_accepts_any_case():
    q = question(question_type=QuestionType.TRUE_FALSE, correct_answer="True", points=1)
    assert auto_grader.grade(q, "true") == 1
    assert auto_grader.grade(q, "FALSE") == 0


@pytest.mark.parametrize("qtype", [QuestionType.SHORT_ANSWER, QuestionType.ESSAY])
def test_manual_types_are_not_applicable(qtype):
    q = question(question_type=qtype, correct_answer="advisory", points=5)
    assert auto_grader.grade(q, "advisory") is None


def test_pinned_key_overrides_live_key(choice):
    assert auto_grader.grade(choice, "Nucleus", correct_answer="Nucleus") == 3
    assert auto_grader.grade(choice, "Mitochondria", correct_answer="Nucleus") == 0


def test_stored_string_type_is_accepted():
    q = question(question_type="multiple_choice", correct_answer="B", points=2)
    assert auto_grader.grade(q, "b") == 2
