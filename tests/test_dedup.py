"""Unit tests for near-duplicate detection."""
import pytest

from korsify.generation.dedup import (
    clean_course_structure,
    dedupe_questions,
    find_duplicates,
    is_duplicate,
    levenshtein,
    similarity,
    unique_title,
)
from korsify.models.course import CourseStructure, GeneratedLesson, GeneratedModule, GeneratedQuiz, QuizQuestion


def _q(text):
    return QuizQuestion(question=text, options=["a", "b"], correct_answer="a")


def _lesson(title):
    return GeneratedLesson(title=title, content=f"<p>{title}</p>")


@pytest.mark.parametrize("a,b,expected", [
    ("", "", 0),
    ("abc", "", 3),
    ("kitten", "sitting", 3),
    ("flaw", "lawn", 2),
])
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected
    assert levenshtein(b, a) == expected


def test_similarity_is_case_and_whitespace_insensitive():
    assert similarity("Pricing Basics", "  pricing basics ") == 1.0
    assert similarity("", "") == 1.0
    assert similarity("abcd", "wxyz") == 0.0


def test_is_duplicate_threshold():
    assert is_duplicate("What is price elasticity?", ["What is price elasticity"]) is True
    assert is_duplicate("What is price elasticity?", ["Who sets the price floor?"]) is False
    # 0.9 for titles: one differing character in ten is still a duplicate
    assert is_duplicate("abcdefghij", ["abcdefghiX"], threshold=0.9) is True
    assert is_duplicate("abcdefghij", ["abcdefghXY"], threshold=0.9) is False


def test_unique_title_appends_counter():
    assert unique_title("Intro", []) == "Intro"
    assert unique_title("Intro", ["intro"]) == "Intro (2)"
    assert unique_title("Intro", ["Intro", "Intro (2)"]) == "Intro (3)"


def test_dedupe_questions_keeps_first():
    out = dedupe_questions([_q("What is a price floor?"), _q("What is a price floor"), _q("Define elasticity.")])
    assert [q.question for q in out] == ["What is a price floor?", "Define elasticity."]


def test_find_and_clean_duplicates():
    course = CourseStructure(
        title="Pricing",
        modules=[
            GeneratedModule(
                title="Pricing basics",
                lessons=[_lesson("Cost plus"), _lesson("Cost plus!")],
                quiz=GeneratedQuiz(title="q", questions=[_q("Why price?"), _q("Why price?")]),
            ),
            GeneratedModule(title="Pricing basic", lessons=[_lesson("Other")]),
            GeneratedModule(
                title="Competition",
                lessons=[
                    GeneratedLesson(
                        title="Rivals",
                        content="<p>x</p>",
                        quiz=GeneratedQuiz(title="lq", questions=[_q("Who competes?"), _q("who competes?")]),
                    )
                ],
            ),
        ],
    )

    issues = find_duplicates(course)
    assert 'Duplicate module title: "Pricing basic"' in issues
    assert any("Duplicate lesson title" in i for i in issues)
    assert sum("Duplicate quiz question" in i for i in issues) == 2

    cleaned = clean_course_structure(course)
    assert [m.title for m in cleaned.modules] == ["Pricing basics", "Competition"]
    assert [l.title for l in cleaned.modules[0].lessons] == ["Cost plus"]
    assert len(cleaned.modules[0].quiz.questions) == 1
    assert len(cleaned.modules[1].lessons[0].quiz.questions) == 1
    # original untouched
    assert len(course.modules) == 3
    assert find_duplicates(cleaned) == []
