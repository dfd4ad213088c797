"""Learner-side operations: enrollment, lesson completion progress and quiz grading."""
import logging
import time
from dataclasses import dataclass
from typing import Dict, List

from korsify.storage.store import CourseStore, Enrollment, Quiz, QuizAttempt

logger = logging.getLogger(__name__)


class LearningError(Exception):
    """Base for learner-operation failures; `status_code` is the HTTP status the API maps it to."""

    status_code = 400


class NotFoundError(LearningError):
    status_code = 404


class AttemptLimitError(LearningError):
    status_code = 409


@dataclass
class GradeResult:
    score: int
    correct_count: int
    total_questions: int


def enroll(store: CourseStore, course_id: str, learner_id: str) -> Enrollment:
    """Enroll a learner; enrolling twice returns the existing enrollment."""
    if store.get_course(course_id) is None:
        raise NotFoundError("Course not found")
    existing = store.find_enrollment(learner_id, course_id)
    if existing is not None:
        return existing
    enrollment = store.create_enrollment(learner_id, course_id)
    logger.info("learner_enrolled", extra={"course_id": course_id, "learner_id": learner_id})
    return enrollment


def complete_lesson(store: CourseStore, enrollment_id: str, lesson_id: str) -> Enrollment:
    """Mark a lesson done and recompute progress as completed / total lessons x 100. Completion time is set when progress reaches 100."""
    enrollment = store.get_enrollment(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found")
    course_lessons = store.get_course_lessons(enrollment.course_id)
    lesson_ids = [l.id for l in course_lessons]
    if lesson_id not in lesson_ids:
        raise NotFoundError("Lesson not found in this course")

    done: List[str] = list(enrollment.completed_lesson_ids)
    if lesson_id not in done:
        done.append(lesson_id)
    progress = round(100.0 * len(done) / len(lesson_ids), 2)

    lesson = next(l for l in course_lessons if l.id == lesson_id)
    fields = {
        "completed_lesson_ids": done,
        "progress": progress,
        "current_lesson_id": lesson_id,
        "current_module_id": lesson.module_id,
    }
    if progress >= 100 and enrollment.completed_at is None:
        fields["completed_at"] = time.time()
    return store.update_enrollment(enrollment_id, **fields)


def _normalize(answer: str) -> str:
    return " ".join((answer or "").split()).lower()


def grade_quiz(quiz: Quiz, answers: Dict[str, str]) -> GradeResult:
    """Score answers keyed by question index. Comparison is case- and whitespace-insensitive; unanswered questions count as wrong."""
    total = len(quiz.questions)
    correct = 0
    for idx, q in enumerate(quiz.questions):
        given = answers.get(str(idx))
        expected = q.get("correctAnswer", "")
        if given is not None and _normalize(given) == _normalize(expected):
            correct += 1
    score = round(100 * correct / total) if total else 0
    return GradeResult(score=score, correct_count=correct, total_questions=total)


def submit_quiz_attempt(store: CourseStore, quiz_id: str, learner_id: str, answers: Dict[str, str]) -> tuple[QuizAttempt, GradeResult]:
    quiz = store.get_quiz(quiz_id)
    if quiz is None:
        raise NotFoundError("Quiz not found")
    previous = store.get_quiz_attempts(quiz_id, learner_id)
    if len(previous) >= quiz.max_attempts:
        raise AttemptLimitError(f"Maximum attempts ({quiz.max_attempts}) reached")

    grade = grade_quiz(quiz, answers)
    attempt = store.create_quiz_attempt(
        quiz_id=quiz_id,
        learner_id=learner_id,
        score=grade.score,
        passed=grade.score >= quiz.passing_score,
        answers=dict(answers),
        attempt_number=len(previous) + 1,
    )
    return attempt, grade
