"""Near-duplicate detection for generated titles and quiz questions."""
import logging
from typing import Iterable, List, Sequence, Tuple

from korsify.models.course import CourseStructure, QuizQuestion

logger = logging.getLogger(__name__)

DUPLICATE_THRESHOLD = 0.85


def levenshtein(a: str, b: str) -> int:
    """Edit distance between a and b (insert / delete / substitute, unit cost)."""
    if len(a) < len(b):
        a, b = b, a
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity in [0, 1]: 1 - distance / length of the longer string."""
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    if s1 == s2:
        return 1.0
    longer = max(len(s1), len(s2))
    return (longer - levenshtein(s1, s2)) / longer


def is_duplicate(text: str, existing: Iterable[str], threshold: float = DUPLICATE_THRESHOLD) -> bool:
    for other in existing:
        if similarity(text, other) >= threshold:
            return True
    return False


def unique_title(base: str, existing: Sequence[str]) -> str:
    """Append " (2)", " (3)", ... until the title differs (case-insensitively) from every existing one."""
    taken = {t.lower() for t in existing}
    title = base
    counter = 1
    while title.lower() in taken:
        counter += 1
        title = f"{base} ({counter})"
    return title


def dedupe_questions(questions: List[QuizQuestion], threshold: float = DUPLICATE_THRESHOLD) -> List[QuizQuestion]:
    kept: List[QuizQuestion] = []
    texts: List[str] = []
    for q in questions:
        if is_duplicate(q.question, texts, threshold):
            logger.info("duplicate_question_removed", extra={"question_preview": q.question[:50]})
            continue
        kept.append(q)
        texts.append(q.question)
    return kept


def find_duplicates(course: CourseStructure) -> List[str]:
    """List human-readable duplicate issues (module titles, lesson titles within a module, quiz questions) without changing anything."""
    issues: List[str] = []
    module_titles: List[str] = []
    for module in course.modules:
        if is_duplicate(module.title, module_titles):
            issues.append(f'Duplicate module title: "{module.title}"')
        module_titles.append(module.title)

        lesson_titles: List[str] = []
        for lesson in module.lessons:
            if is_duplicate(lesson.title, lesson_titles):
                issues.append(f'Duplicate lesson title in module "{module.title}": "{lesson.title}"')
            lesson_titles.append(lesson.title)

        for quiz in _quizzes_of(module):
            questions: List[str] = []
            for q in quiz.questions:
                if is_duplicate(q.question, questions):
                    issues.append(f'Duplicate quiz question in module "{module.title}": "{q.question}"')
                questions.append(q.question)
    return issues


def _quizzes_of(module):
    quizzes = [module.quiz] if module.quiz else []
    quizzes.extend(l.quiz for l in module.lessons if l.quiz)
    return quizzes


def _dedupe_by_title(items: list) -> Tuple[list, int]:
    kept: list = []
    titles: List[str] = []
    for item in items:
        if is_duplicate(item.title, titles):
            logger.info("duplicate_title_removed", extra={"title": item.title})
            continue
        kept.append(item)
        titles.append(item.title)
    return kept, len(items) - len(kept)


def clean_course_structure(course: CourseStructure) -> CourseStructure:
    """Return a copy with near-duplicate modules, lessons (per module) and quiz questions removed, keeping first occurrences."""
    cleaned = course.model_copy(deep=True)
    cleaned.modules, _ = _dedupe_by_title(cleaned.modules)
    for module in cleaned.modules:
        module.lessons, _ = _dedupe_by_title(module.lessons)
        for quiz in _quizzes_of(module):
            quiz.questions = dedupe_questions(quiz.questions)
    return cleaned
