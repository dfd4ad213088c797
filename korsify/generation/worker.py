"""
Course generation worker: runs the five ordered phases for one job and persists the generated course.

Phase progress: document_analysis 10-30, content_analysis 35-50,
content_generation 55-85 (outline at 60, then one step per module),
validation 90-95, finalization 96-100.
"""
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from korsify.core.config import settings
from korsify.documents.extractor import extract_file, truncate_for_prompt
from korsify.generation.dedup import clean_course_structure, dedupe_questions, find_duplicates, is_duplicate, unique_title
from korsify.generation.generator import CourseGenerator, get_generator
from korsify.generation.jobs import JOBS, JobStore
from korsify.guardrails.citations import extract_source_references
from korsify.guardrails.errors import (
    INTERNAL,
    DocumentExtractionError,
    GenerationError,
    InvalidOutputError,
    JobTimeoutError,
)
from korsify.models.course import CourseStructure, GeneratedModule, GenerationOptions, QuizQuestion
from korsify.storage.store import STORE, CourseStore, Document

logger = logging.getLogger(__name__)

QUIZ_MAX_ATTEMPTS = 3
QUIZ_RETRY_DELAY_SECONDS = 2.0
PASSING_SCORE = 70
MAX_QUIZ_ATTEMPTS_PER_LEARNER = 3
TITLE_DUPLICATE_THRESHOLD = 0.9


@dataclass
class SourceText:
    """Extracted, prompt-ready text of all documents for one job."""

    text: str
    file_names: str
    primary: Document


class GenerationRun:
    """State for one job's pipeline run. The worker is the only writer of the job record."""

    def __init__(self, job_id: str, store: CourseStore, jobs: JobStore, generator: CourseGenerator):
        self.job_id = job_id
        self.store = store
        self.jobs = jobs
        self.generator = generator
        job = jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        self.course_id = job.course_id
        self.document_ids = list(job.document_ids)
        self.deadline = job.deadline
        self.options = GenerationOptions.model_validate(job.options)

    # -------------------------
    # Job bookkeeping
    # -------------------------

    def _check_deadline(self) -> None:
        if self.deadline is not None and time.time() >= self.deadline:
            raise JobTimeoutError("Job exceeded its deadline")

    def advance(self, phase: str, progress: int) -> None:
        self._check_deadline()
        self.jobs.update(self.job_id, lambda j: j.advance(phase, progress))
        logger.info("job_phase", extra={"job_id": self.job_id, "phase": phase, "progress": progress})

    # -------------------------
    # Phases
    # -------------------------

    def load_sources(self) -> SourceText:
        """Phase 1: extract (or reuse cached) text for every document."""
        parts: List[str] = []
        names: List[str] = []
        primary: Optional[Document] = None
        for doc_id in self.document_ids:
            doc = self.store.get_document(doc_id)
            if doc is None:
                raise DocumentExtractionError(f"Document not found: {doc_id}")
            text = doc.processed_content
            if not text:
                text = extract_file(doc.storage_path, doc.file_name)
                self.store.update_document_content(doc.id, text)
            primary = primary or doc
            names.append(doc.file_name)
            parts.append(f"### {doc.file_name}\n{text}" if len(self.document_ids) > 1 else text)
            self._check_deadline()

        combined = truncate_for_prompt("\n\n".join(parts), settings.max_document_chars)
        return SourceText(text=combined, file_names=", ".join(names), primary=primary)

    def generate(self, source: SourceText, analysis: str) -> CourseStructure:
        """Phase 3: outline first, then one module at a time."""
        self.advance("content_generation", 55)
        outline = self.generator.generate_outline(
            source.text, source.file_names, analysis, self.options, deadline=self.deadline
        )
        self.advance("content_generation", 60)

        modules: List[GeneratedModule] = []
        total = len(outline.modules)
        for i in range(total):
            modules.append(
                self.generator.generate_module(
                    source.text, source.file_names, outline, i, self.options, deadline=self.deadline
                )
            )
            self.advance("content_generation", round(60 + 20 * (i + 1) / total))

        return CourseStructure(title=outline.title, description=outline.description, modules=modules)

    def validate(self, course: CourseStructure) -> CourseStructure:
        """Phase 4: structural checks, then drop near-duplicate modules, lessons and questions."""
        if not course.title.strip():
            raise InvalidOutputError("Generated course has no title")
        if not course.modules:
            raise InvalidOutputError("No modules generated")
        for module in course.modules:
            if not module.lessons:
                raise InvalidOutputError(f'Module "{module.title}" has no lessons')

        issues = find_duplicates(course)
        if issues:
            logger.warning("duplicate_content_detected", extra={"job_id": self.job_id, "issues": issues})
        return clean_course_structure(course)

    def _quiz_questions(self, existing: List[QuizQuestion], content: str, label: str) -> List[QuizQuestion]:
        """Deduplicated questions for one quiz; regenerates up to QUIZ_MAX_ATTEMPTS times when none survive."""
        count = self.options.questions_per_quiz
        questions = dedupe_questions(existing)[:count]
        attempt = 0
        while not questions and attempt < QUIZ_MAX_ATTEMPTS:
            if attempt > 0:
                remaining = self.deadline - time.time() if self.deadline is not None else QUIZ_RETRY_DELAY_SECONDS
                time.sleep(max(0.0, min(QUIZ_RETRY_DELAY_SECONDS, remaining)))
                self._check_deadline()
            attempt += 1
            logger.info("quiz_generation_attempt", extra={"job_id": self.job_id, "quiz": label, "attempt": attempt})
            try:
                generated = self.generator.generate_quiz_questions(
                    content, count, self.options.difficulty_level, deadline=self.deadline
                )
            except InvalidOutputError:
                logger.warning("quiz_generation_invalid", extra={"job_id": self.job_id, "quiz": label, "attempt": attempt})
                generated = []
            questions = dedupe_questions(generated)[:count]
        if not questions:
            raise InvalidOutputError(f"Failed to generate quiz for {label} after {QUIZ_MAX_ATTEMPTS} attempts")
        return questions

    def _create_quiz(self, module_id: str, title: str, questions: List[QuizQuestion], lesson_id: Optional[str] = None) -> None:
        self.store.create_quiz(
            module_id=module_id,
            lesson_id=lesson_id,
            title=title,
            questions=[q.model_dump(by_alias=True) for q in questions],
            passing_score=PASSING_SCORE,
            max_attempts=MAX_QUIZ_ATTEMPTS_PER_LEARNER,
        )

    def finalize(self, course: CourseStructure, source: SourceText) -> Dict[str, int]:
        """Phase 5: write course, modules, lessons and quizzes. Modules are written one at a time and not rolled back on a later failure."""
        self.advance("finalization", 96)
        self.store.update_course(
            self.course_id,
            title=course.title,
            description=course.description,
            difficulty_level=self.options.difficulty_level,
            document_ids=list(self.document_ids),
        )

        counts = {"modulesCreated": 0, "lessonsCreated": 0, "quizzesCreated": 0}
        module_titles: List[str] = []
        quizzes_on = self.options.generate_quizzes
        per_lesson = self.options.quiz_frequency == "lesson"

        for m_idx, module in enumerate(course.modules):
            self._check_deadline()
            title = module.title.strip()
            if not title.startswith(f"Module {m_idx + 1}:"):
                title = f"Module {m_idx + 1}: {title}"
            if is_duplicate(title, module_titles, TITLE_DUPLICATE_THRESHOLD):
                title = unique_title(title, module_titles)
            module_titles.append(title)

            created_module = self.store.create_module(
                course_id=self.course_id,
                title=title,
                description=module.description or "",
                order_index=m_idx,
                estimated_duration=module.estimated_duration,
            )
            counts["modulesCreated"] += 1

            lesson_titles: List[str] = []
            for l_idx, lesson in enumerate(module.lessons):
                l_title = lesson.title.strip()
                prefix = f"Lesson {m_idx + 1}.{l_idx + 1}:"
                if not l_title.startswith(prefix):
                    l_title = f"{prefix} {l_title}"
                if is_duplicate(l_title, lesson_titles, TITLE_DUPLICATE_THRESHOLD):
                    l_title = unique_title(l_title, lesson_titles)
                lesson_titles.append(l_title)

                created_lesson = self.store.create_lesson(
                    module_id=created_module.id,
                    title=l_title,
                    content=lesson.content,
                    order_index=l_idx,
                    estimated_duration=lesson.estimated_duration or 10,
                    source_references=extract_source_references(
                        lesson.content, source.primary.id, source.primary.file_name
                    ),
                )
                counts["lessonsCreated"] += 1

                if quizzes_on and per_lesson:
                    existing = lesson.quiz.questions if lesson.quiz else []
                    questions = self._quiz_questions(existing, lesson.content, f"lesson {l_title}")
                    self._create_quiz(created_module.id, f"{l_title} - Quiz", questions, lesson_id=created_lesson.id)
                    counts["quizzesCreated"] += 1

            if quizzes_on and not per_lesson:
                existing = module.quiz.questions if module.quiz else []
                content = "\n\n".join(l.content for l in module.lessons)
                questions = self._quiz_questions(existing, content, f"module {title}")
                self._create_quiz(created_module.id, f"{title} - Module Quiz", questions)
                counts["quizzesCreated"] += 1

            progress = 96 + (3 * (m_idx + 1)) // len(course.modules)
            self.advance("finalization", min(99, progress))

        return counts

    def run(self) -> None:
        self.jobs.update(self.job_id, lambda j: j.start())
        self.store.update_course(self.course_id, status="processing")

        self.advance("document_analysis", 10)
        source = self.load_sources()
        self.advance("document_analysis", 30)

        self.advance("content_analysis", 35)
        analysis = self.generator.analyze_document(source.text, source.file_names, deadline=self.deadline)
        self.advance("content_analysis", 50)

        course = self.generate(source, analysis)
        self.advance("content_generation", 85)

        self.advance("validation", 90)
        course = self.validate(course)
        self.advance("validation", 95)

        counts = self.finalize(course, source)
        result = {"courseId": self.course_id, **counts}
        self.jobs.update(self.job_id, lambda j: j.complete(result))
        logger.info("job_completed", extra={"job_id": self.job_id, **counts})


def run_generation_job(
    job_id: str,
    store: CourseStore = STORE,
    jobs: JobStore = JOBS,
    generator: Optional[CourseGenerator] = None,
) -> None:
    """Run one generation job to a terminal status. Never raises: every failure is recorded on the job (error + error_kind).
    Why available: Single entry point used by the dispatcher's pool threads."""
    try:
        run = GenerationRun(job_id, store, jobs, generator or get_generator())
    except KeyError:
        logger.error("job_missing", extra={"job_id": job_id})
        return
    except Exception as e:
        logger.exception("job_setup_failed", extra={"job_id": job_id})
        jobs.update(job_id, lambda j: j.fail(str(e), INTERNAL))
        return

    try:
        run.run()
    except GenerationError as e:
        logger.warning("job_failed", extra={"job_id": job_id, "error_kind": e.kind, "error": str(e)})
        jobs.update(job_id, lambda j: j.fail(str(e), e.kind))
    except Exception as e:
        logger.exception("job_crashed", extra={"job_id": job_id})
        jobs.update(job_id, lambda j: j.fail(str(e) or type(e).__name__, INTERNAL))
    finally:
        if store.get_course(run.course_id) is not None:
            store.update_course(run.course_id, status="draft")
