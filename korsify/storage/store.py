"""
In-memory persistence for documents, courses, modules, lessons, quizzes and learner records.

The database is an external collaborator; this store keeps the same records
and create/update operations so the API and the generation worker have one
place to write to. In production: Postgres via an ORM.
"""
import copy
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Document:
    """An uploaded source file. processed_content caches extracted text after the first generation run."""

    id: str
    file_name: str
    file_size: int
    file_type: str
    storage_path: str
    uploaded_by: Optional[str]
    content_hash: str
    processed_content: Optional[str] = None
    status: str = "completed"
    created_at: float = field(default_factory=time.time)


@dataclass
class Course:
    id: str
    title: str
    description: Optional[str] = None
    creator_id: Optional[str] = None
    status: str = "draft"  # draft | processing | published
    language: str = "en"
    target_audience: Optional[str] = None
    content_focus: Optional[str] = None
    difficulty_level: str = "beginner"
    document_ids: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class Module:
    id: str
    course_id: str
    title: str
    description: str
    order_index: int
    estimated_duration: Optional[int] = None


@dataclass
class SourceReference:
    """Link from a citation marker [n] in lesson content to an excerpt of the source document."""

    id: str
    document_id: str
    document_name: str
    text: str
    context: str
    start_offset: int
    end_offset: int
    page_number: Optional[int] = None


@dataclass
class Lesson:
    id: str
    module_id: str
    title: str
    content: str
    order_index: int
    estimated_duration: int = 10
    source_references: List[SourceReference] = field(default_factory=list)


@dataclass
class Quiz:
    id: str
    module_id: str
    title: str
    questions: List[Dict[str, Any]]
    lesson_id: Optional[str] = None
    passing_score: int = 70
    max_attempts: int = 3


@dataclass
class Enrollment:
    id: str
    learner_id: str
    course_id: str
    progress: float = 0.0
    completed_lesson_ids: List[str] = field(default_factory=list)
    current_module_id: Optional[str] = None
    current_lesson_id: Optional[str] = None
    enrolled_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None


@dataclass
class QuizAttempt:
    id: str
    quiz_id: str
    learner_id: str
    score: int
    passed: bool
    answers: Dict[str, str]
    attempt_number: int
    completed_at: float = field(default_factory=time.time)


class CourseStore:
    """Thread-safe record store. Returned objects are copies; use the update_* methods to change state."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.clear()

    def clear(self) -> None:
        with self._lock:
            self._documents: Dict[str, Document] = {}
            self._courses: Dict[str, Course] = {}
            self._modules: Dict[str, Module] = {}
            self._lessons: Dict[str, Lesson] = {}
            self._quizzes: Dict[str, Quiz] = {}
            self._enrollments: Dict[str, Enrollment] = {}
            self._attempts: Dict[str, QuizAttempt] = {}

    # -------------------------
    # Documents
    # -------------------------

    def create_document(self, **fields) -> Document:
        doc = Document(id=_new_id(), **fields)
        with self._lock:
            self._documents[doc.id] = doc
        return copy.deepcopy(doc)

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._documents.get(document_id)
            return copy.deepcopy(doc) if doc else None

    def find_document_by_hash(self, content_hash: str) -> Optional[Document]:
        with self._lock:
            for doc in self._documents.values():
                if doc.content_hash == content_hash:
                    return copy.deepcopy(doc)
        return None

    def list_documents(self, uploaded_by: Optional[str] = None) -> List[Document]:
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._documents.values()]
        if uploaded_by:
            docs = [d for d in docs if d.uploaded_by == uploaded_by]
        return sorted(docs, key=lambda d: d.created_at)

    def update_document_content(self, document_id: str, content: str) -> None:
        with self._lock:
            self._documents[document_id].processed_content = content

    # -------------------------
    # Courses
    # -------------------------

    def create_course(self, title: str, **fields) -> Course:
        course = Course(id=_new_id(), title=title, **fields)
        with self._lock:
            self._courses[course.id] = course
        return copy.deepcopy(course)

    def get_course(self, course_id: str) -> Optional[Course]:
        with self._lock:
            course = self._courses.get(course_id)
            return copy.deepcopy(course) if course else None

    def update_course(self, course_id: str, **fields) -> Course:
        with self._lock:
            course = self._courses[course_id]
            for k, v in fields.items():
                if not hasattr(course, k):
                    raise AttributeError(f"Course has no field {k}")
                setattr(course, k, v)
            course.updated_at = time.time()
            return copy.deepcopy(course)

    def list_courses(self, creator_id: Optional[str] = None, status: Optional[str] = None) -> List[Course]:
        """Newest first, optionally filtered by creator and/or status."""
        with self._lock:
            courses = [copy.deepcopy(c) for c in self._courses.values()]
        if creator_id is not None:
            courses = [c for c in courses if c.creator_id == creator_id]
        if status is not None:
            courses = [c for c in courses if c.status == status]
        return sorted(courses, key=lambda c: c.created_at, reverse=True)

    def delete_course(self, course_id: str) -> None:
        """Remove a course with its modules, lessons, quizzes, enrollments and quiz attempts. Documents are kept."""
        with self._lock:
            del self._courses[course_id]
            module_ids = {m.id for m in self._modules.values() if m.course_id == course_id}
            quiz_ids = {q.id for q in self._quizzes.values() if q.module_id in module_ids}
            self._modules = {k: v for k, v in self._modules.items() if k not in module_ids}
            self._lessons = {k: v for k, v in self._lessons.items() if v.module_id not in module_ids}
            self._quizzes = {k: v for k, v in self._quizzes.items() if k not in quiz_ids}
            self._enrollments = {k: v for k, v in self._enrollments.items() if v.course_id != course_id}
            self._attempts = {k: v for k, v in self._attempts.items() if v.quiz_id not in quiz_ids}

    def attach_documents(self, course_id: str, document_ids: List[str]) -> List[Document]:
        """Link documents to a course (already linked ids are skipped); returns the course's documents."""
        with self._lock:
            course = self._courses[course_id]
            for doc_id in document_ids:
                if doc_id not in self._documents:
                    raise KeyError(doc_id)
            for doc_id in document_ids:
                if doc_id not in course.document_ids:
                    course.document_ids.append(doc_id)
            course.updated_at = time.time()
        return self.get_course_documents(course_id)

    def detach_document(self, course_id: str, document_id: str) -> bool:
        """Unlink a document from a course. Returns False when it was not linked."""
        with self._lock:
            course = self._courses[course_id]
            if document_id not in course.document_ids:
                return False
            course.document_ids.remove(document_id)
            course.updated_at = time.time()
            return True

    def get_course_documents(self, course_id: str) -> List[Document]:
        with self._lock:
            course = self._courses[course_id]
            return [copy.deepcopy(self._documents[d]) for d in course.document_ids if d in self._documents]

    def create_module(self, course_id: str, title: str, description: str, order_index: int, estimated_duration: Optional[int] = None) -> Module:
        module = Module(
            id=_new_id(),
            course_id=course_id,
            title=title,
            description=description,
            order_index=order_index,
            estimated_duration=estimated_duration,
        )
        with self._lock:
            self._modules[module.id] = module
        return copy.deepcopy(module)

    def get_modules(self, course_id: str) -> List[Module]:
        with self._lock:
            mods = [copy.deepcopy(m) for m in self._modules.values() if m.course_id == course_id]
        return sorted(mods, key=lambda m: m.order_index)

    def create_lesson(self, module_id: str, title: str, content: str, order_index: int, estimated_duration: int = 10, source_references: Optional[List[SourceReference]] = None) -> Lesson:
        lesson = Lesson(
            id=_new_id(),
            module_id=module_id,
            title=title,
            content=content,
            order_index=order_index,
            estimated_duration=estimated_duration,
            source_references=list(source_references or []),
        )
        with self._lock:
            self._lessons[lesson.id] = lesson
        return copy.deepcopy(lesson)

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self._lock:
            lesson = self._lessons.get(lesson_id)
            return copy.deepcopy(lesson) if lesson else None

    def get_lessons(self, module_id: str) -> List[Lesson]:
        with self._lock:
            lessons = [copy.deepcopy(l) for l in self._lessons.values() if l.module_id == module_id]
        return sorted(lessons, key=lambda l: l.order_index)

    def update_lesson(self, lesson_id: str, **fields) -> Lesson:
        with self._lock:
            lesson = self._lessons[lesson_id]
            for k, v in fields.items():
                if not hasattr(lesson, k):
                    raise AttributeError(f"Lesson has no field {k}")
                setattr(lesson, k, v)
            return copy.deepcopy(lesson)

    def get_course_lessons(self, course_id: str) -> List[Lesson]:
        out: List[Lesson] = []
        for m in self.get_modules(course_id):
            out.extend(self.get_lessons(m.id))
        return out

    def create_quiz(self, module_id: str, title: str, questions: List[Dict[str, Any]], lesson_id: Optional[str] = None, passing_score: int = 70, max_attempts: int = 3) -> Quiz:
        quiz = Quiz(
            id=_new_id(),
            module_id=module_id,
            lesson_id=lesson_id,
            title=title,
            questions=copy.deepcopy(questions),
            passing_score=passing_score,
            max_attempts=max_attempts,
        )
        with self._lock:
            self._quizzes[quiz.id] = quiz
        return copy.deepcopy(quiz)

    def get_quiz(self, quiz_id: str) -> Optional[Quiz]:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            return copy.deepcopy(quiz) if quiz else None

    def get_quizzes(self, module_id: str) -> List[Quiz]:
        with self._lock:
            return [copy.deepcopy(q) for q in self._quizzes.values() if q.module_id == module_id]

    # -------------------------
    # Learners
    # -------------------------

    def find_enrollment(self, learner_id: str, course_id: str) -> Optional[Enrollment]:
        with self._lock:
            for e in self._enrollments.values():
                if e.learner_id == learner_id and e.course_id == course_id:
                    return copy.deepcopy(e)
        return None

    def create_enrollment(self, learner_id: str, course_id: str) -> Enrollment:
        enrollment = Enrollment(id=_new_id(), learner_id=learner_id, course_id=course_id)
        with self._lock:
            self._enrollments[enrollment.id] = enrollment
        return copy.deepcopy(enrollment)

    def list_enrollments(self, learner_id: str) -> List[Enrollment]:
        with self._lock:
            out = [copy.deepcopy(e) for e in self._enrollments.values() if e.learner_id == learner_id]
        return sorted(out, key=lambda e: e.enrolled_at)

    def get_enrollment(self, enrollment_id: str) -> Optional[Enrollment]:
        with self._lock:
            e = self._enrollments.get(enrollment_id)
            return copy.deepcopy(e) if e else None

    def update_enrollment(self, enrollment_id: str, **fields) -> Enrollment:
        with self._lock:
            e = self._enrollments[enrollment_id]
            for k, v in fields.items():
                setattr(e, k, v)
            return copy.deepcopy(e)

    def get_quiz_attempts(self, quiz_id: str, learner_id: str) -> List[QuizAttempt]:
        with self._lock:
            attempts = [copy.deepcopy(a) for a in self._attempts.values() if a.quiz_id == quiz_id and a.learner_id == learner_id]
        return sorted(attempts, key=lambda a: a.attempt_number)

    def create_quiz_attempt(self, **fields) -> QuizAttempt:
        attempt = QuizAttempt(id=_new_id(), **fields)
        with self._lock:
            self._attempts[attempt.id] = attempt
        return copy.deepcopy(attempt)


STORE = CourseStore()
