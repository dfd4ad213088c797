import logging
import os
from typing import List, Literal, Optional

from fastapi import (
    FastAPI,
    UploadFile,
    File,
    Form,
    Query,
    HTTPException,
    Request,
)

from korsify.core.config import settings
from korsify.models.schemas import (
    CourseCreateRequest,
    CourseDocumentsRequest,
    CourseResponse,
    CourseUpdateRequest,
    DocumentResponse,
    EnrollRequest,
    EnrollmentResponse,
    GenerateCourseRequest,
    GenerateCourseResponse,
    JobStatusResponse,
    LessonResponse,
    LessonUpdateRequest,
    LimitsResponse,
    ModuleResponse,
    QuizAttemptRequest,
    QuizAttemptResponse,
    QuizResponse,
    SourceReferenceResponse,
)
from korsify.documents.duplicate_check import content_hash, get_existing_document
from korsify.documents.extractor import ALLOWED_EXTENSIONS, file_extension, is_supported
from korsify.generation.dispatcher import get_dispatcher
from korsify.generation.jobs import JOBS, Job
from korsify.guardrails.citations import prune_source_references
from korsify.guardrails.errors import JobAdmissionError, as_http_500
from korsify.guardrails.rate_limit import SimpleRateLimiter
from korsify.learning.progress import LearningError, complete_lesson, enroll, submit_quiz_attempt
from korsify.observability.log_config import configure_logging
from korsify.observability.middleware import RequestTimingMiddleware, get_request_id
from korsify.storage.store import STORE, Course, Document, Enrollment, Lesson

logger = logging.getLogger(__name__)


# -------------------------
# App setup
# -------------------------

configure_logging()

app = FastAPI(title="Korsify")
app.add_middleware(RequestTimingMiddleware)


RATE_LIMIT_REQUESTS = 20
RATE_LIMIT_WINDOW_SECONDS = 60
rate_limiter = SimpleRateLimiter(max_requests=RATE_LIMIT_REQUESTS, window_seconds=RATE_LIMIT_WINDOW_SECONDS)

UPLOAD_ROOT = os.path.join(settings.data_dir, "uploads")
os.makedirs(UPLOAD_ROOT, exist_ok=True)


def _document_response(doc: Document, duplicate: bool = False) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        file_name=doc.file_name,
        file_size=doc.file_size,
        file_type=doc.file_type,
        status=doc.status,
        created_at=doc.created_at,
        duplicate=duplicate,
    )


def _lesson_response(l: Lesson) -> LessonResponse:
    return LessonResponse(
        id=l.id,
        title=l.title,
        content=l.content,
        order_index=l.order_index,
        estimated_duration=l.estimated_duration,
        source_references=[SourceReferenceResponse(**vars(ref)) for ref in l.source_references],
    )


def _course_response(course: Course) -> CourseResponse:
    """Assemble the course tree (modules -> lessons, quizzes) in order."""
    modules: List[ModuleResponse] = []
    for m in STORE.get_modules(course.id):
        lessons = [_lesson_response(l) for l in STORE.get_lessons(m.id)]
        quizzes = [QuizResponse(**vars(q)) for q in STORE.get_quizzes(m.id)]
        modules.append(
            ModuleResponse(
                id=m.id,
                title=m.title,
                description=m.description,
                order_index=m.order_index,
                lessons=lessons,
                quizzes=quizzes,
            )
        )
    return CourseResponse(
        id=course.id,
        title=course.title,
        description=course.description,
        creator_id=course.creator_id,
        status=course.status,
        language=course.language,
        difficulty_level=course.difficulty_level,
        modules=modules,
    )


def _job_response(job: Job) -> JobStatusResponse:
    failed = job.status == "failed"
    return JobStatusResponse(
        job_id=job.job_id,
        course_id=job.course_id,
        phase=job.phase,
        progress=job.progress,
        status=job.status,
        error=job.error if failed else None,
        error_kind=job.error_kind if failed else None,
        result=job.result or None,
    )


def _enrollment_response(e: Enrollment) -> EnrollmentResponse:
    return EnrollmentResponse(
        id=e.id,
        learner_id=e.learner_id,
        course_id=e.course_id,
        progress=e.progress,
        completed_lesson_ids=e.completed_lesson_ids,
        current_lesson_id=e.current_lesson_id,
        completed_at=e.completed_at,
    )


# -------------------------
# Root
# -------------------------

@app.get("/")
def root():
    """Returns a minimal welcome payload with app name and docs URL."""
    return {"app": "Korsify", "docs": "/docs"}


@app.get("/health")
def health():
    """Returns 200 OK with status. Used by load balancers and probes to check if the API is up."""
    return {"status": "ok"}


# -------------------------
# Limits (for UI / clients)
# -------------------------

@app.get("/api/limits", response_model=LimitsResponse)
def limits():
    """Returns upload and generation limits so the UI can validate before submitting."""
    dispatcher = get_dispatcher()
    return LimitsResponse(
        max_file_kb=settings.max_file_kb,
        allowed_extensions=list(ALLOWED_EXTENSIONS),
        max_module_count=6,
        max_questions_per_quiz=10,
        max_concurrent_jobs=dispatcher.max_workers,
        max_queued_jobs=dispatcher.max_queued,
        job_timeout_seconds=dispatcher.job_timeout_seconds,
        poll_interval_seconds=settings.poll_interval_seconds,
        rate_limit_requests=RATE_LIMIT_REQUESTS,
        rate_limit_window_seconds=RATE_LIMIT_WINDOW_SECONDS,
    )


# -------------------------
# Documents
# -------------------------

@app.post("/api/documents", response_model=DocumentResponse)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    uploaded_by: Optional[str] = Form(None, alias="uploadedBy"),
):
    """Stores an uploaded PDF / DOCX / TXT / MD file. Identical content returns the existing document (duplicate=true). Text is extracted later, during document_analysis."""
    rate_limiter.check(request, bucket="upload")

    file_name = os.path.basename(file.filename or "")
    if not file_name:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if file_extension(file_name) == ".doc":
        raise HTTPException(status_code=400, detail="Legacy .doc files are not supported. Save the file as .docx and upload again.")
    if not is_supported(file_name):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(ALLOWED_EXTENSIONS)}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail=f"{file_name} is empty")
    if len(content) > settings.max_file_kb * 1024:
        raise HTTPException(
            status_code=400,
            detail=f"{file_name} exceeds the upload limit ({settings.max_file_kb} KB).",
        )

    digest = content_hash(content)
    existing = get_existing_document(digest, STORE)
    if existing is not None:
        return _document_response(existing, duplicate=True)

    out_path = os.path.join(UPLOAD_ROOT, f"{digest}{file_extension(file_name)}")
    with open(out_path, "wb") as out:
        out.write(content)

    doc = STORE.create_document(
        file_name=file_name,
        file_size=len(content),
        file_type=file_extension(file_name),
        storage_path=out_path,
        uploaded_by=uploaded_by,
        content_hash=digest,
    )
    logger.info("document_uploaded", extra={"document_id": doc.id, "file_size": doc.file_size})
    return _document_response(doc)


@app.get("/api/documents", response_model=List[DocumentResponse])
def list_documents(uploaded_by: Optional[str] = None):
    return [_document_response(d) for d in STORE.list_documents(uploaded_by)]


@app.get("/api/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: str):
    doc = STORE.get_document(document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return _document_response(doc)


# -------------------------
# Courses
# -------------------------

@app.post("/api/courses", response_model=CourseResponse)
def create_course(req: CourseCreateRequest):
    """Creates an empty draft course; generation fills it in."""
    course = STORE.create_course(
        title=req.title.strip(),
        description=req.description,
        creator_id=req.creator_id,
        language=req.language,
        target_audience=req.target_audience,
        content_focus=req.content_focus,
        difficulty_level=req.difficulty_level,
    )
    return _course_response(course)


@app.get("/api/courses/{course_id}", response_model=CourseResponse)
def get_course(course_id: str):
    course = STORE.get_course(course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return _course_response(course)


def _get_course_or_404(course_id: str) -> Course:
    course = STORE.get_course(course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def _generation_running(course_id: str) -> bool:
    return any(not j.is_terminal for j in JOBS.list(course_id=course_id))


@app.get("/api/courses", response_model=List[CourseResponse])
def list_courses(
    course_type: Literal["my", "published", "enrolled"] = Query("my", alias="type"),
    user_id: Optional[str] = Query(None, alias="userId"),
):
    """Lists a creator's courses (type=my), published courses, or the courses a learner is enrolled in (type=enrolled). Newest first."""
    if course_type == "published":
        courses = STORE.list_courses(status="published")
    elif not user_id:
        raise HTTPException(status_code=400, detail="userId is required")
    elif course_type == "my":
        courses = STORE.list_courses(creator_id=user_id)
    else:
        enrolled = [STORE.get_course(e.course_id) for e in STORE.list_enrollments(user_id)]
        courses = [c for c in enrolled if c is not None]
    return [_course_response(c) for c in courses]


@app.patch("/api/courses/{course_id}", response_model=CourseResponse)
def update_course(course_id: str, req: CourseUpdateRequest):
    """Edits course metadata or publishes it. Publishing is refused while generation is still writing the course."""
    _get_course_or_404(course_id)
    fields = req.model_dump(exclude_unset=True)
    if fields.get("status") == "published" and _generation_running(course_id):
        raise HTTPException(status_code=409, detail="Course is still being generated")
    if fields.get("title") is not None:
        fields["title"] = fields["title"].strip()
        if not fields["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be blank")
    course = STORE.update_course(course_id, **{k: v for k, v in fields.items() if v is not None})
    return _course_response(course)


@app.delete("/api/courses/{course_id}")
def delete_course(course_id: str):
    _get_course_or_404(course_id)
    if _generation_running(course_id):
        raise HTTPException(status_code=409, detail="Course is still being generated")
    STORE.delete_course(course_id)
    logger.info("course_deleted", extra={"course_id": course_id})
    return {"message": "Course deleted successfully"}


@app.get("/api/courses/{course_id}/documents", response_model=List[DocumentResponse])
def course_documents(course_id: str):
    _get_course_or_404(course_id)
    return [_document_response(d) for d in STORE.get_course_documents(course_id)]


@app.post("/api/courses/{course_id}/documents", response_model=List[DocumentResponse])
def attach_course_documents(course_id: str, req: CourseDocumentsRequest):
    """Links uploaded documents to a course so the editor can offer them for the next generation run."""
    _get_course_or_404(course_id)
    if not req.document_ids:
        raise HTTPException(status_code=400, detail="Document IDs are required")
    try:
        docs = STORE.attach_documents(course_id, req.document_ids)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Document not found: {e.args[0]}")
    return [_document_response(d) for d in docs]


@app.delete("/api/courses/{course_id}/documents/{document_id}")
def detach_course_document(course_id: str, document_id: str):
    _get_course_or_404(course_id)
    if not STORE.detach_document(course_id, document_id):
        raise HTTPException(status_code=404, detail="Document is not linked to this course")
    return {"message": "Document removed from course"}


# -------------------------
# Lessons (creator edits)
# -------------------------

@app.get("/api/modules/{module_id}/lessons", response_model=List[LessonResponse])
def module_lessons(module_id: str):
    return [_lesson_response(l) for l in STORE.get_lessons(module_id)]


@app.patch("/api/lessons/{lesson_id}", response_model=LessonResponse)
def update_lesson(lesson_id: str, req: LessonUpdateRequest):
    """Edits a generated lesson. Source references whose [n] marker was removed from the content are dropped."""
    lesson = STORE.get_lesson(lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    fields = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    if "content" in fields:
        fields["source_references"] = prune_source_references(lesson.source_references, fields["content"])
    return _lesson_response(STORE.update_lesson(lesson_id, **fields))


# -------------------------
# Async course generation
# -------------------------

@app.post("/api/courses/generate-async", response_model=GenerateCourseResponse)
def generate_course_async(req: GenerateCourseRequest, request: Request):
    """Validates the request, creates a generation job and returns its id immediately. Client polls GET /api/processing-jobs/{jobId} until completed or failed.
    Nothing is created when validation fails or the worker pool is at capacity."""
    rate_limiter.check(request, bucket="generate")

    if not req.document_ids:
        raise HTTPException(status_code=400, detail="Course ID and document IDs are required")
    if STORE.get_course(req.course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    missing = [d for d in req.document_ids if STORE.get_document(d) is None]
    if missing:
        raise HTTPException(status_code=404, detail=f"Document not found: {missing[0]}")

    try:
        job = get_dispatcher().submit(
            course_id=req.course_id,
            document_ids=list(dict.fromkeys(req.document_ids)),
            options=req.options.model_dump(by_alias=True),
        )
    except JobAdmissionError as e:
        raise HTTPException(status_code=503, detail=str(e), headers={"Retry-After": "30"})
    except Exception as e:
        raise as_http_500(e, get_request_id(request))

    return GenerateCourseResponse(job_id=job.job_id, status="processing")


# -------------------------
# Job Status
# -------------------------

@app.get(
    "/api/processing-jobs/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
def job_status(job_id: str):
    """Returns phase, progress and status of a generation job, plus error/errorKind once failed. Pure read."""
    job = JOBS.snapshot(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@app.get(
    "/api/courses/{course_id}/processing-jobs",
    response_model=List[JobStatusResponse],
    response_model_exclude_none=True,
)
def course_jobs(course_id: str):
    """Generation history of a course, oldest first."""
    if STORE.get_course(course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return [_job_response(j) for j in JOBS.list(course_id=course_id)]


# -------------------------
# Learners
# -------------------------

@app.post("/api/courses/{course_id}/enroll", response_model=EnrollmentResponse)
def enroll_in_course(course_id: str, req: EnrollRequest):
    try:
        enrollment = enroll(STORE, course_id, req.learner_id)
    except LearningError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _enrollment_response(enrollment)


@app.get("/api/enrollments", response_model=List[EnrollmentResponse])
def list_enrollments(learner_id: str = Query(..., alias="learnerId")):
    return [_enrollment_response(e) for e in STORE.list_enrollments(learner_id)]


@app.post("/api/enrollments/{enrollment_id}/lessons/{lesson_id}/complete", response_model=EnrollmentResponse)
def mark_lesson_complete(enrollment_id: str, lesson_id: str):
    try:
        enrollment = complete_lesson(STORE, enrollment_id, lesson_id)
    except LearningError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _enrollment_response(enrollment)


@app.post("/api/quizzes/{quiz_id}/attempts", response_model=QuizAttemptResponse)
def attempt_quiz(quiz_id: str, req: QuizAttemptRequest):
    try:
        attempt, grade = submit_quiz_attempt(STORE, quiz_id, req.learner_id, req.answers)
    except LearningError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return QuizAttemptResponse(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        score=attempt.score,
        passed=attempt.passed,
        correct_count=grade.correct_count,
        total_questions=grade.total_questions,
        attempt_number=attempt.attempt_number,
    )
