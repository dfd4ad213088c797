from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Dict, Any

from korsify.models.course import DifficultyLevel, GenerationOptions


class ApiModel(BaseModel):
    """Base for request/response bodies: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True)


class DocumentResponse(ApiModel):
    """Response for POST/GET /api/documents. Why available: Creators pick documentIds from these before starting generation."""

    id: str
    file_name: str = Field(..., alias="fileName")
    file_size: int = Field(..., ge=0, alias="fileSize")
    file_type: str = Field(..., alias="fileType")
    status: str
    created_at: float = Field(..., alias="createdAt")
    duplicate: bool = Field(False, description="True when identical content was already uploaded and the existing document is returned")


class CourseCreateRequest(ApiModel):
    """Request body for POST /api/courses. Why available: Generation fills an existing (draft) course, so the course is created first."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    creator_id: Optional[str] = Field(None, alias="creatorId")
    language: str = "en"
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    content_focus: Optional[str] = Field(None, alias="contentFocus")
    difficulty_level: DifficultyLevel = Field("beginner", alias="difficultyLevel")


class CourseUpdateRequest(ApiModel):
    """Request body for PATCH /api/courses/{id}; only the fields sent are changed."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[Literal["draft", "published"]] = None
    language: Optional[str] = None
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    content_focus: Optional[str] = Field(None, alias="contentFocus")
    difficulty_level: Optional[DifficultyLevel] = Field(None, alias="difficultyLevel")


class CourseDocumentsRequest(ApiModel):
    document_ids: List[str] = Field(default_factory=list, alias="documentIds")


class LessonUpdateRequest(ApiModel):
    """Request body for PATCH /api/lessons/{id}: creators edit generated lessons."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    estimated_duration: Optional[int] = Field(None, ge=0, alias="estimatedDuration")


class SourceReferenceResponse(ApiModel):
    """A citation target: excerpt of a source document linked from an [n] marker in lesson content."""

    id: str
    document_id: str = Field(..., alias="documentId")
    document_name: str = Field(..., alias="documentName")
    text: str
    context: str
    start_offset: int = Field(..., alias="startOffset")
    end_offset: int = Field(..., alias="endOffset")
    page_number: Optional[int] = Field(None, alias="pageNumber")


class QuizResponse(ApiModel):
    id: str
    module_id: str = Field(..., alias="moduleId")
    lesson_id: Optional[str] = Field(None, alias="lessonId")
    title: str
    questions: List[Dict[str, Any]] = Field(default_factory=list)
    passing_score: int = Field(70, alias="passingScore")
    max_attempts: int = Field(3, alias="maxAttempts")


class LessonResponse(ApiModel):
    id: str
    title: str
    content: str
    order_index: int = Field(..., alias="orderIndex")
    estimated_duration: int = Field(..., alias="estimatedDuration")
    source_references: List[SourceReferenceResponse] = Field(default_factory=list, alias="sourceReferences")


class ModuleResponse(ApiModel):
    id: str
    title: str
    description: str
    order_index: int = Field(..., alias="orderIndex")
    lessons: List[LessonResponse] = Field(default_factory=list)
    quizzes: List[QuizResponse] = Field(default_factory=list)


class CourseResponse(ApiModel):
    """Course with its ordered modules, lessons and quizzes. Why available: What the editor and the learner viewer render."""

    id: str
    title: str
    description: Optional[str] = None
    creator_id: Optional[str] = Field(None, alias="creatorId")
    status: str
    language: str
    difficulty_level: str = Field(..., alias="difficultyLevel")
    modules: List[ModuleResponse] = Field(default_factory=list)


class GenerateCourseRequest(ApiModel):
    """Request body for POST /api/courses/generate-async. An empty documentIds list is rejected with 400 before any job exists."""

    course_id: str = Field(..., min_length=1, alias="courseId")
    document_ids: List[str] = Field(default_factory=list, alias="documentIds")
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class GenerateCourseResponse(ApiModel):
    """Response for POST /api/courses/generate-async. Why available: Clients poll /api/processing-jobs/{jobId} until completed or failed."""

    job_id: str = Field(..., alias="jobId")
    status: str


class JobStatusResponse(ApiModel):
    """Response for GET /api/processing-jobs/{job_id}: phase, progress and status; error and errorKind only once failed."""

    job_id: str = Field(..., alias="jobId")
    course_id: str = Field(..., alias="courseId")
    phase: str
    progress: int = Field(..., ge=0, le=100)
    status: str
    error: Optional[str] = None
    error_kind: Optional[str] = Field(None, alias="errorKind")
    result: Optional[Dict[str, Any]] = None


class EnrollRequest(ApiModel):
    learner_id: str = Field(..., min_length=1, alias="learnerId")


class EnrollmentResponse(ApiModel):
    id: str
    learner_id: str = Field(..., alias="learnerId")
    course_id: str = Field(..., alias="courseId")
    progress: float = Field(..., ge=0, le=100)
    completed_lesson_ids: List[str] = Field(default_factory=list, alias="completedLessonIds")
    current_lesson_id: Optional[str] = Field(None, alias="currentLessonId")
    completed_at: Optional[float] = Field(None, alias="completedAt")


class QuizAttemptRequest(ApiModel):
    """Answers keyed by question index ("0", "1", ...)."""

    learner_id: str = Field(..., min_length=1, alias="learnerId")
    answers: Dict[str, str] = Field(default_factory=dict)


class QuizAttemptResponse(ApiModel):
    id: str
    quiz_id: str = Field(..., alias="quizId")
    score: int = Field(..., ge=0, le=100)
    passed: bool
    correct_count: int = Field(..., alias="correctCount")
    total_questions: int = Field(..., alias="totalQuestions")
    attempt_number: int = Field(..., alias="attemptNumber")


class LimitsResponse(ApiModel):
    """Response for GET /api/limits. Why available: Lets the UI enforce upload and option limits before submitting."""

    max_file_kb: int = Field(..., alias="maxFileKb")
    allowed_extensions: List[str] = Field(..., alias="allowedExtensions")
    max_module_count: int = Field(..., alias="maxModuleCount")
    max_questions_per_quiz: int = Field(..., alias="maxQuestionsPerQuiz")
    max_concurrent_jobs: int = Field(..., alias="maxConcurrentJobs")
    max_queued_jobs: int = Field(..., alias="maxQueuedJobs")
    job_timeout_seconds: float = Field(..., alias="jobTimeoutSeconds")
    poll_interval_seconds: float = Field(..., alias="pollIntervalSeconds")
    rate_limit_requests: int = Field(..., alias="rateLimitRequests")
    rate_limit_window_seconds: int = Field(..., alias="rateLimitWindowSeconds")
