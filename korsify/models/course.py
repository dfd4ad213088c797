"""Generation options and the JSON shapes the LLM must return (validated with pydantic; any violation fails the job)."""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DifficultyLevel = Literal["beginner", "intermediate", "advanced", "expert"]
QuizFrequency = Literal["module", "lesson"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerationOptions(_CamelModel):
    """Creator-chosen knobs for a generation run. Why available: Sent with POST /api/courses/generate-async and passed through to every prompt."""

    difficulty_level: DifficultyLevel = Field("intermediate", alias="difficultyLevel")
    module_count: int = Field(3, ge=1, le=6, alias="moduleCount")
    generate_quizzes: bool = Field(True, alias="generateQuizzes")
    quiz_frequency: QuizFrequency = Field("module", alias="quizFrequency")
    questions_per_quiz: int = Field(5, ge=1, le=10, alias="questionsPerQuiz")
    include_exercises: bool = Field(True, alias="includeExercises")
    include_examples: bool = Field(True, alias="includeExamples")
    language: str = Field("English", max_length=40)
    target_audience: str = Field("General learners", alias="targetAudience", max_length=200)
    content_focus: str = Field("Comprehensive understanding", alias="contentFocus", max_length=200)


class QuizQuestion(_CamelModel):
    question: str = Field(..., min_length=1)
    type: Literal["multiple_choice", "true_false", "short_answer"] = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_answer: str = Field(..., alias="correctAnswer", min_length=1)
    explanation: Optional[str] = None


class GeneratedQuiz(_CamelModel):
    title: str
    questions: List[QuizQuestion] = Field(default_factory=list)


class QuizQuestionList(_CamelModel):
    questions: List[QuizQuestion] = Field(default_factory=list)


class GeneratedLesson(_CamelModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    estimated_duration: int = Field(10, alias="estimatedDuration", ge=0)
    quiz: Optional[GeneratedQuiz] = None


class GeneratedModule(_CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    estimated_duration: Optional[int] = Field(None, alias="estimatedDuration")
    lessons: List[GeneratedLesson] = Field(default_factory=list)
    quiz: Optional[GeneratedQuiz] = None


class OutlineModule(_CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""


class CourseOutline(_CamelModel):
    """Lightweight first pass: course title/description and one entry per module to generate."""

    title: str = Field(..., min_length=1)
    description: str = ""
    modules: List[OutlineModule] = Field(..., min_length=1)


class CourseStructure(_CamelModel):
    title: str
    description: str = ""
    modules: List[GeneratedModule] = Field(default_factory=list)
