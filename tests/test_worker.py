"""Generation pipeline tests: run_generation_job against a fake OpenAI client and in-memory stores."""
import io
import json
import time
import zipfile

import httpx
import openai
import pytest

from conftest import FakeOpenAI, default_responses, module_payload, outline_payload
from korsify.generation import worker
from korsify.generation.generator import CourseGenerator
from korsify.generation.jobs import PHASES, JobStore, phase_index
from korsify.generation.worker import run_generation_job

OPTIONS = {
    "difficultyLevel": "intermediate",
    "moduleCount": 3,
    "generateQuizzes": True,
    "quizFrequency": "module",
    "questionsPerQuiz": 5,
}


class RecordingJobStore(JobStore):
    """Records (phase, progress, status) after every update, as a poller would see it."""

    def __init__(self):
        super().__init__()
        self.history = []

    def update(self, job_id, fn):
        job = super().update(job_id, fn)
        self.history.append((job.phase, job.progress, job.status))
        return job


def _run(course_store, jobs, fake, options=None, deadline=None, docs=None):
    course = course_store.create_course(title="Draft course")
    job = jobs.create(course.id, [d.id for d in docs], dict(options or OPTIONS), deadline=deadline)
    run_generation_job(job.job_id, store=course_store, jobs=jobs, generator=CourseGenerator(client=fake, retries=0))
    return course, jobs.snapshot(job.job_id)


@pytest.fixture(autouse=True)
def no_quiz_retry_delay(monkeypatch):
    monkeypatch.setattr(worker, "QUIZ_RETRY_DELAY_SECONDS", 0)


def test_successful_run_completes_and_persists_course(course_store, make_document, fake_openai):
    doc = make_document()
    jobs = RecordingJobStore()
    course, job = _run(course_store, jobs, fake_openai, docs=[doc])

    assert job.status == "completed", job.error
    assert job.phase == "finalization"
    assert job.progress == 100
    assert job.error is None
    assert job.result == {"courseId": course.id, "modulesCreated": 3, "lessonsCreated": 6, "quizzesCreated": 3}

    saved = course_store.get_course(course.id)
    assert saved.title == "Pricing Strategy Fundamentals"
    assert saved.difficulty_level == "intermediate"
    assert saved.document_ids == [doc.id]
    assert saved.status == "draft"

    modules = course_store.get_modules(course.id)
    assert [m.title for m in modules] == [
        "Module 1: Pricing basics",
        "Module 2: Customer segments and value",
        "Module 3: Competitive analysis",
    ]
    lessons = course_store.get_lessons(modules[0].id)
    assert [l.title for l in lessons] == ["Lesson 1.1: Cost-plus thinking", "Lesson 1.2: Setting margins"]
    assert lessons[0].estimated_duration == 12

    quizzes = course_store.get_quizzes(modules[0].id)
    assert len(quizzes) == 1
    assert quizzes[0].title == "Module 1: Pricing basics - Module Quiz"
    assert quizzes[0].lesson_id is None
    assert len(quizzes[0].questions) == 5
    assert quizzes[0].questions[0]["correctAnswer"] == "Unit cost"


def test_progress_and_phase_only_move_forward(course_store, make_document, fake_openai):
    jobs = RecordingJobStore()
    _run(course_store, jobs, fake_openai, docs=[make_document()])

    progress = [p for _, p, _ in jobs.history]
    phases = [phase_index(ph) for ph, _, _ in jobs.history]
    assert progress == sorted(progress)
    assert phases == sorted(phases)
    assert {ph for ph, _, _ in jobs.history} == set(PHASES)
    # outline at 60, one step per module up to 80, validation from 90
    assert {10, 30, 35, 50, 55, 60, 67, 73, 80, 85, 90, 95, 96, 97, 98, 99, 100} <= set(progress)
    assert jobs.history[-1] == ("finalization", 100, "completed")


def test_lessons_carry_source_references(course_store, make_document, fake_openai):
    doc = make_document(file_name="pricing-guide.md")
    course, _ = _run(course_store, RecordingJobStore(), fake_openai, docs=[doc])

    lesson = course_store.get_course_lessons(course.id)[0]
    assert [r.id for r in lesson.source_references] == [f"ref-{doc.id}-1", f"ref-{doc.id}-2"]
    assert all(r.document_name == "pricing-guide.md" for r in lesson.source_references)


def test_quiz_per_lesson(course_store, make_document):
    fake = FakeOpenAI(default_responses(quiz_frequency="lesson"))
    options = {**OPTIONS, "quizFrequency": "lesson", "questionsPerQuiz": 3}
    course, job = _run(course_store, RecordingJobStore(), fake, options=options, docs=[make_document()])

    assert job.status == "completed", job.error
    assert job.result["quizzesCreated"] == 6
    module = course_store.get_modules(course.id)[0]
    quizzes = course_store.get_quizzes(module.id)
    lessons = course_store.get_lessons(module.id)
    assert [q.lesson_id for q in quizzes] == [l.id for l in lessons]
    assert quizzes[0].title == "Lesson 1.1: Cost-plus thinking - Quiz"
    assert all(len(q.questions) == 3 for q in quizzes)


def test_quizzes_disabled(course_store, make_document):
    fake = FakeOpenAI(default_responses(with_quiz=False))
    options = {**OPTIONS, "generateQuizzes": False}
    course, job = _run(course_store, RecordingJobStore(), fake, options=options, docs=[make_document()])

    assert job.status == "completed"
    assert job.result["quizzesCreated"] == 0
    assert fake.count("quiz_questions") == 0


def test_missing_module_quiz_is_regenerated(course_store, make_document):
    fake = FakeOpenAI(default_responses(with_quiz=False))
    course, job = _run(course_store, RecordingJobStore(), fake, docs=[make_document()])

    assert job.status == "completed", job.error
    assert job.result["quizzesCreated"] == 3
    assert fake.count("quiz_questions") == 3


def test_quiz_regeneration_gives_up_after_three_attempts(course_store, make_document):
    responses = default_responses(with_quiz=False)
    responses["quiz_questions"] = json.dumps({"questions": []})
    fake = FakeOpenAI(responses)
    _, job = _run(course_store, RecordingJobStore(), fake, docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert "after 3 attempts" in job.error
    assert fake.count("quiz_questions") == 3


def test_upstream_failure_fails_job_without_creating_modules(course_store, make_document):
    responses = default_responses()
    responses["document_analysis"] = openai.APIConnectionError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )
    course, job = _run(course_store, RecordingJobStore(), FakeOpenAI(responses), docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "upstream"
    assert job.error
    assert job.phase == "content_analysis"
    assert course_store.get_modules(course.id) == []
    assert course_store.get_course(course.id).status == "draft"


def test_malformed_outline_is_invalid_output(course_store, make_document):
    responses = default_responses()
    responses["course_outline"] = "Sure! Here is your course outline: Module 1 ..."
    _, job = _run(course_store, RecordingJobStore(), FakeOpenAI(responses), docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert "not JSON" in job.error


def test_outline_schema_violation_is_invalid_output(course_store, make_document):
    responses = default_responses()
    responses["course_outline"] = json.dumps({"title": "No modules", "modules": []})
    _, job = _run(course_store, RecordingJobStore(), FakeOpenAI(responses), docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"


def test_module_without_lessons_fails_validation(course_store, make_document):
    responses = default_responses(module_count=1)
    empty = module_payload(0)
    empty["lessons"] = []
    responses["module_content"] = json.dumps(empty)
    options = {**OPTIONS, "moduleCount": 1}
    course, job = _run(course_store, RecordingJobStore(), FakeOpenAI(responses), options=options, docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert job.phase == "validation"
    assert course_store.get_modules(course.id) == []


def test_expired_deadline_fails_with_timeout(course_store, make_document, fake_openai):
    _, job = _run(course_store, RecordingJobStore(), fake_openai, deadline=time.time() - 1, docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "timeout"
    assert fake_openai.calls == []


def test_outline_with_too_many_modules_is_truncated(course_store, make_document):
    responses = default_responses(module_count=2)
    responses["course_outline"] = json.dumps(outline_payload(3))
    options = {**OPTIONS, "moduleCount": 2}
    fake = FakeOpenAI(responses)
    course, job = _run(course_store, RecordingJobStore(), fake, options=options, docs=[make_document()])

    assert job.status == "completed", job.error
    assert job.result["modulesCreated"] == 2
    assert fake.count("module_content") == 2


def test_duplicate_modules_are_dropped_before_saving(course_store, make_document):
    responses = default_responses(module_count=2)
    responses["module_content"] = [json.dumps(module_payload(0)), json.dumps(module_payload(0))]
    options = {**OPTIONS, "moduleCount": 2}
    course, job = _run(course_store, RecordingJobStore(), FakeOpenAI(responses), options=options, docs=[make_document()])

    assert job.status == "completed", job.error
    assert job.result["modulesCreated"] == 1
    assert len(course_store.get_modules(course.id)) == 1


def test_text_is_extracted_from_disk_and_cached(course_store, tmp_path, fake_openai):
    path = tmp_path / "notes.md"
    path.write_text("# Pricing\n\nPrice floors come from cost.", encoding="utf-8")
    doc = course_store.create_document(
        file_name="notes.md",
        file_size=path.stat().st_size,
        file_type=".md",
        storage_path=str(path),
        uploaded_by=None,
        content_hash="abc",
    )
    _, job = _run(course_store, RecordingJobStore(), fake_openai, docs=[doc])

    assert job.status == "completed", job.error
    assert course_store.get_document(doc.id).processed_content.startswith("# Pricing")
    prompt = fake_openai.calls[0][1]["messages"][1]["content"]
    assert "Price floors come from cost." in prompt


def test_multiple_documents_are_combined(course_store, make_document, fake_openai):
    a = make_document(file_name="a.txt", text="Alpha pricing notes.")
    b = make_document(file_name="b.txt", text="Beta competitor notes.")
    _, job = _run(course_store, RecordingJobStore(), fake_openai, docs=[a, b])

    assert job.status == "completed", job.error
    prompt = fake_openai.calls[0][1]["messages"][1]["content"]
    assert "### a.txt" in prompt and "### b.txt" in prompt
    assert "a.txt, b.txt" in prompt


def test_unreadable_document_fails_job(course_store, fake_openai):
    doc = course_store.create_document(
        file_name="gone.txt",
        file_size=10,
        file_type=".txt",
        storage_path="/nonexistent/gone.txt",
        uploaded_by=None,
        content_hash="def",
    )
    _, job = _run(course_store, RecordingJobStore(), fake_openai, docs=[doc])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert job.phase == "document_analysis"


def test_unexpected_exception_is_internal(course_store, make_document, monkeypatch, fake_openai):
    def boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(course_store, "create_module", boom)
    _, job = _run(course_store, RecordingJobStore(), fake_openai, docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "internal"
    assert job.error == "database unavailable"


def test_unknown_job_id_is_ignored(course_store, job_store, fake_openai):
    run_generation_job("missing", store=course_store, jobs=job_store, generator=CourseGenerator(client=fake_openai))
    assert fake_openai.calls == []


def test_malformed_docx_is_invalid_output(course_store, tmp_path, fake_openai):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("word/document.xml", "<w:document><w:body><w:p>unclosed")
    path = tmp_path / "broken.docx"
    path.write_bytes(buf.getvalue())
    doc = course_store.create_document(
        file_name="broken.docx",
        file_size=path.stat().st_size,
        file_type=".docx",
        storage_path=str(path),
        uploaded_by=None,
        content_hash="ghi",
    )
    _, job = _run(course_store, RecordingJobStore(), fake_openai, docs=[doc])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert job.phase == "document_analysis"
    assert fake_openai.calls == []


def test_finalization_failure_keeps_modules_already_written(course_store, make_document):
    responses = default_responses()
    responses["module_content"] = [
        json.dumps(module_payload(0)),
        json.dumps(module_payload(1)),
        json.dumps(module_payload(2, with_quiz=False)),
    ]
    responses["quiz_questions"] = json.dumps({"questions": []})
    fake = FakeOpenAI(responses)
    course, job = _run(course_store, RecordingJobStore(), fake, docs=[make_document()])

    assert job.status == "failed"
    assert job.error_kind == "invalid_output"
    assert job.phase == "finalization"
    assert job.progress < 100
    modules = course_store.get_modules(course.id)
    assert len(modules) == 3
    assert [len(course_store.get_quizzes(m.id)) for m in modules] == [1, 1, 0]
    assert fake.count("quiz_questions") == 3


def test_quiz_retry_wait_stops_at_deadline(course_store, make_document, monkeypatch):
    monkeypatch.setattr(worker, "QUIZ_RETRY_DELAY_SECONDS", 30)
    responses = default_responses(with_quiz=False)
    responses["quiz_questions"] = json.dumps({"questions": []})
    fake = FakeOpenAI(responses)

    started = time.monotonic()
    _, job = _run(course_store, RecordingJobStore(), fake, deadline=time.time() + 1, docs=[make_document()])

    assert time.monotonic() - started < 10
    assert job.status == "failed"
    assert job.error_kind == "timeout"
    assert job.phase == "finalization"
