# Course generation page for Korsify creators: upload documents, pick options, generate, watch progress.
import time

import requests
import streamlit as st

from korsify.client.api_client import API_BASE, ApiError, KorsifyClient
from korsify.client.poller import JobNotFoundError, JobPoller, PollTimeoutError

PHASE_LABELS = {
    "document_analysis": "Analyzing documents",
    "content_analysis": "Understanding content",
    "content_generation": "Writing modules and lessons",
    "validation": "Checking for duplicates",
    "finalization": "Saving your course",
}


def _client() -> KorsifyClient:
    if "korsify_client" not in st.session_state:
        st.session_state.korsify_client = KorsifyClient(API_BASE)
    return st.session_state.korsify_client


def _options_form(limits: dict) -> dict:
    """Render generation options and return them in API (camelCase) form."""
    col1, col2 = st.columns(2)
    with col1:
        difficulty = st.selectbox("Difficulty", ["beginner", "intermediate", "advanced", "expert"], index=1)
        module_count = st.slider("Modules", 1, limits.get("maxModuleCount", 6), 3)
        include_exercises = st.checkbox("Include practice exercises", value=True)
        include_examples = st.checkbox("Include real-world examples", value=True)
    with col2:
        generate_quizzes = st.checkbox("Generate quizzes", value=True)
        quiz_frequency = st.radio("Quiz per", ["module", "lesson"], horizontal=True, disabled=not generate_quizzes)
        questions = st.slider("Questions per quiz", 1, limits.get("maxQuestionsPerQuiz", 10), 5, disabled=not generate_quizzes)
    return {
        "difficultyLevel": difficulty,
        "moduleCount": module_count,
        "generateQuizzes": generate_quizzes,
        "quizFrequency": quiz_frequency,
        "questionsPerQuiz": questions,
        "includeExercises": include_exercises,
        "includeExamples": include_examples,
    }


def _watch_job(job_id: str, interval: float) -> None:
    """Poll until the job is terminal, updating a progress bar; toast the outcome."""
    poller = JobPoller(_client(), interval=interval)
    future = poller.start(job_id)
    bar = st.progress(0, text="Starting...")
    try:
        while not future.done():
            job = poller.last
            if job:
                bar.progress(job["progress"], text=f"{PHASE_LABELS.get(job['phase'], job['phase'])} ({job['progress']}%)")
            time.sleep(min(interval, 0.5))
        job = future.result()
    except (JobNotFoundError, PollTimeoutError, ApiError) as e:
        st.error(str(e))
        return
    finally:
        poller.cancel()

    if job["status"] == "completed":
        bar.progress(100, text="Done")
        st.toast("Course generated successfully")
        st.session_state.generation_done = True
    else:
        st.toast(f"Generation failed: {job.get('error', 'unknown error')}")
        st.error(job.get("error", "Generation failed"))


def run_main() -> None:
    st.set_page_config(page_title="Korsify", layout="wide", initial_sidebar_state="collapsed")
    st.title("Korsify: documents to courses")

    client = _client()
    try:
        limits = client.limits()
    except (requests.RequestException, ApiError):
        st.error(f"API not reachable at {API_BASE}")
        return

    # -------------------------
    # Documents
    # -------------------------
    st.subheader("Source documents")
    uploads = st.file_uploader(
        "Upload PDF, DOCX, TXT or MD",
        type=[e.lstrip(".") for e in limits["allowedExtensions"]],
        accept_multiple_files=True,
    )
    if "document_ids" not in st.session_state:
        st.session_state.document_ids = []
    if uploads and st.button("Upload"):
        for f in uploads:
            try:
                doc = client.upload_document(f.name, f.getvalue())
            except ApiError as e:
                st.error(f"{f.name}: {e.detail}")
                continue
            if doc["id"] not in st.session_state.document_ids:
                st.session_state.document_ids.append(doc["id"])
            if doc.get("duplicate"):
                st.info(f"{f.name} was already uploaded; reusing it.")
        st.success(f"{len(st.session_state.document_ids)} document(s) ready")

    # -------------------------
    # Course + options
    # -------------------------
    st.subheader("Course")
    title = st.text_input("Course title", placeholder="e.g. Pricing Strategy Fundamentals")
    options = _options_form(limits)

    if st.button("Generate course", disabled=not (title.strip() and st.session_state.document_ids)):
        try:
            course = client.create_course(title.strip())
            job_id = client.start_generation(course["id"], st.session_state.document_ids, options)
        except ApiError as e:
            st.error(e.detail)
            return
        st.session_state.course_id = course["id"]
        _watch_job(job_id, limits.get("pollIntervalSeconds", 1.0))

    if st.session_state.get("generation_done") and st.session_state.get("course_id"):
        course = client.get_course(st.session_state.course_id)
        st.subheader(course["title"])
        st.caption(course.get("description") or "")
        for module in course["modules"]:
            with st.expander(module["title"]):
                for lesson in module["lessons"]:
                    st.markdown(f"**{lesson['title']}** ({lesson['estimatedDuration']} min)")
                for quiz in module["quizzes"]:
                    st.caption(f"{quiz['title']}: {len(quiz['questions'])} questions")


if __name__ == "__main__":
    run_main()
