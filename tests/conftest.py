import json
import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure repo root is on sys.path so `import korsify...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Uploads go to a throwaway directory; must be set before korsify.core.config is imported
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="korsify-tests-"))


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


# -------------------------
# Canned model output
# -------------------------

SOURCE_TEXT = (
    "Pricing strategy starts from cost. The price floor is set by unit cost plus margin.\n\n"
    "Value-based pricing starts from what customers are willing to pay.\n\n"
    "Competitors anchor customer expectations, so prices are compared in context."
)

QUESTION_BANK = [
    ("Which factor sets the floor for a product's price?", ["Unit cost", "Brand color", "Office size", "Logo"], "Unit cost"),
    ("True or false: value-based pricing starts from customer willingness to pay.", ["True", "False"], "True"),
    ("What does price elasticity measure?", ["Demand response to price", "Tax rate", "Inventory", "Headcount"], "Demand response to price"),
    ("Why might a company choose penetration pricing for a new market?", ["To win share quickly", "To cut staff", "To avoid taxes", "To shrink"], "To win share quickly"),
    ("Name one risk of competing on price alone.", ["Margin erosion", "More holidays", "Faster shipping", "Nicer packaging"], "Margin erosion"),
]

MODULE_TITLES = ["Pricing basics", "Customer segments and value", "Competitive analysis"]
LESSON_TITLES = [
    ("Cost-plus thinking", "Setting margins"),
    ("Willingness to pay", "Segment interviews"),
    ("Mapping competitors", "Reacting to discounts"),
]


def questions_payload(n: int = 5):
    return [
        {"question": q, "type": "multiple_choice", "options": opts, "correctAnswer": ans, "explanation": "From the source."}
        for q, opts, ans in QUESTION_BANK[:n]
    ]


def outline_payload(module_count: int = 3):
    return {
        "title": "Pricing Strategy Fundamentals",
        "description": "Learn how to set and defend prices.",
        "modules": [{"title": t, "description": f"About {t.lower()}"} for t in MODULE_TITLES[:module_count]],
    }


def module_payload(index: int, quiz_frequency: str = "module", with_quiz: bool = True, questions: int = 5):
    lessons = []
    for title in LESSON_TITLES[index]:
        lesson = {
            "title": title,
            "content": f"<p>{title} begins with unit cost [1]. Customers compare prices in context [2].</p>",
            "estimatedDuration": 12,
            "quiz": None,
        }
        if with_quiz and quiz_frequency == "lesson":
            lesson["quiz"] = {"title": f"{title} quiz", "questions": questions_payload(questions)}
        lessons.append(lesson)
    module = {
        "title": MODULE_TITLES[index],
        "description": f"About {MODULE_TITLES[index].lower()}",
        "estimatedDuration": 30,
        "lessons": lessons,
        "quiz": None,
    }
    if with_quiz and quiz_frequency == "module":
        module["quiz"] = {"title": "Module quiz", "questions": questions_payload(questions)}
    return module


# -------------------------
# Fake OpenAI client
# -------------------------

# First line of each versioned system prompt -> prompt component
_COMPONENT_MARKERS = {
    "You are an experienced instructor": "document_analysis",
    "You design online courses": "course_outline",
    "You write online course modules": "module_content",
    "You write assessment questions": "quiz_questions",
}


def _component_of(messages) -> str:
    system = messages[0]["content"]
    for marker, component in _COMPONENT_MARKERS.items():
        if system.startswith(marker):
            return component
    raise AssertionError(f"Unrecognized system prompt: {system[:60]}")


class FakeOpenAI:
    """Stands in for openai.OpenAI: client.chat.completions.create(**kwargs).

    responses maps a prompt component to a str, an Exception (raised), a callable(kwargs) -> str,
    or a list of those consumed in order (the last entry repeats).
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.chat = SimpleNamespace(completions=self)

    def create(self, **kwargs):
        component = _component_of(kwargs["messages"])
        self.calls.append((component, kwargs))
        value = self.responses[component]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            value = value(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=value))])

    def count(self, component: str) -> int:
        return sum(1 for c, _ in self.calls if c == component)


def default_responses(module_count: int = 3, quiz_frequency: str = "module", with_quiz: bool = True):
    return {
        "document_analysis": "Main topics: cost-based pricing, value-based pricing, competition.",
        "course_outline": json.dumps(outline_payload(module_count)),
        "module_content": [
            json.dumps(module_payload(i, quiz_frequency=quiz_frequency, with_quiz=with_quiz))
            for i in range(module_count)
        ],
        "quiz_questions": json.dumps({"questions": questions_payload()}),
    }


@pytest.fixture
def fake_openai():
    return FakeOpenAI(default_responses())


@pytest.fixture
def course_store():
    from korsify.storage.store import CourseStore

    return CourseStore()


@pytest.fixture
def job_store():
    from korsify.generation.jobs import JobStore

    return JobStore()


@pytest.fixture
def make_document(course_store):
    """Create a document whose text is already extracted (no file on disk needed)."""
    from korsify.documents.duplicate_check import content_hash

    def _make(file_name: str = "pricing.txt", text: str = SOURCE_TEXT):
        return course_store.create_document(
            file_name=file_name,
            file_size=len(text),
            file_type=os.path.splitext(file_name)[1],
            storage_path="",
            uploaded_by="creator-1",
            content_hash=content_hash(text.encode("utf-8")),
            processed_content=text,
        )

    return _make


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      request_log = {"method": "...", "url": "...", "json": {...}}
      response_log = {"status_code": 200, "json": {...}}
      item._api_logs = [{"title": "...", "request": ..., "response": ...}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    # Only attach if pytest-html is installed/enabled
    extras = getattr(rep, "extras", [])

    try:
        from pytest_html import extras as html_extras
    except ImportError:
        rep.extras = extras
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        req = entry.get("request", {})
        res = entry.get("response", {})

        html = f"""
        <div style="font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, 'Liberation Mono', monospace;">
          <h4 style="margin:8px 0;">{title}</h4>

          <details style="margin:6px 0;">
            <summary><b>Request</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(req)}</pre>
          </details>

          <details style="margin:6px 0;">
            <summary><b>Response</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(res)}</pre>
          </details>
        </div>
        """
        extras.append(html_extras.html(html))

    rep.extras = extras
