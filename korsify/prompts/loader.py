"""
Versioned prompt templates for the generation pipeline.

Files live at korsify/prompts/{version}/{component}.yaml with a `system` and a
`user` key; PROMPT_VERSION (default v1) selects the version. Placeholders are
written <<NAME>> and filled by render().
"""
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

_PROMPTS_DIR = Path(__file__).resolve().parent
_PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def _version(version: Optional[str]) -> str:
    if version is not None:
        return version
    from korsify.core.config import settings

    return settings.prompt_version or "v1"


@lru_cache(maxsize=64)
def _read(version: str, component: str) -> Tuple[Tuple[str, str], ...]:
    path = _PROMPTS_DIR / version / f"{component}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return tuple((key, str(data[key]).strip()) for key in ("system", "user") if data.get(key) is not None)


def load_prompts(component: str, version: Optional[str] = None) -> Dict[str, str]:
    """Return {"system": ..., "user": ...} for a pipeline step (document_analysis, course_outline, module_content, quiz_questions).
    Why available: Prompts change more often than code; a new version directory can be rolled out with PROMPT_VERSION alone."""
    return dict(_read(_version(version), component))


def placeholders(template: str) -> List[str]:
    """Names of the <<NAME>> placeholders in template, in order, without duplicates."""
    return list(dict.fromkeys(_PLACEHOLDER_RE.findall(template)))


def render(template: str, values: Dict[str, object]) -> str:
    """Replace <<KEY>> placeholders with values. Unknown placeholders are left as-is."""
    return _PLACEHOLDER_RE.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
        template,
    )


def _part(component: str, key: str, version: Optional[str]) -> str:
    prompts = load_prompts(component, version=version)
    if key not in prompts:
        raise ValueError(f"Component {component} has no '{key}' prompt in version {_version(version)}")
    return prompts[key]


def get_system_prompt(component: str, version: Optional[str] = None) -> str:
    return _part(component, "system", version)


def get_user_prompt(component: str, version: Optional[str] = None) -> str:
    return _part(component, "user", version)
