from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable
from urllib.parse import urljoin

import requests

from ..errors import ClassificationTimeout, WorkspaceError
from ..settings import settings

logger = logging.getLogger(__name__)

PlanFileClassifier = Callable[[str], Awaitable[list[str]]]

# Creation order for a chart: metadata, defaults, helpers, then templates, tests last.
STANDARD_FILE_ORDER = [
    "Chart.yaml",
    "values.yaml",
    ".helmignore",
    "templates/_helpers.tpl",
    "templates/serviceaccount.yaml",
    "templates/configmap.yaml",
    "templates/secret.yaml",
    "templates/deployment.yaml",
    "templates/service.yaml",
    "templates/ingress.yaml",
    "templates/hpa.yaml",
    "templates/pdb.yaml",
    "templates/NOTES.txt",
]

_CLASSIFY_PROMPT = """You are a Helm chart file path extractor. Given a plan description, identify ALL file paths that will be created or modified.

Standard Helm chart files in creation order:
{order}
templates/tests/test-connection.yaml (helm test, last)

Return the files in the ORDER they should be created (Chart.yaml first, then values.yaml, then helpers, then templates).
Output ONLY a JSON array of file paths, nothing else.

Plan description:
{description}"""

_PATH_TOKEN = re.compile(r"(?<![\w./-])((?:[\w.-]+/)*[\w.-]+\.(?:ya?ml|tpl|txt))(?![\w/-])", re.IGNORECASE)
_HELMIGNORE = re.compile(r"(?<![\w./-])\.helmignore\b")
_QUOTED_PATH = re.compile(r"`([\w./-]+\.(?:ya?ml|tpl|txt))`", re.IGNORECASE)


def _canonical_path(raw: str) -> str | None:
    p = str(raw or "").strip().strip("`\"'").replace("\\", "/")
    p = re.sub(r"^(\./)+", "", p)
    if not p:
        return None
    idx = p.find("templates/")
    if idx > 0 and p[idx - 1] == "/":
        p = p[idx:]
    if not p.startswith("templates/"):
        lowered = p.rsplit("/", 1)[-1].lower()
        if lowered == "chart.yaml":
            return "Chart.yaml"
        if lowered == "values.yaml":
            return "values.yaml"
    return p


def _rank(path: str) -> float:
    try:
        return float(STANDARD_FILE_ORDER.index(path))
    except ValueError:
        pass
    if path.startswith("templates/tests/"):
        return float(len(STANDARD_FILE_ORDER) + 1)
    if path.startswith("templates/"):
        return STANDARD_FILE_ORDER.index("templates/pdb.yaml") + 0.5
    return STANDARD_FILE_ORDER.index(".helmignore") + 0.5


def extract_plan_files(description: str) -> list[str]:
    """
    Pattern-based extraction of chart file paths from a plan description.

    Recognizes ``.yaml``/``.yml``/``.tpl`` tokens anywhere, ``.txt`` only under
    ``templates/`` or inside backticks, and ``.helmignore``. Results are de-duplicated and
    ordered metadata, defaults, helpers, templates, tests.
    """
    text = str(description or "")
    found: list[str] = []

    def _add(raw: str) -> None:
        path = _canonical_path(raw)
        if path and path not in found:
            found.append(path)

    for m in _PATH_TOKEN.finditer(text):
        token = m.group(1)
        if token.lower().endswith(".txt") and not _canonical_path(token).startswith("templates/"):
            continue
        _add(token)
    for m in _QUOTED_PATH.finditer(text):
        _add(m.group(1))
    if _HELMIGNORE.search(text):
        _add(".helmignore")

    return sorted(found, key=_rank)


def _extract_json_list(text: str) -> list[str]:
    raw = str(text or "").strip()
    if not raw:
        return []
    m = re.search(r"\[[\s\S]*\]", raw)
    candidate = m.group(0) if m else raw
    try:
        parsed = json.loads(candidate)
    except Exception:
        return []
    if not isinstance(parsed, list):
        return []
    return [str(x).strip() for x in parsed if isinstance(x, str) and str(x).strip()]


def _llm_base_url(base: str | None) -> str:
    root = (base or settings.LLM_BASE_URL or "").rstrip("/")
    if root.endswith("/v1"):
        root = root[:-3]
    return root + "/v1/"


def _llm_chat_once(*, prompt: str, max_tokens: int = 600) -> str:
    endpoint = urljoin(_llm_base_url(settings.LLM_BASE_URL), "chat/completions")
    payload = {
        "model": settings.LLM_MODEL or "llama3.2:3b",
        "messages": [{"role": "user", "content": prompt}],
        "temperature": 0.0,
        "max_tokens": max_tokens,
        "stream": False,
    }
    headers = {"Content-Type": "application/json"}
    if settings.LLM_API_KEY:
        headers["Authorization"] = f"Bearer {settings.LLM_API_KEY}"
    try:
        resp = requests.post(endpoint, json=payload, headers=headers, timeout=60)
    except requests.RequestException as err:
        raise WorkspaceError(f"Could not reach LLM endpoint: {err}") from err
    try:
        resp.raise_for_status()
    except requests.HTTPError as err:
        raise WorkspaceError(f"LLM request failed ({resp.status_code}). {resp.text[:400]}".strip()) from err
    body = resp.json() or {}
    return str((((body.get("choices") or [{}])[0]).get("message") or {}).get("content") or "")


async def llm_classify_plan_files(description: str) -> list[str]:
    if not settings.LLM_BASE_URL:
        raise WorkspaceError("LLM_BASE_URL is not configured")
    prompt = _CLASSIFY_PROMPT.format(order="\n".join(STANDARD_FILE_ORDER), description=description)
    text = await asyncio.to_thread(_llm_chat_once, prompt=prompt)
    return _extract_json_list(text)


async def _run_classifier(classifier: PlanFileClassifier, description: str, timeout_sec: float) -> list[str]:
    try:
        return await asyncio.wait_for(classifier(description), timeout=timeout_sec)
    except asyncio.TimeoutError as err:
        raise ClassificationTimeout(f"plan file classification exceeded {timeout_sec}s") from err


async def classify_plan_files(
    description: str,
    *,
    classifier: PlanFileClassifier | None = None,
    timeout_sec: float | None = None,
) -> list[str]:
    """Expected file list for a plan: classifier output in its own order, else the pattern fallback."""
    fn = classifier or llm_classify_plan_files
    timeout = float(timeout_sec if timeout_sec is not None else settings.PLAN_CLASSIFY_TIMEOUT_SEC)
    files: list[str] = []
    try:
        raw = await _run_classifier(fn, description, timeout)
        for item in raw or []:
            path = _canonical_path(item)
            if path and path not in files:
                files.append(path)
    except Exception as err:
        logger.warning("plan.classify.failed error=%s", err)
    if files:
        logger.info("plan.classify.ok files=%s", len(files))
        return files

    fallback = extract_plan_files(description)
    logger.info("plan.classify.fallback files=%s", len(fallback))
    return fallback
