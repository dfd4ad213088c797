"""HTTP client for the Korsify API (used by the poller, the Streamlit page and scripts)."""
import os
from typing import Any, Dict, List, Optional

import requests

API_BASE = os.getenv("API_BASE", "http://localhost:8000")


class ApiError(Exception):
    """Non-2xx response; carries status_code and the server's detail message."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason or ""
    detail = body.get("detail") if isinstance(body, dict) else None
    return detail if isinstance(detail, str) else str(body)


class KorsifyClient:
    def __init__(self, base_url: str = API_BASE, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        resp = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, _detail(resp))
        return resp.json()

    def upload_document(self, file_name: str, content: bytes, uploaded_by: Optional[str] = None) -> Dict[str, Any]:
        data = {"uploadedBy": uploaded_by} if uploaded_by else None
        return self._request("POST", "/api/documents", files={"file": (file_name, content)}, data=data)

    def list_documents(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/documents")

    def create_course(self, title: str, **fields) -> Dict[str, Any]:
        return self._request("POST", "/api/courses", json={"title": title, **fields})

    def get_course(self, course_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/courses/{course_id}")

    def start_generation(self, course_id: str, document_ids: List[str], options: Optional[Dict[str, Any]] = None) -> str:
        """POST /api/courses/generate-async; returns the job id."""
        body = {"courseId": course_id, "documentIds": list(document_ids), "options": options or {}}
        return self._request("POST", "/api/courses/generate-async", json=body)["jobId"]

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/processing-jobs/{job_id}")

    def limits(self) -> Dict[str, Any]:
        return self._request("GET", "/api/limits")
