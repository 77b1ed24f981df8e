"""HTTP client for the test-optimization backend.

All endpoints take and return JSON:API style envelopes::

    {"data": {"id": "...", "type": "...", "attributes": {...}}}
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from flakeguard.api.settings import RemoteSettings
from flakeguard.features.known_tests import KnownTestsMap, merge_known_tests, parse_known_tests
from flakeguard.features.management import TestManagementMap, parse_test_management
from flakeguard.features.tia import SkippableMap, parse_skippable_tests

log = logging.getLogger(__name__)

SETTINGS_PATH = "/api/v2/libraries/tests/services/setting"
KNOWN_TESTS_PATH = "/api/v2/ci/libraries/tests"
TEST_MANAGEMENT_PATH = "/api/v2/test/libraries/test-management/tests"
SKIPPABLE_TESTS_PATH = "/api/v2/ci/tests/skippable"

DEFAULT_PAGE_SIZE = 2000
MAX_KNOWN_TESTS_PAGES = 100


class ApiError(RuntimeError):
    """A backend request failed or returned an unusable body."""


@dataclass(frozen=True)
class RepositoryInfo:
    """Identity of the code under test, sent with every request."""

    service: str | None = None
    env: str | None = None
    repository_url: str | None = None
    branch: str | None = None
    commit_sha: str | None = None
    commit_message: str | None = None
    configurations: dict[str, str] = field(default_factory=dict)


class ApiClient:
    """Fetches remote settings and the per-feature test lists."""

    def __init__(
        self,
        base_url: str,
        repository: RepositoryInfo,
        api_key: str | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.repository = repository
        self.timeout = timeout
        self.session = session or requests.Session()
        if session is None:
            retry = Retry(
                total=max_retries,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
            )
            adapter = HTTPAdapter(max_retries=retry)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"X-API-Key": api_key})

    def close(self) -> None:
        self.session.close()

    def _post(self, path: str, request_type: str, attributes: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        body = {
            "data": {
                "id": str(uuid.uuid4()),
                "type": request_type,
                "attributes": attributes,
            }
        }
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(f"Request to {path} failed: {e}") from e
        if response.status_code >= 400:
            raise ApiError(f"Request to {path} returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"Response from {path} is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ApiError(f"Response from {path} is not a JSON object")
        return payload

    def _base_attributes(self) -> dict[str, Any]:
        repo = self.repository
        return {
            "service": repo.service,
            "env": repo.env,
            "repository_url": repo.repository_url,
            "sha": repo.commit_sha,
            "branch": repo.branch,
            "configurations": dict(repo.configurations),
        }

    def fetch_settings(self) -> RemoteSettings:
        """Fetch the feature switches for this repository.

        Raises:
            ApiError: On transport errors or a malformed body.
        """
        payload = self._post(
            SETTINGS_PATH,
            "ci_app_test_service_libraries_settings",
            self._base_attributes(),
        )
        try:
            return RemoteSettings.from_response(payload)
        except (TypeError, ValueError) as e:
            raise ApiError(f"Malformed settings response: {e}") from e

    def fetch_known_tests(self, page_size: int = DEFAULT_PAGE_SIZE) -> KnownTestsMap:
        """Fetch every known test, following pagination cursors.

        Raises:
            ApiError: On transport errors or a malformed body.
        """
        known: KnownTestsMap = {}
        cursor: str | None = None
        for _ in range(MAX_KNOWN_TESTS_PAGES):
            attributes = self._base_attributes()
            page_info: dict[str, Any] = {"page_size": page_size}
            if cursor:
                page_info["page_state"] = cursor
            attributes["page_info"] = page_info
            payload = self._post(KNOWN_TESTS_PATH, "ci_app_libraries_tests_request", attributes)
            response_attributes = _attributes(payload, KNOWN_TESTS_PATH)
            try:
                known = merge_known_tests(known, parse_known_tests(response_attributes))
            except (AttributeError, TypeError, ValueError) as e:
                raise ApiError(f"Malformed known tests response: {e}") from e
            next_page = response_attributes.get("page_info") or {}
            cursor = next_page.get("cursor")
            if not next_page.get("has_next") or not cursor:
                break
        else:
            log.warning("Known tests pagination stopped after %d pages", MAX_KNOWN_TESTS_PAGES)
        return known

    def fetch_test_management_tests(self) -> TestManagementMap:
        """Fetch the management properties of every managed test.

        Raises:
            ApiError: On transport errors or a malformed body.
        """
        repo = self.repository
        payload = self._post(
            TEST_MANAGEMENT_PATH,
            "ci_app_libraries_tests_request",
            {
                "repository_url": repo.repository_url,
                "commit_message": repo.commit_message,
                "sha": repo.commit_sha,
            },
        )
        try:
            return parse_test_management(_attributes(payload, TEST_MANAGEMENT_PATH))
        except (AttributeError, TypeError, ValueError) as e:
            raise ApiError(f"Malformed test management response: {e}") from e

    def fetch_skippable_tests(self) -> tuple[SkippableMap, str | None]:
        """Fetch the tests that may be skipped and the correlation id.

        Raises:
            ApiError: On transport errors or a malformed body.
        """
        attributes = self._base_attributes()
        attributes["test_level"] = "test"
        payload = self._post(SKIPPABLE_TESTS_PATH, "test_params", attributes)
        try:
            return parse_skippable_tests(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise ApiError(f"Malformed skippable tests response: {e}") from e


def _attributes(payload: dict[str, Any], path: str) -> dict[str, Any]:
    data = payload.get("data")
    attributes = data.get("attributes") if isinstance(data, dict) else None
    if not isinstance(attributes, dict):
        raise ApiError(f"Response from {path} has no data.attributes object")
    return attributes
