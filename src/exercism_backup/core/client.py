import logging
import threading
from collections.abc import Iterator
from typing import Any
from urllib.parse import quote

import requests

from ..backup.models import (
    Iteration,
    ResponseMeta,
    Solution,
    SubmissionFile,
)
from ..config import Config
from ..errors import ExercismApiError

logger = logging.getLogger(__name__)

# (connect, read) timeouts in seconds
REQUEST_TIMEOUT = (10, 60)
STREAM_CHUNK_SIZE = 64 * 1024


class ExercismClient:
    """Blocking client for the parts of the Exercism API used by backups.

    Sessions are thread-local because calls are dispatched to worker threads
    by the engine.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_base_url = config.api_base_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = f"Bearer {self.config.api_token}"
        session.headers["Accept"] = "application/json"
        return session

    def _url(self, path: str) -> str:
        return f"{self.api_base_url}/{path.lstrip('/')}"

    def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        url = self._url(path)
        logger.debug("GET %s params=%s", url, params)
        try:
            response = self._get_session().get(
                url, params=params, stream=stream, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ExercismApiError(f"request to {url} failed") from exc
        return response

    def _get_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        response = self._get(path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise ExercismApiError(
                f"invalid JSON in response from {response.url}"
            ) from exc

    def validate_token(self) -> bool:
        """
        Check that the configured API token is accepted by the server.
        """
        self._get("v1/validate_token")
        return True

    def get_solutions(
        self,
        page: int,
        per_page: int | None = None,
        track: str | None = None,
        criteria: str | None = None,
        order: str = "newest_first",
    ) -> tuple[list[Solution], ResponseMeta]:
        """
        Fetch one page of the authenticated user's solutions.

        Args:
            page: 1-based page number.
            per_page: Page size; server default when None.
            track: Only return solutions in this track (server-side filter).
            criteria: Free-text filter, matched against exercise names.
            order: "newest_first" or "oldest_first".

        Returns:
            Tuple of (solutions, paging metadata).
        """
        params: dict[str, Any] = {"page": page, "order": order}
        if per_page is not None:
            params["per_page"] = per_page
        if track is not None:
            params["track_slug"] = track
        if criteria is not None:
            params["criteria"] = criteria

        payload = self._get_json("v2/solutions", params=params)
        try:
            solutions = [
                Solution.model_validate(item) for item in payload["results"]
            ]
            meta = ResponseMeta.model_validate(payload["meta"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ExercismApiError(
                f"unexpected solutions payload for page {page}"
            ) from exc
        return solutions, meta

    def get_solution_files(self, uuid: str) -> list[str]:
        """
        List the paths of the files in a solution's latest iteration.
        """
        payload = self._get_json(f"v1/solutions/{quote(uuid)}")
        try:
            return [str(path) for path in payload["solution"]["files"]]
        except (KeyError, TypeError) as exc:
            raise ExercismApiError(
                f"unexpected payload for solution {uuid}"
            ) from exc

    def stream_file(self, uuid: str, path: str) -> Iterator[bytes]:
        """
        Stream the content of one solution file in chunks.

        The request is only sent when iteration starts. Transport errors
        while streaming are raised as ExercismApiError.
        """
        response = self._get(
            f"v1/solutions/{quote(uuid)}/files/{quote(path)}", stream=True
        )
        with response:
            try:
                for chunk in response.iter_content(STREAM_CHUNK_SIZE):
                    if chunk:
                        yield chunk
            except requests.RequestException as exc:
                raise ExercismApiError(
                    f"transfer of file {path} of solution {uuid} was interrupted"
                ) from exc

    def get_iterations(self, uuid: str) -> list[Iteration]:
        """
        Fetch all iterations of a solution, in ascending index order.
        """
        payload = self._get_json(
            f"v2/solutions/{quote(uuid)}", params={"sideload": "iterations"}
        )
        try:
            return [
                Iteration.model_validate(item)
                for item in payload.get("iterations") or []
            ]
        except (AttributeError, TypeError, ValueError) as exc:
            raise ExercismApiError(
                f"unexpected iterations payload for solution {uuid}"
            ) from exc

    def get_submission_files(
        self, uuid: str, submission_uuid: str
    ) -> list[SubmissionFile]:
        """
        Fetch the files (with content) of one iteration's submission.
        """
        payload = self._get_json(
            f"v2/solutions/{quote(uuid)}/submissions/{quote(submission_uuid)}/files"
        )
        try:
            return [
                SubmissionFile.model_validate(item) for item in payload["files"]
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ExercismApiError(
                f"unexpected files payload for submission {submission_uuid}"
            ) from exc
