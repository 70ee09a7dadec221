"""Publishing rendered reports as pull-request comments.

:class:`GitHubPublisher` posts to the GitHub REST API through a single
``requests.Session`` created at startup. Failures raise
:class:`~prbench.errors.PublishError` and are never retried.
"""

from __future__ import annotations

from typing import Protocol

import requests

from prbench import __version__
from prbench.errors import PublishError
from prbench.logging import get_logger

log = get_logger("publish")

_USER_AGENT = f"prbench/{__version__}"


class Publisher(Protocol):
    """Anything that can post a report for a pull request."""

    def publish(self, pr_number: int, body: str) -> None: ...


class GitHubPublisher:
    """Posts comments on pull requests of one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": _USER_AGENT,
            }
        )

    def comments_url(self, pr_number: int) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/issues/{pr_number}/comments"

    def publish(self, pr_number: int, body: str) -> None:
        """Create a comment on pull request *pr_number*.

        Raises:
            PublishError: On connection errors, timeouts or a non-2xx response.
        """
        url = self.comments_url(pr_number)
        try:
            resp = self.session.post(url, json={"body": body}, timeout=self.timeout)
        except requests.ConnectionError as exc:
            raise PublishError(f"Connection error posting comment on #{pr_number}") from exc
        except requests.Timeout as exc:
            raise PublishError(f"Timeout posting comment on #{pr_number}") from exc
        except requests.RequestException as exc:
            raise PublishError(f"Request error posting comment on #{pr_number}: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise PublishError(
                f"GitHub returned {resp.status_code} for comment on #{pr_number}: "
                f"{resp.text[:200]}"
            )
        log.info("Posted benchmark comment on %s/%s#%d", self.owner, self.repo, pr_number)

    def close(self) -> None:
        self.session.close()


class DryRunPublisher:
    """Keeps reports instead of posting them."""

    def __init__(self) -> None:
        self.published: list[tuple[int, str]] = []

    def publish(self, pr_number: int, body: str) -> None:
        log.info("Dry run: not posting comment on #%d (%d chars)", pr_number, len(body))
        self.published.append((pr_number, body))
