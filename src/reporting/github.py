"""Post run reports back to GitHub pull requests."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

import requests

logger = logging.getLogger(__name__)

GITHUB_API = 'https://api.github.com'


class GitHubError(Exception):
    """GitHub API or environment error."""


def pr_number_from_event(event_path: Optional[str] = None) -> Optional[int]:
    """Read the pull request number from the Actions event payload."""
    path = event_path or os.environ.get('GITHUB_EVENT_PATH')
    if not path or not Path(path).exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            event = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Cannot read event payload {path}: {e}")
        return None
    if not isinstance(event, dict):
        return None
    number = (event.get('pull_request') or {}).get('number') or event.get('number')
    return int(number) if number else None


def post_pr_comment(body: str, pr_number: int,
                    repository: Optional[str] = None,
                    token: Optional[str] = None,
                    api_url: Optional[str] = None,
                    timeout: float = 30.0) -> str:
    """Create a comment on a pull request.

    Args:
        body: Markdown comment body
        pr_number: Pull request number
        repository: owner/name (default: $GITHUB_REPOSITORY)
        token: API token (default: $GITHUB_TOKEN)
        api_url: API base URL (default: $GITHUB_API_URL or api.github.com)

    Returns:
        URL of the created comment

    Raises:
        GitHubError: On missing settings or a failed request (never retried)
    """
    repository = repository or os.environ.get('GITHUB_REPOSITORY')
    token = token or os.environ.get('GITHUB_TOKEN')
    api_url = api_url or os.environ.get('GITHUB_API_URL', GITHUB_API)

    if not repository:
        raise GitHubError("GITHUB_REPOSITORY not set")
    if not token:
        raise GitHubError("GITHUB_TOKEN not set")

    url = f"{api_url}/repos/{repository}/issues/{pr_number}/comments"
    try:
        resp = requests.post(
            url,
            headers={
                'Authorization': f'Bearer {token}',
                'Accept': 'application/vnd.github+json',
            },
            json={'body': body},
            timeout=timeout
        )
    except requests.exceptions.RequestException as e:
        raise GitHubError(f"Cannot reach {api_url}: {e}") from e

    if resp.status_code != 201:
        raise GitHubError(f"Comment failed ({resp.status_code}): {resp.text[:200]}")

    comment_url = resp.json().get('html_url', url)
    logger.info(f"Posted comment to PR #{pr_number}: {comment_url}")
    return comment_url
