"""Run reports and PR comments."""

from reporting.report import RunReport
from reporting.github import GitHubError, post_pr_comment, pr_number_from_event

__all__ = ['RunReport', 'GitHubError', 'post_pr_comment', 'pr_number_from_event']
