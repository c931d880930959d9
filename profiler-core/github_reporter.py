#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
GitHub Reporter - Posts the rendered report as a pull-request comment.
"""

import json
import logging
import os
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class GitHubReporter:
    """Thin client for the issue-comment endpoint of the GitHub REST API."""

    def __init__(self, token=None, repository=None, pr_number=None, api_url=None):

        self.token = token or os.getenv('GITHUB_TOKEN')

        self.repository = repository or os.getenv('GITHUB_REPOSITORY')

        self.api_url = (api_url or os.getenv('GITHUB_API_URL', 'https://api.github.com')).rstrip('/')

        self.pr_number = pr_number or self._resolve_pr_number()

    def _resolve_pr_number(self) -> Optional[int]:
        """PR number from PR_NUMBER, else from the pull_request event payload."""
        explicit = os.getenv('PR_NUMBER')
        if explicit and explicit.isdigit():
            return int(explicit)

        event_path = os.getenv('GITHUB_EVENT_PATH')
        if not event_path:
            return None
        try:
            with open(event_path, 'r', encoding='utf-8') as f:
                event = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("github_event_unreadable path=%s error=%s", event_path, str(e))
            return None
        number = (event.get('pull_request') or {}).get('number')
        return int(number) if number else None

    @property
    def configured(self) -> bool:
        return bool(self.token and self.repository and self.pr_number)

    def post_comment(self, body: str) -> bool:
        """Posts body to the pull request. Returns False instead of raising."""
        if not self.configured:
            logger.warning("github_comment_skipped reason=missing_configuration repository=%s pr=%s",
                self.repository, self.pr_number)
            return False

        url = f"{self.api_url}/repos/{self.repository}/issues/{self.pr_number}/comments"
        try:
            response = requests.post(
                url,
                headers={
                    'Authorization': f"Bearer {self.token}",
                    'Accept': 'application/vnd.github+json',
                },
                json={'body': body},
                timeout=30
            )
        except requests.RequestException as e:
            logger.error("github_comment_failed error=%s", str(e))
            return False

        if response.status_code != 201:
            logger.error("github_comment_failed status=%s body=%s", response.status_code, response.text[:200])
            return False

        logger.info("github_comment_posted repository=%s pr=%s", self.repository, self.pr_number)
        return True
