"""
GitHub Issues client for newscard
=================================

Proposal batches live in an issue body (see ``newscard.metadata``). This
module only moves bodies and comments over the REST API.

Required credentials (in .env or the Actions environment):
    GITHUB_TOKEN       - token with ``issues: write``
    GITHUB_REPOSITORY  - ``owner/repo``
"""

import requests
from rich.console import Console

from newscard.errors import TransientIOError

console = Console()

API_URL = "https://api.github.com"
PROPOSAL_LABEL = "news-proposal"


class GitHubIssues:
    """Thin wrapper over the issues endpoints of one repository."""

    def __init__(self, owner: str, repo: str, token: str, timeout: float = 20):
        self.owner = owner
        self.repo = repo
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "newscard-bot",
        })

    @classmethod
    def from_context(cls, ctx) -> "GitHubIssues | None":
        """Build a client when the context has GitHub credentials, else None."""
        if not ctx.github_enabled:
            return None
        owner, repo = ctx.repository
        return cls(owner, repo, ctx.get("GITHUB_TOKEN"), timeout=ctx.timeout)

    @property
    def base(self) -> str:
        return f"{API_URL}/repos/{self.owner}/{self.repo}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientIOError(f"{method} {url} failed: {e}") from e
        return response

    def _check(self, response: requests.Response, action: str) -> requests.Response:
        if response.status_code >= 400:
            raise TransientIOError(
                f"GitHub {action} failed ({response.status_code}): {response.text[:200]}"
            )
        return response

    def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> dict:
        """Create an issue. Returns ``{"number": int, "html_url": str}``."""
        response = self._check(
            self._request("POST", "/issues", json={
                "title": title,
                "body": body,
                "labels": labels if labels is not None else [PROPOSAL_LABEL],
            }),
            "issue create",
        )
        data = response.json()
        return {"number": data["number"], "html_url": data.get("html_url", "")}

    def update_issue(self, number: int, body: str):
        self._check(self._request("PATCH", f"/issues/{number}", json={"body": body}), "issue update")

    def fetch_issue_body(self, number: int) -> str:
        response = self._check(self._request("GET", f"/issues/{number}"), "issue fetch")
        return response.json().get("body") or ""

    def comment(self, number: int, body: str):
        self._check(
            self._request("POST", f"/issues/{number}/comments", json={"body": body}),
            "issue comment",
        )

    def ensure_label(self, name: str = PROPOSAL_LABEL):
        """Create the proposal label if the repository does not have it yet."""
        response = self._request("GET", f"/labels/{name}")
        if response.status_code == 200:
            return
        if response.status_code != 404:
            self._check(response, "label fetch")
        self._check(
            self._request("POST", "/labels", json={
                "name": name,
                "color": "8c8c8c",
                "description": "Candidates awaiting review for automatic posting",
            }),
            "label create",
        )
        console.print(f"[green]Created label '{name}'.[/green]")


def raw_content_base(ctx) -> str | None:
    """raw.githubusercontent.com base for the current branch, used for card previews."""
    repo = ctx.get("GITHUB_REPOSITORY")
    branch = ctx.get("GITHUB_REF_NAME")
    if not branch:
        ref = ctx.get("GITHUB_REF", "")
        if ref.startswith("refs/heads/"):
            branch = ref[len("refs/heads/"):]
    if not repo or not branch:
        return None
    return f"https://raw.githubusercontent.com/{repo}/{branch}"
