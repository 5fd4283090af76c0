"""
X (Twitter) Publisher Module for newscard
=========================================

Posts a comment with its card image. Media can be uploaded two ways:
    - v2:   JSON upload authenticated with the OAuth 2.0 user access token
    - v1_1: tweepy's v1.1 ``media_upload`` using OAuth 1.0a user keys
The configured strategy is tried first and the other one is the fallback.

Required API credentials (in .env):
    X_CLIENT_ID, X_CLIENT_SECRET - OAuth 2.0 app credentials
    X_REFRESH_TOKEN              - OAuth 2.0 refresh token (offline.access)
Optional, for the v1.1 upload path:
    X_API_KEY, X_API_SECRET, X_ACCESS_TOKEN, X_ACCESS_TOKEN_SECRET

X rotates the refresh token on every refresh. The new token is written
back to .env when the file exists, or to the repository secret through
``gh secret set`` when GH_PAT is available.
"""

import base64
import io
import os
import re
import subprocess
from pathlib import Path

import requests
import tweepy
from rich.console import Console

from newscard.errors import ConfigurationError, TransientIOError

console = Console()

TOKEN_URL = "https://api.x.com/2/oauth2/token"
MEDIA_V2_URL = "https://api.x.com/2/media/upload"
MEDIA_METADATA_V2_URL = "https://api.x.com/2/media/metadata"
POST_URL = "https://x.com/i/web/status/{id}"
ALT_TEXT_MAX = 1000

OAUTH2_VARS = ("X_CLIENT_ID", "X_CLIENT_SECRET", "X_REFRESH_TOKEN")
OAUTH1_VARS = ("X_API_KEY", "X_API_SECRET", "X_ACCESS_TOKEN", "X_ACCESS_TOKEN_SECRET")


def _json(response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def refresh_access_token(ctx) -> dict:
    """Exchange the refresh token for an access token.

    Returns:
        dict with 'access_token', 'expires_in' and possibly 'refresh_token'.
    """
    creds = ctx.require(*OAUTH2_VARS)
    try:
        response = requests.post(
            TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": creds["X_REFRESH_TOKEN"],
                "client_id": creds["X_CLIENT_ID"],
            },
            auth=(creds["X_CLIENT_ID"], creds["X_CLIENT_SECRET"]),
            timeout=ctx.timeout,
        )
    except requests.RequestException as e:
        raise TransientIOError(f"Token refresh failed: {e}") from e

    data = _json(response)
    if response.status_code >= 400 or "access_token" not in data:
        raise TransientIOError(f"Token refresh failed ({response.status_code}): {data}")

    new_refresh = data.get("refresh_token")
    if new_refresh and new_refresh != creds["X_REFRESH_TOKEN"]:
        persist_refresh_token(ctx, new_refresh)

    return data


def _update_env_var(env_path: Path, var_name: str, new_value: str):
    """Replace (or append) one variable in the .env file, preserving the rest."""
    content = env_path.read_text()
    pattern = rf"^{re.escape(var_name)}=.*$"
    line = f"{var_name}={new_value}"
    if re.search(pattern, content, re.MULTILINE):
        content = re.sub(pattern, lambda _: line, content, flags=re.MULTILINE)
    else:
        content = content.rstrip("\n") + f"\n{line}\n"
    env_path.write_text(content)


def persist_refresh_token(ctx, new_token: str):
    """Store a rotated refresh token so the next run can still authenticate."""
    ctx.env["X_REFRESH_TOKEN"] = new_token
    env_path = ctx.root / ".env"
    if env_path.exists():
        _update_env_var(env_path, "X_REFRESH_TOKEN", new_token)
        console.print("[green]Rotated X_REFRESH_TOKEN written to .env[/green]")
        return

    gh_pat = ctx.get("GH_PAT")
    repository = ctx.get("GITHUB_REPOSITORY")
    if not gh_pat or not repository:
        console.print(
            "[yellow]X_REFRESH_TOKEN was rotated but there is no .env or GH_PAT "
            "to store it. The next run will need a new token.[/yellow]"
        )
        return

    result = subprocess.run(
        ["gh", "secret", "set", "X_REFRESH_TOKEN", "--body", new_token, "--repo", repository],
        env={**os.environ, "GITHUB_TOKEN": gh_pat},
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        console.print(f"[red]gh secret set failed: {result.stderr.strip()}[/red]")
        return
    console.print("[green]Rotated X_REFRESH_TOKEN stored in repository secrets.[/green]")


class XPublisher:
    """Client for uploading card media and posting to X."""

    def __init__(self, ctx, access_token: str):
        self.ctx = ctx
        self.access_token = access_token
        self.timeout = ctx.timeout
        self._client: tweepy.Client | None = None
        self._api_v11: tweepy.API | None = None

    @classmethod
    def login(cls, ctx) -> "XPublisher":
        token = refresh_access_token(ctx)
        console.print("[bold green]X access token refreshed.[/bold green]")
        return cls(ctx, token["access_token"])

    def _ensure_client(self) -> tweepy.Client:
        if self._client is None:
            # A user-context OAuth 2.0 access token is passed as the bearer token
            self._client = tweepy.Client(bearer_token=self.access_token)
        return self._client

    def _ensure_api_v11(self) -> tweepy.API:
        if self._api_v11 is None:
            try:
                creds = self.ctx.require(*OAUTH1_VARS)
            except ConfigurationError as e:
                raise TransientIOError(f"v1.1 upload unavailable: {e}") from e
            auth = tweepy.OAuth1UserHandler(
                creds["X_API_KEY"], creds["X_API_SECRET"],
                creds["X_ACCESS_TOKEN"], creds["X_ACCESS_TOKEN_SECRET"],
            )
            self._api_v11 = tweepy.API(auth, timeout=self.timeout)
        return self._api_v11

    def upload_media_v2(self, data: bytes, alt_text: str = "") -> str:
        payload = {
            "media": base64.b64encode(data).decode("ascii"),
            "media_category": "tweet_image",
            "media_type": "image/png",
        }
        try:
            response = requests.post(
                MEDIA_V2_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientIOError(f"v2 media upload failed: {e}") from e

        body = _json(response)
        media_id = body.get("media_id") or (body.get("data") or {}).get("id")
        if response.status_code >= 400 or not media_id:
            raise TransientIOError(f"v2 media upload failed ({response.status_code}): {body}")

        if alt_text:
            self._set_alt_text_v2(str(media_id), alt_text)
        return str(media_id)

    def _set_alt_text_v2(self, media_id: str, alt_text: str):
        try:
            response = requests.post(
                MEDIA_METADATA_V2_URL,
                json={"id": media_id, "metadata": {"alt_text": {"text": alt_text[:ALT_TEXT_MAX]}}},
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                console.print(f"[yellow]Alt text not set for media {media_id}: {response.text[:120]}[/yellow]")
        except requests.RequestException as e:
            console.print(f"[yellow]Alt text not set for media {media_id}: {e}[/yellow]")

    def upload_media_v11(self, data: bytes, alt_text: str = "") -> str:
        api = self._ensure_api_v11()
        try:
            media = api.media_upload(
                filename="card.png", file=io.BytesIO(data), media_category="tweet_image",
            )
        except tweepy.TweepyException as e:
            raise TransientIOError(f"v1.1 media upload failed: {e}") from e

        media_id = media.media_id_string
        if alt_text:
            try:
                api.create_media_metadata(media_id, alt_text[:ALT_TEXT_MAX])
            except tweepy.TweepyException as e:
                console.print(f"[yellow]Alt text not set for media {media_id}: {e}[/yellow]")
        return media_id

    def upload_strategies(self, primary: str = "v2") -> list[tuple[str, object]]:
        """Upload callables in the order they should be tried."""
        strategies = {"v2": self.upload_media_v2, "v1_1": self.upload_media_v11}
        if primary not in strategies:
            console.print(f"[yellow]Unknown media strategy '{primary}', using v2.[/yellow]")
            primary = "v2"
        secondary = "v1_1" if primary == "v2" else "v2"
        return [(primary, strategies[primary]), (secondary, strategies[secondary])]

    def post(self, text: str, media_ids: list[str]) -> str:
        """Publish a post and return its id."""
        client = self._ensure_client()
        try:
            response = client.create_tweet(
                text=text, media_ids=media_ids or None, user_auth=False,
            )
        except tweepy.TweepyException as e:
            raise TransientIOError(f"Post failed: {e}") from e
        post_id = str(response.data["id"])
        console.print(f"[bold green]Published:[/bold green] {POST_URL.format(id=post_id)}")
        return post_id
