from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from signal_relay.errors import ExternalServiceError
from signal_relay.utils.logger import get_logger

# Modify is needed to remove the UNREAD label after a report was delivered.
SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
UNREAD_LABEL = "UNREAD"

log = get_logger(__name__)


@dataclass(frozen=True)
class GmailClientConfig:
    # Path to OAuth client credentials downloaded from Google Cloud Console.
    credentials_path: Path
    # Token cache will be created here after first login.
    token_path: Path
    # Gmail userId, "me" refers to the authenticated user.
    user_id: str = "me"
    # Refresh-token auth (headless deployments). Takes precedence over token_path.
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    # Per-request socket timeout for Gmail API calls.
    timeout_seconds: float = 60.0


class GmailClient:
    def __init__(self, cfg: GmailClientConfig, service: Any = None):
        self._cfg = cfg
        self._creds: Optional[Credentials] = None
        self._service = service

    def connect(self) -> None:
        """Create an authenticated Gmail API service client."""
        try:
            creds = self._load_credentials()
        except GoogleAuthError as exc:
            raise ExternalServiceError("Gmail authentication failed.", {"cause": str(exc)}) from exc

        self._creds = creds
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self._cfg.timeout_seconds))
        self._service = build("gmail", "v1", http=http, cache_discovery=False)

    def _load_credentials(self) -> Credentials:
        cfg = self._cfg
        if cfg.refresh_token:
            creds = Credentials(
                None,
                refresh_token=cfg.refresh_token,
                token_uri=TOKEN_URI,
                client_id=cfg.client_id,
                client_secret=cfg.client_secret,
                scopes=SCOPES,
            )
            creds.refresh(Request())
            return creds

        creds = None
        if cfg.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(cfg.token_path), SCOPES)

        # If there are no (valid) credentials available, let the user log in.
        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(cfg.credentials_path),
                    SCOPES,
                )
                creds = flow.run_local_server(port=0)

            # Save the credentials for the next run.
            cfg.token_path.parent.mkdir(parents=True, exist_ok=True)
            cfg.token_path.write_text(creds.to_json(), encoding="utf-8")
        return creds

    @property
    def service(self):
        if self._service is None:
            raise RuntimeError("GmailClient is not connected. Call connect() first.")
        return self._service

    def list_messages(self, query: str = "", max_results: int = 10) -> List[str]:
        """
        List message IDs matching a Gmail search query.
        Example query: 'from:noti@vaibb.com is:unread'
        """
        try:
            resp = (
                self.service.users()
                .messages()
                .list(userId=self._cfg.user_id, q=query, maxResults=max_results)
                .execute()
            )
        except HttpError as exc:
            raise ExternalServiceError(
                "Could not list Gmail messages.", {"query": query, "cause": str(exc)}
            ) from exc
        msgs = resp.get("messages", []) or []
        return [m["id"] for m in msgs if m.get("id")]

    def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]:
        """
        Fetch a full message resource.
        fmt: 'full' | 'metadata' | 'minimal' | 'raw'
        """
        try:
            return (
                self.service.users()
                .messages()
                .get(userId=self._cfg.user_id, id=message_id, format=fmt)
                .execute()
            )
        except HttpError as exc:
            raise ExternalServiceError(
                "Could not fetch Gmail message.", {"message_id": message_id, "cause": str(exc)}
            ) from exc

    def fetch_messages(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        """List candidates and fetch their full bodies."""
        return [self.get_message(mid, fmt="full") for mid in self.list_messages(query, max_results)]

    def mark_as_read(self, message_id: str) -> None:
        try:
            (
                self.service.users()
                .messages()
                .modify(
                    userId=self._cfg.user_id,
                    id=message_id,
                    body={"removeLabelIds": [UNREAD_LABEL]},
                )
                .execute()
            )
        except HttpError as exc:
            raise ExternalServiceError(
                "Could not mark Gmail message as read.",
                {"message_id": message_id, "cause": str(exc)},
            ) from exc
        log.debug("gmail_marked_read", message_id=message_id)

    def get_profile(self) -> Dict[str, Any]:
        """Get the Gmail profile of the authenticated user."""
        try:
            return self.service.users().getProfile(userId=self._cfg.user_id).execute()
        except HttpError as exc:
            raise ExternalServiceError("Could not read Gmail profile.", {"cause": str(exc)}) from exc
