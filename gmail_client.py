import logging
from typing import Optional, Protocol

import requests

from mime_message import EncodedMessage

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/{user_id}/messages/send"

log = logging.getLogger(__name__)


class GmailSendError(Exception):
    def __init__(self, status_code: int, detail):
        super().__init__(f"Gmail send failed with {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class AccessTokenProvider(Protocol):
    def access_token(self) -> str: ...


class MailSender(Protocol):
    def send(self, message: EncodedMessage) -> Optional[str]: ...


class GmailClient:
    """Sends pre-encoded messages through the Gmail REST API."""

    def __init__(
        self,
        tokens: AccessTokenProvider,
        user_id: str = "me",
        session: Optional[requests.Session] = None,
        timeout: float = 20,
    ):
        self.tokens = tokens
        self.user_id = user_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, message: EncodedMessage) -> Optional[str]:
        """POST the message and return the id Gmail assigned to it."""
        r = self.session.post(
            GMAIL_SEND_URL.format(user_id=self.user_id),
            headers={
                "Authorization": f"Bearer {self.tokens.access_token()}",
                "Content-Type": "application/json",
            },
            json=message.as_payload(),
            timeout=self.timeout,
        )

        if r.status_code in (200, 202):
            try:
                body = r.json()
            except ValueError:
                body = None
            rid = body.get("id") if isinstance(body, dict) else None
            log.info("Gmail accepted message %s", rid)
            return rid

        try:
            err = r.json()
        except ValueError:
            err = r.text
        if isinstance(err, dict):
            err = err.get("error", err)
        raise GmailSendError(r.status_code, err)
