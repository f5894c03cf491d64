"""Gmail REST adapter and message extraction.

Covers what the automation engine needs from Gmail: push watch
registration, incremental history, full message fetch, and sending.
"""

import base64
import binascii
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import httpx

from crm_automation.core.config import settings
from crm_automation.services.http_service import raise_for_provider, request_with_retries
from crm_automation.services.trigger_matching import is_reply

logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
INBOX_LABEL = "INBOX"


def _auth(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


class GmailClient:
    """Token-per-call Gmail client over a shared httpx.AsyncClient."""

    def __init__(self, http: httpx.AsyncClient, base_url: str = GMAIL_API_URL) -> None:
        self.http = http
        self.base_url = base_url

    async def watch(self, access_token: str, topic_name: str | None = None) -> dict[str, Any]:
        """Register INBOX push delivery. Returns {"historyId", "expiration" (ms epoch)}."""
        response = await self.http.post(
            f"{self.base_url}/watch",
            headers=_auth(access_token),
            json={
                "topicName": topic_name or settings.GMAIL_PUBSUB_TOPIC,
                "labelIds": [INBOX_LABEL],
                "labelFilterBehavior": "INCLUDE",
            },
        )
        raise_for_provider(response, "gmail", "watch")
        return response.json()

    async def stop(self, access_token: str) -> None:
        """Stop push delivery for the mailbox."""
        response = await self.http.post(f"{self.base_url}/stop", headers=_auth(access_token))
        raise_for_provider(response, "gmail", "stop")

    async def list_history(
        self, access_token: str, start_history_id: str
    ) -> tuple[list[str], str | None]:
        """List messages added to INBOX since start_history_id.

        Returns (message ids in provider order without duplicates, latest history id).
        """
        message_ids: list[str] = []
        seen: set[str] = set()
        latest_history_id: str | None = None
        page_token: str | None = None

        while True:
            params = {
                "startHistoryId": start_history_id,
                "historyTypes": "messageAdded",
                "labelId": INBOX_LABEL,
            }
            if page_token:
                params["pageToken"] = page_token

            response = await request_with_retries(
                lambda: self.http.get(
                    f"{self.base_url}/history", headers=_auth(access_token), params=params
                )
            )
            raise_for_provider(response, "gmail", "history")
            data = response.json()

            if data.get("historyId"):
                latest_history_id = str(data["historyId"])
            for record in data.get("history") or []:
                for added in record.get("messagesAdded") or []:
                    message_id = (added.get("message") or {}).get("id")
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        message_ids.append(message_id)

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return message_ids, latest_history_id

    async def get_message(self, access_token: str, message_id: str) -> dict[str, Any]:
        """Fetch a full message."""
        response = await request_with_retries(
            lambda: self.http.get(
                f"{self.base_url}/messages/{message_id}",
                headers=_auth(access_token),
                params={"format": "full"},
            )
        )
        raise_for_provider(response, "gmail", "get message")
        return response.json()

    async def send_message(
        self,
        access_token: str,
        to: str,
        subject: str,
        body: str,
        *,
        sender: str | None = None,
        html: bool = False,
    ) -> dict[str, Any]:
        """Send an email. Returns {"id", "threadId", ...}."""
        raw = build_raw_message(to, subject, body, sender=sender, html=html)
        response = await self.http.post(
            f"{self.base_url}/messages/send",
            headers=_auth(access_token),
            json={"raw": raw},
        )
        raise_for_provider(response, "gmail", "send")
        return response.json()

    async def get_profile(self, access_token: str) -> dict[str, Any]:
        """Mailbox profile: emailAddress, historyId."""
        response = await request_with_retries(
            lambda: self.http.get(f"{self.base_url}/profile", headers=_auth(access_token))
        )
        raise_for_provider(response, "gmail", "profile")
        return response.json()


def build_raw_message(
    to: str, subject: str, body: str, *, sender: str | None = None, html: bool = False
) -> str:
    """MIME-encode a message as base64url for messages.send."""
    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "html", "utf-8"))
    else:
        msg = MIMEText(body, "plain", "utf-8")

    msg["To"] = to
    if sender:
        msg["From"] = sender
    msg["Subject"] = subject

    return base64.urlsafe_b64encode(msg.as_bytes()).decode()


# =============================================================================
# Message extraction
# =============================================================================


def decode_body(data: str | None) -> str:
    """Decode a Gmail base64url body, tolerating missing padding."""
    if not data:
        return ""
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        logger.warning("Could not decode Gmail message body")
        return ""


def _walk_parts(part: dict[str, Any]):
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)


def _find_body(payload: dict[str, Any], mime_type: str) -> str:
    for part in _walk_parts(payload):
        if part.get("mimeType") == mime_type and not part.get("filename"):
            data = (part.get("body") or {}).get("data")
            if data:
                return decode_body(data)
    return ""


def _attachments(payload: dict[str, Any]) -> list[dict[str, Any]]:
    attachments = []
    for part in _walk_parts(payload):
        body = part.get("body") or {}
        if part.get("filename") or body.get("attachmentId"):
            attachments.append(
                {
                    "filename": part.get("filename") or "",
                    "mime_type": part.get("mimeType") or "",
                    "size": body.get("size") or 0,
                    "attachment_id": body.get("attachmentId"),
                }
            )
    return attachments


def extract_email_data(message: dict[str, Any]) -> dict[str, Any]:
    """Normalize a full Gmail message into template data under ``email``."""
    payload = message.get("payload") or {}
    headers = {
        (h.get("name") or "").lower(): h.get("value") or ""
        for h in payload.get("headers") or []
    }

    body = _find_body(payload, "text/plain")
    html_body = _find_body(payload, "text/html")
    # Single-part messages carry the body on the payload itself
    if not body and not html_body and (payload.get("body") or {}).get("data"):
        decoded = decode_body(payload["body"]["data"])
        if payload.get("mimeType") == "text/html":
            html_body = decoded
        else:
            body = decoded

    attachments = _attachments(payload)
    in_reply_to = headers.get("in-reply-to", "")
    references = headers.get("references", "")

    return {
        "id": message.get("id", ""),
        "thread_id": message.get("threadId", ""),
        "from": headers.get("from", ""),
        "to": headers.get("to", ""),
        "cc": headers.get("cc", ""),
        "subject": headers.get("subject", ""),
        "date": headers.get("date", ""),
        "snippet": message.get("snippet", ""),
        "body": body,
        "html_body": html_body,
        "has_attachment": bool(attachments),
        "attachments": attachments,
        "label_ids": list(message.get("labelIds") or []),
        "in_reply_to": in_reply_to,
        "references": references,
        "is_reply": is_reply(in_reply_to, references),
    }
