from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Dict, List, Tuple

from bs4 import BeautifulSoup

from signal_relay.errors import ExternalServiceError
from signal_relay.models import NormalizedMail

# Real notification mails nest two or three levels; anything deeper is garbage.
MAX_MIME_DEPTH = 64


def decode_body(data: str | None) -> str:
    """Decode a Gmail base64url body, tolerating missing padding."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def header_map(headers: List[Dict[str, Any]] | None) -> Dict[str, str]:
    """Gmail header list -> {lower-cased name: value}. Later duplicates win."""
    result: Dict[str, str] = {}
    for header in headers or []:
        name = header.get("name")
        value = header.get("value")
        if not name or not value:
            continue
        result[name.lower()] = value
    return result


def extract_bodies(payload: Dict[str, Any]) -> Tuple[str, str]:
    """
    Walk the MIME tree depth-first and return (plain_text, html_text).
    Every text/plain and text/html leaf is decoded and concatenated in order.
    """
    plain: List[str] = []
    html: List[str] = []

    # Children are pushed in reverse so they pop in document order.
    stack: List[Tuple[Dict[str, Any], int]] = [(payload, 0)]
    while stack:
        part, depth = stack.pop()
        if depth > MAX_MIME_DEPTH:
            continue

        mime_type = part.get("mimeType")
        if mime_type == "text/plain":
            plain.append(decode_body((part.get("body") or {}).get("data")))
            continue
        if mime_type == "text/html":
            html.append(decode_body((part.get("body") or {}).get("data")))
            continue

        for child in reversed(part.get("parts") or []):
            stack.append((child, depth + 1))

    return "".join(plain), "".join(html)


def normalize_message(message: Dict[str, Any]) -> NormalizedMail:
    """Turn a Gmail `format=full` message resource into a NormalizedMail."""
    message_id = message.get("id")
    thread_id = message.get("threadId")
    payload = message.get("payload")
    if not message_id or not thread_id or not payload:
        raise ExternalServiceError("Gmail message is missing id, threadId or payload.", {"id": message_id})

    headers = header_map(payload.get("headers"))
    plain_text, html_text = extract_bodies(payload)

    return NormalizedMail(
        id=message_id,
        thread_id=thread_id,
        subject=headers.get("subject", ""),
        snippet=message.get("snippet") or "",
        from_=headers.get("from", ""),
        to=headers.get("to", ""),
        date=headers.get("date", ""),
        plain_text=plain_text,
        html_text=html_text,
        headers=headers,
        internal_date_ms=int(message.get("internalDate") or 0),
        label_ids=tuple(str(x) for x in (message.get("labelIds") or [])),
    )


def html_to_text(html: str) -> str:
    """Render HTML to plain text, one block element per line."""
    if not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for el in soup(["script", "style", "head"]):
        el.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(["p", "div", "tr", "li", "h1", "h2", "h3", "h4", "h5", "h6"]):
        tag.insert_before("\n")
        tag.insert_after("\n")
    text = soup.get_text(separator=" ")
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def mail_text(mail: NormalizedMail) -> str:
    """Best plain-text view of a mail body."""
    if mail.plain_text.strip():
        return mail.plain_text
    if mail.html_text.strip():
        return html_to_text(mail.html_text)
    return mail.snippet
