from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Dict, List, Optional, Sequence

from .utils import mask_email

logger = logging.getLogger("salesguard.mailer")


def format_transcript(transcript: Sequence[Dict[str, str]]) -> str:
    lines = []
    for entry in transcript:
        speaker = "Customer" if entry.get("role") == "user" else "Gwen"
        lines.append(f"{speaker}: {entry.get('content', '')}")
    return "\n\n".join(lines)


class EscalationMailer:
    """Send conversation escalations to the fixed internal sales inbox."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        recipients: Sequence[str],
        timeout_seconds: float = 15.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._sender = sender or user
        self._recipients: List[str] = [r for r in recipients if r]
        self._timeout = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self._host and self._sender and self._recipients)

    def build_message(
        self,
        session_id: str,
        reason: str,
        transcript: Sequence[Dict[str, str]],
        customer_email: Optional[str] = None,
        customer_postcode: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"Customer handoff requested ({reason[:60]})"
        message["From"] = self._sender
        message["To"] = ", ".join(self._recipients)
        if customer_email:
            message["Reply-To"] = customer_email
        body = [
            f"Session: {session_id}",
            f"Reason: {reason}",
            f"Customer email: {customer_email or 'not captured'}",
            f"Postcode: {customer_postcode or 'not captured'}",
            "",
            "Conversation transcript",
            "-----------------------",
            format_transcript(transcript) or "(empty)",
        ]
        message.set_content("\n".join(body))
        return message

    async def send_escalation(
        self,
        session_id: str,
        reason: str,
        transcript: Sequence[Dict[str, str]],
        customer_email: Optional[str] = None,
        customer_postcode: Optional[str] = None,
    ) -> bool:
        """Purpose: Email the transcript and captured contact details to the sales team.
        Inputs/Outputs: Inputs are the session id, reason, transcript and optional
            contact details; returns True when the message was handed to SMTP.
        Side Effects / State: SMTP delivery in a worker thread; logs the outcome.
        Dependencies: smtplib through asyncio.to_thread.
        Failure Modes: Missing configuration and SMTP/network errors return False
            with a warning; the chat turn continues.
        If Removed: Handoff requests are only logged.
        Testing Notes: Monkeypatch _deliver and assert the built message content.
        """
        # Never let delivery problems reach the customer.
        if not self.configured:
            logger.warning("escalation skipped session=%s reason=smtp-not-configured", session_id)
            return False
        message = self.build_message(session_id, reason, transcript, customer_email, customer_postcode)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("escalation failed session=%s error=%s", session_id, exc)
            return False
        logger.info(
            "escalation sent session=%s customer=%s recipients=%d",
            session_id,
            mask_email(customer_email),
            len(self._recipients),
        )
        return True

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            if self._user and self._password:
                smtp.login(self._user, self._password)
            smtp.send_message(message)
