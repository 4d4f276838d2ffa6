# studyhub/services/email_service.py
from __future__ import annotations

import logging
from typing import Dict, Optional

from flask import current_app, render_template
from flask_mail import Message

from studyhub import mail
from studyhub.errors import DispatchFailure
from studyhub.services import worker

logger = logging.getLogger(__name__)

SIMPLE_LINK_HTML = "email/simple_link.html"
SIMPLE_LINK_TEXT = "email/simple_link.txt"


def _plain_fallback(context: Dict) -> str:
    link = f"{context.get('host', '')}{context.get('link', '')}"
    return f"{context.get('message', '')}\n\n{context.get('link_name', link)}: {link}\n"


def build_message(
    to: str,
    subject: str,
    context: Dict,
    html_template: Optional[str] = SIMPLE_LINK_HTML,
    text_template: Optional[str] = SIMPLE_LINK_TEXT,
) -> Message:
    msg = Message(subject=subject, recipients=[to])
    try:
        msg.body = render_template(text_template, **context) if text_template else _plain_fallback(context)
    except Exception as e:
        # Fallback to a plain body if the template is missing or broken
        logger.warning(f"Text template {text_template} failed to render: {e}")
        msg.body = _plain_fallback(context)
    if html_template:
        try:
            msg.html = render_template(html_template, **context)
        except Exception as e:
            logger.warning(f"HTML template {html_template} failed to render: {e}")
    return msg


def send_email(
    to: str,
    subject: str,
    context: Dict,
    html_template: Optional[str] = SIMPLE_LINK_HTML,
    text_template: Optional[str] = SIMPLE_LINK_TEXT,
    attempt: int = 1,
) -> bool:
    """
    Send one templated email. Never raises.

    A failed send is retried through the worker pool after
    ``DISPATCH_RETRY_DELAY``, at most ``DISPATCH_MAX_RETRIES`` times, then
    dropped with an error log.

    Returns:
        bool: True when this attempt was handed to the mail server
    """
    try:
        mail.send(build_message(to, subject, context, html_template, text_template))
        logger.info(f"Sent email '{subject}' to {to} (attempt {attempt})")
        return True
    except Exception as e:
        failure = DispatchFailure(to, e)
        max_retries = current_app.config.get("DISPATCH_MAX_RETRIES", 3)
        if attempt > max_retries:
            logger.error(f"Dropping email '{subject}': {failure} after {attempt} attempt(s)", exc_info=True)
            return False

        logger.warning(f"{failure} (attempt {attempt}/{max_retries + 1}); retrying")
        try:
            worker.submit(
                send_email, to, subject, context, html_template, text_template, attempt + 1,
                delay=current_app.config.get("DISPATCH_RETRY_DELAY"),
            )
        except Exception as schedule_error:
            logger.error(f"Could not schedule retry of email '{subject}' to {to}: {schedule_error}", exc_info=True)
        return False
