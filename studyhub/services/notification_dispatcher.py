# studyhub/services/notification_dispatcher.py
"""
Turns committed domain events into web notifications and emails.

Handlers run after the triggering transaction has committed (on the worker
pool, or inline in tests). Each recipient is handled in isolation: a failure
for one recipient is logged and the rest of the audience still gets notified.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from flask import current_app

from studyhub import db
from studyhub.errors import DispatchFailure
from studyhub.models import Account, NotificationType, Notification
from studyhub.models.loaders import (
    load_enrollment_with_event_and_study,
    load_study_with_managers_and_members,
    load_study_with_tags_and_zones,
)
from studyhub.services.account_service import AccountService
from studyhub.services.domain_events import EnrollmentDecided, StudyCreated, StudyUpdated
from studyhub.services.email_service import send_email
from studyhub.utils.clock import utcnow
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class FanOutResult:
    emails: List[str] = field(default_factory=list)
    web: List[int] = field(default_factory=list)
    failed: List[DispatchFailure] = field(default_factory=list)


def _save_notification(account, title, link, message, notification_type):
    with unit_of_work():
        db.session.add(Notification(
            account_id=account.id,
            title=title,
            link=link,
            message=message,
            notification_type=notification_type,
            checked=False,
            created_at=utcnow(),
        ))


def fan_out(
    audience: Iterable[Account],
    *,
    title: str,
    link: str,
    message: str,
    subject: str,
    notification_type: NotificationType,
    email_pref: str,
    web_pref: str,
) -> FanOutResult:
    """
    Deliver one notification to each account according to its preferences.

    ``email_pref`` and ``web_pref`` name the Account toggles that gate the two
    channels.
    """
    result = FanOutResult()
    host = current_app.config["APP_HOST"]

    for account in audience:
        try:
            if getattr(account, email_pref):
                sent = send_email(
                    account.email,
                    subject,
                    {
                        "link": link,
                        "nickname": account.nickname,
                        "link_name": title,
                        "message": message,
                        "host": host,
                    },
                )
                if sent:
                    result.emails.append(account.email)
                else:
                    failure = DispatchFailure(account.email, "email not delivered; handed to retry")
                    result.failed.append(failure)
                    logger.warning(f"{notification_type.value}: {failure}")
            if getattr(account, web_pref):
                _save_notification(account, title, link, message, notification_type)
                result.web.append(account.id)
        except Exception as e:
            failure = DispatchFailure(account.email, e)
            result.failed.append(failure)
            logger.error(f"{notification_type.value}: {failure}", exc_info=True)

    logger.info(
        f"{notification_type.value} '{title}': {len(result.emails)} email(s), "
        f"{len(result.web)} web notification(s), {len(result.failed)} failure(s)"
    )
    return result


def _dedupe(accounts: Iterable[Account]) -> List[Account]:
    seen, unique = set(), []
    for account in accounts:
        if account.id not in seen:
            seen.add(account.id)
            unique.append(account)
    return unique


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def handle_study_created(event: StudyCreated):
    study = load_study_with_tags_and_zones(event.study_id)
    if study is None:
        logger.warning(f"StudyCreated for missing study {event.study_id}; skipped")
        return None

    audience = AccountService.find_by_tags_and_zones(study.tags, study.zones)
    return fan_out(
        audience,
        title=study.title,
        link=study.link,
        message=study.short_description or "A new study has been opened.",
        subject=f"StudyHub: new study '{study.title}'",
        notification_type=NotificationType.STUDY_CREATED,
        email_pref="study_created_by_email",
        web_pref="study_created_by_web",
    )


def handle_study_updated(event: StudyUpdated):
    study = load_study_with_managers_and_members(event.study_id)
    if study is None:
        logger.warning(f"StudyUpdated for missing study {event.study_id}; skipped")
        return None

    audience = _dedupe(list(study.managers) + list(study.members))
    return fan_out(
        audience,
        title=study.title,
        link=study.link,
        message=event.message,
        subject=f"StudyHub: '{study.title}' has news",
        notification_type=NotificationType.STUDY_UPDATED,
        email_pref="study_updated_by_email",
        web_pref="study_updated_by_web",
    )


def handle_enrollment_decided(event: EnrollmentDecided):
    enrollment = load_enrollment_with_event_and_study(event.enrollment_id)
    if enrollment is None or enrollment.event is None:
        logger.info(f"Enrollment {event.enrollment_id} no longer exists; result notification skipped")
        return None

    study_event = enrollment.event
    study = study_event.study
    outcome = "accepted" if event.accepted else "rejected"
    return fan_out(
        [enrollment.account],
        title=study.title,
        link=f"{study.link}/events/{study_event.id}",
        message=f"Your enrollment in '{study_event.title}' has been {outcome}.",
        subject=f"StudyHub: enrollment {outcome} for '{study_event.title}'",
        notification_type=NotificationType.EVENT_ENROLLMENT,
        email_pref="study_enrollment_result_by_email",
        web_pref="study_enrollment_result_by_web",
    )


def register_handlers(bus):
    """Subscribe the dispatcher to every domain event it consumes."""
    bus.subscribe(StudyCreated, handle_study_created)
    bus.subscribe(StudyUpdated, handle_study_updated)
    bus.subscribe(EnrollmentDecided, handle_enrollment_decided)
