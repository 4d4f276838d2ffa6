"""
Notification Dispatcher Tests

Audience resolution, per-preference branching, per-recipient isolation and
bounded email retry.
"""

from unittest.mock import patch

import pytest

from studyhub import db, mail
from studyhub.models import EventType, Notification, NotificationType
from studyhub.services import email_service
from studyhub.services.domain_events import EnrollmentDecided, StudyCreated, StudyUpdated
from studyhub.services.enrollment_engine import EnrollmentEngine
from studyhub.services.notification_dispatcher import (
    handle_enrollment_decided,
    handle_study_created,
    handle_study_updated,
)
from studyhub.services.study_service import StudyService
from studyhub.services.tag_service import TagService, ZoneService


class TestStudyUpdatedAudience:
    """Managers and members, deduplicated."""

    @pytest.fixture
    def crowded_study(self, make_account, make_study):
        both = dict(study_updated_by_email=True, study_updated_by_web=True)
        managers = [make_account("lead1", **both), make_account("lead2", **both)]
        members = [
            managers[0],  # also a member
            make_account("member1", **both),
            make_account("member2", **both),
            make_account("member3", study_updated_by_email=False, study_updated_by_web=True),
        ]
        study = make_study(managers[0], members=members)
        study.managers.append(managers[1])
        db.session.commit()
        return study

    def test_four_emails_and_five_web_notifications(self, crowded_study):
        with mail.record_messages() as outbox:
            result = handle_study_updated(StudyUpdated(study_id=crowded_study.id, message="Schedule moved"))

        assert len(outbox) == 4
        assert len(result.web) == 5
        assert len(set(result.web)) == 5
        assert Notification.query.filter_by(notification_type=NotificationType.STUDY_UPDATED).count() == 5
        assert sorted(m.recipients[0] for m in outbox) == [
            "lead1@example.com", "lead2@example.com", "member1@example.com", "member2@example.com",
        ]

    def test_email_body_carries_link_nickname_and_message(self, app, crowded_study):
        with mail.record_messages() as outbox:
            handle_study_updated(StudyUpdated(study_id=crowded_study.id, message="Schedule moved"))

        message = next(m for m in outbox if m.recipients == ["member1@example.com"])
        assert "member1" in message.body
        assert "Schedule moved" in message.body
        assert f"{app.config['APP_HOST']}/study/{crowded_study.path}" in message.body
        assert message.html and "Schedule moved" in message.html

    def test_one_failing_email_does_not_stop_the_rest(self, crowded_study):
        real_send = mail.send

        def flaky_send(message):
            if message.recipients == ["member1@example.com"]:
                raise ConnectionError("smtp down")
            return real_send(message)

        with mail.record_messages() as outbox, patch.object(mail, "send", side_effect=flaky_send):
            result = handle_study_updated(StudyUpdated(study_id=crowded_study.id, message="Moved"))

        assert len(outbox) == 3
        assert sorted(result.emails) == ["lead1@example.com", "lead2@example.com", "member2@example.com"]
        assert [f.recipient for f in result.failed] == ["member1@example.com"]
        assert len(result.web) == 5

    def test_web_failure_is_isolated_per_recipient(self, crowded_study):
        from studyhub.services import notification_dispatcher
        real_save = notification_dispatcher._save_notification
        calls = []

        def flaky_save(account, *args):
            calls.append(account.nickname)
            if account.nickname == "member2":
                raise RuntimeError("db hiccup")
            return real_save(account, *args)

        with patch.object(notification_dispatcher, "_save_notification", side_effect=flaky_save):
            result = handle_study_updated(StudyUpdated(study_id=crowded_study.id, message="Moved"))

        assert len(calls) == 5
        assert len(result.web) == 4
        assert [f.recipient for f in result.failed] == ["member2@example.com"]
        assert Notification.query.count() == 4


class TestStudyCreatedAudience:
    """Accounts sharing a tag AND a zone with the study."""

    def test_requires_both_tag_and_zone_overlap(self, make_account, make_study, manager):
        python = TagService.find_or_create("python")
        seoul = ZoneService.find_or_create("Seoul", "서울특별시", "none")
        busan = ZoneService.find_or_create("Busan", "부산광역시", "none")

        match = make_account("match", tags=[python], zones=[seoul], study_created_by_email=True)
        make_account("tag-only", tags=[python], zones=[busan])
        make_account("zone-only", zones=[seoul])
        study = make_study(manager, published=False, tags=[python], zones=[seoul])

        with mail.record_messages() as outbox:
            StudyService.publish(study, manager)

        notes = Notification.query.filter_by(notification_type=NotificationType.STUDY_CREATED).all()
        assert [n.account_id for n in notes] == [match.id]
        assert [m.recipients for m in outbox] == [["match@example.com"]]

    def test_preferences_gate_each_channel(self, make_account, make_study, manager):
        tag = TagService.find_or_create("go")
        zone = ZoneService.find_or_create("Daegu", "대구광역시", "none")
        quiet = make_account("quiet", tags=[tag], zones=[zone],
                             study_created_by_email=False, study_created_by_web=False)
        study = make_study(manager, tags=[tag], zones=[zone])

        with mail.record_messages() as outbox:
            result = handle_study_created(StudyCreated(study_id=study.id))

        assert outbox == []
        assert result.web == []
        assert Notification.query.filter_by(account_id=quiet.id).count() == 0

    def test_missing_study_is_skipped(self):
        assert handle_study_created(StudyCreated(study_id=9999)) is None


class TestEnrollmentDecided:
    """Single-recipient enrollment results."""

    def test_result_goes_to_enrollee_only(self, make_account, make_event, study, manager):
        event = make_event(study, manager, event_type=EventType.CONFIRMATIVE)
        enrollee = make_account("enrollee", study_enrollment_result_by_email=True)
        enrollment = EnrollmentEngine.enroll(event, enrollee)

        with mail.record_messages() as outbox:
            result = handle_enrollment_decided(EnrollmentDecided(
                enrollment_id=enrollment.id, event_id=event.id,
                account_id=enrollee.id, accepted=True,
            ))

        assert [m.recipients for m in outbox] == [["enrollee@example.com"]]
        assert result.web == [enrollee.id]
        note = Notification.query.one()
        assert note.link == f"/study/{study.path}/events/{event.id}"

    def test_vanished_enrollment_is_skipped(self):
        assert handle_enrollment_decided(
            EnrollmentDecided(enrollment_id=4242, event_id=1, account_id=1, accepted=True)
        ) is None


class TestEmailRetry:
    """Bounded retry, then drop."""

    def test_retries_then_drops(self, app):
        attempts = []

        def always_fail(message):
            attempts.append(message.recipients[0])
            raise ConnectionError("smtp down")

        with patch.object(mail, "send", side_effect=always_fail):
            sent = email_service.send_email("someone@example.com", "Subject", {
                "link": "/study/x", "nickname": "someone", "link_name": "x",
                "message": "hello", "host": "http://studyhub.test",
            })

        assert sent is False
        assert len(attempts) == app.config["DISPATCH_MAX_RETRIES"] + 1

    def test_retry_recovers(self):
        real_send = mail.send
        failures = iter([ConnectionError("blip")])

        def fail_once(message):
            error = next(failures, None)
            if error is not None:
                raise error
            return real_send(message)

        with mail.record_messages() as outbox, patch.object(mail, "send", side_effect=fail_once):
            email_service.send_email("someone@example.com", "Subject", {
                "link": "/study/x", "nickname": "someone", "link_name": "x",
                "message": "hello", "host": "http://studyhub.test",
            })

        assert len(outbox) == 1

    def test_missing_template_falls_back_to_plain_body(self):
        with mail.record_messages() as outbox:
            email_service.send_email(
                "someone@example.com", "Subject",
                {"link": "/study/x", "message": "hello", "host": "http://studyhub.test"},
                html_template=None, text_template="email/does_not_exist.txt",
            )

        assert "hello" in outbox[0].body
        assert "http://studyhub.test/study/x" in outbox[0].body
