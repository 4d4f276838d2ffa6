# studyhub/services/account_service.py
import logging
import re
from urllib.parse import urlencode
from uuid import uuid4

from flask import current_app
from sqlalchemy import or_

from studyhub import bcrypt, db
from studyhub.errors import EmailResendCooldownError, NotFoundError, ValidationError
from studyhub.models import Account, Tag, Zone
from studyhub.services import worker
from studyhub.services.email_service import send_email
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
NICKNAME_PATTERN = re.compile(r'^[a-z0-9_-]{3,20}$')
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 50

PROFILE_FIELDS = ('bio', 'url', 'occupation', 'location', 'company', 'profile_image')
NOTIFICATION_FIELDS = (
    'study_created_by_email',
    'study_created_by_web',
    'study_enrollment_result_by_email',
    'study_enrollment_result_by_web',
    'study_updated_by_email',
    'study_updated_by_web',
)


class AccountService:

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_password(password):
        if not password or not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f'Password must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters',
                field='password',
            )

    @staticmethod
    def _validate_nickname(nickname, current=None):
        if not nickname or not NICKNAME_PATTERN.match(nickname):
            raise ValidationError(
                'Nickname must be 3-20 characters of lowercase letters, digits, "-" or "_"',
                field='nickname',
            )
        if nickname != current and Account.query.filter_by(nickname=nickname).first() is not None:
            raise ValidationError(f'Nickname "{nickname}" is already in use', field='nickname')

    # ------------------------------------------------------------------
    # Sign-up and verification
    # ------------------------------------------------------------------

    @staticmethod
    def sign_up(email, nickname, password):
        """
        Create an unverified account and send the verification email after commit.

        Raises:
            ValidationError: malformed input, or email/nickname already taken
        """
        if not email or not EMAIL_PATTERN.match(email):
            raise ValidationError('A valid email address is required', field='email')
        if Account.query.filter_by(email=email).first() is not None:
            raise ValidationError(f'Email "{email}" is already registered', field='email')
        AccountService._validate_nickname(nickname)
        AccountService._validate_password(password)

        with unit_of_work():
            account = Account(
                email=email,
                nickname=nickname,
                password=bcrypt.generate_password_hash(password).decode('utf-8'),
            )
            account.generate_email_check_token(uuid4().hex)
            db.session.add(account)

        logger.info(f"Account {nickname} signed up")
        AccountService._send_verification_email(account)
        return account

    @staticmethod
    def _send_verification_email(account):
        query = urlencode({'token': account.email_check_token, 'email': account.email})
        worker.submit(
            send_email,
            account.email,
            'StudyHub: confirm your email address',
            {
                'link': f'/check-email-token?{query}',
                'nickname': account.nickname,
                'link_name': 'Confirm email',
                'message': 'Follow the link to finish signing up for StudyHub.',
                'host': current_app.config['APP_HOST'],
            },
        )

    @staticmethod
    def verify_email(email, token):
        account = Account.query.filter_by(email=email).first()
        if account is None or not account.is_valid_token(token):
            logger.warning(f"Invalid email verification attempt for {email}")
            raise ValidationError('The verification link is invalid', field='token')

        with unit_of_work():
            account.complete_sign_up()
        logger.info(f"Account {account.nickname} verified its email")
        return account

    @staticmethod
    def can_resend_verification_email(account):
        return account.can_send_confirm_email(current_app.config['EMAIL_TOKEN_RESEND_COOLDOWN'])

    @staticmethod
    def _check_resend_cooldown(account):
        if not AccountService.can_resend_verification_email(account):
            cooldown = current_app.config['EMAIL_TOKEN_RESEND_COOLDOWN']
            raise EmailResendCooldownError(
                'An email was sent recently; please wait before requesting another',
                retry_after=account.email_check_token_generated_at + cooldown,
            )

    @staticmethod
    def resend_verification_email(account):
        AccountService._check_resend_cooldown(account)
        with unit_of_work():
            account.generate_email_check_token(uuid4().hex)
        AccountService._send_verification_email(account)
        return account

    @staticmethod
    def send_login_link(email):
        account = Account.query.filter_by(email=email).first()
        if account is None:
            raise NotFoundError(f'No account registered with {email}')
        AccountService._check_resend_cooldown(account)

        with unit_of_work():
            account.generate_email_check_token(uuid4().hex)

        query = urlencode({'token': account.email_check_token, 'email': account.email})
        worker.submit(
            send_email,
            account.email,
            'StudyHub: log in link',
            {
                'link': f'/login-by-email?{query}',
                'nickname': account.nickname,
                'link_name': 'Log in to StudyHub',
                'message': 'Follow the link to log in.',
                'host': current_app.config['APP_HOST'],
            },
        )
        logger.info(f"Login link sent to {account.nickname}")
        return account

    # ------------------------------------------------------------------
    # Lookup and credentials
    # ------------------------------------------------------------------

    @staticmethod
    def find_by_email_or_nickname(email_or_nickname):
        return Account.query.filter(
            or_(Account.email == email_or_nickname, Account.nickname == email_or_nickname)
        ).first()

    @staticmethod
    def get_account_by_nickname(nickname):
        account = Account.query.filter_by(nickname=nickname).first()
        if account is None:
            raise NotFoundError(f'No account with nickname "{nickname}"')
        return account

    @staticmethod
    def authenticate(email_or_nickname, password):
        """Return the account when the credentials match, else None."""
        account = AccountService.find_by_email_or_nickname(email_or_nickname)
        if account is None or not bcrypt.check_password_hash(account.password, password):
            logger.info(f"Failed login for {email_or_nickname}")
            return None
        return account

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @staticmethod
    def update_profile(account, **fields):
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile field(s): {', '.join(sorted(unknown))}")
        with unit_of_work():
            for name, value in fields.items():
                setattr(account, name, value)
        return account

    @staticmethod
    def update_password(account, new_password):
        AccountService._validate_password(new_password)
        with unit_of_work():
            account.password = bcrypt.generate_password_hash(new_password).decode('utf-8')
        logger.info(f"Password changed for {account.nickname}")
        return account

    @staticmethod
    def update_nickname(account, nickname):
        AccountService._validate_nickname(nickname, current=account.nickname)
        old = account.nickname
        with unit_of_work():
            account.nickname = nickname
        logger.info(f"Nickname changed {old} -> {nickname}")
        return account

    @staticmethod
    def update_notifications(account, **preferences):
        unknown = set(preferences) - set(NOTIFICATION_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown notification setting(s): {', '.join(sorted(unknown))}")
        with unit_of_work():
            for name, value in preferences.items():
                setattr(account, name, bool(value))
        return account

    @staticmethod
    def add_tag(account, tag):
        with unit_of_work():
            if all(t.id != tag.id for t in account.tags):
                account.tags.append(tag)
        return account

    @staticmethod
    def remove_tag(account, tag):
        with unit_of_work():
            existing = next((t for t in account.tags if t.id == tag.id), None)
            if existing is not None:
                account.tags.remove(existing)
        return account

    @staticmethod
    def add_zone(account, zone):
        with unit_of_work():
            if all(z.id != zone.id for z in account.zones):
                account.zones.append(zone)
        return account

    @staticmethod
    def remove_zone(account, zone):
        with unit_of_work():
            existing = next((z for z in account.zones if z.id == zone.id), None)
            if existing is not None:
                account.zones.remove(existing)
        return account

    # ------------------------------------------------------------------
    # Audience queries
    # ------------------------------------------------------------------

    @staticmethod
    def find_by_tags_and_zones(tags, zones):
        """Accounts sharing at least one of ``tags`` AND at least one of ``zones``."""
        tag_ids = [t.id for t in tags]
        zone_ids = [z.id for z in zones]
        if not tag_ids or not zone_ids:
            return []
        stmt = (
            db.select(Account)
            .where(Account.tags.any(Tag.id.in_(tag_ids)))
            .where(Account.zones.any(Zone.id.in_(zone_ids)))
            .order_by(Account.id)
        )
        return db.session.execute(stmt).scalars().all()
