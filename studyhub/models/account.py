# studyhub/models/account.py
from studyhub import db
from studyhub.utils.clock import utcnow

account_tags = db.Table(
    'account_tags',
    db.Column('account_id', db.Integer, db.ForeignKey('accounts.id'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id'), primary_key=True),
)

account_zones = db.Table(
    'account_zones',
    db.Column('account_id', db.Integer, db.ForeignKey('accounts.id'), primary_key=True),
    db.Column('zone_id', db.Integer, db.ForeignKey('zones.id'), primary_key=True),
)


class Tag(db.Model):
    __tablename__ = 'tags'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), unique=True, nullable=False, index=True)

    def __repr__(self):
        return f'<Tag {self.title}>'


class Zone(db.Model):
    __tablename__ = 'zones'

    id = db.Column(db.Integer, primary_key=True)
    city = db.Column(db.String(100), nullable=False)
    local_name_of_city = db.Column(db.String(100), nullable=False)
    province = db.Column(db.String(100), nullable=True)

    __table_args__ = (
        db.UniqueConstraint('city', 'province', name='uq_zone_city_province'),
    )

    def __str__(self):
        return f'{self.city}({self.local_name_of_city})/{self.province}'

    def __repr__(self):
        return f'<Zone {self}>'


class Account(db.Model):
    __tablename__ = 'accounts'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    nickname = db.Column(db.String(20), unique=True, nullable=False, index=True)
    password = db.Column(db.String(200), nullable=False)

    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    email_check_token = db.Column(db.String(64), nullable=True)
    email_check_token_generated_at = db.Column(db.DateTime, nullable=True)
    joined_at = db.Column(db.DateTime, nullable=True)

    # Profile
    bio = db.Column(db.String(255), nullable=True)
    url = db.Column(db.String(255), nullable=True)
    occupation = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(100), nullable=True)
    company = db.Column(db.String(100), nullable=True)
    profile_image = db.Column(db.Text, nullable=True)

    # Notification preferences
    study_created_by_email = db.Column(db.Boolean, nullable=False, default=False)
    study_created_by_web = db.Column(db.Boolean, nullable=False, default=True)
    study_enrollment_result_by_email = db.Column(db.Boolean, nullable=False, default=False)
    study_enrollment_result_by_web = db.Column(db.Boolean, nullable=False, default=True)
    study_updated_by_email = db.Column(db.Boolean, nullable=False, default=False)
    study_updated_by_web = db.Column(db.Boolean, nullable=False, default=True)

    tags = db.relationship('Tag', secondary=account_tags, lazy='selectin')
    zones = db.relationship('Zone', secondary=account_zones, lazy='selectin')

    def __repr__(self):
        return f'<Account {self.nickname}>'

    def generate_email_check_token(self, token):
        self.email_check_token = token
        self.email_check_token_generated_at = utcnow()

    def complete_sign_up(self):
        self.email_verified = True
        self.joined_at = utcnow()

    def is_valid_token(self, token):
        return self.email_check_token is not None and self.email_check_token == token

    def can_send_confirm_email(self, cooldown):
        """True once ``cooldown`` has passed since the last token was generated."""
        if self.email_check_token_generated_at is None:
            return True
        return self.email_check_token_generated_at < utcnow() - cooldown
