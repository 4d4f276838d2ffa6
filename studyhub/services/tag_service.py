# studyhub/services/tag_service.py
import logging
import re

from studyhub import db
from studyhub.errors import NotFoundError, ValidationError
from studyhub.models import Tag, Zone
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

# "City(Local name)/Province"
ZONE_LABEL = re.compile(r'^\s*(?P<city>[^()/]+?)\s*\((?P<local>[^()]+)\)\s*/\s*(?P<province>.+?)\s*$')


class TagService:
    @staticmethod
    def find_or_create(title):
        title = (title or '').strip()
        if not title:
            raise ValidationError('Tag title is required', field='title')
        tag = Tag.query.filter_by(title=title).first()
        if tag is None:
            with unit_of_work():
                tag = Tag(title=title)
                db.session.add(tag)
            logger.info(f"Created tag '{title}'")
        return tag

    @staticmethod
    def find_by_title(title):
        tag = Tag.query.filter_by(title=(title or '').strip()).first()
        if tag is None:
            raise NotFoundError(f'No tag titled "{title}"')
        return tag


class ZoneService:
    @staticmethod
    def find_or_create(city, local_name_of_city, province):
        zone = Zone.query.filter_by(city=city, province=province).first()
        if zone is None:
            with unit_of_work():
                zone = Zone(city=city, local_name_of_city=local_name_of_city, province=province)
                db.session.add(zone)
            logger.info(f"Created zone {zone}")
        return zone

    @staticmethod
    def find_by_label(label):
        """Resolve the ``City(Local)/Province`` form produced by ``str(zone)``."""
        match = ZONE_LABEL.match(label or '')
        if not match:
            raise ValidationError(f'"{label}" is not a zone label', field='zone')
        zone = Zone.query.filter_by(city=match.group('city'), province=match.group('province')).first()
        if zone is None:
            raise NotFoundError(f'No zone "{label}"')
        return zone
