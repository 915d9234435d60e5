from contextlib import contextmanager
import logging
from models import db

logger = logging.getLogger(__name__)


@contextmanager
def transactional(message="DB transaction failed"):
    """Commit on success, roll back and re-raise on any error.

    Domain rejections are expected outcomes and are not logged as errors.
    """
    from app.errors import DomainError

    try:
        yield db.session
        db.session.commit()
    except DomainError:
        db.session.rollback()
        raise
    except Exception as e:
        logger.error(f"{message}: %s", e, exc_info=True)
        db.session.rollback()
        raise
