# studyhub/services/worker.py
"""Background execution of post-commit side effects on the APScheduler pool."""
import logging
from datetime import datetime, timedelta
from uuid import uuid4

from flask import current_app

from studyhub import scheduler

logger = logging.getLogger(__name__)


def _run_in_context(app, func, *args):
    with app.app_context():
        func(*args)


def submit(func, *args, delay=None):
    """
    Run ``func(*args)`` outside the caller's transaction.

    With ``EVENT_DISPATCH_MODE == "inline"`` the call happens immediately
    (a ``delay`` is ignored); otherwise a one-shot ``date`` job is added to
    the scheduler, which runs it inside a fresh application context.

    Args:
        func: Callable to execute
        *args: Positional arguments for ``func``
        delay (timedelta, optional): Postpone execution by this much
    """
    app = current_app._get_current_object()
    name = getattr(func, '__name__', 'task')

    if app.config.get('EVENT_DISPATCH_MODE', 'scheduler') == 'inline':
        func(*args)
        return None

    run_date = datetime.now() + (delay or timedelta(0))
    job_id = f'{name}-{uuid4().hex}'
    scheduler.add_job(
        id=job_id,
        func=_run_in_context,
        args=[app, func, *args],
        trigger='date',
        run_date=run_date,
        misfire_grace_time=3600,
    )
    logger.debug(f'Scheduled {name} as job {job_id} for {run_date.isoformat()}')
    return job_id
