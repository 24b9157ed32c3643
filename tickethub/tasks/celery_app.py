from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.schedules import crontab
from tickethub.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """rediss:// brokers need ssl_cert_reqs in the URL."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "tickethub",
    broker=_redis_url,
    backend=_redis_url,
    include=["tickethub.tasks.jobs"],
)

celery.conf.timezone = settings.CELERY_TIMEZONE

celery.conf.beat_schedule = {
    "accrue-gnpl-penalties-daily": {
        "task": "tickethub.tasks.jobs.accrue_gnpl_penalties",
        "schedule": crontab(hour=0, minute=15),
    },
    "send-gnpl-reminders-daily": {
        "task": "tickethub.tasks.jobs.send_gnpl_reminders",
        "schedule": crontab(hour=9, minute=0),
    },
    "process-notification-queue-every-2-minutes": {
        "task": "tickethub.tasks.jobs.process_notification_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
}
