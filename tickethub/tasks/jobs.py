from tickethub.tasks.celery_app import celery
from tickethub.tasks import worker_jobs

@celery.task(name="tickethub.tasks.jobs.accrue_gnpl_penalties")
def accrue_gnpl_penalties():
    return worker_jobs.accrue_gnpl_penalties()

@celery.task(name="tickethub.tasks.jobs.send_gnpl_reminders")
def send_gnpl_reminders():
    return worker_jobs.send_gnpl_reminders()


@celery.task(name="tickethub.tasks.jobs.process_notification_queue")
def process_notification_queue(limit: int = 50):
    return worker_jobs.process_notification_queue(limit=limit)
