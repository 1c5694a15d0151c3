from celery import Celery
from valentina.tasks import process_webhook_payload

celery = Celery(__name__, broker='redis://redis:6379/0', backend='redis://redis:6379/0')

# One Flask app per worker process, so its catalog cache outlives a single task
_worker_app = None


def get_worker_app():
    global _worker_app
    if _worker_app is None:
        from valentina import create_app
        _worker_app = create_app()
    return _worker_app


@celery.task(ignore_result=True)
def process_incoming_message_task(payload):
    """
    Celery task wrapper for webhook processing, so Meta gets its 200
    before the assistant and the outgoing reply run.
    """
    with get_worker_app().app_context():
        process_webhook_payload(payload)
