from celery import Celery
from .config import settings

def _route_task(name, args, kwargs, options, task=None):
    """
    Route tasks to dedicated queues.

    The scraping worker consumes the evaluation queue; anything else falls back to the
    default queue.
    """
    if name == settings.EVALUATION_TASK_NAME:
        return {"queue": settings.EVALUATION_QUEUE}

    return None

celery_app = Celery(
    "evalcouncil",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_transport_options={"visibility_timeout": 3600},
    task_routes=(_route_task,),
)
