from celery import Celery

from pantry.config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery('tasks', broker=CELERY_BROKER_URL, backend=CELERY_RESULT_BACKEND, include=['pantry.tasks'])


celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    task_always_eager=True,
    task_eager_propagates=True,
    # /report/{task_id} reads eager results back from the result backend
    task_store_eager_result=True,
)
