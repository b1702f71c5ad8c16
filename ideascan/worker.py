import logging

from celery import Celery

from ideascan.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Redis is both broker and result backend
celery_app = Celery(
    "ideascan_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "ideascan.tasks.scan_tasks",
        "ideascan.tasks.classify_tasks",
        "ideascan.tasks.extract_tasks",
    ]
)

# One queue per stage; chunk jobs get their own queues so long-running
# LLM work never starves the orchestration/poller jobs.
QUEUE_FETCH = "fetch"
QUEUE_CLASSIFY = "classify"
QUEUE_CLASSIFY_CHUNK = "classify-chunk"
QUEUE_EXTRACT = "extract"
QUEUE_EXTRACT_CHUNK = "extract-chunk"

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=QUEUE_FETCH,
    task_routes={
        "ideascan.tasks.scan_tasks.*": {"queue": QUEUE_FETCH},
        "ideascan.tasks.classify_tasks.classify_posts_chunk": {"queue": QUEUE_CLASSIFY_CHUNK},
        "ideascan.tasks.classify_tasks.*": {"queue": QUEUE_CLASSIFY},
        "ideascan.tasks.extract_tasks.extract_ideas_chunk": {"queue": QUEUE_EXTRACT_CHUNK},
        "ideascan.tasks.extract_tasks.*": {"queue": QUEUE_EXTRACT},
    },
    # Chunk jobs run for up to 40 minutes; the broker must not redeliver them
    # while they are still being worked on.
    broker_transport_options={"visibility_timeout": 3000},
    worker_prefetch_multiplier=1,
    # Orchestration jobs are short; chunk tasks override these.
    task_soft_time_limit=300,
    task_time_limit=310,
)

if __name__ == "__main__":
    celery_app.start()
