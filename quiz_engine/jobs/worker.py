from rq import Worker

from quiz_engine.core.config import settings
from quiz_engine.core.logging_config import configure_logging
from quiz_engine.jobs.queue import redis

if __name__ == "__main__":
    configure_logging()
    w = Worker([settings.RQ_QUEUE], connection=redis)
    w.work(with_scheduler=True)
