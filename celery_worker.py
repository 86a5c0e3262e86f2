#!/usr/bin/env python3
"""
Celery worker for the marketplace API. Only email delivery runs here;
start it when EMAIL_USE_CELERY is enabled.
"""
import os

from core.celery import celery_app
from core.config import settings

if __name__ == "__main__":
    celery_app.start([
        "worker",
        f"--loglevel={settings.LOG_LEVEL.lower()}",
        f"--concurrency={int(os.getenv('CELERY_CONCURRENCY', 2))}",
        "--queues=celery",
        "--without-gossip",
        "--without-mingle",
    ])
