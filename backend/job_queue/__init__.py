"""
Job queue delivery path
"""
from .service import QueuePayload, QueueRunResult, JobQueueService, QueueWorker

__all__ = ["QueuePayload", "QueueRunResult", "JobQueueService", "QueueWorker"]
