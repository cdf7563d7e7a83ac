from weatherb.queue.jobs import FailureOutcome, Job, JobQueue
from weatherb.queue.payloads import (
    PAYLOAD_MODELS,
    CreateMarketPayload,
    QueueName,
    SettleMarketPayload,
    parse_payload,
)
from weatherb.queue.worker import QueueRuntime, Worker, create_queue_runtime, is_permanent

__all__ = [
    "CreateMarketPayload",
    "FailureOutcome",
    "Job",
    "JobQueue",
    "PAYLOAD_MODELS",
    "QueueName",
    "QueueRuntime",
    "SettleMarketPayload",
    "Worker",
    "create_queue_runtime",
    "is_permanent",
    "parse_payload",
]
