"""Builders for the JSON events pushed over the WebSocket channel."""
from datetime import datetime
from typing import Dict

TRAINING_PROGRESS = "training_progress"
TRAINING_LOG = "training_log"
TRAINING_COMPLETE = "training_complete"
TRAINING_UPDATE = "training_update"

def training_progress(job_id: int, epoch: int, progress: int, metrics: Dict[str, float]) -> dict:
    return {
        "type": TRAINING_PROGRESS,
        "jobId": job_id,
        "epoch": epoch,
        "progress": progress,
        "metrics": metrics,
    }

def training_log(job_id: int, timestamp: datetime, level: str, message: str) -> dict:
    return {
        "type": TRAINING_LOG,
        "jobId": job_id,
        "timestamp": timestamp.isoformat(),
        "level": level,
        "message": message,
    }

def training_complete(job_id: int) -> dict:
    return {"type": TRAINING_COMPLETE, "jobId": job_id}

def training_update(job: dict) -> dict:
    return {"type": TRAINING_UPDATE, "job": job}
