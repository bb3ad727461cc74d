"""
Simulated training backend.

Each job gets its own ``JobSimulation`` holding the epoch counter; the
``TrainingRunner`` owns the asyncio tasks that tick them and is the only
place simulations are started or cancelled.
"""
import asyncio
import math
import random
from datetime import datetime
from typing import Dict, Optional

from .. import events
from ..logger import Logger
from ..models import TERMINAL_JOB_STATUSES
from ..schemas import job_payload
from ..storage import Storage
from .broadcaster import EventBroadcaster

# Synthetic metric curves
BASE_LOSS = 0.1
LOSS_DECAY_EPOCHS = 50
MIN_LOSS = 0.001
LOSS_NOISE = 0.02

REWARD_BASE = 200.0
REWARD_SLOPE = 2.0
REWARD_NOISE = 50.0
REWARD_CAP = 500.0

ACCURACY_BASE = 70.0
ACCURACY_SLOPE = 0.5
ACCURACY_NOISE = 5.0
ACCURACY_CAP = 99.0

def compute_progress(epoch: int, total_epochs: int) -> int:
    """Percentage of epochs done, rounded half up."""
    return (200 * epoch + total_epochs) // (2 * total_epochs)

def synthetic_metrics(epoch: int, rng: random.Random) -> Dict[str, float]:
    loss = max(MIN_LOSS, BASE_LOSS * math.exp(-epoch / LOSS_DECAY_EPOCHS) + rng.uniform(0, LOSS_NOISE))
    reward = min(REWARD_CAP, REWARD_BASE + epoch * REWARD_SLOPE + rng.uniform(0, REWARD_NOISE))
    accuracy = min(ACCURACY_CAP, ACCURACY_BASE + epoch * ACCURACY_SLOPE + rng.uniform(0, ACCURACY_NOISE))
    return {"loss": loss, "reward": reward, "accuracy": accuracy}

def epoch_log_message(epoch: int, total_epochs: int, metrics: Dict[str, float]) -> str:
    return f"Epoch {epoch}/{total_epochs} - Reward: {metrics['reward']:.1f}, Loss: {metrics['loss']:.4f}"

class JobSimulation:
    def __init__(self, job_id: int, storage: Storage, broadcaster: EventBroadcaster,
                 start_epoch: int = 0, rng: Optional[random.Random] = None):
        self.job_id = job_id
        self.storage = storage
        self.broadcaster = broadcaster
        self.epoch = start_epoch
        self.rng = rng or random.Random()

    def _log(self, level: str, message: str):
        log = self.storage.create_training_log(self.job_id, level, message)
        self.broadcaster.publish(events.training_log(self.job_id, log.timestamp, log.level, log.message))

    def tick(self) -> bool:
        """Advance one epoch. Returns False once the simulation has nothing left to do."""
        job = self.storage.get_training_job(self.job_id)
        if job is None or job.status in TERMINAL_JOB_STATUSES:
            return False

        epoch = self.epoch + 1
        metrics = synthetic_metrics(epoch, self.rng)
        self.storage.create_training_metric(self.job_id, epoch, **metrics)

        progress = compute_progress(epoch, job.total_epochs)
        updates = {"current_epoch": epoch, "progress": progress, "status": "running"}
        if job.started_at is None:
            updates["started_at"] = datetime.utcnow()
        self.storage.update_training_job(self.job_id, updates)
        self.epoch = epoch

        self.broadcaster.publish(events.training_progress(self.job_id, epoch, progress, metrics))
        self._log("INFO", epoch_log_message(epoch, job.total_epochs, metrics))

        if epoch >= job.total_epochs:
            self.complete()
            return False
        return True

    def complete(self):
        self.storage.update_training_job(self.job_id, {
            "status": "completed",
            "progress": 100,
            "completed_at": datetime.utcnow(),
        })
        self._log("INFO", f"Training completed after {self.epoch} epochs")
        self.broadcaster.publish(events.training_complete(self.job_id))
        Logger.custom(f"Job {self.job_id} completed after {self.epoch} epochs", "SIMULATOR", "green")

    def fail(self, error: Exception):
        job = self.storage.update_training_job(self.job_id, {
            "status": "failed",
            "completed_at": datetime.utcnow(),
            "error_log": str(error),
        })
        if job is None:
            return
        self._log("ERROR", f"Training failed at epoch {self.epoch}: {error}")
        self.broadcaster.publish(events.training_update(job_payload(job)))

    async def run(self, interval: float):
        Logger.custom(f"Simulation started for job {self.job_id}", "SIMULATOR", "magenta")
        try:
            while True:
                await asyncio.sleep(interval)
                if not self.tick():
                    break
        except asyncio.CancelledError:
            Logger.custom(f"Simulation for job {self.job_id} cancelled at epoch {self.epoch}", "SIMULATOR", "orange")
            raise
        except Exception as e:
            Logger.error(f"Simulation for job {self.job_id} failed: {e}")
            try:
                self.fail(e)
            except Exception as store_error:
                Logger.error(f"Could not mark job {self.job_id} as failed: {store_error}")

class TrainingRunner:
    def __init__(self, storage: Storage, broadcaster: EventBroadcaster, interval: float,
                 rng: Optional[random.Random] = None):
        self.storage = storage
        self.broadcaster = broadcaster
        self.interval = interval
        self.rng = rng
        self.tasks: Dict[int, asyncio.Task] = {}

    def is_running(self, job_id: int) -> bool:
        task = self.tasks.get(job_id)
        return task is not None and not task.done()

    def start(self, job_id: int, start_epoch: int = 0) -> asyncio.Task:
        # One simulation per job, otherwise overlapping runs write duplicate epochs
        if self.is_running(job_id):
            return self.tasks[job_id]

        simulation = JobSimulation(job_id, self.storage, self.broadcaster, start_epoch=start_epoch, rng=self.rng)
        task = asyncio.create_task(simulation.run(self.interval))
        task.add_done_callback(lambda _, job_id=job_id: self._forget(job_id, task))
        self.tasks[job_id] = task
        return task

    def _forget(self, job_id: int, task: asyncio.Task):
        if self.tasks.get(job_id) is task:
            del self.tasks[job_id]

    async def stop(self, job_id: int) -> bool:
        """Cancel the job's simulation. Returns True if one was running."""
        task = self.tasks.get(job_id)
        if task is None or task.done():
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def shutdown(self):
        for job_id in list(self.tasks):
            await self.stop(job_id)
