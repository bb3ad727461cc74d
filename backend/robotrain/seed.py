"""Startup data: the default user, the marketplace catalog and optional demo jobs."""
import random
from datetime import datetime, timedelta
from typing import List, Optional

from .logger import Logger
from .models import TrainingJob
from .services.training_simulator import compute_progress, epoch_log_message, synthetic_metrics
from .storage import Storage

DEFAULT_USER = {
    "username": "johndoe",
    "email": "john@example.com",
    "full_name": "John Doe",
    "affiliation": "Researcher",
    "avatar": None,
}

MARKETPLACE_CATALOG = [
    {
        "name": "Humanoid Soccer Player",
        "description": "A high-performance humanoid robot model for soccer simulation.",
        "thumbnail_url": "/images/humanoid.jpg",
        "category": "humanoid",
        "tags": ["soccer", "simulation"],
        "rating": 4.8,
        "downloads": 245,
        "price": 0,
        "likes": 32,
        "license": "MIT",
        "author": {"id": 1, "name": "Dr. Sarah Rodriguez", "avatar": "/images/author1.png", "affiliation": "MIT CSAIL"},
    },
    {
        "name": "Drone Swarm Controller",
        "description": "Controller for multi-agent drone swarms.",
        "thumbnail_url": "/images/drone.jpg",
        "category": "drone",
        "tags": ["swarm", "controller"],
        "rating": 4.6,
        "downloads": 198,
        "price": 99,
        "likes": 21,
        "license": "Apache-2.0",
        "author": {"id": 2, "name": "Prof. Michael Kim", "avatar": "/images/author2.png", "affiliation": "Stanford AI Lab"},
    },
    {
        "name": "Humanoid Soccer Player2",
        "description": "A high-performance humanoid robot model for soccer simulation.",
        "thumbnail_url": "/images/humanoid.jpg",
        "category": "humanoid",
        "tags": ["soccer", "simulation"],
        "rating": 4.8,
        "downloads": 245,
        "price": 0,
        "likes": 32,
        "license": "MIT",
        "author": {"id": 1, "name": "Dr. Sarah Rodriguez", "avatar": "/images/author2.png", "affiliation": "MIT CSAIL"},
    },
]

def seed_defaults(storage: Storage):
    if storage.get_user_by_username(DEFAULT_USER["username"]) is None:
        storage.create_user(**DEFAULT_USER)

    if not storage.get_marketplace_models():
        for entry in MARKETPLACE_CATALOG:
            storage.create_marketplace_model(**entry)
        Logger.custom(f"Seeded {len(MARKETPLACE_CATALOG)} marketplace models", "STORAGE", "blue")

def _seed_history(storage: Storage, job: TrainingJob, epochs: int, started_at: datetime, rng: random.Random):
    step = timedelta(seconds=10)
    for epoch in range(1, epochs + 1):
        metrics = synthetic_metrics(epoch, rng)
        storage.create_training_metric(job.id, epoch, **metrics)
        storage.create_training_log(
            job.id, "INFO", epoch_log_message(epoch, job.total_epochs, metrics),
            timestamp=started_at + step * epoch,
        )

def seed_demo_training(storage: Storage, user_id: int, rng: Optional[random.Random] = None) -> List[TrainingJob]:
    """
    Seed a running job half way through and a finished one, both with history.

    Returns the jobs that are still running so the caller can resume them.
    """
    if storage.get_training_jobs():
        return []

    rng = rng or random.Random()
    now = datetime.utcnow()

    alpha = storage.create_training_job(name="Job Alpha", user_id=user_id, total_epochs=200)
    alpha_started = now - timedelta(minutes=10)
    _seed_history(storage, alpha, 50, alpha_started, rng)
    alpha = storage.update_training_job(alpha.id, {
        "status": "running",
        "current_epoch": 50,
        "progress": compute_progress(50, 200),
        "started_at": alpha_started,
    })

    beta = storage.create_training_job(name="Job Beta", user_id=user_id, total_epochs=100)
    beta_started = now - timedelta(hours=1)
    _seed_history(storage, beta, 100, beta_started, rng)
    storage.update_training_job(beta.id, {
        "status": "completed",
        "current_epoch": 100,
        "progress": 100,
        "started_at": beta_started,
        "completed_at": now - timedelta(minutes=30),
    })

    Logger.custom("Seeded demo training jobs", "STORAGE", "blue")
    return [alpha]
