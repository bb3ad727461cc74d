"""
In-process record store.

One ``Storage`` is built per application and handed to request handlers and
training simulations. It wraps a SQLAlchemy session factory; every operation
opens its own short session, so returned rows are detached snapshots.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from .config import DATABASE_URL
from .database import Base, create_db_engine, create_session_factory, init_db
from .models import (
    User, RobotModel, TrainingJob, TrainingMetric, TrainingLog,
    CommunityPost, ValidationSession, MarketplaceModel
)

COUNTER_FIELDS = ("likes", "downloads")

def _apply_updates(record: Base, updates: Dict[str, Any]):
    """Merge known column values onto a row; unknown keys and the id are ignored."""
    columns = set(record.__table__.columns.keys()) - {"id"}
    for key, value in updates.items():
        if key in columns:
            setattr(record, key, value)

class Storage:
    def __init__(self, session_factory):
        self.SessionLocal = session_factory

    @classmethod
    def from_url(cls, database_url: str = DATABASE_URL) -> "Storage":
        engine = create_db_engine(database_url)
        init_db(engine)
        return cls(create_session_factory(engine))

    def _update(self, model_cls, record_id: int, updates: Dict[str, Any]):
        with self.SessionLocal() as db:
            record = db.query(model_cls).filter(model_cls.id == record_id).first()
            if not record:
                return None
            _apply_updates(record, updates)
            db.commit()
            db.refresh(record)
            return record

    def _increment(self, model_cls, record_id: int, field: str):
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {field}")
        with self.SessionLocal() as db:
            updated = db.query(model_cls).filter(model_cls.id == record_id).update(
                {field: getattr(model_cls, field) + 1}, synchronize_session=False
            )
            if not updated:
                db.rollback()
                return None
            db.commit()
            return db.query(model_cls).filter(model_cls.id == record_id).first()

    def _add(self, record: Base):
        with self.SessionLocal() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    # ============ USERS ============

    def get_user(self, user_id: int) -> Optional[User]:
        with self.SessionLocal() as db:
            return db.query(User).filter(User.id == user_id).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self.SessionLocal() as db:
            return db.query(User).filter(User.username == username).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.SessionLocal() as db:
            return db.query(User).filter(User.email == email).first()

    def create_user(self, **fields) -> User:
        return self._add(User(**fields))

    # ============ MODELS ============

    def get_models(self, user_id: Optional[int] = None) -> List[RobotModel]:
        with self.SessionLocal() as db:
            query = db.query(RobotModel)
            if user_id is not None:
                query = query.filter(or_(RobotModel.user_id == user_id, RobotModel.is_public.is_(True)))
            else:
                query = query.filter(RobotModel.is_public.is_(True))
            return query.order_by(RobotModel.id).all()

    def get_model(self, model_id: int) -> Optional[RobotModel]:
        with self.SessionLocal() as db:
            return db.query(RobotModel).filter(RobotModel.id == model_id).first()

    def create_model(self, **fields) -> RobotModel:
        fields.update(downloads=0, likes=0)
        return self._add(RobotModel(**fields))

    def update_model(self, model_id: int, updates: Dict[str, Any]) -> Optional[RobotModel]:
        return self._update(RobotModel, model_id, updates)

    def delete_model(self, model_id: int) -> bool:
        with self.SessionLocal() as db:
            deleted = db.query(RobotModel).filter(RobotModel.id == model_id).delete()
            db.commit()
            return deleted > 0

    def increment_model_counter(self, model_id: int, field: str) -> Optional[RobotModel]:
        return self._increment(RobotModel, model_id, field)

    # ============ TRAINING JOBS ============

    def get_training_jobs(self, user_id: Optional[int] = None) -> List[TrainingJob]:
        with self.SessionLocal() as db:
            query = db.query(TrainingJob)
            if user_id is not None:
                query = query.filter(TrainingJob.user_id == user_id)
            return query.order_by(TrainingJob.id).all()

    def get_training_job(self, job_id: int) -> Optional[TrainingJob]:
        with self.SessionLocal() as db:
            return db.query(TrainingJob).filter(TrainingJob.id == job_id).first()

    def create_training_job(self, **fields) -> TrainingJob:
        fields.update(
            status="queued",
            progress=0,
            current_epoch=0,
            started_at=None,
            completed_at=None,
        )
        return self._add(TrainingJob(**fields))

    def update_training_job(self, job_id: int, updates: Dict[str, Any]) -> Optional[TrainingJob]:
        return self._update(TrainingJob, job_id, updates)

    def delete_training_job(self, job_id: int) -> bool:
        with self.SessionLocal() as db:
            job = db.query(TrainingJob).filter(TrainingJob.id == job_id).first()
            if not job:
                return False
            # ORM delete so metrics and logs cascade
            db.delete(job)
            db.commit()
            return True

    # ============ TRAINING METRICS ============

    def get_training_metrics(self, job_id: int) -> List[TrainingMetric]:
        with self.SessionLocal() as db:
            return (
                db.query(TrainingMetric)
                .filter(TrainingMetric.job_id == job_id)
                .order_by(TrainingMetric.epoch, TrainingMetric.id)
                .all()
            )

    def create_training_metric(self, job_id: int, epoch: int, loss: float,
                               reward: float, accuracy: float) -> TrainingMetric:
        # Same epoch twice yields two samples; callers own epoch uniqueness
        return self._add(TrainingMetric(
            job_id=job_id,
            epoch=epoch,
            loss=loss,
            reward=reward,
            accuracy=accuracy,
            timestamp=datetime.utcnow(),
        ))

    # ============ TRAINING LOGS ============

    def get_training_logs(self, job_id: int) -> List[TrainingLog]:
        with self.SessionLocal() as db:
            return (
                db.query(TrainingLog)
                .filter(TrainingLog.job_id == job_id)
                .order_by(TrainingLog.timestamp, TrainingLog.id)
                .all()
            )

    def create_training_log(self, job_id: int, level: str, message: str,
                            timestamp: Optional[datetime] = None) -> TrainingLog:
        return self._add(TrainingLog(
            job_id=job_id,
            level=level,
            message=message,
            timestamp=timestamp or datetime.utcnow(),
        ))

    # ============ COMMUNITY POSTS ============

    def get_community_posts(self) -> List[CommunityPost]:
        with self.SessionLocal() as db:
            return (
                db.query(CommunityPost)
                .order_by(CommunityPost.created_at.desc(), CommunityPost.id.desc())
                .all()
            )

    def create_community_post(self, **fields) -> CommunityPost:
        fields.update(likes=0, comments=0)
        post = self._add(CommunityPost(**fields))
        # Re-read so the joined user/model are attached
        return self.get_community_post(post.id)

    def get_community_post(self, post_id: int) -> Optional[CommunityPost]:
        with self.SessionLocal() as db:
            return db.query(CommunityPost).filter(CommunityPost.id == post_id).first()

    def update_community_post(self, post_id: int, updates: Dict[str, Any]) -> Optional[CommunityPost]:
        post = self._update(CommunityPost, post_id, updates)
        if not post:
            return None
        return self.get_community_post(post_id)

    # ============ VALIDATION SESSIONS ============

    def get_validation_sessions(self, user_id: Optional[int] = None) -> List[ValidationSession]:
        with self.SessionLocal() as db:
            query = db.query(ValidationSession)
            if user_id is not None:
                query = query.filter(ValidationSession.user_id == user_id)
            return query.order_by(ValidationSession.id).all()

    def create_validation_session(self, **fields) -> ValidationSession:
        fields.update(duration=0)
        return self._add(ValidationSession(**fields))

    def update_validation_session(self, session_id: int, updates: Dict[str, Any]) -> Optional[ValidationSession]:
        return self._update(ValidationSession, session_id, updates)

    # ============ MARKETPLACE ============

    def get_marketplace_models(self) -> List[MarketplaceModel]:
        with self.SessionLocal() as db:
            return db.query(MarketplaceModel).order_by(MarketplaceModel.id).all()

    def get_marketplace_model(self, model_id: int) -> Optional[MarketplaceModel]:
        with self.SessionLocal() as db:
            return db.query(MarketplaceModel).filter(MarketplaceModel.id == model_id).first()

    def create_marketplace_model(self, **fields) -> MarketplaceModel:
        return self._add(MarketplaceModel(**fields))

    def increment_marketplace_counter(self, model_id: int, field: str) -> Optional[MarketplaceModel]:
        return self._increment(MarketplaceModel, model_id, field)
