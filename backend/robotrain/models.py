from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text, Float, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base

TERMINAL_JOB_STATUSES = ("completed", "failed")

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=False)
    affiliation = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

class RobotModel(Base):
    __tablename__ = "models"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    model_type = Column(String, nullable=False)  # humanoid, quadruped, manipulator
    accuracy = Column(Float, nullable=True)
    training_time = Column(Integer, nullable=True)  # in hours
    size = Column(Integer, nullable=True)  # in bytes
    file_path = Column(String, nullable=True)
    is_public = Column(Boolean, default=False)
    downloads = Column(Integer, default=0)
    likes = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

class TrainingJob(Base):
    __tablename__ = "training_jobs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=True)
    status = Column(String, default="queued")  # queued, running, completed, failed
    progress = Column(Integer, default=0)  # 0-100
    current_epoch = Column(Integer, default=0)
    total_epochs = Column(Integer, nullable=False)
    reward_config = Column(JSON, nullable=True)  # {position, velocity, energy}
    model_file = Column(String, nullable=True)
    reward_file = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_log = Column(Text, nullable=True)

    metrics = relationship("TrainingMetric", back_populates="job", cascade="all, delete-orphan")
    logs = relationship("TrainingLog", back_populates="job", cascade="all, delete-orphan")

class TrainingMetric(Base):
    __tablename__ = "training_metrics"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("training_jobs.id"), nullable=False, index=True)
    epoch = Column(Integer, nullable=False)
    loss = Column(Float, nullable=True)
    reward = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    job = relationship("TrainingJob", back_populates="metrics")

class TrainingLog(Base):
    __tablename__ = "training_logs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("training_jobs.id"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow)
    level = Column(String, default="INFO")  # INFO, WARN, ERROR
    message = Column(Text, nullable=False)

    job = relationship("TrainingJob", back_populates="logs")

class CommunityPost(Base):
    __tablename__ = "community_posts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=True)
    likes = Column(Integer, default=0)
    comments = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Loaded eagerly so listings can be serialized after the session closes
    user = relationship("User", lazy="joined")
    model = relationship("RobotModel", lazy="joined")

class ValidationSession(Base):
    __tablename__ = "validation_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    model_id = Column(Integer, ForeignKey("models.id"), nullable=False)
    robot_type = Column(String, nullable=False)
    status = Column(String, default="pending")  # pending, active, completed
    duration = Column(Integer, default=0)  # in seconds
    created_at = Column(DateTime, default=datetime.utcnow)

class MarketplaceModel(Base):
    __tablename__ = "marketplace_models"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    category = Column(String, nullable=False)
    tags = Column(JSON, default=list)
    rating = Column(Float, default=0.0)
    downloads = Column(Integer, default=0)
    price = Column(Float, default=0.0)
    likes = Column(Integer, default=0)
    license = Column(String, nullable=True)
    author = Column(JSON, nullable=True)  # {id, name, avatar, affiliation}

_STATUS_RANK = {"queued": 0, "running": 1, "completed": 2, "failed": 2}

def can_transition(current: str, new: str) -> bool:
    """Job status only moves forward; completed and failed are final."""
    if current == new:
        return True
    if current in TERMINAL_JOB_STATUSES:
        return False
    return _STATUS_RANK[new] > _STATUS_RANK[current]
