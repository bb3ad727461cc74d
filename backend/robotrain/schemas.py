from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Dict, List, Literal, Optional

JobStatus = Literal["queued", "running", "completed", "failed"]
SessionStatus = Literal["pending", "active", "completed"]

class CamelModel(BaseModel):
    """Base for everything on the wire: camelCase aliases, readable from ORM rows."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel
        protected_namespaces = ()

# ============ USERS ============

class UserCreate(CamelModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    full_name: str
    affiliation: Optional[str] = None
    avatar: Optional[str] = None

class UserResponse(CamelModel):
    id: int
    username: str
    email: str
    full_name: str
    affiliation: Optional[str] = None
    avatar: Optional[str] = None
    created_at: datetime

# ============ MODELS ============

class ModelUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    model_type: Optional[str] = None
    accuracy: Optional[float] = None
    training_time: Optional[int] = None
    is_public: Optional[bool] = None

class ModelResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    user_id: int
    model_type: str
    accuracy: Optional[float] = None
    training_time: Optional[int] = None
    size: Optional[int] = None
    file_path: Optional[str] = None
    is_public: bool = False
    downloads: int = 0
    likes: int = 0
    created_at: datetime

# ============ TRAINING ============

class RewardConfig(CamelModel):
    position: float
    velocity: float
    energy: float

class TrainingJobUpdate(CamelModel):
    # progress is always derived from current_epoch, never sent
    name: Optional[str] = None
    status: Optional[JobStatus] = None
    current_epoch: Optional[int] = Field(default=None, ge=0)
    model_id: Optional[int] = None
    reward_config: Optional[RewardConfig] = None

    class Config(CamelModel.Config):
        extra = "forbid"

class TrainingJobResponse(CamelModel):
    id: int
    name: str
    user_id: int
    model_id: Optional[int] = None
    status: str
    progress: int
    current_epoch: int
    total_epochs: int
    reward_config: Optional[RewardConfig] = None
    model_file: Optional[str] = None
    reward_file: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_log: Optional[str] = None

class TrainingMetricResponse(CamelModel):
    id: int
    job_id: int
    epoch: int
    loss: Optional[float] = None
    reward: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: datetime

class TrainingLogResponse(CamelModel):
    timestamp: datetime
    level: str
    message: str

# ============ COMMUNITY ============

class CommunityPostCreate(CamelModel):
    user_id: int
    content: str = Field(min_length=1)
    model_id: Optional[int] = None

class CommunityPostUpdate(CamelModel):
    content: Optional[str] = Field(default=None, min_length=1)
    model_id: Optional[int] = None
    likes: Optional[int] = Field(default=None, ge=0)
    comments: Optional[int] = Field(default=None, ge=0)

class CommunityPostResponse(CamelModel):
    id: int
    user_id: int
    content: str
    model_id: Optional[int] = None
    likes: int = 0
    comments: int = 0
    created_at: datetime
    user: Optional[UserResponse] = None
    model: Optional[ModelResponse] = None

# ============ VALIDATION ============

class ValidationSessionCreate(CamelModel):
    user_id: int
    model_id: int
    robot_type: str = Field(min_length=1)
    status: SessionStatus = "pending"

class ValidationSessionUpdate(CamelModel):
    status: Optional[SessionStatus] = None
    duration: Optional[int] = Field(default=None, ge=0)

class ValidationSessionResponse(CamelModel):
    id: int
    user_id: int
    model_id: int
    robot_type: str
    status: str
    duration: int = 0
    created_at: datetime

# ============ MARKETPLACE ============

class MarketplaceAuthor(CamelModel):
    id: int
    name: str
    avatar: Optional[str] = None
    affiliation: Optional[str] = None

class MarketplaceModelResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    category: str
    tags: List[str] = []
    rating: float = 0.0
    downloads: int = 0
    price: float = 0.0
    likes: int = 0
    license: Optional[str] = None
    author: Optional[MarketplaceAuthor] = None

class LikeResponse(BaseModel):
    success: bool
    likes: int

class DownloadResponse(BaseModel):
    success: bool
    downloads: int

class MessageResponse(BaseModel):
    message: str

def job_payload(job) -> Dict:
    """Serialize a job row the way the REST layer does, for event payloads."""
    return TrainingJobResponse.model_validate(job).model_dump(mode="json", by_alias=True)
