from fastapi import APIRouter, FastAPI, Depends, HTTPException, Query, Request, UploadFile, File, Form, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from typing import List, Optional
from contextlib import asynccontextmanager
from datetime import datetime
import json
import os

from .config import CORS_ORIGINS, SEED_DEMO_TRAINING, TRAINING_TICK_SECONDS, UPLOAD_DIR, MAX_UPLOAD_SIZE
from .logger import Logger
from .models import TERMINAL_JOB_STATUSES, can_transition
from .schemas import (
    UserCreate, UserResponse,
    ModelUpdate, ModelResponse,
    RewardConfig, TrainingJobUpdate, TrainingJobResponse, TrainingMetricResponse, TrainingLogResponse,
    CommunityPostCreate, CommunityPostUpdate, CommunityPostResponse,
    ValidationSessionCreate, ValidationSessionUpdate, ValidationSessionResponse,
    MarketplaceModelResponse, LikeResponse, DownloadResponse, MessageResponse,
    job_payload,
)
from .seed import seed_defaults, seed_demo_training, DEFAULT_USER
from .services.broadcaster import EventBroadcaster
from .services.training_simulator import TrainingRunner, compute_progress
from .storage import Storage
from .uploads import UploadTooLargeError, has_file, save_upload_file
from . import events

router = APIRouter()

def get_storage(request: Request) -> Storage:
    return request.app.state.storage

def get_runner(request: Request) -> TrainingRunner:
    return request.app.state.runner

def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster

def _optional_number(value: Optional[str], cast, detail: str):
    """Coerce an optional numeric form field; blank means missing."""
    if value is None or value.strip() == "":
        return None
    try:
        return cast(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=detail)

def _parse_reward_config(raw: Optional[str]) -> Optional[dict]:
    if raw is None or raw.strip() == "":
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid training job data")
    if data == {}:
        return None
    try:
        return RewardConfig.model_validate(data).model_dump()
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid training job data")

async def _store_upload(request: Request, upload_file: Optional[UploadFile]):
    if not has_file(upload_file):
        return None, None
    try:
        return await save_upload_file(upload_file, request.app.state.upload_dir, request.app.state.max_upload_size)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e))

def _discard_upload(path: Optional[str]):
    if path and os.path.exists(path):
        os.remove(path)



# ============ USER ENDPOINTS ============

@router.get("/api/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, storage: Storage = Depends(get_storage)):
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user

@router.post("/api/users", response_model=UserResponse)
async def create_user(user: UserCreate, storage: Storage = Depends(get_storage)):
    if storage.get_user_by_username(user.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    if storage.get_user_by_email(user.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    return storage.create_user(**user.model_dump())



# ============ MODEL ENDPOINTS ============

@router.get("/api/models", response_model=List[ModelResponse])
async def get_models(user_id: Optional[int] = Query(None, alias="userId"), storage: Storage = Depends(get_storage)):
    return storage.get_models(user_id)

@router.post("/api/models", response_model=ModelResponse)
async def create_model(
    request: Request,
    name: str = Form(...),
    user_id: int = Form(..., alias="userId"),
    model_type: str = Form(..., alias="modelType"),
    description: Optional[str] = Form(None),
    accuracy: Optional[str] = Form(None),
    training_time: Optional[str] = Form(None, alias="trainingTime"),
    is_public: bool = Form(False, alias="isPublic"),
    model_file: Optional[UploadFile] = File(None, alias="modelFile"),
    storage: Storage = Depends(get_storage),
):
    if not name.strip() or not model_type.strip():
        raise HTTPException(status_code=400, detail="Invalid model data")

    accuracy_value = _optional_number(accuracy, float, "Invalid model data")
    training_hours = _optional_number(training_time, int, "Invalid model data")
    if not storage.get_user(user_id):
        raise HTTPException(status_code=400, detail="Invalid model data")
    file_path, size = await _store_upload(request, model_file)

    model = storage.create_model(
        name=name,
        description=description,
        user_id=user_id,
        model_type=model_type,
        accuracy=accuracy_value,
        training_time=training_hours,
        size=size,
        file_path=file_path,
        is_public=is_public,
    )
    Logger.info(f"Model {model.id} '{model.name}' created for user {user_id}")
    return model

@router.patch("/api/models/{model_id}", response_model=ModelResponse)
async def update_model(model_id: int, updates: ModelUpdate, storage: Storage = Depends(get_storage)):
    model = storage.update_model(model_id, updates.model_dump(exclude_unset=True, exclude_none=True))
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return model

@router.delete("/api/models/{model_id}", response_model=MessageResponse)
async def delete_model(model_id: int, storage: Storage = Depends(get_storage)):
    if not storage.delete_model(model_id):
        raise HTTPException(status_code=404, detail="Model not found")
    return {"message": "Model deleted"}

@router.post("/api/models/{model_id}/like", response_model=ModelResponse)
async def like_model(model_id: int, storage: Storage = Depends(get_storage)):
    model = storage.increment_model_counter(model_id, "likes")
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return model

@router.post("/api/models/{model_id}/download", response_model=ModelResponse)
async def download_model(model_id: int, storage: Storage = Depends(get_storage)):
    model = storage.increment_model_counter(model_id, "downloads")
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return model



# ============ TRAINING JOB ENDPOINTS ============

@router.get("/api/training-jobs", response_model=List[TrainingJobResponse])
async def get_training_jobs(user_id: Optional[int] = Query(None, alias="userId"), storage: Storage = Depends(get_storage)):
    return storage.get_training_jobs(user_id)

@router.get("/api/training-jobs/{job_id}", response_model=TrainingJobResponse)
async def get_training_job(job_id: int, storage: Storage = Depends(get_storage)):
    job = storage.get_training_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")
    return job

@router.post("/api/training-jobs", response_model=TrainingJobResponse)
async def create_training_job(
    request: Request,
    name: str = Form(...),
    user_id: int = Form(..., alias="userId"),
    total_epochs: int = Form(..., alias="totalEpochs"),
    model_id: Optional[str] = Form(None, alias="modelId"),
    reward_config: Optional[str] = Form(None, alias="rewardConfig"),
    model_file: Optional[UploadFile] = File(None, alias="modelFile"),
    reward_file: Optional[UploadFile] = File(None, alias="rewardFile"),
    storage: Storage = Depends(get_storage),
    runner: TrainingRunner = Depends(get_runner),
):
    if not name.strip() or total_epochs <= 0:
        raise HTTPException(status_code=400, detail="Invalid training job data")

    parsed_model_id = _optional_number(model_id, int, "Invalid training job data")
    weights = _parse_reward_config(reward_config)
    if not storage.get_user(user_id):
        raise HTTPException(status_code=400, detail="Invalid training job data")
    if parsed_model_id is not None and not storage.get_model(parsed_model_id):
        raise HTTPException(status_code=400, detail="Invalid training job data")

    model_path, _ = await _store_upload(request, model_file)
    try:
        reward_path, _ = await _store_upload(request, reward_file)
    except HTTPException:
        _discard_upload(model_path)
        raise

    job = storage.create_training_job(
        name=name,
        user_id=user_id,
        model_id=parsed_model_id,
        total_epochs=total_epochs,
        reward_config=weights,
        model_file=model_path,
        reward_file=reward_path,
    )
    Logger.info(f"Training job {job.id} '{job.name}' queued ({total_epochs} epochs)")

    runner.start(job.id)
    return job

@router.patch("/api/training-jobs/{job_id}", response_model=TrainingJobResponse)
async def update_training_job(
    job_id: int,
    updates: TrainingJobUpdate,
    storage: Storage = Depends(get_storage),
    runner: TrainingRunner = Depends(get_runner),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    job = storage.get_training_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")

    changes = updates.model_dump(exclude_unset=True, exclude_none=True)
    new_status = changes.get("status")
    if new_status and not can_transition(job.status, new_status):
        raise HTTPException(status_code=400, detail=f"Cannot move job from {job.status} to {new_status}")
    if "current_epoch" in changes:
        # The simulator owns the epoch counter while it runs
        if runner.is_running(job_id) or job.status in TERMINAL_JOB_STATUSES:
            raise HTTPException(status_code=400, detail="Cannot change currentEpoch of an active or finished job")
        if changes["current_epoch"] > job.total_epochs:
            raise HTTPException(status_code=400, detail="Invalid training job data")
        changes["progress"] = compute_progress(changes["current_epoch"], job.total_epochs)

    if new_status in TERMINAL_JOB_STATUSES and job.status not in TERMINAL_JOB_STATUSES:
        await runner.stop(job_id)
        changes.setdefault("completed_at", datetime.utcnow())

    job = storage.update_training_job(job_id, changes)
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")

    broadcaster.publish(events.training_update(job_payload(job)))
    return job

@router.post("/api/training-jobs/{job_id}/stop", response_model=TrainingJobResponse)
async def stop_training_job(
    job_id: int,
    storage: Storage = Depends(get_storage),
    runner: TrainingRunner = Depends(get_runner),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    job = storage.get_training_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Training job not found")

    await runner.stop(job_id)

    job = storage.get_training_job(job_id)
    if job.status in TERMINAL_JOB_STATUSES:
        return job

    job = storage.update_training_job(job_id, {
        "status": "failed",
        "completed_at": datetime.utcnow(),
        "error_log": "Stopped by user",
    })
    log = storage.create_training_log(job_id, "WARN", f"Training stopped by user at epoch {job.current_epoch}")
    broadcaster.publish(events.training_log(job_id, log.timestamp, log.level, log.message))
    broadcaster.publish(events.training_update(job_payload(job)))
    Logger.warning(f"Training job {job_id} stopped at epoch {job.current_epoch}")
    return job

@router.delete("/api/training-jobs/{job_id}", response_model=MessageResponse)
async def delete_training_job(
    job_id: int,
    storage: Storage = Depends(get_storage),
    runner: TrainingRunner = Depends(get_runner),
):
    if not storage.get_training_job(job_id):
        raise HTTPException(status_code=404, detail="Training job not found")

    await runner.stop(job_id)
    storage.delete_training_job(job_id)
    return {"message": "Training job deleted"}

@router.get("/api/training-metrics/{job_id}", response_model=List[TrainingMetricResponse])
async def get_training_metrics(job_id: int, storage: Storage = Depends(get_storage)):
    return storage.get_training_metrics(job_id)

@router.get("/api/training-logs/{job_id}", response_model=List[TrainingLogResponse])
async def get_training_logs(job_id: int, storage: Storage = Depends(get_storage)):
    return storage.get_training_logs(job_id)



# ============ COMMUNITY ENDPOINTS ============

@router.get("/api/community/posts", response_model=List[CommunityPostResponse])
async def get_community_posts(storage: Storage = Depends(get_storage)):
    return storage.get_community_posts()

@router.post("/api/community/posts", response_model=CommunityPostResponse)
async def create_community_post(post: CommunityPostCreate, storage: Storage = Depends(get_storage)):
    if not storage.get_user(post.user_id):
        raise HTTPException(status_code=400, detail="Invalid post data")
    return storage.create_community_post(**post.model_dump())

@router.patch("/api/community/posts/{post_id}", response_model=CommunityPostResponse)
async def update_community_post(post_id: int, updates: CommunityPostUpdate, storage: Storage = Depends(get_storage)):
    post = storage.update_community_post(post_id, updates.model_dump(exclude_unset=True, exclude_none=True))
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post



# ============ VALIDATION SESSION ENDPOINTS ============

@router.get("/api/validation-sessions", response_model=List[ValidationSessionResponse])
async def get_validation_sessions(user_id: Optional[int] = Query(None, alias="userId"), storage: Storage = Depends(get_storage)):
    return storage.get_validation_sessions(user_id)

@router.post("/api/validation-sessions", response_model=ValidationSessionResponse)
async def create_validation_session(session: ValidationSessionCreate, storage: Storage = Depends(get_storage)):
    if not storage.get_user(session.user_id) or not storage.get_model(session.model_id):
        raise HTTPException(status_code=400, detail="Invalid validation session data")
    return storage.create_validation_session(**session.model_dump())

@router.patch("/api/validation-sessions/{session_id}", response_model=ValidationSessionResponse)
async def update_validation_session(
    session_id: int,
    updates: ValidationSessionUpdate,
    storage: Storage = Depends(get_storage),
):
    session = storage.update_validation_session(session_id, updates.model_dump(exclude_unset=True, exclude_none=True))
    if not session:
        raise HTTPException(status_code=404, detail="Validation session not found")
    return session



# ============ MARKETPLACE ENDPOINTS ============

@router.get("/api/marketplace/models", response_model=List[MarketplaceModelResponse])
async def get_marketplace_models(storage: Storage = Depends(get_storage)):
    return storage.get_marketplace_models()

@router.get("/api/marketplace/models/{model_id}", response_model=MarketplaceModelResponse)
async def get_marketplace_model(model_id: int, storage: Storage = Depends(get_storage)):
    model = storage.get_marketplace_model(model_id)
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return model

@router.post("/api/marketplace/models/{model_id}/like", response_model=LikeResponse)
async def like_marketplace_model(model_id: int, storage: Storage = Depends(get_storage)):
    model = storage.increment_marketplace_counter(model_id, "likes")
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return {"success": True, "likes": model.likes}

@router.post("/api/marketplace/models/{model_id}/download", response_model=DownloadResponse)
async def download_marketplace_model(model_id: int, storage: Storage = Depends(get_storage)):
    model = storage.increment_marketplace_counter(model_id, "downloads")
    if not model:
        raise HTTPException(status_code=404, detail="Model not found")
    return {"success": True, "downloads": model.downloads}



# ============ WEBSOCKET FOR REAL-TIME UPDATES ============

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    broadcaster: EventBroadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                Logger.error("WebSocket message error: binary frames are not supported")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                Logger.error(f"WebSocket message error: not JSON: {raw[:100]}")
                continue
            if isinstance(message, dict):
                await broadcaster.handle_client_message(message, websocket)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)

@router.get("/")
async def root():
    return {"status": "ok"}



def create_app(
    storage: Optional[Storage] = None,
    tick_interval: float = TRAINING_TICK_SECONDS,
    upload_dir: str = UPLOAD_DIR,
    max_upload_size: int = MAX_UPLOAD_SIZE,
    seed_demo: bool = SEED_DEMO_TRAINING,
) -> FastAPI:
    storage = storage or Storage.from_url()
    broadcaster = EventBroadcaster()
    runner = TrainingRunner(storage, broadcaster, tick_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        seed_defaults(storage)
        broadcaster.start()

        if seed_demo:
            user = storage.get_user_by_username(DEFAULT_USER["username"])
            for job in seed_demo_training(storage, user.id):
                runner.start(job.id, start_epoch=job.current_epoch)

        yield

        await runner.shutdown()
        await broadcaster.stop()

    app = FastAPI(title="Robot Training Dashboard", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.storage = storage
    app.state.broadcaster = broadcaster
    app.state.runner = runner
    app.state.upload_dir = upload_dir
    app.state.max_upload_size = max_upload_size

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        Logger.debug(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"detail": "Invalid request data"})

    @app.exception_handler(Exception)
    async def internal_exception_handler(request: Request, exc: Exception):
        Logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(router)
    return app

app = create_app()
