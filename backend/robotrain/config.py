import os

# In-memory SQLite by default; records live only as long as the process
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite://")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./data/uploads")
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(50 * 1024 * 1024)))  # 50MB

TRAINING_TICK_SECONDS = float(os.getenv("TRAINING_TICK_SECONDS", "2"))
SEED_DEMO_TRAINING = os.getenv("SEED_DEMO_TRAINING", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
