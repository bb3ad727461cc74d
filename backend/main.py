"""
Development launcher for the dashboard API.

Run from the repository root with ``python backend/main.py``; the simulated
training loop and the WebSocket broadcaster live inside the API process.
"""
import uvicorn

from robotrain.config import HOST, PORT

if __name__ == "__main__":
    uvicorn.run("robotrain.main:app", host=HOST, port=PORT)
