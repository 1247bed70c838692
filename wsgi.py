"""
Server entry point for the MediaRelay FastAPI application.

Run with `uvicorn wsgi:application` or `python wsgi.py`.
"""
import os

from app.main import app

application = app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        application,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000"))
    )
