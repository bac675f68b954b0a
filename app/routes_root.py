# routes_root.py
"""
Root / basic endpoints (health, landing).
"""

from fastapi import APIRouter
from fastapi.responses import RedirectResponse

router = APIRouter()


@router.get("/")
def read_root():
    """
    Landing endpoint: the monthly summary is the closest thing to a home page.
    """
    return RedirectResponse(url="/dashboard", status_code=302)


@router.get("/health")
def health():
    return {"status": "ok"}
