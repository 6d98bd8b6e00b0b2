"""University Assessment Engine - API v1 Router."""
from fastapi import APIRouter

from assessment.api.v1.tests import router as tests_router
from assessment.api.v1.questions import router as questions_router
from assessment.api.v1.attempts import router as attempts_router

api_router = APIRouter()

api_router.include_router(tests_router)
api_router.include_router(questions_router)
api_router.include_router(attempts_router)
