"""API路由"""

from fastapi import APIRouter

from . import assessment, chat

api_router = APIRouter()

api_router.include_router(assessment.router)
api_router.include_router(chat.router)
