"""
FastAPI dependencies exposing the services built by `create_app`.

Everything lives on `request.app.state`; nothing is imported as a global, so
tests can build an app around stubs or override these functions directly.
"""

from fastapi import Request

from community_microhelp.config import Settings
from community_microhelp.database import DatabaseManager
from community_microhelp.managers.email_manager import EmailManager
from community_microhelp.managers.security_manager import SecurityManager
from community_microhelp.managers.upload_manager import UploadManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> DatabaseManager:
    return request.app.state.db


def get_security(request: Request) -> SecurityManager:
    return request.app.state.security


def get_email_manager(request: Request) -> EmailManager:
    return request.app.state.email


def get_upload_manager(request: Request) -> UploadManager:
    return request.app.state.uploads
