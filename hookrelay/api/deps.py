from fastapi import Request

from ..config import Settings
from ..dispatcher import Dispatcher


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
