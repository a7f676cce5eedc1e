# Overview: Flask extension instances and accessors for the per-app service graph.

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

if TYPE_CHECKING:
    from .services.data_adapter import DataAdapter
    from .services.notification_service import NotificationEngine
    from .services.remote_service import RemoteDataService
    from .services.sync_manager import SyncManager
    from .storage.local_store import LocalCacheStore

db = SQLAlchemy()
migrate = Migrate()


def get_local_store() -> "LocalCacheStore":
    return current_app.extensions["stockline.local_store"]


def get_remote() -> "RemoteDataService":
    return current_app.extensions["stockline.remote"]


def get_data_adapter() -> "DataAdapter":
    return current_app.extensions["stockline.data_adapter"]


def get_notification_engine() -> "NotificationEngine":
    return current_app.extensions["stockline.notifications"]


def get_sync_manager() -> "SyncManager":
    return current_app.extensions["stockline.sync_manager"]
