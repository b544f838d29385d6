"""User store backends."""

from app.stores.base import PublicUser, UserRecord, UserStore
from app.stores.json_file import JsonFileUserStore
from app.stores.sql import SqlUserStore

__all__ = ["PublicUser", "UserRecord", "UserStore", "JsonFileUserStore", "SqlUserStore"]
