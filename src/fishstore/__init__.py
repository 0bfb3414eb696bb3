"""Fishstore - storefront and admin API for selling a fisherman's catch."""

from __future__ import annotations

import tomllib
from pathlib import Path

from .cart import Cart, CartItem, CartStorage
from .config import StoreSettings
from .database import SqlAlchemyStoreDatabase, StoreDatabase
from .errors import (
    AuthenticationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SoldOutError,
    StoreError,
    ValidationError,
)
from .service import StoreService, create_app

# Read version from pyproject.toml
_pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
if _pyproject_path.exists():
    with open(_pyproject_path, "rb") as f:
        _pyproject = tomllib.load(f)
        __version__ = _pyproject["project"]["version"]
else:
    __version__ = "unknown"

__all__ = [
    # Version
    "__version__",
    # Cart
    "Cart",
    "CartItem",
    "CartStorage",
    # Service
    "StoreService",
    "StoreSettings",
    "create_app",
    # Database
    "SqlAlchemyStoreDatabase",
    "StoreDatabase",
    # Errors
    "AuthenticationError",
    "ConflictError",
    "InvalidTransitionError",
    "NotFoundError",
    "PermissionDeniedError",
    "SoldOutError",
    "StoreError",
    "ValidationError",
]
