# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Storage backend factory for memory search.

Creates and initializes the SQLite reference repository.
"""

import logging

from ..config import StorageSettings
from .base import MemoryRepository
from .sqlite_repository import SQLiteMemoryRepository

logger = logging.getLogger(__name__)


async def create_repository(config: StorageSettings | None = None) -> MemoryRepository:
    """
    Create and initialize the SQLite repository.

    Args:
        config: Storage settings (defaults to the process-wide settings)

    Returns:
        Initialized SQLiteMemoryRepository instance
    """
    if config is None:
        from ..config import settings

        config = settings.storage

    logger.info(f"Creating SQLite memory repository at {config.sqlite_path}")
    repository = SQLiteMemoryRepository(str(config.sqlite_path))
    await repository.initialize()
    logger.info("SQLiteMemoryRepository initialized successfully")

    return repository
