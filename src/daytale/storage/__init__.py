"""故事状态存储。"""

from daytale.storage.base import StoryStore, lease_key
from daytale.storage.files import FileStoryStore
from daytale.storage.memory import InMemoryStoryStore

__all__ = ["FileStoryStore", "InMemoryStoryStore", "StoryStore", "lease_key"]
