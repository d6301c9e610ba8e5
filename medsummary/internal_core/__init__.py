from .config import RelayConfig, load_config
from .record_store import InMemoryRecordStore

__all__ = ["RelayConfig", "load_config", "InMemoryRecordStore"]
