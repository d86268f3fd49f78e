"""Engine configuration."""

from ilmd.config.engine_config import EngineConfig, load_engine_config, seed_store

__all__ = ['EngineConfig', 'load_engine_config', 'seed_store']
