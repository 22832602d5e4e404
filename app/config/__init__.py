from app.config.config import api_key_for, config, validate_config

__all__ = ["config", "validate_config", "api_key_for"]
