"""
Configuration settings for VisaFlow.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # Application
    APP_NAME: str = "VisaFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # Host project
    PROJECT_ID: str = ""
    HOST_API_URL: Optional[str] = None  # REST proxy to the collaboration host
    HOST_API_TOKEN: Optional[str] = None
    
    # Workflow Engine
    MAX_TRAVERSAL_DEPTH: int = 100  # Nodes processed per external trigger
    SYSTEM_USER_ID: str = "system"
    SYSTEM_USER_NAME: str = "System"
    
    # Collaborator calls
    COLLABORATOR_TIMEOUT: float = 30.0  # Seconds
    COLLABORATOR_RETRY_ATTEMPTS: int = 3
    COLLABORATOR_RETRY_WAIT: float = 0.5  # Initial backoff in seconds
    WEBHOOK_TIMEOUT: float = 10.0
    
    # Folder watcher
    WATCHER_POLL_INTERVAL: float = 30.0  # Seconds
    WATCHER_MAX_CONSECUTIVE_ERRORS: int = 10
    START_WATCHERS_ON_STARTUP: bool = True
    
    # Events
    EVENT_QUEUE_SIZE: int = 1000
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
