"""
Production environment configuration overrides
"""

from dataclasses import dataclass
from config.app_config import AppConfig, APIConfig


@dataclass
class ProductionConfig(AppConfig):
    """Production environment configuration"""
    
    def __post_init__(self):
        
        # Production-specific overrides
        self.environment = "production"
        self.debug = False
        self.api = APIConfig.from_secrets()
        
        # Production logging - less verbose, focus on errors
        self.logging.level = "INFO"
        self.logging.enable_file_logging = True
        self.logging.log_file = "logs/prod-app.log"
        
        # Ride out short provider outages
        self.retry.max_retries = 3
        self.retry.failure_threshold = 5
        self.retry.recovery_timeout = 60


def get_production_config() -> ProductionConfig:
    """Get production-specific configuration"""
    return ProductionConfig()
