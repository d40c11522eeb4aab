"""Core configuration classes for the collector."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .exceptions import ConfigurationError

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class CollectorConfig:
    """Main configuration for one collector run.

    Built from the command line by from_args(). Argus connection settings
    fall back to the ARGUSWS_* environment variables.
    """

    # Reader selection and configuration files
    reader_type: str = ''
    config_path: Optional[str] = None
    override_config_path: Optional[str] = None
    overrides: List[str] = field(default_factory=list)

    # Overall run deadline
    timeout_sec: int = 3600

    # Output configuration
    preview: bool = False
    argus_endpoint: Optional[str] = None
    argus_username: Optional[str] = None
    argus_password: Optional[str] = None
    prometheus_port: Optional[int] = None

    # Debugging
    log_level: str = 'INFO'
    logfile: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.reader_type:
            raise ConfigurationError("reader_type is required")
        if self.timeout_sec <= 0:
            raise ConfigurationError(f"timeout_sec must be positive, got {self.timeout_sec}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {LOG_LEVELS}")
        if not self.preview and not self.argus_endpoint:
            raise ConfigurationError(
                "Argus endpoint required unless previewing. Use --argus-endpoint or ARGUSWS_ENDPOINT.")

    @classmethod
    def from_args(cls, args) -> 'CollectorConfig':
        """Create configuration from command line arguments."""
        return cls(
            reader_type=(getattr(args, 'type', None) or '').upper(),
            config_path=getattr(args, 'config', None),
            override_config_path=getattr(args, 'override_config', None),
            overrides=list(getattr(args, 'property', None) or []),
            timeout_sec=getattr(args, 'timeout', 3600),
            preview=getattr(args, 'preview', False),
            argus_endpoint=getattr(args, 'argus_endpoint', None) or os.getenv('ARGUSWS_ENDPOINT'),
            argus_username=getattr(args, 'argus_username', None) or os.getenv('ARGUSWS_USERNAME'),
            argus_password=getattr(args, 'argus_password', None) or os.getenv('ARGUSWS_PASSWORD'),
            prometheus_port=getattr(args, 'prometheus_port', None),
            log_level=getattr(args, 'log_level', 'INFO'),
            logfile=getattr(args, 'logfile', None),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary for logging. The password is redacted."""
        return {
            'reader_type': self.reader_type,
            'config_path': self.config_path,
            'override_config_path': self.override_config_path,
            'overrides': len(self.overrides),
            'timeout_sec': self.timeout_sec,
            'preview': self.preview,
            'argus_endpoint': self.argus_endpoint,
            'argus_username': self.argus_username,
            'argus_password': '***' if self.argus_password else None,
            'prometheus_port': self.prometheus_port,
            'log_level': self.log_level,
            'logfile': self.logfile,
        }
