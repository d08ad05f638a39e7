#!/usr/bin/env python3
"""
Component loggers for the poll relay and detector.

Every log line carries a short event code so grep-ing the relay log for
BROADCAST_SENT or CODE_ISSUED finds every occurrence regardless of wording.
"""

import logging
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class RelayLogger:
    """Thin wrapper around a stdlib logger that tags messages with a code"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _format(self, code: str, message: str, context: Optional[Dict[str, Any]]) -> str:
        if context:
            return f"{code}: {message} {context}"
        return f"{code}: {message}"

    def log_error(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log an error with context"""
        self.logger.error(self._format(code, message, context))

    def log_info(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log an informational message with context"""
        self.logger.info(self._format(code, message, context))

    def log_warning(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Log a warning with context"""
        self.logger.warning(self._format(code, message, context))

    def log_debug(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._format(code, message, context))


def configure_logging(level: str = 'INFO'):
    """Configure root logging for a relay process"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


identity_logger = RelayLogger("pollcast.identity")
registry_logger = RelayLogger("pollcast.registry")
broadcast_logger = RelayLogger("pollcast.broadcast")
store_logger = RelayLogger("pollcast.store")
http_logger = RelayLogger("pollcast.http")
detector_logger = RelayLogger("pollcast.detector")
bridge_logger = RelayLogger("pollcast.bridge")
