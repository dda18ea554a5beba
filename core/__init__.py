# Core package for configuration, security and cross-cutting concerns

from .config import settings
from .logging import setup_logging, get_logger
from .exceptions import setup_exception_handlers, APIException, AIServiceException
from .middleware import setup_middleware
from .file_utils import validate_audio_type, validate_audio_size
