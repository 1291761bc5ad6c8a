from enum import Enum
from http import HTTPStatus


class ErrorKind(Enum):
  MALFORMED_REQUEST = 'malformed-request'
  UNKNOWN_PROJECT = 'unknown-project'
  SOURCE_NOT_FOUND = 'source-not-found'
  UNSUPPORTED_FORMAT = 'unsupported-format'
  INVALID_QUALITY = 'invalid-quality'
  ACCESS_DENIED = 'access-denied'
  STORAGE_CONFIG_ERROR = 'storage-config-error'
  TRANSFORM_FAILED = 'transform-failed'
  TOO_LARGE = 'too-large'
  STORE_ERROR = 'store-error'

  @property
  def status(self) -> HTTPStatus:
    return STATUSES[self]

  @property
  def message(self) -> str:
    return MESSAGES[self]


STATUSES: dict[ErrorKind, HTTPStatus] = {
    ErrorKind.MALFORMED_REQUEST: HTTPStatus.BAD_REQUEST,
    ErrorKind.UNKNOWN_PROJECT: HTTPStatus.NOT_FOUND,
    ErrorKind.SOURCE_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorKind.UNSUPPORTED_FORMAT: HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
    ErrorKind.INVALID_QUALITY: HTTPStatus.BAD_REQUEST,
    ErrorKind.ACCESS_DENIED: HTTPStatus.FORBIDDEN,
    ErrorKind.STORAGE_CONFIG_ERROR: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrorKind.TRANSFORM_FAILED: HTTPStatus.INTERNAL_SERVER_ERROR,
    ErrorKind.TOO_LARGE: HTTPStatus.FORBIDDEN,
    ErrorKind.STORE_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
}

# Stable client-facing messages. Details only go to the log.
MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MALFORMED_REQUEST: 'Invalid request format',
    ErrorKind.UNKNOWN_PROJECT: 'Project not found',
    ErrorKind.SOURCE_NOT_FOUND: 'Source object not found',
    ErrorKind.UNSUPPORTED_FORMAT: 'Unsupported image format',
    ErrorKind.INVALID_QUALITY: 'Invalid quality parameter (must be between 1 and 100)',
    ErrorKind.ACCESS_DENIED: 'Access denied',
    ErrorKind.STORAGE_CONFIG_ERROR: 'Storage configuration error',
    ErrorKind.TRANSFORM_FAILED: 'Failed to transform media',
    ErrorKind.TOO_LARGE: 'Requested transformed image is too big',
    ErrorKind.STORE_ERROR: 'Internal server error',
}


class DerivativeError(Exception):
  kind: ErrorKind
  detail: str

  def __init__(self, kind: ErrorKind, detail: str = ''):
    super().__init__(f'{kind.value}: {detail}' if detail else kind.value)
    self.kind = kind
    self.detail = detail
