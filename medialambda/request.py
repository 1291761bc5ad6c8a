import dataclasses
import os
import re
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional
from urllib import parse

from medialambda.config import OperationSyntax
from medialambda.errors import DerivativeError, ErrorKind
from medialambda.typing import HttpPath, S3Key

WIDTH = 'width'
HEIGHT = 'height'
FORMAT = 'format'
QUALITY = 'quality'

OPERATION_NAMES = frozenset([WIDTH, HEIGHT, FORMAT, QUALITY])

QUERY_ALIASES = {
    'width': WIDTH,
    'w': WIDTH,
    'height': HEIGHT,
    'h': HEIGHT,
    'format': FORMAT,
    'f': FORMAT,
    'quality': QUALITY,
    'q': QUALITY,
}

FORMAT_ALIASES = {
    'jpg': 'jpeg',
}

VIDEO_EXTENSIONS = frozenset(['.mp4', '.m4v', '.mov', '.webm', '.mkv', '.avi', '.mpeg', '.mpg'])

NO_OPERATIONS_SEGMENT = 'original'
VIDEO_KEY_SUFFIX = '.jpg'

# Largest image dimension libvips accepts.
MAX_DIMENSION = 10000000

integer_re = re.compile(r'-?[0-9]+')


class MediaKind(Enum):
  IMAGE = 0
  VIDEO = 1

  @classmethod
  def from_path(cls, object_path: str) -> 'MediaKind':
    _, ext = os.path.splitext(object_path.lower())
    return cls.VIDEO if ext in VIDEO_EXTENSIONS else cls.IMAGE


Operations = Mapping[str, int | str]


@dataclasses.dataclass(frozen=True)
class TransformRequest:
  project_id: str
  object_path: str
  operations: Operations
  kind: MediaKind

  @property
  def width(self) -> Optional[int]:
    return self.int_operation(WIDTH)

  @property
  def height(self) -> Optional[int]:
    return self.int_operation(HEIGHT)

  @property
  def quality(self) -> Optional[int]:
    return self.int_operation(QUALITY)

  @property
  def format(self) -> Optional[str]:
    v = self.operations.get(FORMAT)
    return None if v is None else str(v)

  def int_operation(self, name: str) -> Optional[int]:
    v = self.operations.get(name)
    if v is None:
      return None
    if not isinstance(v, int):
      raise Exception('system error')
    return v


def malformed(detail: str) -> DerivativeError:
  return DerivativeError(ErrorKind.MALFORMED_REQUEST, detail)


def parse_operation_value(name: str, value: str) -> int | str:
  if name == FORMAT:
    fmt = value.strip().lower()
    if fmt == '':
      raise malformed('empty format')
    return FORMAT_ALIASES.get(fmt, fmt)

  if integer_re.fullmatch(value) is None:
    raise malformed(f'non-numeric {name}: {value}')
  n = int(value)

  # Quality range is validated by the transform so that it maps to its own error kind.
  if name in [WIDTH, HEIGHT] and n <= 0:
    raise malformed(f'non-positive {name}: {value}')
  if name in [WIDTH, HEIGHT] and MAX_DIMENSION < n:
    raise malformed(f'{name} too large: {value}')

  return n


def operations_from_segment(segment: str) -> Operations:
  ops: dict[str, int | str] = {}
  for item in segment.split(','):
    if item == '':
      continue
    name, sep, value = item.partition('=')
    if sep == '':
      raise malformed(f'operation without value: {item}')
    if name not in OPERATION_NAMES:
      raise malformed(f'unknown operation: {name}')
    if name in ops:
      raise malformed(f'duplicate operation: {name}')
    ops[name] = parse_operation_value(name, value)
  return ops


def operations_from_querystring(qs: dict[str, list[str]]) -> Operations:
  ops: dict[str, int | str] = {}
  for param, values in qs.items():
    name = QUERY_ALIASES.get(param)
    if name is None:
      continue
    if name in ops or len(values) != 1:
      raise malformed(f'duplicate operation: {name}')
    ops[name] = parse_operation_value(name, values[0])
  return ops


def parse_request(path: HttpPath, qstr: str, syntax: OperationSyntax) -> TransformRequest:
  if not path.startswith('/'):
    raise malformed(f'relative path: {path}')

  segments = parse.unquote(path[1:]).split('/')

  ops_segment: Optional[str] = None
  if syntax == OperationSyntax.PATH and 2 < len(segments) and '=' in segments[-1]:
    ops_segment = segments.pop()

  if len(segments) < 2:
    raise malformed('no object path')

  project_id = segments[0]
  if project_id == '':
    raise malformed('no project')

  for s in segments[1:]:
    if s in ['', '.', '..']:
      raise malformed(f'invalid path segment: "{s}"')

  object_path = '/'.join(segments[1:])

  match syntax:
    case OperationSyntax.PATH:
      operations = operations_from_segment(ops_segment) if ops_segment is not None else {}
    case OperationSyntax.QUERY:
      operations = operations_from_querystring(parse.parse_qs(qstr, keep_blank_values=True))
    case _:
      raise Exception('system error')

  kind = MediaKind.from_path(object_path)
  if kind == MediaKind.VIDEO and len(operations) != 0:
    raise malformed('video derivatives take no operations')

  return TransformRequest(
      project_id=project_id,
      object_path=object_path,
      operations=MappingProxyType(operations),
      kind=kind)


def canonical_operations(operations: Operations) -> str:
  return ','.join(f'{name}={operations[name]}' for name in sorted(operations))


def build_key(req: TransformRequest) -> S3Key:
  match req.kind:
    case MediaKind.VIDEO:
      return S3Key(f'{req.project_id}/{req.object_path}{VIDEO_KEY_SUFFIX}')
    case MediaKind.IMAGE:
      ops = canonical_operations(req.operations)
      if ops == '':
        ops = NO_OPERATIONS_SEGMENT
      return S3Key(f'{req.project_id}/{req.object_path}/{ops}')
    case _:
      raise Exception('system error')
