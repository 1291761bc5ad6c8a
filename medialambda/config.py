import dataclasses
from enum import Enum
from typing import Mapping

from medialambda.errors import DerivativeError, ErrorKind

DEFAULT_PROJECT_BUCKETS = 'geerly=geerly-cms-content,farmify=files-farmify,sopilot=files-sopilot'
DEFAULT_CACHE_CONTROL = 'public, max-age=31536000'
DEFAULT_MAX_INLINE_SIZE = 10 * 1024 * 1024
DEFAULT_SUPPORTED_FORMATS = 'jpeg,png,webp,gif,avif'
DEFAULT_QUALITY = 80
DEFAULT_ORIGIN_VERIFY = 'cloudfront'
DEFAULT_FFMPEG_PATH = '/opt/bin/ffmpeg'
DEFAULT_FFMPEG_TIMEOUT = 20.0
DEFAULT_VIDEO_FRAME_OFFSET = 1.0
DEFAULT_VIDEO_MAX_WIDTH = 640
DEFAULT_VIDEO_MAX_HEIGHT = 360
DEFAULT_REGION = 'us-east-1'


class OperationSyntax(Enum):
  QUERY = 0
  PATH = 1


@dataclasses.dataclass(eq=True, frozen=True)
class ProjectRoute:
  project_id: str
  source_bucket: str


@dataclasses.dataclass(eq=True, frozen=True)
class ProjectRoutes:
  routes: tuple[ProjectRoute, ...]

  @classmethod
  def from_str(cls, s: str) -> 'ProjectRoutes':
    routes = []
    for entry in s.split(','):
      entry = entry.strip()
      if entry == '':
        continue
      project_id, sep, bucket = entry.partition('=')
      if sep == '' or project_id.strip() == '' or bucket.strip() == '':
        raise ValueError(f'invalid project route: {entry}')
      routes.append(ProjectRoute(project_id.strip(), bucket.strip()))
    return cls(tuple(routes))

  def resolve(self, project_id: str) -> str:
    for route in self.routes:
      if route.project_id == project_id:
        return route.source_bucket
    raise DerivativeError(ErrorKind.UNKNOWN_PROJECT, project_id)


@dataclasses.dataclass(eq=True, frozen=True)
class Config:
  region: str
  routes: ProjectRoutes
  derivative_bucket: str
  derivative_cache_control: str
  derivative_base_url: str
  max_inline_size: int
  supported_formats: frozenset[str]
  default_quality: int
  origin_verify: str
  operation_syntax: OperationSyntax
  error_max_age: int
  ffmpeg_path: str
  ffmpeg_timeout: float
  video_frame_offset: float
  video_max_width: int
  video_max_height: int

  @classmethod
  def from_env(cls, environ: Mapping[str, str]) -> 'Config':
    supported_formats = frozenset(
        f.strip().lower()
        for f in environ.get('SUPPORTED_FORMATS', DEFAULT_SUPPORTED_FORMATS).split(',')
        if f.strip() != '')

    max_inline_size = int(environ.get('MAX_INLINE_SIZE', DEFAULT_MAX_INLINE_SIZE))
    if max_inline_size < 0:
      raise ValueError(f'invalid MAX_INLINE_SIZE: {max_inline_size}')

    default_quality = int(environ.get('DEFAULT_QUALITY', DEFAULT_QUALITY))
    if not 1 <= default_quality <= 100:
      raise ValueError(f'invalid DEFAULT_QUALITY: {default_quality}')

    return cls(
        region=environ.get('AWS_REGION', DEFAULT_REGION),
        routes=ProjectRoutes.from_str(environ.get('PROJECT_BUCKETS', DEFAULT_PROJECT_BUCKETS)),
        derivative_bucket=environ['DERIVATIVE_BUCKET'],
        derivative_cache_control=environ.get('DERIVATIVE_CACHE_CONTROL', DEFAULT_CACHE_CONTROL),
        derivative_base_url=environ.get('DERIVATIVE_BASE_URL', '').rstrip('/'),
        max_inline_size=max_inline_size,
        supported_formats=supported_formats,
        default_quality=default_quality,
        origin_verify=environ.get('ORIGIN_VERIFY', DEFAULT_ORIGIN_VERIFY),
        operation_syntax=OperationSyntax[environ.get('OPERATION_SYNTAX', 'query').upper()],
        error_max_age=int(environ.get('ERROR_MAX_AGE', '0')),
        ffmpeg_path=environ.get('FFMPEG_PATH', DEFAULT_FFMPEG_PATH),
        ffmpeg_timeout=float(environ.get('FFMPEG_TIMEOUT', DEFAULT_FFMPEG_TIMEOUT)),
        video_frame_offset=float(environ.get('VIDEO_FRAME_OFFSET', DEFAULT_VIDEO_FRAME_OFFSET)),
        video_max_width=int(environ.get('VIDEO_MAX_WIDTH', DEFAULT_VIDEO_MAX_WIDTH)),
        video_max_height=int(environ.get('VIDEO_MAX_HEIGHT', DEFAULT_VIDEO_MAX_HEIGHT)))
