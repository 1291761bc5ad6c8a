import base64
import dataclasses
import json
import os
import time
from http import HTTPStatus
from logging import Logger
from typing import Any, Mapping, Optional
from urllib import parse

from medialambda.config import Config
from medialambda.errors import DerivativeError, ErrorKind
from medialambda.image import transform_image, validate_operations
from medialambda.jsonlog import init_logging
from medialambda.request import MediaKind, TransformRequest, build_key, parse_request
from medialambda.store import Artifact, DerivativeStore, new_s3_client
from medialambda.typing import FunctionUrlEvent, HttpPath, ProxyResult, S3Key
from medialambda.video import FfmpegFrameExtractor, FrameExtractor, transform_video

ORIGIN_VERIFY_HEADER = 'x-origin-verify'
REDIRECT_CACHE_CONTROL = 'private, no-store'
JSON_MIME = 'application/json'
ALLOWED_METHODS = ['GET', 'HEAD']

logger = init_logging(__name__)


def json_dump(obj: Any) -> str:
  return json.dumps(obj, separators=(',', ':'), sort_keys=True)


class Timing:
  entries: list[tuple[str, int]]

  def __init__(self) -> None:
    self.entries = []
    self.start_ns = time.time_ns()

  def lap(self, name: str) -> None:
    now = time.time_ns()
    self.entries.append((name, (now - self.start_ns) // 1000000))
    self.start_ns = now

  def header(self) -> str:
    return ','.join(f'{name};dur={ms}' for name, ms in self.entries)


@dataclasses.dataclass(frozen=True)
class Inline:
  artifact: Artifact
  cache_control: str
  server_timing: str = ''


@dataclasses.dataclass(frozen=True)
class Redirect:
  location: str
  cache_control: str = REDIRECT_CACHE_CONTROL
  server_timing: str = ''


@dataclasses.dataclass(frozen=True)
class Failure:
  kind: ErrorKind

  @property
  def message(self) -> str:
    return self.kind.message


DeliveryOutcome = Inline | Redirect | Failure


def decide(
    artifact: Artifact,
    max_inline_size: int,
    written: bool,
    location: str,
    cache_control: str,
    server_timing: str = '',
) -> DeliveryOutcome:
  if artifact.size <= max_inline_size:
    return Inline(artifact=artifact, cache_control=cache_control, server_timing=server_timing)

  # Too big to return from Lambda: point at the stored copy if there is one.
  if written:
    return Redirect(location=location, server_timing=server_timing)

  return Failure(ErrorKind.TOO_LARGE)


def to_response(outcome: DeliveryOutcome, error_max_age: int = 0) -> ProxyResult:
  match outcome:
    case Inline(artifact=artifact, cache_control=cache_control, server_timing=server_timing):
      headers = {
          'Content-Type': artifact.content_type,
          'Cache-Control': cache_control,
      }
      if server_timing != '':
        headers['Server-Timing'] = server_timing
      return {
          'statusCode': HTTPStatus.OK,
          'headers': headers,
          'body': base64.b64encode(artifact.body).decode(),
          'isBase64Encoded': True,
      }
    case Redirect(location=location, cache_control=cache_control, server_timing=server_timing):
      headers = {
          'Location': location,
          'Cache-Control': cache_control,
      }
      if server_timing != '':
        headers['Server-Timing'] = server_timing
      return {
          'statusCode': HTTPStatus.FOUND,
          'headers': headers,
      }
    case Failure(kind=kind):
      return {
          'statusCode': kind.status,
          'headers': {
              'Content-Type': JSON_MIME,
              'Cache-Control': f'public, max-age={error_max_age}',
          },
          'body': json_dump({'error': kind.message}),
      }
    case _:
      raise Exception('system error')


class RequestLog:

  def __init__(self, log: Logger, context: dict[str, Any]):
    self.log = log
    self.context = context

  def log_debug(self, message: str, dict: dict[str, Any]) -> None:
    self.log.debug({
        'message': message,
        **self.context,
        **dict,
    })

  def log_warning(self, message: str, dict: dict[str, Any]) -> None:
    self.log.warning({
        'message': message,
        **self.context,
        **dict,
    })

  def log_error(self, message: str, dict: dict[str, Any]) -> None:
    self.log.error({
        'message': message,
        **self.context,
        **dict,
    })


class DerivativeServer:
  instances: dict[Config, 'DerivativeServer'] = {}

  def __init__(
      self,
      log: Logger,
      config: Config,
      store: DerivativeStore,
      extractor: FrameExtractor,
  ):
    self.log = log
    self.config = config
    self.store = store
    self.extractor = extractor

  @classmethod
  def from_lambda(cls, log: Logger, environ: Mapping[str, str]) -> Optional['DerivativeServer']:
    try:
      config = Config.from_env(environ)
    except (KeyError, ValueError) as e:
      log.warning({
          'message': 'invalid environment',
          'reason': str(e),
      })
      return None

    if config not in cls.instances:
      cls.instances[config] = cls(
          log=log,
          config=config,
          store=DerivativeStore(log, new_s3_client(config.region)),
          extractor=FfmpegFrameExtractor(log, config.ffmpeg_path, config.ffmpeg_timeout))

    return cls.instances[config]

  def location(self, key: S3Key) -> str:
    return f'{self.config.derivative_base_url}/{parse.quote(key)}'

  def compute(self, req: TransformRequest, data: bytes) -> Artifact:
    match req.kind:
      case MediaKind.IMAGE:
        return transform_image(
            data,
            req.operations,
            self.config.supported_formats,
            self.config.default_quality,
        )
      case MediaKind.VIDEO:
        return transform_video(
            self.extractor,
            data,
            self.config.video_frame_offset,
            self.config.video_max_width,
            self.config.video_max_height,
        )
      case _:
        raise Exception('system error')

  def run(self, rlog: RequestLog, method: str, path: HttpPath, qstr: str) -> DeliveryOutcome:
    if method not in ALLOWED_METHODS:
      raise DerivativeError(ErrorKind.MALFORMED_REQUEST, f'method: {method}')

    req = parse_request(path, qstr, self.config.operation_syntax)
    source_bucket = self.config.routes.resolve(req.project_id)

    if req.kind == MediaKind.IMAGE:
      validate_operations(req.operations, self.config.supported_formats)

    key = build_key(req)
    location = self.location(key)

    if self.store.exists(self.config.derivative_bucket, key):
      rlog.log_debug('derivative found', {'key': key})
      return Redirect(location=location)

    timing = Timing()

    data = self.store.fetch(source_bucket, S3Key(req.object_path))
    timing.lap('img-download')

    artifact = self.compute(req, data)
    timing.lap('img-transform')

    written = self.store.write(
        self.config.derivative_bucket, key, artifact, self.config.derivative_cache_control)
    timing.lap('img-upload')

    rlog.log_debug(
        'derivative computed', {
            'key': key,
            'source_bucket': source_bucket,
            'content_type': artifact.content_type,
            'size': artifact.size,
            'written': written,
            'timing': timing.header(),
        })

    return decide(
        artifact,
        self.config.max_inline_size,
        written,
        location,
        self.config.derivative_cache_control,
        timing.header(),
    )

  def process(
      self,
      rlog: RequestLog,
      method: str,
      path: HttpPath,
      qstr: str,
      headers: Mapping[str, str],
  ) -> DeliveryOutcome:
    if headers.get(ORIGIN_VERIFY_HEADER) != self.config.origin_verify:
      rlog.log_warning('untrusted origin', {})
      return Failure(ErrorKind.ACCESS_DENIED)

    try:
      return self.run(rlog, method, path, qstr)
    except DerivativeError as e:
      if 500 <= e.kind.status:
        rlog.log_error('failed to serve derivative', {'kind': e.kind.value, 'reason': e.detail})
      else:
        rlog.log_warning('rejected', {'kind': e.kind.value, 'reason': e.detail})
      return Failure(e.kind)
    except Exception as e:
      rlog.log_error('error during process()', {'reason': repr(e)})
      return Failure(ErrorKind.STORE_ERROR)


def lambda_main(event: FunctionUrlEvent) -> ProxyResult:
  headers = {k.lower(): v for k, v in event.get('headers', {}).items()}
  method = event['requestContext']['http']['method']
  path = event['rawPath']
  qstr = event.get('rawQueryString', '')

  server = DerivativeServer.from_lambda(logger, os.environ)
  if server is None:
    return to_response(Failure(ErrorKind.STORAGE_CONFIG_ERROR))

  rlog = RequestLog(server.log, {'method': method, 'path': str(path), 'qstr': qstr})
  outcome = server.process(rlog, method, path, qstr, headers)
  result = to_response(outcome, server.config.error_max_age)

  rlog.log_debug(
      'responded', {
          'status': int(result['statusCode']),
          'outcome': type(outcome).__name__,
      })

  return result
