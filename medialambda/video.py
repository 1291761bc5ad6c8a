import subprocess
from logging import Logger
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Optional, Protocol

from medialambda.errors import DerivativeError, ErrorKind
from medialambda.store import Artifact

JPEG_MIME = 'image/jpeg'

SOURCE_NAME = 'source'
FRAME_NAME = 'frame.jpg'

# ffmpeg -q:v, 2 (best) to 31 (worst).
JPEG_QSCALE = 2

STDERR_TAIL = 2000


class FrameExtractor(Protocol):

  def extract_frame(
      self,
      data: bytes,
      offset_seconds: float,
      max_width: int,
      max_height: int,
  ) -> bytes:
    ...


def scale_filter(max_width: int, max_height: int) -> str:
  return (
      f"scale=w='min({max_width},iw)':h='min({max_height},ih)'"
      ':force_original_aspect_ratio=decrease')


class FfmpegFrameExtractor:

  def __init__(self, log: Logger, ffmpeg_path: str, timeout: float):
    self.log = log
    self.ffmpeg_path = ffmpeg_path
    self.timeout = timeout

  def command(
      self,
      source: Path,
      frame: Path,
      offset_seconds: float,
      max_width: int,
      max_height: int,
  ) -> list[str]:
    return [
        self.ffmpeg_path,
        '-nostdin',
        '-y',
        '-loglevel',
        'error',
        '-ss',
        f'{offset_seconds:.3f}',
        '-i',
        str(source),
        '-frames:v',
        '1',
        '-vf',
        scale_filter(max_width, max_height),
        '-f',
        'image2',
        '-c:v',
        'mjpeg',
        '-q:v',
        str(JPEG_QSCALE),
        str(frame),
    ]

  def run(
      self,
      source: Path,
      frame: Path,
      offset_seconds: float,
      max_width: int,
      max_height: int,
  ) -> Optional[bytes]:
    cmd = self.command(source, frame, offset_seconds, max_width, max_height)

    try:
      # subprocess.run() kills the child when the timeout expires.
      ret = subprocess.run(
          cmd,
          stdin=subprocess.DEVNULL,
          stdout=subprocess.PIPE,
          stderr=subprocess.PIPE,
          timeout=self.timeout)
    except subprocess.TimeoutExpired as e:
      raise DerivativeError(ErrorKind.TRANSFORM_FAILED, f'ffmpeg timed out after {self.timeout}s') from e
    except OSError as e:
      raise DerivativeError(ErrorKind.TRANSFORM_FAILED, f'ffmpeg not runnable: {e}') from e

    if ret.returncode != 0:
      stderr = ret.stderr.decode('utf-8', errors='replace')[-STDERR_TAIL:]
      raise DerivativeError(
          ErrorKind.TRANSFORM_FAILED, f'ffmpeg exited with code {ret.returncode}: {stderr}')

    if not frame.exists() or frame.stat().st_size == 0:
      return None

    return frame.read_bytes()

  def extract_frame(
      self,
      data: bytes,
      offset_seconds: float,
      max_width: int,
      max_height: int,
  ) -> bytes:
    with TemporaryDirectory(prefix='medialambda-') as workdir:
      source = Path(workdir) / SOURCE_NAME
      frame = Path(workdir) / FRAME_NAME
      source.write_bytes(data)

      body = self.run(source, frame, offset_seconds, max_width, max_height)

      # Clips shorter than the offset yield no frame.
      if body is None and 0 < offset_seconds:
        self.log.debug({
            'message': 'no frame at offset, retrying from start',
            'offset': offset_seconds,
        })
        body = self.run(source, frame, 0.0, max_width, max_height)

      if body is None:
        raise DerivativeError(ErrorKind.TRANSFORM_FAILED, 'ffmpeg produced no frame')

      return body


def transform_video(
    extractor: FrameExtractor,
    data: bytes,
    offset_seconds: float,
    max_width: int,
    max_height: int,
) -> Artifact:
  body = extractor.extract_frame(data, offset_seconds, max_width, max_height)
  return Artifact(body=body, content_type=JPEG_MIME)
