from typing import Optional

from pyvips import Error as VipsError  # type: ignore
from pyvips import GValue, Image, Size  # type: ignore

from medialambda.errors import DerivativeError, ErrorKind
from medialambda.request import FORMAT, HEIGHT, MAX_DIMENSION, QUALITY, WIDTH, Operations
from medialambda.store import Artifact

MIN_QUALITY = 1
MAX_QUALITY = 100

CONTENT_TYPES = {
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'webp': 'image/webp',
    'gif': 'image/gif',
    'avif': 'image/avif',
}

SUFFIXES = {
    'jpeg': '.jpg',
    'png': '.png',
    'webp': '.webp',
    'gif': '.gif',
    'avif': '.avif',
}

LOSSY_FORMATS = frozenset(['jpeg', 'webp', 'avif'])
NO_ALPHA_FORMATS = frozenset(['jpeg'])

LOADER_FORMATS = {
    'jpegload': 'jpeg',
    'pngload': 'png',
    'webpload': 'webp',
    'gifload': 'gif',
}

# Vector input has no raster format of its own to fall back to.
VECTOR_LOADERS = frozenset(['svgload', 'pdfload'])
VECTOR_FALLBACK_FORMAT = 'png'

# libvips reads both HEIC and AVIF with heifload; only AV1 payloads are AVIF.
HEIF_LOADER = 'heifload'
HEIF_AVIF_COMPRESSION = 'av1'
HEIF_OTHER_FORMAT = 'heic'

# Output formats that keep every frame of an animated source.
ANIMATED_FORMATS = frozenset(['gif', 'webp'])

FLATTEN_BACKGROUND = 255.0


def validate_quality(quality: Optional[int]) -> None:
  if quality is None:
    return
  if not MIN_QUALITY <= quality <= MAX_QUALITY:
    raise DerivativeError(ErrorKind.INVALID_QUALITY, f'quality: {quality}')


def validate_format(fmt: str, supported_formats: frozenset[str]) -> None:
  if fmt not in supported_formats or fmt not in CONTENT_TYPES:
    raise DerivativeError(ErrorKind.UNSUPPORTED_FORMAT, f'format: {fmt}')


def validate_operations(operations: Operations, supported_formats: frozenset[str]) -> None:
  quality = operations.get(QUALITY)
  validate_quality(None if quality is None else int(quality))

  fmt = operations.get(FORMAT)
  if fmt is not None:
    validate_format(str(fmt), supported_formats)


def loader_name(image: Image) -> str:
  loader: str = image.get('vips-loader')
  for suffix in ['_buffer', '_source']:
    if loader.endswith(suffix):
      return loader[:-len(suffix)]
  return loader


def heif_format(image: Image) -> str:
  if image.get_typeof('heif-compression') == 0:
    return HEIF_OTHER_FORMAT
  if image.get('heif-compression') == HEIF_AVIF_COMPRESSION:
    return 'avif'
  return HEIF_OTHER_FORMAT


def source_format(image: Image) -> str:
  loader = loader_name(image)
  if loader in VECTOR_LOADERS:
    return VECTOR_FALLBACK_FORMAT
  if loader == HEIF_LOADER:
    return heif_format(image)
  if loader in LOADER_FORMATS:
    return LOADER_FORMATS[loader]
  return loader.removesuffix('load')


def page_count(image: Image) -> int:
  if image.get_typeof('n-pages') == 0:
    return 1
  return int(image.get('n-pages'))


def resize(image: Image, width: Optional[int], height: Optional[int]) -> Image:
  if width is None and height is None:
    return image

  # Fit inside the requested box and never enlarge.
  return image.thumbnail_image(
      MAX_DIMENSION if width is None else width,
      height=MAX_DIMENSION if height is None else height,
      size=Size.DOWN)


def resize_animation(image: Image, width: Optional[int], height: Optional[int]) -> Image:
  """Resizes each frame of a multi-page image stacked vertically by the loader."""
  if width is None and height is None:
    return image

  page_height: int = image.get('page-height')
  frames = [
      resize(image.crop(0, i * page_height, image.width, page_height), width, height)
      for i in range(image.height // page_height)
  ]

  animation = Image.arrayjoin(frames, across=1).copy()
  animation.set_type(GValue.gint_type, 'page-height', frames[0].height)
  return animation


def encode(image: Image, fmt: str, quality: int) -> bytes:
  if fmt in NO_ALPHA_FORMATS and image.hasalpha():
    image = image.flatten(background=[FLATTEN_BACKGROUND] * (image.bands - 1))

  if fmt in LOSSY_FORMATS:
    return image.write_to_buffer(SUFFIXES[fmt], Q=quality)
  return image.write_to_buffer(SUFFIXES[fmt])


def transform_image(
    data: bytes,
    operations: Operations,
    supported_formats: frozenset[str],
    default_quality: int,
) -> Artifact:
  validate_operations(operations, supported_formats)

  width = operations.get(WIDTH)
  height = operations.get(HEIGHT)
  quality = operations.get(QUALITY)
  requested_format = operations.get(FORMAT)

  try:
    image: Image = Image.new_from_buffer(data, '', fail_on='none')
    source = source_format(image)

    if requested_format is None:
      fmt = source
      validate_format(fmt, supported_formats)
    else:
      fmt = str(requested_format)

    w = None if width is None else int(width)
    h = None if height is None else int(height)

    if fmt in ANIMATED_FORMATS and source in ANIMATED_FORMATS and 1 < page_count(image):
      image = Image.new_from_buffer(data, '', fail_on='none', n=-1)
      image = resize_animation(image, w, h)
    else:
      image = resize(image.autorot(), w, h)

    body = encode(image, fmt, default_quality if quality is None else int(quality))
  except (VipsError, OverflowError, ValueError) as e:
    raise DerivativeError(ErrorKind.TRANSFORM_FAILED, f'vips: {e}') from e

  return Artifact(body=body, content_type=CONTENT_TYPES[fmt])
