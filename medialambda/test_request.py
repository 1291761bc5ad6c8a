import itertools
from typing import Any

import pytest

from medialambda.config import OperationSyntax, ProjectRoutes
from medialambda.errors import DerivativeError, ErrorKind
from medialambda.request import (
    MAX_DIMENSION,
    MediaKind,
    TransformRequest,
    build_key,
    canonical_operations,
    parse_request
)
from medialambda.typing import HttpPath


def parse(path: str, qstr: str = '', syntax: OperationSyntax = OperationSyntax.QUERY) -> TransformRequest:
  return parse_request(HttpPath(path), qstr, syntax)


@pytest.mark.parametrize(
    'path,qstr,syntax,expected', [
        (
            '/geerly/photos/a.png',
            'width=100&format=jpeg',
            OperationSyntax.QUERY,
            TransformRequest('geerly', 'photos/a.png', {
                'width': 100,
                'format': 'jpeg'
            }, MediaKind.IMAGE),
        ),
        (
            '/geerly/photos/a.png',
            'w=100&h=50&q=70&f=JPG',
            OperationSyntax.QUERY,
            TransformRequest(
                'geerly', 'photos/a.png', {
                    'width': 100,
                    'height': 50,
                    'quality': 70,
                    'format': 'jpeg'
                }, MediaKind.IMAGE),
        ),
        (
            '/geerly/photos/a.png',
            'width=100&v=123',
            OperationSyntax.QUERY,
            TransformRequest('geerly', 'photos/a.png', {'width': 100}, MediaKind.IMAGE),
        ),
        (
            '/geerly/photos/a.png/width=300,format=webp',
            '',
            OperationSyntax.PATH,
            TransformRequest('geerly', 'photos/a.png', {
                'width': 300,
                'format': 'webp'
            }, MediaKind.IMAGE),
        ),
        (
            '/geerly/photos/a.png/width=300',
            'height=10',
            OperationSyntax.PATH,
            TransformRequest('geerly', 'photos/a.png', {'width': 300}, MediaKind.IMAGE),
        ),
        (
            '/geerly/photos/a.png',
            '',
            OperationSyntax.PATH,
            TransformRequest('geerly', 'photos/a.png', {}, MediaKind.IMAGE),
        ),
        (
            '/geerly/%E3%83%86%E3%82%B9%E3%83%88.jpg',
            '',
            OperationSyntax.QUERY,
            TransformRequest('geerly', 'テスト.jpg', {}, MediaKind.IMAGE),
        ),
        (
            '/geerly/clips/a.MP4',
            '',
            OperationSyntax.QUERY,
            TransformRequest('geerly', 'clips/a.MP4', {}, MediaKind.VIDEO),
        ),
        (
            '/geerly/photos/a.png',
            'quality=0',
            OperationSyntax.QUERY,
            TransformRequest('geerly', 'photos/a.png', {'quality': 0}, MediaKind.IMAGE),
        ),
    ],
    ids=[
        'query',
        'query aliases',
        'unrelated query parameter',
        'path operations',
        'path syntax ignores query',
        'path syntax without operations',
        'percent-encoded',
        'video',
        'quality range left to transform',
    ])
def test_parse_request(path: str, qstr: str, syntax: OperationSyntax, expected: Any) -> None:
  assert expected == parse(path, qstr, syntax)


@pytest.mark.parametrize(
    'path,qstr,syntax', [
        ('/', '', OperationSyntax.QUERY),
        ('/geerly', '', OperationSyntax.QUERY),
        ('/geerly/', '', OperationSyntax.QUERY),
        ('//a.png', '', OperationSyntax.QUERY),
        ('/geerly/../secret.png', '', OperationSyntax.QUERY),
        ('/geerly/photos/%2E%2E/a.png', '', OperationSyntax.QUERY),
        ('/geerly/photos//a.png', '', OperationSyntax.QUERY),
        ('geerly/a.png', '', OperationSyntax.QUERY),
        ('/geerly/a.png', 'width=abc', OperationSyntax.QUERY),
        ('/geerly/a.png', 'width=0', OperationSyntax.QUERY),
        ('/geerly/a.png', 'height=-5', OperationSyntax.QUERY),
        ('/geerly/a.png', 'width=' + '9' * 30, OperationSyntax.QUERY),
        ('/geerly/a.png', 'height=10000001', OperationSyntax.QUERY),
        ('/geerly/a.png/width=' + '9' * 30, '', OperationSyntax.PATH),
        ('/geerly/a.png', 'width=1.5', OperationSyntax.QUERY),
        ('/geerly/a.png', 'quality=high', OperationSyntax.QUERY),
        ('/geerly/a.png', 'width=1&w=2', OperationSyntax.QUERY),
        ('/geerly/a.png', 'format=', OperationSyntax.QUERY),
        ('/geerly/a.png/width=abc', '', OperationSyntax.PATH),
        ('/geerly/a.png/rotate=90', '', OperationSyntax.PATH),
        ('/geerly/a.png/width=1,height', '', OperationSyntax.PATH),
        ('/geerly/a.png/width=1,width=2', '', OperationSyntax.PATH),
        ('/geerly/clips/a.mp4', 'width=100', OperationSyntax.QUERY),
        ('/geerly/clips/a.mp4/width=100', '', OperationSyntax.PATH),
    ])
def test_parse_request_malformed(path: str, qstr: str, syntax: OperationSyntax) -> None:
  with pytest.raises(DerivativeError) as e:
    parse(path, qstr, syntax)

  assert ErrorKind.MALFORMED_REQUEST == e.value.kind


def test_build_key_ignores_operation_order() -> None:
  ops = [('width', 300), ('height', 200), ('format', 'webp'), ('quality', 80)]

  keys = set()
  for perm in itertools.permutations(ops):
    req = TransformRequest('geerly', 'photos/a.png', dict(perm), MediaKind.IMAGE)
    keys.add(build_key(req))

  assert {'geerly/photos/a.png/format=webp,height=200,quality=80,width=300'} == keys


def test_build_key_from_both_syntaxes() -> None:
  by_query = parse('/geerly/photos/a.png', 'format=webp&width=300')
  by_path = parse('/geerly/photos/a.png/width=300,format=webp', '', OperationSyntax.PATH)

  assert build_key(by_query) == build_key(by_path)


def test_build_key_without_operations() -> None:
  req = parse('/geerly/photos/a.png')
  assert 'geerly/photos/a.png/original' == build_key(req)


def test_build_key_video() -> None:
  req = parse('/geerly/clips/a.mp4')
  assert 'geerly/clips/a.mp4.jpg' == build_key(req)


def test_build_key_separates_projects() -> None:
  a = parse('/geerly/a.png', 'width=10')
  b = parse('/farmify/a.png', 'width=10')
  assert build_key(a) != build_key(b)


def test_canonical_operations() -> None:
  assert 'format=webp,width=300' == canonical_operations({'width': 300, 'format': 'webp'})
  assert '' == canonical_operations({})


def test_project_routes() -> None:
  routes = ProjectRoutes.from_str('geerly=geerly-cms-content, farmify=files-farmify,')

  assert 'geerly-cms-content' == routes.resolve('geerly')
  assert 'files-farmify' == routes.resolve('farmify')

  with pytest.raises(DerivativeError) as e:
    routes.resolve('unknownproj')
  assert ErrorKind.UNKNOWN_PROJECT == e.value.kind


@pytest.mark.parametrize('s', ['geerly', 'geerly=', '=bucket'])
def test_project_routes_invalid(s: str) -> None:
  with pytest.raises(ValueError):
    ProjectRoutes.from_str(s)


def test_largest_dimension_accepted() -> None:
  req = parse('/geerly/a.png', f'width={MAX_DIMENSION}&height={MAX_DIMENSION}')
  assert (MAX_DIMENSION, MAX_DIMENSION) == (req.width, req.height)


def test_operations_are_read_only() -> None:
  req = parse('/geerly/a.png', 'width=100')

  with pytest.raises(TypeError):
    req.operations['width'] = 200  # type: ignore

  assert 'geerly/a.png/width=100' == build_key(req)
