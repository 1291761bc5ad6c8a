from typing import Literal, NewType, NotRequired, TypedDict

HttpPath = NewType('HttpPath', str)
S3Key = NewType('S3Key', str)


class Http(TypedDict):
  method: str
  path: HttpPath
  protocol: str
  sourceIp: str
  userAgent: str


class RequestContext(TypedDict):
  accountId: str
  apiId: str
  domainName: str
  http: Http
  requestId: str
  stage: str
  time: str
  timeEpoch: int


# Payload format 2.0, shared by Lambda function URLs and HTTP APIs.
class FunctionUrlEvent(TypedDict):
  version: Literal['2.0']
  routeKey: str
  rawPath: HttpPath
  rawQueryString: str
  cookies: NotRequired[list[str]]
  headers: dict[str, str]
  queryStringParameters: NotRequired[dict[str, str]]
  requestContext: RequestContext
  body: NotRequired[str]
  isBase64Encoded: bool


class ProxyResult(TypedDict):
  statusCode: int
  headers: dict[str, str]
  body: NotRequired[str]
  isBase64Encoded: NotRequired[bool]
