import dataclasses
from logging import Logger

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_s3.client import S3Client

from medialambda.errors import DerivativeError, ErrorKind
from medialambda.typing import S3Key

NOT_FOUND_CODES = ['404', 'NoSuchKey', 'NotFound']
NO_BUCKET_CODES = ['NoSuchBucket']
ACCESS_DENIED_CODES = ['403', 'AccessDenied', 'Forbidden']

CONNECT_TIMEOUT = 3
READ_TIMEOUT = 10
MAX_ATTEMPTS = 3


@dataclasses.dataclass(frozen=True)
class Artifact:
  body: bytes
  content_type: str

  @property
  def size(self) -> int:
    return len(self.body)


def error_code(exception: ClientError) -> str:
  if 'Error' not in exception.response:
    return ''
  if 'Code' not in exception.response['Error']:
    return ''
  return exception.response['Error']['Code']


def is_not_found_client_error(exception: ClientError) -> bool:
  return error_code(exception) in NOT_FOUND_CODES


def classify_client_error(exception: ClientError) -> ErrorKind:
  code = error_code(exception)
  if code in NOT_FOUND_CODES:
    return ErrorKind.SOURCE_NOT_FOUND
  if code in NO_BUCKET_CODES:
    return ErrorKind.STORAGE_CONFIG_ERROR
  if code in ACCESS_DENIED_CODES:
    return ErrorKind.ACCESS_DENIED
  return ErrorKind.STORE_ERROR


def new_s3_client(region: str) -> S3Client:
  return boto3.client(
      's3',
      region_name=region,
      config=BotoConfig(
          connect_timeout=CONNECT_TIMEOUT,
          read_timeout=READ_TIMEOUT,
          retries={
              'max_attempts': MAX_ATTEMPTS,
              'mode': 'standard',
          }))


class DerivativeStore:

  def __init__(self, log: Logger, s3: S3Client):
    self.log = log
    self.s3 = s3

  def exists(self, bucket: str, key: S3Key) -> bool:
    try:
      self.s3.head_object(Bucket=bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        return False
      raise DerivativeError(ErrorKind.STORE_ERROR, f'head {bucket}/{key}: {e}') from e
    except BotoCoreError as e:
      raise DerivativeError(ErrorKind.STORE_ERROR, f'head {bucket}/{key}: {e}') from e
    return True

  def fetch(self, bucket: str, key: S3Key) -> bytes:
    try:
      res = self.s3.get_object(Bucket=bucket, Key=key)
      return res['Body'].read()
    except ClientError as e:
      raise DerivativeError(classify_client_error(e), f'get {bucket}/{key}: {e}') from e
    except BotoCoreError as e:
      raise DerivativeError(ErrorKind.STORE_ERROR, f'get {bucket}/{key}: {e}') from e

  def write(self, bucket: str, key: S3Key, artifact: Artifact, cache_control: str) -> bool:
    try:
      self.s3.put_object(
          Body=artifact.body,
          Bucket=bucket,
          Key=key,
          ContentType=artifact.content_type,
          CacheControl=cache_control,
      )
    except (ClientError, BotoCoreError) as e:
      self.log.error({
          'message': 'failed to write derivative',
          'bucket': bucket,
          'key': key,
          'reason': str(e),
      })
      return False
    return True
