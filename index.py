from aws_lambda_powertools.utilities.typing import LambdaContext

from medialambda import server
from medialambda.typing import FunctionUrlEvent, ProxyResult


def lambda_handler(
    event: FunctionUrlEvent,
    _: LambdaContext,
) -> ProxyResult:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = server.lambda_main(event)

  # # For debugging
  # print('return:')
  # print(json.dumps(ret))

  return ret
