from .user import User, TokenPayload
from .token import BalanceResponse, TokenTransactionResponse
from .grant_task import GrantTaskResponse
from .health import HealthCheckResponse
