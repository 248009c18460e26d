"""Models package."""

from .member import Member
from .card import Card
from .account import Account
from .recharge import Recharge
from .transaction import Transaction
from .store import Store, StoreSettlement
from .settlement import Settlement, SettlementLog
from .daily_limit_history import DailyLimitHistory
from .maintenance_run import MaintenanceRun
