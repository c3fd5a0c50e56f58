# Services module

from app.services.errors import (
    CommissionComputationFailedError,
    EngineError,
    InsufficientAvailabilityError,
    InsufficientStockError,
    InvalidTransitionError,
    PaidCommissionsExistError,
    PartialSettlementConflict,
)
from app.services.locking import KeyedLockRegistry, stock_locks
from app.services.stock_ledger import StockLedger
from app.services.commission_service import CommissionCalculator
from app.services.sale_settlement_service import (
    SaleLineInput,
    SaleSettlementService,
    SettlementResult,
)
from app.services.reservation_service import ReservationService
from app.services.combo_availability import (
    ComboAvailability,
    ComboAvailabilityResolver,
    StockStatus,
    stock_status,
)
