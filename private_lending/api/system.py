"""
Service wiring and request identity dependencies
"""

from datetime import timedelta
from typing import Optional

from fastapi import Header, HTTPException, status

from ..aggregator import LoanAggregator
from ..audit import AuditTrail
from ..config import LendingConfig, get_config
from ..contracts import ContractAssembler
from ..currency import CurrencyNormalizer
from ..exceptions import (
    AccessDeniedError,
    InvalidInputError,
    LendingError,
    LoanNotFoundError,
    StateTransitionViolation,
)
from ..loans import LoanManager
from ..notifications import NotificationRuleEngine, NotificationStore, default_rules
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """All lending components built over one storage backend"""

    def __init__(self, settings: Optional[LendingConfig] = None,
                 storage: Optional[StorageInterface] = None):
        settings = settings or get_config()
        self.config = settings
        self.storage = storage or create_storage(settings.database_url)

        self.audit_trail = AuditTrail(self.storage) if settings.enable_audit_logging else None
        self.contract_assembler = ContractAssembler(
            generation_url=settings.contract_generation_url,
            api_key=settings.contract_generation_api_key,
            timeout=settings.contract_generation_timeout,
            temperature=settings.contract_generation_temperature,
            repayment_currency=settings.contract_repayment_currency
        )
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail, contract_assembler=self.contract_assembler
        )

        self.normalizer = CurrencyNormalizer(
            reporting_currency=settings.reporting_currency,
            base_url=settings.exchange_rate_url,
            timeout=settings.exchange_rate_timeout,
            fallback_rates=settings.fallback_rates
        )
        self.aggregator = LoanAggregator(self.normalizer)

        self.notification_store = NotificationStore(self.storage)
        self.rule_engine = NotificationRuleEngine(
            self.notification_store,
            rules=default_rules(
                reminder_days=settings.reminder_days_before,
                final_days=settings.final_warning_days_before,
                digest_interval=settings.overdue_digest_interval_days
            ),
            cooldown=timedelta(days=settings.notification_cooldown_days)
        )

    def close(self) -> None:
        self.contract_assembler.close()
        self.storage.close()


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Dependency returning the process-wide lending system"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system


def get_current_user(x_user_email: Optional[str] = Header(None)) -> str:
    """Caller identity, asserted by the upstream identity provider"""
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Email header")
    return x_user_email.strip().lower()


def to_http_error(error: LendingError) -> HTTPException:
    """Map a domain error to its HTTP status"""
    if isinstance(error, LoanNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, AccessDeniedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, StateTransitionViolation):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
