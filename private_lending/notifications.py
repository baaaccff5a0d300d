"""
Notification Rule Engine Module

Raises reminders for borrowers of active loans: a week before the due date,
on the last day, when the late clause kicks in, and weekly while overdue.
Evaluation is on demand (session start, loan list refresh); a cooldown
against already issued notifications keeps repeated runs from duplicating.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import uuid

from .calculator import CalculationResult, local_now
from .exceptions import LendingError, PersistenceFailure
from .loans import Loan, LoanStatus
from .logging_config import get_logger, log_action
from .storage import StorageInterface

logger = get_logger("lending.notifications")

CENT = Decimal('0.01')


class NotificationType(Enum):
    """Severity tag, used for display only"""
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


@dataclass
class Notification:
    """Message addressed to one user about one loan"""
    id: str
    user_id: str          # Borrower email
    loan_id: str
    type: NotificationType
    title: str
    message: str
    date: datetime
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'loan_id': self.loan_id,
            'type': self.type.value,
            'title': self.title,
            'message': self.message,
            'date': self.date.isoformat(),
            'read': self.read
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            loan_id=data['loan_id'],
            type=NotificationType(data['type']),
            title=data['title'],
            message=data['message'],
            date=datetime.fromisoformat(data['date']),
            read=bool(data.get('read', False))
        )


def _aware(moment: datetime) -> datetime:
    """Naive datetimes are read as local time"""
    if moment.tzinfo is None:
        return moment.astimezone()
    return moment


class NotificationStore:
    """Append-only notification persistence; only the read flag ever changes"""

    def __init__(self, storage: StorageInterface, table_name: str = "notifications"):
        self.storage = storage
        self.table_name = table_name

    def append(self, notification: Notification) -> None:
        try:
            self.storage.save(self.table_name, notification.id, notification.to_dict())
        except Exception as e:
            raise PersistenceFailure(f"Could not store notification {notification.id}: {e}") from e

    def list_for_user(self, user_id: str) -> List[Notification]:
        """Notifications addressed to the user, newest first"""
        try:
            records = self.storage.find(self.table_name, {'user_id': user_id})
        except Exception as e:
            raise PersistenceFailure(f"Could not read notifications for {user_id}: {e}") from e
        notifications = [Notification.from_dict(data) for data in records]
        notifications.sort(key=lambda n: _aware(n.date), reverse=True)
        return notifications

    def get(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.table_name, notification_id)
        return Notification.from_dict(data) if data else None

    def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """Flip the read flag; returns None if the notification is not the user's"""
        notification = self.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        if not notification.read:
            notification.read = True
            self.append(notification)
        return notification

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self.list_for_user(user_id) if not n.read)


@dataclass(frozen=True)
class ReminderRule:
    """One time-based reminder and the title fragment that identifies it"""
    name: str
    dedup_key: str
    title: str
    type: NotificationType
    trigger: Callable[[CalculationResult], bool]
    render: Callable[[Loan, CalculationResult], str]


def _money(value: Decimal) -> str:
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _rate(loan: Loan) -> str:
    return f"{loan.late_interest_rate.normalize():f}"


def default_rules(reminder_days: int = 7, final_days: int = 1,
                  digest_interval: int = 7) -> List[ReminderRule]:
    """The four borrower reminders, in evaluation order"""
    return [
        ReminderRule(
            name="upcoming_reminder",
            dedup_key=f"J-{reminder_days}",
            title=f"Rappel J-{reminder_days}",
            type=NotificationType.INFO,
            trigger=lambda calc: calc.days_remaining == reminder_days,
            render=lambda loan, calc: (
                f"Rappel : Votre remboursement de {loan.amount} {loan.currency} est prévu "
                f"dans {reminder_days} jours. Pensez à préparer votre virement !"
            )
        ),
        ReminderRule(
            name="final_warning",
            dedup_key="Dernier jour",
            title="Dernier jour",
            type=NotificationType.WARNING,
            trigger=lambda calc: calc.days_remaining == final_days,
            render=lambda loan, calc: (
                f"Dernier jour ! Votre remboursement est dû demain. Après cette date, "
                f"la clause de retard de {_rate(loan)}% s'appliquera."
            )
        ),
        ReminderRule(
            name="penalty_activated",
            dedup_key="Retard activé",
            title="Retard activé",
            type=NotificationType.DANGER,
            trigger=lambda calc: calc.days_late == 1,
            render=lambda loan, calc: (
                f"Échéance dépassée. La clause de retard est activée. Des intérêts de "
                f"{_money(calc.daily_cost)} {loan.currency} s'ajouteront désormais chaque jour."
            )
        ),
        ReminderRule(
            name="overdue_digest",
            dedup_key="Point sur votre prêt",
            title="Point sur votre prêt",
            type=NotificationType.DANGER,
            trigger=lambda calc: calc.days_late > 1 and calc.days_late % digest_interval == 0,
            render=lambda loan, calc: (
                f"Point sur votre prêt : Avec le retard ({calc.days_late} jours), vous devez "
                f"actuellement un total de {_money(calc.total_due)} {loan.currency} à {loan.lender_name}."
            )
        ),
    ]


class NotificationRuleEngine:
    """Evaluates reminder rules for a borrower's active loans"""

    def __init__(
        self,
        store: NotificationStore,
        rules: Optional[List[ReminderRule]] = None,
        cooldown: timedelta = timedelta(days=3)
    ):
        self.store = store
        self.rules = rules if rules is not None else default_rules()
        self.cooldown = cooldown

    def has_recent(self, existing: Iterable[Notification], loan_id: str,
                   dedup_key: str, now: datetime) -> bool:
        """True if a matching notification was issued inside the cooldown window"""
        threshold = _aware(now) - self.cooldown
        return any(
            n.loan_id == loan_id
            and dedup_key in n.title
            and _aware(n.date) > threshold
            for n in existing
        )

    def evaluate(
        self,
        loans: Iterable[Loan],
        user_email: str,
        now: datetime,
        existing: Iterable[Notification]
    ) -> List[Notification]:
        """
        Raise the reminders due for the user's active borrowings.

        Only loans that are active and borrowed by ``user_email`` are
        considered. Each rule is checked independently; a rule is suppressed
        when ``existing`` already holds a notification for the same loan whose
        title contains the rule's key and whose date lies inside the cooldown.
        Each fired rule is persisted individually: a failed write is logged and
        the pass moves on, and the failed notification is not returned.

        Args:
            loans: Candidate loans
            user_email: Identity of the current user
            now: Current time, injected by the caller
            existing: Notifications already issued to the user

        Returns:
            Notifications created and stored during this pass
        """
        user_email = (user_email or "").strip().lower()
        seen = list(existing)
        created: List[Notification] = []

        for loan in loans:
            if loan.status != LoanStatus.ACTIVE or loan.borrower_email.lower() != user_email:
                continue

            try:
                calc = loan.calculate(now)
            except LendingError as e:
                logger.error(f"Skipping reminders for loan {loan.id}: {e}")
                continue

            for rule in self.rules:
                if not rule.trigger(calc) or self.has_recent(seen, loan.id, rule.dedup_key, now):
                    continue

                notification = Notification(
                    id=str(uuid.uuid4()),
                    user_id=loan.borrower_email,
                    loan_id=loan.id,
                    type=rule.type,
                    title=rule.title,
                    message=rule.render(loan, calc),
                    date=_aware(now),
                    read=False
                )
                try:
                    self.store.append(notification)
                except PersistenceFailure as e:
                    logger.error(f"Reminder '{rule.name}' for loan {loan.id} not stored: {e}")
                    continue

                log_action(
                    logger, "info", f"Reminder issued: {rule.title}",
                    user_id=user_email, action=rule.name, loan_id=loan.id
                )
                seen.append(notification)
                created.append(notification)

        return created

    def run_for_user(self, loans: Iterable[Loan], user_email: str,
                     now: Optional[datetime] = None) -> List[Notification]:
        """
        Session-start entry point: load the user's history, then evaluate.
        Without an explicit ``now`` the local clock is used, so reminders
        follow the borrower's calendar day.

        If the history cannot be read, nothing fires, since the cooldown
        could not be honoured.
        """
        now = now or local_now()
        user_email = (user_email or "").strip().lower()
        try:
            existing = self.store.list_for_user(user_email)
        except PersistenceFailure as e:
            logger.error(f"Reminder evaluation skipped for {user_email}: {e}")
            return []
        return self.evaluate(loans, user_email, now, existing)
