"""
Notification endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from .schemas import parse_as_of
from .system import LendingSystem, get_current_user, get_lending_system
from ..exceptions import PersistenceFailure


router = APIRouter()


@router.get("")
async def list_notifications(
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Caller's notifications, newest first"""
    try:
        notifications = system.notification_store.list_for_user(user)
    except PersistenceFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "notifications": [n.to_dict() for n in notifications],
        "unread": sum(1 for n in notifications if not n.read)
    }


@router.get("/unread-count")
async def unread_count(
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Badge counter for the caller"""
    try:
        count = system.notification_store.unread_count(user)
    except PersistenceFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"unread": count}


@router.post("/evaluate")
async def evaluate_reminders(
    as_of: Optional[date] = None,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Run the reminder rules for the caller's borrowings (session start / refresh)"""
    loans = system.loan_manager.get_loans_for_participant(user)
    created = system.rule_engine.run_for_user(loans, user, parse_as_of(as_of))
    return {"created": [n.to_dict() for n in created]}


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: str = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Flag a notification as read"""
    try:
        notification = system.notification_store.mark_read(notification_id, user)
    except PersistenceFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification.to_dict()
