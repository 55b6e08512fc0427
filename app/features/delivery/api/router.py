"""
Message composition and trusted contact routes.

    POST   /messages                   create (scheduled unless draft)
    GET    /messages                   list own messages
    POST   /messages/{id}/schedule     draft -> scheduled
    PUT    /messages/{id}              edit a draft or scheduled message
    DELETE /messages/{id}              remove a draft or scheduled message
    GET    /trusted-contacts
    POST   /trusted-contacts
    DELETE /trusted-contacts/{id}

PlanLimitError, DeliveryRuleValidationError and MessageValidationError are
mapped to 403/400 by the application exception handlers.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.auth.verify import current_user_id
from app.features.delivery.domain import Recipient
from app.features.delivery.repository.trusted_contact_repository import DuplicateTrustedContactError
from app.features.delivery.services.message_service import (
    MessageNotFoundError,
    MessageStateError,
    message_service,
)
from app.infrastructure.observability.logging import get_logger
from app.models.api.message_request import (
    MessageCreateRequest,
    MessageUpdateRequest,
    TrustedContactCreateRequest,
)
from app.models.api.message_response import (
    MessageListResponse,
    MessageResponse,
    TrustedContactResponse,
)
from app.utils.audit_helpers import audit_user_action

router = APIRouter(tags=["messages"])
logger = get_logger(__name__)


@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    body: MessageCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    message = await message_service.create_message(
        user_id,
        body.type,
        [Recipient(name=r.name, email=str(r.email).lower()) for r in body.recipients],
        body.rule.mode,
        datetime.now(UTC),
        text_content=body.text_content,
        media_path=body.media_path,
        deliver_at=body.rule.deliver_at,
        checkin_interval_days=body.rule.checkin_interval_days,
        attempts_limit=body.rule.attempts_limit,
        draft=body.draft,
    )

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="message_created",
        resource_type="message",
        resource_id=message.id,
        metadata={
            "type": message.type.value,
            "mode": message.rule.mode.value,
            "status": message.status.value,
        },
    )
    return MessageResponse.from_message(message)


@router.get("/messages", response_model=MessageListResponse)
async def list_messages(user_id: str = Depends(current_user_id)):
    messages = await message_service.list_messages(user_id)
    return MessageListResponse(
        messages=[MessageResponse.from_message(m) for m in messages], total=len(messages)
    )


@router.post("/messages/{message_id}/schedule", response_model=MessageResponse)
async def schedule_message(
    message_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    try:
        message = await message_service.schedule_message(user_id, message_id, datetime.now(UTC))
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found") from e
    except MessageStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="message_scheduled",
        resource_type="message",
        resource_id=message_id,
    )
    return MessageResponse.from_message(message)


@router.put("/messages/{message_id}", response_model=MessageResponse)
async def update_message(
    message_id: str,
    body: MessageUpdateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    try:
        message = await message_service.update_message(
            user_id,
            message_id,
            body.type,
            [Recipient(name=r.name, email=str(r.email).lower()) for r in body.recipients],
            body.rule.mode,
            datetime.now(UTC),
            text_content=body.text_content,
            media_path=body.media_path,
            deliver_at=body.rule.deliver_at,
            checkin_interval_days=body.rule.checkin_interval_days,
            attempts_limit=body.rule.attempts_limit,
        )
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found") from e
    except MessageStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="message_updated",
        resource_type="message",
        resource_id=message_id,
        metadata={"type": message.type.value, "mode": message.rule.mode.value},
    )
    return MessageResponse.from_message(message)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    try:
        await message_service.delete_message(user_id, message_id, datetime.now(UTC))
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found") from e
    except MessageStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="message_deleted",
        resource_type="message",
        resource_id=message_id,
    )


@router.get("/trusted-contacts", response_model=list[TrustedContactResponse], tags=["trusted-contacts"])
async def list_trusted_contacts(user_id: str = Depends(current_user_id)):
    contacts = await message_service.list_trusted_contacts(user_id)
    return [TrustedContactResponse.from_contact(c) for c in contacts]


@router.post(
    "/trusted-contacts",
    response_model=TrustedContactResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["trusted-contacts"],
)
async def add_trusted_contact(
    body: TrustedContactCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    try:
        contact = await message_service.add_trusted_contact(user_id, body.name, str(body.email))
    except DuplicateTrustedContactError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="trusted_contact_added",
        resource_type="trusted_contact",
        resource_id=contact.id,
    )
    return TrustedContactResponse.from_contact(contact)


@router.delete(
    "/trusted-contacts/{contact_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["trusted-contacts"],
)
async def remove_trusted_contact(
    contact_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user_id),
):
    if not await message_service.remove_trusted_contact(user_id, contact_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")

    background_tasks.add_task(
        audit_user_action,
        request=request,
        user_id=user_id,
        action="trusted_contact_removed",
        resource_type="trusted_contact",
        resource_id=contact_id,
    )
