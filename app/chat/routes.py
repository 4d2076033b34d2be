from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.core.errors import EscalationError, InvalidTransitionError, NotFoundError
from . import schemas
from .services import ChatbotService

router = APIRouter(prefix="/api/chatbot", tags=["chatbot"])


def get_chatbot_service(request: Request) -> ChatbotService:
    return request.app.state.chatbot


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, str(e))


def _conflict(e: Exception) -> HTTPException:
    return HTTPException(status.HTTP_409_CONFLICT, str(e))


@router.post("/initiate", response_model=schemas.InitiateOut, status_code=status.HTTP_201_CREATED)
async def initiate(data: schemas.InitiateRequest, service: ChatbotService = Depends(get_chatbot_service)):
    result = await service.initiate(data.booking_id, data.user_id, data.driver_id)
    return schemas.InitiateOut.model_validate(result)


@router.post("/message", response_model=schemas.ChatResponseOut)
async def send_message(data: schemas.MessageRequest, service: ChatbotService = Depends(get_chatbot_service)):
    """Free-text rider message."""
    try:
        response = await service.process_turn(data.conversation_id, data.booking_id, data.user_id, data.message)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidTransitionError as e:
        raise _conflict(e)
    return schemas.ChatResponseOut.model_validate(response)


@router.post("/quick-action", response_model=schemas.ChatResponseOut)
async def quick_action(data: schemas.QuickActionRequest, service: ChatbotService = Depends(get_chatbot_service)):
    try:
        response = await service.process_action(data.conversation_id, data.booking_id, data.user_id, data.action)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidTransitionError as e:
        raise _conflict(e)
    return schemas.ChatResponseOut.model_validate(response)


@router.get("/conversation/{conversation_id}", response_model=schemas.ConversationDetailOut)
def get_conversation(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1),
    service: ChatbotService = Depends(get_chatbot_service),
):
    try:
        conversation, messages = service.get_conversation(conversation_id, limit)
    except NotFoundError as e:
        raise _not_found(e)
    return schemas.ConversationDetailOut(
        conversation=schemas.ConversationOut.model_validate(conversation),
        messages=[schemas.MessageOut.model_validate(m) for m in messages],
    )


@router.get("/history/{user_id}", response_model=schemas.HistoryOut)
def history(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    service: ChatbotService = Depends(get_chatbot_service),
):
    summaries = service.history(user_id, limit)
    return schemas.HistoryOut(conversations=summaries, total=len(summaries))


@router.post("/escalate", response_model=schemas.EscalationOut)
async def escalate(data: schemas.EscalateRequest, service: ChatbotService = Depends(get_chatbot_service)):
    try:
        outcome = await service.escalate_manually(
            data.conversation_id, data.escalation_type, data.reason, data.priority
        )
    except NotFoundError as e:
        raise _not_found(e)
    except (InvalidTransitionError, EscalationError) as e:
        raise _conflict(e)
    return schemas.EscalationOut.model_validate(outcome)


@router.get("/escalation/{request_id}", response_model=schemas.EscalationRequestOut)
def get_escalation(request_id: str, service: ChatbotService = Depends(get_chatbot_service)):
    try:
        return schemas.EscalationRequestOut.model_validate(service.get_escalation_request(request_id))
    except NotFoundError as e:
        raise _not_found(e)


@router.get("/ticket/{ticket_id}", response_model=schemas.TicketOut)
def get_ticket(ticket_id: str, service: ChatbotService = Depends(get_chatbot_service)):
    try:
        return schemas.TicketOut.model_validate(service.get_ticket(ticket_id))
    except NotFoundError as e:
        raise _not_found(e)


@router.put("/ticket/{ticket_id}", response_model=schemas.TicketOut)
async def update_ticket(
    ticket_id: str,
    data: schemas.TicketUpdate,
    service: ChatbotService = Depends(get_chatbot_service),
):
    try:
        ticket = service.update_ticket(ticket_id, data.status, data.resolution, data.assigned_agent)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidTransitionError as e:
        raise _conflict(e)
    return schemas.TicketOut.model_validate(ticket)


@router.get("/tickets/{user_id}", response_model=schemas.TicketListOut)
def open_tickets(user_id: str, service: ChatbotService = Depends(get_chatbot_service)):
    tickets = [schemas.TicketOut.model_validate(t) for t in service.open_tickets(user_id)]
    return schemas.TicketListOut(tickets=tickets, total=len(tickets))


@router.post("/cancel", response_model=schemas.ChatResponseOut)
async def confirm_cancellation(data: schemas.CancelRequest, service: ChatbotService = Depends(get_chatbot_service)):
    """Cancel the booking after the rider accepted the cancellation policy."""
    try:
        response = await service.confirm_cancellation(data.conversation_id, data.reason)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidTransitionError as e:
        raise _conflict(e)
    return schemas.ChatResponseOut.model_validate(response)


@router.post("/close", response_model=schemas.CloseOut)
def close_conversation(data: schemas.CloseRequest, service: ChatbotService = Depends(get_chatbot_service)):
    try:
        conversation = service.close_conversation(data.conversation_id, data.reason)
    except NotFoundError as e:
        raise _not_found(e)
    return schemas.CloseOut(message="Conversation closed", conversation_id=conversation.id, status=conversation.status)


@router.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "ride-support-chatbot",
    }
