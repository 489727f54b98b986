"""
Intake API: HTTP endpoints for the patient intake engine.

Endpoints:
  POST  /api/intake/turns                                          Submit a patient message
  GET   /api/intake/patients/{pid}/conversations                   List a patient's visits
  GET   /api/intake/patients/{pid}/conversations/{cid}             Full conversation
  POST  /api/intake/patients/{pid}/conversations/{cid}/attachments Record an uploaded file
  PATCH /api/intake/patients/{pid}/conversations/{cid}/archive     Patient archive flag
  GET   /api/intake/clinician/pending                              Handoffs awaiting review
  POST  /api/intake/clinician/conversations/{cid}/respond          Clinician response
  PATCH /api/intake/clinician/conversations/{cid}/archive          Clinician archive flag
  GET   /api/intake/notifications/{user_id}                        Poll notifications
  WS    /api/intake/ws/notifications/{user_id}                     Live notifications
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from medichat.intake.conversation import ArchiveParty
from medichat.intake.errors import IntakeError
from medichat.intake.events import Notification
from medichat.schemas.intake import (
    ArchiveRequest,
    AttachmentRequest,
    ClinicianResponseRequest,
    ConversationDetail,
    ConversationSummary,
    TurnRequest,
    TurnResponse,
)

logger = logging.getLogger("intake.api")

router = APIRouter(prefix="/api/intake", tags=["intake"])


def _http_error(exc: IntakeError) -> HTTPException:
    if exc.http_status >= 500:
        logger.error("Intake request failed (%d): %s", exc.http_status, exc)
    return HTTPException(status_code=exc.http_status, detail=str(exc))


def _orchestrator():
    from medichat.intake.setup import get_orchestrator

    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Intake engine not initialized")
    return orchestrator


def _clinician_service():
    from medichat.intake.setup import get_clinician_service

    service = get_clinician_service()
    if service is None:
        raise HTTPException(status_code=503, detail="Intake engine not initialized")
    return service


# ── Patient side ──


@router.post("/turns", response_model=TurnResponse)
async def submit_turn(request: TurnRequest):
    orchestrator = _orchestrator()
    try:
        result = await orchestrator.submit_turn(
            patient_id=request.patient_id,
            conversation_id=request.conversation_id,
            text=request.message,
            idempotency_key=request.idempotency_key,
        )
    except IntakeError as e:
        raise _http_error(e) from e

    return TurnResponse(
        conversation_id=result.conversation_id,
        visit_number=result.visit_number,
        status=result.status.value,
        reply=result.reply,
        replayed=result.replayed,
    )


@router.get("/patients/{patient_id}/conversations", response_model=list[ConversationSummary])
async def list_conversations(patient_id: str, include_archived: bool = False):
    orchestrator = _orchestrator()
    try:
        conversations = await orchestrator.list_conversations_for_patient(
            patient_id, include_archived=include_archived
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return [ConversationSummary.from_conversation(c) for c in conversations]


@router.get(
    "/patients/{patient_id}/conversations/{conversation_id}",
    response_model=ConversationDetail,
)
async def get_conversation(patient_id: str, conversation_id: str):
    orchestrator = _orchestrator()
    try:
        conversation = await orchestrator.get_conversation_history(
            conversation_id, patient_id=patient_id
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return ConversationDetail.from_conversation(conversation)


@router.post(
    "/patients/{patient_id}/conversations/{conversation_id}/attachments",
    response_model=ConversationDetail,
)
async def record_attachment(patient_id: str, conversation_id: str, request: AttachmentRequest):
    orchestrator = _orchestrator()
    try:
        conversation = await orchestrator.record_attachment(
            patient_id, conversation_id, request.filename, request.content_type
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return ConversationDetail.from_conversation(conversation)


@router.patch(
    "/patients/{patient_id}/conversations/{conversation_id}/archive",
    response_model=ConversationSummary,
)
async def archive_as_patient(patient_id: str, conversation_id: str, request: ArchiveRequest):
    service = _clinician_service()
    try:
        conversation = await service.set_archived(
            conversation_id, ArchiveParty.PATIENT, request.archived, patient_id=patient_id
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return ConversationSummary.from_conversation(conversation)


# ── Clinician side ──


@router.get("/clinician/pending", response_model=list[ConversationDetail])
async def list_pending(clinician_id: Optional[str] = None):
    service = _clinician_service()
    try:
        pending = await service.list_pending(clinician_id)
    except IntakeError as e:
        raise _http_error(e) from e
    return [ConversationDetail.from_conversation(c) for c in pending]


@router.post(
    "/clinician/conversations/{conversation_id}/respond",
    response_model=ConversationDetail,
)
async def respond(conversation_id: str, request: ClinicianResponseRequest):
    service = _clinician_service()
    try:
        conversation = await service.respond(
            conversation_id,
            clinician_id=request.clinician_id,
            diagnosis=request.diagnosis,
            recommendations=request.recommendations,
            referrals=request.referrals,
            notes=request.notes,
            call_to_office=request.call_to_office,
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return ConversationDetail.from_conversation(conversation)


@router.patch(
    "/clinician/conversations/{conversation_id}/archive",
    response_model=ConversationSummary,
)
async def archive_as_clinician(conversation_id: str, request: ArchiveRequest):
    service = _clinician_service()
    try:
        conversation = await service.set_archived(
            conversation_id, ArchiveParty.CLINICIAN, request.archived
        )
    except IntakeError as e:
        raise _http_error(e) from e
    return ConversationSummary.from_conversation(conversation)


# ── Notifications ──


@router.get("/notifications/{user_id}", response_model=list[Notification])
async def get_notifications(user_id: str):
    from medichat.intake.setup import get_inbox

    inbox = get_inbox()
    if inbox is None:
        raise HTTPException(status_code=503, detail="Intake engine not initialized")
    return inbox.get_notifications(user_id)


@router.websocket("/ws/notifications/{user_id}")
async def notifications_socket(websocket: WebSocket, user_id: str):
    from medichat.intake.setup import get_websocket_dispatcher

    dispatcher = get_websocket_dispatcher()
    await websocket.accept()
    if dispatcher is None:
        await websocket.close(code=1013)
        return

    dispatcher.connect(user_id, websocket)
    try:
        while True:
            # Clients may send pings; nothing else is expected inbound
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        dispatcher.disconnect(user_id, websocket)
