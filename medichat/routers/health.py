from fastapi import APIRouter

from medichat import settings

router = APIRouter()


@router.get("/")
async def root():
    return {
        "status": "MediChat Intake Server is Running",
        "endpoints": {
            "submit_turn": "/api/intake/turns",
            "patient_conversations": "/api/intake/patients/{patient_id}/conversations",
            "clinician_pending": "/api/intake/clinician/pending",
            "notifications_ws": "/api/intake/ws/notifications/{user_id}",
        },
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    from medichat.intake.setup import get_orchestrator

    orchestrator = get_orchestrator()
    return {
        "status": "healthy",
        "service": "medichat-intake",
        "port": settings.PORT,
        "intake_engine": "ready" if orchestrator is not None else "not_initialized",
        "active_queues": orchestrator.queue.active_count if orchestrator is not None else 0,
    }
