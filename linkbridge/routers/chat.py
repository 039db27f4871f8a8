from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from linkbridge.dependencies import enforce_rate_limit, get_container
from linkbridge.logging_config import get_logger
from linkbridge.schemas.chat import InitiateChatRequest, InitiateChatResponse, SessionStatusResponse
from linkbridge.schemas.session import InvalidRecordError
from linkbridge.services.container import ServiceContainer
from linkbridge.services.store_service import StoreError

logger = get_logger("chat_router")

router = APIRouter(prefix="/api", dependencies=[Depends(enforce_rate_limit)])

INITIATE_GREETING = "Hello, I am interested in your services for a move."
REDIRECT_GREETING = "Hello, I am interested in your services."


def build_wa_link(bot_phone: str, text: str) -> str:
    digits = (bot_phone or "").replace("+", "").replace(" ", "")
    return f"https://wa.me/{digits}?text={quote(text)}"


@router.post("/initiate-chat", response_model=InitiateChatResponse)
async def initiate_chat(request: InitiateChatRequest, container: ServiceContainer = Depends(get_container)):
    """Create a pending session for a web inquiry and return the WhatsApp deep link."""
    profile_id = request.profile_id.strip()
    if not profile_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Company ID is required.")

    try:
        session = await container.registry.create(profile_id, request.image_ref)
    except StoreError as e:
        logger.error(f"Error in /api/initiate-chat: {e}", extra={"context": {"profile_id": profile_id}})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate chat link. Please try again.",
        )

    wa_link = build_wa_link(container.settings.bot_phone, INITIATE_GREETING)
    logger.info(f"Generated WhatsApp link: {wa_link}", extra={"context": {"session_id": session.session_id}})
    return InitiateChatResponse(
        message="WhatsApp chat link generated successfully.",
        waLink=wa_link,
        sessionId=session.session_id,
    )


@router.get("/chat-redirect")
async def chat_redirect(
    session_id: str = Query(default="", alias="sessionId"),
    container: ServiceContainer = Depends(get_container),
):
    """Validate the session and redirect to a clean WhatsApp chat link."""
    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing sessionId")

    try:
        session = await container.registry.get(session_id)
    except InvalidRecordError:
        session = None
    except StoreError as e:
        logger.error(f"Error in /api/chat-redirect: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Something went wrong.")

    if session is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired session.")

    return RedirectResponse(build_wa_link(container.settings.bot_phone, REDIRECT_GREETING))


@router.get("/session-status/{session_id}", response_model=SessionStatusResponse)
async def session_status(session_id: str, container: ServiceContainer = Depends(get_container)):
    """Debug view of a stored session."""
    try:
        session = await container.registry.get(session_id)
    except InvalidRecordError:
        session = None
    except StoreError as e:
        logger.error(f"Error checking session status: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to check session status")

    if session is None:
        return SessionStatusResponse(exists=False)

    age_ms = session.age_ms(container.registry.now_ms())
    return SessionStatusResponse(exists=True, ageMinutes=age_ms // 60000, data=session.to_store())
