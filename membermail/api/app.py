"""FastAPI web application for membermail."""

import html
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from membermail.auth.dependencies import get_current_user, get_optional_user
from membermail.auth.jwt import SESSION_COOKIE_NAME, create_access_token
from membermail.auth.nonce import create_nonce, require_nonce
from membermail.config import get_settings
from membermail.database.database import init_db
from membermail.engine.verification import RESEND_PATH
from membermail.errors import SecurityCheckFailure, ValidationError
from membermail.models.log_entry import LogType
from membermail.models.user import User
from membermail.services import Services, get_services

logger = logging.getLogger(__name__)

RESEND_ACTION = "resend_verification"


def enforce_verification_gate(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    services: Services = Depends(get_services),
) -> None:
    """Send signed-in, unverified members to the interstitial page."""
    target = services.verification.gate_redirect(user, request.url.path)
    if target:
        raise HTTPException(status_code=status.HTTP_303_SEE_OTHER, headers={"Location": target})


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    scheduler_service = None
    if os.getenv("RUN_SCHEDULER", "True").lower() == "true":
        from membermail.worker import get_scheduler_service

        scheduler_service = get_scheduler_service()
        scheduler_service.start()
    yield
    if scheduler_service is not None:
        scheduler_service.stop()


# Initialize FastAPI app
app = FastAPI(
    title="membermail API",
    description="Lifecycle email engine: verification, consent and membership notices",
    version="0.1.0",
    lifespan=lifespan,
    dependencies=[Depends(enforce_verification_gate)],
)


class ResendRequest(BaseModel):
    """Body of the resend-verification call."""
    nonce: str = Field("", description="Nonce embedded in the interstitial page")


def _to_int(value: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def render_message_page(title: str, message: str) -> str:
    """Minimal standalone page for endpoint outcomes."""
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{html.escape(title)}</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 600px; margin: 80px auto; padding: 20px; color: #333; }}
        h1 {{ color: #c1252d; }}
    </style>
</head>
<body>
    <h1>{html.escape(title)}</h1>
    <p>{html.escape(message)}</p>
</body>
</html>"""


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


def verify_email(
    user: str = Query(""),
    token: str = Query(""),
    current_user: Optional[User] = Depends(get_optional_user),
    services: Services = Depends(get_services),
):
    """Consume a verification link."""
    try:
        outcome = services.verification.handle_verify_request(_to_int(user), token, authenticated=current_user is not None)
    except ValidationError:
        return HTMLResponse(
            render_message_page(
                "Verification failed",
                "The link is invalid or expired. Please request a new verification email.",
            ),
            status_code=status.HTTP_403_FORBIDDEN,
        )

    response = RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)
    if outcome.login:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            create_access_token(outcome.user_id),
            httponly=True,
            samesite="lax",
        )
    return response


def unsubscribe(
    u: str = Query(""),
    t: str = Query(""),
    services: Services = Depends(get_services),
):
    """Opt out of marketing email via the link in an email footer."""
    try:
        services.consent.handle_unsubscribe(_to_int(u), t)
    except ValidationError:
        return HTMLResponse(
            render_message_page(
                "Unable to unsubscribe",
                "We could not verify your request. Please use the link from your most recent email.",
            ),
            status_code=status.HTTP_403_FORBIDDEN,
        )

    if services.settings.unsubscribe_redirect_url:
        return RedirectResponse(services.settings.unsubscribe_redirect_url, status_code=status.HTTP_302_FOUND)
    return HTMLResponse(
        render_message_page(
            "Unsubscribed",
            "Your preferences have been updated. You will no longer receive marketing emails.",
        )
    )


def resend_verification(
    body: ResendRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Send a fresh verification email (interstitial button)."""
    try:
        require_nonce(services.settings.token_secret, current_user.id, RESEND_ACTION, body.nonce, services.clock.now())
    except SecurityCheckFailure:
        services.event_log.add(
            f"Rejected resend request for user #{current_user.id}: bad nonce.",
            LogType.VERIFY,
            {"user_id": current_user.id, "status": "security_check_failed"},
        )
        return JSONResponse(
            {"success": False, "data": {"message": "Security check failed. Please reload the page."}},
            status_code=status.HTTP_403_FORBIDDEN,
        )
    result = services.verification.resend_verification(current_user.id)
    return result.to_response()


def verify_required(
    current_user: Optional[User] = Depends(get_optional_user),
    services: Services = Depends(get_services),
):
    """Interstitial shown to signed-in members who have not verified yet."""
    if current_user is None:
        return RedirectResponse(services.settings.home_url(), status_code=status.HTTP_302_FOUND)

    nonce = create_nonce(services.settings.token_secret, current_user.id, RESEND_ACTION, services.clock.now())
    return HTMLResponse(f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Please verify your email address</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 600px; margin: 80px auto; padding: 20px; color: #333; }}
        h1 {{ color: #c1252d; }}
        button {{ padding: 10px 20px; cursor: pointer; }}
    </style>
</head>
<body>
    <main>
        <h1>Please verify your email address</h1>
        <p>We sent a verification link to your inbox. Follow the link to activate your account and unlock everything {html.escape(services.settings.site_name)} offers.</p>
        <p>Didn't receive it? Click the button below and we will send another verification email instantly.</p>
        <button type="button" id="resend" data-nonce="{html.escape(nonce)}">Resend verification email</button>
        <p id="status"></p>
    </main>
    <script>
        document.getElementById('resend').addEventListener('click', async function () {{
            const button = this;
            const statusEl = document.getElementById('status');
            button.disabled = true;
            statusEl.textContent = 'Sending...';
            try {{
                const response = await fetch('{RESEND_PATH}', {{
                    method: 'POST',
                    headers: {{ 'Content-Type': 'application/json' }},
                    credentials: 'same-origin',
                    body: JSON.stringify({{ nonce: button.dataset.nonce }})
                }});
                const payload = await response.json();
                statusEl.textContent = (payload.data && payload.data.message) || 'Something went wrong.';
            }} catch (error) {{
                statusEl.textContent = 'Error: ' + error.message;
            }} finally {{
                button.disabled = false;
            }}
        }});
    </script>
</body>
</html>""")


def mount_member_routes(app: FastAPI, settings) -> None:
    """Register the link targets at the paths the emails point to."""
    app.add_api_route(settings.verify_endpoint, verify_email, methods=["GET"], response_class=HTMLResponse)
    app.add_api_route(settings.unsubscribe_endpoint, unsubscribe, methods=["GET"], response_class=HTMLResponse)
    app.add_api_route(settings.verify_required_path, verify_required, methods=["GET"], response_class=HTMLResponse)
    app.add_api_route(RESEND_PATH, resend_verification, methods=["POST"])


mount_member_routes(app, get_settings())
