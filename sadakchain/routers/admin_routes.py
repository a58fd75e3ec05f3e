import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import AuthError, DataStoreError
from ..gateway.base import Backend

logger = logging.getLogger(__name__)

router = APIRouter()

_email = TypeAdapter(EmailStr)


def _admin_backend(request: Request) -> Backend:
    return request.app.state.backends.admin_backend()


def validate_register(body: Any) -> Optional[str]:
    if not body or not isinstance(body, dict):
        return "No body"
    email, password, name = body.get("email"), body.get("password"), body.get("name")
    if not email or not isinstance(email, str):
        return "Missing valid email"
    try:
        _email.validate_python(email)
    except PydanticValidationError:
        return "Missing valid email"
    if not password or not isinstance(password, str) or len(password) < 6:
        return "Password min 6 chars"
    if not name or not isinstance(name, str):
        return "Missing name"
    return None


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/register")
async def register(request: Request):
    body = await _json_body(request)
    err = validate_register(body)
    if err:
        return JSONResponse({"error": err}, status_code=400)

    email, password, name = body["email"], body["password"], body["name"]
    pincode = body.get("pincode") or None

    try:
        backend = _admin_backend(request)
        try:
            created = await backend.admin.create_user(email, password, {"full_name": name, "pincode": pincode})
        except AuthError as e:
            logger.error(f"Admin create failed: {e.detail or e.message}")
            return JSONResponse({"error": "admin_create_failed", "detail": e.detail or e.message}, status_code=400)

        user_id = created.get("id")
        if not user_id:
            logger.error(f"Admin created user but no id returned: {created}")
            return JSONResponse({"error": "admin_no_userid", "detail": created}, status_code=500)

        profile = {
            "id": user_id,
            "email": created.get("email"),
            "name": name or None,
            "pincode": pincode,
            "created_at": datetime.utcnow().isoformat(),
        }
        try:
            rows = await backend.store.insert("profiles", [profile])
        except DataStoreError as e:
            logger.error(f"Profile insert failed: {e.detail or e.message}")
            try:
                await backend.admin.delete_user(user_id)
                logger.info(f"Rolled back auth user {user_id} after profile insert failure.")
            except Exception as cleanup_err:
                # reported as the original failure
                logger.error(f"Cleanup delete-auth-user failed for {user_id}: {cleanup_err}")
            return JSONResponse({"error": "profile_insert_failed", "detail": e.detail or e.message}, status_code=500)

        return JSONResponse({"ok": True, "user": created, "profile": rows}, status_code=201)
    except Exception as e:
        logger.exception(f"Register handler error: {e}")
        return JSONResponse({"error": "server_error", "detail": str(e)}, status_code=500)


@router.post("/report")
async def create_report(request: Request):
    body = await _json_body(request) or {}
    user_id, location = body.get("userId"), body.get("location")
    if not user_id or not location:
        return JSONResponse({"error": "Missing userId or location"}, status_code=400)

    payload = {
        "id": user_id,
        "location": location,
        "report_pincode": body.get("pincode") or None,
        "created_at": datetime.utcnow().isoformat(),
    }
    try:
        rows = await _admin_backend(request).store.insert("reports", [payload])
    except DataStoreError as e:
        logger.error(f"Report insert failed: {e.detail or e.message}")
        return JSONResponse({"error": "report_insert_failed", "detail": e.detail or e.message}, status_code=500)
    except Exception as e:
        logger.exception(f"Report handler error: {e}")
        return JSONResponse({"error": "server_error", "detail": str(e)}, status_code=500)
    return JSONResponse({"ok": True, "report": rows}, status_code=201)
