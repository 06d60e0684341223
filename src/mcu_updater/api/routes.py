"""API route handlers for the firmware upgrade control surface."""

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from mcu_updater.api.context import UpdaterContext
from mcu_updater.api.models import (
    LoadFirmwareRequest,
    ProgressResponse,
    SuccessResponse,
    UpgradeRequest,
)
from mcu_updater.errors import AlreadyRunningError, InputError, UpgradeError
from mcu_updater.models.status import UpgradeState
from mcu_updater.services.validator import images_of, validate_images

router = APIRouter(prefix="/api/v1.0")


def _context(request: Request) -> UpdaterContext:
    return request.app.state.context


def _reply(code: int, msg: str, data=None, stage: UpgradeState = None) -> JSONResponse:
    """Application-level response; HTTP status is always 200."""
    content = {"code": code, "msg": msg, "data": data}
    if stage is not None:
        content["stage"] = stage.value
    return JSONResponse(status_code=200, content=content)


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request):
    """GET /api/v1.0/progress - Query current upgrade status.

    Response format (uploading):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "upload",
                "progress": 45,
                "message": "UPLOADING...",
                "error": null,
                "paused": false,
                "firmware": {"name": "dfu_application.zip", "images": [...]}
            }
        }

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Upgrade failed: TIMEOUT: device did not come back ...",
            "data": {"stage": "failed", ...}
        }
    """
    status = _context(request).status.get_status()

    if status.stage is UpgradeState.FAILED:
        msg = f"Upgrade failed: {status.error}" if status.error else "Upgrade failed"
        return ProgressResponse(code=500, msg=msg, data=status)
    return ProgressResponse(code=200, msg="success", data=status)


@router.post("/firmware", response_model=SuccessResponse)
async def post_firmware(request: LoadFirmwareRequest, http_request: Request):
    """POST /api/v1.0/firmware - Load and validate a firmware archive.

    Returns code 404 if the file does not exist, 400 if it is not a valid
    archive or any image in it is invalid (nothing is loaded then), 409 if
    an upgrade is running.
    """
    context = _context(http_request)
    if context.manager.is_running:
        return _reply(409, f"Upgrade in progress: {context.manager.state.value}",
                      stage=context.manager.state)

    path = Path(request.path)
    try:
        candidates = await context.extractor.load(path)
        validated = validate_images(candidates)
    except FileNotFoundError:
        context.clear_firmware("INVALID FILE", f"File not found: {path}")
        return _reply(404, f"File not found: {path}")
    except InputError as e:
        context.clear_firmware("INVALID FILE", str(e))
        return _reply(400, str(e))

    context.load_firmware(path.name, validated)
    firmware = context.status.get_status().firmware
    return _reply(200, "success", data=firmware.model_dump(mode="json"))


@router.post("/upgrade", response_model=SuccessResponse)
async def post_upgrade(request: UpgradeRequest, http_request: Request):
    """POST /api/v1.0/upgrade - Start the upgrade of the loaded firmware.

    Returns code 404 if no firmware is loaded, 409 if already running.
    """
    context = _context(http_request)
    if not context.images:
        return _reply(404, "No firmware loaded")

    try:
        context.manager.start(images_of(context.images), request.mode)
    except AlreadyRunningError as e:
        return _reply(409, str(e), stage=context.manager.state)

    return _reply(200, "success", data={"mode": request.mode.value})


@router.post("/pause", response_model=SuccessResponse)
async def post_pause(http_request: Request):
    """POST /api/v1.0/pause - Pause the upload (no-op outside upload)."""
    context = _context(http_request)
    context.manager.pause()
    if context.manager.is_paused:
        context.status.set_paused(True)
    return _reply(200, "success", data={"paused": context.manager.is_paused})


@router.post("/resume", response_model=SuccessResponse)
async def post_resume(http_request: Request):
    """POST /api/v1.0/resume - Resume a paused upload."""
    context = _context(http_request)
    context.manager.resume()
    if not context.manager.is_paused:
        context.status.set_paused(False)
    return _reply(200, "success", data={"paused": context.manager.is_paused})


@router.post("/cancel", response_model=SuccessResponse)
async def post_cancel(http_request: Request):
    """POST /api/v1.0/cancel - Cancel the running upgrade at the next safe point."""
    context = _context(http_request)
    running = context.manager.is_running
    context.manager.cancel()
    return _reply(200, "success", data={"cancelling": running})


@router.post("/reset", response_model=SuccessResponse)
async def post_reset(http_request: Request):
    """POST /api/v1.0/reset - Reboot the device outside an upgrade.

    Returns code 409 while an upgrade owns the transport, 500 if the device
    could not be reset.
    """
    context = _context(http_request)
    if context.manager.is_running:
        return _reply(409, f"Upgrade in progress: {context.manager.state.value}",
                      stage=context.manager.state)

    try:
        await context.device.reset()
    except UpgradeError as e:
        return _reply(500, f"Reset failed: {e}")

    return _reply(200, "success")
