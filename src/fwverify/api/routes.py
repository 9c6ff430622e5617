"""API route handlers for the verifier endpoints."""

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from fwverify.api.models import (
    ErrorResponse,
    ProgressResponse,
    SuccessResponse,
    VerifyRequest,
)
from fwverify.models.report import BatchReport
from fwverify.models.status import Slot, VerifierStage
from fwverify.services.controller import BatchSelectionError
from fwverify.services.coordinator import BatchCoordinator, request_factory_for
from fwverify.services.reporter import ReportService
from fwverify.services.state_manager import StateManager

router = APIRouter(prefix="/api/v1.0")


@router.get("/progress", response_model=ProgressResponse)
async def get_progress():
    """GET /api/v1.0/progress - Query verifier status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "running",
                "message": "Verifying primary update on 2 devices",
                "devices": ["1", "3"],
                "error": null
            }
        }

    A failed run answers with code 500 and the error in msg.
    """
    state_manager = StateManager()
    status = state_manager.get_status()

    if status.stage == VerifierStage.FAILED:
        msg = f"Verification failed: {status.error}" if status.error else "Verification failed"
        return ProgressResponse(code=500, msg=msg, data=status)
    return ProgressResponse(code=200, msg="success", data=status)


@router.get("/report")
async def get_report():
    """GET /api/v1.0/report - Last BatchReport, code 404 if none."""
    report = StateManager().get_last_report()
    if report is None:
        return _error(404, "No report available")
    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": report.model_dump(mode="json")},
    )


@router.post("/verify", response_model=SuccessResponse)
async def post_verify(
    request: VerifyRequest, background_tasks: BackgroundTasks, http_request: Request
):
    """POST /api/v1.0/verify - Start a verification run in the background.

    Returns:
        code 200 with the selected devices if the run started
        code 409 if a run is already in progress
        code 400 if the selection is refused or no images are configured
    """
    state_manager = StateManager()
    coordinator: BatchCoordinator = http_request.app.state.coordinator
    reporter: ReportService = http_request.app.state.reporter

    # Held until RUNNING is set; selection awaits the inventory.
    async with http_request.app.state.start_lock:
        if state_manager.is_running():
            return _error(
                409, "Verification already in progress", state_manager.get_status().stage
            )

        try:
            coordinator.config.image_set()
            if request.device_ids:
                devices = list(request.device_ids)
                await coordinator.check_selection(devices, coordinator.config.minimum_reserve)
            else:
                devices = await coordinator.select_batch(request.count)
        except BatchSelectionError as e:
            return _error(400, str(e))
        except KeyError as e:
            return _error(400, e.args[0])

        state_manager.update_status(
            stage=VerifierStage.RUNNING,
            message=_describe_run(request, devices),
            devices=devices,
        )

    background_tasks.add_task(
        _verify_workflow, coordinator, reporter, devices, request.slot, request.cycles
    )

    return JSONResponse(
        status_code=200,
        content={"code": 200, "msg": "success", "data": {"devices": devices}},
    )


def _error(code: int, msg: str, stage=None) -> JSONResponse:
    """Error body with HTTP 200, the real status sits in 'code'."""
    body = ErrorResponse(code=code, msg=msg, stage=stage)
    return JSONResponse(status_code=200, content=body.model_dump(mode="json", exclude_none=True))


def _describe_run(request: VerifyRequest, devices: list[str]) -> str:
    if request.cycles > 1:
        return f"Running {request.cycles} update cycles on {len(devices)} devices"
    return f"Verifying {request.slot.value} update on {len(devices)} devices"


async def _verify_workflow(
    coordinator: BatchCoordinator,
    reporter: ReportService,
    devices: list[str],
    slot: Slot,
    cycles: int,
) -> None:
    """Background task for a verification run.

    Every report is saved and published as soon as its batch settles.
    """
    state_manager = StateManager()

    async def deliver(report: BatchReport) -> None:
        await state_manager.save_report(report)
        await reporter.publish(report)

    try:
        if cycles > 1:
            summary = await coordinator.run_cycles(devices, cycles, on_report=deliver)
            last = summary.reports[-1]
        else:
            factory = request_factory_for(slot, coordinator.config.image_set())
            last = await coordinator.run_batch(devices, factory)
            await deliver(last)

        state_manager.update_status(
            stage=VerifierStage.COMPLETED,
            message=last.summary(),
        )

    except Exception as e:
        coordinator.logger.error(f"Verification run failed: {e}", exc_info=True)
        state_manager.update_status(
            stage=VerifierStage.FAILED,
            message="Verification run failed",
            error=f"VERIFY_FAILED: {str(e)}",
        )
