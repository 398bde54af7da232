"""
casestream API — FastAPI endpoints over the engine's read-only view.

Exposes, for presentation layers and other consumers:
- Connection status and configuration
- Cases ordered by activity, and single cases
- Tasks, comments, documents and planning per case
- The raw event log
- The send-command entry point
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from casestream.commands.dispatcher import CommandDispatcher
from casestream.errors import CommandRejected
from casestream.models.engine import EngineConfig
from casestream.models.events import CloudEvent
from casestream.projections.secondary import (
    planning_completion_percentage,
    planning_progress,
)
from casestream.sync.controller import ResyncController

logger = logging.getLogger(__name__)


# --- Application Factory ---

def create_app(
    controller: Optional[ResyncController] = None,
    dispatcher: Optional[CommandDispatcher] = None,
    config: Optional[EngineConfig] = None,
    autostart: bool = False,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    With autostart the controller's connection loop runs as a background
    task for the lifetime of the app.
    """
    ctl = controller or ResyncController(config=config)
    dsp = dispatcher or CommandDispatcher(ctl)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not autostart:
            yield
            return

        stop_event = asyncio.Event()
        task = asyncio.create_task(ctl.run_async(stop_event))
        logger.info("Sync loop started against %s", ctl.config.events_url)
        try:
            yield
        finally:
            stop_event.set()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Sync loop stopped")

    app = FastAPI(
        title="casestream API",
        description="Event-sourced case state, reconciled from the server event stream",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store components on app state for access in endpoints
    app.state.controller = ctl
    app.state.dispatcher = dsp

    def _require_case(case_id: str):
        case = ctl.get_case(case_id)
        if case is None:
            raise HTTPException(404, "Case not found")
        return case

    # === STATUS ===

    @app.get("/status")
    def get_status():
        """Connection status and engine counters."""
        state = ctl.state
        return {
            "status": ctl.status.value,
            "running": ctl.running,
            "connections": ctl.connection_count,
            "resets": ctl.reset_count,
            "tracked_cases": len(state.store),
            "log_length": state.log_length,
            "pending_commands": len(dsp.pending),
            "config": ctl.config.model_dump(),
        }

    @app.get("/config")
    def get_config():
        """Current engine configuration."""
        return ctl.config.model_dump()

    @app.put("/config")
    def update_config(new_config: EngineConfig):
        """Replace the engine configuration; applies from the next connection."""
        ctl.config = new_config
        dsp.config = new_config
        return new_config.model_dump()

    # === CASES ===

    @app.get("/cases")
    def list_cases():
        """Cases, most recently active first."""
        return [
            {
                **listing.case.model_dump(mode="json", exclude_none=True),
                "last_activity": (
                    listing.last_activity.isoformat() if listing.last_activity else None
                ),
            }
            for listing in ctl.list_cases()
        ]

    @app.get("/cases/{case_id}")
    def get_case(case_id: str):
        case = _require_case(case_id)
        activity = ctl.last_activity(case_id)
        return {
            **case.model_dump(mode="json", exclude_none=True),
            "last_activity": activity.isoformat() if activity else None,
        }

    @app.get("/cases/{case_id}/tasks")
    def get_tasks(case_id: str, open_only: bool = False):
        _require_case(case_id)
        projections = ctl.projections
        tasks = (
            projections.uncompleted_tasks(case_id)
            if open_only
            else projections.tasks_for_case(case_id)
        )
        return [t.model_dump(mode="json") for t in tasks]

    @app.get("/cases/{case_id}/tasks/summary")
    def get_task_summary(case_id: str):
        _require_case(case_id)
        return ctl.projections.task_summary(case_id).model_dump(mode="json")

    @app.get("/cases/{case_id}/comments")
    def get_comments(case_id: str):
        _require_case(case_id)
        return [c.model_dump(mode="json") for c in ctl.projections.comments_for_case(case_id)]

    @app.get("/cases/{case_id}/documents")
    def get_documents(case_id: str):
        _require_case(case_id)
        return [d.model_dump(mode="json") for d in ctl.projections.documents_for_case(case_id)]

    @app.get("/cases/{case_id}/planning")
    def get_planning(case_id: str):
        _require_case(case_id)
        return [
            {
                **p.model_dump(mode="json"),
                "progress": planning_progress(p).model_dump(mode="json"),
                "completion_percentage": planning_completion_percentage(p),
            }
            for p in ctl.projections.plannings_for_case(case_id)
        ]

    @app.get("/cases/{case_id}/planning/latest")
    def get_latest_planning(case_id: str):
        _require_case(case_id)
        planning = ctl.projections.latest_planning(case_id)
        if planning is None:
            raise HTTPException(404, "No active planning")
        return planning.model_dump(mode="json")

    # === ACTIVITY ===

    @app.get("/activity")
    def get_activity(limit: int = 50):
        """Subjects, most recently active first."""
        ranking = ctl.state.activity.ranking()
        return [
            {"subject": subject, "last_activity": when.isoformat()}
            for subject, when in ranking[:max(limit, 0)]
        ]

    # === EVENTS ===

    @app.get("/events")
    def get_events(limit: int = 100):
        """The most recent events of the current connection's log."""
        events = ctl.events
        return [e.to_wire() for e in events[-limit:]] if limit > 0 else []

    # === COMMANDS ===

    @app.post("/commands")
    async def send_command(event: CloudEvent):
        """Apply a command locally and send it to the server."""
        try:
            await dsp.dispatch(event)
        except CommandRejected as e:
            raise HTTPException(502, e.reason)
        return {"status": "accepted", "event_id": event.id}

    @app.post("/cases/{case_id}/tasks/{task_id}/complete")
    async def complete_task(case_id: str, task_id: str):
        """Mark a task completed."""
        try:
            event = await dsp.complete_task(task_id, case_id)
        except CommandRejected as e:
            raise HTTPException(502, e.reason)
        return {"status": "accepted", "event_id": event.id}

    @app.get("/commands/pending")
    def get_pending_commands():
        """In-flight and rejected commands."""
        return [c.model_dump(mode="json") for c in dsp.pending]

    return app


# Default application instance
app = create_app()
