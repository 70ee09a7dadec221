"""GitHub webhook listener.

``POST /github-hook`` accepts GitHub deliveries. ``pull_request`` events
are parsed and handed to the orchestrator as a background task, so the
delivery is acknowledged before the (long) benchmark runs. Every event
gets its own task; the orchestrator keeps their workspaces apart.
"""

from __future__ import annotations

import json

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from prbench import __version__
from prbench.errors import InvalidEventError
from prbench.logging import get_logger
from prbench.orchestrator import Orchestrator, PullRequestEvent

log = get_logger("webhook")


def create_app(orchestrator: Orchestrator) -> FastAPI:
    """Build the FastAPI application around a ready orchestrator."""
    app = FastAPI(title="prbench", version=__version__)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/github-hook")
    async def github_hook(
        request: Request,
        background_tasks: BackgroundTasks,
        x_github_event: str = Header(default=""),
    ) -> dict[str, str]:
        body = await request.body()
        try:
            payload = json.loads(body or b"null")
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid JSON body: {exc}") from exc

        if x_github_event == "pull_request":
            try:
                event = PullRequestEvent.from_payload(payload)
            except InvalidEventError as exc:
                log.warning("Rejected pull_request delivery: %s", exc)
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            if not event.triggers_benchmark:
                log.info("PR #%d: action '%s' ignored", event.number, event.action)
                return {"status": "ignored"}
            log.info("PR #%d (%s): queued %r", event.number, event.action, event.title)
            background_tasks.add_task(orchestrator.handle_pull_request_event, event)
            return {"status": "queued"}

        if x_github_event == "push":
            log.info("Push event ignored")
        else:
            log.debug("Event %r ignored", x_github_event or "<none>")
        return {"status": "ignored"}

    return app
