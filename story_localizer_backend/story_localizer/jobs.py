import asyncio, logging
from typing import Awaitable, Callable, Dict, Optional
from .models import new_id

logger = logging.getLogger(__name__)


class AsyncioJobQueue:
    """Runs each submitted story as a background task in the current event loop."""

    def __init__(self, runner: Optional[Callable[[str], Awaitable]] = None):
        self.runner = runner
        self._tasks: Dict[str, asyncio.Task] = {}

    def bind(self, runner: Callable[[str], Awaitable]) -> None:
        self.runner = runner

    def submit(self, story_id: str) -> str:
        if self.runner is None:
            raise RuntimeError("Job queue has no runner bound")
        run_id = new_id()
        task = asyncio.create_task(self._run(story_id, run_id))
        self._tasks[run_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(run_id, None))
        logger.info(f"Submitted story {story_id} as run {run_id}")
        return run_id

    async def _run(self, story_id: str, run_id: str):
        try:
            await self.runner(story_id)
        except Exception:
            logger.exception(f"Run {run_id} for story {story_id} crashed")

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
