"""Per-tab script monitoring that feeds the source map resolver."""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from ..config import SettingsStore
from ..core.connector import ChromeConnectionError, ChromeConnector
from ..resolver import SourceMapResolver
from ..resources import ResourceDescriptor

logger = logging.getLogger(__name__)


class ScriptMonitor:
    """Attaches to one page target and resolves a source map per parsed script.

    Each Debugger.scriptParsed event runs the resolver in its own task,
    so many scripts on one page resolve concurrently. In-flight tasks are
    not cancelled on navigation; they run to completion.
    """

    def __init__(self, connector: ChromeConnector, target_id: str, page_url: Optional[str],
                 resolver: SourceMapResolver, settings_store: SettingsStore):
        self.connector = connector
        self.target_id = target_id
        self.page_url = page_url
        self.resolver = resolver
        self.settings_store = settings_store
        self.session_id: Optional[str] = None
        self.tasks: Set[asyncio.Task] = set()
        # outcome -> count, for the summary printed on exit
        self.outcomes: Dict[str, int] = {}

    async def attach(self) -> None:
        """Open a flattened target session and enable the Debugger domain."""
        last_err = None
        for attempt in range(3):
            try:
                response = await self.connector.call(
                    "Target.attachToTarget",
                    {"targetId": self.target_id, "flatten": True},
                    timeout=20.0
                )
                self.session_id = response["sessionId"]
                break
            except Exception as e:
                last_err = e
                await asyncio.sleep(0.3 * (attempt + 1))

        if not self.session_id:
            raise ChromeConnectionError(f"Failed to attach to target {self.target_id}: {last_err}")

        # Register before enabling: Debugger.enable replays already parsed scripts
        self.connector.on_event("Debugger.scriptParsed", self._on_script_parsed)
        self.connector.on_event("Target.targetInfoChanged", self._on_target_info_changed)

        try:
            await self.connector.call("Debugger.enable", session_id=self.session_id, timeout=10.0)
        except ChromeConnectionError:
            self._remove_handlers()
            raise

        logger.debug(f"Attached to target {self.target_id} with session {self.session_id}")

    async def detach(self) -> None:
        self._remove_handlers()
        await self.wait_idle()

        if self.session_id:
            try:
                await self.connector.call("Target.detachFromTarget", {"sessionId": self.session_id})
                logger.debug(f"Detached from target {self.target_id}")
            except Exception as e:
                logger.debug(f"Error detaching from target {self.target_id}: {e}")
            finally:
                self.session_id = None

    async def wait_idle(self) -> None:
        """Wait until every in-flight resolution has finished."""
        while self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)

    def _remove_handlers(self) -> None:
        self.connector.off_event("Debugger.scriptParsed", self._on_script_parsed)
        self.connector.off_event("Target.targetInfoChanged", self._on_target_info_changed)

    def _on_target_info_changed(self, params: Dict[str, Any]) -> None:
        target_info = params.get("targetInfo", {})
        if target_info.get("targetId") != self.target_id:
            return
        new_url = target_info.get("url")
        if new_url and new_url != self.page_url:
            logger.debug(f"Target {self.target_id} navigated to {new_url}")
            self.page_url = new_url

    async def _on_script_parsed(self, params: Dict[str, Any]) -> None:
        if params.get("sessionId") != self.session_id:
            return

        resource = ResourceDescriptor.from_script_parsed(params, self.connector, self.session_id)
        if resource is None:
            return

        task = asyncio.create_task(self._resolve(resource, self.page_url))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _resolve(self, resource: ResourceDescriptor, page_url: Optional[str]) -> None:
        settings = self.settings_store.refresh()
        try:
            outcome = await self.resolver.handle_resource(resource, page_url, settings)
        except Exception as e:
            logger.error(f"Attaching source map for {resource.url} failed: {e}")
            outcome = "attach_failed"
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
