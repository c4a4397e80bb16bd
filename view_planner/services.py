from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from view_planner.config import RayCastingConfig
from view_planner.views import MovementCost, Pose, ReceiveInfo, View, ViewSpace

logger = logging.getLogger(__name__)


class JsonServiceClient:
    """POSTs JSON to a collaborator service. Transport problems never raise."""

    def __init__(self, base_url: str, timeout_s: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=max(0.1, float(timeout_s)))
        self._session: Optional[aiohttp.ClientSession] = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _post(self, path: str, payload: Dict[str, Any]) -> Tuple[bool, Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            async with self._ensure_session().post(url, json=payload) as response:
                if response.status >= 400:
                    logger.warning("%s answered with HTTP %d.", url, response.status)
                    return False, {}
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Call to %s failed: %s", url, exc)
            return False, {}
        except ValueError as exc:
            logger.warning("Invalid JSON from %s: %s", url, exc)
            return False, {}

        if not isinstance(body, dict):
            logger.warning("Response from %s must be a JSON object.", url)
            return False, {}
        return True, body

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class RobotInterfaceClient(JsonServiceClient):
    async def feasible_view_space(self) -> Tuple[bool, Optional[ViewSpace]]:
        ok, body = await self._post("/feasible_view_space", {})
        if not ok:
            return False, None
        try:
            return True, ViewSpace.from_payload(body)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed view space response: %s", exc)
            return False, None

    async def current_view(self) -> Tuple[bool, Optional[View]]:
        ok, body = await self._post("/current_view", {})
        if not ok:
            return False, None
        try:
            return True, View.from_payload(body["view"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed current view response: %s", exc)
            return False, None

    async def retrieve_data(self) -> Tuple[bool, Optional[ReceiveInfo]]:
        ok, body = await self._post("/retrieve_data", {})
        if not ok:
            return False, None
        try:
            return True, ReceiveInfo(str(body["receive_info"]).strip().upper())
        except (KeyError, ValueError) as exc:
            logger.warning("Malformed data retrieval response: %s", exc)
            return False, None

    async def movement_cost(
        self,
        start: View,
        target: View,
        additional_information: bool = True,
    ) -> Tuple[bool, Optional[MovementCost]]:
        payload = {
            "start_view": start.to_payload(),
            "target_view": target.to_payload(),
            "additional_information": bool(additional_information),
        }
        ok, body = await self._post("/movement_cost", payload)
        if not ok:
            return False, None
        try:
            return True, MovementCost.from_payload(body["movement_cost"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed movement cost response: %s", exc)
            return False, None

    async def move_to(self, target: View) -> Tuple[bool, bool]:
        ok, body = await self._post("/move_to", {"target_view": target.to_payload()})
        if not ok:
            return False, False
        return True, bool(body.get("success", False))


class ModelInformationClient(JsonServiceClient):
    async def view_information(
        self,
        poses: Sequence[Pose],
        metric_names: Sequence[str],
        ray_casting: RayCastingConfig,
    ) -> Tuple[bool, Optional[List[float]]]:
        payload: Dict[str, Any] = {
            "poses": [pose.to_payload() for pose in poses],
            "metric_names": list(metric_names),
        }
        payload.update(ray_casting.to_payload())

        ok, body = await self._post("/information", payload)
        if not ok:
            return False, None
        try:
            values = body["expected_information"]["values"]
            return True, [float(v) for v in values]
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed information response: %s", exc)
            return False, None
