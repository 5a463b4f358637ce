from __future__ import annotations

import asyncio
import io
import json
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse

from ..sim.core.config import AppConfig
from ..sim.core.errors import InvalidParameterError
from ..sim.core.world import World
from ..sim.systems.metrics import write_neighbor_info
from .run_queue import RunQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedSnapshot:
    epoch: int
    payload: str


class SimulationController:
    def __init__(self, config: AppConfig):
        self.config = config
        self.world = World(config.simulation)
        self.queue = RunQueue()
        self.broadcast_interval = max(1, config.broadcast_interval)
        self.running = False
        self.step_size = max(1, config.play_step)
        self.frames = 0
        self.clients: Set[WebSocket] = set()
        self._client_last_sent: Dict[WebSocket, int] = {}
        self._snapshot_queue: deque[QueuedSnapshot] = deque()
        self._lock = asyncio.Lock()
        self._queue_lock = asyncio.Lock()
        self._broadcast_task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self.running = False

    def play(self, fast_forward: bool = False) -> None:
        self.step_size = max(1, self.config.fast_forward_step if fast_forward else self.config.play_step)
        self.running = True

    async def step(self, epochs: int = 1) -> None:
        async with self._lock:
            self.queue.advance(self.world, epochs)
        await self._broadcast_snapshot()

    async def reset(self) -> None:
        async with self._lock:
            self.world.reset()
        async with self._queue_lock:
            self._snapshot_queue.clear()
        for client in self._client_last_sent:
            self._client_last_sent[client] = -1
        await self._broadcast_snapshot()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.frame_seconds)
            if not self.running:
                continue
            await self._advance_frame()
            self.frames += 1
            if self.frames % self.broadcast_interval == 0:
                await self._broadcast_snapshot()

    async def _advance_frame(self) -> int:
        """Advance up to `step_size` epochs, yielding to the event loop after each one."""
        advanced = 0
        while advanced < self.step_size and self.running:
            async with self._lock:
                self.queue.advance(self.world, 1)
            advanced += 1
            await asyncio.sleep(0)
        return advanced

    async def acknowledge(self, epoch: int) -> None:
        async with self._queue_lock:
            while self._snapshot_queue and self._snapshot_queue[0].epoch <= epoch:
                self._snapshot_queue.popleft()

    def status_payload(self) -> dict:
        world = self.world
        return {
            "running": self.running,
            "epoch": world.epoch,
            "epoch_budget": world.parameters.epoch_budget,
            "population": len(world.agents),
            "cooperators": world.count_cooperators(),
            "defectors": world.count_defectors(),
            "step_size": self.step_size,
            "runs_remaining": self.queue.runs_remaining(),
            "metrics": asdict(world.metrics) if world.metrics else None,
        }

    def params_payload(self) -> dict:
        world = self.world
        return {
            "radius": world.radius,
            "cost_benefit_ratio": world.cost_benefit_ratio,
            "population_size": world.population_size,
            "epoch_budget": world.epoch_budget,
            "use_average_fitness": world.use_average_fitness,
        }

    def queue_payload(self) -> dict:
        return {
            "pending": [run.as_row() for run in self.queue.pending()],
            "completed": [run.as_row() for run in self.queue.history],
        }

    def _serialize_snapshot(self) -> QueuedSnapshot:
        snapshot = self.world.snapshot()
        payload = {
            "type": "snapshot",
            "epoch": snapshot.epoch,
            "payload": {
                "epoch": snapshot.epoch,
                "cooperators": snapshot.cooperators,
                "metrics": asdict(snapshot.metrics) if snapshot.metrics else None,
                "agents": snapshot.agents,
                "metadata": asdict(snapshot.metadata),
            },
        }
        return QueuedSnapshot(epoch=snapshot.epoch, payload=json.dumps(payload))

    async def _send_pending_snapshots(self, client: WebSocket) -> None:
        last_sent = self._client_last_sent.get(client, -1)
        async with self._queue_lock:
            pending = [item for item in self._snapshot_queue if item.epoch > last_sent]
        for item in pending:
            await client.send_text(item.payload)
            last_sent = item.epoch
        self._client_last_sent[client] = last_sent

    async def _broadcast_snapshot(self) -> None:
        queued = self._serialize_snapshot()
        async with self._queue_lock:
            if self._snapshot_queue and self._snapshot_queue[-1].epoch > queued.epoch:
                # A new queued run restarts the epoch count; drop stale frames.
                self._snapshot_queue.clear()
                for client in self._client_last_sent:
                    self._client_last_sent[client] = -1
            elif self._snapshot_queue and self._snapshot_queue[-1].epoch == queued.epoch:
                self._snapshot_queue.pop()
            self._snapshot_queue.append(queued)
        stale: Set[WebSocket] = set()
        for client in self.clients:
            try:
                await self._send_pending_snapshots(client)
            except WebSocketDisconnect:
                stale.add(client)
        for client in stale:
            self.clients.discard(client)
            self._client_last_sent.pop(client, None)


def _load_app_config() -> AppConfig:
    path = os.environ.get("PDWORLD_CONFIG")
    if path:
        logger.info("loading config from %s", path)
        return AppConfig.from_yaml(Path(path))
    return AppConfig()


app = FastAPI(title="Spatial Prisoner's Dilemma")
controller = SimulationController(_load_app_config())


@app.on_event("startup")
async def _startup() -> None:
    await controller.start()


@app.get("/api/status")
async def status() -> JSONResponse:
    return JSONResponse(controller.status_payload())


@app.get("/api/snapshot")
async def snapshot() -> JSONResponse:
    queued = controller._serialize_snapshot()
    return JSONResponse(json.loads(queued.payload)["payload"])


@app.get("/api/neighbors")
async def neighbors() -> PlainTextResponse:
    buffer = io.StringIO()
    write_neighbor_info(controller.world.agents, buffer)
    return PlainTextResponse(buffer.getvalue(), media_type="text/csv")


@app.get("/api/params")
async def get_params() -> JSONResponse:
    return JSONResponse(controller.params_payload())


@app.post("/api/params")
async def set_params(payload: dict) -> JSONResponse:
    try:
        controller.world.update_parameters(**payload)
    except InvalidParameterError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    # Takes effect on the next reset.
    return JSONResponse(controller.params_payload())


@app.post("/api/control/start")
async def start_simulation() -> JSONResponse:
    controller.play(fast_forward=False)
    return JSONResponse({"running": True, "step_size": controller.step_size})


@app.post("/api/control/fast-forward")
async def fast_forward_simulation() -> JSONResponse:
    controller.play(fast_forward=True)
    return JSONResponse({"running": True, "step_size": controller.step_size})


@app.post("/api/control/stop")
async def stop_simulation() -> JSONResponse:
    await controller.stop()
    return JSONResponse({"running": False})


@app.post("/api/control/step")
async def step_simulation() -> JSONResponse:
    await controller.step(1)
    return JSONResponse(controller.status_payload())


@app.post("/api/control/reset")
async def reset_simulation() -> JSONResponse:
    await controller.reset()
    return JSONResponse(controller.status_payload())


@app.get("/api/queue")
async def get_queue() -> JSONResponse:
    return JSONResponse(controller.queue_payload())


@app.post("/api/queue")
async def queue_runs(payload: dict) -> JSONResponse:
    count = payload.get("runs", controller.config.num_runs)
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise HTTPException(status_code=422, detail="runs must be a non-negative integer")
    controller.queue.queue_runs(controller.world.config, count)
    return JSONResponse(controller.queue_payload())


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    controller.clients.add(websocket)
    controller._client_last_sent[websocket] = -1
    await controller._send_pending_snapshots(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if payload.get("type") == "ack":
                epoch = payload.get("epoch")
                if isinstance(epoch, int):
                    await controller.acknowledge(epoch)
    except WebSocketDisconnect:
        controller.clients.discard(websocket)
        controller._client_last_sent.pop(websocket, None)


__all__ = ["app", "controller"]
