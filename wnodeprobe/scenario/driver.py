"""Two-node publish/subscribe scenario over Whisper symmetric keys."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from wnodeprobe.config.schema import ScenarioConfig
from wnodeprobe.node.peer import PeerExit
from wnodeprobe.node.supervisor import NodeSupervisor
from wnodeprobe.shh.client import ShhClient
from wnodeprobe.shh.types import MessageEnvelope, PostAck, ReceivedMessage
from wnodeprobe.utils.exceptions import LifecycleError, ScenarioError, WnodeProbeError

STEPS = (
    "start_nodes",
    "create_key",
    "fetch_key",
    "install_key",
    "register_filter",
    "post_message",
    "await_delivery",
    "late_filter",
)


@dataclass(slots=True)
class ScenarioReport:
    """Outcome of one scenario run."""

    ok: bool = False
    failed_step: str | None = None
    error: ScenarioError | None = None
    steps: list[str] = field(default_factory=list)
    publisher_key_id: str | None = None
    subscriber_key_id: str | None = None
    filter_id: str | None = None
    post_ack: PostAck | None = None
    received: list[ReceivedMessage] = field(default_factory=list)
    polls: int = 0
    late_filter_id: str | None = None
    late_messages: list[ReceivedMessage] = field(default_factory=list)
    exits: list[PeerExit] = field(default_factory=list)
    lifecycle_errors: list[LifecycleError] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "failedStep": self.failed_step,
            "error": self.error.to_dict() if self.error else None,
            "steps": list(self.steps),
            "received": [m.text for m in self.received],
            "polls": self.polls,
            "lateMessages": [m.text for m in self.late_messages],
            "exits": [{"name": e.name, "returncode": e.returncode, "error": e.error} for e in self.exits],
            "lifecycleErrors": [e.to_dict() for e in self.lifecycle_errors],
        }


class PubSubScenario:
    """
    Publish on node A, observe on node B.

    Key material created on A is installed on B, B registers a filter for the
    topic, A posts, and B is polled until the message shows up or
    ``delivery_timeout`` elapses. Delivery within that bound is asserted.
    A second filter registered on B after the post is polled once and its
    result recorded; seeing nothing there is legitimate.

    The first failing step stops the sequence. Supervised nodes are always
    shut down and reaped afterwards, and their lifecycle errors are reported
    alongside (never instead of) the scenario result.
    """

    def __init__(
        self,
        publisher: ShhClient,
        subscriber: ShhClient,
        *,
        settings: ScenarioConfig | None = None,
        supervisors: Sequence[NodeSupervisor] = (),
    ):
        self.publisher = publisher
        self.subscriber = subscriber
        self.settings = settings or ScenarioConfig()
        self.supervisors = list(supervisors)
        self._launched: list[NodeSupervisor] = []

    def envelope(self) -> MessageEnvelope:
        s = self.settings
        return MessageEnvelope.from_text(s.topic, s.payload, pow_target=s.pow_target, pow_time=s.pow_time, ttl=s.ttl)

    async def run(self) -> ScenarioReport:
        report = ScenarioReport()
        envelope = self.envelope()
        try:
            await self._step(report, "start_nodes", self._start_nodes())
            key_a = await self._step(report, "create_key", self.publisher.create_symmetric_key())
            report.publisher_key_id = key_a
            material = await self._step(report, "fetch_key", self.publisher.fetch_symmetric_key(key_a))
            key_b = await self._step(report, "install_key", self.subscriber.install_symmetric_key(material))
            report.subscriber_key_id = key_b
            report.filter_id = await self._step(
                report, "register_filter", self.subscriber.register_filter(key_b, [envelope.topic])
            )
            report.post_ack = await self._step(report, "post_message", self._post(key_a, envelope))
            await self._step(report, "await_delivery", self._await_delivery(report, report.filter_id, envelope))
            if self.settings.check_late_filter:
                await self._step(report, "late_filter", self._late_filter(report, key_b, envelope))
            report.ok = True
        except ScenarioError as exc:
            report.failed_step = exc.step
            report.error = exc
            logger.error("scenario failed at {}: {}", exc.step, exc.message)
        finally:
            await self._teardown(report)
        if report.ok:
            logger.info("scenario passed: {} message(s) observed after {} poll(s)", len(report.received), report.polls)
        return report

    async def _step(self, report: ScenarioReport, name: str, action: Awaitable[Any]) -> Any:
        logger.info("step {}", name)
        try:
            result = await action
        except ScenarioError:
            raise
        except WnodeProbeError as exc:
            raise ScenarioError(name, str(exc), cause=exc) from exc
        report.steps.append(name)
        return result

    async def _start_nodes(self) -> None:
        for supervisor in self.supervisors:
            supervisor.launch()
            self._launched.append(supervisor)
        outcomes = await asyncio.gather(*(s.wait_ready() for s in self.supervisors), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _post(self, key_id: str, envelope: MessageEnvelope) -> PostAck:
        ack = await self.publisher.post_message(key_id, envelope)
        if not ack.accepted:
            raise ScenarioError("post_message", "node did not accept the message", code="POST_REJECTED")
        return ack

    async def _await_delivery(self, report: ScenarioReport, filter_id: str, envelope: MessageEnvelope) -> None:
        loop = asyncio.get_running_loop()
        timeout = self.settings.delivery_timeout
        deadline = loop.time() + timeout
        seen: set[str] = set()
        while True:
            batch = await self.subscriber.poll_filter(filter_id)
            report.polls += 1
            for message in batch:
                if message.hash and message.hash in seen:
                    raise ScenarioError(
                        "await_delivery",
                        f"message {message.hash} returned twice by filter {filter_id}",
                        code="DUPLICATE_DELIVERY",
                    )
                if message.hash:
                    seen.add(message.hash)
                report.received.append(message)
            if any(m.matches(envelope) for m in report.received):
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ScenarioError(
                    "await_delivery",
                    f"message not observed within {timeout}s ({report.polls} polls)",
                    code="DELIVERY_TIMEOUT",
                )
            await asyncio.sleep(min(self.settings.poll_interval, remaining))

    async def _late_filter(self, report: ScenarioReport, key_id: str, envelope: MessageEnvelope) -> None:
        report.late_filter_id = await self.subscriber.register_filter(key_id, [envelope.topic])
        report.late_messages = await self.subscriber.poll_filter(report.late_filter_id)
        logger.info("late filter observed {} message(s)", len(report.late_messages))

    async def _teardown(self, report: ScenarioReport) -> None:
        if not self._launched:
            return
        logger.info("step teardown")
        for supervisor in self._launched:
            supervisor.request_shutdown()
        exits = await asyncio.gather(*(s.wait_terminated() for s in self._launched))
        report.exits.extend(exits)
        for supervisor in self._launched:
            report.lifecycle_errors.extend(supervisor.errors)
        if report.lifecycle_errors:
            logger.warning("teardown finished with {} lifecycle error(s)", len(report.lifecycle_errors))
