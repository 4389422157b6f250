"""
Radish Session — The Supervisor

It is NOT smart. It is deterministic.

Responsibilities:
  - Load the policy (falling back to conservative defaults)
  - Checkpoint the starting state
  - Start the agent and, beside it, the monitoring loop
  - Every interval: checkpoint, then detect violations
  - Apply the policy's on_violation action
  - Enforce the timeout
  - Finalize exactly once: final checkpoint, ledger flush, summary

State machine:
    INIT → RUNNING → STOPPED | COMPLETED | TIMED_OUT | FAILED

Two threads touch a session: the lifecycle driver (whoever calls
run()) and the monitor thread. Both mutate state only while holding
the session lock, and terminal transitions are requested through
_request_terminal() and applied once by the driver. If a timeout and
a violation stop land in the same evaluation, TIMED_OUT wins.
"""

from __future__ import annotations

import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from loguru import logger

from radish.agents import AgentAdapter, AgentAdapterError, AgentContext
from radish.agents.commands import CommandLog
from radish.cancel import CancelToken
from radish.config_loader import ConfigError, RadishConfig
from radish.governance import DetectionResult, OnViolation, Policy, Violation, ViolationDetector
from radish.ledger import AuditLedger, SessionMetadata
from radish.summary import write_summary
from radish.telemetry import Telemetry, TelemetryEvent
from radish.workspace import (
    ChangeInspector,
    ChangeSet,
    Checkpoint,
    CheckpointError,
    CheckpointManager,
    CheckpointTrigger,
    GitRepo,
)


class SessionStatus(str, Enum):
    INIT = "init"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SessionStatus.STOPPED,
    SessionStatus.COMPLETED,
    SessionStatus.TIMED_OUT,
    SessionStatus.FAILED,
})

EXIT_CODES = {
    SessionStatus.COMPLETED: 0,
    SessionStatus.FAILED: 1,
    SessionStatus.STOPPED: 2,
    SessionStatus.TIMED_OUT: 124,
}


class TimeoutExceeded(Exception):
    """The session outlived its timeout with the agent still running."""


def new_session_id(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"session-{now:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


@dataclass
class SessionResult:
    session_id: str
    status: SessionStatus
    session_dir: Path
    reason: str | None = None
    violations: list[Violation] = field(default_factory=list)
    checkpoints: list[Checkpoint] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 1)


class Session:
    """
    One supervised agent run.

    Usage:
        session = Session(task, agent, config=config, repo_path=repo)
        result = session.run()       # blocks until a terminal state
        sys.exit(result.exit_code)

    session.stop() may be called from any thread (signal handlers
    included) to end the run as STOPPED.
    """

    # How often the driver checks on the agent
    POLL_INTERVAL = 0.1
    # Upper bound on waiting for an in-flight monitoring cycle
    MONITOR_JOIN_TIMEOUT = 120.0

    def __init__(
        self,
        task: str,
        agent: AgentAdapter,
        config: RadishConfig | None = None,
        repo_path: Path | None = None,
        policy: Policy | None = None,
        telemetry: Telemetry | None = None,
        session_id: str | None = None,
    ):
        self.config = config or RadishConfig()
        self.id = session_id or new_session_id()
        self.task = task
        self.agent = agent
        self.agent_kind = getattr(agent, "kind", None) or self.config.session.agent
        self.timeout = self.config.session.timeout
        self.checkpoint_interval = self.config.session.checkpoint_interval
        self.working_directory = (repo_path or Path.cwd()).resolve()
        self.status = SessionStatus.INIT
        self.started_at: datetime | None = None
        self.base_revision: str | None = None
        self.reason: str | None = None

        sessions_dir = Path(self.config.logging.sessions_dir).expanduser()
        if not sessions_dir.is_absolute():
            sessions_dir = self.working_directory / sessions_dir
        self.session_dir = sessions_dir / self.id

        self._policy = policy
        self.policy: Policy | None = None
        self.detector: ViolationDetector | None = None

        repo = GitRepo(self.working_directory, exclude=[sessions_dir])
        self.checkpoints = CheckpointManager(repo, self.id)
        self.inspector = ChangeInspector(repo)
        self.ledger = AuditLedger(self.session_dir, self.id)
        self.command_log = CommandLog(self.session_dir / "commands.log")
        self.telemetry = telemetry or Telemetry(
            endpoint=self.config.telemetry.endpoint,
            enabled=self.config.telemetry_enabled,
            timeout=self.config.telemetry.timeout,
        )

        self._token = CancelToken()
        self._lock = threading.RLock()
        self._requested: tuple[SessionStatus, str] | None = None
        self._finalized = False
        self._deadline: float | None = None
        self._monitor_thread: threading.Thread | None = None
        self._reported_commands: frozenset[str] = frozenset()
        self._log_sink: int | None = None

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def run(self) -> SessionResult:
        """Drive the session to a terminal state. Always finalizes."""
        outcome, reason = SessionStatus.FAILED, "session aborted"
        try:
            self._initialize()
            self._start()
            outcome, reason = self._supervise()
        except TimeoutExceeded as e:
            outcome, reason = SessionStatus.TIMED_OUT, str(e)
        except KeyboardInterrupt:
            logger.warning("[SESSION] Interrupted by operator")
            outcome, reason = SessionStatus.STOPPED, "interrupted"
        except AgentAdapterError as e:
            logger.error(f"[SESSION] Agent failed: {e}")
            outcome, reason = SessionStatus.FAILED, str(e)
        except Exception as e:
            logger.exception("[SESSION] Internal error")
            outcome, reason = SessionStatus.FAILED, f"internal error: {e}"
        finally:
            self._finalize(outcome, reason)

        return self.result()

    def stop(self, reason: str = "stopped by operator") -> None:
        """Request a STOPPED ending. Safe from any thread."""
        self._request_terminal(SessionStatus.STOPPED, reason)

    def result(self) -> SessionResult:
        return SessionResult(
            session_id=self.id,
            status=self.status,
            session_dir=self.session_dir,
            reason=self.reason,
            violations=self.ledger.violations,
            checkpoints=self.ledger.checkpoints,
        )

    def _initialize(self) -> None:
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self._log_sink = logger.add(
            self.session_dir / "session.log",
            level="DEBUG",
            format="[{time:YYYY-MM-DD HH:mm:ss}] [{level}] {message}",
        )
        logger.info(f"[SESSION] Initializing {self.id}")

        self.policy = self._resolve_policy()
        if self.config.source and self.config.source.is_file():
            shutil.copyfile(self.config.source, self.session_dir / "config.yaml")
        self.command_log.touch()
        self.started_at = datetime.now(timezone.utc)

        self._checkpoint("Session start", CheckpointTrigger.MANUAL)
        if self.checkpoints.available:
            self.base_revision = self.checkpoints.last_revision
            root = self.checkpoints.repo.toplevel
        else:
            logger.warning("[SESSION] No git repository: running without checkpoints or rollback")
            root = self.working_directory
        self.detector = ViolationDetector(self.policy, root)

        self.ledger.write_metadata(SessionMetadata(
            session_id=self.id,
            started_at=self.started_at,
            task=self.task,
            agent=self.agent_kind,
            timeout=self.timeout,
            checkpoint_interval=self.checkpoint_interval,
            working_directory=str(self.working_directory),
            base_revision=self.base_revision,
            git_branch=self._branch(),
        ))
        logger.info(f"[SESSION] Task: {self.task}")
        logger.info(f"[SESSION] Agent: {self.agent_kind} | Timeout: {self.timeout:g}s | "
                    f"Interval: {self.checkpoint_interval:g}s")

    def _start(self) -> None:
        context = AgentContext(
            session_id=self.id,
            task=self.task,
            working_dir=self.working_directory,
            command_log=self.command_log.path,
            timeout=self.timeout,
            checkpoint_interval=self.checkpoint_interval,
        )
        self._deadline = time.monotonic() + self.timeout
        self.agent.start(self._token, context)

        with self._lock:
            self._transition(SessionStatus.RUNNING, "agent started")

        self._monitor_thread = threading.Thread(
            target=self._monitor, name=f"radish-monitor-{self.id}", daemon=True
        )
        self._monitor_thread.start()

    def _supervise(self) -> tuple[SessionStatus, str]:
        """Wait for the agent, a requested ending, or the deadline."""
        while True:
            requested = self._pending()
            if requested is not None:
                status, reason = requested
                if status is SessionStatus.STOPPED and self._deadline_passed():
                    return SessionStatus.TIMED_OUT, f"timeout of {self.timeout:g}s reached"
                return status, reason

            code = self.agent.poll()
            if code is not None:
                if code == 0:
                    return SessionStatus.COMPLETED, "agent finished"
                raise AgentAdapterError(f"Agent exited with code {code}")

            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutExceeded(f"timeout of {self.timeout:g}s reached")
            self._token.wait(min(self.POLL_INTERVAL, remaining))

    def _finalize(self, status: SessionStatus, reason: str) -> None:
        with self._lock:
            if self._finalized:
                return
            self._finalized = True

        self._token.cancel(reason)
        try:
            if self.agent.poll() is None:
                logger.info(f"[SESSION] Terminating agent ({reason})")
                self.agent.terminate()
        except Exception as e:
            logger.warning(f"[SESSION] Agent terminate failed: {e}")

        monitor = self._monitor_thread
        if monitor is not None and monitor is not threading.current_thread():
            monitor.join(self.MONITOR_JOIN_TIMEOUT)

        with self._lock:
            logger.info("[SESSION] Cleaning up session...")
            self._transition(status, reason)

            result: DetectionResult | None = None
            try:
                result = self._evaluate("Final checkpoint", CheckpointTrigger.FINAL)
            except Exception:
                logger.exception("[SESSION] Final evaluation failed")

            self.ledger.record_finalized(self.status.value)
            self.telemetry.send(self._telemetry_event("session_end", result, final=True))
            self._flush()
            try:
                write_summary(self.ledger, self.session_dir / "summary.md", self.status.value, reason, self.policy)
            except OSError as e:
                logger.error(f"[SESSION] Could not write summary: {e}")

            logger.info(f"[SESSION] Session {self.id} {self.status.value}")
            logger.info(f"[SESSION] Logs available at: {self.session_dir}")

        # Daemon senders die with the interpreter
        self.telemetry.drain(self.telemetry.timeout)

        if self._log_sink is not None:
            logger.remove(self._log_sink)
            self._log_sink = None

    # -----------------------------------------------------------------------
    # Monitoring
    # -----------------------------------------------------------------------

    def _monitor(self) -> None:
        while not self._token.wait(self.checkpoint_interval):
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("[SESSION] Monitoring cycle failed")
                self._request_terminal(SessionStatus.FAILED, f"monitoring error: {e}")
                return

    def run_cycle(self) -> list[Violation]:
        """One monitoring cycle: checkpoint, detect, record, act."""
        with self._lock:
            if self._finalized or self.status is not SessionStatus.RUNNING:
                return []

            result = self._evaluate("Periodic checkpoint", CheckpointTrigger.PERIODIC)
            self.telemetry.send(self._telemetry_event("checkpoint", result))
            self._flush()

            if result.violations:
                self._apply_action(result.violations)
            return result.violations

    def _evaluate(self, message: str, trigger: CheckpointTrigger) -> DetectionResult:
        """Checkpoint first, then judge the state that was just captured."""
        previous = self._last_revision()
        captured = self._checkpoint(message, trigger)

        # Uncaptured changes are judged by the next cycle that captures them
        changes = self._inspect(previous) if captured else ChangeSet.empty()
        totals = self._inspect(self.base_revision)
        for record in changes.records():
            self.ledger.record_change(record)
        for command in self.command_log.read_new():
            self.ledger.record_command(command)

        if self.detector is None:
            return DetectionResult(reported_commands=self._reported_commands)

        result = self.detector.evaluate(
            changes, totals, self.command_log.read(), self._reported_commands
        )
        self._reported_commands = result.reported_commands
        for violation in result.violations:
            self.ledger.record_violation(violation)
        return result

    def _apply_action(self, violations: list[Violation]) -> None:
        action = self.policy.on_violation if self.policy else OnViolation.STOP
        kinds = ", ".join(sorted({v.kind.value for v in violations}))
        self.ledger.record_event("violation_action", {"action": action.value, "count": len(violations)})

        if action is OnViolation.STOP:
            if self._deadline_passed():
                self._request_terminal(SessionStatus.TIMED_OUT, f"timeout of {self.timeout:g}s reached")
            else:
                logger.error(f"[SESSION] Violation detected ({kinds})! Stopping session.")
                self._request_terminal(SessionStatus.STOPPED, f"violation: {kinds}")
        elif action is OnViolation.WARN:
            logger.warning(f"[SESSION] Violation detected ({kinds}), continuing (warn)")
        else:
            logger.warning(f"[SESSION] Violation detected ({kinds}), checkpointed, continuing")

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    def _request_terminal(self, status: SessionStatus, reason: str) -> None:
        with self._lock:
            current = self._requested
            if current is None or (
                status is SessionStatus.TIMED_OUT and current[0] is SessionStatus.STOPPED
            ):
                self._requested = (status, reason)
        self._token.cancel(reason)

    def _pending(self) -> tuple[SessionStatus, str] | None:
        with self._lock:
            return self._requested

    def _transition(self, status: SessionStatus, reason: str | None = None) -> None:
        if self.status.terminal:
            logger.debug(f"[SESSION] Ignoring transition to {status.value}: already {self.status.value}")
            return
        previous = self.status
        self.status = status
        if status.terminal:
            self.reason = reason
        self.ledger.record_event("status", {"from": previous.value, "to": status.value, "reason": reason})
        logger.info(f"[SESSION] {previous.value} → {status.value}" + (f" ({reason})" if reason else ""))

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _resolve_policy(self) -> Policy:
        if self._policy is not None:
            return self._policy
        try:
            return self.config.policy()
        except ConfigError as e:
            logger.warning(f"[SESSION] {e}")
            logger.warning("[SESSION] Falling back to the conservative default policy")
            return Policy.defaults()

    def _checkpoint(self, message: str, trigger: CheckpointTrigger) -> bool:
        """Checkpoint the working tree. False when git refused."""
        try:
            cp = self.checkpoints.checkpoint(message, trigger)
        except CheckpointError as e:
            logger.warning(f"[CHECKPOINT] Skipped '{message}': {e}")
            self.ledger.record_event("checkpoint_failed", {"message": message, "error": str(e)})
            return False
        if cp is not None:
            self.ledger.record_checkpoint(cp)
        return True

    def _last_revision(self) -> str | None:
        try:
            return self.checkpoints.last_revision
        except CheckpointError:
            return None

    def _inspect(self, from_ref: str | None) -> ChangeSet:
        if not self.checkpoints.available:
            return ChangeSet.empty()
        try:
            return self.inspector.inspect(from_ref)
        except CheckpointError as e:
            logger.warning(f"[INSPECT] Could not diff working tree: {e}")
            return ChangeSet.empty()

    def _branch(self) -> str | None:
        if not self.checkpoints.available:
            return None
        try:
            return self.checkpoints.repo.git("rev-parse", "--abbrev-ref", "HEAD").strip() or None
        except CheckpointError:
            return None

    def _flush(self) -> None:
        try:
            self.ledger.flush()
        except OSError as e:
            logger.error(f"[LEDGER] Flush failed: {e}")

    def _telemetry_event(
        self, event_type: str, result: DetectionResult | None, final: bool = False
    ) -> TelemetryEvent:
        violations = self.ledger.violations if final else (result.violations if result else [])
        return TelemetryEvent(
            session_id=self.id,
            event_type=event_type,
            task=self.task,
            agent=self.agent_kind,
            timeout_seconds=self.timeout,
            check_results=result.check_results() if result else {},
            violations=[v.to_record() for v in violations],
        )
