"""Pipeline orchestrator: the central coordinator for Shipyard runs.

The Orchestrator wires together the RunLedger, StageMachine, StageGraph,
ContentAddressedStore, ImagePublisher, Manifest Renderer and ClusterApplier
into one pipeline execution engine.

Lifecycle of a run::

    create_run()  preflight checks, ledger "none->pending"
    execute()     pending -> running -> {succeeded, failed, aborted}

Stages run in dependency order on a thread pool; independent stages run
concurrently.  The coordinator thread is the only writer of stage state and
run variables; worker threads only execute handlers and return outcomes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any

from shipyard.bridge.credentials import CredentialProvider, EnvCredentialProvider
from shipyard.config import ShipyardSettings
from shipyard.core.applier import ClusterApplier, ClusterClient
from shipyard.core.artifact_store import ContentAddressedStore
from shipyard.core.hasher import compute_input_hash, compute_output_hash
from shipyard.core.pipeline_run import (
    PipelineRun,
    StageContext,
    StageFailure,
    StageResult,
)
from shipyard.core.publisher import (
    ImageBuilder,
    ImagePublisher,
    RegistryClient,
    validate_build_context,
)
from shipyard.core.renderer import check_template, render
from shipyard.core.retry import RetryOutcome, execute_with_retry
from shipyard.core.run_ledger import RunLedger
from shipyard.core.stage_graph import StageGraph
from shipyard.core.stage_machine import StageMachine
from shipyard.core.template_store import ManifestTemplateStore
from shipyard.errors import (
    ConfigurationError,
    RunNotFoundError,
    TriggerIgnoredError,
    error_kind,
)
from shipyard.models.ledger import CANCEL_REQUESTED, RUN_SCOPE, LedgerEntry
from shipyard.models.pipeline import PipelineSpec, RetryPolicy
from shipyard.models.run import VALID_RUN_TRANSITIONS, RunReport, RunStatus, Trigger
from shipyard.models.stages import (
    BUILD_STAGE,
    DEFAULT_STAGE_DEFINITIONS,
    DEPLOY_STAGE,
    RENDER_STAGE,
    StageDefinition,
    StageStatus,
)
from shipyard.monitor.projection import RUN_CREATED, RunProjection

logger = logging.getLogger(__name__)

StageHandler = Callable[[StageContext], "StageResult | dict[str, str] | None"]


def request_cancel(ledger: RunLedger, run_id: str) -> bool:
    """Record a cancellation request for *run_id*.

    Returns ``False`` if the run already reached a terminal status.
    Works across processes: the executing orchestrator polls the ledger.
    """
    report = RunProjection(ledger).report(run_id)
    if report.is_terminal:
        return False
    if not report.cancel_requested:
        ledger.append(
            LedgerEntry(run_id=run_id, stage_id=RUN_SCOPE, state_transition=CANCEL_REQUESTED)
        )
    logger.info("Cancellation requested for run %s", run_id)
    return True


class Orchestrator:
    """Central pipeline orchestrator for one pipeline definition.

    Parameters
    ----------
    pipeline:
        The pipeline definition.
    settings:
        Process settings.  Uses environment-driven defaults if not provided.
    ledger, artifact_store:
        Persistence; created from settings paths if not provided.
    builder, registry_client:
        Image build/push backends.  Default to the docker CLI.
    cluster_client:
        Cluster backend.  Defaults to kubectl.
    credentials:
        Credential provider.  Defaults to environment variables.
    """

    def __init__(
        self,
        pipeline: PipelineSpec,
        settings: ShipyardSettings | None = None,
        *,
        ledger: RunLedger | None = None,
        artifact_store: ContentAddressedStore | None = None,
        builder: ImageBuilder | None = None,
        registry_client: RegistryClient | None = None,
        cluster_client: ClusterClient | None = None,
        credentials: CredentialProvider | None = None,
        cancel_poll_seconds: float = 1.0,
    ) -> None:
        self.pipeline = pipeline
        self.settings = settings or ShipyardSettings()

        self.ledger = ledger or RunLedger(self.settings.ledger_path)
        self.artifact_store = artifact_store or ContentAddressedStore(
            self.settings.artifact_store_path
        )
        self.projection = RunProjection(self.ledger)
        self.credentials = credentials or EnvCredentialProvider()

        if builder is None or registry_client is None:
            from shipyard.bridge.docker_cli import DockerCli

            docker = DockerCli(
                self.settings.docker_bin, timeout=self.settings.command_timeout_seconds
            )
            builder = builder or docker
            registry_client = registry_client or docker
        if cluster_client is None:
            from shipyard.bridge.kubectl import KubectlClient

            cluster_client = KubectlClient(
                self.credentials,
                self.settings.kubectl_bin,
                timeout=self.settings.command_timeout_seconds,
            )
        self._builder = builder
        self._registry_client = registry_client
        self.applier = ClusterApplier(
            cluster_client, poll_interval=self.settings.rollout_poll_seconds
        )

        self._definitions: list[StageDefinition] = list(DEFAULT_STAGE_DEFINITIONS)
        self._handlers: dict[str, StageHandler] = {
            BUILD_STAGE: self._build_handler,
            RENDER_STAGE: self._render_handler,
            DEPLOY_STAGE: self._deploy_handler,
        }
        self.graph = StageGraph(self._definitions)
        self.stage_machine = StageMachine(self.ledger, self.graph)

        self._runs: dict[str, PipelineRun] = {}
        self._cancel_poll_seconds = cancel_poll_seconds

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.pipeline.retry or self.settings.retry_policy

    @property
    def rollout_timeout(self) -> float:
        return self.pipeline.rollout_timeout or self.settings.rollout_timeout_seconds

    @property
    def placeholder(self) -> str:
        return self.pipeline.manifests.placeholder

    def register_stage(self, definition: StageDefinition, handler: StageHandler) -> None:
        """Add a stage to the pipeline.

        The handler receives a StageContext and returns a StageResult, a
        dict of outputs, or None.  Raises ConfigurationError if the stage id
        is taken or the resulting graph is invalid.
        """
        if definition.stage_id in self._handlers:
            raise ConfigurationError(f"Stage {definition.stage_id} is already registered")
        graph = StageGraph([*self._definitions, definition])
        self._definitions.append(definition)
        self._handlers[definition.stage_id] = handler
        self.graph = graph
        self.stage_machine = StageMachine(self.ledger, graph)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, trigger: Trigger, run_number: str | None = None) -> RunReport:
        """Create and execute a run.  Configuration errors propagate."""
        return self.execute(self.create_run(trigger, run_number))

    def create_run(self, trigger: Trigger, run_number: str | None = None) -> PipelineRun:
        """Validate everything that can be validated offline, then record the run.

        Raises ``TriggerIgnoredError`` for unwatched branches and other
        ``ConfigurationError``s for bad inputs; nothing is written to the
        ledger in either case.
        """
        if not self.pipeline.watches(trigger.branch):
            raise TriggerIgnoredError(
                f"Branch {trigger.branch!r} is not watched by pipeline "
                f"{self.pipeline.name} ({', '.join(self.pipeline.watch_branches)})"
            )

        templates = ManifestTemplateStore.from_specs(
            self.pipeline.manifests.templates, self.placeholder
        )
        for template in templates:
            check_template(template, self.placeholder)
        validate_build_context(self.pipeline.build.build_context())

        publisher = ImagePublisher(
            self._builder, self._registry_client, self.pipeline.registry, self.credentials
        )
        if run_number:
            publisher.reference_for(self.pipeline.build.image, run_number)

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        run_id = f"sy-{ts}-{uuid.uuid4().hex[:6]}"
        created = self.ledger.append_run_created(
            LedgerEntry(
                run_id=run_id,
                stage_id=RUN_SCOPE,
                state_transition=RUN_CREATED,
                detail={
                    "trigger": trigger.model_dump(),
                    "stages": [
                        {
                            "stage_id": d.stage_id,
                            "display_name": d.display_name,
                            "depends_on": list(d.depends_on),
                        }
                        for d in self.graph.definitions
                    ],
                },
            ),
            self.pipeline.name,
            run_number or None,
        )
        number = created.detail["run_number"]
        run = PipelineRun(
            run_id=run_id,
            pipeline=self.pipeline,
            trigger=trigger,
            run_number=number,
            templates=templates,
            publisher=publisher,
        )
        self.stage_machine.initialize_run(run.run_id)
        self._runs[run.run_id] = run
        logger.info(
            "Created run %s (#%s) of %s for %s@%s",
            run.run_id, number, self.pipeline.name, trigger.branch, trigger.commit[:12],
        )
        return run

    def cancel(self, run_id: str) -> bool:
        """Request cancellation; takes effect at the next stage boundary."""
        if not self.ledger.has_run(run_id):
            raise RunNotFoundError(f"Run not found: {run_id}")
        accepted = request_cancel(self.ledger, run_id)
        run = self._runs.get(run_id)
        if accepted and run is not None:
            run.cancel_event.set()
        return accepted

    def status(self, run_id: str) -> RunReport:
        return self.projection.report(run_id)

    def get_run(self, run_id: str) -> PipelineRun | None:
        return self._runs.get(run_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, run: PipelineRun) -> RunReport:
        """Drive *run* to a terminal status and return its report."""
        if self._poll_cancel(run):
            self._finish(run, RunStatus.ABORTED)
            return self.status(run.run_id)

        self._transition_run(run, RunStatus.RUNNING)
        halted = False

        with ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_parallel_stages),
            thread_name_prefix=f"shipyard-{run.run_id}",
        ) as pool:
            running: dict[Future[RetryOutcome[StageResult]], str] = {}
            while True:
                if not halted and self._poll_cancel(run):
                    logger.warning("Run %s: cancellation observed at stage boundary", run.run_id)
                    halted = True

                if not halted:
                    for stage_id in self.stage_machine.ready_stages(run.run_id):
                        running[self._start_stage(pool, run, stage_id)] = stage_id

                if not running:
                    break

                done, _ = wait(
                    running, timeout=self._cancel_poll_seconds, return_when=FIRST_COMPLETED
                )
                for future in done:
                    stage_id = running.pop(future)
                    if not self._complete_stage(run, stage_id, future.result()):
                        halted = True

        if self._poll_cancel(run):
            final = RunStatus.ABORTED
        elif run.failure is not None:
            final = RunStatus.FAILED
        else:
            states = self.stage_machine.get_all_states(run.run_id)
            all_done = all(s == StageStatus.SUCCEEDED for s in states.values())
            final = RunStatus.SUCCEEDED if all_done else RunStatus.FAILED
        self._finish(run, final)
        return self.status(run.run_id)

    def _start_stage(
        self, pool: ThreadPoolExecutor, run: PipelineRun, stage_id: str
    ) -> Future[RetryOutcome[StageResult]]:
        variables = run.variables.snapshot()
        self.stage_machine.transition(
            run.run_id,
            stage_id,
            StageStatus.RUNNING,
            input_hash=compute_input_hash(stage_id, variables),
        )
        logger.info("Run %s: stage %s started", run.run_id, stage_id)
        ctx = StageContext(
            run_id=run.run_id,
            stage_id=stage_id,
            pipeline=run.pipeline,
            variables=variables,
            objects=dict(run.objects),
            cancel_event=run.cancel_event,
        )
        handler = self._handlers[stage_id]
        return pool.submit(
            execute_with_retry,
            lambda: _normalize_result(handler(ctx)),
            self.retry_policy,
            cancel_event=run.cancel_event,
            label=f"{run.run_id}/{stage_id}",
        )

    def _complete_stage(
        self, run: PipelineRun, stage_id: str, outcome: RetryOutcome[StageResult]
    ) -> bool:
        """Record a finished stage.  Returns False if the stage failed."""
        if outcome.ok and outcome.value is not None:
            result = outcome.value
            try:
                run.variables.update(result.outputs)
            except Exception as exc:
                outcome = RetryOutcome(error=exc, attempts=outcome.attempts)
            else:
                run.objects.update(result.objects)
                self.stage_machine.transition(
                    run.run_id,
                    stage_id,
                    StageStatus.SUCCEEDED,
                    output_hash=compute_output_hash(stage_id, result.outputs),
                    artifact_references=result.artifact_refs,
                    detail={
                        "attempts": outcome.attempts,
                        "outputs": result.outputs,
                        **result.detail,
                    },
                )
                logger.info(
                    "Run %s: stage %s succeeded (attempts=%d)",
                    run.run_id, stage_id, outcome.attempts,
                )
                return True

        exc = outcome.error
        kind = error_kind(exc)
        message = str(exc)
        self.stage_machine.transition(
            run.run_id,
            stage_id,
            StageStatus.FAILED,
            output_hash=compute_output_hash(stage_id, {"error": message}),
            detail={
                "attempts": outcome.attempts,
                "error_kind": kind,
                "error_message": message,
            },
        )
        if run.failure is None:
            run.failure = StageFailure(
                stage_id=stage_id, error_kind=kind, message=message, attempts=outcome.attempts
            )
        logger.error(
            "Run %s: stage %s failed (%s, attempts=%d): %s",
            run.run_id, stage_id, kind, outcome.attempts, message,
        )
        return False

    def _poll_cancel(self, run: PipelineRun) -> bool:
        """Check the in-process event, then the ledger (another process may cancel)."""
        if run.cancel_event.is_set():
            return True
        if self.ledger.has_transition(run.run_id, RUN_SCOPE, CANCEL_REQUESTED):
            run.cancel_event.set()
            return True
        return False

    def _transition_run(
        self, run: PipelineRun, target: RunStatus, detail: dict[str, Any] | None = None
    ) -> None:
        if target not in VALID_RUN_TRANSITIONS[run.status]:
            raise RuntimeError(
                f"Run {run.run_id} cannot go from {run.status.value} to {target.value}"
            )
        self.ledger.append(
            LedgerEntry(
                run_id=run.run_id,
                stage_id=RUN_SCOPE,
                state_transition=f"{run.status.value}->{target.value}",
                detail={"pipeline": self.pipeline.name, **(detail or {})},
            )
        )
        run.status = target

    def _finish(self, run: PipelineRun, final: RunStatus) -> None:
        detail: dict[str, Any] = {
            "published_image": run.published_image.qualified if run.published_image else None,
            "image_digest": run.published_image.digest if run.published_image else None,
            "rollout_summary": run.rollout.summary if run.rollout else None,
        }
        if run.failure is not None:
            detail.update(
                failed_stage=run.failure.stage_id,
                error_kind=run.failure.error_kind,
                error_message=run.failure.message,
            )
        if final != RunStatus.SUCCEEDED:
            # Published images are left in place; point at what can be re-applied.
            detail["last_known_good"] = self.projection.last_known_good(
                self.pipeline.name, exclude_run_id=run.run_id
            )
        self._transition_run(run, final, detail)
        self._runs.pop(run.run_id, None)

        log = logger.info if final == RunStatus.SUCCEEDED else logger.warning
        log(
            "Run %s finished %s (image=%s)",
            run.run_id, final.value, detail["published_image"],
        )

    # ------------------------------------------------------------------
    # Built-in stage handlers
    # ------------------------------------------------------------------

    def _build_handler(self, ctx: StageContext) -> StageResult:
        run = self._runs[ctx.run_id]
        ref = run.publisher.publish(
            ctx.pipeline.build.build_context(), ctx.pipeline.build.image, run.run_number
        )
        # Recorded before later stages run so a deploy failure still reports it.
        run.published_image = ref
        return StageResult(
            outputs={
                "imageTag": ref.tag,
                "imageRef": ref.qualified,
                "imageDigest": ref.digest or "",
            },
            objects={"image": ref},
        )

    def _render_handler(self, ctx: StageContext) -> StageResult:
        run = self._runs[ctx.run_id]
        ref = ctx.objects["image"]
        manifests = render(run.templates.templates, ref, self.placeholder)
        refs = [self.artifact_store.store(m.content.encode("utf-8")) for m in manifests]
        return StageResult(
            outputs={"manifestCount": str(len(manifests))},
            objects={"manifests": manifests},
            artifact_refs=refs,
            detail={"manifests": {m.name: m.content_digest for m in manifests}},
        )

    def _deploy_handler(self, ctx: StageContext) -> StageResult:
        run = self._runs[ctx.run_id]
        manifests = ctx.objects["manifests"]
        result = self.applier.apply(
            manifests, ctx.pipeline.cluster, self.rollout_timeout, placeholder=self.placeholder
        )
        run.rollout = result
        return StageResult(
            outputs={"rolloutReady": "true" if result.ready else "false"},
            artifact_refs=[m.content_digest for m in manifests],
            detail={"rollout": result.summary, "elapsed_seconds": round(result.elapsed_seconds, 3)},
        )


def _normalize_result(value: StageResult | dict[str, str] | None) -> StageResult:
    if value is None:
        return StageResult()
    if isinstance(value, StageResult):
        return value
    return StageResult(outputs={k: str(v) for k, v in value.items()})
