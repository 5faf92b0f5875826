"""Integration tests: full build -> render -> deploy runs against fakes.

Covers the success path, push failures exhausting the retry budget,
rejected and timed-out rollouts, cancellation while a rollout is in
progress, parallel stages, and last-known-good reporting.
"""

from __future__ import annotations

import threading

import pytest

from shipyard.core.orchestrator import request_cancel
from shipyard.core.run_ledger import RunLedger
from shipyard.errors import PushFailedError
from shipyard.models.pipeline import PipelineSpec, RetryPolicy
from shipyard.models.run import RunStatus, Trigger
from shipyard.models.stages import StageDefinition, StageStatus
from tests.fakes import FakeBuilder, FakeCluster, FakeRegistry, fake_digest

MAIN = Trigger(branch="main", commit="4f2a9c1e0b7d")


class TestSuccessfulRun:
    """build context -> myapp, run 42 -> reg.example.com/myapp:42, rollout ready."""

    def test_end_to_end(self, make_orchestrator):
        cluster = FakeCluster(ready_after=2)
        orch = make_orchestrator(cluster_client=cluster)

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.SUCCEEDED
        assert report.exit_code == 0
        assert report.variables["imageTag"] == "42"
        assert report.variables["imageRef"] == "reg.example.com/myapp:42"
        assert report.variables["imageDigest"] == fake_digest("reg.example.com/myapp:42")
        assert report.published_image == "reg.example.com/myapp:42"
        assert report.rollout_summary == "deployment/myapp 2/2"
        assert report.failed_stage is None
        assert [s.status for s in report.stages] == [StageStatus.SUCCEEDED] * 3

        [stream] = cluster.applied
        assert "image: reg.example.com/myapp:42" in stream
        assert "<IMAGE_PLACEHOLDER>" not in stream

    def test_ledger_records_the_run(self, make_orchestrator):
        orch = make_orchestrator()
        report = orch.run(MAIN, "42")

        assert orch.ledger.verify_chain(report.run_id) is True
        transitions = [
            (e.stage_id, e.state_transition) for e in orch.ledger.get_run_entries(report.run_id)
        ]
        assert transitions == [
            ("__run__", "none->pending"),
            ("__run__", "pending->running"),
            ("build", "pending->running"),
            ("build", "running->succeeded"),
            ("render", "pending->running"),
            ("render", "running->succeeded"),
            ("deploy", "pending->running"),
            ("deploy", "running->succeeded"),
            ("__run__", "running->succeeded"),
        ]

    def test_rendered_manifests_stored(self, make_orchestrator):
        orch = make_orchestrator()
        report = orch.run(MAIN, "42")

        refs = report.stage("render").artifact_refs
        assert len(refs) == 2
        deployment = orch.artifact_store.retrieve(refs[0]).decode()
        assert "image: reg.example.com/myapp:42" in deployment
        assert report.stage("deploy").artifact_refs == refs

    def test_transient_push_failure_recovers(self, make_orchestrator):
        registry = FakeRegistry(errors=[PushFailedError("503"), PushFailedError("503")])
        builder = FakeBuilder()
        orch = make_orchestrator(registry_client=registry, builder=builder)

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.SUCCEEDED
        assert report.stage("build").attempts == 3
        assert len(builder.builds) == 1


class TestFailedRuns:
    def test_push_fails_three_times(self, make_orchestrator):
        """PushFailed x3 with retry limit 3: build fails, deploy never starts."""
        registry = FakeRegistry(errors=[PushFailedError("connection reset")] * 3)
        cluster = FakeCluster()
        orch = make_orchestrator(registry_client=registry, cluster_client=cluster)

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.exit_code == 1
        assert report.failed_stage == "build"
        assert report.error_kind == "PushFailed"
        assert registry.attempts == 3
        assert report.stage("build").attempts == 3
        assert report.stage("render").status == StageStatus.BLOCKED
        assert report.stage("deploy").status == StageStatus.BLOCKED
        assert cluster.applied == []
        deploy_history = orch.ledger.get_stage_history(report.run_id, "deploy")
        assert [e.state_transition for e in deploy_history] == ["pending->blocked"]
        assert report.published_image is None

    def test_build_failure_not_retried(self, make_orchestrator):
        from shipyard.errors import BuildFailedError

        builder = FakeBuilder(errors=[BuildFailedError("COPY failed: no such file")])
        orch = make_orchestrator(builder=builder)

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.error_kind == "BuildFailed"
        assert report.stage("build").attempts == 1
        assert len(builder.builds) == 1

    def test_apply_rejected_reports_published_image(self, make_orchestrator):
        cluster = FakeCluster(reject=True)
        orch = make_orchestrator(cluster_client=cluster)

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.failed_stage == "deploy"
        assert report.error_kind == "ApplyRejected"
        assert report.stage("deploy").attempts == 1
        # partial success: the pushed image is reported, not lost
        assert report.published_image == "reg.example.com/myapp:42"
        assert report.last_known_good is None

    def test_rollout_timeout_retried_then_failed(self, make_orchestrator, pipeline: PipelineSpec):
        cluster = FakeCluster(ready_after=10**9)
        orch = make_orchestrator(
            cluster_client=cluster,
            pipeline=pipeline.model_copy(
                update={
                    "rollout_timeout": 0.05,
                    "retry": RetryPolicy(retry_limit=2, base_delay=0.0, max_delay=0.0),
                }
            ),
        )

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.error_kind == "RolloutTimeout"
        assert report.stage("deploy").attempts == 2
        assert len(cluster.applied) == 2

    def test_unreachable_cluster_retried(self, make_orchestrator):
        cluster = FakeCluster(unreachable_applies=1)
        report = make_orchestrator(cluster_client=cluster).run(MAIN, "42")

        assert report.status == RunStatus.SUCCEEDED
        assert report.stage("deploy").attempts == 2
        assert len(cluster.applied) == 1

    def test_last_known_good_surfaced(self, make_orchestrator):
        good = make_orchestrator().run(MAIN, "41")
        assert good.status == RunStatus.SUCCEEDED

        report = make_orchestrator(cluster_client=FakeCluster(reject=True)).run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.published_image == "reg.example.com/myapp:42"
        assert report.last_known_good == "reg.example.com/myapp:41"


class TestCancellation:
    def test_cancel_during_rollout_wait(self, make_orchestrator):
        """The rollout wait finishes; the run then reports Aborted."""
        holder: dict = {}

        def cancel_on_first_poll(polls: int) -> None:
            if polls == 1:
                holder["orch"].cancel(holder["run_id"])

        cluster = FakeCluster(ready_after=3, on_poll=cancel_on_first_poll)
        orch = make_orchestrator(cluster_client=cluster)
        run = orch.create_run(MAIN, "42")
        holder.update(orch=orch, run_id=run.run_id)

        report = orch.execute(run)

        assert report.status == RunStatus.ABORTED
        assert report.exit_code == 2
        assert cluster.polls == 4  # the wait ran to readiness
        assert report.stage("deploy").status == StageStatus.SUCCEEDED
        assert report.rollout_summary == "deployment/myapp 2/2"
        assert report.cancel_requested is True
        assert report.failed_stage is None

    def test_cancel_from_another_process(self, make_orchestrator, settings):
        """A cancel written by a separate ledger handle stops the next stage."""
        holder: dict = {}

        class CancellingBuilder(FakeBuilder):
            def build(self, context, ref):
                request_cancel(RunLedger(settings.ledger_path), holder["run_id"])
                return super().build(context, ref)

        cluster = FakeCluster()
        orch = make_orchestrator(builder=CancellingBuilder(), cluster_client=cluster)
        run = orch.create_run(MAIN, "42")
        holder["run_id"] = run.run_id

        report = orch.execute(run)

        assert report.status == RunStatus.ABORTED
        assert report.stage("build").status == StageStatus.SUCCEEDED
        assert report.stage("render").status == StageStatus.PENDING
        assert cluster.applied == []
        assert report.published_image == "reg.example.com/myapp:42"


class TestStageGraphExecution:
    def test_independent_stages_run_concurrently(self, make_orchestrator):
        barrier = threading.Barrier(2, timeout=5)

        def rendezvous(ctx):
            barrier.wait()
            return {f"{ctx.stage_id}Done": "true"}

        orch = make_orchestrator()
        orch.register_stage(
            StageDefinition(stage_id="scan", display_name="Image Scan", depends_on=["build"]),
            rendezvous,
        )
        orch.register_stage(
            StageDefinition(stage_id="sbom", display_name="SBOM", depends_on=["build"]),
            rendezvous,
        )

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.SUCCEEDED
        assert report.variables["scanDone"] == "true"
        assert report.variables["sbomDone"] == "true"

    def test_outputs_visible_to_later_stages(self, make_orchestrator):
        seen: dict[str, str] = {}

        def smoke(ctx):
            seen.update(ctx.variables)

        orch = make_orchestrator()
        orch.register_stage(
            StageDefinition(stage_id="smoke", display_name="Smoke Test", depends_on=["deploy"]),
            smoke,
        )
        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.SUCCEEDED
        assert seen["imageTag"] == "42"
        assert seen["rolloutReady"] == "true"

    def test_variables_are_write_once(self, make_orchestrator):
        orch = make_orchestrator()
        orch.register_stage(
            StageDefinition(stage_id="retag", display_name="Retag", depends_on=["deploy"]),
            lambda ctx: {"imageTag": "latest"},
        )

        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.failed_stage == "retag"
        assert report.error_kind == "VariableAlreadySet"
        assert report.variables["imageTag"] == "42"

    def test_unexpected_handler_error(self, make_orchestrator):
        def broken(ctx):
            raise KeyError("missing")

        orch = make_orchestrator()
        orch.register_stage(
            StageDefinition(stage_id="notify", display_name="Notify", depends_on=["deploy"]),
            broken,
        )
        report = orch.run(MAIN, "42")

        assert report.status == RunStatus.FAILED
        assert report.error_kind == "Unexpected"
        assert report.stage("notify").attempts == 1

    @pytest.mark.parametrize("branch", ["main", "release"])
    def test_watched_branches(self, make_orchestrator, branch: str):
        report = make_orchestrator().run(Trigger(branch=branch), None)
        assert report.status == RunStatus.SUCCEEDED
        assert report.trigger.branch == branch
