# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from agent_loop.config import CriticalityBand, ProgressiveConfig, QualityGates
from agent_loop.events import EventBus
from agent_loop.loop import ProgressiveAgentLoop, check_convergence, check_quality_gates
from agent_loop.loop.progressive import build_report, satisfaction_by_band
from agent_loop.types.event_types import EventType
from agent_loop.types.loop_types import (
    BandMetrics,
    FeedbackReport,
    FinalMetrics,
    ProgressiveIterationRecord,
    ProgressiveSummary,
)


def record(iteration, satisfaction, band=(4, 4), passed=True, ratings=None):
    return ProgressiveIterationRecord(
        run_id="run_test",
        iteration=iteration,
        band_min=band[0],
        band_max=band[1],
        metrics=BandMetrics(
            average_satisfaction=satisfaction,
            recommendation_rate=80,
            completion_rate=1.0,
            module_ratings=ratings or {},
        ),
        quality_gates_passed=passed,
    )


def two_band_config(**overrides):
    defaults = dict(
        max_iterations=3,
        min_iterations=2,
        criticality_bands=[CriticalityBand(min=4, max=4), CriticalityBand(min=6, max=6)],
        convergence_window=2,
        questions_per_simulation=2,
        seed=3,
    )
    defaults.update(overrides)
    return ProgressiveConfig(**defaults)


class TestProgressiveConfig:
    def test_default_bands(self):
        config = ProgressiveConfig()
        assert [b.label for b in config.criticality_bands] == ["4-4", "5-5", "6-6", "7-7", "8-8", "9-9", "10-10"]
        assert config.criticality_bands[-1].weight == 0.10

    def test_bands_cycle(self):
        config = two_band_config()
        assert [config.band_for(i).label for i in (1, 2, 3)] == ["4-4", "6-6", "4-4"]

    def test_band_target_is_midpoint(self):
        assert CriticalityBand(min=4, max=7).target == 5.5

    @pytest.mark.parametrize(
        "kwargs",
        [{"criticality_bands": []}, {"max_iterations": 0}, {"convergence_window": 1}],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ProgressiveConfig(**kwargs)


class TestQualityGates:
    def test_all_pass(self):
        metrics = BandMetrics(average_satisfaction=8.5, completion_rate=1.0, hint_usage_rate=0.1)
        assert check_quality_gates(metrics, ProgressiveConfig()) == []

    def test_every_failure_reported(self):
        metrics = BandMetrics(average_satisfaction=7.0, completion_rate=0.5, hint_usage_rate=0.5)
        assert check_quality_gates(metrics, ProgressiveConfig()) == [
            "Satisfaction 7.0 < 8",
            "Hint usage 50% > 30%",
            "Completion rate 50% < 90%",
        ]

    def test_custom_gates(self):
        config = ProgressiveConfig(quality_gates=QualityGates(min_satisfaction_per_band=6))
        metrics = BandMetrics(average_satisfaction=7.0, completion_rate=1.0)
        assert check_quality_gates(metrics, config) == []


class TestCheckConvergence:
    def test_not_enough_iterations(self):
        config = ProgressiveConfig(convergence_window=3)
        assert check_convergence([record(1, 8), record(2, 8)], config) == (False, "Not enough iterations")

    def test_still_improving(self):
        config = ProgressiveConfig(convergence_window=2)
        assert check_convergence([record(1, 7), record(2, 8)], config) == (False, "Metrics still improving")

    def test_stable_at_target(self):
        config = ProgressiveConfig(convergence_window=2, target_satisfaction=9)
        converged, reason = check_convergence([record(1, 6), record(2, 9.1), record(3, 9.2)], config)
        assert converged
        assert reason == "Target satisfaction 9 reached with stable metrics"

    def test_stable_below_target(self):
        config = ProgressiveConfig(convergence_window=2, target_satisfaction=9)
        converged, reason = check_convergence([record(1, 7.5), record(2, 7.6)], config)
        assert converged
        assert reason == "Metrics stabilized but below target (7.5 < 9)"


class TestReport:
    def test_satisfaction_by_band(self, feedback_factory):
        def report(score):
            return FeedbackReport(
                persona_id="p", simulation_id="s", iteration=1, **feedback_factory(satisfaction=score)
            )

        records = [record(1, 0, band=(4, 4)), record(2, 0, band=(6, 6)), record(3, 0, band=(4, 4))]
        reports = {1: [report(8)], 2: [report(6), report(7)], 3: [report(9)]}
        assert satisfaction_by_band(records, reports) == {"4-4": 8.5, "6-6": 6.5}

    def test_build_report(self):
        config = ProgressiveConfig()
        summary = ProgressiveSummary(
            run_id="run_test",
            total_iterations=2,
            converged=True,
            convergence_reason="Metrics stabilized",
            target_met=False,
            final_metrics=FinalMetrics(average_satisfaction=7.5, recommendation_rate=80),
            satisfaction_by_band={"4-4": 8.0, "6-6": 7.0},
            iterations=[
                record(1, 8.0, band=(4, 4), ratings={"hint_system": 7}),
                record(2, 7.0, band=(6, 6), passed=False, ratings={"hint_system": 9}),
            ],
        )

        text = build_report(summary, config)

        assert "## Result: TARGET NOT MET" in text
        assert "- **Converged**: Yes (Metrics stabilized)" in text
        assert "| 1 | 4-4 | 8.0/10 | 80% | PASS |" in text
        assert "| 2 | 6-6 | 7.0/10 | 80% | FAIL |" in text
        assert "- **Best Performance**: Iteration 1 (Band 4-4) with 8.0/10 satisfaction" in text
        assert "- **Worst Performance**: Iteration 2 (Band 6-6) with 7.0/10 satisfaction" in text
        assert "- **hint_system**: 8.0/10" in text
        assert "- **6-6**: 7.0/10" in text


class TestProgressiveAgentLoop:
    def test_band_targets_need_every_band(self, scripted, repo, handler_factory):
        loop = ProgressiveAgentLoop(two_band_config(), scripted(handler=handler_factory()), repo)
        assert not loop.band_targets_met({"4-4": 9.0}, 100)
        assert loop.band_targets_met({"4-4": 9.0, "6-6": 8.0}, 95)
        assert not loop.band_targets_met({"4-4": 9.0, "6-6": 7.9}, 95)
        assert not loop.band_targets_met({"4-4": 9.0, "6-6": 8.0}, 80)

    @pytest.mark.asyncio
    async def test_converges_on_stable_satisfaction(self, scripted, repo, handler_factory):
        events = EventBus()
        loop = ProgressiveAgentLoop(
            two_band_config(), scripted(handler=handler_factory(satisfaction=9)), repo, events=events
        )

        summary = await loop.run()

        assert summary.converged
        assert summary.total_iterations == 2
        assert summary.convergence_reason == "Target satisfaction 9 reached with stable metrics"
        assert summary.target_met
        assert summary.final_metrics.average_satisfaction == 9
        assert summary.final_metrics.recommendation_rate == 100
        assert summary.satisfaction_by_band == {"4-4": 9.0, "6-6": 9.0}
        assert [r.target_criticality for r in summary.iterations] == [4, 6]
        assert "TARGET MET" in summary.report

        stored = repo.get_summary(loop.run_id)
        assert stored is not None and stored.converged
        assert len(repo.list_iteration_records(loop.run_id)) == 2
        assert len(events.get_events({EventType.LOOP_CONVERGED})) == 1

    @pytest.mark.asyncio
    async def test_band_targets_end_the_run(self, scripted, repo, handler_factory):
        loop = ProgressiveAgentLoop(
            two_band_config(min_iterations=3), scripted(handler=handler_factory(satisfaction=9)), repo
        )

        summary = await loop.run()

        assert summary.converged
        assert summary.total_iterations == 2
        assert summary.convergence_reason == "Satisfaction targets met in every criticality band"

    @pytest.mark.asyncio
    async def test_low_satisfaction_runs_out(self, scripted, repo, handler_factory):
        loop = ProgressiveAgentLoop(
            two_band_config(min_iterations=3, convergence_window=2),
            scripted(handler=handler_factory(satisfaction=6, would_recommend=False)),
            repo,
        )

        summary = await loop.run()

        assert summary.total_iterations == 3
        assert not summary.target_met
        assert summary.final_metrics.recommendation_rate == 0
        assert all(not r.quality_gates_passed for r in summary.iterations)
        assert all("Satisfaction 6.0 < 8" in r.quality_gate_failures for r in summary.iterations)
        assert "TARGET NOT MET" in summary.report
