import random
import unittest

from smartcgpa.core.errors import NotFoundError, ValidationError
from smartcgpa.core.gpa import aggregate_semester
from smartcgpa.core.grading import DEFAULT_CONFIG, GradingConfig
from smartcgpa.core.models import Subject
from smartcgpa.core.planner import (
    NOT_POSSIBLE,
    find_critical_external_marks,
    find_minimal_external_marks_for_target,
    gpa_curve,
    greedy_plan,
    marginal_gains,
    pairwise_heatmap,
)

DS = Subject("CS101", "Data Structures", 40, 60, 4)
MATHS = Subject("MA102", "Engineering Maths", 45, 80, 3)

# One mark short of the next band in each subject.
NEAR_A = Subject("A", "Algorithms", 40, 79, 4)
NEAR_B = Subject("B", "Databases", 45, 89, 3)


class CriticalValueTests(unittest.TestCase):
    def test_required_marks_per_cutoff(self):
        criticals = find_critical_external_marks(40, DEFAULT_CONFIG)
        self.assertEqual([c.required_external_marks for c in criticals], [0, 0, 20, 40, 60, 80, 100])
        by_cutoff = {c.cutoff_total: c for c in criticals}
        self.assertEqual(by_cutoff[90].grade_point, 10)
        self.assertTrue(by_cutoff[90].reachable)
        self.assertTrue(by_cutoff[40].reachable)
        self.assertFalse(by_cutoff[0].reachable)

    def test_unreachable_cutoffs_clamped(self):
        criticals = find_critical_external_marks(10, DEFAULT_CONFIG)
        by_cutoff = {c.cutoff_total: c for c in criticals}
        self.assertEqual(by_cutoff[90].required_external_marks, 100)
        self.assertFalse(by_cutoff[90].reachable)
        self.assertEqual(by_cutoff[60].required_external_marks, 100)
        self.assertTrue(by_cutoff[60].reachable)
        self.assertEqual(sorted(c.cutoff_total for c in criticals if c.reachable), [40, 50, 60])

    def test_ascending_order(self):
        values = [c.required_external_marks for c in find_critical_external_marks(23.5, DEFAULT_CONFIG)]
        self.assertEqual(values, sorted(values))


class SubjectPlannerTests(unittest.TestCase):
    def test_already_met_target_returns_current_marks(self):
        plan = find_minimal_external_marks_for_target([DS, MATHS], "MA102", 8.0, DEFAULT_CONFIG)
        self.assertTrue(plan.possible)
        self.assertEqual(plan.minimal_external_marks, 80)
        self.assertEqual(plan.current_external_marks, 80)
        self.assertEqual(plan.achieved_gpa, 8.43)

    def test_unreachable_target(self):
        weak = Subject("X1", "Weak", 10, 0, 3)
        plan = find_minimal_external_marks_for_target([weak], "X1", 10, DEFAULT_CONFIG)
        self.assertFalse(plan.possible)
        self.assertEqual(plan.minimal_external_marks, NOT_POSSIBLE)
        self.assertEqual(plan.minimal_external_marks, -1)
        self.assertEqual(plan.achieved_gpa, 4.0)

    def test_finds_smallest_mark(self):
        plan = find_minimal_external_marks_for_target([DS], "CS101", 9, DEFAULT_CONFIG)
        self.assertTrue(plan.possible)
        self.assertEqual(plan.minimal_external_marks, 80)
        self.assertEqual(plan.achieved_gpa, 9.0)

    def test_other_subjects_held_fixed(self):
        plan = find_minimal_external_marks_for_target([DS, MATHS], "CS101", 9.5, DEFAULT_CONFIG)
        self.assertEqual(plan.minimal_external_marks, 100)
        self.assertEqual(plan.achieved_gpa, 9.57)

        plan = find_minimal_external_marks_for_target([DS, MATHS], "CS101", 9.6, DEFAULT_CONFIG)
        self.assertFalse(plan.possible)

    def test_result_is_minimal(self):
        subjects = [DS, MATHS]
        plan = find_minimal_external_marks_for_target(subjects, "CS101", 9.0, DEFAULT_CONFIG)
        below = [DS.with_external_marks(plan.minimal_external_marks - 1), MATHS]
        self.assertLess(aggregate_semester(below, DEFAULT_CONFIG).gpa, 9.0)

    def test_marginal_gain_uses_current_marks(self):
        flat = find_minimal_external_marks_for_target([DS], "CS101", 9, DEFAULT_CONFIG)
        self.assertEqual(flat.marginal_gain, 0)
        edge = find_minimal_external_marks_for_target([NEAR_A], "A", 10, DEFAULT_CONFIG)
        self.assertEqual(edge.marginal_gain, 1.0)

    def test_unknown_subject(self):
        with self.assertRaises(NotFoundError):
            find_minimal_external_marks_for_target([DS], "NOPE", 9, DEFAULT_CONFIG)

    def test_inputs_not_mutated(self):
        subjects = [DS, MATHS]
        find_minimal_external_marks_for_target(subjects, "CS101", 9.5, DEFAULT_CONFIG)
        self.assertEqual(subjects, [DS, MATHS])


class GreedyPlannerTests(unittest.TestCase):
    def test_reaches_target_with_best_single_move(self):
        plan = greedy_plan([NEAR_A, NEAR_B], 9.0, DEFAULT_CONFIG)
        self.assertTrue(plan.target_reached)
        self.assertEqual(len(plan.steps), 1)
        step = plan.steps[0]
        self.assertEqual(step.subject_identifier, "A")
        self.assertEqual((step.from_external_marks, step.to_external_marks), (79, 80))
        self.assertEqual(step.increase_by, 1)
        self.assertEqual(step.resulting_gpa, 9.0)
        self.assertEqual(plan.final_gpa, 9.0)
        self.assertEqual(plan.best_attainable_gpa, 10.0)

    def test_stops_at_local_optimum(self):
        plan = greedy_plan([NEAR_A, NEAR_B], 9.5, DEFAULT_CONFIG)
        self.assertFalse(plan.target_reached)
        self.assertEqual([s.subject_identifier for s in plan.steps], ["A", "B"])
        self.assertEqual(plan.steps[1].to_external_marks, 90)
        self.assertEqual(plan.final_gpa, 9.43)
        # Heuristic: the ceiling says 9.5 is attainable even though no +1 move helps.
        self.assertEqual(plan.best_attainable_gpa, 10.0)

    def test_no_improving_move(self):
        plan = greedy_plan([DS], 9.0, DEFAULT_CONFIG)
        self.assertEqual(plan.steps, ())
        self.assertFalse(plan.target_reached)
        self.assertEqual(plan.final_gpa, 8.0)
        self.assertEqual(plan.best_attainable_gpa, 10.0)

    def test_already_met(self):
        plan = greedy_plan([NEAR_A, NEAR_B], 8.0, DEFAULT_CONFIG)
        self.assertTrue(plan.target_reached)
        self.assertEqual(plan.steps, ())
        self.assertEqual(plan.iterations, 0)

    def test_all_subjects_at_maximum(self):
        capped = Subject("X1", "Weak", 10, 100, 3)
        plan = greedy_plan([capped], 10, DEFAULT_CONFIG)
        self.assertFalse(plan.target_reached)
        self.assertEqual(plan.steps, ())
        self.assertEqual(plan.final_gpa, 7.0)
        self.assertEqual(plan.best_attainable_gpa, 7.0)

    def test_empty_subject_list(self):
        plan = greedy_plan([], 5, DEFAULT_CONFIG)
        self.assertFalse(plan.target_reached)
        self.assertEqual(plan.final_gpa, 0)

    def test_iteration_cap(self):
        plan = greedy_plan([NEAR_A, NEAR_B], 9.5, DEFAULT_CONFIG, max_iterations=1)
        self.assertEqual(plan.iterations, 1)
        self.assertEqual(len(plan.steps), 1)
        self.assertFalse(plan.target_reached)

    def test_terminates_within_bound(self):
        fine = GradingConfig.from_buckets([(i, i / 10, str(i)) for i in range(0, 100)])
        rng = random.Random(2024)
        cases = [
            ([DS, MATHS, NEAR_A, NEAR_B], DEFAULT_CONFIG),
            ([Subject(f"S{i}", "S", 20 + i, 10 * i + 1, 1 + i % 3) for i in range(5)], fine),
        ]
        for n in range(20):
            config = fine if n % 2 else DEFAULT_CONFIG
            subjects = [
                Subject(f"R{i}", "R", rng.randint(0, 100) / 2, rng.randint(0, 100), rng.randint(1, 5))
                for i in range(rng.randint(1, 8))
            ]
            cases.append((subjects, config))

        for subjects, config in cases:
            bound = len(subjects) * len(config.buckets)
            for target in (0, 5, 8.5, 9.5, 10, 11):
                plan = greedy_plan(subjects, target, config)
                self.assertLessEqual(plan.iterations, bound)
                self.assertLessEqual(len(plan.steps), plan.iterations)
                if target > plan.best_attainable_gpa:
                    self.assertFalse(plan.target_reached)

    def test_steps_never_lower_gpa(self):
        fine = GradingConfig.from_buckets([(i, i / 10, str(i)) for i in range(0, 100)])
        subjects = [Subject(f"S{i}", "S", 20 + i, 10 * i + 1, 1 + i % 3) for i in range(5)]
        plan = greedy_plan(subjects, 9.9, fine)
        gpas = [s.resulting_gpa for s in plan.steps]
        self.assertEqual(gpas, sorted(gpas))
        self.assertEqual(len(plan.steps), 5)

    def test_inputs_not_mutated(self):
        subjects = [NEAR_A, NEAR_B]
        greedy_plan(subjects, 9.5, DEFAULT_CONFIG)
        self.assertEqual(subjects, [NEAR_A, NEAR_B])
        self.assertEqual(NEAR_A.external_marks, 79)


class AnalysisTests(unittest.TestCase):
    def test_marginal_gains(self):
        capped = Subject("C", "Capped", 45, 100, 2)
        gains = marginal_gains([NEAR_A, NEAR_B, capped], DEFAULT_CONFIG)
        self.assertEqual([g.subject_identifier for g in gains], ["A", "B", "C"])
        self.assertEqual(gains[0].marginal_gain, 0.4444)
        self.assertEqual(gains[1].marginal_gain, 0.3333)
        self.assertEqual(gains[2].marginal_gain, 0)

    def test_gpa_curve(self):
        curve = gpa_curve([DS], "CS101", DEFAULT_CONFIG, step=50)
        self.assertEqual([p.external_marks for p in curve], [0, 50, 100])
        self.assertEqual([p.grade_point for p in curve], [5, 7, 10])
        self.assertEqual([p.gpa for p in curve], [5.0, 7.0, 10.0])

    def test_gpa_curve_fine_step_ends_on_maximum(self):
        curve = gpa_curve([Subject("A", "A", 40, 0, 4)], "A", DEFAULT_CONFIG, step=0.1)
        last = curve[-1]
        self.assertEqual(last.external_marks, 100)
        self.assertEqual(last.grade_point, 10)
        self.assertEqual(last.gpa, 10.0)
        self.assertEqual(curve[600].external_marks, 60)
        self.assertEqual(curve[600].grade_point, 8)

    def test_gpa_curve_appends_maximum_off_grid(self):
        curve = gpa_curve([DS], "CS101", DEFAULT_CONFIG, step=30)
        self.assertEqual([p.external_marks for p in curve], [0, 30, 60, 90, 100])

    def test_gpa_curve_grid_is_bounded(self):
        with self.assertRaises(ValidationError):
            gpa_curve([DS], "CS101", DEFAULT_CONFIG, step=1e-7)

    def test_gpa_curve_bad_input(self):
        with self.assertRaises(NotFoundError):
            gpa_curve([DS], "NOPE", DEFAULT_CONFIG)
        with self.assertRaises(ValidationError):
            gpa_curve([DS], "CS101", DEFAULT_CONFIG, step=0)

    def test_pairwise_heatmap(self):
        cells = pairwise_heatmap([DS, MATHS], "CS101", "MA102", DEFAULT_CONFIG, step=50)
        self.assertEqual(len(cells), 9)
        grid = {(c.external_marks_a, c.external_marks_b): c.gpa for c in cells}
        self.assertEqual(grid[(0, 0)], 5.0)
        self.assertEqual(grid[(100, 100)], 10.0)

    def test_heatmap_needs_two_subjects(self):
        with self.assertRaises(ValidationError):
            pairwise_heatmap([DS, MATHS], "CS101", "CS101", DEFAULT_CONFIG)


if __name__ == "__main__":
    unittest.main()
