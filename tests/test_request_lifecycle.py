import unittest

from app.services.request_lifecycle import (
    ACTOR_ASSIGNED_WORKER,
    ACTOR_REQUESTER,
    ACTOR_WORKER,
    STATUSES,
    TransitionError,
    allowed_targets,
    is_terminal,
    next_worker_status,
    validate_transition,
)


class RequestLifecycleTests(unittest.TestCase):
    def test_worker_progression_is_linear(self):
        self.assertEqual(next_worker_status("accepted"), "en_route")
        self.assertEqual(next_worker_status("en_route"), "arrived")
        self.assertEqual(next_worker_status("arrived"), "started")
        self.assertEqual(next_worker_status("started"), "completed")
        self.assertIsNone(next_worker_status("completed"))
        self.assertIsNone(next_worker_status("pending"))
        self.assertIsNone(next_worker_status("cancelled"))

    def test_only_a_worker_may_accept(self):
        validate_transition("pending", "accepted", actor=ACTOR_WORKER)
        with self.assertRaises(TransitionError):
            validate_transition("pending", "accepted", actor=ACTOR_REQUESTER)

    def test_steps_cannot_be_skipped(self):
        with self.assertRaises(TransitionError) as ctx:
            validate_transition("accepted", "completed", actor=ACTOR_ASSIGNED_WORKER)
        self.assertEqual(ctx.exception.from_status, "accepted")
        self.assertEqual(ctx.exception.to_status, "completed")

    def test_terminal_statuses_accept_no_transition(self):
        for terminal in ("completed", "cancelled"):
            self.assertTrue(is_terminal(terminal))
            for target in STATUSES:
                with self.assertRaises(TransitionError):
                    validate_transition(terminal, target)
            self.assertEqual(allowed_targets(terminal, actor=ACTOR_ASSIGNED_WORKER), [])
            self.assertEqual(allowed_targets(terminal, actor=ACTOR_REQUESTER), [])

    def test_unknown_target_is_rejected(self):
        with self.assertRaises(TransitionError) as ctx:
            validate_transition("pending", "teleported")
        self.assertIn("Unknown status", ctx.exception.reason)

    def test_requester_may_cancel_any_active_status(self):
        for current in ("pending", "accepted", "en_route", "arrived", "started"):
            validate_transition(current, "cancelled", actor=ACTOR_REQUESTER)

    def test_allowed_targets_follow_status_order(self):
        self.assertEqual(allowed_targets("pending", actor=ACTOR_WORKER), ["accepted"])
        self.assertEqual(allowed_targets("pending", actor=ACTOR_REQUESTER), ["cancelled"])
        self.assertEqual(allowed_targets("arrived", actor=ACTOR_ASSIGNED_WORKER), ["started", "cancelled"])
