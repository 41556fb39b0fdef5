"""
End-to-end tests for enrolment and authentication through the engine.
"""

import os
import threading
import time

import numpy as np
import pytest

from neurolock.acquisition.sources import CaptureSession, SyntheticSource, open_session
from neurolock.core.config import EngineConfig
from neurolock.core.data_types import MentalTask, RawSignal
from neurolock.core.errors import CaptureError
from neurolock.core.secure import CancelToken
from neurolock.engine import NeuroLock, Outcome, Status
from neurolock.processing.features import SpectralFeatureExtractor

from conftest import make_trial


class LiveSyntheticSource(SyntheticSource):
    """Synthetic data behind a real-time capture wait"""
    live = True


def template_files(engine):
    if not os.path.isdir(engine.store.template_dir):
        return []
    return [name for name in os.listdir(engine.store.template_dir)
            if name.endswith(".nlt") or name.endswith(".tmp")]


class TestEnrolment:

    def test_enrol_creates_template(self, engine):
        trials = [make_trial(seed) for seed in (1, 2, 3)]
        outcome = engine.enroll("alice", trials, task=MentalTask.EYES_CLOSED_REST)

        assert outcome.status == Status.OK
        assert engine.exists("alice")
        template = engine.store.load("alice")
        assert len(template.features) == 40
        assert len(template.seal.salt) == 32
        assert template.created_at == template.last_used

    def test_already_enrolled(self, enrolled):
        outcome = enrolled.enroll("alice", [make_trial(9)])
        assert outcome.status == Status.ALREADY_ENROLLED

    def test_no_trials(self, engine):
        assert engine.enroll("alice", []).status == Status.VALIDATION_ERROR
        assert template_files(engine) == []

    def test_invalid_username(self, engine):
        outcome = engine.enroll("x" * 65, [make_trial(1)])
        assert outcome.status == Status.VALIDATION_ERROR

    def test_invalid_task(self, engine):
        outcome = engine.enroll("alice", [make_trial(1)], task=7)
        assert outcome.status == Status.VALIDATION_ERROR
        assert not engine.exists("alice")

    def test_flat_recordings_rejected(self, engine):
        flat = [RawSignal(np.zeros((8, 1280)), fs=256.0) for _ in range(3)]
        outcome = engine.enroll("alice", flat)
        assert outcome.status == Status.VALIDATION_ERROR
        assert template_files(engine) == []

    def test_cancelled_enrolment_leaves_no_file(self, engine):
        token = CancelToken()
        token.cancel()
        outcome = engine.enroll("alice", [make_trial(s) for s in (1, 2, 3)], cancel=token)

        assert outcome.status == Status.CANCELLED
        assert template_files(engine) == []

    def test_not_implemented_stage(self, tmp_path):
        config = EngineConfig(template_dir=str(tmp_path), stages=("bandpass", "ica"))
        engine = NeuroLock(config)
        outcome = engine.enroll("alice", [make_trial(1)])

        assert outcome.status == Status.NOT_IMPLEMENTED
        assert not engine.exists("alice")

    def test_not_implemented_primitive(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path), hash_primitive="blake3"))
        outcome = engine.enroll("alice", [make_trial(1)])

        assert outcome.status == Status.NOT_IMPLEMENTED
        assert not engine.exists("alice")

    def test_concurrent_enrolments_of_one_user(self, engine):
        outcomes = []

        def enrol(base):
            trials = [make_trial(base + s) for s in (1, 2, 3)]
            outcomes.append(engine.enroll("alice", trials))

        threads = [threading.Thread(target=enrol, args=(base,)) for base in (0, 10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(o.status for o in outcomes) == [Status.OK, Status.ALREADY_ENROLLED]
        assert template_files(engine) == ["alice.nlt"]

    def test_parallel_extraction(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path), n_jobs=2))
        assert engine.enroll("alice", [make_trial(s) for s in (1, 2, 3)]).ok


class TestAuthentication:

    @pytest.mark.parametrize("base", range(0, 200, 10))
    def test_genuine_trial_accepted(self, engine, base):
        assert engine.enroll("alice", [make_trial(base + s) for s in (1, 2, 3)]).ok
        outcome = engine.authenticate("alice", make_trial(base + 4))

        assert outcome.status == Status.OK
        assert outcome.result.accepted
        assert outcome.result.score >= 0.85
        assert outcome.result.username == "alice"

    @pytest.mark.parametrize("base", range(0, 200, 10))
    def test_noise_rejected(self, engine, base):
        assert engine.enroll("alice", [make_trial(base + s) for s in (1, 2, 3)]).ok
        outcome = engine.authenticate("alice", make_trial(base + 5, tone_hz=None))

        assert outcome.status == Status.REJECTED
        assert not outcome.result.accepted
        assert outcome.result.score < 0.85
        assert int(outcome) == 1
        # Rejection is distinct from IO and validation failures
        assert outcome.status not in (Status.IO_ERROR, Status.VALIDATION_ERROR)

    def test_rejection_keeps_template(self, enrolled):
        before = enrolled.store.load("alice").last_used
        enrolled.authenticate("alice", make_trial(5, tone_hz=None))
        assert enrolled.store.load("alice").last_used == before

    def test_not_enrolled(self, engine):
        outcome = engine.authenticate("bob", make_trial(1))
        assert outcome.status == Status.NOT_ENROLLED

    def test_flat_trial_is_validation_error(self, enrolled):
        outcome = enrolled.authenticate("alice", RawSignal(np.zeros((8, 1280)), fs=256.0))
        assert outcome.status == Status.VALIDATION_ERROR

    def test_wrong_shape_trial(self, enrolled):
        outcome = enrolled.authenticate("alice", make_trial(1, n_channels=4))
        assert outcome.status == Status.VALIDATION_ERROR

    def test_tampered_template(self, enrolled):
        path = enrolled.store.path_for("alice")
        offset = 4 + 4 + len("alice") + 20 + 8
        with open(path, "r+b") as fh:
            fh.seek(offset)
            byte = fh.read(1)[0]
            fh.seek(offset)
            fh.write(bytes([byte ^ 0x01]))

        outcome = enrolled.authenticate("alice", make_trial(4))
        assert outcome.status == Status.CRYPTO_ERROR

    def test_corrupt_template(self, enrolled):
        with open(enrolled.store.path_for("alice"), "wb") as fh:
            fh.write(b"\x01\x00")
        outcome = enrolled.authenticate("alice", make_trial(4))
        assert outcome.status == Status.IO_ERROR

    def test_custom_extractor(self, tmp_path):
        extractor = SpectralFeatureExtractor(stages=("bandpass", "normalize"))
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path)), extractor=extractor)
        assert engine.enroll("alice", [make_trial(s) for s in (1, 2, 3)]).ok
        assert engine.authenticate("alice", make_trial(4)).ok


class TestTemplateUpdate:

    def test_accept_refreshes_last_used(self, enrolled):
        template = enrolled.store.load("alice")
        template.last_used = 0
        enrolled.store.save(template)

        assert enrolled.authenticate("alice", make_trial(4)).ok
        assert enrolled.store.load("alice").last_used > 0

    def test_adapt_blends_and_reseals(self, enrolled):
        before = enrolled.store.load("alice")
        outcome = enrolled.adapt("alice", make_trial(4), rate=0.5)

        assert outcome.ok
        after = enrolled.store.load("alice", verify=True)
        assert not np.array_equal(after.features.values, before.features.values)
        assert after.seal.salt != before.seal.salt

    def test_adapt_rejected_trial_leaves_template(self, enrolled):
        before = enrolled.store.load("alice")
        outcome = enrolled.adapt("alice", make_trial(5, tone_hz=None), rate=0.5)

        assert outcome.status == Status.REJECTED
        after = enrolled.store.load("alice")
        assert np.array_equal(after.features.values, before.features.values)

    def test_adapt_requires_positive_rate(self, enrolled):
        assert enrolled.adapt("alice", make_trial(4), rate=0.0).status == Status.VALIDATION_ERROR

    def test_configured_adapt_rate(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path), adapt_rate=0.2))
        engine.enroll("alice", [make_trial(s) for s in (1, 2, 3)])
        salt = engine.store.load("alice").seal.salt

        assert engine.authenticate("alice", make_trial(4)).ok
        assert engine.store.load("alice").seal.salt != salt


class TestSessions:
    """Enrolment and authentication driven by a capture session."""

    def test_enrol_and_authenticate_synthetic(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path)))
        with open_session("synthetic", seed=1) as session:
            seen = []
            outcome = engine.enroll_from_session("alice", session,
                                                 on_trial=lambda i, n: seen.append((i, n)))
            assert outcome.ok, outcome.message
            assert seen == [(1, 3), (2, 3), (3, 3)]

            outcome = engine.authenticate_from_session("alice", session)
            assert outcome.ok
            assert outcome.result.attempts == 1

    def test_retries_until_max_attempts(self, enrolled):
        with open_session("synthetic", tone_hz=None, seed=3) as session:
            outcome = enrolled.authenticate_from_session("alice", session, max_attempts=2)

        assert outcome.status == Status.REJECTED
        assert outcome.result.attempts == 2

    def test_session_in_use(self, engine):
        with open_session("synthetic", seed=1) as session:
            with session.exclusive():
                outcome = engine.enroll_from_session("alice", session)

        assert outcome.status == Status.RESOURCE_ERROR
        assert not engine.exists("alice")

    def test_disconnected_session(self, engine):
        session = open_session("synthetic", seed=1)
        outcome = engine.enroll_from_session("alice", session)
        assert outcome.status == Status.CAPTURE_ERROR

    def test_capture_failure_aborts(self, engine):
        def broken_capture(duration, task):
            raise CaptureError("device unplugged")

        outcome = engine.enroll_from_session("alice", broken_capture)
        assert outcome.status == Status.CAPTURE_ERROR
        assert template_files(engine) == []

    def test_cancel_between_captures(self, engine):
        token = CancelToken()
        captured = []

        def capture(duration, task):
            captured.append(task)
            if len(captured) == 2:
                token.cancel()
            return make_trial(len(captured))

        outcome = engine.enroll_from_session("alice", capture, cancel=token)

        assert outcome.status == Status.CANCELLED
        assert len(captured) == 2
        assert template_files(engine) == []

    def test_cancel_interrupts_device_wait(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path), capture_duration=3.0))
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel)

        with CaptureSession(LiveSyntheticSource(seed=1), device_name="board") as session:
            timer.start()
            started = time.monotonic()
            try:
                outcome = engine.enroll_from_session("alice", session, cancel=token)
            finally:
                timer.cancel()
            elapsed = time.monotonic() - started

        assert outcome.status == Status.CANCELLED
        assert elapsed < 2.0
        assert template_files(engine) == []

    def test_empty_capture_is_zero_filled(self, engine):
        def empty_capture(duration, task):
            return RawSignal(np.zeros((8, 0)), fs=256.0, task=task)

        outcome = engine.enroll_from_session("alice", empty_capture)
        # A zero-filled recording carries no signal, so the template is refused
        assert outcome.status == Status.VALIDATION_ERROR

    def test_authenticate_uses_enrolled_task(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path)))
        engine.enroll("alice", [make_trial(s) for s in (1, 2, 3)], task=MentalTask.MOTOR_IMAGERY)
        tasks = []

        def capture(duration, task):
            tasks.append(task)
            return make_trial(4)

        assert engine.authenticate_from_session("alice", capture).ok
        assert tasks == [MentalTask.MOTOR_IMAGERY]


class TestAdministration:

    def test_delete(self, enrolled):
        assert enrolled.delete("alice").status == Status.OK
        assert not enrolled.exists("alice")
        assert enrolled.delete("alice").status == Status.NOT_ENROLLED

    def test_list_users(self, enrolled):
        enrolled.enroll("bob", [make_trial(s) for s in (4, 5, 6)])
        outcome = enrolled.list_users()
        assert outcome.ok
        assert outcome.result == ["alice", "bob"]

    def test_self_test(self, engine):
        outcome = engine.self_test()
        assert outcome.ok
        assert all(outcome.result.values())

    def test_self_test_with_capture(self, engine):
        with open_session("synthetic", seed=2) as session:
            outcome = engine.self_test(session)
        assert outcome.ok
        assert outcome.result["Capture"]

    def test_self_test_reports_stub_stage(self, tmp_path):
        engine = NeuroLock(EngineConfig(template_dir=str(tmp_path), feature_kind="wavelet"))
        outcome = engine.self_test()
        assert outcome.status == Status.NOT_IMPLEMENTED
        assert not outcome.result["Feature extraction"]

    def test_outcome_int_is_exit_code(self):
        assert int(Outcome(Status.NOT_ENROLLED)) == 8
