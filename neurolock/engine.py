"""
NeuroLock engine

Orchestrates enrolment and authentication on top of the processing, sealing,
matching and storage layers:

    enrol:        trials -> extract (xN) -> aggregate -> salt + seal -> save
    authenticate: trial  -> extract -> match against stored vector -> decision

Every public operation returns an ``Outcome`` instead of raising; its status
doubles as the process exit code of the CLI.
"""

import logging
import time
from contextlib import contextmanager
from functools import partial
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np

from .core.config import EngineConfig, MIN_MAGNITUDE, validate_config
from .core.data_types import AuthResult, MentalTask, RawSignal, Template, validate_username
from .core.errors import (Cancelled, CaptureError, CryptoError, NotImplementedStage,
                          ResourceError, TemplateIOError, ValidationError)
from .core.secure import CancelToken, wipe, wiping
from .matching.similarity import match
from .processing.aggregation import aggregate, blend
from .processing.features import SpectralFeatureExtractor
from .security.hashing import generate_salt, hash_features, resolve_primitive, verify_seal
from .storage.template_store import TemplateStore


class Status(IntEnum):
    """Operation status; the value is the CLI exit code"""
    OK = 0
    REJECTED = 1
    VALIDATION_ERROR = 2
    IO_ERROR = 3
    CRYPTO_ERROR = 4
    NOT_IMPLEMENTED = 5
    RESOURCE_ERROR = 6
    CANCELLED = 7
    NOT_ENROLLED = 8
    ALREADY_ENROLLED = 9
    CAPTURE_ERROR = 10


# Checked in order: the first matching class wins
_ERROR_STATUS = (
    (ValidationError, Status.VALIDATION_ERROR),
    (TemplateIOError, Status.IO_ERROR),
    (CryptoError, Status.CRYPTO_ERROR),
    (NotImplementedStage, Status.NOT_IMPLEMENTED),
    (ResourceError, Status.RESOURCE_ERROR),
    (Cancelled, Status.CANCELLED),
    (CaptureError, Status.CAPTURE_ERROR),
    (MemoryError, Status.RESOURCE_ERROR),
)


def status_for(error: BaseException) -> Optional[Status]:
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return None


@dataclass
class Outcome:
    """Result of one engine operation"""
    status: Status
    result: Any = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == Status.OK

    def __int__(self) -> int:
        return int(self.status)


CaptureFn = Callable[..., RawSignal]


class NeuroLock:
    """
    EEG biometric enrolment and authentication

    Args:
        config: Engine configuration (defaults to EngineConfig())
        store: Template store; built from ``config.template_dir`` if omitted
        extractor: Feature extractor; built from ``config`` if omitted
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 store: Optional[TemplateStore] = None,
                 extractor: Optional[SpectralFeatureExtractor] = None):
        self.config = config or EngineConfig()
        validate_config(self.config)

        self.primitive = resolve_primitive(self.config.hash_primitive)
        self.store = store or TemplateStore(self.config.template_dir, self.primitive)
        self.extractor = extractor or SpectralFeatureExtractor.from_config(self.config)

    # ------------------------------------------------------------------
    # Outcome plumbing
    # ------------------------------------------------------------------

    def _guard(self, operation: str, fn: Callable[..., Outcome], *args, **kwargs) -> Outcome:
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            status = status_for(e)
            if status is None:
                raise
            if status == Status.CANCELLED:
                logging.warning(f"{operation} cancelled: {e}")
            else:
                logging.error(f"{operation} failed: {e}")
            return Outcome(status, None, str(e))

    @staticmethod
    def _check(cancel: Optional[CancelToken], stage: str) -> None:
        if cancel is not None:
            cancel.check(stage)

    @staticmethod
    def _require_magnitude(vector) -> None:
        if float(np.linalg.norm(vector.values.astype(np.float64))) < MIN_MAGNITUDE:
            raise ValidationError("Feature vector has zero magnitude; "
                                  "recordings carry no usable signal")

    def _capture(self, capture: CaptureFn, task: MentalTask,
                 cancel: Optional[CancelToken]) -> RawSignal:
        """Run the capture collaborator; an empty capture becomes a zero-filled trial"""
        self._check(cancel, "capture")
        raw = capture(self.config.capture_duration, task)
        if raw is None:
            raise CaptureError("Capture returned no recording")

        if np.asarray(raw.data).size == 0:
            n_samples = max(int(self.config.capture_duration * self.config.fs), 1)
            logging.warning("Empty capture, substituting a zero-filled recording")
            raw = RawSignal(np.zeros((self.config.n_channels, n_samples)),
                            fs=raw.fs or self.config.fs, timestamp=raw.timestamp, task=raw.task)
        return raw

    # ------------------------------------------------------------------
    # Enrolment
    # ------------------------------------------------------------------

    def enroll(self, username: str, trials: Sequence[RawSignal],
               task: Optional[int] = None, cancel: Optional[CancelToken] = None) -> Outcome:
        """
        Enrol a user from already-captured trials

        Args:
            username: New user
            trials: One or more raw recordings of the user
            task: Task label for the template (defaults to the first trial's)
            cancel: Optional cancellation token

        Returns:
            Outcome: OK, ALREADY_ENROLLED or an error status. On any non-OK
            status no template file exists for the user.
        """
        return self._guard("Enrolment", self._enroll, username, trials, task, cancel)

    def _enroll(self, username, trials, task, cancel) -> Outcome:
        validate_username(username)
        if not trials:
            raise ValidationError("Enrolment needs at least one trial")
        if task is not None:
            try:
                task = MentalTask(task)
            except ValueError:
                raise ValidationError(f"Unknown mental task {task}")

        with self.store.locked(username):
            if self.store.exists(username):
                return Outcome(Status.ALREADY_ENROLLED, None,
                               f"User '{username}' is already enrolled")

            logging.info(f"Enrolling '{username}' from {len(trials)} trials")
            vectors = self.extractor.extract_batch(trials, n_jobs=self.config.n_jobs,
                                                   cancel=cancel)
            with wiping(*vectors) as scope:
                self._check(cancel, "aggregation")
                mean = aggregate(vectors)
                scope.callback(wipe, mean)
                if task is not None:
                    mean.task = task
                self._require_magnitude(mean)

                self._check(cancel, "hashing")
                salt = generate_salt(self.config.salt_length)
                scope.callback(wipe, salt)
                seal = hash_features(mean, salt, self.primitive)
                scope.callback(wipe, seal)

                now = int(time.time())
                template = Template(username=username, features=mean, seal=seal,
                                    task=mean.task, created_at=now, last_used=now)

                self._check(cancel, "saving")
                self.store.save(template)

        logging.info(f"User '{username}' enrolled")
        return Outcome(Status.OK, None, f"User '{username}' enrolled successfully")

    def enroll_from_session(self, username: str, capture: CaptureFn,
                            n_trials: Optional[int] = None, task: int = MentalTask.EYES_CLOSED_REST,
                            cancel: Optional[CancelToken] = None,
                            on_trial: Optional[Callable[[int, int], None]] = None) -> Outcome:
        """
        Capture ``n_trials`` recordings and enrol from them

        ``capture`` is either a CaptureSession or any callable
        ``capture(duration, task) -> RawSignal``. A capture session is held
        exclusively for the whole sequence. ``on_trial(index, total)`` is
        called before each capture, e.g. to prompt the user.
        """
        n_trials = self.config.n_trials if n_trials is None else n_trials
        return self._guard("Enrolment", self._enroll_from_session, username, capture,
                           n_trials, task, cancel, on_trial)

    def _enroll_from_session(self, username, capture, n_trials, task, cancel, on_trial) -> Outcome:
        validate_username(username)
        if n_trials < 1:
            raise ValidationError(f"Enrolment needs at least one trial, got {n_trials}")
        try:
            task = MentalTask(task)
        except ValueError:
            raise ValidationError(f"Unknown mental task {task}")
        if self.store.exists(username):
            return Outcome(Status.ALREADY_ENROLLED, None, f"User '{username}' is already enrolled")

        with _exclusive(capture, cancel) as record:
            trials: List[RawSignal] = []
            with wiping() as scope:
                for idx in range(n_trials):
                    if on_trial is not None:
                        on_trial(idx + 1, n_trials)
                    raw = self._capture(record, task, cancel)
                    scope.callback(wipe, raw)
                    trials.append(raw)
                return self._enroll(username, trials, task, cancel)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, username: str, trial: RawSignal,
                     cancel: Optional[CancelToken] = None) -> Outcome:
        """
        Authenticate one trial against a user's stored template

        Returns:
            Outcome: OK with the AuthResult when accepted, REJECTED with the
            AuthResult when the score is below threshold, NOT_ENROLLED when
            no template exists, or an error status
        """
        return self._guard("Authentication", self._authenticate, username, trial,
                           self.config.adapt_rate, cancel)

    def adapt(self, username: str, trial: RawSignal, rate: Optional[float] = None,
              cancel: Optional[CancelToken] = None) -> Outcome:
        """
        Authenticate and, if accepted, blend the trial into the template

        new = (1 - rate) * stored + rate * trial; the blended vector is
        re-salted and re-sealed before it replaces the stored one.
        """
        rate = self.config.adapt_rate if rate is None else rate
        return self._guard("Template update", self._adapt, username, trial, rate, cancel)

    def _adapt(self, username, trial, rate, cancel) -> Outcome:
        if not 0.0 < rate <= 1.0:
            raise ValidationError(f"Adaptation rate must be in (0, 1], got {rate}")
        return self._authenticate(username, trial, rate, cancel)

    def _authenticate(self, username, trial, rate, cancel) -> Outcome:
        validate_username(username)

        with self.store.locked(username):
            if not self.store.exists(username):
                return Outcome(Status.NOT_ENROLLED, None, f"User '{username}' is not enrolled")

            template = self.store.load(username, verify=True)
            with template:
                vector = self.extractor.extract(trial, cancel)
                with vector:
                    if len(vector) != len(template.features):
                        raise ValidationError(
                            f"Trial produced {len(vector)} features, template has "
                            f"{len(template.features)}")
                    result = match(vector, template.features, self.config.threshold)
                    if result is None:
                        raise ValidationError("Similarity is undefined for this trial "
                                              "(zero-magnitude feature vector)")
                    result.username = username

                    if not result.accepted:
                        return Outcome(Status.REJECTED, result,
                                       f"Authentication failed (similarity {result.score:.3f})")

                    self._check(cancel, "template update")
                    template.last_used = int(time.time())
                    if rate > 0:
                        self._reseal(template, vector, rate)
                    self.store.save(template)

        logging.info(f"User '{username}' authenticated (similarity {result.score:.3f})")
        return Outcome(Status.OK, result, f"Authentication successful (similarity {result.score:.3f})")

    def _reseal(self, template: Template, trial, rate: float) -> None:
        """Replace the template vector by its blend with ``trial`` and re-seal it"""
        updated = blend(template.features, trial, rate)
        salt = generate_salt(self.config.salt_length)
        with wiping(salt):
            try:
                seal = hash_features(updated, salt, self.primitive)
            except BaseException:
                updated.wipe()
                raise
        template.features.wipe()
        template.seal.wipe()
        template.features = updated
        template.seal = seal
        logging.info(f"Template for '{template.username}' adapted (rate {rate:.2f})")

    def authenticate_from_session(self, username: str, capture: CaptureFn,
                                  max_attempts: Optional[int] = None,
                                  task: Optional[int] = None,
                                  cancel: Optional[CancelToken] = None,
                                  on_attempt: Optional[Callable[[int, int], None]] = None) -> Outcome:
        """
        Capture and authenticate, retrying rejected attempts

        Only a REJECTED attempt is retried; any error or a missing template
        ends the sequence immediately. The returned AuthResult carries the
        number of attempts used.

        When ``task`` is omitted the user is prompted with the task the
        template was enrolled with.
        """
        max_attempts = self.config.max_attempts if max_attempts is None else max_attempts
        return self._guard("Authentication", self._authenticate_from_session, username,
                           capture, max_attempts, task, cancel, on_attempt)

    def _authenticate_from_session(self, username, capture, max_attempts, task, cancel,
                                   on_attempt) -> Outcome:
        validate_username(username)
        if max_attempts < 1:
            raise ValidationError(f"max_attempts must be >= 1, got {max_attempts}")
        if not self.store.exists(username):
            return Outcome(Status.NOT_ENROLLED, None, f"User '{username}' is not enrolled")
        if task is None:
            with self.store.locked(username):
                with self.store.load(username, verify=False) as stored:
                    task = stored.task
        try:
            task = MentalTask(task)
        except ValueError:
            raise ValidationError(f"Unknown mental task {task}")

        outcome = None
        with _exclusive(capture, cancel) as record:
            for attempt in range(1, max_attempts + 1):
                if on_attempt is not None:
                    on_attempt(attempt, max_attempts)
                with self._capture(record, task, cancel) as raw:
                    outcome = self._authenticate(username, raw, self.config.adapt_rate, cancel)
                if outcome.result is not None:
                    outcome.result.attempts = attempt
                if outcome.status != Status.REJECTED:
                    break
                logging.warning(f"Attempt {attempt}/{max_attempts} rejected")
        return outcome

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def delete(self, username: str) -> Outcome:
        """Remove a user's template; NOT_ENROLLED if there is none"""
        return self._guard("Delete", self._delete, username)

    def _delete(self, username) -> Outcome:
        validate_username(username)
        with self.store.locked(username):
            if not self.store.exists(username):
                return Outcome(Status.NOT_ENROLLED, None, f"User '{username}' is not enrolled")
            self.store.delete(username)
        return Outcome(Status.OK, None, f"User '{username}' deleted")

    def exists(self, username: str) -> bool:
        return self.store.exists(username)

    def list_users(self) -> Outcome:
        return self._guard("List", lambda: Outcome(Status.OK, self.store.list_users(), ""))

    def self_test(self, capture: Optional[CaptureFn] = None) -> Outcome:
        """
        Exercise every pipeline stage without touching stored templates

        Runs a capture (when given), feature extraction on random data, salt
        generation and a seal/verify round trip. The result maps each check
        to True/False; the status is that of the first failing check.
        """
        checks: Dict[str, bool] = {}
        first_failure: Optional[Outcome] = None

        def run(name: str, fn: Callable[[], None]) -> None:
            nonlocal first_failure
            outcome = self._guard(name, lambda: fn() or Outcome(Status.OK))
            checks[name] = outcome.ok
            if outcome.ok:
                logging.info(f"{name}: OK")
            elif first_failure is None:
                first_failure = outcome

        def check_capture():
            with _exclusive(capture) as record:
                with self._capture(record, MentalTask.EYES_CLOSED_REST, None):
                    pass

        def check_extraction():
            rng = np.random.default_rng()
            n_samples = max(int(2 * self.config.fs), self.config.window)
            data = (rng.random((self.config.n_channels, n_samples)) - 0.5) * 100.0
            with RawSignal(data, fs=self.config.fs) as raw:
                with self.extractor.extract(raw) as vector:
                    if len(vector) != self.extractor.feature_size:
                        raise ValidationError(f"Extractor produced {len(vector)} features")

        def check_sealing():
            salt = generate_salt(self.config.salt_length)
            with wiping(salt):
                probe = RawSignal(np.ones((self.config.n_channels, self.config.window)),
                                  fs=self.config.fs)
                with self.extractor.extract(probe) as vector:
                    seal = hash_features(vector, salt, self.primitive)
                    with wiping(seal):
                        if not verify_seal(vector, seal, self.primitive):
                            raise CryptoError("Seal did not verify against its own vector")

        if capture is not None:
            run("Capture", check_capture)
        run("Feature extraction", check_extraction)
        run("Salt generation and sealing", check_sealing)

        if first_failure is not None:
            return Outcome(first_failure.status, checks, first_failure.message)
        return Outcome(Status.OK, checks, "All checks passed")


@contextmanager
def _exclusive(capture, cancel: Optional[CancelToken] = None) -> Iterator[CaptureFn]:
    """
    Hold a CaptureSession for a whole sequence; plain callables pass through

    The session's recorder is bound to ``cancel`` so a device wait can be
    interrupted mid-capture.
    """
    exclusive = getattr(capture, "exclusive", None)
    if exclusive is None:
        yield capture
    else:
        with exclusive() as session:
            yield partial(session.record, cancel=cancel)


__all__ = ['NeuroLock', 'Outcome', 'Status', 'status_for', 'AuthResult']
