import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Dict, List, Optional, Tuple, Union

import cv2
import numpy as np

from cardlens.core import constants
from cardlens.core.errors import (
    FailureReason, LocalLowConfidenceError, LocalTimeoutError, RecognitionError,
    RemoteTimeoutError, RemoteUnclearError
)
from cardlens.core.text_utils import clean_ocr_text
from cardlens.services.catalog_index import CardCatalog
from cardlens.services.remote_vision import CARD_NAME_PROMPT, RemoteVisionCapability
from cardlens.services.scanner.models import (
    NO_MATCH_MESSAGES, CardType, NoMatch, NoMatchReason, RecognitionAttempt,
    RecognitionMethod, RecognitionResult, ScanState
)
from cardlens.services.scanner.ocr import TextRecognizer
from cardlens.services.scanner.profiles import resolve_card_type

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RemoteCallGate:
    """
    Non-blocking rate limiter for the remote vision call.

    A slot is granted only when nothing is in flight and the cooldown has
    passed since the previous call finished. Callers that are refused do not
    wait; they go straight to the local path.
    """

    def __init__(self, cooldown_ms: float = constants.REMOTE_COOLDOWN_MS, clock: Clock = time.monotonic):
        self.cooldown_s = cooldown_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None
        self._in_flight = False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            if self._last_call is not None and self._clock() - self._last_call < self.cooldown_s:
                return False
            self._in_flight = True
            return True

    def release(self):
        with self._lock:
            self._in_flight = False
            self._last_call = self._clock()

    def remaining_ms(self) -> float:
        with self._lock:
            if self._last_call is None:
                return 0.0
            return max(0.0, (self.cooldown_s - (self._clock() - self._last_call)) * 1000.0)

    @property
    def in_flight(self) -> bool:
        return self._in_flight


class RemoteResultCache:
    """Short-lived memo of remote answers keyed by the encoded frame digest."""

    def __init__(self, ttl_ms: float = constants.REMOTE_CACHE_TTL_MS, clock: Clock = time.monotonic):
        self.ttl_s = ttl_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, RecognitionAttempt]] = {}

    def get(self, key: str) -> Optional[RecognitionAttempt]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, attempt = entry
            if self._clock() - stored_at > self.ttl_s:
                del self._entries[key]
                return None
            return attempt

    def put(self, key: str, attempt: RecognitionAttempt):
        with self._lock:
            now = self._clock()
            # Drop expired entries so the cache stays small
            self._entries = {k: v for k, v in self._entries.items() if now - v[0] <= self.ttl_s}
            self._entries[key] = (now, attempt)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


def encode_frame(frame: np.ndarray, quality: int = constants.REMOTE_JPEG_QUALITY) -> bytes:
    ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("Failed to encode frame")
    return buffer.tobytes()


def frame_digest(image_bytes: bytes) -> str:
    return hashlib.sha1(image_bytes).hexdigest()


def elapsed_ms_since(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class RecognitionArbitrator:
    """
    Decides, per scan, between the remote vision answer and the local
    OCR + catalog answer.

    Idle -> AttemptRemote (when available and the gate allows)
         -> AttemptLocal (unless the remote answer is good enough)
         -> Resolved
    """

    def __init__(self, catalog: CardCatalog, recognizer: TextRecognizer,
                 remote: Optional[RemoteVisionCapability] = None,
                 gate: Optional[RemoteCallGate] = None,
                 cache: Optional[RemoteResultCache] = None,
                 remote_timeout_s: float = constants.REMOTE_TIMEOUT_S,
                 local_timeout_s: float = constants.LOCAL_TIMEOUT_S,
                 remote_accept_confidence: float = constants.REMOTE_ACCEPT_CONFIDENCE,
                 local_accept_confidence: float = constants.LOCAL_ACCEPT_CONFIDENCE,
                 fuzzy_min_similarity: float = constants.LOCAL_FUZZY_MIN_SIMILARITY,
                 fuzzy_max_results: int = constants.FUZZY_MAX_RESULTS,
                 default_card_type: CardType = CardType.STANDARD,
                 prompt_text: str = CARD_NAME_PROMPT,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.catalog = catalog
        self.recognizer = recognizer
        self.remote = remote
        self.gate = gate or RemoteCallGate()
        self.cache = cache or RemoteResultCache()
        self.remote_timeout_s = remote_timeout_s
        self.local_timeout_s = local_timeout_s
        self.remote_accept_confidence = remote_accept_confidence
        self.local_accept_confidence = local_accept_confidence
        self.fuzzy_min_similarity = fuzzy_min_similarity
        self.fuzzy_max_results = fuzzy_max_results
        self.prompt_text = prompt_text
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="recognition")

        self.remote_available = remote is not None
        self.last_card_type = default_card_type

    # --- remote health ---

    def check_remote_health(self) -> bool:
        if self.remote is None:
            self.remote_available = False
            return False
        try:
            healthy = bool(self.remote.check_health())
        except Exception as e:
            logger.warning(f"Remote vision health check raised: {e}")
            healthy = False
        if healthy != self.remote_available:
            logger.info(f"Remote vision {'available' if healthy else 'unavailable'}")
        self.remote_available = healthy
        return healthy

    # --- scan ---

    def scan(self, frame: np.ndarray, card_type_hint: Union[str, CardType, None] = None) -> Union[RecognitionResult, NoMatch]:
        start = time.perf_counter()
        card_type = resolve_card_type(card_type_hint) if card_type_hint is not None else self.last_card_type
        self.last_card_type = card_type

        states = [ScanState.IDLE]
        attempts: List[RecognitionAttempt] = []
        remote_attempt: Optional[RecognitionAttempt] = None
        local_attempt: Optional[RecognitionAttempt] = None

        if self.remote is not None and self.remote_available:
            remote_attempt = self._attempt_remote(frame, states)
            if remote_attempt is not None:
                attempts.append(remote_attempt)

        if not self._remote_accepted(remote_attempt):
            states.append(ScanState.ATTEMPT_LOCAL)
            local_attempt = self._attempt_local(frame, card_type)
            attempts.append(local_attempt)

        states.append(ScanState.RESOLVED)
        elapsed_ms = elapsed_ms_since(start)
        result = self._resolve(remote_attempt, local_attempt, card_type, attempts, states, elapsed_ms)

        if result.matched:
            logger.info(f"Scan resolved: {result.card_name} ({result.confidence:.0f}%, {result.method.value}, {elapsed_ms}ms)")
        else:
            logger.info(f"Scan unresolved: {result.reason.value} ({elapsed_ms}ms)")
        return result

    def _remote_accepted(self, attempt: Optional[RecognitionAttempt]) -> bool:
        return (attempt is not None and attempt.success
                and attempt.confidence >= self.remote_accept_confidence)

    def _attempt_remote(self, frame: np.ndarray, states: List[ScanState]) -> Optional[RecognitionAttempt]:
        try:
            image_bytes = encode_frame(frame)
        except Exception as e:
            logger.error(f"Could not encode frame for remote vision: {e}")
            states.append(ScanState.ATTEMPT_REMOTE)
            return self._failed(RecognitionMethod.REMOTE_VISION, FailureReason.REMOTE_ERROR,
                                f"Could not encode frame: {e}", time.perf_counter())
        key = frame_digest(image_bytes)

        cached = self.cache.get(key)
        if cached is not None:
            states.append(ScanState.ATTEMPT_REMOTE)
            logger.debug("Using cached remote vision answer")
            return cached.model_copy(update={"cached": True, "elapsed_ms": 0})

        if not self.gate.try_acquire():
            logger.debug(f"Remote vision cooling down ({self.gate.remaining_ms():.0f}ms left), going local")
            return None

        states.append(ScanState.ATTEMPT_REMOTE)
        start = time.perf_counter()
        try:
            future = self.executor.submit(self._call_remote, image_bytes)
        except Exception:
            self.gate.release()
            raise

        try:
            try:
                response = future.result(timeout=self.remote_timeout_s)
            except FutureTimeout:
                raise RemoteTimeoutError(f"Remote vision exceeded {self.remote_timeout_s:.0f}s")

            if response.unclear or not response.success or not (response.card_name or "").strip():
                raise RemoteUnclearError(response.diagnostic or "Image unclear to the vision service")

            card = self.catalog.lookup_exact(response.card_name)
            attempt = RecognitionAttempt(
                method=RecognitionMethod.REMOTE_VISION,
                success=True,
                raw_text=response.card_name,
                card_name=card.name if card else response.card_name,
                confidence=response.confidence,
                card=card,
                elapsed_ms=elapsed_ms_since(start),
                diagnostic=response.diagnostic,
            )
        except RecognitionError as e:
            logger.warning(f"Remote vision failed ({e.reason.value}): {e}")
            attempt = self._failed(RecognitionMethod.REMOTE_VISION, e.reason, str(e), start)
        except Exception as e:
            logger.error(f"Remote vision error: {e}")
            attempt = self._failed(RecognitionMethod.REMOTE_VISION, FailureReason.REMOTE_ERROR, str(e), start)

        if attempt.success or attempt.failure_reason == FailureReason.REMOTE_UNCLEAR:
            self.cache.put(key, attempt)
        return attempt

    def _call_remote(self, image_bytes: bytes):
        # The slot frees when the call really ends, even after a timeout
        try:
            return self.remote.identify(image_bytes, self.prompt_text)
        finally:
            self.gate.release()

    def _attempt_local(self, frame: np.ndarray, card_type: CardType) -> RecognitionAttempt:
        start = time.perf_counter()
        try:
            future = self.executor.submit(self._run_local, frame, card_type)
            try:
                attempt = future.result(timeout=self.local_timeout_s)
            except FutureTimeout:
                raise LocalTimeoutError(f"Local OCR exceeded {self.local_timeout_s:.0f}s")
        except RecognitionError as e:
            logger.warning(f"Local recognition failed ({e.reason.value}): {e}")
            return self._failed(RecognitionMethod.LOCAL_OCR, e.reason, str(e), start)
        except Exception as e:
            logger.error(f"Local recognition error: {e}")
            return self._failed(RecognitionMethod.LOCAL_OCR, FailureReason.LOCAL_ERROR, str(e), start)

        attempt.elapsed_ms = elapsed_ms_since(start)
        return attempt

    def _run_local(self, frame: np.ndarray, card_type: CardType) -> RecognitionAttempt:
        reading = self.recognizer.read(frame, card_type)
        cleaned = clean_ocr_text(reading.text)

        if not cleaned:
            raise LocalLowConfidenceError("No text found in the name zone")
        if reading.confidence < self.local_accept_confidence:
            # Keep what was read for diagnostics
            return RecognitionAttempt(
                method=RecognitionMethod.LOCAL_OCR,
                raw_text=reading.text,
                confidence=reading.confidence,
                failure_reason=FailureReason.LOCAL_LOW_CONFIDENCE,
                diagnostic=f"OCR confidence {reading.confidence:.0f} below {self.local_accept_confidence:.0f}",
            )

        if not self.catalog.is_ready:
            return RecognitionAttempt(
                method=RecognitionMethod.LOCAL_OCR,
                success=True,
                raw_text=reading.text,
                card_name=cleaned.title(),
                confidence=reading.confidence,
                diagnostic="Catalog not loaded, using raw OCR text",
            )

        candidates = self.catalog.fuzzy_search(
            cleaned,
            max_results=self.fuzzy_max_results,
            min_similarity=self.fuzzy_min_similarity,
            unique_names=True,
        )
        if not candidates:
            return RecognitionAttempt(
                method=RecognitionMethod.LOCAL_OCR,
                raw_text=reading.text,
                confidence=reading.confidence,
                failure_reason=FailureReason.NO_CATALOG_MATCH,
                diagnostic=f"No catalog name resembles '{cleaned}'",
            )

        best = candidates[0]
        return RecognitionAttempt(
            method=RecognitionMethod.LOCAL_OCR,
            success=True,
            raw_text=reading.text,
            card_name=best.card.name,
            confidence=reading.confidence,
            match_similarity=best.similarity,
            card=best.card,
            candidates=candidates,
            diagnostic=f"strategy={reading.strategy.value if reading.strategy else '-'}",
        )

    @staticmethod
    def _failed(method: RecognitionMethod, reason: FailureReason, diagnostic: str, start: float) -> RecognitionAttempt:
        return RecognitionAttempt(
            method=method,
            failure_reason=reason,
            diagnostic=diagnostic,
            elapsed_ms=elapsed_ms_since(start),
        )

    # --- resolution ---

    def _resolve(self, remote: Optional[RecognitionAttempt], local: Optional[RecognitionAttempt],
                 card_type: CardType, attempts: List[RecognitionAttempt],
                 states: List[ScanState], elapsed_ms: int) -> Union[RecognitionResult, NoMatch]:
        if self._remote_accepted(remote):
            return RecognitionResult(
                card_name=remote.card_name,
                confidence=remote.confidence,
                method=RecognitionMethod.REMOTE_VISION,
                processing_time_ms=elapsed_ms,
                card=remote.card,
                card_type=card_type,
                attempts=attempts,
                states=states,
            )

        if local is not None and local.success and local.confidence >= self.local_accept_confidence:
            return RecognitionResult(
                card_name=local.card_name,
                confidence=local.confidence,
                method=RecognitionMethod.LOCAL_OCR,
                processing_time_ms=elapsed_ms,
                match_similarity=local.match_similarity,
                card=local.card,
                candidates=local.candidates,
                card_type=card_type,
                attempts=attempts,
                states=states,
            )

        reason = self._no_match_reason(remote, local)
        details = "; ".join(
            f"{a.method.value}: {a.failure_reason.value if a.failure_reason else 'below threshold'}"
            f"{' - ' + a.diagnostic if a.diagnostic else ''}"
            for a in attempts
        )
        if self.remote is not None and not self.remote_available:
            details = f"remote vision unavailable; {details}" if details else "remote vision unavailable"
        return NoMatch(
            reason=reason,
            message=NO_MATCH_MESSAGES[reason],
            details=details,
            processing_time_ms=elapsed_ms,
            card_type=card_type,
            attempts=attempts,
            states=states,
        )

    def _no_match_reason(self, remote: Optional[RecognitionAttempt],
                         local: Optional[RecognitionAttempt]) -> NoMatchReason:
        if remote is not None and remote.failure_reason == FailureReason.REMOTE_UNCLEAR:
            return NoMatchReason.REMOTE_UNCLEAR

        local_reason = local.failure_reason if local is not None else None
        # A rejected local reading explains the miss better than a missing remote
        if local is not None and local.raw_text and local_reason in (
                FailureReason.LOCAL_LOW_CONFIDENCE, FailureReason.NO_CATALOG_MATCH):
            return NoMatchReason(local_reason.value)

        if self.remote is not None and not self.remote_available:
            return NoMatchReason.REMOTE_UNAVAILABLE

        # Local always runs once the remote is not accepted
        if local_reason is not None:
            return NoMatchReason(local_reason.value)
        return NoMatchReason.LOCAL_LOW_CONFIDENCE

    def shutdown(self):
        self.executor.shutdown(wait=False)
