"""
Серия эхо-запросов: отправка с интервалом, учёт ответов и таймаутов,
ровно один результат на каждый отправленный запрос
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from echoPing.session import ProbeSession, EventType

log = logging.getLogger(__name__)

STOPPED_MESSAGE = "Ping stopped by user"
MAX_COUNT = 0x10000


@dataclass(frozen=True)
class RunConfig:
    """
    Параметры одной серии эхо-запросов
    """
    count: int = 5
    interval: float = 1.0
    timeout: float = 5.0
    payload_size: int = 56
    # ограничение длительности всей серии, секунды
    deadline: Optional[float] = None
    unprivileged: bool = False

    def __post_init__(self):
        if not 0 <= self.count <= MAX_COUNT:
            raise ValueError("count должен быть в диапазоне 0..{}: {}".format(MAX_COUNT, self.count))
        if self.interval <= 0:
            raise ValueError("interval должен быть больше нуля: {}".format(self.interval))
        if self.timeout <= 0:
            raise ValueError("timeout должен быть больше нуля: {}".format(self.timeout))
        if self.payload_size < 0:
            raise ValueError("payload_size не может быть отрицательным: {}".format(self.payload_size))
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline должен быть больше нуля: {}".format(self.deadline))


@dataclass(frozen=True)
class ProbeResult:
    """
    Результат одного эхо-запроса
    """
    sequence: int
    success: bool
    round_trip_millis: float
    message: str


@dataclass
class ProbeState:
    """
    Состояние отправленного эхо-запроса
    """
    sequence: int
    sent_at: Optional[float] = None
    received_at: Optional[float] = None
    completed: bool = False


@dataclass(frozen=True)
class RunStatistics:
    """
    Статистика по результатам серии
    """
    total: int
    success_count: int
    failure_count: int
    loss: float
    min_millis: float
    max_millis: float
    avg_millis: float

    @classmethod
    def from_results(cls, results):
        """
        :type results: list of ProbeResult
        :return: RunStatistics
        """
        times = [r.round_trip_millis for r in results if r.success]
        total = len(results)
        failures = total - len(times)
        return cls(total=total,
                   success_count=len(times),
                   failure_count=failures,
                   loss=failures / total if total else 0.0,
                   min_millis=min(times) if times else 0.0,
                   max_millis=max(times) if times else 0.0,
                   avg_millis=sum(times) / len(times) if times else 0.0)

    @property
    def packet_loss(self):
        """
        потери в процентах
        """
        return self.loss * 100

    @property
    def formatted_packet_loss(self):
        return "{:.1f}%".format(self.packet_loss)

    @property
    def formatted_min_time(self):
        return "{:.2f}ms".format(self.min_millis)

    @property
    def formatted_max_time(self):
        return "{:.2f}ms".format(self.max_millis)

    @property
    def formatted_avg_time(self):
        return "{:.2f}ms".format(self.avg_millis)


class _ProbeRun:
    """
    Одна серия: поток отправки и проверки таймаутов, события сеанса из потока приёма
    """

    def __init__(self, target, config, on_result, on_complete, transport_factory, sweep_interval):
        self.target = target
        self.config = config
        self.on_result = on_result
        self.on_complete = on_complete
        self.transport_factory = transport_factory
        self.sweep_interval = sweep_interval
        self.states = dict()
        self.results = []
        self.session = None
        self._cond = threading.Condition(threading.RLock())
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._started = False
        self._failure = None
        self._next_sequence = 0
        self._probing_since = None
        self.thread = threading.Thread(target=self._run, name="echo-ping-run", daemon=True)

    # вызывается под self._cond
    def _emit(self, result):
        self.results.append(result)
        if self.on_result is None:
            return
        try:
            self.on_result(result)
        except Exception:
            log.exception("Ошибка в обработчике результата: %s", result)

    def _complete(self, state, success, round_trip_millis, message):
        state.completed = True
        self._emit(ProbeResult(state.sequence, success, round_trip_millis, message))
        self._cond.notify_all()

    def _outstanding(self):
        return [self.states[seq] for seq in sorted(self.states) if not self.states[seq].completed]

    def _deadline_passed(self):
        if self.config.deadline is None or self._probing_since is None:
            return False
        return time.monotonic() - self._probing_since >= self.config.deadline

    def _should_stop(self):
        return self._cancelled.is_set() or self._failure is not None or self._deadline_passed()

    def _wait(self, seconds):
        if self.config.deadline is not None and self._probing_since is not None:
            seconds = min(seconds, self._probing_since + self.config.deadline - time.monotonic())
        if seconds > 0:
            self._cond.wait(seconds)

    def _sweep(self):
        """
        завершение запросов, ответ на которые не пришёл за timeout
        """
        now = time.monotonic()
        for state in self._outstanding():
            if now - state.sent_at >= self.config.timeout:
                log.debug("Превышено время ожидания ответа: seq: %d", state.sequence)
                self._complete(state, False, 0.0, "Request timeout seq={}".format(state.sequence))

    def _pause(self, seconds):
        until = time.monotonic() + seconds
        with self._cond:
            while not self._should_stop():
                self._sweep()
                remaining = until - time.monotonic()
                if remaining <= 0:
                    break
                self._wait(min(remaining, self.sweep_interval))

    def _on_event(self, event):
        """
        обработчик событий сеанса
        """
        if event.kind is EventType.STARTED:
            self._started = True
        elif event.kind is EventType.SENT:
            now = time.monotonic()
            with self._cond:
                state = self.states.get(event.sequence)
                if state is not None and not state.completed:
                    state.sent_at = now
        elif event.kind is EventType.SEND_FAILED:
            with self._cond:
                state = self.states.get(event.sequence)
                if state is None or state.completed:
                    return
                if self._cancelled.is_set():
                    self._complete(state, False, 0.0, STOPPED_MESSAGE)
                else:
                    self._complete(state, False, 0.0, "Failed to send packet seq={}: {}"
                                   .format(event.sequence, event.error))
        elif event.kind is EventType.REPLY_RECEIVED:
            received_at = time.monotonic()
            with self._cond:
                state = self.states.get(event.sequence)
                if state is None or state.completed:
                    log.debug("Ответ без ожидающего запроса: seq: %d", event.sequence)
                    return
                state.received_at = received_at
                rtt = (received_at - state.sent_at) * 1000
                self._complete(state, True, rtt, "Reply from {}: time={:.2f}ms seq={}"
                               .format(self.target, rtt, event.sequence))
        elif event.kind is EventType.FAILED:
            with self._cond:
                if not self._started:
                    self._emit(ProbeResult(0, False, 0.0, "Failed to start ping: {}".format(event.error)))
                self._failure = event.error
                self._cond.notify_all()

    def _execute(self):
        self.session = ProbeSession(self.target, self._on_event, unprivileged=self.config.unprivileged,
                                    transport_factory=self.transport_factory)
        if self._cancelled.is_set() or not self.session.start():
            return
        self._probing_since = time.monotonic()
        for sequence in range(self.config.count):
            with self._cond:
                if self._should_stop():
                    break
                state = ProbeState(sequence, sent_at=time.monotonic())
                self.states[sequence] = state
                self._next_sequence = sequence + 1
            if self.session.send_probe(sequence, self.config.payload_size) is None:
                with self._cond:
                    if not state.completed:
                        # сеанс закрыт между проверкой и отправкой
                        self._complete(state, False, 0.0, STOPPED_MESSAGE)
            if sequence < self.config.count - 1:
                self._pause(self.config.interval)
        with self._cond:
            while not self._should_stop():
                self._sweep()
                if not self._outstanding():
                    break
                self._wait(self.sweep_interval)

    def _finish(self):
        with self._cond:
            if self._cancelled.is_set():
                message = STOPPED_MESSAGE
            elif self._failure is not None:
                message = "Receive failed: {}".format(self._failure)
            else:
                message = "Request timeout"
            pending = self._outstanding()
            for state in pending:
                if self._cancelled.is_set():
                    self._complete(state, False, 0.0, message)
                else:
                    self._complete(state, False, 0.0, "{} seq={}".format(message, state.sequence))
            if (self._cancelled.is_set() and not pending and self.results
                    and self._next_sequence < self.config.count):
                self._emit(ProbeResult(self._next_sequence, False, 0.0, STOPPED_MESSAGE))
        stats = RunStatistics.from_results(self.results)
        log.info("Серия завершена: %s; отправлено: %d; получено: %d; потери: %s",
                 self.target, len(self.states), stats.success_count, stats.formatted_packet_loss)
        if self.on_complete is not None:
            try:
                self.on_complete()
            except Exception:
                log.exception("Ошибка в обработчике завершения")
        self._done.set()

    def _run(self):
        log.info("Начата серия: %s; %s", self.target, self.config)
        try:
            self._execute()
        except Exception:
            log.exception("Неизвестная ошибка в серии эхо-запросов")
        finally:
            if self.session is not None:
                self.session.stop()
            self._finish()

    def start(self):
        self.thread.start()

    def cancel(self):
        if self._done.is_set() or self._cancelled.is_set():
            return
        log.info("Серия остановлена пользователем: %s", self.target)
        self._cancelled.set()
        session = self.session
        if session is not None:
            session.stop()
        with self._cond:
            self._cond.notify_all()


class RunHandle:
    """
    Управление запущенной серией
    """

    def __init__(self, run):
        self._run = run

    def cancel(self):
        """
        Остановка серии: новые запросы не отправляются, on_complete вызывается один раз
        """
        self._run.cancel()

    def wait(self, timeout=None) -> bool:
        """
        Ожидание завершения серии
        :return: True, если серия завершена
        """
        return self._run._done.wait(timeout)

    @property
    def done(self) -> bool:
        return self._run._done.is_set()

    @property
    def results(self) -> List[ProbeResult]:
        with self._run._cond:
            return list(self._run.results)

    def statistics(self) -> RunStatistics:
        return RunStatistics.from_results(self.results)


class ProbeOrchestrator:
    """
    Запуск серий эхо-запросов
    """
    SWEEP_INTERVAL = 0.1

    def __init__(self, transport_factory=None, sweep_interval=SWEEP_INTERVAL):
        """
        :param transport_factory: фабрика транспорта, по умолчанию Transport.open
        :param sweep_interval: период проверки таймаутов, секунды
        """
        self.transport_factory = transport_factory
        self.sweep_interval = sweep_interval

    def run(self, target: str, config: RunConfig,
            on_result: Optional[Callable[[ProbeResult], None]] = None,
            on_complete: Optional[Callable[[], None]] = None) -> RunHandle:
        """
        Запуск серии; возвращает управление сразу, результаты приходят в on_result
        :param target: имя или адрес адресата
        :param config: параметры серии
        :param on_result: вызывается с каждым ProbeResult
        :param on_complete: вызывается ровно один раз по завершении серии
        :return: RunHandle
        """
        run = _ProbeRun(target, config, on_result, on_complete,
                        self.transport_factory, self.sweep_interval)
        run.start()
        return RunHandle(run)


def probe(target, config=None, on_result=None, on_complete=None, transport_factory=None):
    """
    Серия эхо-запросов к target
    :type target: str
    :type config: RunConfig или None
    :return: RunHandle; handle.cancel() останавливает серию
    """
    return ProbeOrchestrator(transport_factory).run(target, config or RunConfig(), on_result, on_complete)
