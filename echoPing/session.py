"""
Сеанс эхо-запросов к одному адресату
"""
import logging
import random
import threading
from enum import Enum

from echoPing import icmp
from echoPing import utils
from echoPing.transport import Transport, TransportError, SendFailed

log = logging.getLogger(__name__)


class SessionState(Enum):
    """
    Состояния сеанса
    """
    IDLE = 0
    RESOLVING = 1
    OPEN = 2
    ACTIVE = 3
    CLOSED = 4
    FAILED = 5


class EventType(Enum):
    """
    Типы событий сеанса
    """
    STARTED = 0
    SENT = 1
    SEND_FAILED = 2
    REPLY_RECEIVED = 3
    UNEXPECTED_PACKET = 4
    FAILED = 5


class SessionEvent(object):
    """
    Событие сеанса; заполнены только поля, имеющие смысл для его типа
    """

    def __init__(self, kind, sequence=None, address=None, error=None, packet=None, message=None):
        """
        :type kind: EventType
        :type sequence: int или None
        :type address: str или None
        :type error: Exception или None
        :type packet: bytes или None
        :type message: icmp.Message или None
        :param kind: тип события
        :param sequence: номер эхо-запроса (SENT, SEND_FAILED, REPLY_RECEIVED)
        :param address: адрес адресата (STARTED)
        :param error: ошибка (SEND_FAILED, FAILED)
        :param packet: отправленное или принятое сообщение
        :param message: разобранное сообщение (REPLY_RECEIVED, UNEXPECTED_PACKET)
        """
        self.kind = kind
        self.sequence = sequence
        self.address = address
        self.error = error
        self.packet = packet
        self.message = message

    def __repr__(self):
        return "SessionEvent({}, seq={}, address={}, error={!r})".format(
            self.kind.name, self.sequence, self.address, self.error)


class ProbeSession:
    """
    Владеет транспортом одного адресата, отправляет эхо-запросы
    и сообщает о событиях единственному обработчику
    """

    def __init__(self, host, handler, identifier=None, unprivileged=False, transport_factory=None):
        """
        :type host: str
        :type identifier: int или None
        :type unprivileged: bool
        :param host: имя или адрес адресата
        :param handler: вызывается с каждым SessionEvent
        :param identifier: идентификатор сеанса (по умолчанию случайный)
        :param unprivileged: использовать датаграммный сокет ICMP
        :param transport_factory: фабрика транспорта (host, unprivileged=...) -> Transport
        """
        self.host = host
        self.handler = handler
        self.identifier = identifier if identifier is not None else random.randint(1, 0xFFFF)
        self.unprivileged = unprivileged
        self.transport_factory = transport_factory or Transport.open
        self.transport = None
        self.state = SessionState.IDLE
        self._lock = threading.Lock()

    def _emit(self, event):
        try:
            self.handler(event)
        except Exception:
            log.exception("Ошибка в обработчике событий сеанса: %s", event)

    def start(self):
        """
        Разрешение адреса и открытие транспорта
        :return: True, если сеанс открыт
        """
        with self._lock:
            if self.state is not SessionState.IDLE:
                log.warning("Сеанс уже запускался: %s; состояние: %s", self.host, self.state.name)
                return False
            self.state = SessionState.RESOLVING
        log.debug("Открытие сеанса: %s; id: %d", self.host, self.identifier)
        try:
            transport = self.transport_factory(self.host, unprivileged=self.unprivileged)
        except TransportError as err:
            with self._lock:
                if self.state is SessionState.RESOLVING:
                    self.state = SessionState.FAILED
            log.error("Не удалось открыть сеанс: %s; %s", self.host, err)
            self._emit(SessionEvent(EventType.FAILED, error=err))
            return False
        with self._lock:
            if self.state is not SessionState.RESOLVING:
                # остановлен во время разрешения адреса
                transport.close()
                return False
            self.transport = transport
            self.state = SessionState.OPEN
        kernel_id = transport.local_identifier()
        if kernel_id is not None:
            log.debug("Идентификатор назначен ядром: %d", kernel_id)
            self.identifier = kernel_id
        transport.start_receiving(self._on_packet, self._on_receive_error)
        log.info("Сеанс открыт: %s (%s); id: %d", self.host, transport.host, self.identifier)
        self._emit(SessionEvent(EventType.STARTED, address=transport.host))
        return True

    def send_probe(self, sequence, payload_size=0):
        """
        Отправка одного эхо-запроса
        :type sequence: int
        :type payload_size: int
        :param sequence: номер эхо-запроса
        :param payload_size: размер полезной нагрузки
        :return: sequence при успехе, None если запрос не отправлен
        """
        with self._lock:
            transport = self.transport if self.state in (SessionState.OPEN, SessionState.ACTIVE) else None
        if transport is None:
            log.debug("Сеанс не открыт, запрос не отправлен: seq: %d", sequence)
            return None
        packet = icmp.encode_echo_request(self.identifier, sequence, utils.make_payload(payload_size),
                                          ipv6=transport.ipv6)
        try:
            transport.send(packet)
        except SendFailed as err:
            log.warning("Не удалось отправить запрос: seq: %d; %s", sequence, err)
            self._emit(SessionEvent(EventType.SEND_FAILED, sequence=sequence, error=err, packet=packet))
            return None
        with self._lock:
            if self.state is SessionState.OPEN:
                self.state = SessionState.ACTIVE
        log.debug("Отправлен запрос: id: %d; seq: %d; %d байт", self.identifier, sequence, len(packet))
        self._emit(SessionEvent(EventType.SENT, sequence=sequence, packet=packet))
        return sequence

    def _on_packet(self, data):
        """
        разбор сообщения из цикла приёма
        """
        ipv6 = self.transport is not None and self.transport.ipv6
        try:
            message = icmp.decode(data, ipv6=ipv6)
        except icmp.DecodeError as err:
            log.debug("Пакет неопознан: %s", err)
            self._emit(SessionEvent(EventType.UNEXPECTED_PACKET, packet=data))
            return
        if message.is_echo_reply and message.identifier == self.identifier:
            self._emit(SessionEvent(EventType.REPLY_RECEIVED, sequence=message.sequence,
                                    packet=data, message=message))
        else:
            log.debug("Чужой пакет: %s", message)
            self._emit(SessionEvent(EventType.UNEXPECTED_PACKET, packet=data, message=message))

    def _on_receive_error(self, err):
        with self._lock:
            if self.state not in (SessionState.OPEN, SessionState.ACTIVE):
                return
            self.state = SessionState.CLOSED
            transport = self.transport
        transport.close()
        self._emit(SessionEvent(EventType.FAILED, error=err))

    def stop(self):
        """
        Закрытие сеанса; последующие отправки не выполняются
        """
        with self._lock:
            if self.state is not SessionState.FAILED:
                self.state = SessionState.CLOSED
            transport = self.transport
        if transport is not None:
            transport.close()
            transport.join(transport.POLL_INTERVAL * 4)
            log.debug("Сеанс закрыт: %s", self.host)
