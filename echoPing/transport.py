"""
Сокет ICMP для одного адресата: разрешение адреса, отправка и цикл приёма
"""
import errno
import logging
import socket
import threading

from echoPing import icmp

log = logging.getLogger(__name__)


class TransportError(Exception):
    """
    Базовая ошибка транспорта
    """


class AddressResolutionFailed(TransportError):
    """
    Не удалось разрешить имя или адрес
    """


class SocketCreationFailed(TransportError):
    """
    Не удалось создать сокет
    """


class PermissionDenied(SocketCreationFailed):
    """
    Нет прав на сырой сокет (нужен root или CAP_NET_RAW)
    """


class SendFailed(TransportError):
    """
    Ошибка отправки одного сообщения
    """

    def __init__(self, os_error):
        """
        :type os_error: OSError
        :param os_error: исходная ошибка операционной системы
        """
        super().__init__("ошибка отправки: {}".format(os_error))
        self.os_error = os_error


class Transport:
    """
    Сырой (или датаграммный) сокет ICMP, привязанный к одному адресату
    """
    POLL_INTERVAL = 0.05
    RECV_BUFFER = 65535

    def __init__(self, sock, address, family):
        """
        :type sock: socket.socket
        :type address: tuple
        :type family: int
        :param sock: открытый сокет ICMP
        :param address: адрес назначения в формате sendto
        :param family: socket.AF_INET или socket.AF_INET6
        """
        self.sock = sock
        self.address = address
        self.family = family
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._thread = None

    @property
    def host(self):
        """
        адрес назначения строкой
        """
        return self.address[0]

    @property
    def ipv6(self):
        return self.family == socket.AF_INET6

    @property
    def closed(self):
        return self._closed.is_set()

    @staticmethod
    def resolve(host):
        """
        Разрешение имени или литерального адреса
        :type host: str
        :param host: имя хоста, IPv4 или IPv6 адрес
        :return: кортеж (семейство адресов, адрес для sendto)
        """
        if not host:
            raise AddressResolutionFailed("пустое имя хоста")
        try:
            infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as err:
            raise AddressResolutionFailed("не удалось разрешить {}: {}".format(host, err)) from err
        for family, _, _, _, sockaddr in infos:
            if family in (socket.AF_INET, socket.AF_INET6):
                return family, sockaddr
        raise AddressResolutionFailed("нет IPv4/IPv6 адреса для {}".format(host))

    @classmethod
    def open(cls, host, unprivileged=False):
        """
        Разрешение адреса и создание сокета подходящего семейства
        :type host: str
        :type unprivileged: bool
        :param host: адресат
        :param unprivileged: использовать SOCK_DGRAM вместо SOCK_RAW
        :return: Transport
        """
        family, address = cls.resolve(host)
        proto = socket.IPPROTO_ICMPV6 if family == socket.AF_INET6 else socket.IPPROTO_ICMP
        sock_type = socket.SOCK_DGRAM if unprivileged else socket.SOCK_RAW
        log.debug("Создание сокета: адрес: %s; семейство: %s; тип: %s", address[0], family, sock_type)
        try:
            sock = socket.socket(family, sock_type, proto)
        except PermissionError as err:
            raise PermissionDenied("нет прав на сокет ICMP: {}".format(err)) from err
        except OSError as err:
            if err.errno in (errno.EPERM, errno.EACCES):
                raise PermissionDenied("нет прав на сокет ICMP: {}".format(err)) from err
            raise SocketCreationFailed("не удалось создать сокет ICMP: {}".format(err)) from err
        try:
            if unprivileged:
                # ядро Linux назначает идентификатор эхо-запросов при привязке
                sock.bind(("::" if family == socket.AF_INET6 else "", 0))
            sock.settimeout(cls.POLL_INTERVAL)
        except OSError as err:
            sock.close()
            raise SocketCreationFailed("не удалось настроить сокет ICMP: {}".format(err)) from err
        return cls(sock, address, family)

    def local_identifier(self):
        """
        Идентификатор, который ядро подставляет в эхо-запросы датаграммного сокета
        :return: int или None, если ядро не переписывает идентификатор
        """
        if self.sock.type != socket.SOCK_DGRAM:
            return None
        try:
            port = self.sock.getsockname()[1]
        except OSError:
            return None
        return port or None

    def send(self, data):
        """
        Отправка сообщения адресату
        :type data: bytes
        :param data: сообщение ICMP
        """
        if self.closed:
            raise SendFailed(OSError(errno.EBADF, "сокет закрыт"))
        try:
            sent = self.sock.sendto(data, self.address)
        except OSError as err:
            raise SendFailed(err) from err
        if sent != len(data):
            raise SendFailed(OSError(errno.EMSGSIZE, "отправлено {} из {} байт".format(sent, len(data))))

    def receive_loop(self, on_packet, on_error=None):
        """
        Цикл приёма; завершается после close() или при ошибке чтения
        :param on_packet: вызывается для каждого принятого сообщения ICMP (bytes)
        :param on_error: вызывается один раз, если чтение завершилось ошибкой
        """
        log.debug("Запущен цикл приёма: адрес: %s", self.host)
        while not self.closed:
            try:
                data = self.sock.recv(self.RECV_BUFFER)
            except (socket.timeout, BlockingIOError, InterruptedError):
                continue
            except OSError as err:
                if self.closed:
                    break
                log.error("Ошибка чтения из сокета: %s", err)
                if on_error is not None:
                    on_error(err)
                break
            if self.family == socket.AF_INET:
                data = icmp.strip_ip_header(data)
            try:
                on_packet(data)
            except Exception:
                log.exception("Неизвестная ошибка в обработчике пакетов")
        log.debug("Завершён цикл приёма: адрес: %s", self.host)

    def start_receiving(self, on_packet, on_error=None):
        """
        Запуск цикла приёма в отдельном потоке
        :return: поток цикла приёма
        """
        self._thread = threading.Thread(target=self.receive_loop, args=(on_packet, on_error),
                                        name="echo-ping-recv", daemon=True)
        self._thread.start()
        return self._thread

    def close(self):
        """
        Закрытие сокета; можно вызывать повторно и из любого потока
        """
        with self._close_lock:
            if self.closed:
                return
            self._closed.set()
            self.sock.close()
        log.debug("Сокет закрыт: адрес: %s", self.host)

    def join(self, timeout=None):
        """
        Ожидание завершения потока приёма
        """
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
