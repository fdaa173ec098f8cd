"""
Кодирование и разбор сообщений ICMP ECHO REQUEST/REPLY
"""
import logging
import struct
from enum import Enum

from echoPing import utils

log = logging.getLogger(__name__)

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11

ICMPV6_TIME_EXCEEDED = 3
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

HEADER_FORMAT = "!BBHHH"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
# смещение поля контрольной суммы в заголовке
CHECKSUM_RANGE = range(2, 4)


class DecodeError(ValueError):
    """
    Датаграмма не является сообщением ICMP
    """


class MessageType(Enum):
    """
    Типы принятых сообщений
    """
    ECHO_REPLY = 0
    ECHO_REQUEST = 1
    TIME_EXCEEDED = 2
    OTHER = 3


_V4_TYPES = {
    ICMP_ECHO_REPLY: MessageType.ECHO_REPLY,
    ICMP_ECHO_REQUEST: MessageType.ECHO_REQUEST,
    ICMP_TIME_EXCEEDED: MessageType.TIME_EXCEEDED,
}

_V6_TYPES = {
    ICMPV6_ECHO_REPLY: MessageType.ECHO_REPLY,
    ICMPV6_ECHO_REQUEST: MessageType.ECHO_REQUEST,
    ICMPV6_TIME_EXCEEDED: MessageType.TIME_EXCEEDED,
}


class Message(object):
    """
    Разобранное сообщение ICMP
    """

    def __init__(self, kind, icmp_type, code, checksum, identifier, sequence, payload):
        """
        :type kind: MessageType
        :type icmp_type: int
        :type code: int
        :type checksum: int
        :type identifier: int
        :type sequence: int
        :type payload: bytes
        :param kind: классификация сообщения
        :param icmp_type: поле type
        :param code: поле code
        :param checksum: поле checksum (не проверяется)
        :param identifier: идентификатор (осмыслен только для эхо-сообщений)
        :param sequence: номер сообщения (осмыслен только для эхо-сообщений)
        :param payload: данные после заголовка
        """
        self.kind = kind
        self.type = icmp_type
        self.code = code
        self.checksum = checksum
        self.identifier = identifier
        self.sequence = sequence
        self.payload = payload

    @property
    def is_echo_reply(self):
        return self.kind is MessageType.ECHO_REPLY

    def __repr__(self):
        return "Message({}, type={}, code={}, id={}, seq={}, {} bytes)".format(
            self.kind.name, self.type, self.code, self.identifier, self.sequence, len(self.payload))


def _encode_echo(icmp_type, identifier, sequence, payload):
    """
    Сборка эхо-сообщения с контрольной суммой
    :param icmp_type: тип сообщения
    :param identifier: идентификатор
    :param sequence: номер сообщения
    :param payload: данные
    :return: сообщение, готовое к отправке
    """
    if not 0 <= identifier <= 0xFFFF:
        raise ValueError("идентификатор вне диапазона 16 бит: {}".format(identifier))
    if not 0 <= sequence <= 0xFFFF:
        raise ValueError("номер сообщения вне диапазона 16 бит: {}".format(sequence))
    msg = bytearray(struct.pack(HEADER_FORMAT, icmp_type, 0, 0, identifier, sequence))
    msg += payload
    struct.pack_into("!H", msg, CHECKSUM_RANGE.start, utils.checksum(msg))
    return bytes(msg)


def encode_echo_request(identifier, sequence, payload=b"", ipv6=False):
    """
    Сборка ICMP ECHO REQUEST

    Для ICMPv6 ядро пересчитывает контрольную сумму с учётом псевдозаголовка,
    посчитанная здесь сумма охватывает только само сообщение.
    :type identifier: int
    :type sequence: int
    :type payload: bytes
    :type ipv6: bool
    :param identifier: идентификатор сессии
    :param sequence: номер сообщения
    :param payload: данные
    :param ipv6: собрать ICMPv6 (тип 128) вместо ICMP (тип 8)
    :return: bytes
    """
    icmp_type = ICMPV6_ECHO_REQUEST if ipv6 else ICMP_ECHO_REQUEST
    return _encode_echo(icmp_type, identifier, sequence, payload)


def encode_echo_reply(identifier, sequence, payload=b"", ipv6=False):
    """
    Сборка ICMP ECHO REPLY
    :param identifier: идентификатор сессии
    :param sequence: номер сообщения
    :param payload: данные
    :param ipv6: собрать ICMPv6 (тип 129) вместо ICMP (тип 0)
    :return: bytes
    """
    icmp_type = ICMPV6_ECHO_REPLY if ipv6 else ICMP_ECHO_REPLY
    return _encode_echo(icmp_type, identifier, sequence, payload)


def decode(data, ipv6=False):
    """
    Разбор сообщения ICMP. Контрольная сумма не проверяется.
    :type data: bytes или memoryview
    :type ipv6: bool
    :param data: сообщение без IP заголовка
    :param ipv6: сообщение получено через ICMPv6
    :return: Message
    """
    if len(data) < HEADER_SIZE:
        raise DecodeError("слишком короткое сообщение ICMP: {} байт".format(len(data)))
    icmp_type, code, icmp_checksum, identifier, sequence = \
        struct.unpack(HEADER_FORMAT, bytes(data[:HEADER_SIZE]))
    kind = (_V6_TYPES if ipv6 else _V4_TYPES).get(icmp_type, MessageType.OTHER)
    return Message(kind, icmp_type, code, icmp_checksum, identifier, sequence,
                   bytes(data[HEADER_SIZE:]))


def verify_checksum(data):
    """
    Проверка контрольной суммы принятого сообщения
    :param data: сообщение без IP заголовка
    :return: True, если сумма в заголовке совпадает с посчитанной
    """
    if len(data) < HEADER_SIZE:
        return False
    stored, = struct.unpack("!H", bytes(data[2:4]))
    return stored == utils.checksum(data, CHECKSUM_RANGE)


def strip_ip_header(data):
    """
    Отрезать IPv4 заголовок, который сырой сокет отдаёт вместе с сообщением
    :type data: bytes
    :param data: принятая датаграмма
    :return: сообщение ICMP
    """
    # 0x4X в первом байте: версия 4, ни один из разбираемых типов ICMP так не начинается
    if len(data) >= 20 and data[0] >> 4 == 4:
        ihl = (data[0] & 0xF) * 4
        if ihl >= 20 and len(data) >= ihl:
            return data[ihl:]
    return data
