"""
Вспомогательные функции: контрольная сумма Internet (RFC 1071) и полезная нагрузка
"""


def carry_around_add(a, b):
    """
    сложение с переносом старшего разряда (дополняющая сумма)
    :param a: первое слагаемое
    :param b: второе слагаемое
    :return: 16 битная дополняющая сумма a и b
    """
    c = a + b
    return (c & 0xFFFF) + (c >> 16)


def checksum(msg, avoid_range=range(0)):
    """
    обратный код 16 битной дополняющей суммы слов msg (big-endian)

    Байты из avoid_range считаются нулевыми, так можно посчитать сумму
    с обнулённым полем контрольной суммы, не копируя сообщение.
    Сообщение нечётной длины дополняется нулевым байтом только для подсчёта.
    :type msg: bytes, bytearray или memoryview
    :param msg: сообщение для подсчёта контрольной суммы
    :param avoid_range: диапазон индексов байтов, которые не участвуют в подсчёте
    :return: контрольная сумма в порядке байтов хоста (упаковывать через "!H")
    """
    s = 0
    length = len(msg)
    for i in range(0, length - 1, 2):
        high = 0 if i in avoid_range else msg[i]
        low = 0 if i + 1 in avoid_range else msg[i + 1]
        s = carry_around_add(s, (high << 8) | low)
    if length % 2 == 1 and length - 1 not in avoid_range:
        s = carry_around_add(s, msg[length - 1] << 8)
    return ~s & 0xFFFF


def make_payload(size):
    """
    полезная нагрузка эхо-запроса: байты 0, 1, ..., 255, 0, 1, ...
    :type size: int
    :param size: размер в байтах
    :return: bytes длины size
    """
    if size < 0:
        raise ValueError("размер полезной нагрузки не может быть отрицательным: {}".format(size))
    return bytes(i % 256 for i in range(size))
