"""
                                   echo-ping
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
        Проверка доступности узлов с помощью ICMP ECHO REQUEST/REPLY
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Эхо-запросы отправляются через сырой сокет (или датаграммный сокет ICMP),
ответы принимаются в отдельном потоке и сопоставляются с запросами
по идентификатору сеанса и номеру сообщения.
Формат ICMP Echo Request/Reply:
    ICMP            : up to 65515
        type                : 1 byte            ==  8 запрос, 0 ответ
                                                    (ICMPv6: 128 запрос, 129 ответ)
        code                : 1 byte            ==  0
        checksum            : 2 bytes           ==  16 битный обратный код
                                                    дополняющей суммы всех
                                                    16 битных слов
                                                    начиная с поля type.
                                                    Нечётное сообщение дополняется
                                                    нулевым байтом только для подсчёта.
        ECHO part of header : 4 bytes
            identifier              : 2 bytes   ==  id сеанса, случайный
                                                    (для датаграммного сокета
                                                    Linux назначает его сам)
            sequence number         : 2 bytes   ==  начинается с нуля
                                                    и увеличивается на 1
                                                    с каждым запросом серии
        Description         : payload_size bytes == 0x00, 0x01, ..., 0xff, 0x00, ...
Слои:
    icmp          : сборка и разбор сообщений
    transport     : сокет одного адресата и цикл приёма
    session       : сеанс, события отправки и приёма
    orchestrator  : серия запросов, таймауты, результаты и статистика
"""
import echoPing.utils
import echoPing.icmp
import echoPing.transport
import echoPing.session
import echoPing.orchestrator

from echoPing.orchestrator import probe, ProbeOrchestrator, ProbeResult, RunConfig, RunStatistics
