#!/usr/bin/sudo python3
import argparse
import logging
import sys

from echoPing.orchestrator import probe, RunConfig


def get_parser() -> argparse.ArgumentParser:
    """
    генерация парсера аргументов командной строки
    :return: сгенерированный парсер
    """
    parser = argparse.ArgumentParser(
        description="Проверка доступности узла с помощью ICMP ECHO REQUEST/REPLY")
    parser.add_argument("--log_file", "-l", dest="log_file", type=argparse.FileType("a"),
                        default=sys.stderr, help="Путь до файла для логов")

    log_level = parser.add_mutually_exclusive_group()
    log_level.set_defaults(log_level=logging.WARNING)
    log_level.add_argument("--error", "-e", dest="log_level",
                           action="store_const", const=logging.ERROR,
                           help="Ограничить логирование ошибками")
    log_level.add_argument("--info", "-i", dest="log_level",
                           action="store_const", const=logging.INFO,
                           help="Ограничить логирование информацией")
    log_level.add_argument("--debug", "-d", dest="log_level",
                           action="store_const", const=logging.DEBUG,
                           help="Ограничить логирование сообщениями для дебага")

    parser.add_argument("destination", help="имя или адрес адресата")
    parser.add_argument("--count", "-c", type=int, default=5,
                        help="Кол-во эхо-запросов")
    parser.add_argument("--interval", "-n", type=float, default=1.0,
                        help="Интервал между запросами в секундах")
    parser.add_argument("--timeout", "-t", type=float, default=5.0,
                        help="Время ожидания ответа на каждый запрос в секундах")
    parser.add_argument("--size", "-s", type=int, default=56,
                        help="Размер полезной нагрузки в байтах")
    parser.add_argument("--deadline", "-w", type=float, default=None,
                        help="Максимальная длительность всей серии в секундах")
    parser.add_argument("--unprivileged", "-u", action="store_const",
                        const=True, default=False,
                        help="Использовать датаграммный сокет ICMP (без root)")
    return parser


def print_statistics(destination, stats):
    """
    вывод итоговой статистики в стиле ping
    :param destination: адресат
    :param stats: RunStatistics
    """
    print("--- {} ping statistics ---".format(destination))
    print("{} packets transmitted, {} received, {} packet loss".format(
        stats.total, stats.success_count, stats.formatted_packet_loss))
    if stats.success_count:
        print("rtt min/avg/max = {}/{}/{}".format(
            stats.formatted_min_time, stats.formatted_avg_time, stats.formatted_max_time))


def main(argv=None):
    parser = get_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(format="%(levelname)-8s [%(asctime)-15s; %(name)s]: %(message)s",
                        level=args.log_level, stream=args.log_file)
    try:
        config = RunConfig(count=args.count, interval=args.interval, timeout=args.timeout,
                           payload_size=args.size, deadline=args.deadline,
                           unprivileged=args.unprivileged)
    except ValueError as err:
        parser.error(str(err))

    print("PING {}: {} data bytes".format(args.destination, config.payload_size))
    handle = probe(args.destination, config, on_result=lambda result: print(result.message))
    try:
        while not handle.wait(0.5):
            pass
    except KeyboardInterrupt:
        handle.cancel()
        handle.wait()

    stats = handle.statistics()
    print_statistics(args.destination, stats)
    return 0 if stats.success_count else 1


if __name__ == "__main__":
    sys.exit(main())
