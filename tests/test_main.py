# tests/test_main.py
import pytest

import echoPing.__main__ as cli
from echoPing import orchestrator

from fake_transport import FakeTransport, factory_for, echo_responder


def test_parser_defaults():
    args = cli.get_parser().parse_args(["192.0.2.1"])
    assert args.destination == "192.0.2.1"
    assert (args.count, args.interval, args.timeout, args.size) == (5, 1.0, 5.0, 56)
    assert args.deadline is None
    assert args.unprivileged is False


def test_main_prints_results_and_statistics(monkeypatch, capsys):
    transport = FakeTransport(responder=echo_responder)

    def fake_probe(target, config, on_result=None, on_complete=None):
        return orchestrator.probe(target, config, on_result, on_complete,
                                  transport_factory=factory_for(transport))

    monkeypatch.setattr(cli, "probe", fake_probe)
    code = cli.main(["example.test", "-c", "3", "-n", "0.01", "-s", "16"])
    out = capsys.readouterr().out
    assert code == 0
    assert "PING example.test: 16 data bytes" in out
    assert out.count("Reply from example.test") == 3
    assert "3 packets transmitted, 3 received, 0.0% packet loss" in out
    assert "rtt min/avg/max" in out


def test_main_reports_total_loss(monkeypatch, capsys):
    transport = FakeTransport()

    def fake_probe(target, config, on_result=None, on_complete=None):
        return orchestrator.probe(target, config, on_result, on_complete,
                                  transport_factory=factory_for(transport))

    monkeypatch.setattr(cli, "probe", fake_probe)
    code = cli.main(["example.test", "-c", "1", "-t", "0.05"])
    out = capsys.readouterr().out
    assert code == 1
    assert "Request timeout seq=0" in out
    assert "100.0% packet loss" in out


def test_main_rejects_invalid_config():
    with pytest.raises(SystemExit):
        cli.main(["example.test", "-c", "-3"])
