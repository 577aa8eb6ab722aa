# tests/test_telemetry.py — Tracing stays out of the way when unconfigured
import telemetry


def test_setup_without_endpoint_is_noop(monkeypatch):
    monkeypatch.setattr(telemetry, "OTLP_ENDPOINT", "")
    assert telemetry.setup_telemetry() is None
    assert telemetry._enabled is False


def test_span_is_noop_when_disabled():
    ran = []
    with telemetry.span("timer.start", user_id="u1") as current:
        ran.append(True)
    assert current is None
    assert ran == [True]
