import pytest

from app.client.probe import ConnectionProbe, ConnectionQuality, classify_latency


@pytest.mark.parametrize(
    "latency_ms,expected",
    [
        (20, ConnectionQuality.GOOD),
        (149.9, ConnectionQuality.GOOD),
        (150, ConnectionQuality.FAIR),
        (499, ConnectionQuality.FAIR),
        (500, ConnectionQuality.POOR),
        (3000, ConnectionQuality.POOR),
    ],
)
def test_classify_latency_bands(latency_ms, expected):
    assert classify_latency(latency_ms) == expected


def test_reply_sets_quality(clock):
    probe = ConnectionProbe(clock=clock)
    token = probe.start()
    clock.advance(0.25)

    assert probe.on_reply(token) == ConnectionQuality.FAIR
    assert probe.last_latency_ms == pytest.approx(250)


def test_unknown_reply_is_ignored(clock):
    probe = ConnectionProbe(clock=clock)

    assert probe.on_reply(42) is None
    assert probe.quality == ConnectionQuality.GOOD


def test_missing_reply_marks_poor(clock):
    probe = ConnectionProbe(clock=clock)
    token = probe.start()

    clock.advance(4)
    assert probe.check_timeouts() == ConnectionQuality.GOOD
    clock.advance(1)
    assert probe.check_timeouts() == ConnectionQuality.POOR
    # a late reply for an expired probe no longer counts
    assert probe.on_reply(token) is None
