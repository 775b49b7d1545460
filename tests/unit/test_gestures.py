import pytest

from pagereader.services.gestures import TouchPoint, classify_touch


WIDTH = 400


@pytest.mark.parametrize(
    ("start", "end", "expected"),
    [
        ((390, 300), (392, 301), "next"),
        ((40, 300), (40, 300), "prev"),
        ((10, 300), (10, 300), None),
        ((200, 300), (200, 300), None),
        ((200, 300), (320, 310), "prev"),
        ((200, 300), (90, 290), "next"),
        ((200, 300), (160, 300), None),
        ((200, 100), (210, 300), None),
        ((30, 300), (150, 300), None),
        ((380, 300), (250, 300), None),
    ],
    ids=[
        "tap-right-edge",
        "tap-left-edge",
        "tap-system-edge",
        "tap-center",
        "swipe-right",
        "swipe-left",
        "short-drag",
        "vertical-scroll",
        "drag-from-left-edge",
        "drag-from-right-edge",
    ],
)
def test_classify_touch(start, end, expected):
    assert classify_touch(TouchPoint(*start), TouchPoint(*end), WIDTH) == expected
