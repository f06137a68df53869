from concurrent.futures import Future
from types import SimpleNamespace

import pytest

pytest.importorskip("PyQt6.QtWidgets")

from app_controller import GENERIC_DOWNLOAD_ERROR  # noqa: E402
from main import PlaceholderDownloaderApp  # noqa: E402


class FakeLoopThread:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def submit(self, coro):
        future = Future()
        if self.error is not None:
            future.set_exception(self.error)
        else:
            future.set_result(self.result)
        return future


def make_window(loop_thread):
    notices = []
    window = SimpleNamespace(
        loop_thread=loop_thread,
        signals=SimpleNamespace(notice=SimpleNamespace(emit=notices.append)),
    )
    return window, notices


def test_run_hands_failures_to_error_callback():
    window, notices = make_window(FakeLoopThread(error=RuntimeError("disk full")))
    results, errors = [], []

    PlaceholderDownloaderApp._run(window, None, on_result=results.append, on_error=errors.append)

    assert results == []
    assert [str(e) for e in errors] == ["disk full"]
    assert notices == []


def test_run_without_error_callback_shows_notice():
    window, notices = make_window(FakeLoopThread(error=RuntimeError("disk full")))

    PlaceholderDownloaderApp._run(window, None)

    assert notices == ["Unexpected error: disk full"]


def test_run_delivers_results():
    window, notices = make_window(FakeLoopThread(result={"success": True}))
    results = []

    PlaceholderDownloaderApp._run(window, None, on_result=results.append)

    assert results == [{"success": True}]
    assert notices == []


def test_unexpected_download_error_still_finishes_the_download():
    finished = []
    window = SimpleNamespace(signals=SimpleNamespace(download_finished=SimpleNamespace(emit=finished.append)))

    PlaceholderDownloaderApp.on_download_error(window, KeyError("path"))

    assert finished == [{"success": False, "error": GENERIC_DOWNLOAD_ERROR}]
