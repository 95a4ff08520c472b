import signal

from durable_llama.supervisor.shutdown import SHUTDOWN_SIGNALS, install_signal_handlers


class StopRecorder:
    def __init__(self):
        self.stops = 0

    def request_stop(self):
        self.stops += 1


def test_signal_handlers_request_stop():
    saved = {signum: signal.getsignal(signum) for signum in SHUTDOWN_SIGNALS}
    recorder = StopRecorder()
    try:
        install_signal_handlers(recorder)
        for signum in SHUTDOWN_SIGNALS:
            signal.getsignal(signum)(signum, None)
    finally:
        for signum, handler in saved.items():
            signal.signal(signum, handler)

    assert recorder.stops == 2
