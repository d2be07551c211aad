"""Shared fixtures: an in-process stand-in for the yt-dlp executable."""

import io
import itertools
import json
import subprocess
import threading

import pytest

import downloader
from app import app as flask_app, downloads, limiter


class BlockingReader:
    """A stdout pipe that hands out its chunks, then blocks until released."""

    def __init__(self, chunks=()):
        self.chunks = list(chunks)
        self.released = threading.Event()
        self.closed = False

    def read1(self, size=-1):
        if self.chunks:
            return self.chunks.pop(0)
        self.released.wait(5)
        return b''

    def __iter__(self):
        while self.chunks:
            yield self.chunks.pop(0)
        self.released.wait(5)

    def close(self):
        self.closed = True
        self.released.set()


class FakeProcess:
    """Stands in for a subprocess.Popen running yt-dlp."""

    pids = itertools.count(4242)

    def __init__(self, args, stdout=b'', stderr=b'', returncode=0, text=False, hang=False, ignore_term=False):
        self.args = args
        pipe = io.StringIO if text else io.BytesIO
        self.stdout = stdout if isinstance(stdout, BlockingReader) else pipe(stdout)
        self.stderr = pipe(stderr)
        self.returncode = None
        self.exit_code = returncode
        self.hang = hang
        self.ignore_term = ignore_term
        self.killed = False
        self.terminated = False
        self.pid = next(self.pids)

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = self.exit_code
        return self.returncode

    def kill(self):
        self.killed = True
        if isinstance(self.stdout, BlockingReader):
            self.stdout.released.set()
        if self.returncode is None:
            self.returncode = -9

    def terminate(self):
        self.terminated = True
        if self.returncode is None and not self.ignore_term:
            self.returncode = -15

    def communicate(self, timeout=None):
        stopped = self.killed or (self.terminated and not self.ignore_term)
        if self.hang and not stopped:
            raise subprocess.TimeoutExpired(self.args, timeout)
        out, err = self.stdout.read(), self.stderr.read()
        self.wait()
        return out, err


class FakeYtDlp:
    """Scripted yt-dlp behaviour, dispatched on the command line it receives."""

    def __init__(self):
        self.title = 'Dagsrevyen 21'
        self.title_returncode = 0
        self.version = '2025.01.01\n'
        self.spawn_error = None

        self.stream_data = b'stream-bytes'
        self.stream_stderr = b''
        self.stream_returncode = 0
        self.stream_blocking = None

        self.file_data = b'file-bytes'
        self.file_ext = 'mp4'
        self.file_output = ''
        self.file_returncode = 0
        self.file_blocking = None

        self.probe_data = {'title': 'Dagsrevyen', 'formats': []}
        self.probe_stdout = None
        self.probe_stderr = ''
        self.probe_returncode = 0
        self.probe_hang = False
        self.probe_ignore_term = False

        self.calls = []
        self.popen_kwargs = []
        self.processes = []
        self.killed_groups = []

    def run(self, cmd, **kwargs):
        self.calls.append(cmd)
        if self.spawn_error:
            raise self.spawn_error
        if '--version' in cmd:
            return subprocess.CompletedProcess(cmd, 0, stdout=self.version, stderr='')
        return subprocess.CompletedProcess(cmd, self.title_returncode, stdout=self.title + '\n', stderr='')

    def popen(self, cmd, **kwargs):
        self.calls.append(cmd)
        self.popen_kwargs.append(kwargs)
        if self.spawn_error:
            raise self.spawn_error
        if '--dump-single-json' in cmd:
            stdout = self.probe_stdout if self.probe_stdout is not None else json.dumps(self.probe_data)
            proc = FakeProcess(cmd, stdout, self.probe_stderr, self.probe_returncode, text=True,
                               hang=self.probe_hang, ignore_term=self.probe_ignore_term)
        elif cmd[cmd.index('-o') + 1] == '-':
            stdout = self.stream_blocking if self.stream_blocking is not None else self.stream_data
            proc = FakeProcess(cmd, stdout, self.stream_stderr, self.stream_returncode)
        else:
            template = cmd[cmd.index('-o') + 1]
            if self.file_data is not None and self.file_returncode == 0:
                with open(template.replace('%(ext)s', self.file_ext), 'wb') as f:
                    f.write(self.file_data)
            stdout = self.file_blocking if self.file_blocking is not None else self.file_output
            proc = FakeProcess(cmd, stdout, '', self.file_returncode, text=True)
        self.processes.append(proc)
        return proc

    def killpg(self, pid, sig):
        self.killed_groups.append((pid, sig))
        for proc in self.processes:
            if proc.pid == pid:
                proc.kill()
                return
        raise ProcessLookupError(pid)

    def last(self):
        return self.processes[-1]


@pytest.fixture
def ytdlp(monkeypatch):
    fake = FakeYtDlp()
    monkeypatch.setattr(downloader.subprocess, 'Popen', fake.popen)
    monkeypatch.setattr(downloader.subprocess, 'run', fake.run)
    monkeypatch.setattr(downloader.os, 'killpg', fake.killpg)
    return fake


@pytest.fixture
def app(tmp_path):
    overrides = {
        'TESTING': True,
        'TMP_DIR': str(tmp_path),
        'STREAM_START_TIMEOUT': 2,
        'DOWNLOAD_RATE_LIMIT_PER_MINUTE': 100,
        'RATE_LIMIT_PER_MINUTE': 100,
    }
    saved = {key: flask_app.config.get(key) for key in overrides}
    flask_app.config.update(overrides)
    limiter.reset()
    downloads._entries.clear()
    yield flask_app
    flask_app.config.update(saved)
    limiter.reset()


@pytest.fixture
def client(app):
    return app.test_client()
