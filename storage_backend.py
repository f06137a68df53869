import asyncio
import copy
import json
import os
import tempfile

from logger import get_logger

_logger = get_logger("storage")

SYNC_SCOPE = "sync"


class _Missing:
    """Marker for a key that has never been set (distinct from an empty list)."""

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()


class StorageBackend:
    """Key-value store with a change-notification stream.

    Listeners are called as ``listener(key, old_value, new_value, scope)`` for
    every change, whichever writer produced it.
    """

    def __init__(self, scope=SYNC_SCOPE):
        self.scope = scope
        self._listeners = []

    def subscribe(self, listener):
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, key, old_value, new_value):
        for listener in list(self._listeners):
            try:
                listener(key, copy.deepcopy(old_value), copy.deepcopy(new_value), self.scope)
            except Exception:
                _logger.exception("Storage change listener failed for key '%s'", key)

    def _emit_soon(self, key, old_value, new_value):
        # Notifications are delivered on a later loop iteration, never inline with the write
        asyncio.get_running_loop().call_soon(self._emit, key, old_value, new_value)

    async def get(self, key):
        raise NotImplementedError

    async def set(self, key, value):
        raise NotImplementedError


class InMemoryBackend(StorageBackend):
    """Process-local backend. Several stores sharing one instance behave like
    several app instances sharing one synchronized storage area."""

    def __init__(self, initial=None, scope=SYNC_SCOPE):
        super().__init__(scope)
        self._data = copy.deepcopy(initial) if initial else {}

    async def get(self, key):
        # Snapshot at call time, answer after yielding to the loop
        value = copy.deepcopy(self._data.get(key, MISSING))
        await asyncio.sleep(0)
        return value

    async def set(self, key, value):
        await asyncio.sleep(0)
        old_value = self._data.get(key, MISSING)
        self._data[key] = copy.deepcopy(value)
        self._emit_soon(key, old_value, value)

    async def remove(self, key):
        await asyncio.sleep(0)
        if key in self._data:
            old_value = self._data.pop(key)
            self._emit_soon(key, old_value, MISSING)

    def peek(self, key):
        return copy.deepcopy(self._data.get(key, MISSING))


class JsonFileBackend(StorageBackend):
    """Backend persisted as a JSON object in a single file.

    Other processes writing the same file are picked up by polling its
    modification time (see ``start_watching``).
    """

    def __init__(self, path, poll_interval=1.0, scope=SYNC_SCOPE):
        super().__init__(scope)
        self.path = path
        self.poll_interval = poll_interval
        self._cache = None
        self._mtime = None
        self._watch_task = None
        self._write_lock = asyncio.Lock()

    def _read_file(self):
        if not os.path.exists(self.path):
            return {}, None
        mtime = os.path.getmtime(self.path)
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            _logger.warning("Storage file %s is not valid JSON: %s", self.path, e)
            return {}, mtime
        if not isinstance(data, dict):
            _logger.warning("Storage file %s does not hold an object, ignoring it.", self.path)
            return {}, mtime
        return data, mtime

    def _write_file(self, data):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        # Write to a sibling temp file then swap it in so readers never see half a file
        fd, tmp_path = tempfile.mkstemp(prefix=".presets-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return os.path.getmtime(self.path)

    async def _ensure_cache(self):
        if self._cache is None:
            self._cache, self._mtime = await asyncio.to_thread(self._read_file)
        return self._cache

    async def get(self, key):
        # Always re-read so a value written by another process is seen
        data, mtime = await asyncio.to_thread(self._read_file)
        self._apply_external(data, mtime)
        return copy.deepcopy(data.get(key, MISSING))

    async def set(self, key, value):
        # One read-merge-write at a time so writes land in call order
        async with self._write_lock:
            await self._ensure_cache()
            # Merge into the latest file contents; other keys written elsewhere survive
            data, mtime = await asyncio.to_thread(self._read_file)
            self._apply_external(data, mtime)
            old_value = self._cache.get(key, MISSING)
            data[key] = copy.deepcopy(value)
            self._mtime = await asyncio.to_thread(self._write_file, data)
            self._cache = data
            self._emit_soon(key, old_value, value)

    def _apply_external(self, data, mtime):
        """Diff fresh file contents against the cache and report changed keys."""
        if self._cache is None:
            self._cache, self._mtime = copy.deepcopy(data), mtime
            return
        previous = self._cache
        self._cache, self._mtime = copy.deepcopy(data), mtime
        for key in set(previous) | set(data):
            old_value = previous.get(key, MISSING)
            new_value = data.get(key, MISSING)
            if old_value != new_value:
                _logger.debug("Storage key '%s' changed outside this instance", key)
                self._emit(key, old_value, new_value)

    async def poll_once(self):
        async with self._write_lock:
            await self._ensure_cache()
            current_mtime = await asyncio.to_thread(
                lambda: os.path.getmtime(self.path) if os.path.exists(self.path) else None
            )
            if current_mtime == self._mtime:
                return
            data, mtime = await asyncio.to_thread(self._read_file)
            self._apply_external(data, mtime)

    async def _watch(self):
        while True:
            try:
                await self.poll_once()
            except OSError as e:
                _logger.warning("Polling storage file %s failed: %s", self.path, e)
            await asyncio.sleep(self.poll_interval)

    def start_watching(self):
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.get_running_loop().create_task(self._watch())

    async def stop_watching(self):
        if self._watch_task is None:
            return
        self._watch_task.cancel()
        try:
            await self._watch_task
        except asyncio.CancelledError:
            pass
        self._watch_task = None
