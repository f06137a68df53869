import asyncio
import re
from dataclasses import dataclass

from errors import BackendWriteFailed, IndexOutOfRange, InvalidDimension
from logger import get_logger
from storage_backend import MISSING, SYNC_SCOPE

_logger = get_logger("store")

STORAGE_KEY = "presets"

_DIMENSION_TEXT = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")


def coerce_dimension(value):
    """Return ``value`` as a positive int, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    return None


@dataclass(frozen=True)
class Preset:
    w: int
    h: int

    def __post_init__(self):
        if coerce_dimension(self.w) is None or coerce_dimension(self.h) is None:
            raise InvalidDimension(f"Invalid preset dimensions: {self.w!r}x{self.h!r}")
        # Normalize integral floats (e.g. values that went through JSON as 300.0)
        object.__setattr__(self, "w", int(self.w))
        object.__setattr__(self, "h", int(self.h))

    @property
    def key(self) -> str:
        return f"{self.w}x{self.h}"

    @property
    def label(self) -> str:
        return f"{self.w}×{self.h}"

    def to_dict(self) -> dict:
        return {"w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, data) -> "Preset":
        if not isinstance(data, dict):
            raise InvalidDimension(f"Preset entry is not an object: {data!r}")
        return cls(data.get("w"), data.get("h"))

    @classmethod
    def parse(cls, text: str) -> "Preset":
        """Parse the ``300x200`` form used when editing a preset."""
        match = _DIMENSION_TEXT.match(str(text or ""))
        if not match:
            raise InvalidDimension(f"Expected WIDTHxHEIGHT (e.g. 300x200), got {text!r}")
        return cls(int(match.group(1)), int(match.group(2)))


DEFAULT_PRESETS = (Preset(128, 128), Preset(256, 256), Preset(512, 512))


def presets_from_value(value) -> list[Preset]:
    """Parse a stored value into unique presets, keeping the first occurrence."""
    presets = []
    seen = set()
    for entry in value:
        try:
            preset = Preset.from_dict(entry)
        except InvalidDimension as e:
            _logger.warning("Dropping stored preset entry: %s", e)
            continue
        if preset.key in seen:
            _logger.warning("Dropping repeated stored preset %s", preset.key)
            continue
        seen.add(preset.key)
        presets.append(preset)
    return presets


class PresetStore:
    """Ordered, de-duplicated list of dimension presets kept in a shared backend.

    Every mutation updates the in-memory list and calls ``render`` before the
    first await, then writes the whole list back. Changes reported by the
    backend (echoes of our own writes or writes from other instances) replace
    the list wholesale through ``on_remote_change``.
    """

    def __init__(self, backend, key=STORAGE_KEY, render=None, on_duplicate=None,
                 write_retries=0, write_retry_delay=0.0, defaults=DEFAULT_PRESETS):
        self.backend = backend
        self.key = key
        self.render = render
        self.on_duplicate = on_duplicate
        self.write_retries = write_retries
        self.write_retry_delay = write_retry_delay
        self.defaults = tuple(defaults)

        self._presets: list[Preset] = []
        self._initialized = False
        self._write_lock = asyncio.Lock()
        self._unsubscribe = None

    @property
    def presets(self) -> tuple:
        return tuple(self._presets)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def __len__(self):
        return len(self._presets)

    # Backend subscription

    def attach(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.backend.subscribe(self._handle_storage_change)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_storage_change(self, key, old_value, new_value, scope):
        if key != self.key or scope != SYNC_SCOPE:
            return
        self.on_remote_change(new_value)

    def on_remote_change(self, new_value):
        if not isinstance(new_value, list):
            # Key removed or overwritten with something that is not a preset list
            return
        self._presets = presets_from_value(new_value)
        _logger.debug("Presets replaced from storage: %s", [p.key for p in self._presets])
        self._render()

    # Persistence

    async def load(self):
        value = await self.backend.get(self.key)
        if not isinstance(value, list):
            if value is not MISSING:
                _logger.warning("Stored value under '%s' is not a list, treating it as unset", self.key)
            return MISSING
        return presets_from_value(value)

    async def _persist(self, presets=None):
        if presets is None:
            presets = self._presets
        # Snapshot now: an echo delivered while this write waits must not change what it sends
        payload = [preset.to_dict() for preset in presets]
        # Writes from this instance (retries included) go out one at a time, in call order
        async with self._write_lock:
            attempts = self.write_retries + 1
            last_error = None
            for attempt in range(1, attempts + 1):
                try:
                    await self.backend.set(self.key, payload)
                    return
                except Exception as e:
                    last_error = e
                    _logger.warning("Saving presets failed (attempt %d/%d): %s", attempt, attempts, e)
                    if attempt < attempts and self.write_retry_delay:
                        await asyncio.sleep(self.write_retry_delay)
            _logger.error("Giving up saving presets after %d attempt(s)", attempts)
            raise BackendWriteFailed(self.key, attempts, last_error)

    def _render(self):
        if self.render is not None:
            self.render(self.presets)

    def _index_valid(self, index) -> bool:
        return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(self._presets)

    def _find(self, preset):
        for i, existing in enumerate(self._presets):
            if existing == preset:
                return i
        return -1

    def _report_duplicate(self, preset):
        _logger.info("Preset %s already exists", preset.key)
        if self.on_duplicate is not None:
            self.on_duplicate(preset)

    # User operations

    async def add(self, w, h, notify_duplicate=False) -> bool:
        w, h = coerce_dimension(w), coerce_dimension(h)
        if w is None or h is None:
            return False

        preset = Preset(w, h)
        if self._find(preset) != -1:
            if notify_duplicate:
                self._report_duplicate(preset)
            return False

        self._presets.append(preset)
        # Show it right away; the write below may take a while
        self._render()
        await self._persist()
        return True

    async def remove(self, index):
        if not self._index_valid(index):
            return
        removed = self._presets.pop(index)
        _logger.debug("Removed preset %s", removed.key)
        self._render()
        await self._persist()

    def apply(self, index) -> Preset:
        if not self._index_valid(index):
            raise IndexOutOfRange(index, len(self._presets))
        return self._presets[index]

    async def edit(self, index, w, h) -> bool:
        if not self._index_valid(index):
            return False
        w, h = coerce_dimension(w), coerce_dimension(h)
        if w is None or h is None:
            return False

        preset = Preset(w, h)
        existing = self._find(preset)
        if existing == index:
            return True
        if existing != -1:
            self._report_duplicate(preset)
            return False

        self._presets[index] = preset
        self._render()
        await self._persist()
        return True

    async def reconcile_on_start(self) -> tuple:
        loaded = await self.load()
        if loaded is MISSING:
            base = list(self.defaults)
            _logger.info("No stored presets, seeding defaults")
            try:
                await self._persist(base)
            except BackendWriteFailed:
                # Keep going with the defaults in memory; the next edit writes the full list
                pass
        else:
            base = list(loaded)

        # Keep presets that reached memory while the load was in flight
        seen = {preset.key for preset in base}
        for preset in self._presets:
            if preset.key not in seen:
                base.append(preset)
                seen.add(preset.key)

        self._presets = base
        self._initialized = True
        _logger.info("Presets ready: %s", [p.key for p in self._presets])
        self._render()
        return self.presets

